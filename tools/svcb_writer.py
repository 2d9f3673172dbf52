#!/usr/bin/env python3
"""
svcb_writer.py - SVCB revision 1 stream writer

Encoder side of svcb_container.py / block_stream.py. Declarations go through
a private SchemaRegistry first, so the writer refuses to emit anything the
reader would reject (dangling ids, width mismatches, bad logic codes).

Usage:
    from svcb_writer import SvcbWriter
    from logic_values import LogicKind

    w = SvcbWriter(timescale=1000)          # 1 ps per timestep
    w.scope(1, 'top')
    w.storage(0, LogicKind.TWO_VALUED, 1)
    w.variable(1, 'clk', 0)
    w.timestep(0)
    w.value_change({0: [1]})
    data = w.getvalue()
"""

from typing import BinaryIO, Iterable, Mapping, Optional, Sequence, Tuple, Union

from block_stream import BlockType
from logic_values import LogicKind, encode_values
from schema_registry import (
    EnumField,
    Interpretation,
    SchemaRegistry,
    Scope,
    Signedness,
    Storage,
    Variable,
)
from svcb_codec import U32_BITS, U64_BITS, ByteWriter, encode_varint
from svcb_container import MAGIC
from svcb_errors import WidthMismatchError


Changes = Union[Mapping[int, Sequence[int]], Iterable[Tuple[int, Sequence[int]]]]


class SvcbWriter:
    """Writes header on construction, then one block per call."""

    VERSION = 1

    def __init__(self, stream: Optional[BinaryIO] = None, timescale: int = 1):
        self.out = ByteWriter(stream)
        self.registry = SchemaRegistry()
        self.time = 0
        self.block_count = 0
        self.out.write(MAGIC)
        self.out.write_u32(self.VERSION)
        self.out.write_u128(timescale)

    def getvalue(self) -> bytes:
        return self.out.getvalue()

    def _emit(self, block_type: BlockType, payload: bytes) -> None:
        """Write tag + already-encoded payload as a single call."""
        self.out.write(bytes([block_type]) + payload)
        self.block_count += 1

    # -------------------------------------------------------------------------
    # Declarations
    # -------------------------------------------------------------------------
    # Each payload is encoded into a scratch buffer and validated against the
    # registry before anything reaches the output, so a rejected call leaves
    # both the stream and the registry unchanged.

    def scope(self, scope_id: int, name: str, parent: int = 0) -> Scope:
        payload = ByteWriter()
        payload.write_u32(parent)
        payload.write_u32(scope_id)
        payload.write_string(name)
        scope = self.registry.declare_scope(
            Scope(scope_id=scope_id, parent_scope_id=parent, name=name))
        self._emit(BlockType.SCOPE, payload.getvalue())
        return scope

    def storage(self, storage_id: int, kind: LogicKind, width: int,
                start: int = 0) -> Storage:
        logic_kind = LogicKind.from_code(kind)
        payload = ByteWriter()
        payload.write_u32(storage_id)
        payload.write_u32(logic_kind)
        payload.write_u32(width)
        payload.write_u32(start)
        storage = self.registry.declare_storage(
            Storage(id=storage_id, logic_kind=logic_kind, width=width, start=start))
        self._emit(BlockType.STORAGE, payload.getvalue())
        return storage

    def declare(self, variable: Variable) -> int:
        """Write any Variable; returns its variable id."""
        self.registry.check_variable(variable)

        payload = ByteWriter()
        payload.write_u32(variable.scope_id)
        payload.write_string(variable.name)
        payload.write_u32(variable.interpretation)
        if variable.interpretation == Interpretation.INTEGER:
            payload.write_vec(list(variable.storage_ids), ByteWriter.write_u32)
            payload.write_u32(variable.msb)
            payload.write_u32(variable.lsb)
            payload.write_u32(variable.signedness)
        else:
            payload.write_u32(variable.storage_id)
            if variable.interpretation == Interpretation.ENUM:
                def write_field(w: ByteWriter, ef: EnumField) -> None:
                    w.write_string(ef.name)
                    w.write_packed(ef.value, 1)
                payload.write_vec(list(variable.enum_fields), write_field)

        variable_id = self.registry.declare_variable(variable)
        self._emit(BlockType.VARIABLE, payload.getvalue())
        return variable_id

    def variable(self, scope_id: int, name: str, storage_id: int) -> int:
        return self.declare(Variable(scope_id=scope_id, name=name,
                                     interpretation=Interpretation.NONE,
                                     storage_ids=(storage_id,)))

    def text_variable(self, scope_id: int, name: str, storage_id: int) -> int:
        return self.declare(Variable(scope_id=scope_id, name=name,
                                     interpretation=Interpretation.UTF8,
                                     storage_ids=(storage_id,)))

    def enum_variable(self, scope_id: int, name: str, storage_id: int,
                      fields: Sequence[Tuple[str, Sequence[int]]]) -> int:
        enum_fields = tuple(EnumField(name=n, value=tuple(v)) for n, v in fields)
        return self.declare(Variable(scope_id=scope_id, name=name,
                                     interpretation=Interpretation.ENUM,
                                     storage_ids=(storage_id,),
                                     enum_fields=enum_fields))

    def integer_variable(self, scope_id: int, name: str, storage_ids: Sequence[int],
                         msb: int, lsb: int = 0, signed: bool = False) -> int:
        signedness = Signedness.SIGNED if signed else Signedness.UNSIGNED
        return self.declare(Variable(scope_id=scope_id, name=name,
                                     interpretation=Interpretation.INTEGER,
                                     storage_ids=tuple(storage_ids), msb=msb,
                                     lsb=lsb, signedness=signedness))

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def value_change(self, changes: Changes) -> None:
        """Write one ValueChange block holding every (storage_id, values) pair.

        Pairs may repeat a storage id; the reader applies them in order.
        """
        items = list(changes.items()) if isinstance(changes, Mapping) else list(changes)
        payload = ByteWriter()
        payload.write_varint(len(items), U32_BITS)
        for storage_id, values in items:
            storage = self.registry.lookup_storage(storage_id)
            if len(values) != storage.width:
                raise WidthMismatchError(
                    f"Storage {storage_id} has width {storage.width}, "
                    f"got {len(values)} values")
            payload.write_varint(storage_id, U32_BITS)
            payload.write_varint(len(values), U32_BITS)
            payload.write(encode_values(storage.logic_kind, values))
        self._emit(BlockType.VALUE_CHANGE, payload.getvalue())

    def timestep(self, delta: int) -> int:
        """Advance time by `delta`; returns the new absolute time."""
        self._emit(BlockType.TIMESTEP, encode_varint(delta, U64_BITS))
        self.time += delta
        return self.time
