#!/usr/bin/env python3
"""
block_stream.py - Block Stream Engine for SVCB revision 1

Pulls tagged blocks one at a time from a ByteReader positioned just after
the container header, updating the schema registry as declarations arrive.

Block layout:
    tag (u8) + payload

    tag  block        payload
    0    Scope        u32 parent_scope_id, u32 scope_id, string name
    1    Variable     u32 scope_id, string name, u32 interpretation, then
                        0 None / 3 UTF-8: u32 storage_id
                        2 Enum:  u32 storage_id,
                                 vec<{string name, packed 1-bit x width}>
                        1 Integer: vec<u32> storage_ids, u32 msb, u32 lsb,
                                   u32 signedness (0 signed, 1 unsigned)
    2    Storage      u32 id, u32 logic_kind, u32 width, u32 start
    3    ValueChange  compact-vec<{varint storage_id, varint count,
                                   packed values at the storage's bit width}>
    4    Timestep     varint(u64) delta

State machine:
    STREAMING --clean EOF between blocks--> DONE
        |
        +--any SvcbError--> ERROR (sticky; later pulls raise StreamStateError)

A block's declarations reach the registry only after its whole payload has
decoded, so stopping or failing mid-block never leaves partial schema.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Callable, Dict, Iterator, List, Optional, Union

from logic_values import LogicKind, decode_values
from schema_registry import (
    EnumField,
    Interpretation,
    SchemaRegistry,
    Scope,
    Signedness,
    Storage,
    Variable,
)
from svcb_codec import U32_BITS, U64_BITS, ByteReader, packed_size
from svcb_errors import (
    StreamStateError,
    SvcbError,
    UnknownBlockTypeError,
    WidthMismatchError,
    ZeroTimestepError,
)


log = logging.getLogger('svcb.stream')


class BlockType(IntEnum):
    SCOPE = 0
    VARIABLE = 1
    STORAGE = 2
    VALUE_CHANGE = 3
    TIMESTEP = 4


class StreamState(Enum):
    AWAIT_MAGIC = 'await_magic'
    AWAIT_VERSION = 'await_version'
    STREAMING = 'streaming'
    DONE = 'done'
    ERROR = 'error'


# =============================================================================
# Blocks
# =============================================================================

@dataclass(frozen=True)
class ValueChange:
    """New raw value of one storage."""
    storage_id: int
    values: tuple


@dataclass(frozen=True)
class ScopeBlock:
    scope: Scope
    offset: int = 0
    index: int = 0
    block_type = BlockType.SCOPE


@dataclass(frozen=True)
class VariableBlock:
    variable_id: int
    variable: Variable
    offset: int = 0
    index: int = 0
    block_type = BlockType.VARIABLE


@dataclass(frozen=True)
class StorageBlock:
    storage: Storage
    offset: int = 0
    index: int = 0
    block_type = BlockType.STORAGE


@dataclass(frozen=True)
class ValueChangeBlock:
    """Value changes at absolute time `time`."""
    time: int
    changes: List[ValueChange] = field(default_factory=list)
    offset: int = 0
    index: int = 0
    block_type = BlockType.VALUE_CHANGE


@dataclass(frozen=True)
class TimestepBlock:
    """`time` is the running total after adding `delta`."""
    delta: int
    time: int
    offset: int = 0
    index: int = 0
    block_type = BlockType.TIMESTEP


Block = Union[ScopeBlock, VariableBlock, StorageBlock, ValueChangeBlock, TimestepBlock]


# =============================================================================
# Payload readers
# =============================================================================

def read_scope(reader: ByteReader) -> Scope:
    parent_scope_id = reader.read_u32()
    scope_id = reader.read_u32()
    name = reader.read_string()
    return Scope(scope_id=scope_id, parent_scope_id=parent_scope_id, name=name)


def read_storage(reader: ByteReader) -> Storage:
    storage_id = reader.read_u32()
    kind = LogicKind.from_code(reader.read_u32())
    width = reader.read_u32()
    start = reader.read_u32()
    return Storage(id=storage_id, logic_kind=kind, width=width, start=start)


def read_variable(reader: ByteReader, registry: SchemaRegistry) -> Variable:
    scope_id = reader.read_u32()
    name = reader.read_string()
    interp = Interpretation.from_code(reader.read_u32())

    if interp == Interpretation.INTEGER:
        storage_ids = reader.read_vec(ByteReader.read_u32)
        msb = reader.read_u32()
        lsb = reader.read_u32()
        signedness = Signedness.from_code(reader.read_u32())
        return Variable(scope_id=scope_id, name=name, interpretation=interp,
                        storage_ids=tuple(storage_ids), msb=msb, lsb=lsb,
                        signedness=signedness)

    storage_id = reader.read_u32()
    if interp != Interpretation.ENUM:
        return Variable(scope_id=scope_id, name=name, interpretation=interp,
                        storage_ids=(storage_id,))

    # Enum value vectors are sized by the storage, so it must exist already
    width = registry.lookup_storage(storage_id).width

    def read_field(r: ByteReader) -> EnumField:
        field_name = r.read_string()
        return EnumField(name=field_name, value=tuple(r.read_packed(width, 1)))

    fields = reader.read_vec(read_field)
    return Variable(scope_id=scope_id, name=name, interpretation=interp,
                    storage_ids=(storage_id,), enum_fields=tuple(fields))


def read_value_change(reader: ByteReader, registry: SchemaRegistry) -> ValueChange:
    storage_id = reader.read_varint(U32_BITS)
    storage = registry.lookup_storage(storage_id)
    count = reader.read_varint(U32_BITS)
    if count != storage.width:
        raise WidthMismatchError(
            f"Value change for storage {storage_id} carries {count} values, "
            f"storage width is {storage.width}")
    kind = storage.logic_kind
    data = reader.read(packed_size(count, kind.bits))
    return ValueChange(storage_id=storage_id,
                       values=tuple(decode_values(kind, data, count)))


# =============================================================================
# Stream
# =============================================================================

class BlockStream:
    """Lazy, single-pass sequence of decoded blocks.

    Usage:
        stream = BlockStream(reader, registry)
        for block in stream:
            ...
    """

    def __init__(self, reader: ByteReader, registry: Optional[SchemaRegistry] = None,
                 allow_zero_timestep: bool = True, log_declarations: bool = True):
        self.reader = reader
        self.registry = registry if registry is not None else SchemaRegistry()
        self.allow_zero_timestep = allow_zero_timestep
        self.log_declarations = log_declarations
        self.state = StreamState.STREAMING
        self.time = 0
        self.block_count = 0
        self.error: Optional[SvcbError] = None

        self._handlers: Dict[BlockType, Callable[[int, int], Block]] = {
            BlockType.SCOPE: self._scope,
            BlockType.VARIABLE: self._variable,
            BlockType.STORAGE: self._storage,
            BlockType.VALUE_CHANGE: self._value_change,
            BlockType.TIMESTEP: self._timestep,
        }

    def __iter__(self) -> Iterator[Block]:
        return self

    def __next__(self) -> Block:
        block = self.next_block()
        if block is None:
            raise StopIteration
        return block

    def next_block(self) -> Optional[Block]:
        """Decode the next block; None once the input is cleanly exhausted."""
        if self.state == StreamState.DONE:
            return None
        if self.state == StreamState.ERROR:
            raise StreamStateError(f"Stream already failed: {self.error}")

        offset = self.reader.offset
        index = self.block_count
        try:
            tag = self.reader.read_tag()
            if tag is None:
                self.state = StreamState.DONE
                log.debug("end of stream after %d blocks, final time %d",
                          self.block_count, self.time)
                return None
            try:
                block_type = BlockType(tag)
            except ValueError:
                raise UnknownBlockTypeError(f"Unknown block type {tag}") from None
            block = self._handlers[block_type](offset, index)
        except SvcbError as e:
            self.state = StreamState.ERROR
            self.error = e.annotate(offset, index)
            raise

        self.block_count += 1
        return block

    def _scope(self, offset: int, index: int) -> ScopeBlock:
        scope = read_scope(self.reader)
        self.registry.declare_scope(scope)
        if self.log_declarations:
            log.debug("scope %d '%s' (parent %d)", scope.scope_id, scope.name,
                      scope.parent_scope_id)
        return ScopeBlock(scope=scope, offset=offset, index=index)

    def _variable(self, offset: int, index: int) -> VariableBlock:
        variable = read_variable(self.reader, self.registry)
        variable_id = self.registry.declare_variable(variable)
        if self.log_declarations:
            log.debug("variable %d '%s' %s over storages %s", variable_id,
                      variable.name, variable.interpretation.name,
                      list(variable.storage_ids))
        return VariableBlock(variable_id=variable_id, variable=variable,
                             offset=offset, index=index)

    def _storage(self, offset: int, index: int) -> StorageBlock:
        storage = read_storage(self.reader)
        self.registry.declare_storage(storage)
        if self.log_declarations:
            log.debug("storage %d %s-valued width %d start %d", storage.id,
                      storage.logic_kind.label, storage.width, storage.start)
        return StorageBlock(storage=storage, offset=offset, index=index)

    def _value_change(self, offset: int, index: int) -> ValueChangeBlock:
        changes = self.reader.read_compact_vec(
            lambda r: read_value_change(r, self.registry))
        return ValueChangeBlock(time=self.time, changes=changes,
                                offset=offset, index=index)

    def _timestep(self, offset: int, index: int) -> TimestepBlock:
        delta = self.reader.read_varint(U64_BITS)
        if delta == 0 and not self.allow_zero_timestep:
            raise ZeroTimestepError("Zero-delta timestep rejected")
        self.time += delta
        return TimestepBlock(delta=delta, time=self.time, offset=offset, index=index)
