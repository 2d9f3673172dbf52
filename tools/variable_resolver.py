#!/usr/bin/env python3
"""
variable_resolver.py - Typed values for SVCB variables

Turns the raw logic values of a variable's storages into a typed result:

    interpretation  result
    None            RawValue       storage codes unchanged
    UTF-8           TextValue      storage bits, MSB first, 8 per byte
    Enum            EnumValue      first enum field whose vector matches
                    EnumNoMatch    nothing matched (not an error)
    Integer         IntegerValue   concatenated storages, low msb-lsb+1 bits
    (any)           IndeterminateValue  unknown/high-z bits with no number

The caller supplies the current raw values (storage id -> sequence of logic
codes, element 0 = most significant). ValueTable keeps such a mapping up to
date from decoded ValueChange blocks.

Usage:
    table = ValueTable()
    for block in container:
        table.apply(block)
    print(table.resolve(container.registry, variable_id=0))
"""

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from block_stream import ValueChangeBlock
from logic_values import LogicKind, format_values, logic_bit
from schema_registry import Interpretation, SchemaRegistry, Storage, Variable
from svcb_errors import InvalidUtf8Error, UnknownReferenceError, WidthMismatchError


@dataclass(frozen=True)
class RawValue:
    kind: LogicKind
    values: Tuple[int, ...]

    def __str__(self) -> str:
        return format_values(self.kind, self.values)


@dataclass(frozen=True)
class TextValue:
    text: str

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class IntegerValue:
    value: int
    width: int
    signed: bool

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class EnumValue:
    name: str
    index: int

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class EnumNoMatch:
    values: Tuple[int, ...]

    def __str__(self) -> str:
        return format_values(LogicKind.TWO_VALUED, self.values) + ' (no match)'


@dataclass(frozen=True)
class IndeterminateValue:
    """Value contains states with no numeric meaning (x, z, ...)."""
    kind: LogicKind
    values: Tuple[int, ...]

    def __str__(self) -> str:
        return format_values(self.kind, self.values)


ResolvedValue = Union[RawValue, TextValue, IntegerValue, EnumValue,
                      EnumNoMatch, IndeterminateValue]


def _storage_values(storage: Storage,
                    current: Mapping[int, Sequence[int]]) -> Tuple[int, ...]:
    if storage.id not in current:
        raise UnknownReferenceError(f"No current value for storage {storage.id}")
    values = tuple(current[storage.id])
    if len(values) != storage.width:
        raise WidthMismatchError(
            f"Storage {storage.id} has width {storage.width}, "
            f"value has {len(values)} elements")
    return values


def _resolve_integer(variable: Variable, storages: List[Storage],
                     current: Mapping[int, Sequence[int]]) -> ResolvedValue:
    codes: List[int] = []
    bits: List[Optional[int]] = []
    for storage in storages:
        values = _storage_values(storage, current)
        codes.extend(values)
        bits.extend(logic_bit(storage.logic_kind, v) for v in values)

    width = variable.bit_width
    codes = codes[-width:]
    bits = bits[-width:]
    if any(b is None for b in bits):
        kind = max(s.logic_kind for s in storages)
        return IndeterminateValue(kind=kind, values=tuple(codes))

    value = 0
    for b in bits:
        value = (value << 1) | b
    if variable.signed and bits[0] == 1:
        value -= 1 << width
    return IntegerValue(value=value, width=width, signed=variable.signed)


def _resolve_enum(variable: Variable, storage: Storage,
                  current: Mapping[int, Sequence[int]]) -> ResolvedValue:
    values = _storage_values(storage, current)
    for index, ef in enumerate(variable.enum_fields):
        if ef.value == values:
            return EnumValue(name=ef.name, index=index)
    return EnumNoMatch(values=values)


def _resolve_text(storage: Storage,
                  current: Mapping[int, Sequence[int]]) -> ResolvedValue:
    values = _storage_values(storage, current)
    if storage.width % 8:
        raise WidthMismatchError(
            f"UTF-8 storage {storage.id} width {storage.width} is not a whole "
            f"number of bytes")
    bits = [logic_bit(storage.logic_kind, v) for v in values]
    if any(b is None for b in bits):
        return IndeterminateValue(kind=storage.logic_kind, values=values)

    raw = bytearray()
    for i in range(0, len(bits), 8):
        byte = 0
        for b in bits[i:i + 8]:
            byte = (byte << 1) | b
        raw.append(byte)
    try:
        return TextValue(text=raw.decode('utf-8'))
    except UnicodeDecodeError as e:
        raise InvalidUtf8Error(
            f"Storage {storage.id} does not hold valid UTF-8: {e.reason}") from e


def resolve_variable(variable: Variable, registry: SchemaRegistry,
                     current_storage_values: Mapping[int, Sequence[int]]) -> ResolvedValue:
    """Compute the typed value of `variable` from raw storage values."""
    storages = [registry.lookup_storage(sid) for sid in variable.storage_ids]
    interp = variable.interpretation

    if interp == Interpretation.INTEGER:
        return _resolve_integer(variable, storages, current_storage_values)
    if interp == Interpretation.ENUM:
        return _resolve_enum(variable, storages[0], current_storage_values)
    if interp == Interpretation.UTF8:
        return _resolve_text(storages[0], current_storage_values)
    storage = storages[0]
    return RawValue(kind=storage.logic_kind,
                    values=_storage_values(storage, current_storage_values))


class ValueTable:
    """Latest raw value per storage, fed from decoded blocks."""

    def __init__(self):
        self.values: Dict[int, Tuple[int, ...]] = {}
        self.times: Dict[int, int] = {}

    def apply(self, block) -> None:
        """Record the changes of a ValueChange block; other blocks are ignored."""
        if not isinstance(block, ValueChangeBlock):
            return
        for change in block.changes:
            self.values[change.storage_id] = change.values
            self.times[change.storage_id] = block.time

    def __contains__(self, storage_id: int) -> bool:
        return storage_id in self.values

    def __getitem__(self, storage_id: int) -> Tuple[int, ...]:
        return self.values[storage_id]

    def __len__(self) -> int:
        return len(self.values)

    def resolve(self, registry: SchemaRegistry, variable_id: int) -> ResolvedValue:
        return registry.resolve(variable_id, self.values)
