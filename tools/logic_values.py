#!/usr/bin/env python3
"""
logic_values.py - Multi-valued logic alphabets for SVCB storages

Each storage declares a logic kind which fixes the alphabet and the packed
bit width of its raw values:

    kind          code  bits  prefix  alphabet
    two-valued    0     1     0b      0 1
    four-valued   1     2     0q      0 1 x z
    nine-valued   2     4     0z      strong/weak 0 and 1, strong/weak
                                      unknown, unknown-drive 0/1, high-z

Values are handled as plain lists of integer codes; the IntEnums below name
those codes. Formatting writes one digit per value after the kind's prefix,
e.g. "0b1010", "0q0123", "0z0184".
"""

from enum import IntEnum
from typing import Dict, Iterable, List, Optional, Sequence

from svcb_codec import pack_bits, unpack_bits
from svcb_errors import InvalidLogicKindError, InvalidLogicValueError


class TwoValue(IntEnum):
    ZERO = 0
    ONE = 1


class FourValue(IntEnum):
    ZERO = 0
    ONE = 1
    UNKNOWN = 2
    HIGH_IMPEDANCE = 3


class NineValue(IntEnum):
    STRONG_0 = 0
    STRONG_1 = 1
    WEAK_0 = 2
    WEAK_1 = 3
    STRONG_UNKNOWN = 4
    WEAK_UNKNOWN = 5
    UNKNOWN_DRIVE_0 = 6
    UNKNOWN_DRIVE_1 = 7
    HIGH_IMPEDANCE = 8


class LogicKind(IntEnum):
    """Storage logic kind (wire code)."""
    TWO_VALUED = 0
    FOUR_VALUED = 1
    NINE_VALUED = 2

    @classmethod
    def from_code(cls, code: int) -> 'LogicKind':
        try:
            return cls(code)
        except ValueError:
            raise InvalidLogicKindError(f"Invalid logic kind: {code}") from None

    @property
    def bits(self) -> int:
        return _BITS[self]

    @property
    def alphabet(self) -> type:
        return _ALPHABETS[self]

    @property
    def prefix(self) -> str:
        return _PREFIXES[self]

    @property
    def label(self) -> str:
        return _LABELS[self]


_BITS = {
    LogicKind.TWO_VALUED: 1,
    LogicKind.FOUR_VALUED: 2,
    LogicKind.NINE_VALUED: 4,
}

_ALPHABETS = {
    LogicKind.TWO_VALUED: TwoValue,
    LogicKind.FOUR_VALUED: FourValue,
    LogicKind.NINE_VALUED: NineValue,
}

_PREFIXES = {
    LogicKind.TWO_VALUED: '0b',
    LogicKind.FOUR_VALUED: '0q',
    LogicKind.NINE_VALUED: '0z',
}

_LABELS = {
    LogicKind.TWO_VALUED: 'two',
    LogicKind.FOUR_VALUED: 'four',
    LogicKind.NINE_VALUED: 'nine',
}

# Numeric meaning of each code; None = no numeric meaning (unknown / high-z).
# Unknown-drive 0/1 only lack a known strength, so they keep their value.
_BIT_VALUES: Dict[LogicKind, Dict[int, Optional[int]]] = {
    LogicKind.TWO_VALUED: {0: 0, 1: 1},
    LogicKind.FOUR_VALUED: {0: 0, 1: 1, 2: None, 3: None},
    LogicKind.NINE_VALUED: {
        NineValue.STRONG_0: 0,
        NineValue.STRONG_1: 1,
        NineValue.WEAK_0: 0,
        NineValue.WEAK_1: 1,
        NineValue.STRONG_UNKNOWN: None,
        NineValue.WEAK_UNKNOWN: None,
        NineValue.UNKNOWN_DRIVE_0: 0,
        NineValue.UNKNOWN_DRIVE_1: 1,
        NineValue.HIGH_IMPEDANCE: None,
    },
}

KIND_BY_LABEL = {label: kind for kind, label in _LABELS.items()}


def parse_kind(name) -> LogicKind:
    """Accept 'two'/'four'/'nine', 'two-valued', a LogicKind or a wire code."""
    if isinstance(name, int):
        return LogicKind.from_code(name)
    key = str(name).lower().replace('_', '-')
    if key.endswith('-valued'):
        key = key[:-len('-valued')]
    if key not in KIND_BY_LABEL:
        raise InvalidLogicKindError(f"Invalid logic kind: {name}")
    return KIND_BY_LABEL[key]


def check_values(kind: LogicKind, values: Iterable[int]) -> List[int]:
    """Validate codes against the kind's alphabet."""
    limit = len(kind.alphabet)
    checked = []
    for i, v in enumerate(values):
        if not 0 <= v < limit:
            raise InvalidLogicValueError(
                f"Code {v} at index {i} is not a {kind.label}-valued logic value")
        checked.append(int(v))
    return checked


def decode_values(kind: LogicKind, data: bytes, count: int) -> List[int]:
    return check_values(kind, unpack_bits(data, count, kind.bits))


def encode_values(kind: LogicKind, values: Sequence[int]) -> bytes:
    return pack_bits(check_values(kind, values), kind.bits)


def logic_bit(kind: LogicKind, code: int) -> Optional[int]:
    """Numeric bit for a code, or None when the state has no numeric meaning."""
    return _BIT_VALUES[kind][code]


def is_determinate(kind: LogicKind, values: Iterable[int]) -> bool:
    return all(logic_bit(kind, v) is not None for v in values)


def format_values(kind: LogicKind, values: Sequence[int]) -> str:
    return kind.prefix + ''.join(str(v) for v in values)


def parse_values(kind: LogicKind, text: str) -> List[int]:
    """Inverse of format_values; the prefix is optional."""
    text = text.strip()
    if text.startswith(kind.prefix):
        text = text[len(kind.prefix):]
    text = text.replace('_', '')
    if not text.isdigit() and text:
        raise InvalidLogicValueError(f"Invalid {kind.label}-valued literal: {text!r}")
    return check_values(kind, [int(c) for c in text])
