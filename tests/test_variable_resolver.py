"""
Tests for typed variable resolution.
"""

import sys
from pathlib import Path

import pytest

# Add tools to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'tools'))

from logic_values import LogicKind, NineValue
from schema_registry import Interpretation, SchemaRegistry, Scope, Signedness, Storage, Variable
from svcb_container import open_trace
from svcb_errors import InvalidUtf8Error, UnknownReferenceError, WidthMismatchError
from variable_resolver import (
    EnumNoMatch, EnumValue, IndeterminateValue, IntegerValue, RawValue, TextValue,
    ValueTable, resolve_variable,
)


def _bits(text):
    return [int(c) for c in text]


def _registry(*storages):
    reg = SchemaRegistry()
    reg.declare_scope(Scope(scope_id=1, parent_scope_id=0, name='top'))
    for sid, kind, width in storages:
        reg.declare_storage(Storage(id=sid, logic_kind=kind, width=width))
    return reg


def _integer(storages, msb, lsb=0, signed=False):
    return Variable(scope_id=1, name='n', interpretation=Interpretation.INTEGER,
                    storage_ids=tuple(storages), msb=msb, lsb=lsb,
                    signedness=Signedness.SIGNED if signed else Signedness.UNSIGNED)


class TestInteger:
    """Tests for integer interpretation."""

    def test_two_storages_unsigned(self):
        reg = _registry((0, LogicKind.TWO_VALUED, 4), (1, LogicKind.TWO_VALUED, 4))
        current = {0: _bits('1111'), 1: _bits('1010')}
        result = resolve_variable(_integer([0, 1], msb=7), reg, current)
        assert result == IntegerValue(value=250, width=8, signed=False)

    def test_two_storages_signed(self):
        """Same bits, only the top bit's weight changes."""
        reg = _registry((0, LogicKind.TWO_VALUED, 4), (1, LogicKind.TWO_VALUED, 4))
        current = {0: _bits('1111'), 1: _bits('1010')}
        result = resolve_variable(_integer([0, 1], msb=7, signed=True), reg, current)
        assert result == IntegerValue(value=-6, width=8, signed=True)

    def test_first_storage_most_significant(self):
        reg = _registry((0, LogicKind.TWO_VALUED, 8), (1, LogicKind.TWO_VALUED, 8))
        current = {0: _bits('00001111'), 1: _bits('00001010')}
        assert resolve_variable(_integer([0, 1], msb=15), reg, current).value == 0x0F0A
        assert resolve_variable(_integer([0, 1], msb=15, signed=True),
                                reg, current).value == 0x0F0A

    def test_low_bits_only(self):
        reg = _registry((0, LogicKind.TWO_VALUED, 8))
        current = {0: _bits('10100110')}
        result = resolve_variable(_integer([0], msb=3), reg, current)
        assert result.value == 6
        assert result.width == 4

    def test_unknown_bit_is_indeterminate(self):
        reg = _registry((0, LogicKind.FOUR_VALUED, 4))
        result = resolve_variable(_integer([0], msb=3), reg, {0: [0, 1, 2, 1]})
        assert result == IndeterminateValue(kind=LogicKind.FOUR_VALUED, values=(0, 1, 2, 1))
        assert str(result) == '0q0121'

    def test_unknown_bit_outside_range_is_ignored(self):
        reg = _registry((0, LogicKind.FOUR_VALUED, 4))
        result = resolve_variable(_integer([0], msb=1), reg, {0: [3, 2, 1, 0]})
        assert result.value == 2

    def test_nine_valued_drive_states(self):
        """Weak and unknown-drive states still carry a bit value."""
        reg = _registry((0, LogicKind.NINE_VALUED, 3))
        current = {0: [NineValue.WEAK_1, NineValue.UNKNOWN_DRIVE_0, NineValue.UNKNOWN_DRIVE_1]}
        assert resolve_variable(_integer([0], msb=2), reg, current).value == 0b101

    def test_nine_valued_high_impedance(self):
        reg = _registry((0, LogicKind.NINE_VALUED, 2))
        current = {0: [NineValue.STRONG_1, NineValue.HIGH_IMPEDANCE]}
        assert isinstance(resolve_variable(_integer([0], msb=1), reg, current),
                          IndeterminateValue)

    def test_mixed_kinds_report_widest(self):
        reg = _registry((0, LogicKind.TWO_VALUED, 2), (1, LogicKind.FOUR_VALUED, 2))
        result = resolve_variable(_integer([0, 1], msb=3), reg, {0: [1, 1], 1: [3, 0]})
        assert result.kind == LogicKind.FOUR_VALUED


class TestEnum:
    """Tests for enum interpretation."""

    @pytest.fixture
    def reg_and_var(self, writer):
        writer.scope(1, 'top')
        writer.storage(0, LogicKind.TWO_VALUED, 2)
        writer.enum_variable(1, 'state', 0, [('IDLE', [0, 0]), ('RUN', [0, 1])])
        return writer.registry, writer.registry.lookup_variable(0)

    def test_match(self, reg_and_var):
        reg, var = reg_and_var
        assert resolve_variable(var, reg, {0: [0, 1]}) == EnumValue(name='RUN', index=1)

    def test_no_match_is_not_an_error(self, reg_and_var):
        reg, var = reg_and_var
        result = resolve_variable(var, reg, {0: [1, 1]})
        assert result == EnumNoMatch(values=(1, 1))
        assert str(result) == '0b11 (no match)'


class TestText:
    """Tests for UTF-8 interpretation."""

    def _text_var(self):
        return Variable(scope_id=1, name='msg', interpretation=Interpretation.UTF8,
                        storage_ids=(0,))

    def test_msb_first_bytes(self):
        reg = _registry((0, LogicKind.TWO_VALUED, 16))
        current = {0: _bits('0110100001101001')}
        assert resolve_variable(self._text_var(), reg, current) == TextValue('hi')

    def test_partial_byte(self):
        reg = _registry((0, LogicKind.TWO_VALUED, 12))
        with pytest.raises(WidthMismatchError):
            resolve_variable(self._text_var(), reg, {0: [0] * 12})

    def test_invalid_utf8(self):
        reg = _registry((0, LogicKind.TWO_VALUED, 8))
        with pytest.raises(InvalidUtf8Error):
            resolve_variable(self._text_var(), reg, {0: _bits('11111111')})

    def test_high_impedance_text(self):
        reg = _registry((0, LogicKind.FOUR_VALUED, 8))
        result = resolve_variable(self._text_var(), reg, {0: [3] * 8})
        assert isinstance(result, IndeterminateValue)


class TestRaw:
    """Tests for uninterpreted variables."""

    def test_raw_value(self):
        reg = _registry((0, LogicKind.FOUR_VALUED, 3))
        var = Variable(scope_id=1, name='bus', interpretation=Interpretation.NONE,
                       storage_ids=(0,))
        result = resolve_variable(var, reg, {0: (2, 3, 1)})
        assert result == RawValue(kind=LogicKind.FOUR_VALUED, values=(2, 3, 1))
        assert str(result) == '0q231'

    def test_missing_value(self):
        reg = _registry((0, LogicKind.TWO_VALUED, 1))
        var = Variable(scope_id=1, name='clk', interpretation=Interpretation.NONE,
                       storage_ids=(0,))
        with pytest.raises(UnknownReferenceError):
            resolve_variable(var, reg, {})

    def test_wrong_length(self):
        reg = _registry((0, LogicKind.TWO_VALUED, 2))
        var = Variable(scope_id=1, name='clk', interpretation=Interpretation.NONE,
                       storage_ids=(0,))
        with pytest.raises(WidthMismatchError):
            resolve_variable(var, reg, {0: [1]})


class TestValueTable:
    """Tests for tracking current values while streaming."""

    def test_latest_value_wins(self, cpu_writer):
        cpu_writer.timestep(1)
        cpu_writer.value_change({2: [0, 0, 0, 1], 3: [0, 0, 1, 0], 1: [0, 0]})
        cpu_writer.timestep(4)
        cpu_writer.value_change({3: [1, 1, 1, 1], 1: [1, 0]})

        trace = open_trace(cpu_writer.getvalue())
        table = ValueTable()
        for block in trace:
            table.apply(block)

        assert len(table) == 3
        assert table[3] == (1, 1, 1, 1)
        assert table.times == {2: 1, 3: 5, 1: 5}
        assert table.resolve(trace.registry, 2) == IntegerValue(0x1F, 8, False)
        assert str(table.resolve(trace.registry, 1)) == 'HALT'
        assert 0 not in table

    def test_registry_resolve(self, cpu_writer):
        assert str(cpu_writer.registry.resolve(3, {4: [0, 1, 1, 1]})) == '0q0111'
