"""
Tests for the YAML trace description (encode/decode through SVCB).
"""

import sys
from pathlib import Path

import pytest
import yaml

# Add tools to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'tools'))

from logic_values import LogicKind
from schema_registry import Interpretation
from svcb_container import open_trace
from svcb_errors import InvalidLogicValueError, UnknownReferenceError
from trace_yaml import decode_trace, dump_trace, encode_trace, load_trace
from variable_resolver import ValueTable


CPU_TRACE = """\
timescale: 1000
scopes:
  - {id: 1, name: top}
  - {id: 2, name: cpu, parent: 1}
storages:
  - {id: 0, kind: two, width: 1}
  - {id: 1, kind: two, width: 2}
  - {id: 2, kind: four, width: 4}
  - {id: 3, kind: two, width: 16}
variables:
  - {scope: 1, name: clk, storage: 0}
  - {scope: 2, name: state, interpretation: enum, storage: 1,
     enum: [{name: IDLE, value: "0b00"}, {name: RUN, value: "0b01"}]}
  - {scope: 2, name: bus, interpretation: integer, storages: [2], msb: 3, signed: true}
  - {scope: 2, name: msg, interpretation: utf8, storage: 3}
timeline:
  - delta: 0
    changes: {0: "0b1", 1: "0b01", 2: "0q0011", 3: "0b0110100001101001"}
  - delta: 5
    changes: {0: "0b0", 2: "0q1110"}
"""


@pytest.fixture
def cpu_doc():
    return yaml.safe_load(CPU_TRACE)


@pytest.fixture
def cpu_yaml(tmp_path):
    path = tmp_path / 'cpu.yaml'
    path.write_text(CPU_TRACE)
    return path


class TestEncode:
    """Tests for YAML -> SVCB."""

    def test_schema(self, cpu_doc):
        trace = open_trace(encode_trace(cpu_doc))
        list(trace)
        reg = trace.registry
        assert trace.timescale() == 1000
        assert reg.variable_path(1) == 'top.cpu.state'
        assert reg.lookup_storage(2).logic_kind == LogicKind.FOUR_VALUED
        bus = reg.lookup_variable(2)
        assert bus.interpretation == Interpretation.INTEGER
        assert bus.signed
        assert reg.lookup_variable(3).interpretation == Interpretation.UTF8

    def test_resolved_values(self, cpu_doc):
        trace = open_trace(encode_trace(cpu_doc))
        table = ValueTable()
        snapshots = []
        for block in trace:
            table.apply(block)
            if block.block_type.name == 'VALUE_CHANGE':
                snapshots.append({path: str(table.resolve(trace.registry, vid))
                                  for vid, path in enumerate(['clk', 'state', 'bus', 'msg'])})

        assert snapshots == [
            {'clk': '0b1', 'state': 'RUN', 'bus': '3', 'msg': 'hi'},
            {'clk': '0b0', 'state': 'RUN', 'bus': '-2', 'msg': 'hi'},
        ]

    def test_load_trace_file(self, cpu_yaml, cpu_doc):
        assert load_trace(cpu_yaml) == cpu_doc

    def test_load_trace_not_a_mapping(self, tmp_path):
        path = tmp_path / 'list.yaml'
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError, match="mapping"):
            load_trace(path)

    def test_bare_integer_literal(self, cpu_doc):
        cpu_doc['timeline'][0]['changes'][0] = 1
        with pytest.raises(ValueError, match="quoted"):
            encode_trace(cpu_doc)

    def test_value_outside_alphabet(self, cpu_doc):
        cpu_doc['timeline'][0]['changes'][0] = '0b2'
        with pytest.raises(InvalidLogicValueError):
            encode_trace(cpu_doc)

    def test_change_to_undeclared_storage(self, cpu_doc):
        cpu_doc['timeline'][1]['changes'][9] = '0b1'
        with pytest.raises(UnknownReferenceError):
            encode_trace(cpu_doc)

    def test_unknown_interpretation(self, cpu_doc):
        cpu_doc['variables'][0]['interpretation'] = 'float'
        with pytest.raises(ValueError, match="float"):
            encode_trace(cpu_doc)


class TestDecode:
    """Tests for SVCB -> YAML."""

    def test_reencode_is_byte_identical(self, cpu_doc):
        data = encode_trace(cpu_doc)
        assert encode_trace(decode_trace(data)) == data

    def test_document_shape(self, cpu_doc):
        doc = decode_trace(encode_trace(cpu_doc))
        assert doc['scopes'] == [{'id': 1, 'name': 'top'},
                                 {'id': 2, 'name': 'cpu', 'parent': 1}]
        assert doc['variables'][1]['enum'] == [{'name': 'IDLE', 'value': '0b00'},
                                               {'name': 'RUN', 'value': '0b01'}]
        assert doc['timeline'][1] == {'delta': 5, 'changes': {0: '0b0', 2: '0q1110'}}

    def test_changes_before_first_timestep(self, writer):
        writer.storage(0, LogicKind.TWO_VALUED, 2)
        writer.value_change({0: [1, 0]})
        writer.timestep(3)
        doc = decode_trace(writer.getvalue())
        assert doc['timeline'] == [{'changes': {0: '0b10'}}, {'delta': 3}]
        assert encode_trace(doc) == writer.getvalue()

    def test_dump_is_loadable(self, cpu_doc):
        doc = decode_trace(encode_trace(cpu_doc))
        assert yaml.safe_load(dump_trace(doc)) == doc


class TestRepeatedChanges:
    """Tests for timelines with more than one change of a storage per time."""

    @pytest.fixture
    def glitch(self, writer):
        writer.scope(1, 'top')
        writer.storage(0, LogicKind.TWO_VALUED, 1)
        writer.variable(1, 'clk', 0)
        writer.timestep(5)
        writer.value_change({0: [1]})
        writer.value_change({0: [0]})
        return writer.getvalue()

    def test_consecutive_blocks_kept(self, glitch):
        doc = decode_trace(glitch)
        assert doc['timeline'] == [{'delta': 5, 'changes': {0: '0b1'}},
                                   {'changes': {0: '0b0'}}]

    def test_consecutive_blocks_reencode(self, glitch):
        doc = decode_trace(glitch)
        assert encode_trace(doc) == glitch
        events = list(open_trace(encode_trace(doc)).value_changes())
        assert [(e.time, e.values) for e in events] == [(5, (1,)), (5, (0,))]

    def test_same_block_as_pairs(self, writer):
        writer.storage(0, LogicKind.FOUR_VALUED, 1)
        writer.timestep(2)
        writer.value_change([(0, [3]), (0, [1])])
        data = writer.getvalue()
        doc = decode_trace(data)
        assert doc['timeline'] == [{'delta': 2, 'changes': [[0, '0q3'], [0, '0q1']]}]
        assert encode_trace(doc) == data

    def test_pairs_from_yaml(self):
        doc = yaml.safe_load("""\
storages:
  - {id: 0, kind: two, width: 2}
timeline:
  - delta: 1
    changes: [[0, "0b01"], [0, "0b10"]]
""")
        events = list(open_trace(encode_trace(doc)).value_changes())
        assert [e.values for e in events] == [(0, 1), (1, 0)]
        decoded = decode_trace(encode_trace(doc))
        assert yaml.safe_load(dump_trace(decoded)) == decoded
