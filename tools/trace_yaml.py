#!/usr/bin/env python3
"""
trace_yaml.py - Human-editable YAML description of an SVCB trace

Document shape:

    timescale: 1000            # femtoseconds per timestep
    scopes:
      - {id: 1, name: top}
      - {id: 2, name: cpu, parent: 1}
    storages:
      - {id: 0, kind: two, width: 1}
      - {id: 1, kind: four, width: 8, start: 0}
    variables:
      - {scope: 1, name: clk, storage: 0}                       # interpretation: none
      - {scope: 2, name: msg, interpretation: utf8, storage: 3}
      - {scope: 2, name: state, interpretation: enum, storage: 2,
         enum: [{name: IDLE, value: "0b00"}, {name: RUN, value: "0b01"}]}
      - {scope: 2, name: pc, interpretation: integer, storages: [1],
         msb: 7, lsb: 0, signed: false}
    timeline:
      - delta: 0
        changes: {0: "0b1", 1: "0q00001111"}
      - delta: 5
        changes: {0: "0b0"}

Values are written in logic_values.format_values notation. Each timeline
entry is at most one Timestep block (`delta`) followed by at most one
ValueChange block (`changes`); an entry without `delta` continues at the
current time. `changes` is a mapping of storage id to value, or a list of
[storage id, value] pairs when the same storage changes twice in one block:

      - delta: 3
        changes: [[0, "0b1"], [0, "0b0"]]

Usage:
    from trace_yaml import load_trace, encode_trace, decode_trace

    data = encode_trace(load_trace('trace.yaml'))
    doc = decode_trace(data)
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from block_stream import ScopeBlock, StorageBlock, TimestepBlock, ValueChangeBlock, VariableBlock
from logic_values import format_values, parse_kind, parse_values
from schema_registry import Interpretation, SchemaRegistry, Variable
from svcb_codec import ByteSource
from svcb_container import DecodeOptions, open_trace
from svcb_writer import SvcbWriter


INTERPRETATION_NAMES = {
    'none': Interpretation.NONE,
    'integer': Interpretation.INTEGER,
    'enum': Interpretation.ENUM,
    'utf8': Interpretation.UTF8,
    'utf-8': Interpretation.UTF8,
}


def load_trace(path: Union[str, Path]) -> Dict[str, Any]:
    """Load a YAML trace description."""
    doc = yaml.safe_load(Path(path).read_text())
    if not isinstance(doc, dict):
        raise ValueError(f"Trace description {path} must be a mapping")
    return doc


def _parse_logic(registry: SchemaRegistry, storage_id: int, value) -> List[int]:
    kind = registry.lookup_storage(storage_id).logic_kind
    if isinstance(value, str):
        return parse_values(kind, value)
    if isinstance(value, int):
        # YAML 1.1 reads bare 0b101 as an integer
        raise ValueError(f"Value {value!r} for storage {storage_id} must be "
                         f"a quoted literal such as '0b101'")
    return [int(v) for v in value]


def _interpretation(name) -> Interpretation:
    if isinstance(name, int):
        return Interpretation.from_code(name)
    key = str(name).lower()
    if key not in INTERPRETATION_NAMES:
        raise ValueError(f"Unknown interpretation: {name}")
    return INTERPRETATION_NAMES[key]


def encode_trace(doc: Dict[str, Any], stream=None) -> Optional[bytes]:
    """Encode a trace description to SVCB.

    Returns the bytes, or None when writing to a caller-supplied stream.
    """
    w = SvcbWriter(stream, timescale=int(doc.get('timescale', 1)))

    for s in doc.get('scopes', []):
        w.scope(s['id'], s['name'], parent=s.get('parent', 0))

    for s in doc.get('storages', []):
        w.storage(s['id'], parse_kind(s.get('kind', 'two')), s['width'],
                  start=s.get('start', 0))

    for v in doc.get('variables', []):
        interp = _interpretation(v.get('interpretation', 'none'))
        scope = v.get('scope', 0)
        if interp == Interpretation.INTEGER:
            storages = v.get('storages', [v['storage']] if 'storage' in v else [])
            w.integer_variable(scope, v['name'], storages, msb=v['msb'],
                               lsb=v.get('lsb', 0), signed=bool(v.get('signed', False)))
        elif interp == Interpretation.ENUM:
            fields = [(f['name'], _parse_logic(w.registry, v['storage'], f['value']))
                      for f in v.get('enum', [])]
            w.enum_variable(scope, v['name'], v['storage'], fields)
        elif interp == Interpretation.UTF8:
            w.text_variable(scope, v['name'], v['storage'])
        else:
            w.variable(scope, v['name'], v['storage'])

    for entry in doc.get('timeline', []):
        if 'delta' in entry:
            w.timestep(int(entry['delta']))
        changes = entry.get('changes')
        if changes is None:
            continue
        pairs = changes.items() if isinstance(changes, dict) else changes
        w.value_change([(int(sid), _parse_logic(w.registry, int(sid), value))
                        for sid, value in pairs])

    if stream is None:
        return w.getvalue()
    return None


def _variable_doc(variable: Variable, registry: SchemaRegistry) -> Dict[str, Any]:
    interp = variable.interpretation
    out: Dict[str, Any] = {'scope': variable.scope_id, 'name': variable.name}
    if interp == Interpretation.INTEGER:
        out.update({
            'interpretation': 'integer',
            'storages': list(variable.storage_ids),
            'msb': variable.msb,
            'lsb': variable.lsb,
            'signed': variable.signed,
        })
        return out

    out['storage'] = variable.storage_id
    if interp == Interpretation.ENUM:
        kind = registry.lookup_storage(variable.storage_id).logic_kind
        out['interpretation'] = 'enum'
        out['enum'] = [{'name': ef.name, 'value': format_values(kind, ef.value)}
                       for ef in variable.enum_fields]
    elif interp == Interpretation.UTF8:
        out['interpretation'] = 'utf8'
    return out


def _changes_doc(block: ValueChangeBlock,
                 registry: SchemaRegistry) -> Union[Dict[int, str], List[list]]:
    pairs = []
    for change in block.changes:
        kind = registry.lookup_storage(change.storage_id).logic_kind
        pairs.append([change.storage_id, format_values(kind, change.values)])
    if len({sid for sid, _ in pairs}) == len(pairs):
        return dict(pairs)
    return pairs


def decode_trace(source: ByteSource,
                 options: Optional[DecodeOptions] = None) -> Dict[str, Any]:
    """Decode an SVCB stream into a trace description."""
    trace = open_trace(source, options)
    registry = trace.registry
    doc: Dict[str, Any] = {
        'timescale': trace.timescale(),
        'scopes': [],
        'storages': [],
        'variables': [],
        'timeline': [],
    }
    current: Optional[Dict[str, Any]] = None

    for block in trace:
        if isinstance(block, ScopeBlock):
            scope = {'id': block.scope.scope_id, 'name': block.scope.name}
            if block.scope.parent_scope_id:
                scope['parent'] = block.scope.parent_scope_id
            doc['scopes'].append(scope)
        elif isinstance(block, StorageBlock):
            s = block.storage
            doc['storages'].append({'id': s.id, 'kind': s.logic_kind.label,
                                    'width': s.width, 'start': s.start})
        elif isinstance(block, VariableBlock):
            doc['variables'].append(_variable_doc(block.variable, registry))
        elif isinstance(block, TimestepBlock):
            current = {'delta': block.delta}
            doc['timeline'].append(current)
        elif isinstance(block, ValueChangeBlock):
            if current is None or 'changes' in current:
                current = {}
                doc['timeline'].append(current)
            current['changes'] = _changes_doc(block, registry)

    return doc


def dump_trace(doc: Dict[str, Any]) -> str:
    return yaml.safe_dump(doc, sort_keys=False, default_flow_style=None)
