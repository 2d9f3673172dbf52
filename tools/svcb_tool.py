#!/usr/bin/env python3
"""
svcb_tool.py - Command line front end for SVCB traces

Usage:
  # Encode a YAML trace description to SVCB
  python svcb_tool.py encode trace.yaml -o trace.svcb

  # Decode SVCB back to a YAML trace description
  python svcb_tool.py decode trace.svcb -o trace.yaml

  # Print the timeline as it decodes (optionally with typed values), then the scope tree
  python svcb_tool.py dump trace.svcb --resolve
  python svcb_tool.py dump trace.svcb --json

  # Header and schema counts
  python svcb_tool.py info trace.svcb

Exit status is 0 on success and 1 when the input is malformed.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from block_stream import ValueChangeBlock
from logic_values import format_values
from schema_registry import SchemaRegistry
from svcb_container import load_options, open_trace
from svcb_errors import SvcbError
from trace_yaml import decode_trace, dump_trace, encode_trace
from variable_resolver import ValueTable


log = logging.getLogger('svcb.tool')


def _storage_variables(registry: SchemaRegistry) -> Dict[int, List[int]]:
    """storage id -> ids of the variables that read it."""
    index: Dict[int, List[int]] = {}
    for variable_id, variable in enumerate(registry.variables):
        for sid in variable.storage_ids:
            index.setdefault(sid, []).append(variable_id)
    return index


def format_tree(registry: SchemaRegistry) -> List[str]:
    lines = []

    def emit_variables(scope_id: int, depth: int) -> None:
        for variable_id in registry.variables_in(scope_id):
            v = registry.lookup_variable(variable_id)
            storages = ','.join(str(s) for s in v.storage_ids)
            lines.append(f"{'  ' * depth}{v.name} [{v.interpretation.name.lower()}"
                         f" storage {storages}]")

    emit_variables(0, 0)
    for depth, scope in registry.walk():
        lines.append(f"{'  ' * depth}{scope.name}/")
        emit_variables(scope.scope_id, depth + 1)
    return lines


def cmd_encode(args) -> int:
    doc = yaml.safe_load(args.input.read_text())
    data = encode_trace(doc)
    if args.output:
        args.output.write_bytes(data)
        log.info("encoded to %s (%d bytes)", args.output, len(data))
    else:
        print(data.hex())
    return 0


def cmd_decode(args) -> int:
    with open(args.input, 'rb') as f:
        doc = decode_trace(f, load_options(args.options))
    output = dump_trace(doc)
    if args.output:
        args.output.write_text(output)
        log.info("decoded to %s", args.output)
    else:
        print(output, end='')
    return 0


def cmd_dump(args) -> int:
    """Print value changes as they are decoded, then the scope tree.

    Text mode holds only the schema and the latest values; --json has to
    buffer every event.
    """
    events: List[Dict[str, Any]] = []
    with open(args.input, 'rb') as f:
        trace = open_trace(f, load_options(args.options))
        registry = trace.registry
        table = ValueTable()
        readers: Dict[int, List[int]] = {}
        indexed = 0

        if not args.json:
            print(f"timescale: {trace.timescale()} fs/step")

        for block in trace:
            if not isinstance(block, ValueChangeBlock):
                continue
            table.apply(block)
            if args.resolve and indexed != registry.variable_count:
                readers = _storage_variables(registry)
                indexed = registry.variable_count
            for change in block.changes:
                kind = registry.lookup_storage(change.storage_id).logic_kind
                event: Dict[str, Any] = {
                    'time': block.time,
                    'storage': change.storage_id,
                    'value': format_values(kind, change.values),
                }
                if args.resolve:
                    resolved = {}
                    for variable_id in readers.get(change.storage_id, []):
                        variable = registry.lookup_variable(variable_id)
                        # multi-storage integers wait until every part has a value
                        if not all(sid in table for sid in variable.storage_ids):
                            continue
                        value = table.resolve(registry, variable_id)
                        resolved[registry.variable_path(variable_id)] = str(value)
                    event['variables'] = resolved
                if args.json:
                    events.append(event)
                else:
                    print(f"@{event['time']} storage {event['storage']} = {event['value']}")
                    for path, value in event.get('variables', {}).items():
                        print(f"    {path} = {value}")

    if args.json:
        print(json.dumps({
            'timescale_fs': trace.timescale(),
            'schema': registry.summary(),
            'events': events,
        }, indent=2))
        return 0

    print('-' * 40)
    for line in format_tree(registry):
        print(line)
    return 0


def cmd_info(args) -> int:
    with open(args.input, 'rb') as f:
        trace = open_trace(f, load_options(args.options))
        blocks: Dict[str, int] = {}
        for block in trace:
            name = block.block_type.name.lower()
            blocks[name] = blocks.get(name, 0) + 1

    info = {
        'version': trace.version,
        'timescale_fs': trace.timescale(),
        'final_time': trace.time,
        'duration_s': trace.time_in_seconds(trace.time),
        'blocks': blocks,
    }
    info.update(trace.registry.summary())
    for key, value in info.items():
        print(f"{key}: {value}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='SVCB trace encoder/decoder')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Debug logging (declarations, stream totals)')
    subparsers = parser.add_subparsers(dest='command', required=True)

    enc = subparsers.add_parser('encode', help='Encode YAML trace description to SVCB')
    enc.add_argument('input', type=Path, help='Input YAML file')
    enc.add_argument('-o', '--output', type=Path, help='Output SVCB file')
    enc.set_defaults(func=cmd_encode)

    for name, func, help_text in (
        ('decode', cmd_decode, 'Decode SVCB to a YAML trace description'),
        ('dump', cmd_dump, 'Print scope tree and value changes'),
        ('info', cmd_info, 'Show header and schema counts'),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument('input', type=Path, help='Input SVCB file')
        sub.add_argument('--options', type=Path,
                         help='YAML file with decode options')
        sub.set_defaults(func=func)
        if name == 'decode':
            sub.add_argument('-o', '--output', type=Path, help='Output YAML file')
        if name == 'dump':
            sub.add_argument('--json', action='store_true', help='Output as JSON')
            sub.add_argument('--resolve', action='store_true',
                             help='Show typed variable values for each change')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(levelname)s %(name)s: %(message)s')
    try:
        return args.func(args)
    except SvcbError as e:
        print(f"Error: {e.kind}: {e}", file=sys.stderr)
        return 1
    except (OSError, ValueError, KeyError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
