#!/usr/bin/env python3
"""
svcb_container.py - Container dispatcher for SVCB trace files

Header (revision 1):
    Magic      4 bytes   b'svcb'
    Version    u32 LE    only 1 is defined
    Timescale  u128 LE   femtoseconds per timestep

The remaining bytes are the block stream (see block_stream.py). Version
dispatch happens here and only here; a new revision registers its header
reader in REVISIONS.

Usage:
    from svcb_container import open_trace

    with open('trace.svcb', 'rb') as f:
        trace = open_trace(f)
        for event in trace.value_changes():
            print(event.time, event.storage_id, event.values)
"""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Tuple, Union

import yaml

from block_stream import Block, BlockStream, StreamState, ValueChangeBlock
from schema_registry import SchemaRegistry
from svcb_codec import ByteReader, ByteSource
from svcb_errors import BadMagicError, SvcbError, UnsupportedVersionError


MAGIC = b'svcb'
FEMTOSECONDS_PER_SECOND = 10 ** 15


@dataclass
class DecodeOptions:
    """Decoder policy knobs."""
    allow_zero_timestep: bool = True
    log_declarations: bool = True


def load_options(path_or_dict: Union[str, Path, Mapping[str, Any], None]) -> DecodeOptions:
    """Build DecodeOptions from a mapping or a YAML file; unknown keys are rejected."""
    if path_or_dict is None:
        return DecodeOptions()
    if isinstance(path_or_dict, Mapping):
        raw = dict(path_or_dict)
    else:
        raw = yaml.safe_load(Path(path_or_dict).read_text()) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Options file {path_or_dict} must contain a mapping")

    known = {f.name for f in fields(DecodeOptions)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown decode options: {', '.join(unknown)}")
    for key, value in raw.items():
        if not isinstance(value, bool):
            raise ValueError(f"Decode option {key} must be true or false, got {value!r}")
    return DecodeOptions(**raw)


@dataclass(frozen=True)
class ValueChangeEvent:
    time: int
    storage_id: int
    values: Tuple[int, ...]


def _read_revision_1(reader: ByteReader) -> Dict[str, Any]:
    return {'timescale': reader.read_u128()}


# version -> header remainder reader
REVISIONS: Dict[int, Callable[[ByteReader], Dict[str, Any]]] = {
    1: _read_revision_1,
}


class TraceContainer:
    """An opened SVCB stream: header fields plus the lazy block sequence."""

    def __init__(self, source: ByteSource, options: Optional[DecodeOptions] = None):
        self.options = options or DecodeOptions()
        self.registry = SchemaRegistry()
        self.reader = ByteReader(source)
        self.version: Optional[int] = None
        self._timescale: Optional[int] = None
        self._header_state = StreamState.AWAIT_MAGIC
        self._stream: Optional[BlockStream] = None

    def _read_header(self) -> None:
        try:
            magic = self.reader.read(len(MAGIC))
            if magic != MAGIC:
                raise BadMagicError(f"Invalid magic: {magic!r}", offset=0)
            self._header_state = StreamState.AWAIT_VERSION

            version_offset = self.reader.offset
            version = self.reader.read_u32()
            if version not in REVISIONS:
                raise UnsupportedVersionError(
                    f"Unsupported version: {version}", offset=version_offset)
            self.version = version
            header = REVISIONS[version](self.reader)
        except SvcbError:
            self._header_state = StreamState.ERROR
            raise

        self._timescale = header['timescale']
        self._stream = BlockStream(
            self.reader, self.registry,
            allow_zero_timestep=self.options.allow_zero_timestep,
            log_declarations=self.options.log_declarations,
        )

    @property
    def state(self) -> StreamState:
        if self._stream is None:
            return self._header_state
        return self._stream.state

    @property
    def time(self) -> int:
        """Running absolute time in timesteps."""
        return self._stream.time if self._stream else 0

    def timescale(self) -> int:
        """Femtoseconds per timestep."""
        return self._timescale

    def time_in_seconds(self, time: int) -> float:
        return time * self._timescale / FEMTOSECONDS_PER_SECOND

    def next_block(self) -> Optional[Block]:
        """Next decoded block, or None at end of stream."""
        return self._stream.next_block()

    def __iter__(self) -> Iterator[Block]:
        return iter(self._stream)

    def value_changes(self) -> Iterator[ValueChangeEvent]:
        """Flatten the remaining stream into per-storage value change events."""
        for block in self:
            if isinstance(block, ValueChangeBlock):
                for change in block.changes:
                    yield ValueChangeEvent(time=block.time,
                                           storage_id=change.storage_id,
                                           values=change.values)


def open_trace(source: ByteSource, options: Optional[DecodeOptions] = None) -> TraceContainer:
    """Validate the header of `source` and return a container positioned at the first block."""
    container = TraceContainer(source, options)
    container._read_header()
    return container
