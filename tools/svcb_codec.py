#!/usr/bin/env python3
"""
svcb_codec.py - Primitive codec for SVCB streams

Byte-level building blocks shared by the block reader and writer:
- Fixed-width little-endian integers (u8, u32, u64, u128)
- Varints (protobuf style: 7-bit groups, low group first, 0x80 = more)
- Sub-byte packing of 1/2/4-bit fields
- Length-prefixed containers:
    vec          u32 count + items
    compact-vec  varint count + items
    string       vec of UTF-8 bytes

Sub-byte packing:
    bits   per byte   element i lives in
    1      8          byte i//8, shift (i%8)
    2      4          byte i//4, shift (i%4)*2
    4      2          byte i//2, shift (i%2)*4

    The last byte is zero padded. Packed runs carry no terminator, so the
    element count always comes from somewhere else (a count field or a
    storage width).

Usage:
    from svcb_codec import ByteReader, ByteWriter, pack_bits, unpack_bits

    w = ByteWriter()
    w.write_varint(300)
    r = ByteReader(w.getvalue())
    assert r.read_varint() == 300
"""

import io
import struct
from typing import BinaryIO, Callable, Iterable, List, Optional, TypeVar, Union

from svcb_errors import IntegerOverflowError, InvalidUtf8Error, TruncatedStreamError


T = TypeVar('T')

ByteSource = Union[bytes, bytearray, memoryview, BinaryIO]

VALID_PACK_WIDTHS = (1, 2, 4)

U32_BITS = 32
U64_BITS = 64


# =============================================================================
# Sub-byte packing
# =============================================================================

def packed_size(count: int, bits_per_value: int) -> int:
    """Bytes needed to hold `count` values of `bits_per_value` bits."""
    per_byte = 8 // bits_per_value
    return (count + per_byte - 1) // per_byte


def pack_bits(values: Iterable[int], bits_per_value: int) -> bytes:
    """Pack small integers densely, little-endian within each byte."""
    if bits_per_value not in VALID_PACK_WIDTHS:
        raise ValueError(f"Unsupported pack width: {bits_per_value}")
    per_byte = 8 // bits_per_value
    mask = (1 << bits_per_value) - 1

    out = bytearray()
    for i, value in enumerate(values):
        if value < 0 or value > mask:
            raise ValueError(f"Value {value} does not fit in {bits_per_value} bits")
        slot = i % per_byte
        if slot == 0:
            out.append(0)
        out[-1] |= value << (slot * bits_per_value)
    return bytes(out)


def unpack_bits(data: bytes, count: int, bits_per_value: int) -> List[int]:
    """Unpack exactly `count` values; padding bits in the final byte are ignored."""
    if bits_per_value not in VALID_PACK_WIDTHS:
        raise ValueError(f"Unsupported pack width: {bits_per_value}")
    needed = packed_size(count, bits_per_value)
    if len(data) < needed:
        raise TruncatedStreamError(
            f"Need {needed} bytes for {count} packed values, got {len(data)}")
    per_byte = 8 // bits_per_value
    mask = (1 << bits_per_value) - 1
    return [(data[i // per_byte] >> ((i % per_byte) * bits_per_value)) & mask
            for i in range(count)]


# =============================================================================
# Varint encoding
# =============================================================================

def max_varint_groups(max_bits: int) -> int:
    return (max_bits + 6) // 7


def encode_varint(value: int, max_bits: int = U64_BITS) -> bytes:
    """Encode unsigned integer as varint using the minimal number of groups."""
    if value < 0 or value >= (1 << max_bits):
        raise IntegerOverflowError(
            f"Value {value} out of range for {max_bits}-bit varint")
    result = []
    while value > 127:
        result.append((value & 0x7F) | 0x80)
        value >>= 7
    result.append(value)
    return bytes(result)


def decode_varint_bytes(data: bytes, max_bits: int = U64_BITS) -> int:
    """Decode a varint from a complete byte string."""
    return ByteReader(data).read_varint(max_bits)


# =============================================================================
# Reader
# =============================================================================

class ByteReader:
    """Sequential little-endian reader with absolute offset tracking.

    Wraps either an in-memory buffer or a binary file-like object; only
    `read()` is required of the latter, so pipes and sockets work too.
    """

    def __init__(self, source: ByteSource):
        if isinstance(source, (bytes, bytearray, memoryview)):
            self._stream = io.BytesIO(bytes(source))
        else:
            self._stream = source
        self.offset = 0

    def read(self, size: int) -> bytes:
        """Read exactly `size` bytes or raise TruncatedStreamError."""
        if size == 0:
            return b''
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = self._stream.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        data = b''.join(chunks)
        start = self.offset
        self.offset += len(data)
        if len(data) < size:
            raise TruncatedStreamError(
                f"Unexpected end of stream: need {size} bytes, got {len(data)}",
                offset=start)
        return data

    def read_tag(self) -> Optional[int]:
        """Read a one-byte tag, or None at a clean end of input."""
        b = self._stream.read(1)
        if not b:
            return None
        self.offset += 1
        return b[0]

    def read_u8(self) -> int:
        return self.read(1)[0]

    def read_u32(self) -> int:
        return struct.unpack('<I', self.read(4))[0]

    def read_u64(self) -> int:
        return struct.unpack('<Q', self.read(8))[0]

    def read_u128(self) -> int:
        return int.from_bytes(self.read(16), 'little')

    def read_varint(self, max_bits: int = U64_BITS) -> int:
        """Decode varint, rejecting values wider than `max_bits`."""
        start = self.offset
        limit = max_varint_groups(max_bits)
        result = 0
        shift = 0
        groups = 0
        while True:
            byte = self.read_u8()
            groups += 1
            result |= (byte & 0x7F) << shift
            if not (byte & 0x80):
                break
            if groups >= limit:
                raise IntegerOverflowError(
                    f"Varint longer than {limit} groups for {max_bits}-bit field",
                    offset=start)
            shift += 7
        if result >= (1 << max_bits):
            raise IntegerOverflowError(
                f"Varint value {result} exceeds {max_bits} bits", offset=start)
        return result

    def read_packed(self, count: int, bits_per_value: int) -> List[int]:
        return unpack_bits(self.read(packed_size(count, bits_per_value)),
                           count, bits_per_value)

    def read_vec(self, read_item: Callable[['ByteReader'], T]) -> List[T]:
        count = self.read_u32()
        return [read_item(self) for _ in range(count)]

    def read_compact_vec(self, read_item: Callable[['ByteReader'], T]) -> List[T]:
        count = self.read_varint(U32_BITS)
        return [read_item(self) for _ in range(count)]

    def read_string(self) -> str:
        start = self.offset
        length = self.read_u32()
        raw = self.read(length)
        try:
            return raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise InvalidUtf8Error(f"String is not valid UTF-8: {e.reason}",
                                   offset=start) from e


# =============================================================================
# Writer
# =============================================================================

class ByteWriter:
    """Mirror of ByteReader: appends to a binary stream (BytesIO by default)."""

    def __init__(self, stream: Optional[BinaryIO] = None):
        self._stream = stream if stream is not None else io.BytesIO()
        self.offset = 0

    def write(self, data: bytes) -> None:
        self._stream.write(data)
        self.offset += len(data)

    def _write_fixed(self, value: int, bits: int) -> None:
        if value < 0 or value >= (1 << bits):
            raise IntegerOverflowError(f"Value {value} out of range for u{bits}")
        self.write(value.to_bytes(bits // 8, 'little'))

    def write_u8(self, value: int) -> None:
        self._write_fixed(value, 8)

    def write_u32(self, value: int) -> None:
        self._write_fixed(value, U32_BITS)

    def write_u64(self, value: int) -> None:
        self._write_fixed(value, U64_BITS)

    def write_u128(self, value: int) -> None:
        self._write_fixed(value, 128)

    def write_varint(self, value: int, max_bits: int = U64_BITS) -> None:
        self.write(encode_varint(value, max_bits))

    def write_packed(self, values: Iterable[int], bits_per_value: int) -> None:
        self.write(pack_bits(values, bits_per_value))

    def write_vec(self, items: List[T], write_item: Callable[['ByteWriter', T], None]) -> None:
        self.write_u32(len(items))
        for item in items:
            write_item(self, item)

    def write_compact_vec(self, items: List[T],
                          write_item: Callable[['ByteWriter', T], None]) -> None:
        self.write_varint(len(items), U32_BITS)
        for item in items:
            write_item(self, item)

    def write_string(self, s: str) -> None:
        encoded = s.encode('utf-8')
        self.write_u32(len(encoded))
        self.write(encoded)

    def getvalue(self) -> bytes:
        """Buffered bytes; only valid for the default BytesIO stream."""
        return self._stream.getvalue()
