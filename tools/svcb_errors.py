#!/usr/bin/env python3
"""
svcb_errors.py - Error hierarchy for the SVCB trace codec

Every decode/encode failure is an SvcbError, which is a ValueError, so
callers catching ValueError keep working. Errors raised while streaming
carry the index of the failing block and the byte offset where decoding
failed (the exact read for codec errors, otherwise the block start).

Usage:
    from svcb_errors import SvcbError, UnknownReferenceError

    try:
        for block in open_trace(data):
            ...
    except SvcbError as e:
        print(e.kind, e.offset, e.block_index)
"""

from typing import Optional


class SvcbError(ValueError):
    """Base class for all SVCB errors."""
    kind = 'SvcbError'

    def __init__(self, message: str, offset: Optional[int] = None,
                 block_index: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.offset = offset
        self.block_index = block_index

    def annotate(self, offset: Optional[int],
                 block_index: Optional[int]) -> 'SvcbError':
        """Fill in position info without overwriting anything already set."""
        if self.offset is None:
            self.offset = offset
        if self.block_index is None:
            self.block_index = block_index
        return self

    def __str__(self) -> str:
        where = []
        if self.block_index is not None:
            where.append(f"block {self.block_index}")
        if self.offset is not None:
            where.append(f"offset {self.offset}")
        if where:
            return f"{self.message} ({', '.join(where)})"
        return self.message


class BadMagicError(SvcbError):
    kind = 'BadMagic'


class UnsupportedVersionError(SvcbError):
    kind = 'UnsupportedVersion'


class UnknownBlockTypeError(SvcbError):
    kind = 'UnknownBlockType'


class TruncatedStreamError(SvcbError):
    kind = 'TruncatedStream'


class IntegerOverflowError(SvcbError):
    """Variable-length integer does not fit the target width."""
    kind = 'IntegerOverflow'


class InvalidUtf8Error(SvcbError):
    kind = 'InvalidUtf8'


class InvalidLogicValueError(SvcbError):
    kind = 'InvalidLogicValue'


class InvalidLogicKindError(SvcbError):
    """Storage declared with an unknown logic-kind code."""
    kind = 'InvalidLogicKind'


class InvalidInterpretationError(SvcbError):
    """Unknown interpretation/signedness code, or an enum over a non-binary storage."""
    kind = 'InvalidInterpretation'


class DuplicateIdError(SvcbError):
    kind = 'DuplicateId'


class UnknownReferenceError(SvcbError):
    """Dangling scope or storage id."""
    kind = 'UnknownReference'


class WidthMismatchError(SvcbError):
    kind = 'WidthMismatch'


class ZeroTimestepError(SvcbError):
    kind = 'ZeroTimestep'


class StreamStateError(SvcbError):
    """Stream pulled after it already failed."""
    kind = 'StreamState'
