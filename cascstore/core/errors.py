"""Error taxonomy for local CASC reads.

Every failure is terminal for the call that raised it. The data source is a
local file, so nothing here is retried: repeated integrity errors mean the
store is corrupted and has to be re-provisioned outside this package.
"""

from __future__ import annotations


class CascError(Exception):
    """Base class for all store, container and table errors."""


class UnsupportedFormat(CascError):
    """The data is not the expected format (bad magic, version or tag)."""


class IntegrityError(CascError):
    """A checksum, MD5 or declared length does not match the data.

    Attributes:
        expected: Expected hash or size as hex string or int
        actual: Actual hash or size as hex string or int
        key_hex: The key being read (hex string)
    """

    def __init__(
        self,
        message: str,
        *,
        expected: str | int | None = None,
        actual: str | int | None = None,
        key_hex: str | None = None,
    ):
        self.expected = expected
        self.actual = actual
        self.key_hex = key_hex
        super().__init__(message)


class EntryNotFound(CascError):
    """A key has no entry in the store index or the encoding table."""

    def __init__(self, message: str, *, key_hex: str | None = None):
        self.key_hex = key_hex
        super().__init__(message)


class UnknownEncodingMode(CascError):
    """A BLTE chunk uses a mode byte other than ``N`` or ``Z``."""

    def __init__(self, mode: str, chunk_index: int | None = None):
        self.mode = mode
        self.chunk_index = chunk_index
        super().__init__(f"Unknown encoding mode: {mode!r}")
