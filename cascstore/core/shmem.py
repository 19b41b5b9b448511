"""Shared memory descriptor (``shmem``) reader.

The ``shmem`` file at the root of a local store names the data directory,
holds the current version of each of the 16 index buckets, and carries the
free-space table. It is only read here; this package never writes it.

Layout (little-endian):
  u32      block type, must be 4
  u32      header block size
  256      NUL-padded data path
  ...      filler, 8-byte units, up to the version array
  16 x u32 bucket versions
  u32      block type, must be 1
  u32      free-space entry count (at most 1090)
  24       filler
  N x 5    free-space lengths
  ...      unused length slots, up to 1090
  N x 5    free-space file/offset locations
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import BinaryIO

import structlog

from cascstore.core.errors import IntegrityError, UnsupportedFormat
from cascstore.core.index import IndexRecord
from cascstore.core.utils import read_exact

logger = structlog.get_logger()

SHMEM_FILENAME = "shmem"

HEADER_BLOCK_TYPE = 4
FREE_SPACE_BLOCK_TYPE = 1

BUCKET_COUNT = 16
DATA_PATH_SIZE = 0x100
FREE_SPACE_FILLER_SIZE = 0x18
FREE_SPACE_MAX_ENTRIES = 1090

# Free-space records reuse the index record decoder: no key, no length,
# a 5-byte location with 30 offset bits.
FREE_SPACE_RECORD_SIZE = 5
FREE_SPACE_SEGMENT_BITS = 30

_PATH_END = 8 + DATA_PATH_SIZE
_VERSIONS = struct.Struct(f'<{BUCKET_COUNT}I')
_U32_PAIR = struct.Struct('<II')
_MIN_HEADER_SIZE = _PATH_END + _VERSIONS.size


def _read_free_space_record(stream: BinaryIO) -> IndexRecord:
    return IndexRecord.unpack(
        read_exact(stream, FREE_SPACE_RECORD_SIZE, "free-space record"),
        0,
        FREE_SPACE_RECORD_SIZE,
        0,
        FREE_SPACE_SEGMENT_BITS,
    )


@dataclass(frozen=True)
class SharedMemoryLayout:
    """Parsed ``shmem`` contents."""

    data_path: str
    versions: tuple[int, ...]
    free_spaces: tuple[IndexRecord, ...]

    def active_buckets(self) -> list[tuple[int, int]]:
        """(bucket, version) pairs for every bucket with a non-zero version."""
        return [(bucket, version) for bucket, version in enumerate(self.versions) if version]

    @classmethod
    def read(cls, stream: BinaryIO) -> SharedMemoryLayout:
        """Parse a shmem file.

        Raises:
            UnsupportedFormat: If either block type tag is wrong
            IntegrityError: If the header size or free-space count is out of
                range, or the stream is truncated
        """
        block_type, header_size = _U32_PAIR.unpack(read_exact(stream, _U32_PAIR.size, "shmem header"))
        if block_type != HEADER_BLOCK_TYPE:
            raise UnsupportedFormat(
                f"Unsupported shmem block type: {block_type} (expected {HEADER_BLOCK_TYPE})"
            )
        if header_size < _MIN_HEADER_SIZE:
            raise IntegrityError(
                f"shmem header size {header_size:#x} is smaller than {_MIN_HEADER_SIZE:#x}",
                expected=_MIN_HEADER_SIZE,
                actual=header_size,
            )

        raw_path = read_exact(stream, DATA_PATH_SIZE, "shmem data path")
        try:
            data_path = raw_path.split(b'\x00', 1)[0].decode('utf-8')
        except UnicodeDecodeError as e:
            raise UnsupportedFormat(f"shmem data path is not UTF-8: {e}") from e

        filler = (header_size - _MIN_HEADER_SIZE) // 8 * 8
        read_exact(stream, filler, "shmem filler")
        versions = _VERSIONS.unpack(read_exact(stream, _VERSIONS.size, "shmem versions"))

        block_type, count = _U32_PAIR.unpack(read_exact(stream, _U32_PAIR.size, "free-space header"))
        if block_type != FREE_SPACE_BLOCK_TYPE:
            raise UnsupportedFormat(
                f"Unsupported free-space block type: {block_type} (expected {FREE_SPACE_BLOCK_TYPE})"
            )
        if count > FREE_SPACE_MAX_ENTRIES:
            raise IntegrityError(
                f"Free-space count {count} exceeds {FREE_SPACE_MAX_ENTRIES}",
                expected=FREE_SPACE_MAX_ENTRIES,
                actual=count,
            )
        read_exact(stream, FREE_SPACE_FILLER_SIZE, "free-space filler")

        # The length lives in the offset bits of the first table.
        lengths = [_read_free_space_record(stream).offset for _ in range(count)]
        read_exact(stream, (FREE_SPACE_MAX_ENTRIES - count) * FREE_SPACE_RECORD_SIZE, "free-space padding")
        free_spaces = []
        for length in lengths:
            location = _read_free_space_record(stream)
            free_spaces.append(IndexRecord(key=b'', file=location.file, offset=location.offset, length=length))

        logger.debug(
            "Parsed shmem",
            data_path=data_path,
            active_buckets=sum(1 for version in versions if version),
            free_spaces=count,
        )
        return cls(data_path=data_path, versions=versions, free_spaces=tuple(free_spaces))

    @classmethod
    def from_bytes(cls, data: bytes) -> SharedMemoryLayout:
        """Parse a shmem file from bytes."""
        return cls.read(BytesIO(data))

    @classmethod
    def read_file(cls, path: Path) -> SharedMemoryLayout:
        """Read and parse a shmem file from disk."""
        with open(path, 'rb') as f:
            return cls.read(f)
