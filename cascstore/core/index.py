"""Local index (.idx) reader.

Each of the 16 buckets of a local CASC store has one index file mapping
truncated encoding keys to a location inside a ``data.NNN`` file.

V7 file layout (little-endian unless noted):

    0x00  u32       header block length (16)
    0x04  u32       header block hash: hash32(header, 0)
    0x08  16 bytes  header: u16 version (7), u16 bucket, u8 length size,
                    u8 location size, u8 key size, u8 segment bits, u64 limit
    0x18  8 bytes   padding
    0x20  u32       entry block length
    0x24  u32       entry block hash: hash32(entries, 0) over the raw block
    0x28            records: key, location (big-endian), length

The location field packs the data file id above a ``segment_bits`` wide
byte offset.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import BinaryIO

import structlog

from cascstore.core.errors import IntegrityError, UnsupportedFormat
from cascstore.core.utils import read_exact
from cascstore.crypto.jenkins import hash32

logger = structlog.get_logger()

INDEX_VERSION = 7
INDEX_BLOCK_PADDING = 8

_BLOCK_HEADER = struct.Struct('<II')
_INDEX_HEADER = struct.Struct('<HHBBBBQ')


def format_idx_filename(bucket: int, version: int) -> str:
    """Format index filename for a bucket.

    Args:
        bucket: Bucket ID (0x00-0x0F)
        version: Bucket version from the shared memory file

    Returns:
        Filename like "0000000001.idx" or "0f0000001a.idx"
    """
    return f"{bucket:02x}{version:08x}.idx"


@dataclass(frozen=True)
class IndexRecord:
    """A decoded index entry: which data file holds a key, where, and how long."""

    key: bytes
    file: int
    offset: int
    length: int

    @staticmethod
    def unpack_location(location: bytes, segment_bits: int) -> tuple[int, int]:
        """Split a big-endian location field into (file, offset).

        The low ``segment_bits`` bits hold the offset. The offset is read as
        a whole number of bytes, so the bits it carries above
        ``segment_bits`` (the extra bits) belong to the file id.

        Raises:
            UnsupportedFormat: If the field is too narrow for the offset
        """
        offset_size = (segment_bits + 7) // 8
        file_size = len(location) - offset_size
        if file_size < 0:
            raise UnsupportedFormat(
                f"Location field of {len(location)} bytes cannot hold {segment_bits} offset bits"
            )

        file = int.from_bytes(location[:file_size], 'big')
        offset = int.from_bytes(location[file_size:], 'big')
        extra_bits = offset_size * 8 - segment_bits
        file = (file << extra_bits) | (offset >> segment_bits)
        offset &= (1 << segment_bits) - 1
        return file, offset

    @staticmethod
    def pack_location(file: int, offset: int, location_size: int, segment_bits: int) -> bytes:
        """Pack (file, offset) into a big-endian location field.

        Inverse of unpack_location for every file id and offset that fit
        their declared widths.

        Raises:
            ValueError: If file or offset do not fit
        """
        file_bits = location_size * 8 - segment_bits
        if not 0 <= offset < (1 << segment_bits):
            raise ValueError(f"Offset {offset:#x} does not fit in {segment_bits} bits")
        if not 0 <= file < (1 << max(file_bits, 0)):
            raise ValueError(f"File id {file} does not fit in {file_bits} bits")
        return ((file << segment_bits) | offset).to_bytes(location_size, 'big')

    @classmethod
    def unpack(
        cls,
        data: bytes,
        length_size: int,
        location_size: int,
        key_size: int,
        segment_bits: int,
    ) -> IndexRecord:
        """Decode one record laid out as key, location, length.

        Args:
            data: Record bytes (at least key + location + length sizes)
            length_size: Width of the little-endian length field (may be 0)
            location_size: Width of the big-endian location field
            key_size: Width of the key field (may be 0)
            segment_bits: Number of offset bits in the location field

        Returns:
            Decoded record
        """
        record_size = key_size + location_size + length_size
        if len(data) < record_size:
            raise IntegrityError(
                f"Index record too small: {len(data)} < {record_size}",
                expected=record_size,
                actual=len(data),
            )

        key = bytes(data[:key_size])
        file, offset = cls.unpack_location(data[key_size:key_size + location_size], segment_bits)
        length = int.from_bytes(data[key_size + location_size:record_size], 'little')
        return cls(key=key, file=file, offset=offset, length=length)


@dataclass(frozen=True)
class IndexHeader:
    """Header block of a v7 index file."""

    version: int
    bucket: int
    length_size: int
    location_size: int
    key_size: int
    segment_bits: int
    limit: int

    @property
    def record_size(self) -> int:
        """Bytes per entry record."""
        return self.length_size + self.location_size + self.key_size

    @classmethod
    def from_bytes(cls, data: bytes) -> IndexHeader:
        """Parse the header block contents.

        Raises:
            UnsupportedFormat: If the block is too short or the version is not 7
        """
        if len(data) < _INDEX_HEADER.size:
            raise UnsupportedFormat(f"Index header too short: {len(data)} < {_INDEX_HEADER.size}")

        version, bucket, length_size, location_size, key_size, segment_bits, limit = (
            _INDEX_HEADER.unpack_from(data)
        )
        if version != INDEX_VERSION:
            raise UnsupportedFormat(f"Unsupported index version: {version} (expected {INDEX_VERSION})")

        return cls(
            version=version,
            bucket=bucket,
            length_size=length_size,
            location_size=location_size,
            key_size=key_size,
            segment_bits=segment_bits,
            limit=limit,
        )


@dataclass(frozen=True)
class LocalIndex:
    """A parsed bucket index file."""

    header: IndexHeader
    records: tuple[IndexRecord, ...]

    @property
    def bucket(self) -> int:
        return self.header.bucket

    @classmethod
    def read(cls, stream: BinaryIO) -> LocalIndex:
        """Parse an index file from a stream.

        Raises:
            IntegrityError: If a block hash does not match, a block is
                truncated, or the entry block is not a whole number of records
            UnsupportedFormat: If the version is not 7
        """
        header_size, header_hash = _BLOCK_HEADER.unpack(read_exact(stream, _BLOCK_HEADER.size, "index header"))
        header_data = read_exact(stream, header_size, "index header")
        actual_hash = hash32(header_data)
        if actual_hash != header_hash:
            raise IntegrityError(
                "Index header hash mismatch",
                expected=f"{header_hash:#010x}",
                actual=f"{actual_hash:#010x}",
            )
        header = IndexHeader.from_bytes(header_data)
        read_exact(stream, INDEX_BLOCK_PADDING, "index padding")

        entries_size, entries_hash = _BLOCK_HEADER.unpack(read_exact(stream, _BLOCK_HEADER.size, "entry block"))
        entries_data = read_exact(stream, entries_size, "entry block")

        record_size = header.record_size
        if record_size == 0:
            raise UnsupportedFormat("Index header declares zero-width records")
        if entries_size % record_size:
            raise IntegrityError(
                f"Entry block of {entries_size} bytes is not a multiple of {record_size}-byte records",
                expected=record_size,
                actual=entries_size % record_size,
            )

        actual_hash = hash32(entries_data)
        if actual_hash != entries_hash:
            raise IntegrityError(
                "Index entry block hash mismatch",
                expected=f"{entries_hash:#010x}",
                actual=f"{actual_hash:#010x}",
            )

        records = tuple(
            IndexRecord.unpack(
                entries_data[offset:offset + record_size],
                header.length_size,
                header.location_size,
                header.key_size,
                header.segment_bits,
            )
            for offset in range(0, entries_size, record_size)
        )

        logger.debug(
            "Parsed index",
            bucket=header.bucket,
            entries=len(records),
            segment_bits=header.segment_bits,
        )
        return cls(header=header, records=records)

    @classmethod
    def from_bytes(cls, data: bytes) -> LocalIndex:
        """Parse an index file from bytes."""
        return cls.read(BytesIO(data))

    @classmethod
    def read_file(cls, path: Path) -> LocalIndex:
        """Read and parse an index file from disk."""
        with open(path, 'rb') as f:
            return cls.read(f)
