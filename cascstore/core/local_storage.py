"""Read-only access to a local CASC store.

A store directory holds a ``shmem`` descriptor, one ``.idx`` file per active
bucket and the ``data.NNN`` files the indices point into. Opening a store
merges every bucket index into a single table keyed by the first 9 bytes of
the encoding key. Every ``get()`` reopens the data file and revalidates the
record header; decoded bytes are never cached.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import structlog

from cascstore.core.config import AppConfig
from cascstore.core.errors import EntryNotFound, IntegrityError
from cascstore.core.index import IndexRecord, LocalIndex, format_idx_filename
from cascstore.core.shmem import SHMEM_FILENAME, SharedMemoryLayout
from cascstore.core.utils import hexlify, read_exact
from cascstore.crypto.record import (
    OFF_RECORD_CHECKSUM,
    OFF_RECORD_HASH,
    RECORD_HEADER_SIZE,
    pack_storage_offset,
    record_checksum,
    record_hash,
)
from cascstore.formats.blte import decode_blte

logger = structlog.get_logger()

KEY_PREFIX_SIZE = 9

_RECORD_HEADER = struct.Struct('<16sIHII')


def format_data_filename(archive_id: int) -> str:
    """Format data filename for an archive.

    Args:
        archive_id: Archive ID

    Returns:
        Filename like "data.000" or "data.001"
    """
    return f"data.{archive_id:03d}"


@dataclass(frozen=True)
class RecordHeader:
    """The 30-byte header preceding each BLTE payload in a data file."""

    key: bytes
    size: int
    flags: int
    header_hash: int
    checksum: int

    @classmethod
    def from_bytes(cls, data: bytes) -> RecordHeader:
        key, size, flags, header_hash, checksum = _RECORD_HEADER.unpack_from(data)
        return cls(key=key, size=size, flags=flags, header_hash=header_hash, checksum=checksum)

    @property
    def payload_size(self) -> int:
        """Bytes of BLTE data following the header."""
        return self.size - RECORD_HEADER_SIZE


def validate_record_header(data: bytes, entry: IndexRecord) -> RecordHeader:
    """Check a raw record header against its index entry.

    The size field must equal the entry length, the hash field must match
    the seeded lookup3 hash of the bytes before it, and the checksum field
    must match the offset-keyed checksum of the bytes before it.

    Raises:
        IntegrityError: On any mismatch
    """
    header = RecordHeader.from_bytes(data)
    key_hex = hexlify(entry.key)

    if header.size != entry.length:
        raise IntegrityError(
            "Record size does not match index entry",
            expected=entry.length,
            actual=header.size,
            key_hex=key_hex,
        )

    expected_hash = record_hash(data[:OFF_RECORD_HASH])
    if header.header_hash != expected_hash:
        raise IntegrityError(
            "Record header hash mismatch",
            expected=f"{expected_hash:#010x}",
            actual=f"{header.header_hash:#010x}",
            key_hex=key_hex,
        )

    expected_checksum = record_checksum(
        data[:OFF_RECORD_CHECKSUM],
        pack_storage_offset(entry.file, entry.offset),
    )
    if header.checksum != expected_checksum:
        raise IntegrityError(
            "Record header checksum mismatch",
            expected=f"{expected_checksum:#010x}",
            actual=f"{header.checksum:#010x}",
            key_hex=key_hex,
        )

    return header


class CascStore:
    """Merged view of every bucket index of a local store."""

    def __init__(
        self,
        path: Path,
        layout: SharedMemoryLayout,
        entries: dict[bytes, IndexRecord],
        blte_workers: int = 1,
    ):
        """Initialize a store over already-parsed indices.

        Args:
            path: Store directory containing shmem, .idx and data files
            layout: Parsed shmem descriptor
            entries: Index entries keyed by 9-byte key prefix
            blte_workers: Thread fan-out for BLTE chunk decoding
        """
        self.path = path
        self.layout = layout
        self.blte_workers = blte_workers
        self._entries = entries

    @classmethod
    def open(cls, path: Path | str, config: AppConfig | None = None) -> CascStore:
        """Open a store directory.

        Reads ``shmem``, then loads ``{bucket:02x}{version:08x}.idx`` for
        every bucket whose version is non-zero. When two entries share a
        key prefix, the one loaded last wins.

        Raises:
            UnsupportedFormat: If shmem or an index has an unknown format
            IntegrityError: If shmem or an index fails validation
            OSError: If a required file cannot be opened
        """
        path = Path(path)
        config = config or AppConfig()

        layout = SharedMemoryLayout.read_file(path / SHMEM_FILENAME)
        entries: dict[bytes, IndexRecord] = {}
        for bucket, version in layout.active_buckets():
            idx_path = path / format_idx_filename(bucket, version)
            index = LocalIndex.read_file(idx_path)
            replaced = 0
            for record in index.records:
                prefix = record.key[:KEY_PREFIX_SIZE]
                if prefix in entries:
                    replaced += 1
                entries[prefix] = record
            if replaced:
                logger.warning("Index entries replaced earlier key prefixes", path=str(idx_path), replaced=replaced)
            logger.debug("Loaded index", path=str(idx_path), bucket=bucket, entries=len(index.records))

        logger.info(f"Opened CASC store at {path}", entries=len(entries))
        return cls(path, layout, entries, blte_workers=config.blte_workers)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, (bytes, bytearray)) and bytes(key[:KEY_PREFIX_SIZE]) in self._entries

    def __iter__(self) -> Iterator[IndexRecord]:
        return iter(self._entries.values())

    def lookup(self, key: bytes) -> IndexRecord:
        """Find the index entry for a key by its 9-byte prefix.

        Raises:
            EntryNotFound: If no entry matches
        """
        entry = self._entries.get(bytes(key[:KEY_PREFIX_SIZE]))
        if entry is None:
            raise EntryNotFound(f"Key not in store index: {hexlify(key)}", key_hex=hexlify(key))
        return entry

    def _read_record(self, key: bytes, with_payload: bool) -> tuple[RecordHeader, bytes]:
        entry = self.lookup(key)
        data_path = self.path / format_data_filename(entry.file)
        with open(data_path, 'rb') as f:
            f.seek(entry.offset)
            header = validate_record_header(read_exact(f, RECORD_HEADER_SIZE, "record header"), entry)
            if not with_payload:
                return header, b''
            if header.payload_size < 0:
                raise IntegrityError(
                    f"Record size {header.size} is smaller than its header",
                    expected=RECORD_HEADER_SIZE,
                    actual=header.size,
                    key_hex=hexlify(key),
                )
            payload = read_exact(f, header.payload_size, "record payload")

        logger.debug("Read record", key=hexlify(key), file=entry.file, offset=entry.offset, size=header.size)
        return header, payload

    def read_record_header(self, key: bytes) -> RecordHeader:
        """Read and validate the record header of a key without its payload."""
        header, _ = self._read_record(key, with_payload=False)
        return header

    def read_raw(self, key: bytes) -> bytes:
        """Read the validated BLTE payload of a key without decoding it."""
        _, payload = self._read_record(key, with_payload=True)
        return payload

    def get(self, key: bytes) -> bytes:
        """Read, validate and BLTE-decode the content stored under a key.

        Raises:
            EntryNotFound: If the key prefix is not in any index
            IntegrityError: If the record header or a BLTE chunk fails
                validation, or the data file is truncated
            UnsupportedFormat: If the payload is not BLTE
            UnknownEncodingMode: If a chunk uses an unsupported mode
        """
        return decode_blte(self.read_raw(key), max_workers=self.blte_workers)
