"""Encoding table parser.

The encoding table maps content keys to the encoding keys their encoded
blobs are stored under, and encoding keys to the compression spec string
and encoded size. It is stored BLTE-encoded in the store like any other
blob, under an encoding key supplied by the build metadata.

Layout (big-endian):

    "EN", u8 version (1), u8 ckey size, u8 ekey size,
    u16 ckey page size (KiB), u16 ekey page size (KiB),
    u32 ckey page count, u32 ekey page count, u8 reserved (0),
    u32 spec block size, spec block (NUL-terminated strings)
    ckey page descriptors {first ckey, md5}, ckey pages
    ekey page descriptors {first ekey, md5}, ekey pages

A page is scanned until the next record does not fit. Padding records (key
count 0 in a ckey page, all-zero key in an ekey page) are stepped over
without producing an entry.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from io import BytesIO
from typing import BinaryIO, Iterator

import structlog
from pydantic import BaseModel, Field

from cascstore.core.errors import EntryNotFound, IntegrityError, UnsupportedFormat
from cascstore.core.utils import compute_md5, hexlify, read_exact, split_cstrings
from cascstore.formats.base import FormatParser

logger = structlog.get_logger()

ENCODING_MAGIC = b'EN'
ENCODING_VERSION = 1
PAGE_SIZE_UNIT = 1024

_HEADER = struct.Struct('>2sBBBHHIIBI')
_U32 = struct.Struct('>I')
_SIZE40_BYTES = 5


class EncodingHeader(BaseModel):
    """Encoding file header."""

    magic: bytes = Field(description="Magic bytes (EN)")
    version: int = Field(description="Format version")
    ckey_size: int = Field(description="Content key size in bytes")
    ekey_size: int = Field(description="Encoding key size in bytes")
    ckey_page_size_kb: int = Field(description="CKey page size in KiB")
    ekey_page_size_kb: int = Field(description="EKey page size in KiB")
    ckey_page_count: int = Field(description="Number of CKey pages")
    ekey_page_count: int = Field(description="Number of EKey pages")
    reserved: int = Field(description="Reserved byte, always 0")
    espec_size: int = Field(description="ESpec block size in bytes")


@dataclass(frozen=True)
class CKeyEntry:
    """Content key record: its decoded size and every encoding key holding it."""

    content_key: bytes
    content_size: int
    encoding_keys: tuple[bytes, ...]


@dataclass(frozen=True)
class EKeySpec:
    """Encoding key record: compression spec and encoded size."""

    encoding_key: bytes
    spec: str
    encoded_size: int


class EncodingTable:
    """Both lookup directions of a parsed encoding table."""

    def __init__(
        self,
        header: EncodingHeader,
        especs: list[str],
        ckeys: dict[bytes, CKeyEntry],
        ekeys: dict[bytes, EKeySpec],
    ):
        self.header = header
        self.especs = especs
        self._ckeys = ckeys
        self._ekeys = ekeys

    def __len__(self) -> int:
        return len(self._ckeys)

    def __contains__(self, content_key: object) -> bool:
        return isinstance(content_key, (bytes, bytearray)) and bytes(content_key) in self._ckeys

    def __iter__(self) -> Iterator[CKeyEntry]:
        return iter(self._ckeys.values())

    @property
    def ekey_count(self) -> int:
        return len(self._ekeys)

    def _entry(self, content_key: bytes) -> CKeyEntry:
        entry = self._ckeys.get(bytes(content_key))
        if entry is None or not entry.encoding_keys:
            raise EntryNotFound(
                f"Content key not in encoding table: {hexlify(content_key)}",
                key_hex=hexlify(content_key),
            )
        return entry

    def resolve(self, content_key: bytes) -> bytes:
        """Return the canonical (first) encoding key for a content key.

        Raises:
            EntryNotFound: If the content key is not in the table
        """
        return self._entry(content_key).encoding_keys[0]

    def encoding_keys(self, content_key: bytes) -> tuple[bytes, ...]:
        """Return every encoding key for a content key, canonical first."""
        return self._entry(content_key).encoding_keys

    def content_size(self, content_key: bytes) -> int:
        """Return the decoded size recorded for a content key."""
        return self._entry(content_key).content_size

    def spec(self, encoding_key: bytes) -> tuple[str, int]:
        """Return (compression spec, encoded size) for an encoding key.

        Raises:
            EntryNotFound: If the encoding key is not in the table
        """
        entry = self._ekeys.get(bytes(encoding_key))
        if entry is None:
            raise EntryNotFound(
                f"Encoding key not in encoding table: {hexlify(encoding_key)}",
                key_hex=hexlify(encoding_key),
            )
        return entry.spec, entry.encoded_size


def _scan_ckey_page(page: bytes, ckey_size: int, ekey_size: int) -> Iterator[CKeyEntry]:
    offset = 0
    while offset < len(page):
        key_count = page[offset]
        record_size = 1 + _SIZE40_BYTES + ckey_size + key_count * ekey_size
        if offset + record_size > len(page):
            break
        if key_count == 0:
            offset += record_size
            continue

        position = offset + 1
        content_size = int.from_bytes(page[position:position + _SIZE40_BYTES], 'big')
        position += _SIZE40_BYTES
        content_key = page[position:position + ckey_size]
        position += ckey_size
        encoding_keys = tuple(
            page[position + i * ekey_size:position + (i + 1) * ekey_size] for i in range(key_count)
        )

        yield CKeyEntry(content_key=content_key, content_size=content_size, encoding_keys=encoding_keys)
        offset += record_size


def _scan_ekey_page(page: bytes, ekey_size: int, especs: list[str]) -> Iterator[EKeySpec]:
    record_size = ekey_size + _U32.size + _SIZE40_BYTES
    empty_key = bytes(ekey_size)
    offset = 0
    while offset + record_size <= len(page):
        encoding_key = page[offset:offset + ekey_size]
        if encoding_key == empty_key:
            offset += record_size
            continue
        position = offset + ekey_size
        spec_index = _U32.unpack_from(page, position)[0]
        position += _U32.size
        encoded_size = int.from_bytes(page[position:position + _SIZE40_BYTES], 'big')

        # Out-of-range spec indices map to an empty spec
        spec = especs[spec_index] if spec_index < len(especs) else ""
        yield EKeySpec(encoding_key=encoding_key, spec=spec, encoded_size=encoded_size)
        offset += record_size


class EncodingParser(FormatParser[EncodingTable]):
    """Parser for encoding tables."""

    HEADER_SIZE = _HEADER.size

    def parse(self, data: bytes | BinaryIO) -> EncodingTable:
        """Parse an encoding table, verifying every page MD5.

        Raises:
            UnsupportedFormat: If the magic, version or reserved byte is wrong
            IntegrityError: If a page MD5 does not match or the data is truncated
        """
        if isinstance(data, (bytes, bytearray)):
            stream: BinaryIO = BytesIO(data)
        else:
            stream = data

        header = self._parse_header(stream)
        especs = split_cstrings(read_exact(stream, header.espec_size, "ESpec block"))

        ckeys: dict[bytes, CKeyEntry] = {}
        pages = self._read_pages(
            stream, "CKey", header.ckey_page_count, header.ckey_size, header.ckey_page_size_kb
        )
        for page in pages:
            for entry in _scan_ckey_page(page, header.ckey_size, header.ekey_size):
                ckeys[entry.content_key] = entry

        ekeys: dict[bytes, EKeySpec] = {}
        pages = self._read_pages(
            stream, "EKey", header.ekey_page_count, header.ekey_size, header.ekey_page_size_kb
        )
        for page in pages:
            for spec in _scan_ekey_page(page, header.ekey_size, especs):
                ekeys[spec.encoding_key] = spec

        logger.debug(
            "Parsed encoding table",
            ckey_pages=header.ckey_page_count,
            ekey_pages=header.ekey_page_count,
            ckeys=len(ckeys),
            ekeys=len(ekeys),
            especs=len(especs),
        )
        return EncodingTable(header, especs, ckeys, ekeys)

    def _parse_header(self, stream: BinaryIO) -> EncodingHeader:
        """Parse encoding file header."""
        header_data = stream.read(self.HEADER_SIZE)
        if header_data[:2] != ENCODING_MAGIC:
            raise UnsupportedFormat(f"Invalid encoding magic: {header_data[:2]!r}")
        if len(header_data) != self.HEADER_SIZE:
            raise IntegrityError(
                "Truncated encoding header",
                expected=self.HEADER_SIZE,
                actual=len(header_data),
            )

        (
            magic,
            version,
            ckey_size,
            ekey_size,
            ckey_page_size_kb,
            ekey_page_size_kb,
            ckey_page_count,
            ekey_page_count,
            reserved,
            espec_size,
        ) = _HEADER.unpack(header_data)

        if version != ENCODING_VERSION:
            raise UnsupportedFormat(f"Unsupported encoding version: {version}")
        if reserved != 0:
            raise UnsupportedFormat(f"Unexpected encoding reserved byte: {reserved:#04x}")

        return EncodingHeader(
            magic=magic,
            version=version,
            ckey_size=ckey_size,
            ekey_size=ekey_size,
            ckey_page_size_kb=ckey_page_size_kb,
            ekey_page_size_kb=ekey_page_size_kb,
            ckey_page_count=ckey_page_count,
            ekey_page_count=ekey_page_count,
            reserved=reserved,
            espec_size=espec_size,
        )

    def _read_pages(
        self,
        stream: BinaryIO,
        kind: str,
        page_count: int,
        key_size: int,
        page_size_kb: int,
    ) -> list[bytes]:
        """Read a page descriptor table and its pages, checking each page MD5."""
        descriptors = []
        for _ in range(page_count):
            first_key = read_exact(stream, key_size, f"{kind} page index")
            checksum = read_exact(stream, 16, f"{kind} page index")
            descriptors.append((first_key, checksum))

        page_size = page_size_kb * PAGE_SIZE_UNIT
        pages = []
        for index, (first_key, checksum) in enumerate(descriptors):
            page = read_exact(stream, page_size, f"{kind} page {index}")
            actual = compute_md5(page)
            if actual != checksum:
                raise IntegrityError(
                    f"{kind} page {index} MD5 mismatch",
                    expected=hexlify(checksum),
                    actual=hexlify(actual),
                    key_hex=hexlify(first_key),
                )
            pages.append(page)
        return pages


def is_encoding(data: bytes) -> bool:
    """Check if data appears to be an encoding table.

    Args:
        data: Data to check

    Returns:
        True if data starts with EN magic
    """
    return len(data) >= 2 and data[:2] == ENCODING_MAGIC
