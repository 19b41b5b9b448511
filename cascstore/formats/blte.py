"""BLTE (Block Table Encoded) container decoder.

A BLTE blob is a chunk table followed by the chunks themselves:

    "BLTE"
    u32 BE   header size (0 for a single chunk without a table)
    u8       flags
    u24 BE   chunk count
    N x      {u32 BE encoded size, u32 BE content size, md5[16]}
    chunks   each starting with a mode byte: 'N' (raw) or 'Z' (zlib)

Every chunk is checked against its MD5 before it is decoded, and decoded
chunks are concatenated strictly in table order.
"""

from __future__ import annotations

import struct
import zlib
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO
from typing import BinaryIO

import structlog
from pydantic import BaseModel, Field

from cascstore.core.errors import IntegrityError, UnknownEncodingMode, UnsupportedFormat
from cascstore.core.types import CompressionMode
from cascstore.core.utils import compute_md5, hexlify, read_exact
from cascstore.formats.base import FormatParser

logger = structlog.get_logger()

BLTE_MAGIC = b'BLTE'
BLTE_PREAMBLE_SIZE = 8
CHUNK_TABLE_HEADER_SIZE = 4

_CHUNK_INFO = struct.Struct('>II16s')


class BLTEHeader(BaseModel):
    """BLTE file header."""

    magic: bytes = Field(description="Magic bytes (BLTE)")
    header_size: int = Field(description="Header size")
    flags: int | None = Field(default=None, description="Flags")
    chunk_count: int | None = Field(default=None, description="Number of chunks")

    def is_single_chunk(self) -> bool:
        """Check if this is a single chunk file without a chunk table."""
        return self.header_size == 0


class BLTEChunk(BaseModel):
    """One chunk of a BLTE file, still encoded."""

    index: int = Field(description="Position in the chunk table")
    encoded_size: int = Field(description="Encoded size including the mode byte")
    content_size: int | None = Field(default=None, description="Declared decoded size (None without a table)")
    checksum: bytes = Field(default=b'', description="MD5 of the encoded chunk (empty without a table)")
    data: bytes = Field(description="Encoded chunk data including the mode byte")

    @property
    def mode(self) -> str:
        return chr(self.data[0])


class BLTEFile(BaseModel):
    """Parsed BLTE file."""

    header: BLTEHeader = Field(description="File header")
    chunks: list[BLTEChunk] = Field(description="Data chunks")

    @property
    def content_size(self) -> int | None:
        """Sum of declared chunk content sizes, None for a table-less file."""
        if self.header.is_single_chunk():
            return None
        return sum(chunk.content_size or 0 for chunk in self.chunks)


def decode_chunk(chunk: BLTEChunk) -> bytes:
    """Decode a single chunk according to its mode byte.

    Raises:
        IntegrityError: If zlib data is corrupt or the decoded size differs
            from the declared content size
        UnknownEncodingMode: If the mode byte is not 'N' or 'Z'
    """
    mode = chunk.mode
    payload = chunk.data[1:]

    if mode == CompressionMode.NONE:
        decoded = payload
    elif mode == CompressionMode.ZLIB:
        try:
            decoded = zlib.decompress(payload)
        except zlib.error as e:
            raise IntegrityError(f"Chunk {chunk.index}: zlib decompression failed: {e}") from e
    else:
        raise UnknownEncodingMode(mode, chunk_index=chunk.index)

    if chunk.content_size is not None and len(decoded) != chunk.content_size:
        raise IntegrityError(
            f"Chunk {chunk.index}: decoded size does not match table",
            expected=chunk.content_size,
            actual=len(decoded),
        )
    return decoded


class BLTEParser(FormatParser[BLTEFile]):
    """Parser and decoder for BLTE containers."""

    def __init__(self, max_workers: int = 1):
        """Initialize parser.

        Args:
            max_workers: Threads used to decode chunks. With 1, chunks are
                decoded sequentially on the calling thread.
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers

    def parse(self, data: bytes | BinaryIO) -> BLTEFile:
        """Parse a BLTE file and verify every chunk checksum.

        Raises:
            UnsupportedFormat: If the magic is not "BLTE"
            IntegrityError: If the data is truncated, a chunk is empty, or
                a chunk MD5 does not match
        """
        if isinstance(data, (bytes, bytearray)):
            stream: BinaryIO = BytesIO(data)
        else:
            stream = data

        header = self.parse_header(stream)
        chunks = self._parse_chunks(stream, header)
        return BLTEFile(header=header, chunks=chunks)

    def parse_header(self, stream: BinaryIO) -> BLTEHeader:
        """Parse the BLTE header up to the chunk table."""
        magic = stream.read(4)
        if magic != BLTE_MAGIC:
            raise UnsupportedFormat(f"Invalid BLTE magic: {magic!r}")

        header_size = struct.unpack('>I', read_exact(stream, 4, "BLTE header size"))[0]
        header = BLTEHeader(magic=magic, header_size=header_size)

        if header_size > 0:
            table_header = read_exact(stream, CHUNK_TABLE_HEADER_SIZE, "BLTE chunk count")
            header.flags = table_header[0]
            header.chunk_count = int.from_bytes(table_header[1:], 'big')

            expected_size = BLTE_PREAMBLE_SIZE + CHUNK_TABLE_HEADER_SIZE + header.chunk_count * _CHUNK_INFO.size
            if header_size != expected_size:
                logger.warning(
                    "BLTE header size does not match chunk table",
                    header_size=header_size,
                    expected=expected_size,
                    chunks=header.chunk_count,
                )

        return header

    def _parse_chunks(self, stream: BinaryIO, header: BLTEHeader) -> list[BLTEChunk]:
        if header.is_single_chunk():
            data = stream.read()
            if not data:
                raise IntegrityError("Empty BLTE chunk", expected=1, actual=0)
            return [BLTEChunk(index=0, encoded_size=len(data), data=data)]

        if header.chunk_count is None:
            raise UnsupportedFormat("BLTE chunk count not available")
        infos = [
            _CHUNK_INFO.unpack(read_exact(stream, _CHUNK_INFO.size, "BLTE chunk table"))
            for _ in range(header.chunk_count)
        ]

        chunks = []
        for index, (encoded_size, content_size, checksum) in enumerate(infos):
            if encoded_size == 0:
                raise IntegrityError(f"Chunk {index}: empty chunk", expected=1, actual=0)
            data = read_exact(stream, encoded_size, f"BLTE chunk {index}")

            actual = compute_md5(data)
            if actual != checksum:
                raise IntegrityError(
                    f"Chunk {index}: MD5 mismatch",
                    expected=hexlify(checksum),
                    actual=hexlify(actual),
                )

            chunks.append(BLTEChunk(
                index=index,
                encoded_size=encoded_size,
                content_size=content_size,
                checksum=checksum,
                data=data,
            ))

        return chunks

    def decode(self, obj: BLTEFile) -> bytes:
        """Decode all chunks of a parsed BLTE file in table order.

        The output buffer is sized from the chunk table up front, so each
        chunk writes a disjoint region and chunks can be decoded on worker
        threads without affecting the result.
        """
        total = obj.content_size
        if total is None:
            return decode_chunk(obj.chunks[0])

        output = bytearray(total)
        offsets = []
        position = 0
        for chunk in obj.chunks:
            offsets.append(position)
            position += chunk.content_size or 0

        def decode_into(item: tuple[BLTEChunk, int]) -> None:
            chunk, offset = item
            decoded = decode_chunk(chunk)
            output[offset:offset + len(decoded)] = decoded

        items = list(zip(obj.chunks, offsets))
        if self.max_workers == 1 or len(items) < 2:
            for item in items:
                decode_into(item)
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                # Consuming the iterator re-raises the first failure in chunk order.
                for _ in executor.map(decode_into, items):
                    pass

        logger.debug("Decoded BLTE", chunks=len(items), size=total, workers=self.max_workers)
        return bytes(output)


def decode_blte(data: bytes, max_workers: int = 1) -> bytes:
    """Convenience function to parse and decode BLTE data.

    Args:
        data: BLTE-encoded data
        max_workers: Threads used to decode chunks

    Returns:
        Decoded content
    """
    parser = BLTEParser(max_workers=max_workers)
    return parser.decode(parser.parse(data))


def is_blte(data: bytes) -> bool:
    """Check if data appears to be BLTE-encoded.

    Args:
        data: Data to check

    Returns:
        True if data starts with BLTE magic
    """
    return len(data) >= 4 and data[:4] == BLTE_MAGIC
