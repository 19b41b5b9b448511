"""Tests for BLTE format parser."""

import hashlib
import struct
import zlib
from io import BytesIO

import pytest

from cascstore.core.errors import IntegrityError, UnknownEncodingMode, UnsupportedFormat
from cascstore.formats.blte import BLTEHeader, BLTEParser, decode_blte, is_blte


class TestBLTEParser:
    """Test BLTE parsing and chunk validation."""

    def test_is_blte_function(self):
        """Test is_blte detection function."""
        assert is_blte(b'BLTE\x00\x00\x00\x00')
        assert not is_blte(b'TEST')
        assert not is_blte(b'BLT')
        assert not is_blte(b'')

    def test_single_chunk_table(self, blte_builder):
        """A one-entry chunk table wrapping raw data."""
        blte_file = BLTEParser().parse(blte_builder([('N', b"hello")]))

        assert blte_file.header.header_size == 36
        assert blte_file.header.flags == 0x0F
        assert blte_file.header.chunk_count == 1
        assert blte_file.content_size == 5

        chunk = blte_file.chunks[0]
        assert chunk.mode == 'N'
        assert chunk.encoded_size == 6
        assert chunk.content_size == 5
        assert chunk.checksum == hashlib.md5(b'Nhello').digest()

    def test_tableless_single_chunk(self, blte_builder):
        """header_size 0 means the rest of the data is one chunk without MD5."""
        blte_file = BLTEParser().parse(blte_builder([('Z', b"abc" * 20)], table=False))

        assert blte_file.header.is_single_chunk()
        assert blte_file.header.chunk_count is None
        assert blte_file.content_size is None
        assert blte_file.chunks[0].checksum == b''

    def test_bad_magic(self):
        """Non-BLTE data is an unsupported format."""
        with pytest.raises(UnsupportedFormat, match="magic"):
            BLTEParser().parse(b'BLTF' + bytes(8))

    def test_md5_mismatch(self, blte_builder):
        """A flipped chunk byte fails the chunk MD5."""
        data = bytearray(blte_builder([('N', b"hello")]))
        data[-1] ^= 0x01
        with pytest.raises(IntegrityError, match="MD5") as exc_info:
            BLTEParser().parse(bytes(data))
        assert exc_info.value.expected == hashlib.md5(b'Nhello').hexdigest()

    def test_md5_checked_on_every_chunk(self, blte_builder):
        """A corrupt later chunk aborts the whole parse."""
        data = bytearray(blte_builder([('N', b"good"), ('N', b"bad!")]))
        data[-1] ^= 0x01
        with pytest.raises(IntegrityError, match="Chunk 1"):
            BLTEParser().parse(bytes(data))

    def test_truncated_chunk(self, blte_builder):
        """Missing chunk bytes are an integrity error."""
        data = blte_builder([('N', b"hello")])
        with pytest.raises(IntegrityError, match="Truncated"):
            BLTEParser().parse(data[:-2])

    def test_truncated_table(self):
        """A chunk table shorter than its count is an integrity error."""
        data = b'BLTE' + struct.pack('>I', 60) + b'\x0F' + (2).to_bytes(3, 'big') + bytes(10)
        with pytest.raises(IntegrityError):
            BLTEParser().parse(data)

    def test_empty_chunk(self):
        """A zero-size chunk has no mode byte."""
        data = b'BLTE' + struct.pack('>I', 36) + b'\x0F' + (1).to_bytes(3, 'big')
        data += struct.pack('>II', 0, 0) + hashlib.md5(b'').digest()
        with pytest.raises(IntegrityError, match="empty"):
            BLTEParser().parse(data)

    def test_header_size_mismatch_is_tolerated(self, blte_builder):
        """The header size field is informational."""
        data = bytearray(blte_builder([('N', b"hello")]))
        data[4:8] = struct.pack('>I', 99)
        assert decode_blte(bytes(data)) == b"hello"

    def test_table_header_without_chunk_count(self):
        """A tabled header must carry a chunk count before chunks are read."""
        header = BLTEHeader(magic=b'BLTE', header_size=36)
        with pytest.raises(UnsupportedFormat, match="chunk count"):
            BLTEParser()._parse_chunks(BytesIO(b''), header)  # pyright: ignore[reportPrivateUsage]

    def test_invalid_workers(self):
        """At least one worker is required."""
        with pytest.raises(ValueError):
            BLTEParser(max_workers=0)

    def test_validate(self, blte_builder):
        """validate() reports parse failures without raising."""
        parser = BLTEParser()
        assert parser.validate(blte_builder([('N', b"x")])) == (True, "Valid")

        ok, message = parser.validate(b'JUNK')
        assert not ok
        assert message.startswith("UnsupportedFormat")

    def test_parse_file(self, tmp_path, blte_builder):
        """parse_file reads from disk and wraps OS errors."""
        path = tmp_path / "blob.blte"
        path.write_bytes(blte_builder([('N', b"disk")]))
        parser = BLTEParser()
        assert parser.decode(parser.parse_file(str(path))) == b"disk"

        with pytest.raises(ValueError, match="Cannot read file"):
            parser.parse_file(str(tmp_path / "missing"))


class TestBLTEDecode:
    """Test chunk decoding."""

    def test_decode_hello(self, blte_builder):
        """The canonical single chunk 'N' case."""
        assert decode_blte(blte_builder([('N', b"hello")])) == b"hello"

    def test_decode_zlib(self, blte_builder):
        """'Z' chunks are inflated."""
        content = b"compress me " * 200
        assert decode_blte(blte_builder([('Z', content)])) == content

    def test_decode_tableless(self, blte_builder):
        """Mode dispatch applies to table-less blobs too."""
        assert decode_blte(blte_builder([('N', b"plain")], table=False)) == b"plain"
        assert decode_blte(blte_builder([('Z', b"deflated" * 10)], table=False)) == b"deflated" * 10

    def test_chunks_concatenate_in_order(self, blte_builder):
        """Output follows chunk table order."""
        chunks = [('N', b"first-"), ('Z', b"second-" * 30), ('N', b"third")]
        assert decode_blte(blte_builder(chunks)) == b"first-" + b"second-" * 30 + b"third"

    def test_unknown_mode(self, blte_builder):
        """Modes other than N and Z are rejected."""
        with pytest.raises(UnknownEncodingMode) as exc_info:
            decode_blte(blte_builder([('N', b"ok"), ('E', b"encrypted")]))
        assert exc_info.value.mode == 'E'
        assert exc_info.value.chunk_index == 1

    def test_lz4_mode_not_supported(self, blte_builder):
        """Only N and Z are understood."""
        with pytest.raises(UnknownEncodingMode, match="'4'"):
            decode_blte(blte_builder([('4', b"frame")]))

    def test_corrupt_zlib(self):
        """Inflate failures are integrity errors."""
        body = b'Z' + b'not zlib data'
        data = b'BLTE' + struct.pack('>I', 36) + b'\x0F' + (1).to_bytes(3, 'big')
        data += struct.pack('>II', len(body), 13) + hashlib.md5(body).digest() + body
        with pytest.raises(IntegrityError, match="zlib"):
            decode_blte(data)

    def test_content_size_mismatch(self):
        """A chunk decoding to a different size than declared is rejected."""
        body = b'Z' + zlib.compress(b"hello")
        data = b'BLTE' + struct.pack('>I', 36) + b'\x0F' + (1).to_bytes(3, 'big')
        data += struct.pack('>II', len(body), 6) + hashlib.md5(body).digest() + body
        with pytest.raises(IntegrityError, match="decoded size") as exc_info:
            decode_blte(data)
        assert exc_info.value.expected == 6
        assert exc_info.value.actual == 5

    @pytest.mark.parametrize("workers", [1, 2, 8])
    def test_worker_count_does_not_change_output(self, blte_builder, workers):
        """Threaded decode keeps chunk order."""
        chunks = [('Z' if i % 2 else 'N', bytes([i]) * (100 + i)) for i in range(16)]
        expected = b''.join(content for _, content in chunks)
        assert decode_blte(blte_builder(chunks), max_workers=workers) == expected

    def test_threaded_failure_propagates(self, blte_builder):
        """A failing chunk on a worker thread still raises."""
        chunks = [('N', b"a" * 10), ('N', b"b" * 10), ('Q', b"c" * 10)]
        with pytest.raises(UnknownEncodingMode):
            decode_blte(blte_builder(chunks), max_workers=3)
