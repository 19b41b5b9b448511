"""Pytest configuration and shared fixtures for cascstore tests.

The builders here write the on-disk formats byte by byte so that tests can
assemble synthetic stores without any real game data.
"""

from __future__ import annotations

import hashlib
import struct
import zlib
from collections.abc import Callable
from pathlib import Path

import pytest
from Crypto.Cipher import AES

from cascstore.core.config import AppConfig
from cascstore.core.index import IndexRecord
from cascstore.crypto.jenkins import hash32
from cascstore.crypto.manifest import derive_iv, derive_key
from cascstore.crypto.record import pack_storage_offset, record_checksum, record_hash

CMF_MARKER_BYTES = struct.pack('<I', 0x636D66 << 8)


def build_blte(chunks: list[tuple[str, bytes]], *, table: bool = True, flags: int = 0x0F) -> bytes:
    """Build a BLTE blob from (mode, content) pairs.

    'Z' chunks are zlib-compressed; any other mode byte is stored verbatim
    in front of the content. Without a table only the first chunk is used.
    """
    encoded = []
    for mode, content in chunks:
        body = zlib.compress(content) if mode == 'Z' else content
        encoded.append((mode.encode('latin-1') + body, len(content)))

    if not table:
        return b'BLTE' + struct.pack('>I', 0) + encoded[0][0]

    out = bytearray(b'BLTE')
    out += struct.pack('>I', 12 + 24 * len(encoded))
    out += bytes([flags]) + len(encoded).to_bytes(3, 'big')
    for body, content_size in encoded:
        out += struct.pack('>II', len(body), content_size) + hashlib.md5(body).digest()
    for body, _ in encoded:
        out += body
    return bytes(out)


def build_index(
    records: list[tuple[bytes, int, int, int]],
    *,
    bucket: int = 0,
    key_size: int = 9,
    location_size: int = 5,
    length_size: int = 4,
    segment_bits: int = 30,
    version: int = 7,
) -> bytes:
    """Build a v7 .idx file from (key, file, offset, length) tuples."""
    header = struct.pack(
        '<HHBBBBQ', version, bucket, length_size, location_size, key_size, segment_bits, 0x4000000000
    )
    entries = b''.join(
        key[:key_size].ljust(key_size, b'\x00')
        + IndexRecord.pack_location(file, offset, location_size, segment_bits)
        + length.to_bytes(length_size, 'little')
        for key, file, offset, length in records
    )
    return (
        struct.pack('<II', len(header), hash32(header))
        + header
        + bytes(8)
        + struct.pack('<II', len(entries), hash32(entries))
        + entries
    )


def build_shmem(
    versions: list[int],
    *,
    data_path: str = "",
    header_size: int = 0x150,
    free_spaces: list[tuple[int, int, int]] | None = None,
    block_type: int = 4,
    free_space_type: int = 1,
) -> bytes:
    """Build a shmem file; free spaces are (file, offset, length) tuples."""
    free_spaces = free_spaces or []
    out = bytearray(struct.pack('<II', block_type, header_size))
    out += data_path.encode('utf-8').ljust(0x100, b'\x00')
    out += bytes((header_size - 0x148) // 8 * 8)
    out += struct.pack('<16I', *versions)
    out += struct.pack('<II', free_space_type, len(free_spaces)) + bytes(0x18)
    for _, _, length in free_spaces:
        out += IndexRecord.pack_location(0, length, 5, 30)
    out += bytes((1090 - len(free_spaces)) * 5)
    for file, offset, _ in free_spaces:
        out += IndexRecord.pack_location(file, offset, 5, 30)
    return bytes(out)


def build_record(key: bytes, payload: bytes, file: int, offset: int, flags: int = 0) -> bytes:
    """Build a data record: 30-byte header with both checksums, then payload."""
    header = key[:16].ljust(16, b'\x00') + struct.pack('<IH', 0x1E + len(payload), flags)
    header += struct.pack('<I', record_hash(header))
    header += struct.pack('<I', record_checksum(header, pack_storage_offset(file, offset)))
    return header + payload


def build_encoding(
    ckey_entries: list[tuple[bytes, list[bytes], int]],
    ekey_entries: list[tuple[bytes, int, int]],
    especs: list[str],
    *,
    per_page: int | None = None,
    page_size_kb: int = 1,
    version: int = 1,
    reserved: int = 0,
) -> bytes:
    """Build an encoding table.

    ckey_entries are (content key, encoding keys, content size), ekey_entries
    are (encoding key, spec index, encoded size). Keys are 16 bytes.
    """
    page_size = page_size_kb * 1024

    def paginate(records: list[tuple[bytes, bytes]]) -> tuple[bytes, bytes]:
        size = per_page or max(len(records), 1)
        groups = [records[i:i + size] for i in range(0, len(records), size)]
        descriptors = bytearray()
        bodies = bytearray()
        for group in groups:
            body = b''.join(data for _, data in group).ljust(page_size, b'\x00')
            descriptors += group[0][0] + hashlib.md5(body).digest()
            bodies += body
        return bytes(descriptors), bytes(bodies)

    ce_records = [
        (ckey, bytes([len(ekeys)]) + size.to_bytes(5, 'big') + ckey + b''.join(ekeys))
        for ckey, ekeys, size in ckey_entries
    ]
    ek_records = [
        (ekey, ekey + struct.pack('>I', spec_index) + size.to_bytes(5, 'big'))
        for ekey, spec_index, size in ekey_entries
    ]
    ce_descriptors, ce_pages = paginate(ce_records)
    ek_descriptors, ek_pages = paginate(ek_records)

    espec_block = b''.join(spec.encode('ascii') + b'\x00' for spec in especs)
    header = b'EN' + bytes([version, 16, 16]) + struct.pack(
        '>HHII', page_size_kb, page_size_kb, len(ce_descriptors) // 32, len(ek_descriptors) // 32
    ) + bytes([reserved]) + struct.pack('>I', len(espec_block))
    return header + espec_block + ce_descriptors + ce_pages + ek_descriptors + ek_pages


def encrypt_records(file_name: str, build_version: int, record_count: int, plaintext: bytes) -> bytes:
    """Zero-pad to the AES block size and encrypt with the derived key and IV."""
    padded = plaintext.ljust(-(-len(plaintext) // 16) * 16, b'\x00')
    cipher = AES.new(derive_key(build_version), AES.MODE_CBC, iv=derive_iv(build_version, record_count, file_name))
    return cipher.encrypt(padded)


def build_cmf(
    file_name: str,
    build_version: int,
    entries: list[tuple[int, int, int]],
    assets: list[tuple[int, int, int, bytes]],
    *,
    marker: bytes = CMF_MARKER_BYTES,
) -> bytes:
    """Build an encrypted content manifest."""
    header = struct.pack(
        '<11I', build_version, 0, 0, 0, 0, 0, 0, 0, len(assets), 0, len(entries)
    )
    plaintext = b''.join(struct.pack('<IQQ', *entry) for entry in entries)
    plaintext += b''.join(struct.pack('<QIB16s', *asset) for asset in assets)
    return header + marker + encrypt_records(file_name, build_version, len(assets), plaintext)


def build_resource_graph(file_name: str, build_version: int, skin_count: int, plaintext: bytes) -> bytes:
    """Build an encrypted resource graph with fixed counts besides skin_count."""
    header = struct.pack('<15I', 0, build_version, 0, 0, 0, 0, 1, 2, skin_count, 4, 5, 6, 0, 0, 7)
    return header + b'\x00grt' + encrypt_records(file_name, build_version, skin_count, plaintext)


class StoreBuilder:
    """Assemble a synthetic local store on disk."""

    def __init__(self, path: Path):
        self.path = path
        self.data: dict[int, bytearray] = {}
        self.buckets: dict[int, list[tuple[bytes, int, int, int]]] = {}

    def add(self, key: bytes, payload: bytes, *, file: int = 0, bucket: int = 0, flags: int = 0) -> int:
        """Append a record for key to data.<file>; returns its offset."""
        data = self.data.setdefault(file, bytearray())
        offset = len(data)
        record = build_record(key, payload, file, offset, flags)
        data += record
        self.buckets.setdefault(bucket, []).append((key[:9], file, offset, len(record)))
        return offset

    def write(self, versions: dict[int, int] | None = None) -> Path:
        """Write shmem, index and data files; returns the store path."""
        versions = versions or dict.fromkeys(self.buckets, 1)
        self.path.mkdir(parents=True, exist_ok=True)
        (self.path / "shmem").write_bytes(
            build_shmem([versions.get(bucket, 0) for bucket in range(16)], data_path="data")
        )
        for bucket, records in self.buckets.items():
            name = f"{bucket:02x}{versions.get(bucket, 1):08x}.idx"
            (self.path / name).write_bytes(build_index(records, bucket=bucket))
        for file, data in self.data.items():
            (self.path / f"data.{file:03d}").write_bytes(bytes(data))
        return self.path


@pytest.fixture
def blte_builder() -> Callable[..., bytes]:
    return build_blte


@pytest.fixture
def index_builder() -> Callable[..., bytes]:
    return build_index


@pytest.fixture
def shmem_builder() -> Callable[..., bytes]:
    return build_shmem


@pytest.fixture
def record_builder() -> Callable[..., bytes]:
    return build_record


@pytest.fixture
def encoding_builder() -> Callable[..., bytes]:
    return build_encoding


@pytest.fixture
def cmf_builder() -> Callable[..., bytes]:
    return build_cmf


@pytest.fixture
def trg_builder() -> Callable[..., bytes]:
    return build_resource_graph


@pytest.fixture
def store_builder(tmp_path: Path) -> StoreBuilder:
    return StoreBuilder(tmp_path / "data")


@pytest.fixture
def hello_store(store_builder: StoreBuilder) -> Path:
    """One bucket, one entry keyed by 9 zero bytes holding BLTE('N', b"hello")."""
    store_builder.add(bytes(9), build_blte([('N', b"hello")]))
    return store_builder.write()


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig()
