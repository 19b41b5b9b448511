"""Content manifest (``.cmf``) and resource graph (``.trg``) parsers.

Both blobs start with a plain little-endian header carrying the build
version and record counts, followed by a 4-byte marker and an AES-256-CBC
body keyed by the build version and the logical file name (see
cascstore.crypto.manifest).

Decrypted manifest body: ``entry_count`` entry records (u32 index,
u64 hash_a, u64 hash_b) followed by ``asset_count`` asset records
(u64 guid, u32 size, u8 unknown, md5[16]), all packed little-endian.
"""

from __future__ import annotations

import struct
from io import BytesIO
from typing import BinaryIO

import structlog
from pydantic import BaseModel, Field

from cascstore.core.errors import IntegrityError, UnsupportedFormat
from cascstore.core.utils import read_exact
from cascstore.crypto.manifest import decrypt_body
from cascstore.formats.base import FormatParser

logger = structlog.get_logger()

CMF_MARKER = 0x636D66  # "cmf"
MARKER_SIZE = 4
AES_BLOCK_SIZE = 16

_CMF_HEADER = struct.Struct('<11I')
_CMF_ENTRY = struct.Struct('<IQQ')
_CMF_ASSET = struct.Struct('<QIB16s')
_TRG_HEADER = struct.Struct('<15I')


class ContentManifestHeader(BaseModel):
    """Plain header of a content manifest."""

    build_version: int = Field(description="Build version keying the decryption")
    u0: int = Field(default=0, description="Unknown")
    u1: int = Field(default=0, description="Unknown")
    u2: int = Field(default=0, description="Unknown")
    u3: int = Field(default=0, description="Unknown")
    u4: int = Field(default=0, description="Unknown")
    u5: int = Field(default=0, description="Unknown")
    asset_patch_record_count: int = Field(default=0, description="Asset patch record count")
    asset_count: int = Field(description="Number of asset records")
    entry_patch_record_count: int = Field(default=0, description="Entry patch record count")
    entry_count: int = Field(description="Number of entry records")

    @property
    def body_size(self) -> int:
        """Plaintext size of the entry and asset records."""
        return self.entry_count * _CMF_ENTRY.size + self.asset_count * _CMF_ASSET.size

    @classmethod
    def from_bytes(cls, data: bytes) -> ContentManifestHeader:
        names = list(cls.model_fields)
        return cls(**dict(zip(names, _CMF_HEADER.unpack_from(data))))


class ContentManifestEntry(BaseModel):
    """Entry record of a decrypted manifest."""

    index: int = Field(description="Entry index")
    hash_a: int = Field(description="First 64-bit hash")
    hash_b: int = Field(description="Second 64-bit hash")


class ContentManifestAsset(BaseModel):
    """Asset record of a decrypted manifest."""

    guid: int = Field(description="Packed 64-bit asset GUID")
    size: int = Field(description="Asset size in bytes")
    unknown: int = Field(default=0, description="Unknown byte")
    md5: bytes = Field(description="Content key of the asset")


class ContentManifest(BaseModel):
    """Parsed and decrypted content manifest."""

    header: ContentManifestHeader = Field(description="Manifest header")
    entries: list[ContentManifestEntry] = Field(description="Entry records")
    assets: list[ContentManifestAsset] = Field(description="Asset records")


def decrypt_manifest(file_name: str, header: ContentManifestHeader, body: bytes) -> bytes:
    """Decrypt the record section of a content manifest.

    Only the block-aligned prefix covering the records is decrypted, and the
    plaintext is cut to the exact record size.

    Args:
        file_name: Logical manifest name; a different name yields garbage
        header: Parsed manifest header
        body: Ciphertext following the marker

    Returns:
        ``header.body_size`` bytes of plaintext

    Raises:
        IntegrityError: If the body is shorter than the records need
    """
    needed = header.body_size
    if needed == 0:
        return b''
    aligned = -(-needed // AES_BLOCK_SIZE) * AES_BLOCK_SIZE
    if len(body) < aligned:
        raise IntegrityError(
            "Content manifest body shorter than its records",
            expected=aligned,
            actual=len(body),
        )
    plaintext = decrypt_body(file_name, header.build_version, header.asset_count, body[:aligned])
    return plaintext[:needed]


class ContentManifestParser(FormatParser[ContentManifest]):
    """Parser for encrypted content manifests."""

    def __init__(self, file_name: str = ""):
        """Initialize parser.

        Args:
            file_name: Logical manifest name used when parse() gets no name
        """
        self.file_name = file_name

    def parse(self, data: bytes | BinaryIO, file_name: str | None = None) -> ContentManifest:
        """Parse, decrypt and decode a content manifest.

        Raises:
            UnsupportedFormat: If the marker is not "cmf"
            IntegrityError: If the blob is truncated
        """
        if isinstance(data, (bytes, bytearray)):
            stream: BinaryIO = BytesIO(data)
        else:
            stream = data
        name = self.file_name if file_name is None else file_name

        header = ContentManifestHeader.from_bytes(read_exact(stream, _CMF_HEADER.size, "manifest header"))
        marker = struct.unpack('<I', read_exact(stream, MARKER_SIZE, "manifest marker"))[0]
        if marker >> 8 != CMF_MARKER:
            raise UnsupportedFormat(f"Invalid content manifest marker: {marker:#010x}")

        plaintext = decrypt_manifest(name, header, stream.read())

        entries = [
            ContentManifestEntry(index=index, hash_a=hash_a, hash_b=hash_b)
            for index, hash_a, hash_b in _CMF_ENTRY.iter_unpack(plaintext[:header.entry_count * _CMF_ENTRY.size])
        ]
        assets = [
            ContentManifestAsset(guid=guid, size=size, unknown=unknown, md5=md5)
            for guid, size, unknown, md5 in _CMF_ASSET.iter_unpack(plaintext[header.entry_count * _CMF_ENTRY.size:])
        ]

        logger.debug(
            "Parsed content manifest",
            file_name=name,
            build_version=header.build_version,
            entries=len(entries),
            assets=len(assets),
        )
        return ContentManifest(header=header, entries=entries, assets=assets)


class ResourceGraphHeader(BaseModel):
    """Plain header of a resource graph."""

    u0: int = Field(default=0, description="Unknown")
    build_version: int = Field(description="Build version keying the decryption")
    u1: int = Field(default=0, description="Unknown")
    u2: int = Field(default=0, description="Unknown")
    u3: int = Field(default=0, description="Unknown")
    u4: int = Field(default=0, description="Unknown")
    package_count: int = Field(default=0, description="Package record count")
    package_block_size: int = Field(default=0, description="Package block size")
    skin_count: int = Field(default=0, description="Skin record count")
    skin_block_size: int = Field(default=0, description="Skin block size")
    type_bundle_index_count: int = Field(default=0, description="Type bundle index count")
    type_bundle_index_block_size: int = Field(default=0, description="Type bundle index block size")
    u5: int = Field(default=0, description="Unknown")
    u6: int = Field(default=0, description="Unknown")
    graph_block_size: int = Field(default=0, description="Graph block size")

    @classmethod
    def from_bytes(cls, data: bytes) -> ResourceGraphHeader:
        names = list(cls.model_fields)
        return cls(**dict(zip(names, _TRG_HEADER.unpack_from(data))))


def decrypt_resource_graph(data: bytes, file_name: str) -> tuple[ResourceGraphHeader, bytes]:
    """Decrypt a resource graph blob.

    The IV step uses the skin count. The marker after the header is not
    checked.

    Returns:
        Tuple of (header, decrypted body)

    Raises:
        IntegrityError: If the blob is truncated or the body is not block aligned
    """
    stream = BytesIO(data)
    header = ResourceGraphHeader.from_bytes(read_exact(stream, _TRG_HEADER.size, "resource graph header"))
    read_exact(stream, MARKER_SIZE, "resource graph marker")
    body = stream.read()
    if len(body) % AES_BLOCK_SIZE:
        raise IntegrityError(
            "Resource graph body is not block aligned",
            expected=AES_BLOCK_SIZE,
            actual=len(body) % AES_BLOCK_SIZE,
        )
    return header, decrypt_body(file_name, header.build_version, header.skin_count, body)
