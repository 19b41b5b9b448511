"""Checksum and key-derivation primitives for local CASC storage."""

from __future__ import annotations

from cascstore.crypto.jenkins import hash32, hashlittle, hashlittle2
from cascstore.crypto.manifest import decrypt_body, derive_iv, derive_key
from cascstore.crypto.record import pack_storage_offset, record_checksum, record_hash

__all__ = [
    "hash32",
    "hashlittle",
    "hashlittle2",
    "decrypt_body",
    "derive_iv",
    "derive_key",
    "pack_storage_offset",
    "record_checksum",
    "record_hash",
]
