"""Checksums guarding the header of every record in a ``data.NNN`` file.

Record header layout (30 bytes, little-endian):

    0x00  16 bytes  encoding key (byte-reversed, not validated)
    0x10  u32       record size, equal to the index entry length
    0x14  u16       flags
    0x16  u32       header hash: hashlittle(header[0x00:0x16], 0x3D6BE971)
    0x1A  u32       header checksum: XOR fold of header[0x00:0x1A] keyed by
                    the record's storage offset (see record_checksum)
    0x1E            BLTE payload
"""

from __future__ import annotations

from cascstore.crypto.jenkins import MASK32, hashlittle

RECORD_HEADER_SIZE = 0x1E
RECORD_HASH_SEED = 0x3D6BE971

# Offsets into the record header
OFF_RECORD_KEY = 0x00
OFF_RECORD_SIZE = 0x10
OFF_RECORD_FLAGS = 0x14
OFF_RECORD_HASH = 0x16
OFF_RECORD_CHECKSUM = 0x1A

STORAGE_OFFSET_BITS = 30
STORAGE_OFFSET_MASK = (1 << STORAGE_OFFSET_BITS) - 1

OFFSET_ENCODE_TABLE: tuple[int, ...] = (
    0x049396B8, 0x72A82A9B, 0xEE626CCA, 0x9917754F,
    0x15DE40B1, 0xF5A8A9B6, 0x421EAC7E, 0xA9D55C9A,
    0x317FD40C, 0x04FAF80D, 0x3D6BE971, 0x52933CFD,
    0x27F64B7D, 0xC6F5C11B, 0xD5757E3A, 0x6C388745,
)


def pack_storage_offset(file: int, offset: int) -> int:
    """Pack a data file id and byte offset into the 32-bit storage offset.

    The low 30 bits carry the offset, the top two bits the low two bits of
    the file id.
    """
    return ((offset & STORAGE_OFFSET_MASK) | ((file & 3) << STORAGE_OFFSET_BITS)) & MASK32


def record_hash(prefix: bytes) -> int:
    """Seeded lookup3 hash over the record header bytes before the hash field."""
    return hashlittle(prefix, RECORD_HASH_SEED)


def record_checksum(data: bytes, storage_offset: int) -> int:
    """Compute the offset-keyed checksum of a record header prefix.

    Every byte of ``data`` is XORed into a 4-byte accumulator at position
    ``(storage_offset + i) & 3``. The accumulator is then XORed against the
    little-endian bytes of ``OFFSET_ENCODE_TABLE[(end + 4) & 0xF] ^ (end + 4)``
    where ``end`` is the storage offset just past ``data``, rotated so that
    byte ``i`` of the result comes from position ``(i + end) & 3``.

    Args:
        data: Record bytes preceding the checksum field
        storage_offset: Packed storage offset of ``data[0]``
            (see pack_storage_offset)

    Returns:
        32-bit checksum as stored little-endian in the record header
    """
    end = (storage_offset & ~STORAGE_OFFSET_MASK & MASK32) | (
        (storage_offset + len(data)) & STORAGE_OFFSET_MASK
    )

    hashed = bytearray(4)
    for i, value in enumerate(data):
        hashed[(storage_offset + i) & 3] ^= value

    seed = (end + 4) & MASK32
    encoded = ((OFFSET_ENCODE_TABLE[seed & 0xF] ^ seed) & MASK32).to_bytes(4, 'little')
    checksum = bytes(hashed[(i + end) & 3] ^ encoded[(i + end) & 3] for i in range(4))
    return int.from_bytes(checksum, 'little')
