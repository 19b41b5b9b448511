"""Bob Jenkins' lookup3 hash functions.

Local CASC storage guards its index blocks with lookup3: the index header
block and the entry block with ``hash32`` (``hashlittle`` with seed 0) over
their raw bytes, and every data record header with ``hashlittle`` seeded
with ``0x3D6BE971``.

Reference: http://burtleburtle.net/bob/c/lookup3.c
Public Domain implementation by Bob Jenkins, May 2006.
"""

from __future__ import annotations

import struct

MASK32 = 0xFFFFFFFF

_WORDS = struct.Struct('<3I')


def _rot(x: int, k: int) -> int:
    """Rotate x left by k bits (32-bit)."""
    return ((x << k) | (x >> (32 - k))) & MASK32


def _mix(a: int, b: int, c: int) -> tuple[int, int, int]:
    """Mix 3 32-bit values reversibly."""
    a = ((a - c) & MASK32) ^ _rot(c, 4)
    c = (c + b) & MASK32
    b = ((b - a) & MASK32) ^ _rot(a, 6)
    a = (a + c) & MASK32
    c = ((c - b) & MASK32) ^ _rot(b, 8)
    b = (b + a) & MASK32
    a = ((a - c) & MASK32) ^ _rot(c, 16)
    c = (c + b) & MASK32
    b = ((b - a) & MASK32) ^ _rot(a, 19)
    a = (a + c) & MASK32
    c = ((c - b) & MASK32) ^ _rot(b, 4)
    b = (b + a) & MASK32
    return a, b, c


def _final(a: int, b: int, c: int) -> tuple[int, int, int]:
    """Final mixing of 3 32-bit values into c."""
    c = ((c ^ b) - _rot(b, 14)) & MASK32
    a = ((a ^ c) - _rot(c, 11)) & MASK32
    b = ((b ^ a) - _rot(a, 25)) & MASK32
    c = ((c ^ b) - _rot(b, 16)) & MASK32
    a = ((a ^ c) - _rot(c, 4)) & MASK32
    b = ((b ^ a) - _rot(a, 14)) & MASK32
    c = ((c ^ b) - _rot(b, 24)) & MASK32
    return a, b, c


def _hash(data: bytes, a: int, b: int, c: int) -> tuple[int, int]:
    """Run the lookup3 block loop over data, returning (c, b)."""
    offset = 0
    while len(data) - offset > 12:
        k0, k1, k2 = _WORDS.unpack_from(data, offset)
        a, b, c = _mix((a + k0) & MASK32, (b + k1) & MASK32, (c + k2) & MASK32)
        offset += 12

    tail = data[offset:]
    if not tail:
        # Zero length strings require no mixing
        return c, b

    # The last block adds only the bytes present; zero padding is equivalent
    k0, k1, k2 = _WORDS.unpack(tail.ljust(12, b'\x00'))
    a, b, c = _final((a + k0) & MASK32, (b + k1) & MASK32, (c + k2) & MASK32)
    return c, b


def hashlittle(data: bytes, initval: int = 0) -> int:
    """Hash a variable-length key into a 32-bit value.

    Args:
        data: The data to hash
        initval: Initial value (seed) for the hash, defaults to 0

    Returns:
        32-bit hash value

    Example:
        >>> hashlittle(b"hello", 0)
        885767278
    """
    a = b = c = (0xDEADBEEF + len(data) + initval) & MASK32
    return _hash(bytes(data), a, b, c)[0]


def hashlittle2(data: bytes, pc: int = 0, pb: int = 0) -> tuple[int, int]:
    """Return 2 32-bit hash values.

    Identical to hashlittle() except that it takes and returns two seeds, so
    the output of one call can seed the next.

    Args:
        data: The data to hash
        pc: Primary seed value, defaults to 0
        pb: Secondary seed value, defaults to 0

    Returns:
        Tuple of (primary_hash, secondary_hash)

    Example:
        >>> hashlittle2(b"hello", 0, 0)
        (885767278, 1543812985)
    """
    a = b = c = (0xDEADBEEF + len(data) + pc) & MASK32
    c = (c + pb) & MASK32
    return _hash(bytes(data), a, b, c)


def hash32(data: bytes, seed: int = 0) -> int:
    """32-bit lookup3 hash used by index headers and record headers."""
    return hashlittle(data, seed)
