"""Shared utilities for cascstore."""

from __future__ import annotations

import hashlib
from typing import BinaryIO

from cascstore.core.errors import IntegrityError


def hexlify(data: bytes, upper: bool = False) -> str:
    """Convert bytes to hex string.

    Example:
        >>> hexlify(b"hello")
        '68656c6c6f'
    """
    result = data.hex()
    return result.upper() if upper else result


def unhexlify(hex_str: str) -> bytes:
    """Convert hex string to bytes.

    Raises:
        ValueError: If hex_str contains invalid hex characters
    """
    return bytes.fromhex(hex_str)


def compute_md5(data: bytes) -> bytes:
    """Compute MD5 hash.

    Example:
        >>> compute_md5(b"hello").hex()
        '5d41402abc4b2a76b9719d911017c592'
    """
    return hashlib.md5(data).digest()


def read_exact(stream: BinaryIO, size: int, what: str = "data") -> bytes:
    """Read exactly ``size`` bytes from a stream.

    Args:
        stream: Binary stream to read from
        size: Number of bytes required
        what: Name of the structure being read, for the error message

    Returns:
        The bytes read

    Raises:
        IntegrityError: If the stream ends early
    """
    data = stream.read(size)
    if len(data) != size:
        raise IntegrityError(
            f"Truncated {what}: expected {size} bytes, got {len(data)}",
            expected=size,
            actual=len(data),
        )
    return data


def split_cstrings(block: bytes, encoding: str = "ascii") -> list[str]:
    """Split a block of NUL-terminated strings.

    Bytes after the last terminator are not a complete string and are dropped.

    Example:
        >>> split_cstrings(b"b:{*=z}\\x00n\\x00")
        ['b:{*=z}', 'n']
    """
    strings = []
    start = 0
    while True:
        end = block.find(b'\x00', start)
        if end < 0:
            break
        strings.append(block[start:end].decode(encoding, errors='replace'))
        start = end + 1
    return strings


def format_size(size: int) -> str:
    """Format byte size as human-readable string.

    Example:
        >>> format_size(1536)
        '1.5 KB'
    """
    if size < 0:
        return "0 B"

    size_float = float(size)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_float < 1024.0:
            if unit == "B":
                return f"{int(size_float)} {unit}"
            return f"{size_float:.1f} {unit}"
        size_float /= 1024.0
    return f"{size_float:.1f} PB"


def validate_hash_string(hash_str: str) -> bool:
    """Validate hex hash string.

    Example:
        >>> validate_hash_string("deadbeef")
        True
        >>> validate_hash_string("invalid")
        False
    """
    if not hash_str or hash_str != hash_str.strip() or ' ' in hash_str or '\t' in hash_str:
        return False
    try:
        bytes.fromhex(hash_str)
        return True
    except ValueError:
        return False
