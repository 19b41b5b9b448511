"""Core functionality for cascstore.

Shared pieces (errors, types, configuration, utilities) are re-exported
here. The store readers live in their own modules:
- shmem: shared memory descriptor
- index: bucket index files
- local_storage: the merged store and record validation
- content: content-key sessions over a store and its encoding table
"""

from cascstore.core.config import AppConfig
from cascstore.core.errors import (
    CascError,
    EntryNotFound,
    IntegrityError,
    UnknownEncodingMode,
    UnsupportedFormat,
)
from cascstore.core.types import CompressionMode, OutputFormat
from cascstore.core.utils import (
    compute_md5,
    format_size,
    hexlify,
    read_exact,
    split_cstrings,
    unhexlify,
    validate_hash_string,
)

__all__ = [
    # Config
    "AppConfig",
    # Errors
    "CascError",
    "EntryNotFound",
    "IntegrityError",
    "UnknownEncodingMode",
    "UnsupportedFormat",
    # Types
    "CompressionMode",
    "OutputFormat",
    # Utils
    "hexlify",
    "unhexlify",
    "compute_md5",
    "read_exact",
    "split_cstrings",
    "format_size",
    "validate_hash_string",
]
