"""cascstore - read-only access to local CASC storage.

Resolves content keys through the encoding table and the local bucket
indices, validates every record checksum on the way, and decodes the BLTE
containers the content is stored in. Content manifests are decrypted with
their build-keyed AES key.

Key modules:
- crypto: lookup3 hashes, record checksums, manifest key derivation
- core: errors, config, shmem and index readers, the store itself
- formats: BLTE, encoding table, content manifest and GUID parsers
- commands: CLI command implementations
"""

__version__ = "0.1.0"
__author__ = "cascstore contributors"

# Re-export commonly used types and functions
from cascstore.core.content import ContentStore
from cascstore.core.errors import (
    CascError,
    EntryNotFound,
    IntegrityError,
    UnknownEncodingMode,
    UnsupportedFormat,
)
from cascstore.core.local_storage import CascStore
from cascstore.core.types import CompressionMode
from cascstore.formats.blte import decode_blte

__all__ = [
    "__version__",
    "__author__",
    "CascError",
    "CascStore",
    "CompressionMode",
    "ContentStore",
    "EntryNotFound",
    "IntegrityError",
    "UnknownEncodingMode",
    "UnsupportedFormat",
    "decode_blte",
]
