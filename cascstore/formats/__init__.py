"""Format parsers for local CASC content.

- BLTE: chunked container with per-chunk MD5 and N/Z modes
- Encoding: content key to encoding key mappings
- Manifest: encrypted content manifests and resource graphs
- GUID: packed 64-bit asset identifiers
"""

from cascstore.formats.base import FormatParser
from cascstore.formats.blte import (
    BLTEChunk,
    BLTEFile,
    BLTEHeader,
    BLTEParser,
    decode_blte,
    is_blte,
)
from cascstore.formats.encoding import (
    CKeyEntry,
    EKeySpec,
    EncodingHeader,
    EncodingParser,
    EncodingTable,
    is_encoding,
)
from cascstore.formats.guid import Guid
from cascstore.formats.manifest import (
    ContentManifest,
    ContentManifestAsset,
    ContentManifestEntry,
    ContentManifestHeader,
    ContentManifestParser,
    ResourceGraphHeader,
    decrypt_manifest,
    decrypt_resource_graph,
)

__all__ = [
    "FormatParser",
    # BLTE
    "BLTEChunk",
    "BLTEFile",
    "BLTEHeader",
    "BLTEParser",
    "decode_blte",
    "is_blte",
    # Encoding
    "CKeyEntry",
    "EKeySpec",
    "EncodingHeader",
    "EncodingParser",
    "EncodingTable",
    "is_encoding",
    # Manifest
    "ContentManifest",
    "ContentManifestAsset",
    "ContentManifestEntry",
    "ContentManifestHeader",
    "ContentManifestParser",
    "ResourceGraphHeader",
    "decrypt_manifest",
    "decrypt_resource_graph",
    # GUID
    "Guid",
]
