"""Content-key level access to a local store.

A content session opens the store, fetches the encoding table by its
encoding key, and from then on serves any content key through the same
two steps: resolve it to an encoding key, then read that key from the
store.
"""

from __future__ import annotations

from pathlib import Path

import structlog

from cascstore.core.config import AppConfig
from cascstore.core.local_storage import CascStore
from cascstore.core.utils import hexlify
from cascstore.formats.encoding import EncodingParser, EncodingTable
from cascstore.formats.manifest import ContentManifest, ContentManifestParser

logger = structlog.get_logger()


class ContentStore:
    """A store plus the encoding table that maps content keys into it."""

    def __init__(self, store: CascStore, encoding: EncodingTable):
        self.store = store
        self.encoding = encoding

    @classmethod
    def open(
        cls,
        storage_path: Path | str,
        encoding_key: bytes,
        config: AppConfig | None = None,
    ) -> ContentStore:
        """Open a store and load its encoding table.

        Args:
            storage_path: Store directory
            encoding_key: Encoding key of the encoding table blob, as given
                by the build metadata
            config: Optional application config

        Raises:
            EntryNotFound: If the encoding table is not in the store
            IntegrityError: If any layer fails validation
            UnsupportedFormat: If any layer has an unexpected format
        """
        store = CascStore.open(storage_path, config)
        encoding = EncodingParser().parse(store.get(encoding_key))
        logger.info(
            "Loaded encoding table",
            encoding_key=hexlify(encoding_key),
            content_keys=len(encoding),
        )
        return cls(store, encoding)

    def resolve(self, content_key: bytes) -> bytes:
        """Map a content key to its canonical encoding key."""
        return self.encoding.resolve(content_key)

    def get(self, content_key: bytes) -> bytes:
        """Read the decoded content for a content key."""
        return self.store.get(self.resolve(content_key))

    def load_manifest(self, file_name: str, content_key: bytes) -> ContentManifest:
        """Fetch and decrypt a content manifest.

        Args:
            file_name: Logical manifest name, part of the decryption key
            content_key: Content key of the manifest blob
        """
        return ContentManifestParser(file_name).parse(self.get(content_key))
