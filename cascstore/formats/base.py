"""Base classes for format parsers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Generic, TypeVar

import structlog

from cascstore.core.errors import CascError

logger = structlog.get_logger()

T = TypeVar("T")


class FormatParser(ABC, Generic[T]):
    """Base class for read-only format parsers."""

    @abstractmethod
    def parse(self, data: bytes | BinaryIO) -> T:
        """Parse binary data.

        Args:
            data: Binary data or stream

        Returns:
            Parsed format object
        """
        ...

    def parse_file(self, path: Path | str) -> T:
        """Parse a file on disk, streaming it into parse().

        Raises:
            ValueError: If the file cannot be opened or read
        """
        try:
            with open(path, "rb") as f:
                return self.parse(f)
        except OSError as e:
            logger.error("Failed to read file", path=str(path), error=str(e))
            raise ValueError(f"Cannot read file {path}: {e}") from e

    def validate(self, data: bytes) -> tuple[bool, str]:
        """Check whether data parses cleanly.

        Args:
            data: Binary data to validate

        Returns:
            Tuple of (is_valid, error_message)
        """
        try:
            self.parse(data)
        except CascError as e:
            return False, f"{type(e).__name__}: {e}"
        return True, "Valid"
