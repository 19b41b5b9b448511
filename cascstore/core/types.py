"""Core type definitions for cascstore."""

from enum import StrEnum


class CompressionMode(StrEnum):
    """BLTE chunk encoding modes understood by the decoder."""
    NONE = "N"
    ZLIB = "Z"


class OutputFormat(StrEnum):
    """CLI output formats."""
    RICH = "rich"
    JSON = "json"
    PLAIN = "plain"
