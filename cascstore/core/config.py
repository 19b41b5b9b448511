"""Configuration management for cascstore."""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, field_validator

from cascstore.core.types import OutputFormat

logger = structlog.get_logger()

DEFAULT_CONFIG_FILE = Path.home() / ".config" / "cascstore" / "config.json"


class AppConfig(BaseModel):
    """Application configuration."""

    storage_path: Path | None = Field(
        default=None,
        description="CASC data directory holding shmem, *.idx and data.NNN",
    )
    blte_workers: int = Field(
        default=1,
        description="Threads used to decode BLTE chunks (1 = sequential)",
    )
    output_format: str = Field(
        default=OutputFormat.RICH.value,
        description="Output format (rich, json, plain)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    @classmethod
    def load(cls, config_file: Path | None = None) -> AppConfig:
        """Load configuration from file.

        Args:
            config_file: Path to config file, uses default if None

        Returns:
            Application configuration
        """
        if config_file is None:
            config_file = DEFAULT_CONFIG_FILE

        if config_file.exists():
            with open(config_file) as f:
                data = json.load(f)
                return cls(**data)

        return cls()

    def save(self, config_file: Path | None = None) -> None:
        """Save configuration to file.

        Args:
            config_file: Path to config file, uses default if None
        """
        if config_file is None:
            config_file = DEFAULT_CONFIG_FILE

        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

        logger.info("config_saved", path=str(config_file))

    @field_validator("blte_workers")
    @classmethod
    def validate_blte_workers(cls, v: int) -> int:
        """Validate BLTE worker count."""
        if v < 1:
            raise ValueError("BLTE workers must be at least 1")
        return v

    @field_validator("output_format")
    @classmethod
    def validate_output_format(cls, v: str) -> str:
        """Validate output format."""
        valid_formats = {fmt.value for fmt in OutputFormat}
        if v not in valid_formats:
            raise ValueError(f"Invalid output format: {v}. Valid formats: {valid_formats}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Valid levels: {valid_levels}")
        return v
