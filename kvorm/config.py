"""
Configuration for kvorm.

Uses pydantic-settings for environment variable loading. Every setting
can be overridden with a KVORM_-prefixed environment variable, e.g.
KVORM_STORE_BACKEND=sqlite or KVORM_LOG_FORMAT=json.

How to change safely:
    - Add new settings with defaults that keep current behavior
    - Bump schema_version whenever the table layout changes
"""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class StoreBackend(str, Enum):
    """Supported store backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


class Settings(BaseSettings):
    """kvorm configuration loaded from environment."""

    # Database identity
    database_name: str = Field(default="kvorm", description="Logical database name")
    schema_version: int = Field(default=1, description="Store schema version")

    # Store backend
    store_backend: StoreBackend = Field(default=StoreBackend.MEMORY, description="Store backend")
    data_dir: str = Field(default="./data", description="Directory for SQLite files")

    # SQLite tuning
    sqlite_wal_mode: bool = Field(default=True, description="Enable SQLite WAL mode")
    sqlite_busy_timeout_ms: int = Field(default=5000, description="SQLite busy timeout")
    sqlite_cache_size_pages: int = Field(
        default=-64000, description="SQLite cache size (negative = KB)"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: str = Field(default="text", description="Log format: text or json")

    model_config = {"env_prefix": "KVORM_"}

    @field_validator("schema_version")
    @classmethod
    def _check_version(cls, value: int) -> int:
        if value < 1:
            raise ValueError("schema_version must be >= 1")
        return value

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log_level: {value}")
        return value

    @field_validator("log_format")
    @classmethod
    def _check_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("text", "json"):
            raise ValueError(f"Invalid log_format: {value}. Must be 'text' or 'json'")
        return value

    def log_config(self) -> None:
        """Log current configuration (no secrets are held)."""
        logger.info(
            "kvorm configuration",
            extra={
                "database_name": self.database_name,
                "schema_version": self.schema_version,
                "store_backend": self.store_backend.value,
                "data_dir": self.data_dir,
                "log_level": self.log_level,
                "log_format": self.log_format,
            },
        )
