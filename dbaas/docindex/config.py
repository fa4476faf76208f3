"""
Configuration management for the docindex service.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set an explicit database address
    - Invalid values fail at startup, not on first use

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageConfig:
    """Local index storage configuration.

    Attributes:
        data_dir: Directory for the SQLite index file
        db_filename: SQLite file name
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        scan_page_size: Rows fetched per page during range scans
    """

    data_dir: str = "/var/lib/docindex"
    db_filename: str = "docindex.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    scan_page_size: int = 500

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/docindex"),
            db_filename=os.getenv("INDEX_DB_FILENAME", "docindex.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            scan_page_size=int(os.getenv("INDEX_SCAN_PAGE_SIZE", "500")),
        )


@dataclass(frozen=True)
class BackfillConfig:
    """Backfill and key-application configuration.

    Attributes:
        batch_size: Documents encoded and applied per batch (cursor saved per batch)
        max_retries: Retries for transient storage errors before downgrading
        retry_delay_ms: Delay before the first retry
        backoff_multiplier: Factor applied to the delay on each further retry
        resume_on_start: Resume backfills left in CREATING when the service starts
    """

    batch_size: int = 100
    max_retries: int = 3
    retry_delay_ms: int = 50
    backoff_multiplier: float = 2.0
    resume_on_start: bool = True

    @classmethod
    def from_env(cls) -> BackfillConfig:
        """Load configuration from environment variables."""
        return cls(
            batch_size=int(os.getenv("BACKFILL_BATCH_SIZE", "100")),
            max_retries=int(os.getenv("BACKFILL_MAX_RETRIES", "3")),
            retry_delay_ms=int(os.getenv("BACKFILL_RETRY_DELAY_MS", "50")),
            backoff_multiplier=float(os.getenv("BACKFILL_BACKOFF_MULTIPLIER", "2.0")),
            resume_on_start=os.getenv("BACKFILL_RESUME_ON_START", "true").lower() == "true",
        )


@dataclass(frozen=True)
class DatabaseConfig:
    """Identity of the database whose catalog this service maintains.

    Attributes:
        address: Database address (hex)
        sender: Owning sender (hex)
    """

    address: str = "00"
    sender: str = ""

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        """Load configuration from environment variables."""
        return cls(
            address=os.getenv("DATABASE_ADDRESS", "00"),
            sender=os.getenv("DATABASE_SENDER", ""),
        )

    @property
    def address_bytes(self) -> bytes:
        return bytes.fromhex(self.address)

    @property
    def sender_bytes(self) -> bytes:
        return bytes.fromhex(self.sender)


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class IndexServerConfig:
    """Complete service configuration.

    Attributes:
        storage: Index storage configuration
        backfill: Backfill and retry configuration
        database: Database identity
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    backfill: BackfillConfig = field(default_factory=BackfillConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> IndexServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            IndexServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            backfill=BackfillConfig.from_env(),
            database=DatabaseConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        try:
            address = self.database.address_bytes
            self.database.sender_bytes
        except ValueError:
            raise ValueError("DATABASE_ADDRESS and DATABASE_SENDER must be hex strings")
        if not address:
            raise ValueError("DATABASE_ADDRESS cannot be empty")

        if self.backfill.batch_size <= 0:
            raise ValueError("BACKFILL_BATCH_SIZE must be positive")
        if self.backfill.max_retries < 0:
            raise ValueError("BACKFILL_MAX_RETRIES cannot be negative")
        if self.backfill.backoff_multiplier < 1.0:
            raise ValueError("BACKFILL_BACKOFF_MULTIPLIER must be >= 1.0")
        if self.storage.scan_page_size <= 0:
            raise ValueError("INDEX_SCAN_PAGE_SIZE must be positive")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be one of: json, text")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Index service configuration loaded",
            extra={
                "data_dir": self.storage.data_dir,
                "db_filename": self.storage.db_filename,
                "database_address": self.database.address,
                "backfill_batch_size": self.backfill.batch_size,
                "backfill_max_retries": self.backfill.max_retries,
                "log_level": self.observability.log_level,
            },
        )
