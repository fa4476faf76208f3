"""
Unit tests for environment-based configuration.
"""

import pytest

from dbaas.docindex.config import (
    BackfillConfig,
    DatabaseConfig,
    IndexServerConfig,
    StorageConfig,
)
from dbaas.docindex.store.retry import retry_delay


class TestConfig:
    """Tests for configuration loading and validation."""

    def test_defaults(self):
        config = IndexServerConfig()
        config.validate()

        assert config.backfill.batch_size == 100
        assert config.database.address_bytes == b"\x00"
        assert config.observability.log_format == "json"

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATA_DIR", str(tmp_path))
        monkeypatch.setenv("BACKFILL_BATCH_SIZE", "7")
        monkeypatch.setenv("BACKFILL_RESUME_ON_START", "false")
        monkeypatch.setenv("DATABASE_ADDRESS", "0a0b")
        monkeypatch.setenv("DATABASE_SENDER", "ff")
        monkeypatch.setenv("LOG_FORMAT", "text")

        config = IndexServerConfig.from_env()

        assert config.storage.data_dir == str(tmp_path)
        assert config.backfill.batch_size == 7
        assert config.backfill.resume_on_start is False
        assert config.database.address_bytes == b"\x0a\x0b"
        assert config.database.sender_bytes == b"\xff"
        assert config.observability.log_format == "text"

    def test_invalid_address(self):
        config = IndexServerConfig(database=DatabaseConfig(address="xyz"))
        with pytest.raises(ValueError, match="hex"):
            config.validate()

    def test_empty_address(self):
        config = IndexServerConfig(database=DatabaseConfig(address=""))
        with pytest.raises(ValueError, match="empty"):
            config.validate()

    def test_invalid_batch_size(self):
        config = IndexServerConfig(backfill=BackfillConfig(batch_size=0))
        with pytest.raises(ValueError, match="BACKFILL_BATCH_SIZE"):
            config.validate()

    def test_invalid_log_format(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "xml")
        with pytest.raises(ValueError, match="LOG_FORMAT"):
            IndexServerConfig.from_env()

    def test_invalid_page_size(self):
        config = IndexServerConfig(storage=StorageConfig(scan_page_size=0))
        with pytest.raises(ValueError):
            config.validate()


class TestRetryDelay:
    """Tests for exponential backoff delays."""

    def test_backoff(self):
        config = BackfillConfig(retry_delay_ms=10, backoff_multiplier=2.0)
        assert retry_delay(config, 1) == pytest.approx(0.01)
        assert retry_delay(config, 2) == pytest.approx(0.02)
        assert retry_delay(config, 3) == pytest.approx(0.04)
