"""
Tests for unveil.config: database path, settings and logging.

Tests verify:
1. UNVEIL_DB_PATH path resolution and get_connection()
2. AnalysisSettings env overrides, validation and .env loading
3. setup_logging() handlers and formatters
"""

import importlib
import json
import logging
import logging.handlers
import os
from pathlib import Path
from unittest.mock import patch

import duckdb
import pytest

from unveil.config.logging_config import (
    HumanReadableFormatter,
    JSONFormatter,
    LogContext,
    get_logger,
    setup_logging,
)
from unveil.config.protocols import DAY_MS, HOUR_MS
from unveil.config.settings import AnalysisSettings, get_settings, load_settings, reset_settings


class TestDatabaseConfig:
    """Tests for UNVEIL_DB_PATH and get_connection()."""

    def test_default_path(self):
        with patch.dict(os.environ, {}, clear=True):
            import unveil.config.database as db_module

            importlib.reload(db_module)
            assert db_module.UNVEIL_DB_PATH == Path("data/unveil.duckdb")

    def test_env_var_overrides_default(self, tmp_path):
        custom_path = str(tmp_path / "custom.duckdb")

        with patch.dict(os.environ, {"UNVEIL_DB_PATH": custom_path}):
            import unveil.config.database as db_module

            importlib.reload(db_module)
            assert db_module.UNVEIL_DB_PATH == Path(custom_path)

        importlib.reload(db_module)

    def test_get_connection_creates_parent(self, tmp_path):
        from unveil.config.database import get_connection

        db_path = tmp_path / "nested" / "dir" / "test.duckdb"

        conn = get_connection(db_path)
        try:
            assert isinstance(conn, duckdb.DuckDBPyConnection)
            assert conn.execute("SELECT 42").fetchone() == (42,)
        finally:
            conn.close()
        assert db_path.parent.exists()

    def test_read_only_mode(self, tmp_path):
        from unveil.config.database import get_connection

        db_path = tmp_path / "ro.duckdb"
        conn = duckdb.connect(str(db_path))
        conn.execute("CREATE TABLE t (id INTEGER)")
        conn.close()

        conn = get_connection(db_path, read_only=True)
        try:
            with pytest.raises(duckdb.Error):
                conn.execute("INSERT INTO t VALUES (1)")
        finally:
            conn.close()


class TestAnalysisSettings:
    """Tests for AnalysisSettings."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = AnalysisSettings()

        assert settings.db_path == "data/unveil.duckdb"
        assert settings.log_level == "INFO"
        assert settings.log_dir is None
        assert settings.max_workers == 4
        assert settings.anonymity_window_hours is None
        assert settings.weak_set_threshold == 10

    def test_env_overrides(self):
        env = {
            "UNVEIL_DB_PATH": "/tmp/x.duckdb",
            "LOG_LEVEL": "DEBUG",
            "LOG_MODE": "production",
            "ANALYSIS_MAX_WORKERS": "8",
            "ANONYMITY_WINDOW_HOURS": "48",
            "ENTROPY_BUCKET_MINUTES": "30",
            "WEAK_SET_THRESHOLD": "5",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = AnalysisSettings()

        assert settings.db_path == "/tmp/x.duckdb"
        assert settings.log_mode == "production"
        assert settings.max_workers == 8
        assert settings.anonymity_window_hours == 48.0
        assert settings.entropy_bucket_minutes == 30.0
        assert settings.weak_set_threshold == 5

    @pytest.mark.parametrize(
        "env",
        [
            {"LOG_LEVEL": "LOUD"},
            {"LOG_MODE": "staging"},
            {"ANALYSIS_MAX_WORKERS": "0"},
            {"ANONYMITY_WINDOW_HOURS": "-1"},
            {"WEAK_SET_THRESHOLD": "0"},
        ],
    )
    def test_invalid_values_rejected(self, env):
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ValueError, match="Invalid settings"):
                AnalysisSettings()

    def test_apply_to_profile(self, privacy_cash):
        with patch.dict(
            os.environ, {"ANONYMITY_WINDOW_HOURS": "2", "ENTROPY_BUCKET_MINUTES": "15"}, clear=True
        ):
            settings = AnalysisSettings()

        profile = settings.apply_to(privacy_cash)

        assert profile.anonymity_window_ms == 2 * HOUR_MS
        assert profile.entropy_bucket_ms == 15 * 60 * 1000
        assert privacy_cash.anonymity_window_ms == 7 * DAY_MS

    def test_apply_to_without_overrides(self, privacy_cash):
        with patch.dict(os.environ, {}, clear=True):
            assert AnalysisSettings().apply_to(privacy_cash) is privacy_cash

    def test_load_settings_from_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("ANALYSIS_MAX_WORKERS=2\nLOG_LEVEL=WARNING\n")

        with patch.dict(os.environ, {"LOG_LEVEL": "ERROR"}, clear=True):
            settings = load_settings(env_file)

        assert settings.max_workers == 2
        # Existing environment wins over the file
        assert settings.log_level == "ERROR"

    def test_get_settings_is_cached(self):
        with patch.dict(os.environ, {}, clear=True):
            first = get_settings()
            assert get_settings() is first
            reset_settings()
            assert get_settings() is not first

    def test_to_dict(self):
        with patch.dict(os.environ, {}, clear=True):
            data = AnalysisSettings().to_dict()
        assert data["max_workers"] == 4
        assert "db_path" in data


class TestLogging:
    """Tests for setup_logging and formatters."""

    def test_console_only_by_default(self):
        logger = setup_logging(name="unveil.test_console", level="DEBUG")

        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert not logger.propagate

    def test_reconfigure_does_not_duplicate_handlers(self):
        setup_logging(name="unveil.test_dup")
        logger = setup_logging(name="unveil.test_dup")
        assert len(logger.handlers) == 1

    def test_file_handler_with_log_dir(self, tmp_path):
        logger = setup_logging(name="unveil.test_file", log_dir=str(tmp_path / "logs"))
        try:
            assert any(
                isinstance(h, logging.handlers.RotatingFileHandler) for h in logger.handlers
            )
            assert (tmp_path / "logs").is_dir()
        finally:
            for handler in logger.handlers:
                handler.close()
            logger.handlers.clear()

    def test_invalid_level(self):
        with pytest.raises(ValueError, match="Invalid log level"):
            setup_logging(name="unveil.test_bad", level="LOUD")

    def test_json_formatter_includes_context(self):
        logger = logging.getLogger("unveil.test_json")
        with LogContext(logger, protocol="privacy-cash"):
            record = logger.makeRecord(
                logger.name, logging.INFO, __file__, 1, "analysis done", (), None
            )

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "analysis done"
        assert data["level"] == "INFO"
        assert data["protocol"] == "privacy-cash"

    def test_nested_context_merges(self):
        logger = logging.getLogger("unveil.test_nested")
        with LogContext(logger, protocol="shadowwire"):
            with LogContext(logger, stage="scoring"):
                record = logger.makeRecord(
                    logger.name, logging.INFO, __file__, 1, "msg", (), None
                )

        assert record.extra_fields == {"protocol": "shadowwire", "stage": "scoring"}

    def test_human_formatter(self):
        record = logging.LogRecord("unveil.x", logging.WARNING, __file__, 7, "careful", (), None)
        record.extra_fields = {"protocol": "silentswap"}

        text = HumanReadableFormatter(use_colors=False).format(record)

        assert "WARNING" in text
        assert "careful" in text
        assert "[protocol=silentswap]" in text
        assert "\033[" not in text

    def test_get_logger_from_environment(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "WARNING"}, clear=True):
            logger = get_logger("unveil.test_env")
        assert logger.level == logging.WARNING
        assert get_logger("unveil.test_env") is logger
