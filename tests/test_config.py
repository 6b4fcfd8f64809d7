"""Tests for settings and logging configuration."""

import io
import logging

import pytest
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from feynman.core.config import Settings, get_llm_client, get_settings
from feynman.core.logging import configure_logging


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self, mock_settings):
        assert mock_settings.soft_threshold == 100_000
        assert mock_settings.hard_threshold == 150_000
        assert mock_settings.emergency_threshold == 180_000
        assert mock_settings.saved_history_limit == 10
        assert mock_settings.request_retries == 3
        assert mock_settings.retry_base_delay == 1.0

    def test_env_override(self, mock_settings, monkeypatch):
        monkeypatch.setenv("FEYNMAN_SOFT_THRESHOLD", "5000")
        monkeypatch.setenv("FEYNMAN_SAVED_HISTORY_LIMIT", "4")
        get_settings.cache_clear()

        settings = get_settings()

        assert settings.soft_threshold == 5000
        assert settings.saved_history_limit == 4

    def test_thresholds_must_ascend(self, mock_settings, monkeypatch):
        monkeypatch.setenv("FEYNMAN_HARD_THRESHOLD", "90000")
        with pytest.raises(ValidationError, match="strictly ascending"):
            Settings()

    def test_log_level_int(self, mock_settings, monkeypatch):
        monkeypatch.setenv("FEYNMAN_LOG_LEVEL", "debug")
        assert Settings().log_level_int == logging.DEBUG

        monkeypatch.setenv("FEYNMAN_LOG_LEVEL", "chatty")
        assert Settings().log_level_int == logging.INFO

    def test_db_path_from_env(self, mock_settings, tmp_path):
        assert mock_settings.db_path == tmp_path / "feynman.db"


class TestLlmClient:
    """Tests for get_llm_client()."""

    def test_requires_key(self, mock_settings, monkeypatch):
        monkeypatch.setenv("LLM_API_KEY", "")
        with pytest.raises(ValueError, match="LLM_API_KEY"):
            get_llm_client(Settings())

    def test_configured_client(self, mock_settings):
        client = get_llm_client(mock_settings)
        assert client.api_key == "test-key"


class TestLogging:
    """Tests for configure_logging()."""

    def test_single_handler_after_repeat_calls(self):
        configure_logging(level=logging.INFO)
        package_logger = configure_logging(level=logging.DEBUG)

        rich_handlers = [h for h in package_logger.handlers if isinstance(h, RichHandler)]
        assert len(rich_handlers) == 1
        assert package_logger.level == logging.DEBUG

    def test_quiet_raises_level(self):
        package_logger = configure_logging(level=logging.DEBUG, quiet=True)
        assert package_logger.level == logging.WARNING

    def test_module_lines_written_once(self):
        console = Console(file=io.StringIO(), width=200)
        configure_logging(level=logging.INFO, console=console)

        logging.getLogger("feynman.api.cli").info("checkpoint written")

        assert console.file.getvalue().count("checkpoint written") == 1

    def test_http_loggers_quieted(self):
        configure_logging(level=logging.DEBUG)
        assert logging.getLogger("httpx").level == logging.WARNING
