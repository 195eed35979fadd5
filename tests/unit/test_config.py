"""Tests for settings and logging setup."""

import logging
from uuid import UUID

import pytest

from reqflow.core.config import Settings
from reqflow.core.logger import CHATTY_LOGGERS, configure_from_settings, parse_level, setup_logger


class TestSettings:
    """Test settings parsing."""

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.rule_conflict_policy == "most_specific"
        assert settings.fallback_approver_roles_list == []
        assert settings.system_actor_id == UUID(int=0)
        assert settings.notification_timeout_seconds == 2.0

    def test_list_properties(self):
        settings = Settings(
            _env_file=None,
            fallback_approver_roles="finance, admin",
            notification_webhook_urls=" https://a.example.com ,,",
        )
        assert settings.fallback_approver_roles_list == ["FINANCE", "ADMIN"]
        assert settings.notification_webhook_urls_list == ["https://a.example.com"]

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("RULE_CONFLICT_POLICY", "strict")
        monkeypatch.setenv("MAX_PAGE_SIZE", "25")
        settings = Settings(_env_file=None)
        assert settings.rule_conflict_policy == "strict"
        assert settings.max_page_size == 25


class TestLogger:
    """Test logger setup."""

    def test_file_and_console_handlers(self, tmp_path):
        logger = setup_logger("reqflow-test-file", log_dir=str(tmp_path), level="debug")
        try:
            assert logger.level == logging.DEBUG
            assert len(logger.handlers) == 2
            logger.info("hello")
            assert (tmp_path / "reqflow-test-file.log").exists()
        finally:
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)

    def test_no_duplicate_handlers(self, tmp_path):
        first = setup_logger("reqflow-test-dup", log_dir=str(tmp_path), file_logging=False)
        second = setup_logger("reqflow-test-dup", log_dir=str(tmp_path), file_logging=False)
        try:
            assert first is second
            assert len(second.handlers) == 1
        finally:
            for handler in list(second.handlers):
                second.removeHandler(handler)

    def test_invalid_level(self):
        with pytest.raises(ValueError, match="Invalid log level"):
            setup_logger("reqflow-test-bad", level="LOUD", file_logging=False)

    def test_configure_from_settings(self, tmp_path):
        settings = Settings(_env_file=None, log_dir=str(tmp_path), log_level="WARNING", log_to_file=False)
        logger = configure_from_settings(settings)
        try:
            assert logger.name == "reqflow"
            assert logger.level == logging.WARNING
        finally:
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
            logger.setLevel(logging.NOTSET)

    def test_parse_level(self):
        assert parse_level(" warning ") == logging.WARNING
        with pytest.raises(ValueError, match="Must be one of"):
            parse_level("VERBOSE")

    def test_library_loggers_quieted_unless_debug(self, tmp_path):
        previous = {name: logging.getLogger(name).level for name in CHATTY_LOGGERS}
        logger = logging.getLogger("reqflow")
        try:
            configure_from_settings(Settings(_env_file=None, log_dir=str(tmp_path), log_level="INFO"))
            assert all(logging.getLogger(name).level == logging.WARNING for name in CHATTY_LOGGERS)

            for name in CHATTY_LOGGERS:
                logging.getLogger(name).setLevel(logging.NOTSET)
            configure_from_settings(Settings(_env_file=None, log_dir=str(tmp_path), log_level="DEBUG"))
            assert logging.getLogger("sqlalchemy.engine").level == logging.NOTSET
        finally:
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
            logger.setLevel(logging.NOTSET)
            for name, level in previous.items():
                logging.getLogger(name).setLevel(level)
