"""Unit tests for logging setup."""

import logging
from logging.handlers import RotatingFileHandler

import pytest
import structlog

from riveting_bot.logging import event_context, get_logger, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_console_only(self, settings, restore_logging):
        setup_logging(settings)

        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert not isinstance(root.handlers[0], RotatingFileHandler)

    def test_file_handler(self, settings, tmp_path, restore_logging):
        settings.log_to_file = True
        settings.log_directory = str(tmp_path / "logs")
        settings.log_level = "DEBUG"

        setup_logging(settings)
        get_logger("riveting_bot.test").info("file_logging_works", answer=42)

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert any(isinstance(h, RotatingFileHandler) for h in root.handlers)
        for handler in root.handlers:
            handler.flush()
        content = (tmp_path / "logs" / "riveting_bot.log").read_text(encoding="utf-8")
        assert '"event": "file_logging_works"' in content
        assert '"answer": 42' in content

    def test_third_party_loggers_are_quieted(self, settings, restore_logging):
        setup_logging(settings)
        assert logging.getLogger("discord.gateway").level == logging.WARNING


class TestEventContext:
    """Tests for event_context."""

    def test_binds_fields_inside_block(self):
        with event_context(event_kind="message_create", guild_id=7):
            assert structlog.contextvars.get_contextvars() == {
                "event_kind": "message_create",
                "guild_id": 7,
            }
        assert "event_kind" not in structlog.contextvars.get_contextvars()

    def test_skips_none_values(self):
        with event_context(event_kind="ready", guild_id=None):
            assert "guild_id" not in structlog.contextvars.get_contextvars()
