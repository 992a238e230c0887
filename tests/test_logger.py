"""Tests for logging module."""

import logging
import logging.handlers
from pathlib import Path

from coach_feed.logger import NOISY_LOGGERS, get_logger, setup_logging


def test_setup_logging(test_settings):
    """Test logging setup creates handlers correctly."""
    setup_logging(test_settings)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.INFO

    # Should have console and file handlers
    assert len(root_logger.handlers) == 2
    handlers = {type(h) for h in root_logger.handlers}
    assert logging.StreamHandler in handlers
    assert logging.handlers.RotatingFileHandler in handlers

    assert Path(test_settings.logging.file_path).exists()


def test_setup_logging_creates_log_directory(test_settings, temp_dir: Path):
    test_settings.logging.file_path = str(temp_dir / "nested" / "dir" / "feed.log")

    setup_logging(test_settings)

    assert (temp_dir / "nested" / "dir" / "feed.log").exists()


def test_get_logger():
    """Test logger creation with correct name."""
    logger = get_logger("test_module")
    assert isinstance(logger, logging.Logger)
    assert logger.name == "test_module"


def test_logging_levels(test_settings):
    """Test different logging levels."""
    test_settings.logging.level = "DEBUG"
    setup_logging(test_settings)
    logger = get_logger("test_levels")

    assert logger.getEffectiveLevel() == logging.DEBUG
    assert logging.getLogger("botocore").level == logging.DEBUG

    test_settings.logging.level = "ERROR"
    setup_logging(test_settings)
    assert logger.getEffectiveLevel() == logging.ERROR


def test_library_loggers_are_quieted(test_settings):
    test_settings.logging.level = "INFO"
    setup_logging(test_settings)

    for name in NOISY_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING


def test_messages_reach_log_file(test_settings):
    setup_logging(test_settings)
    get_logger("coach_feed.test").warning("feed is live")

    for handler in logging.getLogger().handlers:
        handler.flush()
    assert "feed is live" in Path(test_settings.logging.file_path).read_text()
