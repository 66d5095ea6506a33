"""Tests for logging configuration."""

import logging

from health_assistant.app_logging import configure_logging


def test_configure_logging_idempotent() -> None:
    logger = logging.getLogger("health_assistant")
    logger.handlers.clear()

    configure_logging()
    first_count = len(logger.handlers)

    configure_logging(logging.DEBUG)
    second_count = len(logger.handlers)

    assert first_count == 1
    assert second_count == 1
    assert logger.level == logging.DEBUG
    assert logger.propagate is False


def test_configure_logging_accepts_level_names() -> None:
    configure_logging("warning")

    assert logging.getLogger("health_assistant").level == logging.WARNING
