"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import pytest

from dagstore.observability import close_file_logging, configure_logging, get_logger

if TYPE_CHECKING:
    from pathlib import Path


def test_configure_logging_sets_level_warning() -> None:
    """Default verbosity (0) sets WARNING level."""
    configure_logging(verbosity=0)

    assert logging.getLogger().level == logging.WARNING


def test_configure_logging_verbose_opens_root_level() -> None:
    """verbosity=1 lets INFO through; the console handler does the filtering."""
    configure_logging(verbosity=1)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.DEBUG
    assert root_logger.handlers[0].level == logging.INFO


def test_configure_logging_very_verbose_sets_debug() -> None:
    configure_logging(verbosity=2)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.DEBUG
    assert root_logger.handlers[0].level == logging.DEBUG


def test_get_logger_auto_configures() -> None:
    """get_logger configures logging if not already done."""
    import dagstore.observability.logging as log_module

    log_module._configured = False

    logger = get_logger("test")

    assert log_module._configured is True
    assert hasattr(logger, "info")
    assert hasattr(logger, "warning")


def test_file_logging_creates_directory(tmp_path: Path) -> None:
    log_dir = tmp_path / "logs"
    configure_logging(verbosity=0, log_to_file=True, log_dir=log_dir)

    assert log_dir.is_dir()
    close_file_logging()


def test_file_logging_requires_log_dir() -> None:
    with pytest.raises(ValueError, match="log_dir is required"):
        configure_logging(verbosity=0, log_to_file=True, log_dir=None)


def test_reconfiguration_closes_previous_handler(tmp_path: Path) -> None:
    import dagstore.observability.logging as log_module

    configure_logging(verbosity=0, log_to_file=True, log_dir=tmp_path)
    first_handler = log_module._file_handler
    assert first_handler is not None

    configure_logging(verbosity=0, log_to_file=True, log_dir=tmp_path)

    assert first_handler.stream is None or first_handler.stream.closed
    assert log_module._file_handler is not None
    close_file_logging()
    assert log_module._file_handler is None


def test_jsonl_file_handler_writes_structlog_context(tmp_path: Path) -> None:
    """Structlog key/value context lands as top-level JSONL fields."""
    configure_logging(verbosity=2, log_to_file=True, log_dir=tmp_path)

    logger = get_logger("test.context")
    logger.info("graph_replaced", graph_id="g1", nodes=3)
    close_file_logging()

    log_file = tmp_path / "debug.jsonl"
    entries = [json.loads(line) for line in log_file.read_text().splitlines()]
    matching = [e for e in entries if e.get("message") == "graph_replaced"]

    assert matching, "Log entry with structlog context not found in JSONL"
    assert matching[0]["graph_id"] == "g1"
    assert matching[0]["nodes"] == 3
    assert matching[0]["level"] == "INFO"
