"""Observability module for dagstore.

Provides structured logging.
"""

from dagstore.observability.logging import (
    close_file_logging,
    configure_logging,
    get_logger,
)

__all__ = [
    "close_file_logging",
    "configure_logging",
    "get_logger",
]
