"""Utility modules for http-desync."""

from .logging import (
    setup_logging,
    get_logger,
    ScanLogger,
    ResultLog,
    console,
    result_console,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "ScanLogger",
    "ResultLog",
    "console",
    "result_console",
]
