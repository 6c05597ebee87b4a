"""Structured logging utilities for http-desync.

Uses structlog for structured logging with Rich for console output. Findings
are not log events: they go through ResultLog as plain lines so they can be
piped and grepped.
"""

import logging
from typing import Optional, Any, Dict, TextIO
from datetime import datetime, timezone

import structlog
from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme
from rich.style import Style


DESYNC_THEME = Theme({
    "info": Style(color="cyan"),
    "warning": Style(color="yellow", bold=True),
    "error": Style(color="red", bold=True),
    "vulnerability": Style(color="red", bold=True),
    "safe": Style(color="green"),
    "payload": Style(color="magenta"),
    "timing": Style(color="blue"),
    "endpoint": Style(color="cyan", italic=True),
})

# Diagnostics go to stderr, findings to stdout
console = Console(theme=DESYNC_THEME, stderr=True)
result_console = Console(theme=DESYNC_THEME, highlight=False)


def add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add ISO timestamp to log events."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
    quiet: bool = False,
) -> structlog.stdlib.BoundLogger:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON format instead of pretty console
        log_file: Optional file path to write logs to
        quiet: If True, suppress console output

    Returns:
        Configured structlog logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handlers = []

    if not quiet:
        rich_handler = RichHandler(
            console=console,
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
        rich_handler.setLevel(log_level)
        handlers.append(rich_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))
        handlers.append(file_handler)

    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,
    )

    processors = [
        structlog.stdlib.filter_by_level,
        add_timestamp,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger("http_desync")


def get_logger(name: str = "http_desync") -> structlog.stdlib.BoundLogger:
    """Get a logger instance with the given name."""
    return structlog.get_logger(name)


class ResultLog:
    """Writes one line per confirmed finding.

    Lines go to stdout and, when given, to an output file. The format is
    ``<method> <target> <status> <mutation>``.
    """

    def __init__(self, output: Optional[TextIO] = None, quiet: bool = False):
        self.output = output
        self.quiet = quiet
        self.lines = []

    def write(self, line: str) -> None:
        self.lines.append(line)
        if not self.quiet:
            result_console.print(line, markup=False)
        if self.output is not None:
            self.output.write(line + "\n")
            self.output.flush()


class ScanLogger:
    """Specialized logger for scan progress with Rich output."""

    def __init__(self, verbose: bool = False, quiet: bool = False):
        self.verbose = verbose
        self.quiet = quiet
        self.logger = get_logger("http_desync.scan")

    def phase(self, message: str) -> None:
        """Log the start of a scan phase."""
        if not self.quiet:
            console.print(f"[bold cyan]{message}[/bold cyan]")

    def baseline_measured(self, url: str, elapsed: float) -> None:
        self.logger.debug("baseline measured", url=url, elapsed_ms=round(elapsed * 1000))
        if self.verbose and not self.quiet:
            console.print(
                f"  [timing]Baseline:[/timing] [endpoint]{url}[/endpoint] {elapsed * 1000:.0f}ms"
            )

    def test_dispatched(self, method: str, url: str, mutation: str) -> None:
        if self.verbose and not self.quiet:
            console.print(
                f"  [info]Testing:[/info] {method} [endpoint]{url}[/endpoint] "
                f"[payload]{mutation}[/payload]"
            )

    def test_skipped(self, url: str, reason: str) -> None:
        self.logger.debug("test skipped", url=url, reason=reason)

    def finding(self, line: str) -> None:
        self.logger.info("desync confirmed", finding=line)

    def error(self, error: Exception) -> None:
        self.logger.error("scan error", error=str(error), kind=error.__class__.__name__)

    def warning(self, message: str) -> None:
        if not self.quiet:
            console.print(f"[warning]Warning:[/warning] {message}")
