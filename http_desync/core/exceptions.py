"""Custom exceptions for http-desync."""

from typing import Optional, Any, Dict, List


class DesyncError(Exception):
    """Base exception for all http-desync errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# ============================================================================
# Transport Errors
# ============================================================================


class TransportError(DesyncError):
    """Base class for per-request network failures.

    Transport errors are never fatal. They are reported on the error channel
    and counted against the target's error budget.
    """

    def __init__(self, url: str, message: str, phase: str):
        super().__init__(
            f"{phase} {url}: {message}",
            {"url": url, "phase": phase},
        )
        self.url = url
        self.phase = phase


class DialError(TransportError):
    """The TCP or TLS connection could not be established."""

    def __init__(self, url: str, message: str):
        super().__init__(url, message, "dial")


class WriteError(TransportError):
    """The request could not be written to the connection."""

    def __init__(self, url: str, message: str):
        super().__init__(url, message, "write")


class ReadError(TransportError):
    """Reading the response failed with something other than the deadline."""

    def __init__(self, url: str, message: str):
        super().__init__(url, message, "read")


class BaselineTimeoutError(ReadError):
    """The baseline request did not complete under the calibration ceiling."""

    def __init__(self, url: str, ceiling: float):
        super().__init__(url, f"no response within {ceiling}s baseline ceiling")
        self.ceiling = ceiling


class InconclusiveError(ReadError):
    """Both the probe and its verification request hit the deadline."""

    def __init__(self, url: str, desync: str, timeout: float):
        super().__init__(
            url, f"{desync} probe and verification both timed out after {timeout:.3f}s"
        )
        self.desync = desync
        self.timeout = timeout


# ============================================================================
# Input / Persistence / Configuration Errors
# ============================================================================


class ParseError(DesyncError):
    """An input line is not a usable absolute http(s) URL."""

    def __init__(self, line: str, reason: str):
        super().__init__(f"Invalid target {line!r}: {reason}", {"line": line})
        self.line = line
        self.reason = reason


class PersistenceError(DesyncError):
    """The scan state could not be read, serialized or written."""

    def __init__(self, path: str, message: str):
        super().__init__(f"State file {path}: {message}", {"path": path})
        self.path = path


class ConfigError(DesyncError):
    """Invalid or missing configuration."""

    def __init__(self, errors: List[str]):
        super().__init__(
            f"Configuration invalid: {'; '.join(errors)}", {"errors": errors}
        )
        self.errors = errors


class StatusAlreadySetError(DesyncError):
    """A test record was resolved twice."""

    def __init__(self, key: tuple, current: str):
        super().__init__(
            f"Record {key} already resolved as {current}",
            {"key": key, "status": current},
        )
