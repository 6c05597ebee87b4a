"""Core modules for http-desync."""

from .exceptions import (
    DesyncError,
    TransportError,
    DialError,
    WriteError,
    ReadError,
    BaselineTimeoutError,
    InconclusiveError,
    ParseError,
    PersistenceError,
    ConfigError,
    StatusAlreadySetError,
)
from .models import (
    DesyncType,
    TestStatus,
    Target,
    SmuggleTestRecord,
    ScanSummary,
)
from .config import (
    ScanConfig,
    NetworkConfig,
    DEFAULT_METHODS,
    DEFAULT_HEADERS,
)
from .engine import DesyncScanner, run_scan

__all__ = [
    # Exceptions
    "DesyncError",
    "TransportError",
    "DialError",
    "WriteError",
    "ReadError",
    "BaselineTimeoutError",
    "InconclusiveError",
    "ParseError",
    "PersistenceError",
    "ConfigError",
    "StatusAlreadySetError",
    # Models
    "DesyncType",
    "TestStatus",
    "Target",
    "SmuggleTestRecord",
    "ScanSummary",
    # Config
    "ScanConfig",
    "NetworkConfig",
    "DEFAULT_METHODS",
    "DEFAULT_HEADERS",
    # Engine
    "DesyncScanner",
    "run_scan",
]
