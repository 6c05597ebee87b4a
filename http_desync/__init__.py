"""http-desync: mass HTTP request smuggling scanner.

Tests many targets concurrently for CL.TE and TE.CL desynchronisation using
a catalog of Transfer-Encoding header mutations and a timing oracle.
"""

__version__ = "1.0.0"

from http_desync.core.config import ScanConfig, NetworkConfig
from http_desync.core.engine import DesyncScanner, run_scan
from http_desync.core.models import ScanSummary, SmuggleTestRecord, TestStatus

__all__ = [
    "__version__",
    "ScanConfig",
    "NetworkConfig",
    "DesyncScanner",
    "run_scan",
    "ScanSummary",
    "SmuggleTestRecord",
    "TestStatus",
]
