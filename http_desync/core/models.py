from dataclasses import dataclass, field, replace
from typing import Tuple, Dict, Any
from enum import Enum
from urllib.parse import urlparse

from .exceptions import ParseError, StatusAlreadySetError


class DesyncType(Enum):
    CL_TE = "CL.TE"
    TE_CL = "TE.CL"


class TestStatus(Enum):
    UNKNOWN = "unknown"
    SAFE = "safe"
    CLTE = "CL.TE"
    TECL = "TE.CL"
    ERROR = "error"

    # not a pytest test class
    __test__ = False

    @property
    def is_finding(self) -> bool:
        return self in (TestStatus.CLTE, TestStatus.TECL)

    @classmethod
    def for_desync(cls, desync: DesyncType) -> "TestStatus":
        return cls.CLTE if desync is DesyncType.CL_TE else cls.TECL


@dataclass(frozen=True)
class Target:
    url: str
    scheme: str
    host: str
    port: int
    path: str

    @property
    def use_ssl(self) -> bool:
        return self.scheme == "https"

    @property
    def host_header(self) -> str:
        default_port = 443 if self.use_ssl else 80
        if self.port == default_port:
            return self.host
        return f"{self.host}:{self.port}"

    @classmethod
    def parse(cls, line: str) -> "Target":
        """Parse one input line into a Target.

        Raises:
            ParseError: the line is not an absolute http(s) URL
        """
        url = line.strip()
        try:
            parsed = urlparse(url)
            port = parsed.port
        except ValueError as e:
            raise ParseError(line, str(e))

        if parsed.scheme not in ("http", "https"):
            raise ParseError(line, f"unsupported scheme {parsed.scheme!r}")
        if not parsed.hostname:
            raise ParseError(line, "missing host")
        try:
            parsed.hostname.encode("idna")
        except UnicodeError as e:
            raise ParseError(line, f"invalid host: {e}")

        if port is None:
            port = 443 if parsed.scheme == "https" else 80

        path = parsed.path or "/"
        if parsed.query:
            path = f"{path}?{parsed.query}"

        return cls(
            url=url,
            scheme=parsed.scheme,
            host=parsed.hostname,
            port=port,
            path=path,
        )

    def __str__(self) -> str:
        return self.url


@dataclass(frozen=True)
class SmuggleTestRecord:
    """One (target, method, mutation) test and its outcome."""

    target: Target
    method: str
    mutation: str
    timeout: float
    status: TestStatus = TestStatus.UNKNOWN

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.target.url, self.method, self.mutation)

    def resolve(self, status: TestStatus) -> "SmuggleTestRecord":
        """Return a copy with a terminal status. Status is write-once."""
        if self.status is not TestStatus.UNKNOWN:
            raise StatusAlreadySetError(self.key, self.status.value)
        if status is TestStatus.UNKNOWN:
            raise ValueError("cannot resolve a record to UNKNOWN")
        return replace(self, status=status)

    def result_line(self) -> str:
        return f"{self.method} {self.target.url} {self.status.value} {self.mutation}"


@dataclass
class ScanSummary:
    targets_read: int = 0
    parse_errors: int = 0
    baselines_measured: int = 0
    baselines_reused: int = 0
    tests_planned: int = 0
    tests_dispatched: int = 0
    tests_skipped: int = 0
    tests_completed: int = 0
    findings: int = 0
    errors: int = 0
    duration: float = 0.0
    finding_lines: list = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targets_read": self.targets_read,
            "parse_errors": self.parse_errors,
            "baselines": {
                "measured": self.baselines_measured,
                "reused": self.baselines_reused,
            },
            "tests": {
                "planned": self.tests_planned,
                "dispatched": self.tests_dispatched,
                "skipped": self.tests_skipped,
                "completed": self.tests_completed,
            },
            "findings": self.findings,
            "errors": self.errors,
            "duration_seconds": self.duration,
        }
