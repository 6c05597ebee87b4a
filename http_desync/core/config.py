"""Configuration classes for http-desync."""

from dataclasses import dataclass, field
from typing import Optional, List, Dict

from .exceptions import ConfigError
from http_desync.payloads.mutations import generate_mutations, filter_mutations


DEFAULT_METHODS = ["GET", "POST", "PUT", "DELETE"]

DEFAULT_HEADERS = [
    "Connection: close",
    "User-Agent: Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/42.0.2311.135 Safari/537.36 Edge/12.246",
]


@dataclass
class NetworkConfig:
    """Network-level configuration."""

    # Ceiling for the baseline request of each target
    baseline_timeout: float = 30.0

    # Upper bound on waiting for a closed connection to finish tearing down
    close_timeout: float = 2.0

    # Log every request with its elapsed time
    debug: bool = False


@dataclass
class ScanConfig:
    """Main configuration for a scan."""

    # Concurrency
    workers: int = 10

    # What to send
    methods: List[str] = field(default_factory=lambda: list(DEFAULT_METHODS))
    headers: List[str] = field(default_factory=lambda: list(DEFAULT_HEADERS))

    # Extra time on top of the baseline that marks a request as hanging
    delay: float = 5.0

    # Backpressure: 0 disables either cap
    stop_after: int = 0
    max_errors: int = 0

    # Persistence
    state_file: str = "smuggles.state"
    checkpoint_interval: float = 60.0

    # Mutation selection (glob patterns)
    enabled: List[str] = field(default_factory=list)
    disabled: List[str] = field(default_factory=list)

    network: NetworkConfig = field(default_factory=NetworkConfig)

    # Verbosity
    verbose: bool = False
    quiet: bool = False

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if self.workers <= 0:
            errors.append("workers must be positive")

        if not self.methods:
            errors.append("at least one method is required")
        elif any(not m or any(c.isspace() for c in m) for m in self.methods):
            errors.append("methods must be non-empty and contain no whitespace")

        if self.delay <= 0:
            errors.append("delay must be positive")

        if self.stop_after < 0:
            errors.append("stop_after cannot be negative")

        if self.max_errors < 0:
            errors.append("max_errors cannot be negative")

        if self.checkpoint_interval <= 0:
            errors.append("checkpoint_interval must be positive")

        if self.network.baseline_timeout <= 0:
            errors.append("baseline_timeout must be positive")

        for header in self.headers:
            if ":" not in header or "\r" in header or "\n" in header:
                errors.append(f"malformed header line: {header!r}")

        if not self.state_file:
            errors.append("state_file is required")

        return errors

    def resolve_mutations(self, catalog: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Return the enabled mutations.

        Raises:
            ConfigError: the filters select no mutation
        """
        catalog = catalog if catalog is not None else generate_mutations()
        selected = filter_mutations(catalog, self.enabled, self.disabled)
        if not selected:
            raise ConfigError(["mutation filters select no mutations"])
        return selected
