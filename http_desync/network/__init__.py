"""Network layer for http-desync."""

from .raw_socket import ConnectionOracle, OracleResult, create_ssl_context

__all__ = [
    "ConnectionOracle",
    "OracleResult",
    "create_ssl_context",
]
