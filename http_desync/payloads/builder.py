"""Raw request construction for desync detection.

Standard HTTP libraries normalise headers and compute framing themselves,
which would destroy the Transfer-Encoding mutations and the deliberately
wrong Content-Length values. Requests here are assembled byte for byte.

The four detection requests share one header shape and differ only in the
declared Content-Length and the body:

    CL.TE probe   CL 4  "1\\r\\nZ\\r\\nQ"   a TE parser waits for the rest of the chunk
    CL.TE verify  CL 7  "1\\r\\nZ\\r\\nQ"   a TE backend sees "Q" as a bad chunk size
    TE.CL probe   CL 6  "0\\r\\n\\r\\nX"    a CL backend waits for the sixth byte
    TE.CL verify  CL 5  "0\\r\\n\\r\\n"     the same framing with nothing left over

The Host header carries ":port" only for a non-default port, and the request
target keeps the URL query string, so probes hit exactly the URL given.
"""

from typing import Dict, List, Optional, Sequence

from http_desync.core.exceptions import ConfigError
from http_desync.core.models import DesyncType, Target
from http_desync.payloads.mutations import generate_mutations


CRLF = "\r\n"

CLTE_BODY = "1\r\nZ\r\nQ"
TECL_BODY = "0\r\n\r\nX"
TECL_VERIFY_BODY = "0\r\n\r\n"


def build_request_line(method: str, path: str) -> str:
    return f"{method} {path or '/'} HTTP/1.1{CRLF}"


def build_header_block(target: Target, headers: Sequence[str]) -> str:
    lines = [f"Host: {target.host_header}"]
    lines.extend(headers)
    return "".join(f"{line}{CRLF}" for line in lines)


def _encode(request: str) -> bytes:
    return request.encode("utf-8")


def build_baseline(target: Target, headers: Sequence[str] = ()) -> bytes:
    """Plain GET used to measure a target's normal latency."""
    request = build_request_line("GET", target.path)
    request += build_header_block(target, headers)
    request += CRLF
    return _encode(request)


def _build_desync(
    method: str,
    target: Target,
    te_header: str,
    headers: Sequence[str],
    content_length: int,
    body: str,
) -> bytes:
    request = build_request_line(method, target.path)
    request += f"{te_header}{CRLF}"
    request += build_header_block(target, headers)
    request += f"Content-Length: {content_length}{CRLF}"
    request += CRLF
    request += body
    return _encode(request)


def build_clte(
    method: str, target: Target, te_header: str, headers: Sequence[str] = ()
) -> bytes:
    """CL.TE probe: times out when the backend honours Transfer-Encoding."""
    return _build_desync(method, target, te_header, headers, 4, CLTE_BODY)


def build_clte_verify(
    method: str, target: Target, te_header: str, headers: Sequence[str] = ()
) -> bytes:
    """CL.TE verification: answered quickly by the same vulnerable backend."""
    return _build_desync(method, target, te_header, headers, 7, CLTE_BODY)


def build_tecl(
    method: str, target: Target, te_header: str, headers: Sequence[str] = ()
) -> bytes:
    """TE.CL probe: times out when the backend honours Content-Length."""
    return _build_desync(method, target, te_header, headers, 6, TECL_BODY)


def build_tecl_verify(
    method: str, target: Target, te_header: str, headers: Sequence[str] = ()
) -> bytes:
    """TE.CL verification: answered quickly by the same vulnerable backend."""
    return _build_desync(method, target, te_header, headers, 5, TECL_VERIFY_BODY)


PROBE_BUILDERS = {
    DesyncType.CL_TE: (build_clte, build_clte_verify),
    DesyncType.TE_CL: (build_tecl, build_tecl_verify),
}


def parse_desync_type(value: str) -> DesyncType:
    for desync in DesyncType:
        if desync.value.lower() == value.strip().lower():
            return desync
    raise ConfigError([f"unrecognised desync type: {value}"])


def build_single_test(
    method: str,
    url: str,
    desync_type: str,
    mutation: str,
    mutations: Optional[Dict[str, str]] = None,
    headers: Optional[List[str]] = None,
) -> bytes:
    """Build the probe request for one reported finding.

    This is the entry point for proof-of-concept generators. It only touches
    request construction and never opens a connection.

    Args:
        method: HTTP method of the finding
        url: Target URL
        desync_type: "CL.TE" or "TE.CL"
        mutation: Mutation name
        mutations: Catalog to look the name up in (defaults to the full catalog)
        headers: Extra header lines

    Raises:
        ConfigError: unknown desync type or mutation name
        ParseError: the URL is not an absolute http(s) URL
    """
    catalog = mutations if mutations is not None else generate_mutations()
    if mutation not in catalog:
        raise ConfigError([f"mutation {mutation} not found"])

    desync = parse_desync_type(desync_type)
    target = Target.parse(url)
    probe, _ = PROBE_BUILDERS[desync]
    return probe(method, target, catalog[mutation], headers or ())
