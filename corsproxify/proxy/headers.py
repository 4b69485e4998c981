"""HTTP header processing for the CORS proxy.

  - with_cors(): stamps the cross-origin headers onto a response header
    mapping and consumes the preflight negotiation headers of the request.
  - build_upstream_headers(): the outbound request header set: hop-by-hop
    headers stripped, operator ``remove_headers`` / ``set_headers`` applied.
  - add_forwarded_headers(): appends X-Forwarded-For / -Port / -Proto.
  - build_client_response_headers(): upstream response headers minus hop-by-hop.

RFC 7230 §6.1: hop-by-hop headers MUST NOT be forwarded by intermediaries.
"""

from __future__ import annotations

from typing import Iterable, Mapping, MutableMapping, Optional

import httpx

# ─── Constants ────────────────────────────────────────────────────────────────

# Stripped from the outbound request. host is derived from the Target and
# content-length is computed by httpx from content=.
HOP_BY_HOP_HEADERS: frozenset[str] = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "host",
        "content-length",
    }
)

# Stripped from the upstream response. content-length is kept: the raw body is
# relayed byte for byte.
RESPONSE_HOP_BY_HOP_HEADERS: frozenset[str] = HOP_BY_HOP_HEADERS - {"host", "content-length"}

# Preflight negotiation headers consumed by the proxy, never sent upstream.
CORS_REQUEST_METHOD = "access-control-request-method"
CORS_REQUEST_HEADERS = "access-control-request-headers"


# ─── CORS ─────────────────────────────────────────────────────────────────────


def with_cors(
    headers: MutableMapping[str, str],
    request_headers: MutableMapping[str, str],
    method: str,
    cors_max_age: int,
) -> MutableMapping[str, str]:
    """Add the cross-origin headers to ``headers`` (mutated and returned).

    ``request_headers`` is the mutable lower-cased copy of the inbound headers:
    the Access-Control-Request-* headers are mirrored into the response and
    then removed from it so they are not passed upstream.
    Access-Control-Expose-Headers lists every header name present at the end.
    """
    headers["access-control-allow-origin"] = "*"
    if method == "OPTIONS" and cors_max_age:
        headers["access-control-max-age"] = str(cors_max_age)

    requested_method = request_headers.pop(CORS_REQUEST_METHOD, None)
    if requested_method:
        headers["access-control-allow-methods"] = requested_method

    requested_headers = request_headers.pop(CORS_REQUEST_HEADERS, None)
    if requested_headers:
        headers["access-control-allow-headers"] = requested_headers

    headers["access-control-expose-headers"] = ",".join(headers.keys())
    return headers


# ─── Outbound request ─────────────────────────────────────────────────────────


def build_upstream_headers(
    request_headers: Mapping[str, str],
    remove_headers: Iterable[str] = (),
    set_headers: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """Build the header dict sent to the target.

    Rules applied (in order):
      1. Strip hop-by-hop headers (including the client-facing host).
      2. Strip the operator's ``remove_headers``.
      3. Apply the operator's ``set_headers`` (overwrite).

    Args:
        request_headers: Lower-cased inbound headers (after with_cors consumed
                         the preflight negotiation headers).
        remove_headers:  Lower-cased names to drop.
        set_headers:     Lower-cased name → value pairs to force.
    """
    removed = set(remove_headers)
    headers: dict[str, str] = {}
    for name, value in request_headers.items():
        lower_name = name.lower()
        if lower_name in HOP_BY_HOP_HEADERS or lower_name in removed:
            continue
        headers[lower_name] = value
    for name, value in (set_headers or {}).items():
        headers[name.lower()] = value
    return headers


def add_forwarded_headers(
    headers: MutableMapping[str, str],
    client_host: Optional[str],
    host_header: str,
    proto: str,
) -> None:
    """Append X-Forwarded-For / -Port / -Proto, keeping values set by earlier hops."""
    if _has_port(host_header):
        port = host_header.rsplit(":", 1)[1]
    else:
        port = "443" if proto == "https" else "80"
    values = {
        "x-forwarded-for": client_host or "",
        "x-forwarded-port": port,
        "x-forwarded-proto": proto,
    }
    for name, value in values.items():
        if not value:
            continue
        existing = headers.get(name)
        headers[name] = f"{existing},{value}" if existing else value


def _has_port(host_header: str) -> bool:
    _, sep, port = host_header.rpartition(":")
    return bool(sep) and port.isdigit()


# ─── Client response ──────────────────────────────────────────────────────────


def build_client_response_headers(upstream_headers: httpx.Headers) -> httpx.Headers:
    """Copy the upstream response headers, minus hop-by-hop headers.

    Returns an ``httpx.Headers`` so repeated headers (set-cookie) survive.
    """
    return httpx.Headers(
        [
            (name, value)
            for name, value in upstream_headers.multi_items()
            if name.lower() not in RESPONSE_HOP_BY_HOP_HEADERS
        ]
    )
