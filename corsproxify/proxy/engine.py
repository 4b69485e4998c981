"""HTTP surface of CORS Proxify: the catch-all proxy route.

Every method on ``/{path:path}`` lands here, WebDAV and other extension
methods included, so the route is a plain Starlette route without a method
list (see create_app()). The request path (raw, minus the leading slash) plus
the query string is the target URL:

  GET /https://example.com/data.json?x=1   → proxied to https://example.com/data.json?x=1

Request flow:
  1. Bind a ULID request id to the logging context.
  2. OriginPolicy.admit() → Deny (answered locally) or Allow.
  3. Forwarder.forward() walks the redirect chain.
  4. The final upstream response is relayed with CORS headers, ``x-request-url``,
     ``x-final-url`` and any ``X-CORS-Redirect-<n>`` headers. The raw body is
     streamed through unchanged and the upstream response is closed when the
     stream ends.

Failure modes:
  - Unresolvable path → usage text for ``GET /``, otherwise 404 "Not found".
  - Transport failure → 502 (500 for an unusable target URL).
  - Upstream HTTP 4xx/5xx → relayed as-is (NOT converted).
"""

from __future__ import annotations

from typing import AsyncIterator

import httpx
from fastapi import Request, Response
from fastapi.responses import PlainTextResponse, StreamingResponse

from corsproxify.constants import FINAL_URL_HEADER
from corsproxify.errors import UnresolvableTarget, UpstreamTransportFailure
from corsproxify.health import require_ready
from corsproxify.models.decisions import Deny
from corsproxify.models.forwarding import ForwardingState, Step
from corsproxify.models.responses import build_deny_response, build_upstream_unavailable_response
from corsproxify.proxy.forwarder import Forwarder
from corsproxify.proxy.headers import build_client_response_headers, with_cors
from corsproxify.proxy.policy import OriginPolicy
from corsproxify.utils.logger import clear_request_id, get_logger, set_request_id
from corsproxify.utils.ulid import generate_ulid

logger = get_logger(__name__)

# ─── Route ────────────────────────────────────────────────────────────────────

PROXY_PATH = "/{path:path}"

USAGE_TEXT = """\
This API enables cross-origin requests to anywhere.

Usage:

/               Shows help
/<url>          Create a request to <url>, and includes CORS headers in the response.

If the protocol is omitted, it defaults to http (https if port 443 is specified).

Redirects are automatically followed. For debugging purposes, each followed redirect results
in the addition of a X-CORS-Redirect-n header, where n starts at 1.
After {max_redirects} redirects, redirects are not followed any more. The redirect response is sent back
to the browser, which can choose to follow the redirect (handled automatically by the browser).

The requested URL is available in the X-Request-URL response header.
The final URL, after following all redirects, is available in the X-Final-URL response header.
"""


def raw_request_url(request: Request) -> str:
    """Path as sent on the request line (no percent-decoding, no "//" collapsing) plus query."""
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.url.path
    query = request.scope.get("query_string", b"").decode("latin-1")
    return f"{path}?{query}" if query else path


# ─── Proxy handler ────────────────────────────────────────────────────────────


async def proxy_handler(request: Request) -> Response:
    """Admit, forward and relay one cross-origin request (any HTTP method)."""
    await require_ready(request)
    request_id = generate_ulid()
    set_request_id(request_id)
    try:
        return await _handle(request)
    finally:
        clear_request_id()


async def _handle(request: Request) -> Response:
    policy: OriginPolicy = request.app.state.policy
    forwarder: Forwarder = request.app.state.forwarder

    method = request.method.upper()
    raw_url = raw_request_url(request)
    origin = request.headers.get("origin", "")

    try:
        decision = policy.admit(
            method,
            raw_url,
            request.headers,
            client_host=request.client.host if request.client else None,
            scheme=request.url.scheme,
        )
    except UnresolvableTarget:
        if method == "GET" and raw_url.split("?", 1)[0] == "/":
            return PlainTextResponse(USAGE_TEXT.format(max_redirects=policy.config.max_redirects))
        logger.debug("unresolvable_path", path=raw_url)
        return PlainTextResponse("Not found", status_code=404)

    if isinstance(decision, Deny):
        if decision.status_code >= 400:
            logger.info(
                "request_denied",
                status_code=decision.status_code,
                reason=decision.reason,
                origin=origin,
                path=raw_url,
            )
        return build_deny_response(decision)

    state = ForwardingState(
        target=decision.target,
        proxy_base_url=decision.proxy_base_url,
        method=method,
        max_redirects=policy.config.max_redirects,
        cors_max_age=policy.config.cors_max_age,
    )
    body = await request.body()

    try:
        upstream_response, step = await forwarder.forward(decision.outbound_headers, body, state)
    except UpstreamTransportFailure as failure:
        cors_headers = with_cors({}, {}, method, state.cors_max_age)
        return build_upstream_unavailable_response(failure, cors_headers)

    try:
        response = _relay_response(upstream_response, step, state, method)
    except Exception:
        await upstream_response.aclose()
        raise

    logger.info(
        "request_proxied",
        method=method,
        origin=origin,
        target=state.target.href,
        status_code=upstream_response.status_code,
        redirects=min(state.redirect_count, state.max_redirects),
    )
    return response


# ─── Response relay ───────────────────────────────────────────────────────────


def _client_headers(
    upstream_response: httpx.Response,
    step: Step,
    state: ForwardingState,
    method: str,
) -> httpx.Headers:
    headers = build_client_response_headers(upstream_response.headers)
    if step.location is not None:
        headers["location"] = step.location
    for name, value in state.client_headers.items():
        headers[name] = value
    headers[FINAL_URL_HEADER] = state.target.href
    with_cors(headers, {}, method, state.cors_max_age)
    return headers


def _relay_response(
    upstream_response: httpx.Response,
    step: Step,
    state: ForwardingState,
    method: str,
) -> StreamingResponse:
    headers = _client_headers(upstream_response, step, state, method)
    response = StreamingResponse(
        content=_stream_body(upstream_response),
        status_code=upstream_response.status_code,
    )
    # append() keeps repeated headers such as set-cookie.
    for name, value in headers.multi_items():
        response.headers.append(name, value)
    return response


async def _stream_body(upstream_response: httpx.Response) -> AsyncIterator[bytes]:
    """Relay the raw (still encoded) upstream body, then close the response."""
    try:
        async for chunk in upstream_response.aiter_raw():
            yield chunk
    finally:
        await upstream_response.aclose()
