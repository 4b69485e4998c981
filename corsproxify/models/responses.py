"""Locally-generated HTTP responses.

Two builders, one per way a request ends without an upstream response being
relayed:

  build_deny_response():
      Answer for an ``Deny`` decision: preflight 200, same-origin 301, or a
      4xx policy rejection with a plaintext explanation.

  build_upstream_unavailable_response():
      HTTP 502 (500 for an unusable target URL) when the outbound request
      failed at the transport layer. Body:
      ``Not found because of proxy error: <ExcType>: <detail>``.

Both carry the CORS headers so the browser surfaces the status and body to the
calling page instead of a generic network error.
"""

from __future__ import annotations

from typing import Mapping

from fastapi.responses import Response

from corsproxify.errors import UpstreamTransportFailure
from corsproxify.models.decisions import Deny


def build_deny_response(decision: Deny) -> Response:
    """Build the local answer for a Deny decision.

    An empty body is sent without a Content-Type header (preflight and
    same-origin redirect answers).
    """
    return Response(
        content=decision.body.encode("utf-8"),
        status_code=decision.status_code,
        headers=dict(decision.headers),
        media_type="text/plain; charset=utf-8" if decision.body else None,
    )


def build_upstream_unavailable_response(
    failure: UpstreamTransportFailure,
    cors_headers: Mapping[str, str],
) -> Response:
    """Build the response for an outbound request that never got an answer.

    Args:
        failure:      The transport failure raised by the forwarder.
        cors_headers: CORS headers computed for the inbound request.
    """
    detail = f"{failure.reason}: {failure.detail}" if failure.detail else failure.reason
    return Response(
        content=f"Not found because of proxy error: {detail}".encode("utf-8"),
        status_code=failure.status_code,
        headers=dict(cors_headers),
        media_type="text/plain; charset=utf-8",
    )
