"""Error taxonomy for CORS Proxify.

  UnresolvableTarget       : the request path is not a URL this proxy acts on;
                             the HTTP layer falls through to usage text / 404.
  MalformedSchemeRequest   : looks like ``http:/host`` (one slash); HTTP 400.
  PolicyRejection          : blacklist / whitelist / required header /
                             rate limit / bad port / bad host; HTTP 4xx.
  UpstreamTransportFailure : the outbound request failed at the network layer;
                             HTTP 502 (500 for an unusable target URL).
  RateLimitConfigError     : the rate-limit setting is invalid; aborts startup.

A redirect chain longer than ``max_redirects`` is not an error: the forwarder
finalizes with a rewritten ``Location`` header instead.
"""

from __future__ import annotations


class CorsProxyError(Exception):
    """Base class for all CORS Proxify errors."""


class UnresolvableTarget(CorsProxyError):
    """The request path does not describe a URL this proxy can forward to."""


class MalformedSchemeRequest(UnresolvableTarget):
    """The request path starts with ``http:/`` or ``https:/`` followed by a non-slash.

    Usually caused by a front server or router collapsing ``//`` in the path.
    """


class PolicyRejection(CorsProxyError):
    """A request was refused by the origin policy before any outbound call.

    Attributes:
        status_code: HTTP status sent to the client.
        reason:      Short phrase used for logs (e.g. ``"Invalid host"``).
        body:        Plaintext explanation sent to the client.
    """

    def __init__(self, status_code: int, reason: str, body: str) -> None:
        super().__init__(f"{status_code} {reason}: {body}")
        self.status_code = status_code
        self.reason = reason
        self.body = body


class UpstreamTransportFailure(CorsProxyError):
    """The outbound request to the target (or forward proxy) failed.

    Never retried. ``status_code`` is 502 for connectivity / protocol / timeout
    errors and 500 when the target URL could not be used at all.
    """

    def __init__(self, status_code: int, reason: str, detail: str = "") -> None:
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.status_code = status_code
        self.reason = reason
        self.detail = detail


class RateLimitConfigError(ValueError):
    """The rate-limit configuration string contains an invalid host pattern."""
