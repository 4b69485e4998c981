"""Origin policy engine: admission control before any outbound call.

``OriginPolicy.admit()`` classifies one inbound request. Checks run in this
order and the first one that fires answers the request locally:

  OPTIONS                        → 200 preflight (no other check runs)
  http:/host (one slash)         → 400 Missing slash
  port > 65535                   → 400 Invalid port
  invalid host, no http(s): path → 404 Invalid host
  no required header present     → 400 Header required
  origin blacklisted             → 403 (wins over the whitelist)
  origin not whitelisted         → 403
  rate limit exceeded            → 429
  same-origin shortcut           → 301 to the target itself
  otherwise                      → Allow(target, outbound headers, proxy base URL)

A path that does not describe a URL at all raises UnresolvableTarget; the
HTTP layer answers it (usage text or 404).
"""

from __future__ import annotations

import re
from typing import Mapping, Optional

from corsproxify.config import PolicyConfig
from corsproxify.constants import MAX_PORT
from corsproxify.errors import MalformedSchemeRequest, PolicyRejection
from corsproxify.models.decisions import Allow, Decision, Deny
from corsproxify.models.target import Target
from corsproxify.proxy.headers import add_forwarded_headers, build_upstream_headers, with_cors
from corsproxify.proxy.resolver import has_explicit_scheme, is_valid_hostname, resolve_target
from corsproxify.ratelimit.limiter import PermissiveRateLimiter, RateLimiter

_FORWARDED_HTTPS = re.compile(r"^\s*https")

MISSING_SLASH_BODY = "The URL is invalid: two slashes are needed after the http(s):."


class OriginPolicy:
    """Admission control configured once at startup.

    Args:
        config:          Policy options (defaults already merged).
        rate_limiter:    Optional limiter consulted with the request origin.
        add_x_forwarded: Append X-Forwarded-* headers to allowed requests.
    """

    def __init__(
        self,
        config: PolicyConfig,
        rate_limiter: "RateLimiter | PermissiveRateLimiter | None" = None,
        add_x_forwarded: bool = True,
    ) -> None:
        self.config = config
        self.rate_limiter = rate_limiter
        self.add_x_forwarded = add_x_forwarded
        self._blacklist = frozenset(config.origin_blacklist)
        self._whitelist = frozenset(config.origin_whitelist)

    def admit(
        self,
        method: str,
        raw_url: str,
        headers: Mapping[str, str],
        client_host: Optional[str] = None,
        scheme: str = "http",
    ) -> Decision:
        """Classify one inbound request.

        Args:
            method:      Inbound HTTP method.
            raw_url:     Raw request path plus query string (``/http://x.com/a?b``).
            headers:     Inbound request headers.
            client_host: Peer address, for X-Forwarded-For.
            scheme:      Scheme the client used to reach this server.

        Raises:
            UnresolvableTarget: The path is not a proxy call.
        """
        method = method.upper()
        request_headers = {name.lower(): value for name, value in headers.items()}
        cors_headers = dict(with_cors({}, request_headers, method, self.config.cors_max_age))

        if method == "OPTIONS":
            return Deny(200, "Preflight", "", cors_headers)

        try:
            target = resolve_target(raw_url)
        except MalformedSchemeRequest:
            return Deny(400, "Missing slash", MISSING_SLASH_BODY, cors_headers)

        origin = request_headers.get("origin", "")
        try:
            self._check_port(target)
            self._check_host(target, raw_url)
            self._check_required_headers(request_headers)
            self._check_origin(origin)
            self._check_rate_limit(origin)
        except PolicyRejection as rejection:
            return Deny(rejection.status_code, rejection.reason, rejection.body, cors_headers)

        if self.config.redirect_same_origin and is_same_origin(origin, target):
            cors_headers["vary"] = "origin"
            cors_headers["cache-control"] = "private"
            cors_headers["location"] = target.href
            return Deny(301, "Please use a direct request", "", cors_headers)

        host_header = request_headers.get("host", "")
        forwarded_proto = request_headers.get("x-forwarded-proto", "")
        base_scheme = "https" if _FORWARDED_HTTPS.match(forwarded_proto) else "http"
        proxy_base_url = f"{base_scheme}://{host_header}"

        outbound = build_upstream_headers(
            request_headers,
            remove_headers=self.config.remove_headers,
            set_headers=self.config.set_headers,
        )
        if self.add_x_forwarded:
            add_forwarded_headers(outbound, client_host, host_header, scheme)

        return Allow(target=target, outbound_headers=outbound, proxy_base_url=proxy_base_url)

    # ─── Individual checks (raise PolicyRejection) ────────────────────────────

    def _check_port(self, target: Target) -> None:
        if target.port is not None and target.port > MAX_PORT:
            raise PolicyRejection(400, "Invalid port", f"Port number too large: {target.port}")

    def _check_host(self, target: Target, raw_url: str) -> None:
        # Don't even try to proxy invalid hosts (such as /favicon.ico, /robots.txt)
        if not has_explicit_scheme(raw_url) and not is_valid_hostname(target.hostname):
            raise PolicyRejection(404, "Invalid host", f"Invalid host: {target.hostname}")

    def _check_required_headers(self, request_headers: Mapping[str, str]) -> None:
        required = self.config.require_header
        if required and not any(request_headers.get(name) for name in required):
            raise PolicyRejection(
                400,
                "Header required",
                "Missing required request header. Must specify one of: " + ",".join(required),
            )

    def _check_origin(self, origin: str) -> None:
        if origin in self._blacklist:
            raise PolicyRejection(
                403,
                "Forbidden",
                f'The origin "{origin}" was blacklisted by the operator of this proxy.',
            )
        if self._whitelist and origin not in self._whitelist:
            raise PolicyRejection(
                403,
                "Forbidden",
                f'The origin "{origin}" was not whitelisted by the operator of this proxy.',
            )

    def _check_rate_limit(self, origin: str) -> None:
        if self.rate_limiter is None:
            return
        message = self.rate_limiter.check_rate_limit(origin)
        if message:
            raise PolicyRejection(
                429,
                "Too Many Requests",
                f'The origin "{origin}" has sent too many requests.\n{message}',
            )


def is_same_origin(origin: str, target: Target) -> bool:
    """Plain string-prefix test: ``href`` is ``origin`` followed by ``/``.

    Not a structured URL comparison.
    """
    href = target.href
    return (
        bool(origin)
        and len(href) > len(origin)
        and href[len(origin)] == "/"
        and href.startswith(origin)
    )
