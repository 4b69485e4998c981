"""Per-request redirect state machine.

    SENDING → AWAITING_UPSTREAM → (REDIRECTING → SENDING)* → FINALIZED | FAILED

``ForwardingState.observe()`` is the transition function: given the status and
headers of one upstream response it decides whether the forwarder follows a
redirect (the state then points at the next Target) or finalizes. It performs
no I/O, so every branch can be tested with synthetic responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional
from urllib.parse import urljoin

from corsproxify.constants import (
    DEFAULT_MAX_REDIRECTS,
    FOLLOWABLE_REDIRECT_STATUSES,
    REDIRECT_DEBUG_HEADER_PREFIX,
    REDIRECT_STATUSES,
    REQUEST_URL_HEADER,
)
from corsproxify.errors import UnresolvableTarget
from corsproxify.models.target import Target
from corsproxify.proxy.resolver import resolve_target


class Phase(str, Enum):
    SENDING = "sending"
    AWAITING_UPSTREAM = "awaiting_upstream"
    REDIRECTING = "redirecting"
    FINALIZED = "finalized"
    FAILED = "failed"


@dataclass(frozen=True)
class Step:
    """Outcome of observing one upstream response.

    Attributes:
        follow:   True when the forwarder must send a new GET to ``state.target``.
        location: Rewritten ``Location`` header for the client (finalize only).
    """

    follow: bool
    location: Optional[str] = None


@dataclass
class ForwardingState:
    """Mutable state of one in-flight proxied request. Never shared."""

    target: Target
    proxy_base_url: str
    method: str = "GET"
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    cors_max_age: int = 0
    redirect_count: int = 0
    phase: Phase = Phase.SENDING
    # Headers stamped on the client response across attempts, in insertion order.
    client_headers: dict[str, str] = field(default_factory=dict)

    @property
    def attempts(self) -> int:
        """Outbound attempts sent so far (counting the one in flight)."""
        return min(self.redirect_count, self.max_redirects) + 1

    def observe(self, status_code: int, headers: Mapping[str, str]) -> Step:
        """Advance the state machine with one upstream response."""
        if self.redirect_count == 0:
            self.client_headers[REQUEST_URL_HEADER] = self.target.href

        if status_code not in REDIRECT_STATUSES:
            self.phase = Phase.FINALIZED
            return Step(follow=False)

        location = headers.get("location")
        if not location:
            self.phase = Phase.FINALIZED
            return Step(follow=False)

        absolute = urljoin(self.target.href, location.strip())
        try:
            next_target = resolve_target(absolute)
        except UnresolvableTarget:
            self.phase = Phase.FINALIZED
            return Step(follow=False)

        if status_code in FOLLOWABLE_REDIRECT_STATUSES:
            self.redirect_count += 1
            if self.redirect_count <= self.max_redirects:
                header = f"{REDIRECT_DEBUG_HEADER_PREFIX}{self.redirect_count}"
                self.client_headers[header] = f"{status_code} {absolute}"
                self.target = next_target
                self.method = "GET"
                self.phase = Phase.REDIRECTING
                return Step(follow=True)

        self.phase = Phase.FINALIZED
        return Step(follow=False, location=f"{self.proxy_base_url}/{absolute}")

    def fail(self) -> None:
        self.phase = Phase.FAILED
