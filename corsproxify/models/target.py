"""Target: the fully-qualified upstream URL a request is forwarded to."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from corsproxify.constants import DEFAULT_PORTS


@dataclass(frozen=True)
class Target:
    """Immutable upstream URL.

    ``hostname`` is stored without IPv6 brackets. ``port`` is the port written
    in the URL, or None when omitted; it may exceed 65535 so the policy engine
    can reject it. ``path`` always starts with ``/`` and includes the query.
    """

    scheme: str
    hostname: str
    port: Optional[int] = None
    path: str = "/"

    @property
    def effective_port(self) -> int:
        if self.port is not None:
            return self.port
        return DEFAULT_PORTS[self.scheme]

    @property
    def host(self) -> str:
        """``hostname[:port]`` as sent in the Host header (default port elided)."""
        hostname = f"[{self.hostname}]" if ":" in self.hostname else self.hostname
        if self.port is None or self.port == DEFAULT_PORTS.get(self.scheme):
            return hostname
        return f"{hostname}:{self.port}"

    @property
    def origin(self) -> str:
        return f"{self.scheme}://{self.host}"

    @property
    def href(self) -> str:
        return f"{self.origin}{self.path}"

    def __str__(self) -> str:
        return self.href
