"""Forward proxy selection for outbound requests.

Decides, per outbound attempt, whether the request to a Target must be routed
through a configured forward proxy (``HTTP_PROXY`` / ``HTTPS_PROXY`` /
``ALL_PROXY``, with ``NO_PROXY`` exemptions). Fails soft: a broken endpoint
is logged and the Target is reached directly.
"""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote, urlsplit

from corsproxify.config import ForwardProxyConfig
from corsproxify.models.target import Target
from corsproxify.utils.logger import get_logger

logger = get_logger(__name__)

_ENTRY_SEPARATOR = re.compile(r"[,\s]+")


@dataclass(frozen=True)
class ForwardProxy:
    """A forward proxy endpoint, credentials split out of the URL."""

    url: str
    username: str = ""
    password: str = ""

    @property
    def proxy_authorization(self) -> Optional[str]:
        """``Basic`` credentials for the Proxy-Authorization header, if any."""
        if not self.username and not self.password:
            return None
        token = base64.b64encode(f"{self.username}:{self.password}".encode()).decode("ascii")
        return f"Basic {token}"


@dataclass(frozen=True)
class _NoProxyEntry:
    hostname: str
    port: Optional[int]
    suffix: bool  # ".example.com" / "*.example.com" match subdomains

    def matches(self, target: Target) -> bool:
        if self.port is not None and self.port != target.effective_port:
            return False
        if self.suffix:
            return target.hostname.endswith("." + self.hostname)
        return target.hostname == self.hostname


class ForwardProxyResolver:
    """Resolve the forward proxy (if any) for a Target.

    ``no_proxy`` holds comma/space separated ``host[:port]`` entries or ``*``.
    With ``*`` forwarding is disabled entirely; otherwise a Target matching any
    entry is reached directly. ``all_proxy`` wins over the scheme-specific
    endpoints.
    """

    def __init__(
        self,
        no_proxy: str = "",
        http_proxy: str = "",
        https_proxy: str = "",
        all_proxy: str = "",
    ) -> None:
        self._disabled = no_proxy.strip() == "*"
        self._no_proxy = [] if self._disabled else _parse_no_proxy(no_proxy)
        self._endpoints = {"http": http_proxy.strip(), "https": https_proxy.strip()}
        self._all_proxy = all_proxy.strip()

    @classmethod
    def from_config(cls, config: ForwardProxyConfig) -> "ForwardProxyResolver":
        return cls(
            no_proxy=config.no_proxy,
            http_proxy=config.http_proxy,
            https_proxy=config.https_proxy,
            all_proxy=config.all_proxy,
        )

    @property
    def enabled(self) -> bool:
        return not self._disabled and bool(self._all_proxy or any(self._endpoints.values()))

    def forward_proxy_for(self, target: Target) -> Optional[ForwardProxy]:
        """Return the forward proxy to use for ``target``, or None to connect directly."""
        if self._disabled:
            return None
        if any(entry.matches(target) for entry in self._no_proxy):
            return None

        endpoint = self._all_proxy or self._endpoints.get(target.scheme, "")
        if not endpoint:
            return None
        if "://" not in endpoint:
            endpoint = f"{target.scheme}://{endpoint}"
        return _parse_endpoint(endpoint)


def _parse_no_proxy(value: str) -> list[_NoProxyEntry]:
    entries: list[_NoProxyEntry] = []
    for token in _ENTRY_SEPARATOR.split(value.strip()):
        if not token:
            continue
        if "://" in token:
            token = token.split("://", 1)[1]
        token = token.rstrip("/").lower()

        suffix = False
        if token.startswith("*."):
            token, suffix = token[2:], True
        elif token.startswith("."):
            token, suffix = token[1:], True

        port: Optional[int] = None
        host_part, sep, port_part = token.rpartition(":")
        if sep and port_part.isdigit() and not host_part.endswith(":"):
            token, port = host_part, int(port_part)
        token = token.strip("[]")
        if token:
            entries.append(_NoProxyEntry(hostname=token, port=port, suffix=suffix))
    return entries


def _parse_endpoint(endpoint: str) -> Optional[ForwardProxy]:
    try:
        parts = urlsplit(endpoint)
        hostname = parts.hostname
        port = parts.port
    except ValueError as exc:
        logger.warning("Ignoring invalid forward proxy endpoint", error=str(exc))
        return None
    if not hostname:
        logger.warning("Ignoring forward proxy endpoint without a host")
        return None

    host = f"[{hostname}]" if ":" in hostname else hostname
    netloc = f"{host}:{port}" if port is not None else host
    return ForwardProxy(
        url=f"{parts.scheme}://{netloc}",
        username=unquote(parts.username or ""),
        password=unquote(parts.password or ""),
    )
