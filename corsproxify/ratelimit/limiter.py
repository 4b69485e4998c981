"""Per-origin request counter with a hard periodic reset.

Configured from a single string::

    <max requests per period> <period in minutes> [<unlimited host> ...]

Unlimited hosts are literal host names (ports must be listed explicitly) or
``/regex/`` tokens matching the whole host, case-insensitively. Examples:

    1 5                          any origin: one request per 5 minutes
    1 5 example.com              example.com unlimited, others 1 per 5 minutes
    0 1 /(.*\\.)?example\\.com/   example.com and subdomains only, block the rest
    0 1 example.com www.example.com

The counter mapping is replaced wholesale every period by an asyncio task:
a fixed window, not a sliding one. Nothing is persisted.

IMPORT RULES:
  - Unlimited-host patterns are operator input and are compiled with google-re2
    (linear-time matching). ``import re`` is only used for the fixed setting grammar.
"""

from __future__ import annotations

import asyncio
import re
import threading
from typing import Any, Optional

import re2

from corsproxify.errors import RateLimitConfigError
from corsproxify.utils.logger import get_logger

logger = get_logger(__name__)

_SETTING_PATTERN = re.compile(r"^(\d+) (\d+)(?:\s*$|\s+(.+)$)")
_SCHEME_PREFIX = re.compile(r"^[\w-]+://")


class RateLimiter:
    """Fixed-window request counter keyed by origin host.

    Lifecycle: construct once at startup, ``start()`` inside the running event
    loop, ``close()`` on shutdown. ``check_rate_limit()`` is the only hot-path
    operation; its read-increment-write and the periodic swap share one lock.
    """

    def __init__(
        self,
        max_requests: int,
        period_minutes: int,
        unlimited_pattern: Optional[Any] = None,
    ) -> None:
        self.max_requests = max_requests
        self.period_minutes = period_minutes
        self._unlimited = unlimited_pattern
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()
        self._reset_task: Optional[asyncio.Task[None]] = None
        per = "per minute" if period_minutes == 1 else f"per {period_minutes} minutes"
        self.message = (
            f"The number of requests is limited to {max_requests} {per}. "
            "Please self-host CORS Proxify if you need more quota."
        )

    @property
    def period_seconds(self) -> float:
        return self.period_minutes * 60.0

    def is_unlimited(self, host: str) -> bool:
        return self._unlimited is not None and self._unlimited.search(host) is not None

    def check_rate_limit(self, origin: str) -> Optional[str]:
        """Count one request from ``origin``.

        Returns:
            None if the request is permitted, else the rate-limit message. A
            rejected request is not counted.
        """
        host = _SCHEME_PREFIX.sub("", origin, count=1)
        if self.is_unlimited(host):
            return None
        with self._lock:
            count = self._counts.get(host, 0) + 1
            if count > self.max_requests:
                return self.message
            self._counts[host] = count
        return None

    def count_for(self, host: str) -> int:
        return self._counts.get(host, 0)

    def reset(self) -> None:
        """Drop every counter (start of a new period)."""
        with self._lock:
            self._counts = {}

    def start(self) -> None:
        """Launch the periodic reset task. Must be called from a running loop."""
        if self._reset_task is None or self._reset_task.done():
            self._reset_task = asyncio.create_task(self._reset_periodically())

    async def close(self) -> None:
        """Cancel the reset task."""
        task, self._reset_task = self._reset_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _reset_periodically(self) -> None:
        while True:
            await asyncio.sleep(self.period_seconds)
            tracked = len(self._counts)
            self.reset()
            logger.debug("rate_limit_reset", hosts_tracked=tracked)


class PermissiveRateLimiter:
    """Installed when the rate-limit setting does not parse: every request passes."""

    def check_rate_limit(self, origin: str) -> Optional[str]:
        return None

    def start(self) -> None:
        pass

    async def close(self) -> None:
        pass


def compile_unlimited_hosts(hosts: str) -> Any:
    """Compile space-separated hosts / ``/regex/`` tokens into one anchored re2 pattern.

    Raises:
        RateLimitConfigError: A token starts or ends with ``/`` but not both, or
                              a regex does not compile.
    """
    parts: list[str] = []
    for index, token in enumerate(hosts.split()):
        starts, ends = token.startswith("/"), token.endswith("/")
        if starts or ends:
            if len(token) == 1 or not (starts and ends):
                raise RateLimitConfigError(
                    f"Invalid rate limit. Regex at index {index} must start and end "
                    'with a slash ("/").'
                )
            token = token[1:-1]
            try:
                re2.compile(token)
            except re2.error as exc:
                raise RateLimitConfigError(
                    f"Invalid rate limit. Regex at index {index} does not compile: {exc}"
                ) from exc
        else:
            token = re2.escape(token)
        parts.append(token)
    try:
        return re2.compile("(?i)^(?:" + "|".join(parts) + ")$")
    except re2.error as exc:
        raise RateLimitConfigError(f"Invalid rate limit host pattern: {exc}") from exc


def create_rate_limiter(setting: Optional[str]) -> "RateLimiter | PermissiveRateLimiter | None":
    """Build the limiter for a rate-limit setting.

    Returns:
        None when ``setting`` is empty (rate limiting disabled), a
        PermissiveRateLimiter when it does not parse, else a RateLimiter.

    Raises:
        RateLimitConfigError: Invalid unlimited-host token (aborts startup).
    """
    if not setting:
        return None
    match = _SETTING_PATTERN.match(setting.strip())
    if match is None:
        logger.warning("Rate limit setting not understood, rate limiting disabled", setting=setting)
        return PermissiveRateLimiter()

    max_requests, period_minutes = int(match.group(1)), int(match.group(2))
    if period_minutes == 0:
        logger.warning("Rate limit period must be at least one minute, rate limiting disabled")
        return PermissiveRateLimiter()

    unlimited = compile_unlimited_hosts(match.group(3)) if match.group(3) else None
    logger.info(
        "Rate limiter configured",
        max_requests=max_requests,
        period_minutes=period_minutes,
        unlimited_hosts=match.group(3) or None,
    )
    return RateLimiter(max_requests, period_minutes, unlimited)
