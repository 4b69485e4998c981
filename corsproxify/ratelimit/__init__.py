"""CORS Proxify rate limiting.

Public API:
    RateLimiter          : fixed-window per-origin counter with periodic reset
    PermissiveRateLimiter: always-permit stand-in for an unparsable setting
    create_rate_limiter  : build the limiter from the rate-limit setting
"""
from corsproxify.ratelimit.limiter import (
    PermissiveRateLimiter,
    RateLimiter,
    create_rate_limiter,
)

__all__ = ["PermissiveRateLimiter", "RateLimiter", "create_rate_limiter"]
