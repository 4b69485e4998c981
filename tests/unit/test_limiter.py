"""Unit tests for the per-origin rate limiter."""

from __future__ import annotations

import asyncio

import pytest

from corsproxify.errors import RateLimitConfigError
from corsproxify.ratelimit import PermissiveRateLimiter, RateLimiter, create_rate_limiter
from corsproxify.ratelimit.limiter import compile_unlimited_hosts


# ─── create_rate_limiter() ────────────────────────────────────────────────────


class TestCreateRateLimiter:
    @pytest.mark.parametrize("setting", [None, ""])
    def test_empty_setting_disables_limiting(self, setting: str | None) -> None:
        assert create_rate_limiter(setting) is None

    @pytest.mark.parametrize("setting", ["abc", "5", "5 x", "-1 5"])
    def test_unparsable_setting_is_permissive(self, setting: str) -> None:
        limiter = create_rate_limiter(setting)
        assert isinstance(limiter, PermissiveRateLimiter)
        assert limiter.check_rate_limit("http://example.com") is None

    def test_zero_period_is_permissive(self) -> None:
        assert isinstance(create_rate_limiter("10 0"), PermissiveRateLimiter)

    def test_parsed_values(self) -> None:
        limiter = create_rate_limiter("50 3")
        assert isinstance(limiter, RateLimiter)
        assert limiter.max_requests == 50
        assert limiter.period_minutes == 3
        assert limiter.period_seconds == 180.0

    @pytest.mark.parametrize("setting", ["1 1 /example.com", "1 1 example.com/", "1 1 /"])
    def test_unbalanced_slashes_raise(self, setting: str) -> None:
        with pytest.raises(RateLimitConfigError):
            create_rate_limiter(setting)

    def test_invalid_regex_raises(self) -> None:
        with pytest.raises(RateLimitConfigError):
            create_rate_limiter("1 1 /(unclosed/")


# ─── Messages ─────────────────────────────────────────────────────────────────


class TestMessage:
    def test_per_minute(self) -> None:
        assert RateLimiter(5, 1).message == (
            "The number of requests is limited to 5 per minute. "
            "Please self-host CORS Proxify if you need more quota."
        )

    def test_per_n_minutes(self) -> None:
        assert "limited to 1 per 5 minutes." in RateLimiter(1, 5).message


# ─── check_rate_limit() ───────────────────────────────────────────────────────


class TestCheckRateLimit:
    def test_first_max_permitted_then_rejected(self) -> None:
        limiter = RateLimiter(3, 1)
        results = [limiter.check_rate_limit("http://a.com") for _ in range(5)]
        assert results[:3] == [None, None, None]
        assert results[3] == limiter.message
        assert results[4] == limiter.message

    def test_rejected_requests_not_counted(self) -> None:
        limiter = RateLimiter(2, 1)
        for _ in range(5):
            limiter.check_rate_limit("http://a.com")
        assert limiter.count_for("a.com") == 2

    def test_origins_counted_separately(self) -> None:
        limiter = RateLimiter(1, 1)
        assert limiter.check_rate_limit("http://a.com") is None
        assert limiter.check_rate_limit("http://b.com") is None
        assert limiter.check_rate_limit("http://a.com") is not None

    def test_scheme_ignored_in_key(self) -> None:
        limiter = RateLimiter(1, 1)
        assert limiter.check_rate_limit("http://a.com") is None
        assert limiter.check_rate_limit("https://a.com") is not None

    def test_zero_max_blocks_everything_but_unlimited(self) -> None:
        limiter = create_rate_limiter("0 1 /(.*\\.)?example\\.com/")
        assert limiter.check_rate_limit("http://example.com") is None
        assert limiter.check_rate_limit("https://www.example.com") is None
        assert limiter.check_rate_limit("http://example.org") is not None

    def test_one_per_five_minutes_with_unlimited_host(self) -> None:
        limiter = create_rate_limiter("1 5 example.com")
        assert limiter.check_rate_limit("http://example.com") is None
        assert limiter.check_rate_limit("http://example.com") is None
        assert limiter.check_rate_limit("http://example.net") is None
        assert limiter.check_rate_limit("http://example.net") == (
            "The number of requests is limited to 1 per 5 minutes. "
            "Please self-host CORS Proxify if you need more quota."
        )

    def test_literal_hosts_are_exact_and_case_insensitive(self) -> None:
        limiter = create_rate_limiter("0 1 example.com")
        assert limiter.check_rate_limit("http://EXAMPLE.com") is None
        assert limiter.check_rate_limit("http://example.com:8080") is not None
        assert limiter.check_rate_limit("http://exampleXcom") is not None

    def test_reset_restarts_counting(self) -> None:
        limiter = RateLimiter(1, 1)
        assert limiter.check_rate_limit("http://a.com") is None
        assert limiter.check_rate_limit("http://a.com") is not None
        limiter.reset()
        assert limiter.count_for("a.com") == 0
        assert limiter.check_rate_limit("http://a.com") is None


class TestCompileUnlimitedHosts:
    def test_mixed_literals_and_regexes(self) -> None:
        pattern = compile_unlimited_hosts("a.com /b[0-9]\\.com/")
        assert pattern.search("a.com")
        assert pattern.search("b7.com")
        assert not pattern.search("xa.com")
        assert not pattern.search("b7.com.evil")


# ─── Periodic reset task ──────────────────────────────────────────────────────


class TestResetTask:
    @pytest.mark.asyncio
    async def test_periodic_reset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        limiter = RateLimiter(1, 1)
        monkeypatch.setattr(RateLimiter, "period_seconds", property(lambda self: 0.01))
        assert limiter.check_rate_limit("http://a.com") is None
        assert limiter.check_rate_limit("http://a.com") is not None

        limiter.start()
        try:
            await asyncio.sleep(0.05)
            assert limiter.check_rate_limit("http://a.com") is None
        finally:
            await limiter.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        limiter = RateLimiter(1, 1)
        limiter.start()
        await limiter.close()
        await limiter.close()

    @pytest.mark.asyncio
    async def test_permissive_lifecycle(self) -> None:
        limiter = PermissiveRateLimiter()
        limiter.start()
        await limiter.close()
