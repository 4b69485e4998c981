"""Unit tests for ForwardingState.observe(): the redirect state machine step."""

from __future__ import annotations

import pytest

from corsproxify.models.forwarding import ForwardingState, Phase
from corsproxify.proxy.resolver import resolve_target

PROXY_BASE = "http://proxy.local:8080"


def _state(url: str = "http://example.com/start", max_redirects: int = 5) -> ForwardingState:
    return ForwardingState(
        target=resolve_target("/" + url),
        proxy_base_url=PROXY_BASE,
        method="POST",
        max_redirects=max_redirects,
    )


class TestNonRedirect:
    def test_final_response(self) -> None:
        state = _state()
        step = state.observe(200, {})
        assert not step.follow
        assert step.location is None
        assert state.phase is Phase.FINALIZED
        assert state.client_headers == {"x-request-url": "http://example.com/start"}

    def test_redirect_without_location_is_final(self) -> None:
        state = _state()
        step = state.observe(302, {})
        assert not step.follow
        assert step.location is None

    def test_unresolvable_location_is_final(self) -> None:
        state = _state()
        step = state.observe(302, {"location": "mailto:someone@example.com"})
        assert not step.follow
        assert step.location is None


class TestFollow:
    @pytest.mark.parametrize("status", [301, 302, 303])
    def test_followed(self, status: int) -> None:
        state = _state()
        step = state.observe(status, {"location": "https://other.example.com/next"})
        assert step.follow
        assert state.phase is Phase.REDIRECTING
        assert state.redirect_count == 1
        assert state.method == "GET"
        assert state.target.href == "https://other.example.com/next"
        assert state.client_headers["X-CORS-Redirect-1"] == f"{status} https://other.example.com/next"

    def test_relative_location_resolved_against_current_target(self) -> None:
        state = _state("http://example.com/a/b")
        state.observe(302, {"location": "../c?d=1"})
        assert state.target.href == "http://example.com/c?d=1"
        assert state.client_headers["X-CORS-Redirect-1"] == "302 http://example.com/c?d=1"

    def test_request_url_stamped_only_on_first_attempt(self) -> None:
        state = _state()
        state.observe(302, {"location": "/second"})
        state.observe(200, {})
        assert state.client_headers["x-request-url"] == "http://example.com/start"

    def test_chain_up_to_limit(self) -> None:
        state = _state(max_redirects=3)
        for hop in range(1, 4):
            assert state.observe(302, {"location": f"/hop{hop}"}).follow
        assert state.redirect_count == 3
        assert state.attempts == 4
        assert not state.observe(200, {}).follow
        assert state.target.href == "http://example.com/hop3"
        assert [name for name in state.client_headers if name.startswith("X-CORS")] == [
            "X-CORS-Redirect-1",
            "X-CORS-Redirect-2",
            "X-CORS-Redirect-3",
        ]


class TestLocationRewrite:
    def test_limit_exceeded_rewrites_location(self) -> None:
        state = _state(max_redirects=1)
        assert state.observe(302, {"location": "/one"}).follow
        step = state.observe(302, {"location": "/two"})
        assert not step.follow
        assert step.location == f"{PROXY_BASE}/http://example.com/two"
        assert state.target.href == "http://example.com/one"
        assert state.redirect_count == 2
        assert state.phase is Phase.FINALIZED

    def test_zero_max_redirects_never_follows(self) -> None:
        state = _state(max_redirects=0)
        step = state.observe(301, {"location": "http://example.com/moved"})
        assert not step.follow
        assert step.location == f"{PROXY_BASE}/http://example.com/moved"
        assert "X-CORS-Redirect-1" not in state.client_headers

    @pytest.mark.parametrize("status", [307, 308])
    def test_method_preserving_redirects_not_followed(self, status: int) -> None:
        state = _state()
        step = state.observe(status, {"location": "/upload"})
        assert not step.follow
        assert step.location == f"{PROXY_BASE}/http://example.com/upload"
        assert state.redirect_count == 0
        assert state.method == "POST"


def test_fail_sets_phase() -> None:
    state = _state()
    state.fail()
    assert state.phase is Phase.FAILED
