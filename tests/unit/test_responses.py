"""Unit tests for locally-answered responses (Deny, upstream unavailable)."""

from __future__ import annotations

from corsproxify.errors import UpstreamTransportFailure
from corsproxify.models.decisions import Deny
from corsproxify.models.responses import build_deny_response, build_upstream_unavailable_response


class TestBuildDenyResponse:
    def test_rejection_body_and_headers(self) -> None:
        response = build_deny_response(
            Deny(403, "Forbidden", "go away", {"access-control-allow-origin": "*"})
        )
        assert response.status_code == 403
        assert response.body == b"go away"
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["content-type"].startswith("text/plain")

    def test_empty_body_has_no_content_type(self) -> None:
        response = build_deny_response(Deny(200, "Preflight", "", {"access-control-allow-origin": "*"}))
        assert response.status_code == 200
        assert response.body == b""
        assert "content-type" not in response.headers

    def test_redirect_location(self) -> None:
        response = build_deny_response(
            Deny(301, "Please use a direct request", "", {"location": "http://a.com/x"})
        )
        assert response.status_code == 301
        assert response.headers["location"] == "http://a.com/x"


class TestBuildUpstreamUnavailableResponse:
    def test_502_body(self) -> None:
        failure = UpstreamTransportFailure(502, "ConnectError", "connection refused")
        response = build_upstream_unavailable_response(failure, {"access-control-allow-origin": "*"})
        assert response.status_code == 502
        assert response.body == b"Not found because of proxy error: ConnectError: connection refused"
        assert response.headers["access-control-allow-origin"] == "*"

    def test_without_detail(self) -> None:
        failure = UpstreamTransportFailure(502, "ReadTimeout")
        response = build_upstream_unavailable_response(failure, {})
        assert response.body == b"Not found because of proxy error: ReadTimeout"
