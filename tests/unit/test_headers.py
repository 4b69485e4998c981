"""Unit tests for CORS header injection and hop-by-hop header handling."""

from __future__ import annotations

import httpx

from corsproxify.proxy.headers import (
    HOP_BY_HOP_HEADERS,
    add_forwarded_headers,
    build_client_response_headers,
    build_upstream_headers,
    with_cors,
)

# ─── with_cors() ──────────────────────────────────────────────────────────────


class TestWithCors:
    def test_allow_origin_star(self) -> None:
        headers = with_cors({}, {}, "GET", 0)
        assert headers["access-control-allow-origin"] == "*"

    def test_preflight_negotiation_mirrored_and_consumed(self) -> None:
        request_headers = {
            "access-control-request-method": "PUT",
            "access-control-request-headers": "x-custom",
            "origin": "http://a.com",
        }
        headers = with_cors({}, request_headers, "OPTIONS", 0)
        assert headers["access-control-allow-methods"] == "PUT"
        assert headers["access-control-allow-headers"] == "x-custom"
        assert request_headers == {"origin": "http://a.com"}

    def test_max_age_only_for_options(self) -> None:
        assert with_cors({}, {}, "OPTIONS", 600)["access-control-max-age"] == "600"
        assert "access-control-max-age" not in with_cors({}, {}, "GET", 600)
        assert "access-control-max-age" not in with_cors({}, {}, "OPTIONS", 0)

    def test_expose_headers_lists_present_names(self) -> None:
        headers = with_cors({"x-final-url": "http://a.com/"}, {}, "GET", 0)
        exposed = headers["access-control-expose-headers"].split(",")
        assert exposed == ["x-final-url", "access-control-allow-origin"]

    def test_works_on_httpx_headers(self) -> None:
        headers = httpx.Headers([("set-cookie", "a=1"), ("set-cookie", "b=2")])
        with_cors(headers, {}, "GET", 0)
        assert headers.get_list("set-cookie") == ["a=1", "b=2"]
        assert headers["access-control-expose-headers"] == "set-cookie,access-control-allow-origin"


# ─── build_upstream_headers() ─────────────────────────────────────────────────


class TestBuildUpstreamHeaders:
    def test_hop_by_hop_stripped(self) -> None:
        request_headers = {name: "x" for name in HOP_BY_HOP_HEADERS}
        request_headers["accept"] = "text/html"
        assert build_upstream_headers(request_headers) == {"accept": "text/html"}

    def test_remove_headers(self) -> None:
        result = build_upstream_headers(
            {"x-request-start": "1", "via": "1.1 router", "accept": "*/*"},
            remove_headers=["x-request-start", "via"],
        )
        assert result == {"accept": "*/*"}

    def test_set_headers_override(self) -> None:
        result = build_upstream_headers(
            {"user-agent": "browser"},
            set_headers={"user-agent": "corsproxify", "x-api-key": "k"},
        )
        assert result == {"user-agent": "corsproxify", "x-api-key": "k"}

    def test_names_lower_cased(self) -> None:
        assert build_upstream_headers({"X-Requested-With": "fetch"}) == {
            "x-requested-with": "fetch"
        }


# ─── add_forwarded_headers() ──────────────────────────────────────────────────


class TestAddForwardedHeaders:
    def test_fresh_values(self) -> None:
        headers: dict[str, str] = {}
        add_forwarded_headers(headers, "10.0.0.1", "proxy.example.com:8080", "http")
        assert headers == {
            "x-forwarded-for": "10.0.0.1",
            "x-forwarded-port": "8080",
            "x-forwarded-proto": "http",
        }

    def test_default_port_from_proto(self) -> None:
        headers: dict[str, str] = {}
        add_forwarded_headers(headers, None, "proxy.example.com", "https")
        assert headers == {"x-forwarded-port": "443", "x-forwarded-proto": "https"}

    def test_appends_to_existing(self) -> None:
        headers = {"x-forwarded-for": "1.2.3.4"}
        add_forwarded_headers(headers, "10.0.0.1", "proxy.example.com", "http")
        assert headers["x-forwarded-for"] == "1.2.3.4,10.0.0.1"


# ─── build_client_response_headers() ──────────────────────────────────────────


class TestBuildClientResponseHeaders:
    def test_hop_by_hop_stripped_content_length_kept(self) -> None:
        upstream = httpx.Headers(
            {
                "content-type": "application/json",
                "content-length": "12",
                "connection": "keep-alive",
                "transfer-encoding": "chunked",
                "keep-alive": "timeout=5",
            }
        )
        result = build_client_response_headers(upstream)
        assert dict(result) == {"content-type": "application/json", "content-length": "12"}

    def test_repeated_headers_survive(self) -> None:
        upstream = httpx.Headers([("set-cookie", "a=1"), ("set-cookie", "b=2")])
        result = build_client_response_headers(upstream)
        assert result.get_list("set-cookie") == ["a=1", "b=2"]
