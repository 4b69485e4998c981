"""Integration fixtures: a CORS Proxify app wired to an httpx.MockTransport upstream.

``load_config`` and ``create_http_client`` are monkeypatched on
``corsproxify.main`` so the lifespan builds the real policy, rate limiter and
forwarder around a mock network.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import httpx
import pytest

from corsproxify.config import Config
from corsproxify.main import create_app
from corsproxify.proxy.upstream import ForwardProxy

Handler = Callable[[httpx.Request], httpx.Response]


class _UnreadStream(httpx.AsyncByteStream):
    """Async body stream that has not been consumed yet."""

    def __init__(self, body: bytes) -> None:
        self._body = body

    async def __aiter__(self):  # type: ignore[override]
        yield self._body


def _as_stream(response: httpx.Response) -> httpx.Response:
    """Re-wrap an eagerly read mock response so ``aiter_raw()`` can relay it."""
    if not response.is_stream_consumed:
        return response
    return httpx.Response(
        response.status_code,
        headers=response.headers,
        stream=_UnreadStream(response.content),
    )


class MockUpstream:
    """Mock upstream that records received requests and the forward proxy of each client."""

    def __init__(self, handler: Optional[Handler] = None) -> None:
        self.received_requests: list[httpx.Request] = []
        self.client_proxies: list[Optional[ForwardProxy]] = []
        self._handler = handler or (lambda request: httpx.Response(200, content=b"ok"))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.received_requests.append(request)
        return _as_stream(self._handler(request))

    def create_http_client(
        self, proxy: Optional[ForwardProxy] = None, **_: Any
    ) -> httpx.AsyncClient:
        self.client_proxies.append(proxy)
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def request_count(self) -> int:
        return len(self.received_requests)


@pytest.fixture
def build_app(monkeypatch: pytest.MonkeyPatch) -> Callable[..., Any]:
    """Return a factory: ``build_app(upstream, config=None)`` → FastAPI app."""

    def _build(upstream: MockUpstream, config: Optional[Config] = None) -> Any:
        stub_config = config or Config.defaults()
        monkeypatch.setattr("corsproxify.main.load_config", lambda: stub_config)
        monkeypatch.setattr("corsproxify.main.create_http_client", upstream.create_http_client)
        return create_app()

    return _build


@pytest.fixture
def make_upstream() -> Callable[..., MockUpstream]:
    """Return the MockUpstream class: ``make_upstream(handler)``."""
    return MockUpstream
