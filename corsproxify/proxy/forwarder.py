"""Forwarder: sends an admitted request upstream and walks its redirect chain.

Key properties:
  - Shared httpx.AsyncClient instances held by ``OutboundClients``: one for
    direct connections plus one per forward-proxy endpoint, created lazily.
    NEVER instantiated per request.
  - Responses are opened with ``stream=True``; the body is never buffered.
  - 301/302/303 are followed here (up to ``max_redirects`` hops) with a GET
    and no body. Intermediate responses are closed before the next attempt.
  - Transport failures raise ``UpstreamTransportFailure``; nothing is retried.
    Upstream 4xx/5xx responses are not failures: they are relayed as-is.
"""

from __future__ import annotations

from typing import Callable, Optional

import httpx

from corsproxify.constants import DEFAULT_UPSTREAM_TIMEOUT_S
from corsproxify.errors import UpstreamTransportFailure
from corsproxify.models.forwarding import ForwardingState, Phase, Step
from corsproxify.proxy.upstream import ForwardProxy, ForwardProxyResolver
from corsproxify.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Constants ────────────────────────────────────────────────────────────────

POOL_MAX_CONNECTIONS: int = 100
POOL_MAX_KEEPALIVE: int = 100
POOL_KEEPALIVE_EXPIRY: float = 30.0  # seconds

# Dropped from the outbound headers when a redirect is followed with GET.
_BODY_HEADERS = ("content-length", "content-type")

ClientFactory = Callable[..., httpx.AsyncClient]


# ─── httpx.AsyncClient factory ────────────────────────────────────────────────


def create_http_client(
    proxy: Optional[ForwardProxy] = None,
    timeout_s: float = DEFAULT_UPSTREAM_TIMEOUT_S,
    verify_tls: bool = True,
) -> httpx.AsyncClient:
    """Create one shared httpx.AsyncClient.

    With ``proxy`` set, every request goes through that forward proxy (httpx
    sends the absolute-form request line) and carries its Basic
    Proxy-Authorization header when credentials were configured.

    Redirects are never followed by httpx and proxy environment variables are
    ignored: both are handled explicitly by the Forwarder.
    """
    proxy_option: Optional[httpx.Proxy] = None
    if proxy is not None:
        authorization = proxy.proxy_authorization
        proxy_option = httpx.Proxy(
            proxy.url,
            headers={"Proxy-Authorization": authorization} if authorization else None,
        )
    return httpx.AsyncClient(
        limits=httpx.Limits(
            max_connections=POOL_MAX_CONNECTIONS,
            max_keepalive_connections=POOL_MAX_KEEPALIVE,
            keepalive_expiry=POOL_KEEPALIVE_EXPIRY,
        ),
        timeout=httpx.Timeout(timeout_s),
        verify=verify_tls,
        proxy=proxy_option,
        follow_redirects=False,
        trust_env=False,
    )


class OutboundClients:
    """Client pool keyed by forward proxy (None = direct connection)."""

    def __init__(
        self,
        client_factory: ClientFactory = create_http_client,
        timeout_s: float = DEFAULT_UPSTREAM_TIMEOUT_S,
        verify_tls: bool = True,
    ) -> None:
        self._factory = client_factory
        self._timeout_s = timeout_s
        self._verify_tls = verify_tls
        self._clients: dict[Optional[ForwardProxy], httpx.AsyncClient] = {}
        self.client_for(None)

    def client_for(self, proxy: Optional[ForwardProxy]) -> httpx.AsyncClient:
        client = self._clients.get(proxy)
        if client is None:
            client = self._factory(proxy=proxy, timeout_s=self._timeout_s, verify_tls=self._verify_tls)
            self._clients[proxy] = client
            if proxy is not None:
                logger.info("Forward proxy client created", proxy=proxy.url)
        return client

    def __len__(self) -> int:
        return len(self._clients)

    async def aclose(self) -> None:
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            try:
                await client.aclose()
            except Exception as exc:
                logger.warning("HTTP client close error (non-fatal)", error=str(exc))


# ─── Forwarder ────────────────────────────────────────────────────────────────


class Forwarder:
    """Runs the SENDING → AWAITING_UPSTREAM → (REDIRECTING → SENDING)* loop."""

    def __init__(self, clients: OutboundClients, proxy_resolver: ForwardProxyResolver) -> None:
        self.clients = clients
        self.proxy_resolver = proxy_resolver

    async def forward(
        self,
        headers: dict[str, str],
        body: bytes,
        state: ForwardingState,
    ) -> tuple[httpx.Response, Step]:
        """Send the request and follow redirects until a response is final.

        Args:
            headers: Outbound header set from the policy engine.
            body:    Raw inbound request body.
            state:   Fresh ForwardingState for this request (mutated).

        Returns:
            The final upstream response, still open (the caller streams and
            closes it), and the Step that finalized it.

        Raises:
            UpstreamTransportFailure: The outbound request failed.
        """
        outbound = dict(headers)
        content: Optional[bytes] = body or None

        # Bounded by observe(): at most max_redirects follows, so at most
        # max_redirects + 1 attempts.
        while True:
            state.phase = Phase.SENDING
            forward_proxy = self.proxy_resolver.forward_proxy_for(state.target)
            client = self.clients.client_for(forward_proxy)
            outbound["host"] = state.target.host

            try:
                request = client.build_request(
                    state.method, state.target.href, headers=outbound, content=content
                )
                state.phase = Phase.AWAITING_UPSTREAM
                response = await client.send(request, stream=True)
            except httpx.InvalidURL as exc:
                state.fail()
                logger.error(
                    "invalid_target_url",
                    target=state.target.href,
                    error=str(exc),
                )
                raise UpstreamTransportFailure(500, type(exc).__name__, str(exc)) from exc
            except httpx.TransportError as exc:
                state.fail()
                logger.warning(
                    "upstream_unavailable",
                    target=state.target.href,
                    forward_proxy=forward_proxy.url if forward_proxy else None,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                raise UpstreamTransportFailure(502, type(exc).__name__, str(exc)) from exc

            previous = state.target
            step = state.observe(response.status_code, response.headers)
            if not step.follow:
                if step.location is not None and state.redirect_count > state.max_redirects:
                    logger.info(
                        "redirect_limit_reached",
                        status_code=response.status_code,
                        max_redirects=state.max_redirects,
                        location=step.location,
                    )
                return response, step

            await response.aclose()
            logger.info(
                "redirect_followed",
                status_code=response.status_code,
                hop=state.redirect_count,
                source=previous.href,
                target=state.target.href,
            )
            content = None
            for name in _BODY_HEADERS:
                outbound.pop(name, None)
