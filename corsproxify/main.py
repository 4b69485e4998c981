"""CORS Proxify FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app(): testable application factory
  - lifespan: @asynccontextmanager startup/shutdown sequence
  - /health router: delegated to corsproxify/health.py
  - catch-all proxy route (every method): delegated to corsproxify/proxy/engine.py
  - app = create_app(): module-level instance for uvicorn

Startup sequence:
  1. load_config()                → app.state.config
  2. create_rate_limiter()        → app.state.rate_limiter (reset task started)
  3. OriginPolicy(...)            → app.state.policy
  4. ForwardProxyResolver + OutboundClients + Forwarder
                                  → app.state.proxy_resolver / clients / forwarder
  5. app.state.ready = True

Shutdown sequence (reverse):
  app.state.ready = False → close rate limiter → close httpx clients
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from corsproxify import __version__
from corsproxify.config import Config, load_config
from corsproxify.errors import RateLimitConfigError
from corsproxify.health import router as health_router
from corsproxify.proxy.engine import PROXY_PATH, proxy_handler
from corsproxify.proxy.forwarder import Forwarder, OutboundClients, create_http_client
from corsproxify.proxy.policy import OriginPolicy
from corsproxify.proxy.upstream import ForwardProxyResolver
from corsproxify.ratelimit import create_rate_limiter
from corsproxify.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown sequence."""
    logger.info("CORS Proxify starting up...")

    # ── Step 1: Load configuration ────────────────────────────────────────────
    # load_config() raises SystemExit on an invalid file, before ready=True.
    config: Config = load_config()
    app.state.config = config

    # ── Step 2: Rate limiter ──────────────────────────────────────────────────
    try:
        rate_limiter = create_rate_limiter(config.rate_limit)
    except RateLimitConfigError as exc:
        logger.error("Invalid rate limit configuration", error=str(exc))
        raise SystemExit(1) from exc
    if rate_limiter is not None:
        rate_limiter.start()
    app.state.rate_limiter = rate_limiter

    # ── Step 3: Origin policy ─────────────────────────────────────────────────
    app.state.policy = OriginPolicy(
        config.policy,
        rate_limiter=rate_limiter,
        add_x_forwarded=config.transport.add_x_forwarded,
    )

    # ── Step 4: Outbound clients + forwarder ──────────────────────────────────
    proxy_resolver = ForwardProxyResolver.from_config(config.forward_proxy)
    clients = OutboundClients(
        create_http_client,
        timeout_s=config.transport.timeout_s,
        verify_tls=config.transport.verify_tls,
    )
    app.state.proxy_resolver = proxy_resolver
    app.state.clients = clients
    app.state.forwarder = Forwarder(clients, proxy_resolver)
    if not config.transport.verify_tls:
        logger.warning("Upstream TLS certificate verification is DISABLED")
    logger.info(
        "HTTP proxy client created",
        timeout_s=config.transport.timeout_s,
        forward_proxy=proxy_resolver.enabled,
    )

    # ── Step 5: Mark as ready ─────────────────────────────────────────────────
    app.state.ready = True
    logger.info(
        "CORS Proxify ready",
        host=config.server.host,
        port=config.server.port,
        max_redirects=config.policy.max_redirects,
    )

    yield

    # ── Shutdown (reverse order) ──────────────────────────────────────────────
    logger.info("CORS Proxify shutting down...")
    app.state.ready = False

    if rate_limiter is not None:
        await rate_limiter.close()

    await clients.aclose()
    logger.info("HTTP proxy clients closed")

    logger.info("CORS Proxify shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app() -> FastAPI:
    """Create and configure the CORS Proxify FastAPI application.

    Call this function directly in tests to get an isolated app instance:
        app = create_app()

    The module-level `app` is created at import time for uvicorn:
        uvicorn corsproxify.main:app --host 0.0.0.0 --port 8080
    """
    application = FastAPI(
        title="CORS Proxify",
        description="Proxy that adds CORS headers to responses from arbitrary origins",
        version=__version__,
        lifespan=lifespan,
        # Every other path is a proxy target.
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    # Ensures /health returns 503 on any request that arrives before startup completes.
    application.state.ready = False

    # health_router MUST be included BEFORE the catch-all proxy route.
    application.include_router(health_router)
    # methods=None: a plain Starlette route matches every HTTP method.
    application.add_route(PROXY_PATH, proxy_handler, methods=None, include_in_schema=False)

    # Global exception handlers
    @application.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error"},
            headers={"access-control-allow-origin": "*"},
        )

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────

app = create_app()
