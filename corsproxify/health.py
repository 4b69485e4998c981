"""Health endpoint and readiness gate for CORS Proxify.

  GET /health: 503 before ``app.state.ready`` is set (during lifespan startup),
               200 with a status body once startup completes.

Registered before the catch-all proxy route, so ``/health`` is never proxied.
The proxy route applies the same gate through require_ready().
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from corsproxify import __version__
from corsproxify.config import Config

router = APIRouter(tags=["health"])


async def require_ready(request: Request) -> None:
    """Raise HTTP 503 while app.state.ready is not True."""
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={"status": "starting", "message": "CORS Proxify is starting up..."},
        )


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Primary health check.

    Response body (200):
        {
          "status": "ok",
          "proxy": "running",
          "version": "0.1.0",
          "rate_limited": false,
          "forward_proxy": false,
          "max_redirects": 5,
          "upstream_clients": 1
        }
    """
    await require_ready(request)

    config: Config = request.app.state.config
    return {
        "status": "ok",
        "proxy": "running",
        "version": __version__,
        "rate_limited": request.app.state.rate_limiter is not None,
        "forward_proxy": request.app.state.proxy_resolver.enabled,
        "max_redirects": config.policy.max_redirects,
        "upstream_clients": len(request.app.state.clients),
    }
