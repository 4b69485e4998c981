"""Programmatic uvicorn entry point for CORS Proxify.

Reads host and port from the loaded config (0.0.0.0:8080 by default; HOST /
PORT and CORSPROXIFY_HOST / CORSPROXIFY_PORT override) and starts uvicorn.

Usage:
    python -m corsproxify.run   # reads .corsproxify/config.yaml
    corsproxify                 # via pyproject.toml [project.scripts]
"""

from __future__ import annotations

import uvicorn

from corsproxify.config import load_config
from corsproxify.proxy.forwarder import POOL_MAX_CONNECTIONS
from corsproxify.utils.logger import get_logger

logger = get_logger(__name__)

# Matches the httpx connection pool size; new connections get 503 beyond it.
UVICORN_LIMIT_CONCURRENCY: int = POOL_MAX_CONNECTIONS

UVICORN_BACKLOG: int = 2048

UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def main() -> None:
    """Start the CORS Proxify server.

    Raises:
        SystemExit: Propagated from load_config() on config errors.
    """
    config = load_config()
    logger.info("Running CORS proxy", host=config.server.host, port=config.server.port)

    uvicorn.run(
        "corsproxify.main:app",
        host=config.server.host,
        port=config.server.port,
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
        backlog=UVICORN_BACKLOG,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
        # X-Forwarded-Proto is read by the policy engine itself.
        proxy_headers=False,
    )


if __name__ == "__main__":
    main()
