"""
Global middleware.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request

from api.rate_limit import register_rate_limiting

logger = logging.getLogger(__name__)


def register_middleware(app: FastAPI) -> None:
    """Attach app-level middleware (outermost registered last)."""

    register_rate_limiting(app)

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        # Path only: callback query strings carry the authorization code and state
        logger.debug(
            "%s %s -> %d — %.3fs",
            request.method, request.url.path, response.status_code, elapsed,
        )
        return response
