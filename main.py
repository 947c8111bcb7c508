"""
YNAB connect broker — application entry point.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.cron import router as cron_router
from api.middleware import register_middleware
from api.rate_limit import RateLimiter
from config.settings import Settings, config
from connectors.base import BaseConnector
from connectors.encryption import TokenCipher
from connectors.routes import router as connect_router
from connectors.state import OAuthStateStore
from connectors.token_manager import TokenVault
from connectors.ynab import YnabConnector
from utils.clock import Clock, utcnow
from utils.errors import BrokerError
from utils.log_redaction import install_redaction

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
install_redaction(logging.getLogger().handlers)
for _noisy in ("httpcore", "httpx", "urllib3"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    connector: Optional[BaseConnector] = None,
    cipher: Optional[TokenCipher] = None,
    rate_limiter: Optional[RateLimiter] = None,
    clock: Clock = utcnow,
) -> FastAPI:
    settings = settings or config
    # Fail fast: a production deployment without its secrets never boots
    settings.validate_for_startup()
    cipher = cipher or TokenCipher.from_settings(settings)

    if session_factory is None:
        from database.session import async_session_factory

        session_factory = async_session_factory
    connector = connector or YnabConnector.from_settings(settings)
    if not connector.is_configured():
        logger.warning("YNAB client credentials missing — connect flow is disabled")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.create_tables_on_startup:
            from database.session import create_tables

            await create_tables()
            logger.info("Database tables ensured")
        logger.info("Application ready to accept requests.")
        yield

    app = FastAPI(
        title="YNAB Connect Broker",
        version="1.0.0",
        description="Brokers delegated YNAB access for MCP clients.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.connector = connector
    app.state.state_store = OAuthStateStore(session_factory, clock=clock)
    app.state.token_vault = TokenVault(session_factory, connector, cipher, clock=clock)
    app.state.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_middleware(app)

    @app.exception_handler(BrokerError)
    async def broker_error_handler(request: Request, exc: BrokerError) -> JSONResponse:
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    # Routes
    app.include_router(connect_router, prefix="/connect")
    app.include_router(cron_router, prefix="/cron")

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
