"""
Cron routes — periodic maintenance triggered by an external scheduler.

Route prefix: /cron
"""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from connectors.dependencies import get_state_store
from connectors.state import OAuthStateStore
from utils.clock import utcnow
from utils.errors import AuthenticationRequired

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cron"])

MSG_CRON_UNAUTHORIZED = "Invalid or missing cron secret"


def _authorized(request: Request) -> bool:
    settings = request.app.state.settings
    secret: Optional[str] = settings.cron_secret
    if not secret:
        # Open only for local development
        return not settings.is_production
    header = request.headers.get("authorization", "")
    return hmac.compare_digest(header.encode(), f"Bearer {secret}".encode())


@router.get("/cleanup-states")
async def cleanup_states(
    request: Request,
    store: OAuthStateStore = Depends(get_state_store),
) -> JSONResponse:
    """Delete expired OAuth state rows.  Protected by the ``CRON_SECRET`` bearer token."""
    if not _authorized(request):
        logger.warning("[Cron] Rejected cleanup request with a missing or invalid secret")
        raise AuthenticationRequired(MSG_CRON_UNAUTHORIZED)

    logger.info("[Cron] Starting OAuth state cleanup")
    try:
        deleted = await store.cleanup()
    except SQLAlchemyError:
        logger.exception("[Cron] OAuth state cleanup failed")
        return JSONResponse(
            {
                "success": False,
                "error": "Cleanup failed",
                "timestamp": utcnow().isoformat(),
            },
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    logger.info("[Cron] OAuth state cleanup completed (%d removed)", deleted)
    return JSONResponse(
        {
            "success": True,
            "message": "Expired OAuth states cleaned up",
            "deleted": deleted,
            "timestamp": utcnow().isoformat(),
        }
    )
