"""
Connect API routes — YNAB authorize / callback, disconnect, status.

Route prefix: /connect

Every redirect issued here goes through ``safe_redirect``, which only
allows relative paths from ``ALLOWED_REDIRECT_PATHS`` and falls back to the
generic error page otherwise.  Provider-supplied error text is never
reflected into a redirect, and a caller's ``return_url`` is honoured only
when it is exactly one of the allow-listed paths.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from auth.dependencies import get_optional_session
from auth.session import SessionInfo
from connectors.base import BaseConnector
from connectors.dependencies import get_connector, get_state_store, get_token_vault
from connectors.state import OAuthStateStore
from connectors.token_manager import TokenVault
from utils.errors import (
    AuthenticationRequired,
    BrokerError,
    ForbiddenOrigin,
    InvalidRequestError,
    OAuthExchangeError,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connect"])

SUCCESS_PATH = "/ynab/connected"
ERROR_PATH = "/error"
LOGIN_PATH = "/login"
ALLOWED_REDIRECT_PATHS = frozenset({"/", SUCCESS_PATH, ERROR_PATH, LOGIN_PATH})

# Fixed, user-visible error messages
MSG_INVALID_PARAMS = "Invalid callback parameters"
MSG_ACCESS_DENIED = "YNAB authorization was denied"
MSG_AUTHORIZATION_FAILED = "YNAB authorization failed"
MSG_MISSING_CODE = "No authorization code received"
MSG_MISSING_STATE = "Missing OAuth state parameter"
MSG_INVALID_STATE = "Invalid or expired OAuth state"
MSG_CONNECT_FAILED = "Failed to connect YNAB account"
MSG_NOT_CONFIGURED = "YNAB integration is not configured"
MSG_INVALID_REDIRECT = "Invalid redirect"


class CallbackParams(BaseModel):
    """Query string of the provider callback."""

    code: Optional[str] = Field(default=None, min_length=1, max_length=2048)
    state: Optional[str] = Field(default=None, min_length=1, max_length=512)
    error: Optional[str] = Field(default=None, max_length=256)


# ── Redirect helpers ───────────────────────────────────────────────────


def is_allowed_redirect(target: str) -> bool:
    """True only for relative, allow-listed paths (query string permitted)."""
    if not target or "\\" in target or target.startswith("//"):
        return False
    parts = urlsplit(target)
    if parts.scheme or parts.netloc:
        return False
    return parts.path in ALLOWED_REDIRECT_PATHS


def is_allowed_return_url(target: str) -> bool:
    """A caller-supplied return URL must be exactly an allow-listed path: no query, no fragment."""
    return target in ALLOWED_REDIRECT_PATHS


def safe_redirect(target: str, params: Optional[Dict[str, str]] = None) -> RedirectResponse:
    """302 to an allow-listed relative path, or to the generic error page."""
    if not is_allowed_redirect(target):
        logger.warning("Blocked redirect to a path outside the allow-list")
        target, params = ERROR_PATH, {"message": MSG_INVALID_REDIRECT}

    parts = urlsplit(target)
    query = dict(parse_qsl(parts.query))
    query.update(params or {})
    location = parts.path + (f"?{urlencode(query)}" if query else "")
    return RedirectResponse(location, status_code=302)


def error_redirect(message: str) -> RedirectResponse:
    return safe_redirect(ERROR_PATH, {"message": message})


def _provider_error_message(error: str) -> str:
    return MSG_ACCESS_DENIED if error == "access_denied" else MSG_AUTHORIZATION_FAILED


def _request_target(request: Request) -> str:
    """Relative path + query of the current request."""
    target = request.url.path
    if request.url.query:
        target += f"?{request.url.query}"
    return target


def _same_origin(request: Request) -> bool:
    origin = request.headers.get("origin")
    host = request.headers.get("host")
    if not origin or not host:
        return True
    return urlsplit(origin).netloc.lower() == host.lower()


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/authorize")
async def authorize(
    request: Request,
    session: Optional[SessionInfo] = Depends(get_optional_session),
    store: OAuthStateStore = Depends(get_state_store),
    connector: BaseConnector = Depends(get_connector),
) -> RedirectResponse:
    """
    Start the YNAB connect handshake.

    Unauthenticated users go to the login page with this request as the
    return target.  Otherwise a fresh state token is bound to the user and
    the browser is sent to YNAB's consent screen.
    """
    if session is None:
        return safe_redirect(LOGIN_PATH, {"redirect": _request_target(request)})

    if not connector.is_configured():
        logger.error("YNAB connect attempted but client credentials are not configured")
        return error_redirect(MSG_NOT_CONFIGURED)

    return_url = request.query_params.get("return_url") or None
    if return_url is not None and not is_allowed_return_url(return_url):
        logger.warning("Rejected return_url outside the allow-list for user %s", session.user.id)
        return error_redirect(MSG_INVALID_REDIRECT)

    state = store.generate()
    await store.store(session.user.id, state, return_url)

    return RedirectResponse(connector.get_auth_url(state), status_code=302)


@router.get("/callback")
async def callback(
    request: Request,
    session: Optional[SessionInfo] = Depends(get_optional_session),
    store: OAuthStateStore = Depends(get_state_store),
    vault: TokenVault = Depends(get_token_vault),
    connector: BaseConnector = Depends(get_connector),
) -> RedirectResponse:
    """
    YNAB redirects here after consent.

    Validates the query, requires the same signed-in user that started the
    handshake, consumes the state token, exchanges the code and stores the
    tokens.  Nothing is persisted unless every step succeeds.
    """
    query = request.query_params
    try:
        params = CallbackParams(
            code=query.get("code") or None,
            state=query.get("state") or None,
            error=query.get("error") or None,
        )
    except PydanticValidationError:
        return error_redirect(MSG_INVALID_PARAMS)

    if params.error:
        logger.info("YNAB returned an authorization error")
        return error_redirect(_provider_error_message(params.error))
    if not params.code:
        return error_redirect(MSG_MISSING_CODE)
    if not params.state:
        return error_redirect(MSG_MISSING_STATE)

    if session is None:
        return safe_redirect(LOGIN_PATH, {"redirect": "/connect/authorize"})
    user_id = session.user.id

    validation = await store.validate(user_id, params.state)
    if not validation.valid:
        logger.warning("Rejected YNAB callback with invalid or expired state for user %s", user_id)
        return error_redirect(MSG_INVALID_STATE)

    try:
        token_response = await connector.handle_callback(params.code)
        await vault.save(user_id, token_response)
    except OAuthExchangeError as exc:
        logger.error(
            "YNAB code exchange failed for user %s: %s",
            user_id, exc.provider_error or exc.message,
        )
        return error_redirect(MSG_CONNECT_FAILED)
    except SQLAlchemyError:
        logger.exception("Failed to store YNAB tokens for user %s", user_id)
        return error_redirect(MSG_CONNECT_FAILED)

    logger.info("YNAB connected for user %s", user_id)
    if validation.return_url:
        # Stored values are re-checked; caller query text is never carried into a redirect
        if not is_allowed_return_url(validation.return_url):
            logger.warning("Stored return_url for user %s is outside the allow-list", user_id)
            return error_redirect(MSG_INVALID_REDIRECT)
        return safe_redirect(validation.return_url)
    return safe_redirect(SUCCESS_PATH)


@router.post("/disconnect")
async def disconnect(
    request: Request,
    session: Optional[SessionInfo] = Depends(get_optional_session),
    vault: TokenVault = Depends(get_token_vault),
) -> Dict[str, Any]:
    """Delete the user's stored YNAB tokens."""
    if session is None:
        raise AuthenticationRequired("You must be logged in to disconnect YNAB")
    if not _same_origin(request):
        raise ForbiddenOrigin()
    content_type = request.headers.get("content-type", "")
    if "application/json" not in content_type.lower():
        raise InvalidRequestError("Content-Type must be application/json")

    try:
        await vault.delete(session.user.id)
    except SQLAlchemyError:
        logger.exception("Failed to disconnect YNAB for user %s", session.user.id)
        raise BrokerError("Failed to disconnect YNAB account")

    logger.info("YNAB disconnected for user %s", session.user.id)
    return {"success": True, "message": "YNAB account disconnected successfully"}


@router.get("/status")
async def connection_status(
    request: Request,
    session: Optional[SessionInfo] = Depends(get_optional_session),
    vault: TokenVault = Depends(get_token_vault),
) -> Dict[str, Any]:
    """Report whether the user has a usable YNAB connection (refreshing if needed)."""
    if session is None:
        raise AuthenticationRequired()

    tokens = await vault.get(session.user.id)
    if tokens is None:
        base_url = request.app.state.settings.app_base_url.rstrip("/")
        return {
            "connected": False,
            "message": "YNAB account not connected or tokens expired and could not be refreshed.",
            "authorization_url": f"{base_url}/connect/authorize",
        }

    now = vault.now()
    minutes_left = round((tokens.expires_at - now).total_seconds() / 60)
    return {
        "connected": True,
        "message": "YNAB account is connected and tokens are valid.",
        "token_expires_in_minutes": minutes_left,
    }
