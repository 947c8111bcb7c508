"""
Identity-provider session tokens.

The identity provider signs sessions as base64-encoded JSON payloads with an
HMAC-SHA256 signature, using the shared ``config.auth_secret``.  This service
only reads them: ``get_session`` turns request headers into the signed-in user
or ``None``.
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
import json
import time
from base64 import b64decode, b64encode
from dataclasses import dataclass
from http.cookies import CookieError, SimpleCookie
from typing import Mapping, Optional

SESSION_COOKIE = "session_token"
DEFAULT_SESSION_TTL_SECONDS = 604800     # 7 days


@dataclass(frozen=True)
class SessionUser:
    id: str
    email: str


@dataclass(frozen=True)
class SessionInfo:
    user: SessionUser


def _sign(raw: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


def create_session_token(
    user_id: str,
    email: str,
    secret: str,
    ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
) -> str:
    """Create a signed session token (identity-provider side, and tests)."""
    payload = {
        "user_id": user_id,
        "email": email,
        "exp": int(time.time()) + ttl_seconds,
    }
    raw = json.dumps(payload).encode()
    return b64encode(raw).decode() + "." + _sign(raw, secret)


def verify_session_token(token: str, secret: str) -> Optional[SessionInfo]:
    """Return the session for a valid token, or None for anything else."""
    parts = token.split(".", 1)
    if len(parts) != 2:
        return None
    try:
        raw = b64decode(parts[0], validate=True)
    except (binascii.Error, ValueError):
        return None
    if not hmac.compare_digest(parts[1], _sign(raw, secret)):
        return None
    try:
        payload = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(payload, dict) or payload.get("exp", 0) < time.time():
        return None
    user_id = payload.get("user_id")
    if not isinstance(user_id, str) or not user_id:
        return None
    return SessionInfo(user=SessionUser(id=user_id, email=str(payload.get("email", ""))))


def _token_from_headers(headers: Mapping[str, str]) -> Optional[str]:
    authorization = headers.get("authorization", "")
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None

    cookie_header = headers.get("cookie")
    if not cookie_header:
        return None
    cookies = SimpleCookie()
    try:
        cookies.load(cookie_header)
    except CookieError:
        return None
    morsel = cookies.get(SESSION_COOKIE)
    return morsel.value if morsel else None


def get_session(headers: Mapping[str, str], secret: str) -> Optional[SessionInfo]:
    """
    Resolve the signed-in user from request headers.

    Looks at ``Authorization: Bearer`` first, then the ``session_token``
    cookie.  Absence means "must log in".
    """
    token = _token_from_headers(headers)
    if token is None:
        return None
    return verify_session_token(token, secret)
