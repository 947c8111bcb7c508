"""
FastAPI dependencies for the identity-provider session.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from auth.session import SessionInfo, get_session


async def get_optional_session(request: Request) -> Optional[SessionInfo]:
    """
    Return the signed-in session or ``None``.

    Routes decide how to react to ``None`` (login redirect or 401 JSON).
    """
    return get_session(request.headers, request.app.state.settings.auth_secret)
