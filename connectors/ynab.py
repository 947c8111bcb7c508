"""
YnabConnector — OAuth2 against YNAB's token endpoint.

Stateless: builds the authorization URL and performs code / refresh grants.
YNAB does not support PKCE, so the authorization request relies solely on the
single-use state token for CSRF protection.  No retries at this layer.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError as PydanticValidationError

from config.settings import Settings
from connectors.base import BaseConnector, TokenResponse
from utils.errors import OAuthExchangeError

logger = logging.getLogger(__name__)

YNAB_AUTH_URL = "https://app.ynab.com/oauth/authorize"
YNAB_TOKEN_URL = "https://app.ynab.com/oauth/token"


class YnabConnector(BaseConnector):
    """OAuth2 connector for YNAB."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "YnabConnector":
        return cls(
            settings.ynab_client_id,
            settings.ynab_client_secret,
            settings.ynab_redirect_uri,
            timeout=settings.ynab_http_timeout_seconds,
            **kwargs,
        )

    def is_configured(self) -> bool:
        return bool(self._client_id and self._client_secret)

    def get_auth_url(self, state: str) -> str:
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "state": state,
        }
        return f"{YNAB_AUTH_URL}?{urlencode(params)}"

    async def handle_callback(self, code: str) -> TokenResponse:
        """Exchange an authorization code for an access / refresh token pair."""
        return await self._token_request(
            {
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "redirect_uri": self._redirect_uri,
                "grant_type": "authorization_code",
                "code": code,
            },
            action="exchange code for tokens",
        )

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        return await self._token_request(
            {
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
            action="refresh token",
        )

    async def _token_request(self, form: Dict[str, str], *, action: str) -> TokenResponse:
        try:
            if self._client is not None:
                resp = await self._client.post(YNAB_TOKEN_URL, data=form, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.post(YNAB_TOKEN_URL, data=form)
        except httpx.HTTPError as exc:
            logger.warning("YNAB token request failed (%s): %s", action, exc.__class__.__name__)
            raise OAuthExchangeError(f"Failed to {action}: network error") from exc

        if not resp.is_success:
            provider_error, description = _parse_error(resp)
            raise OAuthExchangeError(
                f"Failed to {action}: {description or provider_error or resp.status_code}",
                provider_error=provider_error,
            )

        try:
            return TokenResponse.model_validate(resp.json())
        except (ValueError, PydanticValidationError) as exc:
            raise OAuthExchangeError(f"Invalid token response from YNAB ({action})") from exc


def _parse_error(resp: httpx.Response) -> Tuple[Optional[str], Optional[str]]:
    """Pull ``error`` / ``error_description`` out of a JSON error body, if any."""
    try:
        body = resp.json()
    except ValueError:
        return None, None
    if not isinstance(body, dict):
        return None, None
    error = body.get("error")
    description = body.get("error_description")
    return (
        error if isinstance(error, str) else None,
        description if isinstance(description, str) else None,
    )
