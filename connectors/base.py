"""
BaseConnector — abstract interface for an OAuth2 token provider.

The vault and the connect routes depend only on this contract, so tests can
substitute a fake provider.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel, Field


class TokenResponse(BaseModel):
    """Validated body of a successful token-endpoint response."""

    access_token: str = Field(..., min_length=1)
    refresh_token: str = Field(..., min_length=1)
    expires_in: int = Field(..., gt=0)
    created_at: int
    token_type: str = "bearer"


class BaseConnector(ABC):
    """Abstract base for OAuth2 connectors."""

    # ── OAuth flow ──────────────────────────────────────────────────────

    @abstractmethod
    def get_auth_url(self, state: str) -> str:
        """
        Build the provider's OAuth2 authorization URL.

        Parameters
        ----------
        state : str
            Single-use CSRF token issued by the state store.

        Returns
        -------
        The full URL to redirect the user to.
        """
        ...

    @abstractmethod
    async def handle_callback(self, code: str) -> TokenResponse:
        """
        Exchange the authorization code for tokens.

        Raises ``OAuthExchangeError`` on any failure.
        """
        ...

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """
        Trade a refresh token for a new token pair.

        Raises ``OAuthExchangeError`` on any failure.
        """
        ...

    # ── Helpers ─────────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        """Return True if this connector has its client credentials."""
        return True
