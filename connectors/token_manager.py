"""
Token vault — get / refresh / store per-user YNAB tokens.

This is the single interface that API call paths use to obtain a live YNAB
access token for a user.  Tokens are encrypted at rest, refreshed
transparently when they are within the refresh buffer of expiry, and
discarded (forcing re-authorization) when they cannot be decrypted or
refreshed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.base import BaseConnector, TokenResponse
from connectors.encryption import TokenCipher
from database.helpers import upsert
from database.models import YnabToken
from utils.clock import Clock, as_utc, utcnow
from utils.errors import DecryptionError, OAuthExchangeError

logger = logging.getLogger(__name__)

TOKEN_REFRESH_BUFFER = timedelta(minutes=5)


@dataclass(frozen=True)
class YnabTokens:
    access_token: str
    refresh_token: str
    expires_at: datetime


class TokenVault:
    """Durable, encrypted, self-refreshing storage of one token pair per user."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        connector: BaseConnector,
        cipher: TokenCipher,
        *,
        clock: Clock = utcnow,
        refresh_buffer: timedelta = TOKEN_REFRESH_BUFFER,
    ) -> None:
        self._session_factory = session_factory
        self._connector = connector
        self._cipher = cipher
        self._clock = clock
        self._refresh_buffer = refresh_buffer

    def now(self) -> datetime:
        return self._clock()

    async def get(self, user_id: str) -> Optional[YnabTokens]:
        """
        Return a token pair valid for at least the refresh buffer, or None.

        1. Load the row; None if the user never connected.
        2. Decrypt both secrets; on failure (key or salt rotated) delete the
           row and return None.
        3. If the access token expires within the buffer, refresh it through
           the connector and save the new pair; on failure delete the row
           and return None.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(YnabToken).where(YnabToken.user_id == user_id)
            )
            row = result.scalar_one_or_none()
        if row is None:
            return None

        try:
            access_token = self._reveal(row.access_token)
            refresh_token = self._reveal(row.refresh_token)
        except DecryptionError:
            logger.error(
                "Failed to decrypt YNAB tokens for user %s (key/salt may have changed); "
                "removing them",
                user_id,
            )
            await self.delete(user_id)
            return None

        now = self._clock()
        expires_at = as_utc(row.expires_at)
        if expires_at >= now + self._refresh_buffer:
            return YnabTokens(access_token, refresh_token, expires_at)

        logger.info(
            "YNAB token for user %s needs refresh (expires_at=%s, expired=%s)",
            user_id,
            expires_at.isoformat(),
            expires_at < now,
        )
        try:
            refreshed = await self._connector.refresh_access_token(refresh_token)
        except OAuthExchangeError as exc:
            logger.warning(
                "YNAB token refresh failed for user %s (%s); removing tokens",
                user_id,
                exc.provider_error or exc.message,
            )
            await self.delete(user_id)
            return None

        tokens = await self.save(user_id, refreshed)
        logger.info("Refreshed YNAB token for user %s", user_id)
        return tokens

    async def save(self, user_id: str, token_response: TokenResponse) -> YnabTokens:
        """Encrypt and upsert a token pair; the latest write wins."""
        expires_at = datetime.fromtimestamp(
            token_response.created_at + token_response.expires_in, tz=timezone.utc
        )
        now = self._clock()
        values = {
            "user_id": user_id,
            "access_token": self._cipher.encrypt(token_response.access_token),
            "refresh_token": self._cipher.encrypt(token_response.refresh_token),
            "expires_at": expires_at,
            "created_at": now,
            "updated_at": now,
        }
        async with self._session_factory() as session:
            # id is only used on insert; conflicts keep the existing primary key
            stmt = upsert(
                session,
                YnabToken,
                {"id": str(uuid.uuid4()), **values},
                index_elements=["user_id"],
                update_fields=["access_token", "refresh_token", "expires_at", "updated_at"],
            )
            await session.execute(stmt)
            await session.commit()

        return YnabTokens(
            access_token=token_response.access_token,
            refresh_token=token_response.refresh_token,
            expires_at=expires_at,
        )

    async def delete(self, user_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(YnabToken).where(YnabToken.user_id == user_id))
            await session.commit()

    def _reveal(self, stored: str) -> str:
        """Decrypt a stored value; legacy plaintext rows are returned as-is."""
        if self._cipher.is_encrypted(stored):
            return self._cipher.decrypt(stored)
        return stored
