"""
OAuth state store — single-use CSRF tokens for the YNAB connect handshake.

Rows live in the generic ``verification`` table under the identifier
``ynab_oauth_state:<user_id>``.  A user may have several live rows at once
(several tabs), so validation scans every unexpired row for the user and
matches on the embedded state token.

Stored ``value`` formats::

    {"state": "<hex>", "returnUrl": "/path"}     current
    <hex>                                        legacy bare string
"""

from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import Verification
from utils.clock import Clock, as_utc, utcnow

logger = logging.getLogger(__name__)

STATE_TTL = timedelta(minutes=10)
STATE_IDENTIFIER_PREFIX = "ynab_oauth_state"
STATE_TOKEN_BYTES = 32           # 64 hex chars


class StatePayload(BaseModel):
    """JSON form of a stored state value."""

    model_config = ConfigDict(populate_by_name=True)

    state: str = Field(..., min_length=1)
    return_url: Optional[str] = Field(default=None, alias="returnUrl")


@dataclass(frozen=True)
class LegacyState:
    state: str
    return_url: Optional[str] = None


StoredState = Union[StatePayload, LegacyState]


def decode_state_value(raw: str) -> StoredState:
    """JSON object with a ``state`` field is current; anything else is legacy."""
    try:
        return StatePayload.model_validate_json(raw)
    except PydanticValidationError:
        return LegacyState(state=raw)


def encode_state_value(state: str, return_url: Optional[str] = None) -> str:
    payload = StatePayload(state=state, return_url=return_url)
    return payload.model_dump_json(by_alias=True, exclude_none=True)


def state_identifier(user_id: str) -> str:
    return f"{STATE_IDENTIFIER_PREFIX}:{user_id}"


@dataclass(frozen=True)
class StateValidation:
    valid: bool
    return_url: Optional[str] = None


class OAuthStateStore:
    """Persists, validates (consuming) and sweeps OAuth state tokens."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Clock = utcnow,
        ttl: timedelta = STATE_TTL,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._ttl = ttl

    @staticmethod
    def generate() -> str:
        """Cryptographically secure 256-bit token, hex encoded."""
        return secrets.token_hex(STATE_TOKEN_BYTES)

    async def store(self, user_id: str, state: str, return_url: Optional[str] = None) -> None:
        expires_at = self._clock() + self._ttl
        async with self._session_factory() as session:
            session.add(
                Verification(
                    identifier=state_identifier(user_id),
                    value=encode_state_value(state, return_url),
                    expires_at=expires_at,
                )
            )
            await session.commit()

    async def validate(self, user_id: str, state: str) -> StateValidation:
        """
        Validate and consume a state token for *user_id*.

        The matching row is removed with a conditional delete; if another
        request consumed it first the delete affects no rows and the state
        is reported invalid.  Never raises for misses or expiry.
        """
        now = self._clock()
        async with self._session_factory() as session:
            result = await session.execute(
                select(Verification).where(
                    Verification.identifier == state_identifier(user_id),
                    Verification.expires_at > now,
                )
            )
            match: Optional[Verification] = None
            stored: Optional[StoredState] = None
            for row in result.scalars().all():
                # The SQL filter compares timestamps; re-check in Python for naive SQLite values
                if as_utc(row.expires_at) <= now:
                    continue
                candidate = decode_state_value(row.value)
                if hmac.compare_digest(candidate.state.encode(), state.encode()):
                    match, stored = row, candidate
                    break

            if match is None or stored is None:
                return StateValidation(valid=False)

            deleted = await session.execute(
                delete(Verification).where(Verification.id == match.id)
            )
            await session.commit()

        if deleted.rowcount != 1:
            logger.info("OAuth state for user %s was consumed concurrently", user_id)
            return StateValidation(valid=False)
        return StateValidation(valid=True, return_url=stored.return_url)

    async def cleanup(self) -> int:
        """Delete every expired verification row, whatever its identifier."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(Verification).where(Verification.expires_at < self._clock())
            )
            await session.commit()
        deleted = result.rowcount or 0
        if deleted:
            logger.info("Removed %d expired verification rows", deleted)
        return deleted
