"""
Tests for the token vault — encryption at rest, refresh-on-read, upsert.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import delete, func, select

from conftest import token_payload
from connectors.base import TokenResponse
from connectors.encryption import TokenCipher
from connectors.token_manager import TokenVault
from database.models import User, YnabToken
from utils.errors import OAuthExchangeError


def _response(clock, **overrides) -> TokenResponse:
    return TokenResponse.model_validate(token_payload(clock, **overrides))


def _mock_connector(refreshed: TokenResponse | None = None, error: Exception | None = None) -> MagicMock:
    connector = MagicMock()
    connector.refresh_access_token = AsyncMock(return_value=refreshed, side_effect=error)
    return connector


async def _rows(session_factory, user_id="user-1"):
    async with session_factory() as session:
        result = await session.execute(select(YnabToken).where(YnabToken.user_id == user_id))
        return result.scalars().all()


@pytest.fixture
def connector():
    return _mock_connector()


@pytest.fixture
def vault(session_factory, connector, cipher, clock):
    return TokenVault(session_factory, connector, cipher, clock=clock)


class TestSave:
    @pytest.mark.asyncio
    async def test_encrypts_at_rest(self, vault, users, session_factory, cipher, clock):
        await vault.save("user-1", _response(clock, access="plain-access", refresh="plain-refresh"))

        [row] = await _rows(session_factory)
        assert "plain-access" not in row.access_token
        assert "plain-refresh" not in row.refresh_token
        assert cipher.decrypt(row.access_token) == "plain-access"
        assert cipher.decrypt(row.refresh_token) == "plain-refresh"

    @pytest.mark.asyncio
    async def test_expires_at_is_created_at_plus_expires_in(self, vault, users, clock):
        tokens = await vault.save("user-1", _response(clock, expires_in=7200))
        assert tokens.expires_at == clock() + timedelta(hours=2)

    @pytest.mark.asyncio
    async def test_upsert_keeps_one_row_with_latest_values(self, vault, users, session_factory, cipher, clock):
        await vault.save("user-1", _response(clock, access="first", refresh="r1"))
        await vault.save("user-1", _response(clock, access="second", refresh="r2", expires_in=3600))

        rows = await _rows(session_factory)
        assert len(rows) == 1
        assert cipher.decrypt(rows[0].access_token) == "second"
        assert cipher.decrypt(rows[0].refresh_token) == "r2"

        tokens = await vault.get("user-1")
        assert tokens.access_token == "second"

    @pytest.mark.asyncio
    async def test_users_are_isolated(self, vault, users, clock):
        await vault.save("user-1", _response(clock, access="one"))
        await vault.save("user-2", _response(clock, access="two"))

        assert (await vault.get("user-1")).access_token == "one"
        assert (await vault.get("user-2")).access_token == "two"


class TestGet:
    @pytest.mark.asyncio
    async def test_missing_user_returns_none(self, vault, users):
        assert await vault.get("user-1") is None

    @pytest.mark.asyncio
    async def test_fresh_token_returned_without_refresh(self, vault, users, connector, clock):
        await vault.save("user-1", _response(clock, access="a", refresh="r", expires_in=3600))

        tokens = await vault.get("user-1")

        assert tokens.access_token == "a"
        assert tokens.refresh_token == "r"
        connector.refresh_access_token.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_token_near_expiry_is_refreshed(self, session_factory, users, cipher, clock):
        refreshed = _response(clock, access="new-access", refresh="new-refresh", expires_in=7200)
        connector = _mock_connector(refreshed=refreshed)
        vault = TokenVault(session_factory, connector, cipher, clock=clock)
        await vault.save("user-1", _response(clock, access="old", refresh="old-refresh", expires_in=120))

        tokens = await vault.get("user-1")

        connector.refresh_access_token.assert_awaited_once_with("old-refresh")
        assert tokens.access_token == "new-access"
        assert tokens.refresh_token == "new-refresh"
        assert tokens.expires_at == clock() + timedelta(hours=2)
        [row] = await _rows(session_factory)
        assert cipher.decrypt(row.access_token) == "new-access"

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed(self, session_factory, users, cipher, clock):
        connector = _mock_connector(refreshed=_response(clock, access="new"))
        vault = TokenVault(session_factory, connector, cipher, clock=clock)
        await vault.save("user-1", _response(clock, expires_in=600))
        clock.advance(hours=1)
        connector.refresh_access_token.return_value = _response(clock, access="new")

        assert (await vault.get("user-1")).access_token == "new"

    @pytest.mark.asyncio
    async def test_refresh_failure_deletes_row(self, session_factory, users, cipher, clock):
        connector = _mock_connector(error=OAuthExchangeError("refresh rejected", provider_error="invalid_grant"))
        vault = TokenVault(session_factory, connector, cipher, clock=clock)
        await vault.save("user-1", _response(clock, expires_in=120))

        assert await vault.get("user-1") is None
        assert await _rows(session_factory) == []

    @pytest.mark.asyncio
    async def test_undecryptable_row_is_deleted(self, session_factory, users, connector, cipher, clock):
        await TokenVault(session_factory, connector, cipher, clock=clock).save(
            "user-1", _response(clock)
        )
        rotated = TokenCipher("test-token-encryption-secret", "rotated-salt")
        vault = TokenVault(session_factory, connector, rotated, clock=clock)

        assert await vault.get("user-1") is None
        assert await _rows(session_factory) == []
        connector.refresh_access_token.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_legacy_plaintext_row_is_readable(self, vault, users, session_factory, clock):
        async with session_factory() as session:
            session.add(
                YnabToken(
                    user_id="user-1",
                    access_token="legacy-plain-access",
                    refresh_token="legacy-plain-refresh",
                    expires_at=clock() + timedelta(hours=1),
                )
            )
            await session.commit()

        tokens = await vault.get("user-1")
        assert tokens.access_token == "legacy-plain-access"


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_removes_row(self, vault, users, session_factory, clock):
        await vault.save("user-1", _response(clock))
        await vault.delete("user-1")
        assert await _rows(session_factory) == []

    @pytest.mark.asyncio
    async def test_delete_absent_is_noop(self, vault, users):
        await vault.delete("user-1")

    @pytest.mark.asyncio
    async def test_user_deletion_cascades(self, vault, users, session_factory, clock):
        await vault.save("user-1", _response(clock))

        async with session_factory() as session:
            await session.execute(delete(User).where(User.id == "user-1"))
            await session.commit()
            remaining = (
                await session.execute(select(func.count()).select_from(YnabToken))
            ).scalar_one()

        assert remaining == 0
