"""Refresh-token rotation and sign-out against real shards."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from src.identity.core.exceptions import InvalidTokenError
from src.identity.core.security import create_refresh_token, hash_token
from src.identity.models.base import utc_now
from src.identity.repositories import RefreshTokenRepository
from src.identity.schemas.auth import LoginOption, Session
from tests.helpers import count_rows_everywhere, log_events

pytestmark = pytest.mark.integration


async def signed_in(core, option=None):
    await core.auth.register("a@x.com", "pw", first_name="Ann")
    return await core.auth.sign_in("a@x.com", "pw", option)


async def token_record(core, user_id, token):
    async with core.locator.resolve(user_id).connect() as conn:
        return await RefreshTokenRepository(conn, core.tables).get_by_hash(
            user_id, hash_token(token)
        )


class TestCreateSession:
    async def test_only_token_hash_is_persisted(self, core):
        session = await signed_in(core, LoginOption(client_ip="10.0.0.1", client_agent="ua"))

        table = core.tables.user_token
        async with core.locator.resolve(session.user_id).connect() as conn:
            rows = (await conn.execute(select(table))).mappings().all()

        assert len(rows) == 1
        assert rows[0]["hash"] == hash_token(session.refresh_token)
        assert session.refresh_token not in rows[0].values()
        assert rows[0]["user_ip"] == "10.0.0.1"
        assert rows[0]["user_agent"] == "ua"
        assert rows[0]["expires_on"] > utc_now() + timedelta(minutes=59)

    async def test_session_carries_display_fields(self, core):
        session = await signed_in(core)

        assert session.first_name == "Ann"
        assert session.email == "a*@x.com"
        assert session.expires_in == core.settings.access_token_ttl_seconds
        assert session.token_type == "bearer"


class TestRefreshSession:
    async def test_rotation_is_single_use(self, core):
        first = await signed_in(core)

        second = await core.auth.refresh_session(first.refresh_token)

        assert second.user_id == first.user_id
        assert second.refresh_token != first.refresh_token
        assert core.auth.is_authenticated(second.access_token) == first.user_id

        # replayed straight away, with no background work awaited
        with pytest.raises(InvalidTokenError):
            await core.auth.refresh_session(first.refresh_token)

        third = await core.auth.refresh_session(second.refresh_token)

        with pytest.raises(InvalidTokenError):
            await core.auth.refresh_session(second.refresh_token)
        assert await token_record(core, first.user_id, first.refresh_token) is None
        assert await token_record(core, first.user_id, third.refresh_token) is not None
        assert await count_rows_everywhere(core, core.tables.user_token) == 1

    async def test_concurrent_rotation_succeeds_once(self, core):
        session = await signed_in(core)

        results = await asyncio.gather(
            core.auth.refresh_session(session.refresh_token),
            core.auth.refresh_session(session.refresh_token),
            return_exceptions=True,
        )

        rotated = [r for r in results if isinstance(r, Session)]
        rejected = [r for r in results if isinstance(r, InvalidTokenError)]
        assert len(rotated) == 1
        assert len(rejected) == 1
        assert await count_rows_everywhere(core, core.tables.user_token) == 1
        assert await token_record(core, session.user_id, rotated[0].refresh_token) is not None

    async def test_rotation_keeps_client_unless_given(self, core):
        first = await signed_in(core, LoginOption(client_ip="10.0.0.1", client_agent="ua"))

        second = await core.auth.refresh_session(first.refresh_token)
        third = await core.auth.refresh_session(second.refresh_token, client_ip="10.0.0.2")

        kept = await token_record(core, first.user_id, second.refresh_token)
        assert kept is None  # consumed
        record = await token_record(core, first.user_id, third.refresh_token)
        assert record.user_ip == "10.0.0.2"
        assert record.user_agent == "ua"

    async def test_access_token_cannot_refresh(self, core):
        session = await signed_in(core)
        with pytest.raises(InvalidTokenError):
            await core.auth.refresh_session(session.access_token)

    async def test_validly_signed_but_unknown_token(self, core):
        session = await signed_in(core)
        forged, _ = create_refresh_token(core.settings, session.user_id)

        with pytest.raises(InvalidTokenError):
            await core.auth.refresh_session(forged)

    async def test_expired_record_is_not_redeemed(self, core):
        session = await signed_in(core)
        table = core.tables.user_token
        async with core.locator.resolve(session.user_id).begin() as conn:
            await conn.execute(
                update(table).values(expires_on=utc_now() - timedelta(seconds=1))
            )

        with pytest.raises(InvalidTokenError):
            await core.auth.refresh_session(session.refresh_token)

    async def test_rejected_rotation_keeps_nothing_new(self, core):
        session = await signed_in(core)
        await core.auth.refresh_session(session.refresh_token)

        with pytest.raises(InvalidTokenError):
            await core.auth.refresh_session(session.refresh_token)

        assert await count_rows_everywhere(core, core.tables.user_token) == 1

    async def test_cleanup_failure_does_not_fail_refresh(
        self, core, monkeypatch, capturing_logger
    ):
        session = await signed_in(core)

        async def failing_cleanup(self, user_id):
            raise RuntimeError("shard unavailable")

        monkeypatch.setattr(RefreshTokenRepository, "cleanup_expired", failing_cleanup)

        rotated = await core.auth.refresh_session(session.refresh_token)
        await core.background.drain(timeout=5.0)

        assert rotated.refresh_token != session.refresh_token
        warnings = log_events(capturing_logger, "warning")
        assert any(w["event"] == "Background task failed" for w in warnings)

    async def test_rotation_purges_expired_records(self, core):
        session = await signed_in(core)
        stale = await core.auth.sign_in("a@x.com", "pw")
        table = core.tables.user_token
        async with core.locator.resolve(session.user_id).begin() as conn:
            await conn.execute(
                update(table)
                .where(table.c.hash == hash_token(stale.refresh_token))
                .values(expires_on=utc_now() - timedelta(seconds=1))
            )

        await core.auth.refresh_session(session.refresh_token)
        await core.background.drain(timeout=5.0)

        assert await count_rows_everywhere(core, table) == 1


class TestSignOut:
    async def test_sign_out_everywhere(self, core):
        first = await signed_in(core)
        second = await core.auth.sign_in("a@x.com", "pw")

        assert await core.auth.sign_out(first.user_id) == 2

        for session in (first, second):
            with pytest.raises(InvalidTokenError):
                await core.auth.refresh_session(session.refresh_token)

    async def test_sign_out_single_token(self, core):
        first = await signed_in(core)
        second = await core.auth.sign_in("a@x.com", "pw")

        assert await core.auth.sign_out(first.user_id, first.refresh_token) == 1

        with pytest.raises(InvalidTokenError):
            await core.auth.refresh_session(first.refresh_token)
        await core.auth.refresh_session(second.refresh_token)

    async def test_access_token_survives_sign_out(self, core):
        session = await signed_in(core)

        await core.auth.sign_out(session.user_id)

        assert core.auth.is_authenticated(session.access_token) == session.user_id


async def test_purge_expired_tokens(core):
    session = await signed_in(core)
    await core.auth.sign_in("a@x.com", "pw")

    table = core.tables.user_token
    async with core.locator.resolve(session.user_id).begin() as conn:
        await conn.execute(
            update(table)
            .where(table.c.hash == hash_token(session.refresh_token))
            .values(expires_on=utc_now() - timedelta(seconds=1))
        )

    assert await core.sessions.purge_expired_tokens(session.user_id) == 1
    assert await count_rows_everywhere(core, table) == 1
