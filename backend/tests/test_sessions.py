import asyncio
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import delete, select, update

from app.models.session import RefreshSession
from app.models.user import User
from app.services import sessions
from app.utils.security import create_access_token, create_refresh_token
from conftest import count_sessions


def expired_access_token(user_id) -> str:
    token, _ = create_access_token(str(user_id), expires_delta=timedelta(seconds=-30))
    return token


@pytest.mark.asyncio
async def test_issue_tokens_persists_one_session(db, user):
    tokens = await sessions.issue_tokens(db, user.id)

    assert tokens.access_token != tokens.refresh_token
    stored = (await db.execute(select(RefreshSession).where(RefreshSession.user_id == user.id))).scalar_one()
    assert stored.token == tokens.refresh_token
    expected = datetime.now(timezone.utc) + timedelta(days=7)
    assert abs(stored.expires_at.replace(tzinfo=timezone.utc) - expected) < timedelta(seconds=5)


@pytest.mark.asyncio
async def test_issue_tokens_twice_in_same_second_yields_distinct_refresh_tokens(db, user):
    first = await sessions.issue_tokens(db, user.id)
    second = await sessions.issue_tokens(db, user.id)

    assert first.refresh_token != second.refresh_token
    assert await count_sessions(db, user.id) == 2


@pytest.mark.asyncio
async def test_resolve_without_tokens_rejects(db):
    resolution = await sessions.resolve_session(db, None, None)

    assert not resolution.authenticated
    assert resolution.reason == sessions.NOT_AUTHENTICATED


@pytest.mark.asyncio
async def test_valid_access_token_resolves_without_rotation(db, user):
    tokens = await sessions.issue_tokens(db, user.id)

    resolution = await sessions.resolve_session(db, tokens.access_token, tokens.refresh_token)

    assert resolution.authenticated
    assert resolution.user.id == user.id
    assert not resolution.rotated
    assert await count_sessions(db, user.id) == 1


@pytest.mark.asyncio
async def test_tampered_access_token_rejects_without_falling_back_to_refresh(db, user):
    tokens = await sessions.issue_tokens(db, user.id)
    forged = jwt.encode(
        {"sub": str(user.id), "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
        "some-other-secret-value",
        algorithm="HS256",
    )

    resolution = await sessions.resolve_session(db, forged, tokens.refresh_token)

    assert resolution.reason == sessions.AUTHENTICATION_ERROR
    # the refresh session was not consumed
    assert await count_sessions(db, user.id) == 1


@pytest.mark.asyncio
async def test_access_token_for_deleted_user_rejects(db, user):
    tokens = await sessions.issue_tokens(db, user.id)
    await db.execute(delete(User).where(User.id == user.id).execution_options(synchronize_session="evaluate"))
    await db.commit()

    resolution = await sessions.resolve_session(db, tokens.access_token, None)

    assert resolution.reason == sessions.USER_GONE


@pytest.mark.asyncio
async def test_expired_access_without_refresh_reports_session_expired(db, user):
    resolution = await sessions.resolve_session(db, expired_access_token(user.id), None)

    assert resolution.reason == sessions.SESSION_EXPIRED


@pytest.mark.asyncio
async def test_garbage_refresh_token_is_invalid_session(db, user):
    resolution = await sessions.resolve_session(db, expired_access_token(user.id), "not-a-jwt")

    assert resolution.reason == sessions.INVALID_SESSION


@pytest.mark.asyncio
async def test_access_token_is_not_accepted_as_refresh_token(db, user):
    tokens = await sessions.issue_tokens(db, user.id)

    resolution = await sessions.resolve_session(db, None, tokens.access_token)

    assert resolution.reason == sessions.INVALID_SESSION


@pytest.mark.asyncio
async def test_expired_refresh_token_is_invalid_session(db, user):
    token, _ = create_refresh_token(str(user.id), expires_delta=timedelta(seconds=-30))

    resolution = await sessions.resolve_session(db, None, token)

    assert resolution.reason == sessions.INVALID_SESSION


@pytest.mark.asyncio
async def test_refresh_token_without_session_row_is_not_found(db, user):
    token, _ = create_refresh_token(str(user.id))

    resolution = await sessions.resolve_session(db, None, token)

    assert resolution.reason == sessions.SESSION_NOT_FOUND


@pytest.mark.asyncio
async def test_rotation_is_single_use(db, user):
    tokens = await sessions.issue_tokens(db, user.id)
    stale_access = expired_access_token(user.id)

    first = await sessions.resolve_session(db, stale_access, tokens.refresh_token)

    assert first.authenticated
    assert first.rotated
    assert first.user.id == user.id
    assert first.tokens.refresh_token != tokens.refresh_token
    remaining = list((await db.execute(select(RefreshSession.token))).scalars())
    assert remaining == [first.tokens.refresh_token]

    replay = await sessions.resolve_session(db, stale_access, tokens.refresh_token)

    assert not replay.authenticated
    assert replay.reason == sessions.SESSION_NOT_FOUND
    assert await count_sessions(db, user.id) == 1


@pytest.mark.asyncio
async def test_rotated_pair_keeps_working(db, user):
    tokens = await sessions.issue_tokens(db, user.id)
    rotated = await sessions.resolve_session(db, expired_access_token(user.id), tokens.refresh_token)

    via_access = await sessions.resolve_session(db, rotated.tokens.access_token, rotated.tokens.refresh_token)
    via_refresh = await sessions.resolve_session(db, None, rotated.tokens.refresh_token)

    assert via_access.authenticated and not via_access.rotated
    assert via_refresh.authenticated and via_refresh.rotated


@pytest.mark.asyncio
async def test_expired_session_row_is_treated_as_absent(db, user):
    tokens = await sessions.issue_tokens(db, user.id)
    await db.execute(
        update(RefreshSession)
        .where(RefreshSession.token == tokens.refresh_token)
        .values(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
    )
    await db.commit()

    resolution = await sessions.resolve_session(db, None, tokens.refresh_token)

    assert resolution.reason == sessions.SESSION_NOT_FOUND


@pytest.mark.asyncio
async def test_refresh_for_deleted_user_removes_session(db, user):
    tokens = await sessions.issue_tokens(db, user.id)
    await db.execute(delete(User).where(User.id == user.id).execution_options(synchronize_session="evaluate"))
    await db.commit()

    resolution = await sessions.resolve_session(db, None, tokens.refresh_token)

    assert resolution.reason == sessions.USER_GONE
    assert await count_sessions(db) == 0


@pytest.mark.asyncio
async def test_revoke_single_session(db, user):
    kept = await sessions.issue_tokens(db, user.id)
    dropped = await sessions.issue_tokens(db, user.id)

    removed = await sessions.revoke_sessions(db, user.id, dropped.refresh_token)

    assert removed == 1
    remaining = list((await db.execute(select(RefreshSession.token))).scalars())
    assert remaining == [kept.refresh_token]


@pytest.mark.asyncio
async def test_revoke_all_sessions(db, user):
    for _ in range(3):
        await sessions.issue_tokens(db, user.id)

    assert await sessions.revoke_sessions(db, user.id) == 3
    assert await count_sessions(db, user.id) == 0


@pytest.mark.asyncio
async def test_purge_removes_only_expired_sessions(db, user):
    live = await sessions.issue_tokens(db, user.id)
    stale = await sessions.issue_tokens(db, user.id)
    await db.execute(
        update(RefreshSession)
        .where(RefreshSession.token == stale.refresh_token)
        .values(expires_at=datetime.now(timezone.utc) - timedelta(seconds=1))
    )
    await db.commit()

    assert await sessions.purge_expired_sessions(db) == 1
    remaining = list((await db.execute(select(RefreshSession.token))).scalars())
    assert remaining == [live.refresh_token]


@pytest.mark.asyncio
async def test_concurrent_rotation_admits_a_single_winner(db, user, session_factory):
    tokens = await sessions.issue_tokens(db, user.id)
    stale_access = expired_access_token(user.id)

    async def rotate():
        async with session_factory() as other_db:
            return await sessions.resolve_session(other_db, stale_access, tokens.refresh_token)

    results = await asyncio.gather(rotate(), rotate())

    winners = [result for result in results if result.authenticated]
    losers = [result for result in results if not result.authenticated]
    assert len(winners) == 1 and winners[0].rotated
    assert len(losers) == 1 and losers[0].reason == sessions.SESSION_NOT_FOUND
    assert await count_sessions(db, user.id) == 1
