"""Access/refresh token issuance, resolution and rotation.

Refresh tokens are single use: a rotation removes the matched session row with
a conditional delete, and only the caller whose delete actually removed the row
gets a new pair. A replayed or concurrently reused refresh token therefore
resolves to "session not found".
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.session import RefreshSession
from app.models.user import User
from app.utils.security import (
    TokenExpired,
    TokenInvalid,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
)

logger = logging.getLogger(__name__)

NOT_AUTHENTICATED = "Not authenticated. Please log in."
AUTHENTICATION_ERROR = "Authentication error. Please log in again."
SESSION_EXPIRED = "Session expired. Please log in again."
INVALID_SESSION = "Invalid session. Please log in again."
SESSION_NOT_FOUND = "Session not found. Please log in again."
USER_GONE = "User no longer exists"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime


@dataclass(frozen=True)
class SessionResolution:
    user: User | None = None
    reason: str | None = None
    tokens: TokenPair | None = None

    @property
    def authenticated(self) -> bool:
        return self.user is not None

    @property
    def rotated(self) -> bool:
        return self.tokens is not None


def _reject(reason: str) -> SessionResolution:
    logger.debug("Session rejected: %s", reason)
    return SessionResolution(reason=reason)


async def issue_tokens(db: AsyncSession, user_id: uuid.UUID) -> TokenPair:
    access_token, access_expires_at = create_access_token(str(user_id))
    refresh_token, refresh_expires_at = create_refresh_token(str(user_id))
    db.add(RefreshSession(user_id=user_id, token=refresh_token, expires_at=refresh_expires_at))
    await db.commit()
    return TokenPair(
        access_token=access_token,
        refresh_token=refresh_token,
        access_expires_at=access_expires_at,
        refresh_expires_at=refresh_expires_at,
    )


async def find_live_session(db: AsyncSession, token: str, user_id: uuid.UUID) -> RefreshSession | None:
    now = datetime.now(timezone.utc)
    stmt = select(RefreshSession).where(
        RefreshSession.token == token,
        RefreshSession.user_id == user_id,
        RefreshSession.expires_at > now,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _consume_session(db: AsyncSession, session_id: uuid.UUID) -> bool:
    stmt = (
        delete(RefreshSession)
        .where(RefreshSession.id == session_id)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    return result.rowcount == 1


async def resolve_session(
    db: AsyncSession,
    access_token: str | None,
    refresh_token: str | None,
) -> SessionResolution:
    if not access_token and not refresh_token:
        return _reject(NOT_AUTHENTICATED)

    if access_token:
        try:
            user_id = decode_access_token(access_token)
        except TokenExpired:
            pass
        except TokenInvalid:
            return _reject(AUTHENTICATION_ERROR)
        else:
            user = await db.get(User, user_id)
            if user is None:
                return _reject(USER_GONE)
            return SessionResolution(user=user)

    if not refresh_token:
        return _reject(SESSION_EXPIRED)

    try:
        user_id = decode_refresh_token(refresh_token)
    except (TokenExpired, TokenInvalid):
        return _reject(INVALID_SESSION)

    stored = await find_live_session(db, refresh_token, user_id)
    if stored is None:
        return _reject(SESSION_NOT_FOUND)

    user = await db.get(User, user_id)
    if user is None:
        await _consume_session(db, stored.id)
        return _reject(USER_GONE)

    if not await _consume_session(db, stored.id):
        # another request rotated this token first
        return _reject(SESSION_NOT_FOUND)

    tokens = await issue_tokens(db, user.id)
    logger.info("Rotated refresh session for user %s", user.id)
    return SessionResolution(user=user, tokens=tokens)


async def revoke_sessions(db: AsyncSession, user_id: uuid.UUID, token: str | None = None) -> int:
    """Delete one session (``token`` given) or every session of the user."""
    stmt = delete(RefreshSession).where(RefreshSession.user_id == user_id)
    if token is not None:
        stmt = stmt.where(RefreshSession.token == token)
    result = await db.execute(stmt.execution_options(synchronize_session=False))
    await db.commit()
    logger.info("Revoked %d session(s) for user %s", result.rowcount, user_id)
    return result.rowcount


async def purge_expired_sessions(db: AsyncSession) -> int:
    now = datetime.now(timezone.utc)
    stmt = (
        delete(RefreshSession)
        .where(RefreshSession.expires_at <= now)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    if result.rowcount:
        logger.info("Purged %d expired session(s)", result.rowcount)
    return result.rowcount
