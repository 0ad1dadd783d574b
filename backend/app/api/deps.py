from __future__ import annotations

from typing import Annotated

from fastapi import Cookie, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.cookies import ACCESS_COOKIE, REFRESH_COOKIE, set_token_cookies
from app.core.exceptions import AuthError
from app.db.session import get_db_session
from app.models.user import User
from app.services.sessions import resolve_session
from app.services.storage import ObjectStore


DatabaseSessionDep = Annotated[AsyncSession, Depends(get_db_session)]


def get_object_store(request: Request) -> ObjectStore:
    return request.app.state.object_store


ObjectStoreDep = Annotated[ObjectStore, Depends(get_object_store)]


async def get_current_user(
    request: Request,
    response: Response,
    db: DatabaseSessionDep,
    access_token: str | None = Cookie(default=None, alias=ACCESS_COOKIE),
    refresh_token: str | None = Cookie(default=None, alias=REFRESH_COOKIE),
) -> User:
    resolution = await resolve_session(db, access_token, refresh_token)
    if not resolution.authenticated:
        raise AuthError(resolution.reason or "Not authenticated")

    request.state.rotated_tokens = resolution.tokens
    if resolution.tokens is not None:
        set_token_cookies(response, resolution.tokens)
        refresh_token = resolution.tokens.refresh_token

    request.state.user = resolution.user
    request.state.refresh_token = refresh_token
    return resolution.user


CurrentUserDep = Annotated[User, Depends(get_current_user)]
