from __future__ import annotations

import logging
import re
import uuid

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AuthError, ConflictError, ValidationError
from app.models.file import StoredFile
from app.models.session import RefreshSession
from app.models.user import User
from app.services.files import IncomingFile, validate_image
from app.services.sessions import revoke_sessions
from app.services.storage import ObjectStore, delete_objects_best_effort
from app.utils.security import get_password_hash, verify_password

logger = logging.getLogger(__name__)

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 20
PASSWORD_MIN_LENGTH = 6
EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")

INVALID_CREDENTIALS = "Invalid email or password"


def _validate_username(username: str) -> str:
    username = username.strip()
    if len(username) < USERNAME_MIN_LENGTH:
        raise ValidationError(f"Username must be at least {USERNAME_MIN_LENGTH} characters")
    if len(username) > USERNAME_MAX_LENGTH:
        raise ValidationError(f"Username cannot exceed {USERNAME_MAX_LENGTH} characters")
    return username


def _conflict_from_integrity_error(exc: IntegrityError) -> ConflictError:
    # postgres names the constraint, sqlite names the column
    detail = str(exc.orig).lower()
    if "uq_users_email" in detail or "users.email" in detail:
        return ConflictError("Email is already registered", field="email")
    if "uq_users_username" in detail or "users.username" in detail:
        return ConflictError("Username is already taken", field="username")
    return ConflictError("Value already in use")


async def register_user(db: AsyncSession, username: str, email: str, password: str) -> User:
    username = (username or "").strip()
    email = (email or "").strip().lower()
    if not username or not email or not password:
        raise ValidationError("All fields are required")
    username = _validate_username(username)
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Please provide a valid email address")
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")

    user = User(username=username, email=email, password_hash=get_password_hash(password))
    db.add(user)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise _conflict_from_integrity_error(exc) from exc
    await db.refresh(user)
    logger.info("Registered user %s", user.id)
    return user


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def get_user_by_id(db: AsyncSession, user_id: uuid.UUID) -> User | None:
    return await db.get(User, user_id)


async def verify_credentials(db: AsyncSession, email: str, password: str) -> User:
    if not (email or "").strip() or not password:
        raise ValidationError("Email and password are required")
    user = await get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        logger.info("Failed login attempt")
        raise AuthError(INVALID_CREDENTIALS)
    return user


async def change_password(db: AsyncSession, user: User, current_password: str, new_password: str) -> None:
    if not current_password or not new_password:
        raise ValidationError("Both current and new passwords are required")
    if len(new_password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"New password must be at least {PASSWORD_MIN_LENGTH} characters")
    if not verify_password(current_password, user.password_hash):
        raise AuthError("Current password is incorrect")
    # hashes are salted, so compare by verifying rather than by string equality
    if verify_password(new_password, user.password_hash):
        raise ValidationError("New password must be different")

    user.password_hash = get_password_hash(new_password)
    await db.commit()
    await revoke_sessions(db, user.id)


async def update_profile(
    db: AsyncSession,
    store: ObjectStore,
    user: User,
    *,
    username: str | None = None,
    avatar: IncomingFile | None = None,
) -> User:
    new_username = username.strip() if username is not None else ""
    if not new_username and avatar is None:
        raise ValidationError("No changes provided")
    if new_username:
        new_username = _validate_username(new_username)
    if avatar is not None:
        validate_image(avatar)

    if new_username:
        user.username = new_username
        # surface a taken username before any object is written or removed
        try:
            await db.flush()
        except IntegrityError as exc:
            await db.rollback()
            raise _conflict_from_integrity_error(exc) from exc

    superseded = None
    stored = None
    if avatar is not None:
        superseded = user.avatar_public_id
        stored = await store.put(avatar.data, store.folder_for(user.id, "avatar"), avatar.content_type)
        user.avatar_url = stored.url
        user.avatar_public_id = stored.public_id

    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        if stored is not None:
            await delete_objects_best_effort(store, [stored.public_id])
        raise _conflict_from_integrity_error(exc) from exc

    if superseded:
        await delete_objects_best_effort(store, [superseded])
    await db.refresh(user)
    return user


async def delete_account(db: AsyncSession, store: ObjectStore, user: User) -> None:
    user_id = user.id
    result = await db.execute(select(StoredFile.public_id).where(StoredFile.owner_id == user_id))
    public_ids = list(result.scalars())
    if user.avatar_public_id:
        public_ids.append(user.avatar_public_id)
    await delete_objects_best_effort(store, public_ids)

    await db.execute(
        delete(StoredFile).where(StoredFile.owner_id == user_id).execution_options(synchronize_session=False)
    )
    await db.execute(
        delete(RefreshSession)
        .where(RefreshSession.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    await db.execute(delete(User).where(User.id == user_id).execution_options(synchronize_session="evaluate"))
    await db.commit()
    logger.info("Deleted account %s", user_id)
