from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from passlib.context import CryptContext

from app.core.config import settings

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.password_hash_rounds,
)


class TokenExpired(Exception):
    pass


class TokenInvalid(Exception):
    pass


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(subject: str, expires_delta: timedelta | None = None) -> tuple[str, datetime]:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload: Dict[str, Any] = {"sub": subject, "iat": int(now.timestamp()), "exp": int(expire.timestamp())}
    token = jwt.encode(payload, settings.access_token_secret, algorithm=settings.jwt_algorithm)
    return token, expire


def create_refresh_token(subject: str, expires_delta: timedelta | None = None) -> tuple[str, datetime]:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(days=settings.refresh_token_expire_days))
    # jti keeps tokens minted within the same second distinct
    payload: Dict[str, Any] = {
        "sub": subject,
        "jti": secrets.token_hex(16),
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    token = jwt.encode(payload, settings.refresh_token_secret, algorithm=settings.jwt_algorithm)
    return token, datetime.fromtimestamp(payload["exp"], tz=timezone.utc)


def _decode_subject(token: str, secret: str) -> uuid.UUID:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise TokenExpired from exc
    except jwt.PyJWTError as exc:
        raise TokenInvalid from exc

    subject = payload.get("sub")
    if not subject:
        raise TokenInvalid("missing subject")
    try:
        return uuid.UUID(subject)
    except (TypeError, ValueError) as exc:
        raise TokenInvalid("malformed subject") from exc


def decode_access_token(token: str) -> uuid.UUID:
    """Return the user id carried by an access token.

    Raises ``TokenExpired`` for a well-formed token past its ``exp`` and
    ``TokenInvalid`` for anything else that does not verify.
    """
    return _decode_subject(token, settings.access_token_secret)


def decode_refresh_token(token: str) -> uuid.UUID:
    return _decode_subject(token, settings.refresh_token_secret)
