from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class AvatarResponse(BaseModel):
    url: str | None = None
    public_id: str | None = None


class UserResponse(BaseModel):
    """Outward view of a user. The password hash is never part of it."""

    id: uuid.UUID
    username: str
    email: str
    avatar: AvatarResponse
    storage_used: int
    storage_limit: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_user(cls, user) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            avatar=AvatarResponse(url=user.avatar_url, public_id=user.avatar_public_id),
            storage_used=user.storage_used,
            storage_limit=user.storage_limit,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class UserEnvelopeData(BaseModel):
    user: UserResponse
