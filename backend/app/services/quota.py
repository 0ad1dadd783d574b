"""Per-user storage accounting.

The sum of a user's ``StoredFile.size`` is the source of truth. ``User.storage_used``
is only a display cache and is never consulted for gating.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import STORAGE_LIMIT_BYTES
from app.core.exceptions import QuotaExceededError
from app.models.file import StoredFile
from app.models.user import User

logger = logging.getLogger(__name__)

_MEGABYTE = 1024 * 1024


def format_megabytes(size_bytes: int) -> str:
    return f"{size_bytes / _MEGABYTE:.2f}"


async def live_usage(db: AsyncSession, user_id: uuid.UUID) -> int:
    stmt = select(func.coalesce(func.sum(StoredFile.size), 0)).where(StoredFile.owner_id == user_id)
    result = await db.execute(stmt)
    return int(result.scalar_one())


async def reserve(db: AsyncSession, user_id: uuid.UUID, incoming_total_bytes: int) -> int:
    """Admit an upload batch of ``incoming_total_bytes`` or raise.

    Returns the remaining bytes before the upload.

    Raises:
        QuotaExceededError: storage is full or the batch does not fit.
    """
    current_used = await live_usage(db, user_id)
    remaining = STORAGE_LIMIT_BYTES - current_used

    if remaining <= 0:
        logger.warning("Storage full for user %s (%d bytes used)", user_id, current_used)
        raise QuotaExceededError(
            "Storage full. Please delete some files to free up space.",
            requested_bytes=incoming_total_bytes,
            available_bytes=max(remaining, 0),
        )

    if incoming_total_bytes > remaining:
        logger.warning(
            "Quota exceeded for user %s: need %d, have %d available",
            user_id,
            incoming_total_bytes,
            remaining,
        )
        raise QuotaExceededError(
            f"Not enough storage. Trying to upload {format_megabytes(incoming_total_bytes)} MB "
            f"but only {format_megabytes(remaining)} MB remaining.",
            requested_bytes=incoming_total_bytes,
            available_bytes=remaining,
        )

    return remaining


async def reconcile(db: AsyncSession, user_id: uuid.UUID) -> int:
    """Overwrite the cached counter with the live sum and reset the limit.

    Safe to call any number of times; returns the new usage.
    """
    total = await live_usage(db, user_id)
    stmt = (
        update(User)
        .where(User.id == user_id)
        .values(storage_used=total, storage_limit=STORAGE_LIMIT_BYTES)
        .execution_options(synchronize_session="evaluate")
    )
    await db.execute(stmt)
    await db.commit()
    logger.info("Reconciled storage for user %s: %d bytes", user_id, total)
    return total
