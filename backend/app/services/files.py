from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import (
    ALLOWED_IMAGE_TYPES,
    MAX_BULK_DELETE,
    MAX_UPLOAD_FILE_BYTES,
    MAX_UPLOAD_FILES,
)
from app.core.exceptions import NotFoundError, UpstreamError, ValidationError
from app.models.file import StoredFile
from app.models.user import User
from app.services import quota
from app.services.storage import ObjectStore, StoredObject, delete_objects_best_effort

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class IncomingFile:
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class UploadResult:
    files: list[StoredFile]
    storage_used: int


def validate_image(file: IncomingFile) -> None:
    if file.content_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationError("Only image files are allowed (jpg, jpeg, png, gif, webp, svg)")
    if file.size > MAX_UPLOAD_FILE_BYTES:
        raise ValidationError("File too large. Max 5MB per file.")


def validate_incoming(files: Sequence[IncomingFile]) -> None:
    if not files:
        raise ValidationError("No files uploaded")
    if len(files) > MAX_UPLOAD_FILES:
        raise ValidationError(f"Cannot upload more than {MAX_UPLOAD_FILES} files at once")
    for file in files:
        validate_image(file)


async def upload_files(
    db: AsyncSession,
    store: ObjectStore,
    user: User,
    files: Sequence[IncomingFile],
) -> UploadResult:
    validate_incoming(files)
    await quota.reserve(db, user.id, sum(file.size for file in files))

    folder = store.folder_for(user.id)
    try:
        stored: list[StoredObject] = await asyncio.gather(
            *(store.put(file.data, folder, file.content_type) for file in files)
        )
    except UpstreamError:
        raise
    except Exception as exc:
        logger.exception("Upload batch failed for user %s", user.id)
        raise UpstreamError("Failed to upload files") from exc

    records = [
        StoredFile(
            owner_id=user.id,
            original_name=file.filename or "upload",
            mime_type=file.content_type,
            size=file.size,
            url=obj.url,
            public_id=obj.public_id,
            format=obj.format,
        )
        for file, obj in zip(files, stored)
    ]
    db.add_all(records)
    await db.commit()

    used = await quota.reconcile(db, user.id)
    logger.info("User %s uploaded %d file(s)", user.id, len(records))
    return UploadResult(files=records, storage_used=used)


async def list_files(
    db: AsyncSession,
    owner_id: uuid.UUID,
    *,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> tuple[list[StoredFile], int]:
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    stmt = (
        select(StoredFile)
        .where(StoredFile.owner_id == owner_id)
        .order_by(StoredFile.created_at.desc(), StoredFile.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    result = await db.execute(stmt)
    total = await db.scalar(select(func.count()).select_from(StoredFile).where(StoredFile.owner_id == owner_id))
    return list(result.scalars()), int(total or 0)


async def get_owned_file(db: AsyncSession, owner_id: uuid.UUID, file_id: uuid.UUID) -> StoredFile:
    stmt = select(StoredFile).where(StoredFile.id == file_id, StoredFile.owner_id == owner_id)
    file = (await db.execute(stmt)).scalar_one_or_none()
    if file is None:
        raise NotFoundError("File not found")
    return file


async def delete_file(db: AsyncSession, store: ObjectStore, user: User, file_id: uuid.UUID) -> int:
    file = await get_owned_file(db, user.id, file_id)
    await delete_objects_best_effort(store, [file.public_id])
    await db.delete(file)
    await db.commit()
    return await quota.reconcile(db, user.id)


async def delete_files(
    db: AsyncSession,
    store: ObjectStore,
    user: User,
    file_ids: Sequence[uuid.UUID],
) -> tuple[int, int]:
    """Delete the caller's files among ``file_ids``.

    Returns ``(deleted_count, storage_used)``.
    """
    if not file_ids:
        raise ValidationError("No file IDs provided")
    if len(file_ids) > MAX_BULK_DELETE:
        raise ValidationError(f"Cannot delete more than {MAX_BULK_DELETE} files at once")

    stmt = select(StoredFile).where(StoredFile.id.in_(set(file_ids)), StoredFile.owner_id == user.id)
    files = list((await db.execute(stmt)).scalars())
    if not files:
        raise NotFoundError("No matching files found")

    await delete_objects_best_effort(store, [file.public_id for file in files])
    await db.execute(
        delete(StoredFile)
        .where(StoredFile.id.in_([file.id for file in files]))
        .execution_options(synchronize_session=False)
    )
    for file in files:
        db.expunge(file)
    await db.commit()

    used = await quota.reconcile(db, user.id)
    return len(files), used
