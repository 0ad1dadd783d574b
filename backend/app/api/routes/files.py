from __future__ import annotations

import math
import uuid

from fastapi import APIRouter, File, Query, UploadFile, status

from app.api import deps
from app.api.uploads import read_uploads
from app.core.config import STORAGE_LIMIT_BYTES
from app.schemas.common import ApiResponse, ok
from app.schemas.file import (
    BulkDeleteRequest,
    FileListData,
    FileResponse,
    Pagination,
    StorageData,
    UploadData,
)
from app.schemas.user import UserResponse
from app.services import files as file_service
from app.services import quota
from app.services.files import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

router = APIRouter(prefix="/files", tags=["files"])


@router.post("/upload", response_model=ApiResponse, status_code=status.HTTP_201_CREATED)
async def upload_files(
    db: deps.DatabaseSessionDep,
    store: deps.ObjectStoreDep,
    current_user: deps.CurrentUserDep,
    files: list[UploadFile] | None = File(default=None),
) -> ApiResponse:
    incoming = await read_uploads(files or [])
    result = await file_service.upload_files(db, store, current_user, incoming)
    data = UploadData(
        files=[FileResponse.model_validate(record) for record in result.files],
        storage_used=result.storage_used,
        storage_limit=STORAGE_LIMIT_BYTES,
    )
    return ok(data, f"{len(result.files)} file(s) uploaded successfully")


@router.get("", response_model=ApiResponse)
async def list_files(
    db: deps.DatabaseSessionDep,
    current_user: deps.CurrentUserDep,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
) -> ApiResponse:
    records, total = await file_service.list_files(db, current_user.id, page=page, limit=limit)
    data = FileListData(
        files=[FileResponse.model_validate(record) for record in records],
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )
    return ok(data)


@router.delete("/bulk", response_model=ApiResponse)
async def delete_multiple_files(
    payload: BulkDeleteRequest,
    db: deps.DatabaseSessionDep,
    store: deps.ObjectStoreDep,
    current_user: deps.CurrentUserDep,
) -> ApiResponse:
    deleted, used = await file_service.delete_files(db, store, current_user, payload.file_ids)
    return ok(
        StorageData(storage_used=used, storage_limit=STORAGE_LIMIT_BYTES),
        f"{deleted} file(s) deleted successfully",
    )


@router.post("/recalculate-storage", response_model=ApiResponse)
async def recalculate_storage(
    db: deps.DatabaseSessionDep,
    current_user: deps.CurrentUserDep,
) -> ApiResponse:
    used = await quota.reconcile(db, current_user.id)
    await db.refresh(current_user)
    return ok(
        {
            "user": UserResponse.from_user(current_user),
            "storage_used": used,
            "storage_limit": STORAGE_LIMIT_BYTES,
        },
        "Storage recalculated",
    )


@router.delete("/{file_id}", response_model=ApiResponse)
async def delete_file(
    file_id: uuid.UUID,
    db: deps.DatabaseSessionDep,
    store: deps.ObjectStoreDep,
    current_user: deps.CurrentUserDep,
) -> ApiResponse:
    used = await file_service.delete_file(db, store, current_user, file_id)
    return ok(StorageData(storage_used=used, storage_limit=STORAGE_LIMIT_BYTES), "File deleted successfully")
