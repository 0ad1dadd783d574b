from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class FileResponse(BaseModel):
    id: uuid.UUID
    original_name: str
    mime_type: str
    size: int
    url: str
    public_id: str
    format: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class FileListData(BaseModel):
    files: list[FileResponse]
    pagination: Pagination


class UploadData(BaseModel):
    files: list[FileResponse]
    storage_used: int
    storage_limit: int


class StorageData(BaseModel):
    storage_used: int
    storage_limit: int


class BulkDeleteRequest(BaseModel):
    file_ids: list[uuid.UUID] = Field(default_factory=list)
