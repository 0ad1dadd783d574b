from __future__ import annotations

from typing import Sequence

from fastapi import UploadFile

from app.core.config import MAX_UPLOAD_FILE_BYTES, MAX_UPLOAD_FILES
from app.core.exceptions import ValidationError
from app.services.files import IncomingFile

FILE_TOO_LARGE = "File too large. Max 5MB per file."


async def read_upload(upload: UploadFile, default_name: str = "upload") -> IncomingFile:
    """Read one multipart part into memory, never more than the per-file cap plus one byte."""
    if upload.size is not None and upload.size > MAX_UPLOAD_FILE_BYTES:
        raise ValidationError(FILE_TOO_LARGE)
    data = await upload.read(MAX_UPLOAD_FILE_BYTES + 1)
    if len(data) > MAX_UPLOAD_FILE_BYTES:
        raise ValidationError(FILE_TOO_LARGE)
    return IncomingFile(
        filename=upload.filename or default_name,
        content_type=upload.content_type or "application/octet-stream",
        data=data,
    )


async def read_uploads(uploads: Sequence[UploadFile]) -> list[IncomingFile]:
    if len(uploads) > MAX_UPLOAD_FILES:
        raise ValidationError(f"Cannot upload more than {MAX_UPLOAD_FILES} files at once")
    return [await read_upload(upload) for upload in uploads]
