from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

from app.core.config import Settings
from app.core.exceptions import UpstreamError

logger = logging.getLogger(__name__)

_EXTENSIONS = {"image/svg+xml": "svg", "image/jpeg": "jpg"}


@dataclass(frozen=True)
class ObjectStoreConfig:
    root: Path
    public_base_url: str
    folder_prefix: str

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStoreConfig":
        base_url = f"{settings.public_base_url.rstrip('/')}{settings.media_url_prefix}"
        return cls(
            root=settings.storage_root,
            public_base_url=base_url,
            folder_prefix=settings.object_folder_prefix,
        )


@dataclass(frozen=True)
class StoredObject:
    url: str
    public_id: str
    format: str


def extension_for(mime_type: str) -> str:
    if mime_type in _EXTENSIONS:
        return _EXTENSIONS[mime_type]
    _, _, subtype = mime_type.partition("/")
    return subtype or "bin"


class ObjectStore:
    """Filesystem-backed binary object store.

    Objects live under ``config.root`` and are addressed by an opaque public id
    of the form ``<folder>/<hex>.<ext>``.
    """

    def __init__(self, config: ObjectStoreConfig) -> None:
        self._config = config

    @property
    def config(self) -> ObjectStoreConfig:
        return self._config

    def ensure_base_dirs(self) -> None:
        self._config.root.mkdir(parents=True, exist_ok=True)

    def folder_for(self, user_id: uuid.UUID, *parts: str) -> str:
        return "/".join((self._config.folder_prefix, str(user_id), *parts))

    def _resolve(self, public_id: str) -> Path:
        root = self._config.root.resolve()
        path = (root / public_id).resolve()
        if not path.is_relative_to(root):
            raise UpstreamError("Invalid object identifier")
        return path

    async def put(self, data: bytes, folder: str, mime_type: str) -> StoredObject:
        ext = extension_for(mime_type)
        public_id = f"{folder.strip('/')}/{uuid.uuid4().hex}.{ext}"
        path = self._resolve(public_id)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as handle:
                handle.write(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            logger.error("Object store write failed for %s: %s", public_id, exc)
            raise UpstreamError("Failed to store file") from exc

        return StoredObject(
            url=f"{self._config.public_base_url}/{public_id}",
            public_id=public_id,
            format=ext,
        )

    async def delete(self, public_id: str) -> None:
        path = self._resolve(public_id)

        def _unlink() -> None:
            path.unlink(missing_ok=True)

        try:
            await asyncio.to_thread(_unlink)
        except OSError as exc:
            raise UpstreamError("Failed to delete stored object") from exc


async def delete_objects_best_effort(store: ObjectStore, public_ids: list[str]) -> int:
    """Delete objects in parallel, logging and swallowing individual failures.

    Returns the number of failed deletes.
    """
    if not public_ids:
        return 0
    results = await asyncio.gather(*(store.delete(pid) for pid in public_ids), return_exceptions=True)
    failures = 0
    for public_id, result in zip(public_ids, results):
        if isinstance(result, Exception):
            failures += 1
            logger.warning("Could not delete stored object %s: %s", public_id, result)
    return failures
