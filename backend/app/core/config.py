from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

STORAGE_LIMIT_BYTES = 5 * 1024 * 1024
MAX_UPLOAD_FILE_BYTES = 5 * 1024 * 1024
MAX_UPLOAD_FILES = 10
MAX_BULK_DELETE = 50
ALLOWED_IMAGE_TYPES = frozenset(
    {"image/jpeg", "image/png", "image/gif", "image/webp", "image/svg+xml"}
)


class Settings(BaseSettings):
    project_name: str = "FileVault"
    api_prefix: str = "/api"
    environment: str = Field(default="development", description="development or production")
    log_level: str = Field(default="INFO")

    database_url: str = Field(
        default="postgresql+asyncpg://filevault:filevault@db:5432/filevault",
        description="SQLAlchemy async database URL",
    )
    redis_url: str = Field(default="redis://redis:6379/0", description="Redis connection URL")

    storage_root: Path = Field(
        default=Path(__file__).resolve().parents[3] / "Storage",
        description="Base directory for stored objects",
    )
    media_url_prefix: str = Field(default="/media")
    public_base_url: str = Field(default="", description="Absolute origin prepended to object URLs")
    object_folder_prefix: str = Field(default="filevault")

    access_token_secret: str = Field(default="change-me-access", min_length=10)
    refresh_token_secret: str = Field(default="change-me-refresh", min_length=10)
    jwt_algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=15, ge=1)
    refresh_token_expire_days: int = Field(default=7, ge=1)
    password_hash_rounds: int = Field(default=12, ge=4, le=31)

    celery_broker_url: str | None = None
    celery_result_backend: str | None = None
    session_purge_interval_minutes: int = Field(default=60, ge=1)

    client_url: str | None = None
    cors_allowed_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://localhost:4173"]
    )

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    @field_validator("storage_root", mode="before")
    @classmethod
    def _build_storage_root(cls, value: Path | str) -> Path:
        return Path(value)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cookie_secure(self) -> bool:
        return self.is_production

    @property
    def cookie_samesite(self) -> str:
        # cross-site frontends need "none", which browsers only accept with Secure
        return "none" if self.is_production else "lax"

    @property
    def allowed_origins(self) -> list[str]:
        origins = list(self.cors_allowed_origins)
        if self.client_url and self.client_url not in origins:
            origins.append(self.client_url)
        return origins

    @property
    def celery_broker(self) -> str:
        return self.celery_broker_url or self.redis_url

    @property
    def celery_backend(self) -> str:
        return self.celery_result_backend or self.redis_url


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
