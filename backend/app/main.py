from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from app.api.errors import register_exception_handlers
from app.api.router import api_router
from app.core.config import Settings, settings
from app.db.base import Base
from app.db.session import engine
from app.services.storage import ObjectStore, ObjectStoreConfig

logger = logging.getLogger(__name__)


def create_application(app_settings: Settings = settings) -> FastAPI:
    logging.basicConfig(level=app_settings.log_level.upper())
    app = FastAPI(title=app_settings.project_name)

    object_store = ObjectStore(ObjectStoreConfig.from_settings(app_settings))
    app.state.object_store = object_store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    register_exception_handlers(app)

    @app.on_event("startup")
    async def startup_event() -> None:  # noqa: D401
        object_store.ensure_base_dirs()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Object storage ready under %s", object_store.config.root)

    app.include_router(api_router, prefix=app_settings.api_prefix)
    app.mount(
        app_settings.media_url_prefix,
        StaticFiles(directory=app_settings.storage_root, check_dir=False),
        name="media",
    )

    @app.get(f"{app_settings.api_prefix}/health")
    async def healthcheck() -> dict[str, str]:
        return {"status": "OK", "env": app_settings.environment}

    return app


app = create_application()
