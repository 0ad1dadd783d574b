from __future__ import annotations

import asyncio
import logging

from celery import Celery
from sqlalchemy import select

from app.core.config import settings
from app.db.session import async_session_factory
from app.models.user import User
from app.services import quota
from app.services.sessions import purge_expired_sessions

logger = logging.getLogger(__name__)

celery_app = Celery(
    "filevault",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
)
celery_app.conf.update(task_serializer="json", result_serializer="json", accept_content=["json"])
celery_app.conf.beat_schedule = {
    "purge-expired-sessions": {
        "task": "purge_expired_sessions",
        "schedule": settings.session_purge_interval_minutes * 60,
    },
}


async def _purge_expired_sessions() -> int:
    async with async_session_factory() as db:
        return await purge_expired_sessions(db)


async def _reconcile_all_storage() -> int:
    async with async_session_factory() as db:
        result = await db.execute(select(User.id))
        user_ids = list(result.scalars())
        for user_id in user_ids:
            await quota.reconcile(db, user_id)
    logger.info("Reconciled storage for %d user(s)", len(user_ids))
    return len(user_ids)


@celery_app.task(name="purge_expired_sessions")
def purge_expired_sessions_task() -> int:
    return asyncio.run(_purge_expired_sessions())


@celery_app.task(name="reconcile_all_storage")
def reconcile_all_storage_task() -> int:
    return asyncio.run(_reconcile_all_storage())
