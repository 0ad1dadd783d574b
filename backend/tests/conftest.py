import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "4")
os.environ.setdefault("ACCESS_TOKEN_SECRET", "test-access-secret-value")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret-value")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db.session import get_db_session
from app.main import create_application
from app.models.session import RefreshSession
from app.services.storage import ObjectStore, ObjectStoreConfig
from app.services.users import register_user

PNG_HEADER = b"\x89PNG\r\n\x1a\n"


def png_bytes(size: int) -> bytes:
    return (PNG_HEADER + b"\x00" * size)[:size]


def cookie_header(access_token: str | None = None, refresh_token: str | None = None) -> dict[str, str]:
    parts = []
    if access_token:
        parts.append(f"accessToken={access_token}")
    if refresh_token:
        parts.append(f"refreshToken={refresh_token}")
    return {"Cookie": "; ".join(parts)}


async def count_sessions(db: AsyncSession, user_id=None) -> int:
    stmt = select(func.count()).select_from(RefreshSession)
    if user_id is not None:
        stmt = stmt.where(RefreshSession.user_id == user_id)
    return int(await db.scalar(stmt))


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def object_store(tmp_path):
    config = ObjectStoreConfig(
        root=tmp_path / "media",
        public_base_url="http://testserver/media",
        folder_prefix="filevault",
    )
    store = ObjectStore(config)
    store.ensure_base_dirs()
    return store


@pytest_asyncio.fixture
async def user(db):
    return await register_user(db, "alice", "Alice@Example.com", "secret123")


@pytest_asyncio.fixture
async def client(session_factory, object_store):
    app = create_application()

    async def _get_test_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = _get_test_session
    app.state.object_store = object_store
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as test_client:
        yield test_client
