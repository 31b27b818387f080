"""Shared fixtures: in-memory database, temp file store, and an API client."""

import os

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SLACK_WEBHOOK_URL", "")

from collections.abc import AsyncGenerator  # noqa: E402
from pathlib import Path  # noqa: E402
from uuid import UUID, uuid4  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from folio.db.models import Base, ProjectDB  # noqa: E402
from folio.main import app  # noqa: E402
from folio.services import projects  # noqa: E402
from folio.services.aggregator import EditingSessionRegistry, get_editing_sessions  # noqa: E402
from folio.services.file_store import LocalFileStore, get_file_store  # noqa: E402

TEST_DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
_USE_SQLITE = TEST_DATABASE_URL.startswith("sqlite")


def as_user(user_id: UUID) -> dict[str, str]:
    return {"X-User-ID": str(user_id)}


@pytest.fixture
async def test_engine():
    if _USE_SQLITE:
        engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    else:
        engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session
        await session.rollback()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def file_store(tmp_path: Path) -> LocalFileStore:
    return LocalFileStore(tmp_path / "files")


@pytest.fixture
def registry() -> EditingSessionRegistry:
    return EditingSessionRegistry(ttl_seconds=3600)


@pytest.fixture
async def client(
    session: AsyncSession, file_store: LocalFileStore, registry: EditingSessionRegistry
) -> AsyncGenerator[AsyncClient, None]:
    from folio.db import database

    async def get_test_session() -> AsyncGenerator[AsyncSession, None]:
        yield session

    app.dependency_overrides[database.get_session] = get_test_session
    app.dependency_overrides[get_file_store] = lambda: file_store
    app.dependency_overrides[get_editing_sessions] = lambda: registry
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def owner_id() -> UUID:
    return uuid4()


@pytest.fixture
def collaborator_id() -> UUID:
    return uuid4()


@pytest.fixture
def outsider_id() -> UUID:
    return uuid4()


@pytest.fixture
async def project(session: AsyncSession, owner_id: UUID, collaborator_id: UUID) -> ProjectDB:
    """A version-1 project with one collaborator."""
    project = await projects.create_project(
        session,
        owner_id,
        {
            "title": "Campus Energy Dashboard",
            "description": "Live view of building energy use",
            "category": "Data Science",
            "tech_stack": ["Python", "React"],
            "github_url": "https://github.com/example/energy",
        },
    )
    await projects.add_member(session, project, collaborator_id)
    return project
