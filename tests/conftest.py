"""
Test configuration and fixtures

In-memory SQLite database, an HTTP client bound to the app, and user
factories. Settings are read at import time, so the environment is
prepared before any project module is imported.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DELIVERY_ENQUEUE_ON_CREATE"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key-for-notification-tests"
os.environ.pop("NOTIFICATION_WEBHOOK_URL", None)
os.environ.pop("SMTP_SERVER", None)

from typing import AsyncGenerator, Dict

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from learnhub_notify.core.security import create_access_token
from learnhub_notify.db.database import Base, get_db
from learnhub_notify.main import app
from learnhub_notify.models import User, UserRole
from learnhub_notify.tasks import notification_tasks


# ==================== Database ====================

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# One shared connection, so every session sees the same in-memory database
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


# ==================== Fixtures ====================

@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Fresh schema per test. The session is also injected into the app
    and used by the worker tasks.
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        async def _get_test_db():
            yield session

        app.dependency_overrides[get_db] = _get_test_db

        yield session
        await session.rollback()

        app.dependency_overrides.clear()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def worker_sessions(monkeypatch):
    """Point the worker tasks at the test database."""
    monkeypatch.setattr(notification_tasks, "AsyncSessionLocal", TestSessionLocal)
    return TestSessionLocal


@pytest_asyncio.fixture
async def client(db_session) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ==================== Users ====================

async def create_user(
    db: AsyncSession,
    email: str,
    role: UserRole = UserRole.STUDENT,
    **kwargs,
) -> User:
    user = User(
        email=email,
        full_name=kwargs.pop("full_name", email.split("@")[0].title()),
        role=role,
        is_active=kwargs.pop("is_active", True),
        is_deleted=kwargs.pop("is_deleted", False),
        **kwargs,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def student(db_session) -> User:
    return await create_user(db_session, "student@learnhub.test")


@pytest_asyncio.fixture
async def other_student(db_session) -> User:
    return await create_user(db_session, "other@learnhub.test")


@pytest_asyncio.fixture
async def instructor(db_session) -> User:
    return await create_user(db_session, "instructor@learnhub.test", UserRole.INSTRUCTOR)


@pytest_asyncio.fixture
async def admin(db_session) -> User:
    return await create_user(db_session, "admin@learnhub.test", UserRole.ADMIN)


def auth_headers(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}
