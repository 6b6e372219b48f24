"""Pytest configuration and fixtures for async testing."""
import os

# Settings are read at import time; configure before importing the application
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6390/0")
os.environ.setdefault("ARQ_REDIS_URL", "redis://localhost:6390/1")
os.environ.setdefault("CACHE_ENABLED", "false")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker  # noqa: E402

import entitlements.models  # noqa: E402,F401
from entitlements.auth.jwt import jwt_auth  # noqa: E402
from entitlements.auth.rbac import Role  # noqa: E402
from entitlements.database import Base, create_engine_for  # noqa: E402
from entitlements.main import app  # noqa: E402
from entitlements.services.plan_catalog import PlanCatalog  # noqa: E402

# Optional external database (e.g. PostgreSQL); default is a per-test SQLite file
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Create a fresh database for each test.

    Yields:
        AsyncEngine: Engine with all tables created
    """
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'entitlements_test.db'}"
    engine = create_engine_for(url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    if TEST_DATABASE_URL:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """
    Database session for single-session tests.

    SQLite transactions take the write lock up front, so tests that also use
    other sessions (reconciler, concurrent consumers) must commit this one
    before handing over.

    Yields:
        AsyncSession: Database session for testing
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def seeded_catalog(session_factory: async_sessionmaker[AsyncSession]) -> dict[str, int]:
    """
    Seed the default catalog in its own committed transaction.

    Returns:
        dict: Seeded feature, plan and grant counts
    """
    async with session_factory() as session:
        counts = await PlanCatalog(session).seed_default_catalog()
        await session.commit()
    return counts


def auth_headers(role: Role, subject: str = "test-caller") -> dict[str, str]:
    """Bearer header for a caller with the given role."""
    token = jwt_auth.create_access_token(subject=subject, role=role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def service_headers() -> dict[str, str]:
    """Headers of a backend service caller."""
    return auth_headers(Role.SERVICE, subject="jobs-service")


@pytest.fixture
def admin_headers() -> dict[str, str]:
    """Headers of a billing administrator."""
    return auth_headers(Role.BILLING_ADMIN, subject="billing-admin")


@pytest.fixture
def support_headers() -> dict[str, str]:
    """Headers of a support representative."""
    return auth_headers(Role.SUPPORT_REP, subject="support-rep")


@pytest_asyncio.fixture(scope="function")
async def async_client(
    session_factory: async_sessionmaker[AsyncSession],
    seeded_catalog: dict[str, int],
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client against the app, wired to the test database.

    Authentication is real: requests need one of the header fixtures.

    Yields:
        AsyncClient: Async HTTP client for API testing
    """
    from entitlements.api.deps import get_session_factory

    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
