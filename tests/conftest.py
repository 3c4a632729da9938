"""
Global pytest fixtures for the provisioner test suite.

Provides:
- A file-backed SQLite database per test (aiosqlite, foreign keys enforced)
- The real FastAPI app with its DB dependency pointed at the test database
- SCIM bearer-token headers
"""
import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio

# Set test environment BEFORE any app imports
os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DB_SSL_MODE"] = "disable"
os.environ["SCIM_BEARER_TOKEN"] = "test-scim-token-0123456789"
os.environ.setdefault("ENVIRONMENT", "development")

TEST_SCIM_TOKEN = os.environ["SCIM_BEARER_TOKEN"]


# ============================================================================
# Async Database Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def async_engine(tmp_path):
    """Create async SQLite engine for testing using a temporary file."""
    from sqlalchemy.ext.asyncio import create_async_engine
    from provisioner.shared.db.session import register_engine_event_listeners

    db_file = tmp_path / "provisioner_test.sqlite"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_file}", echo=False)
    register_engine_event_listeners(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(async_engine):
    """Create database tables and return a session factory bound to them."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
    from provisioner.shared.db.base import Base

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator:
    """Provide an async session with proper cleanup."""
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


@pytest_asyncio.fixture
async def db(db_session):
    """Alias for db_session to match integration tests."""
    return db_session


@pytest.fixture
def settings():
    from provisioner.shared.core.config import get_settings

    return get_settings()


# ============================================================================
# FastAPI Test Client Fixtures
# ============================================================================

@pytest.fixture
def app():
    """Use the real provisioner app for integration tests."""
    from provisioner.main import app as provisioner_app

    return provisioner_app


@pytest_asyncio.fixture
async def async_client(app, session_maker) -> AsyncGenerator:
    """Async test client. Each request gets its own session on the test DB."""
    from httpx import ASGITransport, AsyncClient
    from provisioner.shared.db.session import get_db

    async def _test_db():
        async with session_maker() as session:
            yield session

    old_override = app.dependency_overrides.get(get_db)
    app.dependency_overrides[get_db] = _test_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    if old_override:
        app.dependency_overrides[get_db] = old_override
    else:
        app.dependency_overrides.pop(get_db, None)


@pytest_asyncio.fixture
async def ac(async_client):
    """Alias for async_client to match integration tests."""
    return async_client


@pytest.fixture
def override_settings(app, settings):
    """Swap request-scoped settings for one test, e.g. strict filter mode."""
    from provisioner.shared.core.config import get_settings

    def _apply(**updates):
        patched = settings.model_copy(update=updates)
        app.dependency_overrides[get_settings] = lambda: patched
        return patched

    yield _apply
    app.dependency_overrides.pop(get_settings, None)


@pytest.fixture
def scim_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {TEST_SCIM_TOKEN}"}


@pytest.fixture(autouse=True)
def set_testing_env():
    """Ensure TESTING is set for all tests."""
    os.environ["TESTING"] = "true"
    yield
