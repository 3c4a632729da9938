import time
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from fastapi import Request
from sqlalchemy import event, text
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from provisioner.shared.core.config import Settings

logger = structlog.get_logger()

# Ensure ORM mappings are registered for scripts that import the DB layer
# without importing `provisioner/main.py`.
import provisioner.models  # noqa: F401, E402

SLOW_QUERY_THRESHOLD_SECONDS = 0.2


@dataclass(slots=True)
class DatabaseRuntime:
    engine: AsyncEngine
    session_maker: async_sessionmaker[AsyncSession]
    effective_url: str

    async def dispose(self) -> None:
        await self.engine.dispose()


def normalize_db_url(raw_url: str) -> str:
    url = (raw_url or "").strip()
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


def _resolve_effective_url(settings: Settings) -> str:
    db_url = normalize_db_url(settings.DATABASE_URL)
    if not db_url:
        if not settings.TESTING and settings.ENVIRONMENT not in {"local", "development"}:
            raise ValueError("DATABASE_URL is not set. The application cannot start.")
        logger.warning("database_url_missing_using_in_memory_sqlite")
        return "sqlite+aiosqlite:///:memory:"
    return db_url


def _build_connect_args(settings: Settings, effective_url: str) -> dict[str, Any]:
    connect_args: dict[str, Any] = {}
    if "postgresql" not in effective_url:
        return connect_args

    ssl_mode = settings.DB_SSL_MODE.lower()
    if ssl_mode == "disable":
        logger.warning(
            "database_ssl_disabled",
            msg="SSL disabled - do not use in production!",
        )
        connect_args["ssl"] = False
    else:
        # Encrypted transport without certificate-chain validation.
        connect_args["ssl"] = "require"
    return connect_args


def _build_pool_config(settings: Settings, effective_url: str) -> dict[str, Any]:
    pool_config: dict[str, Any] = {"echo": settings.DB_ECHO}
    if "sqlite" in effective_url:
        if ":memory:" in effective_url:
            pool_config["poolclass"] = StaticPool
        return pool_config

    pool_config.update(
        {
            "pool_pre_ping": True,
            "pool_recycle": settings.DB_POOL_RECYCLE,
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_timeout": settings.DB_POOL_TIMEOUT,
        }
    )
    return pool_config


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _connection_record: Any) -> None:
    # SQLite ignores FK constraints (and ON DELETE CASCADE) unless enabled per connection.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def before_cursor_execute(
    conn: Connection,
    _cursor: Any,
    _statement: str,
    _parameters: Any,
    _context: Any,
    _executemany: bool,
) -> None:
    """Record query start time."""
    conn.info.setdefault("query_start_time", []).append(time.perf_counter())


def after_cursor_execute(
    conn: Connection,
    _cursor: Any,
    statement: str,
    _parameters: Any,
    _context: Any,
    _executemany: bool,
) -> None:
    """Log slow queries."""
    total = time.perf_counter() - conn.info["query_start_time"].pop(-1)
    if total > SLOW_QUERY_THRESHOLD_SECONDS:
        logger.warning(
            "slow_query_detected",
            duration_seconds=round(total, 3),
            threshold_seconds=SLOW_QUERY_THRESHOLD_SECONDS,
            statement=statement[:200] + "..." if len(statement) > 200 else statement,
        )


def register_engine_event_listeners(engine: AsyncEngine) -> None:
    sync_engine = engine.sync_engine
    if sync_engine.dialect.name == "sqlite":
        event.listen(sync_engine, "connect", _enable_sqlite_foreign_keys)
    event.listen(sync_engine, "before_cursor_execute", before_cursor_execute)
    event.listen(sync_engine, "after_cursor_execute", after_cursor_execute)


def build_db_runtime(settings: Settings) -> DatabaseRuntime:
    """Create the engine and session factory for one process lifetime."""
    effective_url = _resolve_effective_url(settings)
    engine = create_async_engine(
        effective_url,
        **_build_pool_config(settings, effective_url),
        connect_args=_build_connect_args(settings, effective_url),
    )
    register_engine_event_listeners(engine)
    session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    logger.info("database_runtime_ready", backend=engine.dialect.name)
    return DatabaseRuntime(
        engine=engine,
        session_maker=session_maker,
        effective_url=effective_url,
    )


def session_uses_postgresql(session: AsyncSession) -> bool:
    bind = session.bind
    dialect_name: Optional[str] = getattr(getattr(bind, "dialect", None), "name", None)
    return dialect_name == "postgresql"


def get_db_runtime(request: Request) -> DatabaseRuntime:
    runtime = getattr(request.app.state, "db", None)
    if runtime is None:
        raise RuntimeError("Database runtime not initialised")
    return runtime


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, closed on every exit path."""
    runtime = get_db_runtime(request)
    async with runtime.session_maker() as session:
        yield session


async def health_check(runtime: DatabaseRuntime) -> Dict[str, Any]:
    """Database health check for monitoring."""
    start_time = time.perf_counter()
    try:
        async with runtime.session_maker() as session:
            await session.execute(text("SELECT 1"))
        latency = (time.perf_counter() - start_time) * 1000
        return {
            "status": "up",
            "latency_ms": round(latency, 2),
            "engine": runtime.engine.dialect.name,
        }
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))
        return {
            "status": "down",
            "latency_ms": round((time.perf_counter() - start_time) * 1000, 2),
        }
