"""Database engine and session management.

Every unit of queue work (an admission, a dispatch pass, a webhook delivery)
runs inside one session whose transaction is committed on success and rolled
back on any error. The ledger and lifecycle services only flush; the scope
below owns the commit.
"""

import asyncio
from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine, async_sessionmaker
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel, text
from mockup_queue.core.config import get_settings
from mockup_queue.core.logging import get_logger

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None
_engine_loop_id: Optional[int] = None


def _running_loop_id() -> Optional[int]:
    try:
        return id(asyncio.get_running_loop())
    except RuntimeError:
        return None


def _engine_options(database_url: str) -> dict:
    settings = get_settings()
    options = {
        "echo": settings.debug and settings.is_development,
        "pool_pre_ping": True,
    }
    # SQLite has no queue pool to size
    if not database_url.startswith("sqlite"):
        options.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
        )
    return options


def get_engine() -> AsyncEngine:
    """Return the engine for the running event loop, creating it on first use.

    asyncpg connections cannot cross event loops, so a loop change drops the
    cached engine without awaiting its disposal.
    """
    global _engine, _session_factory, _engine_loop_id

    loop_id = _running_loop_id()
    if _engine is not None and _engine_loop_id != loop_id:
        logger.info("Event loop changed, discarding cached engine")
        _engine = None
        _session_factory = None

    if _engine is None:
        database_url = get_settings().database_url
        _engine = create_async_engine(database_url, **_engine_options(database_url))
        _engine_loop_id = loop_id
        logger.info("Database engine created", host=database_url.split("@")[-1])
    return _engine


def get_session_factory() -> async_sessionmaker:
    global _session_factory
    engine = get_engine()
    if _session_factory is None:
        # Loaded jobs and accounts stay readable after commit
        _session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def _transaction_scope() -> AsyncGenerator[AsyncSession, None]:
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.debug("Session rolled back", error_type=type(e).__name__)
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session bound to the request transaction."""
    async with _transaction_scope() as session:
        yield session


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Session scope for Celery tasks and other code outside a request."""
    async with _transaction_scope() as session:
        yield session


async def _dispose(reason: str) -> None:
    global _engine, _session_factory, _engine_loop_id

    engine = _engine
    _engine = None
    _session_factory = None
    _engine_loop_id = None
    if engine is None:
        return
    try:
        await engine.dispose()
        logger.info("Database engine disposed", reason=reason)
    except (SQLAlchemyError, OSError, RuntimeError) as e:
        # The pool may belong to a loop that is already closed
        logger.warning("Engine disposal failed", reason=reason, error=str(e))


async def reset_db_connections() -> None:
    """Drop pooled connections before a Celery task starts its own loop."""
    await _dispose("task event loop")


async def close_db() -> None:
    await _dispose("shutdown")


async def init_db() -> None:
    """Prepare the schema at startup.

    Outside production the tables are created directly from the models.
    Production schemas are managed by alembic, so only connectivity is checked.
    """
    settings = get_settings()
    engine = get_engine()
    if settings.is_production:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database reachable, schema managed by migrations")
        return

    import mockup_queue.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables created", tables=sorted(SQLModel.metadata.tables))


async def check_db_connection() -> bool:
    """Return True when a trivial query succeeds."""
    try:
        async with get_db_context() as session:
            await session.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.error("Database connection check failed", error=str(e))
        return False
