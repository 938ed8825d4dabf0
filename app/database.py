"""
Async SQLAlchemy engine, session factory and the ``get_db`` dependency.

Production runs on PostgreSQL through asyncpg; the test-suite points the same
code at SQLite through aiosqlite. Both engines are built by ``build_engine``.
"""
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from typing import AsyncGenerator, Optional
import logging

from app.config import settings

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str) -> AsyncEngine:
    """
    Create an async engine for *database_url*.

    SQLite only enforces the RESTRICT/CASCADE rules of the schema when
    foreign keys are switched on for every new connection.
    """
    engine = create_async_engine(
        database_url,
        echo=False,  # Set to True for SQL query logging
        pool_pre_ping=True,
        poolclass=NullPool,
    )
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return engine


engine = build_engine(settings.DATABASE_URL)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Base class for ORM models
Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session. Repository calls commit their own work; anything
    left pending when the request ends is committed here, and rolled back if
    the request failed.

    Example:
        @router.get("/{type_id}")
        async def get_type(type_id: str, db: AsyncSession = Depends(get_db)):
            repo = SqlAlchemyAssessmentRepository(db)
            return await repo.get_assessment_type_by_id(type_id)
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session error: {e}")
            raise


async def init_db(target: Optional[AsyncEngine] = None) -> None:
    """Create any missing tables. Alembic owns schema changes after the first run."""
    target = target or engine
    try:
        async with target.begin() as conn:
            # Registers the ORM classes on Base.metadata
            from app.models import database_models  # noqa: F401

            await conn.run_sync(Base.metadata.create_all)
            logger.info("Assessment tables created/verified")

    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise


async def close_db() -> None:
    """Dispose of the engine's connections."""
    try:
        await engine.dispose()
        logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Error closing database: {e}")
        raise
