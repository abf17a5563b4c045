"""Database connection and session management.

Transaction Guarantees:
- Each request gets its own session
- On any exception, the pending transaction is rolled back
- Services may commit mid-request once an external side effect happened
  (a posted Slack message must never be forgotten by a later rollback)
- Sessions are properly closed after each request
"""

import logging
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

db_url_async = settings.database_url_async
logger.info(f"Async Database URL (masked): {db_url_async[:40]}...")

engine_kwargs: dict[str, Any] = {"echo": settings.database_echo}
if db_url_async.startswith("postgresql"):
    engine_kwargs.update(
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,  # Check connection health before use
        pool_recycle=300,
        pool_timeout=30,
    )

engine = create_async_engine(db_url_async, **engine_kwargs)

# Session factory - creates new sessions for each request
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,  # Don't expire objects after commit
    autoflush=False,         # Manual flush for better control
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a transactional database session.

    Transaction Behavior:
    - On successful completion: COMMIT
    - On any exception: ROLLBACK
    - Session is always closed properly
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
            logger.debug("Transaction committed successfully")
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Database error, transaction rolled back: {e}")
            raise
        except Exception as e:
            await session.rollback()
            logger.error(f"Error during request, transaction rolled back: {e}")
            raise
        finally:
            await session.close()


def insert_ignore(session: AsyncSession, model: Any, index_elements: list[str]):
    """
    Build an ``INSERT ... ON CONFLICT DO NOTHING`` for the session's dialect.

    Concurrent writers race on the unique constraint; the loser gets no row
    back from RETURNING and re-reads the winner's row.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        from sqlalchemy.dialects.postgresql import insert

    return insert(model).on_conflict_do_nothing(index_elements=index_elements)


async def init_db() -> None:
    """Initialize database (create tables if needed)."""
    from ..models import Base

    async with engine.begin() as conn:
        # In production, use migrations instead
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
