"""Async engine, session factory and schema bootstrap for the session store"""

import asyncio
import logging
from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from tempsocial.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(
    str(settings.database_url),
    echo=settings.app_debug and settings.log_level == "DEBUG",
    pool_pre_ping=True,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
)

# Relay events and scheduler sweeps open their own sessions from this factory
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def init_db() -> None:
    """Wait for the store, then create missing tables.

    Raises the last connection error once `db_connect_attempts` is used up;
    the app must not serve sessions without a store behind it.
    """
    from tempsocial.db import models  # noqa: F401

    attempts = max(1, settings.db_connect_attempts)
    for attempt in range(1, attempts + 1):
        try:
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Session store ready")
            return
        except (OperationalError, OSError) as e:
            if attempt == attempts:
                logger.error(f"Session store unreachable after {attempts} attempts: {e}")
                raise
            delay = settings.db_connect_backoff_seconds * attempt
            logger.warning(
                f"Session store not reachable (attempt {attempt}/{attempts}), retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)


async def close_db() -> None:
    await engine.dispose()
    logger.info("Session store connections closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session, committed when the request succeeds"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
