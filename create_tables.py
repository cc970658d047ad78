#!/usr/bin/env python3
"""Create the Temporary Social tables in the configured database"""

import asyncio
import logging
import sys

from sqlalchemy import text

from tempsocial.config import settings
from tempsocial.db.database import Base, engine

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def create_tables() -> bool:
    try:
        logger.info(f"Database URL (masked): {str(settings.database_url)[:30]}...")

        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection successful")

        # Register models with Base.metadata
        from tempsocial.db import models  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")
        return True
    except Exception as e:
        logger.error(f"Failed to create tables: {e}")
        return False
    finally:
        await engine.dispose()


if __name__ == "__main__":
    success = asyncio.run(create_tables())
    sys.exit(0 if success else 1)
