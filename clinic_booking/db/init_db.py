"""Schema bootstrap for local development and demo data scripts.

Deployed databases are migrated with Alembic instead.
"""

import logging

import clinic_booking.models  # noqa: F401  registers every table on the metadata
from clinic_booking.db.base import Base
from clinic_booking.db.session import engine

logger = logging.getLogger(__name__)


async def create_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Ensured tables: {', '.join(sorted(Base.metadata.tables))}")


async def init_db() -> None:
    await create_tables()
