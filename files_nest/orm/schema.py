import logging

from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import SQLModel

import files_nest.models  # noqa: F401


logger = logging.getLogger(__name__)


async def create_schema(engine: AsyncEngine) -> None:
    """Create the files and uploads tables if they do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info(f"Schema ready: tables={sorted(SQLModel.metadata.tables)}")
