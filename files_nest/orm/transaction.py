import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession


logger = logging.getLogger(__name__)


@asynccontextmanager
async def transactional(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Commit when the block succeeds, roll back otherwise.

    Cancellation, e.g. a client disconnecting mid-upload, rolls back too.
    """
    try:
        yield session
        await session.commit()
    except BaseException as e:
        logger.debug(f"Rolling back transaction after {type(e).__name__}")
        await session.rollback()
        raise
