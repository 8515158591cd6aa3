from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy import select
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from files_nest.models.base import utcnow
from files_nest.models.enums import FileStatus
from files_nest.models.file import FileDB
from files_nest.orm.base_repository import BaseRepository


class FileRepository(BaseRepository[FileDB]):
    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, FileDB)

    async def get_by_id(self, file_id: UUID, *, for_update: bool = False) -> Optional[FileDB]:
        return await self.get(file_id, for_update=for_update)

    async def get_by_owner_and_name(self, owner_id: str, name: str) -> Optional[FileDB]:
        stmt = select(FileDB).where(FileDB.owner_id == owner_id, FileDB.name == name)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_owner(self, owner_id: str, limit: int = 15, offset: int = 0) -> list[FileDB]:
        stmt = (
            select(FileDB)
            .where(FileDB.owner_id == owner_id)
            .order_by(FileDB.created_at.desc(), FileDB.name.asc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_owner(self, owner_id: str) -> int:
        stmt = select(func.count()).select_from(FileDB).where(FileDB.owner_id == owner_id)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def mark_completed(self, file_id: UUID, storage_key: str, size_bytes: int) -> bool:
        """Publish the assembled blob. Returns False if the file was already completed or is gone."""
        stmt = (
            update(FileDB)
            .where(FileDB.file_id == file_id, FileDB.status != FileStatus.COMPLETED)
            .values(
                status=FileStatus.COMPLETED,
                storage_key=storage_key,
                size_bytes=size_bytes,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def delete(self, file_id: UUID) -> Optional[FileDB]:
        file = await self.get_by_id(file_id)
        if file is None:
            return None
        await self.remove(file)
        return file
