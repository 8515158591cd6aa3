from __future__ import annotations

from datetime import datetime
from typing import Any
from typing import Iterable
from typing import Optional
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy import select
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from files_nest.models.base import utcnow
from files_nest.models.enums import UploadStatus
from files_nest.models.upload import UploadDB
from files_nest.orm.base_repository import BaseRepository


class UploadRepository(BaseRepository[UploadDB]):
    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, UploadDB)

    async def create_placeholders(self, file_id: UUID, count: int) -> list[UploadDB]:
        """Create one pending upload per chunk number 1..count."""
        uploads = [UploadDB(file_id=file_id, chunk_number=n, status=UploadStatus.PENDING) for n in range(1, count + 1)]
        return await self.create_many(uploads)

    async def get_by_file_and_number(self, file_id: UUID, chunk_number: int) -> Optional[UploadDB]:
        stmt = select(UploadDB).where(UploadDB.file_id == file_id, UploadDB.chunk_number == chunk_number)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_file(self, file_id: UUID) -> list[UploadDB]:
        """List all uploads of a file, ordered by chunk number."""
        stmt = select(UploadDB).where(UploadDB.file_id == file_id).order_by(UploadDB.chunk_number.asc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def transition(
        self,
        upload_id: UUID,
        *,
        from_statuses: Iterable[UploadStatus],
        to_status: UploadStatus,
        expected_token: Optional[str] = None,
        **values: Any,
    ) -> bool:
        """Compare-and-swap the status of one upload.

        The row is only updated when its current status is one of ``from_statuses``
        and, if ``expected_token`` is given, that attempt still owns the row.
        Returns True if the row was updated.
        """
        conditions = [UploadDB.upload_id == upload_id, UploadDB.status.in_(list(from_statuses))]
        if expected_token is not None:
            conditions.append(UploadDB.attempt_token == expected_token)
        stmt = (
            update(UploadDB)
            .where(*conditions)
            .values(status=to_status, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def delete_by_file(self, file_id: UUID) -> int:
        stmt = delete(UploadDB).where(UploadDB.file_id == file_id).execution_options(synchronize_session=False)
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def reclaim_stale(self, upload_id: UUID, stale_before: datetime, attempt_token: str) -> bool:
        """Hand an in_progress upload whose writer went quiet before ``stale_before`` to a new attempt."""
        stmt = (
            update(UploadDB)
            .where(
                UploadDB.upload_id == upload_id,
                UploadDB.status == UploadStatus.IN_PROGRESS,
                UploadDB.updated_at < stale_before,
            )
            .values(updated_at=utcnow(), attempt_token=attempt_token)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def list_by_files(self, file_ids: Iterable[UUID]) -> dict[UUID, list[UploadDB]]:
        """Uploads of several files at once, grouped by file and ordered by chunk number."""
        ids = list(file_ids)
        grouped: dict[UUID, list[UploadDB]] = {file_id: [] for file_id in ids}
        if not ids:
            return grouped
        stmt = (
            select(UploadDB)
            .where(UploadDB.file_id.in_(ids))
            .order_by(UploadDB.file_id, UploadDB.chunk_number.asc())
        )
        result = await self.session.execute(stmt)
        for upload in result.scalars().all():
            grouped[upload.file_id].append(upload)
        return grouped
