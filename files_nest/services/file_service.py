from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import AsyncIterator
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from files_nest.errors import AccessDenied
from files_nest.errors import DuplicateName
from files_nest.errors import FileNotFound
from files_nest.errors import InvalidRequest
from files_nest.errors import InvalidState
from files_nest.errors import IoFault
from files_nest.locks import FileLockManager
from files_nest.models.enums import FileStatus
from files_nest.models.file import FileDB
from files_nest.models.upload import UploadDB
from files_nest.orm.transaction import transactional
from files_nest.repositories.file_repository import FileRepository
from files_nest.repositories.upload_repository import UploadRepository
from files_nest.services.reassembly import ReassemblyCoordinator
from files_nest.services.status_aggregator import effective_file_status
from files_nest.storage.base import BlobNotFoundError
from files_nest.storage.base import BlobStore
from files_nest.storage.base import BlobStoreError
from files_nest.storage.base import file_prefix


logger = logging.getLogger(__name__)


@dataclasses.dataclass
class FileView:
    """A file together with its uploads and the status derived from them."""

    file: FileDB
    uploads: list[UploadDB]
    status: FileStatus


class FileService:
    """Owner-scoped file operations: declare, inspect, edit, delete."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: BlobStore,
        locks: FileLockManager,
        coordinator: ReassemblyCoordinator,
        *,
        max_chunks_per_file: int = 10000,
    ) -> None:
        self.session_factory = session_factory
        self.blob_store = blob_store
        self.locks = locks
        self.coordinator = coordinator
        self.max_chunks_per_file = max_chunks_per_file

    async def create_file(
        self,
        owner_id: str,
        name: str,
        create_datetime: datetime,
        chunks_count: int,
        checksum: Optional[str] = None,
    ) -> FileView:
        """Declare a file of ``chunks_count`` chunks and create its pending uploads."""
        if not 1 <= chunks_count <= self.max_chunks_per_file:
            raise InvalidRequest(f"chunks_count must be between 1 and {self.max_chunks_per_file}")

        try:
            async with self.session_factory() as session, transactional(session):
                files = FileRepository(session)
                if await files.get_by_owner_and_name(owner_id, name) is not None:
                    raise DuplicateName(f"A file named {name!r} already exists")
                file = await files.create(
                    FileDB(
                        owner_id=owner_id,
                        name=name,
                        create_datetime=create_datetime,
                        checksum=checksum,
                        status=FileStatus.IN_PROGRESS,
                        expected_chunk_count=chunks_count,
                    )
                )
                uploads = await UploadRepository(session).create_placeholders(file.file_id, chunks_count)
        except IntegrityError as e:
            raise DuplicateName(f"A file named {name!r} already exists") from e

        logger.info(f"File created file={file.file_id} owner={owner_id} chunks={chunks_count}")
        return FileView(file=file, uploads=uploads, status=effective_file_status(file, uploads))

    async def get_file(self, owner_id: str, file_id: UUID) -> FileView:
        async with self.session_factory() as session:
            file = await self._get_owned(session, owner_id, file_id)
            uploads = await UploadRepository(session).list_by_file(file_id)
        return FileView(file=file, uploads=uploads, status=effective_file_status(file, uploads))

    async def list_files(self, owner_id: str, limit: int = 15, offset: int = 0) -> tuple[list[FileView], int]:
        """One page of the owner's files plus the owner's total file count."""
        async with self.session_factory() as session:
            files = FileRepository(session)
            page = await files.list_by_owner(owner_id, limit=limit, offset=offset)
            total = await files.count_by_owner(owner_id)
            grouped = await UploadRepository(session).list_by_files(f.file_id for f in page)

        views = [
            FileView(file=f, uploads=grouped[f.file_id], status=effective_file_status(f, grouped[f.file_id]))
            for f in page
        ]
        return views, total

    async def update_file(
        self,
        owner_id: str,
        file_id: UUID,
        *,
        name: Optional[str] = None,
        checksum: Optional[str] = None,
        create_datetime: Optional[datetime] = None,
    ) -> FileView:
        """Edit name/checksum/create_datetime of a file that is not completed yet.

        Runs under the file lock so the completed check cannot race a reassembly.
        """
        async with self.locks.acquire(file_id):
            try:
                async with self.session_factory() as session, transactional(session):
                    files = FileRepository(session)
                    file = await self._get_owned(session, owner_id, file_id, for_update=True)
                    uploads = await UploadRepository(session).list_by_file(file_id)
                    if effective_file_status(file, uploads) == FileStatus.COMPLETED:
                        raise InvalidState("Cannot update completed file")

                    if name is not None and name != file.name:
                        existing = await files.get_by_owner_and_name(owner_id, name)
                        if existing is not None:
                            raise DuplicateName(f"A file named {name!r} already exists")
                        file.name = name
                    if checksum is not None:
                        file.checksum = checksum
                    if create_datetime is not None:
                        file.create_datetime = create_datetime
                    file = await files.save(file)
            except IntegrityError as e:
                raise DuplicateName(f"A file named {name!r} already exists") from e

        logger.info(f"File updated file={file_id} owner={owner_id}")
        return FileView(file=file, uploads=uploads, status=effective_file_status(file, uploads))

    async def delete_file(self, owner_id: str, file_id: UUID) -> FileDB:
        """Delete a file, its uploads and every blob stored for it.

        In-progress uploads do not block deletion; their writers discard what
        they stored once they find the records gone.
        """
        async with self.locks.acquire(file_id):
            async with self.session_factory() as session, transactional(session):
                await self._get_owned(session, owner_id, file_id, for_update=True)
                removed = await UploadRepository(session).delete_by_file(file_id)
                file = await FileRepository(session).delete(file_id)
                # Blobs go before commit: a storage fault rolls the records back
                try:
                    await self.blob_store.delete_prefix(file_prefix(file_id))
                except BlobStoreError as e:
                    raise IoFault(f"Failed to delete blobs of file {file_id}: {e}") from e

        logger.info(f"File deleted file={file_id} owner={owner_id} uploads={removed}")
        return file

    async def retry_reassembly(self, owner_id: str, file_id: UUID) -> FileView:
        """Explicitly re-trigger reassembly, e.g. after a ReassemblyFailed."""
        async with self.session_factory() as session:
            await self._get_owned(session, owner_id, file_id)
        await self.coordinator.on_chunk_completed(file_id)
        return await self.get_file(owner_id, file_id)

    async def open_content(self, owner_id: str, file_id: UUID) -> tuple[FileDB, AsyncIterator[bytes]]:
        """Stream the assembled blob of a completed file."""
        view = await self.get_file(owner_id, file_id)
        if view.status != FileStatus.COMPLETED or not view.file.storage_key:
            raise InvalidState("File is not completed yet")
        try:
            stream = await self.blob_store.get(view.file.storage_key)
        except BlobNotFoundError as e:
            logger.error(f"Assembled blob missing for completed file {file_id}: {e}")
            raise IoFault(f"Content of file {file_id} is unavailable") from e
        except BlobStoreError as e:
            raise IoFault(f"Content of file {file_id} is unavailable: {e}") from e
        return view.file, stream

    async def _get_owned(
        self, session: AsyncSession, owner_id: str, file_id: UUID, *, for_update: bool = False
    ) -> FileDB:
        file = await FileRepository(session).get_by_id(file_id, for_update=for_update)
        if file is None:
            raise FileNotFound(f"File {file_id} does not exist")
        if file.owner_id != owner_id:
            raise AccessDenied(f"File {file_id} belongs to another owner")
        return file
