"""Exactly-once reassembly of a file from its completed chunks."""

from __future__ import annotations

import logging
from typing import AsyncIterator
from typing import Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from files_nest.errors import ReassemblyFailed
from files_nest.locks import FileLockManager
from files_nest.models.enums import FileStatus
from files_nest.orm.transaction import transactional
from files_nest.repositories.file_repository import FileRepository
from files_nest.repositories.upload_repository import UploadRepository
from files_nest.services.status_aggregator import derive_file_status
from files_nest.storage.base import BlobStore
from files_nest.storage.base import BlobStoreError
from files_nest.storage.base import assembled_key


logger = logging.getLogger(__name__)


class ReassemblyCoordinator:
    """Concatenates chunk payloads into the assembled blob once every chunk is completed.

    The decision "all chunks complete, file not yet assembled" and the publish
    that follows run under the per-file lock, so concurrent chunk completions
    trigger at most one successful reassembly. The final status write is also a
    compare-and-swap, which keeps a second publish from going through if a lock
    TTL ever expires mid-reassembly.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: BlobStore,
        locks: FileLockManager,
    ) -> None:
        self.session_factory = session_factory
        self.blob_store = blob_store
        self.locks = locks

    async def on_chunk_completed(self, file_id: UUID) -> bool:
        """Reassemble ``file_id`` if all of its chunks are completed.

        Returns True only for the invocation that published the assembled blob.

        Raises:
            ReassemblyFailed: Reading chunks, writing the assembled blob or
                recording completion failed. The file stays in progress and a
                later call retries from scratch.
            LockTimeout: The per-file lock could not be acquired in time.
        """
        async with self.locks.acquire(file_id):
            return await self._reassemble_locked(file_id)

    async def _reassemble_locked(self, file_id: UUID) -> bool:
        async with self.session_factory() as session:
            file = await FileRepository(session).get_by_id(file_id)
            if file is None:
                logger.debug(f"Reassembly skipped: file {file_id} no longer exists")
                return False
            if file.is_assembled:
                logger.debug(f"Reassembly skipped: file {file_id} already completed")
                return False
            uploads = await UploadRepository(session).list_by_file(file_id)

        if len(uploads) != file.expected_chunk_count:
            logger.warning(
                f"Reassembly skipped: file {file_id} has {len(uploads)} uploads, expected {file.expected_chunk_count}"
            )
            return False
        if derive_file_status(u.status for u in uploads) != FileStatus.COMPLETED:
            return False

        # list_by_file orders by chunk number; arrival order is irrelevant
        missing = [u.chunk_number for u in uploads if not u.storage_key]
        if missing:
            raise ReassemblyFailed(f"Reassembly of file {file_id} failed: chunks {missing} have no stored payload")
        keys = [u.storage_key for u in uploads]
        destination = assembled_key(file_id)
        logger.info(f"Reassembling file {file_id} from {len(keys)} chunks")

        try:
            size_bytes = await self.blob_store.put(destination, self._concat(keys))
        except BlobStoreError as e:
            logger.error(f"Reassembly of file {file_id} failed while writing {destination}: {e}")
            raise ReassemblyFailed(f"Reassembly of file {file_id} failed: {e}") from e

        try:
            async with self.session_factory() as session, transactional(session):
                published = await FileRepository(session).mark_completed(file_id, destination, size_bytes)
        except SQLAlchemyError as e:
            logger.error(f"Reassembly of file {file_id} wrote {destination} but failed to record completion: {e}")
            raise ReassemblyFailed(f"Reassembly of file {file_id} failed: {e}") from e

        if not published:
            await self._handle_lost_publish(file_id, destination)
            return False

        logger.info(f"File {file_id} completed: {destination} size={size_bytes}")
        return True

    async def _handle_lost_publish(self, file_id: UUID, destination: str) -> None:
        async with self.session_factory() as session:
            file = await FileRepository(session).get_by_id(file_id)
        if file is None:
            logger.warning(f"File {file_id} was deleted during reassembly, discarding {destination}")
            try:
                await self.blob_store.delete(destination)
            except BlobStoreError as e:
                raise ReassemblyFailed(f"Failed to discard {destination}: {e}") from e
        else:
            logger.warning(f"File {file_id} was completed by another worker during reassembly")

    async def _concat(self, keys: Sequence[str]) -> AsyncIterator[bytes]:
        for key in keys:
            stream = await self.blob_store.get(key)
            async for piece in stream:
                yield piece
