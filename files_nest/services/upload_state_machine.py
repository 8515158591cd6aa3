"""Chunk upload lifecycle: pending -> in_progress -> completed | failed."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import uuid
from datetime import timedelta
from typing import AsyncIterator
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from files_nest.errors import AccessDenied
from files_nest.errors import ChunkNotFound
from files_nest.errors import ChunkOutOfRange
from files_nest.errors import ChunkRejected
from files_nest.errors import ConcurrentUpload
from files_nest.errors import FileNotFound
from files_nest.errors import InvalidState
from files_nest.errors import IoFault
from files_nest.locks import FileLockManager
from files_nest.models.base import utcnow
from files_nest.models.enums import UploadStatus
from files_nest.models.file import FileDB
from files_nest.models.upload import UploadDB
from files_nest.orm.transaction import transactional
from files_nest.repositories.file_repository import FileRepository
from files_nest.repositories.upload_repository import UploadRepository
from files_nest.services.reassembly import ReassemblyCoordinator
from files_nest.storage.base import BlobStore
from files_nest.storage.base import BlobStoreError
from files_nest.storage.base import Payload
from files_nest.storage.base import chunk_key


logger = logging.getLogger(__name__)

# Hash large pieces off the event loop
_THREADED_HASH_THRESHOLD = 1024 * 1024


class PayloadMeter:
    """Counts and hashes a chunk payload while it streams into the blob store.

    Raising from inside the stream aborts the blob store write before the
    payload is published.
    """

    def __init__(self, max_size_bytes: int, expected_md5: Optional[str] = None) -> None:
        self.max_size_bytes = max_size_bytes
        self.expected_md5 = expected_md5.strip().strip('"').lower() if expected_md5 else None
        self.size_bytes = 0
        self._md5 = hashlib.md5()

    @property
    def etag(self) -> str:
        return self._md5.hexdigest()

    async def wrap(self, payload: Payload) -> AsyncIterator[bytes]:
        async for piece in _iter_payload(payload):
            self.size_bytes += len(piece)
            if self.size_bytes > self.max_size_bytes:
                raise ChunkRejected(f"Chunk exceeds maximum size of {self.max_size_bytes} bytes")
            if len(piece) >= _THREADED_HASH_THRESHOLD:
                await asyncio.to_thread(self._md5.update, piece)
            else:
                self._md5.update(piece)
            yield piece

        if self.expected_md5 is not None and self.etag != self.expected_md5:
            raise ChunkRejected(f"Checksum mismatch: expected {self.expected_md5}, got {self.etag}")


async def _iter_payload(payload: Payload) -> AsyncIterator[bytes]:
    if isinstance(payload, (bytes, bytearray, memoryview)):
        yield bytes(payload)
        return
    async for piece in payload:
        yield piece


class UploadStateMachine:
    """Drives a single chunk upload through its states and stores its payload.

    Distinct chunks of the same file upload in parallel without coordination.
    A chunk already in progress rejects a second writer; a completed chunk may
    be overwritten (last write wins) until the file itself is completed.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: BlobStore,
        locks: FileLockManager,
        coordinator: ReassemblyCoordinator,
        *,
        max_chunk_size_bytes: int,
        stale_upload_seconds: int = 3600,
    ) -> None:
        self.session_factory = session_factory
        self.blob_store = blob_store
        self.locks = locks
        self.coordinator = coordinator
        self.max_chunk_size_bytes = max_chunk_size_bytes
        self.stale_upload_seconds = stale_upload_seconds

    async def begin_chunk_upload(
        self,
        owner_id: str,
        file_id: UUID,
        chunk_number: int,
        payload: Payload,
        *,
        content_md5: Optional[str] = None,
    ) -> UploadDB:
        """Store one chunk and, if it was the last missing one, trigger reassembly.

        Raises:
            FileNotFound / ChunkNotFound: The file or its chunk record does not exist.
            AccessDenied: The file belongs to another owner.
            InvalidState: The file is already completed.
            ChunkOutOfRange: ``chunk_number`` is outside 1..expected_chunk_count.
            ConcurrentUpload: The chunk is already being uploaded.
            ChunkRejected: The payload is too large or fails checksum verification.
            IoFault: The blob store write failed; the upload can be retried.
            ReassemblyFailed / LockTimeout: The chunk was stored but reassembly
                must be retried.
        """
        async with self.session_factory() as session, transactional(session):
            file = await self._load_writable_file(session, owner_id, file_id, chunk_number)
            uploads = UploadRepository(session)
            upload = await uploads.get_by_file_and_number(file_id, chunk_number)
            if upload is None:
                raise ChunkNotFound(f"Chunk {chunk_number} of file {file_id} does not exist")

            overwrite = upload.status == UploadStatus.COMPLETED
            if not overwrite:
                attempt = await self._start(uploads, upload, file)

        if overwrite:
            result = await self._overwrite_completed(owner_id, file_id, chunk_number, payload, content_md5)
        else:
            result = await self._store_new(upload, attempt, payload, content_md5)

        await self.coordinator.on_chunk_completed(file_id)
        return result

    async def _load_writable_file(
        self, session: AsyncSession, owner_id: str, file_id: UUID, chunk_number: int
    ) -> FileDB:
        file = await FileRepository(session).get_by_id(file_id)
        if file is None:
            raise FileNotFound(f"File {file_id} does not exist")
        if file.owner_id != owner_id:
            raise AccessDenied(f"File {file_id} belongs to another owner")
        if file.is_assembled:
            raise InvalidState("Cannot upload chunks to a completed file")
        if not 1 <= chunk_number <= file.expected_chunk_count:
            raise ChunkOutOfRange(
                f"Chunk number {chunk_number} is outside 1..{file.expected_chunk_count} for file {file_id}"
            )
        return file

    async def _start(self, uploads: UploadRepository, upload: UploadDB, file: FileDB) -> str:
        """Claim the chunk for a fresh attempt and return that attempt's token."""
        attempt = uuid.uuid4().hex
        if upload.status == UploadStatus.IN_PROGRESS:
            stale_before = utcnow() - timedelta(seconds=self.stale_upload_seconds)
            if await uploads.reclaim_stale(upload.upload_id, stale_before, attempt):
                logger.warning(f"Reclaimed stale upload file={file.file_id} chunk={upload.chunk_number}")
                return attempt
            raise ConcurrentUpload(f"Chunk {upload.chunk_number} of file {file.file_id} is already being uploaded")

        started = await uploads.transition(
            upload.upload_id,
            from_statuses=(UploadStatus.PENDING, UploadStatus.FAILED),
            to_status=UploadStatus.IN_PROGRESS,
            attempt_token=attempt,
        )
        if not started:
            raise ConcurrentUpload(f"Chunk {upload.chunk_number} of file {file.file_id} is already being uploaded")
        logger.info(f"Upload started file={file.file_id} chunk={upload.chunk_number} previous={upload.status.value}")
        return attempt

    async def _store_new(
        self, upload: UploadDB, attempt: str, payload: Payload, content_md5: Optional[str]
    ) -> UploadDB:
        file_id, chunk_number = upload.file_id, upload.chunk_number
        key = chunk_key(file_id, chunk_number, attempt)
        meter = PayloadMeter(self.max_chunk_size_bytes, content_md5)

        try:
            await self.blob_store.put(key, meter.wrap(payload))
        except ChunkRejected:
            await self._mark_failed(upload, attempt)
            raise
        except BlobStoreError as e:
            if not await self._mark_failed(upload, attempt):
                # Deletion removes the blob directory out from under the writer
                await self._handle_lost_upload(file_id, chunk_number, key)
            raise IoFault(f"Failed to store chunk {chunk_number} of file {file_id}: {e}") from e
        except Exception:
            await self._mark_failed(upload, attempt)
            raise

        stored: Optional[UploadDB] = None
        async with self.session_factory() as session, transactional(session):
            uploads = UploadRepository(session)
            completed = await uploads.transition(
                upload.upload_id,
                from_statuses=(UploadStatus.IN_PROGRESS,),
                to_status=UploadStatus.COMPLETED,
                expected_token=attempt,
                storage_key=key,
                size_bytes=meter.size_bytes,
                etag=meter.etag,
            )
            if completed:
                stored = await uploads.get_by_file_and_number(file_id, chunk_number)

        if not completed or stored is None:
            await self._handle_lost_upload(file_id, chunk_number, key)

        logger.info(f"Upload completed file={file_id} chunk={chunk_number} size={meter.size_bytes}")
        return stored

    async def _overwrite_completed(
        self,
        owner_id: str,
        file_id: UUID,
        chunk_number: int,
        payload: Payload,
        content_md5: Optional[str],
    ) -> UploadDB:
        """Replace the payload of a completed chunk. The chunk stays completed throughout."""
        attempt = uuid.uuid4().hex
        key = chunk_key(file_id, chunk_number, attempt)
        meter = PayloadMeter(self.max_chunk_size_bytes, content_md5)

        # Held so the overwrite cannot interleave with a reassembly reading this chunk
        async with self.locks.acquire(file_id):
            async with self.session_factory() as session:
                await self._load_writable_file(session, owner_id, file_id, chunk_number)

            try:
                await self.blob_store.put(key, meter.wrap(payload))
            except BlobStoreError as e:
                raise IoFault(f"Failed to overwrite chunk {chunk_number} of file {file_id}: {e}") from e

            async with self.session_factory() as session, transactional(session):
                uploads = UploadRepository(session)
                upload = await uploads.get_by_file_and_number(file_id, chunk_number)
                if upload is None:
                    raise ChunkNotFound(f"Chunk {chunk_number} of file {file_id} does not exist")
                replaced_key = upload.storage_key
                await uploads.transition(
                    upload.upload_id,
                    from_statuses=(UploadStatus.COMPLETED,),
                    to_status=UploadStatus.COMPLETED,
                    attempt_token=attempt,
                    storage_key=key,
                    size_bytes=meter.size_bytes,
                    etag=meter.etag,
                )
                stored = await uploads.get_by_file_and_number(file_id, chunk_number)

        if replaced_key and replaced_key != key:
            try:
                await self.blob_store.delete(replaced_key)
            except BlobStoreError as e:
                logger.error(f"Failed to delete replaced chunk {replaced_key}: {e}")

        logger.info(f"Upload overwritten file={file_id} chunk={chunk_number} size={meter.size_bytes}")
        return stored

    async def _mark_failed(self, upload: UploadDB, attempt: str) -> bool:
        """Move this attempt's in_progress upload to failed.

        Returns False only when the upload is no longer ours (deleted or taken over).
        """
        try:
            async with self.session_factory() as session, transactional(session):
                marked = await UploadRepository(session).transition(
                    upload.upload_id,
                    from_statuses=(UploadStatus.IN_PROGRESS,),
                    to_status=UploadStatus.FAILED,
                    expected_token=attempt,
                    storage_key=None,
                    size_bytes=None,
                    etag=None,
                )
        except Exception:
            logger.exception(f"Failed to mark upload failed file={upload.file_id} chunk={upload.chunk_number}")
            return True
        if marked:
            logger.warning(f"Upload failed file={upload.file_id} chunk={upload.chunk_number}")
        return marked

    async def _handle_lost_upload(self, file_id: UUID, chunk_number: int, key: str) -> None:
        """The upload row changed under us: either the file was deleted or a stale writer was reclaimed.

        The attempt's own blob is discarded in both cases; the row never pointed at it.
        """
        try:
            await self.blob_store.delete(key)
        except BlobStoreError as e:
            logger.error(f"Failed to discard orphaned chunk {key}: {e}")

        async with self.session_factory() as session:
            file = await FileRepository(session).get_by_id(file_id)

        if file is None:
            logger.warning(f"File {file_id} deleted while chunk {chunk_number} was uploading, discarded {key}")
            raise FileNotFound(f"File {file_id} was deleted during upload")

        logger.warning(f"Chunk {chunk_number} of file {file_id} was taken over, discarded {key}")
        raise ConcurrentUpload(f"Chunk {chunk_number} of file {file_id} was taken over by another upload")
