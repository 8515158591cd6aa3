"""Filesystem-backed blob store for chunk payloads and assembled files.

Keys map to files under a root directory. Every write goes to a temporary file
in the destination directory, is fsynced and then renamed over the target, so
a key never exposes a partially written payload.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import re
import shutil
import uuid
from pathlib import Path
from typing import AsyncIterator
from typing import BinaryIO

from files_nest.storage.base import BlobNotFoundError
from files_nest.storage.base import BlobStoreError
from files_nest.storage.base import Payload


logger = logging.getLogger(__name__)

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class FileSystemBlobStore:
    """Blob store on a local or shared volume.

    Layout: <root>/files/<file_id>/chunks/<chunk_number>/<attempt>
            <root>/files/<file_id>/assembled
    """

    def __init__(self, root_dir: str, read_chunk_size: int = 1024 * 1024) -> None:
        self.root = Path(root_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        self.read_chunk_size = read_chunk_size

    def path_for(self, key: str) -> Path:
        """Resolve a key to a path under the root, rejecting traversal."""
        segments = key.split("/")
        if not key or any(not _SEGMENT_RE.match(segment) for segment in segments):
            raise ValueError(f"Invalid blob key: {key!r}")
        return self.root.joinpath(*segments)

    async def put(self, key: str, data: Payload) -> int:
        """Atomically store ``data`` under ``key``. Returns the number of bytes written.

        Raises:
            BlobStoreError: If the filesystem write fails. Errors raised by the
                payload iterator itself propagate unchanged.
        """
        target = self.path_for(key)
        tmp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")

        try:
            await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
            fh: BinaryIO = await asyncio.to_thread(tmp_path.open, "wb")
        except OSError as e:
            logger.error(f"FS put failed to open key={key}: {e}")
            raise BlobStoreError(f"Failed to open {key}: {e}") from e

        written = 0
        try:
            try:
                if isinstance(data, (bytes, bytearray, memoryview)):
                    await asyncio.to_thread(fh.write, data)
                    written = len(data)
                else:
                    async for piece in data:
                        if piece:
                            await asyncio.to_thread(fh.write, piece)
                            written += len(piece)
                await asyncio.to_thread(_flush_and_sync, fh)
            finally:
                await asyncio.to_thread(fh.close)
            await asyncio.to_thread(tmp_path.replace, target)
        except OSError as e:
            await self._discard(tmp_path)
            logger.error(f"FS put failed key={key}: {e}")
            raise BlobStoreError(f"Failed to write {key}: {e}") from e
        except BaseException:
            await self._discard(tmp_path)
            raise

        await self._fsync_dir_async(target.parent)
        logger.debug(f"FS: wrote key={key} size={written}")
        return written

    async def get(self, key: str) -> AsyncIterator[bytes]:
        """Open ``key`` for streaming.

        Raises:
            BlobNotFoundError: If nothing is stored under ``key``.
        """
        path = self.path_for(key)
        try:
            fh: BinaryIO = await asyncio.to_thread(path.open, "rb")
        except FileNotFoundError as e:
            raise BlobNotFoundError(key) from e
        except OSError as e:
            raise BlobStoreError(f"Failed to open {key}: {e}") from e
        return self._iter_file(key, fh)

    async def _iter_file(self, key: str, fh: BinaryIO) -> AsyncIterator[bytes]:
        try:
            while True:
                try:
                    piece = await asyncio.to_thread(fh.read, self.read_chunk_size)
                except OSError as e:
                    raise BlobStoreError(f"Failed to read {key}: {e}") from e
                if not piece:
                    break
                yield piece
        finally:
            await asyncio.to_thread(fh.close)

    async def read(self, key: str) -> bytes:
        stream = await self.get(key)
        return b"".join([piece async for piece in stream])

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self.path_for(key).is_file)

    async def delete(self, key: str) -> None:
        """Delete a key. Idempotent."""
        path = self.path_for(key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            logger.error(f"FS delete failed key={key}: {e}")
            raise BlobStoreError(f"Failed to delete {key}: {e}") from e
        await self._prune_empty_parents(path.parent)
        logger.debug(f"FS: deleted key={key}")

    async def delete_prefix(self, prefix: str) -> None:
        """Delete every key under ``prefix``. Idempotent."""
        path = self.path_for(prefix)
        if not path.exists():
            logger.debug(f"FS: delete_prefix no-op (not present) prefix={prefix}")
            return
        try:
            await asyncio.to_thread(shutil.rmtree, path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"FS delete_prefix failed prefix={prefix}: {e}")
            raise BlobStoreError(f"Failed to delete {prefix}: {e}") from e
        await self._prune_empty_parents(path.parent)
        logger.info(f"FS: deleted prefix={prefix}")

    async def _prune_empty_parents(self, directory: Path) -> None:
        # rmdir only succeeds on empty directories; stop at the first non-empty one
        while directory != self.root and self.root in directory.parents:
            try:
                await asyncio.to_thread(directory.rmdir)
            except OSError:
                return
            directory = directory.parent

    async def _discard(self, tmp_path: Path) -> None:
        with contextlib.suppress(OSError):
            await asyncio.to_thread(tmp_path.unlink, missing_ok=True)

    async def _fsync_dir_async(self, directory: Path) -> None:
        """Fsync a directory (async wrapper) to ensure rename durability."""

        def _sync_dir() -> None:
            fd = os.open(str(directory), os.O_DIRECTORY)
            try:
                os.fsync(fd)
            finally:
                os.close(fd)

        with contextlib.suppress(OSError):
            await asyncio.to_thread(_sync_dir)


def _flush_and_sync(fh: BinaryIO) -> None:
    fh.flush()
    os.fsync(fh.fileno())
