"""Per-file exclusive locks guarding the reassembly decision.

``LocalFileLocks`` serialises coroutines of a single process. ``RedisFileLocks``
extends the guarantee across instances with a token lock (SET NX PX) that is
released through an atomic compare-and-delete.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from typing import AsyncIterator
from typing import Optional
from typing import Protocol
from uuid import UUID

import redis.asyncio as async_redis

from files_nest.config import Config
from files_nest.errors import LockTimeout


logger = logging.getLogger(__name__)

_RELEASE_SCRIPT = "if redis.call('GET', KEYS[1]) == ARGV[1] then return redis.call('DEL', KEYS[1]) else return 0 end"


class FileLockManager(Protocol):
    def acquire(self, file_id: UUID) -> contextlib.AbstractAsyncContextManager[None]: ...


class _LockEntry:
    __slots__ = ("lock", "waiters")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.waiters = 0


class LocalFileLocks:
    """In-process mutex keyed by file id. Entries are dropped once nobody holds or awaits them."""

    def __init__(self, wait_timeout_seconds: Optional[float] = None) -> None:
        self.wait_timeout_seconds = wait_timeout_seconds
        self._entries: dict[UUID, _LockEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @contextlib.asynccontextmanager
    async def acquire(self, file_id: UUID) -> AsyncIterator[None]:
        entry = self._entries.get(file_id)
        if entry is None:
            entry = self._entries[file_id] = _LockEntry()
        entry.waiters += 1
        try:
            try:
                if self.wait_timeout_seconds is None:
                    await entry.lock.acquire()
                else:
                    await asyncio.wait_for(entry.lock.acquire(), timeout=self.wait_timeout_seconds)
            except asyncio.TimeoutError as e:
                raise LockTimeout(f"Timed out waiting for lock on file {file_id}") from e
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.waiters -= 1
            if entry.waiters == 0 and self._entries.get(file_id) is entry:
                del self._entries[file_id]


class RedisFileLocks:
    """Cross-instance file lock backed by Redis."""

    def __init__(
        self,
        redis_client: async_redis.Redis,
        *,
        ttl_ms: int = 300000,
        wait_timeout_seconds: float = 60.0,
        poll_interval_seconds: float = 0.05,
        prefix: str = "files_nest:lock:file:",
    ) -> None:
        self.redis_client = redis_client
        self.ttl_ms = ttl_ms
        self.wait_timeout_seconds = wait_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.prefix = prefix

    def _lock_key(self, file_id: UUID) -> str:
        return f"{self.prefix}{file_id}"

    async def _try_acquire(self, file_id: UUID) -> Optional[str]:
        """Try once to take the lock. Returns the token or None."""
        token = uuid.uuid4().hex
        ok = await self.redis_client.set(self._lock_key(file_id), token, nx=True, px=self.ttl_ms)
        return token if ok else None

    async def _release(self, file_id: UUID, token: str) -> None:
        """Release only if the token still matches (the TTL may have handed the lock over)."""
        released = await self.redis_client.eval(_RELEASE_SCRIPT, 1, self._lock_key(file_id), token)
        if not released:
            logger.warning(f"Lock for file {file_id} expired before release (ttl_ms={self.ttl_ms})")

    @contextlib.asynccontextmanager
    async def acquire(self, file_id: UUID) -> AsyncIterator[None]:
        deadline = time.monotonic() + self.wait_timeout_seconds
        token = await self._try_acquire(file_id)
        while token is None:
            if time.monotonic() >= deadline:
                raise LockTimeout(f"Timed out waiting for lock on file {file_id}")
            await asyncio.sleep(self.poll_interval_seconds)
            token = await self._try_acquire(file_id)

        try:
            yield
        finally:
            try:
                await self._release(file_id, token)
            except Exception as e:
                # The TTL bounds how long an unreleased lock can block other workers
                logger.error(f"Failed to release lock for file {file_id}: {e}")


def build_lock_manager(config: Config, redis_client: Optional[async_redis.Redis] = None) -> FileLockManager:
    if config.lock_backend == "redis":
        if redis_client is None:
            raise ValueError("Redis lock backend requires a redis client")
        return RedisFileLocks(
            redis_client,
            ttl_ms=config.lock_ttl_ms,
            wait_timeout_seconds=config.lock_wait_timeout_seconds,
            poll_interval_seconds=config.lock_poll_interval_seconds,
        )
    return LocalFileLocks(wait_timeout_seconds=config.lock_wait_timeout_seconds)
