import asyncio
from uuid import uuid4

import fakeredis
import pytest
import pytest_asyncio

from files_nest.config import Config
from files_nest.errors import LockTimeout
from files_nest.locks import LocalFileLocks
from files_nest.locks import RedisFileLocks
from files_nest.locks import build_lock_manager


async def _hold(locks, file_id, events: list, name: str, delay: float = 0.01) -> None:
    async with locks.acquire(file_id):
        events.append(f"{name}:enter")
        await asyncio.sleep(delay)
        events.append(f"{name}:exit")


def _assert_not_interleaved(events: list) -> None:
    for i in range(0, len(events), 2):
        enter, exit_ = events[i], events[i + 1]
        assert enter.endswith(":enter")
        assert exit_ == enter.replace(":enter", ":exit")


class TestLocalFileLocks:
    @pytest.mark.asyncio
    async def test_same_file_is_mutually_exclusive(self) -> None:
        locks = LocalFileLocks()
        file_id = uuid4()
        events: list = []

        await asyncio.gather(*(_hold(locks, file_id, events, f"w{i}") for i in range(5)))

        assert len(events) == 10
        _assert_not_interleaved(events)

    @pytest.mark.asyncio
    async def test_different_files_do_not_block_each_other(self) -> None:
        locks = LocalFileLocks(wait_timeout_seconds=0.05)
        first, second = uuid4(), uuid4()

        async with locks.acquire(first):
            async with locks.acquire(second):
                assert len(locks) == 2

    @pytest.mark.asyncio
    async def test_entries_are_dropped_when_idle(self) -> None:
        locks = LocalFileLocks()
        file_id = uuid4()

        await asyncio.gather(*(_hold(locks, file_id, [], f"w{i}", 0) for i in range(3)))

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_wait_timeout_raises_lock_timeout(self) -> None:
        locks = LocalFileLocks(wait_timeout_seconds=0.05)
        file_id = uuid4()

        async with locks.acquire(file_id):
            with pytest.raises(LockTimeout):
                async with locks.acquire(file_id):
                    pass

        async with locks.acquire(file_id):
            pass
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_lock_released_when_body_raises(self) -> None:
        locks = LocalFileLocks(wait_timeout_seconds=0.05)
        file_id = uuid4()

        with pytest.raises(RuntimeError):
            async with locks.acquire(file_id):
                raise RuntimeError("boom")

        async with locks.acquire(file_id):
            pass


@pytest_asyncio.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis()
    yield client
    await client.aclose()


class TestRedisFileLocks:
    @pytest.mark.asyncio
    async def test_same_file_is_mutually_exclusive(self, redis_client) -> None:
        locks = RedisFileLocks(redis_client, ttl_ms=5000, wait_timeout_seconds=5, poll_interval_seconds=0.005)
        file_id = uuid4()
        events: list = []

        await asyncio.gather(*(_hold(locks, file_id, events, f"w{i}") for i in range(4)))

        assert len(events) == 8
        _assert_not_interleaved(events)
        assert await redis_client.get(f"files_nest:lock:file:{file_id}") is None

    @pytest.mark.asyncio
    async def test_wait_timeout_raises_lock_timeout(self, redis_client) -> None:
        locks = RedisFileLocks(redis_client, ttl_ms=5000, wait_timeout_seconds=0.05, poll_interval_seconds=0.01)
        file_id = uuid4()

        async with locks.acquire(file_id):
            with pytest.raises(LockTimeout):
                async with locks.acquire(file_id):
                    pass

    @pytest.mark.asyncio
    async def test_lock_key_has_ttl(self, redis_client) -> None:
        locks = RedisFileLocks(redis_client, ttl_ms=5000, wait_timeout_seconds=1)
        file_id = uuid4()

        async with locks.acquire(file_id):
            ttl = await redis_client.pttl(f"files_nest:lock:file:{file_id}")
            assert 0 < ttl <= 5000

    @pytest.mark.asyncio
    async def test_release_does_not_delete_a_lock_taken_over_by_another_holder(self, redis_client) -> None:
        locks = RedisFileLocks(redis_client, ttl_ms=5000, wait_timeout_seconds=1)
        file_id = uuid4()
        key = f"files_nest:lock:file:{file_id}"

        async with locks.acquire(file_id):
            # Simulate TTL expiry followed by another worker taking the lock
            await redis_client.set(key, "someone-else")

        assert await redis_client.get(key) == b"someone-else"


class TestBuildLockManager:
    def test_local_backend(self) -> None:
        config = Config(environment="test", lock_backend="local")
        assert isinstance(build_lock_manager(config), LocalFileLocks)

    def test_redis_backend_requires_client(self) -> None:
        config = Config(environment="test", lock_backend="redis")
        with pytest.raises(ValueError):
            build_lock_manager(config)

    def test_redis_backend(self) -> None:
        config = Config(environment="test", lock_backend="redis", lock_ttl_ms=1234)
        locks = build_lock_manager(config, fakeredis.FakeAsyncRedis())
        assert isinstance(locks, RedisFileLocks)
        assert locks.ttl_ms == 1234
