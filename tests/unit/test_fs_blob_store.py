from pathlib import Path
from uuid import uuid4

import pytest

from files_nest.errors import ChunkRejected
from files_nest.storage import BlobNotFoundError
from files_nest.storage import FileSystemBlobStore
from files_nest.storage import assembled_key
from files_nest.storage import chunk_key
from files_nest.storage import chunk_prefix
from files_nest.storage import file_prefix


@pytest.fixture
def store(tmp_path: Path) -> FileSystemBlobStore:
    return FileSystemBlobStore(str(tmp_path / "blobs"), read_chunk_size=3)


async def _pieces(*pieces: bytes):
    for piece in pieces:
        yield piece


class TestPutAndGet:
    @pytest.mark.asyncio
    async def test_put_bytes_then_read(self, store: FileSystemBlobStore) -> None:
        key = chunk_key(uuid4(), 1, "a1")

        written = await store.put(key, b"hello world")

        assert written == 11
        assert await store.read(key) == b"hello world"
        assert await store.exists(key)

    @pytest.mark.asyncio
    async def test_put_stream_and_get_in_read_chunks(self, store: FileSystemBlobStore) -> None:
        key = chunk_key(uuid4(), 2, "a1")

        written = await store.put(key, _pieces(b"ab", b"", b"cdefg"))
        stream = await store.get(key)
        pieces = [piece async for piece in stream]

        assert written == 7
        assert pieces == [b"abc", b"def", b"g"]

    @pytest.mark.asyncio
    async def test_put_replaces_previous_value(self, store: FileSystemBlobStore) -> None:
        key = chunk_key(uuid4(), 1, "a1")
        await store.put(key, b"old payload")

        await store.put(key, b"new")

        assert await store.read(key) == b"new"

    @pytest.mark.asyncio
    async def test_failed_stream_keeps_previous_value_and_leaves_no_temp_files(
        self, store: FileSystemBlobStore
    ) -> None:
        key = chunk_key(uuid4(), 1, "a1")
        await store.put(key, b"committed")

        async def broken():
            yield b"partial"
            raise ChunkRejected("too large")

        with pytest.raises(ChunkRejected):
            await store.put(key, broken())

        assert await store.read(key) == b"committed"
        siblings = [p.name for p in store.path_for(key).parent.iterdir()]
        assert siblings == ["a1"]

    @pytest.mark.asyncio
    async def test_get_missing_key_raises_not_found(self, store: FileSystemBlobStore) -> None:
        key = assembled_key(uuid4())

        with pytest.raises(BlobNotFoundError) as exc_info:
            await store.get(key)

        assert exc_info.value.key == key
        assert not await store.exists(key)


class TestKeys:
    @pytest.mark.parametrize("key", ["", "../etc/passwd", "files/../../x", "files//x", "/abs", "files/.hidden"])
    def test_path_for_rejects_unsafe_keys(self, store: FileSystemBlobStore, key: str) -> None:
        with pytest.raises(ValueError):
            store.path_for(key)

    def test_key_layout(self) -> None:
        file_id = uuid4()
        assert chunk_prefix(file_id, 3) == f"files/{file_id}/chunks/3"
        assert chunk_key(file_id, 3, "a1") == f"files/{file_id}/chunks/3/a1"
        assert assembled_key(str(file_id)) == f"files/{file_id}/assembled"
        assert file_prefix(file_id) == f"files/{file_id}"

    def test_path_stays_under_root(self, store: FileSystemBlobStore) -> None:
        path = store.path_for(chunk_key(uuid4(), 1, "a1"))
        assert store.root in path.parents


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_is_idempotent_and_prunes_empty_directories(self, store: FileSystemBlobStore) -> None:
        file_id = uuid4()
        key = chunk_key(file_id, 1, "a1")
        await store.put(key, b"x")

        await store.delete(key)
        await store.delete(key)

        assert not await store.exists(key)
        assert not store.path_for(file_prefix(file_id)).exists()
        assert store.root.exists()

    @pytest.mark.asyncio
    async def test_delete_keeps_sibling_keys(self, store: FileSystemBlobStore) -> None:
        file_id = uuid4()
        await store.put(chunk_key(file_id, 1, "a1"), b"1")
        await store.put(chunk_key(file_id, 2, "a1"), b"2")

        await store.delete(chunk_key(file_id, 1, "a1"))

        assert await store.read(chunk_key(file_id, 2, "a1")) == b"2"

    @pytest.mark.asyncio
    async def test_delete_prefix_removes_every_blob_of_a_file(self, store: FileSystemBlobStore) -> None:
        file_id = uuid4()
        other_id = uuid4()
        await store.put(chunk_key(file_id, 1, "a1"), b"1")
        await store.put(chunk_key(file_id, 2, "a1"), b"2")
        await store.put(assembled_key(file_id), b"12")
        await store.put(chunk_key(other_id, 1, "a1"), b"other")

        await store.delete_prefix(file_prefix(file_id))
        await store.delete_prefix(file_prefix(file_id))

        assert not store.path_for(file_prefix(file_id)).exists()
        assert await store.read(chunk_key(other_id, 1, "a1")) == b"other"
