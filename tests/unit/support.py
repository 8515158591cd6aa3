import asyncio
from collections import Counter
from typing import Callable
from typing import Optional

from files_nest.storage import BlobStoreError
from files_nest.storage import FileSystemBlobStore
from files_nest.storage import Payload


OWNER = "user-1"
OTHER_OWNER = "user-2"


class SpyBlobStore(FileSystemBlobStore):
    """Filesystem store that counts writes per key and can inject faults."""

    def __init__(self, root_dir: str) -> None:
        super().__init__(root_dir, read_chunk_size=4)
        self.puts: Counter[str] = Counter()
        self.fail_put: Optional[Callable[[str], bool]] = None
        self.fail_get: Optional[Callable[[str], bool]] = None
        self.put_delay = 0.0

    async def put(self, key: str, data: Payload) -> int:
        if self.put_delay:
            await asyncio.sleep(self.put_delay)
        if self.fail_put is not None and self.fail_put(key):
            raise BlobStoreError(f"injected write fault for {key}")
        written = await super().put(key, data)
        self.puts[key] += 1
        return written

    async def get(self, key: str):
        if self.fail_get is not None and self.fail_get(key):
            raise BlobStoreError(f"injected read fault for {key}")
        return await super().get(key)


class GatedPayload:
    """Async payload that signals when it is first read and waits for permission to finish."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        self.started.set()
        await self.release.wait()
        yield self.data


async def stream_of(*pieces: bytes):
    for piece in pieces:
        await asyncio.sleep(0)
        yield piece
