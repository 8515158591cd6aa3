from __future__ import annotations

from typing import AsyncIterable
from typing import AsyncIterator
from typing import Protocol
from typing import Union
from uuid import UUID


Payload = Union[bytes, AsyncIterable[bytes]]


class BlobStoreError(Exception):
    """Write/delete fault in the blob store (retryable)."""


class BlobNotFoundError(BlobStoreError):
    """No blob is stored under the requested key."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Blob not found: {key}")


class BlobStore(Protocol):
    """Durable byte storage addressed by opaque string keys.

    ``put`` must replace the value of a key atomically: readers observe either
    the previous payload or the complete new one. No guarantee spans keys.
    """

    async def put(self, key: str, data: Payload) -> int: ...

    async def get(self, key: str) -> AsyncIterator[bytes]: ...

    async def read(self, key: str) -> bytes: ...

    async def exists(self, key: str) -> bool: ...

    async def delete(self, key: str) -> None: ...

    async def delete_prefix(self, prefix: str) -> None: ...


def chunk_prefix(file_id: UUID | str, chunk_number: int) -> str:
    return f"files/{UUID(str(file_id))}/chunks/{int(chunk_number)}"


def chunk_key(file_id: UUID | str, chunk_number: int, attempt: str) -> str:
    """Each upload attempt writes its own key, so a superseded writer cannot clobber the winner."""
    return f"{chunk_prefix(file_id, chunk_number)}/{attempt}"


def assembled_key(file_id: UUID | str) -> str:
    return f"files/{UUID(str(file_id))}/assembled"


def file_prefix(file_id: UUID | str) -> str:
    return f"files/{UUID(str(file_id))}"
