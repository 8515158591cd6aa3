from .base import BlobNotFoundError
from .base import BlobStore
from .base import BlobStoreError
from .base import Payload
from .base import assembled_key
from .base import chunk_key
from .base import chunk_prefix
from .base import file_prefix
from .fs_store import FileSystemBlobStore


__all__ = [
    "BlobStore",
    "BlobStoreError",
    "BlobNotFoundError",
    "FileSystemBlobStore",
    "Payload",
    "assembled_key",
    "chunk_key",
    "chunk_prefix",
    "file_prefix",
]
