from .file_repository import FileRepository
from .upload_repository import UploadRepository


__all__ = [
    "FileRepository",
    "UploadRepository",
]
