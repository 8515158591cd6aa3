from files_nest.models.base import TimestampMixin
from files_nest.models.enums import FileStatus
from files_nest.models.enums import UploadStatus
from files_nest.models.file import FileDB
from files_nest.models.upload import UploadDB


__all__ = [
    "TimestampMixin",
    "FileDB",
    "FileStatus",
    "UploadDB",
    "UploadStatus",
]
