from enum import Enum


class UploadStatus(str, Enum):
    """Lifecycle of a single chunk upload."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class FileStatus(str, Enum):
    """Aggregate status of a file, derived from its uploads."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
