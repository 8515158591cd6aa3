"""Derive a file's status from the status of its chunk uploads."""

from __future__ import annotations

from typing import Iterable

from files_nest.models.enums import FileStatus
from files_nest.models.enums import UploadStatus
from files_nest.models.file import FileDB
from files_nest.models.upload import UploadDB


def derive_file_status(upload_statuses: Iterable[UploadStatus]) -> FileStatus:
    """Aggregate upload statuses into a file status.

    completed iff every upload is completed; failed iff any upload failed and
    none is still in progress; in_progress otherwise (including no uploads).
    """
    statuses = [UploadStatus(s) for s in upload_statuses]
    if statuses and all(s == UploadStatus.COMPLETED for s in statuses):
        return FileStatus.COMPLETED
    if UploadStatus.FAILED in statuses and UploadStatus.IN_PROGRESS not in statuses:
        return FileStatus.FAILED
    return FileStatus.IN_PROGRESS


def effective_file_status(file: FileDB, uploads: Iterable[UploadDB]) -> FileStatus:
    """Status reported to callers and used to gate mutations.

    A file only reads as completed once its assembled blob is published. Until
    then an all-completed upload set still reads as in_progress.
    """
    if file.is_assembled:
        return FileStatus.COMPLETED
    derived = derive_file_status(u.status for u in uploads)
    if derived == FileStatus.COMPLETED:
        return FileStatus.IN_PROGRESS
    return derived
