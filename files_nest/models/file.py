from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID
from uuid import uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from files_nest.models.base import TimestampMixin
from files_nest.models.enums import FileStatus


class FileDB(TimestampMixin, table=True):
    """File table - metadata of a chunked upload and of its assembled blob.

    ``status`` is written only by file creation (``in_progress``) and by the
    reassembly coordinator (``completed``, once the assembled blob is
    published). The status reported to callers is derived from the uploads,
    see ``files_nest.services.status_aggregator``.
    """

    __tablename__ = "files"
    __table_args__ = (UniqueConstraint("owner_id", "name", name="uq_files_owner_name"),)

    file_id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: str = Field(index=True, max_length=255, nullable=False)
    name: str = Field(max_length=255, nullable=False)
    create_datetime: datetime = Field(nullable=False)
    checksum: Optional[str] = Field(default=None, max_length=255)
    status: FileStatus = Field(default=FileStatus.IN_PROGRESS, nullable=False, index=True)
    expected_chunk_count: int = Field(nullable=False)
    storage_key: Optional[str] = Field(default=None, max_length=1024)
    size_bytes: Optional[int] = Field(default=None)

    @property
    def is_assembled(self) -> bool:
        return self.status == FileStatus.COMPLETED
