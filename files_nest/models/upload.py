from __future__ import annotations

from typing import Optional
from uuid import UUID
from uuid import uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from files_nest.models.base import TimestampMixin
from files_nest.models.enums import UploadStatus


class UploadDB(TimestampMixin, table=True):
    """Upload table - one row per chunk of a file, created up front as placeholders."""

    __tablename__ = "uploads"
    __table_args__ = (UniqueConstraint("file_id", "chunk_number", name="uq_uploads_file_chunk"),)

    upload_id: UUID = Field(default_factory=uuid4, primary_key=True)
    file_id: UUID = Field(foreign_key="files.file_id", index=True, nullable=False, ondelete="CASCADE")
    chunk_number: int = Field(nullable=False)
    status: UploadStatus = Field(default=UploadStatus.PENDING, nullable=False)
    storage_key: Optional[str] = Field(default=None, max_length=1024)
    size_bytes: Optional[int] = Field(default=None)
    etag: Optional[str] = Field(default=None, max_length=64)
    # Token of the writer currently owning this chunk; completion and failure must present it
    attempt_token: Optional[str] = Field(default=None, max_length=32)
