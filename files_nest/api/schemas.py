from datetime import datetime
from typing import List
from typing import Optional
from uuid import UUID

from pydantic import BaseModel
from pydantic import Field

from files_nest.models.enums import FileStatus
from files_nest.models.enums import UploadStatus
from files_nest.services.file_service import FileView


class FileCreate(BaseModel):
    """File declaration request schema."""

    name: str = Field(..., min_length=1, max_length=255, description="File name, unique per owner")
    create_datetime: datetime = Field(..., description="Client-side creation time of the file")
    checksum: Optional[str] = Field(None, max_length=255, description="Opaque client integrity tag")
    chunks_count: int = Field(..., ge=1, description="Number of chunks the file will be uploaded in")


class FileUpdate(BaseModel):
    """Metadata edit request schema. Omitted fields are left unchanged."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    checksum: Optional[str] = Field(None, max_length=255)
    create_datetime: Optional[datetime] = None


class UploadOut(BaseModel):
    id: UUID
    number: int
    status: UploadStatus
    size_bytes: Optional[int] = None
    etag: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class FileOut(BaseModel):
    id: UUID
    name: str
    create_datetime: datetime
    checksum: Optional[str] = None
    status: FileStatus
    chunks_count: int
    size_bytes: Optional[int] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    uploads: Optional[List[UploadOut]] = None

    @classmethod
    def from_view(cls, view: FileView, include_uploads: bool = False) -> "FileOut":
        file = view.file
        uploads = None
        if include_uploads:
            uploads = [
                UploadOut(
                    id=u.upload_id,
                    number=u.chunk_number,
                    status=u.status,
                    size_bytes=u.size_bytes,
                    etag=u.etag,
                    created_at=u.created_at,
                    updated_at=u.updated_at,
                )
                for u in view.uploads
            ]
        return cls(
            id=file.file_id,
            name=file.name,
            create_datetime=file.create_datetime,
            checksum=file.checksum,
            status=view.status,
            chunks_count=file.expected_chunk_count,
            size_bytes=file.size_bytes,
            created_at=file.created_at,
            updated_at=file.updated_at,
            uploads=uploads,
        )


class FileEnvelope(BaseModel):
    data: FileOut


class UploadEnvelope(BaseModel):
    data: UploadOut


class PageMeta(BaseModel):
    total: int
    limit: int
    offset: int


class FileListEnvelope(BaseModel):
    data: List[FileOut]
    meta: PageMeta
