"""Files API: declare a chunked file, upload its chunks, manage its metadata."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Header
from fastapi import Query
from fastapi import Request
from fastapi.responses import StreamingResponse

from files_nest.api.schemas import FileCreate
from files_nest.api.schemas import FileEnvelope
from files_nest.api.schemas import FileListEnvelope
from files_nest.api.schemas import FileOut
from files_nest.api.schemas import FileUpdate
from files_nest.api.schemas import PageMeta
from files_nest.api.schemas import UploadEnvelope
from files_nest.api.schemas import UploadOut
from files_nest.dependencies import get_file_service
from files_nest.dependencies import get_owner_id
from files_nest.dependencies import get_upload_state_machine
from files_nest.services.file_service import FileService
from files_nest.services.upload_state_machine import UploadStateMachine


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/files", tags=["files"])


def _includes_uploads(include: Optional[str]) -> bool:
    return "uploads" in {part.strip() for part in (include or "").split(",")}


@router.get("", response_model=FileListEnvelope)
async def list_files(
    limit: int = Query(15, ge=1, le=100),
    offset: int = Query(0, ge=0),
    include: Optional[str] = Query(None),
    owner_id: str = Depends(get_owner_id),
    file_service: FileService = Depends(get_file_service),
) -> FileListEnvelope:
    views, total = await file_service.list_files(owner_id, limit=limit, offset=offset)
    with_uploads = _includes_uploads(include)
    return FileListEnvelope(
        data=[FileOut.from_view(v, include_uploads=with_uploads) for v in views],
        meta=PageMeta(total=total, limit=limit, offset=offset),
    )


@router.post("", status_code=201, response_model=FileEnvelope)
async def create_file(
    body: FileCreate,
    include: Optional[str] = Query(None),
    owner_id: str = Depends(get_owner_id),
    file_service: FileService = Depends(get_file_service),
) -> FileEnvelope:
    view = await file_service.create_file(
        owner_id,
        name=body.name,
        create_datetime=body.create_datetime,
        chunks_count=body.chunks_count,
        checksum=body.checksum,
    )
    return FileEnvelope(data=FileOut.from_view(view, include_uploads=_includes_uploads(include)))


@router.get("/{file_id}", response_model=FileEnvelope)
async def show_file(
    file_id: UUID,
    include: Optional[str] = Query(None),
    owner_id: str = Depends(get_owner_id),
    file_service: FileService = Depends(get_file_service),
) -> FileEnvelope:
    view = await file_service.get_file(owner_id, file_id)
    return FileEnvelope(data=FileOut.from_view(view, include_uploads=_includes_uploads(include)))


@router.patch("/{file_id}", response_model=FileEnvelope)
async def update_file(
    file_id: UUID,
    body: FileUpdate,
    include: Optional[str] = Query(None),
    owner_id: str = Depends(get_owner_id),
    file_service: FileService = Depends(get_file_service),
) -> FileEnvelope:
    view = await file_service.update_file(
        owner_id,
        file_id,
        name=body.name,
        checksum=body.checksum,
        create_datetime=body.create_datetime,
    )
    return FileEnvelope(data=FileOut.from_view(view, include_uploads=_includes_uploads(include)))


@router.delete("/{file_id}", response_model=FileEnvelope)
async def delete_file(
    file_id: UUID,
    owner_id: str = Depends(get_owner_id),
    file_service: FileService = Depends(get_file_service),
) -> FileEnvelope:
    view = await file_service.get_file(owner_id, file_id)
    await file_service.delete_file(owner_id, file_id)
    return FileEnvelope(data=FileOut.from_view(view))


@router.put("/{file_id}/chunks/{chunk_number}", response_model=UploadEnvelope)
async def upload_chunk(
    file_id: UUID,
    chunk_number: int,
    request: Request,
    content_md5: Optional[str] = Header(None, alias="Content-MD5"),
    owner_id: str = Depends(get_owner_id),
    state_machine: UploadStateMachine = Depends(get_upload_state_machine),
) -> UploadEnvelope:
    logger.info(f"[PUT] chunk file={file_id} chunk={chunk_number}")
    upload = await state_machine.begin_chunk_upload(
        owner_id,
        file_id,
        chunk_number,
        request.stream(),
        content_md5=content_md5,
    )
    return UploadEnvelope(
        data=UploadOut(
            id=upload.upload_id,
            number=upload.chunk_number,
            status=upload.status,
            size_bytes=upload.size_bytes,
            etag=upload.etag,
            created_at=upload.created_at,
            updated_at=upload.updated_at,
        )
    )


@router.post("/{file_id}/reassemble", response_model=FileEnvelope)
async def reassemble_file(
    file_id: UUID,
    owner_id: str = Depends(get_owner_id),
    file_service: FileService = Depends(get_file_service),
) -> FileEnvelope:
    view = await file_service.retry_reassembly(owner_id, file_id)
    return FileEnvelope(data=FileOut.from_view(view))


@router.get("/{file_id}/content")
async def download_file(
    file_id: UUID,
    owner_id: str = Depends(get_owner_id),
    file_service: FileService = Depends(get_file_service),
) -> StreamingResponse:
    file, stream = await file_service.open_content(owner_id, file_id)
    headers = {"Content-Disposition": f'attachment; filename="{file.name}"'}
    if file.size_bytes is not None:
        headers["Content-Length"] = str(file.size_bytes)
    return StreamingResponse(stream, media_type="application/octet-stream", headers=headers)
