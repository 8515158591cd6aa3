from fastapi import Request

from files_nest.errors import AccessDenied
from files_nest.services.file_service import FileService
from files_nest.services.upload_state_machine import UploadStateMachine


def get_file_service(request: Request) -> FileService:
    file_service: FileService = request.app.state.file_service
    return file_service


def get_upload_state_machine(request: Request) -> UploadStateMachine:
    state_machine: UploadStateMachine = request.app.state.upload_state_machine
    return state_machine


def get_owner_id(request: Request) -> str:
    """Authenticated owner identity, as forwarded by the gateway."""
    owner_id = getattr(request.state, "owner_id", "")
    if not owner_id:
        raise AccessDenied("Authentication required")
    return str(owner_id)
