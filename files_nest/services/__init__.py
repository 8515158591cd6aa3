from .file_service import FileService
from .file_service import FileView
from .reassembly import ReassemblyCoordinator
from .status_aggregator import derive_file_status
from .status_aggregator import effective_file_status
from .upload_state_machine import UploadStateMachine


__all__ = [
    "FileService",
    "FileView",
    "ReassemblyCoordinator",
    "UploadStateMachine",
    "derive_file_status",
    "effective_file_status",
]
