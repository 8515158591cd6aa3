"""Error taxonomy for the chunked upload core.

Validation-class errors are surfaced to the caller as rejected requests.
Retryable errors (``IoFault``, ``ReassemblyFailed``, ``LockTimeout``) leave the
persisted state consistent so the same operation can simply be repeated.
"""

from typing import Optional


class FilesNestError(Exception):
    """Base exception for every error raised by the files-nest core."""

    code: str = "InternalError"
    status_code: int = 500
    retryable: bool = False
    default_message: str = ""

    def __init__(self, message: str = "", *, code: Optional[str] = None, status_code: Optional[int] = None):
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

        if not message:
            message = self.default_message or f"Files nest error: {self.code}"

        self.message = message
        super().__init__(message)


class FileNotFound(FilesNestError):
    code = "NotFound"
    status_code = 404
    default_message = "The specified file does not exist"


class ChunkNotFound(FilesNestError):
    code = "NotFound"
    status_code = 404
    default_message = "The specified chunk does not exist"


class AccessDenied(FilesNestError):
    code = "AccessDenied"
    status_code = 403
    default_message = "The file belongs to another owner"


class InvalidState(FilesNestError):
    code = "InvalidState"
    status_code = 400
    default_message = "Operation not allowed in the current file state"


class ChunkOutOfRange(FilesNestError):
    code = "ChunkOutOfRange"
    status_code = 400
    default_message = "Chunk number is outside the expected range"


class ConcurrentUpload(FilesNestError):
    code = "ConcurrentUpload"
    status_code = 409
    default_message = "The chunk is already being uploaded"


class DuplicateName(FilesNestError):
    code = "DuplicateName"
    status_code = 422
    default_message = "A file with this name already exists"


class InvalidRequest(FilesNestError):
    code = "ValidationError"
    status_code = 422
    default_message = "The request is invalid"


class ChunkRejected(FilesNestError):
    code = "ChunkRejected"
    status_code = 400
    default_message = "The chunk payload was rejected"


class IoFault(FilesNestError):
    code = "IoFault"
    status_code = 503
    retryable = True
    default_message = "Blob storage is temporarily unavailable"


class ReassemblyFailed(FilesNestError):
    code = "ReassemblyFailed"
    status_code = 503
    retryable = True
    default_message = "Reassembly failed and will be retried"


class LockTimeout(FilesNestError):
    code = "LockTimeout"
    status_code = 503
    retryable = True
    default_message = "Timed out waiting for the file lock"
