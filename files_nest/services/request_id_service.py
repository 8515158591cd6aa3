"""Per-request values that log records pick up without being passed around."""

import contextvars
import re
import uuid
from typing import Optional


request_id_context: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="no-request-id")
file_id_context: contextvars.ContextVar[str] = contextvars.ContextVar("file_id", default="-")

_FILE_PATH = re.compile(r"^/files/([0-9a-fA-F-]{32,36})(?:/|$)")


def generate_request_id() -> str:
    """Generate a 16-character hex request ID from UUID4.

    Returns:
        A 16-character lowercase hex string (first 64 bits of UUID4).
        Example: "a1b2c3d4e5f67890"
    """
    return uuid.uuid4().hex[:16]


def file_id_from_path(path: str) -> Optional[str]:
    """The file a request addresses, e.g. ``/files/<id>/chunks/3`` -> ``<id>``."""
    match = _FILE_PATH.match(path)
    if match is None:
        return None
    try:
        return str(uuid.UUID(match.group(1)))
    except ValueError:
        return None
