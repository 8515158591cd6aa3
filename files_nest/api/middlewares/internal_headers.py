"""Parse identity headers set by the upstream auth gateway into request.state."""

from typing import Awaitable
from typing import Callable

from fastapi import Request
from fastapi import Response

from files_nest.services.request_id_service import file_id_context
from files_nest.services.request_id_service import file_id_from_path
from files_nest.services.request_id_service import generate_request_id
from files_nest.services.request_id_service import request_id_context


OWNER_HEADER = "X-Owner-Id"
REQUEST_ID_HEADER = "X-Request-ID"


async def parse_internal_headers_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """
    The gateway authenticates the caller and forwards:
    - X-Owner-Id: identity of the authenticated user
    - X-Request-ID: request tracing ID (generated here when absent)

    The request ID and the addressed file ID are exposed to log records for
    the duration of the request.
    """
    request_id = request.headers.get(REQUEST_ID_HEADER) or generate_request_id()
    request_token = request_id_context.set(request_id)
    file_token = file_id_context.set(file_id_from_path(request.url.path) or "-")
    request.state.request_id = request_id
    request.state.owner_id = request.headers.get(OWNER_HEADER, "").strip()

    try:
        response = await call_next(request)
    finally:
        file_id_context.reset(file_token)
        request_id_context.reset(request_token)

    response.headers[REQUEST_ID_HEADER] = request_id
    return response
