"""JSON error responses for the files API."""

import logging

from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.requests import ClientDisconnect

from files_nest.errors import FilesNestError


logger = logging.getLogger(__name__)


def error_response(code: str, message: str, status_code: int = 400, *, retryable: bool = False) -> JSONResponse:
    headers = {"x-error-code": code}
    if retryable:
        headers["Retry-After"] = "1"
    return JSONResponse(
        status_code=status_code,
        content={"code": code, "message": message, "retryable": retryable},
        headers=headers,
    )


async def files_nest_error_handler(request: Request, exc: FilesNestError) -> JSONResponse:
    if exc.retryable:
        logger.warning(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
    return error_response(exc.code, exc.message, exc.status_code, retryable=exc.retryable)


async def client_disconnect_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning(f"Client disconnected during {request.method} {request.url.path}")
    return error_response("RequestTimeout", "Client disconnected during upload", 408, retryable=True)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FilesNestError, files_nest_error_handler)
    app.add_exception_handler(ClientDisconnect, client_disconnect_handler)
