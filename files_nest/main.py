"""Main application module for the files-nest service."""

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from typing import Optional

import redis.asyncio as async_redis
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from files_nest.api.errors import register_error_handlers
from files_nest.api.files import router as files_router
from files_nest.api.middlewares import parse_internal_headers_middleware
from files_nest.config import Config
from files_nest.config import get_config
from files_nest.locks import FileLockManager
from files_nest.locks import build_lock_manager
from files_nest.logging_config import setup_loki_logging
from files_nest.orm import create_schema
from files_nest.orm import initialize_engine
from files_nest.orm.session import get_session_factory
from files_nest.services import FileService
from files_nest.services import ReassemblyCoordinator
from files_nest.services import UploadStateMachine
from files_nest.storage import BlobStore
from files_nest.storage import FileSystemBlobStore
from files_nest.utils import as_bool


logger = logging.getLogger(__name__)


def wire_services(
    app: FastAPI,
    config: Config,
    session_factory: async_sessionmaker[AsyncSession],
    blob_store: BlobStore,
    locks: FileLockManager,
) -> None:
    """Attach the core services to ``app.state``."""
    coordinator = ReassemblyCoordinator(session_factory, blob_store, locks)
    app.state.config = config
    app.state.blob_store = blob_store
    app.state.locks = locks
    app.state.coordinator = coordinator
    app.state.file_service = FileService(
        session_factory,
        blob_store,
        locks,
        coordinator,
        max_chunks_per_file=config.max_chunks_per_file,
    )
    app.state.upload_state_machine = UploadStateMachine(
        session_factory,
        blob_store,
        locks,
        coordinator,
        max_chunk_size_bytes=config.max_chunk_size_bytes,
        stale_upload_seconds=config.stale_upload_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """FastAPI application lifespan handler."""
    config = get_config()
    setup_loki_logging(config, "api")

    engine = initialize_engine(config.database_url)
    logger.info("SQLAlchemy async engine initialized")
    if config.create_schema_on_startup:
        await create_schema(engine)

    redis_client: Optional[async_redis.Redis] = None
    if config.lock_backend == "redis":
        redis_client = async_redis.from_url(config.redis_url)
        logger.info("Redis client initialized for file locks")

    blob_store = FileSystemBlobStore(config.blob_store_dir, read_chunk_size=config.blob_read_chunk_size)
    locks = build_lock_manager(config, redis_client)
    wire_services(app, config, get_session_factory(), blob_store, locks)
    logger.info(f"Services initialized lock_backend={config.lock_backend} blob_store_dir={config.blob_store_dir}")

    try:
        yield
    finally:
        if redis_client is not None:
            await redis_client.aclose()
        await engine.dispose()
        logger.info("Shutdown complete")


def factory(use_lifespan: bool = True, enable_docs: bool = False) -> FastAPI:
    """Build the FastAPI application. Tests pass ``use_lifespan=False`` and wire services themselves."""
    app = FastAPI(
        title="files-nest",
        description="Chunked file uploads with exactly-once reassembly",
        lifespan=lifespan if use_lifespan else None,
        docs_url="/docs" if enable_docs else None,
        redoc_url=None,
        openapi_url="/openapi.json" if enable_docs else None,
    )

    app.middleware("http")(parse_internal_headers_middleware)
    register_error_handlers(app)
    app.include_router(files_router)

    @app.get("/health", include_in_schema=False)
    async def health() -> dict:
        return {"status": "healthy", "service": "files-nest"}

    return app


app = factory(enable_docs=as_bool(os.environ.get("ENABLE_API_DOCS", "false")))


if __name__ == "__main__":
    import uvicorn

    config = get_config()
    debug_mode = os.getenv("DEBUG", "false").lower() == "true"
    uvicorn.run("files_nest.main:app", host=config.host, port=config.port, reload=debug_mode, access_log=True)
