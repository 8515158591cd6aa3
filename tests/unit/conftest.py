import os
from datetime import datetime
from datetime import timezone
from pathlib import Path
from typing import AsyncGenerator
from typing import Awaitable
from typing import Callable
from typing import Generator

import dotenv
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from files_nest.locks import LocalFileLocks
from files_nest.orm import create_engine
from files_nest.orm import create_schema
from files_nest.orm import create_session_factory
from files_nest.services import FileService
from files_nest.services import FileView
from files_nest.services import ReassemblyCoordinator
from files_nest.services import UploadStateMachine
from tests.unit.support import OWNER
from tests.unit.support import SpyBlobStore


@pytest.fixture(scope="session", autouse=True)
def _load_test_env() -> Generator[None, None, None]:
    """Load test environment variables from the defaults file."""
    project_root = Path(__file__).parents[2]
    dotenv.load_dotenv(project_root / ".env.defaults", override=True)
    os.environ["ENVIRONMENT"] = "test"
    os.environ["FILES_NEST_LOCK_BACKEND"] = "local"
    yield


@pytest_asyncio.fixture
async def db_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'files_nest.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest.fixture
def blob_store(tmp_path: Path) -> SpyBlobStore:
    return SpyBlobStore(str(tmp_path / "blobs"))


@pytest.fixture
def locks() -> LocalFileLocks:
    return LocalFileLocks(wait_timeout_seconds=10)


@pytest.fixture
def coordinator(
    session_factory: async_sessionmaker[AsyncSession], blob_store: SpyBlobStore, locks: LocalFileLocks
) -> ReassemblyCoordinator:
    return ReassemblyCoordinator(session_factory, blob_store, locks)


@pytest.fixture
def file_service(
    session_factory: async_sessionmaker[AsyncSession],
    blob_store: SpyBlobStore,
    locks: LocalFileLocks,
    coordinator: ReassemblyCoordinator,
) -> FileService:
    return FileService(session_factory, blob_store, locks, coordinator, max_chunks_per_file=100)


@pytest.fixture
def state_machine(
    session_factory: async_sessionmaker[AsyncSession],
    blob_store: SpyBlobStore,
    locks: LocalFileLocks,
    coordinator: ReassemblyCoordinator,
) -> UploadStateMachine:
    return UploadStateMachine(
        session_factory,
        blob_store,
        locks,
        coordinator,
        max_chunk_size_bytes=64,
        stale_upload_seconds=60,
    )


@pytest.fixture
def make_file(file_service: FileService) -> Callable[..., Awaitable[FileView]]:
    async def _make_file(chunks: int = 3, name: str = "report.pdf", owner: str = OWNER) -> FileView:
        return await file_service.create_file(
            owner,
            name=name,
            create_datetime=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
            chunks_count=chunks,
            checksum="abc123",
        )

    return _make_file
