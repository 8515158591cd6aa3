import dataclasses

import dotenv

from files_nest.utils import as_bool
from files_nest.utils import env


dotenv.load_dotenv()

LOCK_BACKENDS = ("local", "redis")


@dataclasses.dataclass
class Config:
    """Application configuration settings."""

    # Database Configuration
    database_url: str = env("DATABASE_URL:sqlite+aiosqlite:///./files_nest.db")

    # Redis (per-file locks when running more than one instance)
    redis_url: str = env("REDIS_URL:redis://127.0.0.1:6379/0")

    # Blob storage
    blob_store_dir: str = env("FILES_NEST_BLOB_STORE_DIR:/var/lib/files_nest/blobs")
    blob_read_chunk_size: int = env("FILES_NEST_BLOB_READ_CHUNK_SIZE:1048576", convert=int)  # 1 MiB

    # Reassembly locking
    lock_backend: str = env("FILES_NEST_LOCK_BACKEND:local")
    lock_ttl_ms: int = env("FILES_NEST_LOCK_TTL_MS:300000", convert=int)  # 5 minutes
    lock_wait_timeout_seconds: float = env("FILES_NEST_LOCK_WAIT_TIMEOUT_SECONDS:60", convert=float)
    lock_poll_interval_seconds: float = env("FILES_NEST_LOCK_POLL_INTERVAL_SECONDS:0.05", convert=float)

    # Upload limits
    max_chunk_size_bytes: int = env("FILES_NEST_MAX_CHUNK_SIZE_BYTES:134217728", convert=int)  # 128 MB
    max_chunks_per_file: int = env("FILES_NEST_MAX_CHUNKS_PER_FILE:10000", convert=int)
    # in_progress uploads untouched for this long are treated as abandoned and may be restarted
    stale_upload_seconds: int = env("FILES_NEST_STALE_UPLOAD_SECONDS:3600", convert=int)

    # Logging
    log_level: str = env("LOG_LEVEL:INFO")
    loki_url: str = env("LOKI_URL:", convert=str)
    loki_enabled: bool = env("LOKI_ENABLED:false", convert=as_bool)

    # Server Configuration
    host: str = env("HOST:0.0.0.0")
    port: int = env("PORT:8080", convert=int)
    environment: str = env("ENVIRONMENT")
    enable_api_docs: bool = env("ENABLE_API_DOCS:false", convert=as_bool)
    create_schema_on_startup: bool = env("FILES_NEST_CREATE_SCHEMA_ON_STARTUP:true", convert=as_bool)


def get_config() -> Config:
    """Get application configuration."""
    cfg = Config()

    env_value = getattr(cfg, "environment", None)
    if not env_value or not env_value.strip():
        raise ValueError("ENVIRONMENT variable is required but not set or empty")

    backend = (cfg.lock_backend or "local").strip().lower()
    if backend not in LOCK_BACKENDS:
        raise ValueError(f"FILES_NEST_LOCK_BACKEND must be one of {LOCK_BACKENDS}, got {cfg.lock_backend!r}")
    cfg.lock_backend = backend

    if cfg.max_chunks_per_file < 1:
        raise ValueError("FILES_NEST_MAX_CHUNKS_PER_FILE must be at least 1")

    return cfg
