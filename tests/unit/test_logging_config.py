import logging
from unittest.mock import Mock
from unittest.mock import patch
from uuid import uuid4

import httpx
import pytest
from fastapi import FastAPI

from files_nest.api.middlewares import parse_internal_headers_middleware
from files_nest.logging_config import NOISY_LOGGERS
from files_nest.logging_config import RequestContextFilter
from files_nest.logging_config import loki_labels
from files_nest.logging_config import setup_loki_logging
from files_nest.services.request_id_service import file_id_context
from files_nest.services.request_id_service import file_id_from_path
from files_nest.services.request_id_service import generate_request_id
from files_nest.services.request_id_service import request_id_context


@pytest.fixture
def mock_config():
    config = Mock()
    config.log_level = "INFO"
    config.loki_enabled = False
    config.loki_url = ""
    config.environment = "test"
    return config


def _record() -> logging.LogRecord:
    return logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test.py",
        lineno=10,
        msg="Test message",
        args=(),
        exc_info=None,
    )


def test_context_filter_adds_defaults_outside_a_request():
    record = _record()

    result = RequestContextFilter().filter(record)

    assert result is True
    assert (record.request_id, record.file_id) == ("no-request-id", "-")


def test_context_filter_reads_request_and_file_context():
    record = _record()
    file_id = str(uuid4())
    request_token = request_id_context.set("a1b2c3d4e5f67890")
    file_token = file_id_context.set(file_id)
    try:
        RequestContextFilter().filter(record)
    finally:
        file_id_context.reset(file_token)
        request_id_context.reset(request_token)

    assert (record.request_id, record.file_id) == ("a1b2c3d4e5f67890", file_id)


def test_context_filter_preserves_explicit_extra():
    logger = logging.getLogger("test_context_filter_logger")
    logger.setLevel(logging.INFO)
    log_records = []

    class RecordCapture(logging.Handler):
        def emit(self, record):
            log_records.append(record)

    capture_handler = RecordCapture()
    capture_handler.addFilter(RequestContextFilter())
    logger.addHandler(capture_handler)

    logger.info("Test message")
    logger.info("Test message", extra={"request_id": "given", "file_id": "f-1"})

    assert [(r.request_id, r.file_id) for r in log_records] == [("no-request-id", "-"), ("given", "f-1")]
    logger.handlers.clear()


def test_generate_request_id_is_short_hex():
    request_id = generate_request_id()

    assert len(request_id) == 16
    int(request_id, 16)


@pytest.mark.parametrize(
    "path,expected",
    [
        ("/files/{id}", True),
        ("/files/{id}/chunks/3", True),
        ("/files/{hex}/content", True),
        ("/files", False),
        ("/files/not-a-uuid/chunks/1", False),
        ("/health", False),
    ],
)
def test_file_id_from_path(path, expected):
    file_id = uuid4()
    parsed = file_id_from_path(path.format(id=file_id, hex=file_id.hex))

    assert parsed == (str(file_id) if expected else None)


def test_loki_labels_identify_app_and_service(mock_config):
    with patch.dict("os.environ", {"HOSTNAME": "node-7"}):
        labels = loki_labels(mock_config, "api")

    assert labels == {"app": "files-nest", "service": "api", "environment": "test", "host": "node-7"}


def test_setup_loki_logging_returns_service_logger_and_quiets_drivers(mock_config):
    logger = setup_loki_logging(mock_config, "test_service")

    assert isinstance(logger, logging.Logger)
    assert logger.name == "test_service"
    assert all(logging.getLogger(name).level == logging.WARNING for name in NOISY_LOGGERS)


def test_setup_loki_logging_skips_loki_without_url(mock_config):
    mock_config.loki_enabled = True
    mock_config.loki_url = ""

    with patch("files_nest.logging_config.LokiLoggerHandler") as handler_cls:
        setup_loki_logging(mock_config, "test_service", include_context=False)

    handler_cls.assert_not_called()


def test_setup_loki_logging_attaches_loki_handler(mock_config):
    mock_config.loki_enabled = True
    mock_config.loki_url = "http://loki:3100/loki/api/v1/push"

    with patch("files_nest.logging_config.LokiLoggerHandler") as handler_cls:
        handler_cls.return_value = logging.NullHandler()
        setup_loki_logging(mock_config, "create_schema", include_context=False)

    kwargs = handler_cls.call_args.kwargs
    assert kwargs["url"] == "http://loki:3100/loki/api/v1/push"
    assert kwargs["labels"]["service"] == "create_schema"
    assert kwargs["labels"]["app"] == "files-nest"


@pytest.mark.asyncio
async def test_middleware_exposes_file_id_to_log_records():
    app = FastAPI()
    app.middleware("http")(parse_internal_headers_middleware)
    seen = {}

    @app.get("/files/{file_id}")
    async def show(file_id: str) -> dict:
        record = _record()
        RequestContextFilter().filter(record)
        seen.update(request_id=record.request_id, file_id=record.file_id)
        return {}

    file_id = str(uuid4())
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get(f"/files/{file_id}", headers={"X-Request-ID": "req-42"})

    assert response.headers["X-Request-ID"] == "req-42"
    assert seen == {"request_id": "req-42", "file_id": file_id}
    assert file_id_context.get() == "-"
