import logging
import os
import sys
from typing import Protocol

from loki_logger_handler.loki_logger_handler import LokiLoggerHandler

from files_nest.services.request_id_service import file_id_context
from files_nest.services.request_id_service import request_id_context


APP_LABEL = "files-nest"

CONTEXT_FORMAT = "%(asctime)s - [%(request_id)s file=%(file_id)s] - %(name)s - %(levelname)s - %(message)s"
PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Driver chatter that drowns out upload logs below WARNING
NOISY_LOGGERS = ("aiosqlite", "asyncio", "httpcore", "httpx")


class LoggingConfig(Protocol):
    log_level: str
    loki_enabled: bool
    loki_url: str
    environment: str


class RequestContextFilter(logging.Filter):
    """Stamp every record with the request ID and the file the request addresses.

    Values passed explicitly through ``extra`` win over the context.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_context.get()
        if not hasattr(record, "file_id"):
            record.file_id = file_id_context.get()
        return True


def loki_labels(config: LoggingConfig, service_name: str) -> dict[str, str]:
    # Low-cardinality only; request and file IDs stay in the log line
    return {
        "app": APP_LABEL,
        "service": service_name,
        "environment": config.environment,
        "host": os.getenv("HOSTNAME", "unknown"),
    }


def _build_handlers(config: LoggingConfig, service_name: str) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.loki_enabled and config.loki_url:
        handlers.append(
            LokiLoggerHandler(
                url=config.loki_url,
                labels=loki_labels(config, service_name),
                timeout=10,
                compressed=True,
            )
        )
    return handlers


def setup_loki_logging(config: LoggingConfig, service_name: str, include_context: bool = True) -> logging.Logger:
    """
    Configure root logging for one files-nest process.

    Args:
        config: Application configuration
        service_name: Process name used as the Loki ``service`` label ("api", "create_schema")
        include_context: Prefix lines with the request and file IDs (off for scripts)

    Returns:
        The service logger
    """
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)
    handlers = _build_handlers(config, service_name)

    if include_context:
        context_filter = RequestContextFilter()
        for handler in handlers:
            handler.addFilter(context_filter)
        log_format = CONTEXT_FORMAT
    else:
        log_format = PLAIN_FORMAT

    logging.basicConfig(level=log_level, format=log_format, handlers=handlers)

    if log_level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger(service_name)
