"""
Structured Logging Configuration
================================

structlog setup for the validation service. Events carry the service name
and version, request-scoped context bound by the telemetry middleware, and
SQL fields with string literals masked so values from user queries do not
end up in log storage.
"""

import logging
import os
import sys
from typing import Any, MutableMapping, Optional

import structlog
from structlog.types import Processor

from sql_validation.sql_elements import mask_sql

SERVICE_NAME = "sql-validation"
SQL_FIELDS = ("sql", "original_sql", "corrected_sql")
MAX_SQL_LOG_LENGTH = 500

NOISY_LOGGERS = ("uvicorn.access", "httpx", "opentelemetry")


def mask_sql_fields(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask literals in SQL-valued fields and truncate long statements."""
    for key in SQL_FIELDS:
        value = event_dict.get(key)
        if isinstance(value, str):
            masked = mask_sql(value)
            if len(masked) > MAX_SQL_LOG_LENGTH:
                masked = masked[:MAX_SQL_LOG_LENGTH] + "..."
            event_dict[key] = masked
    return event_dict


def service_info(version: str) -> Processor:
    def add_service_info(
        logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("version", version)
        return event_dict

    return add_service_info


def setup_logging(
    level: Optional[str] = None,
    json_format: Optional[bool] = None,
    version: str = "0.1.0",
) -> None:
    """
    Configure structured logging for the service.

    Args:
        level: Log level (default: LOG_LEVEL env or INFO)
        json_format: Render JSON (default: LOG_FORMAT=json or ENVIRONMENT=production)
        version: Service version attached to every event
    """
    log_level = level or os.getenv("LOG_LEVEL", "INFO")
    if json_format is None:
        json_format = (
            os.getenv("LOG_FORMAT", "").lower() == "json"
            or os.getenv("ENVIRONMENT", "development") == "production"
        )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        service_info(version),
        mask_sql_fields,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_format:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # uvicorn and library records go through the same renderer
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level.upper())

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> Any:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind request-scoped values (e.g. request_id) to subsequent events."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
