"""Structured logging configuration.

Features:
- JSON formatted logs for aggregation
- Lock context fields (resource type, resource id, user) on every record
- Error tracking
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from resource_locking.core.config import Settings

SERVICE_NAME = "resource-locking"

# Record attributes copied into the JSON payload when a caller passes them via ``extra``
_LOCK_FIELDS = ("resource_type", "resource_id", "user_id", "operation", "removed")


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(
        self,
        service_name: str = SERVICE_NAME,
        environment: str = "production",
        include_stack_trace: bool = True,
    ):
        super().__init__()
        self.service_name = service_name
        self.environment = environment
        self.include_stack_trace = include_stack_trace

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": self.environment,
        }

        log_entry["location"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        for attr in _LOCK_FIELDS:
            if hasattr(record, attr):
                log_entry[attr] = getattr(record, attr)

        if hasattr(record, "extra_fields"):
            log_entry["extra"] = record.extra_fields

        if record.exc_info and self.include_stack_trace:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "stacktrace": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_entry, default=str)


def setup_structured_logging(
    service_name: str = SERVICE_NAME,
    environment: str = "production",
    level: Union[int, str] = logging.INFO,
    json_output: bool = True,
    stream: Optional[Any] = None,
) -> None:
    """Configure root logging for the application."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setLevel(level)

    if json_output:
        formatter: logging.Formatter = StructuredFormatter(
            service_name=service_name,
            environment=environment,
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)


def setup_logging_from_settings(settings: Settings, stream: Optional[Any] = None) -> None:
    setup_structured_logging(
        environment=settings.ENVIRONMENT,
        level=settings.LOG_LEVEL,
        json_output=settings.LOG_JSON,
        stream=stream,
    )
