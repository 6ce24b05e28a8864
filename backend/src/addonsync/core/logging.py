"""Logging configuration for the AddonSync backend.

Sets up readable console logging (colored text in development, JSON for
production/monitoring) and an optional per-host log file. Sync services
attach identifiers through ``extra={...}``; those fields are rendered by
both formatters. Credentials and auth keys must never be passed as extras.
"""

import json
import logging
import os
import socket
import sys
import traceback
from datetime import UTC, datetime
from pathlib import Path
from typing import ClassVar

from .config import get_settings_instance

# Internal guard to prevent double configuration when setup_logging() is called
# both at import-time and again during lifespan startup
_LOGGING_CONFIGURED = False

_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "getMessage",
    }
)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for human-readable logs."""

    COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        level_color = self.COLORS.get(record.levelname, "") if self.use_colors else ""
        reset_color = self.COLORS["RESET"] if self.use_colors else ""

        timestamp = datetime.fromtimestamp(record.created, UTC).strftime("%Y-%m-%d %H:%M:%S")
        message = record.getMessage()

        # Only short scalar extras; long values belong in JSON output
        extra_fields = []
        for key, value in record.__dict__.items():
            if key in _RESERVED_RECORD_KEYS or value is None:
                continue
            if isinstance(value, (str, int, float, bool)) and len(str(value)) < 100:
                extra_fields.append(f"{key}={value}")

        log_line = f"{timestamp} - {level_color}{record.levelname}{reset_color} - {record.name} - {message}"
        if extra_fields:
            log_line += f" | {' '.join(extra_fields)}"

        if record.exc_info:
            exc_info = traceback.format_exception(*record.exc_info)
            log_line += f"\n{level_color}Exception:{reset_color}\n" + "".join(exc_info)

        return log_line


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging (for production/monitoring)."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            exc_type = record.exc_info[0]
            log_data["exception"] = {
                "type": exc_type.__name__ if exc_type is not None else "Unknown",
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging() -> None:
    """Configure root, application and third-party loggers."""
    global _LOGGING_CONFIGURED  # noqa: PLW0603
    if _LOGGING_CONFIGURED:
        return

    settings = get_settings_instance()

    use_colors = settings.environment == "development" and sys.stdout.isatty()
    formatter = JSONFormatter() if settings.log_format == "json" else ColoredFormatter(use_colors=use_colors)

    handlers: list[logging.Handler] = []
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    if settings.log_dir:
        log_dir = Path(settings.log_dir)
        os.makedirs(log_dir, exist_ok=True)
        # Hostname in the filename keeps replicas from writing to the same file
        log_file_path = log_dir / f"addonsync_{socket.gethostname()}.log"
        file_handler = logging.FileHandler(log_file_path, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    level = getattr(logging, settings.log_level)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    for handler in handlers:
        root_logger.addHandler(handler)

    # SQLAlchemy logs SQL at INFO; keep it quiet unless something breaks
    for logger_name in ["sqlalchemy", "sqlalchemy.engine", "sqlalchemy.pool", "sqlalchemy.orm"]:
        logging.getLogger(logger_name).setLevel(logging.ERROR)

    # httpx logs every request at INFO
    for logger_name in ["httpx", "httpcore"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
        uvicorn_log = logging.getLogger(logger_name)
        uvicorn_log.setLevel(level)
        uvicorn_log.handlers.clear()
        for handler in handlers:
            uvicorn_log.addHandler(handler)
        uvicorn_log.propagate = False

    app_logger = logging.getLogger("addonsync")
    app_logger.setLevel(level)
    app_logger.info(
        "Logging configured",
        extra={
            "log_level": settings.log_level,
            "log_format": settings.log_format,
            "environment": settings.environment,
            "use_colors": use_colors,
        },
    )
    _LOGGING_CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name."""
    return logging.getLogger(f"addonsync.{name}")

