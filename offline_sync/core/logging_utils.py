from __future__ import annotations

import datetime as dt
import hashlib
import json
import logging
import os
import sys
import uuid
from typing import Any

from loguru import logger as loguru_logger

UTC = dt.UTC

# Attributes every LogRecord carries; anything else came in through ``extra``.
_STANDARD_FIELDS = frozenset(
    {
        "args",
        "msg",
        "name",
        "levelno",
        "levelname",
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
        "message",
    }
)

_TIMING_FIELDS = frozenset({"latency_ms", "duration_ms", "delay_seconds", "attempts"})
_SYNC_FIELDS = frozenset(
    {"collection", "parent_id", "cursor", "added", "updated", "deleted", "error_kind"}
)


class EnhancedJsonFormatter(logging.Formatter):
    """JSON formatter that groups timing and sync counters into their own objects."""

    def __init__(self, include_location: bool = True, include_process_info: bool = False):
        super().__init__()
        self.include_location = include_location
        self.include_process_info = include_process_info
        self.hostname = os.uname().nodename if hasattr(os, "uname") else "unknown"

    def format(self, record: logging.LogRecord) -> str:
        base: dict[str, Any] = {
            "timestamp": dt.datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "hostname": self.hostname,
        }

        if self.include_location:
            base.update(
                {
                    "module": record.module,
                    "function": record.funcName,
                    "line": record.lineno,
                }
            )

        if self.include_process_info:
            base.update(
                {
                    "process": record.process,
                    "thread": record.thread,
                    "task": getattr(record, "taskName", None),
                }
            )

        if record.exc_info:
            base["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        timing: dict[str, Any] = {}
        sync_fields: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _STANDARD_FIELDS or key in base:
                continue
            if key == "correlation_id":
                base["correlation_id"] = value
            elif key in _TIMING_FIELDS:
                timing[key] = value
            elif key in _SYNC_FIELDS:
                sync_fields[key] = value
            else:
                extra[key] = value

        if timing:
            base["timing"] = timing
        if sync_fields:
            base["sync"] = sync_fields
        if extra:
            base["extra"] = extra

        return json.dumps(
            base, ensure_ascii=False, default=self._json_serializer, separators=(",", ":")
        )

    def _json_serializer(self, obj: Any) -> str:
        if hasattr(obj, "value") and hasattr(obj, "name"):  # enums
            return str(obj.value)
        if hasattr(obj, "isoformat"):
            return obj.isoformat()
        return str(obj)


class _InterceptHandler(logging.Handler):
    """Forward stdlib records (with their ``extra`` payload) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        level: int | str
        try:
            level = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if not key.startswith("_") and key not in _STANDARD_FIELDS
        }
        loguru_logger.bind(logger=record.name, **extra).opt(
            depth=6, exception=record.exc_info
        ).log(level, record.getMessage())


def setup_json_logging(
    level: str = "INFO",
    *,
    use_loguru: bool = True,
    log_file: str | None = None,
    max_file_size: str = "20 MB",
    retention: str = "14 days",
) -> None:
    """Configure structured JSON logging for the sync core.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_loguru: Route records through loguru's serializing sink; otherwise use
            the stdlib ``EnhancedJsonFormatter``
        log_file: Optional log file path for persistent logging
        max_file_size: Rotation size for the loguru file sink
        retention: Retention period for the loguru file sink
    """
    lvl = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(lvl)

    if use_loguru:
        loguru_logger.remove()
        loguru_logger.add(sys.stdout, level=level.upper(), serialize=True, enqueue=True)
        if log_file:
            loguru_logger.add(
                log_file,
                level=level.upper(),
                serialize=True,
                rotation=max_file_size,
                retention=retention,
                compression="gz",
                enqueue=True,
            )
        root.addHandler(_InterceptHandler())
    else:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(EnhancedJsonFormatter())
        root.addHandler(console_handler)
        if log_file:
            from logging.handlers import RotatingFileHandler

            file_handler = RotatingFileHandler(
                log_file, maxBytes=20 * 1024 * 1024, backupCount=5
            )
            file_handler.setFormatter(EnhancedJsonFormatter())
            root.addHandler(file_handler)

    # httpx logs every request line at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("peewee").setLevel(logging.INFO)

    logging.getLogger(__name__).info(
        "logging_initialized",
        extra={"level": level, "use_loguru": use_loguru, "log_file": log_file},
    )


def generate_correlation_id() -> str:
    """Generate a short correlation ID for tracing one sync pass across log records."""
    return uuid.uuid4().hex[:12]


def token_fingerprint(token: str | None) -> str | None:
    """Return a short, non-reversible token fingerprint that is safe to log."""
    if not token:
        return None
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:8]


def truncate_log_content(content: str | None, max_length: int = 500) -> str | None:
    """Truncate large content (e.g. unexpected response bodies) for logging."""
    if not content or len(content) <= max_length:
        return content
    return content[:max_length] + "... [truncated]"


__all__ = [
    "EnhancedJsonFormatter",
    "generate_correlation_id",
    "setup_json_logging",
    "token_fingerprint",
    "truncate_log_content",
]
