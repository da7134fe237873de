"""
Structured Logging Configuration with structlog

Outputs JSON logs that are searchable in any log aggregator.
Every log includes: version, timestamp and, inside an upload, the
upload_id and the pipeline stage currently running.
"""

import sys
import logging
import structlog
from typing import Optional, Any, Dict
from datetime import datetime
from contextvars import ContextVar
from functools import wraps

# Context variables for upload-scoped logging
upload_id_var: ContextVar[Optional[str]] = ContextVar("upload_id", default=None)
stage_var: ContextVar[Optional[str]] = ContextVar("stage", default=None)

# Application version
APP_VERSION = "1.0.0"


def add_app_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add application context to every log entry."""
    event_dict["version"] = APP_VERSION

    upload_id = upload_id_var.get()
    if upload_id:
        event_dict["upload_id"] = upload_id

    stage = stage_var.get()
    if stage and "stage" not in event_dict:
        event_dict["stage"] = stage

    return event_dict


def add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add ISO format timestamp."""
    event_dict["timestamp"] = datetime.utcnow().isoformat() + "Z"
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    json_format: bool = True
):
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, output JSON; if False, output colored console logs
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Silence noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)

    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            add_timestamp,
            add_app_context,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.UnicodeDecoder(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class LogContext:
    """
    Binds an upload_id to every log line emitted inside the block.

    Usage:
        with LogContext(upload_id="abc123"):
            logger.info("upload_started")
    """

    def __init__(self, upload_id: str):
        self.upload_id = upload_id
        self._token = None

    def __enter__(self):
        self._token = upload_id_var.set(self.upload_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        upload_id_var.reset(self._token)
        return False


def with_logging(stage: str):
    """
    Decorator that logs start, completion and failure of a pipeline stage.

    Stages are synchronous Pillow work; the stage name is bound for the
    duration of the call so nested log lines carry it.

    Usage:
        @with_logging("thumbnail")
        def make_thumbnail(image_bytes: bytes) -> bytes:
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            token = stage_var.set(stage)
            logger.debug("stage_started", stage=stage)
            start_time = datetime.utcnow()

            try:
                result = func(*args, **kwargs)
                duration_ms = int((datetime.utcnow() - start_time).total_seconds() * 1000)
                logger.debug("stage_completed", stage=stage, duration_ms=duration_ms)
                return result
            except Exception as e:
                duration_ms = int((datetime.utcnow() - start_time).total_seconds() * 1000)
                logger.warning(
                    "stage_failed",
                    stage=stage,
                    duration_ms=duration_ms,
                    error=str(e),
                    error_type=type(e).__name__
                )
                raise
            finally:
                stage_var.reset(token)

        return wrapper

    return decorator


# Example log output structure:
# {
#   "timestamp": "2026-05-20T10:00:00Z",
#   "level": "info",
#   "event": "rendition_stored",
#   "rendition": "thumbnail",
#   "upload_id": "550e8400-e29b-41d4-a716-446655440000",
#   "version": "1.0.0",
#   "size_bytes": 18211
# }
