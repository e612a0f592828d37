"""
Structured logging for the micro-lesson pipeline.

Every pipeline run executes in its own asyncio task, so run-scoped fields
bound with ``bind_run_context`` stay attached to every event the run's
services emit and never leak into a concurrent run.
"""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.stdlib import LoggerFactory

from .config import settings

# Chatty libraries that log every request at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "yt_dlp", "asyncio")


def _drop_empty_fields(logger, method_name, event_dict):
    return {key: value for key, value in event_dict.items() if value is not None}


def _ensure_file_handler(root: logging.Logger, path, level: int) -> None:
    resolved = str(path.resolve())
    if any(getattr(h, "baseFilename", None) == resolved for h in root.handlers):
        return
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    root.addHandler(handler)


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure structlog over stdlib logging.

    Events go to stdout, to ``pipeline.log`` and, from ERROR up, to
    ``errors.log`` under ``logs_dir``. Calling it again only changes the
    level and renderer; file handlers are not duplicated.
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    renderer = (
        structlog.processors.JSONRenderer()
        if (log_format or settings.log_format) == "json"
        else structlog.dev.ConsoleRenderer()
    )
    settings.logs_dir.mkdir(parents=True, exist_ok=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _drop_empty_fields,
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    root = logging.getLogger()
    root.setLevel(level)
    _ensure_file_handler(root, settings.logs_dir / "pipeline.log", logging.INFO)
    _ensure_file_handler(root, settings.logs_dir / "errors.log", logging.ERROR)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def bind_run_context(**fields: Any) -> None:
    """Attach run-scoped fields (video_id, run_id, stage) to the current task's log events."""
    structlog.contextvars.bind_contextvars(**fields)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class LoggerMixin:
    """Gives a service ``self.logger`` named after its class."""

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        return get_logger(self.__class__.__name__)


setup_logging()
