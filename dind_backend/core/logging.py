"""
dind_backend/core/logging.py
structlog configuration shared by the API, the lifecycle coordinator and the adapters.

Every record carries the service identity so lifecycle events
(phase changes, dependency transitions, drain outcomes) can be
filtered per deployment without extra binding at call sites.
"""

import logging
import sys
from typing import Any, Dict, List, Optional

import structlog
from structlog.stdlib import BoundLogger
from structlog.types import EventDict, Processor

from .config import Settings, get_settings

LOGGER_NAMESPACE = "dind.backend"

# Driver and server loggers that flood INFO with per-connection chatter
NOISY_LOGGERS = ("pymongo", "redis", "uvicorn.access", "websockets")


def _service_identity(settings: Settings) -> Processor:
    identity = {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }

    def add_identity(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        for key, value in identity.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_identity


def _renderer(settings: Settings) -> List[Processor]:
    if settings.LOG_FORMAT == "console":
        return [structlog.dev.ConsoleRenderer(colors=settings.is_development)]
    return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]


def setup_logging(settings: Optional[Settings] = None) -> BoundLogger:
    """Route structlog through stdlib logging at the configured level and format."""
    settings = settings or get_settings()
    level = getattr(logging, settings.LOG_LEVEL)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            _service_identity(settings),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            *_renderer(settings),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logger = get_logger()
    logger.info("logging_configured", level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)
    return logger


def get_logger(name: Optional[str] = None) -> BoundLogger:
    """Logger under the service namespace, e.g. ``get_logger("lifecycle")``."""
    return structlog.get_logger(f"{LOGGER_NAMESPACE}.{name}" if name else LOGGER_NAMESPACE)


class LogContext:
    """
    Bind keys to every log line emitted inside the block.

    Nested blocks stack: leaving one restores whatever the enclosing
    block had bound, so a request id survives a per-dependency context.

        with LogContext(request_id=rid):
            with LogContext(dependency="cache"):
                logger.info("dependency_checked")
    """

    def __init__(self, **context: Any):
        self.context = context
        self._tokens: Dict[str, Any] = {}

    def __enter__(self) -> "LogContext":
        self._tokens = structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        structlog.contextvars.reset_contextvars(**self._tokens)
        self._tokens = {}
        return False


__all__ = ["LOGGER_NAMESPACE", "setup_logging", "get_logger", "LogContext"]
