"""Structured logging for the notes service.

Every event carries the deployment it came from (``service`` and
``environment``), and request handlers bind the signed-in account so store
and pipeline events can be traced back to the session that caused them.
"""

import logging
import sys
from functools import lru_cache
from typing import Optional

import structlog

from .config import Settings, get_settings

# Libraries that log every HTTP round trip at INFO/DEBUG.
NOISY_LOGGERS = ("botocore", "boto3", "urllib3")


def stamp_deployment(namespace: str, environment: str):
    """Processor adding the deployment to each event unless the caller already set it."""

    def processor(logger, method_name, event_dict):
        event_dict.setdefault("service", namespace)
        event_dict.setdefault("environment", environment)
        return event_dict

    return processor


def configure_logging(settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper())

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.root.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            stamp_deployment(settings.namespace, settings.environment),
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)
    formatter = structlog.stdlib.ProcessorFormatter(processor=renderer)

    for handler in logging.root.handlers:
        handler.setFormatter(formatter)


@lru_cache(maxsize=100)
def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_request(account: Optional[str] = None, **extra) -> None:
    """Start a fresh log context for one request; ``None`` values are left out."""
    structlog.contextvars.clear_contextvars()
    values = {"account": account, **extra}
    structlog.contextvars.bind_contextvars(**{k: v for k, v in values.items() if v is not None})


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
