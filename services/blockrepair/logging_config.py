"""
Logging setup for blockrepair runs.

structlog renders every record, including those from stdlib loggers such as
botocore. A run in a job or pipeline logs one JSON object per line; an
interactive run gets the console renderer.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

APP_NAME = "blockrepair"

# Libraries that log every request at DEBUG/INFO
NOISY_LOGGERS = ("asyncio", "botocore", "aiobotocore", "aioboto3", "urllib3")


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("app", APP_NAME)
    return event_dict


def leading_keys(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Emit level, timestamp and event ahead of the block-specific fields."""
    head = {k: event_dict.pop(k) for k in ("level", "timestamp", "event") if k in event_dict}
    return {**head, **event_dict}


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        add_app_context,
    ]


def configure_logging(json_logs: bool = True, log_level: str = "INFO") -> None:
    """Route structlog and stdlib logging through one stdout handler."""
    shared = _shared_processors()

    if json_logs:
        renderers: list[Processor] = [
            structlog.processors.format_exc_info,
            leading_keys,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderers],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
