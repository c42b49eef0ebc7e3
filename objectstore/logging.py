"""Structured logging configuration for the object store."""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import Processor

from objectstore.config import Settings, get_settings


def add_service_name(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    event_dict["service"] = "objectstore"
    return event_dict


def setup_logging(settings: Optional[Settings] = None) -> structlog.stdlib.BoundLogger:
    """Configure structlog on top of the stdlib root logger."""
    settings = settings or get_settings()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        add_service_name,
    ]

    if settings.logging.format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.logging.level.upper())

    # SQL echo goes through its own logger when enabled
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database.echo else logging.WARNING
    )

    return structlog.get_logger()


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Get a logger, bound to a component name when given.

    The returned proxy resolves its configuration on first use, so module-level
    loggers pick up whatever ``setup_logging`` installs later.
    """
    if name:
        return structlog.get_logger(f"objectstore.{name}", component=name)
    return structlog.get_logger()
