"""
Structured logging setup.
"""

import logging
import sys

import structlog

from .config import RuntimeSettings, get_settings


def configure_logging(settings: RuntimeSettings | None = None) -> None:
    """Configure structlog for the runtime.

    Console output is meant for development; ``log_format="json"`` renders
    one JSON object per line for log shippers.
    """
    settings = settings or get_settings()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level, logging.INFO),
    )

    processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.get_logger().debug(
        "Logging configured",
        app=settings.app_name,
        level=settings.log_level,
        format=settings.log_format,
    )
