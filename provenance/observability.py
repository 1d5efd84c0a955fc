"""
Structured logging

Configures structlog once per process. Production deployments emit JSON
lines; everything else gets the plain-text console renderer.

Usage:
    from provenance.observability import configure_logging
    configure_logging()

    import structlog
    log = structlog.get_logger(__name__)
    log.info("chain_verified", entries_checked=42)
"""

from __future__ import annotations

import logging

import structlog
from structlog.typing import Processor

from provenance import config


def _log_level(level_name: str) -> int:
    return getattr(logging, level_name.upper(), logging.INFO)


def configure_logging(
    log_format: str = config.LOG_FORMAT,
    level: str = config.LOG_LEVEL,
) -> None:
    """Configure structlog processors and level filtering.

    Args:
        log_format: "json" for machine-readable output, anything else for
                    the console renderer.
        level:      Standard logging level name (DEBUG, INFO, ...).
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        final_processor: Processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(_log_level(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
