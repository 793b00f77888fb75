"""Logging configuration for the order/payment service."""
from __future__ import annotations

import logging

import structlog

logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Route structlog through stdlib logging, once per process."""
    log_level = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", level=log_level)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )

    # Suppress noisy library loggers
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
