"""Logging setup."""

from __future__ import annotations

import logging

import structlog


def setup_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Also configure standard logging for third-party libs (websockets, httpx)
    logging.basicConfig(
        level=logging.getLevelName(level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
