"""Structured logging configuration using structlog.

Produces JSON logs in production (LOG_FORMAT=json) and human-readable
colored output in development (LOG_FORMAT=console). Request-scoped and
wallet-session context is injected via structlog.contextvars.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from blockserved.core.config import Settings


def setup_logging(settings: Settings) -> None:
    """Configure structlog processors and stdlib log integration."""
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: structlog.types.Processor
    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
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
    root_logger.setLevel(settings.log_level.upper())

    for name in ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_wallet_context(wallet_address: str, *, session_id: str | None = None) -> None:
    """Attach the connected wallet (and session) to every subsequent log line."""
    context: dict[str, str] = {"wallet": wallet_address}
    if session_id is not None:
        context["session_id"] = session_id
    structlog.contextvars.bind_contextvars(**context)


def clear_wallet_context() -> None:
    """Remove wallet-session keys bound by bind_wallet_context."""
    structlog.contextvars.unbind_contextvars("wallet", "session_id")
