"""Structured logging configuration.

Configures structlog with JSON output in production and a readable console
renderer in development. Context-scoped fields (context_id, thread ids) are
carried through contextvars so every log line emitted while handling a
message is correlated without threading a logger through each call.

Log format (production):
    {
        "timestamp": "2026-02-17T10:30:45.123456Z",
        "level": "info",
        "event": "context_router.routed",
        "logger": "threadmux.context.router",
        "context_id": "ctx_3f2a...",
        "confidence": 0.95
    }
"""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.types import Processor


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
) -> None:
    """Configure structured logging for the application.

    Args:
        json_logs: Use JSON format (True for production, False for dev)
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.RichTracebackFormatter(),
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ------------------------------------------------------------------ #
# Context Binding Helpers
# ------------------------------------------------------------------ #


def bind_context_id(context_id: str) -> None:
    """Bind the routed context id to log context for this message.

    Args:
        context_id: Context identifier
    """
    structlog.contextvars.bind_contextvars(context_id=context_id)


def bind_thread_context(context_id: str, context_type: str) -> None:
    """Bind the context id and its type to log context for this message.

    Args:
        context_id: Context identifier
        context_type: Context type (primary, task, specialist, ...)
    """
    structlog.contextvars.bind_contextvars(
        context_id=context_id,
        context_type=context_type,
    )


def clear_context() -> None:
    """Clear all context variables (useful for testing)."""
    structlog.contextvars.clear_contextvars()
