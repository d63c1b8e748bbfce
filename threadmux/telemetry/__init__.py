"""Telemetry package: structured logging and log-context binding."""

from __future__ import annotations

from threadmux.telemetry.logging import (
    bind_context_id,
    bind_thread_context,
    clear_context,
    configure_logging,
)

__all__ = [
    "bind_context_id",
    "bind_thread_context",
    "clear_context",
    "configure_logging",
]
