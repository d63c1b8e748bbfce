"""threadmux - multiplex one user's conversation across AI-backed contexts.

Routes each inbound message to the right context, picks a model and
generation config for the reply, and compacts long contexts into memory
snapshots so history never outgrows the token budget.
"""

from __future__ import annotations

from threadmux.config import Settings, get_settings
from threadmux.errors import (
    CompactionInProgressError,
    ConfigurationError,
    ContextNotFoundError,
    InvalidTransitionError,
    SummarizationError,
    ThreadmuxError,
)
from threadmux.orchestrator import ContextOrchestrator, OrchestratorResult

__version__ = "0.1.0"

__all__ = [
    "CompactionInProgressError",
    "ConfigurationError",
    "ContextNotFoundError",
    "ContextOrchestrator",
    "InvalidTransitionError",
    "OrchestratorResult",
    "Settings",
    "SummarizationError",
    "ThreadmuxError",
    "get_settings",
]
