"""Domain exceptions raised by the orchestrator.

Collaborator failures (LLM, persistence) have their own hierarchy next to
the adapter that raises them; see threadmux.collaborators.llm.
"""

from __future__ import annotations


class ThreadmuxError(Exception):
    """Base exception for all orchestrator failures."""


class ConfigurationError(ThreadmuxError, ValueError):
    """Invalid configuration: bad weights, empty model registry, unknown default."""


class ContextNotFoundError(ThreadmuxError, KeyError):
    """Raised when a context id is not present in the store."""

    def __init__(self, context_id: str) -> None:
        super().__init__(context_id)
        self.context_id = context_id

    def __str__(self) -> str:
        return f"Context not found: {self.context_id}"


class InvalidTransitionError(ThreadmuxError):
    """Raised when a lifecycle transition is not permitted from the current status."""

    def __init__(self, context_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Context {context_id} cannot move from {current!r} to {requested!r}"
        )
        self.context_id = context_id
        self.current = current
        self.requested = requested


class CompactionInProgressError(ThreadmuxError):
    """Raised when a second compaction is requested for a context already compacting."""

    def __init__(self, context_id: str) -> None:
        super().__init__(f"Compaction already in progress for context {context_id}")
        self.context_id = context_id


class SummarizationError(ThreadmuxError):
    """The summarization collaborator returned an empty or unparseable result."""
