"""Interfaces for the external collaborators the orchestrator consumes.

The orchestrator never stores data durably, calls a model or tracks tasks
itself. It talks to these protocols and ships an in-memory persistence
backend plus a LiteLLM-backed generation service as defaults.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from threadmux.model_router.selector import ModelConfig
    from threadmux.types import (
        Context,
        ContextMessage,
        ContextState,
        ExtractedEntity,
        MemorySnapshot,
    )


@dataclass
class SummarizationResult:
    """Output of the summarization collaborator for a range of messages."""

    summary: str
    key_points: list[str] = field(default_factory=list)
    entities: list[ExtractedEntity] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.summary.strip() and not any(point.strip() for point in self.key_points)


@runtime_checkable
class PersistenceBackend(Protocol):
    """Durable record store for contexts, snapshots and per-thread state."""

    async def load_context(self, context_id: str) -> Context | None: ...

    async def save_context(self, context: Context) -> None: ...

    async def append_snapshot(self, snapshot: MemorySnapshot) -> None: ...

    async def list_snapshots(self, thread_id: str) -> list[MemorySnapshot]: ...

    async def load_context_state(self, thread_id: str) -> ContextState | None: ...

    async def save_context_state(self, state: ContextState) -> None: ...


@runtime_checkable
class GenerationService(Protocol):
    """Text generation for replies and compaction summaries."""

    async def generate(self, prompt: list[dict[str, str]], config: ModelConfig) -> str: ...

    async def summarize(self, messages: Sequence[ContextMessage]) -> SummarizationResult: ...


@runtime_checkable
class TaskProvider(Protocol):
    """Read-only view of the external task tracker."""

    async def pending_tasks(self, context_id: str) -> list[str]: ...

    async def active_tasks(self, context_id: str) -> list[str]: ...
