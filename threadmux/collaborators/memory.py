"""Dict-backed persistence backend for development and tests.

Stores copies so callers cannot mutate persisted state by holding on to a
returned object. Does NOT persist across process restarts.
"""

from __future__ import annotations

import asyncio

import structlog

from threadmux.types import Context, ContextState, MemorySnapshot

log = structlog.get_logger(__name__)


class InMemoryPersistence:
    """PersistenceBackend implementation guarded by a single asyncio.Lock."""

    def __init__(self) -> None:
        self._contexts: dict[str, Context] = {}
        self._snapshots: dict[str, list[MemorySnapshot]] = {}
        self._states: dict[str, ContextState] = {}
        self._lock = asyncio.Lock()

    async def load_context(self, context_id: str) -> Context | None:
        async with self._lock:
            context = self._contexts.get(context_id)
            return context.copy() if context is not None else None

    async def save_context(self, context: Context) -> None:
        async with self._lock:
            self._contexts[context.id] = context.copy()

    async def append_snapshot(self, snapshot: MemorySnapshot) -> None:
        async with self._lock:
            self._snapshots.setdefault(snapshot.thread_id, []).append(snapshot)
        log.debug(
            "persistence.memory.snapshot_appended",
            thread_id=snapshot.thread_id,
            snapshot_id=snapshot.id,
        )

    async def list_snapshots(self, thread_id: str) -> list[MemorySnapshot]:
        async with self._lock:
            return list(self._snapshots.get(thread_id, []))

    async def load_context_state(self, thread_id: str) -> ContextState | None:
        async with self._lock:
            return self._states.get(thread_id)

    async def save_context_state(self, state: ContextState) -> None:
        async with self._lock:
            self._states[state.thread_id] = state
