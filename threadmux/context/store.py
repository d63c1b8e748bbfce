"""Context store - the shared, explicitly owned map of live contexts.

Every per-context mutation (append, status change, compaction commit,
merge) runs under that context's asyncio.Lock, so concurrent messages for
the same thread serialize instead of losing updates. Whole-set reads
(routing, recommendation sweeps) use ``snapshot()``, which returns
independent copies and takes no locks.

Compaction uses a claim/commit protocol:
1. ``claim_for_compaction`` marks the context as compacting and returns the
   messages eligible for compaction (everything but the most recent
   ``keep_recent``). The lock is released before returning.
2. The caller summarizes the claimed messages with no lock held. Appends
   are still accepted meanwhile; they land after the claimed range.
3. ``commit_compaction`` removes exactly the claimed messages and records
   the snapshot, or ``release_compaction`` drops the claim on failure.

Contexts are never deleted; archival is terminal-but-retained.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from threadmux.errors import (
    CompactionInProgressError,
    ContextNotFoundError,
    InvalidTransitionError,
)
from threadmux.types import (
    Clock,
    Context,
    ContextMessage,
    ContextStatus,
    ContextSummary,
    ContextType,
    MemorySnapshot,
    utc_now,
)

if TYPE_CHECKING:
    from threadmux.collaborators.base import PersistenceBackend

log = structlog.get_logger(__name__)

SummaryBuilder = Callable[[Context, Sequence[MemorySnapshot]], ContextSummary]

ALLOWED_TRANSITIONS: dict[ContextStatus, frozenset[ContextStatus]] = {
    ContextStatus.ACTIVE: frozenset(
        {ContextStatus.PAUSED, ContextStatus.ARCHIVED, ContextStatus.FAILED}
    ),
    ContextStatus.PAUSED: frozenset(
        {ContextStatus.ACTIVE, ContextStatus.ARCHIVED, ContextStatus.FAILED}
    ),
    ContextStatus.ARCHIVED: frozenset({ContextStatus.FAILED}),
    ContextStatus.FAILED: frozenset(),
}


@dataclass
class _ContextSlot:
    """A context plus its mutation lock and compaction claim."""

    context: Context
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    compacting: bool = False
    claimed_ids: frozenset[str] = frozenset()
    # Appends since the summary was last rebuilt
    unsummarized: int = 0


class ContextStore:
    """In-process store of contexts with per-context locking.

    Optionally writes every mutated context through to a PersistenceBackend.
    Returned Context objects are copies; mutate only through store methods.
    """

    def __init__(
        self,
        persistence: PersistenceBackend | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._slots: dict[str, _ContextSlot] = {}
        self._snapshots: dict[str, list[MemorySnapshot]] = {}
        self._persistence = persistence
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def get(self, context_id: str) -> Context | None:
        slot = self._slots.get(context_id)
        return slot.context.copy() if slot is not None else None

    def require(self, context_id: str) -> Context:
        """Return a copy of the context or raise ContextNotFoundError."""
        return self._slot(context_id).context.copy()

    def snapshot(self) -> list[Context]:
        """Consistent read view of every context, in creation order."""
        return [slot.context.copy() for slot in self._slots.values()]

    def contexts_by_type(self, context_type: ContextType) -> list[Context]:
        return [context for context in self.snapshot() if context.type == context_type]

    def contexts_by_status(self, status: ContextStatus) -> list[Context]:
        return [context for context in self.snapshot() if context.status == status]

    def snapshots_for(self, context_id: str) -> list[MemorySnapshot]:
        return list(self._snapshots.get(context_id, []))

    def is_compacting(self, context_id: str) -> bool:
        return self._slot(context_id).compacting

    def messages_since_summary(self, context_id: str) -> int:
        return self._slot(context_id).unsummarized

    def __contains__(self, context_id: object) -> bool:
        return context_id in self._slots

    def __len__(self) -> int:
        return len(self._slots)

    # ------------------------------------------------------------------ #
    # Creation and loading
    # ------------------------------------------------------------------ #

    async def create_context(
        self,
        context_type: ContextType = ContextType.PRIMARY,
        goal: str | None = None,
        context_id: str | None = None,
    ) -> Context:
        """Create and register a new active context.

        Raises:
            ValueError: If ``context_id`` is already registered
        """
        now = self._clock()
        context = Context(type=context_type, goal=goal, created_at=now, last_active_at=now)
        if context_id is not None:
            context.id = context_id
        if context.id in self._slots:
            raise ValueError(f"Context {context.id} already exists")

        slot = _ContextSlot(context=context)
        self._slots[context.id] = slot
        async with slot.lock:
            await self._persist(slot)
        log.info(
            "context_store.created",
            context_id=context.id,
            context_type=context_type.value,
            goal=goal,
        )
        return context.copy()

    async def load(self, context_id: str) -> Context:
        """Hydrate a context (and its snapshots) from the persistence backend.

        Raises:
            ContextNotFoundError: If no backend is configured or it has no record
        """
        if context_id in self._slots:
            return self.require(context_id)
        if self._persistence is None:
            raise ContextNotFoundError(context_id)
        context = await self._persistence.load_context(context_id)
        if context is None:
            raise ContextNotFoundError(context_id)
        self._slots[context_id] = _ContextSlot(context=context)
        self._snapshots[context_id] = await self._persistence.list_snapshots(context_id)
        log.info("context_store.loaded", context_id=context_id, messages=len(context.messages))
        return context.copy()

    # ------------------------------------------------------------------ #
    # Messages
    # ------------------------------------------------------------------ #

    async def append_message(
        self,
        context_id: str,
        role: str,
        content: str,
        token_count: int | None = None,
    ) -> ContextMessage:
        """Append a message to an active context and update its token usage.

        Raises:
            ContextNotFoundError: Unknown context
            InvalidTransitionError: Context is not active
        """
        slot = self._slot(context_id)
        async with slot.lock:
            context = slot.context
            if context.status != ContextStatus.ACTIVE:
                raise InvalidTransitionError(context_id, context.status.value, "append")

            now = self._clock()
            message = ContextMessage(
                role=role,
                content=content,
                timestamp=now,
                token_count=token_count or 0,
            )
            context.messages.append(message)
            context.token_usage.total += message.token_count
            if role == "assistant":
                context.token_usage.completion += message.token_count
            else:
                context.token_usage.prompt += message.token_count
            context.last_active_at = now
            slot.unsummarized += 1
            await self._persist(slot)

        log.debug(
            "context_store.message_appended",
            context_id=context_id,
            role=role,
            tokens=message.token_count,
            total_tokens=context.token_usage.total,
            compacting=slot.compacting,
        )
        return message

    async def set_summary(self, context_id: str, summary: ContextSummary) -> None:
        slot = self._slot(context_id)
        async with slot.lock:
            slot.context.summary = summary
            slot.unsummarized = 0
            await self._persist(slot)

    async def refresh_summary(
        self, context_id: str, summary_builder: SummaryBuilder
    ) -> ContextSummary:
        """Rebuild a context's topics and entities from its snapshots and live messages."""
        slot = self._slot(context_id)
        async with slot.lock:
            summary = summary_builder(slot.context, self._snapshots.get(context_id, []))
            slot.context.summary = summary
            slot.unsummarized = 0
            await self._persist(slot)

        log.debug(
            "context_store.summary_refreshed",
            context_id=context_id,
            topics=len(summary.topics),
            entities=len(summary.entities),
        )
        return ContextSummary(topics=set(summary.topics), entities=list(summary.entities))

    async def set_tasks(self, context_id: str, pending: Sequence[str], active: Sequence[str]) -> None:
        """Replace the task references mirrored from the task collaborator."""
        slot = self._slot(context_id)
        async with slot.lock:
            slot.context.tasks.pending = list(pending)
            slot.context.tasks.active = list(active)
            await self._persist(slot)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def set_status(self, context_id: str, status: ContextStatus) -> Context:
        """Move a context to ``status`` following the lifecycle state machine.

        Setting the current status again is a no-op.

        Raises:
            ContextNotFoundError: Unknown context
            InvalidTransitionError: Transition not allowed from the current status
        """
        slot = self._slot(context_id)
        async with slot.lock:
            self._transition(slot, status)
            await self._persist(slot)
            return slot.context.copy()

    async def pause(self, context_id: str) -> Context:
        return await self.set_status(context_id, ContextStatus.PAUSED)

    async def resume(self, context_id: str) -> Context:
        return await self.set_status(context_id, ContextStatus.ACTIVE)

    async def archive(self, context_id: str) -> Context:
        return await self.set_status(context_id, ContextStatus.ARCHIVED)

    async def fail(self, context_id: str) -> Context:
        return await self.set_status(context_id, ContextStatus.FAILED)

    async def archive_stale(self, max_idle: timedelta) -> list[str]:
        """Archive active or paused contexts idle for longer than ``max_idle``.

        Returns:
            Ids of the contexts archived by this call
        """
        cutoff = self._clock() - max_idle
        archived: list[str] = []
        for context_id, slot in list(self._slots.items()):
            if not slot.context.is_routable or slot.context.last_active_at >= cutoff:
                continue
            if slot.compacting:
                continue
            async with slot.lock:
                # Re-check under the lock; an append may have landed meanwhile
                if slot.context.is_routable and slot.context.last_active_at < cutoff:
                    self._transition(slot, ContextStatus.ARCHIVED)
                    await self._persist(slot)
                    archived.append(context_id)
        if archived:
            log.info("context_store.archived_stale", context_ids=archived)
        return archived

    async def merge(
        self,
        source_id: str,
        target_id: str,
        summary_builder: SummaryBuilder | None = None,
    ) -> Context:
        """Move the source's messages into the target and archive the source.

        Messages are interleaved by timestamp. Token totals add up, task
        references are combined and the target's summary is rebuilt with
        ``summary_builder`` when given.

        Raises:
            ValueError: If source and target are the same context
            InvalidTransitionError: Either context is archived or failed
            CompactionInProgressError: Either context is being compacted
        """
        if source_id == target_id:
            raise ValueError("Cannot merge a context into itself")
        source = self._slot(source_id)
        target = self._slot(target_id)

        # Fixed lock order prevents deadlock between opposite merges
        first, second = sorted((source, target), key=lambda slot: slot.context.id)
        async with first.lock, second.lock:
            for slot in (source, target):
                if not slot.context.is_routable:
                    raise InvalidTransitionError(
                        slot.context.id, slot.context.status.value, "merge"
                    )
                if slot.compacting:
                    raise CompactionInProgressError(slot.context.id)

            src, dst = source.context, target.context
            dst.messages = sorted([*dst.messages, *src.messages], key=lambda m: m.timestamp)
            dst.token_usage.total += src.token_usage.total
            dst.token_usage.prompt += src.token_usage.prompt
            dst.token_usage.completion += src.token_usage.completion
            dst.tasks.pending = list(dict.fromkeys([*dst.tasks.pending, *src.tasks.pending]))
            dst.tasks.active = list(dict.fromkeys([*dst.tasks.active, *src.tasks.active]))
            dst.summary.topics |= src.summary.topics
            dst.merged_from.append(src.id)
            dst.last_active_at = max(dst.last_active_at, src.last_active_at)
            if summary_builder is not None:
                dst.summary = summary_builder(dst, self._snapshots.get(dst.id, []))
                target.unsummarized = 0

            src.messages = []
            src.token_usage.total = 0
            self._transition(source, ContextStatus.ARCHIVED)

            await self._persist(source)
            await self._persist(target)

        log.info(
            "context_store.merged",
            source_id=source_id,
            target_id=target_id,
            messages=len(dst.messages),
            total_tokens=dst.token_usage.total,
        )
        return dst.copy()

    # ------------------------------------------------------------------ #
    # Compaction claim protocol
    # ------------------------------------------------------------------ #

    async def claim_for_compaction(self, context_id: str, keep_recent: int) -> list[ContextMessage]:
        """Claim every message except the most recent ``keep_recent``.

        Returns an empty list (and holds no claim) when nothing is eligible.

        Raises:
            CompactionInProgressError: The context is already claimed
        """
        if keep_recent < 0:
            raise ValueError("keep_recent cannot be negative")
        slot = self._slot(context_id)
        async with slot.lock:
            if slot.compacting:
                raise CompactionInProgressError(context_id)
            messages = slot.context.messages
            eligible = list(messages[: max(len(messages) - keep_recent, 0)])
            if not eligible:
                return []
            slot.compacting = True
            slot.claimed_ids = frozenset(message.id for message in eligible)

        log.debug(
            "context_store.compaction_claimed",
            context_id=context_id,
            claimed=len(eligible),
            kept=len(messages) - len(eligible),
        )
        return eligible

    async def commit_compaction(
        self,
        context_id: str,
        snapshot: MemorySnapshot,
        summary_builder: SummaryBuilder | None = None,
    ) -> Context:
        """Replace the claimed messages with ``snapshot`` and drop the claim.

        Raises:
            ValueError: The snapshot belongs to another context or no claim is held
        """
        slot = self._slot(context_id)
        async with slot.lock:
            if not slot.compacting:
                raise ValueError(f"No compaction claim held for context {context_id}")
            if snapshot.thread_id != context_id:
                raise ValueError("Snapshot thread_id does not match the context")

            context = slot.context
            claimed = slot.claimed_ids
            removed_tokens = sum(m.token_count for m in context.messages if m.id in claimed)
            context.messages = [m for m in context.messages if m.id not in claimed]
            context.token_usage.total = max(context.token_usage.total - removed_tokens, 0)
            context.snapshot_ids.append(snapshot.id)
            context.last_snapshot_at = snapshot.created_at

            snapshots = self._snapshots.setdefault(context_id, [])
            snapshots.append(snapshot)
            if summary_builder is not None:
                context.summary = summary_builder(context, snapshots)
                slot.unsummarized = 0

            slot.compacting = False
            slot.claimed_ids = frozenset()
            await self._persist(slot)
            if self._persistence is not None:
                await self._persistence.append_snapshot(snapshot)

        log.info(
            "context_store.compaction_committed",
            context_id=context_id,
            snapshot_id=snapshot.id,
            removed_messages=len(claimed),
            removed_tokens=removed_tokens,
            remaining_messages=len(context.messages),
        )
        return context.copy()

    async def release_compaction(self, context_id: str) -> None:
        """Drop a compaction claim without changing the context."""
        slot = self._slot(context_id)
        async with slot.lock:
            slot.compacting = False
            slot.claimed_ids = frozenset()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _slot(self, context_id: str) -> _ContextSlot:
        try:
            return self._slots[context_id]
        except KeyError:
            raise ContextNotFoundError(context_id) from None

    def _transition(self, slot: _ContextSlot, status: ContextStatus) -> None:
        current = slot.context.status
        if status == current:
            return
        if status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(slot.context.id, current.value, status.value)
        slot.context.status = status
        log.info(
            "context_store.status_changed",
            context_id=slot.context.id,
            from_status=current.value,
            to_status=status.value,
        )

    async def _persist(self, slot: _ContextSlot) -> None:
        if self._persistence is not None:
            await self._persistence.save_context(slot.context.copy())
