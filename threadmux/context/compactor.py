"""Infinite context - compress a context's oldest messages into memory snapshots.

A context is compacted when both hold:
- utilization (message tokens / max_context_tokens) >= summarize_threshold
- active messages >= min_messages_to_summarize + keep_recent_messages

Compaction claims every message except the most recent keep_recent
messages, asks the generation collaborator for a summary with no lock
held, and commits an immutable MemorySnapshot that replaces the claimed
range. A failed, empty or non-shrinking summary leaves the context
untouched; the next evaluation retries.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import TYPE_CHECKING

import structlog

from threadmux.context.summarizer import summarize_context
from threadmux.errors import CompactionInProgressError, SummarizationError
from threadmux.types import (
    Clock,
    Context,
    ContextHealth,
    ContextState,
    ContextStatusReport,
    InjectableContext,
    MemorySnapshot,
    estimate_tokens,
    utc_now,
)

if TYPE_CHECKING:
    from threadmux.collaborators.base import GenerationService, PersistenceBackend
    from threadmux.config import Settings
    from threadmux.context.store import ContextStore, SummaryBuilder

log = structlog.get_logger(__name__)

HEALTHY_BELOW = 50.0
MODERATE_BELOW = 70.0
ENTITIES_PER_SNAPSHOT = 5


def utilization(total_tokens: int, max_tokens: int) -> float:
    """Percentage of the token budget in use, clamped to 0-100."""
    return max(0.0, min(total_tokens / max_tokens * 100, 100.0))


def health_for(utilization_pct: float) -> ContextHealth:
    if utilization_pct < HEALTHY_BELOW:
        return ContextHealth.HEALTHY
    if utilization_pct < MODERATE_BELOW:
        return ContextHealth.MODERATE
    return ContextHealth.HIGH


class ContextCompactor:
    """Monitors token utilization per context and compacts when it runs high."""

    def __init__(
        self,
        store: ContextStore,
        generation: GenerationService,
        settings: Settings,
        *,
        persistence: PersistenceBackend | None = None,
        summary_builder: SummaryBuilder = summarize_context,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._generation = generation
        self._settings = settings
        self._persistence = persistence
        self._summary_builder = summary_builder
        self._clock = clock

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    def context_state(self, context: Context) -> ContextState:
        return ContextState(
            thread_id=context.id,
            total_tokens=context.token_usage.total,
            active_message_count=len(context.messages),
            snapshot_count=context.snapshot_count,
            last_snapshot_at=context.last_snapshot_at,
            context_utilization=utilization(
                context.token_usage.total, self._settings.max_context_tokens
            ),
        )

    def get_context_state(self, context_id: str) -> ContextState:
        return self.context_state(self._store.require(context_id))

    def get_context_status(self, context_id: str) -> ContextStatusReport:
        """Utilization rollup with a healthy/moderate/high status."""
        state = self.get_context_state(context_id)
        return ContextStatusReport(
            utilization=round(state.context_utilization, 2),
            total_tokens=state.total_tokens,
            active_messages=state.active_message_count,
            snapshot_count=state.snapshot_count,
            status=health_for(state.context_utilization),
        )

    def needs_compaction(self, context: Context) -> bool:
        state = self.context_state(context)
        min_messages = self._settings.min_messages_to_summarize + self._settings.keep_recent_messages
        return (
            state.context_utilization >= self._settings.summarize_threshold
            and state.active_message_count >= min_messages
        )

    # ------------------------------------------------------------------ #
    # Compaction
    # ------------------------------------------------------------------ #

    async def maybe_compact(self, context_id: str) -> MemorySnapshot | None:
        """Compact ``context_id`` if it crosses the trigger, otherwise do nothing."""
        context = self._store.require(context_id)
        if not self.needs_compaction(context) or self._store.is_compacting(context_id):
            return None
        return await self.compact(context_id)

    async def compact(self, context_id: str) -> MemorySnapshot | None:
        """Compress everything but the most recent messages into a snapshot.

        Returns:
            The committed snapshot, or None when nothing was compacted
            (nothing eligible, already compacting, or summarization failed).
        """
        keep_recent = self._settings.keep_recent_messages
        try:
            claimed = await self._store.claim_for_compaction(context_id, keep_recent)
        except CompactionInProgressError:
            log.info("compactor.already_in_progress", context_id=context_id)
            return None
        if not claimed:
            return None

        try:
            snapshot = await self._summarize(context_id, claimed)
        except asyncio.CancelledError:
            await self._store.release_compaction(context_id)
            log.warning("compactor.compaction_cancelled", context_id=context_id, claimed=len(claimed))
            raise
        except Exception as exc:
            await self._store.release_compaction(context_id)
            log.warning(
                "compactor.summarization_failed",
                context_id=context_id,
                claimed=len(claimed),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

        updated = await self._store.commit_compaction(
            context_id, snapshot, summary_builder=self._summary_builder
        )
        if self._persistence is not None:
            await self._persistence.save_context_state(self.context_state(updated))

        log.info(
            "compactor.snapshot_created",
            context_id=context_id,
            snapshot_id=snapshot.id,
            message_count=snapshot.message_count,
            original_tokens=snapshot.token_count,
            compressed_tokens=snapshot.compressed_tokens,
            compression_pct=round((1 - snapshot.compressed_tokens / snapshot.token_count) * 100),
        )
        return snapshot

    async def _summarize(self, context_id: str, claimed: Sequence) -> MemorySnapshot:
        result = await asyncio.wait_for(
            self._generation.summarize(claimed),
            timeout=self._settings.generation_timeout_seconds,
        )
        if result is None or result.is_empty:
            raise SummarizationError("Summarizer returned an empty result")

        original_tokens = sum(message.token_count for message in claimed)
        compressed_tokens = estimate_tokens(result.summary + " " + " ".join(result.key_points))
        if compressed_tokens >= original_tokens:
            raise SummarizationError(
                f"Summary ({compressed_tokens} tokens) is not smaller than "
                f"the compacted range ({original_tokens} tokens)"
            )

        first, last = claimed[0], claimed[-1]
        return MemorySnapshot(
            thread_id=context_id,
            summary=result.summary,
            key_points=tuple(result.key_points),
            entities=tuple(result.entities),
            message_count=len(claimed),
            token_count=original_tokens,
            compressed_tokens=compressed_tokens,
            first_message_id=first.id,
            last_message_id=last.id,
            first_message_at=first.timestamp,
            last_message_at=last.timestamp,
            created_at=self._clock(),
        )

    # ------------------------------------------------------------------ #
    # Injection
    # ------------------------------------------------------------------ #

    def build_injectable_context(self, context_id: str) -> InjectableContext:
        """Memory text from recent snapshots (oldest first) plus the live messages."""
        context = self._store.require(context_id)
        limit = self._settings.max_snapshots_in_context
        snapshots = self._store.snapshots_for(context_id)[-limit:] if limit else []

        system_context: str | None = None
        snapshot_tokens = 0
        if snapshots:
            lines = [
                "Conversation memory",
                "",
                "This is a continuation of a long conversation. "
                "Here is what was discussed previously:",
                "",
            ]
            for snapshot in snapshots:
                lines.append(
                    f"--- {snapshot.first_message_at:%Y-%m-%d} - "
                    f"{snapshot.last_message_at:%Y-%m-%d} ({snapshot.message_count} messages)"
                )
                lines.append(snapshot.summary)
                if snapshot.key_points:
                    lines.append("Key points:")
                    lines.extend(f"- {point}" for point in snapshot.key_points)
                if snapshot.entities:
                    mentioned = ", ".join(
                        f"{entity.value} ({entity.type.value})"
                        for entity in snapshot.entities[:ENTITIES_PER_SNAPSHOT]
                    )
                    lines.append(f"Mentioned: {mentioned}")
                lines.append("")
                snapshot_tokens += snapshot.compressed_tokens
            lines.append("--- Recent conversation continues below.")
            system_context = "\n".join(lines)

        return InjectableContext(
            system_context=system_context,
            messages=[message.as_prompt() for message in context.messages],
            total_tokens=(
                snapshot_tokens
                + context.token_usage.total
                + (estimate_tokens(system_context) if system_context else 0)
            ),
            snapshots_used=len(snapshots),
        )
