"""Context orchestrator - one entry point for multiplexing a user's threads.

Per inbound message, ``handle_message`` runs:
1. Routing - pick the target context or open a new one
2. Append - record the user message on the target (resuming it if paused)
3. Compaction check - compact inline, or hand off to the CompactionWorker
4. Model selection - choose a model and generation config for the reply
5. Generation - call the generation collaborator with snapshot memory
   plus live history, then append the reply and record the outcome

Proactive features (recommendations, merge candidates, stale archival) are
exposed separately and are not triggered by messages.

All collaborators are injected; ``from_settings`` wires the defaults.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from threadmux.config import Settings, get_settings
from threadmux.context.compactor import ContextCompactor
from threadmux.context.recommender import PredictiveContextEngine, ThreadRecommender
from threadmux.context.router import ContextRouter
from threadmux.context.similarity import ContextScorer
from threadmux.context.store import ContextStore
from threadmux.context.summarizer import summarize_context
from threadmux.context.worker import CompactionWorker
from threadmux.model_router.selector import (
    ModelRecommendation,
    ModelSelector,
    SelectionPreferences,
)
from threadmux.telemetry import bind_thread_context, clear_context, configure_logging
from threadmux.types import (
    Clock,
    Context,
    ContextMessage,
    ContextStatus,
    ContextStatusReport,
    ContextSummary,
    ContextType,
    InjectableContext,
    MemorySnapshot,
    MergeCandidate,
    PredictedContext,
    ProactiveSuggestion,
    QualityLevel,
    RoutingDecision,
    RoutingHint,
    ThreadRecommendation,
    UrgencyLevel,
    UserAction,
    UserPreferences,
    utc_now,
)

if TYPE_CHECKING:
    from threadmux.collaborators.base import (
        GenerationService,
        PersistenceBackend,
        TaskProvider,
    )

log = structlog.get_logger(__name__)

_FIRST_SENTENCE = re.compile(r"^[^.!?]+[.!?]?")
MAX_GOAL_SENTENCE = 100
GOAL_FALLBACK_CHARS = 50
INLINE_RECOMMENDATIONS = 3


def goal_from_message(message: str) -> str:
    """Derive a context goal: the first sentence, or the first 50 characters."""
    text = message.strip()
    match = _FIRST_SENTENCE.match(text)
    if match and len(match.group(0)) < MAX_GOAL_SENTENCE:
        return match.group(0).strip()
    return text[:GOAL_FALLBACK_CHARS] + ("..." if len(text) > GOAL_FALLBACK_CHARS else "")


@dataclass
class OrchestratorResult:
    """Everything decided while handling one inbound message."""

    context_id: str
    reply: str
    routing: RoutingDecision
    model: ModelRecommendation
    user_message: ContextMessage
    reply_message: ContextMessage
    created_context: bool = False
    snapshot: MemorySnapshot | None = None
    compaction_scheduled: bool = False
    recommendations: list[ThreadRecommendation] = field(default_factory=list)


class ContextOrchestrator:
    """Wires store, router, selector, compactor and recommender together."""

    def __init__(
        self,
        *,
        settings: Settings,
        store: ContextStore,
        router: ContextRouter,
        selector: ModelSelector,
        compactor: ContextCompactor,
        engine: PredictiveContextEngine,
        generation: GenerationService,
        worker: CompactionWorker | None = None,
        task_provider: TaskProvider | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            settings: Application configuration
            store: Shared context store
            router: Message-to-context router
            selector: Model selector
            compactor: Infinite-context compactor
            engine: Predictive engine (wraps the thread recommender)
            generation: Reply and summary generation collaborator
            worker: Optional background compaction worker; when absent or not
                started, compaction runs inline after each append
            task_provider: Optional task tracker mirrored into contexts
        """
        self._settings = settings
        self._store = store
        self._router = router
        self._selector = selector
        self._compactor = compactor
        self._engine = engine
        self._generation = generation
        self._worker = worker
        self._tasks = task_provider

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        generation: GenerationService | None = None,
        persistence: PersistenceBackend | None = None,
        task_provider: TaskProvider | None = None,
        background_compaction: bool = False,
        clock: Clock = utc_now,
    ) -> ContextOrchestrator:
        """Build an orchestrator with default components.

        The LiteLLM generation service is used when ``generation`` is None.
        """
        settings = settings or get_settings()
        if generation is None:
            from threadmux.collaborators.llm import LiteLLMGenerationService

            generation = LiteLLMGenerationService(settings)

        scorer = ContextScorer.from_settings(settings, clock=clock)
        store = ContextStore(persistence=persistence, clock=clock)
        compactor = ContextCompactor(
            store,
            generation,
            settings,
            persistence=persistence,
            clock=clock,
        )
        return cls(
            settings=settings,
            store=store,
            router=ContextRouter.from_settings(settings, scorer=scorer),
            selector=ModelSelector(settings=settings),
            compactor=compactor,
            engine=PredictiveContextEngine.from_settings(
                settings,
                ThreadRecommender.from_settings(settings, scorer=scorer, clock=clock),
                clock=clock,
            ),
            generation=generation,
            worker=CompactionWorker(compactor, clock=clock) if background_compaction else None,
            task_provider=task_provider,
        )

    @property
    def store(self) -> ContextStore:
        return self._store

    @property
    def router(self) -> ContextRouter:
        return self._router

    @property
    def selector(self) -> ModelSelector:
        return self._selector

    @property
    def compactor(self) -> ContextCompactor:
        return self._compactor

    @property
    def worker(self) -> CompactionWorker | None:
        return self._worker

    async def start(self) -> None:
        """Configure logging from settings and start the compaction worker, if any."""
        configure_logging(
            json_logs=self._settings.json_logs or self._settings.is_prod,
            log_level=self._settings.log_level,
        )
        log.info(
            "orchestrator.starting",
            environment=self._settings.environment.value,
            background_compaction=self._worker is not None,
        )
        if self._worker is not None:
            await self._worker.start()

    async def stop(self) -> None:
        if self._worker is not None:
            await self._worker.stop(drain=True)

    # ------------------------------------------------------------------ #
    # Message handling
    # ------------------------------------------------------------------ #

    async def handle_message(
        self,
        message: str,
        current_context_id: str | None = None,
        preferences: UserPreferences | None = None,
        *,
        urgency: UrgencyLevel | None = None,
        budget_constraint: float | None = None,
        quality_requirement: QualityLevel | None = None,
    ) -> OrchestratorResult:
        """Route, record, compact, select a model and generate a reply.

        Args:
            message: Inbound user message
            current_context_id: Context the user is currently in, if any
            preferences: Stored user preferences (model allow/avoid lists etc.)
            urgency: Per-request urgency override
            budget_constraint: Per-request budget cap (USD)
            quality_requirement: Per-request quality override

        Returns:
            OrchestratorResult with the reply and every decision taken

        Raises:
            LLMError: If the generation collaborator fails; the user message
                stays recorded on the target context
        """
        clear_context()
        decision = self.route(message, current_context_id)

        created = False
        if decision.suggest_new_context or decision.target_context_id is None:
            context = await self._store.create_context(
                decision.suggested_context_type or ContextType.PRIMARY,
                goal=goal_from_message(message),
            )
            created = True
            self._engine.clear_cache()
            self._engine.recommender.record_user_action(
                UserAction.CREATE, current_context_id, context.id, message
            )
        else:
            context = self._store.require(decision.target_context_id)
            if current_context_id is not None and context.id != current_context_id:
                self._engine.recommender.record_user_action(
                    UserAction.SWITCH, current_context_id, context.id, message
                )
            if context.status == ContextStatus.PAUSED:
                context = await self.resume(context.id)

        bind_thread_context(context.id, context.type.value)
        log.info(
            "orchestrator.message_routed",
            created=created,
            confidence=round(decision.confidence, 3),
        )

        user_message = await self._store.append_message(context.id, "user", message)
        snapshot, scheduled = await self._check_compaction(context.id)

        recommendation = self.select_model(
            message,
            context.id,
            preferences,
            urgency=urgency,
            budget_constraint=budget_constraint,
            quality_requirement=quality_requirement,
        )
        injectable = self._compactor.build_injectable_context(context.id)
        prompt = list(injectable.messages)
        if injectable.system_context:
            prompt.insert(0, {"role": "system", "content": injectable.system_context})

        model_id = recommendation.model.model_id
        try:
            reply = await asyncio.wait_for(
                self._generation.generate(prompt, recommendation.config),
                timeout=self._settings.generation_timeout_seconds,
            )
        except Exception as exc:
            self._selector.record_usage(model_id, success=False)
            log.error(
                "orchestrator.generation_failed",
                model_id=model_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        self._selector.record_usage(model_id, success=True)

        reply_message = await self._store.append_message(context.id, "assistant", reply)
        self._router.record_context_usage(context.id)
        after_reply, scheduled_after = await self._check_compaction(context.id)
        if self._summary_due(context.id, created):
            await self.summarize(context.id)

        log.info(
            "orchestrator.message_handled",
            model_id=model_id,
            prompt_tokens=injectable.total_tokens,
            snapshots_used=injectable.snapshots_used,
        )
        return OrchestratorResult(
            context_id=context.id,
            reply=reply,
            routing=decision,
            model=recommendation,
            user_message=user_message,
            reply_message=reply_message,
            created_context=created,
            snapshot=snapshot or after_reply,
            compaction_scheduled=scheduled or scheduled_after,
            recommendations=self.get_recommendations(
                message, context.id, limit=INLINE_RECOMMENDATIONS
            ),
        )

    def _summary_due(self, context_id: str, created: bool) -> bool:
        interval = self._settings.summary_refresh_messages
        if interval <= 0:
            return False
        return created or self._store.messages_since_summary(context_id) >= interval

    async def _check_compaction(self, context_id: str) -> tuple[MemorySnapshot | None, bool]:
        """Run the compaction trigger for a context after an append.

        Returns:
            (snapshot committed inline, whether a background job was queued)
        """
        if self._worker is not None and self._worker.running:
            if self._store.is_compacting(context_id):
                return None, False
            if self._compactor.needs_compaction(self._store.require(context_id)):
                self._worker.submit(context_id)
                return None, True
            return None, False
        return await self._compactor.maybe_compact(context_id), False

    # ------------------------------------------------------------------ #
    # Core operations
    # ------------------------------------------------------------------ #

    def route(self, message: str, current_context_id: str | None = None) -> RoutingDecision:
        return self._router.route(message, self._store.snapshot(), current_context_id)

    def select_model(
        self,
        message: str,
        context_id: str | None = None,
        preferences: UserPreferences | None = None,
        *,
        urgency: UrgencyLevel | None = None,
        budget_constraint: float | None = None,
        quality_requirement: QualityLevel | None = None,
    ) -> ModelRecommendation:
        context = self._store.require(context_id) if context_id is not None else None
        prefs = SelectionPreferences.from_user(
            preferences,
            urgency=urgency,
            budget_constraint=budget_constraint,
            quality_requirement=quality_requirement,
        )
        return self._selector.select_model(message, context, prefs)

    def get_context_status(self, context_id: str) -> ContextStatusReport:
        return self._compactor.get_context_status(context_id)

    def get_injectable_context(self, context_id: str) -> InjectableContext:
        return self._compactor.build_injectable_context(context_id)

    def get_recommendations(
        self,
        message: str,
        current_context_id: str | None = None,
        limit: int = 5,
    ) -> list[ThreadRecommendation]:
        current = self._store.get(current_context_id) if current_context_id else None
        return self._engine.recommender.get_recommendations(
            message, self._store.snapshot(), current, limit
        )

    async def get_proactive_recommendations(
        self,
        current_context_id: str | None = None,
        preferences: UserPreferences | None = None,
    ) -> list[ThreadRecommendation]:
        """Scheduled sweep: task, resume and archive suggestions across contexts."""
        await self.sync_tasks()
        current = self._store.get(current_context_id) if current_context_id else None
        return self._engine.recommender.get_proactive_recommendations(
            self._store.snapshot(), current, preferences
        )

    async def generate_proactive_suggestions(
        self,
        current_context_id: str | None = None,
        preferences: UserPreferences | None = None,
    ) -> list[ProactiveSuggestion]:
        await self.sync_tasks()
        current = self._store.get(current_context_id) if current_context_id else None
        return self._engine.generate_proactive_suggestions(
            self._store.snapshot(), current, preferences
        )

    def predict_next_context(
        self,
        message: str,
        current_context_id: str | None = None,
    ) -> PredictedContext | None:
        current = self._store.get(current_context_id) if current_context_id else None
        return self._engine.predict_next_context(message, self._store.snapshot(), current)

    def find_merge_candidates(self) -> list[MergeCandidate]:
        return self._engine.recommender.find_merge_candidates(self._store.snapshot())

    def record_usage(self, model_id: str, success: bool) -> None:
        self._selector.record_usage(model_id, success)

    def record_user_action(
        self,
        action: UserAction,
        from_context: str | None,
        to_context: str | None,
        message: str | None = None,
    ) -> None:
        self._engine.recommender.record_user_action(action, from_context, to_context, message)

    def add_routing_hint(self, hint: RoutingHint) -> None:
        self._router.add_routing_hint(hint)

    async def sync_tasks(self) -> None:
        """Mirror task references from the task provider into open contexts."""
        if self._tasks is None:
            return
        for context in self._store.snapshot():
            if not context.is_routable:
                continue
            pending = await self._tasks.pending_tasks(context.id)
            active = await self._tasks.active_tasks(context.id)
            if pending != context.tasks.pending or active != context.tasks.active:
                await self._store.set_tasks(context.id, pending, active)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def create_context(
        self,
        context_type: ContextType = ContextType.PRIMARY,
        goal: str | None = None,
    ) -> Context:
        context = await self._store.create_context(context_type, goal)
        self._engine.clear_cache()
        return context

    async def summarize(self, context_id: str) -> ContextSummary:
        """Rebuild a context's topics and entities now."""
        return await self._store.refresh_summary(context_id, summarize_context)

    async def pause(self, context_id: str) -> Context:
        context = await self._store.pause(context_id)
        self._engine.clear_cache()
        return context

    async def resume(self, context_id: str) -> Context:
        context = await self._store.resume(context_id)
        self._engine.clear_cache()
        return context

    async def archive(self, context_id: str) -> Context:
        context = await self._store.archive(context_id)
        self.record_user_action(UserAction.ARCHIVE, context_id, None)
        self._forget(context_id)
        self._engine.clear_cache()
        return context

    async def merge(self, source_id: str, target_id: str) -> Context:
        """Fold ``source_id`` into ``target_id`` and archive the source."""
        context = await self._store.merge(source_id, target_id, summary_builder=summarize_context)
        self.record_user_action(UserAction.MERGE, source_id, target_id)
        self._forget(source_id)
        self._engine.clear_cache()
        return context

    async def archive_stale_contexts(self) -> list[str]:
        """Archive open contexts idle for longer than ``auto_archive_after_days``."""
        archived = await self._store.archive_stale(
            timedelta(days=self._settings.auto_archive_after_days)
        )
        for context_id in archived:
            self.record_user_action(UserAction.ARCHIVE, context_id, None)
            self._forget(context_id)
        if archived:
            self._engine.clear_cache()
        return archived

    def _forget(self, context_id: str) -> None:
        # Archived contexts never route again; drop their counters
        self._router.forget_context(context_id)
        self._engine.recommender.forget_context(context_id)
