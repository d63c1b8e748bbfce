"""Thread recommendations and the predictive context engine.

ThreadRecommender answers three questions about the open contexts:
- which other contexts is this message relevant to (same multi-factor
  similarity the router uses, current context excluded),
- which contexts need attention right now (running tasks, recently paused,
  long idle), independent of any message,
- which pairs of contexts overlap enough to be merged.

PredictiveContextEngine wraps the recommender with a bounded TTL cache and
turns its output into user-facing suggestions.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from itertools import combinations
from typing import TYPE_CHECKING

import structlog

from threadmux.cache import TTLCache
from threadmux.context.similarity import ContextScorer, context_similarity
from threadmux.types import (
    ActionType,
    AlternativeRoute,
    Clock,
    Context,
    ContextStatus,
    MergeCandidate,
    PredictedContext,
    ProactiveSuggestion,
    SuggestedAction,
    ThreadRecommendation,
    UserAction,
    UserPreferences,
    utc_now,
)

if TYPE_CHECKING:
    from threadmux.config import Settings

log = structlog.get_logger(__name__)

MIN_RECOMMENDATION_SCORE = 0.1
CONTINUE_AT = 70
REVIEW_AT = 50
MAX_PROACTIVE = 5
MAX_MERGE_SUGGESTIONS = 2
MAX_MATCHED_KEYWORDS = 5
PATTERN_MESSAGE_HISTORY = 10
CACHE_KEY_PREFIX_CHARS = 100


@dataclass
class ActionPattern:
    """How often the user took an action between two contexts."""

    count: int = 0
    messages: deque[str] = field(default_factory=lambda: deque(maxlen=PATTERN_MESSAGE_HISTORY))


class ThreadRecommender:
    """Similarity-ranked switch suggestions, proactive alerts and merge detection."""

    def __init__(
        self,
        scorer: ContextScorer | None = None,
        *,
        merge_threshold: float = 0.7,
        auto_archive_after_days: int = 7,
        paused_resume_window_hours: float = 24.0,
        clock: Clock = utc_now,
    ) -> None:
        self._scorer = scorer or ContextScorer(clock=clock)
        self._merge_threshold = merge_threshold
        self._auto_archive_days = auto_archive_after_days
        self._resume_window = timedelta(hours=paused_resume_window_hours)
        self._clock = clock
        self._patterns: dict[tuple[UserAction, str | None, str | None], ActionPattern] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        scorer: ContextScorer | None = None,
        clock: Clock = utc_now,
    ) -> ThreadRecommender:
        return cls(
            scorer or ContextScorer.from_settings(settings, clock=clock),
            merge_threshold=settings.merge_threshold,
            auto_archive_after_days=settings.auto_archive_after_days,
            paused_resume_window_hours=settings.paused_resume_window_hours,
            clock=clock,
        )

    # ------------------------------------------------------------------ #
    # Message-triggered
    # ------------------------------------------------------------------ #

    def get_recommendations(
        self,
        message: str,
        contexts: Sequence[Context],
        current: Context | None = None,
        limit: int = 5,
    ) -> list[ThreadRecommendation]:
        """Contexts other than ``current`` that ``message`` is relevant to, best first.

        Args:
            message: Inbound message text
            contexts: Read view of all contexts
            current: Context the user is in; never recommended
            limit: Maximum number of recommendations

        Returns:
            Recommendations scoring above 0.1, with a suggested action where
            the relevance warrants one.
        """
        current_id = current.id if current is not None else None
        candidates = [context for context in contexts if context.id != current_id]
        by_id = {context.id: context for context in candidates}

        ranked = [
            score
            for score in self._scorer.rank(message, candidates)
            if score.score > MIN_RECOMMENDATION_SCORE
        ]
        recommendations: list[ThreadRecommendation] = []
        for score in ranked[:limit]:
            context = by_id[score.context_id]
            relevance = round(score.score * 100)
            recommendations.append(
                ThreadRecommendation(
                    context_id=context.id,
                    relevance_score=relevance,
                    reasons=list(score.reasons),
                    last_active_at=context.last_active_at,
                    suggested_action=self._action_for(context, relevance),
                    matched_keywords=score.matched_keywords[:MAX_MATCHED_KEYWORDS],
                    matched_entities=list(score.matched_entities),
                )
            )
        return recommendations

    @staticmethod
    def _action_for(context: Context, relevance: int) -> SuggestedAction | None:
        if context.tasks.active:
            return SuggestedAction(
                type=ActionType.REVIEW,
                label=f"{len(context.tasks.active)} task(s) running",
                priority=8,
            )
        if relevance >= CONTINUE_AT:
            return SuggestedAction(
                type=ActionType.CONTINUE,
                label="Switch to continue this conversation",
                priority=7,
            )
        if relevance >= REVIEW_AT:
            return SuggestedAction(
                type=ActionType.REVIEW,
                label="Review for potential relevance",
                priority=5,
            )
        return None

    # ------------------------------------------------------------------ #
    # Proactive
    # ------------------------------------------------------------------ #

    def get_proactive_recommendations(
        self,
        contexts: Sequence[Context],
        current: Context | None = None,
        preferences: UserPreferences | None = None,
    ) -> list[ThreadRecommendation]:
        """Contexts needing attention regardless of any message (top 5).

        - running or pending tasks: review, priority 8
        - paused within the resume window: resume, priority 5
        - active but idle beyond the auto-archive age: archive, priority 2
        """
        archive_days = self._auto_archive_days
        if preferences is not None and preferences.auto_archive_after_days:
            archive_days = preferences.auto_archive_after_days
        archive_after = timedelta(days=archive_days)

        now = self._clock()
        current_id = current.id if current is not None else None
        recommendations: list[ThreadRecommendation] = []

        for context in contexts:
            if not context.is_routable or context.id == current_id:
                continue
            idle = now - context.last_active_at

            if context.tasks.has_tasks:
                active, pending = len(context.tasks.active), len(context.tasks.pending)
                recommendations.append(
                    ThreadRecommendation(
                        context_id=context.id,
                        relevance_score=70 + min(active * 10, 20),
                        reasons=[f"Has {active} active and {pending} pending tasks"],
                        last_active_at=context.last_active_at,
                        suggested_action=SuggestedAction(
                            type=ActionType.REVIEW,
                            label="Check on running tasks",
                            priority=8,
                        ),
                    )
                )

            if context.status == ContextStatus.PAUSED and idle < self._resume_window:
                recommendations.append(
                    ThreadRecommendation(
                        context_id=context.id,
                        relevance_score=60,
                        reasons=["Paused conversation that might need continuation"],
                        last_active_at=context.last_active_at,
                        suggested_action=SuggestedAction(
                            type=ActionType.RESUME,
                            label="Resume paused conversation",
                            priority=5,
                        ),
                    )
                )

            if context.status == ContextStatus.ACTIVE and idle > archive_after:
                recommendations.append(
                    ThreadRecommendation(
                        context_id=context.id,
                        relevance_score=30,
                        reasons=[f"Inactive for {idle.days} days"],
                        last_active_at=context.last_active_at,
                        suggested_action=SuggestedAction(
                            type=ActionType.ARCHIVE,
                            label="Archive inactive conversation",
                            priority=2,
                        ),
                    )
                )

        recommendations.sort(key=lambda item: item.relevance_score, reverse=True)
        return recommendations[:MAX_PROACTIVE]

    def find_merge_candidates(self, contexts: Sequence[Context]) -> list[MergeCandidate]:
        """Pairs of same-type open contexts whose goals, topics and entities overlap."""
        candidates: list[MergeCandidate] = []
        open_contexts = [context for context in contexts if context.is_routable]
        for left, right in combinations(open_contexts, 2):
            if left.type != right.type:
                continue
            similarity = context_similarity(left, right)
            if similarity >= self._merge_threshold:
                candidates.append(
                    MergeCandidate(
                        context_ids=(left.id, right.id),
                        similarity=round(similarity, 4),
                        reason=self._explain(left, right),
                    )
                )
        candidates.sort(key=lambda item: item.similarity, reverse=True)
        if candidates:
            log.info("recommender.merge_candidates", count=len(candidates))
        return candidates

    @staticmethod
    def _explain(left: Context, right: Context) -> str:
        reasons: list[str] = []
        if left.goal and right.goal:
            reasons.append(f'Similar goals: "{left.goal}" and "{right.goal}"')
        shared = sorted(left.summary.topics & right.summary.topics)
        if shared:
            reasons.append(f"Shared topics: {', '.join(shared[:3])}")
        return "; ".join(reasons) or "Similar content"

    # ------------------------------------------------------------------ #
    # Behaviour
    # ------------------------------------------------------------------ #

    def record_user_action(
        self,
        action: UserAction,
        from_context: str | None,
        to_context: str | None,
        message: str | None = None,
    ) -> None:
        pattern = self._patterns.setdefault((action, from_context, to_context), ActionPattern())
        pattern.count += 1
        if message:
            pattern.messages.append(message)
        log.debug(
            "recommender.user_action",
            action=action.value,
            from_context=from_context,
            to_context=to_context,
            count=pattern.count,
        )

    def action_pattern(
        self,
        action: UserAction,
        from_context: str | None,
        to_context: str | None,
    ) -> ActionPattern | None:
        return self._patterns.get((action, from_context, to_context))

    def forget_context(self, context_id: str) -> int:
        """Drop every action pattern that starts or ends at ``context_id``.

        Returns:
            Number of patterns removed
        """
        stale = [key for key in self._patterns if context_id in (key[1], key[2])]
        for key in stale:
            del self._patterns[key]
        return len(stale)


class PredictiveContextEngine:
    """Cached next-context predictions and proactive suggestions."""

    def __init__(
        self,
        recommender: ThreadRecommender | None = None,
        cache: TTLCache[tuple[str, str], PredictedContext | None] | None = None,
    ) -> None:
        self._recommender = recommender or ThreadRecommender()
        self._cache = cache if cache is not None else TTLCache(ttl_seconds=300, name="predictions")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        recommender: ThreadRecommender | None = None,
        clock: Clock = utc_now,
    ) -> PredictiveContextEngine:
        return cls(
            recommender or ThreadRecommender.from_settings(settings, clock=clock),
            TTLCache(
                ttl_seconds=settings.prediction_cache_ttl_seconds,
                max_entries=settings.prediction_cache_max_entries,
                clock=clock,
                name="predictions",
            ),
        )

    @property
    def recommender(self) -> ThreadRecommender:
        return self._recommender

    def predict_next_context(
        self,
        message: str,
        contexts: Sequence[Context],
        current: Context | None = None,
    ) -> PredictedContext | None:
        """Most likely context for ``message`` besides the current one, or None."""
        key = (message[:CACHE_KEY_PREFIX_CHARS], current.id if current is not None else "")
        if key in self._cache:
            cached = self._cache.get(key)
            if cached is None or self._still_routable(cached, contexts):
                return cached

        recommendations = self._recommender.get_recommendations(
            message, contexts, current, limit=3
        )
        prediction: PredictedContext | None = None
        if recommendations:
            top = recommendations[0]
            prediction = PredictedContext(
                context_id=top.context_id,
                confidence=top.relevance_score / 100,
                reasons=list(top.reasons),
                suggested_action=(
                    top.suggested_action.type if top.suggested_action else ActionType.CONTINUE
                ),
                alternatives=[
                    AlternativeRoute(context_id=item.context_id, confidence=item.relevance_score / 100)
                    for item in recommendations[1:]
                ],
            )
        self._cache.set(key, prediction)
        return prediction

    def generate_proactive_suggestions(
        self,
        contexts: Sequence[Context],
        current: Context | None = None,
        preferences: UserPreferences | None = None,
    ) -> list[ProactiveSuggestion]:
        """Proactive recommendations plus up to two merge suggestions, by priority."""
        by_id = {context.id: context for context in contexts}
        suggestions: list[ProactiveSuggestion] = []

        for item in self._recommender.get_proactive_recommendations(contexts, current, preferences):
            action = item.suggested_action
            suggestions.append(
                ProactiveSuggestion(
                    action=action.type if action else ActionType.REVIEW,
                    context_id=item.context_id,
                    message=action.label if action else item.reasons[0],
                    priority=action.priority if action else 5,
                    context_goal=by_id[item.context_id].goal,
                )
            )

        for candidate in self._recommender.find_merge_candidates(contexts)[:MAX_MERGE_SUGGESTIONS]:
            first, second = candidate.context_ids
            suggestions.append(
                ProactiveSuggestion(
                    action=ActionType.MERGE,
                    context_id=first,
                    related_context_id=second,
                    message=f"Consider merging: {candidate.reason}",
                    priority=4,
                    context_goal=by_id[first].goal,
                )
            )

        suggestions.sort(key=lambda item: item.priority, reverse=True)
        return suggestions

    @staticmethod
    def _still_routable(prediction: PredictedContext, contexts: Sequence[Context]) -> bool:
        routable = {context.id for context in contexts if context.is_routable}
        targets = [prediction.context_id, *(item.context_id for item in prediction.alternatives)]
        return all(target in routable for target in targets)

    def clear_cache(self) -> None:
        self._cache.clear()
