"""Context router - decide which context an inbound message belongs to.

Routing runs in priority order and stops at the first rule that fires:

1. Explicit switch phrases ("switch to X", "go back to X", "open the X
   thread") matched against each routable context's goal and id.
2. Custom routing hints (regex, or substring when the pattern is not a
   valid regex), highest priority first, routed to the first active
   context of the hinted type.
3. Multi-factor similarity scoring (see ``similarity``):
   - stay in the current context when it scores >= 0.7 and is within 0.2
     of the best score (stability bias),
   - suggest a new context when the best score is < 0.5,
   - otherwise route to the best context, with ranks 2-4 as alternatives.

Archived and failed contexts never receive traffic.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from threadmux.analysis.intent import IntentClassifier
from threadmux.context.similarity import ContextScorer, SimilarityScore
from threadmux.types import (
    AlternativeRoute,
    Context,
    ContextStatus,
    ContextType,
    RoutingDecision,
    RoutingHint,
)

if TYPE_CHECKING:
    from threadmux.config import Settings

log = structlog.get_logger(__name__)

MAX_ALTERNATIVES = 3

_SWITCH_PATTERNS = (
    re.compile(r"switch\s+to\s+[\"']?([^\"'\n]+)[\"']?", re.IGNORECASE),
    re.compile(r"go\s+(?:back\s+)?to\s+[\"']?([^\"'\n]+)[\"']?", re.IGNORECASE),
    re.compile(
        r"open\s+(?:the\s+)?[\"']?([^\"'\n]+?)[\"']?\s+(?:context|thread|conversation)",
        re.IGNORECASE,
    ),
)
_TARGET_PREFIX = re.compile(r"^(?:the|my|our)\s+", re.IGNORECASE)
_TARGET_SUFFIX = re.compile(r"\s+(?:context|thread|conversation|chat)$", re.IGNORECASE)


@dataclass(frozen=True)
class ContextTypePattern:
    type: ContextType
    patterns: tuple[re.Pattern[str], ...]
    keywords: tuple[str, ...]
    domains: tuple[str, ...]


CONTEXT_TYPE_PATTERNS: tuple[ContextTypePattern, ...] = (
    ContextTypePattern(
        type=ContextType.SPECIALIST,
        patterns=(
            re.compile(r"\b(?:code|function|class|method|variable|api|bug|error|debug)", re.I),
            re.compile(r"\b(?:review|refactor|optimize|implement|test)", re.I),
            re.compile(r"```[\s\S]*```"),
        ),
        keywords=("code", "function", "api", "bug", "debug", "implement", "review"),
        domains=("programming", "development", "coding"),
    ),
    ContextTypePattern(
        type=ContextType.TASK,
        patterns=(
            re.compile(r"\b(?:research|analyze|investigate|find|search)\b", re.I),
            re.compile(r"\b(?:in\s+the\s+background|separately|async)", re.I),
            re.compile(r"\b(?:long-running|take\s+a\s+while|batch)", re.I),
        ),
        keywords=("research", "analyze", "background", "batch", "async"),
        domains=("research", "analysis", "investigation"),
    ),
    ContextTypePattern(
        type=ContextType.BACKGROUND,
        patterns=(
            re.compile(r"\b(?:heartbeat|cron|schedule|periodic|monitor)", re.I),
            re.compile(r"\b(?:check\s+(?:in|on)|keep\s+an\s+eye)", re.I),
        ),
        keywords=("heartbeat", "cron", "schedule", "monitor", "periodic"),
        domains=("monitoring", "automation", "scheduling"),
    ),
    ContextTypePattern(
        type=ContextType.EXTERNAL,
        patterns=(
            re.compile(r"\b(?:discord|slack|telegram|whatsapp|group\s+chat)", re.I),
            re.compile(r"\b(?:channel|server|team|group)", re.I),
        ),
        keywords=("discord", "slack", "telegram", "channel", "group"),
        domains=("communication", "messaging", "social"),
    ),
)

CONTEXT_TYPE_THRESHOLD = 0.5


def analyze_content_for_context_type(message: str) -> ContextType | None:
    """Suggest a context type from content cues, or None when nothing is clear.

    Each type scores 0.4 per regex hit, 0.2 per keyword and 0.1 per domain
    word; the first type reaching 0.5 wins.
    """
    lowered = message.lower()
    for candidate in CONTEXT_TYPE_PATTERNS:
        score = sum(0.4 for regex in candidate.patterns if regex.search(message))
        score += sum(0.2 for keyword in candidate.keywords if keyword in lowered)
        score += sum(0.1 for domain in candidate.domains if domain in lowered)
        if score >= CONTEXT_TYPE_THRESHOLD:
            return candidate.type
    return None


class ContextRouter:
    """Routes messages to contexts. Holds only hints and usage counters."""

    def __init__(
        self,
        scorer: ContextScorer | None = None,
        classifier: IntentClassifier | None = None,
        *,
        explicit_switch_confidence: float = 0.95,
        hint_confidence: float = 0.85,
        stay_threshold: float = 0.7,
        stay_margin: float = 0.2,
        new_context_threshold: float = 0.5,
    ) -> None:
        self._scorer = scorer or ContextScorer()
        self._classifier = classifier or IntentClassifier()
        self._explicit_confidence = explicit_switch_confidence
        self._hint_confidence = hint_confidence
        self._stay_threshold = stay_threshold
        self._stay_margin = stay_margin
        self._new_context_threshold = new_context_threshold
        self._hints: list[RoutingHint] = []
        self._usage: dict[str, int] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        scorer: ContextScorer | None = None,
        classifier: IntentClassifier | None = None,
    ) -> ContextRouter:
        return cls(
            scorer or ContextScorer.from_settings(settings),
            classifier,
            explicit_switch_confidence=settings.explicit_switch_confidence,
            hint_confidence=settings.hint_confidence,
            stay_threshold=settings.stay_threshold,
            stay_margin=settings.stay_margin,
            new_context_threshold=settings.new_context_threshold,
        )

    # ------------------------------------------------------------------ #
    # Hints and usage
    # ------------------------------------------------------------------ #

    def add_routing_hint(self, hint: RoutingHint) -> None:
        self._hints.append(hint)
        # Stable sort: equal priorities keep insertion order
        self._hints.sort(key=lambda item: item.priority, reverse=True)
        log.info(
            "context_router.hint_added",
            pattern=hint.pattern,
            context_type=hint.context_type.value,
            priority=hint.priority,
        )

    def remove_routing_hint(self, pattern: str) -> None:
        self._hints = [hint for hint in self._hints if hint.pattern != pattern]

    @property
    def routing_hints(self) -> list[RoutingHint]:
        return list(self._hints)

    def record_context_usage(self, context_id: str) -> None:
        self._usage[context_id] = self._usage.get(context_id, 0) + 1

    def forget_context(self, context_id: str) -> None:
        self._usage.pop(context_id, None)

    def routing_stats(self) -> dict[str, Any]:
        return {
            "total_routings": sum(self._usage.values()),
            "context_usage": dict(self._usage),
            "custom_hints": len(self._hints),
        }

    # ------------------------------------------------------------------ #
    # Routing
    # ------------------------------------------------------------------ #

    def route(
        self,
        message: str,
        contexts: Sequence[Context],
        current_context_id: str | None = None,
    ) -> RoutingDecision:
        """Decide the target context for ``message``.

        Args:
            message: Inbound message text
            contexts: Read view of all contexts (e.g. ``ContextStore.snapshot()``)
            current_context_id: Context the user is currently in, if any

        Returns:
            RoutingDecision. ``suggest_new_context`` is set when no context fits.
        """
        intents = self._classifier.classify(message)
        routable = [context for context in contexts if context.is_routable]

        decision = self._explicit_switch(message, routable)
        if decision is None:
            decision = self._hint_route(message, routable)
        if decision is None:
            decision = self._score_route(message, routable, current_context_id)

        decision.intents = intents
        decision.reasoning.append(f"Primary intent: {intents[0].type.value}")
        log.info(
            "context_router.routed",
            target_context_id=decision.target_context_id,
            confidence=round(decision.confidence, 3),
            suggest_new_context=decision.suggest_new_context,
            suggested_type=(
                decision.suggested_context_type.value if decision.suggested_context_type else None
            ),
            intent=intents[0].type.value,
        )
        return decision

    def analyze_content_for_context_type(self, message: str) -> ContextType | None:
        return analyze_content_for_context_type(message)

    def _explicit_switch(self, message: str, contexts: list[Context]) -> RoutingDecision | None:
        for pattern in _SWITCH_PATTERNS:
            match = pattern.search(message)
            if not match:
                continue
            target = self._normalize_target(match.group(1))
            if not target:
                continue
            for context in contexts:
                goal = (context.goal or "").lower()
                if target in goal or target in context.id.lower():
                    return RoutingDecision(
                        target_context_id=context.id,
                        confidence=self._explicit_confidence,
                        reasoning=[f'Explicit switch request to "{match.group(1).strip()}"'],
                    )
        return None

    def _hint_route(self, message: str, contexts: list[Context]) -> RoutingDecision | None:
        hint = self._match_hint(message)
        if hint is None:
            return None
        for context in contexts:
            if context.type == hint.context_type and context.status == ContextStatus.ACTIVE:
                return RoutingDecision(
                    target_context_id=context.id,
                    confidence=self._hint_confidence,
                    reasoning=[f"Matched routing hint: {hint.description or hint.pattern}"],
                )
        log.debug(
            "context_router.hint_without_context",
            pattern=hint.pattern,
            context_type=hint.context_type.value,
        )
        return None

    def _match_hint(self, message: str) -> RoutingHint | None:
        for hint in self._hints:
            try:
                if re.search(hint.pattern, message, re.IGNORECASE):
                    return hint
            except re.error:
                if hint.pattern.lower() in message.lower():
                    return hint
        return None

    def _score_route(
        self,
        message: str,
        contexts: list[Context],
        current_context_id: str | None,
    ) -> RoutingDecision:
        ranked = self._scorer.rank(message, contexts)
        top = ranked[0] if ranked else None
        current = next((s for s in ranked if s.context_id == current_context_id), None)

        if (
            top is not None
            and current is not None
            and current.score >= self._stay_threshold
            and top.score - current.score < self._stay_margin
        ):
            others = [score for score in ranked if score.context_id != current.context_id]
            return RoutingDecision(
                target_context_id=current.context_id,
                confidence=current.score,
                reasoning=["Current context is suitable for this message", *current.reasons],
                alternatives=self._alternatives(others),
            )

        if top is None or top.score < self._new_context_threshold:
            suggested = analyze_content_for_context_type(message) or ContextType.PRIMARY
            return RoutingDecision(
                target_context_id=current_context_id,
                confidence=top.score if top else 0.0,
                reasoning=["No existing context is a good match"],
                alternatives=self._alternatives(ranked),
                suggest_new_context=True,
                suggested_context_type=suggested,
            )

        return RoutingDecision(
            target_context_id=top.context_id,
            confidence=top.score,
            reasoning=list(top.reasons),
            alternatives=self._alternatives(ranked[1:]),
        )

    @staticmethod
    def _alternatives(scores: list[SimilarityScore]) -> list[AlternativeRoute]:
        return [
            AlternativeRoute(context_id=score.context_id, confidence=score.score)
            for score in scores[:MAX_ALTERNATIVES]
            if score.score > 0
        ]

    @staticmethod
    def _normalize_target(raw: str) -> str:
        target = raw.strip().rstrip(".!?,;:").strip().lower()
        target = _TARGET_PREFIX.sub("", target)
        return _TARGET_SUFFIX.sub("", target).strip()
