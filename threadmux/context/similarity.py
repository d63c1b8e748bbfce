"""Multi-factor similarity between an inbound message and a context.

Factors (default weights):
- goal: goal-word overlap, 0.15 per shared word, capped at 0.4 (0.3)
- topic: share of summary topics mentioned in the message (0.25)
- entity: share of summary entities mentioned in the message (0.25)
- recent: best word overlap with any of the last N messages, counted
  above 0.1 (0.15)
- recency: linear decay to zero over 24h since last activity (0.05)

The score is the weighted mean over the factors that matched, clamped to
[0, 1]. Recency only refines a score; a context with no content match
scores 0 regardless of how recently it was used.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from threadmux.types import Clock, Context, clamp, utc_now

if TYPE_CHECKING:
    from threadmux.config import Settings

_TOKEN = re.compile(r"[a-z0-9_]+(?:['.-][a-z0-9_]+)*")

MIN_MESSAGE_WORD_LENGTH = 4
RECENT_SIMILARITY_FLOOR = 0.1


def tokenize(text: str) -> set[str]:
    return set(_TOKEN.findall(text.lower()))


def message_words(text: str) -> set[str]:
    """Significant words of a message: tokens of four or more characters."""
    return {word for word in tokenize(text) if len(word) >= MIN_MESSAGE_WORD_LENGTH}


def jaccard(left: Iterable[str], right: Iterable[str]) -> float:
    a, b = set(left), set(right)
    union = a | b
    return len(a & b) / len(union) if union else 0.0


@dataclass(frozen=True)
class SimilarityWeights:
    goal: float = 0.3
    topic: float = 0.25
    entity: float = 0.25
    recent: float = 0.15
    recency: float = 0.05

    def __post_init__(self) -> None:
        if min(self.goal, self.topic, self.entity, self.recent, self.recency) < 0:
            raise ValueError("similarity weights must be non-negative")


@dataclass
class SimilarityScore:
    context_id: str
    score: float
    factors: dict[str, float] = field(default_factory=dict)
    reasons: list[str] = field(default_factory=list)
    matched_keywords: list[str] = field(default_factory=list)
    matched_entities: list[str] = field(default_factory=list)


class ContextScorer:
    """Scores contexts against a message. Pure apart from reading the clock."""

    def __init__(
        self,
        weights: SimilarityWeights | None = None,
        *,
        recent_window: int = 5,
        recency_decay_hours: float = 24.0,
        goal_word_increment: float = 0.15,
        goal_score_cap: float = 0.4,
        clock: Clock = utc_now,
    ) -> None:
        self._weights = weights or SimilarityWeights()
        self._recent_window = recent_window
        self._decay_hours = recency_decay_hours
        self._goal_increment = goal_word_increment
        self._goal_cap = goal_score_cap
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> ContextScorer:
        return cls(
            settings.scoring_weights(),
            recent_window=settings.recent_message_window,
            recency_decay_hours=settings.recency_decay_hours,
            goal_word_increment=settings.goal_word_increment,
            goal_score_cap=settings.goal_score_cap,
            clock=clock,
        )

    def score(self, message: str, context: Context) -> SimilarityScore:
        words = message_words(message)
        lowered = message.lower()
        result = SimilarityScore(context_id=context.id, score=0.0)

        if context.goal:
            shared = sorted(words & tokenize(context.goal))
            if shared:
                result.factors["goal"] = min(len(shared) * self._goal_increment, self._goal_cap)
                result.matched_keywords = shared
                result.reasons.append(f'Goal: "{context.goal}"')

        topics = context.summary.topics
        if topics:
            mentioned = sorted(topic for topic in topics if topic in words)
            if mentioned:
                result.factors["topic"] = len(mentioned) / len(topics)
                result.reasons.append(f"Topics: {', '.join(mentioned[:3])}")

        entities = context.summary.entities
        if entities:
            matched = [entity.value for entity in entities if entity.value.lower() in lowered]
            if matched:
                result.factors["entity"] = len(matched) / len(entities)
                result.matched_entities = matched
                result.reasons.append(f"Matched: {', '.join(matched)}")

        if words:
            best = 0.0
            for previous in context.messages[-self._recent_window :]:
                overlap = len(words & tokenize(previous.content))
                best = max(best, overlap / len(words))
            if best > RECENT_SIMILARITY_FLOOR:
                result.factors["recent"] = best
                result.reasons.append("Similar to recent messages")

        if not result.factors:
            return result

        hours = (self._clock() - context.last_active_at).total_seconds() / 3600
        result.factors["recency"] = max(0.0, 1 - hours / self._decay_hours)
        result.reasons.append(f"Active {max(hours, 0.0):.1f}h ago")

        weights = {
            "goal": self._weights.goal,
            "topic": self._weights.topic,
            "entity": self._weights.entity,
            "recent": self._weights.recent,
            "recency": self._weights.recency,
        }
        total_weight = sum(weights[name] for name in result.factors)
        if total_weight > 0:
            weighted = sum(value * weights[name] for name, value in result.factors.items())
            result.score = clamp(weighted / total_weight)
        return result

    def rank(self, message: str, contexts: Iterable[Context]) -> list[SimilarityScore]:
        """Score routable contexts, best first. Ties keep input order."""
        scores = [self.score(message, context) for context in contexts if context.is_routable]
        return sorted(scores, key=lambda item: item.score, reverse=True)


def context_similarity(left: Context, right: Context) -> float:
    """Averaged goal, topic and entity Jaccard overlap between two contexts.

    Only factors both contexts carry are averaged.
    """
    parts: list[float] = []
    if left.goal and right.goal:
        parts.append(jaccard(tokenize(left.goal), tokenize(right.goal)))
    if left.summary.topics and right.summary.topics:
        parts.append(jaccard(left.summary.topics, right.summary.topics))
    left_entities = {entity.value.lower() for entity in left.summary.entities}
    right_entities = {entity.value.lower() for entity in right.summary.entities}
    if left_entities and right_entities:
        parts.append(jaccard(left_entities, right_entities))
    return sum(parts) / len(parts) if parts else 0.0
