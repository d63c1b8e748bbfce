"""Shared domain types for the context orchestrator.

Enums are closed sets; every decision point that dispatches on one of them
handles each member explicitly. Dataclasses carry their own validation in
``__post_init__`` so invalid values fail at construction time.
"""

from __future__ import annotations

import math
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

Clock = Callable[[], datetime]

# Role overhead added to every message when estimating its token weight
MESSAGE_OVERHEAD_TOKENS = 10


def utc_now() -> datetime:
    """Default clock: timezone-aware current UTC time."""
    return datetime.now(UTC)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


def estimate_message_tokens(content: str) -> int:
    return estimate_tokens(content) + MESSAGE_OVERHEAD_TOKENS


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


# ------------------------------------------------------------------ #
# Enumerations
# ------------------------------------------------------------------ #


class ContextType(StrEnum):
    PRIMARY = "primary"
    TASK = "task"
    SPECIALIST = "specialist"
    BACKGROUND = "background"
    EXTERNAL = "external"


class ContextStatus(StrEnum):
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"
    FAILED = "failed"


class IntentType(StrEnum):
    TASK_CREATION = "task_creation"
    CONTEXT_SWITCH = "context_switch"
    QUESTION = "question"
    COMMAND = "command"
    REQUEST = "request"
    CLARIFICATION = "clarification"
    FEEDBACK = "feedback"
    INFORMATION = "information"
    GREETING = "greeting"
    FAREWELL = "farewell"


class ComplexityLevel(StrEnum):
    TRIVIAL = "trivial"
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    EXPERT = "expert"


class ModelCapability(StrEnum):
    CODE = "code"
    REASONING = "reasoning"
    CREATIVE = "creative"
    VISION = "vision"
    TOOLS = "tools"
    LONG_CONTEXT = "long_context"
    FAST = "fast"
    CHEAP = "cheap"


class ThinkingLevel(StrEnum):
    OFF = "off"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _THINKING_RANK[self]


_THINKING_RANK = {
    ThinkingLevel.OFF: 0,
    ThinkingLevel.LOW: 1,
    ThinkingLevel.MEDIUM: 2,
    ThinkingLevel.HIGH: 3,
}


class UrgencyLevel(StrEnum):
    IMMEDIATE = "immediate"
    NORMAL = "normal"
    BACKGROUND = "background"


class QualityLevel(StrEnum):
    DRAFT = "draft"
    STANDARD = "standard"
    HIGH = "high"
    PREMIUM = "premium"


class ActionType(StrEnum):
    CONTINUE = "continue"
    RESUME = "resume"
    REVIEW = "review"
    ARCHIVE = "archive"
    MERGE = "merge"


class UserAction(StrEnum):
    SWITCH = "switch"
    CREATE = "create"
    ARCHIVE = "archive"
    MERGE = "merge"


class EntityType(StrEnum):
    PERSON = "person"
    ORGANIZATION = "organization"
    PROJECT = "project"
    TECHNOLOGY = "technology"
    DATE = "date"
    FILE = "file"
    URL = "url"
    TASK = "task"


class ContextHealth(StrEnum):
    HEALTHY = "healthy"
    MODERATE = "moderate"
    HIGH = "high"


# ------------------------------------------------------------------ #
# Context data model
# ------------------------------------------------------------------ #


@dataclass
class ContextMessage:
    role: str
    content: str
    timestamp: datetime
    id: str = field(default_factory=lambda: new_id("msg"))
    token_count: int = 0

    def __post_init__(self) -> None:
        if not self.role:
            raise ValueError("role must not be empty")
        if self.token_count <= 0:
            self.token_count = estimate_message_tokens(self.content)

    def as_prompt(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ExtractedEntity:
    type: EntityType
    value: str
    mentions: int = 1

    def __post_init__(self) -> None:
        if self.mentions < 1:
            raise ValueError("mentions must be at least 1")

    @property
    def key(self) -> tuple[EntityType, str]:
        return (self.type, self.value.lower())


@dataclass
class ContextSummary:
    topics: set[str] = field(default_factory=set)
    entities: list[ExtractedEntity] = field(default_factory=list)


@dataclass
class TaskQueue:
    pending: list[str] = field(default_factory=list)
    active: list[str] = field(default_factory=list)

    @property
    def has_tasks(self) -> bool:
        return bool(self.pending or self.active)


@dataclass
class TokenUsage:
    prompt: int = 0
    completion: int = 0
    total: int = 0


@dataclass
class Context:
    """A single conversation thread with its own goal, history and token budget."""

    type: ContextType
    created_at: datetime
    last_active_at: datetime
    id: str = field(default_factory=lambda: new_id("ctx"))
    status: ContextStatus = ContextStatus.ACTIVE
    goal: str | None = None
    messages: list[ContextMessage] = field(default_factory=list)
    summary: ContextSummary = field(default_factory=ContextSummary)
    tasks: TaskQueue = field(default_factory=TaskQueue)
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    snapshot_ids: list[str] = field(default_factory=list)
    last_snapshot_at: datetime | None = None
    merged_from: list[str] = field(default_factory=list)

    @property
    def snapshot_count(self) -> int:
        return len(self.snapshot_ids)

    @property
    def is_routable(self) -> bool:
        return self.status in (ContextStatus.ACTIVE, ContextStatus.PAUSED)

    def copy(self) -> Context:
        """Return a read view whose containers are independent of this context."""
        return Context(
            type=self.type,
            created_at=self.created_at,
            last_active_at=self.last_active_at,
            id=self.id,
            status=self.status,
            goal=self.goal,
            messages=list(self.messages),
            summary=ContextSummary(
                topics=set(self.summary.topics),
                entities=list(self.summary.entities),
            ),
            tasks=TaskQueue(pending=list(self.tasks.pending), active=list(self.tasks.active)),
            token_usage=TokenUsage(
                prompt=self.token_usage.prompt,
                completion=self.token_usage.completion,
                total=self.token_usage.total,
            ),
            snapshot_ids=list(self.snapshot_ids),
            last_snapshot_at=self.last_snapshot_at,
            merged_from=list(self.merged_from),
        )


@dataclass(frozen=True)
class MemorySnapshot:
    """Immutable compressed record replacing a contiguous range of older messages."""

    thread_id: str
    summary: str
    key_points: tuple[str, ...]
    entities: tuple[ExtractedEntity, ...]
    message_count: int
    token_count: int
    compressed_tokens: int
    first_message_id: str
    last_message_id: str
    first_message_at: datetime
    last_message_at: datetime
    created_at: datetime
    id: str = field(default_factory=lambda: new_id("snap"))

    def __post_init__(self) -> None:
        if self.message_count < 1:
            raise ValueError("a snapshot must cover at least one message")
        if self.compressed_tokens >= self.token_count:
            raise ValueError(
                f"compressed_tokens ({self.compressed_tokens}) must be smaller "
                f"than token_count ({self.token_count})"
            )


@dataclass
class ContextState:
    thread_id: str
    total_tokens: int
    active_message_count: int
    snapshot_count: int
    last_snapshot_at: datetime | None
    context_utilization: float


@dataclass
class ContextStatusReport:
    utilization: float
    total_tokens: int
    active_messages: int
    snapshot_count: int
    status: ContextHealth


@dataclass
class InjectableContext:
    """Messages ready to send to a model: snapshot memory first, then live history."""

    system_context: str | None
    messages: list[dict[str, str]]
    total_tokens: int
    snapshots_used: int


# ------------------------------------------------------------------ #
# Routing
# ------------------------------------------------------------------ #


@dataclass
class RoutingHint:
    """Operator-supplied pattern that force-routes matching messages to a context type."""

    pattern: str
    context_type: ContextType
    priority: int = 0
    description: str = ""


@dataclass
class DetectedIntent:
    type: IntentType
    confidence: float
    original_text: str
    entities: dict[str, str] = field(default_factory=dict)


@dataclass
class AlternativeRoute:
    context_id: str
    confidence: float


@dataclass
class RoutingDecision:
    target_context_id: str | None
    confidence: float
    reasoning: list[str] = field(default_factory=list)
    alternatives: list[AlternativeRoute] = field(default_factory=list)
    suggest_new_context: bool = False
    suggested_context_type: ContextType | None = None
    intents: list[DetectedIntent] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("confidence must be within [0, 1]")


@dataclass
class UserPreferences:
    auto_archive_after_days: int | None = None
    preferred_models: list[str] = field(default_factory=list)
    avoid_models: list[str] = field(default_factory=list)
    default_thinking_level: ThinkingLevel | None = None


# ------------------------------------------------------------------ #
# Recommendations
# ------------------------------------------------------------------ #


@dataclass
class SuggestedAction:
    type: ActionType
    label: str
    priority: int


@dataclass
class ThreadRecommendation:
    context_id: str
    relevance_score: int
    reasons: list[str]
    last_active_at: datetime
    suggested_action: SuggestedAction | None = None
    matched_keywords: list[str] = field(default_factory=list)
    matched_entities: list[str] = field(default_factory=list)


@dataclass
class MergeCandidate:
    context_ids: tuple[str, str]
    similarity: float
    reason: str


@dataclass
class PredictedContext:
    context_id: str
    confidence: float
    reasons: list[str]
    suggested_action: ActionType
    alternatives: list[AlternativeRoute] = field(default_factory=list)


@dataclass
class ProactiveSuggestion:
    action: ActionType
    context_id: str
    message: str
    priority: int
    related_context_id: str | None = None
    context_goal: str | None = None
