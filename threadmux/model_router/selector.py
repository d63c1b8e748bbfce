"""Model selection - score registered candidates against per-message criteria.

Selection runs in three stages:

1. Build SelectionCriteria from the ComplexityAnalyzer signals, vision cue
   words, an estimated context length and caller preferences.
2. Hard-reject candidates lacking vision when vision is required, or whose
   context window is smaller than the estimated context length. Everything
   else accumulates a soft score (quality, capability matches, complexity
   fit, urgency, budget, thinking support, historical success, preference).
3. Build a concrete ModelConfig (thinking level, temperature, max tokens)
   for the winner.

When every candidate is rejected the registry's default model is returned
instead of raising. Raw scores are used for ranking; the reported score is
the raw score divided by the best score attainable for the same criteria,
clamped to [0, 1].
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING

import structlog

from threadmux.analysis.complexity import ComplexityAnalyzer, ComplexitySignals
from threadmux.model_router.metrics import (
    BASELINE_SUCCESS_RATE,
    HISTORY_WEIGHT,
    ModelUsageTracker,
)
from threadmux.model_router.registry import ModelCandidate, ModelRegistry
from threadmux.types import (
    ComplexityLevel,
    ModelCapability,
    QualityLevel,
    ThinkingLevel,
    UrgencyLevel,
    UserPreferences,
    clamp,
    estimate_tokens,
)

if TYPE_CHECKING:
    from threadmux.config import Settings
    from threadmux.types import Context

log = structlog.get_logger(__name__)

QUALITY_WEIGHTS: dict[QualityLevel, float] = {
    QualityLevel.DRAFT: 0.2,
    QualityLevel.STANDARD: 0.4,
    QualityLevel.HIGH: 0.6,
    QualityLevel.PREMIUM: 0.8,
}

# Minimum quality score considered adequate for each complexity level
COMPLEXITY_QUALITY_THRESHOLDS: dict[ComplexityLevel, int] = {
    ComplexityLevel.TRIVIAL: 60,
    ComplexityLevel.SIMPLE: 70,
    ComplexityLevel.MODERATE: 80,
    ComplexityLevel.COMPLEX: 88,
    ComplexityLevel.EXPERT: 95,
}

INFERRED_QUALITY: dict[ComplexityLevel, QualityLevel] = {
    ComplexityLevel.TRIVIAL: QualityLevel.DRAFT,
    ComplexityLevel.SIMPLE: QualityLevel.STANDARD,
    ComplexityLevel.MODERATE: QualityLevel.STANDARD,
    ComplexityLevel.COMPLEX: QualityLevel.HIGH,
    ComplexityLevel.EXPERT: QualityLevel.PREMIUM,
}

MAX_OUTPUT_TOKENS: dict[ComplexityLevel, int] = {
    ComplexityLevel.TRIVIAL: 1024,
    ComplexityLevel.SIMPLE: 1024,
    ComplexityLevel.MODERATE: 4096,
    ComplexityLevel.COMPLEX: 4096,
    ComplexityLevel.EXPERT: 8192,
}

VISION_CUES = (
    "image", "picture", "photo", "screenshot",
    "look at", "analyze this", "what do you see",
    ".png", ".jpg", ".jpeg", ".gif", ".webp",
)

# Output length assumed when estimating cost (fraction of input) and latency
OUTPUT_COST_RATIO = 0.5
OUTPUT_LATENCY_RATIO = 0.3


@dataclass(frozen=True)
class SelectionWeights:
    """Bonuses and penalties added to a candidate's quality score.

    Penalties are stored as positive magnitudes and subtracted.
    """

    code: float = 0.15
    reasoning: float = 0.2
    creativity: float = 0.15
    complexity_fit: float = 0.2
    fast: float = 0.2
    slow_penalty: float = 0.1
    cheap_background: float = 0.1
    over_budget_penalty: float = 0.3
    under_budget: float = 0.1
    thinking: float = 0.15
    preferred: float = 0.1

    def __post_init__(self) -> None:
        negative = [f.name for f in fields(self) if getattr(self, f.name) < 0]
        if negative:
            raise ValueError(f"selection weights must be non-negative: {', '.join(negative)}")


@dataclass(frozen=True)
class SelectionCriteria:
    task_complexity: ComplexityLevel
    requires_reasoning: bool = False
    requires_code: bool = False
    requires_creativity: bool = False
    requires_vision: bool = False
    context_length: int = 0
    urgency: UrgencyLevel = UrgencyLevel.NORMAL
    budget_constraint: float | None = None
    quality_requirement: QualityLevel = QualityLevel.STANDARD

    def __post_init__(self) -> None:
        if self.context_length < 0:
            raise ValueError("context_length cannot be negative")
        if self.budget_constraint is not None and self.budget_constraint <= 0:
            raise ValueError("budget_constraint must be positive")


@dataclass(frozen=True)
class SelectionPreferences:
    """Caller overrides for a single selection.

    Any field left as None is inferred from the message.
    """

    urgency: UrgencyLevel | None = None
    budget_constraint: float | None = None
    quality_requirement: QualityLevel | None = None
    preferred_models: tuple[str, ...] = ()
    avoid_models: tuple[str, ...] = ()
    default_thinking_level: ThinkingLevel | None = None

    @classmethod
    def from_user(
        cls,
        user: UserPreferences | None,
        *,
        urgency: UrgencyLevel | None = None,
        budget_constraint: float | None = None,
        quality_requirement: QualityLevel | None = None,
    ) -> SelectionPreferences:
        """Combine stored user preferences with per-request overrides."""
        return cls(
            urgency=urgency,
            budget_constraint=budget_constraint,
            quality_requirement=quality_requirement,
            preferred_models=tuple(user.preferred_models) if user else (),
            avoid_models=tuple(user.avoid_models) if user else (),
            default_thinking_level=user.default_thinking_level if user else None,
        )


@dataclass(frozen=True)
class ModelConfig:
    """Concrete generation settings for the selected model."""

    model_id: str
    thinking_level: ThinkingLevel
    temperature: float
    max_tokens: int
    capabilities: frozenset[ModelCapability] = frozenset()
    system_prompt: str | None = None

    def __post_init__(self) -> None:
        if self.max_tokens < 1:
            raise ValueError("max_tokens must be positive")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError("temperature must be 0.0-2.0")


@dataclass
class ModelRecommendation:
    model: ModelCandidate
    config: ModelConfig
    score: float
    reasoning: list[str]
    estimated_cost: float
    estimated_latency: float
    criteria: SelectionCriteria | None = None
    fallback: bool = False

    def __post_init__(self) -> None:
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"score must be 0.0-1.0, got {self.score}")


@dataclass
class _Scored:
    model: ModelCandidate
    raw: float
    reasoning: list[str] = field(default_factory=list)


class ModelSelector:
    """Scores registry candidates and builds a generation config for the winner.

    Scoring is pure given the registry and the usage history. ``record_usage``
    is the only mutation and feeds the historical success adjustment.
    """

    def __init__(
        self,
        registry: ModelRegistry | None = None,
        analyzer: ComplexityAnalyzer | None = None,
        usage: ModelUsageTracker | None = None,
        settings: Settings | None = None,
        weights: SelectionWeights | None = None,
    ) -> None:
        """Initialize the selector.

        Args:
            registry: Model catalog. If None, a default registry is built
                (honouring ``settings.default_model_id`` when given).
            analyzer: Complexity analyzer. If None, one is built with
                ``settings.complexity_weights()`` (or the defaults).
            usage: Usage tracker for historical success rates.
            settings: Application settings for the history threshold and
                scoring weights.
            weights: Scoring bonuses and penalties. Overrides ``settings``.
        """
        if registry is None:
            registry = ModelRegistry(
                default_model_id=settings.default_model_id if settings else None
            )
        if weights is None:
            weights = settings.selection_weights() if settings else SelectionWeights()
        self._registry = registry
        self._weights = weights
        self._analyzer = analyzer or ComplexityAnalyzer(
            settings.complexity_weights() if settings else None
        )
        self._usage = usage or ModelUsageTracker(
            min_outcomes=settings.min_outcomes_for_history if settings else 10
        )

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    @property
    def weights(self) -> SelectionWeights:
        return self._weights

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def select_model(
        self,
        message: str,
        context: Context | None = None,
        preferences: SelectionPreferences | None = None,
    ) -> ModelRecommendation:
        """Select the best model for a message.

        Args:
            message: Inbound message text
            context: Target context; its token total counts toward context length
            preferences: Optional caller overrides

        Returns:
            ModelRecommendation (never raises for exhausted candidates)
        """
        prefs = preferences or SelectionPreferences()
        assessment = self._analyzer.assess(message)
        criteria = self.build_criteria(message, assessment.signals, assessment.level, context, prefs)
        return self._recommend(criteria, prefs)

    def select_by_requirements(
        self,
        criteria: SelectionCriteria,
        preferences: SelectionPreferences | None = None,
    ) -> ModelRecommendation:
        """Select a model for explicit criteria, skipping message analysis."""
        return self._recommend(criteria, preferences or SelectionPreferences())

    def recommend_for_context(self, context: Context, count: int = 3) -> list[ModelRecommendation]:
        """Rank the top ``count`` models for a context's recent conversation.

        The last 10 messages are analyzed together; quality defaults to standard.
        """
        combined = "\n".join(message.content for message in context.messages[-10:])
        signals = self._analyzer.analyze(combined)
        criteria = SelectionCriteria(
            task_complexity=self._analyzer.to_level(signals),
            requires_reasoning=signals.multi_step_reasoning,
            requires_code=signals.code_presence,
            requires_creativity=signals.creativity_required,
            requires_vision=False,
            context_length=context.token_usage.total,
            urgency=UrgencyLevel.NORMAL,
            quality_requirement=QualityLevel.STANDARD,
        )
        prefs = SelectionPreferences()
        ceiling = self._score_ceiling(criteria, prefs)
        ranked = self._score_models(criteria, prefs)
        if not ranked:
            return [self._fallback(criteria, prefs)]
        return [self._to_recommendation(item, criteria, prefs, ceiling) for item in ranked[:count]]

    def record_usage(self, model_id: str, success: bool) -> None:
        self._usage.record(model_id, success)

    def register_model(self, candidate: ModelCandidate) -> None:
        self._registry.register(candidate)

    def available_models(self) -> list[ModelCandidate]:
        return self._registry.all()

    def usage_stats(self) -> dict[str, dict[str, float]]:
        return self._usage.stats()

    # ------------------------------------------------------------------ #
    # Criteria
    # ------------------------------------------------------------------ #

    def build_criteria(
        self,
        message: str,
        signals: ComplexitySignals,
        level: ComplexityLevel,
        context: Context | None,
        preferences: SelectionPreferences,
    ) -> SelectionCriteria:
        return SelectionCriteria(
            task_complexity=level,
            requires_reasoning=signals.multi_step_reasoning or signals.abstract_concept_count > 0,
            requires_code=signals.code_presence,
            requires_creativity=signals.creativity_required,
            requires_vision=detect_vision_requirement(message),
            context_length=estimate_context_length(message, context),
            urgency=preferences.urgency or UrgencyLevel.NORMAL,
            budget_constraint=preferences.budget_constraint,
            quality_requirement=preferences.quality_requirement or INFERRED_QUALITY[level],
        )

    # ------------------------------------------------------------------ #
    # Scoring
    # ------------------------------------------------------------------ #

    def _recommend(
        self,
        criteria: SelectionCriteria,
        preferences: SelectionPreferences,
    ) -> ModelRecommendation:
        ranked = self._score_models(criteria, preferences)
        if not ranked:
            return self._fallback(criteria, preferences)

        best = ranked[0]
        recommendation = self._to_recommendation(
            best, criteria, preferences, self._score_ceiling(criteria, preferences)
        )
        log.info(
            "model_selector.selected",
            model=best.model.model_id,
            complexity=criteria.task_complexity.value,
            score=round(recommendation.score, 3),
            candidates=len(ranked),
            thinking_level=recommendation.config.thinking_level.value,
        )
        return recommendation

    def _score_models(
        self,
        criteria: SelectionCriteria,
        preferences: SelectionPreferences,
    ) -> list[_Scored]:
        scored: list[_Scored] = []
        for model in self._registry.all():
            if model.model_id in preferences.avoid_models:
                continue
            if criteria.requires_vision and not model.has(ModelCapability.VISION):
                continue
            if criteria.context_length > model.context_window:
                continue
            scored.append(self._score_model(model, criteria, preferences))

        # sorted() is stable: equal scores keep registry order
        return sorted(scored, key=lambda item: item.raw, reverse=True)

    def _score_model(
        self,
        model: ModelCandidate,
        criteria: SelectionCriteria,
        preferences: SelectionPreferences,
    ) -> _Scored:
        item = _Scored(model=model, raw=0.0)
        weights = self._weights

        item.raw += model.quality_score / 100 * QUALITY_WEIGHTS[criteria.quality_requirement]
        item.reasoning.append(f"Quality: {model.quality_score}/100")

        if criteria.requires_code and model.has(ModelCapability.CODE):
            item.raw += weights.code
            item.reasoning.append("Supports code")
        if criteria.requires_reasoning and model.has(ModelCapability.REASONING):
            item.raw += weights.reasoning
            item.reasoning.append("Strong reasoning")
        if criteria.requires_creativity and model.has(ModelCapability.CREATIVE):
            item.raw += weights.creativity
            item.reasoning.append("Creative capability")

        fit = complexity_fit(model.quality_score, criteria.task_complexity)
        item.raw += fit * weights.complexity_fit
        item.reasoning.append(f"Complexity match: {fit * 100:.0f}%")

        match criteria.urgency:
            case UrgencyLevel.IMMEDIATE:
                if model.has(ModelCapability.FAST):
                    item.raw += weights.fast
                    item.reasoning.append("Fast response time")
                else:
                    item.raw -= weights.slow_penalty
            case UrgencyLevel.BACKGROUND:
                if model.has(ModelCapability.CHEAP):
                    item.raw += weights.cheap_background
                    item.reasoning.append("Cost-effective for background")
            case UrgencyLevel.NORMAL:
                pass

        if criteria.budget_constraint is not None:
            cost = estimate_cost(model, criteria.context_length)
            if cost > criteria.budget_constraint:
                item.raw -= weights.over_budget_penalty
                item.reasoning.append("Exceeds budget")
            elif cost < criteria.budget_constraint * 0.5:
                item.raw += weights.under_budget
                item.reasoning.append("Within budget")

        if criteria.task_complexity in (ComplexityLevel.COMPLEX, ComplexityLevel.EXPERT):
            if model.thinking_support:
                item.raw += weights.thinking
                item.reasoning.append("Thinking mode available")

        adjustment = self._usage.adjustment(model.model_id)
        if adjustment is not None:
            item.raw += adjustment
            rate = adjustment / HISTORY_WEIGHT + BASELINE_SUCCESS_RATE
            item.reasoning.append(f"Success rate: {rate * 100:.0f}%")

        if model.model_id in preferences.preferred_models:
            item.raw += weights.preferred
            item.reasoning.append("Preferred model")

        return item

    def _score_ceiling(
        self,
        criteria: SelectionCriteria,
        preferences: SelectionPreferences,
    ) -> float:
        """Best raw score any candidate could reach for these criteria."""
        weights = self._weights
        ceiling = QUALITY_WEIGHTS[criteria.quality_requirement] + weights.complexity_fit
        if criteria.requires_code:
            ceiling += weights.code
        if criteria.requires_reasoning:
            ceiling += weights.reasoning
        if criteria.requires_creativity:
            ceiling += weights.creativity
        if criteria.urgency == UrgencyLevel.IMMEDIATE:
            ceiling += weights.fast
        elif criteria.urgency == UrgencyLevel.BACKGROUND:
            ceiling += weights.cheap_background
        if criteria.budget_constraint is not None:
            ceiling += weights.under_budget
        if criteria.task_complexity in (ComplexityLevel.COMPLEX, ComplexityLevel.EXPERT):
            ceiling += weights.thinking
        ceiling += (1.0 - BASELINE_SUCCESS_RATE) * HISTORY_WEIGHT
        if preferences.preferred_models:
            ceiling += weights.preferred
        return ceiling

    def _to_recommendation(
        self,
        item: _Scored,
        criteria: SelectionCriteria,
        preferences: SelectionPreferences,
        ceiling: float,
    ) -> ModelRecommendation:
        return ModelRecommendation(
            model=item.model,
            config=build_model_config(item.model, criteria, preferences.default_thinking_level),
            score=clamp(item.raw / ceiling),
            reasoning=item.reasoning,
            estimated_cost=estimate_cost(item.model, criteria.context_length),
            estimated_latency=estimate_latency(item.model, criteria.context_length),
            criteria=criteria,
        )

    def _fallback(
        self,
        criteria: SelectionCriteria,
        preferences: SelectionPreferences,
    ) -> ModelRecommendation:
        model = self._registry.default_model()
        log.warning(
            "model_selector.fallback_default",
            model=model.model_id,
            requires_vision=criteria.requires_vision,
            context_length=criteria.context_length,
        )
        return ModelRecommendation(
            model=model,
            config=build_model_config(model, criteria, preferences.default_thinking_level),
            score=0.0,
            reasoning=["No candidate satisfied the hard constraints; using default model"],
            estimated_cost=estimate_cost(model, criteria.context_length),
            estimated_latency=estimate_latency(model, criteria.context_length),
            criteria=criteria,
            fallback=True,
        )


# ------------------------------------------------------------------ #
# Pure helpers
# ------------------------------------------------------------------ #


def complexity_fit(quality_score: int, complexity: ComplexityLevel) -> float:
    """How well a model's quality matches the task (0.0-1.0).

    At or above the threshold the model is adequate with a small overkill
    penalty (at most 0.3). Below it the shortfall costs 1.0 per 20 points.
    """
    threshold = COMPLEXITY_QUALITY_THRESHOLDS[complexity]
    if quality_score >= threshold:
        overkill = (quality_score - threshold) / 20
        return 1 - min(overkill * 0.3, 0.3)
    shortfall = (threshold - quality_score) / 20
    return max(1 - shortfall, 0.0)


def build_model_config(
    model: ModelCandidate,
    criteria: SelectionCriteria,
    default_thinking_level: ThinkingLevel | None = None,
) -> ModelConfig:
    """Derive thinking level, temperature and output budget for a model."""
    thinking = ThinkingLevel.OFF
    if model.thinking_support:
        if criteria.task_complexity == ComplexityLevel.EXPERT:
            thinking = model.max_thinking_level
        elif criteria.task_complexity == ComplexityLevel.COMPLEX:
            thinking = (
                ThinkingLevel.MEDIUM
                if model.max_thinking_level == ThinkingLevel.HIGH
                else model.max_thinking_level
            )
        elif criteria.requires_reasoning:
            thinking = ThinkingLevel.LOW
        elif default_thinking_level is not None:
            thinking = default_thinking_level
        if thinking.rank > model.max_thinking_level.rank:
            thinking = model.max_thinking_level

    if criteria.requires_creativity:
        temperature = 0.9
    elif criteria.requires_code:
        temperature = 0.3
    elif criteria.requires_reasoning:
        temperature = 0.5
    else:
        temperature = 0.7

    return ModelConfig(
        model_id=model.model_id,
        thinking_level=thinking,
        temperature=temperature,
        max_tokens=MAX_OUTPUT_TOKENS[criteria.task_complexity],
        capabilities=model.capabilities,
    )


def detect_vision_requirement(message: str) -> bool:
    lowered = message.lower()
    return any(cue in lowered for cue in VISION_CUES)


def estimate_context_length(message: str, context: Context | None = None) -> int:
    """Tokens for the message plus everything the context already holds."""
    return estimate_tokens(message) + (context.token_usage.total if context else 0)


def estimate_cost(model: ModelCandidate, token_count: int) -> float:
    """USD estimate assuming output is half the input length."""
    input_cost = token_count * model.cost_per_1k.input / 1000
    output_cost = token_count * OUTPUT_COST_RATIO * model.cost_per_1k.output / 1000
    return input_cost + output_cost


def estimate_latency(model: ModelCandidate, token_count: int) -> float:
    """Milliseconds to full response assuming output is 30% of the input length."""
    return model.latency.first_token + token_count * OUTPUT_LATENCY_RATIO * model.latency.per_token
