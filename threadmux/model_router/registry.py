"""Catalog of candidate models and their capability, cost and latency attributes.

The registry ships a default catalog and accepts custom registrations at
runtime. Model ids are LiteLLM identifiers so a selected candidate can be
handed straight to the generation collaborator.

The default model (used when every candidate is hard-rejected) is either
the configured ``default_model_id`` or the candidate with the largest
context window, ties broken by lowest combined per-1k cost.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from threadmux.errors import ConfigurationError
from threadmux.types import ModelCapability, ThinkingLevel

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TokenCost:
    """USD cost per 1k tokens."""

    input: float
    output: float

    def __post_init__(self) -> None:
        if self.input < 0 or self.output < 0:
            raise ValueError("token cost cannot be negative")


@dataclass(frozen=True)
class Latency:
    """Latency profile in milliseconds."""

    first_token: float
    per_token: float

    def __post_init__(self) -> None:
        if self.first_token < 0 or self.per_token < 0:
            raise ValueError("latency cannot be negative")


@dataclass(frozen=True)
class ModelCandidate:
    """Static descriptor of a model that can answer a message.

    Attributes:
        model_id: LiteLLM model identifier (e.g. "anthropic/claude-sonnet-4-5")
        display_name: Human-readable name
        capabilities: Capability tags used for matching and urgency/budget bonuses
        context_window: Maximum input tokens
        cost_per_1k: Input/output cost per 1k tokens
        latency: First-token and per-token latency
        quality_score: 0-100 quality rating
        thinking_support: Whether the model exposes a reasoning-effort setting
        max_thinking_level: Highest reasoning effort the model accepts
    """

    model_id: str
    capabilities: frozenset[ModelCapability]
    context_window: int
    cost_per_1k: TokenCost
    latency: Latency
    quality_score: int
    thinking_support: bool = False
    max_thinking_level: ThinkingLevel = ThinkingLevel.OFF
    display_name: str = ""
    provider: str = ""

    def __post_init__(self) -> None:
        if not self.model_id:
            raise ValueError("model_id must not be empty")
        if self.context_window < 1:
            raise ValueError("context_window must be positive")
        if not 0 <= self.quality_score <= 100:
            raise ValueError(f"quality_score must be 0-100, got {self.quality_score}")
        if not self.thinking_support and self.max_thinking_level != ThinkingLevel.OFF:
            raise ValueError("max_thinking_level requires thinking_support")

    def has(self, capability: ModelCapability) -> bool:
        return capability in self.capabilities

    @property
    def combined_cost(self) -> float:
        return self.cost_per_1k.input + self.cost_per_1k.output


def _caps(*names: str) -> frozenset[ModelCapability]:
    return frozenset(ModelCapability(name) for name in names)


DEFAULT_CANDIDATES: tuple[ModelCandidate, ...] = (
    ModelCandidate(
        model_id="anthropic/claude-opus-4-5",
        display_name="Claude Opus 4.5",
        provider="anthropic",
        capabilities=_caps("code", "reasoning", "creative", "vision", "tools", "long_context"),
        context_window=200_000,
        cost_per_1k=TokenCost(input=0.015, output=0.075),
        latency=Latency(first_token=1500, per_token=30),
        quality_score=98,
        thinking_support=True,
        max_thinking_level=ThinkingLevel.HIGH,
    ),
    ModelCandidate(
        model_id="anthropic/claude-sonnet-4-5",
        display_name="Claude Sonnet 4.5",
        provider="anthropic",
        capabilities=_caps(
            "code", "reasoning", "creative", "vision", "tools", "long_context", "fast"
        ),
        context_window=200_000,
        cost_per_1k=TokenCost(input=0.003, output=0.015),
        latency=Latency(first_token=800, per_token=20),
        quality_score=90,
        thinking_support=True,
        max_thinking_level=ThinkingLevel.MEDIUM,
    ),
    ModelCandidate(
        model_id="anthropic/claude-3-5-haiku-20241022",
        display_name="Claude 3.5 Haiku",
        provider="anthropic",
        capabilities=_caps("code", "tools", "fast", "cheap"),
        context_window=200_000,
        cost_per_1k=TokenCost(input=0.0008, output=0.004),
        latency=Latency(first_token=300, per_token=10),
        quality_score=78,
    ),
    ModelCandidate(
        model_id="openai/gpt-4o",
        display_name="GPT-4o",
        provider="openai",
        capabilities=_caps("code", "reasoning", "creative", "vision", "tools"),
        context_window=128_000,
        cost_per_1k=TokenCost(input=0.005, output=0.015),
        latency=Latency(first_token=600, per_token=25),
        quality_score=88,
    ),
    ModelCandidate(
        model_id="openai/gpt-4o-mini",
        display_name="GPT-4o Mini",
        provider="openai",
        capabilities=_caps("code", "tools", "fast", "cheap"),
        context_window=128_000,
        cost_per_1k=TokenCost(input=0.00015, output=0.0006),
        latency=Latency(first_token=200, per_token=8),
        quality_score=72,
    ),
    ModelCandidate(
        model_id="openai/o1",
        display_name="O1 (Reasoning)",
        provider="openai",
        capabilities=_caps("reasoning", "code", "long_context"),
        context_window=200_000,
        cost_per_1k=TokenCost(input=0.015, output=0.06),
        latency=Latency(first_token=3000, per_token=50),
        quality_score=95,
        thinking_support=True,
        max_thinking_level=ThinkingLevel.HIGH,
    ),
    ModelCandidate(
        model_id="google/gemini-2.0-flash",
        display_name="Gemini 2.0 Flash",
        provider="google",
        capabilities=_caps("code", "vision", "tools", "fast"),
        context_window=1_000_000,
        cost_per_1k=TokenCost(input=0.0001, output=0.0004),
        latency=Latency(first_token=250, per_token=12),
        quality_score=80,
        thinking_support=True,
        max_thinking_level=ThinkingLevel.LOW,
    ),
)


class ModelRegistry:
    """Ordered catalog of model candidates.

    Registration order is preserved and used as the final tie-breaker when
    two candidates score identically.
    """

    def __init__(
        self,
        candidates: Iterable[ModelCandidate] | None = None,
        default_model_id: str | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            candidates: Initial catalog. If None, uses DEFAULT_CANDIDATES.
            default_model_id: Model used when selection is exhausted.

        Raises:
            ConfigurationError: If the catalog is empty or the default is unknown
        """
        self._models: dict[str, ModelCandidate] = {}
        for candidate in DEFAULT_CANDIDATES if candidates is None else candidates:
            self._models[candidate.model_id] = candidate

        if not self._models:
            raise ConfigurationError("Model registry must contain at least one candidate")
        if default_model_id is not None and default_model_id not in self._models:
            raise ConfigurationError(f"Default model {default_model_id!r} is not registered")
        self._default_model_id = default_model_id

        log.info(
            "model_registry.initialized",
            models=list(self._models),
            default_model=self.default_model().model_id,
        )

    def register(self, candidate: ModelCandidate) -> None:
        """Add or replace a candidate."""
        replaced = candidate.model_id in self._models
        self._models[candidate.model_id] = candidate
        log.info("model_registry.registered", model=candidate.model_id, replaced=replaced)

    def get(self, model_id: str) -> ModelCandidate | None:
        return self._models.get(model_id)

    def all(self) -> list[ModelCandidate]:
        return list(self._models.values())

    def default_model(self) -> ModelCandidate:
        """Return the designated fallback model."""
        if self._default_model_id is not None:
            return self._models[self._default_model_id]
        # Largest context window first, then cheapest
        return min(
            self._models.values(),
            key=lambda model: (-model.context_window, model.combined_cost),
        )

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models
