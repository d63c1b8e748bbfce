"""Tests for the model candidate registry."""

import pytest

from threadmux.errors import ConfigurationError
from threadmux.model_router import (
    DEFAULT_CANDIDATES,
    Latency,
    ModelCandidate,
    ModelRegistry,
    TokenCost,
)
from threadmux.types import ModelCapability, ThinkingLevel


def candidate(model_id, *, context_window=100_000, cost=0.001, quality=80, caps=("code",)):
    return ModelCandidate(
        model_id=model_id,
        capabilities=frozenset(ModelCapability(cap) for cap in caps),
        context_window=context_window,
        cost_per_1k=TokenCost(input=cost, output=cost),
        latency=Latency(first_token=500, per_token=10),
        quality_score=quality,
    )


class TestModelRegistry:
    def test_default_catalog(self):
        registry = ModelRegistry()

        assert len(registry) == len(DEFAULT_CANDIDATES)
        assert "anthropic/claude-opus-4-5" in registry

    def test_default_model_is_largest_window(self):
        assert ModelRegistry().default_model().model_id == "google/gemini-2.0-flash"

    def test_default_model_tie_broken_by_cost(self):
        registry = ModelRegistry(
            [
                candidate("pricey", context_window=200_000, cost=0.05),
                candidate("cheap", context_window=200_000, cost=0.001),
                candidate("small", context_window=8_000, cost=0.0001),
            ]
        )
        assert registry.default_model().model_id == "cheap"

    def test_configured_default_model(self):
        registry = ModelRegistry(default_model_id="openai/gpt-4o")
        assert registry.default_model().model_id == "openai/gpt-4o"

    def test_empty_registry_rejected(self):
        with pytest.raises(ConfigurationError, match="at least one candidate"):
            ModelRegistry([])

    def test_unknown_default_rejected(self):
        with pytest.raises(ConfigurationError, match="not registered"):
            ModelRegistry([candidate("a")], default_model_id="b")

    def test_register_replaces_existing(self):
        registry = ModelRegistry([candidate("a", quality=50)])

        registry.register(candidate("a", quality=90))
        registry.register(candidate("b"))

        assert registry.get("a").quality_score == 90
        assert [model.model_id for model in registry.all()] == ["a", "b"]

    def test_get_unknown_returns_none(self):
        assert ModelRegistry().get("nope") is None


class TestModelCandidate:
    def test_thinking_level_requires_support(self):
        with pytest.raises(ValueError, match="thinking_support"):
            ModelCandidate(
                model_id="x",
                capabilities=frozenset(),
                context_window=1000,
                cost_per_1k=TokenCost(input=0, output=0),
                latency=Latency(first_token=0, per_token=0),
                quality_score=50,
                max_thinking_level=ThinkingLevel.HIGH,
            )

    def test_quality_bounds(self):
        with pytest.raises(ValueError, match="quality_score"):
            candidate("x", quality=101)

    def test_negative_cost_rejected(self):
        with pytest.raises(ValueError):
            TokenCost(input=-1, output=0)

    def test_combined_cost(self):
        assert candidate("x", cost=0.002).combined_cost == pytest.approx(0.004)
