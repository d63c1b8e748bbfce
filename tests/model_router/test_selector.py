"""Tests for model scoring and selection."""

import pytest

from threadmux.config import Environment, Settings
from threadmux.model_router import (
    DEFAULT_CANDIDATES,
    ModelRegistry,
    ModelSelector,
    SelectionCriteria,
    SelectionPreferences,
    SelectionWeights,
    build_model_config,
    complexity_fit,
)
from threadmux.types import (
    ComplexityLevel,
    ModelCapability,
    QualityLevel,
    ThinkingLevel,
    UrgencyLevel,
)

COMPLEX_CODE_CRITERIA = SelectionCriteria(
    task_complexity=ComplexityLevel.COMPLEX,
    requires_reasoning=True,
    requires_code=True,
    quality_requirement=QualityLevel.HIGH,
)

NESTED_CODE_MESSAGE = """Compare the tradeoffs of these two approaches for the loader:

```js
async function load(state) {
  if (state.ready) {
    for (const item of state.items) {
      if (item.visible) {
        await stream.push(item);
      }
    }
  }
}
```
"""

NO_VISION_IDS = (
    "anthropic/claude-3-5-haiku-20241022",
    "openai/gpt-4o-mini",
    "openai/o1",
)


@pytest.fixture
def selector():
    return ModelSelector()


@pytest.fixture
def no_vision_selector():
    registry = ModelRegistry(
        [model for model in DEFAULT_CANDIDATES if model.model_id in NO_VISION_IDS]
    )
    return ModelSelector(registry=registry)


class TestSelectByRequirements:
    def test_complex_code_task_picks_opus_with_medium_thinking(self, selector):
        recommendation = selector.select_by_requirements(COMPLEX_CODE_CRITERIA)

        assert recommendation.model.model_id == "anthropic/claude-opus-4-5"
        assert recommendation.config.thinking_level == ThinkingLevel.MEDIUM
        assert recommendation.config.temperature == 0.3
        assert recommendation.config.max_tokens == 4096
        assert not recommendation.fallback
        # raw 1.258 against a ceiling of 1.34
        assert recommendation.score == pytest.approx(1.258 / 1.34)
        assert "Thinking mode available" in recommendation.reasoning

    def test_avoided_model_is_skipped(self, selector):
        recommendation = selector.select_by_requirements(
            COMPLEX_CODE_CRITERIA,
            SelectionPreferences(avoid_models=("anthropic/claude-opus-4-5",)),
        )
        assert recommendation.model.model_id == "openai/o1"

    def test_preferred_model_bonus(self, selector):
        recommendation = selector.select_by_requirements(
            COMPLEX_CODE_CRITERIA,
            SelectionPreferences(preferred_models=("anthropic/claude-sonnet-4-5",)),
        )

        assert recommendation.model.model_id == "anthropic/claude-sonnet-4-5"
        assert "Preferred model" in recommendation.reasoning

    def test_poor_history_demotes_model(self, selector):
        for _ in range(10):
            selector.record_usage("anthropic/claude-opus-4-5", success=False)

        recommendation = selector.select_by_requirements(COMPLEX_CODE_CRITERIA)

        assert recommendation.model.model_id == "openai/o1"
        assert selector.usage_stats()["anthropic/claude-opus-4-5"]["total"] == 10

    def test_vision_requirement_without_candidates_falls_back(self, no_vision_selector):
        criteria = SelectionCriteria(
            task_complexity=ComplexityLevel.SIMPLE,
            requires_vision=True,
        )

        recommendation = no_vision_selector.select_by_requirements(criteria)

        assert recommendation.fallback
        assert recommendation.score == 0.0
        # largest window, cheaper of the two 200k models
        assert recommendation.model.model_id == "anthropic/claude-3-5-haiku-20241022"

    def test_context_length_rejects_small_windows(self, selector):
        criteria = SelectionCriteria(
            task_complexity=ComplexityLevel.SIMPLE,
            context_length=500_000,
        )

        recommendation = selector.select_by_requirements(criteria)

        assert recommendation.model.model_id == "google/gemini-2.0-flash"
        assert not recommendation.fallback

    def test_context_beyond_every_window_falls_back_to_default(self, selector):
        criteria = SelectionCriteria(
            task_complexity=ComplexityLevel.SIMPLE,
            context_length=2_000_000,
        )

        recommendation = selector.select_by_requirements(criteria)

        assert recommendation.fallback
        assert recommendation.model.model_id == "google/gemini-2.0-flash"

    def test_immediate_urgency_prefers_fast_models(self, selector):
        criteria = SelectionCriteria(
            task_complexity=ComplexityLevel.TRIVIAL,
            urgency=UrgencyLevel.IMMEDIATE,
            quality_requirement=QualityLevel.DRAFT,
        )

        recommendation = selector.select_by_requirements(criteria)

        assert recommendation.model.has(ModelCapability.FAST)

    def test_background_urgency_prefers_cheap_models(self, selector):
        criteria = SelectionCriteria(
            task_complexity=ComplexityLevel.TRIVIAL,
            urgency=UrgencyLevel.BACKGROUND,
            quality_requirement=QualityLevel.DRAFT,
        )

        recommendation = selector.select_by_requirements(criteria)

        assert recommendation.model.has(ModelCapability.CHEAP)

    def test_over_budget_penalized(self, selector):
        criteria = SelectionCriteria(
            task_complexity=ComplexityLevel.SIMPLE,
            context_length=10_000,
            budget_constraint=0.01,
        )

        recommendation = selector.select_by_requirements(criteria)

        assert recommendation.estimated_cost <= 0.01
        assert "Exceeds budget" not in recommendation.reasoning


class TestSelectModel:
    def test_vision_message_requires_vision(self, selector):
        recommendation = selector.select_model("Can you look at this screenshot.png for me")

        assert recommendation.criteria.requires_vision
        assert recommendation.model.has(ModelCapability.VISION)

    def test_vision_message_falls_back_without_vision_models(self, no_vision_selector):
        recommendation = no_vision_selector.select_model("what do you see in this photo")

        assert recommendation.fallback
        assert recommendation.model.model_id == "anthropic/claude-3-5-haiku-20241022"

    def test_quality_inferred_from_complexity(self, selector):
        recommendation = selector.select_model("hi")

        assert recommendation.criteria.task_complexity == ComplexityLevel.TRIVIAL
        assert recommendation.criteria.quality_requirement == QualityLevel.DRAFT

    def test_explicit_quality_overrides_inferred(self, selector):
        recommendation = selector.select_model(
            "hi", preferences=SelectionPreferences(quality_requirement=QualityLevel.PREMIUM)
        )
        assert recommendation.criteria.quality_requirement == QualityLevel.PREMIUM

    def test_nested_code_message_selects_thinking_model(self, selector):
        """Nested code plus a comparison cue is complex work for a thinking model."""
        recommendation = selector.select_model(NESTED_CODE_MESSAGE)

        criteria = recommendation.criteria
        assert criteria.task_complexity == ComplexityLevel.COMPLEX
        assert criteria.requires_code
        assert criteria.requires_reasoning
        assert criteria.quality_requirement == QualityLevel.HIGH
        assert recommendation.model.model_id == "anthropic/claude-opus-4-5"
        assert recommendation.model.thinking_support
        assert recommendation.config.thinking_level == ThinkingLevel.MEDIUM

    def test_scores_are_bounded_and_deterministic(self, selector):
        messages = [
            "hi",
            "Compare the tradeoffs of async streams versus callbacks in our server",
            "Imagine a story about entropy and causality",
        ]
        for message in messages:
            first = selector.select_model(message)
            second = selector.select_model(message)

            assert 0.0 <= first.score <= 1.0
            assert first.model.model_id == second.model.model_id
            assert first.score == second.score

    async def test_recommend_for_context(self, selector, store):
        context = await store.create_context(goal="Review the server code")
        await store.append_message(context.id, "user", "Please debug the socket server")

        ranked = selector.recommend_for_context(store.get(context.id), count=2)

        assert len(ranked) == 2
        assert ranked[0].score >= ranked[1].score


class TestSelectionWeights:
    def test_defaults(self, selector):
        assert selector.weights == SelectionWeights()

    def test_custom_weights_change_score(self):
        selector = ModelSelector(weights=SelectionWeights(thinking=0.0))

        recommendation = selector.select_by_requirements(COMPLEX_CODE_CRITERIA)

        assert recommendation.model.model_id == "anthropic/claude-opus-4-5"
        # thinking bonus dropped from both the raw score and the ceiling
        assert recommendation.score == pytest.approx(1.108 / 1.19)

    def test_zero_preferred_bonus_ignores_preference(self):
        selector = ModelSelector(weights=SelectionWeights(preferred=0.0))

        recommendation = selector.select_by_requirements(
            COMPLEX_CODE_CRITERIA,
            SelectionPreferences(preferred_models=("anthropic/claude-sonnet-4-5",)),
        )

        assert recommendation.model.model_id == "anthropic/claude-opus-4-5"

    def test_negative_weight_rejected(self):
        with pytest.raises(ValueError, match="slow_penalty"):
            SelectionWeights(slow_penalty=-0.1)

    def test_weights_from_settings(self):
        settings = Settings(
            _env_file=None,
            environment=Environment.TEST,
            selection_preferred_bonus=0.0,
            complexity_multi_step_weight=0.5,
        )

        selector = ModelSelector(settings=settings)

        assert selector.weights.preferred == 0.0
        assert selector.select_model("Compare these").criteria.task_complexity == (
            ComplexityLevel.COMPLEX
        )

    def test_explicit_weights_override_settings(self, settings):
        weights = SelectionWeights(code=0.5)

        assert ModelSelector(settings=settings, weights=weights).weights is weights


class TestModelConfig:
    def _model(self, model_id):
        return next(model for model in DEFAULT_CANDIDATES if model.model_id == model_id)

    def test_expert_uses_model_maximum(self):
        config = build_model_config(
            self._model("google/gemini-2.0-flash"),
            SelectionCriteria(task_complexity=ComplexityLevel.EXPERT),
        )
        assert config.thinking_level == ThinkingLevel.LOW
        assert config.max_tokens == 8192

    def test_no_thinking_support_is_off(self):
        config = build_model_config(
            self._model("openai/gpt-4o-mini"),
            SelectionCriteria(task_complexity=ComplexityLevel.EXPERT),
        )
        assert config.thinking_level == ThinkingLevel.OFF

    def test_reasoning_gets_low_thinking(self):
        config = build_model_config(
            self._model("anthropic/claude-sonnet-4-5"),
            SelectionCriteria(task_complexity=ComplexityLevel.MODERATE, requires_reasoning=True),
        )
        assert config.thinking_level == ThinkingLevel.LOW
        assert config.temperature == 0.5

    def test_default_thinking_level_clamped_to_model_maximum(self):
        config = build_model_config(
            self._model("anthropic/claude-sonnet-4-5"),
            SelectionCriteria(task_complexity=ComplexityLevel.SIMPLE),
            default_thinking_level=ThinkingLevel.HIGH,
        )
        assert config.thinking_level == ThinkingLevel.MEDIUM
        assert config.temperature == 0.7

    def test_creative_temperature(self):
        config = build_model_config(
            self._model("openai/gpt-4o"),
            SelectionCriteria(
                task_complexity=ComplexityLevel.SIMPLE,
                requires_creativity=True,
                requires_code=True,
            ),
        )
        assert config.temperature == 0.9


class TestComplexityFit:
    @pytest.mark.parametrize(
        "quality,level,expected",
        [
            (60, ComplexityLevel.TRIVIAL, 1.0),
            (98, ComplexityLevel.COMPLEX, 0.85),
            (100, ComplexityLevel.TRIVIAL, 0.7),
            (68, ComplexityLevel.MODERATE, 0.4),
            (0, ComplexityLevel.EXPERT, 0.0),
        ],
    )
    def test_fit(self, quality, level, expected):
        assert complexity_fit(quality, level) == pytest.approx(expected)
