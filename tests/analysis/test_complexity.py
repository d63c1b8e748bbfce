"""Tests for heuristic message complexity analysis."""

import pytest

from threadmux.analysis.complexity import (
    ComplexityAnalyzer,
    ComplexitySignals,
    ComplexityWeights,
)
from threadmux.types import ComplexityLevel

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


@pytest.fixture
def analyzer():
    return ComplexityAnalyzer()


class TestAnalyze:
    def test_greeting_is_trivial(self, analyzer):
        assessment = analyzer.assess("hi there")

        assert assessment.score == 0.0
        assert assessment.level == ComplexityLevel.TRIVIAL
        assert assessment.signals == ComplexitySignals()

    def test_nested_code_with_tradeoffs_is_complex(self, analyzer):
        assessment = analyzer.assess(NESTED_CODE_MESSAGE)

        assert assessment.signals.code_presence
        assert assessment.signals.multi_step_reasoning
        assert assessment.signals.technical_term_count >= 4
        assert assessment.level in (ComplexityLevel.COMPLEX, ComplexityLevel.EXPERT)

    def test_inline_code_without_fence_is_not_code(self, analyzer):
        signals = analyzer.analyze("why does `x = 1` fail")
        assert not signals.code_presence
        assert signals.code_complexity == 0.0

    def test_question_count(self, analyzer):
        assert analyzer.analyze("what? why? how?").question_count == 3

    def test_cue_words_match_whole_words_only(self, analyzer):
        # "thenceforth" and "stepping" must not trigger the multi-step cues
        signals = analyzer.analyze("thenceforth stepping stones")
        assert not signals.multi_step_reasoning

    def test_ambiguity_accumulates_and_caps(self, analyzer):
        signals = analyzer.analyze(
            "maybe perhaps it might be, could be either, not sure, unclear, depends"
        )
        assert signals.ambiguity == 1.0

    def test_abstract_concepts_counted(self, analyzer):
        signals = analyzer.analyze("Is free will compatible with determinism and causality?")
        assert signals.abstract_concept_count == 2

    def test_analysis_is_deterministic(self, analyzer):
        assert analyzer.assess(NESTED_CODE_MESSAGE) == analyzer.assess(NESTED_CODE_MESSAGE)


class TestCodeComplexity:
    def test_empty_code(self, analyzer):
        assert analyzer.estimate_code_complexity("") == 0.0

    def test_factors_are_capped(self, analyzer):
        code = ("if x:\n    for y in z:\n        while w:\n            def f(): pass\n" * 50)
        assert analyzer.estimate_code_complexity(code) == pytest.approx(1.0)

    def test_indentation_counts_as_nesting(self, analyzer):
        code = "def f(x):\n    if x:\n        return 1\n"
        # length 0.037 + control flow 0.05 + nesting 2 levels 0.2 + def 0.05
        assert analyzer.estimate_code_complexity(code) == pytest.approx(0.337)


class TestLevels:
    @pytest.mark.parametrize(
        "score,level",
        [
            (0.0, ComplexityLevel.TRIVIAL),
            (0.149, ComplexityLevel.TRIVIAL),
            (0.15, ComplexityLevel.SIMPLE),
            (0.3, ComplexityLevel.MODERATE),
            (0.5, ComplexityLevel.COMPLEX),
            (0.75, ComplexityLevel.EXPERT),
            (1.0, ComplexityLevel.EXPERT),
        ],
    )
    def test_cut_points(self, analyzer, score, level):
        assert analyzer._level_for(score) == level

    def test_score_is_bounded(self, analyzer):
        signals = ComplexitySignals(
            code_presence=True,
            code_complexity=1.0,
            question_count=10,
            technical_term_count=50,
            abstract_concept_count=50,
            multi_step_reasoning=True,
            creativity_required=True,
            data_analysis=True,
            ambiguity=1.0,
        )
        assert analyzer.score(signals) == 1.0
        assert analyzer.to_level(signals) == ComplexityLevel.EXPERT

    def test_invalid_signal_rejected(self):
        with pytest.raises(ValueError, match="code_complexity"):
            ComplexitySignals(code_complexity=1.5)


class TestWeights:
    def test_defaults(self, analyzer):
        assert analyzer.weights == ComplexityWeights()

    def test_custom_weights_shift_level(self, analyzer):
        heavy = ComplexityAnalyzer(ComplexityWeights(multi_step=0.5))

        assert analyzer.assess("Compare these").level == ComplexityLevel.SIMPLE
        assert heavy.assess("Compare these").level == ComplexityLevel.COMPLEX

    def test_caps_are_weights_too(self):
        signals = ComplexitySignals(technical_term_count=10)

        assert ComplexityAnalyzer().score(signals) == pytest.approx(0.2)
        assert ComplexityAnalyzer(ComplexityWeights(technical_cap=0.4)).score(
            signals
        ) == pytest.approx(0.4)

    def test_negative_weight_rejected(self):
        with pytest.raises(ValueError, match="ambiguity"):
            ComplexityWeights(ambiguity=-1.0)
