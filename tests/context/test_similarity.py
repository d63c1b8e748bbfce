"""Tests for message-to-context similarity scoring."""

from datetime import timedelta

import pytest

from threadmux.context.similarity import (
    ContextScorer,
    SimilarityWeights,
    context_similarity,
    jaccard,
    message_words,
)
from threadmux.types import ContextMessage, ContextStatus


@pytest.fixture
def scorer(clock):
    return ContextScorer(clock=clock)


class TestHelpers:
    def test_message_words_drop_short_tokens(self):
        assert message_words("Fix the API bug in billing.py") == {"billing.py"}

    def test_jaccard(self):
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
        assert jaccard([], []) == 0.0

    def test_negative_weight_rejected(self):
        with pytest.raises(ValueError):
            SimilarityWeights(goal=-1)


class TestContextScorer:
    def test_goal_overlap(self, scorer, make_context):
        context = make_context("ctx_a", goal="Build the React dashboard")

        result = scorer.score("Let's polish the dashboard charts", context)

        assert result.factors["goal"] == pytest.approx(0.15)
        assert result.matched_keywords == ["dashboard"]
        # goal 0.15 * 0.3 plus full recency 0.05, over weight 0.35
        assert result.score == pytest.approx(0.095 / 0.35)

    def test_goal_factor_capped(self, scorer, make_context):
        context = make_context("ctx_a", goal="react dashboard charts layout")

        result = scorer.score("react dashboard charts layout", context)

        assert result.factors["goal"] == pytest.approx(0.4)

    def test_no_content_match_ignores_recency(self, scorer, make_context):
        context = make_context("ctx_a", goal="Quarterly taxes")

        result = scorer.score("What should we cook tonight?", context)

        assert result.score == 0.0
        assert result.factors == {}
        assert result.reasons == []

    def test_topics_and_entities(self, scorer, make_context):
        context = make_context(
            "ctx_a",
            topics={"dashboard", "charts", "layout", "colors"},
            entities=["React", "Vite"],
        )

        result = scorer.score("The react dashboard charts look off", context)

        assert result.factors["topic"] == pytest.approx(0.5)
        assert result.factors["entity"] == pytest.approx(0.5)
        assert result.matched_entities == ["React"]

    def test_recent_messages_factor(self, scorer, make_context, clock):
        context = make_context("ctx_a")
        context.messages.append(
            ContextMessage(role="user", content="the flaky checkout test again", timestamp=clock())
        )

        result = scorer.score("checkout test keeps failing", context)

        # "checkout" and "test" out of {checkout, test, keeps, failing}
        assert result.factors["recent"] == pytest.approx(0.5)

    def test_recency_decays_over_a_day(self, scorer, make_context):
        fresh = make_context("fresh", topics={"invoice"})
        stale = make_context("stale", topics={"invoice"}, idle=timedelta(hours=12))
        gone = make_context("gone", topics={"invoice"}, idle=timedelta(days=3))

        assert scorer.score("invoice", fresh).factors["recency"] == pytest.approx(1.0)
        assert scorer.score("invoice", stale).factors["recency"] == pytest.approx(0.5)
        assert scorer.score("invoice", gone).factors["recency"] == 0.0

    def test_rank_skips_unroutable(self, scorer, make_context):
        contexts = [
            make_context("archived", topics={"invoice"}, status=ContextStatus.ARCHIVED),
            make_context("paused", topics={"invoice"}, status=ContextStatus.PAUSED),
            make_context("other", goal="Gardening"),
        ]

        ranked = scorer.rank("invoice totals", contexts)

        assert [score.context_id for score in ranked] == ["paused", "other"]
        assert ranked[0].score > ranked[1].score

    def test_scores_bounded(self, scorer, make_context):
        context = make_context(
            "ctx_a",
            goal="react dashboard charts",
            topics={"react", "dashboard"},
            entities=["React"],
        )
        result = scorer.score("react dashboard charts", context)
        assert 0.0 <= result.score <= 1.0

    def test_from_settings(self, settings, clock):
        scorer = ContextScorer.from_settings(settings, clock=clock)
        assert isinstance(scorer, ContextScorer)


class TestContextSimilarity:
    def test_uses_only_shared_factors(self, make_context):
        left = make_context("a", goal="React dashboard")
        right = make_context("b", goal="React dashboard", topics={"charts"})

        assert context_similarity(left, right) == pytest.approx(1.0)

    def test_no_shared_factors(self, make_context):
        assert context_similarity(make_context("a"), make_context("b")) == 0.0

    def test_averaged_overlap(self, make_context):
        left = make_context(
            "a",
            topics={"dashboard", "charts", "layout", "colors"},
            entities=["React", "Vite", "Tailwind"],
        )
        right = make_context(
            "b",
            topics={"dashboard", "charts", "layout", "colors", "fonts"},
            entities=["React", "Vite", "Tailwind", "Storybook"],
        )

        assert context_similarity(left, right) == pytest.approx((0.8 + 0.75) / 2)
