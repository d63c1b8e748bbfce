"""Tests for heuristic topic and entity extraction."""

from threadmux.context.summarizer import (
    extract_entities,
    extract_topics,
    merge_entities,
    summarize_context,
)
from threadmux.types import (
    Context,
    ContextMessage,
    ContextType,
    EntityType,
    ExtractedEntity,
    MemorySnapshot,
)


class TestExtractTopics:
    def test_frequency_order_without_stop_words(self):
        topics = extract_topics("The dashboard, the dashboard layout about charts!")
        assert topics == ["dashboard", "layout", "charts"]

    def test_limit(self):
        text = " ".join(f"word{index:03d}" for index in range(30))
        assert len(extract_topics(text)) == 20


class TestExtractEntities:
    def test_entity_families(self):
        text = (
            "Ping @alice about the React app in project Atlas, "
            "see https://example.com/x and app.py by Friday"
        )

        found = {entity.value: entity.type for entity in extract_entities(text)}

        assert found["alice"] == EntityType.PERSON
        assert found["React"] == EntityType.TECHNOLOGY
        assert found["Atlas"] == EntityType.PROJECT
        assert found["https://example.com/x"] == EntityType.URL
        assert found["app.py"] == EntityType.FILE
        assert found["Friday"] == EntityType.DATE

    def test_case_insensitive_dedupe_counts_mentions(self):
        [entity] = extract_entities("React here, react there")

        assert entity.value == "React"
        assert entity.mentions == 2

    def test_go_is_case_sensitive(self):
        assert extract_entities("let's go home") == []
        assert extract_entities("the service is written in Go")[0].value == "Go"


class TestMergeEntities:
    def test_mentions_summed_per_type_and_value(self):
        merged = merge_entities(
            [ExtractedEntity(type=EntityType.TECHNOLOGY, value="React", mentions=2)],
            [
                ExtractedEntity(type=EntityType.TECHNOLOGY, value="react"),
                ExtractedEntity(type=EntityType.PERSON, value="Alice"),
            ],
        )

        assert [(e.value, e.mentions) for e in merged] == [("React", 3), ("Alice", 1)]


class TestSummarizeContext:
    def test_includes_snapshots_goal_and_messages(self, clock):
        context = Context(
            type=ContextType.PRIMARY,
            created_at=clock(),
            last_active_at=clock(),
            goal="Migrate billing",
            messages=[
                ContextMessage(role="user", content="Move invoices to Stripe", timestamp=clock())
            ],
        )
        snapshot = MemorySnapshot(
            thread_id=context.id,
            summary="Agreed on the rollout timeline",
            key_points=("Freeze deploys",),
            entities=(ExtractedEntity(type=EntityType.PERSON, value="Dana"),),
            message_count=4,
            token_count=400,
            compressed_tokens=20,
            first_message_id="m1",
            last_message_id="m4",
            first_message_at=clock(),
            last_message_at=clock(),
            created_at=clock(),
        )

        summary = summarize_context(context, [snapshot])

        assert {"billing", "invoices", "rollout", "timeline", "freeze"} <= summary.topics
        assert "Dana" in {entity.value for entity in summary.entities}

    def test_snapshot_entities_not_counted_twice(self, clock):
        context = Context(
            type=ContextType.PRIMARY,
            created_at=clock(),
            last_active_at=clock(),
            messages=[
                ContextMessage(role="user", content="Ship the React build", timestamp=clock())
            ],
        )
        snapshot = MemorySnapshot(
            thread_id=context.id,
            summary="Moved the dashboard to React",
            key_points=("React 19 upgrade",),
            entities=(ExtractedEntity(type=EntityType.TECHNOLOGY, value="React"),),
            message_count=4,
            token_count=400,
            compressed_tokens=20,
            first_message_id="m1",
            last_message_id="m4",
            first_message_at=clock(),
            last_message_at=clock(),
            created_at=clock(),
        )

        summary = summarize_context(context, [snapshot])

        [react] = [entity for entity in summary.entities if entity.value == "React"]
        assert react.mentions == 2
