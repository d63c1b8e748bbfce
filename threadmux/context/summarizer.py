"""Heuristic topic and entity extraction for context summaries.

Used to recompute ``Context.summary`` after compaction, when contexts are
merged and periodically as messages arrive. Extraction is regex and
frequency based; it never calls a model.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from threadmux.types import (
    Context,
    ContextSummary,
    EntityType,
    ExtractedEntity,
    MemorySnapshot,
)

MAX_TOPICS = 20
MAX_ENTITIES = 30
MIN_TOPIC_LENGTH = 5

STOP_WORDS = frozenset(
    {
        "about", "above", "after", "again", "against", "because",
        "before", "being", "below", "between", "could", "didn",
        "doesn", "doing", "during", "further", "hadn", "hasn",
        "haven", "having", "itself", "might", "mustn", "needn",
        "other", "should", "shouldn", "their", "theirs", "there",
        "these", "those", "through", "under", "until", "wasn",
        "weren", "which", "while", "would", "wouldn", "yourself",
    }
)

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


@dataclass(frozen=True)
class EntityPattern:
    type: EntityType
    patterns: tuple[re.Pattern[str], ...]


ENTITY_PATTERNS: tuple[EntityPattern, ...] = (
    EntityPattern(
        EntityType.PERSON,
        (
            re.compile(r"@(\w+)"),
            re.compile(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)+)\b"),
        ),
    ),
    EntityPattern(
        EntityType.ORGANIZATION,
        (
            re.compile(
                r"\b(Google|Microsoft|Apple|Amazon|Meta|OpenAI|Anthropic|GitHub)\b",
                re.IGNORECASE,
            ),
            re.compile(r"\b([A-Z][a-z]*(?:Corp|Inc|LLC|Ltd|Co))\b"),
        ),
    ),
    EntityPattern(
        EntityType.PROJECT,
        (re.compile(r"\bproject\s+[\"']?([^\"'\n.,;!?]+)[\"']?", re.IGNORECASE),),
    ),
    EntityPattern(
        EntityType.TECHNOLOGY,
        (
            re.compile(
                r"\b(React|Vue|Angular|Node\.?js|Python|TypeScript|JavaScript|Rust|"
                r"Docker|Kubernetes|AWS|GCP|Azure)\b",
                re.IGNORECASE,
            ),
            # Case-sensitive: "go" is a common verb
            re.compile(r"\b(Go|Golang)\b"),
            re.compile(r"\b(PostgreSQL|MongoDB|Redis|MySQL|SQLite)\b", re.IGNORECASE),
            re.compile(r"\b(Next\.?js|Express|FastAPI|Django|Flask)\b", re.IGNORECASE),
        ),
    ),
    EntityPattern(
        EntityType.DATE,
        (
            re.compile(r"\b(\d{1,2}/\d{1,2}/\d{2,4})\b"),
            re.compile(r"\b(\d{4}-\d{2}-\d{2})\b"),
            re.compile(r"\b(tomorrow|yesterday|today|next\s+\w+|last\s+\w+)\b", re.IGNORECASE),
            re.compile(
                r"\b(Monday|Tuesday|Wednesday|Thursday|Friday|Saturday|Sunday)\b",
                re.IGNORECASE,
            ),
        ),
    ),
    EntityPattern(
        EntityType.FILE,
        (
            re.compile(r"\b([\w.-]+\.(?:ts|js|tsx|jsx|py|rs|go|md|json|yaml|yml|css|html|toml))\b"),
            re.compile(r"`([^`\s]+\.[a-z]+)`"),
        ),
    ),
    EntityPattern(
        EntityType.URL,
        (re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+"),),
    ),
    EntityPattern(
        EntityType.TASK,
        (
            re.compile(r"TODO:?\s*(.+?)(?:\n|$)", re.IGNORECASE),
            re.compile(r"FIXME:?\s*(.+?)(?:\n|$)", re.IGNORECASE),
            re.compile(r"\[ \]\s*(.+?)(?:\n|$)"),
        ),
    ),
)


def extract_topics(text: str, limit: int = MAX_TOPICS) -> list[str]:
    """Most frequent words longer than four characters, stop words removed."""
    words = _NON_ALNUM.sub(" ", text.lower()).split()
    frequency = Counter(
        word for word in words if len(word) >= MIN_TOPIC_LENGTH and word not in STOP_WORDS
    )
    # Counter.most_common keeps first-seen order for ties
    return [word for word, _ in frequency.most_common(limit)]


def extract_entities(text: str, limit: int = MAX_ENTITIES) -> list[ExtractedEntity]:
    """Regex-based entity extraction, de-duplicated case-insensitively.

    The first pattern family to claim a value decides its type. Results are
    ordered by mention count, highest first.
    """
    found: dict[str, ExtractedEntity] = {}
    for family in ENTITY_PATTERNS:
        for pattern in family.patterns:
            for match in pattern.finditer(text):
                value = (match.group(1) if match.lastindex else match.group(0)).strip()
                if not value:
                    continue
                normalized = value.lower()
                if normalized in found:
                    found[normalized].mentions += 1
                else:
                    found[normalized] = ExtractedEntity(type=family.type, value=value)

    ranked = sorted(found.values(), key=lambda entity: entity.mentions, reverse=True)
    return ranked[:limit]


def merge_entities(
    existing: Iterable[ExtractedEntity],
    new: Iterable[ExtractedEntity],
    limit: int = MAX_ENTITIES,
) -> list[ExtractedEntity]:
    """Combine two entity lists, summing mentions per (type, value)."""
    merged: dict[tuple[EntityType, str], ExtractedEntity] = {}
    for entity in (*existing, *new):
        current = merged.get(entity.key)
        if current is None:
            merged[entity.key] = ExtractedEntity(
                type=entity.type, value=entity.value, mentions=entity.mentions
            )
        else:
            current.mentions += entity.mentions

    ranked = sorted(merged.values(), key=lambda entity: entity.mentions, reverse=True)
    return ranked[:limit]


def summarize_context(
    context: Context,
    snapshots: Sequence[MemorySnapshot] = (),
) -> ContextSummary:
    """Recompute topics and entities from snapshots plus the live messages.

    Topics come from all text. Snapshot entities are taken as summarized;
    only the goal and live messages are scanned for new ones.
    """
    snapshot_parts: list[str] = []
    snapshot_entities: list[ExtractedEntity] = []
    for snapshot in snapshots:
        snapshot_parts.append(snapshot.summary)
        snapshot_parts.extend(snapshot.key_points)
        snapshot_entities.extend(snapshot.entities)

    live_parts = [context.goal] if context.goal else []
    live_parts.extend(message.content for message in context.messages)
    live_text = "\n".join(live_parts)

    return ContextSummary(
        topics=set(extract_topics("\n".join([*snapshot_parts, live_text]))),
        entities=merge_entities(snapshot_entities, extract_entities(live_text)),
    )
