"""Heuristic intent classification.

Each intent carries a set of regexes, a keyword list and a priority (2-9).
A regex hit scores 0.8, keyword hits score 0.2 each up to 0.6; the larger
of the two is scaled by priority / 10. Results are ranked by confidence and
a message matching nothing is classified as ``information`` at 0.3.

Named groups in the patterns are surfaced as intent entities, e.g. the
target of "switch to <target>".
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import structlog

from threadmux.types import DetectedIntent, IntentType

log = structlog.get_logger(__name__)

REGEX_CONFIDENCE = 0.8
KEYWORD_STEP = 0.2
KEYWORD_CAP = 0.6
FALLBACK_CONFIDENCE = 0.3


@dataclass(frozen=True)
class IntentPattern:
    type: IntentType
    patterns: tuple[re.Pattern[str], ...]
    keywords: tuple[str, ...]
    priority: int

    def __post_init__(self) -> None:
        if not 1 <= self.priority <= 10:
            raise ValueError(f"priority must be 1-10, got {self.priority}")


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)


INTENT_PATTERNS: tuple[IntentPattern, ...] = (
    IntentPattern(
        type=IntentType.TASK_CREATION,
        patterns=_compile(
            r"create\s+(?:a\s+)?task",
            r"add\s+(?:a\s+)?todo",
            r"remind\s+me\s+to\s+(?P<task>[^.!?\n]+)",
            r"schedule\s+(?:a\s+)?",
            r"set\s+up\s+(?:a\s+)?",
        ),
        keywords=("task", "todo", "reminder", "schedule", "create", "add", "make"),
        priority=8,
    ),
    IntentPattern(
        type=IntentType.CONTEXT_SWITCH,
        patterns=_compile(
            r"switch\s+to\s+(?P<target>[^.!?\n]+)",
            r"go\s+(?:back\s+)?to\s+(?P<target>[^.!?\n]+)",
            r"open\s+(?:the\s+)?",
            r"show\s+me\s+(?:the\s+)?",
            r"let'?s\s+talk\s+about",
        ),
        keywords=("switch", "context", "thread", "conversation", "back", "return"),
        priority=9,
    ),
    IntentPattern(
        type=IntentType.QUESTION,
        patterns=_compile(
            r"^(?:what|who|where|when|why|how|which|is|are|can|could|would|should|do|does|did)\b",
            r"\?\s*$",
        ),
        keywords=("explain", "tell", "describe", "help", "understand"),
        priority=5,
    ),
    IntentPattern(
        type=IntentType.COMMAND,
        patterns=_compile(
            r"^(?P<command>run|execute|start|stop|restart|install|deploy|build|test)\b",
            r"^(?P<command>delete|remove|clear|reset)\b",
            r"^(?P<command>send|post|publish|share)\b",
        ),
        keywords=("run", "execute", "start", "stop", "deploy", "install"),
        priority=7,
    ),
    IntentPattern(
        type=IntentType.REQUEST,
        patterns=_compile(
            r"^(?:please\s+)?(?:can|could|would)\s+you",
            r"^(?:i\s+)?(?:need|want|would\s+like)",
            r"^help\s+(?:me\s+)?",
        ),
        keywords=("please", "help", "need", "want", "could"),
        priority=6,
    ),
    IntentPattern(
        type=IntentType.CLARIFICATION,
        patterns=_compile(
            r"what\s+do\s+you\s+mean",
            r"can\s+you\s+clarify",
            r"i\s+don'?t\s+understand",
            r"elaborate\s+on",
        ),
        keywords=("clarify", "explain", "elaborate", "mean", "confused"),
        priority=7,
    ),
    IntentPattern(
        type=IntentType.FEEDBACK,
        patterns=_compile(
            r"^(?:good|great|nice|awesome|perfect|thanks|thank\s+you)\b",
            r"^(?:bad|wrong|incorrect|no|nope)\b",
            r"that'?s\s+(?:right|correct|wrong|incorrect)",
        ),
        keywords=("thanks", "good", "bad", "wrong", "correct", "perfect"),
        priority=4,
    ),
    IntentPattern(
        type=IntentType.INFORMATION,
        patterns=_compile(
            r"^(?:here'?s|this\s+is|fyi|note)\b",
            r"^(?:update|status|report)\b",
        ),
        keywords=("here", "update", "status", "info", "note", "fyi"),
        priority=5,
    ),
    IntentPattern(
        type=IntentType.GREETING,
        patterns=_compile(
            r"^(?:hi|hello|hey|good\s+(?:morning|afternoon|evening))\b",
            r"^(?:howdy|greetings|yo)\b",
        ),
        keywords=("hi", "hello", "hey", "morning", "afternoon", "evening"),
        priority=2,
    ),
    IntentPattern(
        type=IntentType.FAREWELL,
        patterns=_compile(
            r"^(?:bye|goodbye|see\s+you|talk\s+later|gtg|gotta\s+go)\b",
            r"^(?:good\s+night|have\s+a\s+good)\b",
        ),
        keywords=("bye", "goodbye", "later", "night"),
        priority=2,
    ),
)


class IntentClassifier:
    """Pattern and keyword based intent classifier.

    Keywords match on word boundaries. The classifier is stateless and its
    output is a pure function of the message and the pattern table.
    """

    def __init__(self, patterns: tuple[IntentPattern, ...] = INTENT_PATTERNS) -> None:
        self._patterns = patterns
        self._keyword_res = {
            pattern.type: tuple(
                re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE)
                for keyword in pattern.keywords
            )
            for pattern in patterns
        }

    def classify(self, message: str) -> list[DetectedIntent]:
        """Return all matching intents ranked by confidence (highest first).

        Args:
            message: Raw message text

        Returns:
            Non-empty list of DetectedIntent. Ties keep table order.
        """
        text = message.strip()
        intents: list[DetectedIntent] = []

        for pattern in self._patterns:
            confidence = 0.0
            entities: dict[str, str] = {}

            for regex in pattern.patterns:
                match = regex.search(text)
                if match:
                    confidence = REGEX_CONFIDENCE
                    entities.update(
                        {key: value.strip() for key, value in match.groupdict().items() if value}
                    )

            keyword_hits = sum(1 for regex in self._keyword_res[pattern.type] if regex.search(text))
            if keyword_hits:
                confidence = max(confidence, min(keyword_hits * KEYWORD_STEP, KEYWORD_CAP))

            if confidence > 0:
                intents.append(
                    DetectedIntent(
                        type=pattern.type,
                        confidence=round(confidence * pattern.priority / 10, 4),
                        original_text=message,
                        entities=entities,
                    )
                )

        if not intents:
            return [
                DetectedIntent(
                    type=IntentType.INFORMATION,
                    confidence=FALLBACK_CONFIDENCE,
                    original_text=message,
                )
            ]

        # sorted() is stable, so equal confidences keep table order
        intents = sorted(intents, key=lambda intent: intent.confidence, reverse=True)
        log.debug(
            "intent_classifier.classified",
            primary=intents[0].type.value,
            confidence=intents[0].confidence,
            candidates=len(intents),
        )
        return intents

    def primary(self, message: str) -> DetectedIntent:
        return self.classify(message)[0]
