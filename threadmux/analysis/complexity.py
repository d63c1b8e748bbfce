"""Message complexity analysis for model selection.

The ComplexityAnalyzer derives a signal vector from raw message text and
folds it into a discrete ComplexityLevel:

Signals:
- Code presence and estimated code complexity (fenced blocks only)
- Question count
- Technical term and abstract concept counts
- Multi-step reasoning, creativity and data-analysis cue phrases
- Ambiguity cue phrases (0.2 each, capped at 1.0)

Score → level mapping:
- < 0.15: trivial
- < 0.30: simple
- < 0.50: moderate
- < 0.75: complex
- otherwise: expert

The analyzer is a pure function of its input, vocabularies and weights. It
holds no mutable state and may be shared across tasks.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, fields

import structlog

from threadmux.types import ComplexityLevel

log = structlog.get_logger(__name__)

_CODE_BLOCK = re.compile(r"```[\s\S]*?```")
_WORD = re.compile(r"[a-z0-9_']+")
_CONTROL_FLOW = re.compile(r"\b(?:if|else|elif|for|while|switch|case|try|catch|except)\b")
_FUNCTION_DEF = re.compile(r"\bfunction\b|=>|\bdef\s|\bfn\s")


def _phrase_pattern(phrases: tuple[str, ...]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(phrase) for phrase in phrases)
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


TECHNICAL_TERMS = frozenset(
    {
        "algorithm", "architecture", "async", "await", "binary", "buffer",
        "callback", "class", "closure", "compile", "concurrency", "database",
        "debug", "deploy", "docker", "encrypt", "endpoint", "framework",
        "function", "git", "hash", "http", "interface", "kubernetes",
        "lambda", "memory", "microservice", "mutex", "namespace", "oauth",
        "object", "optimization", "parse", "polymorphism", "promise", "protocol",
        "query", "recursion", "regex", "rest", "schema", "server",
        "socket", "sql", "stack", "state", "stream", "thread",
        "token", "typescript", "variable", "vector", "webhook", "yaml",
    }
)

ABSTRACT_CONCEPTS = frozenset(
    {
        "philosophy", "ethics", "consciousness", "meaning", "existence",
        "knowledge", "reality", "truth", "justice", "freedom", "morality",
        "causality", "determinism", "emergence", "complexity", "chaos",
        "entropy", "infinity", "probability", "uncertainty", "paradox",
    }
)

MULTI_STEP_CUES = (
    "first", "then", "next", "finally", "step", "steps",
    "consider", "analyze", "compare", "evaluate",
    "pros and cons", "tradeoffs", "trade-offs", "implications",
)

CREATIVITY_CUES = (
    "creative", "imagine", "story", "write",
    "design", "brainstorm", "ideas", "novel",
    "innovative", "unique", "original",
)

DATA_ANALYSIS_CUES = (
    "analyze", "data", "statistics", "graph",
    "chart", "metrics", "numbers", "calculate",
    "trends", "patterns", "correlation",
)

AMBIGUITY_CUES = (
    "maybe", "perhaps", "might", "could be",
    "not sure", "unclear", "depends", "either",
)

_MULTI_STEP = _phrase_pattern(MULTI_STEP_CUES)
_CREATIVITY = _phrase_pattern(CREATIVITY_CUES)
_DATA_ANALYSIS = _phrase_pattern(DATA_ANALYSIS_CUES)
_AMBIGUITY = [_phrase_pattern((cue,)) for cue in AMBIGUITY_CUES]

# More questions than this count as a complexity signal
MANY_QUESTIONS = 3


@dataclass(frozen=True)
class ComplexitySignals:
    """Signal vector extracted from a single message.

    Attributes:
        code_presence: Message contains at least one fenced code block
        code_complexity: Estimated complexity of the code blocks (0.0-1.0)
        question_count: Number of question marks
        technical_term_count: Words found in the technical vocabulary
        abstract_concept_count: Words found in the abstract-concept vocabulary
        multi_step_reasoning: A multi-step reasoning cue phrase is present
        creativity_required: A creativity cue phrase is present
        data_analysis: A data-analysis cue phrase is present
        ambiguity: 0.2 per distinct ambiguity cue, capped at 1.0
    """

    code_presence: bool = False
    code_complexity: float = 0.0
    question_count: int = 0
    technical_term_count: int = 0
    abstract_concept_count: int = 0
    multi_step_reasoning: bool = False
    creativity_required: bool = False
    data_analysis: bool = False
    ambiguity: float = 0.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.code_complexity <= 1.0:
            raise ValueError(f"code_complexity must be 0.0-1.0, got {self.code_complexity}")
        if not 0.0 <= self.ambiguity <= 1.0:
            raise ValueError(f"ambiguity must be 0.0-1.0, got {self.ambiguity}")


@dataclass(frozen=True)
class ComplexityWeights:
    """Contribution of each signal to the combined complexity score.

    Attributes:
        code: Multiplier on ``code_complexity`` when code is present
        technical_term: Added per technical term, up to ``technical_cap``
        abstract_concept: Added per abstract concept, up to ``abstract_cap``
        multi_step: Added when a multi-step reasoning cue is present
        many_questions: Added when the message asks more than three questions
        creativity: Added when a creativity cue is present
        data_analysis: Added when a data-analysis cue is present
        ambiguity: Multiplier on the ambiguity signal
    """

    code: float = 0.3
    technical_term: float = 0.05
    technical_cap: float = 0.2
    abstract_concept: float = 0.08
    abstract_cap: float = 0.15
    multi_step: float = 0.2
    many_questions: float = 0.1
    creativity: float = 0.15
    data_analysis: float = 0.1
    ambiguity: float = 0.1

    def __post_init__(self) -> None:
        negative = [f.name for f in fields(self) if getattr(self, f.name) < 0]
        if negative:
            raise ValueError(f"complexity weights must be non-negative: {', '.join(negative)}")


@dataclass(frozen=True)
class ComplexityAssessment:
    signals: ComplexitySignals
    score: float
    level: ComplexityLevel


class ComplexityAnalyzer:
    """Heuristic complexity analysis over fixed vocabularies."""

    # Level cut points on the combined score
    TRIVIAL_BELOW = 0.15
    SIMPLE_BELOW = 0.3
    MODERATE_BELOW = 0.5
    COMPLEX_BELOW = 0.75

    def __init__(self, weights: ComplexityWeights | None = None) -> None:
        self._weights = weights or ComplexityWeights()

    @property
    def weights(self) -> ComplexityWeights:
        return self._weights

    def analyze(self, message: str) -> ComplexitySignals:
        """Extract the complexity signal vector from message text.

        Args:
            message: Raw message text

        Returns:
            ComplexitySignals for the message
        """
        code_blocks = _CODE_BLOCK.findall(message)
        code_presence = bool(code_blocks)
        code_complexity = (
            self.estimate_code_complexity("\n".join(code_blocks)) if code_presence else 0.0
        )

        technical = 0
        abstract = 0
        for word in _WORD.findall(message.lower()):
            if word in TECHNICAL_TERMS:
                technical += 1
            if word in ABSTRACT_CONCEPTS:
                abstract += 1

        ambiguity = sum(0.2 for pattern in _AMBIGUITY if pattern.search(message))

        return ComplexitySignals(
            code_presence=code_presence,
            code_complexity=code_complexity,
            question_count=message.count("?"),
            technical_term_count=technical,
            abstract_concept_count=abstract,
            multi_step_reasoning=bool(_MULTI_STEP.search(message)),
            creativity_required=bool(_CREATIVITY.search(message)),
            data_analysis=bool(_DATA_ANALYSIS.search(message)),
            ambiguity=min(round(ambiguity, 10), 1.0),
        )

    def estimate_code_complexity(self, code: str) -> float:
        """Estimate complexity of code from length, control flow, nesting and functions.

        Each factor is capped before summing:
        - length: characters / 1000, up to 0.3
        - control-flow keywords: 0.05 each, up to 0.3
        - nesting depth: 0.1 per level, up to 0.2
        - function definitions: 0.05 each, up to 0.2

        Nesting depth is the deeper of brace nesting and indentation nesting.

        Returns:
            Complexity 0.0-1.0
        """
        complexity = min(len(code) / 1000.0, 0.3)
        complexity += min(len(_CONTROL_FLOW.findall(code)) * 0.05, 0.3)
        complexity += min(self._nesting_depth(code) * 0.1, 0.2)
        complexity += min(len(_FUNCTION_DEF.findall(code)) * 0.05, 0.2)
        return min(complexity, 1.0)

    def score(self, signals: ComplexitySignals) -> float:
        """Combine signals into a single weighted score (0.0-1.0)."""
        weights = self._weights
        score = 0.0
        if signals.code_presence:
            score += signals.code_complexity * weights.code
        score += min(signals.technical_term_count * weights.technical_term, weights.technical_cap)
        score += min(
            signals.abstract_concept_count * weights.abstract_concept, weights.abstract_cap
        )
        if signals.multi_step_reasoning:
            score += weights.multi_step
        if signals.question_count > MANY_QUESTIONS:
            score += weights.many_questions
        if signals.creativity_required:
            score += weights.creativity
        if signals.data_analysis:
            score += weights.data_analysis
        score += signals.ambiguity * weights.ambiguity
        return max(0.0, min(1.0, score))

    def to_level(self, signals: ComplexitySignals) -> ComplexityLevel:
        """Threshold the combined score into a ComplexityLevel."""
        return self._level_for(self.score(signals))

    def assess(self, message: str) -> ComplexityAssessment:
        """Analyze a message and return signals, score and level together."""
        signals = self.analyze(message)
        score = self.score(signals)
        level = self._level_for(score)
        log.debug(
            "complexity_analyzer.assessed",
            level=level.value,
            score=round(score, 3),
            code_presence=signals.code_presence,
            technical_terms=signals.technical_term_count,
        )
        return ComplexityAssessment(signals=signals, score=score, level=level)

    def _level_for(self, score: float) -> ComplexityLevel:
        if score < self.TRIVIAL_BELOW:
            return ComplexityLevel.TRIVIAL
        if score < self.SIMPLE_BELOW:
            return ComplexityLevel.SIMPLE
        if score < self.MODERATE_BELOW:
            return ComplexityLevel.MODERATE
        if score < self.COMPLEX_BELOW:
            return ComplexityLevel.COMPLEX
        return ComplexityLevel.EXPERT

    @staticmethod
    def _nesting_depth(code: str) -> int:
        brace_depth = 0
        max_brace_depth = 0
        for char in code:
            if char == "{":
                brace_depth += 1
                max_brace_depth = max(max_brace_depth, brace_depth)
            elif char == "}":
                brace_depth = max(brace_depth - 1, 0)

        indents: list[int] = []
        max_indent_depth = 0
        for line in code.splitlines():
            stripped = line.lstrip(" \t")
            if not stripped or stripped.startswith("```"):
                continue
            width = len(line.expandtabs(4)) - len(stripped.expandtabs(4))
            while indents and indents[-1] >= width:
                indents.pop()
            indents.append(width)
            # The outermost level is depth zero
            max_indent_depth = max(max_indent_depth, len(indents) - 1)

        return max(max_brace_depth, max_indent_depth)
