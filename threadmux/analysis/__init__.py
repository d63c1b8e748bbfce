"""Pure text analysis: message complexity and intent classification."""

from __future__ import annotations

from threadmux.analysis.complexity import (
    ComplexityAnalyzer,
    ComplexityAssessment,
    ComplexitySignals,
    ComplexityWeights,
)
from threadmux.analysis.intent import INTENT_PATTERNS, IntentClassifier, IntentPattern

__all__ = [
    "INTENT_PATTERNS",
    "ComplexityAnalyzer",
    "ComplexityAssessment",
    "ComplexitySignals",
    "ComplexityWeights",
    "IntentClassifier",
    "IntentPattern",
]
