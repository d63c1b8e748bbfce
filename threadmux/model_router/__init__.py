"""Model selection: candidate registry, scoring and usage history.

The ModelSelector scores every registered ModelCandidate against criteria
derived from the message (complexity, code, reasoning, creativity, vision,
context length) and caller preferences (urgency, budget, quality), then
builds a concrete ModelConfig for the winner. Exhausted selections fall
back to the registry's default model.
"""

from __future__ import annotations

from threadmux.model_router.metrics import ModelUsage, ModelUsageTracker
from threadmux.model_router.registry import (
    DEFAULT_CANDIDATES,
    Latency,
    ModelCandidate,
    ModelRegistry,
    TokenCost,
)
from threadmux.model_router.selector import (
    ModelConfig,
    ModelRecommendation,
    ModelSelector,
    SelectionCriteria,
    SelectionPreferences,
    SelectionWeights,
    build_model_config,
    complexity_fit,
)

__all__ = [
    "DEFAULT_CANDIDATES",
    "Latency",
    "ModelCandidate",
    "ModelConfig",
    "ModelRecommendation",
    "ModelRegistry",
    "ModelSelector",
    "ModelUsage",
    "ModelUsageTracker",
    "SelectionCriteria",
    "SelectionPreferences",
    "SelectionWeights",
    "TokenCost",
    "build_model_config",
    "complexity_fit",
]
