"""Historical outcome tracking for model selection.

The ModelUsageTracker counts successes and totals per model. Once a model
has enough recorded outcomes its success rate nudges future scoring up or
down around an 80% baseline.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

log = structlog.get_logger(__name__)

BASELINE_SUCCESS_RATE = 0.8
HISTORY_WEIGHT = 0.2


@dataclass
class ModelUsage:
    success: int = 0
    total: int = 0

    @property
    def success_rate(self) -> float:
        return self.success / self.total if self.total else 0.0


class ModelUsageTracker:
    """In-memory success/total counters keyed by model id."""

    def __init__(self, min_outcomes: int = 10) -> None:
        if min_outcomes < 1:
            raise ValueError("min_outcomes must be positive")
        self._min_outcomes = min_outcomes
        self._usage: dict[str, ModelUsage] = {}

    def record(self, model_id: str, success: bool) -> None:
        """Record the outcome of one generation with ``model_id``."""
        usage = self._usage.setdefault(model_id, ModelUsage())
        usage.total += 1
        if success:
            usage.success += 1
        log.debug(
            "model_usage.recorded",
            model=model_id,
            success=success,
            total=usage.total,
            success_rate=round(usage.success_rate, 3),
        )

    def adjustment(self, model_id: str) -> float | None:
        """Score adjustment for ``model_id``, or None until enough outcomes exist.

        Returns:
            (success_rate - 0.8) * 0.2, within [-0.16, +0.04]
        """
        usage = self._usage.get(model_id)
        if usage is None or usage.total < self._min_outcomes:
            return None
        return (usage.success_rate - BASELINE_SUCCESS_RATE) * HISTORY_WEIGHT

    def get(self, model_id: str) -> ModelUsage | None:
        return self._usage.get(model_id)

    def stats(self) -> dict[str, dict[str, float]]:
        return {
            model_id: {
                "success": usage.success,
                "total": usage.total,
                "success_rate": usage.success_rate,
            }
            for model_id, usage in self._usage.items()
        }
