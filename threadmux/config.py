"""
Orchestrator configuration via pydantic-settings.

All tunables are loaded from environment variables (or a .env file in dev),
prefixed with THREADMUX_. The scoring weights and thresholds are heuristic
starting points; every one of them can be overridden without code changes.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from typing import TYPE_CHECKING

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from threadmux.errors import ConfigurationError

if TYPE_CHECKING:
    from threadmux.analysis.complexity import ComplexityWeights
    from threadmux.context.similarity import SimilarityWeights
    from threadmux.model_router.selector import SelectionWeights


class Environment(StrEnum):
    DEV = "dev"
    PROD = "prod"
    TEST = "test"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="THREADMUX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Application
    # ------------------------------------------------------------------ #
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = Field(default="INFO", description="Minimum log level")
    json_logs: bool = Field(default=False, description="Render logs as JSON")

    # ------------------------------------------------------------------ #
    # Infinite context / compaction
    # ------------------------------------------------------------------ #
    max_context_tokens: int = Field(
        default=100_000,
        ge=1,
        description="Token budget a single context may hold before compaction",
    )
    summarize_threshold: float = Field(
        default=70.0,
        gt=0,
        le=100,
        description="Utilization percentage that triggers compaction",
    )
    min_messages_to_summarize: int = Field(default=10, ge=1)
    keep_recent_messages: int = Field(
        default=20,
        ge=1,
        description="Most recent messages that are never compacted",
    )
    max_snapshots_in_context: int = Field(default=5, ge=0, le=50)
    summary_refresh_messages: int = Field(
        default=20,
        ge=0,
        description=(
            "Rebuild a context's topics and entities after this many new messages (0 disables)"
        ),
    )

    # ------------------------------------------------------------------ #
    # Context routing
    # ------------------------------------------------------------------ #
    explicit_switch_confidence: float = Field(default=0.95, ge=0.9, le=1.0)
    hint_confidence: float = Field(default=0.85, ge=0.0, le=1.0)
    stay_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    stay_margin: float = Field(default=0.2, ge=0.0, le=1.0)
    new_context_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    recent_message_window: int = Field(default=5, ge=1, le=100)
    recency_decay_hours: float = Field(default=24.0, gt=0)
    goal_word_increment: float = Field(default=0.15, ge=0.0)
    goal_score_cap: float = Field(default=0.4, ge=0.0, le=1.0)

    weight_goal: float = Field(default=0.3, description="Goal-word overlap weight")
    weight_topic: float = Field(default=0.25, description="Summary topic overlap weight")
    weight_entity: float = Field(default=0.25, description="Entity mention weight")
    weight_recent: float = Field(default=0.15, description="Recent message similarity weight")
    weight_recency: float = Field(default=0.05, description="Recency decay weight")

    # ------------------------------------------------------------------ #
    # Model selection
    # ------------------------------------------------------------------ #
    default_model_id: str | None = Field(
        default=None,
        description=(
            "Model used when no candidate passes the hard constraints. "
            "When unset, the candidate with the largest context window "
            "(then lowest cost) is used."
        ),
    )
    min_outcomes_for_history: int = Field(default=10, ge=1)

    selection_code_bonus: float = Field(default=0.15, ge=0.0)
    selection_reasoning_bonus: float = Field(default=0.2, ge=0.0)
    selection_creativity_bonus: float = Field(default=0.15, ge=0.0)
    selection_complexity_fit_weight: float = Field(default=0.2, ge=0.0)
    selection_fast_bonus: float = Field(default=0.2, ge=0.0)
    selection_slow_penalty: float = Field(default=0.1, ge=0.0)
    selection_cheap_background_bonus: float = Field(default=0.1, ge=0.0)
    selection_over_budget_penalty: float = Field(default=0.3, ge=0.0)
    selection_under_budget_bonus: float = Field(default=0.1, ge=0.0)
    selection_thinking_bonus: float = Field(default=0.15, ge=0.0)
    selection_preferred_bonus: float = Field(default=0.1, ge=0.0)

    complexity_code_weight: float = Field(default=0.3, ge=0.0)
    complexity_technical_term_weight: float = Field(default=0.05, ge=0.0)
    complexity_technical_cap: float = Field(default=0.2, ge=0.0)
    complexity_abstract_concept_weight: float = Field(default=0.08, ge=0.0)
    complexity_abstract_cap: float = Field(default=0.15, ge=0.0)
    complexity_multi_step_weight: float = Field(default=0.2, ge=0.0)
    complexity_question_weight: float = Field(
        default=0.1, ge=0.0, description="Added when a message asks more than three questions"
    )
    complexity_creativity_weight: float = Field(default=0.15, ge=0.0)
    complexity_data_analysis_weight: float = Field(default=0.1, ge=0.0)
    complexity_ambiguity_weight: float = Field(default=0.1, ge=0.0)

    # ------------------------------------------------------------------ #
    # Recommendations
    # ------------------------------------------------------------------ #
    auto_archive_after_days: int = Field(default=7, ge=1)
    paused_resume_window_hours: float = Field(default=24.0, gt=0)
    merge_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    prediction_cache_ttl_seconds: int = Field(default=300, ge=1)
    prediction_cache_max_entries: int = Field(default=256, ge=1)

    # ------------------------------------------------------------------ #
    # Generation collaborator (LiteLLM)
    # ------------------------------------------------------------------ #
    litellm_base_url: str = Field(
        default="http://localhost:4000",
        description="LiteLLM proxy base URL",
    )
    litellm_api_key: SecretStr = Field(
        default=SecretStr("sk-dev-key"),
        description="API key for LiteLLM proxy",
    )
    summarizer_model: str = Field(
        default="anthropic/claude-3-5-haiku-20241022",
        description="Model used for compaction summaries",
    )
    generation_timeout_seconds: float = Field(default=60.0, gt=0)

    # ------------------------------------------------------------------ #
    # Derived / Computed
    # ------------------------------------------------------------------ #
    @model_validator(mode="after")
    def _set_debug_from_env(self) -> Settings:
        if self.environment == Environment.DEV:
            self.debug = True
        return self

    @model_validator(mode="after")
    def _validate_scoring_weights(self) -> Settings:
        weights = {
            "weight_goal": self.weight_goal,
            "weight_topic": self.weight_topic,
            "weight_entity": self.weight_entity,
            "weight_recent": self.weight_recent,
            "weight_recency": self.weight_recency,
        }
        negative = [name for name, value in weights.items() if value < 0]
        if negative:
            raise ConfigurationError(
                f"Similarity weights must be non-negative: {', '.join(negative)}"
            )
        if sum(weights.values()) <= 0:
            raise ConfigurationError("At least one similarity weight must be positive")
        return self

    @property
    def is_dev(self) -> bool:
        return self.environment in (Environment.DEV, Environment.TEST)

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PROD

    def scoring_weights(self) -> SimilarityWeights:
        """Return the similarity weights as a value object."""
        from threadmux.context.similarity import SimilarityWeights

        return SimilarityWeights(
            goal=self.weight_goal,
            topic=self.weight_topic,
            entity=self.weight_entity,
            recent=self.weight_recent,
            recency=self.weight_recency,
        )

    def selection_weights(self) -> SelectionWeights:
        """Return the model selection bonuses and penalties as a value object."""
        from threadmux.model_router.selector import SelectionWeights

        return SelectionWeights(
            code=self.selection_code_bonus,
            reasoning=self.selection_reasoning_bonus,
            creativity=self.selection_creativity_bonus,
            complexity_fit=self.selection_complexity_fit_weight,
            fast=self.selection_fast_bonus,
            slow_penalty=self.selection_slow_penalty,
            cheap_background=self.selection_cheap_background_bonus,
            over_budget_penalty=self.selection_over_budget_penalty,
            under_budget=self.selection_under_budget_bonus,
            thinking=self.selection_thinking_bonus,
            preferred=self.selection_preferred_bonus,
        )

    def complexity_weights(self) -> ComplexityWeights:
        from threadmux.analysis.complexity import ComplexityWeights

        return ComplexityWeights(
            code=self.complexity_code_weight,
            technical_term=self.complexity_technical_term_weight,
            technical_cap=self.complexity_technical_cap,
            abstract_concept=self.complexity_abstract_concept_weight,
            abstract_cap=self.complexity_abstract_cap,
            multi_step=self.complexity_multi_step_weight,
            many_questions=self.complexity_question_weight,
            creativity=self.complexity_creativity_weight,
            data_analysis=self.complexity_data_analysis_weight,
            ambiguity=self.complexity_ambiguity_weight,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings singleton.

    Prefer passing a Settings instance into constructors; this helper is for
    scripts and top-level wiring.
    """
    return Settings()
