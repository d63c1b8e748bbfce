"""Context management: storage, routing, compaction and recommendations."""

from __future__ import annotations

from threadmux.context.compactor import ContextCompactor, health_for, utilization
from threadmux.context.recommender import (
    ActionPattern,
    PredictiveContextEngine,
    ThreadRecommender,
)
from threadmux.context.router import ContextRouter, analyze_content_for_context_type
from threadmux.context.similarity import (
    ContextScorer,
    SimilarityScore,
    SimilarityWeights,
    context_similarity,
)
from threadmux.context.store import ALLOWED_TRANSITIONS, ContextStore
from threadmux.context.summarizer import (
    extract_entities,
    extract_topics,
    merge_entities,
    summarize_context,
)
from threadmux.context.worker import CompactionJob, CompactionWorker, JobStatus

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ActionPattern",
    "CompactionJob",
    "CompactionWorker",
    "ContextCompactor",
    "ContextRouter",
    "ContextScorer",
    "ContextStore",
    "JobStatus",
    "PredictiveContextEngine",
    "SimilarityScore",
    "SimilarityWeights",
    "ThreadRecommender",
    "analyze_content_for_context_type",
    "context_similarity",
    "extract_entities",
    "extract_topics",
    "health_for",
    "merge_entities",
    "summarize_context",
    "utilization",
]
