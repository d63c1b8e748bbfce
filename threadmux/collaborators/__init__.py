"""External collaborators: persistence, text generation and task tracking.

Protocols live in ``base``; ``memory`` and ``llm`` provide the default
implementations.
"""

from __future__ import annotations

from threadmux.collaborators.base import (
    GenerationService,
    PersistenceBackend,
    SummarizationResult,
    TaskProvider,
)
from threadmux.collaborators.llm import (
    LiteLLMGenerationService,
    LLMError,
    LLMRateLimitError,
    LLMUnavailableError,
)
from threadmux.collaborators.memory import InMemoryPersistence

__all__ = [
    "GenerationService",
    "InMemoryPersistence",
    "LLMError",
    "LLMRateLimitError",
    "LLMUnavailableError",
    "LiteLLMGenerationService",
    "PersistenceBackend",
    "SummarizationResult",
    "TaskProvider",
]
