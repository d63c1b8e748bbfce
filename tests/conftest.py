"""
Shared test fixtures for pytest.

Provides common fakes and test data for all test modules:
- clock: Controllable UTC clock (advance with clock.advance(...))
- settings: Test environment configuration (no .env file)
- generation: Fake generation collaborator built from AsyncMock
- persistence: In-memory persistence backend
- store: ContextStore bound to the fake clock
- make_context: Factory for standalone Context objects (pure scoring tests)
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from threadmux.collaborators.base import SummarizationResult
from threadmux.collaborators.memory import InMemoryPersistence
from threadmux.config import Environment, Settings, get_settings
from threadmux.context.store import ContextStore
from threadmux.telemetry import clear_context
from threadmux.types import (
    Context,
    ContextStatus,
    ContextSummary,
    ContextType,
    EntityType,
    ExtractedEntity,
)

START = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


# ------------------------------------------------------------------ #
# Global state
# ------------------------------------------------------------------ #


@pytest.fixture(autouse=True, scope="session")
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _clear_log_context():
    yield
    clear_context()


# ------------------------------------------------------------------ #
# Clock and settings
# ------------------------------------------------------------------ #


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, environment=Environment.TEST)


# ------------------------------------------------------------------ #
# Collaborators
# ------------------------------------------------------------------ #


class FakeGeneration:
    """GenerationService double with AsyncMock methods."""

    def __init__(
        self,
        reply: str = "Sure, here is what I found.",
        summary: SummarizationResult | None = None,
    ) -> None:
        self.generate = AsyncMock(return_value=reply)
        self.summarize = AsyncMock(
            return_value=summary
            or SummarizationResult(
                summary="Discussed the sprint board layout and agreed on swimlanes.",
                key_points=["Use three swimlanes", "Review on Friday"],
                entities=[ExtractedEntity(type=EntityType.TECHNOLOGY, value="React")],
            )
        )


@pytest.fixture
def generation() -> FakeGeneration:
    return FakeGeneration()


@pytest.fixture
def persistence() -> InMemoryPersistence:
    return InMemoryPersistence()


@pytest.fixture
def store(clock: FakeClock) -> ContextStore:
    return ContextStore(clock=clock)


# ------------------------------------------------------------------ #
# Context factory
# ------------------------------------------------------------------ #


@pytest.fixture
def make_context(clock: FakeClock):
    """Build a standalone Context for pure scoring and recommendation tests."""

    def _make(
        context_id: str,
        *,
        goal: str | None = None,
        context_type: ContextType = ContextType.PRIMARY,
        status: ContextStatus = ContextStatus.ACTIVE,
        topics: set[str] | None = None,
        entities: list[str] | None = None,
        idle: timedelta = timedelta(0),
    ) -> Context:
        last_active = clock() - idle
        return Context(
            id=context_id,
            type=context_type,
            status=status,
            goal=goal,
            created_at=last_active,
            last_active_at=last_active,
            summary=ContextSummary(
                topics=set(topics or ()),
                entities=[
                    ExtractedEntity(type=EntityType.TECHNOLOGY, value=value)
                    for value in entities or ()
                ],
            ),
        )

    return _make
