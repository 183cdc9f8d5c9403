"""Test fixtures and configuration for tunelink-api tests.

This module provides shared fixtures organized into:
- Database fixtures: In-memory SQLite for repository tests
- Tracker fixtures: Task store and tracker with deterministic time and IDs
- Event fixtures: Recording delivery and emitter
- Factory fixtures: Builders for conversion engines
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine
from tunelink import AdapterRegistry, ConversionConfig, DeveloperApp, Matcher
from tunelink_api.db import SqlTaskStore, init_db
from tunelink_api.schemas.events import ConversionEvent
from tunelink_api.services.conversion import ConversionEngine
from tunelink_api.services.event_emitter import EventEmitter
from tunelink_api.services.task_store import InMemoryTaskStore
from tunelink_api.services.task_tracker import TaskTracker

# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def db_engine() -> Generator[Engine, None, None]:
    """Create in-memory SQLite engine shared across threads."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sql_store(db_engine: Engine) -> SqlTaskStore:
    """Create SQL task store with test engine."""
    return SqlTaskStore(db_engine)


# =============================================================================
# Time Utilities
# =============================================================================


class MockClock:
    """Mock clock for deterministic time-based testing.

    Usage:
        clock = MockClock()
        clock.advance(60)  # Advance by 60 seconds
        clock.set(datetime(2024, 6, 15, 12, 0, 0, tzinfo=UTC))
    """

    def __init__(self, initial: datetime | None = None) -> None:
        self._time = initial or datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self._time

    def advance(self, seconds: int) -> None:
        """Advance the clock by the specified seconds."""
        self._time += timedelta(seconds=seconds)

    def set(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._time = time


class MockIdGenerator:
    """Mock ID generator for deterministic ID generation.

    Usage:
        gen = MockIdGenerator(prefix="task")
        gen()  # Returns "task-0001"
        gen()  # Returns "task-0002"
    """

    def __init__(self, prefix: str = "task") -> None:
        self._counter = 0
        self._prefix = prefix

    def __call__(self) -> str:
        self._counter += 1
        return f"{self._prefix}-{self._counter:04d}"


@pytest.fixture
def clock() -> MockClock:
    """Provide a mock clock."""
    return MockClock()


@pytest.fixture
def id_generator() -> MockIdGenerator:
    """Provide a mock ID generator."""
    return MockIdGenerator()


# =============================================================================
# Tracker Fixtures
# =============================================================================


@pytest.fixture
def task_store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def tracker(
    task_store: InMemoryTaskStore, clock: MockClock, id_generator: MockIdGenerator
) -> TaskTracker:
    """Task tracker allowing one restart of a failed task."""
    return TaskTracker(task_store, clock=clock, id_generator=id_generator, max_retries=1)


# =============================================================================
# Event Fixtures
# =============================================================================


class RecordingDelivery:
    """Delivery that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[ConversionEvent] = []

    def deliver(self, event: ConversionEvent) -> None:
        self.events.append(event)

    def of_task(self, task_id: str) -> list[ConversionEvent]:
        return [e for e in self.events if e.task_id == task_id]


@pytest.fixture
def recorder() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def emitter(recorder: RecordingDelivery) -> EventEmitter:
    return EventEmitter([recorder])


# =============================================================================
# Factory Fixtures
# =============================================================================


@pytest.fixture
def dev_app() -> DeveloperApp:
    """Developer app owning the conversions under test."""
    return DeveloperApp(id="test-app", name="Test App")


@pytest.fixture
def make_engine(
    tracker: TaskTracker, emitter: EventEmitter
) -> Callable[..., ConversionEngine]:
    """Factory for conversion engines over a fixed adapter registry."""

    def _make_engine(registry: AdapterRegistry, **config: Any) -> ConversionEngine:
        config.setdefault("adapter_max_retries", 0)
        config.setdefault("retry_backoff_seconds", 0)
        return ConversionEngine(
            lambda app: registry,
            tracker,
            emitter,
            matcher=Matcher(),
            config=ConversionConfig(**config),
            sleep=lambda seconds: None,
        )

    return _make_engine
