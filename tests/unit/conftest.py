"""Pytest unit test fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest

from assistant.adapters import EchoAdapter, InMemoryAdapter
from assistant.core.config import Settings
from assistant.core.metrics import MetricsCollector
from assistant.engine import ConversationEngine
from assistant.planner.simple import RuleBasedPlanner
from assistant.resolvers import Resolver, build_default_registry
from assistant.state.models import Capability, ConversationState, PlanStep
from assistant.state.reducers import StateReducer
from assistant.state.store import SQLiteStateStore


class FixedClock:
    """Manually advanced clock for timeout tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class ScriptedResolver(Resolver):
    """Resolver whose outcome is supplied by the test."""

    def __init__(self, name, capability, actions, outcome: Callable, calls: list) -> None:
        self.name = name
        self.capability = capability
        self.actions = tuple(actions)
        self.entity_type = "task"
        self._outcome = outcome
        self._calls = calls

    async def resolve(self, step, state):
        self._calls.append(step.id)
        return self._outcome(step, state)


@pytest.fixture()
def reducer() -> StateReducer:
    return StateReducer(recent_messages_limit=10)


@pytest.fixture()
def state_store(tmp_path) -> SQLiteStateStore:
    return SQLiteStateStore(tmp_path / "state.db")


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture()
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture()
def make_resolver():
    def factory(name, capability, actions, outcome, calls=None) -> ScriptedResolver:
        return ScriptedResolver(name, capability, actions, outcome, calls if calls is not None else [])

    return factory


@pytest.fixture()
def make_state(reducer):
    def factory(*steps: PlanStep, **fields) -> ConversationState:
        update = {"thread_id": "thread-1", "trace_id": "trace-1", "plan": steps}
        update.update(fields)
        return reducer.apply(ConversationState(), update)

    return factory


@pytest.fixture()
def adapters() -> dict:
    echo = EchoAdapter()
    return {
        Capability.CALENDAR: InMemoryAdapter("calendar"),
        Capability.DATABASE: InMemoryAdapter("database"),
        Capability.GMAIL: InMemoryAdapter("gmail"),
        Capability.SECOND_BRAIN: InMemoryAdapter("second-brain"),
        Capability.GENERAL: echo,
        Capability.META: echo,
    }


@pytest.fixture()
def make_engine(tmp_path, clock, adapters):
    def factory(**overrides) -> ConversationEngine:
        settings = Settings(state_db_path=tmp_path / "state.db", **overrides)
        store = SQLiteStateStore(settings.state_db_path)
        return ConversationEngine(
            settings,
            store,
            RuleBasedPlanner(),
            build_default_registry(None, adapters),
            adapters,
            metrics=MetricsCollector(),
            clock=clock,
        )

    return factory
