from dataclasses import fields

import pytest

from assistant.core.errors import PendingInterruptConflictError, UnknownStateFieldError
from assistant.dispatch.hitl import suspend_update
from assistant.state.models import (
    Capability,
    ClarifyResult,
    ConversationMessage,
    ConversationState,
    ExecuteResult,
    PlanStep,
    StepTiming,
)
from assistant.state.reducers import FIELD_POLICIES, StateReducer


def pending_for(step_id: str):
    return suspend_update(ClarifyResult(step_id=step_id, question="which one?"), "task")["pending_hitl"]


def test_every_state_field_has_exactly_one_policy():
    names = {field.name for field in fields(ConversationState)}
    assert names == set(FIELD_POLICIES)


def test_unknown_field_is_rejected(reducer):
    with pytest.raises(UnknownStateFieldError):
        reducer.apply(ConversationState(), {"scratchpad": "nope"})


def test_apply_returns_new_state_without_mutating(reducer):
    original = ConversationState()
    step = PlanStep(id="s1", capability=Capability.DATABASE, action="list_tasks")

    updated = reducer.apply(original, {"plan": (step,)})

    assert updated.plan == (step,)
    assert original.plan == ()


def test_identity_fields_are_set_once(reducer):
    state = reducer.apply(ConversationState(), {"thread_id": "t1", "trace_id": "a"})
    state = reducer.apply(state, {"thread_id": "t2", "trace_id": "b"})

    assert state.thread_id == "t1"
    assert state.trace_id == "a"


def test_recent_messages_append_and_keep_last_k():
    reducer = StateReducer(recent_messages_limit=10)
    state = ConversationState()
    for index in range(12):
        state = reducer.apply(
            state,
            {"recent_messages": (ConversationMessage(role="user", content=f"m{index}"),)},
        )

    assert len(state.recent_messages) == 10
    assert state.recent_messages[0].content == "m2"
    assert state.recent_messages[-1].content == "m11"


def test_explicit_none_clears_last_write_wins_fields(reducer):
    state = reducer.apply(ConversationState(), {"error": "boom", "pending_hitl": pending_for("s1")})
    assert state.error == "boom"

    state = reducer.apply(state, {"error": None, "pending_hitl": None})

    assert state.error is None
    assert state.pending_hitl is None


def test_absent_key_leaves_field_untouched(reducer):
    state = reducer.apply(ConversationState(), {"error": "boom"})
    state = reducer.apply(state, {"final_response": "ok"})

    assert state.error == "boom"


def test_resolver_results_are_write_once(reducer):
    first = ExecuteResult(step_id="s1", args={"text": "call mom"})
    second = ExecuteResult(step_id="s1", args={"text": "call dad"})
    other = ExecuteResult(step_id="s2", args={})

    state = reducer.apply(ConversationState(), {"resolver_results": {"s1": first}})
    state = reducer.apply(state, {"resolver_results": {"s1": second, "s2": other}})

    assert state.resolver_results == {"s1": first, "s2": other}


def test_mapping_fields_merge_shallowly(reducer):
    state = reducer.apply(ConversationState(), {"executor_args": {"s1": {"a": 1}}})
    state = reducer.apply(state, {"executor_args": {"s2": {"b": 2}}})
    state = reducer.apply(state, {"executor_args": {"s1": {"c": 3}}})

    assert state.executor_args == {"s1": {"c": 3}, "s2": {"b": 2}}


def test_second_pending_interrupt_is_a_conflict(reducer):
    state = reducer.apply(ConversationState(), {"pending_hitl": pending_for("s1")})

    with pytest.raises(PendingInterruptConflictError):
        reducer.apply(state, {"pending_hitl": pending_for("s2")})


def test_rewriting_the_same_interrupt_is_allowed(reducer):
    pending = pending_for("s1")
    state = reducer.apply(ConversationState(), {"pending_hitl": pending})

    state = reducer.apply(state, {"pending_hitl": pending})

    assert state.pending_hitl == pending


def test_metadata_accumulates(reducer):
    timing = StepTiming(step_id="s1", handler="h", started_at=0.0, duration_ms=1.5)

    state = reducer.apply_all(
        ConversationState(),
        [
            {"metadata": {"llm_calls": 1}},
            {"metadata": {"llm_calls": 2, "step_timings": (timing,)}},
            {"metadata": {"total_tokens": 40}},
        ],
    )

    assert state.metadata.llm_calls == 3
    assert state.metadata.total_tokens == 40
    assert state.metadata.step_timings == (timing,)


def test_limit_must_be_positive():
    with pytest.raises(ValueError):
        StateReducer(recent_messages_limit=0)
