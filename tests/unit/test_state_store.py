import pytest

from assistant.dispatch.hitl import suspend_update
from assistant.state.models import (
    Capability,
    ClarifyResult,
    ConversationMessage,
    ConversationState,
    ExecuteResult,
    ExecutedOperation,
    PlanStep,
    UserContext,
)


def build_state(reducer, clock, thread_id: str = "thread-1") -> ConversationState:
    clarify = ClarifyResult(
        step_id="s2",
        question="Which list?",
        options=("shopping", "movies"),
        mode="fill:list_name",
    )
    return reducer.apply_all(
        ConversationState(),
        [
            {
                "thread_id": thread_id,
                "trace_id": "trace-1",
                "user": UserContext(user_id="u1", language="he"),
                "recent_messages": (ConversationMessage(role="user", content="remind me and add milk"),),
                "plan": (
                    PlanStep(id="s1", capability=Capability.DATABASE, action="create_reminder"),
                    PlanStep(id="s2", capability=Capability.DATABASE, action="add_to_list", depends_on=["s1"]),
                ),
                "resolver_results": {"s1": ExecuteResult(step_id="s1", args={"text": "call mom"})},
                "executed_operations": {
                    "s1:abc": ExecutedOperation(action="create_reminder", step_id="s1", capability="database")
                },
            },
            suspend_update(clarify, "list", 300, clock()),
        ],
    )


def test_suspended_state_round_trips(state_store, reducer, clock):
    state = build_state(reducer, clock)

    state_store.save_suspended(state)
    loaded = state_store.load_suspended("thread-1")

    assert loaded is not None
    assert loaded.plan == state.plan
    assert loaded.user == state.user
    assert loaded.resolver_results == state.resolver_results
    assert isinstance(loaded.resolver_results["s1"], ExecuteResult)
    assert loaded.pending_hitl == state.pending_hitl
    assert loaded.interrupted_at == state.interrupted_at
    assert loaded.executed_operations == state.executed_operations


def test_archive_keeps_memory_and_drops_suspension(state_store, reducer, clock):
    state = build_state(reducer, clock)
    state_store.save_suspended(state)

    state_store.archive(reducer.apply(state, {"pending_hitl": None}))

    assert state_store.load_suspended("thread-1") is None
    memory = state_store.load_memory("thread-1")
    assert [message.content for message in memory.recent_messages] == ["remind me and add milk"]
    assert list(memory.executed_operations) == ["s1:abc"]


def test_reset_and_listing(state_store, reducer, clock):
    state_store.save_suspended(build_state(reducer, clock, "b"))
    state_store.archive(build_state(reducer, clock, "a"))

    assert list(state_store.iter_threads()) == ["a", "b"]

    state_store.reset("b")

    assert state_store.load_suspended("b") is None
    assert list(state_store.iter_threads()) == ["a"]


def test_missing_records_return_none(state_store):
    assert state_store.load_suspended("nope") is None
    assert state_store.load_memory("nope") is None


def test_thread_id_is_required(state_store):
    with pytest.raises(ValueError):
        state_store.save_suspended(ConversationState())
    with pytest.raises(ValueError):
        state_store.archive(ConversationState())
