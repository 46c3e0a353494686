"""Field-level merge rules for :class:`ConversationState`.

Every state field is listed in :data:`FIELD_POLICIES` with exactly one merge
policy. :class:`StateReducer` looks each key of a partial update up in that
table and applies the matching reducer function, producing a new state value.
Keys without a policy raise :class:`UnknownStateFieldError`.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Callable, Iterable, Mapping

from assistant.core.errors import PendingInterruptConflictError, UnknownStateFieldError
from assistant.state.models import ConversationState, ExecutionMetadata, PendingHITL

logger = logging.getLogger("assistant.state")

Reducer = Callable[[Any, Any], Any]

LAST_WRITE_WINS = "last_write_wins"
SET_ONCE = "set_once"
APPEND_AND_TRIM = "append_and_trim"
SHALLOW_MERGE = "shallow_merge"
WRITE_ONCE_MERGE = "write_once_merge"
ACCUMULATE = "accumulate"

FIELD_POLICIES: dict[str, str] = {
    "thread_id": SET_ONCE,
    "trace_id": SET_ONCE,
    "user": LAST_WRITE_WINS,
    "input": LAST_WRITE_WINS,
    "now": LAST_WRITE_WINS,
    "recent_messages": APPEND_AND_TRIM,
    "long_term_summary": LAST_WRITE_WINS,
    "plan": LAST_WRITE_WINS,
    "routing_suggestions": LAST_WRITE_WINS,
    "resolver_results": WRITE_ONCE_MERGE,
    "executor_args": SHALLOW_MERGE,
    "execution_results": SHALLOW_MERGE,
    "pending_hitl": LAST_WRITE_WINS,
    "hitl_results": SHALLOW_MERGE,
    "interrupted_at": LAST_WRITE_WINS,
    "executed_operations": SHALLOW_MERGE,
    "formatted_response": LAST_WRITE_WINS,
    "final_response": LAST_WRITE_WINS,
    "error": LAST_WRITE_WINS,
    "metadata": ACCUMULATE,
}


def last_write_wins(existing: Any, incoming: Any) -> Any:
    return incoming


def replace_sequence(existing: tuple, incoming: Iterable[Any] | None) -> tuple:
    return tuple(incoming or ())


def set_once(existing: str, incoming: str | None) -> str:
    if existing:
        return existing
    return incoming or existing


def append_and_trim(limit: int) -> Reducer:
    def reducer(existing: tuple, incoming: Iterable[Any] | None) -> tuple:
        incoming = tuple(incoming or ())
        if not incoming:
            return existing
        combined = tuple(existing) + incoming
        return combined[-limit:]

    return reducer


def shallow_merge(existing: Mapping[str, Any], incoming: Mapping[str, Any] | None) -> dict[str, Any]:
    if not incoming:
        return existing
    merged = dict(existing)
    merged.update(incoming)
    return merged


def write_once_merge(existing: Mapping[str, Any], incoming: Mapping[str, Any] | None) -> dict[str, Any]:
    if not incoming:
        return existing
    merged = dict(existing)
    for key, value in incoming.items():
        if key in merged:
            if merged[key] != value:
                logger.error("Rejected second resolution for step %s; keeping the first result", key)
            continue
        merged[key] = value
    return merged


def guard_pending(existing: PendingHITL | None, incoming: PendingHITL | None) -> PendingHITL | None:
    if existing is not None and incoming is not None and existing.hitl_id != incoming.hitl_id:
        raise PendingInterruptConflictError(
            f"Interrupt {existing.hitl_id} is still pending for step {existing.step_id}"
        )
    return incoming


def accumulate_metadata(existing: ExecutionMetadata, incoming: Any) -> ExecutionMetadata:
    if not incoming:
        return existing
    if isinstance(incoming, ExecutionMetadata):
        incoming = {
            "step_timings": incoming.step_timings,
            "llm_calls": incoming.llm_calls,
            "total_tokens": incoming.total_tokens,
            "total_cost": incoming.total_cost,
        }
    return ExecutionMetadata(
        started_at=existing.started_at,
        step_timings=tuple(existing.step_timings) + tuple(incoming.get("step_timings", ())),
        llm_calls=existing.llm_calls + incoming.get("llm_calls", 0),
        total_tokens=existing.total_tokens + incoming.get("total_tokens", 0),
        total_cost=existing.total_cost + incoming.get("total_cost", 0.0),
    )


class StateReducer:
    """Apply partial updates to a conversation state without mutating it."""

    def __init__(self, recent_messages_limit: int = 10) -> None:
        if recent_messages_limit < 1:
            raise ValueError("recent_messages_limit must be positive")
        self.recent_messages_limit = recent_messages_limit
        self._reducers: dict[str, Reducer] = {}
        for name, policy in FIELD_POLICIES.items():
            self._reducers[name] = self._reducer_for(name, policy)

    def _reducer_for(self, name: str, policy: str) -> Reducer:
        if policy == SET_ONCE:
            return set_once
        if policy == APPEND_AND_TRIM:
            return append_and_trim(self.recent_messages_limit)
        if policy == SHALLOW_MERGE:
            return shallow_merge
        if policy == WRITE_ONCE_MERGE:
            return write_once_merge
        if policy == ACCUMULATE:
            return accumulate_metadata
        if name == "pending_hitl":
            return guard_pending
        if name in {"plan", "routing_suggestions"}:
            return replace_sequence
        return last_write_wins

    def apply(self, current: ConversationState, update: Mapping[str, Any] | None) -> ConversationState:
        """Return ``current`` with ``update`` merged in.

        A key present in ``update`` is always handed to its reducer, so an
        explicit ``None`` clears a last-write-wins field while an absent key
        leaves it untouched.
        """

        if not update:
            return current

        changes: dict[str, Any] = {}
        for name, incoming in update.items():
            reducer = self._reducers.get(name)
            if reducer is None:
                raise UnknownStateFieldError(name)
            changes[name] = reducer(getattr(current, name), incoming)
        return replace(current, **changes)

    def apply_all(self, current: ConversationState, updates: Iterable[Mapping[str, Any]]) -> ConversationState:
        state = current
        for update in updates:
            state = self.apply(state, update)
        return state
