"""JSON (de)serialization for persisted state records."""

from __future__ import annotations

from pydantic import TypeAdapter

from assistant.state.models import ConversationState, ThreadMemory

_STATE_ADAPTER: TypeAdapter[ConversationState] | None = None
_MEMORY_ADAPTER: TypeAdapter[ThreadMemory] | None = None


def _state_adapter() -> TypeAdapter[ConversationState]:
    global _STATE_ADAPTER
    if _STATE_ADAPTER is None:
        _STATE_ADAPTER = TypeAdapter(ConversationState)
    return _STATE_ADAPTER


def _memory_adapter() -> TypeAdapter[ThreadMemory]:
    global _MEMORY_ADAPTER
    if _MEMORY_ADAPTER is None:
        _MEMORY_ADAPTER = TypeAdapter(ThreadMemory)
    return _MEMORY_ADAPTER


def dump_state(state: ConversationState) -> str:
    return _state_adapter().dump_json(state).decode("utf-8")


def load_state(payload: str | bytes) -> ConversationState:
    return _state_adapter().validate_json(payload)


def dump_memory(memory: ThreadMemory) -> str:
    return _memory_adapter().dump_json(memory).decode("utf-8")


def load_memory(payload: str | bytes) -> ThreadMemory:
    return _memory_adapter().validate_json(payload)
