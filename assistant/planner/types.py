"""Planner-related enums and data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from assistant.state.models import (
    ConversationMessage,
    ConversationState,
    MessageInput,
    PlanStep,
    RoutingSuggestion,
    TimeContext,
    UserContext,
)


class IntentType(str, Enum):
    """High-level shape of a turn."""

    OPERATION = "operation"
    CONVERSATION = "conversation"
    META = "meta"


@dataclass(slots=True)
class PlannerContext:
    """Inputs passed to the planner when building a plan."""

    message: MessageInput
    user: UserContext
    now: TimeContext = field(default_factory=TimeContext)
    recent_messages: tuple[ConversationMessage, ...] = ()

    @property
    def text(self) -> str:
        return self.message.text

    @classmethod
    def from_state(cls, state: ConversationState) -> "PlannerContext":
        return cls(
            message=state.input,
            user=state.user,
            now=state.now,
            recent_messages=state.recent_messages,
        )


@dataclass(slots=True)
class PlannerOutput:
    """Planner result: an ordered plan plus routing hints."""

    intent_type: IntentType
    confidence: float
    plan: tuple[PlanStep, ...]
    routing_suggestions: tuple[RoutingSuggestion, ...] = ()
    llm_calls: int = 0

    def to_update(self) -> dict[str, Any]:
        update: dict[str, Any] = {
            "plan": self.plan,
            "routing_suggestions": self.routing_suggestions,
        }
        if self.llm_calls:
            update["metadata"] = {"llm_calls": self.llm_calls}
        return update
