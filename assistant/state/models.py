"""Dataclasses representing a conversation turn's state and its building blocks."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field

logger = logging.getLogger("assistant.state")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Capability(str, Enum):
    """Capability domains a plan step can target."""

    CALENDAR = "calendar"
    DATABASE = "database"
    GMAIL = "gmail"
    SECOND_BRAIN = "second-brain"
    GENERAL = "general"
    META = "meta"


class TriggerType(str, Enum):
    """Where an inbound message came from."""

    USER = "user"
    CRON = "cron"
    NUDGE = "nudge"
    EVENT = "event"


@dataclass(slots=True)
class CapabilityFlags:
    """Capabilities a user has enabled. General chat and meta help are always on."""

    calendar: bool = False
    gmail: bool = False
    database: bool = True
    second_brain: bool = True

    def enabled(self, capability: Capability) -> bool:
        if capability is Capability.CALENDAR:
            return self.calendar
        if capability is Capability.GMAIL:
            return self.gmail
        if capability is Capability.DATABASE:
            return self.database
        if capability is Capability.SECOND_BRAIN:
            return self.second_brain
        return True


@dataclass(slots=True)
class UserContext:
    user_id: str = ""
    timezone: str = "Asia/Jerusalem"
    language: Literal["he", "en", "other"] = "en"
    plan_tier: str = "free"
    user_name: str | None = None
    capabilities: CapabilityFlags = field(default_factory=CapabilityFlags)


@dataclass(slots=True)
class MessageInput:
    message: str = ""
    trigger_type: TriggerType = TriggerType.USER
    message_id: str | None = None
    reply_to_message_id: str | None = None
    enhanced_message: str | None = None

    @property
    def text(self) -> str:
        """Message text with reply/media context when an upstream collaborator added it."""

        return self.enhanced_message or self.message


@dataclass(slots=True)
class TimeContext:
    iso: str = ""
    timezone: str = "UTC"
    formatted: str = ""
    day_of_week: int = 0

    @classmethod
    def resolve(cls, tz_name: str, at: datetime | None = None) -> "TimeContext":
        """Build the time context for ``tz_name``; unknown zones fall back to UTC."""

        try:
            zone = ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r, falling back to UTC", tz_name)
            tz_name = "UTC"
            zone = ZoneInfo("UTC")

        local = (at or utcnow()).astimezone(zone)
        return cls(
            iso=local.isoformat(),
            timezone=tz_name,
            formatted=f"[Current time: {local:%A, %d/%m/%Y %H:%M} ({local.isoformat()}), Timezone: {tz_name}]",
            day_of_week=(local.weekday() + 1) % 7,
        )


@dataclass(slots=True)
class ConversationMessage:
    """Single conversational message kept in short-term memory."""

    role: Literal["user", "assistant", "system"]
    content: str
    created_at: datetime = field(default_factory=utcnow)
    message_id: str | None = None


@dataclass(slots=True)
class PlanStep:
    """One capability-tagged unit of work derived from the user's message."""

    id: str
    capability: Capability
    action: str
    constraints: dict[str, Any] = field(default_factory=dict)
    depends_on: list[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class ExecuteResult:
    """A resolver produced a concrete, ready-to-run operation payload."""

    step_id: str
    args: dict[str, Any]
    type: Literal["execute"] = "execute"


@dataclass(slots=True, frozen=True)
class ClarifyResult:
    """A resolver cannot proceed without more information from the human.

    ``mode`` names the return-to mode the answer is routed back under, so a
    step that asks several questions keeps every answer.
    """

    step_id: str
    question: str
    options: tuple[str, ...] = ()
    mode: str = "continue"
    type: Literal["clarify"] = "clarify"


ResolverResult = Annotated[Union[ExecuteResult, ClarifyResult], Field(discriminator="type")]


@dataclass(slots=True, frozen=True)
class ReturnTo:
    """Which logical step and mode a clarification answer routes back to."""

    step_id: str
    mode: str = "continue"

    @property
    def key(self) -> str:
        return f"{self.step_id}:{self.mode}"


@dataclass(slots=True, frozen=True)
class PendingHITL:
    """The single outstanding clarification request of a suspended turn."""

    hitl_id: str
    kind: str
    question: str
    step_id: str
    entity_type: str
    return_to: ReturnTo
    created_at: datetime
    expires_at: datetime
    options: tuple[str, ...] = ()

    @property
    def metadata(self) -> dict[str, str]:
        return {"step_id": self.step_id, "entity_type": self.entity_type}

    def to_payload(self) -> dict[str, Any]:
        """Interrupt payload handed to the transport layer."""

        return {
            "kind": self.kind,
            "question": self.question,
            "options": list(self.options),
            "metadata": self.metadata,
            "return_to": {"step_id": self.return_to.step_id, "mode": self.return_to.mode},
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass(slots=True, frozen=True)
class HITLResultEntry:
    raw: str
    return_to: ReturnTo
    hitl_id: str
    at: datetime = field(default_factory=utcnow)


@dataclass(slots=True, frozen=True)
class ExecutedOperation:
    """Idempotency ledger record. Holds identifiers only, never user content."""

    action: str
    step_id: str
    capability: str
    at: datetime = field(default_factory=utcnow)
    target_id: str | None = None


@dataclass(slots=True, frozen=True)
class ExecutionResult:
    step_id: str
    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: float = 0.0
    already_committed: bool = False


@dataclass(slots=True, frozen=True)
class RoutingSuggestion:
    resolver_name: str
    capability: Capability
    score: float
    matched_patterns: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class StepTiming:
    step_id: str
    handler: str
    started_at: float
    duration_ms: float


@dataclass(slots=True)
class ExecutionMetadata:
    started_at: float = field(default_factory=time.time)
    step_timings: tuple[StepTiming, ...] = ()
    llm_calls: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0


@dataclass(slots=True)
class ConversationState:
    """The record threaded through a turn and persisted across suspensions.

    Instances are treated as immutable values: every change goes through
    :class:`assistant.state.reducers.StateReducer`, which returns a new state.
    """

    thread_id: str = ""
    trace_id: str = ""

    user: UserContext = field(default_factory=UserContext)
    input: MessageInput = field(default_factory=MessageInput)
    now: TimeContext = field(default_factory=TimeContext)

    recent_messages: tuple[ConversationMessage, ...] = ()
    long_term_summary: str | None = None

    plan: tuple[PlanStep, ...] = ()
    routing_suggestions: tuple[RoutingSuggestion, ...] = ()

    resolver_results: dict[str, ResolverResult] = field(default_factory=dict)
    executor_args: dict[str, dict[str, Any]] = field(default_factory=dict)
    execution_results: dict[str, ExecutionResult] = field(default_factory=dict)

    pending_hitl: PendingHITL | None = None
    hitl_results: dict[str, HITLResultEntry] = field(default_factory=dict)
    interrupted_at: datetime | None = None

    executed_operations: dict[str, ExecutedOperation] = field(default_factory=dict)

    formatted_response: dict[str, Any] | None = None
    final_response: str | None = None
    error: str | None = None
    metadata: ExecutionMetadata = field(default_factory=ExecutionMetadata)

    def get_step(self, step_id: str) -> PlanStep | None:
        for step in self.plan:
            if step.id == step_id:
                return step
        return None

    def unresolved_steps(self) -> list[PlanStep]:
        return [step for step in self.plan if step.id not in self.resolver_results]

    @property
    def is_suspended(self) -> bool:
        return self.pending_hitl is not None


@dataclass(slots=True)
class ThreadMemory:
    """Fields archived at turn completion.

    Recent messages and the summary seed the thread's next turn.
    ``executed_operations`` is the ledger of the last archived turn only and is
    not carried forward: its keys are scoped to that turn's trace.
    """

    thread_id: str
    recent_messages: tuple[ConversationMessage, ...] = ()
    long_term_summary: str | None = None
    executed_operations: dict[str, ExecutedOperation] = field(default_factory=dict)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_state(cls, state: ConversationState) -> "ThreadMemory":
        return cls(
            thread_id=state.thread_id,
            recent_messages=state.recent_messages,
            long_term_summary=state.long_term_summary,
            executed_operations=dict(state.executed_operations),
        )
