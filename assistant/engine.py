"""Conversation engine: runs one turn end to end and handles suspend/resume."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping

from assistant.adapters.base import Adapter
from assistant.core.config import Settings
from assistant.core.errors import InterruptMismatchError, InterruptTimeoutError
from assistant.core.locks import ThreadBusyGuard
from assistant.core.metrics import MetricsCollector
from assistant.dispatch.executor import ExecutionPhase
from assistant.dispatch.hitl import (
    ResumeOutcome,
    TurnStatus,
    expire_update,
    is_expired,
    needs_retry,
    resume_update,
    retry_expired,
    turn_status,
    validate_resume,
)
from assistant.dispatch.loop import DispatchLoop
from assistant.formatter import ResponseFormatter, TemplateFormatter
from assistant.planner.base import Planner
from assistant.planner.types import PlannerContext
from assistant.resolvers.registry import ResolverRegistry
from assistant.state.models import (
    Capability,
    CapabilityFlags,
    ConversationMessage,
    ConversationState,
    ExecutionResult,
    MessageInput,
    PendingHITL,
    ReturnTo,
    TimeContext,
    TriggerType,
    UserContext,
    utcnow,
)
from assistant.state.reducers import StateReducer
from assistant.state.store import StateStore

logger = logging.getLogger("assistant.engine")

BUSY_MESSAGE = "I'm still working on your previous message. Give me a moment."
NOTHING_TO_RETRY_MESSAGE = "There is nothing to retry right now."

RETRY_PHRASES = frozenset({"retry", "try again", "please try again", "again", "נסה שוב", "שוב"})


def normalize_text(text: str) -> str:
    return " ".join(text.casefold().split()).strip(" .!?")


@dataclass(slots=True)
class TurnResult:
    """What the transport layer needs to answer the user."""

    thread_id: str
    status: str
    message: str
    pending: PendingHITL | None = None
    error: str | None = None
    results: dict[str, ExecutionResult] = field(default_factory=dict)
    resume_outcome: ResumeOutcome | None = None
    retryable: bool = False
    state: ConversationState | None = None


class ConversationEngine:
    """Wires planner, dispatch loop, execution phase, formatter and state store together."""

    def __init__(
        self,
        settings: Settings,
        store: StateStore,
        planner: Planner,
        registry: ResolverRegistry,
        adapters: Mapping[Capability, Adapter],
        *,
        formatter: ResponseFormatter | None = None,
        metrics: MetricsCollector | None = None,
        guard: ThreadBusyGuard | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings
        self.store = store
        self.planner = planner
        self.registry = registry
        self.formatter = formatter or TemplateFormatter()
        self.metrics = metrics or MetricsCollector()
        self.guard = guard or ThreadBusyGuard()
        self.clock = clock
        self.reducer = StateReducer(settings.recent_messages_limit)
        self.loop = DispatchLoop(
            registry,
            self.reducer,
            metrics=self.metrics,
            hitl_timeout_seconds=settings.hitl_timeout_seconds,
            clock=clock,
        )
        self.executor = ExecutionPhase(adapters, self.reducer, metrics=self.metrics)

    def default_user(self, user_id: str) -> UserContext:
        return UserContext(
            user_id=user_id,
            timezone=self.settings.default_timezone,
            language=self.settings.default_language,
            capabilities=CapabilityFlags(),
        )

    async def handle_message(
        self,
        thread_id: str,
        text: str,
        *,
        trigger_type: TriggerType = TriggerType.USER,
        reply_to: ReturnTo | None = None,
        user: UserContext | None = None,
        message_id: str | None = None,
    ) -> TurnResult:
        """Process one inbound message.

        While the thread awaits clarification the message is treated as the
        answer, unless it names a different ``reply_to`` or did not come from
        the user. Those are mismatches and follow ``hitl_mismatch_policy``.

        After a turn that ended with failed steps, resending the same request
        or asking to retry re-enters that turn under its original trace, so
        operations it already committed are not repeated. Any other message
        drops the failed turn and starts a new one.
        """

        with self.guard.hold(thread_id) as acquired:
            if not acquired:
                logger.warning("Rejected concurrent message for busy thread %s", thread_id)
                self.metrics.record_turn("busy")
                return TurnResult(thread_id=thread_id, status="busy", message=BUSY_MESSAGE)

            message = MessageInput(message=text, trigger_type=trigger_type, message_id=message_id)
            suspended = self.store.load_suspended(thread_id)
            if suspended is not None and suspended.pending_hitl is not None:
                return_to = reply_to or suspended.pending_hitl.return_to
                if trigger_type is not TriggerType.USER:
                    return_to = ReturnTo(step_id="", mode=trigger_type.value)
                return await self._resume(suspended, return_to, text, message=message, user=user)
            if suspended is not None:
                if trigger_type is TriggerType.USER and self._wants_retry(suspended, text):
                    return await self._retry(suspended, message)
                self.store.clear_suspended(thread_id)
                logger.info("Dropped retryable turn %s on thread %s", suspended.trace_id, thread_id)

            state = self._new_state(thread_id, message, user)
            return await self._start(state)

    async def resume(self, thread_id: str, return_to: ReturnTo, user_text: str) -> TurnResult:
        """Answer the pending clarification of ``thread_id``."""

        with self.guard.hold(thread_id) as acquired:
            if not acquired:
                self.metrics.record_turn("busy")
                return TurnResult(thread_id=thread_id, status="busy", message=BUSY_MESSAGE)

            suspended = self.store.load_suspended(thread_id)
            if suspended is None or suspended.pending_hitl is None:
                logger.info("Resume for thread %s without a pending clarification", thread_id)
                self.metrics.record_resume(ResumeOutcome.REJECTED_MISMATCH.value)
                return TurnResult(
                    thread_id=thread_id,
                    status="rejected",
                    message=InterruptMismatchError.user_message,
                    error=f"No clarification is pending on thread {thread_id}",
                    resume_outcome=ResumeOutcome.REJECTED_MISMATCH,
                )
            message = MessageInput(message=user_text)
            return await self._resume(suspended, return_to, user_text, message=message, user=None)

    async def retry(self, thread_id: str) -> TurnResult:
        """Re-enter the last turn of ``thread_id`` if it ended with failed steps."""

        with self.guard.hold(thread_id) as acquired:
            if not acquired:
                self.metrics.record_turn("busy")
                return TurnResult(thread_id=thread_id, status="busy", message=BUSY_MESSAGE)

            suspended = self.store.load_suspended(thread_id)
            if suspended is None or suspended.pending_hitl is not None:
                return TurnResult(
                    thread_id=thread_id,
                    status="rejected",
                    message=NOTHING_TO_RETRY_MESSAGE,
                    error=f"No failed turn to retry on thread {thread_id}",
                )
            if retry_expired(suspended, self.clock(), self.settings.retry_window_seconds):
                self.store.clear_suspended(thread_id)
                return TurnResult(
                    thread_id=thread_id,
                    status=TurnStatus.TIMED_OUT.value,
                    message=InterruptTimeoutError.user_message,
                    error=f"Retry window for trace {suspended.trace_id} has closed",
                )
            return await self._retry(suspended, None)

    def poll(self, thread_id: str) -> TurnStatus | None:
        """Lazily apply the clarification timeout and report where the thread stands."""

        suspended = self.store.load_suspended(thread_id)
        if suspended is None:
            return None
        now = self.clock()
        if is_expired(suspended, now, self.settings.hitl_timeout_seconds):
            self._expire(suspended)
            return TurnStatus.TIMED_OUT
        if retry_expired(suspended, now, self.settings.retry_window_seconds):
            self.store.clear_suspended(thread_id)
            return TurnStatus.TIMED_OUT
        return turn_status(suspended, now, self.settings.hitl_timeout_seconds)

    def _new_state(
        self,
        thread_id: str,
        message: MessageInput,
        user: UserContext | None,
    ) -> ConversationState:
        user = user or self.default_user(thread_id)
        memory = self.store.load_memory(thread_id)
        update: dict[str, Any] = {
            "thread_id": thread_id,
            "trace_id": uuid.uuid4().hex,
            "user": user,
            "input": message,
            "now": TimeContext.resolve(user.timezone, self.clock()),
        }
        if memory is not None:
            update["recent_messages"] = memory.recent_messages
            update["long_term_summary"] = memory.long_term_summary
        return self.reducer.apply(ConversationState(), update)

    async def _start(self, state: ConversationState) -> TurnResult:
        state = self.reducer.apply(state, {"recent_messages": (self._user_message(state.input),)})
        output = await self.planner.plan(PlannerContext.from_state(state))
        state = self.reducer.apply(state, output.to_update())
        logger.info(
            "Thread %s trace %s: %s plan with %d step(s)",
            state.thread_id,
            state.trace_id,
            output.intent_type.value,
            len(state.plan),
        )
        return await self._continue(state)

    async def _resume(
        self,
        state: ConversationState,
        return_to: ReturnTo,
        text: str,
        *,
        message: MessageInput,
        user: UserContext | None,
    ) -> TurnResult:
        now = self.clock()
        try:
            pending = validate_resume(state, return_to, now, self.settings.hitl_timeout_seconds)
        except InterruptTimeoutError:
            self.metrics.record_resume(ResumeOutcome.REJECTED_EXPIRED.value)
            expired = self._expire(state)
            return TurnResult(
                thread_id=state.thread_id,
                status=TurnStatus.TIMED_OUT.value,
                message=InterruptTimeoutError.user_message,
                error=expired.error,
                resume_outcome=ResumeOutcome.REJECTED_EXPIRED,
                state=expired,
            )
        except InterruptMismatchError as exc:
            self.metrics.record_resume(ResumeOutcome.REJECTED_MISMATCH.value)
            return await self._mismatch(state, exc, message, user)

        self.metrics.record_resume(ResumeOutcome.APPLIED.value)
        update = resume_update(pending, text, now)
        update["recent_messages"] = (self._user_message(message),)
        state = self.reducer.apply(state, update)
        logger.info("Resumed thread %s at %s", state.thread_id, pending.return_to.key)
        result = await self._continue(state)
        result.resume_outcome = ResumeOutcome.APPLIED
        return result

    async def _mismatch(
        self,
        state: ConversationState,
        exc: InterruptMismatchError,
        message: MessageInput,
        user: UserContext | None,
    ) -> TurnResult:
        pending = state.pending_hitl
        logger.warning("Clarification mismatch on thread %s: %s", state.thread_id, exc)

        if self.settings.hitl_mismatch_policy == "abandon":
            abandoned = self.reducer.apply(state, {"pending_hitl": None, "error": str(exc)})
            self.store.archive(abandoned)
            logger.info("Abandoned clarification on thread %s; starting a new turn", state.thread_id)
            fresh = self._new_state(state.thread_id, message, user or state.user)
            result = await self._start(fresh)
            result.resume_outcome = ResumeOutcome.REJECTED_MISMATCH
            return result

        question = pending.question if pending is not None else ""
        return TurnResult(
            thread_id=state.thread_id,
            status=TurnStatus.AWAITING_CLARIFICATION.value,
            message=f"{InterruptMismatchError.user_message}\n\n{question}".strip(),
            pending=pending,
            error=str(exc),
            resume_outcome=ResumeOutcome.REJECTED_MISMATCH,
            state=state,
        )

    def _expire(self, state: ConversationState) -> ConversationState:
        expired = self.reducer.apply(state, expire_update())
        self.store.archive(expired)
        self.metrics.record_turn(TurnStatus.TIMED_OUT.value)
        logger.info("Clarification on thread %s expired", state.thread_id)
        return expired

    def _wants_retry(self, state: ConversationState, text: str) -> bool:
        if retry_expired(state, self.clock(), self.settings.retry_window_seconds):
            return False
        wanted = normalize_text(text)
        return wanted in RETRY_PHRASES or wanted == normalize_text(state.input.text)

    async def _retry(self, previous: ConversationState, message: MessageInput | None) -> TurnResult:
        """Run ``previous`` again from its plan, keeping its trace and ledger."""

        memory = self.store.load_memory(previous.thread_id)
        recent = memory.recent_messages if memory is not None else previous.recent_messages
        if message is not None:
            recent = recent + (self._user_message(message),)
        state = self.reducer.apply(
            ConversationState(),
            {
                "thread_id": previous.thread_id,
                "trace_id": previous.trace_id,
                "user": previous.user,
                "input": previous.input,
                "now": previous.now,
                "recent_messages": recent,
                "long_term_summary": previous.long_term_summary,
                "plan": previous.plan,
                "routing_suggestions": previous.routing_suggestions,
                "resolver_results": previous.resolver_results,
                "executor_args": previous.executor_args,
                "hitl_results": previous.hitl_results,
                "executed_operations": previous.executed_operations,
            },
        )
        self.metrics.record_retry()
        logger.info(
            "Retrying trace %s on thread %s (%d unresolved step(s))",
            state.trace_id,
            state.thread_id,
            len(state.unresolved_steps()),
        )
        return await self._continue(state)

    async def _continue(self, state: ConversationState) -> TurnResult:
        state = await self.loop.run(state)

        if state.pending_hitl is not None:
            self.store.save_suspended(state)
            self.metrics.record_turn(TurnStatus.AWAITING_CLARIFICATION.value)
            return TurnResult(
                thread_id=state.thread_id,
                status=TurnStatus.AWAITING_CLARIFICATION.value,
                message=state.pending_hitl.question,
                pending=state.pending_hitl,
                error=state.error,
                state=state,
            )

        state = await self.executor.run(state)
        formatted, text = self.formatter.format(state)
        state = self.reducer.apply(
            state,
            {
                "formatted_response": formatted,
                "final_response": text,
                "recent_messages": (ConversationMessage(role="assistant", content=text),),
            },
        )
        retryable = needs_retry(state)
        if retryable:
            state = self.reducer.apply(state, {"interrupted_at": self.clock()})
        self.store.archive(state)
        if retryable:
            self.store.save_suspended(state)
            logger.info("Turn %s on thread %s kept for retry", state.trace_id, state.thread_id)

        status = turn_status(state, self.clock(), self.settings.hitl_timeout_seconds)
        outcome = TurnStatus.COMPLETED.value if status is TurnStatus.COMPLETED and not state.error else "degraded"
        self.metrics.record_turn(outcome)
        return TurnResult(
            thread_id=state.thread_id,
            status=outcome,
            message=text,
            error=state.error,
            results=dict(state.execution_results),
            retryable=retryable,
            state=state,
        )

    @staticmethod
    def _user_message(message: MessageInput) -> ConversationMessage:
        return ConversationMessage(role="user", content=message.text, message_id=message.message_id)
