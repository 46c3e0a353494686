"""Suspend/resume state machine for human clarification requests.

A turn that needs an answer from the human is not parked on a coroutine or a
timer. The dispatch loop records a :class:`PendingHITL`, the engine persists
the whole state and returns. Everything below is evaluated lazily the next
time the thread is touched.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from assistant.core.errors import InterruptMismatchError, InterruptTimeoutError
from assistant.state.models import (
    ClarifyResult,
    ConversationState,
    HITLResultEntry,
    PendingHITL,
    ReturnTo,
    utcnow,
)

logger = logging.getLogger("assistant.hitl")

DEFAULT_TIMEOUT_SECONDS = 300


class TurnStatus(str, Enum):
    RUNNING = "running"
    AWAITING_CLARIFICATION = "awaiting_clarification"
    RESUMING = "resuming"
    TIMED_OUT = "timed_out"
    RETRYABLE = "retryable"
    COMPLETED = "completed"


class ResumeOutcome(str, Enum):
    APPLIED = "applied"
    REJECTED_EXPIRED = "rejected_expired"
    REJECTED_MISMATCH = "rejected_mismatch"


def is_expired(
    state: ConversationState,
    now: datetime | None = None,
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
) -> bool:
    if state.pending_hitl is None or state.interrupted_at is None:
        return False
    return (now or utcnow()) - state.interrupted_at > timedelta(seconds=timeout_seconds)


def turn_status(
    state: ConversationState,
    now: datetime | None = None,
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
) -> TurnStatus:
    """Derive where a turn stands from its state alone."""

    if state.pending_hitl is not None:
        if is_expired(state, now, timeout_seconds):
            return TurnStatus.TIMED_OUT
        return TurnStatus.AWAITING_CLARIFICATION
    if state.final_response is not None and needs_retry(state):
        return TurnStatus.RETRYABLE
    unresolved = state.unresolved_steps()
    if state.plan and not unresolved:
        return TurnStatus.COMPLETED
    answered = {entry.return_to.step_id for entry in state.hitl_results.values()}
    if any(step.id in answered for step in unresolved):
        return TurnStatus.RESUMING
    return TurnStatus.RUNNING


def needs_retry(state: ConversationState) -> bool:
    """True when a finished turn left steps unresolved or operations failed."""

    if state.unresolved_steps():
        return True
    return any(not result.success for result in state.execution_results.values())


def retry_expired(
    state: ConversationState,
    now: datetime | None = None,
    window_seconds: int = DEFAULT_TIMEOUT_SECONDS,
) -> bool:
    if state.pending_hitl is not None or state.interrupted_at is None:
        return False
    return (now or utcnow()) - state.interrupted_at > timedelta(seconds=window_seconds)


def suspend_update(
    result: ClarifyResult,
    entity_type: str,
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    now: datetime | None = None,
) -> dict[str, Any]:
    """State update that parks the turn on ``result``'s question."""

    now = now or utcnow()
    pending = PendingHITL(
        hitl_id=uuid.uuid4().hex,
        kind="disambiguation",
        question=result.question,
        options=tuple(result.options),
        step_id=result.step_id,
        entity_type=entity_type,
        return_to=ReturnTo(step_id=result.step_id, mode=result.mode),
        created_at=now,
        expires_at=now + timedelta(seconds=timeout_seconds),
    )
    logger.info("Suspending on step %s (hitl=%s)", result.step_id, pending.hitl_id)
    return {"pending_hitl": pending, "interrupted_at": now}


def expire_update() -> dict[str, Any]:
    return {"pending_hitl": None, "error": InterruptTimeoutError.user_message}


def validate_resume(
    state: ConversationState,
    return_to: ReturnTo,
    now: datetime | None = None,
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
) -> PendingHITL:
    """Return the pending interrupt ``return_to`` answers.

    Raises :class:`InterruptTimeoutError` when the window has closed and
    :class:`InterruptMismatchError` when nothing is pending or the descriptor
    points somewhere else.
    """

    pending = state.pending_hitl
    if pending is None:
        raise InterruptMismatchError(f"No clarification is pending on thread {state.thread_id}")
    if is_expired(state, now, timeout_seconds):
        raise InterruptTimeoutError(f"Clarification {pending.hitl_id} expired")
    if return_to != pending.return_to:
        raise InterruptMismatchError(
            f"Resume for {return_to.key} does not match pending {pending.return_to.key}"
        )
    return pending


def resume_update(pending: PendingHITL, user_text: str, now: datetime | None = None) -> dict[str, Any]:
    entry = HITLResultEntry(
        raw=user_text,
        return_to=pending.return_to,
        hitl_id=pending.hitl_id,
        at=now or utcnow(),
    )
    return {
        "hitl_results": {pending.return_to.key: entry},
        "pending_hitl": None,
        "error": None,
    }
