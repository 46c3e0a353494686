"""Idempotency ledger keys and records."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping

from assistant.state.models import ConversationState, ExecutedOperation, utcnow

SIDE_EFFECT_VERBS = frozenset(
    {
        "create",
        "update",
        "delete",
        "complete",
        "send",
        "reply",
        "add",
        "toggle",
        "store",
        "save",
        "mark",
    }
)


def is_side_effecting(action: str) -> bool:
    verb = action.strip().lower().split("_", 1)[0]
    return verb in SIDE_EFFECT_VERBS


def canonical_args(args: Mapping[str, Any]) -> str:
    return json.dumps(args, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def operation_key(
    trace_id: str,
    step_id: str,
    capability: str,
    action: str,
    args: Mapping[str, Any],
) -> str:
    """Stable key for one concrete operation of a plan step.

    The turn's ``trace_id`` is part of the digest: step ids restart at ``s1``
    every turn, and a repeated request in a later turn is a new operation.
    """

    digest = hashlib.sha256(
        f"{trace_id}|{capability}|{action}|{canonical_args(args)}".encode("utf-8")
    ).hexdigest()
    return f"{step_id}:{digest[:16]}"


def lookup(state: ConversationState, key: str) -> ExecutedOperation | None:
    return state.executed_operations.get(key)


def make_record(
    step_id: str,
    capability: str,
    action: str,
    data: Mapping[str, Any] | None = None,
) -> ExecutedOperation:
    """Minimal ledger record. Only identifiers are kept; no user content."""

    target_id = None
    if data:
        target = data.get("id") or data.get("target_id")
        target_id = str(target) if target is not None else None
    return ExecutedOperation(
        action=action,
        step_id=step_id,
        capability=capability,
        at=utcnow(),
        target_id=target_id,
    )
