"""Execution phase: runs resolved operations through adapters behind the idempotency ledger."""

from __future__ import annotations

import logging
import time
from typing import Any, Mapping

from assistant.adapters.base import Adapter
from assistant.core.errors import AdapterError
from assistant.core.metrics import MetricsCollector
from assistant.dispatch.ledger import is_side_effecting, make_record, operation_key
from assistant.state.models import (
    Capability,
    ConversationState,
    ExecuteResult,
    ExecutionResult,
    PlanStep,
)
from assistant.state.reducers import StateReducer

logger = logging.getLogger("assistant.ledger")


class ExecutionPhase:
    """Hand every ``execute`` result to its capability adapter exactly once."""

    def __init__(
        self,
        adapters: Mapping[Capability, Adapter],
        reducer: StateReducer | None = None,
        *,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.adapters = dict(adapters)
        self.reducer = reducer or StateReducer()
        self.metrics = metrics

    async def run(self, state: ConversationState) -> ConversationState:
        for step in state.plan:
            if step.id in state.execution_results:
                continue
            result = state.resolver_results.get(step.id)
            if not isinstance(result, ExecuteResult):
                continue
            failed_deps = [
                dep
                for dep in step.depends_on
                if dep in state.execution_results and not state.execution_results[dep].success
            ]
            if failed_deps:
                logger.warning("Not executing step %s; dependencies failed: %s", step.id, failed_deps)
                continue
            state = await self.execute_step(state, step, result)
        return state

    async def execute_step(
        self,
        state: ConversationState,
        step: PlanStep,
        result: ExecuteResult,
    ) -> ConversationState:
        args: dict[str, Any] = dict(state.executor_args.get(step.id) or result.args)
        action = str(args.get("action") or step.action)
        capability = step.capability.value
        side_effecting = is_side_effecting(action)

        key = None
        if side_effecting:
            key = operation_key(state.trace_id, step.id, capability, action, args)
            committed = state.executed_operations.get(key)
            if committed is not None:
                logger.info("DuplicateOperationSkipped: %s already committed (%s)", key, action)
                if self.metrics is not None:
                    self.metrics.record_ledger_hit()
                skipped = ExecutionResult(
                    step_id=step.id,
                    success=True,
                    data={"id": committed.target_id, "operation_key": key},
                    already_committed=True,
                )
                return self.reducer.apply(state, {"execution_results": {step.id: skipped}})

        adapter = self.adapters.get(step.capability)
        if adapter is None:
            message = f"No adapter configured for {capability}"
            logger.error("%s (step %s)", message, step.id)
            failed = ExecutionResult(step_id=step.id, success=False, error=message)
            return self.reducer.apply(state, {"execution_results": {step.id: failed}, "error": message})

        started = time.perf_counter()
        try:
            outcome = await adapter.execute(args)
        except Exception as exc:  # noqa: BLE001
            duration_ms = (time.perf_counter() - started) * 1000
            if isinstance(exc, AdapterError):
                logger.warning("Adapter %s rejected step %s: %s", adapter.name, step.id, exc)
            else:
                logger.exception("Adapter %s failed on step %s", adapter.name, step.id)
            failed = ExecutionResult(step_id=step.id, success=False, error=str(exc), duration_ms=duration_ms)
            return self.reducer.apply(
                state,
                {"execution_results": {step.id: failed}, "error": f"Adapter error in {adapter.name}: {exc}"},
            )
        duration_ms = (time.perf_counter() - started) * 1000

        execution = ExecutionResult(
            step_id=step.id,
            success=outcome.success,
            data=dict(outcome.data),
            error=outcome.error,
            duration_ms=duration_ms,
        )
        update: dict[str, Any] = {"execution_results": {step.id: execution}}
        if not outcome.success:
            update["error"] = outcome.error or f"{action} failed"
        elif key is not None:
            update["executed_operations"] = {key: make_record(step.id, capability, action, outcome.data)}
            logger.info("Committed %s for step %s", key, step.id)
        return self.reducer.apply(state, update)
