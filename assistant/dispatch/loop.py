"""Resolver dispatch loop: walks the plan in order until done or suspended."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable

from assistant.classifier import ClassifierCallCount, classifier_call_scope
from assistant.core.errors import HandlerError, UnknownCapabilityError
from assistant.core.metrics import MetricsCollector
from assistant.dispatch.hitl import DEFAULT_TIMEOUT_SECONDS
from assistant.resolvers.registry import ResolverRegistry
from assistant.state.models import ConversationState, PlanStep, StepTiming, utcnow
from assistant.state.reducers import StateReducer

logger = logging.getLogger("assistant.dispatch")


class DispatchLoop:
    """Dispatch every unresolved plan step to its resolver, strictly in plan order.

    An ``execute`` result is stored under the step id and the loop moves on.
    A ``clarify`` result parks the turn: the pending interrupt is written and
    nothing after it is dispatched. A resolver that raises only affects its
    own step, which stays unresolved for the next pass.
    """

    def __init__(
        self,
        registry: ResolverRegistry,
        reducer: StateReducer | None = None,
        *,
        metrics: MetricsCollector | None = None,
        hitl_timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.registry = registry
        self.reducer = reducer or StateReducer()
        self.metrics = metrics
        self.hitl_timeout_seconds = hitl_timeout_seconds
        self.clock = clock

    async def run(self, state: ConversationState) -> ConversationState:
        if state.pending_hitl is not None:
            logger.debug("Thread %s is awaiting clarification; nothing to dispatch", state.thread_id)
            return state

        for step in state.plan:
            if step.id in state.resolver_results:
                continue

            blocked = [dep for dep in step.depends_on if dep not in state.resolver_results]
            if blocked:
                logger.warning("Skipping step %s; unresolved dependencies %s", step.id, blocked)
                continue

            state = await self.dispatch_step(state, step)
            if state.pending_hitl is not None:
                break

        return state

    async def dispatch_step(self, state: ConversationState, step: PlanStep) -> ConversationState:
        try:
            resolver = self.registry.for_step(step)
        except UnknownCapabilityError as exc:
            logger.warning("%s (step %s)", exc, step.id)
            return self.reducer.apply(state, {"error": str(exc)})

        started_at = time.time()
        started = time.perf_counter()
        with classifier_call_scope() as calls:
            try:
                update = await resolver.run(
                    state,
                    step.id,
                    hitl_timeout_seconds=self.hitl_timeout_seconds,
                    now=self.clock(),
                )
            except Exception as exc:  # noqa: BLE001
                error = exc if isinstance(exc, HandlerError) else HandlerError(resolver.name, step.id, exc)
                logger.exception("Resolver %s failed on step %s", resolver.name, step.id)
                return self.reducer.apply(
                    state,
                    {"error": str(error), "metadata": self._metadata(step, resolver.name, started_at, started, calls)},
                )

        if not update:
            logger.debug("Resolver %s had nothing left to do for step %s", resolver.name, step.id)
            return state

        update["metadata"] = self._metadata(step, resolver.name, started_at, started, calls)
        if self.metrics is not None:
            self.metrics.record_dispatch(step.capability.value)

        outcome = "clarify" if update.get("pending_hitl") is not None else "execute"
        logger.info("Step %s -> %s via %s", step.id, outcome, resolver.name)
        return self.reducer.apply(state, update)

    @staticmethod
    def _metadata(
        step: PlanStep,
        handler: str,
        started_at: float,
        started: float,
        calls: ClassifierCallCount,
    ) -> dict[str, Any]:
        timing = StepTiming(
            step_id=step.id,
            handler=handler,
            started_at=started_at,
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        return {"step_timings": (timing,), "llm_calls": calls.count}
