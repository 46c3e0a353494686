"""Bounded concurrent runner for batch callers such as a reminder job."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

from assistant.core.errors import TransientDeliveryError
from assistant.engine import ConversationEngine, TurnResult
from assistant.state.models import TriggerType, UserContext

logger = logging.getLogger("assistant.batch")


@dataclass(slots=True)
class BatchItem:
    thread_id: str
    text: str
    trigger_type: TriggerType = TriggerType.CRON
    user: UserContext | None = None
    item_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(slots=True)
class BatchOutcome:
    item: BatchItem
    success: bool
    result: Any = None
    error: str | None = None
    attempts: int = 0


Deliver = Callable[[BatchItem, TurnResult], Awaitable[None]]


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    max_retries: int = 2
    base_delay_seconds: float = 1.0

    def delay_for(self, retry: int) -> float:
        """Exponential backoff: base, 2 * base, 4 * base, ..."""

        return self.base_delay_seconds * (2 ** (retry - 1))


class BatchTurnRunner:
    """Run many independent turns with bounded concurrency and per-item isolation.

    Only :class:`TransientDeliveryError` is retried. Any other exception marks
    that one item as failed and leaves its siblings running. ``on_settled`` is
    called once per item after its outcome is final, whatever that outcome is.
    """

    def __init__(
        self,
        handler: Callable[[BatchItem], Awaitable[Any]],
        *,
        concurrency: int = 5,
        max_retries: int = 2,
        base_delay_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_settled: Callable[[BatchItem], None] | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be positive")
        self._handler = handler
        self._concurrency = concurrency
        self._policy = RetryPolicy(max_retries=max_retries, base_delay_seconds=base_delay_seconds)
        self._sleep = sleep
        self._on_settled = on_settled

    @classmethod
    def for_engine(
        cls,
        engine: ConversationEngine,
        deliver: Deliver | None = None,
        **kwargs: Any,
    ) -> "BatchTurnRunner":
        settings = engine.settings
        kwargs.setdefault("concurrency", settings.batch_concurrency)
        kwargs.setdefault("max_retries", settings.batch_max_retries)
        kwargs.setdefault("base_delay_seconds", settings.batch_retry_base_delay_seconds)

        # A retry repeats delivery only; each turn runs once.
        turns: dict[str, TurnResult] = {}

        async def handler(item: BatchItem) -> TurnResult:
            if item.item_id not in turns:
                turns[item.item_id] = await engine.handle_message(
                    item.thread_id,
                    item.text,
                    trigger_type=item.trigger_type,
                    user=item.user,
                )
            result = turns[item.item_id]
            if deliver is not None:
                await deliver(item, result)
            return result

        def settled(item: BatchItem) -> None:
            turns.pop(item.item_id, None)

        return cls(handler, on_settled=settled, **kwargs)

    async def run(self, items: Sequence[BatchItem]) -> list[BatchOutcome]:
        semaphore = asyncio.Semaphore(self._concurrency)

        async def guarded(item: BatchItem) -> BatchOutcome:
            async with semaphore:
                try:
                    return await self._process(item)
                finally:
                    if self._on_settled is not None:
                        self._on_settled(item)

        outcomes = await asyncio.gather(*(guarded(item) for item in items))
        failed = sum(1 for outcome in outcomes if not outcome.success)
        logger.info("Batch finished: %d item(s), %d failed", len(outcomes), failed)
        return list(outcomes)

    async def _process(self, item: BatchItem) -> BatchOutcome:
        attempts = 0
        while True:
            attempts += 1
            try:
                result = await self._handler(item)
                return BatchOutcome(item=item, success=True, result=result, attempts=attempts)
            except TransientDeliveryError as exc:
                retry = attempts
                if retry > self._policy.max_retries:
                    logger.error("Giving up on thread %s after %d attempt(s): %s", item.thread_id, attempts, exc)
                    return BatchOutcome(item=item, success=False, error=str(exc), attempts=attempts)
                delay = self._policy.delay_for(retry)
                logger.warning(
                    "Transient failure for thread %s (attempt %d); retrying in %.1fs",
                    item.thread_id,
                    attempts,
                    delay,
                )
                await self._sleep(delay)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Batch item for thread %s failed", item.thread_id)
                return BatchOutcome(item=item, success=False, error=str(exc), attempts=attempts)
