import asyncio

import pytest

from assistant.batch import BatchItem, BatchTurnRunner, RetryPolicy
from assistant.core.errors import TransientDeliveryError


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def test_retry_policy_backs_off_exponentially():
    policy = RetryPolicy(max_retries=3, base_delay_seconds=1.0)

    assert [policy.delay_for(retry) for retry in (1, 2, 3)] == [1.0, 2.0, 4.0]


def test_transient_failures_are_retried_with_backoff():
    sleep = RecordingSleep()
    failures = [TransientDeliveryError("502"), TransientDeliveryError("timeout")]

    async def handler(item):
        if failures:
            raise failures.pop(0)
        return "delivered"

    runner = BatchTurnRunner(handler, max_retries=2, base_delay_seconds=1.0, sleep=sleep)
    [outcome] = asyncio.run(runner.run([BatchItem(thread_id="t1", text="nudge")]))

    assert outcome.success is True
    assert outcome.result == "delivered"
    assert outcome.attempts == 3
    assert sleep.delays == [1.0, 2.0]


def test_retries_are_bounded():
    sleep = RecordingSleep()

    async def handler(item):
        raise TransientDeliveryError("upstream 503")

    runner = BatchTurnRunner(handler, max_retries=2, sleep=sleep)
    [outcome] = asyncio.run(runner.run([BatchItem(thread_id="t1", text="nudge")]))

    assert outcome.success is False
    assert outcome.attempts == 3
    assert outcome.error == "upstream 503"
    assert sleep.delays == [1.0, 2.0]


def test_logic_errors_are_not_retried():
    sleep = RecordingSleep()

    async def handler(item):
        raise ValueError("bad payload")

    runner = BatchTurnRunner(handler, sleep=sleep)
    [outcome] = asyncio.run(runner.run([BatchItem(thread_id="t1", text="nudge")]))

    assert outcome.success is False
    assert outcome.attempts == 1
    assert sleep.delays == []


def test_one_failure_does_not_affect_siblings():
    async def handler(item):
        if item.thread_id == "bad":
            raise RuntimeError("boom")
        return item.thread_id

    items = [BatchItem(thread_id=name, text="nudge") for name in ("a", "bad", "c")]
    outcomes = asyncio.run(BatchTurnRunner(handler, sleep=RecordingSleep()).run(items))

    assert [outcome.success for outcome in outcomes] == [True, False, True]
    assert [outcome.result for outcome in outcomes] == ["a", None, "c"]


def test_concurrency_is_bounded():
    in_flight = 0
    peak = 0

    async def handler(item):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return item.thread_id

    items = [BatchItem(thread_id=f"t{index}", text="nudge") for index in range(8)]
    outcomes = asyncio.run(BatchTurnRunner(handler, concurrency=3).run(items))

    assert all(outcome.success for outcome in outcomes)
    assert peak <= 3


def test_concurrency_must_be_positive():
    async def handler(item):
        return None

    with pytest.raises(ValueError):
        BatchTurnRunner(handler, concurrency=0)


def test_engine_runner_retries_delivery_without_rerunning_turn(make_engine):
    engine = make_engine()
    sleep = RecordingSleep()
    deliveries: list[str] = []

    async def deliver(item, result):
        deliveries.append(result.status)
        if len(deliveries) == 1:
            raise TransientDeliveryError("gateway timeout")

    runner = BatchTurnRunner.for_engine(engine, deliver, sleep=sleep)
    [outcome] = asyncio.run(runner.run([BatchItem(thread_id="t1", text="what are my tasks")]))

    assert outcome.success is True
    assert outcome.attempts == 2
    assert deliveries == ["completed", "completed"]
    assert engine.metrics.snapshot().total_turns == 1
    assert sleep.delays == [engine.settings.batch_retry_base_delay_seconds]


def test_engine_runner_releases_turn_after_exhausted_retries(make_engine):
    engine = make_engine(batch_max_retries=1)

    async def deliver(item, result):
        raise TransientDeliveryError("gateway timeout")

    runner = BatchTurnRunner.for_engine(engine, deliver, sleep=RecordingSleep())
    item = BatchItem(thread_id="t1", text="what are my tasks")

    [first] = asyncio.run(runner.run([item]))
    [second] = asyncio.run(runner.run([item]))

    assert first.success is False
    assert first.attempts == 2
    assert second.attempts == 2
    assert engine.metrics.snapshot().total_turns == 2


def test_engine_runner_releases_turn_after_delivery_error(make_engine):
    engine = make_engine()

    async def deliver(item, result):
        raise ValueError("bad recipient")

    runner = BatchTurnRunner.for_engine(engine, deliver, sleep=RecordingSleep())
    item = BatchItem(thread_id="t1", text="what are my tasks")

    [first] = asyncio.run(runner.run([item]))
    [second] = asyncio.run(runner.run([item]))

    assert first.success is False
    assert first.error == "bad recipient"
    assert second.success is False
    assert engine.metrics.snapshot().total_turns == 2


def test_settle_hook_runs_once_per_item():
    settled: list[str] = []

    async def handler(item):
        if item.thread_id == "bad":
            raise RuntimeError("boom")
        return item.thread_id

    runner = BatchTurnRunner(handler, on_settled=lambda item: settled.append(item.thread_id))
    asyncio.run(runner.run([BatchItem(thread_id="ok", text="x"), BatchItem(thread_id="bad", text="x")]))

    assert sorted(settled) == ["bad", "ok"]
