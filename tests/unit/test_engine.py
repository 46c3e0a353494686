import asyncio

from assistant.core.locks import ThreadBusyGuard
from assistant.dispatch.hitl import TurnStatus
from assistant.engine import BUSY_MESSAGE, NOTHING_TO_RETRY_MESSAGE
from assistant.state.models import Capability, CapabilityFlags, UserContext

CALENDAR_USER = UserContext(user_id="u1", capabilities=CapabilityFlags(calendar=True))


def test_compound_request_resolves_every_step(make_engine, adapters):
    adapters[Capability.CALENDAR].seed("calendar_event", summary="dentist")
    adapters[Capability.DATABASE].seed("task", text="file taxes")
    engine = make_engine()

    result = asyncio.run(
        engine.handle_message("t1", "what do I have today and then what are my tasks", user=CALENDAR_USER)
    )

    assert result.status == "completed"
    assert list(result.state.resolver_results) == ["s1", "s2"]
    assert result.message == "Found 1: dentist\nFound 1: file taxes"
    assert result.state.formatted_response["steps"][0]["status"] == "ok"
    assert engine.metrics.snapshot().dispatches == {"calendar": 1, "database": 1}


def test_greeting_and_meta_replies(make_engine):
    engine = make_engine()

    greeting = asyncio.run(engine.handle_message("t1", "hello"))
    meta = asyncio.run(engine.handle_message("t2", "what can you do?"))

    assert greeting.message == "Hi! How can I help you today?"
    assert meta.message == "I can help with tasks and reminders, lists and notes and memories."


def test_memory_carries_into_next_turn(make_engine):
    engine = make_engine()
    asyncio.run(engine.handle_message("t1", "remind me to call mom"))

    second = asyncio.run(engine.handle_message("t1", "what are my tasks"))

    contents = [message.content for message in second.state.recent_messages]
    assert contents[:2] == ["remind me to call mom", 'Done, I added "call mom".']
    assert contents[-1] == "Found 1: call mom"
    assert second.state.executed_operations == {}


def test_same_request_in_a_later_turn_runs_again(make_engine, adapters):
    engine = make_engine()

    asyncio.run(engine.handle_message("t1", "remind me to call mom"))
    asyncio.run(engine.handle_message("t1", "remind me to call mom"))

    assert len(adapters[Capability.DATABASE].calls) == 2
    assert engine.metrics.snapshot().ledger_hits == 0


def test_failed_operation_degrades_turn(make_engine):
    engine = make_engine()

    result = asyncio.run(engine.handle_message("t1", "I'm done with the tax report"))

    assert result.status == "degraded"
    assert result.error == "No matching task found"
    assert result.results["s1"].success is False
    assert result.retryable is True


def test_busy_thread_is_rejected_without_blocking_others(make_engine):
    engine = make_engine()
    assert engine.guard.try_acquire("t1")

    busy = asyncio.run(engine.handle_message("t1", "hello"))
    other = asyncio.run(engine.handle_message("t2", "hello"))

    assert busy.status == "busy"
    assert busy.message == BUSY_MESSAGE
    assert other.status == "completed"
    assert engine.metrics.snapshot().turn_outcomes == {"busy": 1, "completed": 1}


def test_guard_releases_after_hold():
    guard = ThreadBusyGuard()

    with guard.hold("t1") as acquired:
        assert acquired
        assert guard.is_busy("t1")
        with guard.hold("t1") as nested:
            assert not nested
        assert guard.is_busy("t1")

    assert not guard.is_busy("t1")


def test_unknown_timezone_falls_back_to_utc(make_engine):
    engine = make_engine()

    result = asyncio.run(engine.handle_message("t1", "hello", user=UserContext(timezone="Mars/Olympus")))

    assert result.state.now.timezone == "UTC"


def test_ledger_holds_only_the_last_turn(make_engine):
    engine = make_engine()

    for text in ("remind me to call mom", "remind me to buy milk", "remind me to pay rent"):
        result = asyncio.run(engine.handle_message("t1", text))
        assert len(result.state.executed_operations) == 1

    assert len(engine.store.load_memory("t1").executed_operations) == 1


def fail_once_on(engine, monkeypatch, step_id: str) -> list[str]:
    resolver = engine.registry.get("database_task_resolver")
    original = resolver.resolve
    failures: list[str] = []

    async def flaky_resolve(step, state):
        if step.id == step_id and not failures:
            failures.append(step.id)
            raise RuntimeError("tasks backend unavailable")
        return await original(step, state)

    monkeypatch.setattr(resolver, "resolve", flaky_resolve)
    return failures


def test_resending_a_failed_turn_skips_committed_operations(make_engine, adapters, monkeypatch):
    engine = make_engine()
    fail_once_on(engine, monkeypatch, "s2")
    text = "remind me to call mom; what are my tasks"

    first = asyncio.run(engine.handle_message("t1", text))

    assert first.status == "degraded"
    assert first.retryable is True
    assert "s2" not in first.state.resolver_results
    assert engine.poll("t1") is TurnStatus.RETRYABLE

    second = asyncio.run(engine.handle_message("t1", text))

    assert second.status == "completed"
    assert second.retryable is False
    assert second.state.trace_id == first.state.trace_id
    assert second.results["s1"].already_committed is True
    assert second.results["s2"].success is True
    assert [record["text"] for record in adapters[Capability.DATABASE].records("task")] == ["call mom"]
    snapshot = engine.metrics.snapshot()
    assert snapshot.ledger_hits == 1
    assert snapshot.retries == 1
    assert engine.store.load_suspended("t1") is None


def test_retry_phrase_reenters_failed_turn(make_engine, adapters, monkeypatch):
    engine = make_engine()
    fail_once_on(engine, monkeypatch, "s2")
    first = asyncio.run(engine.handle_message("t1", "remind me to call mom; what are my tasks"))

    second = asyncio.run(engine.handle_message("t1", "Try again!"))

    assert second.status == "completed"
    assert second.state.trace_id == first.state.trace_id
    assert len(adapters[Capability.DATABASE].records("task")) == 1
    assert [message.content for message in second.state.recent_messages][-2] == "Try again!"


def test_explicit_retry_completes_failed_turn(make_engine, adapters, monkeypatch):
    engine = make_engine()
    fail_once_on(engine, monkeypatch, "s2")
    first = asyncio.run(engine.handle_message("t1", "remind me to call mom; what are my tasks"))

    result = asyncio.run(engine.retry("t1"))

    assert result.status == "completed"
    assert result.state.trace_id == first.state.trace_id
    assert result.results["s1"].already_committed is True
    assert len(adapters[Capability.DATABASE].records("task")) == 1


def test_retry_window_closes(make_engine, adapters, monkeypatch, clock):
    engine = make_engine()
    fail_once_on(engine, monkeypatch, "s2")
    asyncio.run(engine.handle_message("t1", "remind me to call mom; what are my tasks"))

    clock.advance(minutes=6)
    result = asyncio.run(engine.retry("t1"))

    assert result.status == "timed_out"
    assert engine.store.load_suspended("t1") is None
    assert engine.metrics.snapshot().retries == 0


def test_resend_after_window_starts_a_new_turn(make_engine, adapters, monkeypatch, clock):
    engine = make_engine()
    fail_once_on(engine, monkeypatch, "s2")
    text = "remind me to call mom; what are my tasks"
    first = asyncio.run(engine.handle_message("t1", text))

    clock.advance(minutes=6)
    second = asyncio.run(engine.handle_message("t1", text))

    assert second.status == "completed"
    assert second.state.trace_id != first.state.trace_id
    assert len(adapters[Capability.DATABASE].records("task")) == 2
    assert engine.metrics.snapshot().retries == 0


def test_new_request_drops_failed_turn(make_engine, monkeypatch):
    engine = make_engine()
    fail_once_on(engine, monkeypatch, "s2")
    asyncio.run(engine.handle_message("t1", "remind me to call mom; what are my tasks"))

    asyncio.run(engine.handle_message("t1", "hello"))
    result = asyncio.run(engine.retry("t1"))

    assert engine.poll("t1") is None
    assert result.status == "rejected"
    assert result.message == NOTHING_TO_RETRY_MESSAGE


def test_poll_closes_expired_retry_window(make_engine, monkeypatch, clock):
    engine = make_engine()
    fail_once_on(engine, monkeypatch, "s2")
    asyncio.run(engine.handle_message("t1", "remind me to call mom; what are my tasks"))

    clock.advance(seconds=engine.settings.retry_window_seconds + 1)

    assert engine.poll("t1") is TurnStatus.TIMED_OUT
    assert engine.poll("t1") is None
