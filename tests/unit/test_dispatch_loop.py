import asyncio

from assistant.classifier import StaticClassifier
from assistant.core.errors import ClassificationError
from assistant.dispatch.loop import DispatchLoop
from assistant.resolvers import DatabaseTaskResolver, ResolverRegistry
from assistant.state.models import Capability, ClarifyResult, ExecuteResult, PlanStep


def execute(step, state):
    return ExecuteResult(step_id=step.id, args={"action": step.action})


def clarify(step, state):
    return ClarifyResult(step_id=step.id, question="which task did you mean?")


def explode(step, state):
    raise RuntimeError("backend unavailable")


def test_clarify_suspends_before_anything_resolves(make_state, make_resolver, clock):
    calls: list[str] = []
    registry = ResolverRegistry(
        [make_resolver("task", Capability.DATABASE, ["create_task"], clarify, calls)]
    )
    state = make_state(
        PlanStep(id="s1", capability=Capability.DATABASE, action="create_task"),
        PlanStep(id="s2", capability=Capability.DATABASE, action="create_task"),
    )

    result = asyncio.run(DispatchLoop(registry, clock=clock).run(state))

    assert result.pending_hitl is not None
    assert result.pending_hitl.step_id == "s1"
    assert result.pending_hitl.question == "which task did you mean?"
    assert result.interrupted_at == clock.now
    assert result.resolver_results == {}
    assert result.final_response is None
    assert calls == ["s1"]


def test_steps_dispatch_in_plan_order(make_state, make_resolver, metrics):
    calls: list[str] = []
    registry = ResolverRegistry(
        [
            make_resolver("tasks", Capability.DATABASE, ["list_tasks"], execute, calls),
            make_resolver("calendar", Capability.CALENDAR, ["list_events"], execute, calls),
        ]
    )
    state = make_state(
        PlanStep(id="s1", capability=Capability.CALENDAR, action="list_events"),
        PlanStep(id="s2", capability=Capability.DATABASE, action="list_tasks"),
    )

    result = asyncio.run(DispatchLoop(registry, metrics=metrics).run(state))

    assert list(result.resolver_results) == ["s1", "s2"]
    assert calls == ["s1", "s2"]
    assert [timing.step_id for timing in result.metadata.step_timings] == ["s1", "s2"]
    assert [timing.handler for timing in result.metadata.step_timings] == ["calendar", "tasks"]
    assert result.executor_args["s2"] == {"action": "list_tasks"}
    assert metrics.snapshot().dispatches == {"calendar": 1, "database": 1}


def test_resolver_failure_only_affects_its_step(make_state, make_resolver):
    registry = ResolverRegistry(
        [
            make_resolver("calendar", Capability.CALENDAR, ["list_events"], explode),
            make_resolver("tasks", Capability.DATABASE, ["list_tasks"], execute),
        ]
    )
    state = make_state(
        PlanStep(id="s1", capability=Capability.CALENDAR, action="list_events"),
        PlanStep(id="s2", capability=Capability.DATABASE, action="list_tasks"),
    )

    result = asyncio.run(DispatchLoop(registry).run(state))

    assert "Resolver error in calendar for step s1" in result.error
    assert "s1" not in result.resolver_results
    assert "s2" in result.resolver_results
    assert result.metadata.step_timings[0].step_id == "s1"


def test_dependents_of_unresolved_steps_are_skipped(make_state, make_resolver):
    calls: list[str] = []
    registry = ResolverRegistry(
        [
            make_resolver("calendar", Capability.CALENDAR, ["list_events"], explode, calls),
            make_resolver("tasks", Capability.DATABASE, ["list_tasks"], execute, calls),
        ]
    )
    state = make_state(
        PlanStep(id="s1", capability=Capability.CALENDAR, action="list_events"),
        PlanStep(id="s2", capability=Capability.DATABASE, action="list_tasks", depends_on=["s1"]),
    )

    result = asyncio.run(DispatchLoop(registry).run(state))

    assert calls == ["s1"]
    assert result.resolver_results == {}


def test_unknown_capability_is_recorded_not_raised(make_state):
    state = make_state(PlanStep(id="s1", capability=Capability.GMAIL, action="send_email"))

    result = asyncio.run(DispatchLoop(ResolverRegistry([])).run(state))

    assert result.error == "No resolver found for gmail:send_email"
    assert result.resolver_results == {}


def test_resolved_steps_are_not_dispatched_again(make_state, make_resolver):
    calls: list[str] = []
    registry = ResolverRegistry(
        [make_resolver("tasks", Capability.DATABASE, ["list_tasks"], execute, calls)]
    )
    state = make_state(
        PlanStep(id="s1", capability=Capability.DATABASE, action="list_tasks"),
        PlanStep(id="s2", capability=Capability.DATABASE, action="list_tasks"),
        resolver_results={"s1": ExecuteResult(step_id="s1", args={})},
    )

    asyncio.run(DispatchLoop(registry).run(state))

    assert calls == ["s2"]


def test_loop_is_idle_while_a_clarification_is_pending(make_state, make_resolver, clock):
    calls: list[str] = []
    registry = ResolverRegistry(
        [make_resolver("task", Capability.DATABASE, ["create_task"], clarify, calls)]
    )
    loop = DispatchLoop(registry, clock=clock)
    state = make_state(PlanStep(id="s1", capability=Capability.DATABASE, action="create_task"))
    suspended = asyncio.run(loop.run(state))

    again = asyncio.run(loop.run(suspended))

    assert again is suspended
    assert calls == ["s1"]


def test_resolver_classifier_calls_are_counted(make_state):
    classifier = StaticClassifier({"text": "water the plants"}, ClassificationError("timeout"))
    registry = ResolverRegistry([DatabaseTaskResolver(classifier)])
    state = make_state(
        PlanStep(
            id="s1",
            capability=Capability.DATABASE,
            action="create_task",
            constraints={"raw_message": "add task water plants"},
        ),
        PlanStep(
            id="s2",
            capability=Capability.DATABASE,
            action="create_task",
            constraints={"raw_message": "add task feed the cat"},
        ),
    )

    result = asyncio.run(DispatchLoop(registry).run(state))

    assert len(classifier.calls) == 2
    assert result.metadata.llm_calls == 2
    assert result.resolver_results["s1"].args["text"] == "water the plants"
    assert "s2" not in result.resolver_results


def test_resolver_without_a_matching_step_returns_empty_update(make_state, make_resolver):
    resolver = make_resolver("tasks", Capability.DATABASE, ["list_tasks"], execute)
    calendar_only = make_state(PlanStep(id="s1", capability=Capability.CALENDAR, action="list_events"))
    resolved = make_state(
        PlanStep(id="s1", capability=Capability.DATABASE, action="list_tasks"),
        resolver_results={"s1": ExecuteResult(step_id="s1", args={})},
    )
    pending = make_state(PlanStep(id="s1", capability=Capability.DATABASE, action="list_tasks"))

    assert asyncio.run(resolver.run(calendar_only)) == {}
    assert asyncio.run(resolver.run(resolved)) == {}
    assert asyncio.run(resolver.run(pending, "s9")) == {}
    update = asyncio.run(resolver.run(pending, "s1"))
    assert update["resolver_results"]["s1"].args == {"action": "list_tasks"}
