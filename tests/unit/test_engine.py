"""Unit tests for the workflow engine."""

from __future__ import annotations

import threading
import time

import pytest

from a2a_workflows.errors import RegistryLookupError
from a2a_workflows.workflow.dsl import WorkflowBuilder
from a2a_workflows.workflow.engine import WorkflowEngine
from a2a_workflows.workflow.registry import TaskRegistry


def _build(declare) -> object:
    w = WorkflowBuilder()
    declare(w)
    return w.build()


def test_tasks_run_in_order_and_merge_outputs(engine: WorkflowEngine) -> None:
    seen: list[str] = []

    def declare(w):
        w.task("double", input="n", output="doubled").process(
            lambda ctx: seen.append("double") or ctx["n"] * 2
        )
        w.task("describe").process(lambda ctx: seen.append("describe") or {"text": f"{ctx['doubled']}"})
        w.task("tag").process(lambda ctx: "tagged")
        w.task("noop").process(lambda ctx: None)

    result = engine.execute(_build(declare), {"n": 21})

    assert result.succeeded
    assert seen == ["double", "describe"]
    assert result.output_context.to_dict() == {
        "n": 21,
        "doubled": 42,
        "text": "42",
        "tag": "tagged",
    }
    assert [r.status for r in result.task_results] == ["success"] * 4


def test_declared_inputs_restrict_what_a_task_sees(engine: WorkflowEngine) -> None:
    def declare(w):
        w.task("peek", input="a", output="keys").process(lambda ctx: sorted(ctx))

    result = engine.execute(_build(declare), {"a": 1, "b": 2})

    assert result.output_context["keys"] == ["a"]


def test_multiple_declared_outputs_are_picked_from_mapping(engine: WorkflowEngine) -> None:
    def declare(w):
        w.task("split").output("first", "second").process(
            lambda ctx: {"first": 1, "second": 2, "ignored": 3}
        )

    result = engine.execute(_build(declare))

    assert result.output_context.to_dict() == {"first": 1, "second": 2}


def test_missing_declared_outputs_fail_the_task(engine: WorkflowEngine) -> None:
    def declare(w):
        w.task("split").output("first", "second").process(lambda ctx: {"first": 1})

    result = engine.execute(_build(declare))

    assert not result.succeeded
    assert result.failed_task == "split"
    assert "second" in result.error


def test_false_condition_skips_task_and_after_all_still_runs(engine: WorkflowEngine) -> None:
    calls: list[str] = []

    def declare(w):
        w.task("gated").run_if(lambda ctx: False).process(lambda ctx: calls.append("gated"))
        w.task("always").process(lambda ctx: {"ran": True})
        w.after_all(lambda ctx: calls.append("after"))

    result = engine.execute(_build(declare))

    assert result.succeeded
    assert result.task("gated").status == "skipped"
    assert result.output_context["ran"] is True
    assert calls == ["after"]


def test_skipped_task_does_not_need_a_registered_type(task_registry: TaskRegistry) -> None:
    engine = WorkflowEngine(task_registry)

    def declare(w):
        w.task("later", "not_registered").run_when("enabled")

    result = engine.execute(_build(declare))

    assert result.succeeded
    assert result.task("later").status == "skipped"


def test_unrecovered_failure_stops_run_and_after_all_still_runs(engine: WorkflowEngine) -> None:
    calls: list[str] = []

    def boom(ctx):
        raise ValueError("bad input")

    def declare(w):
        w.task("first").process(lambda ctx: {"a": 1})
        w.task("explode").process(boom)
        w.task("never").process(lambda ctx: calls.append("never"))
        w.after_all(lambda ctx: calls.append("after"))

    result = engine.execute(_build(declare))

    assert result.status == "failure"
    assert result.failed_task == "explode"
    assert result.error == "bad input"
    assert result.error_class == "ValueError"
    assert calls == ["after"]
    assert [r.name for r in result.task_results] == ["first", "explode"]
    assert result.output_context["a"] == 1


def test_task_error_handler_recovers(engine: WorkflowEngine) -> None:
    def declare(w):
        w.task("fetch").process(lambda ctx: 1 / 0)
        w.task("next").process(lambda ctx: {"continued": True})
        w.on_error(lambda error, ctx: {"fallback": type(error).__name__}, task="fetch")

    result = engine.execute(_build(declare))

    assert result.succeeded
    assert result.task("fetch").status == "recovered"
    assert result.output_context["fallback"] == "ZeroDivisionError"
    assert result.output_context["continued"] is True


def test_global_error_handler_is_used_when_no_task_handler(engine: WorkflowEngine) -> None:
    def declare(w):
        w.task("fetch").process(lambda ctx: 1 / 0)
        w.on_error(lambda error, ctx: {"handled_by": "global"})

    result = engine.execute(_build(declare))

    assert result.succeeded
    assert result.output_context["handled_by"] == "global"


def test_failing_error_handler_fails_the_run(engine: WorkflowEngine) -> None:
    def handler(error, ctx):
        raise RuntimeError("handler broke")

    def declare(w):
        w.task("fetch").process(lambda ctx: 1 / 0)
        w.on_error(handler)

    result = engine.execute(_build(declare))

    assert not result.succeeded
    assert result.error == "handler broke"
    assert result.failed_task == "fetch"


def test_retries_then_succeeds(task_registry: TaskRegistry) -> None:
    sleeps: list[float] = []
    engine = WorkflowEngine(task_registry, sleep=sleeps.append)
    attempts = {"n": 0}

    def flaky(ctx):
        attempts["n"] += 1
        if attempts["n"] < 3:
            raise ConnectionError("try again")
        return {"ok": True}

    def declare(w):
        w.retry_policy(max_retries=2, delay=0.5)
        w.task("flaky").process(flaky)

    result = engine.execute(_build(declare))

    assert result.succeeded
    assert result.task("flaky").attempts == 3
    assert sleeps == [0.5, 0.5]


def test_task_retries_override_policy(engine: WorkflowEngine) -> None:
    attempts = {"n": 0}

    def always_fails(ctx):
        attempts["n"] += 1
        raise ConnectionError("down")

    def declare(w):
        w.retry_policy(max_retries=5, delay=0)
        w.task("flaky").retries(1).process(always_fails)

    result = engine.execute(_build(declare))

    assert not result.succeeded
    assert attempts["n"] == 2
    assert result.task("flaky").attempts == 2


def test_task_timeout(engine: WorkflowEngine) -> None:
    release = threading.Event()

    def declare(w):
        w.task("slow").timeout(0.05).process(lambda ctx: release.wait(2))

    try:
        result = engine.execute(_build(declare))
    finally:
        release.set()

    assert not result.succeeded
    assert result.error_class == "TaskTimeoutError"
    assert result.failed_task == "slow"


def test_workflow_timeout_bypasses_error_handlers(engine: WorkflowEngine) -> None:
    release = threading.Event()
    handled: list[str] = []

    def declare(w):
        w.timeout(0.05)
        w.task("slow").process(lambda ctx: release.wait(2))
        w.on_error(lambda error, ctx: handled.append("handled"))

    try:
        result = engine.execute(_build(declare))
    finally:
        release.set()

    assert not result.succeeded
    assert result.error_class == "WorkflowTimeoutError"
    assert handled == []


def test_unregistered_task_type_fails_the_task(engine: WorkflowEngine) -> None:
    def declare(w):
        w.task("mail", "email_not_registered")

    result = engine.execute(_build(declare))

    assert not result.succeeded
    assert result.error_class == RegistryLookupError.__name__
    assert result.failed_task == "mail"


def test_before_all_result_is_merged(engine: WorkflowEngine) -> None:
    def declare(w):
        w.before_all(lambda ctx: {"started": True})
        w.task("read", input="started", output="seen").process(lambda ctx: ctx["started"])

    result = engine.execute(_build(declare))

    assert result.output_context["seen"] is True


def test_after_all_failure_fails_an_otherwise_successful_run(engine: WorkflowEngine) -> None:
    def broken_hook(ctx):
        raise RuntimeError("cleanup failed")

    def declare(w):
        w.task("ok").process(lambda ctx: {"done": True})
        w.after_all(broken_hook)

    result = engine.execute(_build(declare))

    assert not result.succeeded
    assert result.error == "cleanup failed"
    assert result.failed_task is None


def test_parallel_group_runs_concurrently_and_merges(task_registry: TaskRegistry) -> None:
    engine = WorkflowEngine(task_registry, max_workers=4)
    barrier = threading.Barrier(2, timeout=2)

    def left(ctx):
        barrier.wait()
        return {"left": ctx["base"] + 1}

    def right(ctx):
        barrier.wait()
        return {"right": ctx["base"] + 2}

    def declare(w):
        w.task("seed").process(lambda ctx: {"base": 10})

        def members(g):
            g.task("left").process(left)
            g.task("right").process(right)

        w.parallel("fan_out", members)
        w.task("sum").process(lambda ctx: {"total": ctx["left"] + ctx["right"]})

    started = time.monotonic()
    result = engine.execute(_build(declare))

    assert result.succeeded, result.error
    assert result.output_context["total"] == 23
    assert result.task("fan_out").status == "success"
    assert {r.name for r in result.task_results} >= {"left", "right", "fan_out"}
    assert time.monotonic() - started < 2


def test_parallel_output_collision_fails(engine: WorkflowEngine) -> None:
    def declare(w):
        def members(g):
            g.task("a").process(lambda ctx: {"same": 1})
            g.task("b").process(lambda ctx: {"same": 2})

        w.parallel("group", members)

    result = engine.execute(_build(declare))

    assert not result.succeeded
    assert "same" in result.error


def test_parallel_member_failure_fails_group(engine: WorkflowEngine) -> None:
    def declare(w):
        def members(g):
            g.task("ok").process(lambda ctx: {"fine": True})
            g.task("bad").process(lambda ctx: 1 / 0)

        w.parallel("group", members)
        w.task("after").process(lambda ctx: {"after": True})

    result = engine.execute(_build(declare))

    assert not result.succeeded
    assert result.failed_task == "bad"
    assert result.task("group").status == "failed"
    assert "after" not in result.output_context


class _Recorder:
    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []

    def task_started(self, spec) -> None:
        self.events.append(("start", spec.name))

    def task_finished(self, spec, result) -> None:
        self.events.append((result.status, spec.name))


def test_listener_receives_progress(engine: WorkflowEngine) -> None:
    recorder = _Recorder()

    def declare(w):
        w.task("one").process(lambda ctx: None)
        w.task("two").run_if(lambda ctx: False).process(lambda ctx: None)

    engine.execute(_build(declare), listener=recorder)

    assert recorder.events == [
        ("start", "one"),
        ("success", "one"),
        ("start", "two"),
        ("skipped", "two"),
    ]


@pytest.mark.parametrize("context", [None, {}, {"x": 1}])
def test_execute_accepts_plain_mappings(engine: WorkflowEngine, context) -> None:
    result = engine.execute(_build(lambda w: w.task("t").process(lambda ctx: None)), context)

    assert result.succeeded
    assert result.output_context.to_dict() == (context or {})


def test_same_input_gives_same_result_on_every_run(engine: WorkflowEngine) -> None:
    def declare(w):
        w.task("double", input="n", output="doubled").process(lambda ctx: ctx["n"] * 2)
        w.task("maybe").run_when("verbose").process(lambda ctx: {"extra": True})

        def members(g):
            g.task("left").output("l").process(lambda ctx: ctx["doubled"] + 1)
            g.task("right").output("r").process(lambda ctx: ctx["doubled"] - 1)

        w.parallel("fan_out", members)

    definition = _build(declare)
    inputs = {"n": 5}

    first = engine.execute(definition, dict(inputs))
    second = engine.execute(definition, dict(inputs))

    assert first.status == second.status == "success"
    assert first.output_context == second.output_context
    assert first.output_context.to_dict() == {"n": 5, "doubled": 10, "l": 11, "r": 9}
    assert [(r.name, r.status) for r in first.task_results] == [
        (r.name, r.status) for r in second.task_results
    ]
    assert inputs == {"n": 5}
