"""Workflow execution engine.

The engine walks a :class:`WorkflowDefinition` in declared order against one
:class:`ExecutionContext`:

- ``before_all`` hooks run once; a mapping they return is merged.
- A task whose condition is false is recorded as ``skipped`` and nothing else
  happens for it (no registry lookup, no context mutation).
- A task is executed through the handler factory registered for its type,
  with the context restricted to its declared inputs when it declares any.
- Failed attempts are retried; the final failure goes to the task's
  ``on_error`` handler, else the global one. With no handler the run stops.
- ``after_all`` hooks always run.

Timeouts are enforced by waiting on a worker thread. A timed-out call keeps
running in the background; its result is discarded.
"""

from __future__ import annotations

import contextvars
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Protocol

from a2a_workflows.errors import TaskExecutionError, TaskTimeoutError, WorkflowTimeoutError
from a2a_workflows.workflow.context import ExecutionContext
from a2a_workflows.workflow.options import ParallelOptions
from a2a_workflows.workflow.registry import TaskRegistry, get_task_registry
from a2a_workflows.workflow.result import TaskResult, TaskStatus, WorkflowResult
from a2a_workflows.workflow.spec import Hook, TaskSpec, WorkflowDefinition

logger = logging.getLogger(__name__)

DEFAULT_PARALLEL_WORKERS = 8


class ExecutionListener(Protocol):
    """Receives task progress callbacks. May be called from worker threads."""

    def task_started(self, spec: TaskSpec) -> None: ...

    def task_finished(self, spec: TaskSpec, result: TaskResult) -> None: ...


class _TaskFailure(Exception):
    """Unrecovered task failure; stops the run."""

    def __init__(self, task: str, error: BaseException) -> None:
        super().__init__(str(error))
        self.task = task
        self.error = error


@dataclass(slots=True)
class _Run:
    definition: WorkflowDefinition
    deadline: float | None
    listener: ExecutionListener | None
    name: str


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class WorkflowEngine:
    """Interprets workflow definitions.

    Args:
        task_registry: Registry used to resolve task types (defaults to the
            process-wide registry).
        default_timeout: Bound for a run whose workflow sets no timeout.
        max_workers: Default thread pool size for parallel groups.
        sleep: Called with the retry delay between attempts.
    """

    def __init__(
        self,
        task_registry: TaskRegistry | None = None,
        *,
        default_timeout: float | None = None,
        max_workers: int = DEFAULT_PARALLEL_WORKERS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.task_registry = task_registry if task_registry is not None else get_task_registry()
        self.default_timeout = default_timeout
        self.max_workers = max_workers
        self._sleep = sleep

    def execute(
        self,
        definition: WorkflowDefinition,
        context: ExecutionContext | Mapping[str, Any] | None = None,
        listener: ExecutionListener | None = None,
        *,
        name: str = "workflow",
    ) -> WorkflowResult:
        """Run ``definition`` against ``context`` and return the outcome.

        Task failures never propagate: they are reported through the result.
        """
        if not isinstance(context, ExecutionContext):
            context = ExecutionContext(context or {})

        started = time.monotonic()
        timeout = definition.timeout if definition.timeout is not None else self.default_timeout
        run = _Run(
            definition=definition,
            deadline=started + timeout if timeout else None,
            listener=listener,
            name=name,
        )
        task_results: list[TaskResult] = []
        error: BaseException | None = None
        failed_task: str | None = None

        logger.info(
            "Workflow started",
            extra={"workflow": name, "tasks": len(definition.tasks), "context": context.summary()},
        )

        try:
            self._run_hooks(definition.before_hooks, context, "before_all")
            for spec in definition.tasks:
                self._run_step(spec, context, run, task_results)
        except _TaskFailure as failure:
            error = failure.error
            failed_task = failure.task
        except Exception as e:
            error = e
        finally:
            for hook in definition.after_hooks:
                try:
                    self._merge_hook_result(hook(context), context)
                except Exception as e:
                    logger.exception("after_all hook failed", extra={"workflow": name})
                    if error is None:
                        error = e

        duration_ms = (time.monotonic() - started) * 1000
        if error is None:
            logger.info(
                "Workflow completed",
                extra={"workflow": name, "duration_ms": round(duration_ms, 3)},
            )
            return WorkflowResult(
                status="success",
                output_context=context,
                task_results=task_results,
                duration_ms=duration_ms,
            )

        logger.warning(
            "Workflow failed",
            extra={
                "workflow": name,
                "failed_task": failed_task,
                "error": _describe(error),
                "error_class": type(error).__name__,
                "duration_ms": round(duration_ms, 3),
            },
        )
        return WorkflowResult(
            status="failure",
            output_context=context,
            task_results=task_results,
            error=_describe(error),
            error_class=type(error).__name__,
            failed_task=failed_task,
            duration_ms=duration_ms,
        )

    # Steps

    def _run_step(
        self,
        spec: TaskSpec,
        context: ExecutionContext,
        run: _Run,
        results: list[TaskResult],
    ) -> None:
        # Every task_finished, skipped ones included, follows a task_started.
        self._notify_started(spec, run)
        if run.deadline is not None and time.monotonic() >= run.deadline:
            error = WorkflowTimeoutError(
                f"Workflow '{run.name}' exceeded its timeout before task '{spec.name}'",
                task=spec.name,
            )
            self._record(spec, "failed", run, results, error=error)
            raise _TaskFailure(spec.name, error)

        try:
            if spec.condition is not None and not spec.condition(context):
                self._record(spec, "skipped", run, results)
                return
        except Exception as e:
            self._handle_failure(spec, e, context, run, results, 0, 0.0)
            return

        started = time.monotonic()
        attempts = [0]
        try:
            if spec.is_group:
                attempts[0] = 1
                self._run_group(spec, context, run, results)
            else:
                value = self._execute_task(spec, context, run, attempts)
                self._merge_outputs(spec, context, value)
        except _TaskFailure as failure:
            elapsed = (time.monotonic() - started) * 1000
            self._record(spec, "failed", run, results, duration_ms=elapsed,
                         attempts=attempts[0], error=failure.error)
            raise
        except WorkflowTimeoutError as e:
            elapsed = (time.monotonic() - started) * 1000
            self._record(spec, "failed", run, results, duration_ms=elapsed,
                         attempts=attempts[0], error=e)
            raise _TaskFailure(spec.name, e) from e
        except Exception as e:
            elapsed = (time.monotonic() - started) * 1000
            self._handle_failure(spec, e, context, run, results, attempts[0], elapsed)
            return

        elapsed = (time.monotonic() - started) * 1000
        self._record(spec, "success", run, results, duration_ms=elapsed, attempts=attempts[0])

    def _handle_failure(
        self,
        spec: TaskSpec,
        error: Exception,
        context: ExecutionContext,
        run: _Run,
        results: list[TaskResult],
        attempts: int,
        duration_ms: float,
    ) -> None:
        handler = run.definition.error_handler_for(spec.name)
        if handler is None:
            self._record(spec, "failed", run, results, duration_ms=duration_ms,
                         attempts=attempts, error=error)
            raise _TaskFailure(spec.name, error) from error

        try:
            recovery = handler(error, context)
        except Exception as handler_error:
            logger.exception(
                "Error handler failed",
                extra={"workflow": run.name, "task": spec.name},
            )
            self._record(spec, "failed", run, results, duration_ms=duration_ms,
                         attempts=attempts, error=handler_error)
            raise _TaskFailure(spec.name, handler_error) from error

        if isinstance(recovery, Mapping):
            context.merge(recovery)
        self._record(spec, "recovered", run, results, duration_ms=duration_ms,
                     attempts=attempts, error=error)

    def _execute_task(
        self,
        spec: TaskSpec,
        context: ExecutionContext,
        run: _Run,
        attempts: list[int],
    ) -> Any:
        factory = self.task_registry.get(spec.type)
        handler = factory(spec)

        policy = run.definition.retry_policy
        if spec.retries is not None:
            max_retries = spec.retries
        else:
            max_retries = policy.max_retries if policy is not None else 0
        delay = policy.delay if policy is not None else 0.0

        while True:
            attempts[0] += 1
            task_context = context.slice(*spec.inputs) if spec.inputs else context
            try:
                return self._call_with_timeout(handler.execute, spec, task_context, run)
            except WorkflowTimeoutError:
                raise
            except Exception as e:
                if attempts[0] > max_retries:
                    raise
                logger.warning(
                    "Task attempt failed, retrying",
                    extra={
                        "workflow": run.name,
                        "task": spec.name,
                        "attempt": attempts[0],
                        "max_retries": max_retries,
                        "error": _describe(e),
                    },
                )
                if delay:
                    self._sleep(delay)

    def _call_with_timeout(
        self,
        fn: Callable[[ExecutionContext], Any],
        spec: TaskSpec,
        context: ExecutionContext,
        run: _Run,
    ) -> Any:
        remaining = None
        if run.deadline is not None:
            remaining = run.deadline - time.monotonic()
            if remaining <= 0:
                raise WorkflowTimeoutError(
                    f"Workflow '{run.name}' timed out during task '{spec.name}'", task=spec.name
                )

        limits = [t for t in (spec.timeout, remaining) if t is not None]
        if not limits:
            return fn(context)
        limit = min(limits)

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"task-{spec.name}")
        try:
            future = executor.submit(contextvars.copy_context().run, fn, context)
            done, _ = wait([future], timeout=limit)
            if not done:
                if spec.timeout is None or (remaining is not None and remaining < spec.timeout):
                    raise WorkflowTimeoutError(
                        f"Workflow '{run.name}' timed out during task '{spec.name}'",
                        task=spec.name,
                    )
                raise TaskTimeoutError(
                    f"Task '{spec.name}' timed out after {limit:g}s", task=spec.name
                )
            return future.result()
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _run_group(
        self,
        group: TaskSpec,
        context: ExecutionContext,
        run: _Run,
        results: list[TaskResult],
    ) -> None:
        children = group.children
        workers = self.max_workers
        if isinstance(group.options, ParallelOptions) and group.options.max_workers:
            workers = group.options.max_workers
        workers = max(1, min(workers, len(children)))

        base = context.to_dict()
        copies = [context.copy() for _ in children]
        child_results: list[list[TaskResult]] = [[] for _ in children]

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"group-{group.name}") as pool:
            futures = [
                pool.submit(
                    contextvars.copy_context().run,
                    self._run_step,
                    child,
                    copies[i],
                    run,
                    child_results[i],
                )
                for i, child in enumerate(children)
            ]
            wait(futures)

        for child_result in child_results:
            results.extend(child_result)

        for future in futures:
            exc = future.exception()
            if exc is not None:
                raise exc

        produced_by: dict[str, str] = {}
        merged: dict[str, Any] = {}
        for child, copy in zip(children, copies):
            for key, value in copy.items():
                if key in base and base[key] is value:
                    continue
                if key in produced_by:
                    raise TaskExecutionError(
                        f"Parallel tasks '{produced_by[key]}' and '{child.name}' "
                        f"both produced '{key}'",
                        task=group.name,
                    )
                produced_by[key] = child.name
                merged[key] = value
        context.merge(merged)

    # Helpers

    @staticmethod
    def _merge_outputs(spec: TaskSpec, context: ExecutionContext, value: Any) -> None:
        if spec.outputs:
            if isinstance(value, Mapping) and all(k in value for k in spec.outputs):
                context.merge({k: value[k] for k in spec.outputs})
                return
            if len(spec.outputs) == 1:
                context[spec.outputs[0]] = value
                return
            present = set(value) if isinstance(value, Mapping) else set()
            missing = [k for k in spec.outputs if k not in present]
            raise TaskExecutionError(
                f"Task '{spec.name}' did not produce declared outputs: {', '.join(missing)}",
                task=spec.name,
            )

        if value is None:
            return
        if isinstance(value, Mapping):
            context.merge(value)
        else:
            context[spec.name] = value

    def _run_hooks(self, hooks: Sequence[Hook], context: ExecutionContext, phase: str) -> None:
        for hook in hooks:
            logger.debug("Running %s hook", phase)
            self._merge_hook_result(hook(context), context)

    @staticmethod
    def _merge_hook_result(value: Any, context: ExecutionContext) -> None:
        if isinstance(value, Mapping):
            context.merge(value)

    def _record(
        self,
        spec: TaskSpec,
        status: TaskStatus,
        run: _Run,
        results: list[TaskResult],
        *,
        duration_ms: float = 0.0,
        attempts: int = 0,
        error: BaseException | None = None,
    ) -> None:
        result = TaskResult(
            name=spec.name,
            status=status,
            duration_ms=duration_ms,
            attempts=attempts,
            error=_describe(error) if error is not None else None,
        )
        results.append(result)

        extra = {
            "workflow": run.name,
            "task": spec.name,
            "task_type": spec.type,
            "status": status,
            "duration_ms": round(duration_ms, 3),
        }
        if status == "failed":
            logger.error("Task failed: %s", result.error, extra=extra)
        elif status == "recovered":
            logger.warning("Task recovered by error handler: %s", result.error, extra=extra)
        else:
            logger.info("Task %s", status, extra=extra)

        if run.listener is not None:
            try:
                run.listener.task_finished(spec, result)
            except Exception:
                logger.exception("Execution listener failed", extra={"task": spec.name})

    @staticmethod
    def _notify_started(spec: TaskSpec, run: _Run) -> None:
        if run.listener is None:
            return
        try:
            run.listener.task_started(spec)
        except Exception:
            logger.exception("Execution listener failed", extra={"task": spec.name})
