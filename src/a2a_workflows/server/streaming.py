"""Server-Sent Events for streaming invocations.

The workflow runs on a background thread; an :class:`ExecutionListener`
pushes progress into a queue which the response body drains::

    event: start
    event: task_start / task_complete   (per task)
    event: complete | error
"""

from __future__ import annotations

import json
import logging
import queue
import threading
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from typing import Any

from a2a_workflows.core.logging import bind_request_id, reset_request_id
from a2a_workflows.workflow.result import TaskResult, WorkflowResult
from a2a_workflows.workflow.spec import TaskSpec

logger = logging.getLogger(__name__)

_DONE = object()


def format_sse(event: str, data: Any, event_id: str | None = None) -> str:
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.append(f"event: {event}")
    payload = json.dumps(data, ensure_ascii=False, default=str)
    lines.extend(f"data: {line}" for line in payload.splitlines() or [""])
    return "\n".join(lines) + "\n\n"


class QueueListener:
    """Forwards engine callbacks as SSE frames."""

    def __init__(self, events: queue.Queue[Any]) -> None:
        self._events = events

    def task_started(self, spec: TaskSpec) -> None:
        self._events.put(("task_start", {"task": spec.name, "type": spec.type}))

    def task_finished(self, spec: TaskSpec, result: TaskResult) -> None:
        self._events.put(("task_complete", {"task": spec.name, **result.to_dict()}))


def stream_run(
    run: Callable[[QueueListener], WorkflowResult],
    *,
    start: dict[str, Any],
    on_result: Callable[[WorkflowResult], dict[str, Any]],
    on_error: Callable[[BaseException], dict[str, Any]],
    request_id: str,
) -> Iterator[str]:
    """Run ``run`` on a worker thread and yield SSE frames as it progresses.

    ``on_result`` turns the final result into the ``complete`` (or ``error``)
    payload; ``on_error`` handles an exception raised by ``run`` itself.
    """
    events: queue.Queue[Any] = queue.Queue()
    listener = QueueListener(events)

    def worker() -> None:
        token = bind_request_id(request_id)
        try:
            result = run(listener)
            payload = on_result(result)
            events.put(("complete" if result.succeeded else "error", payload))
        except Exception as e:
            logger.exception("Streaming invocation failed", extra={"request_id": request_id})
            events.put(("error", on_error(e)))
        finally:
            reset_request_id(token)
            events.put(_DONE)

    thread = threading.Thread(target=worker, name=f"stream-{request_id}", daemon=True)

    counter = 0
    yield format_sse("start", {**start, "timestamp": datetime.now(UTC).isoformat()}, str(counter))
    thread.start()
    while True:
        item = events.get()
        if item is _DONE:
            break
        counter += 1
        event, data = item
        yield format_sse(event, data, str(counter))
