"""HTTP API tests against the FastAPI app (no network)."""

from __future__ import annotations

import pytest

from a2a_workflows.a2a.client import parse_sse
from a2a_workflows.errors import ServerConfigurationError
from a2a_workflows.server.server import format_uptime
from a2a_workflows.workflow.definition import Workflow


class ApiEchoWorkflow(Workflow):
    name = "echo"
    description = "Echoes its input"

    @classmethod
    def define(cls, w):
        w.task("echo").input("text").output("text").process(lambda ctx: ctx["text"])


class ApiFailingWorkflow(Workflow):
    name = "failing"

    @classmethod
    def define(cls, w):
        w.task("prepare").process(lambda ctx: {"prepared": True})
        w.task("explode").process(lambda ctx: 1 / 0)
        w.after_all(lambda ctx: {"cleaned_up": True})


class ApiGatedWorkflow(Workflow):
    name = "gated"

    @classmethod
    def define(cls, w):
        w.task("maybe").run_if(lambda ctx: ctx.get("enabled") is True).process(
            lambda ctx: {"ran": True}
        )
        w.after_all(lambda ctx: {"finished": True})


class ApiInputKeyWorkflow(Workflow):
    name = "input_key"

    @classmethod
    def define(cls, w):
        w.task("shout").input("input").output("shouted").process(lambda ctx: ctx["input"].upper())


class ApiReportWorkflow(Workflow):
    name = "report"

    @classmethod
    def define(cls, w):
        w.task("build").process(
            lambda ctx: {"summary": "x" * 1200, "rows": [{"id": 1}], "count": 1, "note": "short"}
        )


def _rpc(skill=None, workflow=None, parameters=None, rpc_id="req-1"):
    task = {"parameters": parameters or {}}
    if skill:
        task["skill"] = skill
    if workflow:
        task["workflow"] = workflow
    return {"jsonrpc": "2.0", "method": "invoke", "id": rpc_id, "params": {"task": task}}


def test_direct_workflow_endpoint_echoes(make_client) -> None:
    client = make_client(ApiEchoWorkflow)

    resp = client.post("/agents/api_echo_workflow", json={"text": "hi"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["jsonrpc"] == "2.0"
    assert body["result"]["status"] == "completed"
    assert body["result"]["output"] == {"text": "hi"}
    assert body["result"]["tasks"][0]["name"] == "echo"
    assert body["result"]["metadata"]["workflow"] == "echo"
    assert resp.headers["X-Request-ID"]
    assert resp.headers["X-Response-Time"].endswith("ms")


def test_direct_endpoint_accepts_input_envelope(make_client) -> None:
    client = make_client(ApiEchoWorkflow)

    resp = client.post("/agents/api_echo_workflow", json={"input": {"text": "wrapped"}, "id": 7})

    assert resp.status_code == 200
    assert resp.json()["id"] == 7
    assert resp.json()["result"]["output"] == {"text": "wrapped"}


def test_invoke_by_skill_matches_direct_call(make_client) -> None:
    client = make_client(ApiEchoWorkflow)

    direct = client.post("/agents/api_echo_workflow", json={"text": "same"}).json()
    invoked = client.post("/invoke", json=_rpc(skill="echo", parameters={"text": "same"})).json()

    assert invoked["id"] == "req-1"
    assert invoked["result"]["status"] == direct["result"]["status"]
    assert invoked["result"]["output"] == direct["result"]["output"]


def test_invoke_by_workflow_name_and_path(make_client) -> None:
    client = make_client(ApiEchoWorkflow)

    by_name = client.post("/invoke", json={"workflow": "echo", "input": {"text": "a"}})
    by_path = client.post(
        "/invoke", json=_rpc(workflow="/agents/api_echo_workflow", parameters={"text": "b"})
    )

    assert by_name.json()["result"]["output"] == {"text": "a"}
    assert by_path.json()["result"]["output"] == {"text": "b"}


def test_invoke_unknown_skill_is_404(make_client) -> None:
    client = make_client(ApiEchoWorkflow)

    resp = client.post("/invoke", json=_rpc(skill="ghost"))

    assert resp.status_code == 404
    assert resp.json()["code"] == "not_found"
    assert "ghost" in resp.json()["error"]


@pytest.mark.parametrize(
    "content",
    [b"{not json", b"[1, 2]", b"", b'{"jsonrpc": "1.0", "params": {}}', b'{"input": {}}'],
)
def test_invoke_rejects_bad_bodies(make_client, content: bytes) -> None:
    client = make_client(ApiEchoWorkflow)

    resp = client.post("/invoke", content=content, headers={"Content-Type": "application/json"})

    assert resp.status_code == 400
    assert resp.json()["code"] == "bad_request"


def test_failed_run_reports_failure_and_after_all_ran(make_client) -> None:
    client = make_client(ApiFailingWorkflow)

    resp = client.post("/agents/api_failing_workflow", json={})

    assert resp.status_code == 500
    body = resp.json()
    assert body["code"] == "workflow_failed"
    assert body["failed_task"] == "explode"
    assert body["error_class"] == "ZeroDivisionError"
    assert body["result"]["status"] == "failed"
    assert body["result"]["output"] == {"prepared": True, "cleaned_up": True}


def test_skipped_task_and_after_all(make_client) -> None:
    client = make_client(ApiGatedWorkflow)

    body = client.post("/agents/api_gated_workflow", json={"enabled": False}).json()

    assert body["result"]["status"] == "completed"
    assert body["result"]["tasks"] == [
        {"name": "maybe", "status": "skipped", "duration_ms": 0.0, "attempts": 0}
    ]
    assert body["result"]["output"] == {"enabled": False, "finished": True}


def test_workflow_describe_endpoint(make_client) -> None:
    client = make_client(ApiEchoWorkflow)

    body = client.get("/agents/api_echo_workflow").json()

    assert body == {
        "name": "echo",
        "description": "Echoes its input",
        "version": "1.0.0",
        "capabilities": ["echo"],
        "endpoint": "/agents/api_echo_workflow",
    }


def test_streaming_invocation_emits_progress_events(make_client) -> None:
    client = make_client(ApiEchoWorkflow)

    resp = client.post(
        "/agents/api_echo_workflow",
        json={"text": "live"},
        headers={"Accept": "text/event-stream"},
    )

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    events = list(parse_sse(resp.text.splitlines()))
    assert [e.event for e in events] == ["start", "task_start", "task_complete", "complete"]
    assert events[-1].data["result"] == {"text": "live"}
    assert events[2].data["task"] == "echo"


def test_streaming_failure_ends_with_error_event(make_client) -> None:
    client = make_client(ApiFailingWorkflow)

    resp = client.post("/invoke", json={"workflow": "failing", "input": {}, "stream": True})

    events = list(parse_sse(resp.text.splitlines()))
    assert events[-1].event == "error"
    assert events[-1].data["failed_task"] == "explode"


def test_discovery_and_health_with_no_workflows(make_client) -> None:
    client = make_client()

    card = client.get("/.well-known/agent.json")
    health = client.get("/health")

    assert card.status_code == 200
    assert card.json()["skills"] == []
    assert health.status_code == 200
    assert health.json()["status"] == "healthy"
    assert health.json()["registered_workflows"] == 0
    assert health.json()["server_info"] == {
        "host": "127.0.0.1",
        "port": 8080,
        "ssl": False,
        "authentication": False,
    }
    assert health.headers["Cache-Control"].startswith("no-cache")


def test_root_lists_workflows(make_client) -> None:
    client = make_client(ApiEchoWorkflow)

    body = client.get("/").json()

    assert body["status"] == "running"
    assert body["workflows"] == [
        {"name": "echo", "path": "/agents/api_echo_workflow", "description": "Echoes its input"}
    ]


def test_unknown_path_and_wrong_method(make_client) -> None:
    client = make_client(ApiEchoWorkflow)

    missing = client.get("/nope")
    wrong = client.get("/invoke")

    assert missing.status_code == 404
    assert missing.json()["code"] == "not_found"
    assert "/agents/api_echo_workflow" in missing.json()["available_endpoints"]
    assert wrong.status_code == 405
    assert wrong.json()["code"] == "method_not_allowed"


def test_workflow_registered_after_app_build_is_mounted(make_server) -> None:
    from fastapi.testclient import TestClient

    server = make_server()
    client = TestClient(server.app)
    server.register_workflow(ApiEchoWorkflow, "/late/echo")

    resp = client.post("/late/echo", json={"text": "late"})

    assert resp.status_code == 200
    assert resp.json()["result"]["output"] == {"text": "late"}


@pytest.mark.parametrize("path", ["/", "/health", "/invoke", "/.well-known/agent.json"])
def test_reserved_paths_are_rejected(make_server, path: str) -> None:
    server = make_server()

    with pytest.raises(ServerConfigurationError):
        server.register_workflow(ApiEchoWorkflow, path)


def test_stats_count_invocations(make_server) -> None:
    from fastapi.testclient import TestClient

    server = make_server(ApiEchoWorkflow, ApiFailingWorkflow)
    client = TestClient(server.app)
    client.post("/agents/api_echo_workflow", json={"text": "x"})
    client.post("/agents/api_failing_workflow", json={})

    stats = server.stats()

    assert stats["invocations_total"] == 2
    assert stats["invocations_succeeded"] == 1
    assert stats["invocations_failed"] == 1
    assert stats["active_invocations"] == 0
    assert stats["requests_total"] == 2
    assert stats["total_capabilities"] == 3


@pytest.mark.parametrize(
    "seconds, expected",
    [(0, "0s"), (59.9, "59s"), (61, "1m 1s"), (3600, "1h 0s"), (93784, "1d 2h 3m 4s")],
)
def test_format_uptime(seconds: float, expected: str) -> None:
    assert format_uptime(seconds) == expected


def test_direct_endpoint_passes_scalar_input_key_through(make_client) -> None:
    client = make_client(ApiInputKeyWorkflow)

    direct = client.post("/agents/api_input_key_workflow", json={"input": "hello"})
    via_invoke = client.post("/invoke", json={"workflow": "input_key", "input": {"input": "hello"}})

    assert direct.status_code == 200
    assert direct.json()["result"]["output"] == {"input": "hello", "shouted": "HELLO"}
    assert via_invoke.json()["result"]["output"] == direct.json()["result"]["output"]


def test_direct_endpoint_with_extra_keys_is_raw_input(make_client) -> None:
    client = make_client(ApiEchoWorkflow)

    resp = client.post("/agents/api_echo_workflow", json={"input": {"a": 1}, "text": "raw"})

    assert resp.status_code == 200
    assert resp.json()["result"]["output"] == {"input": {"a": 1}, "text": "raw"}


def test_invoke_result_lists_artifacts(make_client) -> None:
    client = make_client(ApiReportWorkflow)

    result = client.post("/invoke", json={"workflow": "report", "input": {}}).json()["result"]

    artifacts = {a["name"]: a for a in result["artifacts"]}
    assert set(artifacts) == {"summary_result", "rows_data"}
    assert artifacts["summary_result"]["type"] == "document"
    assert artifacts["summary_result"]["size"] == 1200
    assert artifacts["rows_data"]["type"] == "data"
    assert artifacts["rows_data"]["encoding"] == "json"
    assert artifacts["rows_data"]["content"] == [{"id": 1}]
    assert result["output"]["count"] == 1


def test_health_is_degraded_when_task_types_are_missing(make_server) -> None:
    from fastapi.testclient import TestClient

    server = make_server(ApiEchoWorkflow)
    server.settings = server.settings.model_copy(update={"required_task_types": "email"})

    body = TestClient(server.app).get("/health").json()

    assert body["status"] == "degraded"
    assert body["checks"]["task_manifest"]["status"] == "error"
    assert body["checks"]["task_manifest"]["details"]["missing"] == ["email"]
    assert body["checks"]["workflow_registry"]["status"] == "ok"
    assert body["checks"]["configuration"]["status"] == "ok"


def test_repeated_invocations_give_identical_results(make_client) -> None:
    client = make_client(ApiEchoWorkflow)
    body = {"workflow": "echo", "input": {"text": "again"}}

    first = client.post("/invoke", json=body).json()["result"]
    second = client.post("/invoke", json=body).json()["result"]

    assert first["status"] == second["status"] == "completed"
    assert first["output"] == second["output"] == {"text": "again"}
    assert [t["status"] for t in first["tasks"]] == [t["status"] for t in second["tasks"]]


def test_streamed_skipped_task_still_announces_its_start(make_client) -> None:
    client = make_client(ApiGatedWorkflow)

    resp = client.post(
        "/agents/api_gated_workflow",
        json={"enabled": False},
        headers={"Accept": "text/event-stream"},
    )

    events = list(parse_sse(resp.text.splitlines()))
    assert [e.event for e in events] == ["start", "task_start", "task_complete", "complete"]
    assert events[2].data["status"] == "skipped"
