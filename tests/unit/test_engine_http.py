"""HTTP engine client tests using httpx.MockTransport."""

import json

import httpx
import pytest

from mailpilot.contracts import WorkflowDefinition
from mailpilot.engine.http import HttpWorkflowEngine
from mailpilot.errors import EngineRequestError, PermanentAuthError, TransientDeployError

BASE = "http://engine.test/api/v1"


def _engine(handler) -> HttpWorkflowEngine:
    client = httpx.AsyncClient(
        base_url=BASE,
        transport=httpx.MockTransport(handler),
        headers={"X-N8N-API-KEY": "key"},
    )
    return HttpWorkflowEngine(BASE, api_key="key", client=client)


@pytest.mark.asyncio
async def test_create_workflow_posts_camel_case_definition():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["key"] = request.headers.get("X-N8N-API-KEY")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"id": 17, "name": "wf"}})

    engine = _engine(handler)
    definition = WorkflowDefinition.model_validate(
        {
            "name": "wf",
            "nodes": [{"name": "n", "type": "t", "typeVersion": 2, "webhookId": "w"}],
            "staticData": {},
        }
    )
    state = await engine.create_workflow(definition)
    await engine.close()

    assert state.id == "17"
    assert seen["method"] == "POST"
    assert seen["path"] == "/api/v1/workflows"
    assert seen["key"] == "key"
    assert seen["body"]["nodes"][0]["typeVersion"] == 2
    assert seen["body"]["nodes"][0]["webhookId"] == "w"
    assert "staticData" in seen["body"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error_type",
    [
        (401, PermanentAuthError),
        (403, PermanentAuthError),
        (429, TransientDeployError),
        (503, TransientDeployError),
        (404, EngineRequestError),
    ],
)
async def test_error_responses_are_classified(status, error_type):
    engine = _engine(lambda request: httpx.Response(status, text="nope"))

    with pytest.raises(error_type) as info:
        await engine.activate_workflow("wf-1")

    assert info.value.status_code == status
    assert info.value.operation == "activate_workflow"


@pytest.mark.asyncio
async def test_transport_failure_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    engine = _engine(handler)

    with pytest.raises(TransientDeployError):
        await engine.get_workflow("wf-1")


@pytest.mark.asyncio
async def test_unwrapped_body_is_rejected():
    engine = _engine(lambda request: httpx.Response(200, json={"id": "wf-1"}))

    with pytest.raises(EngineRequestError):
        await engine.get_workflow("wf-1")


@pytest.mark.asyncio
async def test_execute_and_poll_execution():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/execute"):
            assert json.loads(request.content)["data"]["test"] is True
            return httpx.Response(
                200, json={"data": {"executionId": 99, "status": "running"}}
            )
        return httpx.Response(
            200,
            json={
                "data": {
                    "status": "SUCCESS",
                    "startedAt": "2024-05-01T10:00:00",
                    "finishedAt": "2024-05-01T10:00:01.500000",
                }
            },
        )

    engine = _engine(handler)
    started = await engine.execute_workflow("wf-1", {"test": True})
    finished = await engine.get_execution(started.execution_id)

    assert started.execution_id == "99"
    assert started.workflow_id == "wf-1"
    assert finished.execution_id == "99"
    assert finished.succeeded
    assert finished.duration_ms == 1500
    assert finished.started_at.tzinfo is not None


@pytest.mark.asyncio
async def test_list_executions_sends_filters_and_sorts_newest_first():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(
            200,
            json={
                "data": [
                    {"id": "1", "status": "success", "startedAt": "2024-05-01T09:00:00Z"},
                    {"id": "2", "status": "error", "startedAt": "2024-05-01T11:00:00Z"},
                ]
            },
        )

    engine = _engine(handler)
    samples = await engine.list_executions("wf-1", limit=10)

    assert seen == {"workflowId": "wf-1", "limit": "10"}
    assert [s.execution_id for s in samples] == ["2", "1"]


@pytest.mark.asyncio
async def test_ping_reports_health_without_raising():
    healthy = _engine(
        lambda request: httpx.Response(
            200, json={"data": [{"id": "1"}]}, headers={"x-n8n-version": "1.2.3"}
        )
    )
    down = _engine(lambda request: httpx.Response(502, text="bad gateway"))

    up = await healthy.ping()
    failed = await down.ping()

    assert up.connected and up.workflow_count == 1 and up.version == "1.2.3"
    assert not failed.connected
    assert failed.status_code == 502
