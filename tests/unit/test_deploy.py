"""Deployment orchestrator tests."""

import pytest

from mailpilot.constants import TEMPLATE_DEPLOYMENT_FAILURE
from mailpilot.contracts import AutomationConfig, DeploymentStatus, can_transition
from mailpilot.deploy import DeploymentOrchestrator
from mailpilot.engine import InMemoryWorkflowEngine
from mailpilot.errors import (
    ConfigValidationError,
    ExhaustedRetries,
    PermanentAuthError,
    TransientDeployError,
)
from mailpilot.notifications import InMemoryNotifier
from mailpilot.persistence import InMemoryDeploymentRepository, UserRecord


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)

    @property
    def total(self):
        return sum(self.delays)


CONFIG = AutomationConfig.model_validate(
    {
        "businessCategories": ["New Leads"],
        "teamMembers": [{"name": "A", "email": "a@x.com", "notify": True}],
    }
)


async def _setup(engine=None):
    engine = engine or InMemoryWorkflowEngine()
    repo = InMemoryDeploymentRepository()
    await repo.save_user(UserRecord(user_id="u1", email="u1@x.com"))
    notifier = InMemoryNotifier()
    sleep = RecordingSleep()
    orchestrator = DeploymentOrchestrator(
        engine,
        repo,
        notifier,
        operator_email="ops@x.com",
        webhook_base_url="http://hooks/webhook",
        sleep=sleep,
    )
    return engine, repo, notifier, sleep, orchestrator


@pytest.mark.asyncio
async def test_deploy_success_records_active_snapshot():
    engine, repo, notifier, sleep, orchestrator = await _setup()

    result = await orchestrator.deploy("u1", CONFIG)

    assert result.status == DeploymentStatus.ACTIVE
    assert result.webhook_url == f"http://hooks/webhook/floworx-{result.workflow_id}"
    assert len(result.attempts) == 1 and result.attempts[0].succeeded
    assert engine.workflows[result.workflow_id].active
    assert sleep.delays == []

    record = await repo.get_deployment("u1")
    assert record.status == DeploymentStatus.ACTIVE
    assert record.external_workflow_id == result.workflow_id
    assert record.config_snapshot == CONFIG
    assert record.verification_execution_id == result.execution_id
    assert record.deployed_at is not None
    assert (await repo.get_user("u1")).automation_status == "active"
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_deploy_exhausts_three_attempts():
    engine, repo, notifier, sleep, orchestrator = await _setup()
    engine.fail_next("create_workflow", TransientDeployError("503 from engine"), times=10)

    with pytest.raises(ExhaustedRetries) as info:
        await orchestrator.deploy("u1", CONFIG)

    assert engine.calls.count("create_workflow") == 3
    assert sleep.delays == [5.0, 15.0]
    assert sleep.total >= 20.0
    assert len(info.value.attempts) == 3
    assert info.value.summary == "automation setup failed, retry available"
    assert isinstance(info.value.last_error, TransientDeployError)

    record = await repo.get_deployment("u1")
    assert record.status == DeploymentStatus.FAILED
    assert "503" in record.last_error
    user = await repo.get_user("u1")
    assert user.needs_manual_intervention
    assert user.automation_status == "failed"

    assert notifier.templates() == [TEMPLATE_DEPLOYMENT_FAILURE]
    escalation = notifier.sent[0]
    assert escalation.to == "ops@x.com"
    assert escalation.data["user_id"] == "u1"
    assert escalation.data["attempts"] == 3


@pytest.mark.asyncio
async def test_deploy_succeeds_on_second_attempt():
    engine, repo, notifier, sleep, orchestrator = await _setup()
    engine.fail_next("execute_workflow", TransientDeployError("connection reset"))

    result = await orchestrator.deploy("u1", CONFIG)

    assert sleep.delays == [5.0]
    assert [a.succeeded for a in result.attempts] == [False, True]
    assert list(engine.workflows) == [result.workflow_id]
    assert engine.calls.count("create_workflow") == 2
    record = await repo.get_deployment("u1")
    assert record.external_workflow_id == result.workflow_id
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_failed_verification_never_reaches_active():
    engine = InMemoryWorkflowEngine(execution_status="error")
    engine, repo, notifier, sleep, orchestrator = await _setup(engine)
    seen = []
    original_upsert = repo.upsert_deployment

    async def spy(record):
        seen.append(record.status)
        await original_upsert(record)

    repo.upsert_deployment = spy

    with pytest.raises(ExhaustedRetries) as info:
        await orchestrator.deploy("u1", CONFIG)

    assert DeploymentStatus.ACTIVE not in seen
    assert all(a.error_kind == "verification_failed" for a in info.value.attempts)
    assert engine.workflows == {}
    assert not engine.calls.count("activate_workflow")


@pytest.mark.asyncio
async def test_failed_liveness_probe_uses_an_attempt():
    engine, repo, notifier, sleep, orchestrator = await _setup()
    engine.healthy = False

    with pytest.raises(ExhaustedRetries):
        await orchestrator.deploy("u1", CONFIG)

    assert engine.calls.count("ping") == 3
    assert "create_workflow" not in engine.calls


@pytest.mark.asyncio
async def test_invalid_config_is_rejected_before_engine_calls():
    engine, repo, notifier, sleep, orchestrator = await _setup()

    with pytest.raises(ConfigValidationError):
        await orchestrator.deploy("u1", AutomationConfig())

    assert engine.calls == []
    assert await repo.get_deployment("u1") is None


@pytest.mark.asyncio
async def test_escalation_survives_notifier_failure():
    engine, repo, notifier, sleep, orchestrator = await _setup()
    engine.fail_next("create_workflow", PermanentAuthError("401"), times=3)
    notifier.fail_with = RuntimeError("mail server down")

    with pytest.raises(ExhaustedRetries):
        await orchestrator.deploy("u1", CONFIG)

    assert (await repo.get_deployment("u1")).status == DeploymentStatus.FAILED


@pytest.mark.asyncio
async def test_redeploy_retires_previous_workflow():
    engine, repo, notifier, sleep, orchestrator = await _setup()
    first = await orchestrator.deploy("u1", CONFIG)

    second = await orchestrator.deploy("u1", CONFIG)

    assert second.workflow_id != first.workflow_id
    assert first.workflow_id not in engine.workflows
    assert (await repo.get_deployment("u1")).external_workflow_id == second.workflow_id


@pytest.mark.asyncio
async def test_undeploy_removes_workflow_and_record():
    engine, repo, notifier, sleep, orchestrator = await _setup()
    result = await orchestrator.deploy("u1", CONFIG)

    assert await orchestrator.undeploy("u1")
    assert result.workflow_id not in engine.workflows
    assert await repo.get_deployment("u1") is None
    assert not await orchestrator.undeploy("u1")


def _record_statuses(repo):
    seen = []
    original_upsert = repo.upsert_deployment

    async def spy(record):
        seen.append(record.status)
        await original_upsert(record)

    repo.upsert_deployment = spy
    return seen


@pytest.mark.asyncio
async def test_first_deploy_persists_deploying_before_testing():
    engine, repo, notifier, sleep, orchestrator = await _setup()
    seen = _record_statuses(repo)

    await orchestrator.deploy("u1", CONFIG)

    assert seen == [
        DeploymentStatus.DEPLOYING,
        DeploymentStatus.TESTING,
        DeploymentStatus.ACTIVE,
    ]


@pytest.mark.asyncio
async def test_failed_redeploy_keeps_previous_workflow_tracked():
    engine, repo, notifier, sleep, orchestrator = await _setup()
    first = await orchestrator.deploy("u1", CONFIG)
    seen = _record_statuses(repo)
    engine.fail_next("execute_workflow", TransientDeployError("connection reset"), times=3)

    with pytest.raises(ExhaustedRetries):
        await orchestrator.deploy("u1", CONFIG)

    previous = DeploymentStatus.ACTIVE
    for status in seen:
        assert can_transition(previous, status), (previous, status)
        previous = status
    assert seen[0] == DeploymentStatus.DEPLOYING
    assert seen[-1] == DeploymentStatus.FAILED

    record = await repo.get_deployment("u1")
    assert record.status == DeploymentStatus.FAILED
    assert record.external_workflow_id == first.workflow_id
    assert list(engine.workflows) == [first.workflow_id]
    assert engine.workflows[first.workflow_id].active
    assert notifier.sent[-1].data["previous_workflow_id"] == first.workflow_id

    third = await orchestrator.deploy("u1", CONFIG)

    active = [wid for wid, wf in engine.workflows.items() if wf.active]
    assert active == [third.workflow_id]
    assert first.workflow_id not in engine.workflows
