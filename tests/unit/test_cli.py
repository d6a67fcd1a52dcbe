import asyncio

import pytest
from typer.testing import CliRunner

from mailpilot.cli import app
from mailpilot.contracts import DeploymentStatus
from mailpilot.persistence import SQLiteDeploymentRepository, UserRecord

runner = CliRunner()

AUTOMATION_YAML = """
businessCategories:
  - name: New Leads
teamMembers:
  - name: A
    email: a@x.com
    notify: true
"""


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in ("MAILPILOT_CONFIG", "DATABASE_URL", "MAILPILOT_ENGINE_BACKEND"):
        monkeypatch.delenv(name, raising=False)
    db_path = tmp_path / "mailpilot.db"
    monkeypatch.setenv("MAILPILOT_DATABASE_URL", f"sqlite://{db_path}")
    return tmp_path


def test_validate_config_command(workspace):
    good = workspace / "good.yaml"
    good.write_text(AUTOMATION_YAML)
    bad = workspace / "bad.yaml"
    bad.write_text("businessCategories: []\n")

    ok = runner.invoke(app, ["validate-config", str(good)])
    assert ok.exit_code == 0, ok.stdout
    assert "Config is valid" in ok.stdout

    rejected = runner.invoke(app, ["validate-config", str(bad)])
    assert rejected.exit_code == 1
    assert "At least one business category is required" in rejected.stdout


def test_deploy_command_records_deployment(workspace):
    config_file = workspace / "automation.yaml"
    config_file.write_text(AUTOMATION_YAML)
    repo = SQLiteDeploymentRepository(workspace / "mailpilot.db")
    asyncio.run(repo.save_user(UserRecord(user_id="u1", email="u1@x.com")))

    result = runner.invoke(app, ["deploy", "u1", "--config-file", str(config_file)])

    assert result.exit_code == 0, result.stdout
    assert "Deployed workflow" in result.stdout
    assert "floworx-" in result.stdout
    record = asyncio.run(repo.get_deployment("u1"))
    assert record.status == DeploymentStatus.ACTIVE


def test_deploy_command_without_profile_fails(workspace):
    result = runner.invoke(app, ["deploy", "nobody"])

    assert result.exit_code == 1
    assert "No business profile" in result.stdout


def test_sweep_without_deployments(workspace):
    result = runner.invoke(app, ["sweep"])

    assert result.exit_code == 0
    assert "No deployments to sweep" in result.stdout


def test_onboarding_command_lists_steps(workspace):
    repo = SQLiteDeploymentRepository(workspace / "mailpilot.db")
    asyncio.run(
        repo.save_user(UserRecord(user_id="u1", email="u1@x.com", email_verified=True))
    )

    result = runner.invoke(app, ["onboarding", "u1"])

    assert result.exit_code == 0, result.stdout
    assert "Onboarding for u1: 14%" in result.stdout
    assert "[x] email_verified" in result.stdout
    assert "Next: Select your business type" in result.stdout


def test_engine_health_command(workspace):
    result = runner.invoke(app, ["engine", "health"])

    assert result.exit_code == 0
    assert "Engine healthy" in result.stdout
