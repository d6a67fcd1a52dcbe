"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from mailpilot.config import DeployConfig, load_config
from mailpilot.engine import InMemoryWorkflowEngine, get_engine
from mailpilot.engine.http import HttpWorkflowEngine
from mailpilot.notifications import LoggingNotifier, WebhookNotifier, get_notifier
from mailpilot.persistence import (
    InMemoryDeploymentRepository,
    SQLiteDeploymentRepository,
    get_repository,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "MAILPILOT_CONFIG",
        "MAILPILOT_DATABASE_URL",
        "DATABASE_URL",
        "MAILPILOT_ENGINE_URL",
        "MAILPILOT_ENGINE_API_KEY",
        "N8N_API_KEY",
        "MAILPILOT_ENGINE_BACKEND",
        "MAILPILOT_OPERATOR_EMAIL",
        "MAILPILOT_FRONTEND_URL",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_config_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    config = load_config()

    assert config.engine.backend == "inmemory"
    assert config.deploy.backoff_schedule == [5.0, 15.0, 30.0]
    assert config.deploy.max_attempts == 3
    assert config.monitor.interval == 300
    assert config.database_url is None


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
engine:
  backend: http
  base_url: http://engine:5678/api/v1
deploy:
  backoff_schedule: [1, 2]
  max_attempts: 2
monitor:
  concurrency: 5
"""
    )
    monkeypatch.setenv("MAILPILOT_CONFIG", str(config_path))
    monkeypatch.setenv("N8N_API_KEY", "secret")
    monkeypatch.setenv("MAILPILOT_OPERATOR_EMAIL", "ops@example.com")

    config = load_config()
    assert config.engine.backend == "http"
    assert config.engine.base_url == "http://engine:5678/api/v1"
    assert config.engine.api_key == "secret"
    assert config.deploy.backoff_schedule == [1.0, 2.0]
    assert config.monitor.concurrency == 5
    assert config.notifications.operator_email == "ops@example.com"


def test_deploy_config_needs_delay_for_every_retry():
    with pytest.raises(ValidationError):
        DeployConfig(backoff_schedule=[5], max_attempts=3)
    with pytest.raises(ValidationError):
        DeployConfig(max_attempts=0)


def test_get_engine_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
engine:
  backend: http
  base_url: http://confighost:5678/api/v1/
  timeout: 12
"""
    )
    monkeypatch.setenv("MAILPILOT_CONFIG", str(config_path))

    engine = get_engine()
    assert isinstance(engine, HttpWorkflowEngine)
    assert engine.base_url == "http://confighost:5678/api/v1"
    assert engine.timeout == 12

    assert isinstance(get_engine("inmemory"), InMemoryWorkflowEngine)


def test_get_repository_selects_backend(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert isinstance(get_repository(), InMemoryDeploymentRepository)

    monkeypatch.setenv("MAILPILOT_DATABASE_URL", f"sqlite://{tmp_path / 'mp.db'}")
    assert isinstance(get_repository(), SQLiteDeploymentRepository)

    with pytest.raises(ValueError):
        get_repository("mysql://localhost/db")


def test_get_notifier_backends(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = load_config()
    assert isinstance(get_notifier(config), LoggingNotifier)

    config.notifications.backend = "webhook"
    with pytest.raises(ValueError):
        get_notifier(config)
    config.notifications.webhook_url = "http://mailer/send"
    assert isinstance(get_notifier(config), WebhookNotifier)
