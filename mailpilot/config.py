from __future__ import annotations

import os
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, model_validator

from .constants import (
    DEFAULT_BACKOFF_SCHEDULE,
    DEFAULT_ENGINE_TIMEOUT,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_SWEEP_CONCURRENCY,
    FIRST_EXECUTION_WINDOW_MINUTES,
    HEALTH_LOOKBACK_HOURS,
    MONITOR_INTERVAL_SECONDS,
)


class EngineConfig(BaseModel):
    """Connection settings for the external workflow engine."""

    backend: Literal["inmemory", "http"] = "inmemory"
    base_url: str = "http://localhost:5678/api/v1"
    api_key: Optional[str] = None
    api_key_header: str = "X-N8N-API-KEY"
    webhook_base_url: str = "http://localhost:5678/webhook"
    timeout: float = DEFAULT_ENGINE_TIMEOUT


class DeployConfig(BaseModel):
    """Retry and verification settings for deployments."""

    backoff_schedule: List[float] = Field(
        default_factory=lambda: list(DEFAULT_BACKOFF_SCHEDULE)
    )
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    verification_poll_attempts: int = 5
    verification_poll_interval: float = 2.0

    @model_validator(mode="after")
    def _check_schedule(self) -> "DeployConfig":
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.max_attempts - 1 > len(self.backoff_schedule):
            raise ValueError("backoff_schedule needs a delay for every retry")
        return self


class MonitorConfig(BaseModel):
    """Recovery sweep settings."""

    interval: float = MONITOR_INTERVAL_SECONDS
    lookback_hours: float = HEALTH_LOOKBACK_HOURS
    first_execution_window_minutes: float = FIRST_EXECUTION_WINDOW_MINUTES
    concurrency: int = DEFAULT_SWEEP_CONCURRENCY


class NotificationConfig(BaseModel):
    """Notification dispatch settings."""

    backend: Literal["log", "webhook"] = "log"
    webhook_url: Optional[str] = None
    operator_email: str = "support@floworx-iq.com"
    frontend_url: str = "http://localhost:3000"


class MailpilotConfig(BaseModel):
    """Top-level configuration model."""

    engine: EngineConfig = EngineConfig()
    deploy: DeployConfig = DeployConfig()
    monitor: MonitorConfig = MonitorConfig()
    notifications: NotificationConfig = NotificationConfig()
    database_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> MailpilotConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to MAILPILOT_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("MAILPILOT_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = MailpilotConfig(**data)
    else:
        config = MailpilotConfig()

    env_db_url = os.getenv("MAILPILOT_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url

    engine_url = os.getenv("MAILPILOT_ENGINE_URL")
    if engine_url:
        config.engine.base_url = engine_url
    api_key = os.getenv("MAILPILOT_ENGINE_API_KEY") or os.getenv("N8N_API_KEY")
    if api_key:
        config.engine.api_key = api_key
    engine_backend = os.getenv("MAILPILOT_ENGINE_BACKEND")
    if engine_backend:
        config.engine.backend = engine_backend.lower()

    operator_email = os.getenv("MAILPILOT_OPERATOR_EMAIL")
    if operator_email:
        config.notifications.operator_email = operator_email
    frontend_url = os.getenv("MAILPILOT_FRONTEND_URL")
    if frontend_url:
        config.notifications.frontend_url = frontend_url
    return config
