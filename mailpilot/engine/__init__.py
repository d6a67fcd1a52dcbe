"""Workflow engine factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import MailpilotConfig, load_config
from .base import WorkflowEngine
from .inmemory import InMemoryWorkflowEngine


def get_engine(
    backend: Optional[str] = None, config: Optional[MailpilotConfig] = None
) -> WorkflowEngine:
    """Factory function to get the configured workflow engine client."""

    config = config or load_config()
    backend = (
        backend or os.getenv("MAILPILOT_ENGINE_BACKEND") or config.engine.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryWorkflowEngine()
    elif backend == "http":
        from .http import HttpWorkflowEngine

        engine_conf = config.engine
        return HttpWorkflowEngine(
            base_url=engine_conf.base_url,
            api_key=engine_conf.api_key,
            api_key_header=engine_conf.api_key_header,
            timeout=engine_conf.timeout,
        )
    else:
        raise ValueError(f"Unsupported engine backend: {backend}")


def webhook_url(base_url: str, workflow_id: str) -> str:
    """Public webhook address of a deployed workflow."""
    return f"{base_url.rstrip('/')}/floworx-{workflow_id}"


__all__ = ["WorkflowEngine", "InMemoryWorkflowEngine", "get_engine", "webhook_url"]
