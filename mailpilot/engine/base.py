"""Base interface for the external workflow engine."""

from __future__ import annotations

import abc
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..contracts import (
    EngineHealth,
    ExecutionSample,
    WorkflowDefinition,
    WorkflowState,
    utcnow,
)


class WorkflowEngine(metaclass=abc.ABCMeta):
    """Abstract client for the engine that hosts deployed workflows.

    Implementations raise members of :class:`~mailpilot.errors.EngineError`
    for every failed call, except :meth:`ping` which reports failure in its
    result.
    """

    async def connect(self) -> None:
        """Open underlying connections (no-op by default)."""
        pass

    async def close(self) -> None:
        """Release underlying connections (no-op by default)."""
        pass

    async def __aenter__(self) -> "WorkflowEngine":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @abc.abstractmethod
    async def ping(self) -> EngineHealth:
        """Liveness probe; never raises for engine-side failures."""
        raise NotImplementedError

    @abc.abstractmethod
    async def create_workflow(self, definition: WorkflowDefinition) -> WorkflowState:
        raise NotImplementedError

    @abc.abstractmethod
    async def get_workflow(self, workflow_id: str) -> WorkflowState:
        raise NotImplementedError

    @abc.abstractmethod
    async def activate_workflow(self, workflow_id: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def deactivate_workflow(self, workflow_id: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def delete_workflow(self, workflow_id: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def execute_workflow(
        self, workflow_id: str, payload: Dict[str, Any]
    ) -> ExecutionSample:
        """Run ``workflow_id`` once with ``payload`` as its input."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get_execution(self, execution_id: str) -> ExecutionSample:
        raise NotImplementedError

    @abc.abstractmethod
    async def list_executions(
        self, workflow_id: str, limit: int = 100
    ) -> List[ExecutionSample]:
        """Return the latest executions of ``workflow_id``, newest first."""
        raise NotImplementedError

    async def recent_executions(
        self,
        workflow_id: str,
        window: timedelta,
        now: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[ExecutionSample]:
        """Executions of ``workflow_id`` that started within ``window``."""
        since = (now or utcnow()) - window
        return [
            sample
            for sample in await self.list_executions(workflow_id, limit=limit)
            if sample.started_at is not None and sample.started_at >= since
        ]
