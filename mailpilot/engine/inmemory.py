"""In-memory workflow engine for tests and local runs."""

from __future__ import annotations

import asyncio
import itertools
from collections import defaultdict, deque
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from ..contracts import (
    EngineHealth,
    ExecutionSample,
    WorkflowDefinition,
    WorkflowState,
    utcnow,
)
from ..errors import EngineError, EngineRequestError
from .base import WorkflowEngine


class InMemoryWorkflowEngine(WorkflowEngine):
    """Simple in-process engine.

    Workflows and executions live in dictionaries. Failures can be scripted
    per operation with :meth:`fail_next`, and the outcome of every execution
    started through :meth:`execute_workflow` follows ``execution_status``.
    """

    def __init__(self, execution_status: str = "success") -> None:
        self.execution_status = execution_status
        self.healthy = True
        self.workflows: Dict[str, WorkflowState] = {}
        self.definitions: Dict[str, WorkflowDefinition] = {}
        self.executions: Dict[str, ExecutionSample] = {}
        self.calls: List[str] = []
        self._failures: Dict[str, Deque[EngineError]] = defaultdict(deque)
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Scripting helpers
    def fail_next(self, operation: str, error: EngineError, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``."""
        self._failures[operation].extend([error] * times)

    def record_execution(
        self,
        workflow_id: str,
        status: str = "success",
        started_at: Optional[datetime] = None,
        finished_at: Optional[datetime] = None,
    ) -> ExecutionSample:
        """Add an execution as if the workflow had run on its own."""
        started = started_at or utcnow()
        sample = ExecutionSample(
            execution_id=f"exec-{next(self._ids)}",
            workflow_id=workflow_id,
            status=status,
            started_at=started,
            finished_at=finished_at or started,
        )
        self.executions[sample.execution_id] = sample
        return sample

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        queue = self._failures.get(operation)
        if queue:
            raise queue.popleft()

    def _require(self, workflow_id: str, operation: str) -> WorkflowState:
        state = self.workflows.get(workflow_id)
        if state is None:
            raise EngineRequestError(
                f"workflow {workflow_id} not found",
                operation=operation,
                status_code=404,
            )
        return state

    # ------------------------------------------------------------------
    # Engine API
    async def ping(self) -> EngineHealth:
        try:
            self._enter("ping")
        except EngineError as exc:
            return EngineHealth(connected=False, status="error", error=str(exc))
        if not self.healthy:
            return EngineHealth(connected=False, status="error", error="engine offline")
        return EngineHealth(connected=True, workflow_count=len(self.workflows))

    async def create_workflow(self, definition: WorkflowDefinition) -> WorkflowState:
        self._enter("create_workflow")
        async with self._lock:
            workflow_id = f"wf-{next(self._ids)}"
            state = WorkflowState(id=workflow_id, name=definition.name, active=False)
            self.workflows[workflow_id] = state
            self.definitions[workflow_id] = definition.model_copy(deep=True)
        return state.model_copy()

    async def get_workflow(self, workflow_id: str) -> WorkflowState:
        self._enter("get_workflow")
        return self._require(workflow_id, "get_workflow").model_copy()

    async def activate_workflow(self, workflow_id: str) -> None:
        self._enter("activate_workflow")
        self._require(workflow_id, "activate_workflow").active = True

    async def deactivate_workflow(self, workflow_id: str) -> None:
        self._enter("deactivate_workflow")
        self._require(workflow_id, "deactivate_workflow").active = False

    async def delete_workflow(self, workflow_id: str) -> None:
        self._enter("delete_workflow")
        self._require(workflow_id, "delete_workflow")
        async with self._lock:
            self.workflows.pop(workflow_id, None)
            self.definitions.pop(workflow_id, None)

    async def execute_workflow(
        self, workflow_id: str, payload: Dict[str, Any]
    ) -> ExecutionSample:
        self._enter("execute_workflow")
        self._require(workflow_id, "execute_workflow")
        return self.record_execution(workflow_id, status=self.execution_status)

    async def get_execution(self, execution_id: str) -> ExecutionSample:
        self._enter("get_execution")
        sample = self.executions.get(execution_id)
        if sample is None:
            raise EngineRequestError(
                f"execution {execution_id} not found",
                operation="get_execution",
                status_code=404,
            )
        return sample

    async def list_executions(
        self, workflow_id: str, limit: int = 100
    ) -> List[ExecutionSample]:
        self._enter("list_executions")
        samples = [s for s in self.executions.values() if s.workflow_id == workflow_id]
        samples.sort(key=lambda s: s.started_at or utcnow(), reverse=True)
        return samples[:limit]
