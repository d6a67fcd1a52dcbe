"""Post-deployment verification with a synthetic email event."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from .constants import PENDING_EXECUTION_STATUSES
from .contracts import ExecutionSample, VerificationResult, utcnow
from .engine import WorkflowEngine
from .errors import EngineError, VerificationFailure
from .utils.retry import Sleep

logger = logging.getLogger(__name__)


def synthetic_event(now: Optional[datetime] = None) -> Dict[str, Any]:
    """Representative inbound email used to prove a workflow executes."""
    return {
        "test": True,
        "subject": "Test: Hot tub installation quote request",
        "from": "customer@example.com",
        "body": (
            "Hi, I am interested in getting a quote for a new hot tub installation. "
            "Can you please provide pricing and availability?"
        ),
        "timestamp": (now or utcnow()).isoformat(),
    }


class VerificationRunner:
    """Submits one synthetic event to a workflow and inspects the outcome.

    A structurally valid workflow can still fail at run time, so creation
    alone is not treated as proof that a deployment works.
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        poll_attempts: int = 5,
        poll_interval: float = 2.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self._sleep = sleep

    async def verify(self, workflow_id: str) -> VerificationResult:
        """Run the synthetic event through ``workflow_id``.

        Succeeds only when the execution ends as ``success`` or
        ``completed``. Engine errors are reported in the result, not raised.
        """
        try:
            sample = await self._engine.execute_workflow(workflow_id, synthetic_event())
            sample = await self._await_outcome(sample)
        except EngineError as exc:
            logger.warning(f"Verification of workflow {workflow_id} failed: {exc}")
            return VerificationResult(success=False, error=str(exc))

        if sample.succeeded:
            logger.info(
                f"Workflow {workflow_id} passed verification (execution {sample.execution_id})"
            )
            return VerificationResult(
                success=True, execution_id=sample.execution_id, status=sample.status
            )

        logger.warning(
            f"Workflow {workflow_id} verification execution {sample.execution_id} "
            f"ended with status {sample.status}"
        )
        return VerificationResult(
            success=False,
            execution_id=sample.execution_id,
            status=sample.status,
            error=f"Test execution failed with status: {sample.status}",
        )

    async def require(self, workflow_id: str) -> VerificationResult:
        """Like :meth:`verify` but raise :class:`VerificationFailure` on failure."""
        result = await self.verify(workflow_id)
        if not result.success:
            raise VerificationFailure(
                result.error or "verification failed",
                raw_status=result.status,
                execution_id=result.execution_id,
            )
        return result

    async def _await_outcome(self, sample: ExecutionSample) -> ExecutionSample:
        polls = 0
        while sample.status in PENDING_EXECUTION_STATUSES and polls < self.poll_attempts:
            await self._sleep(self.poll_interval)
            sample = await self._engine.get_execution(sample.execution_id)
            polls += 1
        return sample
