"""Deployment orchestration: customize, create, verify, activate, record."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

from .constants import (
    DEFAULT_BACKOFF_SCHEDULE,
    DEFAULT_MAX_ATTEMPTS,
    TEMPLATE_DEPLOYMENT_FAILURE,
)
from .contracts import (
    AutomationConfig,
    DeployResult,
    DeploymentAttempt,
    DeploymentStatus,
    WorkflowDefinition,
    WorkflowState,
    ensure_transition,
    utcnow,
)
from .customize import customize, master_template, validate_config, workflow_name
from .engine import WorkflowEngine, webhook_url
from .errors import (
    ConfigValidationError,
    EngineError,
    ExhaustedRetries,
    MailpilotError,
    TransientDeployError,
    VerificationFailure,
)
from .locks import UserLocks
from .notifications import Notifier, dispatch
from .persistence import DeploymentRecord, DeploymentRepository
from .utils.retry import Sleep, schedule_retry
from .verify import VerificationRunner

logger = logging.getLogger(__name__)


class DeploymentRun:
    """State owned by a single :meth:`DeploymentOrchestrator.deploy` call."""

    def __init__(
        self,
        user_id: str,
        config: AutomationConfig,
        previous: Optional[DeploymentRecord] = None,
    ) -> None:
        self.user_id = user_id
        self.config = config.model_copy(deep=True)
        self.previous = previous
        self.status: Optional[DeploymentStatus] = previous.status if previous else None
        self.attempts: List[DeploymentAttempt] = []
        self.workflow: Optional[WorkflowState] = None
        self.recorded = previous is not None

    @property
    def previous_workflow_id(self) -> Optional[str]:
        return self.previous.external_workflow_id if self.previous else None

    def move_to(self, status: DeploymentStatus) -> None:
        if status == self.status:
            return
        ensure_transition(self.status, status)
        logger.debug(
            f"Deployment for user {self.user_id}: "
            f"{self.status.value if self.status else 'not_deployed'} -> {status.value}"
        )
        self.status = status

    def baseline(self, status: DeploymentStatus) -> DeploymentRecord:
        """Record of the workflow that stays in service if this run fails."""
        previous = self.previous
        return DeploymentRecord(
            user_id=self.user_id,
            external_workflow_id=self.previous_workflow_id,
            name=(previous.name if previous and previous.name else workflow_name(self.user_id)),
            status=status,
            config_snapshot=self.config,
            verification_execution_id=(
                previous.verification_execution_id if previous else None
            ),
            deployed_at=previous.deployed_at if previous else None,
        )


class DeploymentOrchestrator:
    """Deploys a user's automation with bounded, fixed-schedule retries.

    Each attempt probes the engine, creates the workflow, verifies it with a
    synthetic event and activates it. A failure anywhere in that unit fails
    the whole attempt. After the last attempt the deployment is marked
    ``failed`` and an operator is notified.
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        repository: DeploymentRepository,
        notifier: Notifier,
        locks: Optional[UserLocks] = None,
        verifier: Optional[VerificationRunner] = None,
        template: Optional[WorkflowDefinition] = None,
        backoff_schedule: Sequence[float] = DEFAULT_BACKOFF_SCHEDULE,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        operator_email: str = "support@floworx-iq.com",
        webhook_base_url: Optional[str] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self._repository = repository
        self._notifier = notifier
        self._locks = locks if locks is not None else UserLocks()
        self._verifier = (
            verifier if verifier is not None else VerificationRunner(engine, sleep=sleep)
        )
        self._template = template if template is not None else master_template()
        self.backoff_schedule = tuple(backoff_schedule)
        self.max_attempts = max_attempts
        self.operator_email = operator_email
        self.webhook_base_url = webhook_base_url
        self._sleep = sleep

    async def deploy(self, user_id: str, config: AutomationConfig) -> DeployResult:
        """Deploy ``config`` for ``user_id``.

        Raises:
            ConfigValidationError: The configuration is unusable. Nothing
                was sent to the engine.
            ExhaustedRetries: Every attempt failed. The deployment is marked
                failed and an operator has been notified.
        """
        report = validate_config(config)
        if not report.valid:
            raise ConfigValidationError(report.errors)
        for warning in report.warnings:
            logger.warning(f"Config warning for user {user_id}: {warning}")

        async with self._locks.hold(user_id):
            return await self._deploy(user_id, config)

    async def undeploy(self, user_id: str) -> bool:
        """Deactivate and delete the user's workflow and drop its record."""
        async with self._locks.hold(user_id):
            record = await self._repository.get_deployment(user_id)
            if record is None:
                return False
            if record.external_workflow_id:
                await self._engine.deactivate_workflow(record.external_workflow_id)
                await self._engine.delete_workflow(record.external_workflow_id)
            await self._repository.delete_deployment(user_id)
            await self._repository.update_user(user_id, automation_status=None)
            logger.info(f"Removed deployment for user {user_id}")
            return True

    # ------------------------------------------------------------------
    async def _deploy(self, user_id: str, config: AutomationConfig) -> DeployResult:
        run = DeploymentRun(
            user_id, config, previous=await self._repository.get_deployment(user_id)
        )
        definition = customize(self._template, user_id, run.config)
        last_error: Optional[MailpilotError] = None

        for attempt_number in range(1, self.max_attempts + 1):
            if run.recorded:
                # point back at the workflow still in service between attempts
                await self._save(run, run.baseline(DeploymentStatus.DEPLOYING))
            else:
                run.move_to(DeploymentStatus.DEPLOYING)
            logger.info(
                f"Attempting deployment for user {user_id} "
                f"(attempt {attempt_number}/{self.max_attempts})"
            )
            try:
                result = await self._attempt(run, definition)
            except (EngineError, VerificationFailure) as exc:
                last_error = exc
                run.attempts.append(
                    DeploymentAttempt(
                        attempt_number=attempt_number, error=str(exc), error_kind=exc.kind
                    )
                )
                logger.error(
                    f"Deployment attempt {attempt_number} failed for user {user_id}: {exc}"
                )
                await self._discard_attempt(run)
                if attempt_number < self.max_attempts:
                    delay = await schedule_retry(
                        attempt_number, self.backoff_schedule, sleep=self._sleep
                    )
                    logger.info(f"Retried deployment for user {user_id} after {delay}s")
                continue

            run.attempts.append(DeploymentAttempt(attempt_number=attempt_number))
            result.attempts = list(run.attempts)
            logger.info(
                f"Deployment succeeded for user {user_id} "
                f"with workflow {result.workflow_id} on attempt {attempt_number}"
            )
            return result

        await self._mark_failed(run, last_error)
        raise ExhaustedRetries(
            f"deployment failed after {self.max_attempts} attempts: {last_error}",
            last_error=last_error,
            attempts=run.attempts,
        )

    async def _attempt(
        self, run: DeploymentRun, definition: WorkflowDefinition
    ) -> DeployResult:
        health = await self._engine.ping()
        if not health.connected:
            raise TransientDeployError(
                f"engine unavailable: {health.error}",
                operation="ping",
                status_code=health.status_code,
            )

        workflow = await self._engine.create_workflow(definition)
        run.workflow = workflow
        record = DeploymentRecord(
            user_id=run.user_id,
            external_workflow_id=workflow.id,
            name=workflow.name or definition.name,
            status=DeploymentStatus.DEPLOYING,
            config_snapshot=run.config,
        )
        if not run.recorded:
            await self._save(run, record)
        record = await self._save(
            run, record.model_copy(update={"status": DeploymentStatus.TESTING})
        )

        verification = await self._verifier.require(workflow.id)
        await self._engine.activate_workflow(workflow.id)

        record = await self._save(
            run,
            record.model_copy(
                update={
                    "status": DeploymentStatus.ACTIVE,
                    "verification_execution_id": verification.execution_id,
                    "deployed_at": utcnow(),
                }
            ),
        )
        await self._repository.update_user(
            run.user_id,
            automation_status="active",
            needs_manual_intervention=False,
            last_error=None,
        )
        await self._retire_previous(run)

        return DeployResult(
            user_id=run.user_id,
            workflow_id=workflow.id,
            workflow_name=record.name,
            status=DeploymentStatus.ACTIVE,
            execution_id=verification.execution_id,
            webhook_url=(
                webhook_url(self.webhook_base_url, workflow.id)
                if self.webhook_base_url
                else None
            ),
        )

    async def _save(self, run: DeploymentRun, record: DeploymentRecord) -> DeploymentRecord:
        run.move_to(record.status)
        await self._repository.upsert_deployment(record)
        run.recorded = True
        return record

    async def _discard_attempt(self, run: DeploymentRun) -> None:
        """Delete the workflow a failed attempt left behind on the engine."""
        if run.workflow is None:
            return
        workflow_id = run.workflow.id
        run.workflow = None
        try:
            await self._engine.delete_workflow(workflow_id)
        except EngineError as exc:
            logger.warning(f"Could not delete failed workflow {workflow_id}: {exc}")

    async def _retire_previous(self, run: DeploymentRun) -> None:
        previous = run.previous
        if previous is None or not previous.external_workflow_id:
            return
        if run.workflow is not None and previous.external_workflow_id == run.workflow.id:
            return
        try:
            await self._engine.deactivate_workflow(previous.external_workflow_id)
            await self._engine.delete_workflow(previous.external_workflow_id)
        except EngineError as exc:
            logger.warning(
                f"Could not retire previous workflow {previous.external_workflow_id} "
                f"for user {run.user_id}: {exc}"
            )

    async def _mark_failed(
        self, run: DeploymentRun, last_error: Optional[MailpilotError]
    ) -> None:
        message = str(last_error) if last_error else "unknown error"
        # failed attempts delete their workflows; an earlier one stays recorded
        await self._save(
            run,
            run.baseline(DeploymentStatus.FAILED).model_copy(
                update={"last_error": message}
            ),
        )
        await self._repository.update_user(
            run.user_id,
            automation_status="failed",
            needs_manual_intervention=True,
            last_error=message,
        )

        previous_id = run.previous_workflow_id
        if previous_id:
            logger.warning(
                f"Previous workflow {previous_id} for user {run.user_id} "
                "stays in service after the failed redeploy"
            )
        logger.error(
            f"Deployment for user {run.user_id} failed after {len(run.attempts)} "
            f"attempts, escalating to {self.operator_email}"
        )
        await dispatch(
            self._notifier,
            self.operator_email,
            TEMPLATE_DEPLOYMENT_FAILURE,
            {
                "user_id": run.user_id,
                "error": message,
                "attempts": len(run.attempts),
                "previous_workflow_id": previous_id,
                "action_required": "Manual deployment assistance needed",
            },
        )
