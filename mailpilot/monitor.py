"""Recovery and health supervision of deployed workflows."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Sequence

from .constants import (
    DEFAULT_SWEEP_CONCURRENCY,
    HEALTH_LOOKBACK_HOURS,
    METRICS_EXECUTION_LIMIT,
    MONITOR_INTERVAL_SECONDS,
    OAUTH_EXPIRED,
    PENDING_EXECUTION_STATUSES,
    TEMPLATE_REAUTH,
)
from .contracts import (
    AutomationStatus,
    DeploymentStatus,
    ExecutionSample,
    SweepAction,
    SweepResult,
    WorkflowMetrics,
    ensure_transition,
    utcnow,
)
from .engine import WorkflowEngine
from .errors import EngineError, PermanentAuthError
from .locks import UserLocks
from .notifications import Notifier, dispatch
from .persistence import DeploymentRecord, DeploymentRepository, UserRecord

logger = logging.getLogger(__name__)

SUPERVISED_STATUSES = (
    DeploymentStatus.ACTIVE,
    DeploymentStatus.INACTIVE,
    DeploymentStatus.NEEDS_REAUTH,
)


def summarize_executions(
    samples: Sequence[ExecutionSample], now: Optional[datetime] = None
) -> WorkflowMetrics:
    """Success rate, volume and timing over ``samples``."""
    now = now or utcnow()
    successful = [s for s in samples if s.succeeded]
    failed = [
        s
        for s in samples
        if not s.succeeded and s.status not in PENDING_EXECUTION_STATUSES
    ]
    durations = [s.duration_ms for s in successful if s.duration_ms is not None]
    started = [s.started_at for s in samples if s.started_at is not None]
    return WorkflowMetrics(
        total=len(samples),
        successful=len(successful),
        failed=len(failed),
        success_rate=(len(successful) / len(samples) * 100) if samples else 0.0,
        last_24_hours=sum(1 for t in started if t > now - timedelta(hours=24)),
        last_7_days=sum(1 for t in started if t > now - timedelta(days=7)),
        average_execution_ms=round(sum(durations) / len(durations)) if durations else 0,
        last_execution=max(started) if started else None,
    )


class RecoveryMonitor:
    """Periodic sweep that keeps deployed workflows running.

    An inactive workflow gets exactly one reactivation call. If that fails
    the user's mailbox credential is assumed revoked or expired and the
    re-authorization flow takes over; reactivation is not retried.
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        repository: DeploymentRepository,
        notifier: Notifier,
        locks: Optional[UserLocks] = None,
        lookback: timedelta = timedelta(hours=HEALTH_LOOKBACK_HOURS),
        interval: float = MONITOR_INTERVAL_SECONDS,
        concurrency: int = DEFAULT_SWEEP_CONCURRENCY,
        frontend_url: str = "http://localhost:3000",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._engine = engine
        self._repository = repository
        self._notifier = notifier
        self._locks = locks if locks is not None else UserLocks()
        self.lookback = lookback
        self.interval = interval
        self.concurrency = concurrency
        self.frontend_url = frontend_url.rstrip("/")
        self._clock = clock

    # ------------------------------------------------------------------
    # Sweeps
    async def sweep(
        self, user_id: str, lookback: Optional[timedelta] = None
    ) -> SweepResult:
        """Check the user's deployment, reactivating or escalating as needed."""
        async with self._locks.hold(user_id):
            return await self._sweep(user_id, lookback or self.lookback)

    async def sweep_all(
        self, user_ids: Optional[Iterable[str]] = None
    ) -> List[SweepResult]:
        """Sweep many users concurrently, at most ``concurrency`` at a time.

        Without ``user_ids`` every user with a supervised deployment is swept.
        """
        if user_ids is None:
            records = await self._repository.list_deployments(SUPERVISED_STATUSES)
            user_ids = [r.user_id for r in records]
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(user_id: str) -> SweepResult:
            async with semaphore:
                try:
                    return await self.sweep(user_id)
                except Exception as e:
                    logger.exception(f"Sweep failed for user {user_id}")
                    return SweepResult(user_id=user_id, error=str(e))

        return list(await asyncio.gather(*(_bounded(u) for u in user_ids)))

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        """Sweep every ``interval`` seconds until ``stop`` is set or cancelled."""
        stop = stop or asyncio.Event()
        logger.info(f"Recovery monitor started (interval {self.interval}s)")
        while not stop.is_set():
            try:
                results = await self.sweep_all()
            except Exception:
                logger.exception("Sweep failed, retrying after the interval")
            else:
                actions = sum(len(r.actions_taken) for r in results)
                logger.info(
                    f"Sweep finished: {len(results)} users, {actions} actions taken"
                )
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue
        logger.info("Recovery monitor stopped")

    async def _sweep(self, user_id: str, lookback: timedelta) -> SweepResult:
        result = SweepResult(user_id=user_id)
        record = await self._repository.get_deployment(user_id)
        if (
            record is None
            or record.status not in SUPERVISED_STATUSES
            or not record.external_workflow_id
        ):
            logger.debug(f"No supervised deployment for user {user_id}")
            return result

        workflow_id = record.external_workflow_id
        result.workflows_checked = 1
        user = await self._repository.get_user(user_id)

        try:
            state = await self._engine.get_workflow(workflow_id)
        except EngineError as exc:
            logger.warning(f"Could not read status of workflow {workflow_id}: {exc}")
            result.health[workflow_id] = "unknown"
            result.actions_taken.append(
                SweepAction(workflow_id=workflow_id, action="status_unavailable", detail=str(exc))
            )
            return result

        if not state.active:
            logger.warning(f"Workflow {workflow_id} is inactive for user {user_id}")
            action = await self._handle_inactive(record)
            result.actions_taken.append(action)
            if action.action != "reactivated":
                result.health[workflow_id] = "needs_reauth"
                return result
        elif record.status != DeploymentStatus.ACTIVE:
            # reactivated outside the sweep, e.g. after the user re-authorized
            await self._set_status(record, DeploymentStatus.ACTIVE)
            await self._repository.update_user(
                user_id, automation_status="active", needs_reauth=False
            )

        try:
            recent = await self._engine.recent_executions(
                workflow_id, lookback, now=self._clock()
            )
        except EngineError as exc:
            logger.warning(f"Could not list executions of workflow {workflow_id}: {exc}")
            result.health[workflow_id] = "unknown"
            result.actions_taken.append(
                SweepAction(workflow_id=workflow_id, action="status_unavailable", detail=str(exc))
            )
            return result

        result.recent_executions[workflow_id] = len(recent)
        if recent:
            result.health[workflow_id] = "healthy"
        elif user is not None and user.oauth_status == OAUTH_EXPIRED:
            logger.warning(
                f"No recent executions for workflow {workflow_id} and "
                f"authorization of user {user_id} has expired"
            )
            result.health[workflow_id] = "auth_expired"
        else:
            logger.info(
                f"Workflow {workflow_id} has no executions in the last {lookback} "
                "but authorization is valid"
            )
            result.health[workflow_id] = "waiting"
        return result

    async def _handle_inactive(self, record: DeploymentRecord) -> SweepAction:
        workflow_id = record.external_workflow_id
        if record.status == DeploymentStatus.ACTIVE:
            await self._set_status(record, DeploymentStatus.INACTIVE)
        try:
            await self._engine.activate_workflow(workflow_id)
        except EngineError as exc:
            error = PermanentAuthError(
                f"reactivation of workflow {workflow_id} failed: {exc}",
                operation="activate_workflow",
                status_code=exc.status_code,
            )
            logger.error(f"{error}; routing user {record.user_id} to re-authorization")
            await self._set_status(record, DeploymentStatus.NEEDS_REAUTH)
            notified = await self.handle_reauth(record.user_id)
            return SweepAction(
                workflow_id=workflow_id,
                action="reauth_required" if notified else "reauth_pending",
                detail=str(error),
            )

        logger.info(f"Reactivated workflow {workflow_id} for user {record.user_id}")
        await self._set_status(record, DeploymentStatus.ACTIVE)
        await self._repository.update_user(
            record.user_id, automation_status="active", needs_reauth=False
        )
        return SweepAction(workflow_id=workflow_id, action="reactivated")

    async def _set_status(self, record: DeploymentRecord, status: DeploymentStatus) -> None:
        if record.status == status:
            return
        ensure_transition(record.status, status)
        await self._repository.update_deployment_status(record.user_id, status)
        record.status = status

    # ------------------------------------------------------------------
    # Re-authorization
    async def handle_reauth(self, user_id: str) -> bool:
        """Pause the automation and ask the user to re-authorize their mailbox.

        Returns ``True`` when a notification was dispatched. While an earlier
        request is still unresolved no further notification is sent.
        """
        user = await self._repository.get_user(user_id)
        if user is None:
            logger.warning(f"Cannot start re-authorization for unknown user {user_id}")
            return False
        already_pending = user.needs_reauth and user.oauth_status == OAUTH_EXPIRED
        await self._repository.update_user(
            user_id,
            oauth_status=OAUTH_EXPIRED,
            automation_status="paused",
            needs_reauth=True,
        )
        if already_pending:
            logger.info(f"Re-authorization already pending for user {user_id}")
            return False
        return await dispatch(
            self._notifier,
            user.email,
            TEMPLATE_REAUTH,
            {
                "first_name": user.first_name,
                "reauth_url": f"{self.frontend_url}/reauthorize?user={user_id}",
            },
        )

    # ------------------------------------------------------------------
    # Dashboard views
    async def automation_status(self, user_id: str) -> AutomationStatus:
        """Summarize the user's automation for a status page."""
        record = await self._repository.get_deployment(user_id)
        if record is None or not record.external_workflow_id:
            return AutomationStatus(
                status="not_deployed",
                message="Automation not yet deployed",
                action_required="complete_onboarding",
            )

        workflow_id = record.external_workflow_id
        user: Optional[UserRecord] = await self._repository.get_user(user_id)
        try:
            state = await self._engine.get_workflow(workflow_id)
            recent = await self._engine.recent_executions(
                workflow_id, timedelta(hours=HEALTH_LOOKBACK_HOURS), now=self._clock()
            )
        except EngineError as exc:
            logger.warning(f"Could not read automation status for user {user_id}: {exc}")
            return AutomationStatus(
                status="error",
                message="Unable to check automation status",
                workflow_id=workflow_id,
                error=exc.summary,
            )

        last_execution = recent[0].started_at if recent else None
        if not state.active:
            status, message, action = (
                "inactive",
                "Automation is currently inactive",
                "contact_support",
            )
        elif user is not None and user.oauth_status == OAUTH_EXPIRED:
            status, message, action = (
                "auth_expired",
                "Mailbox authorization has expired",
                "reauthorize_mailbox",
            )
        elif recent:
            status, message, action = (
                "active",
                f"Processing emails every 5 minutes. Last processed: {last_execution}",
                None,
            )
        else:
            status, message, action = (
                "waiting",
                "Automation is active and waiting for emails to process",
                None,
            )
        return AutomationStatus(
            status=status,
            message=message,
            action_required=action,
            workflow_id=workflow_id,
            last_execution=last_execution,
            executions_24h=len(recent),
        )

    async def workflow_metrics(self, workflow_id: str) -> WorkflowMetrics:
        """Execution statistics over the workflow's most recent runs."""
        try:
            samples = await self._engine.list_executions(
                workflow_id, limit=METRICS_EXECUTION_LIMIT
            )
        except EngineError as exc:
            logger.warning(f"Could not read metrics for workflow {workflow_id}: {exc}")
            return WorkflowMetrics(error=exc.summary)
        return summarize_executions(samples, now=self._clock())
