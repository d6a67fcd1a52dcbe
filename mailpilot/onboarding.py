"""Onboarding completion: an AND-gate over seven readiness checks."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Dict, Mapping, Optional

from .constants import (
    FIRST_EXECUTION_WINDOW_MINUTES,
    OAUTH_EXPIRED,
    ONBOARDING_STEPS,
    TEMPLATE_ONBOARDING_COMPLETE,
)
from .contracts import (
    DeploymentStatus,
    NextStep,
    OnboardingProgress,
    OnboardingStepResult,
    OnboardingValidation,
    utcnow,
)
from .engine import WorkflowEngine
from .notifications import Notifier, dispatch
from .persistence import DeploymentRepository

logger = logging.getLogger(__name__)

STEP_MESSAGES: Dict[str, str] = {
    "email_verified": "Please verify your email address",
    "business_type_selected": "Select your business type",
    "mailbox_connected": "Connect your mailbox",
    "business_info_provided": "Complete your business information",
    "workflow_deployed": "Deploy your email automation",
    "workflow_verified": "Test your automation",
    "first_execution_observed": "Wait for first automation run (5 minutes)",
}

_CHECK_FAILED: Dict[str, str] = {
    "email_verified": "Email verification check failed",
    "business_type_selected": "Business type check failed",
    "mailbox_connected": "Mailbox connection check failed",
    "business_info_provided": "Business info check failed",
    "workflow_deployed": "Deployment check failed",
    "workflow_verified": "Automation testing check failed",
    "first_execution_observed": "First execution check failed",
}


def next_step(steps: Mapping[str, OnboardingStepResult]) -> Optional[NextStep]:
    """First incomplete step in onboarding order, or ``None`` when done."""
    for name in ONBOARDING_STEPS:
        result = steps.get(name)
        if result is None or not result.completed:
            return NextStep(step=name, message=STEP_MESSAGES.get(name, "Complete this step"))
    return None


class OnboardingCompletionAggregator:
    """Recomputes every readiness check on each call.

    Safe to call at any time, for example from a dashboard poll. When all
    seven checks pass for the first time the completion flag is set with a
    compare-and-set on the repository and the user is told the automation
    is live. Later calls see the flag and do nothing further.
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        repository: DeploymentRepository,
        notifier: Notifier,
        first_execution_window: timedelta = timedelta(
            minutes=FIRST_EXECUTION_WINDOW_MINUTES
        ),
        frontend_url: str = "http://localhost:3000",
    ) -> None:
        self._engine = engine
        self._repository = repository
        self._notifier = notifier
        self.first_execution_window = first_execution_window
        self.frontend_url = frontend_url.rstrip("/")
        self._checks: Dict[str, Callable[[str], Awaitable[OnboardingStepResult]]] = {
            "email_verified": self._check_email_verified,
            "business_type_selected": self._check_business_type,
            "mailbox_connected": self._check_mailbox,
            "business_info_provided": self._check_business_info,
            "workflow_deployed": self._check_deployed,
            "workflow_verified": self._check_verified,
            "first_execution_observed": self._check_first_execution,
        }

    async def validate(self, user_id: str) -> OnboardingValidation:
        """Run all checks and apply the one-time completion transition."""
        results = await asyncio.gather(
            *(self._run_check(step, user_id) for step in ONBOARDING_STEPS)
        )
        steps = {result.step: result for result in results}
        completed = sum(1 for result in results if result.completed)
        validation = OnboardingValidation(
            user_id=user_id,
            steps=steps,
            completion_rate=round(completed / len(ONBOARDING_STEPS) * 100),
            complete=completed == len(ONBOARDING_STEPS),
        )
        if validation.complete:
            await self._complete(validation)
        return validation

    async def progress(self, user_id: str) -> OnboardingProgress:
        validation = await self.validate(user_id)
        return OnboardingProgress(
            user_id=user_id,
            completion_rate=validation.completion_rate,
            complete=validation.complete,
            steps=validation.steps,
            next_step=next_step(validation.steps),
            checked_at=validation.checked_at,
        )

    async def _run_check(self, step: str, user_id: str) -> OnboardingStepResult:
        try:
            return await self._checks[step](user_id)
        except Exception as e:
            logger.warning(f"Onboarding check {step} failed for user {user_id}: {e}")
            return OnboardingStepResult(
                step=step,
                completed=False,
                message=_CHECK_FAILED[step],
                detail={"error": str(e)},
            )

    async def _complete(self, validation: OnboardingValidation) -> None:
        user_id = validation.user_id
        user = await self._repository.get_user(user_id)
        if user is None:
            logger.warning(f"Cannot complete onboarding for unknown user {user_id}")
            return
        if user.onboarding_completed:
            validation.completed_at = user.onboarding_completed_at
            return

        completed_at = utcnow()
        if not await self._repository.mark_onboarding_completed(user_id, completed_at):
            # a concurrent call won the compare-and-set
            logger.debug(f"Onboarding for user {user_id} was completed concurrently")
            current = await self._repository.get_user(user_id)
            validation.completed_at = current.onboarding_completed_at if current else None
            return

        validation.completed_at = completed_at
        validation.newly_completed = True
        await self._repository.update_user(user_id, automation_status="active")
        logger.info(f"Onboarding completed for user {user_id}")
        await dispatch(
            self._notifier,
            user.email,
            TEMPLATE_ONBOARDING_COMPLETE,
            {
                "first_name": user.first_name,
                "dashboard_url": f"{self.frontend_url}/dashboard",
                "status_url": f"{self.frontend_url}/automation-status",
            },
        )

    # ------------------------------------------------------------------
    # Checks
    async def _check_email_verified(self, user_id: str) -> OnboardingStepResult:
        user = await self._repository.get_user(user_id)
        verified = bool(user and user.email_verified)
        return OnboardingStepResult(
            step="email_verified",
            completed=verified,
            message="Email verified successfully" if verified else "Email verification pending",
        )

    async def _check_business_type(self, user_id: str) -> OnboardingStepResult:
        profile = await self._repository.get_business_profile(user_id)
        selected = bool(profile and profile.business_type_id)
        return OnboardingStepResult(
            step="business_type_selected",
            completed=selected,
            message="Business type selected" if selected else "Business type selection pending",
            detail={"business_type_id": profile.business_type_id if profile else None},
        )

    async def _check_mailbox(self, user_id: str) -> OnboardingStepResult:
        user = await self._repository.get_user(user_id)
        connected = bool(
            user and user.mailbox_connected and user.oauth_status != OAUTH_EXPIRED
        )
        return OnboardingStepResult(
            step="mailbox_connected",
            completed=connected,
            message="Mailbox connected successfully" if connected else "Mailbox connection required",
            detail={"oauth_status": user.oauth_status if user else None},
        )

    async def _check_business_info(self, user_id: str) -> OnboardingStepResult:
        profile = await self._repository.get_business_profile(user_id)
        missing = [
            field
            for field in ("business_name", "business_address", "business_phone")
            if profile is None or not getattr(profile, field)
        ]
        return OnboardingStepResult(
            step="business_info_provided",
            completed=not missing,
            message=(
                "Business information complete" if not missing else "Business information incomplete"
            ),
            detail={"missing": missing},
        )

    async def _check_deployed(self, user_id: str) -> OnboardingStepResult:
        record = await self._repository.get_deployment(user_id)
        deployed = bool(record and record.status == DeploymentStatus.ACTIVE)
        return OnboardingStepResult(
            step="workflow_deployed",
            completed=deployed,
            message="Workflow deployed successfully" if deployed else "Deployment pending",
            detail={
                "workflow_id": record.external_workflow_id if record else None,
                "status": record.status.value if record else None,
            },
        )

    async def _check_verified(self, user_id: str) -> OnboardingStepResult:
        record = await self._repository.get_deployment(user_id)
        if record is None or not record.external_workflow_id:
            return OnboardingStepResult(
                step="workflow_verified", completed=False, message="No workflow to test"
            )
        verified = record.verification_execution_id is not None
        return OnboardingStepResult(
            step="workflow_verified",
            completed=verified,
            message="Automation test passed" if verified else "Automation test pending",
            detail={"execution_id": record.verification_execution_id},
        )

    async def _check_first_execution(self, user_id: str) -> OnboardingStepResult:
        record = await self._repository.get_deployment(user_id)
        if record is None or not record.external_workflow_id:
            return OnboardingStepResult(
                step="first_execution_observed",
                completed=False,
                message="No workflow deployed",
            )
        recent = [
            sample
            for sample in await self._engine.recent_executions(
                record.external_workflow_id, self.first_execution_window
            )
            if sample.execution_id != record.verification_execution_id
        ]
        observed = bool(recent)
        return OnboardingStepResult(
            step="first_execution_observed",
            completed=observed,
            message=(
                "First automation execution successful"
                if observed
                else "Waiting for first automation execution (5-minute interval)"
            ),
            detail={
                "recent_executions": len(recent),
                "last_execution": recent[0].started_at.isoformat() if recent else None,
            },
        )
