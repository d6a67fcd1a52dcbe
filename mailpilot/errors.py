"""Error taxonomy for deployment and supervision failures."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .contracts import DeploymentAttempt, DeploymentStatus


class MailpilotError(Exception):
    """Base error carrying a stable ``kind`` and a user-safe ``summary``.

    ``str(error)`` may contain raw engine output and is meant for logs and
    operators. Only ``kind`` and ``summary`` are meant for end users.
    """

    kind = "internal_error"
    summary = "an internal error occurred"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "summary": self.summary}


class EngineError(MailpilotError):
    """A call to the external workflow engine failed."""

    kind = "engine_error"
    summary = "the automation engine could not complete the request"

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


class TransientDeployError(EngineError):
    """Network failure, timeout or 5xx from the engine; safe to retry."""

    kind = "engine_unavailable"
    summary = "the automation engine is temporarily unavailable"


class PermanentAuthError(EngineError):
    """Credential or authorization failure; retrying will not help."""

    kind = "authorization_required"
    summary = "mailbox authorization has expired, please re-authorize"


class EngineRequestError(EngineError):
    """The engine rejected a request or answered with something unreadable."""

    kind = "engine_rejected"
    summary = "the automation engine rejected the request"


class VerificationFailure(MailpilotError):
    """The synthetic verification execution did not succeed."""

    kind = "verification_failed"
    summary = "the automation did not pass its test run"

    def __init__(
        self,
        message: str,
        *,
        raw_status: Optional[str] = None,
        execution_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.raw_status = raw_status
        self.execution_id = execution_id


class DeploymentFailed(MailpilotError):
    """A deployment could not be completed."""

    kind = "deployment_failed"
    summary = "automation setup failed, retry available"

    def __init__(
        self,
        message: str,
        *,
        last_error: Optional[BaseException] = None,
        attempts: Optional[List["DeploymentAttempt"]] = None,
    ) -> None:
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts or []


class ExhaustedRetries(DeploymentFailed):
    """Every deployment attempt failed; an operator has been paged."""

    kind = "deployment_exhausted"


class ConfigValidationError(MailpilotError):
    """The automation configuration is unusable; nothing was sent to the engine."""

    kind = "invalid_configuration"
    summary = "the automation configuration is incomplete"

    def __init__(self, errors: List[str]) -> None:
        super().__init__("; ".join(errors) or "invalid configuration")
        self.errors = list(errors)


class InvalidStatusTransition(MailpilotError):
    """A deployment status change outside the allowed transitions."""

    def __init__(
        self, current: Optional["DeploymentStatus"], target: "DeploymentStatus"
    ) -> None:
        current_name = current.value if current is not None else "not_deployed"
        super().__init__(f"cannot move deployment from {current_name} to {target.value}")
        self.current = current
        self.target = target
