"""Core data contracts shared by the deployment, monitoring and onboarding services."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .constants import SUCCESS_EXECUTION_STATUSES
from .errors import InvalidStatusTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Model accepting both snake_case and the camelCase used on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ----------------------------------------------------------------------
# Automation configuration


class BusinessCategory(CamelModel):
    """A mail category the user wants incoming messages sorted into."""

    name: str
    description: str = ""


class LabelMapping(CamelModel):
    """Link between a business category and a mailbox label."""

    category_name: str
    external_label_id: str
    external_label_name: str = ""


class TeamMember(CamelModel):
    name: str
    email: str
    category_name: Optional[str] = None
    notify: bool = True


class AutomationConfig(CamelModel):
    """User-owned configuration a workflow definition is generated from."""

    business_categories: List[BusinessCategory] = Field(default_factory=list)
    label_mappings: List[LabelMapping] = Field(default_factory=list)
    team_members: List[TeamMember] = Field(default_factory=list)

    @field_validator("business_categories", mode="before")
    @classmethod
    def _coerce_category_names(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [{"name": item} if isinstance(item, str) else item for item in value]
        return value


# ----------------------------------------------------------------------
# Workflow definition


class NodeConnection(BaseModel):
    node: str
    type: str = "main"
    index: int = 0


class WorkflowNode(CamelModel):
    """One typed node of a workflow graph."""

    name: str
    type: str
    type_version: int = 1
    position: List[int] = Field(default_factory=lambda: [0, 0])
    parameters: Dict[str, Any] = Field(default_factory=dict)
    credentials: Optional[Dict[str, Any]] = None
    webhook_id: Optional[str] = None


class WorkflowDefinition(CamelModel):
    """Directed graph of nodes submitted to the workflow engine."""

    name: str
    nodes: List[WorkflowNode] = Field(default_factory=list)
    connections: Dict[str, Dict[str, List[List[NodeConnection]]]] = Field(
        default_factory=dict
    )
    active: bool = False
    settings: Dict[str, Any] = Field(default_factory=dict)
    static_data: Dict[str, Any] = Field(default_factory=dict)

    def node(self, name: str) -> Optional[WorkflowNode]:
        """Return the node called ``name`` if present."""
        return next((n for n in self.nodes if n.name == name), None)

    def to_payload(self) -> Dict[str, Any]:
        """Serialize to the engine's camelCase JSON shape."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


# ----------------------------------------------------------------------
# Deployment lifecycle


class DeploymentStatus(str, Enum):
    DEPLOYING = "deploying"
    TESTING = "testing"
    ACTIVE = "active"
    INACTIVE = "inactive"
    FAILED = "failed"
    NEEDS_REAUTH = "needs_reauth"


_TRANSITIONS: Dict[Optional[DeploymentStatus], frozenset] = {
    None: frozenset({DeploymentStatus.DEPLOYING}),
    DeploymentStatus.DEPLOYING: frozenset(
        {DeploymentStatus.TESTING, DeploymentStatus.FAILED}
    ),
    DeploymentStatus.TESTING: frozenset(
        {DeploymentStatus.ACTIVE, DeploymentStatus.DEPLOYING, DeploymentStatus.FAILED}
    ),
    DeploymentStatus.ACTIVE: frozenset(
        {
            DeploymentStatus.INACTIVE,
            DeploymentStatus.NEEDS_REAUTH,
            DeploymentStatus.DEPLOYING,
        }
    ),
    DeploymentStatus.INACTIVE: frozenset(
        {
            DeploymentStatus.ACTIVE,
            DeploymentStatus.NEEDS_REAUTH,
            DeploymentStatus.DEPLOYING,
        }
    ),
    DeploymentStatus.NEEDS_REAUTH: frozenset(
        {DeploymentStatus.ACTIVE, DeploymentStatus.DEPLOYING}
    ),
    DeploymentStatus.FAILED: frozenset({DeploymentStatus.DEPLOYING}),
}


def can_transition(
    current: Optional[DeploymentStatus], target: DeploymentStatus
) -> bool:
    """Return ``True`` when ``current -> target`` is an allowed status move."""
    return target in _TRANSITIONS[current]


def ensure_transition(
    current: Optional[DeploymentStatus], target: DeploymentStatus
) -> None:
    """Raise :class:`InvalidStatusTransition` for a disallowed status move."""
    if not can_transition(current, target):
        raise InvalidStatusTransition(current, target)


class DeploymentAttempt(BaseModel):
    """Outcome of one create+verify attempt. Logged, never persisted."""

    attempt_number: int
    error: Optional[str] = None
    error_kind: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def succeeded(self) -> bool:
        return self.error is None


class DeployResult(BaseModel):
    user_id: str
    workflow_id: str
    workflow_name: str
    status: DeploymentStatus
    execution_id: Optional[str] = None
    webhook_url: Optional[str] = None
    attempts: List[DeploymentAttempt] = Field(default_factory=list)


# ----------------------------------------------------------------------
# Engine views


class WorkflowState(BaseModel):
    """Engine-side view of a workflow."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    active: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value


class ExecutionSample(BaseModel):
    """One execution as reported by the engine. Read on demand, never stored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    execution_id: str = Field(
        validation_alias=AliasChoices("execution_id", "executionId", "id")
    )
    workflow_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("workflow_id", "workflowId")
    )
    status: str = "unknown"
    started_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("started_at", "startedAt")
    )
    finished_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("finished_at", "finishedAt")
    )

    @field_validator("execution_id", "workflow_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        return str(value).lower() if value is not None else "unknown"

    @field_validator("started_at", "finished_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def succeeded(self) -> bool:
        return self.status in SUCCESS_EXECUTION_STATUSES

    @property
    def duration_ms(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds() * 1000


class EngineHealth(BaseModel):
    """Result of the engine liveness probe."""

    connected: bool
    status: str = "healthy"
    workflow_count: int = 0
    version: str = "unknown"
    error: Optional[str] = None
    status_code: Optional[int] = None


class VerificationResult(BaseModel):
    success: bool
    execution_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None


# ----------------------------------------------------------------------
# Monitoring


class SweepAction(BaseModel):
    workflow_id: Optional[str]
    action: str
    detail: str = ""


class SweepResult(BaseModel):
    """Outcome of one recovery sweep over a user's deployments."""

    user_id: str
    workflows_checked: int = 0
    actions_taken: List[SweepAction] = Field(default_factory=list)
    health: Dict[str, str] = Field(default_factory=dict)
    recent_executions: Dict[str, int] = Field(default_factory=dict)
    error: Optional[str] = None

    def flagged(self, state: str) -> bool:
        return state in self.health.values()


class AutomationStatus(BaseModel):
    status: str
    message: str
    action_required: Optional[str] = None
    workflow_id: Optional[str] = None
    last_execution: Optional[datetime] = None
    executions_24h: int = 0
    error: Optional[str] = None


class WorkflowMetrics(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    success_rate: float = 0.0
    last_24_hours: int = 0
    last_7_days: int = 0
    average_execution_ms: int = 0
    last_execution: Optional[datetime] = None
    error: Optional[str] = None


# ----------------------------------------------------------------------
# Onboarding


class OnboardingStepResult(BaseModel):
    step: str
    completed: bool
    message: str
    detail: Dict[str, Any] = Field(default_factory=dict)


class OnboardingValidation(BaseModel):
    """All seven readiness checks for one user, recomputed on every call."""

    user_id: str
    steps: Dict[str, OnboardingStepResult]
    completion_rate: int
    complete: bool
    checked_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    newly_completed: bool = False


class NextStep(BaseModel):
    step: str
    message: str


class OnboardingProgress(BaseModel):
    user_id: str
    completion_rate: int
    complete: bool
    steps: Dict[str, OnboardingStepResult]
    next_step: Optional[NextStep] = None
    checked_at: datetime
