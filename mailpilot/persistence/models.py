"""Data models for persisted deployment and user state."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ..contracts import AutomationConfig, DeploymentStatus, utcnow


class DeploymentRecord(BaseModel):
    """The single deployment a user owns, keyed by ``user_id``."""

    user_id: str
    external_workflow_id: Optional[str] = None
    name: str = ""
    status: DeploymentStatus
    config_snapshot: AutomationConfig = Field(default_factory=AutomationConfig)
    verification_execution_id: Optional[str] = None
    last_error: Optional[str] = None
    deployed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)


class UserRecord(BaseModel):
    """User fields read and written by the deployment services."""

    user_id: str
    email: str
    first_name: str = ""
    email_verified: bool = False
    mailbox_connected: bool = False
    oauth_status: Optional[str] = None
    automation_status: Optional[str] = None
    needs_reauth: bool = False
    needs_manual_intervention: bool = False
    last_error: Optional[str] = None
    onboarding_completed: bool = False
    onboarding_completed_at: Optional[datetime] = None


class BusinessProfile(BaseModel):
    """Business details gathered during onboarding."""

    user_id: str
    business_type_id: Optional[str] = None
    business_name: Optional[str] = None
    business_address: Optional[str] = None
    business_phone: Optional[str] = None
    automation_config: AutomationConfig = Field(default_factory=AutomationConfig)


USER_FIELDS = frozenset(UserRecord.model_fields) - {"user_id"}
