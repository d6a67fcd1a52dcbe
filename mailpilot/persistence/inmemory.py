"""In-memory implementation of the deployment repository."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from ..contracts import DeploymentStatus, utcnow
from .models import USER_FIELDS, BusinessProfile, DeploymentRecord, UserRecord
from .repository import DeploymentRepository


class InMemoryDeploymentRepository(DeploymentRepository):
    """Store state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._deployments: Dict[str, DeploymentRecord] = {}
        self._users: Dict[str, UserRecord] = {}
        self._profiles: Dict[str, BusinessProfile] = {}

    # ------------------------------------------------------------------
    async def get_deployment(self, user_id: str) -> DeploymentRecord | None:
        record = self._deployments.get(user_id)
        return record.model_copy(deep=True) if record else None

    async def upsert_deployment(self, record: DeploymentRecord) -> None:
        self._deployments[record.user_id] = record.model_copy(
            deep=True, update={"updated_at": utcnow()}
        )

    async def update_deployment_status(
        self,
        user_id: str,
        status: DeploymentStatus,
        last_error: Optional[str] = None,
    ) -> None:
        record = self._deployments.get(user_id)
        if record:
            record.status = status
            record.last_error = last_error
            record.updated_at = utcnow()

    async def delete_deployment(self, user_id: str) -> None:
        self._deployments.pop(user_id, None)

    async def list_deployments(
        self, statuses: Optional[Iterable[DeploymentStatus]] = None
    ) -> list[DeploymentRecord]:
        wanted = set(statuses) if statuses is not None else None
        return [
            record.model_copy(deep=True)
            for record in self._deployments.values()
            if wanted is None or record.status in wanted
        ]

    # ------------------------------------------------------------------
    async def get_user(self, user_id: str) -> UserRecord | None:
        user = self._users.get(user_id)
        return user.model_copy() if user else None

    async def save_user(self, user: UserRecord) -> None:
        self._users[user.user_id] = user.model_copy()

    async def update_user(self, user_id: str, **fields: Any) -> None:
        unknown = set(fields) - USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)}")
        user = self._users.get(user_id)
        if user:
            self._users[user_id] = user.model_copy(update=fields)

    async def mark_onboarding_completed(
        self, user_id: str, completed_at: datetime
    ) -> bool:
        user = self._users.get(user_id)
        if user is None or user.onboarding_completed:
            return False
        user.onboarding_completed = True
        user.onboarding_completed_at = completed_at
        return True

    # ------------------------------------------------------------------
    async def get_business_profile(self, user_id: str) -> BusinessProfile | None:
        profile = self._profiles.get(user_id)
        return profile.model_copy(deep=True) if profile else None

    async def save_business_profile(self, profile: BusinessProfile) -> None:
        self._profiles[profile.user_id] = profile.model_copy(deep=True)
