"""Repository abstraction for deployment and user persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional, Protocol

from ..contracts import DeploymentStatus
from .models import BusinessProfile, DeploymentRecord, UserRecord


class DeploymentRepository(Protocol):
    """Protocol for persistence backends."""

    async def get_deployment(self, user_id: str) -> DeploymentRecord | None:
        """Return the user's deployment, if any."""

    async def upsert_deployment(self, record: DeploymentRecord) -> None:
        """Insert or replace the deployment keyed by ``record.user_id``."""

    async def update_deployment_status(
        self,
        user_id: str,
        status: DeploymentStatus,
        last_error: Optional[str] = None,
    ) -> None:
        """Persist a status change for the user's deployment."""

    async def delete_deployment(self, user_id: str) -> None:
        """Remove the user's deployment."""

    async def list_deployments(
        self, statuses: Optional[Iterable[DeploymentStatus]] = None
    ) -> list[DeploymentRecord]:
        """Return deployments, optionally restricted to ``statuses``."""

    async def get_user(self, user_id: str) -> UserRecord | None:
        """Retrieve a user by id."""

    async def save_user(self, user: UserRecord) -> None:
        """Insert or replace a user."""

    async def update_user(self, user_id: str, **fields: Any) -> None:
        """Update selected user fields."""

    async def mark_onboarding_completed(
        self, user_id: str, completed_at: datetime
    ) -> bool:
        """Set the completion flag unless already set.

        Returns ``True`` only for the call that flipped the flag.
        """

    async def get_business_profile(self, user_id: str) -> BusinessProfile | None:
        """Retrieve the user's business profile."""

    async def save_business_profile(self, profile: BusinessProfile) -> None:
        """Insert or replace a business profile."""
