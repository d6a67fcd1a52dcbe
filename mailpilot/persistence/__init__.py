"""Persistence layer for deployment, user and business profile state."""

from __future__ import annotations

import os
from typing import Optional

from ..config import MailpilotConfig, load_config
from .inmemory import InMemoryDeploymentRepository
from .models import BusinessProfile, DeploymentRecord, UserRecord
from .repository import DeploymentRepository
from .sqlite import SQLiteDeploymentRepository


def get_repository(
    database_url: Optional[str] = None, config: Optional[MailpilotConfig] = None
) -> DeploymentRepository:
    """Factory function to obtain a deployment repository.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``MAILPILOT_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, a fresh in-memory repository is returned.
    """

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("MAILPILOT_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        return InMemoryDeploymentRepository()

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        return SQLiteDeploymentRepository(path)
    if database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        from .postgres import PostgresDeploymentRepository

        return PostgresDeploymentRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "BusinessProfile",
    "DeploymentRecord",
    "UserRecord",
    "DeploymentRepository",
    "InMemoryDeploymentRepository",
    "SQLiteDeploymentRepository",
    "get_repository",
]
