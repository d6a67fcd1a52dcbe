"""PostgreSQL implementation of the deployment repository."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Iterable, Optional

import asyncpg

from ..contracts import AutomationConfig, DeploymentStatus, utcnow
from .models import USER_FIELDS, BusinessProfile, DeploymentRecord, UserRecord
from .repository import DeploymentRepository


def _json_value(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


class PostgresDeploymentRepository(DeploymentRepository):
    """Persist deployment state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS deployments (
                user_id TEXT PRIMARY KEY,
                external_workflow_id TEXT,
                name TEXT NOT NULL,
                status TEXT NOT NULL,
                config_snapshot JSONB NOT NULL,
                verification_execution_id TEXT,
                last_error TEXT,
                deployed_at TIMESTAMPTZ,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                user_id TEXT PRIMARY KEY,
                email TEXT NOT NULL,
                first_name TEXT NOT NULL DEFAULT '',
                email_verified BOOLEAN NOT NULL DEFAULT FALSE,
                mailbox_connected BOOLEAN NOT NULL DEFAULT FALSE,
                oauth_status TEXT,
                automation_status TEXT,
                needs_reauth BOOLEAN NOT NULL DEFAULT FALSE,
                needs_manual_intervention BOOLEAN NOT NULL DEFAULT FALSE,
                last_error TEXT,
                onboarding_completed BOOLEAN NOT NULL DEFAULT FALSE,
                onboarding_completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS business_profiles (
                user_id TEXT PRIMARY KEY,
                business_type_id TEXT,
                business_name TEXT,
                business_address TEXT,
                business_phone TEXT,
                automation_config JSONB NOT NULL
            )
            """
        )

    @staticmethod
    def _deployment_from_row(row: asyncpg.Record) -> DeploymentRecord:
        return DeploymentRecord(
            user_id=row["user_id"],
            external_workflow_id=row["external_workflow_id"],
            name=row["name"],
            status=DeploymentStatus(row["status"]),
            config_snapshot=AutomationConfig.model_validate(
                _json_value(row["config_snapshot"])
            ),
            verification_execution_id=row["verification_execution_id"],
            last_error=row["last_error"],
            deployed_at=row["deployed_at"],
            updated_at=row["updated_at"],
        )

    # ------------------------------------------------------------------
    async def get_deployment(self, user_id: str) -> DeploymentRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT * FROM deployments WHERE user_id = $1", user_id
            )
        finally:
            await conn.close()
        return self._deployment_from_row(row) if row else None

    async def upsert_deployment(self, record: DeploymentRecord) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO deployments (
                    user_id, external_workflow_id, name, status, config_snapshot,
                    verification_execution_id, last_error, deployed_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (user_id) DO UPDATE SET
                    external_workflow_id = EXCLUDED.external_workflow_id,
                    name = EXCLUDED.name,
                    status = EXCLUDED.status,
                    config_snapshot = EXCLUDED.config_snapshot,
                    verification_execution_id = EXCLUDED.verification_execution_id,
                    last_error = EXCLUDED.last_error,
                    deployed_at = EXCLUDED.deployed_at,
                    updated_at = EXCLUDED.updated_at
                """,
                record.user_id,
                record.external_workflow_id,
                record.name,
                record.status.value,
                record.config_snapshot.model_dump_json(),
                record.verification_execution_id,
                record.last_error,
                record.deployed_at,
                utcnow(),
            )
        finally:
            await conn.close()

    async def update_deployment_status(
        self,
        user_id: str,
        status: DeploymentStatus,
        last_error: Optional[str] = None,
    ) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "UPDATE deployments SET status = $1, last_error = $2, updated_at = $3 WHERE user_id = $4",
                status.value,
                last_error,
                utcnow(),
                user_id,
            )
        finally:
            await conn.close()

    async def delete_deployment(self, user_id: str) -> None:
        conn = await self._connect()
        try:
            await conn.execute("DELETE FROM deployments WHERE user_id = $1", user_id)
        finally:
            await conn.close()

    async def list_deployments(
        self, statuses: Optional[Iterable[DeploymentStatus]] = None
    ) -> list[DeploymentRecord]:
        conn = await self._connect()
        try:
            if statuses is None:
                rows = await conn.fetch("SELECT * FROM deployments ORDER BY user_id")
            else:
                rows = await conn.fetch(
                    "SELECT * FROM deployments WHERE status = ANY($1::text[]) ORDER BY user_id",
                    [s.value for s in statuses],
                )
        finally:
            await conn.close()
        return [self._deployment_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    async def get_user(self, user_id: str) -> UserRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow("SELECT * FROM users WHERE user_id = $1", user_id)
        finally:
            await conn.close()
        return UserRecord(**dict(row)) if row else None

    async def save_user(self, user: UserRecord) -> None:
        data = user.model_dump()
        columns = list(data)
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        updates = ", ".join(f"{c} = EXCLUDED.{c}" for c in columns if c != "user_id")
        conn = await self._connect()
        try:
            await conn.execute(
                f"INSERT INTO users ({', '.join(columns)}) VALUES ({placeholders}) "
                f"ON CONFLICT (user_id) DO UPDATE SET {updates}",
                *(data[c] for c in columns),
            )
        finally:
            await conn.close()

    async def update_user(self, user_id: str, **fields: Any) -> None:
        unknown = set(fields) - USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(
            f"{name} = ${i}" for i, name in enumerate(fields, start=1)
        )
        conn = await self._connect()
        try:
            await conn.execute(
                f"UPDATE users SET {assignments} WHERE user_id = ${len(fields) + 1}",
                *fields.values(),
                user_id,
            )
        finally:
            await conn.close()

    async def mark_onboarding_completed(
        self, user_id: str, completed_at: datetime
    ) -> bool:
        conn = await self._connect()
        try:
            status = await conn.execute(
                """
                UPDATE users SET onboarding_completed = TRUE, onboarding_completed_at = $1
                WHERE user_id = $2 AND onboarding_completed = FALSE
                """,
                completed_at,
                user_id,
            )
        finally:
            await conn.close()
        return status.split()[-1] == "1"

    # ------------------------------------------------------------------
    async def get_business_profile(self, user_id: str) -> BusinessProfile | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT * FROM business_profiles WHERE user_id = $1", user_id
            )
        finally:
            await conn.close()
        if not row:
            return None
        data = dict(row)
        data["automation_config"] = AutomationConfig.model_validate(
            _json_value(data["automation_config"])
        )
        return BusinessProfile(**data)

    async def save_business_profile(self, profile: BusinessProfile) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO business_profiles (
                    user_id, business_type_id, business_name, business_address,
                    business_phone, automation_config
                ) VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (user_id) DO UPDATE SET
                    business_type_id = EXCLUDED.business_type_id,
                    business_name = EXCLUDED.business_name,
                    business_address = EXCLUDED.business_address,
                    business_phone = EXCLUDED.business_phone,
                    automation_config = EXCLUDED.automation_config
                """,
                profile.user_id,
                profile.business_type_id,
                profile.business_name,
                profile.business_address,
                profile.business_phone,
                profile.automation_config.model_dump_json(),
            )
        finally:
            await conn.close()
