"""SQLite implementation of the deployment repository."""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from ..contracts import AutomationConfig, DeploymentStatus, utcnow
from .models import USER_FIELDS, BusinessProfile, DeploymentRecord, UserRecord
from .repository import DeploymentRepository

_BOOL_USER_FIELDS = (
    "email_verified",
    "mailbox_connected",
    "needs_reauth",
    "needs_manual_intervention",
    "onboarding_completed",
)


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _db_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    return value


class SQLiteDeploymentRepository(DeploymentRepository):
    """Persist deployment state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS deployments (
                user_id TEXT PRIMARY KEY,
                external_workflow_id TEXT,
                name TEXT NOT NULL,
                status TEXT NOT NULL,
                config_snapshot TEXT NOT NULL,
                verification_execution_id TEXT,
                last_error TEXT,
                deployed_at TEXT,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                user_id TEXT PRIMARY KEY,
                email TEXT NOT NULL,
                first_name TEXT NOT NULL DEFAULT '',
                email_verified INTEGER NOT NULL DEFAULT 0,
                mailbox_connected INTEGER NOT NULL DEFAULT 0,
                oauth_status TEXT,
                automation_status TEXT,
                needs_reauth INTEGER NOT NULL DEFAULT 0,
                needs_manual_intervention INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                onboarding_completed INTEGER NOT NULL DEFAULT 0,
                onboarding_completed_at TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS business_profiles (
                user_id TEXT PRIMARY KEY,
                business_type_id TEXT,
                business_name TEXT,
                business_address TEXT,
                business_phone TEXT,
                automation_config TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _deployment_from_row(row: sqlite3.Row) -> DeploymentRecord:
        return DeploymentRecord(
            user_id=row["user_id"],
            external_workflow_id=row["external_workflow_id"],
            name=row["name"],
            status=DeploymentStatus(row["status"]),
            config_snapshot=AutomationConfig.model_validate_json(row["config_snapshot"]),
            verification_execution_id=row["verification_execution_id"],
            last_error=row["last_error"],
            deployed_at=_dt(row["deployed_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    @staticmethod
    def _user_from_row(row: sqlite3.Row) -> UserRecord:
        data = dict(row)
        for field in _BOOL_USER_FIELDS:
            data[field] = bool(data[field])
        data["onboarding_completed_at"] = _dt(data["onboarding_completed_at"])
        return UserRecord(**data)

    # ------------------------------------------------------------------
    # Deployments
    async def get_deployment(self, user_id: str) -> DeploymentRecord | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM deployments WHERE user_id = ?", user_id
        )
        return self._deployment_from_row(row) if row else None

    async def upsert_deployment(self, record: DeploymentRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO deployments (
                user_id, external_workflow_id, name, status, config_snapshot,
                verification_execution_id, last_error, deployed_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (user_id) DO UPDATE SET
                external_workflow_id = excluded.external_workflow_id,
                name = excluded.name,
                status = excluded.status,
                config_snapshot = excluded.config_snapshot,
                verification_execution_id = excluded.verification_execution_id,
                last_error = excluded.last_error,
                deployed_at = excluded.deployed_at,
                updated_at = excluded.updated_at
            """,
            record.user_id,
            record.external_workflow_id,
            record.name,
            record.status.value,
            record.config_snapshot.model_dump_json(),
            record.verification_execution_id,
            record.last_error,
            _iso(record.deployed_at),
            utcnow().isoformat(),
        )

    async def update_deployment_status(
        self,
        user_id: str,
        status: DeploymentStatus,
        last_error: Optional[str] = None,
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE deployments SET status = ?, last_error = ?, updated_at = ? WHERE user_id = ?",
            status.value,
            last_error,
            utcnow().isoformat(),
            user_id,
        )

    async def delete_deployment(self, user_id: str) -> None:
        await asyncio.to_thread(
            self._execute, "DELETE FROM deployments WHERE user_id = ?", user_id
        )

    async def list_deployments(
        self, statuses: Optional[Iterable[DeploymentStatus]] = None
    ) -> list[DeploymentRecord]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT * FROM deployments ORDER BY user_id"
        )
        wanted = set(statuses) if statuses is not None else None
        records = [self._deployment_from_row(r) for r in rows]
        return [r for r in records if wanted is None or r.status in wanted]

    # ------------------------------------------------------------------
    # Users
    async def get_user(self, user_id: str) -> UserRecord | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM users WHERE user_id = ?", user_id
        )
        return self._user_from_row(row) if row else None

    async def save_user(self, user: UserRecord) -> None:
        data = user.model_dump()
        columns = list(data)
        await asyncio.to_thread(
            self._execute,
            f"INSERT OR REPLACE INTO users ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})",
            *(_db_value(data[c]) for c in columns),
        )

    async def update_user(self, user_id: str, **fields: Any) -> None:
        unknown = set(fields) - USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(f"{name} = ?" for name in fields)
        await asyncio.to_thread(
            self._execute,
            f"UPDATE users SET {assignments} WHERE user_id = ?",
            *(_db_value(v) for v in fields.values()),
            user_id,
        )

    async def mark_onboarding_completed(
        self, user_id: str, completed_at: datetime
    ) -> bool:
        changed = await asyncio.to_thread(
            self._execute,
            """
            UPDATE users SET onboarding_completed = 1, onboarding_completed_at = ?
            WHERE user_id = ? AND onboarding_completed = 0
            """,
            completed_at.isoformat(),
            user_id,
        )
        return changed == 1

    # ------------------------------------------------------------------
    # Business profiles
    async def get_business_profile(self, user_id: str) -> BusinessProfile | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM business_profiles WHERE user_id = ?", user_id
        )
        if not row:
            return None
        return BusinessProfile(
            user_id=row["user_id"],
            business_type_id=row["business_type_id"],
            business_name=row["business_name"],
            business_address=row["business_address"],
            business_phone=row["business_phone"],
            automation_config=AutomationConfig.model_validate_json(
                row["automation_config"]
            ),
        )

    async def save_business_profile(self, profile: BusinessProfile) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT OR REPLACE INTO business_profiles (
                user_id, business_type_id, business_name, business_address,
                business_phone, automation_config
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            profile.user_id,
            profile.business_type_id,
            profile.business_name,
            profile.business_address,
            profile.business_phone,
            profile.automation_config.model_dump_json(),
        )
