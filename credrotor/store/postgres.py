"""
PostgreSQL RotationStore — credentials, rotation_logs and secret_managers tables.

Follows the DAL pattern of get_connection() + RealDictCursor. The
single-flight claim is a conditional UPDATE on credentials.active_rotation_id
run in the same transaction as the ledger INSERT, so it holds across
processes. Terminal ledger rows are never matched by an UPDATE, and a
completed attempt moves the ledger row and the credential schedule in one
transaction.

Ids are matched as ``id = %s::uuid`` so lookups stay on the primary key; a
reference that is not a UUID cannot match any row and is answered without
a query.

Schema: credrotor/migrations/001_init.sql
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from psycopg2 import errors as pg_errors
from psycopg2.extras import Json, RealDictCursor

from credrotor.db.connection import get_connection
from credrotor.errors import InvalidState, NotFound, RotationInProgress
from credrotor.models import (
    Credential,
    CredentialType,
    RotationAttempt,
    RotationStatus,
    RotationTrigger,
    SecretManagerRegistration,
    SecretManagerType,
)

logger = logging.getLogger(__name__)

_OPEN_STATUSES = (RotationStatus.PENDING.value, RotationStatus.IN_PROGRESS.value)


def _as_uuid(ref: str) -> str | None:
    try:
        return str(uuid.UUID(str(ref)))
    except ValueError:
        return None


class PostgresStore:
    """RotationStore backed by the credrotor PostgreSQL schema."""

    # ─── Credentials ──────────────────────────────────────────────────

    def get_credential(self, credential_id: str) -> Credential | None:
        key = _as_uuid(credential_id)
        if key is None:
            return None
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute("SELECT * FROM credentials WHERE id = %s::uuid", (key,))
            row = cur.fetchone()
            return Credential.from_row(row) if row else None

    def get_credential_by_name(self, name: str) -> Credential | None:
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute("SELECT * FROM credentials WHERE name = %s", (name,))
            row = cur.fetchone()
            return Credential.from_row(row) if row else None

    def list_credentials(self, *, active_only: bool = False) -> list[Credential]:
        sql = "SELECT * FROM credentials"
        if active_only:
            sql += " WHERE is_active"
        sql += " ORDER BY name"
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(sql)
            return [Credential.from_row(r) for r in cur.fetchall()]

    def list_due_credentials(self, now: datetime) -> list[Credential]:
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(
                """
                SELECT * FROM credentials
                WHERE is_active AND next_rotation_at <= %s
                ORDER BY next_rotation_at
                """,
                (now,),
            )
            return [Credential.from_row(r) for r in cur.fetchall()]

    def create_credential(
        self,
        name: str,
        type: CredentialType,
        external_secret_path: str,
        *,
        rotation_interval_days: int = 30,
        description: str = "",
        expires_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Credential:
        cred = Credential(
            name=name,
            type=type,
            external_secret_path=external_secret_path,
            rotation_interval_days=rotation_interval_days,
            description=description,
            expires_at=expires_at,
            metadata=dict(metadata or {}),
        )
        try:
            row = self._insert_credential(cred)
        except pg_errors.UniqueViolation:
            raise InvalidState(f"Credential {name!r} already exists") from None
        logger.info("Created credential %s (%s)", name, cred.type.value)
        return Credential.from_row(row) if row else cred

    def _insert_credential(self, cred: Credential) -> dict | None:
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(
                """
                INSERT INTO credentials (
                    id, name, type, description, external_secret_path,
                    rotation_interval_days, expires_at, next_rotation_at,
                    is_active, metadata, created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, TRUE, %s, %s, %s)
                RETURNING *
                """,
                (
                    cred.id,
                    cred.name,
                    cred.type.value,
                    cred.description,
                    cred.external_secret_path,
                    cred.rotation_interval_days,
                    cred.expires_at,
                    cred.next_rotation_at,
                    Json(cred.metadata),
                    cred.created_at,
                    cred.updated_at,
                ),
            )
            return cur.fetchone()

    def deactivate_credential(self, credential_id: str) -> bool:
        key = _as_uuid(credential_id)
        if key is None:
            return False
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                "UPDATE credentials SET is_active = FALSE, updated_at = NOW() "
                "WHERE id = %s::uuid AND is_active",
                (key,),
            )
            return cur.rowcount > 0

    def delete_credential(self, credential_id: str) -> bool:
        """Delete a credential; rotation_logs rows go with it (ON DELETE CASCADE)."""
        key = _as_uuid(credential_id)
        if key is None:
            return False
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute("DELETE FROM credentials WHERE id = %s::uuid", (key,))
            return cur.rowcount > 0

    # ─── Ledger ───────────────────────────────────────────────────────

    def open_attempt(
        self, credential_id: str, trigger: RotationTrigger, started_at: datetime
    ) -> RotationAttempt:
        key = _as_uuid(credential_id)
        if key is None:
            raise NotFound(f"Credential not found: {credential_id}")
        log_id = str(uuid.uuid4())
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(
                """
                UPDATE credentials SET active_rotation_id = %s::uuid
                WHERE id = %s::uuid AND is_active AND active_rotation_id IS NULL
                RETURNING id
                """,
                (log_id, key),
            )
            if cur.fetchone() is None:
                cur.execute(
                    "SELECT name, is_active, active_rotation_id FROM credentials "
                    "WHERE id = %s::uuid",
                    (key,),
                )
                row = cur.fetchone()
                if row is None:
                    raise NotFound(f"Credential not found: {credential_id}")
                if row["active_rotation_id"]:
                    raise RotationInProgress(credential_id, str(row["active_rotation_id"]))
                raise InvalidState(f"Credential {row['name']} is inactive")

            cur.execute(
                """
                INSERT INTO rotation_logs (id, credential_id, rotation_trigger, status, started_at)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    log_id,
                    key,
                    RotationTrigger(trigger).value,
                    RotationStatus.IN_PROGRESS.value,
                    started_at,
                ),
            )
            row = cur.fetchone()
        return RotationAttempt.from_row(row)

    def _raise_not_open(self, cur, log_id: str) -> None:
        cur.execute("SELECT status FROM rotation_logs WHERE id = %s::uuid", (log_id,))
        existing = cur.fetchone()
        if existing is None:
            raise NotFound(f"Rotation log not found: {log_id}")
        raise InvalidState(f"Rotation log {log_id} is already {existing['status']}")

    def finish_attempt(
        self,
        log_id: str,
        status: RotationStatus,
        completed_at: datetime,
        *,
        error_message: str | None = None,
        old_secret_hash: str | None = None,
        new_secret_hash: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> RotationAttempt:
        key = _as_uuid(log_id)
        if key is None:
            raise NotFound(f"Rotation log not found: {log_id}")
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(
                """
                UPDATE rotation_logs
                SET status = %s,
                    completed_at = %s,
                    error_message = %s,
                    old_secret_hash = COALESCE(%s, old_secret_hash),
                    new_secret_hash = COALESCE(%s, new_secret_hash),
                    metadata = COALESCE(metadata, '{}'::jsonb) || %s::jsonb
                WHERE id = %s::uuid AND status IN %s
                RETURNING *
                """,
                (
                    RotationStatus(status).value,
                    completed_at,
                    error_message,
                    old_secret_hash,
                    new_secret_hash,
                    Json(metadata or {}),
                    key,
                    _OPEN_STATUSES,
                ),
            )
            row = cur.fetchone()
            if row is None:
                self._raise_not_open(cur, key)
            return RotationAttempt.from_row(row)

    def complete_attempt(
        self,
        log_id: str,
        credential_id: str,
        completed_at: datetime,
        *,
        old_secret_hash: str | None = None,
        new_secret_hash: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Credential:
        """Close an open entry as completed and advance the credential's schedule.

        Both rows change in one transaction. The credential must still be
        claimed by ``log_id``; otherwise nothing is written and InvalidState
        is raised.
        """
        log_key, cred_key = _as_uuid(log_id), _as_uuid(credential_id)
        if log_key is None or cred_key is None:
            raise NotFound(f"Rotation log not found: {log_id}")
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(
                """
                UPDATE rotation_logs
                SET status = %s,
                    completed_at = %s,
                    old_secret_hash = %s,
                    new_secret_hash = %s,
                    metadata = COALESCE(metadata, '{}'::jsonb) || %s::jsonb
                WHERE id = %s::uuid AND credential_id = %s::uuid AND status IN %s
                RETURNING id
                """,
                (
                    RotationStatus.COMPLETED.value,
                    completed_at,
                    old_secret_hash,
                    new_secret_hash,
                    Json(metadata or {}),
                    log_key,
                    cred_key,
                    _OPEN_STATUSES,
                ),
            )
            if cur.fetchone() is None:
                self._raise_not_open(cur, log_key)

            cur.execute(
                """
                UPDATE credentials
                SET last_rotated_at = %s,
                    next_rotation_at = %s + make_interval(days => rotation_interval_days),
                    updated_at = %s
                WHERE id = %s::uuid AND active_rotation_id = %s::uuid
                RETURNING *
                """,
                (completed_at, completed_at, completed_at, cred_key, log_key),
            )
            row = cur.fetchone()
            if row is None:
                # rolls back the ledger update above
                raise InvalidState(f"Credential {credential_id} is no longer claimed by {log_id}")
            return Credential.from_row(row)

    def release_claim(self, credential_id: str, log_id: str) -> bool:
        cred_key, log_key = _as_uuid(credential_id), _as_uuid(log_id)
        if cred_key is None or log_key is None:
            return False
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                "UPDATE credentials SET active_rotation_id = NULL "
                "WHERE id = %s::uuid AND active_rotation_id = %s::uuid",
                (cred_key, log_key),
            )
            return cur.rowcount > 0

    def record_failed_attempt(
        self,
        credential_id: str,
        trigger: RotationTrigger,
        error_message: str,
        at: datetime,
    ) -> RotationAttempt:
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(
                """
                INSERT INTO rotation_logs (
                    id, credential_id, rotation_trigger, status,
                    started_at, completed_at, error_message
                ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    str(uuid.uuid4()),
                    credential_id,
                    RotationTrigger(trigger).value,
                    RotationStatus.FAILED.value,
                    at,
                    at,
                    error_message,
                ),
            )
            return RotationAttempt.from_row(cur.fetchone())

    def get_attempt(self, log_id: str) -> RotationAttempt | None:
        key = _as_uuid(log_id)
        if key is None:
            return None
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute("SELECT * FROM rotation_logs WHERE id = %s::uuid", (key,))
            row = cur.fetchone()
            return RotationAttempt.from_row(row) if row else None

    def list_attempts(
        self, credential_id: str | None = None, *, limit: int = 50
    ) -> list[RotationAttempt]:
        conditions: list[str] = []
        values: list[Any] = []
        if credential_id:
            key = _as_uuid(credential_id)
            if key is None:
                return []
            conditions.append("credential_id = %s::uuid")
            values.append(key)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        values.append(limit)
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(
                f"SELECT * FROM rotation_logs {where} ORDER BY started_at DESC LIMIT %s",
                values,
            )
            return [RotationAttempt.from_row(r) for r in cur.fetchall()]

    def last_completed_attempt(self, credential_id: str) -> RotationAttempt | None:
        key = _as_uuid(credential_id)
        if key is None:
            return None
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(
                """
                SELECT * FROM rotation_logs
                WHERE credential_id = %s::uuid AND status = %s
                ORDER BY completed_at DESC NULLS LAST
                LIMIT 1
                """,
                (key, RotationStatus.COMPLETED.value),
            )
            row = cur.fetchone()
            return RotationAttempt.from_row(row) if row else None

    def list_stale_attempts(self, started_before: datetime) -> list[RotationAttempt]:
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(
                "SELECT * FROM rotation_logs WHERE status IN %s AND started_at < %s "
                "ORDER BY started_at",
                (_OPEN_STATUSES, started_before),
            )
            return [RotationAttempt.from_row(r) for r in cur.fetchall()]

    # ─── Secret managers ──────────────────────────────────────────────

    def list_secret_managers(self, *, active_only: bool = True) -> list[SecretManagerRegistration]:
        sql = "SELECT * FROM secret_managers"
        if active_only:
            sql += " WHERE is_active"
        sql += " ORDER BY name"
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(sql)
            return [SecretManagerRegistration.from_row(r) for r in cur.fetchall()]

    def create_secret_manager(
        self,
        name: str,
        type: SecretManagerType,
        *,
        endpoint_url: str | None = None,
        region: str | None = None,
        configuration: dict[str, Any] | None = None,
    ) -> SecretManagerRegistration:
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(
                """
                INSERT INTO secret_managers (id, name, type, endpoint_url, region, configuration)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    str(uuid.uuid4()),
                    name,
                    SecretManagerType(type).value,
                    endpoint_url,
                    region,
                    Json(configuration or {}),
                ),
            )
            return SecretManagerRegistration.from_row(cur.fetchone())
