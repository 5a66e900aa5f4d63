"""In-process RotationStore guarded by a single lock. Used by tests and local runs."""

from __future__ import annotations

import copy
import threading
from datetime import UTC, datetime
from typing import Any

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


class InMemoryStore:
    """Dict-backed store. Returned objects are copies; mutate through the store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._credentials: dict[str, Credential] = {}
        self._attempts: dict[str, RotationAttempt] = {}
        self._managers: dict[str, SecretManagerRegistration] = {}

    # ─── Credentials ──────────────────────────────────────────────────

    def get_credential(self, credential_id: str) -> Credential | None:
        with self._lock:
            cred = self._credentials.get(credential_id)
            return copy.deepcopy(cred) if cred else None

    def get_credential_by_name(self, name: str) -> Credential | None:
        with self._lock:
            for cred in self._credentials.values():
                if cred.name == name:
                    return copy.deepcopy(cred)
            return None

    def list_credentials(self, *, active_only: bool = False) -> list[Credential]:
        with self._lock:
            creds = [c for c in self._credentials.values() if c.is_active or not active_only]
            return [copy.deepcopy(c) for c in sorted(creds, key=lambda c: c.name)]

    def list_due_credentials(self, now: datetime) -> list[Credential]:
        with self._lock:
            due = [c for c in self._credentials.values() if c.is_due(now)]
            return [copy.deepcopy(c) for c in sorted(due, key=lambda c: c.next_rotation_at)]

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
        created_at: datetime | None = None,
    ) -> Credential:
        kwargs: dict[str, Any] = {}
        if created_at is not None:
            kwargs["created_at"] = created_at
            kwargs["updated_at"] = created_at
        cred = Credential(
            name=name,
            type=type,
            external_secret_path=external_secret_path,
            rotation_interval_days=rotation_interval_days,
            description=description,
            expires_at=expires_at,
            metadata=dict(metadata or {}),
            **kwargs,
        )
        with self._lock:
            if any(c.name == name for c in self._credentials.values()):
                raise InvalidState(f"Credential {name!r} already exists")
            self._credentials[cred.id] = cred
            return copy.deepcopy(cred)

    def deactivate_credential(self, credential_id: str) -> bool:
        with self._lock:
            cred = self._credentials.get(credential_id)
            if cred is None or not cred.is_active:
                return False
            cred.is_active = False
            cred.updated_at = datetime.now(UTC)
            return True

    def delete_credential(self, credential_id: str) -> bool:
        with self._lock:
            if self._credentials.pop(credential_id, None) is None:
                return False
            for log_id in [a.id for a in self._attempts.values() if a.credential_id == credential_id]:
                del self._attempts[log_id]
            return True

    # ─── Ledger ───────────────────────────────────────────────────────

    def open_attempt(
        self, credential_id: str, trigger: RotationTrigger, started_at: datetime
    ) -> RotationAttempt:
        with self._lock:
            cred = self._credentials.get(credential_id)
            if cred is None:
                raise NotFound(f"Credential not found: {credential_id}")
            if cred.active_rotation_id is not None:
                raise RotationInProgress(credential_id, cred.active_rotation_id)
            if not cred.is_active:
                raise InvalidState(f"Credential {cred.name} is inactive")
            attempt = RotationAttempt(
                credential_id=credential_id,
                trigger=RotationTrigger(trigger),
                status=RotationStatus.IN_PROGRESS,
                started_at=started_at,
            )
            cred.active_rotation_id = attempt.id
            self._attempts[attempt.id] = attempt
            return copy.deepcopy(attempt)

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
        with self._lock:
            attempt = self._attempts.get(log_id)
            if attempt is None:
                raise NotFound(f"Rotation log not found: {log_id}")
            if attempt.is_terminal:
                raise InvalidState(f"Rotation log {log_id} is already {attempt.status.value}")
            attempt.status = RotationStatus(status)
            attempt.completed_at = completed_at
            attempt.error_message = error_message
            if old_secret_hash is not None:
                attempt.old_secret_hash = old_secret_hash
            if new_secret_hash is not None:
                attempt.new_secret_hash = new_secret_hash
            if metadata:
                attempt.metadata.update(metadata)
            return copy.deepcopy(attempt)

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
        with self._lock:
            attempt = self._attempts.get(log_id)
            if attempt is None or attempt.credential_id != credential_id:
                raise NotFound(f"Rotation log not found: {log_id}")
            if attempt.is_terminal:
                raise InvalidState(f"Rotation log {log_id} is already {attempt.status.value}")
            cred = self._credentials.get(credential_id)
            if cred is None:
                raise NotFound(f"Credential not found: {credential_id}")
            if cred.active_rotation_id != log_id:
                raise InvalidState(f"Credential {cred.name} is no longer claimed by {log_id}")

            attempt.status = RotationStatus.COMPLETED
            attempt.completed_at = completed_at
            attempt.old_secret_hash = old_secret_hash
            attempt.new_secret_hash = new_secret_hash
            attempt.metadata.update(metadata or {})

            cred.last_rotated_at = completed_at
            cred.updated_at = completed_at
            cred.refresh_schedule()
            return copy.deepcopy(cred)

    def release_claim(self, credential_id: str, log_id: str) -> bool:
        with self._lock:
            cred = self._credentials.get(credential_id)
            if cred is None or cred.active_rotation_id != log_id:
                return False
            cred.active_rotation_id = None
            return True

    def record_failed_attempt(
        self,
        credential_id: str,
        trigger: RotationTrigger,
        error_message: str,
        at: datetime,
    ) -> RotationAttempt:
        attempt = RotationAttempt(
            credential_id=credential_id,
            trigger=RotationTrigger(trigger),
            status=RotationStatus.FAILED,
            started_at=at,
            completed_at=at,
            error_message=error_message,
        )
        with self._lock:
            self._attempts[attempt.id] = attempt
            return copy.deepcopy(attempt)

    def get_attempt(self, log_id: str) -> RotationAttempt | None:
        with self._lock:
            attempt = self._attempts.get(log_id)
            return copy.deepcopy(attempt) if attempt else None

    def list_attempts(
        self, credential_id: str | None = None, *, limit: int = 50
    ) -> list[RotationAttempt]:
        with self._lock:
            rows = [
                a
                for a in self._attempts.values()
                if credential_id is None or a.credential_id == credential_id
            ]
            rows.sort(key=lambda a: a.started_at, reverse=True)
            return [copy.deepcopy(a) for a in rows[:limit]]

    def last_completed_attempt(self, credential_id: str) -> RotationAttempt | None:
        with self._lock:
            done = [
                a
                for a in self._attempts.values()
                if a.credential_id == credential_id and a.status == RotationStatus.COMPLETED
            ]
            if not done:
                return None
            return copy.deepcopy(max(done, key=lambda a: a.completed_at or a.started_at))

    def list_stale_attempts(self, started_before: datetime) -> list[RotationAttempt]:
        with self._lock:
            return [
                copy.deepcopy(a)
                for a in self._attempts.values()
                if a.status in (RotationStatus.PENDING, RotationStatus.IN_PROGRESS)
                and a.started_at < started_before
            ]

    # ─── Secret managers ──────────────────────────────────────────────

    def list_secret_managers(self, *, active_only: bool = True) -> list[SecretManagerRegistration]:
        with self._lock:
            return [
                copy.deepcopy(m)
                for m in sorted(self._managers.values(), key=lambda m: m.name)
                if m.is_active or not active_only
            ]

    def create_secret_manager(
        self,
        name: str,
        type: SecretManagerType,
        *,
        endpoint_url: str | None = None,
        region: str | None = None,
        configuration: dict[str, Any] | None = None,
    ) -> SecretManagerRegistration:
        registration = SecretManagerRegistration(
            name=name,
            type=type,
            endpoint_url=endpoint_url,
            region=region,
            configuration=dict(configuration or {}),
        )
        with self._lock:
            if any(m.name == name for m in self._managers.values()):
                raise InvalidState(f"Secret manager {name!r} already exists")
            self._managers[registration.id] = registration
            return copy.deepcopy(registration)
