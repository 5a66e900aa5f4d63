"""
Data models for credential rotation.

All models are plain dataclasses with StrEnum tags, matching the
frozen-dataclass pattern in credrotor.config. Live secret values never
appear here; only reference paths and SHA-256 hashes.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any


class CredentialType(StrEnum):
    ACCESS_TOKEN = "access_token"
    SERVICE_ACCOUNT_PASSWORD = "service_account_password"
    DIRECTORY_BIND_PASSWORD = "directory_bind_password"
    CERTIFICATE = "certificate"


class RotationTrigger(StrEnum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    EMERGENCY = "emergency"


class RotationStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATUSES = frozenset(
    {RotationStatus.COMPLETED, RotationStatus.FAILED, RotationStatus.SKIPPED}
)


class SecretManagerType(StrEnum):
    CLOUD_SECRETS_SERVICE = "cloud_secrets_service"
    KEY_VALUE_SECRET_ENGINE = "key_value_secret_engine"
    CLOUD_KEY_VAULT = "cloud_key_vault"


def _now() -> datetime:
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def compute_next_rotation(
    last_rotated_at: datetime | None,
    created_at: datetime,
    interval_days: int,
) -> datetime:
    """Next due time: (last rotation, or creation if never rotated) + interval."""
    base = last_rotated_at or created_at
    return base + timedelta(days=interval_days)


@dataclass
class Credential:
    """Metadata for a rotatable secret. next_rotation_at is derived, never set directly."""

    name: str
    type: CredentialType
    external_secret_path: str
    rotation_interval_days: int = 30
    description: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    expires_at: datetime | None = None
    last_rotated_at: datetime | None = None
    next_rotation_at: datetime | None = None
    is_active: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    active_rotation_id: str | None = None

    def __post_init__(self) -> None:
        self.type = CredentialType(self.type)
        if self.rotation_interval_days <= 0:
            raise ValueError(
                f"rotation_interval_days must be positive, got {self.rotation_interval_days}"
            )
        self.refresh_schedule()

    def refresh_schedule(self) -> None:
        """Recompute next_rotation_at from last_rotated_at / created_at."""
        self.next_rotation_at = compute_next_rotation(
            self.last_rotated_at, self.created_at, self.rotation_interval_days
        )

    def is_due(self, now: datetime) -> bool:
        return (
            self.is_active
            and self.next_rotation_at is not None
            and self.next_rotation_at <= now
        )

    @classmethod
    def from_row(cls, row: dict) -> Credential:
        """Build from a credentials row (RealDictCursor)."""
        return cls(
            id=str(row["id"]),
            name=row["name"],
            type=CredentialType(row["type"]),
            description=row.get("description") or "",
            external_secret_path=row["external_secret_path"],
            rotation_interval_days=row["rotation_interval_days"],
            expires_at=row.get("expires_at"),
            last_rotated_at=row.get("last_rotated_at"),
            is_active=row.get("is_active", True),
            metadata=row.get("metadata") or {},
            created_at=row["created_at"],
            updated_at=row.get("updated_at") or row["created_at"],
            active_rotation_id=(
                str(row["active_rotation_id"]) if row.get("active_rotation_id") else None
            ),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "description": self.description,
            "externalSecretPath": self.external_secret_path,
            "rotationIntervalDays": self.rotation_interval_days,
            "expiresAt": _iso(self.expires_at),
            "lastRotatedAt": _iso(self.last_rotated_at),
            "nextRotationAt": _iso(self.next_rotation_at),
            "isActive": self.is_active,
            "rotationInProgress": self.active_rotation_id is not None,
            "metadata": self.metadata,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class RotationAttempt:
    """One ledger entry: a single execution of the rotation state machine."""

    credential_id: str
    trigger: RotationTrigger
    status: RotationStatus = RotationStatus.PENDING
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = field(default_factory=_now)
    completed_at: datetime | None = None
    error_message: str | None = None
    old_secret_hash: str | None = None
    new_secret_hash: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_row(cls, row: dict) -> RotationAttempt:
        return cls(
            id=str(row["id"]),
            credential_id=str(row["credential_id"]),
            trigger=RotationTrigger(row["rotation_trigger"]),
            status=RotationStatus(row["status"]),
            started_at=row["started_at"],
            completed_at=row.get("completed_at"),
            error_message=row.get("error_message"),
            old_secret_hash=row.get("old_secret_hash"),
            new_secret_hash=row.get("new_secret_hash"),
            metadata=row.get("metadata") or {},
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credentialId": self.credential_id,
            "trigger": self.trigger.value,
            "status": self.status.value,
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "errorMessage": self.error_message,
            "oldSecretHash": self.old_secret_hash,
            "newSecretHash": self.new_secret_hash,
            "metadata": self.metadata,
        }


@dataclass
class SecretManagerRegistration:
    """A configured external secret store. Every active one receives every rotated secret."""

    name: str
    type: SecretManagerType
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    endpoint_url: str | None = None
    region: str | None = None
    configuration: dict[str, Any] = field(default_factory=dict)
    is_active: bool = True

    def __post_init__(self) -> None:
        self.type = SecretManagerType(self.type)

    @classmethod
    def from_row(cls, row: dict) -> SecretManagerRegistration:
        return cls(
            id=str(row["id"]),
            name=row["name"],
            type=SecretManagerType(row["type"]),
            endpoint_url=row.get("endpoint_url"),
            region=row.get("region"),
            configuration=row.get("configuration") or {},
            is_active=row.get("is_active", True),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "endpointUrl": self.endpoint_url,
            "region": self.region,
            "configuration": self.configuration,
            "isActive": self.is_active,
        }


@dataclass
class PublishResult:
    """Outcome of one secret-manager write."""

    registration: str
    success: bool
    error: str | None = None

    def to_dict(self) -> dict:
        return {"registration": self.registration, "success": self.success, "error": self.error}


@dataclass
class SyncResult:
    """Outcome of a control-plane variable sync."""

    variable_key: str | None = None
    variable_id: str | None = None
    created: bool = False
    run_ids: list[str] = field(default_factory=list)
    run_failures: list[dict[str, str]] = field(default_factory=list)
    skipped_reason: str | None = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None

    def to_dict(self) -> dict:
        return {
            "variableKey": self.variable_key,
            "variableId": self.variable_id,
            "created": self.created,
            "runIds": self.run_ids,
            "runFailures": self.run_failures,
            "skippedReason": self.skipped_reason,
        }


@dataclass
class RotationResult:
    """Returned to the caller of a successful rotation. Never carries the raw value."""

    log_id: str
    credential_id: str
    new_secret_hash: str
    publish_results: list[PublishResult] = field(default_factory=list)
    sync_result: SyncResult | None = None

    def to_dict(self) -> dict:
        return {
            "logId": self.log_id,
            "credentialId": self.credential_id,
            "newSecretHash": self.new_secret_hash,
            "publishResults": [r.to_dict() for r in self.publish_results],
            "sync": self.sync_result.to_dict() if self.sync_result else None,
        }


@dataclass
class SweepOutcome:
    """Per-credential outcome of a scheduled sweep."""

    credential_id: str
    credential_name: str
    success: bool
    log_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "credentialId": self.credential_id,
            "credentialName": self.credential_name,
            "success": self.success,
            "logId": self.log_id,
        }
        if self.error is not None:
            d["error"] = self.error
        return d
