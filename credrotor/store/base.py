"""
RotationStore — the data-store operations the rotation engine consumes.

Two implementations ship: InMemoryStore (tests, local runs) and
PostgresStore. Any backend that can do an atomic conditional row update
can satisfy open_attempt's single-flight claim.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from credrotor.models import (
    Credential,
    CredentialType,
    RotationAttempt,
    RotationStatus,
    RotationTrigger,
    SecretManagerRegistration,
    SecretManagerType,
)


class RotationStore(Protocol):
    # ─── Credentials ──────────────────────────────────────────────────

    def get_credential(self, credential_id: str) -> Credential | None: ...

    def get_credential_by_name(self, name: str) -> Credential | None: ...

    def list_credentials(self, *, active_only: bool = False) -> list[Credential]: ...

    def list_due_credentials(self, now: datetime) -> list[Credential]: ...

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
    ) -> Credential: ...

    def deactivate_credential(self, credential_id: str) -> bool: ...

    def delete_credential(self, credential_id: str) -> bool: ...

    # ─── Ledger ───────────────────────────────────────────────────────

    def open_attempt(
        self, credential_id: str, trigger: RotationTrigger, started_at: datetime
    ) -> RotationAttempt:
        """Atomically claim the credential and insert an in_progress entry.

        Raises RotationInProgress if another attempt holds the claim and
        InvalidState if the credential is inactive.
        """
        ...

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
        """Move an open entry to a terminal status. Raises InvalidState if already terminal."""
        ...

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
        """Atomically close an open entry as completed and set last_rotated_at.

        Applies only while the entry is open and still holds the credential's
        claim; raises InvalidState (writing nothing) otherwise.
        """
        ...

    def release_claim(self, credential_id: str, log_id: str) -> bool: ...

    def record_failed_attempt(
        self,
        credential_id: str,
        trigger: RotationTrigger,
        error_message: str,
        at: datetime,
    ) -> RotationAttempt: ...

    def get_attempt(self, log_id: str) -> RotationAttempt | None: ...

    def list_attempts(
        self, credential_id: str | None = None, *, limit: int = 50
    ) -> list[RotationAttempt]: ...

    def last_completed_attempt(self, credential_id: str) -> RotationAttempt | None: ...

    def list_stale_attempts(self, started_before: datetime) -> list[RotationAttempt]: ...

    # ─── Secret managers ──────────────────────────────────────────────

    def list_secret_managers(self, *, active_only: bool = True) -> list[SecretManagerRegistration]: ...

    def create_secret_manager(
        self,
        name: str,
        type: SecretManagerType,
        *,
        endpoint_url: str | None = None,
        region: str | None = None,
        configuration: dict[str, Any] | None = None,
    ) -> SecretManagerRegistration: ...
