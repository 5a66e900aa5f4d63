"""
Rotation Engine — drives one rotation attempt from trigger to terminal status.

Attempt lifecycle (strict order; any failure aborts the remaining steps):

  1. open ledger entry (in_progress) + claim credential   [single-flight]
  2. old-secret hash (best-effort, from last completed attempt)
  3. generate new secret                                  [UnsupportedType]
  4. publish to every active secret manager               [best-effort fan-out]
  5. control-plane variable upsert + workspace runs       [upsert failure is fatal]
  6. hash; close entry completed and advance the credential schedule in one
     store write, refused unless the entry is open and still holds the claim
  7. release claim

On failure in 2-7 the entry is closed `failed` with the error message, the
claim is released and the original exception is re-raised. Step 6 is
all-or-nothing, so credential bookkeeping is never touched by a failure.

There is no internal scheduler: an external trigger calls sweep_due()
(scheduled) or rotate() (manual / emergency). reconcile_stale() closes
attempts abandoned by a crashed process so their claim is released.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from credrotor.errors import InvalidState, NotFound
from credrotor.generator import GENERATORS, SecretGenerator, generate_secret, hash_secret
from credrotor.models import (
    Credential,
    CredentialType,
    RotationResult,
    RotationStatus,
    RotationTrigger,
    SweepOutcome,
    SyncResult,
)
from credrotor.publisher import SecretStorePublisher
from credrotor.store.base import RotationStore

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER = timedelta(minutes=30)

Clock = Callable[[], datetime]
AuditHook = Callable[..., Any]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _safe_audit(outcome: str, credential: Credential, **kwargs: Any) -> None:
    """Wrap audit logging so it never propagates exceptions."""
    try:
        from credrotor.audit.logger import log_rotation

        log_rotation(outcome, credential.name, credential.id, **kwargs)
    except Exception as e:
        logger.warning("Audit call failed (non-fatal): %s", e)


def _safe_audit_event(event_type: str, action: str, **kwargs: Any) -> None:
    try:
        from credrotor.audit.logger import log_event

        log_event(event_type, action, **kwargs)
    except Exception as e:
        logger.warning("Audit call failed (non-fatal): %s", e)


class RotationEngine:
    """Rotation state machine, due-set sweep and stale-attempt reconciliation."""

    def __init__(
        self,
        store: RotationStore,
        publisher: SecretStorePublisher,
        sync: Any | None = None,
        *,
        generators: Mapping[CredentialType, SecretGenerator] | None = None,
        clock: Clock | None = None,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        audit: AuditHook | None = None,
        audit_event: AuditHook | None = None,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self.sync = sync
        self.generators = dict(GENERATORS if generators is None else generators)
        self.clock = clock or _utcnow
        self.stale_after = stale_after
        self.audit = audit or _safe_audit
        self.audit_event = audit_event or _safe_audit_event

    # ─── Lookup ───────────────────────────────────────────────────────

    def resolve_credential(self, credential_ref: str) -> Credential:
        """Find a credential by id, then by name. Raises NotFound."""
        credential = self.store.get_credential(credential_ref)
        if credential is None:
            credential = self.store.get_credential_by_name(credential_ref)
        if credential is None:
            raise NotFound(f"Credential not found: {credential_ref}")
        return credential

    def find_due(self, now: datetime | None = None) -> list[Credential]:
        """Due set: active credentials with next_rotation_at <= now. Pure read."""
        return self.store.list_due_credentials(now or self.clock())

    # ─── Single rotation ──────────────────────────────────────────────

    def rotate(
        self,
        credential_id: str,
        trigger: RotationTrigger | str = RotationTrigger.MANUAL,
    ) -> RotationResult:
        """Rotate one credential. Raises NotFound / InvalidState before opening an attempt;
        any later failure is recorded on the ledger entry and re-raised."""
        trigger = RotationTrigger(trigger)
        credential = self.resolve_credential(credential_id)
        if not credential.is_active:
            raise InvalidState(f"Credential {credential.name} is inactive")

        log_id = self._open_attempt(credential, trigger)
        return self._execute(credential, trigger, log_id)

    def _open_attempt(self, credential: Credential, trigger: RotationTrigger) -> str:
        attempt = self.store.open_attempt(credential.id, trigger, self.clock())
        logger.info(
            "Starting rotation for credential %s (trigger: %s, log: %s)",
            credential.name,
            trigger.value,
            attempt.id,
        )
        self.audit("start", credential, log_id=attempt.id, trigger=trigger.value)
        return attempt.id

    def _old_secret_hash(self, credential: Credential) -> str | None:
        try:
            previous = self.store.last_completed_attempt(credential.id)
        except Exception as e:
            logger.warning("Could not resolve previous secret hash for %s: %s", credential.name, e)
            return None
        return previous.new_secret_hash if previous else None

    def _sync(self, credential: Credential, value: str) -> SyncResult | None:
        if self.sync is None or not getattr(self.sync, "enabled", True):
            logger.info("Control-plane sync not configured; skipping for %s", credential.name)
            return None
        return self.sync.sync(credential, value)

    def _execute(
        self, credential: Credential, trigger: RotationTrigger, log_id: str
    ) -> RotationResult:
        metadata: dict[str, Any] = {}
        old_hash: str | None = None
        try:
            old_hash = self._old_secret_hash(credential)

            logger.info("Rotating %s credential: %s", credential.type.value, credential.name)
            new_value = generate_secret(credential.type, self.generators)

            registrations = self.store.list_secret_managers(active_only=True)
            publish_results = self.publisher.publish(
                credential.external_secret_path, new_value, registrations
            )
            metadata["publish"] = [r.to_dict() for r in publish_results]

            sync_result = self._sync(credential, new_value)
            if sync_result is not None:
                metadata["sync"] = sync_result.to_dict()

            new_hash = hash_secret(new_value)
            # ledger entry and credential schedule move together or not at all
            self.store.complete_attempt(
                log_id,
                credential.id,
                self.clock(),
                old_secret_hash=old_hash,
                new_secret_hash=new_hash,
                metadata=metadata,
            )
        except Exception as e:
            logger.error("Rotation failed for %s: %s", credential.name, e)
            self._fail(credential, log_id, e, old_hash, metadata)
            raise
        finally:
            self.store.release_claim(credential.id, log_id)

        logger.info("Successfully rotated credential %s (log: %s)", credential.name, log_id)
        self.audit("complete", credential, log_id=log_id, trigger=trigger.value)
        return RotationResult(
            log_id=log_id,
            credential_id=credential.id,
            new_secret_hash=new_hash,
            publish_results=publish_results,
            sync_result=sync_result,
        )

    def _fail(
        self,
        credential: Credential,
        log_id: str,
        error: Exception,
        old_hash: str | None,
        metadata: dict[str, Any],
    ) -> None:
        metadata["error_type"] = type(error).__name__
        try:
            self.store.finish_attempt(
                log_id,
                RotationStatus.FAILED,
                self.clock(),
                error_message=str(error),
                old_secret_hash=old_hash,
                metadata=metadata,
            )
        except InvalidState:
            # entry was closed elsewhere, e.g. by reconcile_stale
            logger.warning("Rotation log %s already terminal; not marking failed", log_id)
        except Exception as e:
            logger.error("Failed to record failure on rotation log %s: %s", log_id, e)
        self.audit("failed", credential, log_id=log_id, details={"error": str(error)})

    # ─── Scheduled sweep ──────────────────────────────────────────────

    def sweep_due(self, now: datetime | None = None) -> list[SweepOutcome]:
        """Rotate every due credential with trigger `scheduled`.

        Per-credential failures are recorded and never abort the sweep. A
        credential deactivated after the due set was read is refused by the
        store claim and reported as a failed outcome.
        """
        due = self.find_due(now)
        logger.info("Found %d credentials needing rotation", len(due))

        outcomes: list[SweepOutcome] = []
        for credential in due:
            log_id: str | None = None
            try:
                log_id = self._open_attempt(credential, RotationTrigger.SCHEDULED)
                result = self._execute(credential, RotationTrigger.SCHEDULED, log_id)
                outcomes.append(
                    SweepOutcome(credential.id, credential.name, True, log_id=result.log_id)
                )
            except Exception as e:
                logger.error("Failed to rotate credential %s: %s", credential.name, e)
                if log_id is None:
                    log_id = self._record_unopened_failure(credential, e)
                outcomes.append(
                    SweepOutcome(credential.id, credential.name, False, log_id=log_id, error=str(e))
                )

        failed = sum(1 for o in outcomes if not o.success)
        logger.info(
            "Scheduled rotation check completed: %d rotated, %d failed",
            len(outcomes) - failed,
            failed,
        )
        self.audit_event(
            "sweep.run",
            f"Sweep rotated {len(outcomes) - failed} of {len(outcomes)} due credential(s)",
            category="sweep",
            details={
                "processed": len(outcomes),
                "failed": [o.credential_name for o in outcomes if not o.success],
            },
            status="error" if failed else "ok",
        )
        return outcomes

    def _record_unopened_failure(self, credential: Credential, error: Exception) -> str | None:
        try:
            attempt = self.store.record_failed_attempt(
                credential.id, RotationTrigger.SCHEDULED, str(error), self.clock()
            )
            return attempt.id
        except Exception as e:
            logger.error("Could not record failed attempt for %s: %s", credential.name, e)
            return None

    # ─── Reconciliation ───────────────────────────────────────────────

    def reconcile_stale(self, now: datetime | None = None) -> list[str]:
        """Close attempts left in progress longer than stale_after and release their claims.

        Returns the ids of the entries marked failed.
        """
        now = now or self.clock()
        cutoff = now - self.stale_after
        closed: list[str] = []
        for attempt in self.store.list_stale_attempts(cutoff):
            try:
                self.store.finish_attempt(
                    attempt.id,
                    RotationStatus.FAILED,
                    now,
                    error_message=(
                        f"abandoned: attempt in progress since {attempt.started_at.isoformat()}"
                    ),
                    metadata={"reconciled": True},
                )
            except InvalidState:
                # finished between listing and update
                continue
            self.store.release_claim(attempt.credential_id, attempt.id)
            closed.append(attempt.id)
            logger.warning(
                "Reconciled abandoned rotation %s for credential %s",
                attempt.id,
                attempt.credential_id,
            )
            credential = self.store.get_credential(attempt.credential_id)
            if credential is not None:
                self.audit("reconcile", credential, log_id=attempt.id)
        return closed


def build_engine(config=None, store: RotationStore | None = None) -> RotationEngine:
    """Wire an engine from config: Postgres store, default writers, control-plane sync."""
    from credrotor.config import get_config
    from credrotor.controlplane.sync import ControlPlaneSync

    cfg = config or get_config()
    if store is None:
        from credrotor.store.postgres import PostgresStore

        store = PostgresStore()
    return RotationEngine(
        store,
        SecretStorePublisher(timeout=cfg.rotation.request_timeout_seconds),
        ControlPlaneSync(cfg.control_plane),
        stale_after=timedelta(minutes=cfg.rotation.stale_after_minutes),
    )
