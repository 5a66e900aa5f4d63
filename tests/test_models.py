"""Tests for credrotor.models — schedule derivation and response shapes."""

from datetime import UTC, datetime, timedelta

import pytest

from credrotor.models import (
    Credential,
    CredentialType,
    RotationAttempt,
    RotationStatus,
    RotationTrigger,
    SweepOutcome,
    SyncResult,
    compute_next_rotation,
)

T0 = datetime(2026, 1, 1, tzinfo=UTC)


class TestSchedule:
    def test_never_rotated_uses_created_at(self):
        assert compute_next_rotation(None, T0, 7) == T0 + timedelta(days=7)

    def test_rotated_uses_last_rotated_at(self):
        last = T0 + timedelta(days=3)
        assert compute_next_rotation(last, T0, 7) == last + timedelta(days=7)

    def test_credential_derives_on_construction(self):
        cred = Credential("t", CredentialType.ACCESS_TOKEN, "p", rotation_interval_days=7,
                          created_at=T0)
        assert cred.next_rotation_at == T0 + timedelta(days=7)

    def test_explicit_next_is_overridden(self):
        cred = Credential("t", "access_token", "p", created_at=T0,
                          next_rotation_at=T0 + timedelta(days=999))
        assert cred.next_rotation_at == T0 + timedelta(days=30)

    def test_refresh_after_rotation(self):
        cred = Credential("t", CredentialType.ACCESS_TOKEN, "p", rotation_interval_days=7,
                          created_at=T0)
        cred.last_rotated_at = T0 + timedelta(days=8)
        cred.refresh_schedule()
        assert cred.next_rotation_at == T0 + timedelta(days=15)

    @pytest.mark.parametrize("days", [0, -1])
    def test_interval_must_be_positive(self, days):
        with pytest.raises(ValueError):
            Credential("t", CredentialType.ACCESS_TOKEN, "p", rotation_interval_days=days)

    def test_is_due_boundary(self):
        cred = Credential("t", CredentialType.ACCESS_TOKEN, "p", rotation_interval_days=1,
                          created_at=T0)
        assert not cred.is_due(T0 + timedelta(hours=23))
        assert cred.is_due(T0 + timedelta(days=1))
        cred.is_active = False
        assert not cred.is_due(T0 + timedelta(days=100))


class TestDicts:
    def test_credential_to_dict_camel_case(self):
        d = Credential("t", CredentialType.ACCESS_TOKEN, "prod/t", created_at=T0).to_dict()
        assert d["externalSecretPath"] == "prod/t"
        assert d["nextRotationAt"] == (T0 + timedelta(days=30)).isoformat()
        assert d["lastRotatedAt"] is None
        assert d["rotationInProgress"] is False

    def test_attempt_terminal(self):
        attempt = RotationAttempt("c", RotationTrigger.MANUAL)
        assert attempt.status == RotationStatus.PENDING
        assert not attempt.is_terminal
        attempt.status = RotationStatus.FAILED
        assert attempt.is_terminal

    def test_sweep_outcome_error_only_on_failure(self):
        assert "error" not in SweepOutcome("c", "n", True, log_id="l").to_dict()
        assert SweepOutcome("c", "n", False, error="boom").to_dict()["error"] == "boom"

    def test_sync_result_skipped(self):
        assert SyncResult(skipped_reason="unmapped").skipped
        assert not SyncResult(variable_key="k").skipped
