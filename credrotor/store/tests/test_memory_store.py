"""Tests for InMemoryStore — schedule derivation, ledger immutability, claims."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from credrotor.errors import InvalidState, NotFound, RotationInProgress
from credrotor.models import CredentialType, RotationStatus, RotationTrigger, SecretManagerType


class TestCredentials:
    def test_next_rotation_derived_on_create(self, store, clock):
        cred = store.create_credential(
            "svc", CredentialType.SERVICE_ACCOUNT_PASSWORD, "p/svc",
            rotation_interval_days=14, created_at=clock.now,
        )
        assert cred.next_rotation_at == clock.now + timedelta(days=14)

    def test_complete_attempt_advances_schedule(self, store, clock, artifactory_token):
        attempt = store.open_attempt(artifactory_token.id, RotationTrigger.MANUAL, clock.now)
        clock.advance(days=2)
        cred = store.complete_attempt(
            attempt.id, artifactory_token.id, clock.now, new_secret_hash="h1"
        )
        assert cred.last_rotated_at == clock.now
        assert cred.next_rotation_at == clock.now + timedelta(days=30)
        done = store.get_attempt(attempt.id)
        assert done.status == RotationStatus.COMPLETED
        assert done.completed_at == clock.now
        assert done.new_secret_hash == "h1"

    def test_complete_refused_after_terminal(self, store, clock, artifactory_token):
        attempt = store.open_attempt(artifactory_token.id, RotationTrigger.MANUAL, clock.now)
        store.finish_attempt(attempt.id, RotationStatus.FAILED, clock.now, error_message="x")
        with pytest.raises(InvalidState):
            store.complete_attempt(attempt.id, artifactory_token.id, clock.now)
        assert store.get_credential(artifactory_token.id).last_rotated_at is None

    def test_complete_refused_without_claim(self, store, clock, artifactory_token):
        attempt = store.open_attempt(artifactory_token.id, RotationTrigger.MANUAL, clock.now)
        store.release_claim(artifactory_token.id, attempt.id)
        with pytest.raises(InvalidState):
            store.complete_attempt(attempt.id, artifactory_token.id, clock.now)
        assert store.get_credential(artifactory_token.id).last_rotated_at is None
        assert store.get_attempt(attempt.id).status == RotationStatus.IN_PROGRESS

    def test_complete_missing(self, store, clock, artifactory_token):
        with pytest.raises(NotFound):
            store.complete_attempt("nope", artifactory_token.id, clock.now)

    def test_duplicate_name_rejected(self, store, artifactory_token):
        with pytest.raises(InvalidState):
            store.create_credential("artifactory-token", CredentialType.ACCESS_TOKEN, "p/x")

    def test_invalid_interval_rejected(self, store):
        with pytest.raises(ValueError):
            store.create_credential("x", CredentialType.ACCESS_TOKEN, "p/x", rotation_interval_days=0)

    def test_returned_objects_are_copies(self, store, artifactory_token):
        artifactory_token.is_active = False
        assert store.get_credential(artifactory_token.id).is_active is True

    def test_lookup_by_name(self, store, artifactory_token):
        assert store.get_credential_by_name("artifactory-token").id == artifactory_token.id
        assert store.get_credential_by_name("missing") is None

    def test_deactivate(self, store, artifactory_token):
        assert store.deactivate_credential(artifactory_token.id) is True
        assert store.deactivate_credential(artifactory_token.id) is False
        assert store.list_credentials(active_only=True) == []
        assert len(store.list_credentials()) == 1

    def test_delete_cascades_to_history(self, store, clock, artifactory_token):
        attempt = store.open_attempt(artifactory_token.id, RotationTrigger.MANUAL, clock.now)
        assert store.delete_credential(artifactory_token.id) is True
        assert store.get_attempt(attempt.id) is None
        assert store.delete_credential(artifactory_token.id) is False

    def test_due_excludes_inactive(self, store, clock, artifactory_token):
        assert [c.id for c in store.list_due_credentials(clock.now)] == [artifactory_token.id]
        store.deactivate_credential(artifactory_token.id)
        assert store.list_due_credentials(clock.now) == []


class TestLedger:
    def test_open_claims_credential(self, store, clock, artifactory_token):
        attempt = store.open_attempt(artifactory_token.id, RotationTrigger.MANUAL, clock.now)
        assert attempt.status == RotationStatus.IN_PROGRESS
        assert store.get_credential(artifactory_token.id).active_rotation_id == attempt.id

    def test_open_refused_while_claimed(self, store, clock, artifactory_token):
        first = store.open_attempt(artifactory_token.id, RotationTrigger.MANUAL, clock.now)
        with pytest.raises(RotationInProgress) as exc:
            store.open_attempt(artifactory_token.id, RotationTrigger.SCHEDULED, clock.now)
        assert exc.value.holder == first.id

    def test_open_refused_when_inactive(self, store, clock, artifactory_token):
        store.deactivate_credential(artifactory_token.id)
        with pytest.raises(InvalidState, match="inactive"):
            store.open_attempt(artifactory_token.id, RotationTrigger.SCHEDULED, clock.now)
        assert store.list_attempts(artifactory_token.id) == []
        assert store.get_credential(artifactory_token.id).active_rotation_id is None

    def test_open_missing_credential(self, store, clock):
        with pytest.raises(NotFound):
            store.open_attempt("nope", RotationTrigger.MANUAL, clock.now)

    def test_concurrent_open_single_winner(self, store, clock, artifactory_token):
        results = []

        def claim():
            try:
                store.open_attempt(artifactory_token.id, RotationTrigger.MANUAL, clock.now)
                results.append("won")
            except RotationInProgress:
                results.append("refused")

        threads = [threading.Thread(target=claim) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count("won") == 1
        assert results.count("refused") == 7

    def test_finish_then_immutable(self, store, clock, artifactory_token):
        attempt = store.open_attempt(artifactory_token.id, RotationTrigger.MANUAL, clock.now)
        done = store.finish_attempt(
            attempt.id, RotationStatus.COMPLETED, clock.now,
            new_secret_hash="abc", metadata={"publish": []},
        )
        assert done.is_terminal
        with pytest.raises(InvalidState):
            store.finish_attempt(attempt.id, RotationStatus.FAILED, clock.now, error_message="x")
        assert store.get_attempt(attempt.id).status == RotationStatus.COMPLETED

    def test_finish_missing(self, store, clock):
        with pytest.raises(NotFound):
            store.finish_attempt("nope", RotationStatus.FAILED, clock.now)

    def test_release_requires_holder(self, store, clock, artifactory_token):
        attempt = store.open_attempt(artifactory_token.id, RotationTrigger.MANUAL, clock.now)
        assert store.release_claim(artifactory_token.id, "someone-else") is False
        assert store.release_claim(artifactory_token.id, attempt.id) is True
        assert store.get_credential(artifactory_token.id).active_rotation_id is None

    def test_last_completed_and_stale(self, store, clock, artifactory_token):
        a = store.open_attempt(artifactory_token.id, RotationTrigger.MANUAL, clock.now)
        store.finish_attempt(a.id, RotationStatus.COMPLETED, clock.now, new_secret_hash="h1")
        store.release_claim(artifactory_token.id, a.id)
        clock.advance(hours=1)
        b = store.open_attempt(artifactory_token.id, RotationTrigger.MANUAL, clock.now)

        assert store.last_completed_attempt(artifactory_token.id).new_secret_hash == "h1"
        assert [x.id for x in store.list_stale_attempts(clock.now + timedelta(seconds=1))] == [b.id]
        assert store.list_stale_attempts(clock.now) == []

    def test_history_newest_first(self, store, clock, artifactory_token):
        first = store.record_failed_attempt(
            artifactory_token.id, RotationTrigger.SCHEDULED, "boom", clock.now
        )
        clock.advance(minutes=1)
        second = store.record_failed_attempt(
            artifactory_token.id, RotationTrigger.SCHEDULED, "boom", clock.now
        )
        assert [a.id for a in store.list_attempts(artifactory_token.id)] == [second.id, first.id]
        assert [a.id for a in store.list_attempts(limit=1)] == [second.id]


class TestSecretManagers:
    def test_create_and_list(self, store):
        store.create_secret_manager("vault", SecretManagerType.KEY_VALUE_SECRET_ENGINE)
        store.create_secret_manager("aws", "cloud_secrets_service", region="us-east-1")
        names = [m.name for m in store.list_secret_managers()]
        assert names == ["aws", "vault"]

    def test_duplicate_rejected(self, store):
        store.create_secret_manager("vault", SecretManagerType.KEY_VALUE_SECRET_ENGINE)
        with pytest.raises(InvalidState):
            store.create_secret_manager("vault", SecretManagerType.CLOUD_KEY_VAULT)
