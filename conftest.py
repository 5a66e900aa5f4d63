"""
Root-level shared test fixtures.

Inherited by tests/ and the per-subpackage suites under credrotor/*/tests/.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from credrotor.audit.logger import reset_connection_factory, set_connection_factory
from credrotor.models import CredentialType, SecretManagerType
from credrotor.publisher import SecretStorePublisher
from credrotor.store.memory import InMemoryStore

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def test_prefix():
    """Unique prefix for test isolation."""
    return f"test_{uuid.uuid4().hex[:8]}"


@pytest.fixture
def clean_env(monkeypatch):
    """Remove env vars that leak between tests."""
    for key in [
        "CREDROTOR_DB_HOST",
        "CREDROTOR_DB_PORT",
        "CREDROTOR_DB_NAME",
        "CREDROTOR_DB_USER",
        "CREDROTOR_DB_PASSWORD",
        "CREDROTOR_DB_SSLMODE",
        "CREDROTOR_DB_POOL_MIN",
        "CREDROTOR_DB_POOL_MAX",
        "CREDROTOR_REQUEST_TIMEOUT",
        "CREDROTOR_STALE_AFTER_MINUTES",
        "CREDROTOR_API_PORT",
        "TFC_API_TOKEN",
        "TFC_ORGANIZATION",
        "TFC_VARIABLE_SET_ID",
        "TFC_WORKSPACES",
        "TFC_BASE_URL",
    ]:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def offline_audit():
    """Audit writes go to a mock connection unless a test installs its own."""
    set_connection_factory(MagicMock)
    yield
    reset_connection_factory()


class Clock:
    """Settable clock for deterministic timestamps."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingWriter:
    """Secret-store writer that records writes and can be told to fail."""

    def __init__(self, fail_with: Exception | None = None):
        self.fail_with = fail_with
        self.writes: list[tuple[str, str, str]] = []

    def write(self, path, value, registration):
        if self.fail_with is not None:
            raise self.fail_with
        self.writes.append((registration.name, path, value))


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def make_writer():
    """Factory for extra recording writers: make_writer(fail_with=...)."""
    return RecordingWriter


@pytest.fixture
def writer():
    return RecordingWriter()


@pytest.fixture
def publisher(writer):
    return SecretStorePublisher(
        {
            SecretManagerType.CLOUD_SECRETS_SERVICE: writer,
            SecretManagerType.KEY_VALUE_SECRET_ENGINE: writer,
            SecretManagerType.CLOUD_KEY_VAULT: writer,
        }
    )


@pytest.fixture
def artifactory_token(store, clock):
    """Active access token registered 31 days ago with a 30-day interval: due now."""
    return store.create_credential(
        "artifactory-token",
        CredentialType.ACCESS_TOKEN,
        "prod/artifactory/token",
        rotation_interval_days=30,
        created_at=clock.now - timedelta(days=31),
    )
