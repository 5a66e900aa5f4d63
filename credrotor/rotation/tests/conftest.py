"""
Fixtures for the rotation engine suite.

store, clock, writer and publisher come from the root conftest.py.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from credrotor.models import SecretManagerType
from credrotor.rotation.engine import RotationEngine


@pytest.fixture
def audit():
    return MagicMock()


@pytest.fixture
def audit_event():
    return MagicMock()


@pytest.fixture
def vault_registration(store):
    return store.create_secret_manager(
        "vault-prod",
        SecretManagerType.KEY_VALUE_SECRET_ENGINE,
        endpoint_url="https://vault.internal:8200",
    )


@pytest.fixture
def engine(store, publisher, clock, audit, audit_event, vault_registration):
    """Engine with in-memory store, recording writer and no control-plane sync."""
    return RotationEngine(
        store, publisher, clock=clock, audit=audit, audit_event=audit_event
    )
