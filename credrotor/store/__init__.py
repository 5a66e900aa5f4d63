"""Data stores for credentials, the rotation ledger and secret-manager registrations."""

from credrotor.store.base import RotationStore
from credrotor.store.memory import InMemoryStore

__all__ = ["InMemoryStore", "RotationStore"]
