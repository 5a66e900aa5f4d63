"""
Error taxonomy for rotation operations.

Fan-out failures (store writes, workspace runs, sweep items) are collected
at their boundary; everything else propagates to the rotation attempt,
which records it verbatim on the ledger entry and re-raises.
"""

from __future__ import annotations


class RotationError(Exception):
    """Base class for all credrotor errors."""


class NotFound(RotationError):
    """A credential, workspace, variable set or ledger entry does not exist."""


class InvalidState(RotationError):
    """Operation not allowed in the current state (inactive credential, terminal entry)."""


class RotationInProgress(InvalidState):
    """Another attempt already holds the single-flight claim for this credential."""

    def __init__(self, credential_id: str, holder: str | None = None) -> None:
        self.credential_id = credential_id
        self.holder = holder
        msg = f"Rotation already in progress for credential {credential_id}"
        if holder:
            msg += f" (attempt {holder})"
        super().__init__(msg)


class UnsupportedType(RotationError):
    """No secret generation strategy is registered for a credential type."""


class UnmappedType(RotationError):
    """No control-plane variable mapping exists for a credential type."""


class StoreWriteFailure(RotationError):
    """A single secret-manager write failed."""

    def __init__(self, registration: str, message: str) -> None:
        self.registration = registration
        super().__init__(f"{registration}: {message}")


class ControlPlaneError(RotationError):
    """Non-2xx response from the control plane."""

    def __init__(self, status: int, body: str) -> None:
        self.status = status
        self.body = body
        super().__init__(f"Control plane API error: {status} - {body}")


class Timeout(RotationError):
    """A blocking external call exceeded its time bound."""
