"""Infrastructure control-plane integration (Terraform Cloud JSON:API)."""

from credrotor.controlplane.client import ControlPlaneClient
from credrotor.controlplane.sync import ControlPlaneSync, variable_key_for

__all__ = ["ControlPlaneClient", "ControlPlaneSync", "variable_key_for"]
