"""Rotation state machine, scheduled sweep and stale-attempt reconciliation."""

from credrotor.rotation.engine import RotationEngine, build_engine

__all__ = ["RotationEngine", "build_engine"]
