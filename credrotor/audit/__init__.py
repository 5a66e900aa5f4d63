"""Structured audit trail for rotation and admin operations."""

from credrotor.audit.logger import log_event, log_rotation, query_log

__all__ = ["log_event", "log_rotation", "query_log"]
