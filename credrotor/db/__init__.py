"""Database connection management for credrotor."""

from credrotor.db.connection import close_pool, get_connection, get_pool

__all__ = ["close_pool", "get_connection", "get_pool"]
