"""
Pooled PostgreSQL access for the credential, ledger and audit tables.

API workers and sweep threads share one psycopg2 ThreadedConnectionPool,
sized from CREDROTOR_DB_POOL_MIN / CREDROTOR_DB_POOL_MAX.

Usage:
    from credrotor.db import get_connection

    with get_connection() as conn, conn.cursor() as cur:
        cur.execute("SELECT 1")
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

import psycopg2
import psycopg2.pool

from credrotor.config import DatabaseConfig, get_config

logger = logging.getLogger(__name__)

_pool: psycopg2.pool.ThreadedConnectionPool | None = None
_lock = threading.Lock()


def _open_pool(cfg: DatabaseConfig) -> psycopg2.pool.ThreadedConnectionPool:
    logger.info(
        "Opening PostgreSQL pool %s (size %d..%d)", cfg.describe(), cfg.pool_min, cfg.pool_max
    )
    try:
        return psycopg2.pool.ThreadedConnectionPool(
            cfg.pool_min, cfg.pool_max, **cfg.connect_kwargs
        )
    except psycopg2.OperationalError as e:
        raise ConnectionError(
            f"PostgreSQL unreachable at {cfg.describe()}: {e}. "
            "Check the CREDROTOR_DB_* settings."
        ) from e


def get_pool() -> psycopg2.pool.ThreadedConnectionPool:
    """Return the shared pool, opening it on first use or after close_pool()."""
    global _pool
    with _lock:
        if _pool is None or _pool.closed:
            _pool = _open_pool(get_config().db)
        return _pool


@contextmanager
def get_connection() -> Iterator[psycopg2.extensions.connection]:
    """Borrow a pooled connection for one transaction.

    The transaction commits when the block exits normally and rolls back when
    it raises; the error propagates either way.
    """
    pool = get_pool()
    conn = pool.getconn()
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    else:
        conn.commit()
    finally:
        pool.putconn(conn)


def close_pool() -> None:
    global _pool
    with _lock:
        if _pool is not None:
            _pool.closeall()
        _pool = None
