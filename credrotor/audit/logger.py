"""
credrotor Audit Log — append-only trail of rotation and admin events.

Event types:
  - rotation.start, rotation.complete, rotation.failed
  - rotation.reconcile (abandoned attempt closed)
  - sweep.run
  - credential.create, credential.deactivate, credential.delete

rotation_logs is the system of record for attempts. This log additionally
covers admin actions and is what operators grep during an incident.

Usage:
    from credrotor.audit.logger import log_event
    log_event("rotation.complete", "Rotated artifactory-token",
              target="credential:uuid", details={"log_id": "..."})
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from psycopg2.extras import Json

logger = logging.getLogger(__name__)

AUDIT_COLUMNS = (
    "id",
    "timestamp",
    "event_type",
    "category",
    "actor",
    "action",
    "details",
    "target",
    "status",
)

# Outcomes recorded with status "error".
_ERROR_OUTCOMES = frozenset({"failed", "reconcile"})

_conn_factory: Callable[[], Any] | None = None


def set_connection_factory(factory: Callable[[], Any]) -> None:
    """Route audit writes to ``factory()`` instead of the shared pool (tests, scripts)."""
    global _conn_factory
    _conn_factory = factory


def reset_connection_factory() -> None:
    global _conn_factory
    _conn_factory = None


@contextmanager
def _audit_connection() -> Iterator[Any]:
    if _conn_factory is not None:
        yield _conn_factory()
        return

    # Imported here so importing the audit module never touches config or the pool.
    from credrotor.db.connection import get_pool

    pool = get_pool()
    conn = pool.getconn()
    try:
        yield conn
    finally:
        pool.putconn(conn)


def log_event(
    event_type: str,
    action: str,
    *,
    category: str | None = None,
    actor: str = "credrotor",
    details: dict | None = None,
    target: str | None = None,
    status: str = "ok",
) -> dict | None:
    """Append one audit event.

    The category defaults to the event type's prefix ("rotation" for
    "rotation.failed"). Returns ``{"id", "timestamp"}``, or None when the
    write failed; the failure is logged and never propagates.
    """
    row = (
        event_type,
        category or event_type.partition(".")[0],
        actor,
        action,
        Json(details) if details else None,
        target,
        status,
    )
    try:
        with _audit_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                "INSERT INTO audit_log "
                "(event_type, category, actor, action, details, target, status) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s) RETURNING id, timestamp",
                row,
            )
            event_id, ts = cur.fetchone()
            conn.commit()
    except Exception as e:
        logger.warning("Audit write for %s failed: %s", event_type, e)
        return None
    return {"id": event_id, "timestamp": ts.isoformat()}


def log_rotation(
    outcome: str,
    credential_name: str,
    credential_id: str,
    *,
    log_id: str | None = None,
    trigger: str | None = None,
    details: dict | None = None,
) -> dict | None:
    """Record a rotation lifecycle event (start, complete, failed, reconcile)."""
    payload = dict(details or {})
    if log_id:
        payload["log_id"] = log_id
    if trigger:
        payload["trigger"] = trigger
    return log_event(
        f"rotation.{outcome}",
        f"{outcome} rotation of {credential_name}",
        category="rotation",
        target=f"credential:{credential_id}",
        details=payload or None,
        status="error" if outcome in _ERROR_OUTCOMES else "ok",
    )


def query_log(
    limit: int = 50,
    event_type: str | None = None,
    category: str | None = None,
    target: str | None = None,
    since: str | None = None,
    status: str | None = None,
) -> list[dict]:
    """Newest-first audit events matching every given filter. Empty on error."""
    filters = [
        ("event_type = %s", event_type),
        ("category = %s", category),
        ("target LIKE %s", f"%{target}%" if target else None),
        ("timestamp >= %s", since),
        ("status = %s", status),
    ]
    clauses = [clause for clause, value in filters if value]
    params: list = [value for _, value in filters if value]
    params.append(limit)

    sql = f"SELECT {', '.join(AUDIT_COLUMNS)} FROM audit_log"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY timestamp DESC LIMIT %s"

    try:
        with _audit_connection() as conn:
            cur = conn.cursor()
            cur.execute(sql, params)
            rows = cur.fetchall()
    except Exception as e:
        logger.warning("Audit query failed: %s", e)
        return []

    events = [dict(zip(AUDIT_COLUMNS, r, strict=True)) for r in rows]
    for event in events:
        event["timestamp"] = event["timestamp"].isoformat()
    return events
