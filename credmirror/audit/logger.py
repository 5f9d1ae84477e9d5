"""
credmirror audit log — structured records of credential mutations and access control.

Event types:
  - credential.save, credential.delete — mirror store mutations
  - credential.ingest, credential.rebuild — reconciliation passes
  - auth.denied — CRUD call with a missing or wrong management key
  - auth.path_rejected — traversal attempt against the auth directory

Usage:
    from credmirror.audit.logger import log_event
    log_event("credential.save", "Saved gemini-1.json",
              actor="api", target="gemini-1.json", details={...})
"""

from __future__ import annotations

import logging

from psycopg2.extras import Json

logger = logging.getLogger(__name__)

# Pool is imported lazily so tests can swap the factory
_conn_factory = None


def _get_connection():
    if _conn_factory is not None:
        return _conn_factory()

    from credmirror.db.connection import get_pool

    return get_pool().getconn()


def _release_connection(conn) -> None:
    if _conn_factory is not None:
        return
    from credmirror.db.connection import get_pool

    get_pool().putconn(conn)


def set_connection_factory(factory):
    """Override connection factory for testing."""
    global _conn_factory
    _conn_factory = factory


def reset_connection_factory():
    """Reset connection factory to default."""
    global _conn_factory
    _conn_factory = None


def log_event(
    event_type: str,
    action: str,
    *,
    actor: str = "credmirror",
    target: str | None = None,
    details: dict | None = None,
    status: str = "ok",
) -> dict | None:
    """Log a structured audit event.

    Returns {"id": int, "timestamp": str} on success, None on failure.
    Failures are logged but never raised to the caller.
    """
    conn = None
    try:
        conn = _get_connection()
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO audit_log (event_type, actor, action, target, details, status)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING id, timestamp
            """,
            (
                event_type,
                actor,
                action,
                target,
                Json(details) if details else None,
                status,
            ),
        )
        row = cur.fetchone()
        conn.commit()
        return {"id": row[0], "timestamp": row[1].isoformat()}
    except Exception as e:
        logger.warning("Audit log_event failed (%s): %s", event_type, e)
        if conn is not None:
            try:
                conn.rollback()
            except Exception:
                logger.debug("Audit rollback failed", exc_info=True)
        return None
    finally:
        if conn is not None:
            try:
                _release_connection(conn)
            except Exception:
                logger.debug("Audit connection release failed", exc_info=True)
