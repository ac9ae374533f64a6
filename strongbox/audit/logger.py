"""
Strongbox audit log — one row per public vault operation.

Actions follow ``<resource>.<verb>``:
  - secret.create, .read, .list, .list_accessible, .update, .delete, .restore
  - access_request.create, .approve, .reject, .revoke, .expire, .access
  - policy.rule.add, .rule.remove, .role.update, .role.assign, .role.unassign,
    .inheritance.add, .inheritance.remove

Never records payloads, ciphertext or key material.

Usage:
    from strongbox.audit.logger import DatabaseAuditor
    auditor = DatabaseAuditor()
    auditor.log("alice", "secret.read", "secret", record_id)
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor

from psycopg2.extras import Json, RealDictCursor

logger = logging.getLogger(__name__)

# Lazy connection resolution so tests can swap the factory
_conn_factory = None


def _get_connection():
    if _conn_factory is not None:
        return _conn_factory()

    from strongbox.db.connection import get_pool

    return get_pool().getconn()


def _release_connection(conn):
    if _conn_factory is not None:
        return
    try:
        from strongbox.db.connection import get_pool

        get_pool().putconn(conn)
    except Exception:
        conn.close()


def set_connection_factory(factory):
    """Override connection factory for testing."""
    global _conn_factory
    _conn_factory = factory


def reset_connection_factory():
    """Reset connection factory to default."""
    global _conn_factory
    _conn_factory = None


def log_event(
    actor: str,
    action: str,
    resource: str,
    resource_id: str | None = None,
    *,
    details: dict | None = None,
) -> dict | None:
    """Append one audit row.

    Returns {"id": int, "timestamp": str} on success, None on failure.
    Failures are logged but never raise.
    """
    try:
        conn = _get_connection()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO audit_log (actor, action, resource, resource_id, details)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING id, timestamp
                """,
                (actor, action, resource, resource_id, Json(details) if details else None),
            )
            row = cur.fetchone()
            conn.commit()
        finally:
            _release_connection(conn)
        return {"id": row[0], "timestamp": row[1].isoformat()}
    except Exception as e:
        logger.warning("Audit log_event failed: %s", e)
        return None


def query_log(
    *,
    limit: int = 50,
    actor: str | None = None,
    resource: str | None = None,
    resource_id: str | None = None,
) -> list[dict]:
    """Most recent audit rows, newest first. Returns [] on failure."""
    clauses: list[str] = []
    params: list = []
    if actor:
        clauses.append("actor = %s")
        params.append(actor)
    if resource:
        clauses.append("resource = %s")
        params.append(resource)
    if resource_id:
        clauses.append("resource_id = %s")
        params.append(resource_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    params.append(limit)
    try:
        conn = _get_connection()
        try:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(
                f"""
                SELECT id, timestamp, actor, action, resource, resource_id, details
                FROM audit_log {where}
                ORDER BY timestamp DESC, id DESC
                LIMIT %s
                """,
                params,
            )
            return [dict(r) for r in cur.fetchall()]
        finally:
            _release_connection(conn)
    except Exception as e:
        logger.warning("Audit query_log failed: %s", e)
        return []


class DatabaseAuditor:
    """Non-blocking audit sink: rows are written on one background worker."""

    def __init__(self) -> None:
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="strongbox-audit")

    def log(self, actor: str, action: str, resource: str, resource_id: str | None = None) -> Future | None:
        try:
            return self._executor.submit(log_event, actor, action, resource, resource_id)
        except RuntimeError as e:
            # executor already shut down
            logger.warning("Audit dropped %s %s/%s: %s", action, resource, resource_id, e)
            return None

    def close(self) -> None:
        """Flush pending rows and stop the worker."""
        self._executor.shutdown(wait=True)


class LoggingAuditor:
    """Audit sink that only writes to the process log."""

    def log(self, actor: str, action: str, resource: str, resource_id: str | None = None) -> None:
        logger.info("audit actor=%s action=%s resource=%s id=%s", actor, action, resource, resource_id)

    def close(self) -> None:
        pass
