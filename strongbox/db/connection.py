"""
PostgreSQL pool and the transaction boundary used by every vault operation.

One ``get_connection()`` block is one transaction: a record write and its
version snapshot, or a grant check and insert, commit or roll back together.
Pool size and timeouts come from ``DatabaseConfig``.

Usage:
    from strongbox.db import get_connection

    with get_connection() as conn:
        cur = conn.cursor(cursor_factory=RealDictCursor)
        cur.execute("SELECT ... FOR UPDATE", (record_id,))
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

import psycopg2
import psycopg2.extensions
import psycopg2.pool

from strongbox.config import get_config

logger = logging.getLogger(__name__)

_pool: psycopg2.pool.ThreadedConnectionPool | None = None
_pool_lock = threading.Lock()


def get_pool() -> psycopg2.pool.ThreadedConnectionPool:
    """The process-wide pool, created on first use.

    Raises ConnectionError when the database cannot be reached.
    """
    global _pool
    with _pool_lock:
        if _pool is None or _pool.closed:
            cfg = get_config().db
            try:
                _pool = psycopg2.pool.ThreadedConnectionPool(cfg.pool_min, cfg.pool_max, **cfg.dict)
            except psycopg2.OperationalError as e:
                raise ConnectionError(
                    f"Cannot reach PostgreSQL database {cfg.name!r}: {e}. "
                    "Check the STRONGBOX_DB_* environment variables."
                ) from e
            logger.info(
                "Opened pool to %s/%s (%d-%d connections)",
                cfg.host or "local socket",
                cfg.name,
                cfg.pool_min,
                cfg.pool_max,
            )
        return _pool


@contextmanager
def get_connection() -> Iterator[psycopg2.extensions.connection]:
    """Borrow a connection for one transaction.

    Commits when the block exits normally, rolls back on any exception.
    Connections left broken by the server are discarded, not reused.
    """
    pool = get_pool()
    conn = pool.getconn()
    try:
        yield conn
        conn.commit()
    except Exception:
        if not conn.closed:
            conn.rollback()
        raise
    finally:
        pool.putconn(conn, close=bool(conn.closed))


def close_pool() -> None:
    """Close every pooled connection. The next ``get_pool()`` reopens."""
    global _pool
    with _pool_lock:
        if _pool is not None and not _pool.closed:
            _pool.closeall()
            logger.info("Closed database pool")
        _pool = None
