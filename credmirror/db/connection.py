"""
PostgreSQL connection pool shared by the mirror store and the audit logger.

psycopg2's ThreadedConnectionPool raises PoolError the moment every slot is
checked out. Request threads outnumber ``pool_max`` (FastAPI's threadpool is
much larger), so the pool here makes ``getconn`` wait for a slot instead.

Usage:
    from credmirror.db import get_connection

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Generator
from contextlib import contextmanager

import psycopg2
import psycopg2.pool

from credmirror.config import get_config

logger = logging.getLogger(__name__)


class BlockingConnectionPool(psycopg2.pool.ThreadedConnectionPool):
    """ThreadedConnectionPool whose ``getconn`` blocks while all ``maxconn`` slots are in use.

    ``timeout`` bounds the wait (seconds); None waits until a slot frees up.
    """

    def __init__(self, minconn: int, maxconn: int, *args, timeout: float | None = None, **kwargs):
        super().__init__(minconn, maxconn, *args, **kwargs)
        self._slots = threading.BoundedSemaphore(maxconn)
        self._timeout = timeout

    def getconn(self, key=None):
        if not self._slots.acquire(timeout=self._timeout):
            raise psycopg2.pool.PoolError(
                f"connection pool exhausted: no slot freed within {self._timeout}s"
            )
        try:
            return super().getconn(key)
        except Exception:
            self._slots.release()
            raise

    def putconn(self, conn=None, key=None, close=False):
        super().putconn(conn, key, close)
        self._slots.release()


_pool: BlockingConnectionPool | None = None
_pool_lock = threading.Lock()


def get_pool() -> BlockingConnectionPool:
    """Get or create the process-wide pool, sized from CREDMIRROR_DB_POOL_MIN/MAX."""
    global _pool
    if _pool is not None and not _pool.closed:
        return _pool

    with _pool_lock:
        if _pool is not None and not _pool.closed:
            return _pool

        cfg = get_config().db
        logger.info(
            "Opening credential DB pool on %s:%s/%s (min=%d, max=%d)",
            cfg.host or "<socket>",
            cfg.port,
            cfg.name,
            cfg.pool_min,
            cfg.pool_max,
        )
        try:
            _pool = BlockingConnectionPool(cfg.pool_min, cfg.pool_max, dsn=cfg.dsn)
        except psycopg2.OperationalError as e:
            raise ConnectionError(
                f"Cannot reach the credential database ({cfg.name}): {e}\n"
                f"Check CREDMIRROR_DB_DSN / CREDMIRROR_DB_* and that PostgreSQL is running."
            ) from e
        return _pool


@contextmanager
def get_connection() -> Generator[psycopg2.extensions.connection, None, None]:
    """One transaction on a pooled connection: commit on success, roll back on error.

    Waits for a free slot when the pool is exhausted.
    """
    pool = get_pool()
    conn = pool.getconn()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)


def close_pool() -> None:
    """Close all pooled connections (app shutdown)."""
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None
