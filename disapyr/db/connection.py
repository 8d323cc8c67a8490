"""
Connection pool for PostgreSQL.

A single psycopg2 ThreadedConnectionPool is shared by every request thread.
Each pooled session carries statement and lock timeouts (see DatabaseConfig),
so a stuck row lock surfaces as an error instead of hanging the request.
Borrowers beyond ``db.pool_max`` queue for a free connection rather than
hitting psycopg2's "connection pool exhausted" error.

Usage:
    from disapyr.db import get_connection

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

from disapyr.config import get_config
from disapyr.errors import StorageError

logger = logging.getLogger(__name__)

_pool: psycopg2.pool.ThreadedConnectionPool | None = None
_slots: threading.BoundedSemaphore | None = None
_pool_lock = threading.Lock()


def get_pool(minconn: int = 1, maxconn: int | None = None) -> psycopg2.pool.ThreadedConnectionPool:
    """Get or create the connection pool. ``maxconn`` defaults to ``db.pool_max``."""
    global _pool
    if _pool is not None and not _pool.closed:
        return _pool

    with _pool_lock:
        if _pool is not None and not _pool.closed:
            return _pool

        cfg = get_config().db
        maxconn = maxconn or cfg.pool_max
        logger.info(
            "Creating connection pool: %s@%s:%s/%s (min=%d, max=%d)",
            cfg.user,
            cfg.host or "<socket>",
            cfg.port,
            cfg.name,
            minconn,
            maxconn,
        )
        try:
            _pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=minconn,
                maxconn=maxconn,
                **cfg.dict,
            )
        except psycopg2.OperationalError as e:
            raise StorageError(
                f"Cannot connect to PostgreSQL at {cfg.host}:{cfg.port}/{cfg.name}: {e}"
            ) from e
        return _pool


def _get_slots() -> threading.BoundedSemaphore:
    """One slot per pooled connection; getconn() on an exhausted pool raises instead of waiting."""
    global _slots
    if _slots is not None:
        return _slots
    with _pool_lock:
        if _slots is None:
            _slots = threading.BoundedSemaphore(get_config().db.pool_max)
        return _slots


@contextmanager
def get_connection() -> Generator[psycopg2.extensions.connection, None, None]:
    """Borrow a connection for one transaction.

    Waits up to ``db.pool_timeout`` seconds for a free connection. Commits
    when the block exits normally; rolls back on any exception, then returns
    the connection to the pool.
    """
    slots = _get_slots()
    if not slots.acquire(timeout=get_config().db.pool_timeout):
        raise StorageError("Timed out waiting for a pooled connection")
    try:
        pool = get_pool()
        try:
            conn = pool.getconn()
        except psycopg2.Error as e:
            raise StorageError(f"Cannot obtain pooled connection: {e}") from e
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            pool.putconn(conn)
    finally:
        slots.release()


def close_pool() -> None:
    """Close all connections in the pool."""
    global _pool, _slots
    if _pool is not None:
        _pool.closeall()
        _pool = None
    _slots = None
