"""
PostgreSQL connection handle.

The pool is owned by an explicitly constructed `Database` object that is
opened once at process start and closed at shutdown. Route handlers reach it
through `get_db()`, which reads the handle the gateway attached to the
running Flask app.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from flask import current_app
from psycopg2.extensions import connection as PgConnection
from psycopg2.extras import DictCursor
from psycopg2.pool import PoolError, ThreadedConnectionPool

logger = logging.getLogger(__name__)

EXTENSION_KEY = "campus_events.database"


class Database:
    """
    Thread-safe pool of psycopg2 connections with dictionary-based row access.

    Usage:
        db = Database(dsn)
        db.open()
        with db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(...)
        db.close()

    `connection()` commits when the block exits normally, rolls back when it
    raises, and always returns the connection to the pool.
    """

    def __init__(self, dsn: str, min_connections: int = 1, max_connections: int = 10,
                 checkout_timeout: float = 30.0) -> None:
        if min_connections < 0 or max_connections < 1 or min_connections > max_connections:
            raise ValueError("invalid pool bounds")
        self.dsn = dsn
        self.min_connections = min_connections
        self.max_connections = max_connections
        self.checkout_timeout = checkout_timeout
        self._pool: Optional[ThreadedConnectionPool] = None
        # ThreadedConnectionPool raises instead of waiting when exhausted
        self._slots = threading.BoundedSemaphore(max_connections)

    @property
    def is_open(self) -> bool:
        return self._pool is not None and not self._pool.closed

    def open(self) -> None:
        """Create the pool. Calling it on an open handle is a no-op."""
        if self.is_open:
            return
        self._pool = ThreadedConnectionPool(
            self.min_connections,
            self.max_connections,
            self.dsn,
            cursor_factory=DictCursor,
        )
        logger.info(f"Database pool opened (min={self.min_connections}, max={self.max_connections})")

    def close(self) -> None:
        """Close every pooled connection."""
        if not self.is_open:
            return
        self._pool.closeall()
        self._pool = None
        logger.info("Database pool closed")

    @contextmanager
    def connection(self) -> Iterator[PgConnection]:
        """
        Check out a connection for the duration of one transaction.

        Raises:
            PoolError: If the handle is closed or no connection frees up
                within `checkout_timeout` seconds.
            psycopg2.Error: Any error raised by the driver.
        """
        if not self.is_open:
            raise PoolError("database handle is not open")
        if not self._slots.acquire(timeout=self.checkout_timeout):
            raise PoolError("timed out waiting for a database connection")
        try:
            conn = self._pool.getconn()
            try:
                # psycopg2's connection context manager commits or rolls back
                with conn:
                    yield conn
            finally:
                self._pool.putconn(conn)
        finally:
            self._slots.release()

    def ping(self) -> None:
        """Run `SELECT 1` to confirm the server is reachable."""
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()


def get_database() -> Database:
    """Return the `Database` handle attached to the current Flask app."""
    return current_app.extensions[EXTENSION_KEY]


def get_db():
    """
    Returns a pooled connection context for the current request.

    Usage:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(...)
    """
    return get_database().connection()
