"""
PostgreSQL side of the registration protocol.

`RegistrationStore.transaction()` hands out a `RegistrationTransaction` bound
to one pooled connection. Every statement the coordinator needs is a method
on the transaction; the transaction commits when the `with` block exits
normally and rolls back when it raises.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from psycopg2.extensions import cursor as PgCursor

from campus_events.database.db_connection import Database


class RegistrationTransaction:
    """Row-level operations on `events` and `registrations` inside one transaction."""

    def __init__(self, cur: PgCursor) -> None:
        self.cur = cur

    def lock_event(self, event_id: int) -> Optional[Dict[str, Any]]:
        """Read the event row and hold an exclusive lock on it until commit."""
        self.cur.execute(
            """
            SELECT id, max_participants, registered_count, status
            FROM events
            WHERE id = %s
            FOR UPDATE;
            """,
            (event_id,),
        )
        row = self.cur.fetchone()
        return dict(row) if row else None

    def find_registration(self, user_id: int, event_id: int) -> Optional[Dict[str, Any]]:
        self.cur.execute(
            "SELECT id FROM registrations WHERE user_id = %s AND event_id = %s;",
            (user_id, event_id),
        )
        row = self.cur.fetchone()
        return dict(row) if row else None

    def lock_registration(self, user_id: int, event_id: int) -> Optional[Dict[str, Any]]:
        self.cur.execute(
            """
            SELECT id FROM registrations
            WHERE user_id = %s AND event_id = %s
            FOR UPDATE;
            """,
            (user_id, event_id),
        )
        row = self.cur.fetchone()
        return dict(row) if row else None

    def insert_registration(self, user_id: int, event_id: int) -> Dict[str, Any]:
        self.cur.execute(
            """
            INSERT INTO registrations (user_id, event_id)
            VALUES (%s, %s)
            RETURNING id, user_id, event_id, created_at;
            """,
            (user_id, event_id),
        )
        return dict(self.cur.fetchone())

    def delete_registration(self, registration_id: int) -> None:
        self.cur.execute("DELETE FROM registrations WHERE id = %s;", (registration_id,))

    def increment_registered_count(self, event_id: int) -> None:
        self.cur.execute(
            "UPDATE events SET registered_count = registered_count + 1 WHERE id = %s;",
            (event_id,),
        )

    def decrement_registered_count(self, event_id: int) -> None:
        """Decrement, never going below zero."""
        self.cur.execute(
            "UPDATE events SET registered_count = GREATEST(registered_count - 1, 0) WHERE id = %s;",
            (event_id,),
        )


class RegistrationStore:
    """
    Opens registration transactions against a `Database` handle.

    Args:
        database: The pooled connection handle.
        lock_timeout_ms: When positive, applied with `SET LOCAL lock_timeout`
            so a transaction waiting on a row lock gives up after this long.
    """

    def __init__(self, database: Database, lock_timeout_ms: int = 0) -> None:
        self.database = database
        self.lock_timeout_ms = lock_timeout_ms

    @contextmanager
    def transaction(self) -> Iterator[RegistrationTransaction]:
        with self.database.connection() as conn:
            with conn.cursor() as cur:
                if self.lock_timeout_ms > 0:
                    cur.execute("SET LOCAL lock_timeout = %s;", (int(self.lock_timeout_ms),))
                yield RegistrationTransaction(cur)
