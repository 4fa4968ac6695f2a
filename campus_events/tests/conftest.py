import itertools
import os
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone

import psycopg2
import pytest
from unittest.mock import MagicMock

# Ensure JWT_SECRET is set before the auth module is imported
os.environ.setdefault("JWT_SECRET", "test_secret")

from campus_events.auth_service.utils import create_token
from campus_events.gateway.server import create_app
from campus_events.registration_service.coordinator import RegistrationCoordinator

TEST_CONFIG = {
    "TESTING": True,
    "FRONTEND_ORIGIN": "http://localhost:3000",
    "ALLOW_ADMIN_SIGNUP": False,
    "REGISTRATION_LOCK_TIMEOUT_MS": 0,
}

ROUTE_MODULES = [
    "campus_events.auth_service.routes",
    "campus_events.events_service.routes",
    "campus_events.registration_service.routes",
    "campus_events.users_service.routes",
]


class InMemoryTransaction:
    """
    Mirrors RegistrationTransaction over plain dicts.

    Event row locks are real locks held until the transaction ends, so
    concurrent transactions on one event serialize the way they do on
    PostgreSQL. Writes apply immediately and are undone on rollback.
    """

    def __init__(self, store):
        self.store = store
        self._held = []
        self._undo = []

    def _lock_row(self, event_id):
        lock = self.store.row_lock(event_id)
        if lock not in self._held:
            lock.acquire()
            self._held.append(lock)

    def lock_event(self, event_id):
        self.store.maybe_fail("lock_event")
        self._lock_row(event_id)
        with self.store.table_lock:
            event = self.store.events.get(event_id)
            snapshot = dict(event) if event else None
        if self.store.read_delay:
            time.sleep(self.store.read_delay)
        return snapshot

    def find_registration(self, user_id, event_id):
        self.store.maybe_fail("find_registration")
        with self.store.table_lock:
            row = self.store.registrations.get((user_id, event_id))
            return {"id": row["id"]} if row else None

    def lock_registration(self, user_id, event_id):
        self.store.maybe_fail("lock_registration")
        self._lock_row(event_id)
        return self.find_registration(user_id, event_id)

    def insert_registration(self, user_id, event_id):
        self.store.maybe_fail("insert_registration")
        key = (user_id, event_id)
        with self.store.table_lock:
            if key in self.store.registrations:
                raise psycopg2.IntegrityError("duplicate key value violates unique constraint")
            row = {
                "id": next(self.store.ids),
                "user_id": user_id,
                "event_id": event_id,
                "created_at": datetime.now(timezone.utc),
            }
            self.store.registrations[key] = row
        self._undo.append(lambda: self.store.registrations.pop(key, None))
        return dict(row)

    def delete_registration(self, registration_id):
        self.store.maybe_fail("delete_registration")
        with self.store.table_lock:
            key = next(k for k, r in self.store.registrations.items() if r["id"] == registration_id)
            row = self.store.registrations.pop(key)
        self._undo.append(lambda: self.store.registrations.__setitem__(key, row))

    def increment_registered_count(self, event_id):
        self.store.maybe_fail("increment_registered_count")
        with self.store.table_lock:
            event = self.store.events[event_id]
            if event["registered_count"] + 1 > event["max_participants"]:
                raise psycopg2.IntegrityError("violates check constraint events_registered_count_within_capacity")
            event["registered_count"] += 1
        self._undo.append(lambda: event.__setitem__("registered_count", event["registered_count"] - 1))

    def decrement_registered_count(self, event_id):
        self.store.maybe_fail("decrement_registered_count")
        with self.store.table_lock:
            event = self.store.events[event_id]
            previous = event["registered_count"]
            event["registered_count"] = max(previous - 1, 0)
        self._undo.append(lambda: event.__setitem__("registered_count", previous))

    def rollback(self):
        with self.store.table_lock:
            for undo in reversed(self._undo):
                undo()
        self._undo = []

    def release(self):
        for lock in reversed(self._held):
            lock.release()
        self._held = []


class InMemoryRegistrationStore:
    """Test double for RegistrationStore."""

    def __init__(self):
        self.events = {}
        self.registrations = {}
        self.table_lock = threading.Lock()
        self.ids = itertools.count(1)
        self.fail_on = None
        self.read_delay = 0.0
        self.transactions_opened = 0
        self._row_locks = {}

    def row_lock(self, event_id):
        with self.table_lock:
            return self._row_locks.setdefault(event_id, threading.Lock())

    def maybe_fail(self, step):
        if self.fail_on == step:
            raise psycopg2.OperationalError("server closed the connection unexpectedly")

    def add_event(self, event_id, max_participants, registered_count=0, status="upcoming"):
        self.events[event_id] = {
            "id": event_id,
            "max_participants": max_participants,
            "registered_count": registered_count,
            "status": status,
        }

    def add_registration(self, user_id, event_id):
        """Insert a row directly, bypassing the count."""
        self.registrations[(user_id, event_id)] = {
            "id": next(self.ids),
            "user_id": user_id,
            "event_id": event_id,
            "created_at": datetime.now(timezone.utc),
        }

    def count_rows(self, event_id):
        return sum(1 for (_, e) in self.registrations if e == event_id)

    @contextmanager
    def transaction(self):
        with self.table_lock:
            self.transactions_opened += 1
        tx = InMemoryTransaction(self)
        try:
            yield tx
        except BaseException:
            tx.rollback()
            raise
        finally:
            tx.release()


@pytest.fixture
def memory_store():
    return InMemoryRegistrationStore()


@pytest.fixture
def coordinator(memory_store):
    return RegistrationCoordinator(memory_store)


@pytest.fixture
def app(coordinator):
    app = create_app(dict(TEST_CONFIG), database=MagicMock(name="database"), coordinator=coordinator)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def mock_db(mocker):
    """
    Mocks the database connection and cursor in every route module.
    """
    mock_conn = MagicMock()
    mock_cursor = MagicMock()

    # Setup the context manager for connection
    mock_conn.__enter__.return_value = mock_conn
    mock_conn.__exit__.return_value = None

    # Setup the context manager for cursor
    mock_cursor.__enter__.return_value = mock_cursor
    mock_cursor.__exit__.return_value = None

    # Connect cursor to connection
    mock_conn.cursor.return_value = mock_cursor

    for module in ROUTE_MODULES:
        mocker.patch(f"{module}.get_db", return_value=mock_conn)

    return mock_conn, mock_cursor


@pytest.fixture
def student_headers():
    token = create_token(7, "student", email="student@college.edu", name="Sam Student")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_student_headers():
    token = create_token(8, "student", email="other@college.edu", name="Olive Other")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers():
    token = create_token(1, "admin", email="admin@college.edu", name="Admin")
    return {"Authorization": f"Bearer {token}"}
