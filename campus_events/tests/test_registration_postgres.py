"""
Runs the registration protocol against a real PostgreSQL server.

Skipped unless TEST_DATABASE_URL points at a disposable database; the
tables are created there and emptied before each test.
"""

import os
from concurrent.futures import ThreadPoolExecutor

import pytest

from campus_events.database.db_connection import Database
from campus_events.database.init_db import apply_schema
from campus_events.registration_service.coordinator import (
    RegistrationCoordinator,
    RegistrationFailed,
    RegistrationRejected,
)
from campus_events.registration_service.store import RegistrationStore

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

pytestmark = pytest.mark.skipif(not TEST_DATABASE_URL, reason="TEST_DATABASE_URL is not set")


@pytest.fixture(scope="module")
def database():
    database = Database(TEST_DATABASE_URL, min_connections=1, max_connections=20, checkout_timeout=10)
    database.open()
    apply_schema(database)
    yield database
    database.close()


@pytest.fixture
def pg_coordinator(database):
    with database.connection() as conn:
        with conn.cursor() as cur:
            cur.execute("TRUNCATE registrations, events, users RESTART IDENTITY CASCADE;")
    return RegistrationCoordinator(RegistrationStore(database, lock_timeout_ms=5000))


def add_users(database, count):
    with database.connection() as conn:
        with conn.cursor() as cur:
            ids = []
            for i in range(count):
                cur.execute(
                    "INSERT INTO users (name, email, password_hash, role) VALUES (%s, %s, 'x', 'student') RETURNING id;",
                    (f"Student {i}", f"student{i}@college.edu"),
                )
                ids.append(cur.fetchone()["id"])
    return ids


def add_event(database, max_participants, status="upcoming"):
    with database.connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO events (title, description, date, time, location, category, max_participants, status)
                VALUES ('Open Mic Night', 'Bring a song or a poem to share.', '2030-05-01', '19:00',
                        'Campus Cafe', 'Arts', %s, %s)
                RETURNING id;
                """,
                (max_participants, status),
            )
            return cur.fetchone()["id"]


def counts(database, event_id):
    with database.connection() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT registered_count FROM events WHERE id = %s;", (event_id,))
            registered_count = cur.fetchone()["registered_count"]
            cur.execute("SELECT COUNT(*) AS cnt FROM registrations WHERE event_id = %s;", (event_id,))
            return registered_count, cur.fetchone()["cnt"]


def attempt(fn, *args):
    try:
        fn(*args)
    except (RegistrationRejected, RegistrationFailed) as e:
        return e.reason.value
    return "Success"


def test_register_and_unregister(database, pg_coordinator):
    (user_id,) = add_users(database, 1)
    event_id = add_event(database, 10)

    registration = pg_coordinator.register(event_id, user_id, "student")

    assert registration["user_id"] == user_id
    assert counts(database, event_id) == (1, 1)
    assert attempt(pg_coordinator.register, event_id, user_id, "student") == "AlreadyRegistered"

    pg_coordinator.unregister(event_id, user_id, "student")
    assert counts(database, event_id) == (0, 0)
    assert attempt(pg_coordinator.unregister, event_id, user_id, "student") == "NotRegistered"


def test_capacity_is_never_exceeded(database, pg_coordinator):
    user_ids = add_users(database, 30)
    event_id = add_event(database, 5)

    with ThreadPoolExecutor(max_workers=15) as executor:
        results = list(executor.map(
            lambda uid: attempt(pg_coordinator.register, event_id, uid, "student"), user_ids
        ))

    assert results.count("Success") == 5
    assert results.count("EventFull") == 25
    assert counts(database, event_id) == (5, 5)


def test_same_user_registers_once(database, pg_coordinator):
    (user_id,) = add_users(database, 1)
    event_id = add_event(database, 10)

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(
            lambda _: attempt(pg_coordinator.register, event_id, user_id, "student"), range(8)
        ))

    assert results.count("Success") == 1
    assert results.count("AlreadyRegistered") == 7
    assert counts(database, event_id) == (1, 1)


def test_concurrent_churn_keeps_count_equal_to_rows(database, pg_coordinator):
    user_ids = add_users(database, 10)
    event_id = add_event(database, 4)

    def churn(user_id):
        outcomes = []
        for _ in range(3):
            outcomes.append(attempt(pg_coordinator.register, event_id, user_id, "student"))
            outcomes.append(attempt(pg_coordinator.unregister, event_id, user_id, "student"))
        return outcomes

    with ThreadPoolExecutor(max_workers=10) as executor:
        outcomes = [o for result in executor.map(churn, user_ids) for o in result]

    assert "InternalError" not in outcomes
    registered_count, rows = counts(database, event_id)
    assert registered_count == rows == 0
