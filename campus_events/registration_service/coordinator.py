"""
Registration coordinator: reserves and releases event slots.

Each call runs in its own store transaction. The event row is read with an
exclusive lock first, so concurrent calls against the same event serialize
at that lock while calls against different events proceed in parallel. The
coordinator keeps no in-process state and never retries.
"""

import enum
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator

import psycopg2

from campus_events.auth_service.utils import ROLE_ADMIN
from campus_events.registration_service.store import RegistrationStore, RegistrationTransaction

logger = logging.getLogger(__name__)

EVENT_STATUS_PAST = "past"


class RejectionReason(str, enum.Enum):
    FORBIDDEN_ROLE = "ForbiddenRole"
    NOT_FOUND = "NotFound"
    EVENT_CLOSED = "EventClosed"
    EVENT_FULL = "EventFull"
    ALREADY_REGISTERED = "AlreadyRegistered"
    NOT_REGISTERED = "NotRegistered"
    INTERNAL_ERROR = "InternalError"


class RegistrationError(Exception):
    """Base class for every outcome of register/unregister other than success."""

    def __init__(self, reason: RejectionReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


class RegistrationRejected(RegistrationError):
    """A precondition failed. Deterministic; retrying will not help."""


class RegistrationFailed(RegistrationError):
    """The store failed. The transaction was rolled back."""

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(RejectionReason.INTERNAL_ERROR, message)


class RegistrationCoordinator:
    def __init__(self, store: RegistrationStore) -> None:
        self.store = store

    @contextmanager
    def _transaction(self, action: str, event_id: int, user_id: int) -> Iterator[RegistrationTransaction]:
        """
        Run one store transaction, turning driver errors into `RegistrationFailed`.

        Rejections raised inside the block pass through untouched; the
        store's context manager has already rolled back by the time either
        kind of error leaves this function.
        """
        try:
            with self.store.transaction() as tx:
                yield tx
        except psycopg2.Error as e:
            logger.exception(f"{action} failed for user {user_id} on event {event_id}: {type(e).__name__}")
            raise RegistrationFailed() from e

    @staticmethod
    def _reject(reason: RejectionReason, message: str, action: str, event_id: int, user_id: int) -> RegistrationRejected:
        logger.info(f"{action} rejected for user {user_id} on event {event_id}: {reason.value}")
        return RegistrationRejected(reason, message)

    def register(self, event_id: int, user_id: int, caller_role: str) -> Dict[str, Any]:
        """
        Reserve one slot of `event_id` for `user_id`.

        Preconditions, checked in order while the event row is locked:
        caller is not an admin, the event exists, it is not past, it has a
        free slot, and the user is not already registered.

        Returns:
            dict: The new registration (id, user_id, event_id, created_at).

        Raises:
            RegistrationRejected: A precondition failed.
            RegistrationFailed: The store failed; nothing was written.
        """
        if caller_role == ROLE_ADMIN:
            raise self._reject(RejectionReason.FORBIDDEN_ROLE, "Admins cannot register for events",
                               "register", event_id, user_id)

        with self._transaction("register", event_id, user_id) as tx:
            event = tx.lock_event(event_id)
            if event is None:
                raise self._reject(RejectionReason.NOT_FOUND, "Event not found",
                                   "register", event_id, user_id)

            if event["status"] == EVENT_STATUS_PAST:
                raise self._reject(RejectionReason.EVENT_CLOSED, "Cannot register for past events",
                                   "register", event_id, user_id)

            if event["registered_count"] >= event["max_participants"]:
                raise self._reject(RejectionReason.EVENT_FULL, "Event is full",
                                   "register", event_id, user_id)

            if tx.find_registration(user_id, event_id) is not None:
                raise self._reject(RejectionReason.ALREADY_REGISTERED, "User already registered",
                                   "register", event_id, user_id)

            registration = tx.insert_registration(user_id, event_id)
            tx.increment_registered_count(event_id)

        logger.info(f"User {user_id} registered for event {event_id}")
        return registration

    def unregister(self, event_id: int, user_id: int, caller_role: str) -> None:
        """
        Release the slot `user_id` holds in `event_id`.

        Raises:
            RegistrationRejected: Caller is an admin, or holds no registration.
            RegistrationFailed: The store failed; nothing was written.
        """
        if caller_role == ROLE_ADMIN:
            raise self._reject(RejectionReason.FORBIDDEN_ROLE, "Admins cannot unregister (they cannot register)",
                               "unregister", event_id, user_id)

        with self._transaction("unregister", event_id, user_id) as tx:
            # Same lock order as register: event row, then registration row
            event = tx.lock_event(event_id)
            registration = tx.lock_registration(user_id, event_id) if event is not None else None
            if registration is None:
                raise self._reject(RejectionReason.NOT_REGISTERED, "Not registered for this event",
                                   "unregister", event_id, user_id)

            if event["registered_count"] <= 0:
                logger.warning(
                    f"Event {event_id} has a registration but registered_count is "
                    f"{event['registered_count']}; clamping at 0"
                )

            tx.delete_registration(registration["id"])
            tx.decrement_registered_count(event_id)

        logger.info(f"User {user_id} unregistered from event {event_id}")
