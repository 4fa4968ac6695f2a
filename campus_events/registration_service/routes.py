"""
Registration routes: students register for and unregister from events;
admins list who is registered for an event.

Registered under the same `/api/events` prefix as the events blueprint.
"""

import logging
from typing import Tuple

import psycopg2
from flask import Blueprint, jsonify, request, Response, current_app

from campus_events.database.db_connection import get_db
from campus_events.auth_service.utils import verify_token_from_request
from campus_events.registration_service.coordinator import (
    RegistrationCoordinator,
    RegistrationError,
    RejectionReason,
)

logger = logging.getLogger(__name__)

registrations_bp = Blueprint("registrations", __name__)

COORDINATOR_KEY = "campus_events.registration_coordinator"


# --- REQUEST LOGGING ---
@registrations_bp.before_request
def before_request() -> None:
    logger.info(f"[Registrations] Incoming {request.method} {request.path}")


@registrations_bp.after_request
def after_request(response: Response) -> Response:
    logger.info(f"[Registrations] Response {response.status}")
    return response


STATUS_BY_REASON = {
    RejectionReason.FORBIDDEN_ROLE: 403,
    RejectionReason.NOT_FOUND: 404,
    RejectionReason.EVENT_CLOSED: 400,
    RejectionReason.NOT_REGISTERED: 400,
    RejectionReason.EVENT_FULL: 409,
    RejectionReason.ALREADY_REGISTERED: 409,
    RejectionReason.INTERNAL_ERROR: 500,
}


def get_coordinator() -> RegistrationCoordinator:
    """Return the coordinator the gateway attached to the current app."""
    return current_app.extensions[COORDINATOR_KEY]


def error_response(err: RegistrationError) -> Tuple[Response, int]:
    return jsonify({"error": err.message, "reason": err.reason.value}), STATUS_BY_REASON[err.reason]


@registrations_bp.route("/<int:event_id>/register", methods=["POST"])
def register(event_id: int) -> Tuple[Response, int]:
    """
    Register the caller for an event.

    Returns:
        200: Registration created.
        400: Event is past.
        401: Missing or invalid token.
        403: Caller is an admin.
        404: Event not found.
        409: Event full, or caller already registered.
        500: Storage failure.
    """
    user_id, role, err, code = verify_token_from_request()
    if err:
        return err, code

    try:
        registration = get_coordinator().register(event_id, user_id, role)
    except RegistrationError as e:
        return error_response(e)

    created_at = registration.get("created_at")
    return jsonify({
        "success": True,
        "message": "Registered successfully",
        "data": {
            "id": registration["id"],
            "user_id": registration["user_id"],
            "event_id": registration["event_id"],
            "created_at": created_at.isoformat() if created_at else None,
        },
    }), 200


@registrations_bp.route("/<int:event_id>/unregister", methods=["POST"])
def unregister(event_id: int) -> Tuple[Response, int]:
    """
    Remove the caller's registration for an event.

    Returns:
        200: Registration removed.
        400: Caller was not registered.
        401: Missing or invalid token.
        403: Caller is an admin.
        500: Storage failure.
    """
    user_id, role, err, code = verify_token_from_request()
    if err:
        return err, code

    try:
        get_coordinator().unregister(event_id, user_id, role)
    except RegistrationError as e:
        return error_response(e)

    return jsonify({"success": True, "message": "Unregistered successfully"}), 200


@registrations_bp.route("/<int:event_id>/registrations", methods=["GET"])
def list_event_registrations(event_id: int) -> Tuple[Response, int]:
    """
    Admin-only: list the users registered for an event, newest first.
    """
    _, _, err, code = verify_token_from_request(required_roles=["admin"])
    if err:
        return err, code

    sql = """
        SELECT r.id, r.created_at, u.id AS user_id, u.name, u.email
        FROM registrations r
        JOIN users u ON u.id = r.user_id
        WHERE r.event_id = %s
        ORDER BY r.created_at DESC;
    """

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (event_id,))
                rows = [dict(row) for row in cur.fetchall()]
    except psycopg2.Error as e:
        logger.error(f"Get event registrations error: {e}")
        return jsonify({"error": "Internal server error"}), 500

    for row in rows:
        if row.get("created_at"):
            row["created_at"] = row["created_at"].isoformat()

    return jsonify({"success": True, "data": rows}), 200
