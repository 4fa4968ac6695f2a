"""
Events service routes: list, read, create, update, and delete events.
Writes are restricted to admins. Registration lives in registration_service.
"""

import logging
from typing import Tuple, Dict, Any, Optional

import psycopg2
from flask import Blueprint, request, jsonify, Response

from campus_events.database.db_connection import get_db
from campus_events.auth_service.utils import verify_token_from_request, verify_token, json_body
from campus_events.events_service.validation import validate_event_payload, VALID_STATUSES

logger = logging.getLogger(__name__)

events_bp = Blueprint("events", __name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
MAX_PAGE = 100000

EVENT_COLUMNS = """
    id, title, description, date, time, location, category,
    max_participants, registered_count, image_url, status, created_at
"""


def serialize_event(row: Any) -> Dict[str, Any]:
    """Convert an events row to a JSON-ready dict (dates and times as ISO strings)."""
    event = dict(row)
    for key in ("date", "time", "created_at"):
        if event.get(key) is not None:
            event[key] = event[key].isoformat()
    return event


def _int_arg(name: str, default: int) -> Optional[int]:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return None


@events_bp.route("", methods=["GET"])
def list_events() -> Tuple[Response, int]:
    """
    List events, soonest first.

    Query parameters:
    - search: substring match on title or description (case-insensitive).
    - category: exact category.
    - status: 'upcoming' or 'past'.
    - page (default 1, max 100000), limit (default 20, max 100).

    Returns:
        200: { "success": true, "data": [...], "meta": {total, page, limit} }
        400: Invalid paging or status parameter.
        500: Database error.
    """
    search = (request.args.get("search") or "").strip()
    category = request.args.get("category")
    status = request.args.get("status")
    page = _int_arg("page", 1)
    limit = _int_arg("limit", DEFAULT_PAGE_SIZE)

    if page is None or limit is None:
        return jsonify({"error": "page and limit must be integers"}), 400
    if page > MAX_PAGE:
        return jsonify({"error": f"page must be {MAX_PAGE} or less"}), 400
    if status and status not in VALID_STATUSES:
        return jsonify({"error": f"status must be one of: {', '.join(VALID_STATUSES)}"}), 400

    page = max(1, page)
    limit = min(max(1, limit), MAX_PAGE_SIZE)
    offset = (page - 1) * limit

    where = "WHERE 1=1"
    params: list = []

    if search:
        where += " AND (title ILIKE %s OR description ILIKE %s)"
        params.extend([f"%{search}%", f"%{search}%"])
    if category:
        where += " AND category = %s"
        params.append(category)
    if status:
        where += " AND status = %s"
        params.append(status)

    count_sql = f"SELECT COUNT(*) AS cnt FROM events {where};"
    list_sql = f"SELECT {EVENT_COLUMNS} FROM events {where} ORDER BY date ASC, time ASC, id ASC LIMIT %s OFFSET %s;"

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(count_sql, params)
                total = cur.fetchone()["cnt"]
                cur.execute(list_sql, params + [limit, offset])
                rows = [serialize_event(r) for r in cur.fetchall()]
    except psycopg2.Error as e:
        logger.error(f"Get events error: {e}")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({
        "success": True,
        "data": rows,
        "meta": {"total": total, "page": page, "limit": limit},
    }), 200


@events_bp.route("/<int:event_id>", methods=["GET"])
def get_event(event_id: int) -> Tuple[Response, int]:
    """
    Get a single event by ID.

    When a valid bearer token is supplied the response also carries
    `is_registered` for the caller.

    Returns:
        200: Event object.
        404: Event not found.
        500: Database error.
    """
    auth_user_id = None
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        auth_user_id = verify_token(auth.split(" ", 1)[1])

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {EVENT_COLUMNS} FROM events WHERE id = %s;", (event_id,))
                row = cur.fetchone()
                if not row:
                    return jsonify({"error": "Event not found"}), 404

                event = serialize_event(row)

                if auth_user_id is not None:
                    cur.execute(
                        "SELECT 1 FROM registrations WHERE user_id = %s AND event_id = %s;",
                        (auth_user_id, event_id),
                    )
                    event["is_registered"] = cur.fetchone() is not None
    except psycopg2.Error as e:
        logger.error(f"Get event by id error: {e}")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"success": True, "data": event}), 200


@events_bp.route("", methods=["POST"])
def create_event() -> Tuple[Response, int]:
    """
    Admin-only: create an event. `registered_count` always starts at 0.

    Returns:
        201: { "success": true, "data": event }
        400: Validation error.
        401/403: Authentication or role failure.
        500: Database error.
    """
    _, _, err, code = verify_token_from_request(required_roles=["admin"])
    if err:
        return err, code

    data: Dict[str, Any] = json_body()
    value, errors = validate_event_payload(data)
    if errors:
        return jsonify({"error": ", ".join(errors)}), 400

    sql = f"""
        INSERT INTO events (
            title, description, date, time, location, category,
            max_participants, image_url, status
        ) VALUES (
            %s, %s, %s, %s, %s, %s,
            %s, %s, %s
        )
        RETURNING {EVENT_COLUMNS};
    """

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (
                    value["title"], value["description"], value["date"], value["time"],
                    value["location"], value["category"], value["max_participants"],
                    value["image_url"], value["status"],
                ))
                event = serialize_event(cur.fetchone())
    except psycopg2.Error as e:
        logger.error(f"Create event error: {e}")
        return jsonify({"error": "Internal server error"}), 500

    logger.info(f"Event {event['id']} created")
    return jsonify({"success": True, "data": event}), 201


@events_bp.route("/<int:event_id>", methods=["PUT"])
def update_event(event_id: int) -> Tuple[Response, int]:
    """
    Admin-only: replace an event's details.

    `registered_count` is never written here. The capacity cannot drop below
    the number of current registrations; the check and the write are one
    statement, so a concurrent registration cannot slip in between.

    Returns:
        200: Updated event.
        400: Validation error.
        401/403: Authentication or role failure.
        404: Event not found.
        409: maxParticipants lower than the current registered count.
        500: Database error.
    """
    _, _, err, code = verify_token_from_request(required_roles=["admin"])
    if err:
        return err, code

    data: Dict[str, Any] = json_body()
    value, errors = validate_event_payload(data)
    if errors:
        return jsonify({"error": ", ".join(errors)}), 400

    sql = f"""
        UPDATE events
        SET title = %s, description = %s, date = %s, time = %s, location = %s,
            category = %s, max_participants = %s, image_url = %s, status = %s
        WHERE id = %s AND registered_count <= %s
        RETURNING {EVENT_COLUMNS};
    """

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (
                    value["title"], value["description"], value["date"], value["time"],
                    value["location"], value["category"], value["max_participants"],
                    value["image_url"], value["status"],
                    event_id, value["max_participants"],
                ))
                row = cur.fetchone()

                if not row:
                    cur.execute("SELECT registered_count FROM events WHERE id = %s;", (event_id,))
                    existing = cur.fetchone()
                    if not existing:
                        return jsonify({"error": "Event not found"}), 404
                    return jsonify({
                        "error": (
                            "maxParticipants cannot be lower than the current registered count "
                            f"({existing['registered_count']})"
                        )
                    }), 409

                event = serialize_event(row)
    except psycopg2.Error as e:
        logger.error(f"Update event error: {e}")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"success": True, "data": event}), 200


@events_bp.route("/<int:event_id>", methods=["DELETE"])
def delete_event(event_id: int) -> Tuple[Response, int]:
    """
    Admin-only: delete an event and, by cascade, its registrations.
    Deleting a missing event is not an error.
    """
    _, _, err, code = verify_token_from_request(required_roles=["admin"])
    if err:
        return err, code

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM events WHERE id = %s;", (event_id,))
                deleted = cur.rowcount
    except psycopg2.Error as e:
        logger.error(f"Delete event error: {e}")
        return jsonify({"error": "Internal server error"}), 500

    if deleted:
        logger.info(f"Event {event_id} deleted")
    return jsonify({"success": True, "message": "Event deleted (if existed)"}), 200
