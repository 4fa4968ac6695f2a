"""
User routes: the caller's profile and per-user registration listings.
"""

import logging
from typing import Tuple

import psycopg2
from flask import Blueprint, jsonify, Response

from campus_events.database.db_connection import get_db
from campus_events.auth_service.utils import verify_token_from_request, ROLE_ADMIN

logger = logging.getLogger(__name__)

users_bp = Blueprint("users", __name__)


@users_bp.route("/me", methods=["GET"])
def get_current_user() -> Tuple[Response, int]:
    """
    Retrieve the current user's profile.

    Returns:
        200: User profile object.
        401: Authentication failure.
        404: User not found in DB (deleted after the token was issued).
        500: Database error.
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    sql = "SELECT id, name, email, role, created_at FROM users WHERE id = %s;"

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (user_id,))
                user = cur.fetchone()
    except psycopg2.Error as e:
        logger.error(f"Get me error: {e}")
        return jsonify({"error": "Internal server error"}), 500

    if not user:
        return jsonify({"error": "User not found"}), 404

    user = dict(user)
    if user.get("created_at"):
        user["created_at"] = user["created_at"].isoformat()

    return jsonify({"success": True, "data": user}), 200


@users_bp.route("/<int:user_id>/registrations", methods=["GET"])
def list_user_registrations(user_id: int) -> Tuple[Response, int]:
    """
    List a user's registrations with event details, newest first.
    Students may only list their own; admins may list anyone's.
    """
    caller_id, role, err, code = verify_token_from_request()
    if err:
        return err, code

    if role != ROLE_ADMIN and caller_id != user_id:
        return jsonify({"error": "Forbidden"}), 403

    sql = """
        SELECT r.id, r.created_at, e.id AS event_id, e.title, e.date, e.time, e.location, e.status
        FROM registrations r
        JOIN events e ON e.id = r.event_id
        WHERE r.user_id = %s
        ORDER BY r.created_at DESC;
    """

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (user_id,))
                rows = [dict(row) for row in cur.fetchall()]
    except psycopg2.Error as e:
        logger.error(f"Get user registrations error: {e}")
        return jsonify({"error": "Internal server error"}), 500

    for row in rows:
        for key in ("created_at", "date", "time"):
            if row.get(key) is not None:
                row[key] = row[key].isoformat()

    return jsonify({"success": True, "data": rows}), 200
