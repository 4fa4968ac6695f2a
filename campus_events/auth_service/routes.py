"""
Authentication service route handlers.

Provides routes for:
- User signup
- User login

All JWT logic is delegated to `auth_service.utils`.
"""

import logging
import re
from typing import Tuple, Dict, Any, List

import psycopg2
import psycopg2.errors
from argon2 import PasswordHasher
from argon2.exceptions import VerificationError, InvalidHashError
from flask import Blueprint, request, jsonify, Response, current_app

from campus_events.database.db_connection import get_db
from campus_events.auth_service.utils import create_token, json_body, ROLE_ADMIN, ROLE_STUDENT, VALID_ROLES

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)
ph = PasswordHasher()

# --- CONSTANTS FOR VALIDATION ---
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100
PASSWORD_MIN_LENGTH = 6
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# --- REQUEST LOGGING ---
@auth_bp.before_request
def before_request() -> None:
    """Log every incoming request to the authentication service."""
    logger.info(f"[Auth] Incoming {request.method} {request.path}")


@auth_bp.after_request
def after_request(response: Response) -> Response:
    """
    Log the response status code for every request.

    Args:
        response (Response): The Flask response object.

    Returns:
        Response: The passed-through response object.
    """
    logger.info(f"[Auth] Response {response.status}")
    return response


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    """The user fields that are safe to return to clients."""
    return {
        "id": user["id"],
        "name": user["name"],
        "email": user["email"],
        "role": user["role"],
    }


def validate_signup(data: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """
    Check a signup payload.

    Returns:
        tuple: (cleaned values, list of error messages)
    """
    errors: List[str] = []

    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        errors.append("name is required")
    elif not NAME_MIN_LENGTH <= len(name.strip()) <= NAME_MAX_LENGTH:
        errors.append(f"name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters")

    email = data.get("email")
    if not isinstance(email, str) or not email.strip():
        errors.append("email is required")
    elif not EMAIL_PATTERN.match(email.strip()):
        errors.append("email must be a valid email")

    password = data.get("password")
    if not isinstance(password, str) or not password:
        errors.append("password is required")
    elif len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"password must be at least {PASSWORD_MIN_LENGTH} characters")

    role = data.get("role") or ROLE_STUDENT
    if role not in VALID_ROLES:
        errors.append(f"role must be one of: {', '.join(VALID_ROLES)}")

    value = {
        "name": name.strip() if isinstance(name, str) else name,
        "email": email.strip().lower() if isinstance(email, str) else email,
        "password": password,
        "role": role,
    }
    return value, errors


# --- SIGNUP ---
@auth_bp.route("/signup", methods=["POST"])
def signup() -> Tuple[Response, int]:
    """
    Create a new user account.

    Expects a JSON body with:
    - name (str): 2-100 characters.
    - email (str): Unique email address.
    - password (str): Minimum 6 characters.
    - role (str, optional): "student" (default) or "admin" when admin
      signup is enabled.

    Returns:
        201: JSON with success flag, a new JWT token, and the user.
        400: Invalid input or email already in use.
        403: Admin signup requested while disabled.
        500: Server-side error (hashing or database).
    """
    data: Dict[str, Any] = json_body()
    value, errors = validate_signup(data)
    if errors:
        return jsonify({"error": ", ".join(errors)}), 400

    if value["role"] == ROLE_ADMIN and not current_app.config.get("ALLOW_ADMIN_SIGNUP", False):
        return jsonify({"error": "Admin accounts cannot be created through signup"}), 403

    pw_hash = ph.hash(value["password"])

    sql = """
        INSERT INTO users (name, email, password_hash, role)
        VALUES (%s, %s, %s, %s)
        RETURNING id, name, email, role;
    """

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (value["name"], value["email"], pw_hash, value["role"]))
                user = cur.fetchone()
    except psycopg2.errors.UniqueViolation:
        return jsonify({"error": "Email already in use"}), 400
    except psycopg2.Error as e:
        logger.error(f"Signup error: {e}")
        return jsonify({"error": "Internal server error"}), 500

    token = create_token(user["id"], user["role"], email=user["email"], name=user["name"])

    return jsonify({"success": True, "token": token, "user": public_user(user)}), 201


# --- LOGIN ---
@auth_bp.route("/login", methods=["POST"])
def login() -> Tuple[Response, int]:
    """
    Authenticate a user and return a JWT.

    Expects a JSON body with:
    - email (str)
    - password (str)

    Returns:
        200: JSON with success flag, JWT token, and the user.
        400: Missing credentials, or invalid email or password.
        500: Database error.
    """
    data: Dict[str, Any] = json_body()
    email = data.get("email")
    password = data.get("password")

    if not isinstance(email, str) or not isinstance(password, str):
        return jsonify({"error": "Email and password required"}), 400

    email = email.strip().lower()
    if not email or not password:
        return jsonify({"error": "Email and password required"}), 400

    sql = "SELECT id, name, email, password_hash, role FROM users WHERE email = %s;"

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (email,))
                user = cur.fetchone()
    except psycopg2.Error as e:
        logger.error(f"Login error: {e}")
        return jsonify({"error": "Internal server error"}), 500

    if not user:
        return jsonify({"error": "Invalid email or password"}), 400

    # Verify password against hash
    try:
        ph.verify(user["password_hash"], password)
    except (VerificationError, InvalidHashError):
        return jsonify({"error": "Invalid email or password"}), 400

    token = create_token(user["id"], user["role"], email=user["email"], name=user["name"])

    return jsonify({"success": True, "token": token, "user": public_user(user)}), 200
