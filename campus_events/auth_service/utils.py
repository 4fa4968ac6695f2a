"""
Shared authentication helpers.
Provides token creation, verification, and role enforcement.
"""

import os
import jwt
from datetime import datetime, timedelta, timezone
from typing import Tuple, Optional, Any, Dict
from flask import jsonify, request, Response
from dotenv import load_dotenv

# Load .env only once here
load_dotenv()

# Load secrets & configs
JWT_SECRET = os.getenv("JWT_SECRET")
if not JWT_SECRET:
    raise RuntimeError("JWT_SECRET is missing. Set it in .env")

TOKEN_EXPIRATION_MINUTES = int(os.getenv("TOKEN_EXPIRATION_MINUTES", 10080))  # Default 7 days

ROLE_ADMIN = "admin"
ROLE_STUDENT = "student"
VALID_ROLES = (ROLE_ADMIN, ROLE_STUDENT)


# --- JWT CREATION ---
def create_token(user_id: int, role: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
    """
    Generates a new JWT for a given user.

    Args:
        user_id (int): The unique ID of the user.
        role (str): The role of the user (admin, student).
        email (str, optional): Included in the payload for client display.
        name (str, optional): Included in the payload for client display.

    Returns:
        str: Encoded JWT string.
    """
    now = datetime.now(timezone.utc)

    # PyJWT requires "sub" to be a string
    payload: Dict[str, Any] = {
        "sub": str(user_id),
        "role": role,
        "exp": now + timedelta(minutes=TOKEN_EXPIRATION_MINUTES),
        "iat": now
    }
    if email is not None:
        payload["email"] = email
    if name is not None:
        payload["name"] = name

    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def _subject_to_user_id(payload: Dict[str, Any]) -> Optional[int]:
    try:
        return int(payload.get("sub"))
    except (TypeError, ValueError):
        return None


# --- JWT VALIDATION ---
def verify_token_from_request(required_roles: Optional[list] = None) -> Tuple[Optional[int], Optional[str], Optional[Response], Optional[int]]:
    """
    Verify the JWT in the Authorization header.

    Args:
        required_roles (list, optional): List of allowed roles.

    Returns:
        tuple: (user_id, role, error_response, status_code)
               If successful, error_response and status_code are None.
               If failed, user_id and role are None.
    """

    auth = request.headers.get("Authorization", "")

    if not auth.startswith("Bearer "):
        return None, None, jsonify({"error": "missing token"}), 401

    token = auth.split(" ", 1)[1]

    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        return None, None, jsonify({"error": "token expired"}), 401
    except jwt.InvalidTokenError:
        return None, None, jsonify({"error": "invalid token"}), 401

    user_id = _subject_to_user_id(payload)
    role = payload.get("role")

    if user_id is None or role not in VALID_ROLES:
        return None, None, jsonify({"error": "invalid token"}), 401

    if required_roles and role not in required_roles:
        return None, None, jsonify({"error": "permission denied"}), 403

    return user_id, role, None, None


def json_body() -> Dict[str, Any]:
    """
    The request's JSON body when it is an object, otherwise an empty dict.

    Arrays, scalars and unparseable bodies all come back as `{}` so the
    caller's field validation rejects them with 400.
    """
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def verify_token(token: str) -> Optional[int]:
    """
    Validate a JWT manually (optional usage).

    Args:
        token (str): JWT string.

    Returns:
        int: user_id if valid, None otherwise.
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=["HS256"])
    except jwt.InvalidTokenError:
        return None
    return _subject_to_user_id(payload)
