"""
Event payload validation.

`validate_event_payload` checks a create/update body and returns the cleaned
values keyed by column name alongside a list of error messages.
"""

import re
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

# --- CONSTANTS FOR VALIDATION ---
TITLE_MIN_LENGTH = 3
TITLE_MAX_LENGTH = 200
DESCRIPTION_MIN_LENGTH = 10
LOCATION_MIN_LENGTH = 3
LOCATION_MAX_LENGTH = 255
CATEGORY_MAX_LENGTH = 100
MAX_PARTICIPANTS_LIMIT = 100000
VALID_STATUSES = ['upcoming', 'past']

TIME_PATTERN = re.compile(r"^\d{2}:\d{2}(:\d{2})?$")


def parse_date(val: Any) -> Optional[date]:
    """
    Parse an ISO-8601 date. A full datetime string is accepted and truncated.

    Returns:
        date: The parsed date, or None if invalid.
    """
    if not isinstance(val, str) or not val:
        return None
    try:
        return date.fromisoformat(val)
    except ValueError:
        pass
    try:
        # Handles '...Z' as well as explicit offsets
        if val.endswith('Z'):
            val = val[:-1] + '+00:00'
        return datetime.fromisoformat(val).date()
    except ValueError:
        return None


def parse_time(val: Any) -> Optional[time]:
    """Parse 'HH:MM' or 'HH:MM:SS'. Returns None if invalid."""
    if not isinstance(val, str) or not TIME_PATTERN.match(val):
        return None
    try:
        return time.fromisoformat(val)
    except ValueError:
        return None


def _check_text(data: Dict[str, Any], key: str, min_len: int, max_len: Optional[int],
                errors: List[str]) -> Optional[str]:
    val = data.get(key)
    if not isinstance(val, str) or not val.strip():
        errors.append(f"{key} is required")
        return None
    val = val.strip()
    if len(val) < min_len:
        errors.append(f"{key} must be at least {min_len} characters")
    elif max_len is not None and len(val) > max_len:
        errors.append(f"{key} must be {max_len} characters or less")
    return val


def _is_http_url(val: str) -> bool:
    parsed = urlparse(val)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_event_payload(data: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """
    Validate an event create/update body.

    Expected keys: title, description, date, time, location, category,
    maxParticipants, status, and optionally imageUrl.

    Returns:
        tuple: (values keyed by column name, list of error messages).
               The values are only meaningful when the error list is empty.
    """
    errors: List[str] = []

    title = _check_text(data, "title", TITLE_MIN_LENGTH, TITLE_MAX_LENGTH, errors)
    description = _check_text(data, "description", DESCRIPTION_MIN_LENGTH, None, errors)
    location = _check_text(data, "location", LOCATION_MIN_LENGTH, LOCATION_MAX_LENGTH, errors)
    category = _check_text(data, "category", 1, CATEGORY_MAX_LENGTH, errors)

    event_date = parse_date(data.get("date"))
    if event_date is None:
        errors.append("date must be a valid ISO-8601 date")

    event_time = parse_time(data.get("time"))
    if event_time is None:
        errors.append("time must be in HH:MM or HH:MM:SS format")

    max_participants = data.get("maxParticipants")
    # bool is a subclass of int
    if not isinstance(max_participants, int) or isinstance(max_participants, bool):
        errors.append("maxParticipants must be an integer")
    elif not 1 <= max_participants <= MAX_PARTICIPANTS_LIMIT:
        errors.append(f"maxParticipants must be between 1 and {MAX_PARTICIPANTS_LIMIT}")

    image_url = data.get("imageUrl") or ""
    if not isinstance(image_url, str):
        errors.append("imageUrl must be a string")
    elif image_url and not _is_http_url(image_url):
        errors.append("imageUrl must be a valid http(s) URI")

    status = data.get("status")
    if status not in VALID_STATUSES:
        errors.append(f"status must be one of: {', '.join(VALID_STATUSES)}")

    value = {
        "title": title,
        "description": description,
        "date": event_date,
        "time": event_time,
        "location": location,
        "category": category,
        "max_participants": max_participants,
        "image_url": image_url,
        "status": status,
    }
    return value, errors
