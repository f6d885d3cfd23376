"""Tolerant normalization for loosely-typed plan data.

Agent tool calls and stored payloads carry values such as ``"7pm"`` or
``"30"`` where the schemas expect ``"19:00"`` or ``30``.  These helpers coerce
them before validation so that a single sloppy field does not discard an
otherwise usable record.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List

DEFAULT_TIME_OF_DAY = "09:00"
DEFAULT_DURATION_MINUTES = 30

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_TIME_PATTERN = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*([AaPp][Mm])?$")


def clean_optional_string(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def looks_like_email(value: str) -> bool:
    return bool(_EMAIL_PATTERN.match(value))


def _parse_number(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def to_positive_int(value: Any, fallback: int | None) -> int | None:
    parsed = _parse_number(value)
    if parsed is None:
        return fallback
    rounded = round(parsed)
    return rounded if rounded > 0 else fallback


def to_non_negative_int(value: Any, fallback: int) -> int:
    parsed = _parse_number(value)
    if parsed is None:
        return fallback
    rounded = round(parsed)
    return rounded if rounded >= 0 else fallback


def normalize_time_of_day(value: Any) -> str:
    raw = clean_optional_string(value)
    if not raw:
        return DEFAULT_TIME_OF_DAY
    match = _TIME_PATTERN.match(raw)
    if not match:
        return DEFAULT_TIME_OF_DAY

    hours = int(match.group(1))
    minutes = int(match.group(2) or "00")
    meridiem = (match.group(3) or "").lower()
    if minutes > 59:
        return DEFAULT_TIME_OF_DAY
    if meridiem:
        if hours < 1 or hours > 12:
            return DEFAULT_TIME_OF_DAY
        if hours == 12:
            hours = 0
        if meridiem == "pm":
            hours += 12
    elif hours > 23:
        return DEFAULT_TIME_OF_DAY
    return f"{hours:02d}:{minutes:02d}"


def normalize_schedule_task(task: Any) -> Dict[str, Any] | None:
    if not isinstance(task, dict):
        return None
    description = clean_optional_string(task.get("description"))
    if not description:
        return None
    return {
        "description": description,
        "day_offset": to_non_negative_int(task.get("day_offset"), 0),
        "time_of_day": normalize_time_of_day(task.get("time_of_day")),
        "duration_minutes": to_positive_int(task.get("duration_minutes"), None),
        "is_phase_start": bool(task.get("is_phase_start")),
        "phase_description": clean_optional_string(task.get("phase_description")),
        "item_name": clean_optional_string(task.get("item_name")),
    }


def normalize_schedule_tasks(tasks: Any) -> List[Dict[str, Any]]:
    if not isinstance(tasks, list):
        return []
    normalized = [normalize_schedule_task(task) for task in tasks]
    return [task for task in normalized if task is not None]


def normalize_attendee(data: Any) -> Dict[str, Any] | None:
    """Trim attendee fields; text that is not an email becomes the name."""

    if not isinstance(data, dict):
        return None
    name = clean_optional_string(data.get("name"))
    email = clean_optional_string(data.get("email"))
    phone = clean_optional_string(data.get("phone"))
    extra_contact = clean_optional_string(data.get("extra_contact"))
    if email and not looks_like_email(email):
        if not name:
            name = email
        email = None
    if not name and not email and not phone:
        return None
    return {"name": name, "email": email, "phone": phone, "extra_contact": extra_contact}
