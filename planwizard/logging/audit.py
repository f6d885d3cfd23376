"""Structured audit lines for wizard activity.

User text never reaches the log verbatim: callers pass ``text_hash`` and
``safe_excerpt`` values, and contact fields are replaced by their hash here.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from planwizard.logging.logger import get_logger

_HASHED_FIELDS = frozenset({"email", "phone", "feedback"})


def safe_excerpt(value: str, *, max_len: int = 80) -> str:
    compact = " ".join(value.split())
    if len(compact) <= max_len:
        return compact
    return f"{compact[:max_len]}..."


def text_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _scrub(fields: Dict[str, Any]) -> Dict[str, Any]:
    scrubbed: Dict[str, Any] = {}
    for key, value in fields.items():
        if value is None:
            continue
        if key in _HASHED_FIELDS and isinstance(value, str):
            scrubbed[f"{key}_hash"] = text_hash(value)
            continue
        scrubbed[key] = value
    return scrubbed


def _emit(level: int, event: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    payload = {"event": event, "timestamp": datetime.now(tz=timezone.utc).isoformat(), **_scrub(fields)}
    get_logger().log(level, "audit %s", payload)
    return payload


def audit_event(event: str, **fields: Any) -> Dict[str, Any]:
    return _emit(logging.INFO, event, fields)


def audit_warning(event: str, **fields: Any) -> Dict[str, Any]:
    return _emit(logging.WARNING, event, fields)
