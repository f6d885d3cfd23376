from __future__ import annotations

from fastapi import Header, HTTPException, status

from planwizard.logging.audit import audit_event


def require_user(x_user_id: str | None = Header(default=None)) -> str:
    """Identify the caller. Authentication happens in front of this service."""

    user_id = (x_user_id or "").strip()
    if not user_id:
        audit_event("auth_missing_user")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "unauthorized", "message": "Missing X-User-Id header."},
        )
    return user_id
