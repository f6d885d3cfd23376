from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict

from planwizard.logging.audit import audit_event
from planwizard.storage.db import get_connection
from planwizard.wizard.schemas import PlanSession, utc_now


class SessionStore(ABC):
    """Read/write access to plan sessions.

    Implementations must be read-after-write consistent for a single session.
    """

    @abstractmethod
    def create(self, user_id: str) -> PlanSession:
        """Create and persist a fresh session for ``user_id``."""

    @abstractmethod
    def load(self, session_id: str) -> PlanSession | None:
        """Return the session or ``None`` when it does not exist."""

    @abstractmethod
    def find_active(self, user_id: str) -> PlanSession | None:
        """Return the user's most recent active session, if any."""

    @abstractmethod
    def save(self, session: PlanSession) -> None:
        """Persist ``session`` as-is."""

    def reset(self, session_id: str) -> PlanSession | None:
        """Abandon ``session_id`` and return a fresh session for the same user."""

        session = self.load(session_id)
        if session is None:
            return None
        if session.status == "active":
            session.status = "abandoned"
            session.updated_at = utc_now()
            self.save(session)
        fresh = self.create(session.user_id)
        audit_event("wizard_session_reset", previous_session_id=session_id, session_id=fresh.id)
        return fresh


class InMemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._sessions: Dict[str, PlanSession] = {}
        self._lock = threading.Lock()

    def create(self, user_id: str) -> PlanSession:
        session = PlanSession(user_id=user_id)
        self.save(session)
        audit_event("wizard_session_created", session_id=session.id, user_id=user_id)
        return session

    def load(self, session_id: str) -> PlanSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session else None

    def find_active(self, user_id: str) -> PlanSession | None:
        with self._lock:
            candidates = [
                session
                for session in self._sessions.values()
                if session.user_id == user_id and session.status == "active"
            ]
        if not candidates:
            return None
        latest = max(candidates, key=lambda session: session.created_at)
        return latest.model_copy(deep=True)

    def save(self, session: PlanSession) -> None:
        with self._lock:
            self._sessions[session.id] = session.model_copy(deep=True)


def _row_to_session(row: Any) -> PlanSession:
    return PlanSession.model_validate_json(row["data"])


class SqliteSessionStore(SessionStore):
    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path

    def create(self, user_id: str) -> PlanSession:
        session = PlanSession(user_id=user_id)
        self.save(session)
        audit_event("wizard_session_created", session_id=session.id, user_id=user_id)
        return session

    def load(self, session_id: str) -> PlanSession | None:
        with get_connection(self._db_path) as conn:
            row = conn.execute("SELECT data FROM plan_sessions WHERE id = ?", (session_id,)).fetchone()
        return _row_to_session(row) if row else None

    def find_active(self, user_id: str) -> PlanSession | None:
        with get_connection(self._db_path) as conn:
            row = conn.execute(
                """
                SELECT data FROM plan_sessions
                WHERE user_id = ? AND status = 'active'
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (user_id,),
            ).fetchone()
        return _row_to_session(row) if row else None

    def save(self, session: PlanSession) -> None:
        with get_connection(self._db_path) as conn:
            conn.execute(
                """
                INSERT INTO plan_sessions (
                    id, user_id, status, current_step, furthest_step_index, data, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    current_step = excluded.current_step,
                    furthest_step_index = excluded.furthest_step_index,
                    data = excluded.data,
                    updated_at = excluded.updated_at
                """,
                (
                    session.id,
                    session.user_id,
                    session.status,
                    session.current_step,
                    session.furthest_step_index,
                    session.model_dump_json(),
                    session.created_at,
                    session.updated_at,
                ),
            )
