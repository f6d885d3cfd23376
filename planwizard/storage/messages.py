from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List

from planwizard.storage.db import get_connection
from planwizard.wizard.messages import WizardMessage


class MessageLog(ABC):
    """Append-only conversation log, replayable per session."""

    @abstractmethod
    def append(self, message: WizardMessage) -> bool:
        """Append ``message``; returns False when its id was already logged."""

    @abstractmethod
    def list(self, session_id: str, step: str | None = None) -> List[WizardMessage]:
        """Messages for ``session_id`` in append order, optionally for one step."""

    @abstractmethod
    def has_message(self, session_id: str, message_id: str) -> bool:
        """True when ``message_id`` was already logged for the session."""


class InMemoryMessageLog(MessageLog):
    def __init__(self) -> None:
        self._messages: Dict[str, List[WizardMessage]] = {}
        self._lock = threading.Lock()

    def append(self, message: WizardMessage) -> bool:
        with self._lock:
            entries = self._messages.setdefault(message.session_id, [])
            if any(entry.id == message.id for entry in entries):
                return False
            entries.append(message.model_copy(deep=True))
            return True

    def list(self, session_id: str, step: str | None = None) -> List[WizardMessage]:
        with self._lock:
            entries = list(self._messages.get(session_id, []))
        return [entry.model_copy(deep=True) for entry in entries if step is None or entry.step == step]

    def has_message(self, session_id: str, message_id: str) -> bool:
        with self._lock:
            return any(entry.id == message_id for entry in self._messages.get(session_id, []))


class SqliteMessageLog(MessageLog):
    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path

    def append(self, message: WizardMessage) -> bool:
        try:
            with get_connection(self._db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO wizard_messages (id, session_id, step, role, data, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        message.id,
                        message.session_id,
                        message.step,
                        message.role,
                        message.model_dump_json(),
                        message.created_at,
                    ),
                )
        except sqlite3.IntegrityError:
            return False
        return True

    def list(self, session_id: str, step: str | None = None) -> List[WizardMessage]:
        sql = "SELECT data FROM wizard_messages WHERE session_id = ?"
        params: List[str] = [session_id]
        if step:
            sql += " AND step = ?"
            params.append(step)
        sql += " ORDER BY seq ASC"
        with get_connection(self._db_path) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [WizardMessage.model_validate_json(row["data"]) for row in rows]

    def has_message(self, session_id: str, message_id: str) -> bool:
        with get_connection(self._db_path) as conn:
            row = conn.execute(
                "SELECT 1 FROM wizard_messages WHERE session_id = ? AND id = ?",
                (session_id, message_id),
            ).fetchone()
        return row is not None
