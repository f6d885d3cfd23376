from __future__ import annotations

import sqlite3
from pathlib import Path

from planwizard.config import ensure_directories

_DB_INITIALIZED: set[Path] = set()


def get_db_path() -> Path:
    paths = ensure_directories()
    return paths.data_dir / "planwizard.sqlite3"


def init_db(db_path: Path | None = None) -> Path:
    db_path = db_path or get_db_path()
    if db_path in _DB_INITIALIZED:
        return db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    try:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS plan_sessions (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                status TEXT NOT NULL,
                current_step TEXT NOT NULL,
                furthest_step_index INTEGER NOT NULL,
                data TEXT NOT NULL,
                created_at TEXT,
                updated_at TEXT
            )
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_plan_sessions_user ON plan_sessions (user_id, status)"
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS wizard_messages (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL,
                session_id TEXT NOT NULL,
                step TEXT NOT NULL,
                role TEXT NOT NULL,
                data TEXT NOT NULL,
                created_at TEXT,
                UNIQUE (session_id, id)
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS plans (
                id TEXT PRIMARY KEY,
                idempotency_key TEXT NOT NULL UNIQUE,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                starts_at TEXT,
                data TEXT NOT NULL,
                created_at TEXT
            )
            """
        )
        conn.commit()
        _DB_INITIALIZED.add(db_path)
    finally:
        conn.close()
    return db_path


def get_connection(db_path: Path | None = None) -> sqlite3.Connection:
    db_path = init_db(db_path)
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn
