"""Turns an approved plan session into a durable plan record.

Finalize is keyed by ``plan-session:<session id>`` so that a retry after a
failure, or a duplicate approval, returns the plan created the first time
instead of creating another one.
"""

from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List

from pydantic import BaseModel, Field

from planwizard.logging.audit import audit_event
from planwizard.storage.db import get_connection
from planwizard.wizard.errors import FinalizeError
from planwizard.wizard.normalization import DEFAULT_DURATION_MINUTES, normalize_time_of_day
from planwizard.wizard.schemas import (
    Attendee,
    ExistingItem,
    FinalizeResult,
    NewItem,
    PlanSession,
    ScheduleTask,
    new_id,
    utc_now,
)


class FinalizedTask(BaseModel):
    description: str
    scheduled_at: datetime
    duration_minutes: int = DEFAULT_DURATION_MINUTES
    is_phase_start: bool = False
    phase_description: str | None = None
    item_name: str | None = None


class FinalizePayload(BaseModel):
    name: str
    date_time: datetime
    location: str | None = None
    description: str | None = None
    allow_contributions: bool = False
    attendees: List[Attendee] = Field(default_factory=list)
    existing_items: List[ExistingItem] = Field(default_factory=list)
    new_items: List[NewItem] = Field(default_factory=list)
    tasks: List[FinalizedTask] = Field(default_factory=list)


def idempotency_key_for(session: PlanSession) -> str:
    return f"plan-session:{session.id}"


def schedule_task_at(plan_start: datetime, task: ScheduleTask) -> datetime:
    """Concrete start of ``task``; ``day_offset`` counts days before the plan date."""

    hours, minutes = (int(part) for part in normalize_time_of_day(task.time_of_day).split(":"))
    day = plan_start - timedelta(days=task.day_offset)
    return day.replace(hour=hours, minute=minutes, second=0, microsecond=0)


def build_finalize_payload(session: PlanSession) -> FinalizePayload:
    info = session.plan_info
    if info is None:
        raise FinalizeError("Plan details are missing; confirm them before finishing.", retryable=False)
    return FinalizePayload(
        name=info.name,
        date_time=info.date_time,
        location=info.location,
        description=info.description,
        allow_contributions=info.allow_contributions,
        attendees=[attendee.model_copy() for attendee in session.attendee_list],
        existing_items=[item.model_copy() for item in session.item_plan.existing_items],
        new_items=[item.model_copy() for item in session.item_plan.new_items],
        tasks=[
            FinalizedTask(
                description=task.description,
                scheduled_at=schedule_task_at(info.date_time, task),
                duration_minutes=task.duration_minutes or DEFAULT_DURATION_MINUTES,
                is_phase_start=task.is_phase_start,
                phase_description=task.phase_description,
                item_name=task.item_name,
            )
            for task in session.schedule
        ],
    )


class PlanFinalizer(ABC):
    @abstractmethod
    def finalize(self, user_id: str, payload: FinalizePayload, idempotency_key: str) -> FinalizeResult:
        """Create the plan once per ``idempotency_key``.

        Raises ``FinalizeError`` when the plan could not be created.
        """


def _plan_url(prefix: str, plan_id: str) -> str:
    return f"{prefix.rstrip('/')}/{plan_id}"


class InMemoryPlanFinalizer(PlanFinalizer):
    def __init__(self, url_prefix: str = "/plans") -> None:
        self.url_prefix = url_prefix
        self.plans: Dict[str, FinalizePayload] = {}
        self._keys: Dict[str, str] = {}
        self._lock = threading.Lock()

    def finalize(self, user_id: str, payload: FinalizePayload, idempotency_key: str) -> FinalizeResult:
        with self._lock:
            plan_id = self._keys.get(idempotency_key)
            if plan_id is not None:
                return FinalizeResult(plan_id=plan_id, plan_url=_plan_url(self.url_prefix, plan_id), created=False)
            plan_id = new_id()
            self._keys[idempotency_key] = plan_id
            self.plans[plan_id] = payload.model_copy(deep=True)
        audit_event("wizard_plan_created", plan_id=plan_id, user_id=user_id, idempotency_key=idempotency_key)
        return FinalizeResult(plan_id=plan_id, plan_url=_plan_url(self.url_prefix, plan_id), created=True)


class SqlitePlanFinalizer(PlanFinalizer):
    def __init__(self, db_path: Path | None = None, url_prefix: str = "/plans") -> None:
        self._db_path = db_path
        self.url_prefix = url_prefix

    def _existing(self, idempotency_key: str) -> str | None:
        with get_connection(self._db_path) as conn:
            row = conn.execute("SELECT id FROM plans WHERE idempotency_key = ?", (idempotency_key,)).fetchone()
        return row["id"] if row else None

    def finalize(self, user_id: str, payload: FinalizePayload, idempotency_key: str) -> FinalizeResult:
        try:
            plan_id = self._existing(idempotency_key)
            if plan_id is not None:
                return FinalizeResult(plan_id=plan_id, plan_url=_plan_url(self.url_prefix, plan_id), created=False)
            plan_id = new_id()
            try:
                with get_connection(self._db_path) as conn:
                    conn.execute(
                        """
                        INSERT INTO plans (id, idempotency_key, user_id, name, starts_at, data, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            plan_id,
                            idempotency_key,
                            user_id,
                            payload.name,
                            payload.date_time.isoformat(),
                            payload.model_dump_json(),
                            utc_now(),
                        ),
                    )
            except sqlite3.IntegrityError:
                # Lost a race against another finalize for the same key.
                plan_id = self._existing(idempotency_key)
                if plan_id is None:
                    raise
                return FinalizeResult(plan_id=plan_id, plan_url=_plan_url(self.url_prefix, plan_id), created=False)
        except sqlite3.Error as exc:
            raise FinalizeError(f"Could not save the plan: {exc}") from exc

        audit_event("wizard_plan_created", plan_id=plan_id, user_id=user_id, idempotency_key=idempotency_key)
        return FinalizeResult(plan_id=plan_id, plan_url=_plan_url(self.url_prefix, plan_id), created=True)

    def count_plans(self, idempotency_key: str | None = None) -> int:
        sql = "SELECT COUNT(*) AS total FROM plans"
        params: List[str] = []
        if idempotency_key:
            sql += " WHERE idempotency_key = ?"
            params.append(idempotency_key)
        with get_connection(self._db_path) as conn:
            row = conn.execute(sql, params).fetchone()
        return int(row["total"])
