from __future__ import annotations

from typing import Tuple

from planwizard.logging.audit import audit_event
from planwizard.wizard.errors import NavigationError, SessionCompleteError
from planwizard.wizard.schemas import NextStep, PlanSession, WizardStep, utc_now

STEPS: Tuple[WizardStep, ...] = ("info", "attendees", "items", "schedule")
COMPLETE = "complete"


def step_index(step: str) -> int:
    if step == COMPLETE:
        return len(STEPS)
    try:
        return STEPS.index(step)  # type: ignore[arg-type]
    except ValueError as exc:
        raise ValueError(f"Unknown wizard step: {step!r}") from exc


def next_step_after(step: WizardStep) -> NextStep:
    index = step_index(step)
    if index + 1 >= len(STEPS):
        return COMPLETE
    return STEPS[index + 1]


def is_finished(session: PlanSession) -> bool:
    return session.status == "completed"


def can_navigate_to(session: PlanSession, step: str) -> bool:
    if step == COMPLETE:
        return False
    return step_index(step) <= session.furthest_step_index


def navigate(session: PlanSession, step: WizardStep) -> PlanSession:
    """Move to a previously reached step. Never raises the high-water mark."""

    if is_finished(session):
        raise SessionCompleteError()
    if not can_navigate_to(session, step):
        audit_event(
            "wizard_navigation_rejected",
            session_id=session.id,
            step=step,
            furthest_step_index=session.furthest_step_index,
        )
        raise NavigationError(f"Step '{step}' has not been reached yet.")
    session.current_step = step
    session.updated_at = utc_now()
    audit_event("wizard_navigated", session_id=session.id, step=step)
    return session


def advance(session: PlanSession, next_step: NextStep) -> PlanSession:
    """Apply an approved transition.

    ``complete`` keeps ``current_step`` on the last step and marks the
    session finished; callers only reach it after finalize succeeded.
    """

    if is_finished(session):
        raise SessionCompleteError()
    session.furthest_step_index = max(session.furthest_step_index, step_index(next_step))
    if next_step == COMPLETE:
        session.status = "completed"
        session.finalize_pending = False
    else:
        session.current_step = next_step
    session.updated_at = utc_now()
    audit_event(
        "wizard_advanced",
        session_id=session.id,
        next_step=next_step,
        furthest_step_index=session.furthest_step_index,
    )
    return session
