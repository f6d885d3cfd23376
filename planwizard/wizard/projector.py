from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Sequence

from pydantic import BaseModel

from planwizard.logging.audit import audit_event, audit_warning
from planwizard.wizard.normalization import normalize_attendee
from planwizard.wizard.schemas import (
    CONFIRM_ACTION_STEPS,
    ActionOutcome,
    AddAttendeeAction,
    AddExistingItemAction,
    AddNewItemAction,
    AddScheduleTaskAction,
    Attendee,
    ConfirmAttendeeListAction,
    ConfirmItemsAction,
    ConfirmPlanInfoAction,
    ConfirmScheduleAction,
    IncompleteAttendee,
    PlanSession,
    RemoveAttendeeAction,
    RemoveItemAction,
    ReplaceScheduleAction,
    WizardStep,
    utc_now,
)

MAX_APPLIED_ACTION_IDS = 200


class ProjectionError(Exception):
    """A single action could not be applied; the rest of the turn continues."""


@dataclass
class ProjectionResult:
    outcomes: List[ActionOutcome] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    incomplete_attendees: List[IncompleteAttendee] = field(default_factory=list)
    confirm_step: WizardStep | None = None

    @property
    def changed(self) -> bool:
        return any(outcome.ok and not outcome.replayed for outcome in self.outcomes)


def incomplete_attendees(session: PlanSession) -> List[IncompleteAttendee]:
    return [
        IncompleteAttendee(index=index, label=attendee.label())
        for index, attendee in enumerate(session.attendee_list)
        if not attendee.has_contact()
    ]


def _matches_expected(actual: Attendee, expected: Attendee) -> bool:
    """Every field the caller saw must still hold; fields it left empty are not compared."""

    for field_name in ("name", "email", "phone"):
        wanted = getattr(expected, field_name)
        if wanted and wanted.lower() != (getattr(actual, field_name) or "").lower():
            return False
    return True


def _confirm_plan_info(session: PlanSession, action: ConfirmPlanInfoAction) -> str:
    session.plan_info = action.payload.model_copy()
    return f"Plan details set for {action.payload.name}."


def _add_attendee(session: PlanSession, action: AddAttendeeAction) -> str:
    normalized = normalize_attendee(action.payload.model_dump())
    if normalized is None:
        raise ProjectionError("Could not add an attendee without a name, email or phone.")
    attendee = Attendee(**normalized)
    session.attendee_list.append(attendee)
    if not attendee.has_contact():
        return f"Added {attendee.label()}; an email or phone is still needed."
    return f"Added {attendee.label()}."


def _remove_attendee(session: PlanSession, action: RemoveAttendeeAction) -> str:
    index = action.payload.index
    if index < 0 or index >= len(session.attendee_list):
        raise ProjectionError(f"Could not remove attendee {index + 1}: there is no such entry.")
    expected = action.payload.expected
    if expected is not None and not _matches_expected(session.attendee_list[index], expected):
        raise ProjectionError(f"Could not remove attendee {index + 1}: the list changed since it was requested.")
    removed = session.attendee_list.pop(index)
    return f"Removed {removed.label()}."


def _add_existing_item(session: PlanSession, action: AddExistingItemAction) -> str:
    item = action.payload
    if any(existing.external_id == item.external_id for existing in session.item_plan.existing_items):
        return f"{item.name} is already in the plan."
    session.item_plan.existing_items.append(item.model_copy())
    return f"Added {item.name}."


def _add_new_item(session: PlanSession, action: AddNewItemAction) -> str:
    session.item_plan.new_items.append(action.payload.model_copy())
    return f"Added {action.payload.name}."


def _remove_item(session: PlanSession, action: RemoveItemAction) -> str:
    payload = action.payload
    items: List[BaseModel] = session.item_plan.new_items if payload.is_new else session.item_plan.existing_items
    if payload.index < 0 or payload.index >= len(items):
        raise ProjectionError(f"Could not remove item {payload.index + 1}: there is no such entry.")
    target = items[payload.index]
    if payload.expected_name and target.name.strip().lower() != payload.expected_name.strip().lower():
        raise ProjectionError(f"Could not remove item {payload.index + 1}: the list changed since it was requested.")
    items.pop(payload.index)
    return f"Removed {target.name}."


def _add_schedule_task(session: PlanSession, action: AddScheduleTaskAction) -> str:
    session.schedule.append(action.payload.model_copy())
    return f"Scheduled {action.payload.description}."


def _replace_schedule(session: PlanSession, action: ReplaceScheduleAction) -> str:
    session.schedule = [task.model_copy() for task in action.payload.tasks]
    return f"Schedule now has {len(session.schedule)} tasks."


def _confirm_only(session: PlanSession, action: BaseModel) -> str:
    return "Ready for confirmation."


_HANDLERS: Dict[type, Callable[[PlanSession, BaseModel], str]] = {
    ConfirmPlanInfoAction: _confirm_plan_info,
    AddAttendeeAction: _add_attendee,
    RemoveAttendeeAction: _remove_attendee,
    ConfirmAttendeeListAction: _confirm_only,
    AddExistingItemAction: _add_existing_item,
    AddNewItemAction: _add_new_item,
    RemoveItemAction: _remove_item,
    ConfirmItemsAction: _confirm_only,
    AddScheduleTaskAction: _add_schedule_task,
    ReplaceScheduleAction: _replace_schedule,
    ConfirmScheduleAction: _confirm_only,
}


def _remember(session: PlanSession, action_id: str) -> None:
    session.applied_action_ids.append(action_id)
    if len(session.applied_action_ids) > MAX_APPLIED_ACTION_IDS:
        del session.applied_action_ids[: len(session.applied_action_ids) - MAX_APPLIED_ACTION_IDS]


def apply_actions(session: PlanSession, actions: Sequence[BaseModel]) -> ProjectionResult:
    """Apply ``actions`` in order against the live session.

    Each action sees the list state left by the previous one.  A failing
    action is reported and skipped; earlier and later actions still apply.
    Actions whose ``action_id`` was already applied are skipped as replays.
    The step high-water mark is left to the state machine.
    """

    result = ProjectionResult()
    for action in actions:
        action_type = getattr(action, "type")
        action_id = getattr(action, "action_id")
        if action_id in session.applied_action_ids:
            result.outcomes.append(
                ActionOutcome(action_id=action_id, type=action_type, ok=True, replayed=True, message="Already applied.")
            )
            continue

        handler = _HANDLERS.get(type(action))
        if handler is None:
            raise TypeError(f"No projection handler for action {type(action).__name__}")
        try:
            message = handler(session, action)
        except ProjectionError as exc:
            result.errors.append(str(exc))
            result.outcomes.append(ActionOutcome(action_id=action_id, type=action_type, ok=False, message=str(exc)))
            audit_warning("wizard_action_failed", session_id=session.id, action_type=action_type, error=str(exc))
        else:
            result.outcomes.append(ActionOutcome(action_id=action_id, type=action_type, ok=True, message=message))
            if action_type in CONFIRM_ACTION_STEPS:
                result.confirm_step = CONFIRM_ACTION_STEPS[action_type]
        _remember(session, action_id)

    if result.outcomes:
        session.updated_at = utc_now()
    result.incomplete_attendees = incomplete_attendees(session)
    audit_event(
        "wizard_actions_applied",
        session_id=session.id,
        applied=sum(1 for outcome in result.outcomes if outcome.ok and not outcome.replayed),
        replayed=sum(1 for outcome in result.outcomes if outcome.replayed),
        failed=len(result.errors),
    )
    return result
