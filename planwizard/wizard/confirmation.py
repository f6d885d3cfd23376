"""Confirmation requests and the decided-request bookkeeping around them.

A request carries a full snapshot of the section being confirmed.  Whether a
request is still open is never stored on the session: it is derived from the
message log (decision, step-confirmed and superseded parts) unioned with the
ids a client already decided locally.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AbstractSet, Iterable, List, Sequence

from planwizard.wizard.messages import (
    ConfirmationDecisionPart,
    ConfirmationRequestPart,
    ConfirmationSupersededPart,
    StepConfirmedPart,
    WizardMessage,
)
from planwizard.wizard.projector import incomplete_attendees
from planwizard.wizard.schemas import (
    ConfirmationData,
    ConfirmationRequest,
    IncompleteAttendee,
    PlanSession,
    WizardStep,
)
from planwizard.wizard.steps import next_step_after


@dataclass
class ConfirmationRefusal:
    step: WizardStep
    message: str
    incomplete_attendees: List[IncompleteAttendee] = field(default_factory=list)


@dataclass
class VisibleConfirmation:
    request: ConfirmationRequest
    actionable: bool


def snapshot_for(session: PlanSession, step: WizardStep) -> ConfirmationData:
    if step == "info":
        return ConfirmationData(plan_info=session.plan_info.model_copy() if session.plan_info else None)
    if step == "attendees":
        return ConfirmationData(attendee_list=[attendee.model_copy() for attendee in session.attendee_list])
    if step == "items":
        return ConfirmationData(item_plan=session.item_plan.model_copy(deep=True))
    return ConfirmationData(schedule=[task.model_copy() for task in session.schedule])


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def _preview(labels: Sequence[str]) -> str:
    shown = ", ".join(labels[:3])
    return f"{shown}..." if len(labels) > 3 else shown


def summarize(step: WizardStep, data: ConfirmationData) -> str:
    if step == "info":
        info = data.plan_info
        if info is None:
            return "No plan details yet"
        summary = f"{info.name} on {info.date_time.strftime('%a, %b %d, %Y at %I:%M %p')}"
        if info.location:
            summary += f" at {info.location}"
        return summary
    if step == "attendees":
        attendees = data.attendee_list or []
        if not attendees:
            return "No attendees added yet (you can add them later)"
        return f"{_plural(len(attendees), 'attendee')}: {_preview([a.label() for a in attendees])}"
    if step == "items":
        plan = data.item_plan
        names = [item.name for item in plan.existing_items] + [item.name for item in plan.new_items] if plan else []
        if not names:
            return "No items added yet"
        return f"{_plural(len(names), 'item')}: {_preview(names)}"
    tasks = data.schedule or []
    if not tasks:
        return "No schedule tasks created"
    phases = sum(1 for task in tasks if task.is_phase_start)
    return f"{_plural(len(tasks), 'task')} across {_plural(phases, 'phase')}"


def build_confirmation_request(session: PlanSession, step: WizardStep) -> ConfirmationRequest | ConfirmationRefusal:
    """Snapshot ``step`` into a request, or refuse when it cannot close yet."""

    if step == "info" and session.plan_info is None:
        return ConfirmationRefusal(step=step, message="I still need a name and a date before we can confirm.")
    if step == "attendees":
        incomplete = incomplete_attendees(session)
        if incomplete:
            labels = ", ".join(f"#{entry.index + 1} {entry.label}" for entry in incomplete)
            return ConfirmationRefusal(
                step=step,
                message=f"These attendees still need an email or phone number: {labels}.",
                incomplete_attendees=incomplete,
            )
    if step == "schedule" and not session.schedule:
        return ConfirmationRefusal(step=step, message="The schedule is empty. Add at least one task first.")

    data = snapshot_for(session, step)
    return ConfirmationRequest(
        step=step,
        next_step=next_step_after(step),
        summary=summarize(step, data),
        data=data,
    )


def same_snapshot(left: ConfirmationRequest, right: ConfirmationRequest) -> bool:
    return left.step == right.step and left.data.model_dump(mode="json") == right.data.model_dump(mode="json")


def decided_request_ids(messages: Iterable[WizardMessage]) -> frozenset[str]:
    decided = set()
    for message in messages:
        for part in message.parts:
            if isinstance(part, (ConfirmationDecisionPart, StepConfirmedPart, ConfirmationSupersededPart)):
                decided.add(part.request_id)
    return frozenset(decided)


def merge_decided_ids(local_ids: Iterable[str], logged_ids: Iterable[str]) -> frozenset[str]:
    return frozenset(local_ids) | frozenset(logged_ids)


def confirmation_requests(messages: Iterable[WizardMessage]) -> List[ConfirmationRequest]:
    return [
        part.request
        for message in messages
        for part in message.parts
        if isinstance(part, ConfirmationRequestPart)
    ]


def find_request(messages: Iterable[WizardMessage], request_id: str) -> ConfirmationRequest | None:
    for request in confirmation_requests(messages):
        if request.id == request_id:
            return request
    return None


def find_open_request(
    messages: Sequence[WizardMessage],
    step: WizardStep,
    decided: AbstractSet[str],
) -> ConfirmationRequest | None:
    for request in reversed(confirmation_requests(messages)):
        if request.step == step and request.id not in decided:
            return request
    return None


def visible_confirmations(messages: Sequence[WizardMessage], local_ids: Iterable[str] = ()) -> List[VisibleConfirmation]:
    decided = merge_decided_ids(local_ids, decided_request_ids(messages))
    return [
        VisibleConfirmation(request=request, actionable=request.id not in decided)
        for request in confirmation_requests(messages)
    ]
