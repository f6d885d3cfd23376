from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from planwizard.wizard.normalization import clean_optional_string, normalize_time_of_day

WizardStep = Literal["info", "attendees", "items", "schedule"]
NextStep = Literal["info", "attendees", "items", "schedule", "complete"]
SessionStatus = Literal["active", "completed", "abandoned"]
SourceType = Literal["photo", "url", "ai", "manual"]


def utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid4())


def _action_id() -> str:
    return uuid4().hex


# ============================================
# Plan sections
# ============================================


class PlanInfo(BaseModel):
    name: str = Field(min_length=1)
    date_time: datetime
    location: str | None = None
    description: str | None = None
    allow_contributions: bool = False


class Attendee(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    extra_contact: str | None = None

    @field_validator("name", "email", "phone", "extra_contact", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        if isinstance(value, str):
            return clean_optional_string(value)
        return value

    def has_contact(self) -> bool:
        return bool(self.email or self.phone)

    def label(self) -> str:
        return self.name or self.email or self.phone or "attendee"


class ExistingItem(BaseModel):
    external_id: str = Field(min_length=1)
    name: str
    category: str | None = None
    servings: int | None = Field(default=None, gt=0)


class NewItem(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    source_type: SourceType = "manual"
    source_url: str | None = None
    category: str | None = None
    details: Dict[str, Any] = Field(default_factory=dict)


class ItemPlan(BaseModel):
    existing_items: List[ExistingItem] = Field(default_factory=list)
    new_items: List[NewItem] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.existing_items and not self.new_items


class ScheduleTask(BaseModel):
    description: str = Field(min_length=1)
    day_offset: int = Field(default=0, ge=0)
    time_of_day: str = "09:00"
    duration_minutes: int | None = Field(default=None, gt=0)
    is_phase_start: bool = False
    phase_description: str | None = None
    item_name: str | None = None

    @field_validator("time_of_day", mode="before")
    @classmethod
    def _normalize_time(cls, value: Any) -> str:
        return normalize_time_of_day(value)


class PlanSession(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    current_step: WizardStep = "info"
    furthest_step_index: int = Field(default=0, ge=0)
    plan_info: PlanInfo | None = None
    attendee_list: List[Attendee] = Field(default_factory=list)
    item_plan: ItemPlan = Field(default_factory=ItemPlan)
    schedule: List[ScheduleTask] = Field(default_factory=list)
    status: SessionStatus = "active"
    finalize_pending: bool = False
    plan_id: str | None = None
    plan_url: str | None = None
    applied_action_ids: List[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)


# ============================================
# Actions
# ============================================


class EmptyPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")


class RemoveAttendeePayload(BaseModel):
    index: int
    expected: Attendee | None = None


class RemoveItemPayload(BaseModel):
    index: int
    is_new: bool
    expected_name: str | None = None


class ReplaceSchedulePayload(BaseModel):
    tasks: List[ScheduleTask] = Field(default_factory=list)


class ConfirmPlanInfoAction(BaseModel):
    type: Literal["confirm-plan-info"] = "confirm-plan-info"
    action_id: str = Field(default_factory=_action_id)
    payload: PlanInfo


class AddAttendeeAction(BaseModel):
    type: Literal["add-attendee"] = "add-attendee"
    action_id: str = Field(default_factory=_action_id)
    payload: Attendee


class RemoveAttendeeAction(BaseModel):
    type: Literal["remove-attendee"] = "remove-attendee"
    action_id: str = Field(default_factory=_action_id)
    payload: RemoveAttendeePayload


class ConfirmAttendeeListAction(BaseModel):
    type: Literal["confirm-attendee-list"] = "confirm-attendee-list"
    action_id: str = Field(default_factory=_action_id)
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


class AddExistingItemAction(BaseModel):
    type: Literal["add-existing-item"] = "add-existing-item"
    action_id: str = Field(default_factory=_action_id)
    payload: ExistingItem


class AddNewItemAction(BaseModel):
    type: Literal["add-new-item"] = "add-new-item"
    action_id: str = Field(default_factory=_action_id)
    payload: NewItem


class RemoveItemAction(BaseModel):
    type: Literal["remove-item"] = "remove-item"
    action_id: str = Field(default_factory=_action_id)
    payload: RemoveItemPayload


class ConfirmItemsAction(BaseModel):
    type: Literal["confirm-items"] = "confirm-items"
    action_id: str = Field(default_factory=_action_id)
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


class AddScheduleTaskAction(BaseModel):
    type: Literal["add-schedule-task"] = "add-schedule-task"
    action_id: str = Field(default_factory=_action_id)
    payload: ScheduleTask


class ReplaceScheduleAction(BaseModel):
    type: Literal["replace-schedule"] = "replace-schedule"
    action_id: str = Field(default_factory=_action_id)
    payload: ReplaceSchedulePayload


class ConfirmScheduleAction(BaseModel):
    type: Literal["confirm-schedule"] = "confirm-schedule"
    action_id: str = Field(default_factory=_action_id)
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


Action = Annotated[
    Union[
        ConfirmPlanInfoAction,
        AddAttendeeAction,
        RemoveAttendeeAction,
        ConfirmAttendeeListAction,
        AddExistingItemAction,
        AddNewItemAction,
        RemoveItemAction,
        ConfirmItemsAction,
        AddScheduleTaskAction,
        ReplaceScheduleAction,
        ConfirmScheduleAction,
    ],
    Field(discriminator="type"),
]

ACTION_ADAPTER: TypeAdapter[Action] = TypeAdapter(Action)

ACTION_CLASSES: Dict[str, type[BaseModel]] = {
    "confirm-plan-info": ConfirmPlanInfoAction,
    "add-attendee": AddAttendeeAction,
    "remove-attendee": RemoveAttendeeAction,
    "confirm-attendee-list": ConfirmAttendeeListAction,
    "add-existing-item": AddExistingItemAction,
    "add-new-item": AddNewItemAction,
    "remove-item": RemoveItemAction,
    "confirm-items": ConfirmItemsAction,
    "add-schedule-task": AddScheduleTaskAction,
    "replace-schedule": ReplaceScheduleAction,
    "confirm-schedule": ConfirmScheduleAction,
}

# Which step each confirm-* action closes.
CONFIRM_ACTION_STEPS: Dict[str, WizardStep] = {
    "confirm-plan-info": "info",
    "confirm-attendee-list": "attendees",
    "confirm-items": "items",
    "confirm-schedule": "schedule",
}

STEP_ACTIONS: Dict[str, frozenset[str]] = {
    "info": frozenset({"confirm-plan-info"}),
    "attendees": frozenset({"add-attendee", "remove-attendee", "confirm-attendee-list"}),
    "items": frozenset({"add-existing-item", "add-new-item", "remove-item", "confirm-items"}),
    "schedule": frozenset({"add-schedule-task", "replace-schedule", "confirm-schedule"}),
}


class ActionOutcome(BaseModel):
    action_id: str
    type: str
    ok: bool
    replayed: bool = False
    message: str = ""


class IncompleteAttendee(BaseModel):
    index: int
    label: str


# ============================================
# Confirmation protocol
# ============================================


class ConfirmationData(BaseModel):
    plan_info: PlanInfo | None = None
    attendee_list: List[Attendee] | None = None
    item_plan: ItemPlan | None = None
    schedule: List[ScheduleTask] | None = None


class ConfirmationRequest(BaseModel):
    id: str = Field(default_factory=new_id)
    step: WizardStep
    next_step: NextStep
    summary: str
    data: ConfirmationData
    created_at: str = Field(default_factory=utc_now)


class ApproveDecision(BaseModel):
    type: Literal["approve"] = "approve"


class ReviseDecision(BaseModel):
    type: Literal["revise"] = "revise"
    feedback: str = ""


Decision = Annotated[Union[ApproveDecision, ReviseDecision], Field(discriminator="type")]


class DecisionSubmission(BaseModel):
    request_id: str = Field(min_length=1)
    decision: Decision


class RevisionContext(BaseModel):
    request_id: str
    summary: str
    feedback: str


# ============================================
# Deterministic resolver results
# ============================================

ResolverIntent = Literal[
    "confirm-plan-info",
    "ask-missing-name",
    "ask-missing-datetime",
    "ask-unparseable-datetime",
    "add-guests",
    "remove-attendee",
    "confirm-attendee-list",
    "ask-clarification",
    "remove-item",
    "confirm-items",
    "confirm-schedule",
]


class HandledTurn(BaseModel):
    handled: Literal[True] = True
    intent: ResolverIntent
    assistant_text: str
    actions: List[Action] = Field(default_factory=list)


class UnhandledTurn(BaseModel):
    handled: Literal[False] = False
    reason: Literal["ambiguous", "unsupported", "no-match", "no-signal"] = "no-signal"


# ============================================
# Finalize
# ============================================


class FinalizeResult(BaseModel):
    plan_id: str
    plan_url: str
    created: bool = True


# ============================================
# Orchestration requests / responses
# ============================================


class TurnRequest(BaseModel):
    session_id: str = Field(min_length=1)
    text: str | None = None
    message_id: str | None = None
    decision: DecisionSubmission | None = None


class StepChangeRequest(BaseModel):
    step: WizardStep


class TurnResponse(BaseModel):
    session: PlanSession
    mode: Literal["deterministic", "agent", "decision", "direct", "none"]
    intent: str
    message: str
    actions: List[ActionOutcome] = Field(default_factory=list)
    confirmation_request: ConfirmationRequest | None = None
    incomplete_attendees: List[IncompleteAttendee] = Field(default_factory=list)
    finalized: FinalizeResult | None = None
    duplicate: bool = False


class TurnErrorResponse(BaseModel):
    error: Literal[
        "invalid_turn",
        "session_complete",
        "agent_failed",
        "agent_timeout",
        "finalize_failed",
        "unknown_request",
    ]
    message: str
    retryable: bool = False
    session: PlanSession | None = None
