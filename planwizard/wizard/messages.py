"""Message log entries for the wizard conversation.

Each logged message is a list of typed parts.  Text parts are what the model
and the user read; the remaining ``confirmation-*`` / ``step-confirmed`` parts
are protocol events that the confirmation engine replays to rebuild state.
"""

from __future__ import annotations

from typing import Annotated, Iterable, List, Literal, Union

from pydantic import BaseModel, Field

from planwizard.wizard.schemas import (
    ActionOutcome,
    ConfirmationRequest,
    Decision,
    NextStep,
    WizardStep,
    new_id,
    utc_now,
)


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ActionResultPart(BaseModel):
    type: Literal["action-result"] = "action-result"
    outcome: ActionOutcome


class ConfirmationRequestPart(BaseModel):
    type: Literal["confirmation-request"] = "confirmation-request"
    request: ConfirmationRequest


class ConfirmationDecisionPart(BaseModel):
    type: Literal["confirmation-decision"] = "confirmation-decision"
    request_id: str
    decision: Decision


class StepConfirmedPart(BaseModel):
    type: Literal["step-confirmed"] = "step-confirmed"
    request_id: str
    step: WizardStep
    next_step: NextStep


class ConfirmationSupersededPart(BaseModel):
    type: Literal["confirmation-superseded"] = "confirmation-superseded"
    request_id: str
    superseded_by: str | None = None


MessagePart = Annotated[
    Union[
        TextPart,
        ActionResultPart,
        ConfirmationRequestPart,
        ConfirmationDecisionPart,
        StepConfirmedPart,
        ConfirmationSupersededPart,
    ],
    Field(discriminator="type"),
]


class WizardMessage(BaseModel):
    id: str = Field(default_factory=new_id)
    session_id: str
    step: WizardStep
    role: Literal["user", "assistant"]
    parts: List[MessagePart] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now)

    def text(self) -> str:
        return "\n".join(part.text for part in self.parts if isinstance(part, TextPart) and part.text.strip())


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    text: str


def user_message(
    session_id: str,
    step: WizardStep,
    text: str,
    *,
    message_id: str | None = None,
    extra_parts: Iterable[BaseModel] = (),
) -> WizardMessage:
    parts: List[BaseModel] = []
    if text.strip():
        parts.append(TextPart(text=text))
    parts.extend(extra_parts)
    return WizardMessage(
        id=message_id or new_id(),
        session_id=session_id,
        step=step,
        role="user",
        parts=parts,
    )


def assistant_message(session_id: str, step: WizardStep, parts: Iterable[BaseModel]) -> WizardMessage:
    return WizardMessage(session_id=session_id, step=step, role="assistant", parts=list(parts))


def history_for_agent(messages: Iterable[WizardMessage]) -> List[ChatTurn]:
    """Drop messages that hold only protocol parts; the model sees text alone."""

    history: List[ChatTurn] = []
    for message in messages:
        text = message.text()
        if not text:
            continue
        history.append(ChatTurn(role=message.role, text=text))
    return history
