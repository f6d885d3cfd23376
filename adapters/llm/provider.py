from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from planwizard.wizard.messages import ChatTurn
from planwizard.wizard.schemas import PlanSession, RevisionContext


class AgentError(Exception):
    """The planning agent failed; nothing from the turn may be applied."""


class AgentTimeoutError(AgentError):
    pass


class AgentToolCall(BaseModel):
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class AgentRequest(BaseModel):
    step: str
    text: str
    session: PlanSession
    history: list[ChatTurn] = Field(default_factory=list)
    allowed_tools: list[str] = Field(default_factory=list)
    revision: RevisionContext | None = None


class AgentReply(BaseModel):
    ok: bool = False
    text: str = ""
    tool_calls: list[AgentToolCall] = Field(default_factory=list)
    reason: str = "agent_stub"
    raw: dict[str, Any] | None = None


class PlanningAgent:
    def respond(self, request: AgentRequest) -> AgentReply:
        _ = request
        return AgentReply(ok=False, reason="agent_disabled_or_stub")


class StubPlanningAgent(PlanningAgent):
    pass


def build_agent(provider: str) -> PlanningAgent:
    # Only the stub ships here; hosted providers plug in by subclassing PlanningAgent.
    _ = provider
    return StubPlanningAgent()
