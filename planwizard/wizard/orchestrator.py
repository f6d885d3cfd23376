from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Sequence

from pydantic import BaseModel, Field, ValidationError

from adapters.llm.provider import (
    AgentError,
    AgentReply,
    AgentRequest,
    AgentTimeoutError,
    PlanningAgent,
    build_agent,
)
from planwizard.config import WizardConfig, get_wizard_config
from planwizard.finalize import (
    InMemoryPlanFinalizer,
    PlanFinalizer,
    SqlitePlanFinalizer,
    build_finalize_payload,
    idempotency_key_for,
)
from planwizard.logging.audit import audit_event, audit_warning, safe_excerpt, text_hash
from planwizard.storage.messages import InMemoryMessageLog, MessageLog, SqliteMessageLog
from planwizard.storage.sessions import InMemorySessionStore, SessionStore, SqliteSessionStore
from planwizard.wizard import steps
from planwizard.wizard.confirmation import (
    ConfirmationRefusal,
    build_confirmation_request,
    decided_request_ids,
    find_open_request,
    find_request,
    merge_decided_ids,
    same_snapshot,
)
from planwizard.wizard.deterministic import resolve_turn
from planwizard.wizard.errors import FinalizeError, SessionNotFoundError, WizardError
from planwizard.wizard.messages import (
    ActionResultPart,
    ConfirmationDecisionPart,
    ConfirmationRequestPart,
    ConfirmationSupersededPart,
    StepConfirmedPart,
    TextPart,
    WizardMessage,
    assistant_message,
    history_for_agent,
    user_message,
)
from planwizard.wizard.normalization import normalize_attendee, normalize_schedule_task, normalize_schedule_tasks
from planwizard.wizard.projector import apply_actions
from planwizard.wizard.schemas import (
    ACTION_ADAPTER,
    STEP_ACTIONS,
    ApproveDecision,
    Attendee,
    ConfirmationRequest,
    Decision,
    FinalizeResult,
    HandledTurn,
    PlanSession,
    RemoveAttendeeAction,
    RemoveAttendeePayload,
    RemoveItemAction,
    RemoveItemPayload,
    RevisionContext,
    TurnErrorResponse,
    TurnResponse,
    UnhandledTurn,
    WizardStep,
)

_CONFIRM_ONLY_TOOLS = {"confirm-attendee-list", "confirm-items", "confirm-schedule"}

_STEP_PROMPTS: Dict[str, str] = {
    "info": 'Tell me what you are planning and when, for example "Birthday party called "Sam\'s 30th" on Saturday at 7pm".',
    "attendees": 'Add attendees as "Name - email or phone", one per line, or say "that\'s it" when the list is complete.',
    "items": 'Tell me which items to add or remove, or say "that\'s it" when the list is complete.',
    "schedule": 'Tell me what to change in the schedule, or say "looks good" to finish.',
}

_UNHANDLED_REPLIES: Dict[str, str] = {
    "no-match": "I could not find that in the list. Could you share the exact name, email, or number?",
    "ambiguous": "Could you give me a bit more detail? A name plus an email or phone works best.",
}

_STEP_LABELS: Dict[str, str] = {
    "info": "plan details",
    "attendees": "attendees",
    "items": "items",
    "schedule": "schedule",
}


class ConversationView(BaseModel):
    session: PlanSession
    messages: List[WizardMessage] = Field(default_factory=list)
    decided_request_ids: List[str] = Field(default_factory=list)
    open_request: ConfirmationRequest | None = None


class WizardOrchestrator:
    """Coordinates turns, decisions and direct edits for plan sessions.

    All work for one session runs under that session's lock, so decided-id
    bookkeeping and step transitions never interleave.
    """

    def __init__(
        self,
        sessions: SessionStore,
        messages: MessageLog,
        finalizer: PlanFinalizer,
        agent: PlanningAgent | None = None,
        config: WizardConfig | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.sessions = sessions
        self.messages = messages
        self.finalizer = finalizer
        self.config = config or get_wizard_config()
        self.agent = agent or build_agent(self.config.agent_provider)
        self._now = now or datetime.now
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=self.config.agent_workers, thread_name_prefix="planwizard-agent")

    # ============================================
    # Session lifecycle
    # ============================================

    def _lock_for(self, session_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            return lock

    def _load_owned(self, session_id: str, user_id: str) -> PlanSession:
        session = self.sessions.load(session_id)
        if session is None or session.user_id != user_id:
            raise SessionNotFoundError()
        return session

    def get_or_create_session(self, user_id: str) -> PlanSession:
        session = self.sessions.find_active(user_id)
        if session is not None:
            return session
        return self.sessions.create(user_id)

    def load_session(self, session_id: str, user_id: str) -> PlanSession:
        return self._load_owned(session_id, user_id)

    def start_over(self, user_id: str) -> PlanSession:
        active = self.sessions.find_active(user_id)
        if active is None:
            return self.sessions.create(user_id)
        with self._lock_for(active.id):
            fresh = self.sessions.reset(active.id)
        if fresh is None:
            raise SessionNotFoundError()
        return fresh

    def navigate(self, session_id: str, user_id: str, step: WizardStep) -> PlanSession:
        with self._lock_for(session_id):
            session = self._load_owned(session_id, user_id)
            steps.navigate(session, step)
            self.sessions.save(session)
            return session

    def step_messages(
        self,
        session_id: str,
        user_id: str,
        step: WizardStep | None = None,
        local_decided_ids: Iterable[str] = (),
    ) -> ConversationView:
        session = self._load_owned(session_id, user_id)
        logged = self.messages.list(session_id)
        decided = merge_decided_ids(local_decided_ids, decided_request_ids(logged))
        visible = [message for message in logged if step is None or message.step == step]
        open_request = None
        if not steps.is_finished(session):
            open_request = find_open_request(logged, step or session.current_step, decided)
        return ConversationView(
            session=session,
            messages=visible,
            decided_request_ids=sorted(decided),
            open_request=open_request,
        )

    # ============================================
    # Turns
    # ============================================

    def submit_turn(
        self,
        session_id: str,
        user_id: str,
        text: str | None,
        message_id: str | None = None,
    ) -> TurnResponse | TurnErrorResponse:
        with self._lock_for(session_id):
            session = self._load_owned(session_id, user_id)
            if steps.is_finished(session):
                return TurnErrorResponse(
                    error="session_complete",
                    message="This plan is already complete. Start a new session to plan again.",
                    session=session,
                )
            cleaned = (text or "").strip()
            if not cleaned:
                return TurnErrorResponse(error="invalid_turn", message="Please type a message first.", session=session)
            if message_id and self.messages.has_message(session_id, message_id):
                audit_event("wizard_turn_duplicate", session_id=session_id, message_id=message_id)
                return TurnResponse(
                    session=session,
                    mode="none",
                    intent="duplicate",
                    message="Already received.",
                    duplicate=True,
                )
            return self._run_turn(session, cleaned, message_id=message_id)

    def _run_turn(
        self,
        session: PlanSession,
        text: str,
        message_id: str | None = None,
        revision: RevisionContext | None = None,
    ) -> TurnResponse | TurnErrorResponse:
        step = session.current_step
        audit_event(
            "wizard_turn_received",
            session_id=session.id,
            step=step,
            text_hash=text_hash(text),
            text_excerpt=safe_excerpt(text),
            revision=revision is not None,
        )

        resolved: HandledTurn | UnhandledTurn = UnhandledTurn(reason="no-signal")
        if self.config.deterministic_enabled:
            resolved = resolve_turn(step, text, session, reference_now=self._now())

        rejected: List[str] = []
        if isinstance(resolved, HandledTurn):
            mode = "deterministic"
            intent = resolved.intent
            reply_text = resolved.assistant_text
            actions: Sequence[BaseModel] = resolved.actions
        elif self.config.agent_enabled:
            try:
                reply = self._call_agent(session, step, text, revision)
            except AgentTimeoutError as exc:
                audit_warning("wizard_agent_timeout", session_id=session.id, step=step)
                return TurnErrorResponse(error="agent_timeout", message=str(exc), retryable=True, session=session)
            except AgentError as exc:
                audit_warning("wizard_agent_failed", session_id=session.id, step=step, error=str(exc))
                return TurnErrorResponse(
                    error="agent_failed",
                    message="The planning assistant could not answer. Please try again.",
                    retryable=True,
                    session=session,
                )
            actions, rejected = self._validate_tool_calls(step, reply)
            mode = "agent"
            intent = "agent"
            reply_text = reply.text.strip() or "Done."
        else:
            mode = "none"
            intent = "unhandled"
            reply_text = _UNHANDLED_REPLIES.get(resolved.reason, _STEP_PROMPTS[step])
            actions = []

        projection = apply_actions(session, actions)
        notes = projection.errors + rejected
        if notes:
            reply_text = " ".join([reply_text, *notes])

        confirmation_request = None
        confirmation_parts: List[BaseModel] = []
        if projection.confirm_step is not None:
            confirmation_request, refusal, confirmation_parts = self._emit_confirmation(session, projection.confirm_step)
            if refusal is not None and mode == "deterministic":
                reply_text = " ".join([refusal.message, *notes])
            elif refusal is not None:
                reply_text = f"{reply_text} {refusal.message}"

        parts: List[BaseModel] = [TextPart(text=reply_text)]
        parts.extend(ActionResultPart(outcome=outcome) for outcome in projection.outcomes)
        parts.extend(confirmation_parts)

        self.sessions.save(session)
        self.messages.append(user_message(session.id, step, text, message_id=message_id))
        self.messages.append(assistant_message(session.id, step, parts))
        audit_event(
            "wizard_turn_completed",
            session_id=session.id,
            step=step,
            mode=mode,
            intent=intent,
            action_count=len(projection.outcomes),
            error_count=len(notes),
            confirmation_request_id=confirmation_request.id if confirmation_request else None,
        )
        return TurnResponse(
            session=session,
            mode=mode,
            intent=intent,
            message=reply_text,
            actions=projection.outcomes,
            confirmation_request=confirmation_request,
            incomplete_attendees=projection.incomplete_attendees,
        )

    def _call_agent(
        self,
        session: PlanSession,
        step: WizardStep,
        text: str,
        revision: RevisionContext | None,
    ) -> AgentReply:
        """Ask the agent on a worker thread, bounded by ``agent_timeout_seconds``.

        A timed-out call cannot be interrupted: its worker stays busy until the
        agent returns, so a hung provider holds one of ``agent_workers`` threads.
        """

        request = AgentRequest(
            step=step,
            text=text,
            session=session.model_copy(deep=True),
            history=history_for_agent(self.messages.list(session.id, step)),
            allowed_tools=sorted(STEP_ACTIONS[step]),
            revision=revision,
        )
        audit_event("wizard_agent_request", session_id=session.id, step=step, history=len(request.history))
        future = self._executor.submit(self.agent.respond, request)
        try:
            reply = future.result(timeout=self.config.agent_timeout_seconds)
        except FutureTimeoutError as exc:
            future.cancel()
            raise AgentTimeoutError("The planning assistant took too long to answer. Please try again.") from exc
        except AgentError:
            raise
        except Exception as exc:
            raise AgentError(str(exc)) from exc
        audit_event(
            "wizard_agent_result",
            session_id=session.id,
            ok=reply.ok,
            tool_calls=len(reply.tool_calls),
            reason=safe_excerpt(reply.reason, max_len=120),
        )
        if not reply.ok:
            raise AgentError(reply.reason)
        return reply

    def _validate_tool_calls(self, step: WizardStep, reply: AgentReply) -> tuple[List[BaseModel], List[str]]:
        allowed = STEP_ACTIONS[step]
        actions: List[BaseModel] = []
        rejected: List[str] = []
        for call in reply.tool_calls:
            if call.name not in allowed:
                rejected.append(f"Skipped {call.name}: not available while editing {_STEP_LABELS[step]}.")
                continue
            payload = dict(call.args)
            if call.name in _CONFIRM_ONLY_TOOLS:
                payload = {}
            elif call.name == "add-schedule-task":
                payload = normalize_schedule_task(payload)
            elif call.name == "replace-schedule":
                payload = {"tasks": normalize_schedule_tasks(payload.get("tasks"))}
            elif call.name == "add-attendee":
                payload = normalize_attendee(payload)
            if payload is None:
                rejected.append(f"Skipped {call.name}: missing details.")
                continue
            try:
                actions.append(ACTION_ADAPTER.validate_python({"type": call.name, "payload": payload}))
            except ValidationError as exc:
                audit_warning("wizard_tool_call_rejected", tool=call.name, errors=exc.error_count())
                rejected.append(f"Skipped {call.name}: invalid details.")
        return actions, rejected

    def _emit_confirmation(
        self,
        session: PlanSession,
        step: WizardStep,
    ) -> tuple[ConfirmationRequest | None, ConfirmationRefusal | None, List[BaseModel]]:
        built = build_confirmation_request(session, step)
        logged = self.messages.list(session.id)
        open_request = find_open_request(logged, step, decided_request_ids(logged))
        if isinstance(built, ConfirmationRefusal):
            audit_event(
                "wizard_confirmation_refused",
                session_id=session.id,
                step=step,
                incomplete=len(built.incomplete_attendees),
                superseded=open_request.id if open_request else None,
            )
            # The open card no longer matches a list that can close.
            if open_request is not None:
                return None, built, [ConfirmationSupersededPart(request_id=open_request.id)]
            return None, built, []

        if open_request is not None and same_snapshot(open_request, built):
            audit_event("wizard_confirmation_resurfaced", session_id=session.id, request_id=open_request.id)
            return open_request, None, []

        parts: List[BaseModel] = []
        if open_request is not None:
            parts.append(ConfirmationSupersededPart(request_id=open_request.id, superseded_by=built.id))
        parts.append(ConfirmationRequestPart(request=built))
        audit_event(
            "wizard_confirmation_emitted",
            session_id=session.id,
            step=step,
            request_id=built.id,
            superseded=open_request.id if open_request else None,
        )
        return built, None, parts

    # ============================================
    # Decisions
    # ============================================

    def submit_decision(
        self,
        session_id: str,
        user_id: str,
        request_id: str,
        decision: Decision,
        message_id: str | None = None,
    ) -> TurnResponse | TurnErrorResponse:
        with self._lock_for(session_id):
            session = self._load_owned(session_id, user_id)
            logged = self.messages.list(session_id)
            request = find_request(logged, request_id)
            if request is None:
                return TurnErrorResponse(
                    error="unknown_request",
                    message="That confirmation is no longer available.",
                    session=session,
                )
            if request_id in decided_request_ids(logged):
                audit_event("wizard_decision_duplicate", session_id=session_id, request_id=request_id)
                return TurnResponse(
                    session=session,
                    mode="decision",
                    intent="duplicate-decision",
                    message="That confirmation was already answered.",
                    duplicate=True,
                )
            if steps.is_finished(session):
                return TurnErrorResponse(
                    error="session_complete",
                    message="This plan is already complete. Start a new session to plan again.",
                    session=session,
                )

            self.messages.append(
                user_message(
                    session_id,
                    request.step,
                    "",
                    message_id=message_id,
                    extra_parts=[ConfirmationDecisionPart(request_id=request_id, decision=decision)],
                )
            )
            audit_event(
                "wizard_decision_recorded",
                session_id=session_id,
                request_id=request_id,
                step=request.step,
                decision=decision.type,
            )

            if isinstance(decision, ApproveDecision):
                return self._approve(session, request)
            return self._revise(session, request, decision.feedback)

    def _approve(self, session: PlanSession, request: ConfirmationRequest) -> TurnResponse | TurnErrorResponse:
        current = build_confirmation_request(session, request.step)
        if isinstance(current, ConfirmationRefusal):
            audit_event(
                "wizard_approval_refused",
                session_id=session.id,
                request_id=request.id,
                step=request.step,
                incomplete=len(current.incomplete_attendees),
            )
            self.messages.append(assistant_message(session.id, request.step, [TextPart(text=current.message)]))
            return TurnResponse(
                session=session,
                mode="decision",
                intent="approve-refused",
                message=current.message,
                incomplete_attendees=current.incomplete_attendees,
            )

        if request.next_step == steps.COMPLETE:
            session.finalize_pending = True
            self.sessions.save(session)
            return self._finalize(session, request.id)

        steps.advance(session, request.next_step)
        self.sessions.save(session)
        message = f"Great, {_STEP_LABELS[request.step]} confirmed. Next up: {_STEP_LABELS[request.next_step]}."
        self.messages.append(
            assistant_message(
                session.id,
                request.step,
                [
                    StepConfirmedPart(request_id=request.id, step=request.step, next_step=request.next_step),
                    TextPart(text=message),
                ],
            )
        )
        return TurnResponse(session=session, mode="decision", intent="approve", message=message)

    def _revise(self, session: PlanSession, request: ConfirmationRequest, feedback: str) -> TurnResponse | TurnErrorResponse:
        feedback = feedback.strip()
        if session.current_step != request.step:
            steps.navigate(session, request.step)
            self.sessions.save(session)
        if not feedback:
            message = "No problem. What would you like to change?"
            self.messages.append(assistant_message(session.id, request.step, [TextPart(text=message)]))
            return TurnResponse(session=session, mode="decision", intent="revise", message=message)
        revision = RevisionContext(request_id=request.id, summary=request.summary, feedback=feedback)
        return self._run_turn(session, feedback, revision=revision)

    # ============================================
    # Finalize
    # ============================================

    def _finalize(self, session: PlanSession, request_id: str) -> TurnResponse | TurnErrorResponse:
        audit_event("wizard_finalize_attempt", session_id=session.id, request_id=request_id)
        try:
            payload = build_finalize_payload(session)
            result: FinalizeResult = self.finalizer.finalize(session.user_id, payload, idempotency_key_for(session))
        except FinalizeError as exc:
            audit_warning("wizard_finalize_failed", session_id=session.id, error=str(exc), retryable=exc.retryable)
            self.messages.append(assistant_message(session.id, "schedule", [TextPart(text=str(exc))]))
            return TurnErrorResponse(error="finalize_failed", message=str(exc), retryable=exc.retryable, session=session)

        session.plan_id = result.plan_id
        session.plan_url = result.plan_url
        steps.advance(session, steps.COMPLETE)
        self.sessions.save(session)
        message = f"Your plan is ready: {result.plan_url}"
        self.messages.append(
            assistant_message(
                session.id,
                "schedule",
                [
                    StepConfirmedPart(request_id=request_id, step="schedule", next_step=steps.COMPLETE),
                    TextPart(text=message),
                ],
            )
        )
        audit_event("wizard_finalized", session_id=session.id, plan_id=result.plan_id, created=result.created)
        return TurnResponse(session=session, mode="decision", intent="finalize", message=message, finalized=result)

    def retry_finalize(self, session_id: str, user_id: str) -> TurnResponse | TurnErrorResponse:
        with self._lock_for(session_id):
            session = self._load_owned(session_id, user_id)
            if steps.is_finished(session) and session.plan_id and session.plan_url:
                return TurnResponse(
                    session=session,
                    mode="direct",
                    intent="finalize",
                    message=f"Your plan is ready: {session.plan_url}",
                    finalized=FinalizeResult(plan_id=session.plan_id, plan_url=session.plan_url, created=False),
                    duplicate=True,
                )
            if not session.finalize_pending:
                raise WizardError("There is no approved plan waiting to be finalized.", status_code=409)
            request_id = self._approved_terminal_request_id(self.messages.list(session_id))
            return self._finalize(session, request_id)

    @staticmethod
    def _approved_terminal_request_id(logged: Sequence[WizardMessage]) -> str:
        terminal_ids = {
            part.request.id
            for message in logged
            for part in message.parts
            if isinstance(part, ConfirmationRequestPart) and part.request.next_step == steps.COMPLETE
        }
        for message in reversed(logged):
            for part in message.parts:
                if (
                    isinstance(part, ConfirmationDecisionPart)
                    and isinstance(part.decision, ApproveDecision)
                    and part.request_id in terminal_ids
                ):
                    return part.request_id
        raise WizardError("There is no approved plan waiting to be finalized.", status_code=409)

    # ============================================
    # Direct edits
    # ============================================

    def _apply_direct(self, session_id: str, user_id: str, action: BaseModel, intent: str) -> TurnResponse:
        with self._lock_for(session_id):
            session = self._load_owned(session_id, user_id)
            if steps.is_finished(session):
                raise WizardError("This plan is already complete.", status_code=409)
            projection = apply_actions(session, [action])
            self.sessions.save(session)
            message = projection.outcomes[0].message if projection.outcomes else ""
            return TurnResponse(
                session=session,
                mode="direct",
                intent=intent,
                message=message,
                actions=projection.outcomes,
                incomplete_attendees=projection.incomplete_attendees,
            )

    def remove_attendee(
        self,
        session_id: str,
        user_id: str,
        index: int,
        expected: Attendee | None = None,
    ) -> TurnResponse:
        """Remove by position; ``expected`` guards a retried request against a shifted list."""

        action = RemoveAttendeeAction(payload=RemoveAttendeePayload(index=index, expected=expected))
        return self._apply_direct(session_id, user_id, action, "remove-attendee")

    def remove_item(
        self,
        session_id: str,
        user_id: str,
        index: int,
        is_new: bool,
        expected_name: str | None = None,
    ) -> TurnResponse:
        action = RemoveItemAction(payload=RemoveItemPayload(index=index, is_new=is_new, expected_name=expected_name))
        return self._apply_direct(session_id, user_id, action, "remove-item")

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


def build_orchestrator(config: WizardConfig | None = None) -> WizardOrchestrator:
    config = config or get_wizard_config()
    if config.storage_backend == "memory":
        sessions: SessionStore = InMemorySessionStore()
        messages: MessageLog = InMemoryMessageLog()
        finalizer: PlanFinalizer = InMemoryPlanFinalizer(url_prefix=config.plan_url_prefix)
    else:
        sessions = SqliteSessionStore()
        messages = SqliteMessageLog()
        finalizer = SqlitePlanFinalizer(url_prefix=config.plan_url_prefix)
    return WizardOrchestrator(
        sessions=sessions,
        messages=messages,
        finalizer=finalizer,
        agent=build_agent(config.agent_provider),
        config=config,
    )
