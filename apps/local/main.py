from __future__ import annotations

from typing import Callable, TypeVar

from fastapi import Depends, FastAPI, HTTPException, Query, status

from planwizard.config import ensure_directories
from planwizard.logging.audit import audit_event, safe_excerpt, text_hash
from planwizard.logging.logger import get_logger
from planwizard.security import require_user
from planwizard.wizard.errors import WizardError
from planwizard.wizard.orchestrator import ConversationView, WizardOrchestrator, build_orchestrator
from planwizard.wizard.schemas import (
    Attendee,
    PlanSession,
    StepChangeRequest,
    TurnErrorResponse,
    TurnRequest,
    TurnResponse,
    WizardStep,
)

T = TypeVar("T")


def _http_error(exc: WizardError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail={"error": exc.error, "message": str(exc)})


def _guarded(call: Callable[[], T]) -> T:
    try:
        return call()
    except WizardError as exc:
        raise _http_error(exc) from exc


def create_app(orchestrator: WizardOrchestrator | None = None) -> FastAPI:
    ensure_directories()
    get_logger()
    app = FastAPI(title="Plan Wizard")
    wizard = orchestrator or build_orchestrator()
    app.state.wizard = wizard

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/wizard/session", response_model=PlanSession)
    def current_session(user: str = Depends(require_user)) -> PlanSession:
        return wizard.get_or_create_session(user)

    @app.post("/wizard/session/new", response_model=PlanSession)
    def new_session(user: str = Depends(require_user)) -> PlanSession:
        audit_event("wizard_start_over_requested", user_id=user)
        return _guarded(lambda: wizard.start_over(user))

    @app.get("/wizard/session/{session_id}", response_model=PlanSession)
    def get_session(session_id: str, user: str = Depends(require_user)) -> PlanSession:
        return _guarded(lambda: wizard.load_session(session_id, user))

    @app.put("/wizard/session/{session_id}/step", response_model=PlanSession)
    def change_step(session_id: str, payload: StepChangeRequest, user: str = Depends(require_user)) -> PlanSession:
        return _guarded(lambda: wizard.navigate(session_id, user, payload.step))

    @app.get("/wizard/session/{session_id}/messages", response_model=ConversationView)
    def session_messages(
        session_id: str,
        step: WizardStep | None = Query(default=None),
        decided: list[str] | None = Query(default=None),
        user: str = Depends(require_user),
    ) -> ConversationView:
        return _guarded(lambda: wizard.step_messages(session_id, user, step=step, local_decided_ids=decided or ()))

    @app.post(
        "/wizard/chat",
        response_model=TurnResponse | TurnErrorResponse,
        responses={200: {"model": TurnErrorResponse}},
    )
    def chat(payload: TurnRequest, user: str = Depends(require_user)) -> TurnResponse | TurnErrorResponse:
        if payload.decision is not None:
            audit_event(
                "wizard_decision_requested",
                user_id=user,
                session_id=payload.session_id,
                request_id=payload.decision.request_id,
            )
            return _guarded(
                lambda: wizard.submit_decision(
                    payload.session_id,
                    user,
                    payload.decision.request_id,
                    payload.decision.decision,
                    message_id=payload.message_id,
                )
            )

        user_text = payload.text or ""
        audit_event(
            "wizard_chat_requested",
            user_id=user,
            session_id=payload.session_id,
            text_hash=text_hash(user_text),
            text_excerpt=safe_excerpt(user_text),
        )
        result = _guarded(
            lambda: wizard.submit_turn(payload.session_id, user, payload.text, message_id=payload.message_id)
        )
        if isinstance(result, TurnErrorResponse) and result.error == "invalid_turn":
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"error": result.error, "message": result.message},
            )
        return result

    @app.post(
        "/wizard/session/{session_id}/finalize",
        response_model=TurnResponse | TurnErrorResponse,
        responses={200: {"model": TurnErrorResponse}},
    )
    def finalize(session_id: str, user: str = Depends(require_user)) -> TurnResponse | TurnErrorResponse:
        return _guarded(lambda: wizard.retry_finalize(session_id, user))

    @app.delete("/wizard/session/{session_id}/attendees/{index}", response_model=TurnResponse)
    def delete_attendee(
        session_id: str,
        index: int,
        name: str | None = Query(default=None),
        email: str | None = Query(default=None),
        phone: str | None = Query(default=None),
        user: str = Depends(require_user),
    ) -> TurnResponse:
        expected = Attendee(name=name, email=email, phone=phone) if (name or email or phone) else None
        return _guarded(lambda: wizard.remove_attendee(session_id, user, index, expected=expected))

    @app.delete("/wizard/session/{session_id}/items/{index}", response_model=TurnResponse)
    def delete_item(
        session_id: str,
        index: int,
        is_new: bool = Query(default=False),
        name: str | None = Query(default=None),
        user: str = Depends(require_user),
    ) -> TurnResponse:
        return _guarded(lambda: wizard.remove_item(session_id, user, index, is_new, expected_name=name))

    return app


app = create_app()
