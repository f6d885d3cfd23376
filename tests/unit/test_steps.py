from __future__ import annotations

import pytest

from planwizard.wizard import steps
from planwizard.wizard.errors import NavigationError, SessionCompleteError
from planwizard.wizard.schemas import PlanSession


def test_step_order_and_successors() -> None:
    assert steps.STEPS == ("info", "attendees", "items", "schedule")
    assert steps.next_step_after("info") == "attendees"
    assert steps.next_step_after("items") == "schedule"
    assert steps.next_step_after("schedule") == "complete"
    assert steps.step_index("complete") == 4


def test_unknown_step_is_rejected() -> None:
    with pytest.raises(ValueError):
        steps.step_index("review")


def test_advance_raises_high_water_mark() -> None:
    session = PlanSession(user_id="user-1")

    steps.advance(session, "attendees")

    assert session.current_step == "attendees"
    assert session.furthest_step_index == 1


def test_navigation_back_keeps_furthest_index() -> None:
    session = PlanSession(user_id="user-1", current_step="items", furthest_step_index=2)

    steps.navigate(session, "info")

    assert session.current_step == "info"
    assert session.furthest_step_index == 2
    steps.navigate(session, "items")
    assert session.current_step == "items"


def test_navigation_past_furthest_step_is_rejected() -> None:
    session = PlanSession(user_id="user-1", current_step="attendees", furthest_step_index=1)

    with pytest.raises(NavigationError):
        steps.navigate(session, "schedule")
    assert session.current_step == "attendees"


def test_advancing_from_a_revisited_step_never_lowers_furthest_index() -> None:
    session = PlanSession(user_id="user-1", current_step="info", furthest_step_index=3)

    steps.advance(session, "attendees")

    assert session.current_step == "attendees"
    assert session.furthest_step_index == 3


def test_complete_finishes_session_and_blocks_further_moves() -> None:
    session = PlanSession(user_id="user-1", current_step="schedule", furthest_step_index=3, finalize_pending=True)

    steps.advance(session, "complete")

    assert session.status == "completed"
    assert session.current_step == "schedule"
    assert session.furthest_step_index == 4
    assert session.finalize_pending is False
    assert steps.can_navigate_to(session, "complete") is False
    with pytest.raises(SessionCompleteError):
        steps.navigate(session, "info")
    with pytest.raises(SessionCompleteError):
        steps.advance(session, "complete")
