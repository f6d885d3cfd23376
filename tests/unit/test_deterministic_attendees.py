from __future__ import annotations

import pytest

from planwizard.wizard.deterministic import resolve_turn
from planwizard.wizard.schemas import Attendee, HandledTurn, PlanSession, UnhandledTurn


def _session(*attendees: Attendee) -> PlanSession:
    return PlanSession(user_id="user-1", current_step="attendees", furthest_step_index=1, attendee_list=list(attendees))


def test_name_contact_lines_become_one_action_per_line_in_order() -> None:
    result = resolve_turn("attendees", "Amy - amy@gmail.com\nBob - bob@test.com", _session())

    assert isinstance(result, HandledTurn)
    assert result.intent == "add-guests"
    assert [action.type for action in result.actions] == ["add-attendee", "add-attendee"]
    assert [(a.payload.name, a.payload.email) for a in result.actions] == [
        ("Amy", "amy@gmail.com"),
        ("Bob", "bob@test.com"),
    ]


def test_semicolon_segments_keep_phone_contacts() -> None:
    result = resolve_turn("attendees", "Cara - 555-123-4567; Dev - dev@example.org", _session())

    assert isinstance(result, HandledTurn)
    assert [(a.payload.name, a.payload.phone, a.payload.email) for a in result.actions] == [
        ("Cara", "555-123-4567", None),
        ("Dev", None, "dev@example.org"),
    ]


@pytest.mark.parametrize(
    "text,expected",
    [
        ("amy@x.com, bob@y.com", [("amy@x.com", None), ("bob@y.com", None)]),
        ("amy@x.com bob@y.com", [("amy@x.com", None), ("bob@y.com", None)]),
        ("555-123-4567, 555-987-6543", [(None, "555-123-4567"), (None, "555-987-6543")]),
    ],
)
def test_bare_contacts_yield_one_nameless_attendee_each(text: str, expected: list) -> None:
    result = resolve_turn("attendees", text, _session())

    assert isinstance(result, HandledTurn)
    assert result.intent == "add-guests"
    assert [(a.payload.email, a.payload.phone) for a in result.actions] == expected
    assert all(action.payload.name is None for action in result.actions)


def test_single_contact_pairs_with_surrounding_name() -> None:
    result = resolve_turn("attendees", "Eve 555-123-4567", _session())

    assert isinstance(result, HandledTurn)
    assert len(result.actions) == 1
    assert result.actions[0].payload.name == "Eve"
    assert result.actions[0].payload.phone == "555-123-4567"


def test_add_verb_with_bare_name_adds_attendee_without_contact() -> None:
    result = resolve_turn("attendees", "add Dana", _session())

    assert isinstance(result, HandledTurn)
    assert result.intent == "add-guests"
    assert result.actions[0].payload == Attendee(name="Dana")


@pytest.mark.parametrize(
    "text,index",
    [
        ("remove #1", 0),
        ("remove #2", 1),
        ("remove #3", 2),
        ("please remove number 3", 2),
        ("remove 2", 1),
        ("remove the second one", 1),
        ("drop the third guest", 2),
    ],
)
def test_remove_by_ordinal_resolves_to_zero_based_index(text: str, index: int) -> None:
    session = _session(Attendee(name="Amy"), Attendee(name="Bob"), Attendee(name="Cy"))

    result = resolve_turn("attendees", text, session)

    assert isinstance(result, HandledTurn)
    assert result.intent == "remove-attendee"
    assert len(result.actions) == 1
    assert result.actions[0].payload.index == index
    assert result.actions[0].payload.expected == session.attendee_list[index]


def test_scenario_remove_second_entry_targets_bob() -> None:
    session = _session(Attendee(name="Amy", email="amy@gmail.com"), Attendee(name="Bob", email="bob@test.com"))

    result = resolve_turn("attendees", "remove #2", session)

    assert isinstance(result, HandledTurn)
    assert result.actions[0].type == "remove-attendee"
    assert result.actions[0].payload.index == 1
    assert result.actions[0].payload.expected.name == "Bob"


def test_remove_by_name_with_single_match() -> None:
    session = _session(Attendee(name="Amy", email="amy@x.com"), Attendee(name="Bob Stone", email="bob@x.com"))

    result = resolve_turn("attendees", "remove bob", session)

    assert isinstance(result, HandledTurn)
    assert result.intent == "remove-attendee"
    assert result.actions[0].payload.index == 1


def test_remove_by_name_without_match_is_unhandled() -> None:
    session = _session(Attendee(name="Amy", email="amy@x.com"))

    result = resolve_turn("attendees", "remove Zed", session)

    assert isinstance(result, UnhandledTurn)
    assert result.reason == "no-match"


def test_remove_by_ambiguous_name_asks_for_clarification() -> None:
    session = _session(Attendee(name="Amy", email="amy1@x.com"), Attendee(name="Amy", email="amy2@x.com"))

    result = resolve_turn("attendees", "remove Amy", session)

    assert isinstance(result, HandledTurn)
    assert result.intent == "ask-clarification"
    assert result.actions == []
    assert "#1" in result.assistant_text and "#2" in result.assistant_text


def test_remove_by_email_disambiguates_same_names() -> None:
    session = _session(Attendee(name="Amy", email="amy1@x.com"), Attendee(name="Amy", email="amy2@x.com"))

    result = resolve_turn("attendees", "remove amy2@x.com", session)

    assert isinstance(result, HandledTurn)
    assert result.intent == "remove-attendee"
    assert result.actions[0].payload.index == 1


@pytest.mark.parametrize("text", ["no", "No.", "nope", "that's it", "Done!", "no more", "no, that's it", "all done thanks"])
@pytest.mark.parametrize("attendees", [[], [Attendee(name="Amy", email="amy@x.com")]])
def test_closing_utterances_confirm_attendee_list(text: str, attendees: list) -> None:
    result = resolve_turn("attendees", text, _session(*attendees))

    assert isinstance(result, HandledTurn)
    assert result.intent == "confirm-attendee-list"
    assert len(result.actions) == 1
    assert result.actions[0].type == "confirm-attendee-list"
    assert result.actions[0].payload.model_dump() == {}


def test_additions_win_over_removal_in_the_same_turn() -> None:
    session = _session(Attendee(name="Amy", email="amy@x.com"))

    result = resolve_turn("attendees", "Cara - cara@x.com\nremove Amy", session)

    assert isinstance(result, HandledTurn)
    assert result.intent == "add-guests"
    assert [action.payload.name for action in result.actions] == ["Cara"]
    assert "did not remove" in result.assistant_text


def test_unrelated_chatter_is_unhandled() -> None:
    result = resolve_turn("attendees", "what do you think about inviting coworkers?", _session())

    assert isinstance(result, UnhandledTurn)


def test_blank_text_is_unhandled() -> None:
    result = resolve_turn("attendees", "   ", _session())

    assert isinstance(result, UnhandledTurn)
    assert result.reason == "no-signal"


def test_remove_keyword_inside_a_name_still_adds() -> None:
    result = resolve_turn("attendees", "Mike Drop - mike@x.com", _session())

    assert isinstance(result, HandledTurn)
    assert result.intent == "add-guests"
    assert len(result.actions) == 1
    assert (result.actions[0].payload.name, result.actions[0].payload.email) == ("Mike Drop", "mike@x.com")


def test_remove_request_with_only_a_contact_is_not_an_addition() -> None:
    session = _session(Attendee(name="Amy", email="amy@x.com"))

    result = resolve_turn("attendees", "Can you remove amy@x.com", session)

    assert isinstance(result, HandledTurn)
    assert result.intent == "remove-attendee"
    assert result.actions[0].payload.index == 0
