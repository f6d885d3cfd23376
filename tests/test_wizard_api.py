from __future__ import annotations

from fastapi.testclient import TestClient

from apps.local import main as local_main

HEADERS = {"X-User-Id": "user-1"}


def _client(orchestrator_factory) -> TestClient:
    return TestClient(local_main.create_app(orchestrator_factory()))


def _session_id(client: TestClient) -> str:
    response = client.get("/wizard/session", headers=HEADERS)
    assert response.status_code == 200
    return response.json()["id"]


def test_missing_user_header_is_rejected(orchestrator_factory) -> None:
    client = _client(orchestrator_factory)

    response = client.get("/wizard/session")

    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "unauthorized"


def test_health(orchestrator_factory) -> None:
    assert _client(orchestrator_factory).get("/health").json() == {"status": "ok"}


def test_current_session_is_reused(orchestrator_factory) -> None:
    client = _client(orchestrator_factory)

    assert _session_id(client) == _session_id(client)


def test_chat_turn_and_decision_round_trip(orchestrator_factory) -> None:
    client = _client(orchestrator_factory)
    session_id = _session_id(client)

    turn = client.post(
        "/wizard/chat",
        json={"session_id": session_id, "text": 'Dinner called "Feast" on March 15 2031 at 7pm'},
        headers=HEADERS,
    )
    assert turn.status_code == 200
    request = turn.json()["confirmation_request"]
    assert request["step"] == "info"

    decision = client.post(
        "/wizard/chat",
        json={"session_id": session_id, "decision": {"request_id": request["id"], "decision": {"type": "approve"}}},
        headers=HEADERS,
    )
    assert decision.status_code == 200
    assert decision.json()["session"]["current_step"] == "attendees"

    view = client.get(f"/wizard/session/{session_id}/messages", params={"step": "info"}, headers=HEADERS).json()
    assert request["id"] in view["decided_request_ids"]
    assert view["open_request"] is None


def test_blank_turn_returns_bad_request(orchestrator_factory) -> None:
    client = _client(orchestrator_factory)
    session_id = _session_id(client)

    response = client.post("/wizard/chat", json={"session_id": session_id, "text": "  "}, headers=HEADERS)

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid_turn"


def test_unknown_decision_is_reported(orchestrator_factory) -> None:
    client = _client(orchestrator_factory)
    session_id = _session_id(client)

    response = client.post(
        "/wizard/chat",
        json={"session_id": session_id, "decision": {"request_id": "nope", "decision": {"type": "approve"}}},
        headers=HEADERS,
    )

    assert response.status_code == 200
    assert response.json()["error"] == "unknown_request"


def test_navigation_errors_map_to_conflict(orchestrator_factory) -> None:
    client = _client(orchestrator_factory)
    session_id = _session_id(client)

    response = client.put(f"/wizard/session/{session_id}/step", json={"step": "schedule"}, headers=HEADERS)

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "step_not_reached"


def test_other_users_cannot_see_a_session(orchestrator_factory) -> None:
    client = _client(orchestrator_factory)
    session_id = _session_id(client)

    response = client.get(f"/wizard/session/{session_id}", headers={"X-User-Id": "user-2"})

    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "session_not_found"


def test_start_over_and_finalize_without_approval(orchestrator_factory) -> None:
    client = _client(orchestrator_factory)
    session_id = _session_id(client)

    fresh = client.post("/wizard/session/new", headers=HEADERS).json()
    assert fresh["id"] != session_id

    finalize = client.post(f"/wizard/session/{fresh['id']}/finalize", headers=HEADERS)
    assert finalize.status_code == 409


def test_direct_attendee_removal(orchestrator_factory) -> None:
    client = _client(orchestrator_factory)
    session_id = _session_id(client)
    turn = client.post(
        "/wizard/chat",
        json={"session_id": session_id, "text": 'Dinner called "Feast" on March 15 2031 at 7pm'},
        headers=HEADERS,
    ).json()
    client.post(
        "/wizard/chat",
        json={
            "session_id": session_id,
            "decision": {"request_id": turn["confirmation_request"]["id"], "decision": {"type": "approve"}},
        },
        headers=HEADERS,
    )
    client.post("/wizard/chat", json={"session_id": session_id, "text": "Amy - amy@x.com"}, headers=HEADERS)

    response = client.delete(f"/wizard/session/{session_id}/attendees/0", headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["session"]["attendee_list"] == []


def test_retried_attendee_delete_with_fingerprint_keeps_the_next_entry(orchestrator_factory) -> None:
    client = _client(orchestrator_factory)
    session_id = _session_id(client)
    turn = client.post(
        "/wizard/chat",
        json={"session_id": session_id, "text": 'Dinner called "Feast" on March 15 2031 at 7pm'},
        headers=HEADERS,
    ).json()
    client.post(
        "/wizard/chat",
        json={
            "session_id": session_id,
            "decision": {"request_id": turn["confirmation_request"]["id"], "decision": {"type": "approve"}},
        },
        headers=HEADERS,
    )
    client.post(
        "/wizard/chat",
        json={"session_id": session_id, "text": "Amy - amy@x.com\nBob - bob@x.com"},
        headers=HEADERS,
    )

    first = client.delete(f"/wizard/session/{session_id}/attendees/0", params={"name": "Amy"}, headers=HEADERS)
    retry = client.delete(f"/wizard/session/{session_id}/attendees/0", params={"name": "Amy"}, headers=HEADERS)

    assert first.status_code == 200
    assert retry.status_code == 200
    assert retry.json()["actions"][0]["ok"] is False
    assert [a["name"] for a in retry.json()["session"]["attendee_list"]] == ["Bob"]
