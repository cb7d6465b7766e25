from fastapi.testclient import TestClient

from api_server import create_app
from services.sessions import SessionStore

BASE = "/api/interview-sessions"


def _start(client, **extra):
    payload = {"interview_id": "i1", "candidate_id": "c1"}
    payload.update(extra)
    response = client.post(f"{BASE}/start", json=payload)
    assert response.status_code == 200
    return response.json()["session_id"]


def test_time_pressure_moves_phase_forward(clock, fake_renderer):
    client = TestClient(create_app(renderer=fake_renderer, store=SessionStore(clock=clock)))
    session_id = _start(client, total_minutes=30)

    clock.advance(27)
    body = client.post(f"{BASE}/turn", json={"session_id": session_id, "user_msg": "Sure, happy to continue."}).json()

    assert body["phase"] == "background"
    assert any(cue["type"] == "time_pressure" for cue in body["cues"])
    assert body["decisions"][0]["decision_type"] == "phase_transition"
    assert any(rec["type"] == "timing" for rec in body["recommendations"])

    snapshot = client.get(f"{BASE}/{session_id}").json()
    assert snapshot["transitions"][0]["from_phase"] == "introduction"
    assert snapshot["transitions"][0]["trigger"] == "time_pressure"


def test_sentiment_and_entities_are_accepted(clock, fake_renderer):
    client = TestClient(create_app(renderer=fake_renderer, store=SessionStore(clock=clock)))
    session_id = _start(client)
    clock.advance(1)
    body = client.post(
        f"{BASE}/turn",
        json={
            "session_id": session_id,
            "user_msg": "Not sure?",
            "sentiment": {"polarity": -0.2, "confidence": 0.7, "emotions": {"confidence": 0.2}},
            "entities": [{"type": "technology", "value": "Kafka", "confidence": 0.9}],
        },
    ).json()
    assert any(cue["type"] == "confusion" for cue in body["cues"])
    assert any(decision["action"] == "seek_clarification" for decision in body["decisions"])


def test_request_errors(clock):
    client = TestClient(create_app(store=SessionStore(clock=clock)))

    missing = client.post(f"{BASE}/turn", json={"session_id": "nope", "user_msg": "hello"})
    assert missing.status_code == 404
    assert client.get(f"{BASE}/nope").status_code == 404
    assert client.post(f"{BASE}/finish", json={"session_id": "nope"}).status_code == 404

    session_id = _start(client)
    empty = client.post(f"{BASE}/turn", json={"session_id": session_id, "user_msg": ""})
    assert empty.status_code == 422

    bad_priority = client.post(
        f"{BASE}/start",
        json={
            "interview_id": "i",
            "candidate_id": "c",
            "objectives": [{"id": "x", "description": "x", "priority": "urgent"}],
        },
    )
    assert bad_priority.status_code == 422


def test_finish_is_idempotent(clock):
    client = TestClient(create_app(store=SessionStore(clock=clock)))
    session_id = _start(client)
    first = client.post(f"{BASE}/finish", json={"session_id": session_id}).json()
    second = client.post(f"{BASE}/finish", json={"session_id": session_id}).json()
    assert first["phase"] == second["phase"] == "conclusion"
    assert client.get(f"{BASE}/{session_id}").json()["messages"] == 2
