from fastapi.testclient import TestClient

from api_server import create_app
from graph.build import EngineDeps
from services.sessions import CLOSING_LINE, OPENING_LINE, SessionStore

BASE = "/api/interview-sessions"
ANSWER = (
    "Thanks for having me. I currently work as a backend engineer and for example I reduced settlement "
    "latency by 30% last year. I'm looking for a role with more ownership."
)


def _client(clock, renderer=None):
    store = SessionStore(clock=clock)
    return TestClient(create_app(renderer=renderer, store=store))


def test_full_flow(clock, fake_renderer):
    client = _client(clock, fake_renderer)

    start_resp = client.post(
        f"{BASE}/start",
        json={
            "interview_id": "i1",
            "candidate_id": "c1",
            "objectives": [
                {
                    "id": "py",
                    "description": "Assess Python depth",
                    "category": "skill_assessment",
                    "priority": "important",
                }
            ],
        },
    )
    assert start_resp.status_code == 200
    started = start_resp.json()
    session_id = started["session_id"]
    assert started["phase"] == "introduction"
    assert started["ui_messages"][0]["text"] == OPENING_LINE
    assert started["remaining_minutes"] == 60.0

    clock.advance(2)
    turn_resp = client.post(f"{BASE}/turn", json={"session_id": session_id, "user_msg": ANSWER})
    assert turn_resp.status_code == 200
    body = turn_resp.json()
    assert body["source"] == "renderer"
    assert body["question"]["question_type"]
    assert body["question"]["text"] == body["ui_messages"][0]["text"]
    assert abs(body["remaining_minutes"] - 58.0) < 1e-6
    assert {event["span"] for event in body["event_log"]} >= {"flow_manager", "renderer"}
    assert body["error"] is None

    snapshot = client.get(f"{BASE}/{session_id}").json()
    assert snapshot["messages"] == 3
    assert snapshot["ended"] is False
    objective = next(item for item in snapshot["objectives"] if item["id"] == "py")
    assert objective["priority"] == "high"
    assert objective["target_phase"] == "technical"

    finish_resp = client.post(f"{BASE}/finish", json={"session_id": session_id})
    assert finish_resp.status_code == 200
    finished = finish_resp.json()
    assert finished["phase"] == "conclusion"
    assert finished["ui_messages"][0]["text"] == CLOSING_LINE
    assert finished["question"] is None

    again = client.post(f"{BASE}/turn", json={"session_id": session_id, "user_msg": "One more thing."})
    assert again.status_code == 409


def test_template_fallback_without_renderer(clock):
    client = _client(clock)
    session_id = client.post(f"{BASE}/start", json={"interview_id": "i2", "candidate_id": "c2"}).json()["session_id"]
    clock.advance(1)
    body = client.post(f"{BASE}/turn", json={"session_id": session_id, "user_msg": ANSWER}).json()
    assert body["source"] == "fallback"
    assert body["question"]["text"]


def test_sessions_are_isolated(clock, fake_renderer):
    client = _client(clock, fake_renderer)
    first = client.post(f"{BASE}/start", json={"interview_id": "a", "candidate_id": "a"}).json()["session_id"]
    second = client.post(f"{BASE}/start", json={"interview_id": "b", "candidate_id": "b"}).json()["session_id"]
    clock.advance(1)
    client.post(f"{BASE}/turn", json={"session_id": first, "user_msg": ANSWER})

    assert client.get(f"{BASE}/{first}").json()["messages"] == 3
    assert client.get(f"{BASE}/{second}").json()["messages"] == 1


def test_healthz(clock):
    response = _client(clock).get("/healthz")
    assert response.status_code == 200
    assert response.json()["phases"] == 8


def test_each_app_keeps_its_own_renderer(clock):
    def _renderer_for(label):
        calls = []

        def _render(**kwargs):
            request = kwargs["request"]
            calls.append(request)
            topic = (request.topic or "your experience").replace("_", " ")
            return {"text": f"From the {label} panel, could you walk me through a recent project involving {topic}?"}

        _render.calls = calls
        return _render

    north, south = _renderer_for("north"), _renderer_for("south")
    north_client = _client(clock, north)
    south_client = _client(clock, south)

    north_id = north_client.post(f"{BASE}/start", json={"interview_id": "n", "candidate_id": "n"}).json()["session_id"]
    south_id = south_client.post(f"{BASE}/start", json={"interview_id": "s", "candidate_id": "s"}).json()["session_id"]
    clock.advance(1)
    north_body = north_client.post(f"{BASE}/turn", json={"session_id": north_id, "user_msg": ANSWER}).json()
    south_body = south_client.post(f"{BASE}/turn", json={"session_id": south_id, "user_msg": ANSWER}).json()

    assert north_body["question"]["text"].startswith("From the north panel")
    assert south_body["question"]["text"].startswith("From the south panel")
    assert len(north.calls) == len(south.calls) == 1


def test_supplied_store_renderer_is_kept(clock, fake_renderer):
    store = SessionStore(EngineDeps(renderer=fake_renderer), clock=clock)
    app = create_app(renderer=lambda **_: {"text": "unused"}, store=store)
    assert app.state.sessions.deps.renderer is fake_renderer
