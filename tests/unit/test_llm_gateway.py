import json
from datetime import date

import httpx
import pytest

from agents.renderer import RenderConstraints, RenderRequest, render
from config.routes import LlmRoute
from graph.state import CandidateProfile, ExperienceEntry
from llm_gateway import LlmGatewayError, RenderedUtterance, chat, render_via_route


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeClient:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def post(self, url, *, json, headers, timeout):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def _route(**overrides):
    values = dict(
        name="test",
        base_url="http://renderer.local/v1",
        endpoint="/chat/completions",
        model="test-model",
        timeout_s=2.0,
        max_retries=1,
        api_key_env="TEST_RENDERER_KEY",
        response_format="json_object",
        temperature=0.2,
    )
    values.update(overrides)
    return LlmRoute(**values)


def _completion(content):
    return FakeResponse(payload={"choices": [{"message": {"content": content}}]})


GOOD = json.dumps({"text": "What drew you to this role?", "confidence": 0.8, "quality": {"clarity": 0.9}})


def test_chat_posts_schema_and_parses_reply(monkeypatch):
    monkeypatch.setenv("TEST_RENDERER_KEY", "secret")
    client = FakeClient([_completion(GOOD)])
    reply = chat([{"role": "user", "content": "hello"}], RenderedUtterance, cfg=_route(), client=client)

    assert reply.text == "What drew you to this role?"
    call = client.calls[0]
    assert call["url"] == "http://renderer.local/v1/chat/completions"
    assert call["headers"]["Authorization"] == "Bearer secret"
    assert call["json"]["model"] == "test-model"
    assert call["json"]["temperature"] == 0.2
    assert call["json"]["response_format"] == {"type": "json_object"}
    assert call["json"]["messages"][0]["role"] == "system"
    assert call["json"]["messages"][-1] == {"role": "user", "content": "hello"}


def test_chat_strips_fences_and_retries_invalid_output():
    fenced = "```json\n" + GOOD + "\n```"
    client = FakeClient([_completion('{"text": ""}'), _completion(fenced)])
    reply = chat([{"role": "user", "content": "hi"}], RenderedUtterance, cfg=_route(), client=client)

    assert reply.confidence == 0.8
    assert len(client.calls) == 2
    hint = client.calls[1]["json"]["messages"][-1]
    assert hint["role"] == "system"
    assert "failed validation" in hint["content"]


def test_chat_gives_up_after_retries():
    client = FakeClient([_completion("not json"), _completion("still not json")])
    with pytest.raises(LlmGatewayError, match="validation"):
        chat([{"role": "user", "content": "hi"}], RenderedUtterance, cfg=_route(), client=client)


def test_transport_and_status_errors_raise_immediately():
    down = FakeClient([httpx.ConnectError("refused")])
    with pytest.raises(LlmGatewayError, match="transport"):
        chat([{"role": "user", "content": "hi"}], RenderedUtterance, cfg=_route(), client=down)

    broken = FakeClient([FakeResponse(status_code=503, text="busy")])
    with pytest.raises(LlmGatewayError, match="503"):
        chat([{"role": "user", "content": "hi"}], RenderedUtterance, cfg=_route(), client=broken)
    assert len(broken.calls) == 1


def test_malformed_messages_are_rejected():
    with pytest.raises(ValueError):
        chat([{"content": "no role"}], RenderedUtterance, cfg=_route(), client=FakeClient([]))


def test_route_renderer_feeds_render(monkeypatch):
    monkeypatch.delenv("TEST_RENDERER_KEY", raising=False)
    client = FakeClient([_completion(GOOD)])
    request = RenderRequest(
        session_id="s1",
        phase="background",
        persona="Friendly Expert",
        history=[{"role": "user", "content": "I build data pipelines."}],
        question_type="open_ended",
        intent="explore_experience",
        topic="data_pipelines",
        constraints=RenderConstraints(forbidden_terms=["Initech"]),
    )
    result = render(request, renderer=render_via_route(_route(), client=client), timeout_s=2.0)

    assert result.text == "What drew you to this role?"
    assert result.quality.clarity == 0.9
    sent = client.calls[0]["json"]["messages"]
    assert "Authorization" not in client.calls[0]["headers"]
    assert any("data pipelines" in message["content"] for message in sent)
    assert any("Initech" in message["content"] for message in sent)
    assert sent[-1] == {"role": "user", "content": "I build data pipelines."}


def test_route_renderer_sends_candidate_context(monkeypatch):
    monkeypatch.delenv("TEST_RENDERER_KEY", raising=False)
    client = FakeClient([_completion(GOOD)])
    profile = CandidateProfile(
        name="Dana",
        skills=["python", "kafka"],
        experience=[
            ExperienceEntry(role="Data Engineer", company="Globex", start=date(2019, 3, 1), is_current=True),
        ],
    )
    request = RenderRequest(
        session_id="s1",
        phase="background",
        persona="Friendly Expert",
        question_type="open_ended",
        intent="explore_experience",
        profile=profile,
        adaptations=["provide_encouragement"],
    )
    render(request, renderer=render_via_route(_route(), client=client), timeout_s=2.0)

    system = client.calls[0]["json"]["messages"][0]
    assert system["role"] == "system"
    assert "Data Engineer at Globex (2019-present)" in system["content"]
    assert "provide encouragement" in system["content"]
