import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

os.environ.setdefault("ENABLE_FILE_LOGS", "0")

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from agents.flow_manager import FlowStateMachine
from agents.types import Emotions, Entity, Sentiment, Utterance
from config.registry import RENDERER_KEY, bind_model, unbind_model
from config.settings import settings
from config.templates import load_templates

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


class Clock:
    """Manually advanced clock for deterministic timing."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float) -> datetime:
        self.now = self.now + timedelta(minutes=minutes)
        return self.now


@pytest.fixture(autouse=True)
def clean_renderer():
    unbind_model(RENDERER_KEY)
    try:
        yield
    finally:
        unbind_model(RENDERER_KEY)


@pytest.fixture(autouse=True)
def offline_routes(monkeypatch, tmp_path):
    """Apps built without a renderer use template responses instead of the local route."""

    monkeypatch.setattr(settings, "APP_CONFIG_PATH", str(tmp_path / "missing_app_config.json"))


@pytest.fixture
def templates():
    return load_templates()


@pytest.fixture
def fsm(templates):
    return FlowStateMachine(templates)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def session(fsm):
    return fsm.start_session(interview_id="i1", candidate_id="c1", now=T0)


@pytest.fixture
def fake_renderer():
    calls = []

    def _render(**kwargs):
        request = kwargs["request"]
        calls.append(request)
        topic = (request.topic or "your experience").replace("_", " ")
        return {
            "text": f"Could you walk me through a recent project involving {topic} and the results you achieved?",
            "confidence": 0.85,
            "quality": {"clarity": 0.9, "relevance": 0.85, "engagement": 0.8, "appropriateness": 0.95},
        }

    _render.calls = calls
    bind_model(RENDERER_KEY, _render)
    return _render


def candidate(text, *, at=T0, entities=(), sentiment=None):
    return Utterance(
        role="candidate",
        text=text,
        timestamp=at,
        entities=tuple(entities),
        sentiment=sentiment,
    )


def tech(value, confidence=0.9, kind="technology"):
    return Entity(type=kind, value=value, confidence=confidence)


def mood(polarity=0.3, certainty=0.8, **emotions):
    return Sentiment(polarity=polarity, confidence=certainty, emotions=Emotions(**emotions))
