"""Utterance renderer client with a time bound and template fallback.

The renderer itself is a black box bound in the registry under
``RENDERER_KEY``. It is called with ``request=RenderRequest`` and may return a
``RenderResult``, a dict of the same shape, or a bare string.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError

from agents.persona_manager import Purpose, apply_persona
from agents.question_selector import FollowUpType, QuestionPlan
from agents.types import EmotionalState, Phase, QuestionType, SignalBundle
from config.registry import RENDERER_KEY, get_model
from config.settings import settings
from graph.state import CandidateProfile, InterviewSession

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 10


class RendererError(RuntimeError):
    """Raised when the renderer fails, times out or returns unusable output."""


class RenderStyle(BaseModel):
    tone: Literal["professional", "warm", "encouraging", "direct"] = "professional"
    formality: float = Field(default=0.7, ge=0.0, le=1.0)
    enthusiasm: float = Field(default=0.5, ge=0.0, le=1.0)


class RenderConstraints(BaseModel):
    max_length: int = 300
    forbidden_terms: List[str] = Field(default_factory=list)
    cultural_flags: List[str] = Field(default_factory=lambda: ["cultural_sensitivity"])
    time_limited: bool = False


class QualityScores(BaseModel):
    """Renderer self-assessment; defaults are the template fallback scores."""

    clarity: float = Field(default=0.8, ge=0.0, le=1.0)
    relevance: float = Field(default=0.6, ge=0.0, le=1.0)
    engagement: float = Field(default=0.7, ge=0.0, le=1.0)
    appropriateness: float = Field(default=0.9, ge=0.0, le=1.0)
    naturalness: float = Field(default=0.8, ge=0.0, le=1.0)
    consistency: float = Field(default=0.7, ge=0.0, le=1.0)


class RenderRequest(BaseModel):
    session_id: str
    phase: Phase
    persona: str
    history: List[Dict[str, str]] = Field(default_factory=list)
    question_type: QuestionType
    intent: str
    difficulty: Literal["easy", "medium", "hard"] = "medium"
    follow_up_types: List[FollowUpType] = Field(default_factory=list)
    topic: Optional[str] = None
    profile: Optional[CandidateProfile] = None
    adaptations: List[str] = Field(default_factory=list)
    style: RenderStyle = Field(default_factory=RenderStyle)
    constraints: RenderConstraints = Field(default_factory=RenderConstraints)
    revision_notes: List[str] = Field(default_factory=list)


class RenderResult(BaseModel):
    text: str = Field(min_length=1)
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    quality: QualityScores = Field(default_factory=QualityScores)
    source: Literal["renderer", "fallback"] = "renderer"


_STYLE_BY_STATE: Dict[EmotionalState, RenderStyle] = {
    "nervous": RenderStyle(tone="encouraging", formality=0.5, enthusiasm=0.6),
    "frustrated": RenderStyle(tone="encouraging", formality=0.6, enthusiasm=0.5),
    "negative": RenderStyle(tone="encouraging", formality=0.6, enthusiasm=0.5),
    "enthusiastic": RenderStyle(tone="warm", formality=0.5, enthusiasm=0.8),
    "positive": RenderStyle(tone="warm", formality=0.6, enthusiasm=0.7),
    "confident": RenderStyle(tone="direct", formality=0.6, enthusiasm=0.6),
    "neutral": RenderStyle(),
}

FALLBACK_QUESTIONS: Dict[QuestionType, Sequence[str]] = {
    "open_ended": (
        "Could you tell me more about your {topic}?",
        "What stands out to you most about your {topic}?",
    ),
    "technical": (
        "How did you approach the technical side of your {topic}?",
        "Which tools did you rely on for your {topic}, and why?",
    ),
    "behavioral": (
        "Can you describe a time when {topic} played a key role in your work?",
        "What did you learn about {topic} from a recent project?",
    ),
    "situational": (
        "How would you handle a situation where {topic} did not go as planned?",
        "Imagine priorities shift suddenly around {topic}. What would you do first?",
    ),
    "clarification": (
        "Could you expand on that with a specific example related to {topic}?",
        "Could you walk me through that in a bit more detail, focusing on {topic}?",
    ),
    "deep_dive": (
        "Let's go deeper on {topic}. What trade-offs did you weigh?",
        "What was the hardest technical decision you made around {topic}?",
    ),
    "transition": (
        "Let's move on and talk about {topic}.",
        "Next, I'd like to hear about {topic}.",
    ),
    "closing": (
        "Before we wrap up, do you have any questions for us about {topic}?",
        "Is there anything about {topic} you would like to add before we close?",
    ),
}

# Adaptation action that switches the delivery style to encouragement.
ENCOURAGE = "provide_encouragement"

_PURPOSE_BY_TYPE: Dict[QuestionType, Purpose] = {
    "clarification": "clarify",
    "transition": "transition",
    "closing": "wrapup",
}


def build_style(
    signals: Optional[SignalBundle],
    persona: str,
    adaptations: Sequence[str] = (),
) -> RenderStyle:
    base = _STYLE_BY_STATE[signals.emotional_state] if signals else RenderStyle()
    if ENCOURAGE in adaptations:
        base = base.model_copy(
            update={"tone": "encouraging", "enthusiasm": max(base.enthusiasm, 0.7), "formality": min(base.formality, 0.6)}
        )
    if persona == "Firm Evaluator" and base.tone != "encouraging":
        return base.model_copy(update={"tone": "direct", "formality": min(1.0, base.formality + 0.2)})
    return base


def build_constraints(
    remaining_minutes: float,
    *,
    forbidden_terms: Sequence[str] = (),
    cultural_flags: Sequence[str] = ("cultural_sensitivity",),
) -> RenderConstraints:
    time_limited = remaining_minutes < 10
    return RenderConstraints(
        max_length=settings.RENDER_MAX_CHARS_SHORT if time_limited else settings.RENDER_MAX_CHARS,
        forbidden_terms=list(forbidden_terms),
        cultural_flags=list(cultural_flags),
        time_limited=time_limited,
    )


def _history(session: InterviewSession) -> List[Dict[str, str]]:
    return [
        {"role": "assistant" if message.role == "system" else "user", "content": message.text}
        for message in session.messages[-HISTORY_WINDOW:]
    ]


def build_request(
    session: InterviewSession,
    plan: QuestionPlan,
    signals: Optional[SignalBundle],
    constraints: RenderConstraints,
) -> RenderRequest:
    return RenderRequest(
        session_id=session.session_id,
        phase=session.current_phase,
        persona=session.persona,
        history=_history(session),
        question_type=plan.question_type,
        intent=plan.intent,
        difficulty=plan.difficulty,
        follow_up_types=list(plan.follow_up_types),
        topic=plan.target_topic,
        profile=None if session.profile.is_empty() else session.profile,
        adaptations=list(plan.adaptations),
        style=build_style(signals, session.persona, plan.adaptations),
        constraints=constraints,
    )


def _coerce(raw: Any) -> RenderResult:
    if isinstance(raw, RenderResult):
        return raw
    if isinstance(raw, str):
        return RenderResult(text=raw)
    return RenderResult.model_validate(raw)


def render(
    request: RenderRequest,
    *,
    timeout_s: Optional[float] = None,
    renderer: Optional[Callable[..., Any]] = None,
) -> RenderResult:
    """Call the bound renderer, giving up after ``timeout_s`` seconds.

    Raises:
        RendererError: On timeout, renderer exceptions, a missing binding or
            output that does not validate as a :class:`RenderResult`.
    """

    try:
        fn = renderer or get_model(RENDERER_KEY)
    except KeyError as exc:
        raise RendererError("no utterance renderer bound") from exc

    timeout = timeout_s if timeout_s is not None else settings.RENDER_TIMEOUT_S
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(fn, request=request)
    try:
        raw = future.result(timeout=timeout)
    except FuturesTimeout as exc:
        logger.warning("Renderer timed out after %.2fs session=%s", timeout, request.session_id)
        raise RendererError(f"renderer timed out after {timeout}s") from exc
    except Exception as exc:  # noqa: BLE001
        logger.error("Renderer failure session=%s: %s", request.session_id, exc)
        raise RendererError("renderer failed") from exc
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    try:
        return _coerce(raw)
    except ValidationError as exc:
        logger.warning("Renderer output invalid session=%s: %s", request.session_id, exc)
        raise RendererError("renderer output failed validation") from exc


def _topic_phrase(topic: Optional[str]) -> str:
    return (topic or "this area").replace("_", " ")


def fallback_result(
    question_type: QuestionType,
    *,
    topic: Optional[str],
    persona: str,
    turn_index: int = 0,
    encourage: bool = False,
) -> RenderResult:
    """Return a persona-styled template utterance for ``question_type``.

    ``encourage`` prefixes question types without a purpose of their own with
    the persona's encouragement phrasing.
    """

    options = FALLBACK_QUESTIONS[question_type]
    core = options[turn_index % len(options)].format(topic=_topic_phrase(topic))
    purpose: Purpose = _PURPOSE_BY_TYPE.get(question_type, "encourage" if encourage else "ask_question")
    text = apply_persona(core, persona=persona, purpose=purpose)
    return RenderResult(text=text, confidence=0.5, quality=QualityScores(), source="fallback")


__all__ = [
    "ENCOURAGE",
    "FALLBACK_QUESTIONS",
    "QualityScores",
    "RenderConstraints",
    "RenderRequest",
    "RenderResult",
    "RenderStyle",
    "RendererError",
    "build_constraints",
    "build_request",
    "build_style",
    "fallback_result",
    "render",
]
