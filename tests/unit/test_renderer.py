import threading
from datetime import date

import pytest

from agents.question_selector import QuestionPlan
from agents.renderer import (
    ENCOURAGE,
    RenderConstraints,
    RendererError,
    RenderResult,
    build_constraints,
    build_request,
    build_style,
    fallback_result,
    render,
)
from agents.response_analyzer import analyze_response
from conftest import T0, candidate, mood
from graph.state import CandidateProfile, ExperienceEntry


def _plan(**overrides):
    values = dict(
        question_type="technical",
        intent="assess_technical",
        difficulty="medium",
        follow_up_types=["technical_decisions"],
        branching_rules=[],
        target_topic="system_design",
        expected_minutes=3.0,
        confidence=0.8,
    )
    values.update(overrides)
    return QuestionPlan(**values)


def _request(session):
    return build_request(session, _plan(), None, RenderConstraints())


def test_request_carries_session_context(session, fsm):
    fsm.record_system_utterance(session, "Tell me about yourself.")
    request = _request(session)
    assert request.session_id == session.session_id
    assert request.phase == "introduction"
    assert request.topic == "system_design"
    assert request.history == [{"role": "assistant", "content": "Tell me about yourself."}]


def test_bound_renderer_output_is_coerced(session, fake_renderer):
    result = render(_request(session))
    assert result.source == "renderer"
    assert "system design" in result.text
    assert result.quality.clarity == 0.9
    assert fake_renderer.calls[0].question_type == "technical"

    assert render(_request(session), renderer=lambda **_: "Plain text question?").text == "Plain text question?"


def test_missing_binding_raises(session):
    with pytest.raises(RendererError):
        render(_request(session))


def test_slow_renderer_times_out(session):
    release = threading.Event()

    def _slow(**_):
        release.wait(2.0)
        return {"text": "too late"}

    try:
        with pytest.raises(RendererError, match="timed out"):
            render(_request(session), timeout_s=0.1, renderer=_slow)
    finally:
        release.set()


def test_renderer_exception_and_bad_output(session):
    def _broken(**_):
        raise ConnectionError("down")

    with pytest.raises(RendererError, match="failed"):
        render(_request(session), renderer=_broken)
    with pytest.raises(RendererError, match="validation"):
        render(_request(session), renderer=lambda **_: {"text": ""})


def test_fallback_is_persona_styled_and_rotates():
    first = fallback_result("clarification", topic="team_leadership", persona="Friendly Expert", turn_index=0)
    second = fallback_result("clarification", topic="team_leadership", persona="Friendly Expert", turn_index=1)
    assert isinstance(first, RenderResult)
    assert first.source == "fallback"
    assert first.text.startswith("Thanks for that.")
    assert "team leadership" in first.text
    assert first.text != second.text
    assert fallback_result("open_ended", topic=None, persona="Firm Evaluator").text.endswith("this area?")


def test_style_and_constraints():
    nervous = analyze_response(candidate("Um, sorry.", sentiment=mood(nervousness=0.9)))
    assert build_style(nervous, "Firm Evaluator").tone == "encouraging"
    assert build_style(None, "Firm Evaluator").tone == "direct"

    short = build_constraints(5.0, forbidden_terms=["Initech"])
    assert short.time_limited and short.max_length == 160
    assert short.forbidden_terms == ["Initech"]
    assert build_constraints(30.0).max_length == 300


def test_encouragement_adaptation_sets_style_and_fallback():
    style = build_style(None, "Firm Evaluator", [ENCOURAGE])
    assert style.tone == "encouraging"
    assert style.enthusiasm >= 0.7
    assert style.formality <= 0.6
    assert build_style(None, "Firm Evaluator", ["increase_difficulty"]).tone == "direct"

    encouraged = fallback_result("open_ended", topic="projects", persona="Friendly Expert", encourage=True)
    assert encouraged.text.startswith("That’s a great start.")
    plain = fallback_result("open_ended", topic="projects", persona="Friendly Expert")
    assert not plain.text.startswith("That’s a great start.")


def test_request_carries_profile_and_adaptations(fsm):
    profile = CandidateProfile(
        name="Dana",
        skills=["python"],
        experience=[ExperienceEntry(role="Analyst", company="Initrode", start=date(2016, 1, 1), end=date(2019, 1, 1))],
    )
    session = fsm.start_session(interview_id="i9", candidate_id="c9", profile=profile, now=T0)
    request = build_request(session, _plan(adaptations=[ENCOURAGE]), None, RenderConstraints())
    assert request.profile == profile
    assert request.adaptations == [ENCOURAGE]
    assert request.style.tone == "encouraging"


def test_empty_profile_is_omitted(session):
    assert _request(session).profile is None


def test_profile_summary_lists_recent_roles_first():
    profile = CandidateProfile(
        current_role="Staff Engineer",
        years_experience=9,
        experience=[
            ExperienceEntry(role="Intern", company="Initech", start=date(2014, 6, 1), end=date(2014, 9, 1)),
            ExperienceEntry(
                role="Staff Engineer", company="Globex", start=date(2021, 1, 1), is_current=True, technologies=["Go"]
            ),
            ExperienceEntry(role="Engineer", company="Initrode", start=date(2015, 1, 1), end=date(2020, 12, 1)),
        ],
    )
    assert [entry.company for entry in profile.timeline()] == ["Globex", "Initrode", "Initech"]
    assert profile.summary(max_entries=2) == (
        "currently Staff Engineer; 9 years of experience; "
        "Staff Engineer at Globex (2021-present) using Go; Engineer at Initrode (2015-2020)"
    )
    assert CandidateProfile().is_empty()
