from datetime import timedelta

import pytest

from agents.duration_manager import PriorityAdjustment
from agents.flow_manager import build_objective, transition_quality
from agents.question_selector import context_from_session, select_question
from agents.response_analyzer import analyze_response
from agents.types import PHASE_ORDER, Utterance, phase_index
from conftest import T0, candidate, mood, tech


INTRO_ANSWER = (
    "Thanks for having me, I'm excited to be here. I currently work in a platform role and have 6 years "
    "of background in backend systems. I'm looking for an opportunity to grow into a staff position."
)


def _turn(fsm, session, text, *, minutes=1.0, **kwargs):
    utterance = candidate(text, at=T0 + timedelta(minutes=minutes), **kwargs)
    return fsm.process_turn(session, utterance, analyze_response(utterance, session))


def test_start_session_seeds_phase_state(session, templates):
    assert session.current_phase == "introduction"
    assert session.phase_progress.expected_minutes == templates.expected_minutes("introduction")
    intro_ids = {objective.id for objective in session.objectives_for("introduction")}
    assert intro_ids == {
        "introduction.establish_rapport",
        "introduction.gather_basic_info",
        "introduction.set_expectations",
    }
    assert session.active_topic().label == "background"
    assert sorted(session.phase_progress.objectives_remaining) == sorted(intro_ids)


def test_host_objectives_map_to_phases(fsm):
    goals = [
        build_objective(id="py", description="Assess Python depth", category="skill_assessment", priority="critical"),
        build_objective(id="fit", description="Culture", category="cultural_fit", priority="nice_to_have"),
    ]
    session = fsm.start_session(interview_id="i", candidate_id="c", objectives=goals, now=T0)
    assert session.get_objective("py").target_phase == "technical"
    assert session.get_objective("fit").target_phase == "company_fit"
    assert session.get_objective("fit").priority == "low"
    with pytest.raises(ValueError):
        build_objective(id="x", description="x", priority="urgent")


def test_objectives_complete_advances_phase(fsm, session):
    transitions = []
    for minute in (1, 2, 3, 4):
        result = _turn(fsm, session, INTRO_ANSWER, minutes=minute)
        if result.phase_changed:
            transitions.append(result.transition)
            break

    assert len(transitions) == 1
    record = transitions[0]
    assert (record.from_phase, record.to_phase) == ("introduction", "background")
    assert record.trigger == "objectives_complete"
    assert session.current_phase == "background"
    assert session.phase_progress.phase == "background"
    assert session.objectives_for("background")
    assert all(objective.completed for objective in session.objectives_for("introduction"))


def test_completed_objectives_never_revert(fsm, session):
    for minute in (1, 2, 3):
        _turn(fsm, session, INTRO_ANSWER, minutes=minute)
    done = [objective for objective in session.objectives if objective.completed]
    assert done

    fsm.apply_priority_adjustments(
        session,
        [
            PriorityAdjustment(
                objective_id=done[0].id,
                current_priority="medium",
                adjusted_priority="low",
                demoted=True,
                deferred=True,
                reason="test",
            )
        ],
    )
    _turn(fsm, session, "Hmm.", minutes=5)
    assert all(objective.completed for objective in done)
    assert done[0].required is True


def test_phases_only_move_forward(fsm, session):
    with pytest.raises(ValueError):
        fsm.transition_to_phase(session, "introduction", trigger="manual", reason="same")
    fsm.transition_to_phase(session, "technical", trigger="manual", reason="skip ahead", now=T0)
    with pytest.raises(ValueError):
        fsm.transition_to_phase(session, "background", trigger="manual", reason="back")

    seen = [phase_index(session.current_phase)]
    for minute in range(2, 8):
        _turn(fsm, session, INTRO_ANSWER, minutes=minute)
        seen.append(phase_index(session.current_phase))
    assert seen == sorted(seen)


def test_conclusion_is_absorbing(fsm, session):
    fsm.end_session(session, now=T0 + timedelta(minutes=2))
    assert session.current_phase == "conclusion"
    assert session.ended_at is not None

    result = _turn(fsm, session, INTRO_ANSWER, minutes=59.5)
    assert result.phase == "conclusion"
    assert not result.phase_changed
    assert not any(cue.type == "time_pressure" for cue in result.cues)
    with pytest.raises(ValueError):
        fsm.transition_to_phase(session, "conclusion", trigger="manual", reason="again")


def test_time_pressure_forces_transition_and_reallocation(fsm, session):
    result = _turn(fsm, session, "Sure.", minutes=52)

    assert any(cue.type == "time_pressure" for cue in result.cues)
    assert result.phase_changed and result.phase == "background"
    kinds = [decision.decision_type for decision in result.decisions]
    assert kinds[0] == "phase_transition"
    assert "time_allocation" in kinds
    allocation = next(d for d in result.decisions if d.decision_type == "time_allocation")
    assert abs(sum(allocation.context["allocations"].values()) - 8.0) < 1e-6


def test_topic_depth_never_decreases(fsm, session):
    node = session.active_topic()
    node.depth = "deep"
    _turn(fsm, session, "Short one.", minutes=1)
    assert session.active_topic().depth == "deep"


def test_saturated_topic_raises_cue_and_transition_suggestion(fsm, session, templates):
    node = session.active_topic()
    long_answer = "The architecture of the ingestion service was rebuilt around partitioned queues. " * 6
    short_answer = "The architecture held up fine under load testing."
    node.responses.extend(candidate(long_answer) for _ in range(4))
    node.responses.append(candidate(short_answer))

    result = _turn(fsm, session, short_answer, minutes=1)

    assert len(node.responses) == 6
    assert node.depth == "deep"
    assert abs(node.transition_potential - 0.8) < 1e-9
    assert any(cue.type == "topic_saturation" for cue in result.cues)
    assert "topic_saturation" in result.decisions[0].triggers

    signals = analyze_response(result.utterance)
    plan = select_question(
        context_from_session(session, signals, cues=result.cues, phase_changed=result.phase_changed),
        templates,
    )
    assert any(item.trigger == "topic_exhausted" for item in plan.topic_transitions)


def test_confusion_cue_triggers_adaptation(fsm, session):
    result = _turn(fsm, session, "Not sure what you mean?", minutes=1, sentiment=mood(confidence=0.2))
    assert any(cue.type == "confusion" for cue in result.cues)
    adaptation = [d for d in result.decisions if d.decision_type == "adaptation_trigger"]
    assert adaptation and adaptation[0].action == "seek_clarification"


def test_expertise_rule_respects_phase_scope(fsm, session):
    entities = [tech("Go"), tech("Rust"), tech("gRPC"), tech("Envoy")]
    result = _turn(fsm, session, "I mostly build proxies.", minutes=1, entities=entities)
    assert any(cue.type == "expertise_signal" for cue in result.cues)
    assert not any(d.action == "increase_difficulty" for d in result.decisions)

    fsm.transition_to_phase(session, "technical", trigger="manual", reason="test", now=T0 + timedelta(minutes=2))
    result = _turn(fsm, session, "I mostly build proxies.", minutes=3, entities=entities)
    assert any(d.action == "increase_difficulty" for d in result.decisions)


def test_process_turn_rejects_system_utterances(fsm, session):
    utterance = Utterance(role="system", text="Hello", timestamp=T0)
    with pytest.raises(ValueError):
        fsm.process_turn(session, utterance, analyze_response(candidate("Hello")))


def test_utterance_log_is_append_only(fsm, session):
    fsm.record_system_utterance(session, "Tell me about yourself.", question_type="open_ended", now=T0)
    first = session.messages[0]
    result = _turn(fsm, session, INTRO_ANSWER, minutes=1)
    assert session.messages[0] is first
    assert session.messages[-1] == result.utterance
    assert result.utterance.metadata.question_type == "open_ended"
    assert result.utterance.metadata.response_quality is not None


def test_low_engagement_recommendation(fsm, session):
    for minute in (1, 2, 3, 4):
        _turn(fsm, session, "Fine.", minutes=minute, sentiment=mood(enthusiasm=0.05, confidence=0.05))
    types = {rec.suggested_action for rec in fsm.recommendations(session)}
    assert "increase_engagement" in types


def test_transition_quality_bands():
    assert transition_quality(0.9, 0.8) == "smooth"
    assert transition_quality(0.7, 0.6) == "acceptable"
    assert transition_quality(0.5, 0.9) == "abrupt"
    assert transition_quality(0.1, 0.9) == "poor"
    assert PHASE_ORDER[-1] == "conclusion"


def test_on_schedule_first_turn_is_fully_efficient(fsm, session):
    _turn(fsm, session, INTRO_ANSWER, minutes=1)
    assert session.metrics.time_efficiency == 1.0
    assert not any(rec.suggested_action == "accelerate_pace" for rec in fsm.recommendations(session))


def test_phase_overrun_lowers_time_efficiency(fsm, session, templates):
    budget = templates.expected_minutes("introduction")
    _turn(fsm, session, INTRO_ANSWER, minutes=budget * 2)
    assert abs(session.metrics.time_efficiency - 0.5) < 1e-9
