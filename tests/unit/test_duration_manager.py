from datetime import timedelta

from agents.duration_manager import (
    DurationRequest,
    ObjectiveStatus,
    allocate_remaining_time,
    analyze_duration,
    build_duration_request,
    manage_duration,
)
from agents.types import PHASE_ORDER
from conftest import T0


def _request(**overrides):
    values = dict(
        current_phase="technical",
        elapsed_minutes=20.0,
        remaining_minutes=40.0,
        total_minutes=60.0,
        phase_time_spent=10.0,
        objectives=[],
    )
    values.update(overrides)
    return DurationRequest(**values)


def test_late_interview_prioritizes_and_defers(templates):
    request = _request(
        elapsed_minutes=56.0,
        remaining_minutes=4.0,
        objectives=[
            ObjectiveStatus(id="core", priority="critical", estimated_minutes=5),
            ObjectiveStatus(id="depth", priority="high", estimated_minutes=5),
            ObjectiveStatus(id="extra", priority="low", estimated_minutes=5),
        ],
    )
    plan = manage_duration(request, templates)

    assert plan.analysis.risk_level == "high"
    assert plan.action == "prioritize_objectives"
    assert abs(plan.analysis.projected_overrun - 11.0) < 1e-9
    by_id = {adjustment.objective_id: adjustment for adjustment in plan.priority_adjustments}
    assert "core" not in by_id
    assert by_id["depth"].adjusted_priority == "medium"
    assert by_id["extra"].adjusted_priority == "low"
    assert by_id["extra"].deferred and by_id["extra"].demoted
    assert plan.pace_modifications[0].type == "increase_speed"
    assert {m.risk for m in plan.mitigation_strategies} == {"time_utilization_high", "projected_overrun"}
    assert plan.recommendations[0].action_required


def test_exhausted_time_wraps_up(templates):
    plan = manage_duration(_request(elapsed_minutes=60.0, remaining_minutes=0.0), templates)
    assert plan.analysis.risk_level == "critical"
    assert plan.action == "wrap_up_early"
    assert all(minutes == 0.0 for minutes in plan.allocations.values())


def test_outstanding_objectives_with_two_minutes_left_is_critical(templates):
    request = _request(
        elapsed_minutes=40.0,
        remaining_minutes=2.0,
        total_minutes=42.0,
        objectives=[ObjectiveStatus(id="x", priority="medium", estimated_minutes=1)],
    )
    assert analyze_duration(request, templates).risk_level == "critical"


def test_slow_phase_accelerates(templates):
    plan = manage_duration(_request(elapsed_minutes=30.0, remaining_minutes=30.0, phase_time_spent=30.0), templates)
    assert plan.analysis.risk_level == "medium"
    assert plan.action == "accelerate_pace"
    assert plan.priority_adjustments == []
    assert any(item.trigger == "phase_exceeds_max_duration" for item in plan.contingency_plans)


def test_early_interview_extends_time(templates):
    plan = manage_duration(_request(elapsed_minutes=10.0, remaining_minutes=50.0, phase_time_spent=5.0), templates)
    assert plan.analysis.risk_level == "low"
    assert plan.action == "extend_time"
    assert plan.pace_modifications[0].type == "decrease_speed"
    assert abs(plan.confidence - 0.9) < 1e-9


def test_allocations_cover_later_phases_and_sum_to_remaining(templates):
    allocations = allocate_remaining_time(templates, "behavioral", 25.0, efficiency=1.4)
    assert list(allocations) == list(PHASE_ORDER[PHASE_ORDER.index("behavioral"):])
    assert abs(sum(allocations.values()) - 25.0) < 1e-9
    assert all(minutes > 0 for minutes in allocations.values())


def test_request_built_from_session(session):
    request = build_duration_request(session, now=T0 + timedelta(minutes=10))
    assert request.current_phase == "introduction"
    assert request.elapsed_minutes == 10.0
    assert request.remaining_minutes == 50.0
    assert {objective.id for objective in request.objectives} == {objective.id for objective in session.objectives}
