"""Time-budget analysis, objective reprioritisation and phase allocation."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from agents.types import PHASE_ORDER, Phase, Priority, Recommendation, phase_index
from config.templates import DurationPolicy, EngineTemplates, load_templates
from graph.state import InterviewSession

RiskLevel = Literal["low", "medium", "high", "critical"]
DurationAction = Literal[
    "continue_normal",
    "accelerate_pace",
    "extend_time",
    "prioritize_objectives",
    "wrap_up_early",
]

_RISK_RANK: Dict[RiskLevel, int] = {"low": 0, "medium": 1, "high": 2, "critical": 3}

_ACTION_COPY: Dict[DurationAction, str] = {
    "continue_normal": "Interview pacing is on track.",
    "accelerate_pace": "Current phase is running slow; shorten follow-ups.",
    "extend_time": "Ample time remains; explore topics in more depth.",
    "prioritize_objectives": "Time is short; focus on critical objectives and defer optional ones.",
    "wrap_up_early": "Time is nearly exhausted; move to closing now.",
}

_MITIGATIONS: Dict[str, tuple[str, str]] = {
    "time_utilization_high": ("Focus remaining questions on critical objectives", "high"),
    "phase_running_slow": ("Shorten follow-ups in the current phase", "medium"),
    "projected_overrun": ("Defer optional objectives and summarize open topics", "high"),
    "time_exhausted": ("Move directly to closing remarks", "critical"),
}


class ObjectiveStatus(BaseModel):
    id: str
    priority: Priority = "medium"
    completed: bool = False
    required: bool = True
    estimated_minutes: Optional[float] = Field(default=None, gt=0)


class DurationRequest(BaseModel):
    current_phase: Phase
    elapsed_minutes: float = Field(ge=0)
    remaining_minutes: float = Field(ge=0)
    total_minutes: float = Field(gt=0)
    phase_time_spent: float = Field(default=0.0, ge=0)
    objectives: List[ObjectiveStatus] = Field(default_factory=list)


class DurationAnalysis(BaseModel):
    utilization: float
    phase_efficiency: float
    objective_completion_rate: float
    projected_overrun: float
    risk_level: RiskLevel
    risk_factors: List[str] = Field(default_factory=list)


class PriorityAdjustment(BaseModel):
    objective_id: str
    current_priority: Priority
    adjusted_priority: Priority
    demoted: bool
    deferred: bool = False
    reason: str


class PaceModification(BaseModel):
    type: Literal["increase_speed", "decrease_speed", "maintain_pace"]
    factor: float
    reason: str


class MitigationStrategy(BaseModel):
    risk: str
    strategy: str
    impact: str


class ContingencyPlan(BaseModel):
    trigger: str
    actions: List[str]


class DurationPlan(BaseModel):
    analysis: DurationAnalysis
    action: DurationAction
    allocations: Dict[Phase, float]
    priority_adjustments: List[PriorityAdjustment] = Field(default_factory=list)
    pace_modifications: List[PaceModification] = Field(default_factory=list)
    mitigation_strategies: List[MitigationStrategy] = Field(default_factory=list)
    contingency_plans: List[ContingencyPlan] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)
    confidence: float


def build_duration_request(session: InterviewSession, now: Optional[datetime] = None) -> DurationRequest:
    moment = now or session.last_activity_at
    return DurationRequest(
        current_phase=session.current_phase,
        elapsed_minutes=session.elapsed_minutes(moment),
        remaining_minutes=session.remaining_minutes(moment),
        total_minutes=session.total_minutes,
        phase_time_spent=session.phase_progress.time_spent,
        objectives=[
            ObjectiveStatus(
                id=objective.id,
                priority=objective.priority,
                completed=objective.completed,
                required=objective.required,
                estimated_minutes=objective.estimated_minutes,
            )
            for objective in session.objectives
        ],
    )


def allocate_remaining_time(
    templates: EngineTemplates,
    current_phase: Phase,
    remaining_minutes: float,
    efficiency: float = 1.0,
) -> Dict[Phase, float]:
    """Split ``remaining_minutes`` across the current and later phases.

    Each phase weight is an even share scaled by efficiency and clamped to
    [0.5x, 1.5x] of its template duration; weights are then renormalised so
    the allocations sum to the remaining time exactly.
    """

    phases = PHASE_ORDER[phase_index(current_phase):]
    if remaining_minutes <= 0:
        return {phase: 0.0 for phase in phases}

    even_share = remaining_minutes / len(phases)
    weights: Dict[Phase, float] = {}
    for phase in phases:
        template_minutes = templates.expected_minutes(phase)
        weights[phase] = min(max(even_share * efficiency, 0.5 * template_minutes), 1.5 * template_minutes)

    total_weight = sum(weights.values())
    return {phase: remaining_minutes * weight / total_weight for phase, weight in weights.items()}


def analyze_duration(request: DurationRequest, templates: EngineTemplates) -> DurationAnalysis:
    policy = templates.duration
    utilization = request.elapsed_minutes / request.total_minutes

    expected = templates.expected_minutes(request.current_phase)
    if request.phase_time_spent > 0:
        efficiency = min(expected / request.phase_time_spent, policy.efficiency_cap)
    else:
        efficiency = 1.0

    total_objectives = len(request.objectives)
    completed = sum(1 for objective in request.objectives if objective.completed)
    completion_rate = completed / total_objectives if total_objectives else 1.0

    outstanding = [objective for objective in request.objectives if not objective.completed]
    needed = sum(objective.estimated_minutes or policy.default_objective_minutes for objective in outstanding)
    overrun = needed - request.remaining_minutes

    level: RiskLevel = "low"
    factors: List[str] = []

    def _raise(candidate: RiskLevel, factor: str) -> None:
        nonlocal level
        factors.append(factor)
        if _RISK_RANK[candidate] > _RISK_RANK[level]:
            level = candidate

    if utilization > policy.utilization_high:
        _raise("high", "time_utilization_high")
    if efficiency < policy.efficiency_low:
        _raise("medium", "phase_running_slow")
    if overrun > policy.overrun_high:
        _raise("high", "projected_overrun")
    if utilization >= 1.0 or (outstanding and request.remaining_minutes <= policy.critical_remaining_minutes):
        _raise("critical", "time_exhausted")

    return DurationAnalysis(
        utilization=utilization,
        phase_efficiency=efficiency,
        objective_completion_rate=completion_rate,
        projected_overrun=overrun,
        risk_level=level,
        risk_factors=factors,
    )


def _choose_action(analysis: DurationAnalysis, policy: DurationPolicy) -> DurationAction:
    if analysis.risk_level == "critical":
        return "wrap_up_early"
    if analysis.risk_level == "high":
        return "prioritize_objectives"
    if analysis.risk_level == "medium":
        return "accelerate_pace"
    if analysis.utilization < policy.utilization_extend:
        return "extend_time"
    return "continue_normal"


def _priority_adjustments(request: DurationRequest) -> List[PriorityAdjustment]:
    adjustments: List[PriorityAdjustment] = []
    for objective in request.objectives:
        if objective.completed or objective.priority == "critical":
            continue
        if objective.priority == "low" and not objective.required:
            continue
        if objective.priority == "high":
            adjusted: Priority = "medium"
        else:
            adjusted = "low"
        deferred = objective.priority == "low"
        if deferred:
            reason = "Deferred as optional due to time constraints"
        else:
            reason = f"Demoted from {objective.priority} to {adjusted} due to projected overrun"
        adjustments.append(
            PriorityAdjustment(
                objective_id=objective.id,
                current_priority=objective.priority,
                adjusted_priority=adjusted,
                demoted=True,
                deferred=deferred,
                reason=reason,
            )
        )
    return adjustments


def _pace_modifications(analysis: DurationAnalysis, policy: DurationPolicy) -> List[PaceModification]:
    if analysis.projected_overrun > policy.overrun_high:
        return [
            PaceModification(
                type="increase_speed",
                factor=policy.increase_speed_factor,
                reason=f"Projected overrun of {analysis.projected_overrun:.1f} minutes",
            )
        ]
    if analysis.risk_level == "low" and analysis.utilization < policy.utilization_extend:
        return [
            PaceModification(
                type="decrease_speed",
                factor=policy.decrease_speed_factor,
                reason="Ample time remains for deeper exploration",
            )
        ]
    return [PaceModification(type="maintain_pace", factor=0.0, reason="Pacing within tolerance")]


def _contingencies(analysis: DurationAnalysis) -> List[ContingencyPlan]:
    plans: List[ContingencyPlan] = []
    if _RISK_RANK[analysis.risk_level] >= _RISK_RANK["high"]:
        plans.append(
            ContingencyPlan(
                trigger="remaining_time_below_5_minutes",
                actions=["skip_to_conclusion", "summarize_key_points"],
            )
        )
    if "phase_running_slow" in analysis.risk_factors:
        plans.append(
            ContingencyPlan(
                trigger="phase_exceeds_max_duration",
                actions=["transition_to_next_phase"],
            )
        )
    return plans


def manage_duration(request: DurationRequest, templates: Optional[EngineTemplates] = None) -> DurationPlan:
    """Assess time risk and recommend pacing, priorities and allocations."""

    templates = templates or load_templates()
    policy = templates.duration
    analysis = analyze_duration(request, templates)
    action = _choose_action(analysis, policy)

    adjustments: List[PriorityAdjustment] = []
    if _RISK_RANK[analysis.risk_level] >= _RISK_RANK["high"] or analysis.projected_overrun > policy.overrun_high:
        adjustments = _priority_adjustments(request)

    recommendations: List[Recommendation] = []
    if action != "continue_normal":
        recommendations.append(
            Recommendation(
                type="timing",
                priority=analysis.risk_level,
                description=_ACTION_COPY[action],
                action_required=_RISK_RANK[analysis.risk_level] >= _RISK_RANK["high"],
                suggested_action=action,
            )
        )

    return DurationPlan(
        analysis=analysis,
        action=action,
        allocations=allocate_remaining_time(
            templates,
            request.current_phase,
            request.remaining_minutes,
            min(analysis.phase_efficiency, policy.efficiency_cap),
        ),
        priority_adjustments=adjustments,
        pace_modifications=_pace_modifications(analysis, policy),
        mitigation_strategies=[
            MitigationStrategy(risk=factor, strategy=_MITIGATIONS[factor][0], impact=_MITIGATIONS[factor][1])
            for factor in analysis.risk_factors
        ],
        contingency_plans=_contingencies(analysis),
        recommendations=recommendations,
        confidence=max(0.4, 0.9 - 0.1 * len(analysis.risk_factors)),
    )


__all__ = [
    "ContingencyPlan",
    "DurationAction",
    "DurationAnalysis",
    "DurationPlan",
    "DurationRequest",
    "MitigationStrategy",
    "ObjectiveStatus",
    "PaceModification",
    "PriorityAdjustment",
    "RiskLevel",
    "allocate_remaining_time",
    "analyze_duration",
    "build_duration_request",
    "manage_duration",
]
