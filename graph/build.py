"""Per-turn pipeline: analyze, update flow, plan, render, gate, pace."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from agents.duration_manager import DurationPlan, build_duration_request, manage_duration
from agents.flow_manager import FlowStateMachine, FlowTurnResult
from agents.quality_gate import RelevanceResult, ValidationResult, check_topic_relevance, validate_response
from agents.question_selector import QuestionPlan, context_from_session, select_question
from agents.recovery import ErrorContext, ErrorSeverity, ErrorType, RecoveryPlan, handle_error
from agents.renderer import (
    ENCOURAGE,
    RendererError,
    RenderResult,
    build_constraints,
    build_request,
    fallback_result,
    render,
)
from agents.response_analyzer import analyze_response
from agents.types import Recommendation, SignalBundle, Utterance
from config.settings import settings
from observability.logger import log_event
from observability.tracing import span

from .state import InterviewSession

logger = logging.getLogger(__name__)

ResponseSource = Literal["renderer", "regenerated", "fallback", "recovery"]

# Relevance never hard-blocks these; they are expected to move off-topic.
_DRIFT_TOLERANT = {"clarification", "transition", "closing"}
# Validation rules whose critical failure withdraws a draft for manual review.
_CONTENT_RULES = {"content_appropriateness", "cultural_sensitivity"}


class EngineDeps(BaseModel):
    """Collaborators for one engine instance; shared across sessions."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    flow: FlowStateMachine = Field(default_factory=FlowStateMachine)
    renderer: Optional[Callable[..., Any]] = None
    now: Optional[Callable[[], datetime]] = None
    render_timeout_s: Optional[float] = None
    max_regenerations: int = Field(default_factory=lambda: settings.MAX_REGENERATIONS)
    forbidden_terms: List[str] = Field(default_factory=list)


class TurnResult(BaseModel):
    session: InterviewSession
    response: str
    source: ResponseSource
    signals: Optional[SignalBundle] = None
    flow: Optional[FlowTurnResult] = None
    plan: Optional[QuestionPlan] = None
    validation: Optional[ValidationResult] = None
    relevance: Optional[RelevanceResult] = None
    duration: Optional[DurationPlan] = None
    recommendations: List[Recommendation] = Field(default_factory=list)
    regenerations: int = 0
    confidence: float = 0.0
    error: Optional[ErrorContext] = None
    recovery: Optional[RecoveryPlan] = None


class _StageFailure(Exception):
    def __init__(self, stage: str, error_type: ErrorType, severity: ErrorSeverity, cause: Exception):
        super().__init__(f"{stage} failed: {cause}")
        self.stage = stage
        self.error_type = error_type
        self.severity = severity
        self.cause = cause


def _run_stage(session: InterviewSession, name: str, fn: Callable[[], Any], error_type: ErrorType, severity: ErrorSeverity) -> Any:
    with span(session, name) as record:
        log_event("node.start", session.session_id, node=name, phase=record["phase"])
        try:
            result = fn()
        except Exception as exc:  # noqa: BLE001
            log_event("node.error", session.session_id, node=name, error=str(exc), severity=severity)
            raise _StageFailure(name, error_type, severity, exc) from exc
    log_event("node.end", session.session_id, node=name, ms=record["ms"])
    return result


class _DraftOutcome(BaseModel):
    draft: RenderResult
    validation: ValidationResult
    source: ResponseSource
    regenerations: int = 0
    flagged: Optional[ValidationResult] = None


def _flagged_content(validation: ValidationResult) -> bool:
    return any(issue.rule_id in _CONTENT_RULES for issue in validation.critical_issues)


def _render_draft(
    session: InterviewSession,
    plan: QuestionPlan,
    signals: SignalBundle,
    deps: EngineDeps,
    moment: datetime,
) -> _DraftOutcome:
    """Render, validate and regenerate; fall back to a template when exhausted.

    ``flagged`` keeps the last rejected draft's validation when it broke a
    content rule, so the caller can route it to manual review.
    """

    constraints = build_constraints(session.remaining_minutes(moment), forbidden_terms=deps.forbidden_terms)
    request = build_request(session, plan, signals, constraints)
    context_tags = [f"topic:{plan.target_topic}"] if plan.target_topic else []
    renders = 0
    flagged: Optional[ValidationResult] = None

    while renders <= deps.max_regenerations:
        try:
            draft = render(request, timeout_s=deps.render_timeout_s, renderer=deps.renderer)
        except RendererError as exc:
            log_event("render.failed", session.session_id, attempt=renders, error=str(exc))
            break
        renders += 1
        validation = validate_response(
            draft.text, quality=draft.quality, constraints=constraints, context_tags=context_tags
        )
        log_event(
            "render.validated",
            session.session_id,
            attempt=renders - 1,
            valid=validation.is_valid,
            score=round(validation.overall_score, 3),
            decision=validation.recommendation,
        )
        if validation.is_valid:
            return _DraftOutcome(
                draft=draft,
                validation=validation,
                source="renderer" if renders == 1 else "regenerated",
                regenerations=renders - 1,
            )
        if _flagged_content(validation):
            flagged = validation
        notes = [issue.suggestion or issue.description for issue in validation.issues]
        request = request.model_copy(update={"revision_notes": notes})

    fallback = fallback_result(
        plan.question_type,
        topic=plan.target_topic,
        persona=session.persona,
        turn_index=len(session.candidate_messages()),
        encourage=ENCOURAGE in plan.adaptations,
    )
    validation = flagged or validate_response(
        fallback.text, quality=fallback.quality, constraints=constraints, context_tags=context_tags
    )
    return _DraftOutcome(
        draft=fallback,
        validation=validation,
        source="fallback",
        regenerations=max(renders - 1, 0),
        flagged=flagged,
    )


def _flag_for_review(
    session: InterviewSession,
    flagged: ValidationResult,
    deps: EngineDeps,
    moment: datetime,
) -> Tuple[ErrorContext, RecoveryPlan, Recommendation]:
    rules = sorted({issue.rule_id for issue in flagged.critical_issues if issue.rule_id in _CONTENT_RULES})
    context = ErrorContext(
        session_id=session.session_id,
        error_type="inappropriate_response",
        severity="major",
        message="Rendered draft withdrawn: " + ", ".join(rules),
        phase=session.current_phase,
        timestamp=moment,
        last_known_good=session.last_exchange(),
    )
    plan = handle_error(context, persona=session.persona, templates=deps.flow.templates)
    log_event(
        "render.flagged",
        session.session_id,
        action=plan.strategy.type,
        severity=context.severity,
        error=context.message,
    )
    recommendation = Recommendation(
        type="quality",
        priority="high",
        description="A rendered draft broke a content rule and was replaced; review the withdrawn draft.",
        action_required=True,
        suggested_action="review_flagged_response",
    )
    return context, plan, recommendation


def _relevance_recommendation(relevance: RelevanceResult) -> Optional[Recommendation]:
    if relevance.is_relevant:
        return None
    return Recommendation(
        type="quality",
        priority="high" if relevance.deviation in ("major", "complete") else "medium",
        description=relevance.redirect_phrase or "Response drifts from the current topic.",
        action_required=relevance.deviation == "complete",
        suggested_action=relevance.action,
    )


def _overall_confidence(plan: QuestionPlan, draft: RenderResult, validation: ValidationResult) -> float:
    return min(1.0, 0.4 * validation.confidence + 0.3 * plan.confidence + 0.3 * draft.confidence)


def _recover(
    session: InterviewSession,
    failure: _StageFailure,
    deps: EngineDeps,
    moment: datetime,
) -> TurnResult:
    logger.error("Turn failed session=%s stage=%s: %s", session.session_id, failure.stage, failure.cause)
    context = ErrorContext(
        session_id=session.session_id,
        error_type=failure.error_type,
        severity=failure.severity,
        message=str(failure.cause),
        phase=session.current_phase,
        timestamp=moment,
        last_known_good=session.last_exchange(),
    )
    plan = handle_error(context, persona=session.persona, templates=deps.flow.templates)
    text = plan.communication.message
    deps.flow.record_system_utterance(session, text, now=moment)
    log_event(
        "step.end",
        session.session_id,
        decision="recovery",
        action=plan.strategy.type,
        severity=failure.severity,
    )
    return TurnResult(
        session=session,
        response=text,
        source="recovery",
        confidence=plan.restoration.confidence,
        error=context,
        recovery=plan,
    )


def run_turn(session: InterviewSession, utterance: Utterance, deps: Optional[EngineDeps] = None) -> TurnResult:
    """Process one candidate utterance and produce the next interviewer line.

    The candidate only ever receives an approved draft, a template fallback or
    a professionally worded recovery message; raw errors never reach them.
    """

    deps = deps or EngineDeps()
    if session.ended_at is not None:
        raise ValueError(f"Session {session.session_id} has ended")
    if utterance.role != "candidate":
        raise ValueError("run_turn expects a candidate utterance")
    moment = deps.now() if deps.now else utterance.timestamp
    flow = deps.flow

    log_event("step.start", session.session_id, phase=session.current_phase)
    try:
        signals: SignalBundle = _run_stage(
            session, "response_analyzer", lambda: analyze_response(utterance, session), "technical_failure", "moderate"
        )
        flow_result: FlowTurnResult = _run_stage(
            session,
            "flow_manager",
            lambda: flow.process_turn(session, utterance, signals, now=moment),
            "data_corruption",
            "critical",
        )
        plan: QuestionPlan = _run_stage(
            session,
            "question_selector",
            lambda: select_question(
                context_from_session(
                    session,
                    signals,
                    cues=flow_result.cues,
                    decisions=flow_result.decisions,
                    phase_changed=flow_result.phase_changed,
                ),
                flow.templates,
            ),
            "technical_failure",
            "major",
        )
        outcome: _DraftOutcome = _run_stage(
            session,
            "renderer",
            lambda: _render_draft(session, plan, signals, deps, moment),
            "technical_failure",
            "major",
        )
        draft, validation, source = outcome.draft, outcome.validation, outcome.source

        def _check_relevance() -> Tuple[RenderResult, RelevanceResult, ResponseSource]:
            objectives = [
                objective.description
                for objective in session.objectives_for(session.current_phase)
                if not objective.completed
            ]
            relevance = check_topic_relevance(
                draft.text,
                plan.target_topic or session.current_phase,
                objectives,
                entities=utterance.entities,
                templates=flow.templates,
            )
            if relevance.deviation == "complete" and plan.question_type not in _DRIFT_TOLERANT and source != "fallback":
                replacement = fallback_result(
                    plan.question_type,
                    topic=plan.target_topic,
                    persona=session.persona,
                    turn_index=len(session.candidate_messages()),
                    encourage=ENCOURAGE in plan.adaptations,
                )
                return replacement, relevance, "fallback"
            return draft, relevance, source

        draft, relevance, source = _run_stage(session, "topic_relevance", _check_relevance, "conversation_breakdown", "moderate")

        def _pace() -> DurationPlan:
            duration = manage_duration(build_duration_request(session, moment), flow.templates)
            if duration.priority_adjustments:
                changed = flow.apply_priority_adjustments(session, duration.priority_adjustments)
                log_event("duration.adjusted", session.session_id, objectives=changed, action=duration.action)
            return duration

        duration: DurationPlan = _run_stage(session, "duration_manager", _pace, "technical_failure", "minor")
    except _StageFailure as failure:
        return _recover(session, failure, deps, moment)

    recommendations: List[Recommendation] = list(flow_result.recommendations)
    if any(rec.type == "timing" for rec in duration.recommendations):
        # The duration plan owns pacing advice whenever it has any.
        recommendations = [rec for rec in recommendations if rec.type != "timing"]
    recommendations.extend(duration.recommendations)
    error: Optional[ErrorContext] = None
    recovery: Optional[RecoveryPlan] = None
    if outcome.flagged is not None:
        error, recovery, review = _flag_for_review(session, outcome.flagged, deps, moment)
        recommendations.append(review)
    redirect = _relevance_recommendation(relevance)
    if redirect is not None:
        recommendations.append(redirect)
    if validation.recommendation == "flag_for_review":
        recommendations.append(
            Recommendation(
                type="quality",
                priority="medium",
                description="Delivered response scored below the review threshold.",
                suggested_action="flag_for_review",
            )
        )

    flow.record_system_utterance(session, draft.text, question_type=plan.question_type, now=moment)
    confidence = _overall_confidence(plan, draft, validation)
    log_event(
        "step.end",
        session.session_id,
        phase=session.current_phase,
        decision=plan.question_type,
        action=duration.action,
        outcome=source,
        regenerations=outcome.regenerations,
    )
    return TurnResult(
        session=session,
        response=draft.text,
        source=source,
        signals=signals,
        flow=flow_result,
        plan=plan,
        validation=validation,
        relevance=relevance,
        duration=duration,
        recommendations=recommendations,
        regenerations=outcome.regenerations,
        confidence=confidence,
        error=error,
        recovery=recovery,
    )


__all__ = ["EngineDeps", "ResponseSource", "TurnResult", "run_turn"]
