"""Recovery planning for failures raised while running an interview turn."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

from agents.persona_manager import apply_persona
from agents.types import Phase, Utterance
from config.templates import EngineTemplates, RecoveryStepTemplate, RecoveryStrategyTemplate, load_templates

ErrorType = Literal[
    "technical_failure",
    "network_issue",
    "system_overload",
    "conversation_breakdown",
    "inappropriate_response",
    "data_corruption",
]
ErrorSeverity = Literal["minor", "moderate", "major", "critical"]
RestorationType = Literal["full_restore", "partial_restore", "context_rebuild", "fresh_start"]
CommunicationTone = Literal["apologetic", "professional", "reassuring", "transparent"]
TransparencyLevel = Literal["full", "partial", "minimal", "none"]

UNRECOVERABLE_MESSAGE = "I apologize, but I encountered an issue. Could we continue with your response?"


class ErrorContext(BaseModel):
    """What the caller gets to log or escalate when a turn cannot complete."""

    session_id: str
    error_type: ErrorType
    severity: ErrorSeverity
    message: str
    phase: Phase
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_known_good: List[Utterance] = Field(default_factory=list)


class RecoveryAction(BaseModel):
    action: str
    description: str
    impact: Literal["minimal", "low", "medium", "high"]
    difficulty: Literal["easy", "medium", "hard", "expert"]
    time_required_s: int


class ContextRestoration(BaseModel):
    method: RestorationType
    last_exchange: List[Utterance] = Field(default_factory=list)
    phase: Phase
    verification_steps: List[str]
    confidence: float


class UserCommunication(BaseModel):
    message: str
    tone: CommunicationTone
    explanation: str
    next_steps: List[str]
    transparency: TransparencyLevel


class PreventionMeasure(BaseModel):
    measure: str
    implementation: str
    monitoring: str
    effectiveness: float


class RecoveryPlan(BaseModel):
    strategy: RecoveryStrategyTemplate
    alternative_actions: List[RecoveryAction]
    restoration: ContextRestoration
    communication: UserCommunication
    prevention: List[PreventionMeasure] = Field(default_factory=list)
    escalate: bool = False


_ALTERNATIVES: Tuple[RecoveryAction, ...] = (
    RecoveryAction(
        action="retry_last_operation",
        description="Attempt to retry the failed operation",
        impact="low",
        difficulty="easy",
        time_required_s=5,
    ),
    RecoveryAction(
        action="skip_to_next_section",
        description="Skip the current section and continue with the next part",
        impact="medium",
        difficulty="medium",
        time_required_s=2,
    ),
    RecoveryAction(
        action="escalate_to_human",
        description="Transfer control to a human interviewer",
        impact="high",
        difficulty="hard",
        time_required_s=60,
    ),
)

_TYPE_ALTERNATIVES: Dict[ErrorType, Tuple[RecoveryAction, ...]] = {
    "inappropriate_response": (
        RecoveryAction(
            action="deliver_template_question",
            description="Replace the withdrawn draft with a vetted template question",
            impact="minimal",
            difficulty="easy",
            time_required_s=1,
        ),
    ),
    "conversation_breakdown": (
        RecoveryAction(
            action="rephrase_last_question",
            description="Restate the last question in simpler terms",
            impact="minimal",
            difficulty="easy",
            time_required_s=3,
        ),
    ),
}

_IMPACT_RANK = {"minimal": 0, "low": 1, "medium": 2, "high": 3}
_DIFFICULTY_RANK = {"easy": 0, "medium": 1, "hard": 2, "expert": 3}

_RESTORATION: Dict[ErrorSeverity, Tuple[RestorationType, float]] = {
    "minor": ("full_restore", 0.8),
    "moderate": ("partial_restore", 0.7),
    "major": ("context_rebuild", 0.5),
    "critical": ("fresh_start", 0.3),
}

_TONE: Dict[ErrorSeverity, CommunicationTone] = {
    "minor": "reassuring",
    "moderate": "professional",
    "major": "transparent",
    "critical": "apologetic",
}

_TRANSPARENCY: Dict[ErrorType, TransparencyLevel] = {
    "technical_failure": "minimal",
    "network_issue": "minimal",
    "system_overload": "minimal",
    "conversation_breakdown": "partial",
    "inappropriate_response": "full",
}

_COPY: Dict[ErrorType, Tuple[str, str, Tuple[str, ...]]] = {
    "technical_failure": (
        "I had a brief technical hiccup. Let's carry on from where we were.",
        "There was a temporary system issue that has been addressed.",
        ("Continue with the interview",),
    ),
    "network_issue": (
        "It looks like we lost the connection for a moment. Let's pick up where we left off.",
        "A network interruption delayed the last response.",
        ("Continue with the interview",),
    ),
    "conversation_breakdown": (
        "Let me clarify that last point to make sure we're on the same page.",
        "There may have been some confusion in our conversation.",
        ("Provide clarification", "Resume conversation"),
    ),
    "inappropriate_response": (
        "Let me rephrase my last question.",
        "The previous response did not meet our quality standards and was withdrawn.",
        ("Review the alternative response", "Resume conversation"),
    ),
}
_DEFAULT_COPY = (
    "I encountered an issue, but we can continue.",
    "A minor issue occurred that has been resolved.",
    ("Continue as normal",),
)

_PREVENTION: Dict[ErrorType, PreventionMeasure] = {
    "technical_failure": PreventionMeasure(
        measure="Redundant response generation",
        implementation="Keep template fallbacks available for every question type",
        monitoring="Track renderer failure and timeout rates",
        effectiveness=0.8,
    ),
    "network_issue": PreventionMeasure(
        measure="Shorter renderer timeouts",
        implementation="Fail over to templates before the candidate notices a delay",
        monitoring="Track renderer latency per session",
        effectiveness=0.6,
    ),
    "conversation_breakdown": PreventionMeasure(
        measure="Enhanced context tracking",
        implementation="Improve conversation state management",
        monitoring="Track conversation coherence metrics",
        effectiveness=0.7,
    ),
    "inappropriate_response": PreventionMeasure(
        measure="Stricter draft screening",
        implementation="Extend the forbidden and insensitive term lists",
        monitoring="Review flagged drafts regularly",
        effectiveness=0.75,
    ),
}

_DEFAULT_STRATEGY = RecoveryStrategyTemplate(
    type="guided",
    description="Standard guided recovery",
    steps=(
        RecoveryStepTemplate(action="acknowledge_error", description="Acknowledge the error", timeout_ms=1000),
        RecoveryStepTemplate(action="attempt_recovery", description="Attempt recovery", timeout_ms=5000),
    ),
    fallback_options=("manual_intervention",),
)


def rank_alternatives(actions: Iterable[RecoveryAction]) -> List[RecoveryAction]:
    """Least disruptive first: impact, then difficulty, then time required."""

    return sorted(
        actions,
        key=lambda item: (_IMPACT_RANK[item.impact], _DIFFICULTY_RANK[item.difficulty], item.time_required_s),
    )


def select_strategy(
    strategies: Tuple[RecoveryStrategyTemplate, ...], severity: ErrorSeverity
) -> RecoveryStrategyTemplate:
    """CRITICAL prefers MANUAL; everything else prefers AUTOMATIC."""

    if not strategies:
        return _DEFAULT_STRATEGY
    preferred = "manual" if severity == "critical" else "automatic"
    for strategy in strategies:
        if strategy.type == preferred:
            return strategy
    return strategies[0]


def plan_restoration(context: ErrorContext) -> ContextRestoration:
    method, confidence = _RESTORATION[context.severity]
    if context.last_known_good:
        confidence += 0.1
    return ContextRestoration(
        method=method,
        last_exchange=list(context.last_known_good),
        phase=context.phase,
        verification_steps=[
            "Verify conversation history integrity",
            "Confirm candidate context",
            "Validate interview state",
        ],
        confidence=max(0.1, min(confidence, 0.9)),
    )


def craft_communication(context: ErrorContext, persona: str) -> UserCommunication:
    if context.severity == "critical":
        core, explanation, next_steps = UNRECOVERABLE_MESSAGE, _DEFAULT_COPY[1], _DEFAULT_COPY[2]
    else:
        core, explanation, next_steps = _COPY.get(context.error_type, _DEFAULT_COPY)
    return UserCommunication(
        message=apply_persona(core, persona=persona, purpose="recover"),
        tone=_TONE[context.severity],
        explanation=explanation,
        next_steps=list(next_steps),
        transparency=_TRANSPARENCY.get(context.error_type, "partial"),
    )


def handle_error(
    context: ErrorContext,
    *,
    persona: str = "Friendly Expert",
    templates: Optional[EngineTemplates] = None,
) -> RecoveryPlan:
    """Build the recovery plan for ``context``.

    Only CRITICAL severity sets ``escalate``; every other failure is resolved
    without a human operator.
    """

    templates = templates or load_templates()
    strategies = templates.recovery_strategies.get(context.error_type) or templates.recovery_strategies["default"]
    prevention = _PREVENTION.get(context.error_type)
    return RecoveryPlan(
        strategy=select_strategy(strategies, context.severity),
        alternative_actions=rank_alternatives(_ALTERNATIVES + _TYPE_ALTERNATIVES.get(context.error_type, ())),
        restoration=plan_restoration(context),
        communication=craft_communication(context, persona),
        prevention=[prevention] if prevention else [],
        escalate=context.severity == "critical",
    )


__all__ = [
    "UNRECOVERABLE_MESSAGE",
    "ContextRestoration",
    "ErrorContext",
    "ErrorSeverity",
    "ErrorType",
    "PreventionMeasure",
    "RecoveryAction",
    "RecoveryPlan",
    "UserCommunication",
    "craft_communication",
    "handle_error",
    "plan_restoration",
    "rank_alternatives",
    "select_strategy",
]
