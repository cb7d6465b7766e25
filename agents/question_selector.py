"""Adaptive question planning from signals, phase, cues and objectives.

The selector never phrases text. It decides the next question type, the
follow-up angles worth pursuing, the conditional branching rules for the
candidate's next answer and any topic-transition suggestions. Question types
are chosen by an ordered rule table; the first matching rule wins.
"""
from __future__ import annotations

from typing import Callable, Dict, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from agents.types import ContextualCue, FlowDecision, Phase, QuestionType, SignalBundle, next_phase
from config.templates import EngineTemplates, load_templates
from graph.state import InterviewSession

FollowUpType = Literal[
    "quantitative_detail",
    "challenges_faced",
    "lessons_learned",
    "team_dynamics",
    "technical_decisions",
]
FOLLOW_UP_ROTATION: Tuple[FollowUpType, ...] = (
    "quantitative_detail",
    "challenges_faced",
    "lessons_learned",
    "team_dynamics",
    "technical_decisions",
)
_GAP_FOLLOW_UPS: Dict[str, FollowUpType] = {
    "quantitative_metrics": "quantitative_detail",
    "challenges_overcome": "challenges_faced",
    "team_collaboration_details": "team_dynamics",
    "technical_stack_details": "technical_decisions",
}

QUESTION_INTENT: Dict[QuestionType, str] = {
    "technical": "skill_validation",
    "behavioral": "cultural_assessment",
    "situational": "problem_solving",
    "clarification": "clarification",
    "deep_dive": "skill_validation",
    "open_ended": "information_gathering",
    "transition": "transition_topic",
    "closing": "closing",
}

QUESTION_MINUTES: Dict[QuestionType, float] = {
    "clarification": 2,
    "open_ended": 3,
    "technical": 4,
    "behavioral": 5,
    "situational": 4,
    "deep_dive": 6,
    "transition": 1,
    "closing": 2,
}

_PHASE_DEFAULT_TYPE: Dict[Phase, QuestionType] = {
    "technical": "technical",
    "behavioral": "behavioral",
    "situational": "situational",
    "closing_questions": "closing",
    "conclusion": "closing",
}

_BEHAVIORAL_TERMS = ("team", "leadership", "lead", "conflict", "challenge")

DIFFICULTY_BANDS: Tuple[Literal["easy", "medium", "hard"], ...] = ("easy", "medium", "hard")
# Adaptation actions that move the difficulty band up or down one step.
DIFFICULTY_SHIFTS: Dict[str, int] = {"increase_difficulty": 1, "simplify_questions": -1}

TIME_SHORT_MINUTES = 10.0
TIME_TRANSITION_MINUTES = 15.0
LOW_ENGAGEMENT = 0.4


class SelectionContext(BaseModel):
    """Inputs the selector reads for one turn."""

    signals: SignalBundle
    phase: Phase
    remaining_minutes: float
    engagement: float = 0.5
    cues: List[ContextualCue] = Field(default_factory=list)
    outstanding_objectives: List[str] = Field(default_factory=list)
    active_topic: Optional[str] = None
    turn_index: int = 0
    phase_changed: bool = False
    adaptations: List[str] = Field(default_factory=list)


class BranchingRule(BaseModel):
    condition: str
    action: str
    priority: int
    confidence: float


class TopicTransition(BaseModel):
    from_topic: Optional[str]
    to_topic: str
    trigger: Literal["topic_exhausted", "time_constraint", "low_engagement"]
    transition_phrase: str
    confidence: float


class QuestionPlan(BaseModel):
    question_type: QuestionType
    intent: str
    difficulty: Literal["easy", "medium", "hard"]
    follow_up_types: List[FollowUpType]
    branching_rules: List[BranchingRule]
    topic_transitions: List[TopicTransition] = Field(default_factory=list)
    target_topic: Optional[str] = None
    target_objectives: List[str] = Field(default_factory=list)
    expected_minutes: float
    confidence: float
    reasoning: List[str] = Field(default_factory=list)
    adaptations: List[str] = Field(default_factory=list)


def _mentions_behavioral(signals: SignalBundle) -> bool:
    topics = [topic.lower() for topic in signals.key_topics]
    return any(term in topic for topic in topics for term in _BEHAVIORAL_TERMS)


# Ordered (name, predicate, question type) table; first match wins.
QUESTION_TYPE_RULES: Tuple[Tuple[str, Callable[[SelectionContext], bool], QuestionType], ...] = (
    ("clarification_requested", lambda ctx: "seek_clarification" in ctx.adaptations, "clarification"),
    ("incomplete_answer", lambda ctx: ctx.signals.completeness < 0.5, "clarification"),
    ("high_technical_depth", lambda ctx: ctx.signals.technical_depth > 0.7, "deep_dive"),
    ("behavioral_topics", lambda ctx: _mentions_behavioral(ctx.signals), "behavioral"),
    ("skills_revealed", lambda ctx: bool(ctx.signals.skills_revealed), "technical"),
    ("phase_changed", lambda ctx: ctx.phase_changed, "transition"),
)


def choose_question_type(ctx: SelectionContext) -> Tuple[QuestionType, Optional[str]]:
    """Return the question type and the rule that chose it (``None`` = phase default)."""

    for name, predicate, question_type in QUESTION_TYPE_RULES:
        if predicate(ctx):
            return question_type, name
    return _PHASE_DEFAULT_TYPE.get(ctx.phase, "open_ended"), None


def choose_difficulty(technical_depth: float) -> Literal["easy", "medium", "hard"]:
    if technical_depth > 0.8:
        return "hard"
    if technical_depth > 0.5:
        return "medium"
    return "easy"


def adapt_difficulty(
    difficulty: Literal["easy", "medium", "hard"], adaptations: Sequence[str]
) -> Literal["easy", "medium", "hard"]:
    shift = sum(DIFFICULTY_SHIFTS.get(action, 0) for action in adaptations)
    index = DIFFICULTY_BANDS.index(difficulty) + shift
    return DIFFICULTY_BANDS[min(max(index, 0), len(DIFFICULTY_BANDS) - 1)]


def follow_up_types(signals: SignalBundle, turn_index: int, count: int) -> List[FollowUpType]:
    chosen: List[FollowUpType] = []
    for gap in signals.information_gaps:
        follow_up = _GAP_FOLLOW_UPS.get(gap)
        if follow_up and follow_up not in chosen:
            chosen.append(follow_up)
    start = turn_index % len(FOLLOW_UP_ROTATION)
    rotation = FOLLOW_UP_ROTATION[start:] + FOLLOW_UP_ROTATION[:start]
    for follow_up in rotation:
        if follow_up not in chosen:
            chosen.append(follow_up)
    return chosen[:count]


def branching_rules(ctx: SelectionContext, templates: EngineTemplates) -> List[BranchingRule]:
    rules = [
        BranchingRule(
            condition=rule.condition,
            action=rule.action,
            priority=rule.priority,
            confidence=rule.confidence,
        )
        for rule in templates.branching_rules
        if rule.when == "always" or ctx.remaining_minutes < TIME_SHORT_MINUTES
    ]
    return sorted(rules, key=lambda rule: rule.priority, reverse=True)


def topic_transitions(ctx: SelectionContext, templates: EngineTemplates) -> List[TopicTransition]:
    suggestions: List[TopicTransition] = []
    upcoming = next_phase(ctx.phase)
    upcoming_label = (templates.phase(upcoming).key_topics or (upcoming,))[0]

    if any(cue.type == "topic_saturation" for cue in ctx.cues):
        suggestions.append(
            TopicTransition(
                from_topic=ctx.active_topic,
                to_topic=upcoming_label,
                trigger="topic_exhausted",
                transition_phrase="We've covered this well. Let's move on to something new.",
                confidence=0.8,
            )
        )
    if ctx.engagement < LOW_ENGAGEMENT:
        suggestions.append(
            TopicTransition(
                from_topic=ctx.active_topic,
                to_topic=upcoming_label,
                trigger="low_engagement",
                transition_phrase="Let's shift gears and talk about something different.",
                confidence=0.7,
            )
        )
    if ctx.remaining_minutes < TIME_TRANSITION_MINUTES and ctx.phase != "conclusion":
        suggestions.append(
            TopicTransition(
                from_topic=ctx.active_topic,
                to_topic=(templates.phase("conclusion").key_topics or ("conclusion",))[0],
                trigger="time_constraint",
                transition_phrase="In the interest of time, let's start wrapping up.",
                confidence=0.9,
            )
        )
    return suggestions


def selection_confidence(ctx: SelectionContext, matched_rule: Optional[str]) -> float:
    confidence = 0.7
    if ctx.signals.confidence > 0.8:
        confidence += 0.1
    if ctx.engagement > 0.7:
        confidence += 0.1
    if matched_rule is not None:
        confidence += 0.1
    return min(confidence, 1.0)


def select_question(ctx: SelectionContext, templates: Optional[EngineTemplates] = None) -> QuestionPlan:
    """Plan the next question from the per-turn selection context."""

    templates = templates or load_templates()
    question_type, matched_rule = choose_question_type(ctx)
    reasoning = [
        f"rule {matched_rule} selected {question_type}"
        if matched_rule
        else f"phase default for {ctx.phase} selected {question_type}"
    ]
    count = 2 if ctx.remaining_minutes < TIME_SHORT_MINUTES or "accelerate_pace" in ctx.adaptations else 3
    base_difficulty = choose_difficulty(ctx.signals.technical_depth)
    difficulty = adapt_difficulty(base_difficulty, ctx.adaptations)
    if difficulty != base_difficulty:
        reasoning.append(f"difficulty {base_difficulty} adjusted to {difficulty} by adaptation")

    return QuestionPlan(
        question_type=question_type,
        intent=QUESTION_INTENT[question_type],
        difficulty=difficulty,
        follow_up_types=follow_up_types(ctx.signals, ctx.turn_index, count),
        branching_rules=branching_rules(ctx, templates),
        topic_transitions=topic_transitions(ctx, templates),
        target_topic=ctx.active_topic,
        target_objectives=list(ctx.outstanding_objectives[:3]),
        expected_minutes=QUESTION_MINUTES[question_type],
        confidence=selection_confidence(ctx, matched_rule),
        reasoning=reasoning,
        adaptations=list(ctx.adaptations),
    )


def context_from_session(
    session: InterviewSession,
    signals: SignalBundle,
    *,
    cues: Sequence[ContextualCue] = (),
    decisions: Sequence[FlowDecision] = (),
    phase_changed: bool = False,
) -> SelectionContext:
    """Selection inputs for the current turn.

    Only this turn's ``adaptation_trigger`` decisions are applied; earlier
    decisions stay in the session log.
    """

    active = session.active_topic()
    return SelectionContext(
        signals=signals,
        phase=session.current_phase,
        remaining_minutes=session.remaining_minutes(),
        engagement=session.metrics.candidate_engagement,
        cues=list(cues),
        outstanding_objectives=list(session.phase_progress.objectives_remaining),
        active_topic=active.label if active else None,
        turn_index=len(session.candidate_messages()),
        phase_changed=phase_changed,
        adaptations=[decision.action for decision in decisions if decision.decision_type == "adaptation_trigger"],
    )


__all__ = [
    "FOLLOW_UP_ROTATION",
    "QUESTION_INTENT",
    "DIFFICULTY_SHIFTS",
    "QUESTION_TYPE_RULES",
    "BranchingRule",
    "FollowUpType",
    "QuestionPlan",
    "SelectionContext",
    "TopicTransition",
    "adapt_difficulty",
    "branching_rules",
    "choose_difficulty",
    "choose_question_type",
    "context_from_session",
    "follow_up_types",
    "select_question",
    "selection_confidence",
    "topic_transitions",
]
