"""Shared type definitions for the dialogue engine stages."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

Phase = Literal[
    "introduction",
    "background",
    "technical",
    "behavioral",
    "situational",
    "company_fit",
    "closing_questions",
    "conclusion",
]

PHASE_ORDER: Tuple[Phase, ...] = (
    "introduction",
    "background",
    "technical",
    "behavioral",
    "situational",
    "company_fit",
    "closing_questions",
    "conclusion",
)

Role = Literal["candidate", "system"]
EntityType = Literal[
    "skill",
    "technology",
    "experience",
    "education",
    "company",
    "certification",
    "achievement",
]
EmotionalState = Literal[
    "enthusiastic",
    "nervous",
    "confident",
    "frustrated",
    "positive",
    "negative",
    "neutral",
]
QuestionType = Literal[
    "open_ended",
    "technical",
    "behavioral",
    "situational",
    "clarification",
    "deep_dive",
    "transition",
    "closing",
]
CueType = Literal[
    "engagement_drop",
    "confusion",
    "expertise_signal",
    "topic_saturation",
    "time_pressure",
]
Priority = Literal["critical", "high", "medium", "low"]
RecommendationType = Literal["flow", "quality", "adaptation", "timing"]


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def phase_index(phase: Phase) -> int:
    return PHASE_ORDER.index(phase)


def next_phase(phase: Phase) -> Phase:
    """Return the phase after ``phase``; ``conclusion`` maps to itself."""

    index = PHASE_ORDER.index(phase)
    return PHASE_ORDER[min(index + 1, len(PHASE_ORDER) - 1)]


class Entity(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: EntityType
    value: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class Emotions(BaseModel):
    """Named emotion intensities; 0.5 reads as neutral."""

    model_config = ConfigDict(frozen=True)

    enthusiasm: float = Field(default=0.5, ge=0.0, le=1.0)
    nervousness: float = Field(default=0.5, ge=0.0, le=1.0)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    frustration: float = Field(default=0.5, ge=0.0, le=1.0)


class Sentiment(BaseModel):
    model_config = ConfigDict(frozen=True)

    polarity: float = Field(default=0.0, ge=-1.0, le=1.0)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    emotions: Emotions = Field(default_factory=Emotions)


class TurnMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    question_type: Optional[QuestionType] = None
    response_quality: Optional[float] = None
    follow_up_needed: bool = False


class Utterance(BaseModel):
    """A single recorded message; never mutated once appended to a session."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("utt"))
    role: Role
    text: str
    timestamp: datetime
    entities: Tuple[Entity, ...] = ()
    sentiment: Optional[Sentiment] = None
    metadata: TurnMetadata = Field(default_factory=TurnMetadata)


class SignalBundle(BaseModel):
    """Structured signals extracted from one candidate utterance."""

    model_config = ConfigDict(frozen=True)

    completeness: float
    technical_depth: float
    emotional_state: EmotionalState
    key_topics: Tuple[str, ...] = ()
    skills_revealed: Tuple[str, ...] = ()
    information_gaps: Tuple[str, ...] = ()
    confidence: float


class ContextualCue(BaseModel):
    type: CueType
    signal: str
    confidence: float
    suggested_action: str
    priority: int = 1
    raised_at: datetime


class DecisionAlternative(BaseModel):
    action: str
    confidence: float
    reasoning: str


class FlowDecision(BaseModel):
    """Audit record for a flow-level decision."""

    id: str = Field(default_factory=lambda: new_id("decision"))
    timestamp: datetime
    decision_type: Literal["phase_transition", "adaptation_trigger", "time_allocation"]
    triggers: List[str] = Field(default_factory=list)
    action: str
    confidence: float
    reasoning: List[str] = Field(default_factory=list)
    alternatives: List[DecisionAlternative] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)


class PhaseTransition(BaseModel):
    id: str = Field(default_factory=lambda: new_id("transition"))
    from_phase: Phase
    to_phase: Phase
    trigger: str
    reason: str
    timestamp: datetime
    quality: Literal["smooth", "acceptable", "abrupt", "poor"]
    completion_at_exit: float


class Recommendation(BaseModel):
    type: RecommendationType
    priority: Priority
    description: str
    action_required: bool = False
    suggested_action: Optional[str] = None


__all__ = [
    "PHASE_ORDER",
    "ContextualCue",
    "CueType",
    "DecisionAlternative",
    "EmotionalState",
    "Emotions",
    "Entity",
    "EntityType",
    "FlowDecision",
    "Phase",
    "PhaseTransition",
    "Priority",
    "QuestionType",
    "Recommendation",
    "RecommendationType",
    "Role",
    "Sentiment",
    "SignalBundle",
    "TurnMetadata",
    "Utterance",
    "new_id",
    "next_phase",
    "phase_index",
]
