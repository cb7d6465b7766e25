"""Pydantic schemas for the interview session API."""
from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from agents.types import ContextualCue, Entity, FlowDecision, Phase, PhaseTransition, Recommendation, Sentiment
from graph.state import CandidateProfile, FlowMetrics, InterviewObjective, PhaseProgress


class ObjectiveIn(BaseModel):
    id: str
    description: str
    category: Literal[
        "skill_assessment",
        "experience_validation",
        "cultural_fit",
        "behavioral_traits",
        "general",
    ] = "general"
    priority: Literal["critical", "important", "high", "medium", "nice_to_have", "low"] = "medium"
    target_phase: Optional[Phase] = None
    required: bool = True
    keywords: List[str] = Field(default_factory=list)
    estimated_minutes: float = Field(default=5.0, gt=0)


class StartReq(BaseModel):
    interview_id: str
    candidate_id: str
    persona_override: Optional[str] = None
    total_minutes: Optional[float] = Field(default=None, gt=0)
    objectives: List[ObjectiveIn] = Field(default_factory=list)
    profile: Optional[CandidateProfile] = None


class TurnReq(BaseModel):
    session_id: str
    user_msg: str = Field(min_length=1)
    entities: List[Entity] = Field(default_factory=list)
    sentiment: Optional[Sentiment] = None
    client_ts: Optional[str] = None


class FinishReq(BaseModel):
    session_id: str


class UIMessage(BaseModel):
    role: Literal["assistant", "system"] = "assistant"
    text: str


class QuestionPayload(BaseModel):
    text: str
    question_type: Optional[str] = None
    intent: Optional[str] = None
    difficulty: Optional[str] = None
    follow_up_types: List[str] = Field(default_factory=list)


class ApiResp(BaseModel):
    session_id: str
    phase: Phase
    ui_messages: List[UIMessage] = Field(default_factory=list)
    question: Optional[QuestionPayload] = None
    source: Optional[str] = None
    confidence: Optional[float] = None
    cues: List[ContextualCue] = Field(default_factory=list)
    decisions: List[FlowDecision] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)
    remaining_minutes: float
    error: Optional[Dict] = None
    event_log: List[Dict] = Field(default_factory=list)


class TopicSummary(BaseModel):
    label: str
    phase: Phase
    depth: str
    responses: int
    transition_potential: float


class SessionSnapshot(BaseModel):
    session_id: str
    interview_id: str
    candidate_id: str
    persona: str
    phase: Phase
    concluded: bool
    ended: bool
    remaining_minutes: float
    phase_progress: PhaseProgress
    metrics: FlowMetrics
    objectives: List[InterviewObjective] = Field(default_factory=list)
    topics: List[TopicSummary] = Field(default_factory=list)
    transitions: List[PhaseTransition] = Field(default_factory=list)
    messages: int
