"""Session state tracked across interview turns."""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from agents.types import (
    ContextualCue,
    FlowDecision,
    Phase,
    PhaseTransition,
    Priority,
    Utterance,
    new_id,
)

ExplorationDepth = Literal["surface", "moderate", "deep", "exhaustive"]
DEPTH_ORDER: tuple[ExplorationDepth, ...] = ("surface", "moderate", "deep", "exhaustive")

ObjectiveCategory = Literal[
    "skill_assessment",
    "experience_validation",
    "cultural_fit",
    "behavioral_traits",
    "phase_template",
    "general",
]


class TopicInsight(BaseModel):
    type: Literal["skill_gap", "strength", "interest_area", "experience_depth"]
    content: str
    confidence: float
    evidence: List[str] = Field(default_factory=list)
    timestamp: datetime


class TopicNode(BaseModel):
    """A subject explored within one phase. Nodes are only ever appended to."""

    id: str = Field(default_factory=lambda: new_id("topic"))
    label: str
    phase: Phase
    depth: ExplorationDepth = "surface"
    responses: List[Utterance] = Field(default_factory=list)
    insights: List[TopicInsight] = Field(default_factory=list)
    related_topics: List[str] = Field(default_factory=list)
    transition_potential: float = Field(default=0.1, ge=0.0, le=1.0)


class InterviewObjective(BaseModel):
    id: str
    description: str
    category: ObjectiveCategory = "general"
    priority: Priority = "medium"
    required: bool = True
    target_phase: Phase
    keywords: List[str] = Field(default_factory=list)
    estimated_minutes: float = Field(default=5.0, gt=0)
    completed: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    evidence: List[str] = Field(default_factory=list)


class PhaseProgress(BaseModel):
    phase: Phase
    started_at: datetime
    expected_minutes: float
    time_spent: float = 0.0
    completion: float = 0.0
    objectives_completed: List[str] = Field(default_factory=list)
    objectives_remaining: List[str] = Field(default_factory=list)
    quality_score: float = 0.5


class FlowMetrics(BaseModel):
    conversation_quality: float = 0.5
    candidate_engagement: float = 0.5
    objective_progress: float = 0.0
    time_efficiency: float = 1.0
    transition_smoothness: float = 0.5


class ExperienceEntry(BaseModel):
    """One position on the candidate's experience timeline."""

    role: str
    company: str
    start: Optional[date] = None
    end: Optional[date] = None
    is_current: bool = False
    technologies: List[str] = Field(default_factory=list)
    achievements: List[str] = Field(default_factory=list)
    team_size: Optional[int] = Field(default=None, ge=0)


class CandidateProfile(BaseModel):
    """Snapshot of the candidate supplied by the host at session start.

    Read-only after ``start_session``; the renderer receives it as
    personalization context.
    """

    name: Optional[str] = None
    current_role: Optional[str] = None
    years_experience: Optional[float] = None
    skills: List[str] = Field(default_factory=list)
    experience: List[ExperienceEntry] = Field(default_factory=list)
    attributes: Dict[str, Any] = Field(default_factory=dict)

    def timeline(self) -> List[ExperienceEntry]:
        """Experience entries, most recent first; current roles lead."""

        return sorted(
            self.experience,
            key=lambda entry: (entry.is_current, entry.end or date.max, entry.start or date.min),
            reverse=True,
        )

    def is_empty(self) -> bool:
        return not (self.name or self.current_role or self.years_experience or self.skills or self.experience)

    def summary(self, max_entries: int = 3) -> str:
        """One-line description used in renderer prompts."""

        parts: List[str] = []
        if self.name:
            parts.append(f"name {self.name}")
        if self.current_role:
            parts.append(f"currently {self.current_role}")
        if self.years_experience is not None:
            parts.append(f"{self.years_experience:g} years of experience")
        if self.skills:
            parts.append("skills: " + ", ".join(self.skills[:6]))
        for entry in self.timeline()[:max_entries]:
            years = ""
            if entry.start:
                until = "present" if entry.is_current or entry.end is None else str(entry.end.year)
                years = f" ({entry.start.year}-{until})"
            stack = f" using {', '.join(entry.technologies[:4])}" if entry.technologies else ""
            parts.append(f"{entry.role} at {entry.company}{years}{stack}")
        return "; ".join(parts)


class InterviewSession(BaseModel):
    """Durable record of one interview; mutated only by the flow state machine."""

    session_id: str = Field(default_factory=lambda: new_id("session"))
    interview_id: str
    candidate_id: str
    persona: str = "Friendly Expert"

    total_minutes: float = Field(default=60.0, gt=0)
    started_at: datetime
    last_activity_at: datetime
    ended_at: Optional[datetime] = None

    current_phase: Phase = "introduction"
    phase_progress: PhaseProgress

    messages: List[Utterance] = Field(default_factory=list)
    topics: List[TopicNode] = Field(default_factory=list)
    active_topic_id: Optional[str] = None
    objectives: List[InterviewObjective] = Field(default_factory=list)

    decisions: List[FlowDecision] = Field(default_factory=list)
    transitions: List[PhaseTransition] = Field(default_factory=list)
    cues: List[ContextualCue] = Field(default_factory=list)
    metrics: FlowMetrics = Field(default_factory=FlowMetrics)
    profile: CandidateProfile = Field(default_factory=CandidateProfile)

    events: List[Dict[str, Any]] = Field(default_factory=list)

    # ------------------------------------------------------------------
    # Read-only helpers
    # ------------------------------------------------------------------
    def elapsed_minutes(self, now: Optional[datetime] = None) -> float:
        moment = now or self.last_activity_at
        return max(0.0, (moment - self.started_at).total_seconds() / 60.0)

    def remaining_minutes(self, now: Optional[datetime] = None) -> float:
        return max(0.0, self.total_minutes - self.elapsed_minutes(now))

    def active_topic(self) -> Optional[TopicNode]:
        if self.active_topic_id is None:
            return None
        for node in self.topics:
            if node.id == self.active_topic_id:
                return node
        return None

    def candidate_messages(self) -> List[Utterance]:
        return [message for message in self.messages if message.role == "candidate"]

    def objectives_for(self, phase: Phase) -> List[InterviewObjective]:
        return [objective for objective in self.objectives if objective.target_phase == phase]

    def get_objective(self, objective_id: str) -> Optional[InterviewObjective]:
        for objective in self.objectives:
            if objective.id == objective_id:
                return objective
        return None

    def last_exchange(self) -> List[Utterance]:
        """Return the most recent system/candidate pair (last known good)."""

        return list(self.messages[-2:])

    @property
    def concluded(self) -> bool:
        return self.current_phase == "conclusion"


__all__ = [
    "DEPTH_ORDER",
    "CandidateProfile",
    "ExperienceEntry",
    "ExplorationDepth",
    "FlowMetrics",
    "InterviewObjective",
    "InterviewSession",
    "ObjectiveCategory",
    "PhaseProgress",
    "TopicInsight",
    "TopicNode",
]
