"""Interview flow state machine: phases, topics, objectives and cues."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

from agents.duration_manager import PriorityAdjustment, allocate_remaining_time
from agents.response_analyzer import technical_vocabulary_hits
from agents.types import (
    PHASE_ORDER,
    ContextualCue,
    DecisionAlternative,
    FlowDecision,
    Phase,
    PhaseTransition,
    Priority,
    QuestionType,
    Recommendation,
    SignalBundle,
    TurnMetadata,
    Utterance,
    next_phase,
    phase_index,
)
from config.settings import settings
from config.templates import EngineTemplates, load_templates
from graph.state import (
    DEPTH_ORDER,
    CandidateProfile,
    ExplorationDepth,
    InterviewObjective,
    InterviewSession,
    ObjectiveCategory,
    PhaseProgress,
    TopicInsight,
    TopicNode,
)

CATEGORY_PHASE: Dict[str, Phase] = {
    "skill_assessment": "technical",
    "experience_validation": "background",
    "cultural_fit": "company_fit",
    "behavioral_traits": "behavioral",
}

PRIORITY_ALIASES: Dict[str, Priority] = {
    "critical": "critical",
    "important": "high",
    "high": "high",
    "medium": "medium",
    "nice_to_have": "low",
    "low": "low",
}

_TRANSITION_QUALITY_SCORE = {"smooth": 1.0, "acceptable": 0.75, "abrupt": 0.5, "poor": 0.25}
_TECHNICAL_ENTITY_TYPES = {"skill", "technology"}


class FlowConfig(BaseModel):
    time_pressure_ratio: float = 0.15
    phase_objective_ratio: float = 0.7
    completion_confidence: float = 0.75
    blend_alpha: float = 0.3
    saturation_potential: float = 0.7
    saturation_responses: int = 5

    @classmethod
    def from_settings(cls) -> "FlowConfig":
        return cls(
            time_pressure_ratio=settings.TIME_PRESSURE_RATIO,
            phase_objective_ratio=settings.PHASE_OBJECTIVE_RATIO,
            completion_confidence=settings.OBJECTIVE_COMPLETION_CONFIDENCE,
            blend_alpha=settings.METRIC_BLEND_ALPHA,
        )


class FlowTurnResult(BaseModel):
    """Everything the state machine produced for one candidate turn."""

    utterance: Utterance
    phase: Phase
    phase_changed: bool = False
    transition: Optional[PhaseTransition] = None
    cues: List[ContextualCue] = Field(default_factory=list)
    decisions: List[FlowDecision] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)


def build_objective(
    *,
    id: str,
    description: str,
    category: ObjectiveCategory = "general",
    priority: str = "medium",
    target_phase: Optional[Phase] = None,
    required: bool = True,
    keywords: Optional[Iterable[str]] = None,
    estimated_minutes: float = 5.0,
) -> InterviewObjective:
    """Normalise a host-supplied goal into an :class:`InterviewObjective`."""

    if priority not in PRIORITY_ALIASES:
        raise ValueError(f"Unknown objective priority: {priority}")
    phase = target_phase or CATEGORY_PHASE.get(category, "background")
    return InterviewObjective(
        id=id,
        description=description,
        category=category,
        priority=PRIORITY_ALIASES[priority],
        target_phase=phase,
        required=required,
        keywords=list(keywords or []),
        estimated_minutes=estimated_minutes,
    )


def transition_quality(completion: float, conversation_quality: float) -> str:
    if completion > 0.8 and conversation_quality > 0.7:
        return "smooth"
    if completion > 0.6 and conversation_quality > 0.5:
        return "acceptable"
    if completion > 0.4:
        return "abrupt"
    return "poor"


def response_quality(signals: SignalBundle, utterance: Utterance) -> float:
    emotion_confidence = utterance.sentiment.emotions.confidence if utterance.sentiment else 0.5
    return min(1.0, 0.6 * signals.completeness + 0.4 * emotion_confidence)


def engagement_score(utterance: Utterance) -> float:
    if utterance.sentiment is None:
        return 0.5
    emotions = utterance.sentiment.emotions
    return (emotions.enthusiasm + emotions.confidence) / 2


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _blend(previous: float, sample: float, alpha: float) -> float:
    return (1 - alpha) * previous + alpha * sample


class FlowStateMachine:
    """Owns every mutation of an :class:`InterviewSession`.

    One instance may serve many sessions; it holds only the read-only rule
    tables and configuration.
    """

    def __init__(self, templates: Optional[EngineTemplates] = None, config: Optional[FlowConfig] = None):
        self.templates = templates or load_templates()
        self.config = config or FlowConfig.from_settings()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    def start_session(
        self,
        *,
        interview_id: str,
        candidate_id: str,
        persona: Optional[str] = None,
        total_minutes: Optional[float] = None,
        objectives: Optional[Sequence[InterviewObjective]] = None,
        profile: Optional[CandidateProfile] = None,
        now: Optional[datetime] = None,
    ) -> InterviewSession:
        moment = now or _now()
        first: Phase = "introduction"
        session = InterviewSession(
            interview_id=interview_id,
            candidate_id=candidate_id,
            persona=persona or settings.PERSONA_DEFAULT,
            total_minutes=total_minutes or settings.TOTAL_INTERVIEW_MINUTES,
            started_at=moment,
            last_activity_at=moment,
            current_phase=first,
            phase_progress=PhaseProgress(
                phase=first,
                started_at=moment,
                expected_minutes=self.templates.expected_minutes(first),
            ),
            objectives=[objective.model_copy(deep=True) for objective in objectives or []],
            profile=profile or CandidateProfile(),
        )
        self._seed_phase_objectives(session, first)
        self._open_phase_topic(session, first)
        self._refresh_objective_lists(session)
        return session

    def end_session(self, session: InterviewSession, *, now: Optional[datetime] = None) -> InterviewSession:
        moment = now or _now()
        if not session.concluded:
            self.transition_to_phase(
                session,
                "conclusion",
                trigger="session_end",
                reason="Session closed by host",
                now=moment,
            )
        session.ended_at = moment
        return session

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------
    def record_system_utterance(
        self,
        session: InterviewSession,
        text: str,
        *,
        question_type: Optional[QuestionType] = None,
        now: Optional[datetime] = None,
    ) -> Utterance:
        moment = now or session.last_activity_at
        utterance = Utterance(
            role="system",
            text=text,
            timestamp=moment,
            metadata=TurnMetadata(question_type=question_type),
        )
        session.messages.append(utterance)
        return utterance

    def _last_question_type(self, session: InterviewSession) -> Optional[QuestionType]:
        for message in reversed(session.messages):
            if message.role == "system":
                return message.metadata.question_type
        return None

    # ------------------------------------------------------------------
    # Per-turn processing
    # ------------------------------------------------------------------
    def process_turn(
        self,
        session: InterviewSession,
        utterance: Utterance,
        signals: SignalBundle,
        *,
        now: Optional[datetime] = None,
    ) -> FlowTurnResult:
        if utterance.role != "candidate":
            raise ValueError("process_turn expects a candidate utterance")

        moment = now or utterance.timestamp
        quality = response_quality(signals, utterance)
        recorded = utterance.model_copy(
            update={
                "metadata": TurnMetadata(
                    question_type=self._last_question_type(session),
                    response_quality=quality,
                    follow_up_needed=signals.completeness < 0.5,
                )
            }
        )
        session.messages.append(recorded)
        session.last_activity_at = max(session.last_activity_at, moment)
        session.phase_progress.time_spent = max(
            0.0, (moment - session.phase_progress.started_at).total_seconds() / 60.0
        )

        self._update_topic(session, recorded, signals, moment)
        self._accrue_objective_evidence(session, recorded, signals)
        self._update_phase_progress(session, quality)
        self._update_metrics(session, recorded, quality, moment)

        cues = self.derive_cues(session, recorded, signals, now=moment)
        session.cues.extend(cues)

        decisions: List[FlowDecision] = []
        transition: Optional[PhaseTransition] = None
        if not session.concluded:
            decision = self._evaluate_transition(session, cues, moment)
            if decision is not None:
                decisions.append(decision)
                session.decisions.append(decision)
                transition = self.transition_to_phase(
                    session,
                    decision.context["to_phase"],
                    trigger=decision.triggers[0],
                    reason="; ".join(decision.reasoning),
                    now=moment,
                )

        for evaluate in (self._evaluate_adaptation, self._evaluate_time_allocation):
            decision = evaluate(session, cues, moment)
            if decision is not None:
                decisions.append(decision)
                session.decisions.append(decision)

        return FlowTurnResult(
            utterance=recorded,
            phase=session.current_phase,
            phase_changed=transition is not None,
            transition=transition,
            cues=cues,
            decisions=decisions,
            recommendations=self.recommendations(session),
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------
    def transition_to_phase(
        self,
        session: InterviewSession,
        target: Phase,
        *,
        trigger: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> PhaseTransition:
        """Advance to ``target``; phases never move backwards."""

        if phase_index(target) <= phase_index(session.current_phase):
            raise ValueError(f"Cannot transition from {session.current_phase} to {target}")

        moment = now or session.last_activity_at
        progress = session.phase_progress
        record = PhaseTransition(
            from_phase=session.current_phase,
            to_phase=target,
            trigger=trigger,
            reason=reason,
            timestamp=moment,
            quality=transition_quality(progress.completion, session.metrics.conversation_quality),
            completion_at_exit=progress.completion,
        )
        session.transitions.append(record)
        session.current_phase = target
        session.phase_progress = PhaseProgress(
            phase=target,
            started_at=moment,
            expected_minutes=self.templates.expected_minutes(target),
        )
        self._seed_phase_objectives(session, target)
        self._open_phase_topic(session, target)
        self._refresh_objective_lists(session)
        session.metrics.transition_smoothness = sum(
            _TRANSITION_QUALITY_SCORE[item.quality] for item in session.transitions
        ) / len(session.transitions)
        return record

    def _seed_phase_objectives(self, session: InterviewSession, phase: Phase) -> None:
        template = self.templates.phase(phase)
        if not template.objectives:
            return
        per_objective = template.expected_minutes / len(template.objectives)
        known = {objective.id for objective in session.objectives}
        for item in template.objectives:
            objective_id = f"{phase}.{item.id}"
            if objective_id in known:
                continue
            session.objectives.append(
                InterviewObjective(
                    id=objective_id,
                    description=item.description,
                    category="phase_template",
                    priority="medium",
                    target_phase=phase,
                    keywords=list(item.keywords),
                    estimated_minutes=per_objective,
                )
            )

    def _open_phase_topic(self, session: InterviewSession, phase: Phase) -> TopicNode:
        key_topics = self.templates.phase(phase).key_topics
        return self.open_topic(session, key_topics[0] if key_topics else phase)

    def _phase_objective_ratio(self, session: InterviewSession) -> float:
        required = [objective for objective in session.objectives_for(session.current_phase) if objective.required]
        if not required:
            return 0.0
        return sum(1 for objective in required if objective.completed) / len(required)

    def _evaluate_transition(
        self, session: InterviewSession, cues: Sequence[ContextualCue], now: datetime
    ) -> Optional[FlowDecision]:
        triggers: List[str] = []
        reasoning: List[str] = []
        ratio = self._phase_objective_ratio(session)
        if ratio >= self.config.phase_objective_ratio:
            triggers.append("objectives_complete")
            reasoning.append(f"{ratio:.0%} of {session.current_phase} objectives complete")
        for cue in cues:
            if cue.type in ("time_pressure", "topic_saturation"):
                triggers.append(cue.type)
                reasoning.append(f"{cue.type} cue: {cue.signal}")
        if not triggers:
            return None

        target = next_phase(session.current_phase)
        return FlowDecision(
            timestamp=now,
            decision_type="phase_transition",
            triggers=triggers,
            action=f"transition_to_{target}",
            confidence=0.8,
            reasoning=reasoning,
            alternatives=[
                DecisionAlternative(
                    action="continue_current_phase",
                    confidence=0.2,
                    reasoning="Gather more evidence before moving on",
                )
            ],
            context={"from_phase": session.current_phase, "to_phase": target},
        )

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------
    def open_topic(self, session: InterviewSession, label: str) -> TopicNode:
        """Make ``label`` the active topic, creating a node if needed."""

        existing = self._find_topic(session, label)
        if existing is not None:
            session.active_topic_id = existing.id
            return existing
        node = TopicNode(label=label, phase=session.current_phase)
        session.topics.append(node)
        session.active_topic_id = node.id
        return node

    def _find_topic(self, session: InterviewSession, label: str) -> Optional[TopicNode]:
        wanted = label.strip().lower()
        for node in session.topics:
            if node.phase == session.current_phase and node.label.lower() == wanted:
                return node
        return None

    def _resolve_topic(self, session: InterviewSession, signals: SignalBundle) -> TopicNode:
        for topic in signals.key_topics:
            node = self._find_topic(session, topic)
            if node is not None:
                session.active_topic_id = node.id
                return node
        active = session.active_topic()
        if active is not None and active.phase == session.current_phase:
            return active
        if signals.key_topics:
            return self.open_topic(session, signals.key_topics[0])
        return self._open_phase_topic(session, session.current_phase)

    def _update_topic(
        self, session: InterviewSession, utterance: Utterance, signals: SignalBundle, now: datetime
    ) -> TopicNode:
        node = self._resolve_topic(session, signals)
        node.responses.append(utterance)
        for topic in signals.key_topics:
            if topic.lower() != node.label.lower() and topic not in node.related_topics:
                node.related_topics.append(topic)

        candidate = self._candidate_depth(node)
        if DEPTH_ORDER.index(candidate) > DEPTH_ORDER.index(node.depth):
            node.depth = candidate

        self._add_insights(session, node, utterance, signals, now)
        node.transition_potential = self._transition_potential(node)
        return node

    @staticmethod
    def _is_technical(utterance: Utterance) -> bool:
        return any(entity.type in _TECHNICAL_ENTITY_TYPES for entity in utterance.entities) or (
            technical_vocabulary_hits(utterance.text) > 0
        )

    def _candidate_depth(self, node: TopicNode) -> ExplorationDepth:
        count = len(node.responses)
        if not count:
            return "surface"
        avg_length = sum(len(response.text) for response in node.responses) / count
        technical_ratio = sum(1 for response in node.responses if self._is_technical(response)) / count
        if count > 4 and avg_length > 200 and technical_ratio > 0.5:
            return "exhaustive" if count >= 8 else "deep"
        if count > 2 and avg_length > 100:
            return "moderate"
        return "surface"

    @staticmethod
    def _transition_potential(node: TopicNode) -> float:
        potential = 0.5
        if node.depth in ("deep", "exhaustive"):
            potential += 0.3
        elif node.depth == "moderate":
            potential += 0.1
        if len(node.insights) > 2:
            potential += 0.2
        recent = node.responses[-2:]
        if recent and sum(len(response.text) for response in recent) / len(recent) > 150:
            potential -= 0.2
        return min(max(potential, 0.0), 1.0)

    def _add_insights(
        self,
        session: InterviewSession,
        node: TopicNode,
        utterance: Utterance,
        signals: SignalBundle,
        now: datetime,
    ) -> None:
        found: List[TopicInsight] = []
        if session.current_phase == "technical" and not signals.skills_revealed:
            found.append(
                TopicInsight(
                    type="skill_gap",
                    content=f"No concrete skills mentioned for {node.label}",
                    confidence=0.6,
                    evidence=[utterance.text[:120]],
                    timestamp=now,
                )
            )
        emotions = utterance.sentiment.emotions if utterance.sentiment else None
        if emotions is not None and emotions.confidence > 0.8 and len(signals.skills_revealed) > 2:
            found.append(
                TopicInsight(
                    type="strength",
                    content="Strong command of " + ", ".join(signals.skills_revealed[:3]),
                    confidence=0.8,
                    evidence=[utterance.text[:120]],
                    timestamp=now,
                )
            )
        known = {(insight.type, insight.content) for insight in node.insights}
        node.insights.extend(insight for insight in found if (insight.type, insight.content) not in known)

    # ------------------------------------------------------------------
    # Objectives
    # ------------------------------------------------------------------
    @staticmethod
    def _objective_keywords(objective: InterviewObjective) -> List[str]:
        if objective.keywords:
            return [keyword.lower() for keyword in objective.keywords]
        return [word for word in objective.description.lower().split() if len(word) > 3]

    def _accrue_objective_evidence(
        self, session: InterviewSession, utterance: Utterance, signals: SignalBundle
    ) -> None:
        text = utterance.text.lower()
        topics = " ".join(signals.key_topics).lower()
        for objective in session.objectives_for(session.current_phase):
            if objective.completed:
                continue
            matched = any(keyword in text or keyword in topics for keyword in self._objective_keywords(objective))
            if matched:
                gain = 0.2 + 0.3 * signals.completeness
                objective.evidence.append(utterance.text[:120])
            else:
                gain = 0.1 * signals.completeness
            objective.confidence = min(1.0, objective.confidence + gain)
            if objective.confidence >= self.config.completion_confidence:
                objective.completed = True

    def _refresh_objective_lists(self, session: InterviewSession) -> None:
        phase_objectives = session.objectives_for(session.current_phase)
        session.phase_progress.objectives_completed = [o.id for o in phase_objectives if o.completed]
        session.phase_progress.objectives_remaining = [o.id for o in phase_objectives if not o.completed]

    def apply_priority_adjustments(
        self, session: InterviewSession, adjustments: Iterable[PriorityAdjustment]
    ) -> List[str]:
        """Apply duration-driven priority changes; completion is untouched."""

        changed: List[str] = []
        for adjustment in adjustments:
            objective = session.get_objective(adjustment.objective_id)
            if objective is None or objective.completed:
                continue
            objective.priority = adjustment.adjusted_priority
            if adjustment.deferred:
                objective.required = False
            changed.append(objective.id)
        return changed

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------
    def _update_phase_progress(self, session: InterviewSession, quality: float) -> None:
        progress = session.phase_progress
        self._refresh_objective_lists(session)
        time_ratio = min(progress.time_spent / progress.expected_minutes, 1.0) if progress.expected_minutes else 1.0
        progress.completion = self._phase_objective_ratio(session) * 0.7 + time_ratio * 0.3
        progress.quality_score = 0.8 * progress.quality_score + 0.2 * quality

    def _update_metrics(
        self, session: InterviewSession, utterance: Utterance, quality: float, now: datetime
    ) -> None:
        metrics = session.metrics
        alpha = self.config.blend_alpha
        metrics.conversation_quality = _blend(metrics.conversation_quality, quality, alpha)
        metrics.candidate_engagement = _blend(metrics.candidate_engagement, engagement_score(utterance), alpha)
        if session.objectives:
            metrics.objective_progress = sum(1 for o in session.objectives if o.completed) / len(session.objectives)

        elapsed = session.elapsed_minutes(now)
        if elapsed > 0:
            metrics.time_efficiency = self.time_efficiency(session, elapsed)

    def time_efficiency(self, session: InterviewSession, elapsed: float) -> float:
        """Scheduled minutes covered so far over elapsed minutes, capped at 1.

        Earlier phases count at their scaled template budget; the current
        phase counts its time spent up to its own scaled budget, so only a
        phase overrunning its budget (or an earlier phase that did) lowers
        the ratio.
        """

        index = phase_index(session.current_phase)
        scale = session.total_minutes / self.templates.total_expected_minutes()
        earlier = sum(self.templates.expected_minutes(phase) for phase in PHASE_ORDER[:index]) * scale
        current = min(session.phase_progress.time_spent, session.phase_progress.expected_minutes * scale)
        return min((earlier + current) / elapsed, 1.0)

    # ------------------------------------------------------------------
    # Cues
    # ------------------------------------------------------------------
    def derive_cues(
        self,
        session: InterviewSession,
        utterance: Utterance,
        signals: SignalBundle,
        *,
        now: Optional[datetime] = None,
    ) -> List[ContextualCue]:
        moment = now or utterance.timestamp
        cues: List[ContextualCue] = []
        sentiment = utterance.sentiment

        if sentiment is not None and sentiment.emotions.enthusiasm < 0.3:
            cues.append(
                ContextualCue(
                    type="engagement_drop",
                    signal="low_enthusiasm",
                    confidence=sentiment.confidence,
                    suggested_action="encourage",
                    priority=1,
                    raised_at=moment,
                )
            )

        if sentiment is not None and len(utterance.text) < 30 and sentiment.emotions.confidence < 0.4:
            cues.append(
                ContextualCue(
                    type="confusion",
                    signal="short_uncertain_response",
                    confidence=0.7,
                    suggested_action="clarify",
                    priority=1,
                    raised_at=moment,
                )
            )

        technical = [entity for entity in utterance.entities if entity.type in _TECHNICAL_ENTITY_TYPES]
        if len(technical) > 3 and all(entity.confidence > 0.8 for entity in technical):
            cues.append(
                ContextualCue(
                    type="expertise_signal",
                    signal="high_confidence_technical_entities",
                    confidence=0.8,
                    suggested_action="deepen",
                    priority=2,
                    raised_at=moment,
                )
            )

        node = session.active_topic()
        if node is not None and node.phase == session.current_phase and self.is_saturated(node):
            cues.append(
                ContextualCue(
                    type="topic_saturation",
                    signal=f"topic '{node.label}' saturated",
                    confidence=0.6,
                    suggested_action="transition",
                    priority=1,
                    raised_at=moment,
                )
            )

        if not session.concluded:
            signal = self._time_pressure_signal(session, moment)
            if signal is not None:
                cues.append(
                    ContextualCue(
                        type="time_pressure",
                        signal=signal,
                        confidence=0.9,
                        suggested_action="transition",
                        priority=2,
                        raised_at=moment,
                    )
                )
        return cues

    def is_saturated(self, node: TopicNode) -> bool:
        if node.depth == "exhaustive":
            return True
        return (
            node.transition_potential > self.config.saturation_potential
            and len(node.responses) >= self.config.saturation_responses
        )

    def _time_pressure_signal(self, session: InterviewSession, now: datetime) -> Optional[str]:
        ratio = session.remaining_minutes(now) / session.total_minutes
        if ratio < self.config.time_pressure_ratio:
            return "remaining_time_low"
        if session.phase_progress.time_spent > self.templates.phase(session.current_phase).max_minutes:
            return "phase_over_max_duration"
        return None

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------
    def _evaluate_adaptation(
        self, session: InterviewSession, cues: Sequence[ContextualCue], now: datetime
    ) -> Optional[FlowDecision]:
        raised = {cue.type for cue in cues}
        matched = [
            rule
            for rule in self.templates.adaptation_rules
            if rule.cue in raised and rule.applies_to(session.current_phase)
        ]
        if not matched:
            return None
        ranked = sorted(matched, key=lambda rule: rule.priority, reverse=True)
        chosen = ranked[0]
        alternatives: List[DecisionAlternative] = []
        seen = {chosen.action}
        for rule in ranked[1:]:
            if rule.action in seen:
                continue
            seen.add(rule.action)
            alternatives.append(
                DecisionAlternative(action=rule.action, confidence=rule.confidence, reasoning=f"rule {rule.name}")
            )
        return FlowDecision(
            timestamp=now,
            decision_type="adaptation_trigger",
            triggers=sorted({rule.cue for rule in matched}),
            action=chosen.action,
            confidence=chosen.confidence,
            reasoning=[f"rule {chosen.name} matched cue {chosen.cue}"],
            alternatives=alternatives,
            context={"rule": chosen.name, "phase": session.current_phase},
        )

    def _evaluate_time_allocation(
        self, session: InterviewSession, cues: Sequence[ContextualCue], now: datetime
    ) -> Optional[FlowDecision]:
        if session.concluded:
            return None
        progress = session.phase_progress
        over_expected = progress.time_spent > progress.expected_minutes
        pressured = any(cue.type == "time_pressure" for cue in cues)
        if not (over_expected or pressured):
            return None
        already = any(
            decision.decision_type == "time_allocation" and decision.context.get("phase") == session.current_phase
            for decision in session.decisions
        )
        if already:
            return None

        remaining = session.remaining_minutes(now)
        efficiency = progress.expected_minutes / progress.time_spent if progress.time_spent else 1.0
        allocations = allocate_remaining_time(self.templates, session.current_phase, remaining, efficiency)
        return FlowDecision(
            timestamp=now,
            decision_type="time_allocation",
            triggers=["phase_over_expected"] if over_expected else ["time_pressure"],
            action="reallocate_time",
            confidence=0.7,
            reasoning=[f"{remaining:.1f} minutes remain across {len(allocations)} phases"],
            alternatives=[
                DecisionAlternative(
                    action="keep_template_allocation",
                    confidence=0.3,
                    reasoning="Template durations still fit the remaining time",
                )
            ],
            context={"phase": session.current_phase, "allocations": allocations},
        )

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------
    def recommendations(self, session: InterviewSession) -> List[Recommendation]:
        metrics = session.metrics
        found: List[Recommendation] = []
        if metrics.conversation_quality < 0.6:
            found.append(
                Recommendation(
                    type="quality",
                    priority="high",
                    description="Conversation quality is below target; ask more specific, open questions.",
                    action_required=True,
                    suggested_action="improve_question_clarity",
                )
            )
        if metrics.candidate_engagement < 0.5:
            found.append(
                Recommendation(
                    type="adaptation",
                    priority="high",
                    description="Candidate engagement is low; vary question style and encourage.",
                    action_required=True,
                    suggested_action="increase_engagement",
                )
            )
        if metrics.time_efficiency < 0.7:
            found.append(
                Recommendation(
                    type="timing",
                    priority="medium",
                    description="Interview is behind schedule for its current phase.",
                    suggested_action="accelerate_pace",
                )
            )
        if session.phase_progress.completion > 0.8 and not session.concluded:
            found.append(
                Recommendation(
                    type="flow",
                    priority="low",
                    description=f"The {session.current_phase} phase is nearly complete.",
                    suggested_action="prepare_transition",
                )
            )
        return found


__all__ = [
    "CATEGORY_PHASE",
    "FlowConfig",
    "FlowStateMachine",
    "FlowTurnResult",
    "PRIORITY_ALIASES",
    "build_objective",
    "engagement_score",
    "response_quality",
    "transition_quality",
]
