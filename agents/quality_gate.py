"""Quality gatekeeping for drafted interviewer utterances.

Two checks run on every draft before it reaches the candidate:

* ``validate_response`` scores the draft against the weighted validation
  rules and the renderer's own quality sub-scores. A failing CRITICAL rule
  invalidates the draft whatever the aggregate score says.
* ``check_topic_relevance`` measures how far the draft strays from the active
  topic and the outstanding objectives, and maps the deviation onto a
  redirect action.
"""
from __future__ import annotations

import re
from typing import Dict, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from agents.renderer import QualityScores, RenderConstraints
from agents.types import Entity
from config.safety import SafetyEngine, SafetyFinding, safety_engine
from config.settings import settings
from config.templates import EngineTemplates, ValidationRule, load_templates

IssueSeverity = Literal["critical", "major", "minor"]
DeviationLevel = Literal["none", "minor", "moderate", "major", "complete"]
RelevanceAction = Literal["continue_current_topic", "gentle_redirect", "explicit_redirect", "topic_reset"]

_RULE_SEVERITY: Dict[str, IssueSeverity] = {"critical": "critical", "important": "major", "optional": "minor"}

_DEVIATION_ACTION: Dict[DeviationLevel, RelevanceAction] = {
    "none": "continue_current_topic",
    "minor": "continue_current_topic",
    "moderate": "gentle_redirect",
    "major": "explicit_redirect",
    "complete": "topic_reset",
}

_REDIRECT_COPY: Dict[RelevanceAction, Optional[str]] = {
    "continue_current_topic": None,
    "gentle_redirect": "That's interesting. Coming back to {topic} for a moment...",
    "explicit_redirect": "Let's return to {topic}, which is what I'd like to focus on now.",
    "topic_reset": "Let's step back and restart our conversation about {topic}.",
}

_WORD_RE = re.compile(r"[a-z0-9][a-z0-9+#.-]*")


class ValidationIssue(BaseModel):
    rule_id: str
    severity: IssueSeverity
    description: str
    score: float
    confidence: float
    suggestion: Optional[str] = None


class RuleScore(BaseModel):
    rule_id: str
    score: float
    passed: bool
    weight: float


class ValidationResult(BaseModel):
    is_valid: bool
    overall_score: float
    rule_scores: List[RuleScore] = Field(default_factory=list)
    issues: List[ValidationIssue] = Field(default_factory=list)
    recommendation: Literal["approve", "flag_for_review", "revise"]
    confidence: float

    @property
    def critical_issues(self) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "critical"]


class RelevanceResult(BaseModel):
    score: float
    topic_alignment: float
    objective_alignment: float
    is_relevant: bool
    deviation: DeviationLevel
    action: RelevanceAction
    matched_keywords: List[str] = Field(default_factory=list)
    redirect_phrase: Optional[str] = None


# ----------------------------------------------------------------------
# Validation rules
# ----------------------------------------------------------------------
def _content_appropriateness(finding: SafetyFinding) -> Tuple[float, List[str]]:
    notes: List[str] = []
    score = 1.0
    forbidden = finding.count("forbidden")
    if forbidden:
        score -= 0.5 * forbidden
        notes.append(f"{forbidden} forbidden term(s) present")
    unprofessional = finding.count("unprofessional")
    if unprofessional:
        score -= 0.1 * unprofessional
        notes.append(f"{unprofessional} informal term(s) present")
    return max(score, 0.0), notes


def _response_length(draft: str, rule: ValidationRule, constraints: RenderConstraints) -> Tuple[float, List[str]]:
    length = len(draft.strip())
    min_length = rule.params.get("min_length", 10)
    max_length = rule.params.get("max_length", 500)
    optimal_min = rule.params.get("optimal_min", 50)
    optimal_max = rule.params.get("optimal_max", 200)

    notes: List[str] = []
    score = 0.9
    if length < min_length:
        score -= 0.4
        notes.append(f"response shorter than {min_length:.0f} characters")
    if length > max_length:
        score -= 0.4
        notes.append(f"response longer than {max_length:.0f} characters")
    elif length > constraints.max_length:
        score -= 0.35
        notes.append(f"response exceeds the {constraints.max_length} character limit")
    if optimal_min <= length <= optimal_max:
        score += 0.1
    return min(max(score, 0.0), 1.0), notes


def _cultural_sensitivity(finding: SafetyFinding) -> Tuple[float, List[str]]:
    notes: List[str] = []
    score = 0.9
    if finding.count("inclusive"):
        score += 0.1
    insensitive = finding.count("insensitive")
    if insensitive:
        score -= 0.3 * insensitive
        notes.append(f"{insensitive} potentially exclusionary phrase(s) present")
    return min(max(score, 0.0), 1.0), notes


_RULE_SUGGESTIONS: Dict[str, str] = {
    "content_appropriateness": "Remove inappropriate or informal language",
    "response_length": "Adjust the response length to the allowed range",
    "cultural_sensitivity": "Use inclusive, assumption-free phrasing",
}


def _score_rule(
    rule: ValidationRule, draft: str, finding: SafetyFinding, constraints: RenderConstraints
) -> Tuple[float, List[str]]:
    if rule.id == "content_appropriateness":
        return _content_appropriateness(finding)
    if rule.id == "response_length":
        return _response_length(draft, rule, constraints)
    return _cultural_sensitivity(finding)


def _threshold_issues(quality: QualityScores, templates: EngineTemplates) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    for metric, threshold in templates.quality_thresholds.items():
        value = getattr(quality, metric, None)
        if value is None:
            continue
        if value < threshold.critical:
            severity: IssueSeverity = "critical" if threshold.action == "block" else "major"
        elif value < threshold.minimum:
            severity = "major" if threshold.action == "block" else "minor"
        else:
            continue
        issues.append(
            ValidationIssue(
                rule_id=f"quality.{metric}",
                severity=severity,
                description=f"{metric} score {value:.2f} below minimum {threshold.minimum:.2f}",
                score=value,
                confidence=0.7,
                suggestion=f"Improve {metric} toward {threshold.target:.2f}",
            )
        )
    return issues


def _validation_confidence(overall: float, issues: Sequence[ValidationIssue]) -> float:
    critical = sum(1 for issue in issues if issue.severity == "critical")
    confidence = max(0.0, 0.8 - 0.2 * critical)
    confidence = (confidence + overall) / 2
    if issues:
        confidence = (confidence + sum(issue.confidence for issue in issues) / len(issues)) / 2
    return min(max(confidence, 0.0), 1.0)


def validate_response(
    draft: str,
    *,
    quality: Optional[QualityScores] = None,
    constraints: Optional[RenderConstraints] = None,
    context_tags: Optional[List[str]] = None,
    templates: Optional[EngineTemplates] = None,
    engine: Optional[SafetyEngine] = None,
) -> ValidationResult:
    """Score ``draft`` against the validation rules and quality thresholds."""

    templates = templates or load_templates()
    engine = engine or safety_engine()
    constraints = constraints or RenderConstraints()
    finding = engine.analyze(
        draft,
        context_tags,
        extra_terms={"forbidden": constraints.forbidden_terms} if constraints.forbidden_terms else None,
    )

    rule_scores: List[RuleScore] = []
    issues: List[ValidationIssue] = []
    weighted = 0.0
    total_weight = 0.0
    for rule in templates.validation_rules:
        score, notes = _score_rule(rule, draft, finding, constraints)
        passed = score >= rule.threshold
        rule_scores.append(RuleScore(rule_id=rule.id, score=score, passed=passed, weight=rule.weight))
        weighted += score * rule.weight
        total_weight += rule.weight
        if not passed:
            issues.append(
                ValidationIssue(
                    rule_id=rule.id,
                    severity=_RULE_SEVERITY[rule.category],
                    description="; ".join(notes) or f"{rule.name} below threshold",
                    score=score,
                    confidence=0.9,
                    suggestion=_RULE_SUGGESTIONS.get(rule.id),
                )
            )

    if quality is not None:
        issues.extend(_threshold_issues(quality, templates))

    overall = weighted / total_weight if total_weight else 1.0
    is_valid = not any(issue.severity == "critical" for issue in issues)
    if not is_valid:
        recommendation: Literal["approve", "flag_for_review", "revise"] = "revise"
    elif overall < 0.7:
        recommendation = "flag_for_review"
    else:
        recommendation = "approve"

    return ValidationResult(
        is_valid=is_valid,
        overall_score=overall,
        rule_scores=rule_scores,
        issues=issues,
        recommendation=recommendation,
        confidence=_validation_confidence(overall, issues),
    )


# ----------------------------------------------------------------------
# Topic relevance
# ----------------------------------------------------------------------
def _words(text: str) -> List[str]:
    return _WORD_RE.findall(text.lower())


def topic_keywords(topic: str, templates: EngineTemplates) -> List[str]:
    """Keyword set for ``topic``: its own words plus any matching category."""

    label = topic.lower().replace("_", " ")
    keywords: List[str] = [word for word in label.split() if len(word) > 2]
    for category, words in templates.topic_keywords.items():
        if category == "default":
            continue
        if category in label or any(word in label for word in words):
            keywords.extend(words)
    if not keywords:
        keywords.extend(templates.topic_keywords["default"])
    return list(dict.fromkeys(keywords))


def _topic_alignment(draft_words: List[str], keywords: List[str], entities: Sequence[Entity]) -> Tuple[float, List[str]]:
    joined = " ".join(draft_words)
    matched = [keyword for keyword in keywords if keyword in draft_words or (" " in keyword and keyword in joined)]
    if not matched:
        matched = [keyword for keyword in keywords if any(word.startswith(keyword) for word in draft_words)]
    hits = len(matched)
    if hits == 0:
        score = 0.2
    elif hits == 1:
        score = 0.75
    else:
        score = 1.0
    referenced = sum(1 for entity in entities if entity.value.lower() in joined)
    score += min(referenced * 0.1, 0.3)
    return min(score, 1.0), matched


def _objective_alignment(draft_words: List[str], objectives: Sequence[str]) -> float:
    if not objectives:
        return 0.8
    present = set(draft_words)
    best = 0.0
    for objective in objectives:
        words = [word for word in _words(objective) if len(word) > 3]
        if not words:
            continue
        best = max(best, sum(1 for word in words if word in present) / len(words))
    return max(0.3, min(1.0, best * 2))


def deviation_level(deviation: float, allowed: float) -> DeviationLevel:
    if deviation <= allowed * 0.5:
        return "none"
    if deviation <= allowed:
        return "minor"
    if deviation <= allowed * 1.5:
        return "moderate"
    if deviation <= allowed * 2:
        return "major"
    return "complete"


def check_topic_relevance(
    draft: str,
    topic: str,
    objectives: Sequence[str] = (),
    *,
    allowed_deviation: Optional[float] = None,
    entities: Sequence[Entity] = (),
    templates: Optional[EngineTemplates] = None,
) -> RelevanceResult:
    """Measure how closely ``draft`` stays on ``topic`` and the objectives."""

    templates = templates or load_templates()
    allowed = settings.ALLOWED_TOPIC_DEVIATION if allowed_deviation is None else allowed_deviation
    draft_words = _words(draft)
    topic_score, matched = _topic_alignment(draft_words, topic_keywords(topic, templates), entities)
    objective_score = _objective_alignment(draft_words, objectives)

    score = 0.6 * topic_score + 0.4 * objective_score
    deviation = deviation_level(1.0 - score, allowed)
    action = _DEVIATION_ACTION[deviation]
    phrase = _REDIRECT_COPY[action]
    return RelevanceResult(
        score=score,
        topic_alignment=topic_score,
        objective_alignment=objective_score,
        is_relevant=score >= 1.0 - allowed,
        deviation=deviation,
        action=action,
        matched_keywords=matched,
        redirect_phrase=phrase.format(topic=topic.replace("_", " ")) if phrase else None,
    )


__all__ = [
    "DeviationLevel",
    "IssueSeverity",
    "RelevanceAction",
    "RelevanceResult",
    "RuleScore",
    "ValidationIssue",
    "ValidationResult",
    "check_topic_relevance",
    "deviation_level",
    "topic_keywords",
    "validate_response",
]
