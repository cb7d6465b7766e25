"""Heuristic signal extraction for candidate utterances.

``analyze_response`` is a pure function of the utterance text, its entity
tags and optional sentiment. Missing enrichment degrades to neutral defaults
instead of raising, so a bare text utterance still yields a usable bundle.
"""
from __future__ import annotations

import re
from typing import Callable, List, Optional, Sequence, Tuple

from agents.types import EmotionalState, Emotions, Entity, Sentiment, SignalBundle, Utterance
from graph.state import InterviewSession

_EXAMPLE_RE = re.compile(r"\b(for example|for instance|such as|like when|instance)\b", re.IGNORECASE)
_METRIC_RE = re.compile(
    r"\d+\s*%|\d+\s*(?:x\b|years?|months?|days?|hours?|weeks?)|\b(?:increased|decreased|improved|reduced)\b",
    re.IGNORECASE,
)
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_DIGIT_RE = re.compile(r"\d")

TECHNICAL_TERMS: Tuple[str, ...] = (
    "architecture",
    "design pattern",
    "algorithm",
    "optimization",
    "scalability",
    "performance",
    "security",
    "testing",
    "deployment",
    "monitoring",
    "debugging",
    "refactoring",
)
_TECHNICAL_ENTITY_TYPES = {"skill", "technology"}
_TOPIC_ENTITY_TYPES = {"experience", "skill", "technology"}

_THEMES: Tuple[Tuple[str, re.Pattern[str]], ...] = (
    ("teamwork", re.compile(r"\b(team|teams|teammates?|collaborat\w*|colleagues)\b", re.IGNORECASE)),
    ("leadership", re.compile(r"\b(led|lead|leading|leadership|mentor\w*|managed)\b", re.IGNORECASE)),
    ("conflict", re.compile(r"\b(conflicts?|disagree\w*|tension)\b", re.IGNORECASE)),
    ("challenge", re.compile(r"\b(challeng\w*|obstacles?)\b", re.IGNORECASE)),
)
_TOPIC_PATTERNS: Tuple[re.Pattern[str], ...] = (
    re.compile(r"\bworked on (?:an? |the )?([\w+#.-]+(?: [\w+#.-]+)?)", re.IGNORECASE),
    re.compile(r"\bexperience with (?:an? |the )?([\w+#.-]+(?: [\w+#.-]+)?)", re.IGNORECASE),
    re.compile(r"\busing (?:an? |the )?([\w+#.-]+)", re.IGNORECASE),
)
_TOPIC_STOPWORDS = {"and", "with", "for", "to", "in", "at", "on", "it", "that", "this", "my", "our", "we", "i"}
MAX_KEY_TOPICS = 5

_NEUTRAL_SENTIMENT = Sentiment()


def _words(text: str) -> List[str]:
    return text.split()


def _sentence_count(text: str) -> int:
    return len([part for part in _SENTENCE_SPLIT_RE.split(text) if part.strip()])


def score_completeness(text: str) -> float:
    words = len(_words(text))
    score = 0.3
    if words > 50:
        score += 0.2
    if words > 100:
        score += 0.2
    if _sentence_count(text) > 2:
        score += 0.1
    if _EXAMPLE_RE.search(text):
        score += 0.1
    if _METRIC_RE.search(text):
        score += 0.1
    return min(score, 1.0)


def technical_vocabulary_hits(text: str) -> int:
    lowered = text.lower()
    return sum(1 for term in TECHNICAL_TERMS if term in lowered)


def score_technical_depth(text: str, entities: Sequence[Entity]) -> float:
    technical_entities = sum(1 for entity in entities if entity.type in _TECHNICAL_ENTITY_TYPES)
    score = 0.2
    score += min(technical_entities * 0.1, 0.4)
    score += min(technical_vocabulary_hits(text) * 0.05, 0.4)
    return min(score, 1.0)


def classify_emotional_state(sentiment: Optional[Sentiment]) -> EmotionalState:
    sentiment = sentiment or _NEUTRAL_SENTIMENT
    emotions: Emotions = sentiment.emotions
    if emotions.enthusiasm > 0.7:
        return "enthusiastic"
    if emotions.nervousness > 0.7:
        return "nervous"
    if emotions.confidence > 0.7:
        return "confident"
    if emotions.frustration > 0.6:
        return "frustrated"
    if sentiment.polarity > 0.5:
        return "positive"
    if sentiment.polarity < -0.3:
        return "negative"
    return "neutral"


def _clean_capture(raw: str) -> str:
    words = [word.strip(".,;:!?") for word in raw.split()]
    while words and words[-1].lower() in _TOPIC_STOPWORDS:
        words.pop()
    return " ".join(word for word in words if word)


def extract_key_topics(text: str, entities: Sequence[Entity]) -> Tuple[str, ...]:
    candidates: List[str] = [entity.value for entity in entities if entity.type in _TOPIC_ENTITY_TYPES]
    candidates.extend(label for label, pattern in _THEMES if pattern.search(text))
    for pattern in _TOPIC_PATTERNS:
        for match in pattern.finditer(text):
            cleaned = _clean_capture(match.group(1))
            if cleaned and cleaned.lower() not in _TOPIC_STOPWORDS:
                candidates.append(cleaned)

    seen: set[str] = set()
    topics: List[str] = []
    for candidate in candidates:
        key = candidate.strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        topics.append(candidate.strip())
        if len(topics) >= MAX_KEY_TOPICS:
            break
    return tuple(topics)


def extract_skills(entities: Sequence[Entity]) -> Tuple[str, ...]:
    seen: set[str] = set()
    skills: List[str] = []
    for entity in entities:
        if entity.type in _TECHNICAL_ENTITY_TYPES and entity.value.lower() not in seen:
            seen.add(entity.value.lower())
            skills.append(entity.value)
    return tuple(skills)


def _mentions(text: str, *needles: str) -> bool:
    return any(re.search(rf"\b{needle}", text) for needle in needles)


# Ordered (gap, predicate) table over the lower-cased text and entities.
_GAP_RULES: Tuple[Tuple[str, Callable[[str, Sequence[Entity]], bool]], ...] = (
    (
        "technical_stack_details",
        lambda text, entities: _mentions(text, "project")
        and not any(entity.type in _TECHNICAL_ENTITY_TYPES for entity in entities)
        and not _mentions(text, "technolog", "stack", "framework", "language"),
    ),
    (
        "quantitative_metrics",
        lambda text, _: _mentions(text, "improved", "increased", "reduced", "decreased")
        and not _DIGIT_RE.search(text),
    ),
    (
        "team_collaboration_details",
        lambda text, _: _mentions(text, "worked", "built", "delivered")
        and not _mentions(text, "team", r"we\b", "colleague", "collaborat"),
    ),
    (
        "challenges_overcome",
        lambda text, _: _mentions(text, "project")
        and not _mentions(text, "challeng", "problem", "difficult", "obstacle"),
    ),
)


def identify_information_gaps(text: str, entities: Sequence[Entity]) -> Tuple[str, ...]:
    lowered = text.lower()
    return tuple(gap for gap, predicate in _GAP_RULES if predicate(lowered, entities))


def analysis_confidence(sentiment: Optional[Sentiment], entities: Sequence[Entity]) -> float:
    sentiment_conf = sentiment.confidence if sentiment is not None else 0.0
    entity_conf = sum(entity.confidence for entity in entities) / len(entities) if entities else 0.0
    return min(0.5 + sentiment_conf * 0.3 + entity_conf * 0.2, 1.0)


def analyze_response(utterance: Utterance, session: Optional[InterviewSession] = None) -> SignalBundle:
    """Reduce a candidate utterance to a :class:`SignalBundle`.

    ``session`` is accepted for context but never read or mutated; identical
    inputs always produce identical bundles.
    """

    text = utterance.text or ""
    entities = utterance.entities
    return SignalBundle(
        completeness=score_completeness(text),
        technical_depth=score_technical_depth(text, entities),
        emotional_state=classify_emotional_state(utterance.sentiment),
        key_topics=extract_key_topics(text, entities),
        skills_revealed=extract_skills(entities),
        information_gaps=identify_information_gaps(text, entities),
        confidence=analysis_confidence(utterance.sentiment, entities),
    )


__all__ = [
    "TECHNICAL_TERMS",
    "analysis_confidence",
    "analyze_response",
    "classify_emotional_state",
    "extract_key_topics",
    "extract_skills",
    "identify_information_gaps",
    "score_completeness",
    "score_technical_depth",
    "technical_vocabulary_hits",
]
