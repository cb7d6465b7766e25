"""YAML-driven language screening for drafted interviewer utterances."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Tuple

import yaml

from config.settings import settings


@dataclass(frozen=True)
class MatchHit:
    """Individual regex match metadata."""

    category: str
    pattern: str
    span: Tuple[int, int]
    excerpt: str


@dataclass
class SafetyFinding:
    """Aggregate result returned from the safety engine."""

    category: Optional[str]
    severity: str
    hits: List[MatchHit] = field(default_factory=list)
    allow_list_reason: Optional[str] = None

    def count(self, category: str) -> int:
        return sum(1 for hit in self.hits if hit.category == category)


def _load_yaml(path: str) -> dict:
    from config.templates import resolve_config_path

    with open(resolve_config_path(path), "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


class SafetyEngine:
    """Compile regex categories from YAML and scan text against them.

    The configuration is read once; an engine instance is never mutated after
    construction so it can be shared by every session.
    """

    def __init__(self, config: dict):
        self._normalizers: Tuple[str, ...] = tuple(config.get("normalizers", []))
        self._precedence: Tuple[str, ...] = tuple(config.get("precedence", []))
        categories = config.get("categories", {}) or {}
        self._severity: Dict[str, str] = {
            name: values.get("severity", "info") for name, values in categories.items()
        }
        self._compiled: Dict[str, Tuple[re.Pattern[str], ...]] = {
            name: tuple(re.compile(pattern) for pattern in values.get("patterns", []))
            for name, values in categories.items()
        }
        self._allow_lists: Dict[str, frozenset[str]] = {
            tag: frozenset(self._normalize(term) for term in (terms or []))
            for tag, terms in (config.get("allow_lists", {}) or {}).items()
        }

    @classmethod
    def from_path(cls, path: str) -> "SafetyEngine":
        return cls(_load_yaml(path))

    # ------------------------------------------------------------------
    # Normalization helpers
    # ------------------------------------------------------------------
    def _normalize(self, text: str) -> str:
        sample = text or ""
        if "strip_whitespace" in self._normalizers:
            sample = sample.strip()
        if "collapse_spaces" in self._normalizers:
            sample = re.sub(r"\s+", " ", sample)
        if "to_lower" in self._normalizers:
            sample = sample.lower()
        return sample

    def _allow_ok(self, token: str, context_tags: Iterable[str]) -> bool:
        normal_token = self._normalize(token)
        for tag in context_tags:
            if normal_token in self._allow_lists.get(tag, frozenset()):
                return True
        return False

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------
    def analyze(
        self,
        text: str,
        context_tags: Optional[List[str]] = None,
        extra_terms: Optional[Dict[str, Iterable[str]]] = None,
    ) -> SafetyFinding:
        """Scan ``text`` and report every hit plus the winning category.

        ``extra_terms`` maps a category name to literal terms supplied at call
        time (e.g. caller-provided forbidden terms); they are matched on word
        boundaries after normalization.
        """

        tags = list(context_tags or [])
        sample = self._normalize(text or "")
        matches: List[MatchHit] = []
        suppressed: List[str] = []

        patterns: Dict[str, Tuple[re.Pattern[str], ...]] = dict(self._compiled)
        for category, terms in (extra_terms or {}).items():
            literal = tuple(
                re.compile(r"\b" + re.escape(self._normalize(term)) + r"\b")
                for term in terms
                if term and term.strip()
            )
            patterns[category] = patterns.get(category, ()) + literal

        for category, compiled in patterns.items():
            for pattern in compiled:
                for match in pattern.finditer(sample):
                    token = match.group(0)
                    if self._allow_ok(token, tags):
                        suppressed.append(token)
                        continue
                    start, end = match.span()
                    excerpt = sample[max(0, start - 20) : min(len(sample), end + 20)]
                    matches.append(
                        MatchHit(
                            category=category,
                            pattern=pattern.pattern,
                            span=(start, end),
                            excerpt=excerpt,
                        )
                    )

        allow_reason = f"allowed by {tags}" if suppressed else None
        if not matches:
            return SafetyFinding(category=None, severity="info", hits=[], allow_list_reason=allow_reason)

        precedence_lookup = {name: index for index, name in enumerate(self._precedence)}
        winning_category = min(
            matches,
            key=lambda hit: precedence_lookup.get(hit.category, len(precedence_lookup)),
        ).category
        return SafetyFinding(
            category=winning_category,
            severity=self._severity.get(winning_category, "info"),
            hits=matches,
            allow_list_reason=allow_reason,
        )


@lru_cache(maxsize=None)
def safety_engine(path: Optional[str] = None) -> SafetyEngine:
    """Return the shared read-only engine for ``path``."""

    return SafetyEngine.from_path(path or settings.SAFETY_CONFIG)


__all__ = [
    "MatchHit",
    "SafetyEngine",
    "SafetyFinding",
    "safety_engine",
]
