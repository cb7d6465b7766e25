"""Immutable rule tables loaded once from YAML.

Phase templates, adaptation and branching rules, validation rules, quality
thresholds, duration policy and recovery strategies all live in
``config/templates.yaml``. The file is parsed with PyYAML, validated into
frozen pydantic models and cached per path, so every session reads the same
instance and nothing can mutate it.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Literal, Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from agents.types import PHASE_ORDER, CueType, Phase
from config.settings import settings

_ROOT = Path(__file__).resolve().parents[1]


def _readonly(value: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(value))


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ObjectiveTemplate(_Frozen):
    id: str
    description: str
    keywords: Tuple[str, ...] = ()


class PhaseTemplate(_Frozen):
    expected_minutes: float = Field(gt=0)
    min_minutes: float = Field(gt=0)
    max_minutes: float = Field(gt=0)
    key_topics: Tuple[str, ...] = ()
    objectives: Tuple[ObjectiveTemplate, ...] = ()

    @model_validator(mode="after")
    def _check_bounds(self) -> "PhaseTemplate":
        if not self.min_minutes <= self.expected_minutes <= self.max_minutes:
            raise ValueError("phase durations must satisfy min <= expected <= max")
        return self


class AdaptationRule(_Frozen):
    name: str
    cue: CueType
    action: str
    priority: int = Field(ge=0)
    phases: Tuple[Phase, ...] = ()
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)

    def applies_to(self, phase: Phase) -> bool:
        return not self.phases or phase in self.phases


class BranchingRuleTemplate(_Frozen):
    condition: str
    action: str
    priority: int = Field(ge=0)
    confidence: float = Field(ge=0.0, le=1.0)
    when: Literal["always", "time_short"] = "always"


class ValidationRule(_Frozen):
    id: Literal["content_appropriateness", "response_length", "cultural_sensitivity"]
    name: str
    category: Literal["critical", "important", "optional"]
    weight: float = Field(gt=0)
    threshold: float = Field(ge=0.0, le=1.0)
    params: Mapping[str, float] = Field(default_factory=dict)

    @field_validator("params", mode="after")
    @classmethod
    def _freeze_params(cls, value: Mapping[str, float]) -> Mapping[str, float]:
        return _readonly(value)


class QualityThreshold(_Frozen):
    minimum: float
    target: float
    critical: float
    action: Literal["block", "warn", "suggest"]


class DurationPolicy(_Frozen):
    utilization_high: float = 0.8
    utilization_extend: float = 0.5
    efficiency_low: float = 0.6
    efficiency_cap: float = 2.0
    overrun_high: float = 5.0
    critical_remaining_minutes: float = 2.0
    default_objective_minutes: float = 5.0
    increase_speed_factor: float = 0.3
    decrease_speed_factor: float = 0.2


class RecoveryStepTemplate(_Frozen):
    action: str
    description: str
    timeout_ms: Optional[int] = None


class RecoveryStrategyTemplate(_Frozen):
    type: Literal["automatic", "guided", "manual"]
    description: str
    steps: Tuple[RecoveryStepTemplate, ...]
    fallback_options: Tuple[str, ...] = ()
    success_criteria: Tuple[str, ...] = ()


class EngineTemplates(_Frozen):
    version: int = 1
    phases: Mapping[Phase, PhaseTemplate]
    adaptation_rules: Tuple[AdaptationRule, ...] = ()
    branching_rules: Tuple[BranchingRuleTemplate, ...] = ()
    validation_rules: Tuple[ValidationRule, ...] = ()
    quality_thresholds: Mapping[str, QualityThreshold] = Field(default_factory=dict)
    topic_keywords: Mapping[str, Tuple[str, ...]] = Field(default_factory=dict)
    duration: DurationPolicy = Field(default_factory=DurationPolicy)
    recovery_strategies: Mapping[str, Tuple[RecoveryStrategyTemplate, ...]] = Field(default_factory=dict)

    @field_validator("phases", "quality_thresholds", "topic_keywords", "recovery_strategies", mode="after")
    @classmethod
    def _freeze_tables(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        return _readonly(value)

    @model_validator(mode="after")
    def _check_tables(self) -> "EngineTemplates":
        missing = [phase for phase in PHASE_ORDER if phase not in self.phases]
        if missing:
            raise ValueError(f"phase templates missing for: {', '.join(missing)}")
        if "default" not in self.recovery_strategies:
            raise ValueError("recovery_strategies must define a 'default' entry")
        if "default" not in self.topic_keywords:
            raise ValueError("topic_keywords must define a 'default' entry")
        return self

    def phase(self, phase: Phase) -> PhaseTemplate:
        return self.phases[phase]

    def expected_minutes(self, phase: Phase) -> float:
        return self.phases[phase].expected_minutes

    def total_expected_minutes(self) -> float:
        return sum(template.expected_minutes for template in self.phases.values())


def resolve_config_path(path: str) -> Path:
    """Resolve ``path`` against the working directory, then the repo root."""

    candidate = Path(path)
    if candidate.is_absolute() or candidate.exists():
        return candidate
    return _ROOT / candidate


@lru_cache(maxsize=None)
def load_templates(path: Optional[str] = None) -> EngineTemplates:
    """Parse and validate the rule tables; cached per path."""

    resolved = resolve_config_path(path or settings.TEMPLATES_PATH)
    with open(resolved, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return EngineTemplates.model_validate(data)


__all__ = [
    "AdaptationRule",
    "BranchingRuleTemplate",
    "DurationPolicy",
    "EngineTemplates",
    "ObjectiveTemplate",
    "PhaseTemplate",
    "QualityThreshold",
    "RecoveryStepTemplate",
    "RecoveryStrategyTemplate",
    "ValidationRule",
    "load_templates",
    "resolve_config_path",
]
