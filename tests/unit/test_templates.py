import pytest
import yaml
from pydantic import ValidationError

from agents.types import PHASE_ORDER
from config.templates import EngineTemplates, PhaseTemplate, load_templates, resolve_config_path


def test_packaged_tables_cover_every_phase(templates):
    assert set(templates.phases) == set(PHASE_ORDER)
    assert templates.total_expected_minutes() == 60
    for phase in PHASE_ORDER:
        template = templates.phase(phase)
        assert template.min_minutes <= template.expected_minutes <= template.max_minutes
    assert [rule.id for rule in templates.validation_rules] == [
        "content_appropriateness",
        "response_length",
        "cultural_sensitivity",
    ]
    assert "default" in templates.recovery_strategies


def test_tables_are_cached_and_frozen(templates):
    assert load_templates() is templates
    with pytest.raises(ValidationError):
        templates.phase("introduction").expected_minutes = 99


def test_table_mappings_are_read_only(templates):
    with pytest.raises(TypeError):
        templates.phases["introduction"] = templates.phase("conclusion")
    with pytest.raises(TypeError):
        templates.topic_keywords["default"] = ("anything",)
    with pytest.raises(TypeError):
        del templates.quality_thresholds["relevance"]
    with pytest.raises(TypeError):
        templates.recovery_strategies["default"] = ()
    length_rule = next(rule for rule in templates.validation_rules if rule.id == "response_length")
    with pytest.raises(TypeError):
        length_rule.params["min_length"] = 0
    assert length_rule.params["min_length"] == 10


def test_phase_bounds_are_enforced():
    with pytest.raises(ValidationError):
        PhaseTemplate(expected_minutes=20, min_minutes=5, max_minutes=10)


def test_missing_phase_is_rejected():
    path = resolve_config_path("config/templates.yaml")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    del data["phases"]["situational"]
    with pytest.raises(ValidationError, match="situational"):
        EngineTemplates.model_validate(data)


def test_unknown_keys_are_rejected():
    path = resolve_config_path("config/templates.yaml")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    data["phases"]["closing_questions"]["stretch_minutes"] = 3
    with pytest.raises(ValidationError):
        EngineTemplates.model_validate(data)
