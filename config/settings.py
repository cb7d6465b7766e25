"""Application settings and configuration management."""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or defaults."""

    TEMPLATES_PATH: str = Field(default="config/templates.yaml")
    SAFETY_CONFIG: str = Field(default="config/safety.yaml")
    APP_CONFIG_PATH: str = Field(default="config/app_config.json")

    PERSONA_DEFAULT: str = "Friendly Expert"
    TOTAL_INTERVIEW_MINUTES: float = Field(default=60.0, gt=0)

    # Time-pressure cue fires when remaining / total falls below this ratio.
    TIME_PRESSURE_RATIO: float = Field(default=0.15, ge=0.0, le=1.0)
    PHASE_OBJECTIVE_RATIO: float = Field(default=0.7, ge=0.0, le=1.0)
    OBJECTIVE_COMPLETION_CONFIDENCE: float = Field(default=0.75, ge=0.0, le=1.0)
    METRIC_BLEND_ALPHA: float = Field(default=0.3, gt=0.0, le=1.0)
    ALLOWED_TOPIC_DEVIATION: float = Field(default=0.3, ge=0.0, le=1.0)

    RENDER_TIMEOUT_S: float = Field(default=8.0, ge=0.1)
    MAX_REGENERATIONS: int = Field(default=1, ge=0)
    RENDER_MAX_CHARS: int = 300
    RENDER_MAX_CHARS_SHORT: int = 160

    model_config = SettingsConfigDict(env_file=".env", validate_assignment=True, extra="ignore")


settings = Settings()
