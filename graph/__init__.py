"""Session state and per-turn pipeline for the dialogue engine."""
from .state import InterviewSession

__all__ = ["InterviewSession"]
