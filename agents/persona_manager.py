"""Persona manager utilities for styling engine-authored text."""
from __future__ import annotations

import re
from typing import Literal

Persona = Literal["Friendly Expert", "Firm Evaluator"]
Purpose = Literal[
    "ask_question",
    "clarify",
    "encourage",
    "transition",
    "wrapup",
    "recover",
]

TEMPLATES_FE: dict[Purpose, str] = {
    "ask_question": "{core}",
    "clarify": "Thanks for that. {core}",
    "encourage": "That’s a great start. {core}",
    "transition": "Thank you, that’s helpful. {core}",
    "wrapup": "We’re nearly at time. {core}",
    "recover": "{core}",
}

TEMPLATES_FIRM: dict[Purpose, str] = {
    "ask_question": "{core}",
    "clarify": "{core}",
    "encourage": "Understood. {core}",
    "transition": "Noted. {core}",
    "wrapup": "We’re close to time. {core}",
    "recover": "{core}",
}


def _trim_sentences(text: str, max_sentences: int) -> str:
    text = (text or "").strip()
    if not text:
        return ""
    parts = re.split(r"(?<=[.!?])\s+", text)
    kept: list[str] = []
    for part in parts:
        if part:
            kept.append(part.strip())
        if len(kept) >= max_sentences:
            break
    if not kept:
        kept = [text]
    return " ".join(kept).strip()


def _choose_templates(persona: str) -> dict[Purpose, str]:
    if persona == "Firm Evaluator":
        return TEMPLATES_FIRM
    return TEMPLATES_FE


def apply_persona(
    text: str,
    *,
    persona: str = "Friendly Expert",
    purpose: Purpose = "ask_question",
    max_sentences: int = 2,
) -> str:
    """Wrap ``text`` in persona-aware phrasing, bounded to ``max_sentences``."""

    template = _choose_templates(persona).get(purpose, "{core}")

    # The template prefix consumes one sentence of the budget.
    core_budget = max_sentences if template == "{core}" else max(1, max_sentences - 1)
    core_text = _trim_sentences(text, core_budget)
    formatted = template.replace("{core}", core_text).strip()
    return _trim_sentences(formatted, max_sentences)


__all__ = ["apply_persona", "Persona", "Purpose"]
