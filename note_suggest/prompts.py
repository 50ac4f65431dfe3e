from __future__ import annotations

from dataclasses import dataclass

from .models import INTENT_LABELS


@dataclass(frozen=True)
class PromptTemplate:
    """Provenance identifier for a prompt template.

    Bump `version` whenever the prompt text changes in a way that could affect outputs.
    """

    id: str
    version: int


SECTION_INTENT_CLASSIFY = PromptTemplate(id="section_intent.classify", version=1)


def build_section_intent_prompt(*, heading: str, body_text: str) -> str:
    labels = ", ".join(INTENT_LABELS)
    return (
        "You are classifying one section of a product/meeting note.\n"
        "Score how strongly the section expresses each intent, from 0.0 to 1.0.\n"
        "Return ONLY valid JSON with this schema (no extra keys):\n"
        '{"intent": {"<label>": 0.0-1.0, ...}, "confidence": 0.0-1.0}\n'
        f"Labels: {labels}\n\n"
        f"HEADING: {heading.strip() or '(none)'}\n\n"
        "SECTION_TEXT:\n"
        f"{body_text.strip()}\n"
    )
