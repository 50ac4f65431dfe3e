"""Sentence-level extraction for sections written as one dense paragraph.

Every sentence is typed on its own; nothing is inherited from the parent
section's classification.
"""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

from .candidates import SynthesisState, build_candidate, owner_section_id, sentence_span
from .classifiers import has_plan_change_eligibility, normalize_unit, score_unit
from .context import RunContext
from .models import ClassifiedSection
from .noise import should_suppress_process_sentence
from .preprocessing import contains_verbatim
from .rules import DENSE_TOPIC_ANCHOR_PREFIXES, is_generic_heading, strip_list_marker
from .signals import Signal, dedupe_signals, extract_signals_from_sentences, title_from_signal


DENSE_MIN_CHARS = 250
_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+")
_ASK_TAGS = ("request", "hedged", "imperative")


def is_dense_paragraph_section(section: ClassifiedSection) -> bool:
    content = section.section.content_lines()
    if not content:
        return False
    if any(ln.line_type == "list_item" for ln in content):
        return False
    text = "\n".join(ln.text for ln in content)
    if not (len(content) == 1 or len(text) >= DENSE_MIN_CHARS):
        return False
    return not any(strip_list_marker(ln.text).lower().startswith(DENSE_TOPIC_ANCHOR_PREFIXES) for ln in content)


def split_dense_sentences(text: str) -> List[str]:
    """Split on sentence punctuation, re-joining fragments that start lowercase ("e.g. foo")."""

    out: List[str] = []
    for part in _SENTENCE_BOUNDARY_RE.split((text or "").strip()):
        part = part.strip()
        if not part:
            continue
        if out and part[0].islower():
            out[-1] = f"{out[-1]} {part}"
        else:
            out.append(part)
    return out


def classify_sentence(sentence: str) -> Optional[Tuple[str, str, float, Optional[Signal]]]:
    """Type one sentence: (suggestion type, label, confidence, signal or None)."""

    signals = dedupe_signals(extract_signals_from_sentences([sentence]))
    if signals:
        best = max(signals, key=lambda s: s.confidence)
        return best.proposed_type, best.label, best.confidence, best
    if has_plan_change_eligibility(sentence):
        return "project_update", "update", 0.75, None
    score, tags = score_unit(normalize_unit(sentence))
    if score >= 0.7 and any(t in tags for t in _ASK_TAGS):
        return "idea", "idea", 0.7, None
    return None


def _title_for(section: ClassifiedSection, sentence: str, suggestion_type: str, signal: Optional[Signal]) -> str:
    heading = section.heading_text or ""
    if suggestion_type == "project_update" and heading and not is_generic_heading(heading):
        return f"Update: {heading.split(' > ')[-1]}"
    if signal is not None:
        return title_from_signal(signal, heading)
    return re.split(r"[,;]", sentence, maxsplit=1)[0].strip()


def extract_dense_paragraph_candidates(
    section: ClassifiedSection, state: SynthesisState, ctx: RunContext
) -> SynthesisState:
    if not is_dense_paragraph_section(section):
        return state

    owner = owner_section_id(section)
    for ln in section.section.content_lines():
        for sentence in split_dense_sentences(strip_list_marker(ln.text)):
            if len(sentence) < 12 or should_suppress_process_sentence(sentence):
                continue
            if state.is_covered(owner, sentence):
                continue
            # Grounding: the exact sentence must exist in the section text.
            if not contains_verbatim(section.raw_text, sentence):
                continue
            typed = classify_sentence(sentence)
            if typed is None:
                continue
            suggestion_type, label, confidence, signal = typed
            state = state.add(
                build_candidate(
                    section,
                    ctx,
                    suggestion_type=suggestion_type,
                    title=_title_for(section, sentence, suggestion_type, signal),
                    body=sentence,
                    spans=[sentence_span(section, sentence)],
                    source="dense_paragraph",
                    confidence=confidence,
                    id_prefix="dense",
                    label=label,
                    section_actionability=max(confidence, section.actionable_signal),
                    extra={"plan_change_eligible": has_plan_change_eligibility(sentence)},
                )
            )
    return state
