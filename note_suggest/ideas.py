"""Idea strategies that ignore the actionability gate: semantic ideas and the structural bypass."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List

from .candidates import SynthesisState, build_candidate, join_sentences, owner_section_id, sentence_span, spans_for_lines
from .classifiers import has_concrete_delta
from .context import RunContext
from .models import ClassifiedSection
from .preprocessing import contains_verbatim
from .rules import (
    SEMANTIC_CONSTRUCT_RE,
    SEMANTIC_MECHANISM_RE,
    SEMANTIC_STRATEGY_RE,
    TIMELINE_TOKEN_RE,
    is_generic_heading,
    matched_terms,
    strip_list_marker,
)


@dataclass(frozen=True)
class SemanticMatch:
    strategy: int
    mechanism: int
    construct: int

    @property
    def total(self) -> int:
        return self.strategy + self.mechanism + 2 * self.construct

    @property
    def passes(self) -> bool:
        if self.total < 2:
            return False
        return (self.strategy >= 1 or self.construct >= 1) and (self.mechanism >= 1 or self.construct >= 1)


def match_semantic_tokens(text: str) -> SemanticMatch:
    return SemanticMatch(
        strategy=len(matched_terms(SEMANTIC_STRATEGY_RE, text)),
        mechanism=len(matched_terms(SEMANTIC_MECHANISM_RE, text)),
        construct=len(matched_terms(SEMANTIC_CONSTRUCT_RE, text)),
    )


def _usable_heading(section: ClassifiedSection) -> bool:
    heading = (section.heading_text or "").split(" > ")[-1].strip()
    if not heading or not (1 <= section.section.heading_level <= 3):
        return False
    if len(heading) <= 6 and " " not in heading:
        return False
    return not is_generic_heading(heading)


def _paragraphs(raw_text: str) -> List[str]:
    return [p.strip() for p in re.split(r"\n\s*\n", raw_text) if len(p.strip()) >= 20]


def best_evidence_sentence(text: str) -> str:
    sentences = [strip_list_marker(s) for s in re.split(r"(?<=[.!?])\s+|\n", text)]
    sentences = [s for s in sentences if len(s) >= 10]
    if not sentences:
        return text.strip()
    best, best_count = sentences[0], 0
    for s in sentences:
        count = match_semantic_tokens(s).total
        if count > best_count:
            best, best_count = s, count
    return best


_TITLE_NOISE_RE = re.compile(r"^(?:(?:we|i|they|it)\s+(?:should|will|need\s+to|plan\s+to|want\s+to|can)\s+)?(?:(?:use|using|introduce|introducing)\b)?\s*", re.IGNORECASE)
_AFTER_MECHANISM_RE = re.compile(r"\b(?:introduce|use|extend|calculate|integrate|automate|parse|upload|layer)\s+([^,.;!?\n]{5,60})", re.IGNORECASE)


def derive_semantic_title(sentence: str) -> str:
    m = _AFTER_MECHANISM_RE.search(sentence)
    phrase = m.group(1) if m else re.split(r"[,;]", sentence, maxsplit=1)[0]
    phrase = _TITLE_NOISE_RE.sub("", phrase.strip()).strip()
    if len(phrase) > 60:
        cut = phrase[:60]
        phrase = cut[: cut.rfind(" ")] if " " in cut else cut
    return phrase[:1].upper() + phrase[1:]


def extract_semantic_ideas(section: ClassifiedSection, state: SynthesisState, ctx: RunContext) -> SynthesisState:
    owner = owner_section_id(section)
    raw = section.raw_text

    if _usable_heading(section):
        # One candidate for the section, titled by its heading.
        match = match_semantic_tokens(f"{section.heading_text} {raw}")
        if not match.passes:
            return state
        units = [(raw, section.heading_text.split(" > ")[-1].strip(), "semantic_heading", match)]
    else:
        paragraphs = _paragraphs(raw)
        units = []
        for para in paragraphs if len(paragraphs) >= 2 else [raw]:
            match = match_semantic_tokens(para)
            if match.passes:
                units.append((para, "", "semantic", match))

    for text, title, title_source, match in units:
        sentence = best_evidence_sentence(text)
        if not sentence or state.is_covered(owner, sentence) or not contains_verbatim(raw, sentence):
            continue
        confidence = min(0.75, 0.6 + match.total * 0.05)
        state = state.add(
            build_candidate(
                section,
                ctx,
                suggestion_type="idea",
                title=title or derive_semantic_title(sentence),
                body=sentence,
                spans=[sentence_span(section, sentence)],
                source="idea_semantic",
                confidence=confidence,
                id_prefix="idea",
                title_source=title_source,
                section_actionability=max(confidence, section.actionable_signal),
            )
        )
    return state


BYPASS_MIN_CHARS = 150
BYPASS_MIN_BULLETS = 3
BYPASS_MAX_BULLETS = 4


def is_structural_bypass_eligible(section: ClassifiedSection) -> bool:
    sec = section.section
    if not (1 <= sec.heading_level <= 3) or not sec.heading_text:
        return False
    if sec.structural_features.num_list_items < BYPASS_MIN_BULLETS:
        return False
    if is_generic_heading(sec.heading_text.split(" > ")[-1]):
        return False
    if TIMELINE_TOKEN_RE.search(sec.raw_text) or has_concrete_delta(sec.raw_text):
        return False
    return len(sec.raw_text) >= BYPASS_MIN_CHARS


def structural_idea_bypass(section: ClassifiedSection, state: SynthesisState, ctx: RunContext) -> SynthesisState:
    """Last resort for a well-structured section nothing else picked up."""

    if not is_structural_bypass_eligible(section):
        return state
    if state.candidates_for(owner_section_id(section)):
        return state

    bullets = [ln for ln in section.section.content_lines() if ln.line_type == "list_item"][:BYPASS_MAX_BULLETS]
    return state.add(
        build_candidate(
            section,
            ctx,
            suggestion_type="idea",
            title=section.heading_text.split(" > ")[-1].strip(),
            body=join_sentences([ln.text for ln in bullets]),
            spans=spans_for_lines(bullets),
            source="structural_bypass",
            confidence=0.65,
            id_prefix="bypass",
            title_source="structural_bypass",
            section_actionability=max(0.65, section.actionable_signal),
        )
    )
