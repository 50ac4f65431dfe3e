"""Candidate construction and the accumulator threaded through synthesis strategies."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from .context import RunContext
from .keys import compute_suggestion_key
from .models import (
    ClassifiedSection,
    DropReason,
    DropRecord,
    EvidenceSpan,
    Line,
    Routing,
    Suggestion,
    SuggestionContext,
    SuggestionScores,
)
from .preprocessing import normalize_for_comparison
from .rules import strip_list_marker


MAX_BODY_CHARS = 300
MAX_EVIDENCE_PREVIEWS = 3

# Sources whose evidence must be verbatim in the section text.
GROUNDED_SOURCES = ("dense_paragraph", "signal_seed", "idea_semantic")


def owner_section_id(section: ClassifiedSection) -> str:
    """Top-level section a (possibly derived) section belongs to."""
    return section.section.parent_section_id or section.section_id


def cap_text(text: str, limit: int = MAX_BODY_CHARS) -> str:
    t = re.sub(r"[ \t]+", " ", (text or "").strip())
    if len(t) <= limit:
        return t
    cut = t[: limit - 1]
    space = cut.rfind(" ")
    if space > limit // 2:
        cut = cut[:space]
    return cut.rstrip(" ,;:-") + "…"


def join_sentences(parts: Sequence[str], limit: int = MAX_BODY_CHARS) -> str:
    cleaned: List[str] = []
    for p in parts:
        s = strip_list_marker(p).strip()
        if not s:
            continue
        if s[-1] not in ".!?…":
            s += "."
        s = s[:1].upper() + s[1:]
        if s not in cleaned:
            cleaned.append(s)
    return cap_text(" ".join(cleaned), limit)


def span_from_lines(lines: Sequence[Line]) -> EvidenceSpan:
    return EvidenceSpan(start_line=lines[0].index, end_line=lines[-1].index, text="\n".join(ln.text for ln in lines))


def spans_for_lines(lines: Sequence[Line]) -> Tuple[EvidenceSpan, ...]:
    """One span per line, ordered by position."""
    return tuple(span_from_lines([ln]) for ln in sorted(lines, key=lambda ln: ln.index))


def locate_line(section: ClassifiedSection, sentence: str) -> Optional[Line]:
    # Matching on a 40-char prefix tolerates sentences re-joined across punctuation.
    needle = (sentence or "").strip().lower()[:40]
    if not needle:
        return None
    for ln in section.section.content_lines():
        if needle in ln.text.lower():
            return ln
    return None


def sentence_span(section: ClassifiedSection, sentence: str) -> EvidenceSpan:
    ln = locate_line(section, sentence)
    if ln is None:
        return EvidenceSpan(start_line=section.section.start_line, end_line=section.section.end_line, text=sentence)
    return EvidenceSpan(start_line=ln.index, end_line=ln.index, text=sentence)


def build_candidate(
    section: ClassifiedSection,
    ctx: RunContext,
    *,
    suggestion_type: str,
    title: str,
    body: str,
    spans: Sequence[EvidenceSpan],
    source: str,
    confidence: float,
    id_prefix: str = "",
    title_source: str = "anchor",
    label: Optional[str] = None,
    section_actionability: Optional[float] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Suggestion:
    owner = owner_section_id(section)
    body = cap_text(body)
    if suggestion_type == "project_update":
        payload: Dict[str, Any] = {"after_description": body}
    else:
        payload = {"draft_initiative": {"title": title, "description": body}}

    if section_actionability is None:
        section_actionability = max(section.intent.get("plan_change", 0.0), section.intent.get("new_workstream", 0.0))

    metadata: Dict[str, Any] = {
        "source": source,
        "label": label or suggestion_type,
        "confidence": round(confidence, 4),
        "title_source": title_source,
    }
    if section.section.parent_section_id:
        metadata["sub_section_id"] = section.section_id
    if extra:
        metadata.update(extra)

    spans = tuple(spans)
    return Suggestion(
        suggestion_id=ctx.next_suggestion_id(id_prefix),
        note_id=section.note_id,
        section_id=owner,
        type=suggestion_type,
        title=title,
        payload=payload,
        evidence_spans=spans,
        scores=SuggestionScores(
            section_actionability=round(section_actionability, 4),
            type_choice_confidence=round(section.type_confidence or 0.5, 4),
            synthesis_confidence=round(confidence, 4),
        ),
        routing=Routing(),
        suggestion_key=compute_suggestion_key(section.note_id, owner, suggestion_type, title),
        metadata=metadata,
        context=SuggestionContext(
            title=title,
            body=body,
            evidence_preview=tuple(s.text for s in spans[:MAX_EVIDENCE_PREVIEWS]),
            source_section_id=owner,
            source_heading=section.heading_text or "",
        ),
    )


def retitle(candidate: Suggestion, title: str) -> Suggestion:
    """Replace the title everywhere it is mirrored (payload and context)."""

    payload = dict(candidate.payload)
    if "draft_initiative" in payload:
        payload["draft_initiative"] = {**payload["draft_initiative"], "title": title}
    context = replace(candidate.context, title=title) if candidate.context is not None else None
    return replace(candidate, title=title, payload=payload, context=context)


def retype(candidate: Suggestion, suggestion_type: str) -> Suggestion:
    """Switch the suggestion type, rebuilding the payload shape and the key."""

    body = candidate.body
    if suggestion_type == "project_update":
        payload: Dict[str, Any] = {"after_description": body}
    else:
        payload = {"draft_initiative": {"title": candidate.title, "description": body}}
    return replace(
        candidate,
        type=suggestion_type,
        payload=payload,
        suggestion_key=compute_suggestion_key(candidate.note_id, candidate.section_id, suggestion_type, candidate.title),
        metadata={**candidate.metadata, "retyped_from": candidate.type},
    )


@dataclass(frozen=True)
class SynthesisState:
    """Accumulator for the strategy fold.

    `covered` holds (owner section id, normalized evidence text) pairs so a later
    strategy never re-emits text an earlier one already used.
    """

    candidates: Tuple[Suggestion, ...] = ()
    covered: FrozenSet[Tuple[str, str]] = frozenset()
    drops: Tuple[DropRecord, ...] = ()
    keys: FrozenSet[str] = field(default_factory=frozenset)

    def is_covered(self, section_id: str, text: str) -> bool:
        norm = normalize_for_comparison(strip_list_marker(text))
        if not norm:
            return True
        return any(sid == section_id and (norm == c or norm in c) for sid, c in self.covered)

    def candidates_for(self, section_id: str) -> List[Suggestion]:
        return [c for c in self.candidates if c.section_id == section_id]

    def add(self, candidate: Suggestion) -> "SynthesisState":
        if candidate.suggestion_key in self.keys:
            return self.drop(
                DropRecord(
                    section_id=candidate.section_id,
                    reason=DropReason.DUPLICATE_KEY,
                    stage="synthesis",
                    detail=candidate.metadata.get("source", ""),
                    suggestion_id=candidate.suggestion_id,
                )
            )
        covered = set(self.covered)
        for span in candidate.evidence_spans:
            for part in span.text.split("\n"):
                norm = normalize_for_comparison(strip_list_marker(part))
                if norm:
                    covered.add((candidate.section_id, norm))
        return replace(
            self,
            candidates=self.candidates + (candidate,),
            covered=frozenset(covered),
            keys=self.keys | {candidate.suggestion_key},
        )

    def drop(self, record: DropRecord) -> "SynthesisState":
        return replace(self, drops=self.drops + (record,))
