"""Collapse fragmented idea candidates from one structured bullet section."""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .candidates import MAX_EVIDENCE_PREVIEWS
from .classifiers import has_concrete_delta
from .context import RunContext
from .keys import compute_suggestion_key
from .logs import log_event
from .models import ClassifiedSection, DropReason, DropRecord, EvidenceSpan, Suggestion, SuggestionContext
from .rules import ENGAGEMENT_LOOP_TITLES, GAMIFICATION_RE, TIMELINE_TOKEN_RE, matched_terms


MAX_MERGED_SPANS = 5
MAX_BODY_SPANS = 4
MAX_CONSOLIDATED_BODY = 320
MIN_BULLETS = 3
GAMIFICATION_MIN_BULLETS = 4
GAMIFICATION_MIN_TERMS = 2
GAMIFICATION_FALLBACK_TITLE = "Gamify data collection"

_MARKER_RE = re.compile(r"^(?:[\s\-*+•]+|\d+[.)]\s*)")


def section_has_delta_signal(raw_text: str) -> bool:
    return bool(TIMELINE_TOKEN_RE.search(raw_text or "")) or has_concrete_delta(raw_text)


def is_consolidation_eligible(section: ClassifiedSection) -> bool:
    return (
        section.section.heading_level <= 3
        and section.features.num_list_items >= MIN_BULLETS
        and not section_has_delta_signal(section.raw_text)
    )


def merge_top_spans(candidates: Sequence[Suggestion], limit: int = MAX_MERGED_SPANS) -> List[EvidenceSpan]:
    seen: List[str] = []
    out: List[EvidenceSpan] = []
    for c in candidates:
        for span in c.evidence_spans:
            key = span.text.strip()
            if not key or key in seen:
                continue
            seen.append(key)
            out.append(span)
            if len(out) >= limit:
                return out
    return out


def build_consolidated_body(spans: Sequence[EvidenceSpan], limit: int = MAX_BODY_SPANS) -> str:
    parts = [_MARKER_RE.sub("", s.text.strip()).strip() for s in spans[:limit]]
    parts = [p for p in parts if p]
    if not parts:
        return ""
    joined = re.sub(r"\.+", ".", ". ".join(parts))
    joined = re.sub(r"\.\s*$", "", joined) + "."
    if len(joined) > MAX_CONSOLIDATED_BODY:
        return joined[: MAX_CONSOLIDATED_BODY - 3] + "…"
    return joined


def consolidated_title(section: ClassifiedSection, fallback: str) -> str:
    """Engagement-loop pattern, then the heading, then the fallback."""

    heading = (section.heading_text or "").split(" > ")[-1].strip()
    bullets = " ".join(ln.text for ln in section.body_lines if ln.line_type == "list_item")
    is_gamification = (
        section.features.num_list_items >= GAMIFICATION_MIN_BULLETS
        and len(matched_terms(GAMIFICATION_RE, bullets)) >= GAMIFICATION_MIN_TERMS
    )
    if is_gamification:
        for pattern, title in ENGAGEMENT_LOOP_TITLES:
            if pattern.search(bullets):
                return title
        return heading or GAMIFICATION_FALLBACK_TITLE
    return heading or fallback


def _merge_group(group: List[Suggestion], section: ClassifiedSection, ctx: RunContext) -> Suggestion:
    anchor = group[0]
    spans = merge_top_spans(group)
    title = consolidated_title(section, anchor.title)
    body = build_consolidated_body(spans) or anchor.body
    return replace(
        anchor,
        suggestion_id=ctx.next_suggestion_id("cons"),
        title=title,
        payload={"draft_initiative": {"title": title, "description": body}},
        evidence_spans=tuple(spans),
        suggestion_key=compute_suggestion_key(anchor.note_id, anchor.section_id, "idea", title),
        metadata={
            **anchor.metadata,
            "source": "consolidated",
            "consolidated_from": [s.suggestion_id for s in group],
        },
        context=SuggestionContext(
            title=title,
            body=body,
            evidence_preview=tuple(s.text.strip() for s in spans[:MAX_EVIDENCE_PREVIEWS] if s.text.strip()),
            source_section_id=anchor.section_id,
            source_heading=section.heading_text or "",
        ),
    )


def consolidate_by_section(
    suggestions: Sequence[Suggestion],
    sections: Mapping[str, ClassifiedSection],
    ctx: RunContext,
) -> Tuple[List[Suggestion], List[DropRecord]]:
    """Replace each qualifying all-idea group with one merged suggestion.

    The merged suggestion takes the position of the group's first member.
    """

    groups: Dict[str, List[Suggestion]] = {}
    for s in suggestions:
        groups.setdefault(s.section_id, []).append(s)

    out: List[Suggestion] = []
    drops: List[DropRecord] = []
    done: List[str] = []
    for s in suggestions:
        sid = s.section_id
        if sid in done:
            continue
        group = groups[sid]
        section: Optional[ClassifiedSection] = sections.get(sid)
        mergeable = (
            len(group) > 1
            and all(g.type == "idea" for g in group)
            and section is not None
            and is_consolidation_eligible(section)
        )
        if not mergeable:
            out.append(s)
            continue

        done.append(sid)
        merged = _merge_group(group, section, ctx)
        out.append(merged)
        for g in group:
            drops.append(
                DropRecord(
                    section_id=sid,
                    reason=DropReason.CONSOLIDATED,
                    stage="consolidation",
                    detail=f"merged into {merged.suggestion_id}",
                    suggestion_id=g.suggestion_id,
                )
            )
        log_event(logging.DEBUG, "consolidated section", section_id=sid, merged=len(group), into=merged.suggestion_id)
    return out, drops
