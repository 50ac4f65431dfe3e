from __future__ import annotations

import re
from typing import List, Optional, Sequence, Tuple

from .context import RunContext
from .models import Line, NoteInput, Section, StructuralFeatures
from .rules import (
    DATE_RE,
    INITIATIVE_PHRASE_RE,
    LAUNCH_RE,
    METRIC_RE,
    QUARTER_RE,
    VERSION_RE,
    YEAR_RE,
    starts_with_work_verb,
)


_FENCE_RE = re.compile(r"^\s*(?:```|~~~)")
_HASH_HEADING_RE = re.compile(r"^\s{0,3}(#{1,6})\s+(.*?)\s*#*\s*$")
# Column 0 only; the same pattern indented is a list item.
_NUMBERED_HEADING_RE = re.compile(r"^\d+\.\s+\S")
_BULLET_RE = re.compile(r"^\s*[-*+•]\s+\S")
_NUMBERED_ITEM_RE = re.compile(r"^\s*\d+[.)]\s+\S")
_RULE_LINE_RE = re.compile(r"^\s*([-*_])(?:\s*\1){2,}\s*$")
_MONTH_NAME_RE = re.compile(
    r"\b(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|june?|july?|aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\b",
    re.IGNORECASE,
)


def normalize_newlines(text: str) -> str:
    return (text or "").replace("\r\n", "\n").replace("\r", "\n")


def normalize_for_comparison(text: str) -> str:
    t = (text or "").lower()
    t = re.sub(r"[^\w\s]", "", t)
    return re.sub(r"\s+", " ", t).strip()


def contains_verbatim(haystack: str, needle: str) -> bool:
    """Case-insensitive substring test that ignores whitespace runs."""
    n = re.sub(r"\s+", " ", (needle or "").lower()).strip()
    if not n:
        return True
    return n in re.sub(r"\s+", " ", (haystack or "").lower())


def split_sentences(text: str) -> List[str]:
    """Split on sentence-final punctuation and ellipses. Keeps source order."""
    parts = re.split(r"(?<=[.!?])\s+|\.{3,}\s*|…\s*", text or "")
    return [p.strip() for p in parts if p and p.strip()]


def _indent_level(text: str) -> int:
    m = re.match(r"^[ \t]*", text)
    lead = m.group(0) if m else ""
    return len(lead.replace("\t", "  ")) // 2


def heading_text_of(text: str) -> str:
    m = _HASH_HEADING_RE.match(text)
    if m:
        return m.group(2).strip()
    return re.sub(r"^\d+\.\s+", "", text.strip()).strip()


def annotate_lines(markdown: str) -> List[Line]:
    lines: List[Line] = []
    in_fence = False
    for idx, text in enumerate(normalize_newlines(markdown).split("\n")):
        if _FENCE_RE.match(text):
            in_fence = not in_fence
            lines.append(Line(index=idx, text=text, line_type="code", indent_level=_indent_level(text)))
            continue
        if in_fence:
            lines.append(Line(index=idx, text=text, line_type="code", indent_level=_indent_level(text)))
            continue
        if not text.strip() or _RULE_LINE_RE.match(text):
            lines.append(Line(index=idx, text=text, line_type="blank"))
            continue

        hm = _HASH_HEADING_RE.match(text)
        if hm and hm.group(2):
            lines.append(Line(index=idx, text=text, line_type="heading", heading_level=len(hm.group(1))))
            continue
        if _NUMBERED_HEADING_RE.match(text):
            lines.append(Line(index=idx, text=text, line_type="heading", heading_level=2))
            continue
        if _BULLET_RE.match(text) or _NUMBERED_ITEM_RE.match(text):
            lines.append(Line(index=idx, text=text, line_type="list_item", indent_level=_indent_level(text)))
            continue
        lines.append(Line(index=idx, text=text, line_type="paragraph", indent_level=_indent_level(text)))

    return _promote_plain_headings(lines)


def _looks_like_plain_heading(text: str) -> bool:
    s = text.strip()
    if not s or len(s) > 40 or len(s.split()) > 6:
        return False
    if s[-1] in ".?!:;,":
        return False
    if not s[0].isupper():
        return False
    return not starts_with_work_verb(s)


def _promote_plain_headings(lines: List[Line]) -> List[Line]:
    # Only for notes with no markdown or numbered headings at all.
    if any(ln.line_type == "heading" for ln in lines):
        return lines

    out = list(lines)
    for i, ln in enumerate(lines):
        if ln.line_type != "paragraph" or ln.indent_level:
            continue
        prev_blank = i == 0 or lines[i - 1].line_type == "blank"
        nxt = next((x for x in lines[i + 1:] if x.line_type != "blank"), None)
        if not prev_blank or nxt is None or nxt.line_type not in ("paragraph", "list_item"):
            continue
        if _looks_like_plain_heading(ln.text):
            out[i] = Line(index=ln.index, text=ln.text, line_type="heading", heading_level=3)
    return out


def compute_structural_features(lines: Sequence[Line]) -> StructuralFeatures:
    content = [ln for ln in lines if ln.line_type not in ("blank", "code") and ln.text.strip()]
    text = "\n".join(ln.text for ln in content)
    words = len(text.split())
    phrase_hits = len(INITIATIVE_PHRASE_RE.findall(text))
    density = min(1.0, phrase_hits / max(1.0, words / 10.0)) if words else 0.0
    return StructuralFeatures(
        num_lines=len(content),
        num_list_items=sum(1 for ln in content if ln.line_type == "list_item"),
        has_dates=bool(DATE_RE.search(text) or _MONTH_NAME_RE.search(text) or YEAR_RE.search(text)),
        has_metrics=bool(METRIC_RE.search(text)),
        has_quarter_refs=bool(QUARTER_RE.search(text)),
        has_version_refs=bool(VERSION_RE.search(text)),
        has_launch_keywords=bool(LAUNCH_RE.search(text)),
        initiative_phrase_density=round(density, 4),
    )


def _trim_blank(lines: List[Line]) -> List[Line]:
    start = 0
    end = len(lines)
    while start < end and lines[start].line_type == "blank":
        start += 1
    while end > start and lines[end - 1].line_type == "blank":
        end -= 1
    return lines[start:end]


def build_section(
    *,
    section_id: str,
    note_id: str,
    heading_text: Optional[str],
    heading_level: int,
    start_line: int,
    body: List[Line],
    parent_section_id: Optional[str] = None,
) -> Section:
    end_line = body[-1].index if body else start_line
    return Section(
        section_id=section_id,
        note_id=note_id,
        heading_text=heading_text,
        heading_level=heading_level,
        start_line=start_line,
        end_line=end_line,
        body_lines=tuple(body),
        structural_features=compute_structural_features(body),
        raw_text="\n".join(ln.text for ln in body),
        parent_section_id=parent_section_id,
    )


def segment_sections(lines: Sequence[Line], note_id: str, ctx: RunContext) -> List[Section]:
    sections: List[Section] = []

    heading: Optional[str] = None
    level = 0
    start = 0
    body: List[Line] = []
    carried: Optional[Tuple[str, int]] = None  # empty parent heading text + its line

    def close() -> None:
        nonlocal carried
        trimmed = _trim_blank(body)
        has_content = any(ln.line_type != "blank" for ln in trimmed)
        if has_content:
            sections.append(
                build_section(
                    section_id=ctx.next_section_id(),
                    note_id=note_id,
                    heading_text=heading,
                    heading_level=level,
                    start_line=start if heading is not None else trimmed[0].index,
                    body=trimmed,
                )
            )
            carried = None
        elif heading is not None:
            carried = (heading, start)

    for ln in lines:
        if ln.line_type != "heading":
            body.append(ln)
            continue
        close()
        text = heading_text_of(ln.text)
        if carried is not None:
            heading = f"{carried[0]} > {text}"
            start = carried[1]
        else:
            heading = text
            start = ln.index
        level = ln.heading_level or 2
        body = []
    close()
    return sections


def preprocess_note(note: NoteInput, ctx: Optional[RunContext] = None) -> Tuple[List[Line], List[Section]]:
    ctx = ctx or RunContext(note.note_id)
    if not (note.raw_markdown or "").strip():
        return [], []
    lines = annotate_lines(note.raw_markdown)
    return lines, segment_sections(lines, note.note_id, ctx)


def derive_sub_section(parent: Section, body: List[Line], *, marker: str, heading_text: Optional[str] = None) -> Section:
    """Read-only view over a contiguous slice of `parent`'s body lines."""

    trimmed = _trim_blank(list(body))
    return build_section(
        section_id=f"{parent.section_id}__{marker}",
        note_id=parent.note_id,
        heading_text=heading_text if heading_text is not None else parent.heading_text,
        heading_level=parent.heading_level,
        start_line=trimmed[0].index if trimmed else parent.start_line,
        body=trimmed,
        parent_section_id=parent.section_id,
    )
