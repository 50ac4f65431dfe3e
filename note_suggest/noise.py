from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence, Set

from .models import Line, Section
from .rules import (
    CONCERN_STATEMENT_RE,
    DECISION_STATUS_SUFFIX_RE,
    has_explicit_ask,
    is_role_assignment,
    starts_with_work_verb,
    strip_list_marker,
    tokenize,
)


PROCESS_NOISE_HEADINGS = (
    "next steps",
    "action items",
    "actions",
    "summary",
    "recap",
    "tl;dr",
    "tldr",
    "key takeaways",
    "takeaways",
    "follow ups",
    "follow-ups",
    "followups",
    "wrap up",
    "wrap-up",
)

PROCESS_NOISE_PHRASES = (
    re.compile(r"\bwho\s+owns?\b", re.IGNORECASE),
    re.compile(r"\bunclear\s+who\b", re.IGNORECASE),
    re.compile(r"\bambiguity\s+around\b", re.IGNORECASE),
    re.compile(r"\bambiguous\b", re.IGNORECASE),
    re.compile(r"\bhandover\b|\bhand[-\s]over\b", re.IGNORECASE),
    re.compile(r"\bsign.?off\b", re.IGNORECASE),
    re.compile(r"\bfinal\s+qa\b", re.IGNORECASE),
    re.compile(r"\bprocess\s+ownership\b", re.IGNORECASE),
    re.compile(r"\bownership\s+(?:of|around|for|issue|question|ambiguity|gap|problem|concern)\b", re.IGNORECASE),
)

DELIVERY_OWNERSHIP_ALLOWLIST = (
    re.compile(r"\bowner\s*:\s*\S", re.IGNORECASE),
    re.compile(r"\b(?:pm|eng|engineering|design|qa|cs|legal|security|product\s+manager|customer\s+success)\s+to\s+\w", re.IGNORECASE),
)

DERIVATIVE_OVERLAP = 0.7
_MIN_DERIVATIVE_TOKENS = 4


def _normalize_heading(heading: str) -> str:
    last = (heading or "").split(">")[-1]
    norm = re.sub(r"[^a-z0-9;\- ]+", " ", last.lower())
    return re.sub(r"\s+", " ", norm).strip(" -")


def is_process_noise_heading(heading: Optional[str]) -> bool:
    norm = _normalize_heading(heading or "")
    if not norm:
        return False
    return any(norm == h or norm.startswith(h + " ") for h in PROCESS_NOISE_HEADINGS)


def role_assignment_lines(section: Section) -> List[Line]:
    return [ln for ln in section.content_lines() if is_role_assignment(ln.text)]


def should_suppress_process_sentence(sentence: str) -> bool:
    """Ownership/process ambiguity chatter, unless it names a concrete owner."""

    text = sentence or ""
    if any(p.search(text) for p in DELIVERY_OWNERSHIP_ALLOWLIST):
        return False
    return any(p.search(text) for p in PROCESS_NOISE_PHRASES)


def is_bare_concern(text: str) -> bool:
    """Hedged risk phrasing with no ask and no concrete work verb."""

    s = strip_list_marker(text)
    if not CONCERN_STATEMENT_RE.search(s):
        return False
    return not (has_explicit_ask(s) or starts_with_work_verb(s))


def content_tokens(section: Section) -> Set[str]:
    return set(tokenize(" ".join(ln.text for ln in section.content_lines()), min_len=4))


def derivative_overlap(tokens: Set[str], earlier: Set[str]) -> float:
    if not tokens:
        return 0.0
    return len(tokens & earlier) / len(tokens)


def find_derivative_source(section: Section, earlier: Sequence[Section]) -> Optional[Section]:
    """Return the earlier section this one merely restates, if any."""

    tokens = content_tokens(section)
    if len(tokens) < _MIN_DERIVATIVE_TOKENS:
        return None
    for prev in earlier:
        if is_process_noise_heading(prev.heading_text):
            continue
        if derivative_overlap(tokens, content_tokens(prev)) >= DERIVATIVE_OVERLAP:
            return prev
    return None


_TABLE_SEPARATOR_RE = re.compile(r"^\s*\|?\s*:?-{3,}:?\s*(?:\|\s*:?-{3,}:?\s*)*\|?\s*$")


def is_table_row(text: str) -> bool:
    return (text or "").strip().count("|") >= 2


def is_table_separator(text: str) -> bool:
    return bool(_TABLE_SEPARATOR_RE.match(text or ""))


def decision_text(text: str) -> str:
    """First (decision) column of a table row, without trailing status markers."""

    s = strip_list_marker(text)
    if is_table_row(s):
        cells = [c.strip() for c in s.strip().strip("|").split("|")]
        s = next((c for c in cells if c), "")
    return DECISION_STATUS_SUFFIX_RE.sub("", s).strip()


def has_decision_markup(lines: Iterable[Line]) -> bool:
    for ln in lines:
        s = strip_list_marker(ln.text)
        if is_table_row(s) or DECISION_STATUS_SUFFIX_RE.search(s):
            return True
    return False


def dedupe_decisions(lines: Sequence[Line]) -> List[str]:
    seen: Set[str] = set()
    out: List[str] = []
    for i, ln in enumerate(lines):
        if is_table_separator(ln.text):
            continue
        # Header row of a markdown table.
        if i + 1 < len(lines) and is_table_separator(lines[i + 1].text):
            continue
        d = decision_text(ln.text)
        key = d.lower()
        if not d or key in seen:
            continue
        seen.add(key)
        out.append(d)
    return out
