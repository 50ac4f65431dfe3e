"""Final title pass: weak prefixes, imperative mood, type prefix, delta token, 80-char cap.

`normalize_title` is idempotent: feeding its output back in returns it unchanged.
"""

from __future__ import annotations

import re
from typing import Optional

from .rules import DATE_RE, DURATION_RE, QUARTER_RE, YEAR_RE


MAX_TITLE_CHARS = 80
MAX_CLEANUP_PASSES = 4

TYPE_PREFIXES = {
    "project_update": "Update",
    "risk": "Risk",
    "bug": "Bug",
}

# Prefixes any strategy may have put in front of a title; replaced by the type prefix.
_KNOWN_PREFIX_RE = re.compile(
    r"^(?:update|project\s+update|plan\s+change|risk|bug|idea|new\s+idea|new\s+initiative)\s*:\s*",
    re.IGNORECASE,
)

LEADING_MARKERS = (
    "suggestion:",
    "request for",
    "request to",
    "it would be good to",
    "it would be great to",
    "it would be nice to",
    "maybe we could",
    "maybe we should",
    "we should consider",
    "we should",
    "we could",
    "we need to",
    "consider",
    "could we",
    "should we",
    "let's",
    "lets",
    "please",
)
_LEADING_MARKER_RE = re.compile(
    r"^(?:" + "|".join(re.escape(m).replace(r"\ ", " ").replace(" ", r"\s+") for m in LEADING_MARKERS) + r")(?:\s+|$)",
    re.IGNORECASE,
)

WEAK_VERB_MAP = (
    (re.compile(r"^(?:explore|research|look\s+into)\b", re.IGNORECASE), "Investigate"),
    (re.compile(r"^(?:check\s+out|think\s+about|test)\b", re.IGNORECASE), "Evaluate"),
)
_OPEN_QUESTION_RE = re.compile(r"^\S+(?:\s+(?:into|out|about))?\s+(?:whether|if|how)\b", re.IGNORECASE)

_FILLER_RE = re.compile(r"^(\S+)\s+(?:also|maybe|probably|perhaps|possibly|just|basically)\s+", re.IGNORECASE)

_DEADLINE_RE = re.compile(
    r"\s+(?:by|before|until|due)\s+(?:eod|eow|end\s+of\s+(?:day|week|month|quarter|year)|next\s+week|tomorrow|"
    r"monday|tuesday|wednesday|thursday|friday|[a-z]{3,9}\s+\d{1,2}(?:st|nd|rd|th)?)$",
    re.IGNORECASE,
)

_CREATION_NOUN_RE = re.compile(r"^(?:dashboard|report|page|tool|integration|api|feature|workflow|banner|alert|alerts|export|template|onboarding)\b", re.IGNORECASE)
_TRAILING_CONNECTOR_RE = re.compile(r"(?:[\s,;:\-]+(?:and|or|to|the|of|for|with|a|an|in|on|by|from|at|but))+$", re.IGNORECASE)


def _squash(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def _lower_first(text: str) -> str:
    if len(text) >= 2 and text[0].isupper() and text[1].islower():
        return text[0].lower() + text[1:]
    return text


def _capitalize(text: str) -> str:
    return text[:1].upper() + text[1:] if text else text


def strip_weak_prefixes(title: str) -> str:
    t = _squash(title)
    while True:
        nxt = _LEADING_MARKER_RE.sub("", t, count=1).strip()
        if nxt == t or not nxt:
            return t
        t = nxt


def apply_weak_verb_map(title: str) -> str:
    if _OPEN_QUESTION_RE.match(title):
        return title
    for pattern, verb in WEAK_VERB_MAP:
        if pattern.match(title):
            return pattern.sub(verb, title, count=1)
    return title


def infer_strong_verb(core: str) -> str:
    words = core.split()
    if not words:
        return core
    first = words[0].lower()
    if first == "better":
        return "Improve " + " ".join(words[1:])
    if first == "more":
        return "Add " + core
    if first == "new":
        return "Add " + _lower_first(core)
    if _CREATION_NOUN_RE.match(core):
        return "Add " + _lower_first(core)
    return core


def extract_delta_token(text: str) -> Optional[str]:
    for pattern in (DURATION_RE, DATE_RE, QUARTER_RE, YEAR_RE):
        m = pattern.search(text or "")
        if m:
            return _squash(m.group(0))
    return None


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    cut = text[:limit]
    if text[limit] != " ":
        space = cut.rfind(" ")
        if space > 0:
            cut = cut[:space]
    cut = _TRAILING_CONNECTOR_RE.sub("", cut.rstrip(" ,;:-"))
    return cut.rstrip(" ,;:-")


def _strip_leading(core: str) -> str:
    while True:
        before = core
        core = _KNOWN_PREFIX_RE.sub("", core, count=1)
        core = strip_weak_prefixes(core)
        if core == before:
            return core


def _strip_trailing(core: str) -> str:
    while True:
        before = core
        core = _DEADLINE_RE.sub("", core)
        core = _TRAILING_CONNECTOR_RE.sub("", core).rstrip(".;:,! -")
        if core == before:
            return core


def _clean_core(title: str, suggestion_type: str) -> str:
    core = _strip_leading(_squash(title).rstrip(".;:,! "))
    core = apply_weak_verb_map(core)
    while _FILLER_RE.match(core):
        core = _FILLER_RE.sub(r"\1 ", core, count=1)
    core = _strip_trailing(core)
    if suggestion_type == "idea":
        core = infer_strong_verb(core)
    return _capitalize(core.strip())


def normalize_title(title: str, suggestion_type: str, evidence_text: str = "") -> str:
    core = _clean_core(title, suggestion_type)
    # One cleanup step can expose another ("We also should ..." loses its filler, then its marker).
    for _ in range(MAX_CLEANUP_PASSES):
        again = _clean_core(core, suggestion_type)
        if again == core:
            break
        core = again
    core = core or "Review section"

    prefix = f"{TYPE_PREFIXES[suggestion_type]}: " if suggestion_type in TYPE_PREFIXES else ""
    room = MAX_TITLE_CHARS - len(prefix)
    token = extract_delta_token(evidence_text) if suggestion_type == "project_update" else None
    suffix = f" ({token})" if token and extract_delta_token(core) is None else ""
    if len(core) + len(suffix) > room:
        # A delta inside the core may not survive the cut, so reserve room for the suffix first.
        suffix = f" ({token})" if token else ""
        core = _strip_trailing(_truncate(core, room - len(suffix)))
        if suffix and extract_delta_token(core) is not None:
            suffix = ""
    return prefix + core + suffix
