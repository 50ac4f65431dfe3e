"""Debug ledger built from the pipeline trace.

`build_debug_ledger` only reads the trace the engine already produced, so
the ledger can never disagree with the decisions that were actually made.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import asdict
from typing import Any, Dict, List, Mapping, Optional

from .models import DropReason
from .routing import compute_routing_stats
from .rules import RULES_VERSION


VERBOSITY_LEVELS = ("off", "redacted", "full")
PREVIEW_CHARS = 60

_EMAIL_RE = re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", re.IGNORECASE)
_SSN_RE = re.compile(r"\b\d{3}-\d{2}-\d{4}\b")
_CARD_RE = re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b")
_PHONE_RE = re.compile(r"(?:\+\d{1,3}[\s-]?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}\b")

VALIDATOR_DROP_REASONS = (
    DropReason.ANTI_VACUITY,
    DropReason.EVIDENCE_SANITY,
    DropReason.HEADING_ONLY,
    DropReason.INTERNAL_ERROR,
)


def redact_text(raw: str) -> str:
    out = _EMAIL_RE.sub("[email]", raw or "")
    out = _SSN_RE.sub("[ssn]", out)
    out = _CARD_RE.sub("[card]", out)
    return _PHONE_RE.sub("[phone]", out)


def fingerprint(text: str) -> str:
    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()[:16]


def make_preview(raw: str, max_len: int = PREVIEW_CHARS) -> str:
    t = redact_text((raw or "").strip())
    return t if len(t) <= max_len else t[:max_len] + "…"


def render_text(text: Optional[str], verbosity: str) -> Any:
    if text is None:
        return None
    if verbosity == "full":
        return text
    return {"preview": make_preview(text), "sha256": fingerprint(text)}


def normalize_verbosity(value: Optional[str]) -> str:
    v = (value or "redacted").strip().lower().replace("-", "_")
    if v in ("full_text", "full"):
        return "full"
    if v in VERBOSITY_LEVELS:
        return v
    raise ValueError(f"Unknown debug verbosity: {value!r} (expected one of {', '.join(VERBOSITY_LEVELS)})")


def compute_counters(trace: Mapping[str, Any]) -> Dict[str, Any]:
    drops = list(trace.get("drops") or [])
    final = list(trace.get("suggestions") or [])
    classified = list(trace.get("classified") or [])
    by_reason: Dict[str, int] = {}
    for d in drops:
        by_reason[d.reason.value] = by_reason.get(d.reason.value, 0) + 1

    routing = compute_routing_stats(final)
    return {
        "sections_count": len(trace.get("sections") or []),
        "actionable_sections_count": sum(1 for c in classified if c.is_actionable),
        "suggestions_before_validation": len(trace.get("candidates") or []),
        "suggestions_after_validation": int(trace.get("validated_count", 0)),
        "suggestions_after_scoring": int(trace.get("scored_count", 0)),
        "validator_drops": {r.value: by_reason.get(r.value, 0) for r in VALIDATOR_DROP_REASONS},
        "drops_by_reason": by_reason,
        "plan_change_count": sum(1 for c in classified if c.intent_label == "plan_change"),
        "plan_change_emitted_count": sum(1 for s in final if s.type == "project_update"),
        "low_confidence_downgraded_count": int(trace.get("downgraded", 0)),
        "high_confidence_count": sum(1 for s in final if s.is_high_confidence),
        "routing_attached": routing["attached"],
        "routing_create_new": routing["create_new"],
    }


def _candidate_entry(s: Any, status: str, drop: Any, validation: Any, verbosity: str) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "suggestion_id": s.suggestion_id,
        "section_id": s.section_id,
        "type": s.type,
        "source": s.source,
        "title": render_text(s.title, verbosity),
        "body": render_text(s.body, verbosity),
        "evidence": [
            {"start_line": e.start_line, "end_line": e.end_line, "text": render_text(e.text, verbosity)}
            for e in s.evidence_spans
        ],
        "scores": {k: round(v, 4) for k, v in asdict(s.scores).items()},
        "validation": list(validation or []),
        "status": status,
    }
    if drop is not None:
        entry["drop"] = drop.to_dict()
    return entry


def build_debug_ledger(trace: Mapping[str, Any], verbosity: str = "redacted") -> Optional[Dict[str, Any]]:
    """Per-section and per-candidate ledger. Returns None when verbosity is `off`."""

    verbosity = normalize_verbosity(verbosity)
    if verbosity == "off":
        return None

    drops = list(trace.get("drops") or [])
    drop_by_id = {d.suggestion_id: d for d in drops if d.suggestion_id}
    final_by_id = {s.suggestion_id: s for s in trace.get("suggestions") or []}
    validation: Mapping[str, Any] = trace.get("validation") or {}

    candidates: List[Dict[str, Any]] = []
    seen = set()
    for s in list(trace.get("candidates") or []) + list(trace.get("suggestions") or []):
        if s.suggestion_id in seen:
            continue
        seen.add(s.suggestion_id)
        status = "emitted" if s.suggestion_id in final_by_id else "dropped"
        # Emitted entries show the final (scored, retitled) suggestion.
        s = final_by_id.get(s.suggestion_id, s)
        candidates.append(_candidate_entry(s, status, drop_by_id.get(s.suggestion_id), validation.get(s.suggestion_id), verbosity))

    sections: List[Dict[str, Any]] = []
    for c in trace.get("classified") or []:
        sid = c.section_id
        entry = c.to_dict()
        entry["heading_text"] = render_text(c.heading_text, verbosity)
        entry["line_range"] = [c.section.start_line, c.section.end_line]
        entry["candidate_ids"] = [x["suggestion_id"] for x in candidates if x["section_id"] == sid]
        entry["emitted_ids"] = [x["suggestion_id"] for x in candidates if x["section_id"] == sid and x["status"] == "emitted"]
        entry["drops"] = [d.to_dict() for d in drops if d.section_id == sid]
        sections.append(entry)

    thresholds = trace.get("thresholds")
    return {
        "verbosity": verbosity,
        "rules_version": RULES_VERSION,
        "note_id": trace.get("note_id"),
        "thresholds": asdict(thresholds) if thresholds is not None else None,
        "counters": compute_counters(trace),
        "invariants": dict(trace.get("invariants") or {}),
        "sections": sections,
        "candidates": candidates,
    }
