"""Hard quality gates run on every candidate, plus the global grounding pass."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .candidates import GROUNDED_SOURCES
from .logs import log_event
from .models import DropReason, DropRecord, EvidenceSpan, Section, Suggestion, ThresholdConfig
from .preprocessing import contains_verbatim, normalize_for_comparison


GENERIC_VERBS = frozenset(
    """
    improve optimize align streamline clarify enhance coordinate prioritize manage facilitate leverage
    synergize enable empower drive ensure support address discuss review assess evaluate
    """.split()
)

GENERIC_NOUNS = frozenset(
    """
    process communication stakeholders priorities efficiency operations alignment workflows collaboration
    productivity visibility transparency accountability ownership outcomes deliverables resources bandwidth
    capacity synergy impact value
    """.split()
)

COMMON_WORDS = frozenset(
    """
    about after again also because before being both could does doing during each even every first from
    going good have having here into just know last like make many more most much need only other over
    same should some such take than that their them then there these they thing this those through time
    very want well what when where which while will with would your
    """.split()
)

TITLE_GENERIC_MAX = 0.7
MIN_EVIDENCE_NON_WS = 20
MAX_ERROR_CHARS = 200


@dataclass(frozen=True)
class ValidationResult:
    validator: str
    passed: bool
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"validator": self.validator, "passed": self.passed}
        if self.reason:
            out["reason"] = self.reason
        return out


@dataclass(frozen=True)
class ValidationOutcome:
    passed: bool
    results: Tuple[ValidationResult, ...]
    failure: Optional[DropRecord] = None


def _tokens(text: str) -> List[str]:
    return [w for w in re.split(r"\s+", re.sub(r"[^a-z0-9\s]", " ", (text or "").lower())) if len(w) > 2]


def compute_generic_ratio(text: str) -> float:
    tokens = _tokens(text)
    if not tokens:
        return 0.0
    return sum(1 for t in tokens if t in GENERIC_VERBS or t in GENERIC_NOUNS) / len(tokens)


def extract_domain_nouns(text: str) -> List[str]:
    out: List[str] = []
    for t in _tokens(text):
        if len(t) < 4 or t in GENERIC_VERBS or t in GENERIC_NOUNS or t in COMMON_WORDS:
            continue
        if t not in out:
            out.append(t)
    return out


def _heading_leaf(section: Section) -> str:
    return (section.heading_text or "").split(" > ")[-1]


def validate_anti_vacuity(suggestion: Suggestion, section: Section, thresholds: ThresholdConfig) -> ValidationResult:
    name = "anti_vacuity"
    if suggestion.type == "project_update":
        return ValidationResult(name, True, "project_update bypass")
    text = f"{suggestion.title} {suggestion.body}"
    ratio = compute_generic_ratio(text)
    nouns = extract_domain_nouns(section.raw_text)
    if ratio > thresholds.T_generic and len(nouns) < 2:
        return ValidationResult(name, False, f"too generic (ratio {ratio:.2f}, domain nouns {len(nouns)})")

    title_ratio = compute_generic_ratio(suggestion.title)
    if title_ratio > TITLE_GENERIC_MAX:
        return ValidationResult(name, False, f"title too generic (ratio {title_ratio:.2f})")

    # "New idea: <Heading>" with nothing behind it restates the heading.
    m = re.match(r"^new\s+idea\s*:\s*(.*)$", suggestion.title, re.IGNORECASE)
    if m and not suggestion.metadata.get("has_explicit_ask"):
        if normalize_for_comparison(m.group(1)) == normalize_for_comparison(_heading_leaf(section)):
            return ValidationResult(name, False, "title restates the heading")
    return ValidationResult(name, True)


def ungrounded_spans(suggestion: Suggestion, section: Section) -> List[EvidenceSpan]:
    """Spans whose lines are not verbatim (case-insensitive) in the section text."""

    out: List[EvidenceSpan] = []
    for span in suggestion.evidence_spans:
        for part in span.text.split("\n"):
            if part.strip() and not contains_verbatim(section.raw_text, part):
                out.append(span)
                break
    return out


def validate_evidence_sanity(suggestion: Suggestion, section: Section, thresholds: ThresholdConfig) -> ValidationResult:
    name = "evidence_sanity"
    spans = suggestion.evidence_spans
    if not spans:
        return ValidationResult(name, False, "no evidence spans")
    for span in spans:
        if not span.text.strip():
            return ValidationResult(name, False, "empty evidence span")
        if span.start_line > span.end_line or span.start_line < section.start_line or span.end_line > section.end_line:
            return ValidationResult(name, False, f"span {span.start_line}-{span.end_line} outside section bounds")

    if suggestion.source in GROUNDED_SOURCES:
        if ungrounded_spans(suggestion, section):
            return ValidationResult(name, False, "evidence not verbatim in section text")
    else:
        normalized_section = normalize_for_comparison(section.raw_text)
        for span in spans:
            norm = normalize_for_comparison(span.text)
            if norm not in normalized_section and norm[:50] not in normalized_section:
                return ValidationResult(name, False, "evidence does not match section content")

    if suggestion.type == "project_update":
        return ValidationResult(name, True)

    section_chars = len(re.sub(r"\s", "", section.raw_text))
    evidence_chars = sum(len(re.sub(r"\s", "", s.text)) for s in spans)
    if section_chars < MIN_EVIDENCE_NON_WS and evidence_chars < MIN_EVIDENCE_NON_WS:
        return ValidationResult(name, False, f"evidence too short ({evidence_chars} chars)")
    return ValidationResult(name, True)


def validate_heading_only(suggestion: Suggestion, section: Section, thresholds: ThresholdConfig) -> ValidationResult:
    name = "heading_only"
    if suggestion.type != "idea":
        return ValidationResult(name, True)
    heading_derived = suggestion.metadata.get("title_source") == "heading"
    if heading_derived and not suggestion.metadata.get("has_explicit_ask"):
        return ValidationResult(name, False, "title comes from the heading alone")
    return ValidationResult(name, True)


Validator = Callable[[Suggestion, Section, ThresholdConfig], ValidationResult]

VALIDATORS: Tuple[Tuple[Validator, DropReason], ...] = (
    (validate_anti_vacuity, DropReason.ANTI_VACUITY),
    (validate_evidence_sanity, DropReason.EVIDENCE_SANITY),
    (validate_heading_only, DropReason.HEADING_ONLY),
)


def run_quality_validators(suggestion: Suggestion, section: Section, thresholds: ThresholdConfig) -> ValidationOutcome:
    """Run every gate in order, stopping at the first failure.

    Exceptions never escape: they become an internal_error drop for this
    candidate only.
    """

    results: List[ValidationResult] = []
    for validator, reason in VALIDATORS:
        try:
            result = validator(suggestion, section, thresholds)
        except Exception as e:
            message = f"internal error: {str(e)[:MAX_ERROR_CHARS]}"
            log_event(logging.ERROR, "validator raised", suggestion_id=suggestion.suggestion_id, error=message)
            results.append(ValidationResult("internal", False, message))
            record = DropRecord(
                section_id=suggestion.section_id,
                reason=DropReason.INTERNAL_ERROR,
                stage="validation",
                detail=message,
                suggestion_id=suggestion.suggestion_id,
            )
            return ValidationOutcome(passed=False, results=tuple(results), failure=record)

        results.append(result)
        if not result.passed:
            record = DropRecord(
                section_id=suggestion.section_id,
                reason=reason,
                stage="validation",
                detail=result.reason,
                suggestion_id=suggestion.suggestion_id,
            )
            return ValidationOutcome(passed=False, results=tuple(results), failure=record)
    return ValidationOutcome(passed=True, results=tuple(results))


def check_grounding(
    suggestions: Sequence[Suggestion], sections: Mapping[str, Section]
) -> Tuple[List[Suggestion], List[DropRecord]]:
    """Global anti-hallucination pass: re-check verbatim evidence after validation."""

    kept: List[Suggestion] = []
    drops: List[DropRecord] = []
    for s in suggestions:
        section = sections.get(s.section_id)
        if s.source in GROUNDED_SOURCES and (section is None or ungrounded_spans(s, section)):
            log_event(logging.CRITICAL, "ungrounded evidence past validation", suggestion_id=s.suggestion_id, section_id=s.section_id)
            drops.append(
                DropRecord(
                    section_id=s.section_id,
                    reason=DropReason.UNGROUNDED_EVIDENCE,
                    stage="grounding",
                    suggestion_id=s.suggestion_id,
                )
            )
            continue
        kept.append(s)
    return kept, drops
