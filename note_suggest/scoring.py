"""Confidence scoring, clarification downgrade and the suggestion cap.

Project updates are never dropped here: a low score only marks them as
needing clarification. The cap trims ideas alone.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import List, Mapping, Sequence, Set, Tuple

from .candidates import retype
from .logs import log_event
from .models import (
    ClassifiedSection,
    DropReason,
    DropRecord,
    GeneratorConfig,
    Section,
    Suggestion,
    SuggestionScores,
    ThresholdConfig,
)


WEIGHT_ACTIONABILITY = 0.4
WEIGHT_TYPE_CHOICE = 0.3
WEIGHT_SYNTHESIS = 0.3

CAPPABLE_TYPES = ("idea",)

_OWNER_RE = re.compile(r"\b(?:owner|lead|responsible)\s*:\s*\w+", re.IGNORECASE)
_DUE_RE = re.compile(r"\b(?:by|due|deadline)\s*:\s*\d+", re.IGNORECASE)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _long_words(text: str) -> List[str]:
    return [w for w in (text or "").lower().split() if len(w) > 3]


def compute_section_actionability(section: ClassifiedSection) -> float:
    intent = section.intent
    score = max(intent.get("plan_change", 0.0), intent.get("new_workstream", 0.0))
    out_of_scope = max(
        intent.get("communication", 0.0),
        intent.get("research", 0.0),
        intent.get("calendar", 0.0),
        intent.get("micro_tasks", 0.0),
    )
    score -= out_of_scope * 0.3

    sf = section.features
    if sf.has_quarter_refs or sf.has_version_refs:
        score += 0.1
    if sf.has_launch_keywords:
        score += 0.15
    if sf.num_lines <= 2:
        score -= 0.15
    return _clamp(score)


def compute_type_choice_confidence(section: ClassifiedSection) -> float:
    p_update = section.intent.get("plan_change", 0.0)
    p_idea = section.intent.get("new_workstream", 0.0)
    margin = abs(p_update - p_idea)
    max_prob = max(p_update, p_idea)

    confidence = 0.5 + margin * 0.5
    if max_prob < 0.3:
        confidence -= 0.2
    if margin < 0.1:
        confidence -= 0.15
    if max_prob > 0.7 and margin > 0.3:
        confidence += 0.1
    return _clamp(confidence)


def compute_synthesis_confidence(suggestion: Suggestion, section: Section) -> float:
    """Penalize wording the section does not support: low overlap, invented owners or dates."""

    confidence = 0.7
    section_text = section.raw_text.lower()
    suggestion_text = f"{suggestion.title} {suggestion.body}".lower()

    section_words = set(_long_words(section_text))
    words = _long_words(suggestion_text)
    overlap = sum(1 for w in words if w in section_words) / len(words) if words else 0.0
    if overlap > 0.5:
        confidence += 0.15
    elif overlap < 0.2:
        confidence -= 0.2

    if _OWNER_RE.search(suggestion_text) and not _OWNER_RE.search(section_text):
        confidence -= 0.1
    if _DUE_RE.search(suggestion_text) and not _DUE_RE.search(section_text):
        confidence -= 0.1

    evidence_words = set(_long_words(" ".join(s.text for s in suggestion.evidence_spans)))
    coverage = sum(1 for w in words if w in evidence_words) / len(words) if words else 0.0
    if coverage < 0.2:
        confidence -= 0.15
    return _clamp(confidence)


def compute_overall_score(section_actionability: float, type_choice: float, synthesis: float) -> float:
    return _clamp(
        WEIGHT_ACTIONABILITY * section_actionability
        + WEIGHT_TYPE_CHOICE * type_choice
        + WEIGHT_SYNTHESIS * synthesis
    )


def refine_scores(suggestion: Suggestion, section: ClassifiedSection) -> Suggestion:
    actionability = compute_section_actionability(section)
    type_choice = compute_type_choice_confidence(section)
    synthesis = compute_synthesis_confidence(suggestion, section.section)
    if suggestion.source != "canonical":
        # Sentence-level and rescue strategies type and gate on their own evidence.
        actionability = max(actionability, suggestion.scores.section_actionability)
        type_choice = max(type_choice, float(suggestion.metadata.get("confidence", 0.0)))

    scores = SuggestionScores(
        section_actionability=round(actionability, 4),
        type_choice_confidence=round(type_choice, 4),
        synthesis_confidence=round(synthesis, 4),
        overall=round(compute_overall_score(actionability, type_choice, synthesis), 4),
    )
    return replace(suggestion, scores=scores)


def clarification_reasons(suggestion: Suggestion, thresholds: ThresholdConfig) -> Tuple[str, ...]:
    reasons: List[str] = []
    if suggestion.scores.section_actionability < thresholds.T_section_min:
        reasons.append("low_actionability_score")
    if suggestion.scores.overall < thresholds.T_overall_min:
        reasons.append("low_overall_score")
    return tuple(reasons)


def apply_thresholds(suggestions: Sequence[Suggestion], thresholds: ThresholdConfig) -> Tuple[List[Suggestion], int]:
    """Flag instead of dropping. Returns (suggestions, downgraded count)."""

    out: List[Suggestion] = []
    downgraded = 0
    for s in suggestions:
        reasons = clarification_reasons(s, thresholds)
        if reasons:
            downgraded += 1
        out.append(
            replace(
                s,
                needs_clarification=bool(reasons),
                clarification_reasons=reasons,
                is_high_confidence=not reasons,
            )
        )
    return out, downgraded


def normalize_plan_change_types(
    suggestions: Sequence[Suggestion], sections: Mapping[str, ClassifiedSection]
) -> Tuple[List[Suggestion], List[DropRecord]]:
    """Ideas from a plan_change section typed as an update become project updates.

    A section forced to `idea` (strategy or spec/framework narrative) keeps
    its ideas.
    """

    out: List[Suggestion] = []
    drops: List[DropRecord] = []
    keys: Set[str] = set()
    for s in suggestions:
        section = sections.get(s.section_id)
        if (
            section is not None
            and s.type == "idea"
            and s.source == "canonical"
            and section.intent_label == "plan_change"
            and section.suggested_type == "project_update"
        ):
            s = retype(s, "project_update")
        if s.suggestion_key in keys:
            drops.append(
                DropRecord(
                    section_id=s.section_id,
                    reason=DropReason.DUPLICATE_KEY,
                    stage="scoring",
                    detail="collides after type normalization",
                    suggestion_id=s.suggestion_id,
                )
            )
            continue
        keys.add(s.suggestion_key)
        out.append(s)
    return out, drops


def sort_by_score(suggestions: Sequence[Suggestion]) -> List[Suggestion]:
    return sorted(suggestions, key=lambda s: -s.scores.overall)


def order_suggestions(suggestions: Sequence[Suggestion]) -> List[Suggestion]:
    """Non-ideas first, then ideas; each group by score descending (stable)."""
    head = [s for s in suggestions if s.type not in CAPPABLE_TYPES]
    tail = [s for s in suggestions if s.type in CAPPABLE_TYPES]
    return sort_by_score(head) + sort_by_score(tail)


def apply_cap(
    suggestions: Sequence[Suggestion],
    sections: Mapping[str, ClassifiedSection],
    max_suggestions: int,
) -> Tuple[List[Suggestion], List[DropRecord]]:
    protected = [s for s in suggestions if s.type not in CAPPABLE_TYPES]
    ideas = sort_by_score([s for s in suggestions if s.type in CAPPABLE_TYPES])
    slots = max(0, max_suggestions - len(protected))
    kept = ideas[:slots]

    drops: List[DropRecord] = []
    for s in ideas[slots:]:
        section = sections.get(s.section_id)
        siblings = [k for k in protected + kept if k.section_id == s.section_id]
        if section is not None and section.is_actionable and not siblings:
            # The last candidate of an actionable section survives the cap.
            kept.append(s)
            continue
        drops.append(
            DropRecord(
                section_id=s.section_id,
                reason=DropReason.MAX_SUGGESTIONS_CAP,
                stage="scoring",
                detail=f"score {s.scores.overall:.2f} beyond max_suggestions={max_suggestions}",
                suggestion_id=s.suggestion_id,
            )
        )
    return order_suggestions(protected + kept), drops


@dataclass(frozen=True)
class ScoringResult:
    suggestions: List[Suggestion]
    drops: List[DropRecord]
    downgraded: int


def run_scoring_pipeline(
    suggestions: Sequence[Suggestion],
    sections: Mapping[str, ClassifiedSection],
    config: GeneratorConfig,
) -> ScoringResult:
    normalized, drops = normalize_plan_change_types(suggestions, sections)

    scored: List[Suggestion] = []
    for s in normalized:
        section = sections.get(s.section_id)
        scored.append(refine_scores(s, section) if section is not None else s)

    flagged, downgraded = apply_thresholds(scored, config.thresholds)
    capped, cap_drops = apply_cap(flagged, sections, config.max_suggestions)
    drops.extend(cap_drops)

    for record in drops:
        log_event(logging.DEBUG, "scoring drop", section_id=record.section_id, reason=record.reason.value, detail=record.detail)

    return ScoringResult(
        suggestions=capped,
        drops=drops,
        downgraded=downgraded,
    )
