"""Pipeline entry points.

Preprocess, classify, synthesize, validate, check grounding, score, consolidate,
route and normalize titles. Each call builds its own `RunContext`; nothing is
shared between invocations.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .candidates import retitle
from .classifiers import classify_sections, filter_actionable_sections, is_plan_change_intent_label
from .consolidate import consolidate_by_section
from .context import RunContext
from .debug import build_debug_ledger
from .llm import LLMIntentResult, LLMProvider, classify_intent_with_llm
from .logs import log_event
from .models import (
    ClassifiedSection,
    DropReason,
    DropRecord,
    GeneratorConfig,
    GeneratorResult,
    InitiativeSnapshot,
    NoteInput,
    Section,
    Suggestion,
)
from .preprocessing import preprocess_note
from .routing import route_suggestions
from .scoring import run_scoring_pipeline
from .synthesis import synthesize_suggestions
from .titles import normalize_title
from .validators import check_grounding, run_quality_validators


# Drops that legitimately leave an actionable section without output.
SUPPRESSION_REASONS = (DropReason.PROCESS_NOISE_HEADING, DropReason.DERIVATIVE_CONTENT)


class PipelineIntegrityError(RuntimeError):
    """Raised in strict mode when a standing pipeline invariant is violated."""


def _llm_intents(sections: Sequence[Section], provider: LLMProvider) -> Dict[str, LLMIntentResult]:
    out: Dict[str, LLMIntentResult] = {}
    for s in sections:
        result = classify_intent_with_llm(provider, heading=s.heading_text or "", body_text=s.raw_text)
        if result is not None:
            out[s.section_id] = result
    return out


def _finalize_title(s: Suggestion) -> Suggestion:
    evidence = "\n".join(e.text for e in s.evidence_spans)
    return retitle(s, normalize_title(s.title, s.type, evidence))


def check_actionable_emitted(
    classified: Sequence[ClassifiedSection],
    emitted: Sequence[Suggestion],
    drops: Sequence[DropRecord],
) -> List[str]:
    """Actionable section ids with no emitted suggestion and no suppression record."""

    emitted_ids = {s.section_id for s in emitted}
    suppressed = {d.section_id for d in drops if d.reason in SUPPRESSION_REASONS}
    return [
        c.section_id
        for c in classified
        if c.is_actionable and c.section_id not in emitted_ids and c.section_id not in suppressed
    ]


def check_plan_change_emitted(
    classified: Sequence[ClassifiedSection],
    emitted: Sequence[Suggestion],
    drops: Sequence[DropRecord],
) -> List[str]:
    """Plan-change section ids typed project_update that emitted no project_update."""

    updated = {s.section_id for s in emitted if s.type == "project_update"}
    suppressed = {d.section_id for d in drops if d.reason in SUPPRESSION_REASONS}
    return [
        c.section_id
        for c in classified
        if is_plan_change_intent_label(c.intent_label)
        and c.suggested_type == "project_update"
        and c.section_id not in updated
        and c.section_id not in suppressed
    ]


def check_final_grounding(emitted: Sequence[Suggestion], sections: Mapping[str, Section]) -> List[str]:
    _, drops = check_grounding(emitted, sections)
    return [d.suggestion_id or d.section_id for d in drops]


def generate_suggestions(
    note: NoteInput,
    initiatives: Optional[Sequence[InitiativeSnapshot]] = None,
    config: Optional[GeneratorConfig] = None,
    *,
    llm_provider: Optional[LLMProvider] = None,
    strict: bool = False,
) -> GeneratorResult:
    config = config or GeneratorConfig()
    thresholds = config.thresholds
    ctx = RunContext(note.note_id)
    trace: Dict[str, Any] = {"note_id": note.note_id, "thresholds": thresholds}

    _, sections = preprocess_note(note, ctx)
    trace["sections"] = sections

    llm_intents = None
    if config.use_llm_classifiers and llm_provider is not None:
        llm_intents = _llm_intents(sections, llm_provider)
    classified = classify_sections(sections, thresholds, llm_intents)
    trace["classified"] = classified
    by_id = {c.section_id: c for c in classified}
    raw_by_id = {c.section_id: c.section for c in classified}

    synthesis = synthesize_suggestions(classified, ctx, thresholds, llm_intents)
    trace["candidates"] = synthesis.candidates
    drops: List[DropRecord] = list(synthesis.drops)

    validated: List[Suggestion] = []
    validation: Dict[str, List[Dict[str, Any]]] = {}
    for candidate in synthesis.candidates:
        section = raw_by_id.get(candidate.section_id)
        if section is None:
            drops.append(
                DropRecord(
                    section_id=candidate.section_id,
                    reason=DropReason.SECTION_NOT_FOUND,
                    stage="validation",
                    suggestion_id=candidate.suggestion_id,
                )
            )
            continue
        outcome = run_quality_validators(candidate, section, thresholds)
        results = [r.to_dict() for r in outcome.results]
        validation[candidate.suggestion_id] = results
        if outcome.passed:
            validated.append(replace(candidate, validation_results=tuple(results)))
        elif outcome.failure is not None:
            drops.append(outcome.failure)
            log_event(
                logging.DEBUG,
                "validation drop",
                suggestion_id=candidate.suggestion_id,
                reason=outcome.failure.reason.value,
                detail=outcome.failure.detail,
            )
    trace["validation"] = validation

    grounded, grounding_drops = check_grounding(validated, raw_by_id)
    drops.extend(grounding_drops)
    trace["validated_count"] = len(grounded)

    scoring = run_scoring_pipeline(grounded, by_id, config)
    drops.extend(scoring.drops)
    trace["scored_count"] = len(scoring.suggestions)
    trace["downgraded"] = scoring.downgraded

    merged, merge_drops = consolidate_by_section(scoring.suggestions, by_id, ctx)
    drops.extend(merge_drops)

    routed = route_suggestions(merged, initiatives or (), thresholds)
    final = [_finalize_title(s) for s in routed]
    trace["suggestions"] = final
    trace["drops"] = drops

    unemitted = check_actionable_emitted(classified, final, drops)
    missing_updates = check_plan_change_emitted(classified, final, drops)
    ungrounded = check_final_grounding(final, raw_by_id)
    invariants = {
        "plan_change_always_emitted": not missing_updates,
        "actionable_sections_emitted": not unemitted,
        "evidence_grounded": not ungrounded,
    }
    trace["invariants"] = invariants
    if unemitted:
        log_event(logging.CRITICAL, "actionable sections produced no suggestion", section_ids=",".join(unemitted))
    if missing_updates:
        log_event(logging.CRITICAL, "plan change sections produced no update", section_ids=",".join(missing_updates))
    if strict and not all(invariants.values()):
        failed = ", ".join(k for k, ok in invariants.items() if not ok)
        raise PipelineIntegrityError(f"Pipeline invariants violated for note {note.note_id}: {failed}")

    log_event(
        logging.INFO,
        "suggestions generated",
        note_id=note.note_id,
        sections=len(sections),
        actionable=sum(1 for c in classified if c.is_actionable),
        emitted=len(final),
        dropped=len(drops),
    )

    debug = build_debug_ledger(trace, config.debug_verbosity) if config.enable_debug else None
    return GeneratorResult(suggestions=final, debug=debug)


def has_actionable_content(note: NoteInput, config: Optional[GeneratorConfig] = None) -> bool:
    """Cheap pre-check: preprocess and classify only."""

    config = config or GeneratorConfig()
    _, sections = preprocess_note(note, RunContext(note.note_id))
    return bool(filter_actionable_sections(classify_sections(sections, config.thresholds)))


def get_section_count(note: NoteInput, config: Optional[GeneratorConfig] = None) -> Dict[str, int]:
    config = config or GeneratorConfig()
    _, sections = preprocess_note(note, RunContext(note.note_id))
    classified = classify_sections(sections, config.thresholds)
    return {"total": len(sections), "actionable": len(filter_actionable_sections(classified))}
