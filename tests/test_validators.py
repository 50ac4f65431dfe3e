from __future__ import annotations

import textwrap
from dataclasses import replace
from typing import Tuple

import pytest

from note_suggest import validators
from note_suggest.candidates import retype
from note_suggest.classifiers import classify_sections
from note_suggest.context import RunContext
from note_suggest.models import DropReason, EvidenceSpan, NoteInput, Section, Suggestion, ThresholdConfig
from note_suggest.preprocessing import preprocess_note
from note_suggest.synthesis import synthesize_suggestions
from note_suggest.validators import check_grounding, compute_generic_ratio, extract_domain_nouns, run_quality_validators


NOTE = textwrap.dedent(
    """\
    ## Error Visibility

    Users don't notice failures unless they dig into logs.

    Add inline alert banners for critical errors.
    """
)


def _candidate() -> Tuple[Suggestion, Section]:
    _, sections = preprocess_note(NoteInput(note_id="n1", raw_markdown=NOTE), RunContext("n1"))
    result = synthesize_suggestions(classify_sections(sections), RunContext("n1"))
    assert len(result.candidates) == 1
    return result.candidates[0], sections[0]


def test_clean_candidate_passes_every_gate() -> None:
    candidate, section = _candidate()
    outcome = run_quality_validators(candidate, section, ThresholdConfig())

    assert outcome.passed is True
    assert outcome.failure is None
    assert [r.validator for r in outcome.results] == ["anti_vacuity", "evidence_sanity", "heading_only"]


def test_generic_title_fails_anti_vacuity() -> None:
    candidate, section = _candidate()
    vague = replace(candidate, title="Improve process alignment")

    outcome = run_quality_validators(vague, section, ThresholdConfig())

    assert outcome.passed is False
    assert outcome.failure is not None
    assert outcome.failure.reason == DropReason.ANTI_VACUITY
    assert outcome.failure.stage == "validation"
    assert len(outcome.results) == 1


def test_generic_plan_update_skips_anti_vacuity() -> None:
    candidate, section = _candidate()
    update = retype(replace(candidate, title="Improve process alignment"), "project_update")

    result = validators.validate_anti_vacuity(update, section, ThresholdConfig())

    assert result.passed is True


def test_heading_restatement_fails_without_explicit_ask() -> None:
    candidate, section = _candidate()
    restated = replace(candidate, title="New idea: Error Visibility")

    outcome = run_quality_validators(restated, section, ThresholdConfig())

    assert outcome.failure is not None
    assert outcome.failure.reason == DropReason.ANTI_VACUITY
    assert "heading" in outcome.failure.detail


def test_span_outside_section_fails_evidence_sanity() -> None:
    candidate, section = _candidate()
    stray = replace(candidate, evidence_spans=(EvidenceSpan(start_line=40, end_line=40, text="Add inline alert banners"),))

    outcome = run_quality_validators(stray, section, ThresholdConfig())

    assert outcome.failure is not None
    assert outcome.failure.reason == DropReason.EVIDENCE_SANITY


def test_grounded_source_requires_verbatim_evidence() -> None:
    candidate, section = _candidate()
    invented = replace(
        candidate,
        metadata={**candidate.metadata, "source": "dense_paragraph"},
        evidence_spans=(EvidenceSpan(start_line=4, end_line=4, text="Add toast notifications for warnings."),),
    )

    outcome = run_quality_validators(invented, section, ThresholdConfig())

    assert outcome.failure is not None
    assert outcome.failure.reason == DropReason.EVIDENCE_SANITY
    assert "verbatim" in outcome.failure.detail


def test_heading_derived_idea_needs_explicit_ask() -> None:
    candidate, section = _candidate()
    from_heading = replace(candidate, metadata={**candidate.metadata, "title_source": "heading", "has_explicit_ask": False})

    outcome = run_quality_validators(from_heading, section, ThresholdConfig())
    assert outcome.failure is not None
    assert outcome.failure.reason == DropReason.HEADING_ONLY

    with_ask = replace(from_heading, metadata={**from_heading.metadata, "has_explicit_ask": True})
    assert run_quality_validators(with_ask, section, ThresholdConfig()).passed is True


def test_validator_exception_becomes_internal_error(monkeypatch: pytest.MonkeyPatch) -> None:
    candidate, section = _candidate()

    def _boom(*_args: object) -> validators.ValidationResult:
        raise RuntimeError("boom " + "x" * 500)

    monkeypatch.setattr(validators, "VALIDATORS", ((_boom, DropReason.ANTI_VACUITY),))
    outcome = run_quality_validators(candidate, section, ThresholdConfig())

    assert outcome.passed is False
    assert outcome.failure is not None
    assert outcome.failure.reason == DropReason.INTERNAL_ERROR
    assert outcome.failure.detail.startswith("internal error: boom")
    assert len(outcome.failure.detail) <= len("internal error: ") + validators.MAX_ERROR_CHARS


def test_grounding_pass_drops_only_unverifiable_sources() -> None:
    candidate, section = _candidate()
    invented = replace(
        candidate,
        suggestion_id="sug_x",
        metadata={**candidate.metadata, "source": "signal_seed"},
        evidence_spans=(EvidenceSpan(start_line=4, end_line=4, text="Customers asked for dark mode."),),
    )

    kept, drops = check_grounding([candidate, invented], {section.section_id: section})

    assert kept == [candidate]
    assert [(d.reason, d.stage, d.suggestion_id) for d in drops] == [(DropReason.UNGROUNDED_EVIDENCE, "grounding", "sug_x")]


def test_generic_ratio_and_domain_nouns() -> None:
    assert compute_generic_ratio("improve process alignment") == 1.0
    assert compute_generic_ratio("") == 0.0
    assert extract_domain_nouns("Improve the invoice export and invoice search") == ["invoice", "export", "search"]
