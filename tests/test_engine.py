from __future__ import annotations

import logging
import textwrap

import pytest

from note_suggest import engine, synthesis
from note_suggest.engine import PipelineIntegrityError, generate_suggestions, get_section_count, has_actionable_content
from note_suggest.models import DropReason, GeneratorConfig, NoteInput
from note_suggest.preprocessing import contains_verbatim, preprocess_note


ERROR_VISIBILITY = (
    "# Dashboard Issues\n\n## Error Visibility\n\n"
    "Users don't notice failures unless they dig into logs.\n\n"
    "Add inline alert banners for critical errors."
)

TWO_DELAYS = textwrap.dedent(
    """\
    ## Mobile App Launch

    The mobile app launch is delayed by 10 days because of App Store review.

    ## Billing Migration

    Billing migration pushed back 2 weeks to March 15 due to vendor API changes.
    """
)

MIXED = textwrap.dedent(
    """\
    # Weekly Product Sync

    ## Error Visibility

    Users don't notice failures unless they dig into logs.

    Add inline alert banners for critical errors.

    ## Mobile App Launch

    The mobile app launch is delayed by 10 days because of App Store review.

    ## Status Update

    Everything is on track.

    ## Next Steps

    - PM to document requirements
    - Eng to estimate the rollout
    """
)


def _note(text: str, note_id: str = "note-1") -> NoteInput:
    return NoteInput(note_id=note_id, raw_markdown=text)


def test_single_actionable_idea() -> None:
    result = generate_suggestions(_note(ERROR_VISIBILITY))

    assert len(result.suggestions) == 1
    s = result.suggestions[0]
    assert s.type == "idea"
    assert "inline alert banners" in s.body
    assert s.title == "Add inline alert banners for critical errors"
    assert s.is_high_confidence is True
    assert s.needs_clarification is False
    assert s.routing.create_new is True
    assert result.debug is None


def test_next_steps_roles_become_action_items() -> None:
    result = generate_suggestions(_note("## Next Steps\n\n- PM to document requirements\n"))

    assert [s.title for s in result.suggestions] == ["Action items: PM to document requirements"]
    assert all(s.title != "Review: Next Steps" for s in result.suggestions)


def test_two_delays_give_two_updates_without_leakage() -> None:
    note = _note(TWO_DELAYS)
    result = generate_suggestions(note)

    assert [s.type for s in result.suggestions] == ["project_update", "project_update"]
    titles = sorted(s.title for s in result.suggestions)
    assert titles == ["Update: Billing Migration (2 weeks)", "Update: Mobile App Launch (10 days)"]

    _, sections = preprocess_note(note)
    by_id = {sec.section_id: sec for sec in sections}
    for s in result.suggestions:
        own = by_id[s.section_id]
        for span in s.evidence_spans:
            assert own.start_line <= span.start_line <= span.end_line <= own.end_line
            assert contains_verbatim(own.raw_text, span.text)
    mobile = next(s for s in result.suggestions if "Mobile" in s.title)
    billing = next(s for s in result.suggestions if "Billing" in s.title)
    assert "vendor" not in mobile.body.lower()
    assert "app store" not in billing.body.lower()


def test_status_only_note_emits_nothing() -> None:
    result = generate_suggestions(_note("## Status Update\n\nEverything is on track."))
    assert result.suggestions == []


def test_empty_note_emits_nothing() -> None:
    assert generate_suggestions(_note("")).suggestions == []


def test_output_is_deterministic() -> None:
    first = generate_suggestions(_note(MIXED)).to_dict()
    second = generate_suggestions(_note(MIXED)).to_dict()
    assert first == second


def test_runs_do_not_share_state() -> None:
    baseline = generate_suggestions(_note(ERROR_VISIBILITY, "note-a")).to_dict()
    generate_suggestions(_note(MIXED, "note-b"))
    again = generate_suggestions(_note(ERROR_VISIBILITY, "note-a")).to_dict()

    assert again == baseline
    assert baseline["suggestions"][0]["suggestion_id"] == "sug_note-a_1"


def test_notes_sharing_an_id_prefix_get_disjoint_ids() -> None:
    config = GeneratorConfig(enable_debug=True)
    ids = []
    for note_id in ("meeting-2026-01-05", "meeting-2026-01-12"):
        result = generate_suggestions(_note(ERROR_VISIBILITY, note_id), config=config)
        assert result.debug is not None
        assert result.suggestions
        assert all(s.note_id == note_id for s in result.suggestions)
        ids.append({s.suggestion_id for s in result.suggestions} | {s["section_id"] for s in result.debug["sections"]})

    assert ids[0] and ids[1]
    assert ids[0].isdisjoint(ids[1])


def test_generic_plan_change_section_still_emits_an_update() -> None:
    md = "## Process Alignment\n\nOperations alignment process moved to Q3."
    result = generate_suggestions(_note(md), config=GeneratorConfig(enable_debug=True), strict=True)

    assert [s.type for s in result.suggestions] == ["project_update"]
    assert result.debug is not None
    assert all(result.debug["invariants"].values())
    assert result.debug["counters"]["plan_change_count"] == 1
    assert result.debug["counters"]["plan_change_emitted_count"] == 1


def test_plan_change_invariant_counts_sections(monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture) -> None:
    def ideas_only(suggestions, sections, ctx):
        return [s for s in suggestions if s.type != "project_update"], []

    monkeypatch.setattr(engine, "consolidate_by_section", ideas_only)

    with caplog.at_level(logging.CRITICAL, logger="note_suggest"):
        result = generate_suggestions(_note(MIXED), config=GeneratorConfig(enable_debug=True))
    assert result.debug is not None
    assert result.debug["invariants"]["plan_change_always_emitted"] is False
    assert "plan change sections produced no update" in caplog.text

    with pytest.raises(PipelineIntegrityError, match="plan_change_always_emitted"):
        generate_suggestions(_note(MIXED), strict=True)


def test_framework_section_never_emits_an_update() -> None:
    md = (
        "## Prioritization Framework\n\n"
        "Scoring weighs additionality, eligibility and weighting for each request.\n\n"
        "We will move the release criteria for the weighting model.\n"
    )
    result = generate_suggestions(_note(md))

    assert "project_update" not in [s.type for s in result.suggestions]


def test_failing_strategy_does_not_abort_the_note(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(section, state, ctx):
        raise ValueError("malformed section data")

    monkeypatch.setattr(synthesis, "UNIT_STRATEGIES", (broken,) + synthesis.UNIT_STRATEGIES)

    result = generate_suggestions(_note(TWO_DELAYS), config=GeneratorConfig(enable_debug=True))

    assert [s.type for s in result.suggestions] == ["project_update", "project_update"]
    assert result.debug is not None
    assert result.debug["counters"]["drops_by_reason"][DropReason.INTERNAL_ERROR.value] == 2


def test_every_actionable_section_is_emitted_or_suppressed() -> None:
    result = generate_suggestions(_note(MIXED), config=GeneratorConfig(enable_debug=True))

    assert result.debug is not None
    assert result.debug["invariants"] == {
        "plan_change_always_emitted": True,
        "actionable_sections_emitted": True,
        "evidence_grounded": True,
    }
    types = [s.type for s in result.suggestions]
    assert types[0] == "project_update"
    assert sorted(s.title for s in result.suggestions) == [
        "Action items: PM to document requirements (+1 more)",
        "Add inline alert banners for critical errors",
        "Update: Mobile App Launch (10 days)",
    ]


def test_plan_change_updates_survive_a_zero_cap() -> None:
    result = generate_suggestions(_note(TWO_DELAYS), config=GeneratorConfig(max_suggestions=0))
    assert [s.type for s in result.suggestions] == ["project_update", "project_update"]


def test_invariant_violation_is_logged_and_raised_in_strict_mode(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setattr(engine, "consolidate_by_section", lambda suggestions, sections, ctx: ([], []))

    with caplog.at_level(logging.CRITICAL, logger="note_suggest"):
        result = generate_suggestions(_note(ERROR_VISIBILITY))
    assert result.suggestions == []
    assert "actionable sections produced no suggestion" in caplog.text

    with pytest.raises(PipelineIntegrityError, match="actionable_sections_emitted"):
        generate_suggestions(_note(ERROR_VISIBILITY), strict=True)


def test_precheck_helpers() -> None:
    assert has_actionable_content(_note(ERROR_VISIBILITY)) is True
    assert has_actionable_content(_note("## Status Update\n\nEverything is on track.")) is False
    assert get_section_count(_note(MIXED)) == {"total": 4, "actionable": 3}
