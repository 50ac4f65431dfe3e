from __future__ import annotations

import textwrap
from typing import List

import pytest

from note_suggest import synthesis
from note_suggest.candidates import SynthesisState, build_candidate, spans_for_lines
from note_suggest.classifiers import classify_section, classify_sections
from note_suggest.context import RunContext
from note_suggest.dense_paragraph import extract_dense_paragraph_candidates
from note_suggest.ideas import extract_semantic_ideas
from note_suggest.llm import LLMIntentResult
from note_suggest.models import ClassifiedSection, DropReason, NoteInput, ThresholdConfig
from note_suggest.preprocessing import preprocess_note
from note_suggest.signals import extract_object, extract_plan_change, title_from_signal
from note_suggest.synthesis import (
    enforce_spec_framework_types,
    ensure_plan_change_update,
    is_topic_isolation_eligible,
    isolate_topics,
    synthesize_suggestions,
)


def _classified(md: str, note_id: str = "n1") -> List[ClassifiedSection]:
    _, sections = preprocess_note(NoteInput(note_id=note_id, raw_markdown=md), RunContext(note_id))
    return classify_sections(sections)


def test_canonical_candidate_anchors_on_imperative_with_context_line() -> None:
    md = textwrap.dedent(
        """\
        # Dashboard Issues

        ## Error Visibility

        Users don't notice failures unless they dig into logs.

        Add inline alert banners for critical errors.
        """
    )
    result = synthesize_suggestions(_classified(md), RunContext("n1"))

    assert len(result.candidates) == 1
    c = result.candidates[0]
    assert c.type == "idea"
    assert c.source == "canonical"
    assert c.title == "Add inline alert banners for critical errors"
    assert c.metadata["anchor_kind"] == "imperative"
    assert [(e.start_line, e.end_line) for e in c.evidence_spans] == [(4, 4), (6, 6)]
    assert c.body == "Users don't notice failures unless they dig into logs. Add inline alert banners for critical errors."


def test_plan_change_section_gets_heading_update_title() -> None:
    md = "## Billing Migration\n\nBilling migration pushed back 2 weeks to March 15 due to vendor API changes.\n"
    result = synthesize_suggestions(_classified(md), RunContext("n1"))

    assert [c.type for c in result.candidates] == ["project_update"]
    c = result.candidates[0]
    assert c.title == "Update: Billing Migration"
    assert c.payload == {"after_description": c.body}
    assert "2 weeks" in c.body


def test_process_noise_heading_with_roles_becomes_action_items() -> None:
    md = "## Next Steps\n\n- PM to document requirements\n- Eng to estimate the rollout\n"
    result = synthesize_suggestions(_classified(md), RunContext("n1"))

    assert len(result.candidates) == 1
    c = result.candidates[0]
    assert c.title == "Action items: PM to document requirements (+1 more)"
    assert c.source == "action_items"
    assert result.drops == []


def test_process_noise_heading_without_roles_is_suppressed() -> None:
    md = "## Summary\n\nWe talked about the roadmap and the hiring plan.\n"
    result = synthesize_suggestions(_classified(md), RunContext("n1"))

    assert result.candidates == []
    assert [d.reason for d in result.drops] == [DropReason.PROCESS_NOISE_HEADING]


def test_derivative_section_is_suppressed() -> None:
    md = (
        "## Export\n\nAdd CSV export for finance admins with monthly totals.\n\n"
        "## Finance Export\n\nFinance admins want CSV export with monthly totals.\n"
    )
    classified = _classified(md)
    result = synthesize_suggestions(classified, RunContext("n1"))

    assert [c.section_id for c in result.candidates] == [classified[0].section_id]
    derivative = [d for d in result.drops if d.reason == DropReason.DERIVATIVE_CONTENT]
    assert [d.section_id for d in derivative] == [classified[1].section_id]


def test_dense_paragraph_types_each_sentence_on_its_own() -> None:
    md = (
        "## Platform\n\n"
        "The billing release slipped by 2 weeks because of vendor issues. "
        "Customers need SSO before the enterprise expansion. "
        "Everything else is on track.\n"
    )
    section = _classified(md)[0]
    state = extract_dense_paragraph_candidates(section, SynthesisState(), RunContext("n1"))

    assert [c.type for c in state.candidates] == ["project_update", "idea"]
    assert [c.title for c in state.candidates] == ["Update: Platform", "Implement SSO before the enterprise expansion"]
    assert all(c.source == "dense_paragraph" for c in state.candidates)
    assert [c.evidence_spans[0].text for c in state.candidates] == [
        "The billing release slipped by 2 weeks because of vendor issues.",
        "Customers need SSO before the enterprise expansion.",
    ]


def test_signal_seed_rescues_bug_in_non_actionable_section() -> None:
    classified = _classified("## QA\n\n- Checkout is broken on Safari.\n")
    assert classified[0].is_actionable is False

    result = synthesize_suggestions(classified, RunContext("n1"))

    assert [(c.type, c.source) for c in result.candidates] == [("bug", "signal_seed")]


def test_structural_bypass_for_well_formed_bullet_section() -> None:
    md = (
        "## Partner Portal\n\n"
        "- Shared inbox for partner questions and escalations\n"
        "- Self-serve asset library with logos and copy\n"
        "- Quarterly partner scorecards with shared pipeline metrics\n"
    )
    classified = _classified(md)
    assert classified[0].is_actionable is False

    result = synthesize_suggestions(classified, RunContext("n1"))

    assert len(result.candidates) == 1
    c = result.candidates[0]
    assert c.source == "structural_bypass"
    assert c.title == "Partner Portal"
    assert len(c.evidence_spans) == 3


def test_semantic_idea_uses_heading_title() -> None:
    md = "## Intake Automation\n\nWe plan to introduce a scoring model for inbound requests and automate triage.\n"
    section = _classified(md)[0]
    state = extract_semantic_ideas(section, SynthesisState(), RunContext("n1"))

    assert len(state.candidates) == 1
    c = state.candidates[0]
    assert c.title == "Intake Automation"
    assert c.source == "idea_semantic"
    assert c.metadata["title_source"] == "semantic_heading"


def test_decision_table_titles_from_first_decision() -> None:
    md = (
        "## Pricing Decisions\n\n"
        "| Decision | Status |\n"
        "| --- | --- |\n"
        "| Adopt usage-based pricing | Approved |\n"
        "| Sunset the legacy API | Approved |\n"
    )
    result = synthesize_suggestions(_classified(md), RunContext("n1"))

    canonical = [c for c in result.candidates if c.source == "canonical"]
    assert len(canonical) == 1
    assert canonical[0].title == "Adopt usage-based pricing"
    assert canonical[0].metadata["title_source"] == "decision"
    assert canonical[0].body == "Adopt usage-based pricing. Sunset the legacy API."


def test_mixed_topic_section_is_split_by_topic_anchor() -> None:
    md = "## Notes\n\nNew feature: bulk edit for invoices.\nBug: export is failing for large accounts.\n"
    section = _classified(md)[0]

    assert is_topic_isolation_eligible(section.section)
    units = isolate_topics(section, ThresholdConfig())
    assert [u.heading_text for u in units] == ["Notes > New feature", "Notes > Bug"]
    assert all(u.section.parent_section_id == section.section_id for u in units)


def test_duplicate_keys_are_dropped_in_synthesis() -> None:
    section = classify_section(_classified("## QA\n\n- Checkout is broken on Safari.\n")[0].section)
    ctx = RunContext("n1")
    state = SynthesisState()
    result = synthesize_suggestions([section], ctx)
    for c in result.candidates:
        state = state.add(c)
    state = state.add(result.candidates[0])

    assert len(state.candidates) == 1
    assert [d.reason for d in state.drops] == [DropReason.DUPLICATE_KEY]


def test_isolated_topics_keep_the_parent_llm_intent() -> None:
    md = "## Notes\n\nNew feature: bulk edit for invoices.\nBug: export is failing for large accounts.\n"
    section = _classified(md)[0]
    intent = LLMIntentResult(intent={"plan_change": 1.0}, confidence=0.8)

    units = isolate_topics(section, ThresholdConfig(), intent)

    assert len(units) == 2
    assert all("llm_blended" in u.flags for u in units)


def test_plan_change_section_without_update_gets_one() -> None:
    section = _classified("## Billing Migration\n\nBilling migration pushed back 2 weeks to March 15 due to vendor API changes.\n")[0]
    ctx = RunContext("n1")

    state = ensure_plan_change_update(section, SynthesisState(), ctx)
    again = ensure_plan_change_update(section, state, ctx)

    assert [c.type for c in state.candidates] == ["project_update"]
    assert again is state


FRAMEWORK_NOTE = (
    "## Prioritization Framework\n\n"
    "Scoring weighs additionality, eligibility and weighting for each request.\n\n"
    "We will move the release criteria for the weighting model.\n"
)


def test_framework_section_emits_no_update_candidates() -> None:
    result = synthesize_suggestions(_classified(FRAMEWORK_NOTE), RunContext("n1"))

    assert "project_update" not in [c.type for c in result.candidates]


def test_framework_updates_are_retyped_as_ideas() -> None:
    section = _classified(FRAMEWORK_NOTE)[0]
    line = section.section.content_lines()[-1]
    update = build_candidate(
        section,
        RunContext("n1"),
        suggestion_type="project_update",
        title="Update: Release criteria for the weighting model",
        body=line.text,
        spans=spans_for_lines([line]),
        source="signal_seed",
        confidence=0.75,
    )

    [idea] = enforce_spec_framework_types([update], [section])

    assert idea.type == "idea"
    assert idea.title == "Release criteria for the weighting model"
    assert idea.payload["draft_initiative"]["title"] == idea.title
    assert idea.metadata["retyped_from"] == "project_update"


def test_failing_strategy_becomes_a_drop_for_that_section(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(section, state, ctx):
        raise ValueError("malformed section data")

    monkeypatch.setattr(synthesis, "UNIT_STRATEGIES", (broken,) + synthesis.UNIT_STRATEGIES)
    md = "## Error Visibility\n\nUsers don't notice failures unless they dig into logs.\n\nAdd inline alert banners for critical errors.\n"
    classified = _classified(md)

    result = synthesize_suggestions(classified, RunContext("n1"))

    [drop] = [d for d in result.drops if d.reason == DropReason.INTERNAL_ERROR]
    assert drop.section_id == classified[0].section_id
    assert drop.stage == "synthesis"
    assert "malformed section data" in drop.detail
    assert [c.source for c in result.candidates] == ["canonical"]


def test_plan_change_title_skips_duration_only_objects() -> None:
    [sig] = extract_plan_change(["Concern that the release slipped by 2 weeks"])

    assert extract_object(sig.sentence) == ""
    assert title_from_signal(sig, "Release Train") == "Update: Release Train"
    assert extract_object("The launch was pushed to the March pricing review") == "March pricing review"
