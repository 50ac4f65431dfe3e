from __future__ import annotations

from note_suggest.classifiers import (
    ActionabilitySignals,
    classify_section,
    filter_actionable_sections,
    has_concrete_delta,
    has_plan_change_eligibility,
    is_actionable,
    is_spec_framework_section,
    score_unit,
)
from note_suggest.llm import LLMIntentResult
from note_suggest.models import INTENT_LABELS, NoteInput, Section, ThresholdConfig
from note_suggest.preprocessing import preprocess_note


def _section(md: str) -> Section:
    _, sections = preprocess_note(NoteInput(note_id="n1", raw_markdown=md))
    assert len(sections) == 1
    return sections[0]


def test_plan_change_is_always_actionable_and_typed_as_update() -> None:
    c = classify_section(_section("## Mobile App Launch\n\nThe mobile app launch is delayed by 10 days because of App Store review.\n"))

    assert c.intent_label == "plan_change"
    assert c.is_actionable is True
    assert "plan_change_always_actionable" in c.flags
    assert c.suggested_type == "project_update"
    assert set(c.intent) == set(INTENT_LABELS)


def test_imperative_floor_ignores_short_section_penalty() -> None:
    c = classify_section(_section("## Export\n\nAdd CSV export for admins.\n"))

    assert c.is_actionable is True
    assert "imperative_floor" in c.flags
    assert c.actionable_signal >= 0.9
    assert c.suggested_type == "idea"


def test_short_section_without_imperative_needs_higher_signal() -> None:
    c = classify_section(_section("## Churn\n\nCustomers complain about slow exports.\n"))

    assert c.actionable_signal == 0.6
    assert c.is_actionable is False
    assert c.suggested_type is None


def test_communication_dominance_gate_beats_imperative() -> None:
    c = classify_section(_section("## Onboarding\n\nAdd an onboarding checklist and send it on Slack or email.\n"))

    assert c.out_of_scope_signal >= 0.75
    assert c.is_actionable is False
    assert "dominance_gate" in c.flags


def test_strategy_heading_with_list_forces_idea() -> None:
    md = (
        "## Growth Strategy\n\n"
        "- Add referral rewards for new teams\n"
        "- Build a partner integration page\n"
        "- Improve onboarding checklists\n"
    )
    c = classify_section(_section(md))

    assert c.is_actionable is True
    assert c.suggested_type == "idea"
    assert "strategy_forced_idea" in c.flags


def test_status_only_section_is_not_actionable() -> None:
    c = classify_section(_section("## Status Update\n\nEverything is on track.\n"))

    assert c.intent_label == "status_informational"
    assert filter_actionable_sections([c]) == []


def test_negated_work_scores_zero() -> None:
    assert score_unit("we won't build a new dashboard.") == (0.0, ["negated"])


def test_concrete_delta_and_plan_change_eligibility() -> None:
    assert has_concrete_delta("Billing migration pushed back 2 weeks")
    assert has_concrete_delta("moved from Q2 to Q3")
    assert not has_concrete_delta("Billing migration is going well")
    assert has_plan_change_eligibility("The launch is delayed by 10 days.")
    assert not has_plan_change_eligibility("The launch is delayed.")


def test_llm_intent_is_blended_into_rule_scores() -> None:
    section = _section("## Status Update\n\nEverything is on track.\n")
    llm_intent = LLMIntentResult(intent={"plan_change": 1.0}, confidence=0.8)

    c = classify_section(section, llm_intent=llm_intent)

    assert "llm_blended" in c.flags
    assert c.intent_label == "plan_change"
    assert c.is_actionable is True


def test_low_confidence_llm_intent_is_ignored() -> None:
    section = _section("## Status Update\n\nEverything is on track.\n")
    llm_intent = LLMIntentResult(intent={"plan_change": 1.0}, confidence=0.1)

    c = classify_section(section, llm_intent=llm_intent)

    assert c.intent_label == "status_informational"
    assert c.is_actionable is False


def _signals(**overrides: object) -> ActionabilitySignals:
    fields = dict(
        actionable_signal=0.9,
        calendar=0.0,
        communication=0.0,
        micro_tasks=0.0,
        research=0.0,
        has_imperative=False,
        has_change_operator=False,
        has_decision=False,
        has_role_assignment=False,
        has_structured_task=False,
        has_status_change=False,
        work_verb_units=1,
        matched_rules=(),
    )
    fields.update(overrides)
    return ActionabilitySignals(**fields)  # type: ignore[arg-type]


def test_out_of_scope_threshold_gates_non_imperative_sections() -> None:
    signals = _signals(actionable_signal=1.0, calendar=0.6)

    blocked = is_actionable(label="new_workstream", signals=signals, num_lines=3, thresholds=ThresholdConfig(T_out_of_scope=0.4))
    allowed = is_actionable(label="new_workstream", signals=signals, num_lines=3, thresholds=ThresholdConfig(T_out_of_scope=1.0))

    assert blocked == (False, ["out_of_scope"])
    assert allowed == (True, [])


def test_out_of_scope_threshold_does_not_override_imperative_floor() -> None:
    signals = _signals(calendar=0.6, has_imperative=True)

    actionable, flags = is_actionable(label="new_workstream", signals=signals, num_lines=1, thresholds=ThresholdConfig(T_out_of_scope=0.0))

    assert actionable is True
    assert flags == ["imperative_floor"]


def test_imperative_rescues_out_of_scope_label_below_the_gate() -> None:
    signals = _signals(micro_tasks=1.0, has_imperative=True)

    actionable, flags = is_actionable(label="micro_tasks", signals=signals, num_lines=1, thresholds=ThresholdConfig())

    assert actionable is True
    assert flags == ["imperative_floor", "rescued_by_imperative"]


def test_framework_section_is_never_typed_as_update() -> None:
    md = (
        "## Prioritization Framework\n\n"
        "Scoring weighs additionality, eligibility and weighting for each request.\n\n"
        "We will move the release criteria for the weighting model.\n"
    )
    section = _section(md)
    assert is_spec_framework_section(section.heading_text, section.raw_text) is True

    c = classify_section(section)

    assert c.suggested_type != "project_update"


def test_framework_detection_yields_to_concrete_delivery_language() -> None:
    assert is_spec_framework_section("Scoring Rubric", "Criteria weights for intake.") is True
    assert is_spec_framework_section("Scoring Rubric", "The rubric rollout is delayed by 2 weeks.") is False
    assert is_spec_framework_section("Billing", "Customers want invoices.") is False


def test_strategy_heading_with_delta_becomes_update() -> None:
    md = (
        "## Growth Strategy\n\n"
        "- Add referral rewards for new teams\n"
        "- Build a partner integration page\n"
        "- Ship the referral launch in 3 weeks\n"
    )
    c = classify_section(_section(md))

    assert c.is_actionable is True
    assert c.suggested_type == "project_update"
    assert "strategy_with_delta" in c.flags
