from __future__ import annotations

from typing import Optional

import pytest

from note_suggest.keys import compute_suggestion_key
from note_suggest.models import (
    ClassifiedSection,
    DropReason,
    EvidenceSpan,
    GeneratorConfig,
    Line,
    Routing,
    Suggestion,
    SuggestionScores,
    ThresholdConfig,
)
from note_suggest.preprocessing import build_section
from note_suggest.scoring import (
    apply_cap,
    apply_thresholds,
    compute_overall_score,
    normalize_plan_change_types,
    order_suggestions,
    refine_scores,
    run_scoring_pipeline,
)


def _section(section_id: str, *, actionable: bool = True, label: str = "new_workstream", stype: str = "idea") -> ClassifiedSection:
    sec = build_section(
        section_id=section_id,
        note_id="n1",
        heading_text="Export",
        heading_level=2,
        start_line=0,
        body=[Line(index=1, text="Add CSV export for admins.", line_type="paragraph")],
    )
    plan, idea = (0.9, 0.36) if label == "plan_change" else (0.36, 0.9)
    return ClassifiedSection(
        section=sec,
        intent={
            "plan_change": plan,
            "new_workstream": idea,
            "status_informational": 0.0,
            "communication": 0.0,
            "research": 0.0,
            "calendar": 0.0,
            "micro_tasks": 0.0,
        },
        intent_label=label,
        is_actionable=actionable,
        actionable_signal=0.9,
        out_of_scope_signal=0.0,
        suggested_type=stype if actionable else None,
        type_confidence=0.77,
    )


def _suggestion(
    suggestion_id: str,
    section_id: str,
    *,
    stype: str = "idea",
    overall: float = 0.8,
    actionability: float = 0.8,
    source: str = "canonical",
    title: Optional[str] = None,
) -> Suggestion:
    title = title or f"Add CSV export {suggestion_id}"
    body = "Add CSV export for admins."
    payload = {"after_description": body} if stype == "project_update" else {"draft_initiative": {"title": title, "description": body}}
    return Suggestion(
        suggestion_id=suggestion_id,
        note_id="n1",
        section_id=section_id,
        type=stype,
        title=title,
        payload=payload,
        evidence_spans=(EvidenceSpan(start_line=1, end_line=1, text=body),),
        scores=SuggestionScores(section_actionability=actionability, type_choice_confidence=0.8, synthesis_confidence=0.8, overall=overall),
        routing=Routing(),
        suggestion_key=compute_suggestion_key("n1", section_id, stype, title),
        metadata={"source": source, "confidence": 0.75},
    )


def test_overall_score_is_weighted() -> None:
    assert compute_overall_score(1.0, 0.0, 0.0) == pytest.approx(0.4)
    assert compute_overall_score(0.0, 1.0, 1.0) == pytest.approx(0.6)
    assert compute_overall_score(1.0, 1.0, 1.0) == pytest.approx(1.0)


def test_low_scores_downgrade_instead_of_dropping() -> None:
    weak = _suggestion("a", "s1", stype="project_update", overall=0.5, actionability=0.4)
    strong = _suggestion("b", "s1", overall=0.9, actionability=0.9)

    out, downgraded = apply_thresholds([weak, strong], ThresholdConfig())

    assert downgraded == 1
    assert [s.suggestion_id for s in out] == ["a", "b"]
    assert out[0].needs_clarification is True
    assert out[0].clarification_reasons == ("low_actionability_score", "low_overall_score")
    assert out[0].is_high_confidence is False
    assert out[1].needs_clarification is False
    assert out[1].is_high_confidence is True


def test_cap_trims_ideas_only_and_keeps_last_candidate_of_actionable_section() -> None:
    sections = {
        "s1": _section("s1", label="plan_change", stype="project_update"),
        "s2": _section("s2"),
        "s3": _section("s3"),
        "s4": _section("s4", actionable=False),
    }
    update = _suggestion("pu", "s1", stype="project_update", overall=0.3)
    a = _suggestion("a", "s2", overall=0.9)
    b = _suggestion("b", "s2", overall=0.7)
    c = _suggestion("c", "s3", overall=0.6)
    d = _suggestion("d", "s4", overall=0.5)

    kept, drops = apply_cap([a, b, c, d, update], sections, max_suggestions=2)

    assert [s.suggestion_id for s in kept] == ["pu", "a", "c"]
    assert [(r.suggestion_id, r.reason, r.stage) for r in drops] == [
        ("b", DropReason.MAX_SUGGESTIONS_CAP, "scoring"),
        ("d", DropReason.MAX_SUGGESTIONS_CAP, "scoring"),
    ]


def test_cap_of_zero_still_keeps_project_updates() -> None:
    sections = {"s1": _section("s1", label="plan_change", stype="project_update")}
    update = _suggestion("pu", "s1", stype="project_update")

    kept, drops = apply_cap([update], sections, max_suggestions=0)

    assert kept == [update]
    assert drops == []


def test_order_puts_non_ideas_first_then_score() -> None:
    ordered = order_suggestions(
        [
            _suggestion("i1", "s1", overall=0.95),
            _suggestion("r1", "s1", stype="risk", overall=0.5),
            _suggestion("u1", "s1", stype="project_update", overall=0.7),
            _suggestion("i2", "s1", overall=0.99),
        ]
    )
    assert [s.suggestion_id for s in ordered] == ["u1", "r1", "i2", "i1"]


def test_canonical_ideas_in_plan_change_sections_become_updates() -> None:
    sections = {"s1": _section("s1", label="plan_change", stype="project_update")}
    canonical = _suggestion("a", "s1")
    seeded = _suggestion("b", "s1", source="signal_seed")

    out, drops = normalize_plan_change_types([canonical, seeded], sections)

    assert drops == []
    assert [s.type for s in out] == ["project_update", "idea"]
    assert out[0].metadata["retyped_from"] == "idea"
    assert out[0].payload == {"after_description": "Add CSV export for admins."}
    assert out[0].suggestion_key != canonical.suggestion_key


def test_non_canonical_sources_keep_their_provisional_actionability() -> None:
    section = _section("s1")
    canonical = refine_scores(_suggestion("a", "s1", actionability=0.95), section)
    seeded = refine_scores(_suggestion("b", "s1", actionability=0.95, source="signal_seed"), section)

    # One content line costs the short-section penalty.
    assert canonical.scores.section_actionability == pytest.approx(0.75)
    assert seeded.scores.section_actionability == pytest.approx(0.95)
    assert seeded.scores.overall > canonical.scores.overall


def test_scoring_pipeline_never_caps_plan_change_updates() -> None:
    sections = {"s1": _section("s1", label="plan_change", stype="project_update"), "s2": _section("s2")}
    result = run_scoring_pipeline(
        [_suggestion("a", "s1"), _suggestion("b", "s2"), _suggestion("c", "s2")],
        sections,
        GeneratorConfig(max_suggestions=1),
    )

    # The cap is full, but s2 still keeps its best idea.
    assert [s.suggestion_id for s in result.suggestions] == ["a", "b"]
    assert [s.type for s in result.suggestions] == ["project_update", "idea"]
    assert [(d.suggestion_id, d.reason) for d in result.drops] == [("c", DropReason.MAX_SUGGESTIONS_CAP)]
