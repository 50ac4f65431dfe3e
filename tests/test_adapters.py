from __future__ import annotations

from dataclasses import replace

import pytest

from note_suggest.adapters import (
    adapt_stored_initiative,
    adapt_stored_note,
    epoch_ms_to_iso,
    get_suggestion_summary,
    suggestion_card,
    suggestion_to_content,
)
from note_suggest.models import EvidenceSpan, Routing, Suggestion, SuggestionContext, SuggestionScores


def _suggestion(stype: str = "idea", body: str = "Add CSV export for admins.") -> Suggestion:
    payload = {"after_description": body} if stype == "project_update" else {"draft_initiative": {"title": "Add CSV export", "description": body}}
    return Suggestion(
        suggestion_id="sug_n1_1",
        note_id="n1",
        section_id="sec_n1_1",
        type=stype,
        title="Add CSV export",
        payload=payload,
        evidence_spans=(EvidenceSpan(start_line=2, end_line=2, text=body),),
        scores=SuggestionScores(section_actionability=0.9, type_choice_confidence=0.8, synthesis_confidence=0.8, overall=0.834),
        routing=Routing(),
        suggestion_key="k" * 40,
        metadata={"source": "canonical"},
    )


def test_epoch_ms_to_iso() -> None:
    assert epoch_ms_to_iso(0) == "1970-01-01T00:00:00.000Z"
    assert epoch_ms_to_iso(1700000000500) == "2023-11-14T22:13:20.500Z"
    assert epoch_ms_to_iso(None) is None


def test_adapt_stored_note() -> None:
    note = adapt_stored_note({"_id": 42, "body": "# Hi", "createdAt": 0})
    assert note.note_id == "42"
    assert note.raw_markdown == "# Hi"
    assert note.authored_at == "1970-01-01T00:00:00.000Z"

    assert adapt_stored_note({"_id": "a", "body": None, "createdAt": "yesterday"}).authored_at is None
    with pytest.raises(ValueError, match="'_id' and 'body'"):
        adapt_stored_note({"body": "x"})


def test_adapt_stored_initiative_accepts_either_id_key() -> None:
    a = adapt_stored_initiative({"_id": "i1", "title": "Billing", "status": "active"})
    b = adapt_stored_initiative({"id": 7, "title": "Search", "description": None})
    assert (a.id, a.title, a.status) == ("i1", "Billing", "active")
    assert (b.id, b.description) == ("7", "")
    with pytest.raises(ValueError):
        adapt_stored_initiative({"title": "No id"})


def test_summary_reflects_routing() -> None:
    s = _suggestion()
    assert get_suggestion_summary(s) == "[New Initiative] Add CSV export (score: 0.83)"

    attached = replace(s, routing=Routing(create_new=False, attached_initiative_id="i1", similarity=0.91))
    assert get_suggestion_summary(attached) == "[Update: i1] Add CSV export (score: 0.83)"


def test_suggestion_to_content() -> None:
    assert suggestion_to_content(_suggestion()) == "Add CSV export\n\nAdd CSV export for admins."
    assert suggestion_to_content(_suggestion("project_update", body="Pushed 2 weeks.")) == "Add CSV export\n\nPushed 2 weeks."

    bare = replace(_suggestion(), payload={})
    assert suggestion_to_content(bare) == "Add CSV export"


def test_suggestion_card_prefers_context() -> None:
    s = _suggestion()
    card = suggestion_card(s)
    assert card["body"] == "Add CSV export for admins."
    assert card["evidence_preview"] == []
    assert card["summary"].startswith("[New Initiative]")

    ctx = SuggestionContext(
        title="Add CSV export",
        body="Admins need CSV export.",
        evidence_preview=("Add CSV export for admins.",),
        source_section_id="sec_n1_1",
        source_heading="Exports",
    )
    card = suggestion_card(replace(s, context=ctx))
    assert card["body"] == "Admins need CSV export."
    assert card["evidence_preview"] == ["Add CSV export for admins."]
    assert card["source_heading"] == "Exports"
