from __future__ import annotations

import textwrap

import pytest

from note_suggest.debug import build_debug_ledger, fingerprint, make_preview, normalize_verbosity, redact_text
from note_suggest.engine import generate_suggestions
from note_suggest.models import GeneratorConfig, NoteInput
from note_suggest.rules import RULES_VERSION


TWO_DELAYS = textwrap.dedent(
    """\
    ## Mobile App Launch

    The mobile app launch is delayed by 10 days because of App Store review.

    ## Billing Migration

    Billing migration pushed back 2 weeks to March 15 due to vendor API changes.
    """
)

CAPPED = textwrap.dedent(
    """\
    ## Export

    Add CSV export for admins.

    ## Partner Portal

    - Shared inbox for partner questions and escalations
    - Self-serve asset library with logos and copy
    - Quarterly partner scorecards with shared pipeline metrics
    """
)


def _debug(text: str, **overrides: object) -> dict:
    config = GeneratorConfig(enable_debug=True, **overrides)  # type: ignore[arg-type]
    result = generate_suggestions(NoteInput(note_id="n1", raw_markdown=text), config=config)
    assert result.debug is not None
    return result.debug


def test_redacted_ledger_hides_text_but_keeps_fingerprints() -> None:
    debug = _debug(TWO_DELAYS)

    assert debug["verbosity"] == "redacted"
    assert debug["rules_version"] == RULES_VERSION
    assert debug["note_id"] == "n1"
    assert debug["thresholds"]["MIN_EVIDENCE_CHARS"] == 120

    counters = debug["counters"]
    assert counters["sections_count"] == 2
    assert counters["actionable_sections_count"] == 2
    assert counters["plan_change_count"] == 2
    assert counters["plan_change_emitted_count"] == 2

    assert [c["status"] for c in debug["candidates"]] == ["emitted", "emitted"]
    title = debug["candidates"][0]["title"]
    assert set(title) == {"preview", "sha256"}
    assert len(title["sha256"]) == 16
    assert all(len(s["emitted_ids"]) == 1 for s in debug["sections"])


def test_full_ledger_carries_raw_text() -> None:
    debug = _debug(TWO_DELAYS, debug_verbosity="full")

    titles = sorted(c["title"] for c in debug["candidates"])
    assert titles == ["Update: Billing Migration (2 weeks)", "Update: Mobile App Launch (10 days)"]
    assert debug["sections"][0]["heading_text"] == "Mobile App Launch"


def test_off_verbosity_returns_no_ledger() -> None:
    result = generate_suggestions(
        NoteInput(note_id="n1", raw_markdown=TWO_DELAYS),
        config=GeneratorConfig(enable_debug=True, debug_verbosity="off"),
    )
    assert result.debug is None


def test_dropped_candidates_are_explained() -> None:
    debug = _debug(CAPPED, max_suggestions=1, debug_verbosity="full")

    dropped = [c for c in debug["candidates"] if c["status"] == "dropped"]
    assert [c["title"] for c in dropped] == ["Partner Portal"]
    assert dropped[0]["drop"]["reason"] == "max_suggestions_cap"
    assert dropped[0]["drop"]["stage"] == "scoring"
    assert debug["counters"]["drops_by_reason"] == {"max_suggestions_cap": 1}


def test_suppressed_section_records_its_drop() -> None:
    debug = _debug("## Summary\n\nWe talked about the roadmap and the hiring plan.\n")

    assert debug["candidates"] == []
    assert [d["reason"] for d in debug["sections"][0]["drops"]] == ["process_noise_heading"]


def test_redaction_helpers() -> None:
    text = "Mail dana@example.com or call 555-123-4567, SSN 123-45-6789"
    redacted = redact_text(text)

    assert "dana@example.com" not in redacted
    assert "[email]" in redacted
    assert "[phone]" in redacted
    assert "[ssn]" in redacted
    assert make_preview("x" * 100).endswith("…")
    assert fingerprint("abc") == fingerprint("abc")


def test_normalize_verbosity() -> None:
    assert normalize_verbosity(None) == "redacted"
    assert normalize_verbosity("FULL_TEXT") == "full"
    with pytest.raises(ValueError):
        normalize_verbosity("verbose")


def test_ledger_reads_only_the_trace() -> None:
    assert build_debug_ledger({"note_id": "n1"}, "off") is None
    ledger = build_debug_ledger({"note_id": "n1"}, "redacted")
    assert ledger is not None
    assert ledger["candidates"] == []
    assert ledger["counters"]["sections_count"] == 0
