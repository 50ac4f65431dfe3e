"""Translation between stored records and the pipeline's input/output types."""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict, Mapping, Optional

from .models import InitiativeSnapshot, NoteInput, Suggestion


def epoch_ms_to_iso(value: Optional[float]) -> Optional[str]:
    if value is None:
        return None
    ts = dt.datetime.fromtimestamp(float(value) / 1000.0, tz=dt.timezone.utc)
    return ts.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def adapt_stored_note(record: Mapping[str, Any]) -> NoteInput:
    """`{_id, body, createdAt[, title]}` (createdAt in epoch milliseconds) -> NoteInput."""

    if "_id" not in record or "body" not in record:
        raise ValueError("stored note requires '_id' and 'body'")
    created = record.get("createdAt")
    return NoteInput(
        note_id=str(record["_id"]),
        raw_markdown=str(record.get("body") or ""),
        authored_at=epoch_ms_to_iso(created) if isinstance(created, (int, float)) else None,
    )


def adapt_stored_initiative(record: Mapping[str, Any]) -> InitiativeSnapshot:
    raw_id = record.get("_id", record.get("id"))
    if raw_id is None:
        raise ValueError("stored initiative requires '_id' or 'id'")
    return InitiativeSnapshot(
        id=str(raw_id),
        title=str(record.get("title") or ""),
        description=str(record.get("description") or ""),
        status=str(record.get("status") or ""),
    )


def suggestion_to_content(suggestion: Suggestion) -> str:
    body = suggestion.body
    if not body and suggestion.type != "project_update" and "draft_initiative" not in suggestion.payload:
        return suggestion.title
    return f"{suggestion.title}\n\n{body}"


def get_suggestion_summary(suggestion: Suggestion) -> str:
    if suggestion.routing.create_new:
        route = "[New Initiative]"
    else:
        route = f"[Update: {suggestion.routing.attached_initiative_id}]"
    return f"{route} {suggestion.title} (score: {suggestion.scores.overall:.2f})"


def suggestion_card(suggestion: Suggestion) -> Dict[str, Any]:
    """Compact display payload for one suggestion."""

    ctx = suggestion.context
    return {
        "id": suggestion.suggestion_id,
        "type": suggestion.type,
        "title": suggestion.title,
        "body": ctx.body if ctx is not None else suggestion.body,
        "evidence_preview": list(ctx.evidence_preview) if ctx is not None else [],
        "source_heading": ctx.source_heading if ctx is not None else "",
        "needs_clarification": suggestion.needs_clarification,
        "summary": get_suggestion_summary(suggestion),
    }
