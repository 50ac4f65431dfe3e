from __future__ import annotations

import hashlib
import re


MAX_KEY_TITLE_CHARS = 120


def normalize_title_for_key(title: str) -> str:
    t = re.sub(r"[^\w\s]", " ", (title or "").lower())
    t = re.sub(r"\s+", " ", t).strip()
    return t[:MAX_KEY_TITLE_CHARS]


def compute_suggestion_key(note_id: str, section_id: str, suggestion_type: str, title: str) -> str:
    """Content-addressed key; identical inputs give identical keys across runs."""

    material = "|".join([note_id, section_id, suggestion_type, normalize_title_for_key(title)])
    return hashlib.sha256(material.encode("utf-8")).hexdigest()[:40]
