from __future__ import annotations

import json
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from . import cli


@dataclass(frozen=True)
class GoldFailure:
    case_id: str
    message: str


def _as_path(base: Path, raw: Any) -> Optional[Path]:
    if not isinstance(raw, str) or not raw.strip():
        return None
    p = Path(raw)
    return (base / p).resolve() if not p.is_absolute() else p


def load_gold_file(gold_path: Path) -> Dict[str, Any]:
    data = yaml.safe_load(gold_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Gold file must be a mapping: {gold_path}")
    return data


def _suggestion_text(s: Dict[str, Any]) -> str:
    payload = s.get("payload") or {}
    draft = payload.get("draft_initiative") or {}
    body = payload.get("after_description") or draft.get("description") or ""
    return f"{s.get('title') or ''}\n{body}"


def evaluate_gold_case(
    *,
    case: Dict[str, Any],
    base_dir: Path,
    profile_path: Optional[Path],
) -> Tuple[int, Dict[str, Any]]:
    case_id = str(case.get("id") or "")
    note_id = str(case.get("note_id") or case_id or "gold")

    note_path = _as_path(base_dir, case.get("note"))
    if note_path is None:
        raise ValueError(f"Gold case {case_id!r} must specify a note")

    with tempfile.TemporaryDirectory(prefix="note-suggest-gold-") as td:
        out_path = Path(td) / f"{note_id}.json"
        argv: List[str] = ["--note", str(note_path), "--note-id", note_id, "--out", str(out_path)]
        if profile_path is not None:
            argv.extend(["--profile", str(profile_path)])
        initiatives = _as_path(base_dir, case.get("initiatives"))
        if initiatives is not None:
            argv.extend(["--initiatives", str(initiatives)])

        rc = cli.main(argv)
        payload = json.loads(out_path.read_text(encoding="utf-8")) if out_path.exists() else {}

    return rc, payload


def check_gold_payload(*, case_id: str, payload: Dict[str, Any], expected: Dict[str, Any]) -> List[GoldFailure]:
    failures: List[GoldFailure] = []

    suggestions = payload.get("suggestions")
    if not isinstance(suggestions, list):
        suggestions = []
    suggestions = [s for s in suggestions if isinstance(s, dict)]

    count = expected.get("count")
    if isinstance(count, int) and len(suggestions) != count:
        failures.append(GoldFailure(case_id=case_id, message=f"Expected {count} suggestions, got {len(suggestions)}"))

    min_count = expected.get("min_count")
    if isinstance(min_count, int) and len(suggestions) < min_count:
        failures.append(GoldFailure(case_id=case_id, message=f"Expected at least {min_count} suggestions, got {len(suggestions)}"))

    min_types = expected.get("min_types")
    if isinstance(min_types, dict):
        for stype, n in min_types.items():
            got = sum(1 for s in suggestions if s.get("type") == stype)
            if isinstance(n, int) and got < n:
                failures.append(GoldFailure(case_id=case_id, message=f"Expected at least {n} {stype} suggestions, got {got}"))

    needles = expected.get("must_include")
    if isinstance(needles, list):
        for needle in needles:
            if not isinstance(needle, str) or not needle:
                continue
            if not any(needle.casefold() in _suggestion_text(s).casefold() for s in suggestions):
                failures.append(GoldFailure(case_id=case_id, message=f"No suggestion mentions {needle!r}"))

    title_prefixes = expected.get("title_startswith")
    if isinstance(title_prefixes, list):
        for prefix in title_prefixes:
            if isinstance(prefix, str) and not any(str(s.get("title") or "").startswith(prefix) for s in suggestions):
                failures.append(GoldFailure(case_id=case_id, message=f"No suggestion title starts with {prefix!r}"))

    banned = expected.get("must_not_include_titles")
    if isinstance(banned, list):
        for title in banned:
            if isinstance(title, str) and any(str(s.get("title") or "").casefold() == title.casefold() for s in suggestions):
                failures.append(GoldFailure(case_id=case_id, message=f"Unexpected suggestion titled {title!r}"))

    return failures


def evaluate_gold_suite(gold_path: Path) -> List[GoldFailure]:
    gold = load_gold_file(gold_path)

    base_dir = gold_path.parent
    profile_path = _as_path(base_dir, gold.get("profile"))

    cases = gold.get("cases")
    if not isinstance(cases, list) or not cases:
        raise ValueError("Gold file must include non-empty cases[]")

    failures: List[GoldFailure] = []

    for c in cases:
        if not isinstance(c, dict):
            continue
        case_id = str(c.get("id") or "")
        expected = c.get("expected")
        if not isinstance(expected, dict):
            expected = {}

        rc, payload = evaluate_gold_case(case=c, base_dir=base_dir, profile_path=profile_path)
        if rc != 0:
            failures.append(GoldFailure(case_id=case_id or "(unknown)", message=f"CLI returned non-zero exit code: {rc}"))

        failures.extend(check_gold_payload(case_id=case_id or "(unknown)", payload=payload, expected=expected))

    return failures
