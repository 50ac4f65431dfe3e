from __future__ import annotations

import argparse
import hashlib
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .adapters import adapt_stored_initiative, adapt_stored_note, get_suggestion_summary
from .debug import VERBOSITY_LEVELS
from .engine import PipelineIntegrityError, generate_suggestions
from .llm import LLMProvider, create_llm_provider
from .logs import configure_logging
from .models import GeneratorConfig, InitiativeSnapshot, NoteInput
from .profile import (
    ProfileError,
    config_from_profile,
    init_profile,
    load_profile,
    provider_config_from_profile,
    resolve_profile_path,
)


class InputError(ValueError):
    pass


def generate_note_id(text: str) -> str:
    return "note_" + hashlib.sha256(text.encode("utf-8")).hexdigest()[:12]


def read_note(path: Path, note_id: Optional[str]) -> NoteInput:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise InputError(f"Cannot read note: {path} ({e.strerror or e})") from e
    return NoteInput(note_id=note_id or generate_note_id(text), raw_markdown=text)


def read_stored_note(path: Path) -> NoteInput:
    try:
        record = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise InputError(f"Cannot read stored note JSON: {path}") from e
    if not isinstance(record, dict):
        raise InputError("Stored note JSON must be an object.")
    try:
        return adapt_stored_note(record)
    except ValueError as e:
        raise InputError(str(e)) from e


def read_initiatives(path: Path) -> List[InitiativeSnapshot]:
    """JSON or YAML list of `{id|_id, title, description?, status?}` records."""

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or []
    except (OSError, yaml.YAMLError) as e:
        raise InputError(f"Cannot read initiatives: {path}") from e
    if isinstance(data, dict) and isinstance(data.get("initiatives"), list):
        data = data["initiatives"]
    if not isinstance(data, list):
        raise InputError("Initiatives file must contain a list.")

    out: List[InitiativeSnapshot] = []
    for idx, item in enumerate(data):
        if not isinstance(item, dict):
            raise InputError(f"Initiative #{idx + 1} must be a mapping/object.")
        try:
            out.append(adapt_stored_initiative(item))
        except ValueError as e:
            raise InputError(f"Initiative #{idx + 1}: {e}") from e
    return out


def _load_config(args: argparse.Namespace, profile_path: Path) -> Dict[str, Any]:
    explicit = bool(args.profile)
    if not explicit and not profile_path.exists():
        return {}
    return load_profile(profile_path)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Extract structured suggestions from a markdown note")
    parser.add_argument("--note", type=str, default=None, help="Path to a markdown note")
    parser.add_argument(
        "--stored-note",
        type=str,
        default=None,
        help="Path to a stored note record (JSON with _id, body, createdAt in epoch ms)",
    )
    parser.add_argument("--note-id", type=str, default=None, help="Note identifier (default: note_<sha256 prefix>)")
    parser.add_argument("--initiatives", type=str, default=None, help="JSON or YAML list of existing initiatives for routing")
    parser.add_argument(
        "--profile",
        type=str,
        default=None,
        help="Path to generator profile YAML (optional; defaults to XDG config or ./suggest_profile.yaml)",
    )
    parser.add_argument(
        "--init-profile",
        action="store_true",
        help="Create a starter generator profile at the resolved profile path and exit",
    )
    parser.add_argument(
        "--overwrite-profile",
        action="store_true",
        help="With --init-profile, overwrite an existing profile file",
    )
    parser.add_argument(
        "--print-profile-path",
        action="store_true",
        help="Print the resolved profile path and exit",
    )
    parser.add_argument("--out", type=str, default=None, help="Output JSON path (default: stdout)")
    parser.add_argument("--debug", action="store_true", help="Include the debug ledger in the output")
    parser.add_argument(
        "--debug-verbosity",
        choices=VERBOSITY_LEVELS,
        default=None,
        help="Debug ledger verbosity (default: profile value or redacted)",
    )
    parser.add_argument("--max-suggestions", type=int, default=None, help="Override the suggestion cap")
    parser.add_argument("--strict", action="store_true", help="Fail (rc=2) when a pipeline invariant is violated")
    parser.add_argument("--log-level", type=str, default=None, help="Logging level (default: NOTE_SUGGEST_LOG_LEVEL or WARNING)")

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    # For --init-profile, prefer initializing in XDG config by default.
    profile_path = resolve_profile_path(args.profile, prefer_xdg=bool(args.init_profile))

    if args.print_profile_path:
        print(profile_path)
        return 0

    if args.init_profile:
        init_profile(profile_path, overwrite=bool(args.overwrite_profile))
        print(f"Initialized generator profile at {profile_path}")
        return 0

    if bool(args.note) == bool(args.stored_note):
        parser.error("Provide exactly one of --note or --stored-note")

    try:
        profile = _load_config(args, profile_path)
    except ProfileError as e:
        print(str(e))
        return 2

    config: GeneratorConfig = config_from_profile(profile)
    if args.max_suggestions is not None:
        if args.max_suggestions < 0:
            parser.error("--max-suggestions must be >= 0")
        config = replace(config, max_suggestions=int(args.max_suggestions))
    if args.debug:
        config = replace(config, enable_debug=True)
    if args.debug_verbosity:
        config = replace(config, debug_verbosity=args.debug_verbosity)

    provider: Optional[LLMProvider] = None
    provider_cfg = provider_config_from_profile(profile)
    if provider_cfg is not None:
        try:
            provider = create_llm_provider(provider_cfg)
        except ValueError as e:
            print(f"LLM provider config invalid: {e}", file=sys.stderr)
            return 2

    try:
        if args.note:
            note = read_note(Path(args.note), args.note_id)
        else:
            note = read_stored_note(Path(args.stored_note))
            if args.note_id:
                note = replace(note, note_id=args.note_id)
        initiatives = read_initiatives(Path(args.initiatives)) if args.initiatives else []
    except InputError as e:
        print(str(e))
        return 2

    try:
        result = generate_suggestions(note, initiatives, config, llm_provider=provider, strict=bool(args.strict))
    except PipelineIntegrityError as e:
        print(str(e), file=sys.stderr)
        return 2

    payload: Dict[str, Any] = {"note_id": note.note_id, "authored_at": note.authored_at, **result.to_dict()}
    text = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"

    if not args.out:
        sys.stdout.write(text)
        return 0

    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(text, encoding="utf-8")

    print(f"Wrote {out_path}")
    print(f"Suggestions: {len(result.suggestions)}")
    for s in result.suggestions:
        print(f"- {get_suggestion_summary(s)}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
