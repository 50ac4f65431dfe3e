from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .llm import ProviderConfig
from .models import THRESHOLD_NAMES, GeneratorConfig, ThresholdConfig


class ProfileError(ValueError):
	pass


DEFAULT_PROFILE_BASENAME = "suggest_profile.yaml"

DEBUG_VERBOSITIES = ("off", "redacted", "full")


DEFAULT_PROFILE_TEMPLATE = """version: 1
profile_name: "local"

# Scores are in [0, 1]. Lower T_overall_min / T_section_min flag fewer
# suggestions for clarification; they never drop project updates.
thresholds:
  T_action: 0.5
  T_out_of_scope: 0.4
  T_overall_min: 0.65
  T_section_min: 0.6
  T_generic: 0.55
  T_attach: 0.80
  MIN_EVIDENCE_CHARS: 120

# Only ideas are trimmed by the cap.
max_suggestions: 5

enable_debug: false
debug_verbosity: redacted

# Optional auxiliary intent classifier. Leave disabled to stay rule-based.
# llm:
#   provider: ollama
#   endpoint: "http://localhost:11434"
#   model: "llama3.1:8b"
#   timeout_s: 60
"""


def _xdg_config_home() -> Path:
	base = os.environ.get("XDG_CONFIG_HOME")
	if base:
		return Path(base)
	home = os.environ.get("HOME")
	if home:
		return Path(home) / ".config"
	return Path.home() / ".config"


def default_profile_path() -> Path:
	return _xdg_config_home() / "note_suggest" / DEFAULT_PROFILE_BASENAME


def resolve_profile_path(explicit: Optional[str], *, prefer_xdg: bool = False) -> Path:
	"""Resolve the generator profile path.

	Precedence:
	1) explicit CLI arg
	2) NOTE_SUGGEST_PROFILE env var
	3) XDG config file (if exists)
	4) local ./suggest_profile.yaml (if exists)
	5) XDG config file (default location)
	"""

	if explicit:
		return Path(explicit)

	env_path = os.environ.get("NOTE_SUGGEST_PROFILE")
	if env_path:
		return Path(env_path)

	xdg = default_profile_path()
	if xdg.exists():
		return xdg

	if not prefer_xdg:
		local = Path.cwd() / DEFAULT_PROFILE_BASENAME
		if local.exists():
			return local

	return xdg


def init_profile(path: Path, *, overwrite: bool = False) -> Path:
	"""Create a starter profile file.

	If overwrite is False and the path exists, this is a no-op.
	Returns the path.
	"""

	if path.exists() and not overwrite:
		return path

	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_text(DEFAULT_PROFILE_TEMPLATE, encoding="utf-8")
	return path


def load_profile(path: Path) -> Dict[str, Any]:
	try:
		with path.open("r", encoding="utf-8") as f:
			data = yaml.safe_load(f) or {}
	except FileNotFoundError as e:
		raise ProfileError(
			f"Generator profile not found: {path}. "
			"Create one with: --init-profile"
		) from e
	except Exception as e:
		raise ProfileError(f"Failed to read generator profile YAML: {path}") from e

	if not isinstance(data, dict):
		raise ProfileError("Generator profile YAML must be a mapping (top-level object).")

	validate_profile(data)
	return data


def _validate_llm(llm: Any) -> None:
	if not isinstance(llm, dict):
		raise ProfileError("Profile field 'llm' must be an object.")

	for field in ("provider", "endpoint", "model"):
		value = llm.get(field)
		if value is not None and (not isinstance(value, str) or not value.strip()):
			raise ProfileError(f"Profile field 'llm.{field}' must be a non-empty string if provided.")

	timeout_s = llm.get("timeout_s")
	if timeout_s is not None:
		try:
			float(timeout_s)
		except Exception as e:
			raise ProfileError("Profile field 'llm.timeout_s' must be a number.") from e


def validate_profile(profile: Dict[str, Any]) -> None:
	"""Lightweight validation for user-edited profiles."""

	version = profile.get("version", 1)
	if version != 1:
		raise ProfileError(f"Unsupported profile version: {version!r} (expected 1).")

	thresholds = profile.get("thresholds")
	if thresholds is not None:
		if not isinstance(thresholds, dict):
			raise ProfileError("Profile field 'thresholds' must be an object.")
		for name, value in thresholds.items():
			if name not in THRESHOLD_NAMES:
				raise ProfileError(
					f"Unknown threshold '{name}'. Supported: {', '.join(THRESHOLD_NAMES)}."
				)
			if isinstance(value, bool) or not isinstance(value, (int, float)):
				raise ProfileError(f"Threshold '{name}' must be a number.")
			if name == "MIN_EVIDENCE_CHARS":
				if value < 0:
					raise ProfileError("Threshold 'MIN_EVIDENCE_CHARS' must be >= 0.")
			elif not (0.0 <= float(value) <= 1.0):
				raise ProfileError(f"Threshold '{name}' must be between 0 and 1.")

	max_suggestions = profile.get("max_suggestions")
	if max_suggestions is not None:
		if isinstance(max_suggestions, bool) or not isinstance(max_suggestions, int) or max_suggestions < 0:
			raise ProfileError("Profile field 'max_suggestions' must be a non-negative integer.")

	enable_debug = profile.get("enable_debug")
	if enable_debug is not None and not isinstance(enable_debug, bool):
		raise ProfileError("Profile field 'enable_debug' must be true or false.")

	verbosity = profile.get("debug_verbosity")
	if verbosity is not None and verbosity not in DEBUG_VERBOSITIES:
		raise ProfileError(
			f"Profile field 'debug_verbosity' must be one of: {', '.join(DEBUG_VERBOSITIES)}."
		)

	llm = profile.get("llm")
	if llm is not None:
		_validate_llm(llm)


def config_from_profile(profile: Dict[str, Any]) -> GeneratorConfig:
	overrides = dict(profile.get("thresholds") or {})
	if "MIN_EVIDENCE_CHARS" in overrides:
		overrides["MIN_EVIDENCE_CHARS"] = int(overrides["MIN_EVIDENCE_CHARS"])
	defaults = GeneratorConfig()
	return GeneratorConfig(
		thresholds=ThresholdConfig(**overrides),
		max_suggestions=int(profile.get("max_suggestions", defaults.max_suggestions)),
		enable_debug=bool(profile.get("enable_debug", defaults.enable_debug)),
		use_llm_classifiers=profile.get("llm") is not None,
		debug_verbosity=str(profile.get("debug_verbosity") or defaults.debug_verbosity),
	)


def provider_config_from_profile(profile: Dict[str, Any]) -> Optional[ProviderConfig]:
	llm = profile.get("llm")
	if not isinstance(llm, dict):
		return None
	return ProviderConfig(
		provider=str(llm.get("provider") or "ollama"),
		endpoint=str(llm.get("endpoint") or "http://localhost:11434"),
		model=str(llm.get("model") or ""),
		timeout_s=float(llm.get("timeout_s") or 60.0),
	)
