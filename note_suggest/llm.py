from __future__ import annotations

import json
import logging
import re
import socket
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urljoin
from urllib.request import Request, urlopen

from .logs import log_event
from .models import INTENT_LABELS
from .prompts import SECTION_INTENT_CLASSIFY, build_section_intent_prompt


# Below this confidence the LLM opinion is ignored entirely.
MIN_LLM_CONFIDENCE = 0.3
MAX_LLM_WEIGHT = 0.8


@dataclass(frozen=True)
class ProviderConfig:
    provider: str
    endpoint: str
    model: str
    timeout_s: float = 60.0


@dataclass(frozen=True)
class LLMIntentResult:
    intent: Dict[str, float]
    confidence: float
    prompt_id: str = SECTION_INTENT_CLASSIFY.id
    prompt_version: int = SECTION_INTENT_CLASSIFY.version


@dataclass(frozen=True)
class LLMError(Exception):
    code: str
    message: str
    retryable: bool
    provider: Optional[str] = None
    model: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:  # pragma: no cover
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.provider:
            out["provider"] = self.provider
        if self.model:
            out["model"] = self.model
        if self.details:
            out["details"] = self.details
        return out


class LLMProvider:
    def generate_text(self, *, prompt: str) -> str:
        raise NotImplementedError


def _normalize_endpoint(endpoint: str) -> str:
    endpoint = endpoint.strip()
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    return endpoint


class OllamaProvider(LLMProvider):
    def __init__(self, cfg: ProviderConfig):
        if not cfg.model.strip():
            raise ValueError("cfg.model is required")
        self._cfg = ProviderConfig(
            provider=cfg.provider,
            endpoint=_normalize_endpoint(cfg.endpoint),
            model=cfg.model.strip(),
            timeout_s=float(cfg.timeout_s),
        )

    def _error(self, code: str, message: str, *, retryable: bool, details: Optional[Dict[str, Any]] = None) -> LLMError:
        return LLMError(
            code=code,
            message=message,
            retryable=retryable,
            provider=self._cfg.provider,
            model=self._cfg.model,
            details=details,
        )

    def generate_text(self, *, prompt: str) -> str:
        url = urljoin(self._cfg.endpoint + "/", "api/generate")
        payload = {"model": self._cfg.model, "prompt": prompt, "stream": False, "format": "json"}
        req = Request(
            url,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )

        try:
            with urlopen(req, timeout=self._cfg.timeout_s) as resp:
                raw_bytes = resp.read()
        except HTTPError as e:
            raise self._error(
                "llm_http_error",
                f"Ollama request failed (HTTP {getattr(e, 'code', 'unknown')}).",
                retryable=False,
                details={"http_status": getattr(e, "code", None)},
            )
        except (URLError, ConnectionError) as e:
            raise self._error(
                "llm_unavailable",
                f"Ollama is unreachable at {self._cfg.endpoint}. Is it running?",
                retryable=True,
                details={"exception_type": type(e).__name__},
            )
        except socket.timeout as e:
            raise self._error(
                "llm_timeout",
                f"Ollama request timed out after {self._cfg.timeout_s:.0f}s.",
                retryable=True,
                details={"exception_type": type(e).__name__},
            )

        try:
            data = json.loads(raw_bytes.decode("utf-8", errors="replace"))
        except json.JSONDecodeError as e:
            raise self._error("llm_parse_error", "Failed to parse Ollama response JSON.", retryable=False, details={"exception_type": type(e).__name__})

        if isinstance(data, dict) and isinstance(data.get("error"), str) and data["error"].strip():
            raise self._error("llm_provider_error", f"Ollama error: {data['error'].strip()}", retryable=False)

        response_text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(response_text, str):
            raise self._error("llm_parse_error", "Ollama response did not include a 'response' string.", retryable=False)
        return response_text


def create_llm_provider(cfg: ProviderConfig) -> LLMProvider:
    provider = (cfg.provider or "").strip().lower()
    if provider in ("ollama", ""):
        return OllamaProvider(cfg)
    raise ValueError(f"Unsupported LLM provider: {cfg.provider}")


def _clamp01(value: Any) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(1.0, v))


def parse_intent_response(text: str) -> LLMIntentResult:
    """Parse the classifier JSON. Tolerates prose around a single JSON object."""

    m = re.search(r"\{.*\}", text or "", flags=re.DOTALL)
    if not m:
        raise LLMError(code="llm_parse_error", message="No JSON object in classifier response.", retryable=False)
    try:
        data = json.loads(m.group(0))
    except json.JSONDecodeError as e:
        raise LLMError(code="llm_parse_error", message=f"Invalid classifier JSON: {e.msg}", retryable=False)

    raw_intent = data.get("intent") if isinstance(data, dict) else None
    if not isinstance(raw_intent, dict):
        raise LLMError(code="llm_parse_error", message="Classifier JSON is missing 'intent'.", retryable=False)

    intent = {label: _clamp01(raw_intent.get(label, 0.0)) for label in INTENT_LABELS}
    return LLMIntentResult(intent=intent, confidence=_clamp01(data.get("confidence", 0.5)))


def classify_intent_with_llm(provider: LLMProvider, *, heading: str, body_text: str) -> Optional[LLMIntentResult]:
    """Ask the provider for intent scores. Returns None (rule-based fallback) on any LLM failure."""

    prompt = build_section_intent_prompt(heading=heading, body_text=body_text)
    try:
        return parse_intent_response(provider.generate_text(prompt=prompt))
    except LLMError as e:
        log_event(logging.WARNING, "llm intent classification failed", code=e.code, retryable=e.retryable)
        return None


def blend_intent_scores(
    llm_intent: Optional[Dict[str, float]],
    rule_intent: Dict[str, float],
    llm_confidence: float = 0.5,
) -> Dict[str, float]:
    if not llm_intent or llm_confidence < MIN_LLM_CONFIDENCE:
        return dict(rule_intent)

    llm_weight = min(MAX_LLM_WEIGHT, llm_confidence)
    rule_weight = 1.0 - llm_weight
    return {
        label: round(llm_intent.get(label, 0.0) * llm_weight + rule_intent.get(label, 0.0) * rule_weight, 4)
        for label in INTENT_LABELS
    }
