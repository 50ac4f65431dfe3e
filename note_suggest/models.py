from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


INTENT_LABELS = (
    "plan_change",
    "new_workstream",
    "status_informational",
    "communication",
    "research",
    "calendar",
    "micro_tasks",
)

NON_ACTIONABLE_LABELS = ("status_informational", "communication", "calendar", "micro_tasks")


@dataclass(frozen=True)
class NoteInput:
    note_id: str
    raw_markdown: str
    authored_at: Optional[str] = None


@dataclass(frozen=True)
class Line:
    index: int
    text: str
    line_type: str
    indent_level: int = 0
    heading_level: Optional[int] = None


@dataclass(frozen=True)
class StructuralFeatures:
    num_lines: int
    num_list_items: int
    has_dates: bool
    has_metrics: bool
    has_quarter_refs: bool
    has_version_refs: bool
    has_launch_keywords: bool
    initiative_phrase_density: float


@dataclass(frozen=True)
class Section:
    section_id: str
    note_id: str
    heading_text: Optional[str]
    heading_level: int
    start_line: int
    end_line: int
    body_lines: Tuple[Line, ...]
    structural_features: StructuralFeatures
    raw_text: str
    parent_section_id: Optional[str] = None

    def content_lines(self) -> List[Line]:
        return [ln for ln in self.body_lines if ln.line_type not in ("blank", "code") and ln.text.strip()]

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["body_lines"] = [asdict(ln) for ln in self.body_lines]
        return out


@dataclass(frozen=True)
class ClassifiedSection:
    section: Section
    intent: Dict[str, float]
    intent_label: str
    is_actionable: bool
    actionable_signal: float
    out_of_scope_signal: float
    suggested_type: Optional[str]
    type_confidence: float
    flags: Tuple[str, ...] = ()

    # Read-through accessors so strategies can treat a classified section like a section.
    @property
    def section_id(self) -> str:
        return self.section.section_id

    @property
    def note_id(self) -> str:
        return self.section.note_id

    @property
    def heading_text(self) -> Optional[str]:
        return self.section.heading_text

    @property
    def raw_text(self) -> str:
        return self.section.raw_text

    @property
    def body_lines(self) -> Tuple[Line, ...]:
        return self.section.body_lines

    @property
    def features(self) -> StructuralFeatures:
        return self.section.structural_features

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section_id": self.section_id,
            "heading_text": self.heading_text,
            "intent": {k: round(v, 4) for k, v in self.intent.items()},
            "intent_label": self.intent_label,
            "is_actionable": self.is_actionable,
            "actionable_signal": round(self.actionable_signal, 4),
            "out_of_scope_signal": round(self.out_of_scope_signal, 4),
            "suggested_type": self.suggested_type,
            "type_confidence": round(self.type_confidence, 4),
            "flags": list(self.flags),
        }


@dataclass(frozen=True)
class EvidenceSpan:
    start_line: int
    end_line: int
    text: str


@dataclass(frozen=True)
class SuggestionScores:
    section_actionability: float
    type_choice_confidence: float
    synthesis_confidence: float
    overall: float = 0.0


@dataclass(frozen=True)
class Routing:
    create_new: bool = True
    attached_initiative_id: Optional[str] = None
    similarity: Optional[float] = None


@dataclass(frozen=True)
class SuggestionContext:
    title: str
    body: str
    evidence_preview: Tuple[str, ...]
    source_section_id: str
    source_heading: str


@dataclass(frozen=True)
class Suggestion:
    suggestion_id: str
    note_id: str
    section_id: str
    type: str
    title: str
    payload: Dict[str, Any]
    evidence_spans: Tuple[EvidenceSpan, ...]
    scores: SuggestionScores
    routing: Routing
    suggestion_key: str
    metadata: Dict[str, Any]
    context: Optional[SuggestionContext] = None
    needs_clarification: bool = False
    clarification_reasons: Tuple[str, ...] = ()
    validation_results: Tuple[Dict[str, Any], ...] = ()
    is_high_confidence: bool = False

    @property
    def source(self) -> str:
        return str(self.metadata.get("source") or "")

    @property
    def body(self) -> str:
        if self.type == "project_update":
            return str(self.payload.get("after_description") or "")
        draft = self.payload.get("draft_initiative") or {}
        return str(draft.get("description") or "")

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "suggestion_id": self.suggestion_id,
            "note_id": self.note_id,
            "section_id": self.section_id,
            "type": self.type,
            "title": self.title,
            "payload": self.payload,
            "evidence_spans": [asdict(e) for e in self.evidence_spans],
            "scores": {k: round(v, 4) for k, v in asdict(self.scores).items()},
            "routing": {k: v for k, v in asdict(self.routing).items() if v is not None},
            "suggestionKey": self.suggestion_key,
            "metadata": self.metadata,
            "needs_clarification": self.needs_clarification,
            "is_high_confidence": self.is_high_confidence,
        }
        if self.clarification_reasons:
            out["clarification_reasons"] = list(self.clarification_reasons)
        if self.context is not None:
            ctx = asdict(self.context)
            ctx["evidence_preview"] = list(self.context.evidence_preview)
            out["suggestion"] = ctx
        return out


@dataclass(frozen=True)
class InitiativeSnapshot:
    id: str
    title: str
    description: str = ""
    status: str = ""


@dataclass(frozen=True)
class ThresholdConfig:
    T_action: float = 0.5
    T_out_of_scope: float = 0.4
    T_overall_min: float = 0.65
    T_section_min: float = 0.6
    T_generic: float = 0.55
    T_attach: float = 0.80
    MIN_EVIDENCE_CHARS: int = 120


THRESHOLD_NAMES = tuple(ThresholdConfig.__dataclass_fields__.keys())


@dataclass(frozen=True)
class GeneratorConfig:
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    max_suggestions: int = 5
    enable_debug: bool = False
    use_llm_classifiers: bool = False
    debug_verbosity: str = "redacted"


class DropReason(str, Enum):
    PROCESS_NOISE_HEADING = "process_noise_heading"
    DERIVATIVE_CONTENT = "derivative_content"
    DUPLICATE_KEY = "duplicate_key"
    ANTI_VACUITY = "anti_vacuity"
    EVIDENCE_SANITY = "evidence_sanity"
    HEADING_ONLY = "heading_only"
    UNGROUNDED_EVIDENCE = "ungrounded_evidence"
    INTERNAL_ERROR = "internal_error"
    SECTION_NOT_FOUND = "section_not_found"
    MAX_SUGGESTIONS_CAP = "max_suggestions_cap"
    CONSOLIDATED = "consolidated"


@dataclass(frozen=True)
class DropRecord:
    section_id: str
    reason: DropReason
    stage: str
    detail: str = ""
    suggestion_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "section_id": self.section_id,
            "reason": self.reason.value,
            "stage": self.stage,
        }
        if self.detail:
            out["detail"] = self.detail
        if self.suggestion_id:
            out["suggestion_id"] = self.suggestion_id
        return out


@dataclass(frozen=True)
class GeneratorResult:
    suggestions: List[Suggestion]
    debug: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"suggestions": [s.to_dict() for s in self.suggestions]}
        if self.debug is not None:
            out["debug"] = self.debug
        return out
