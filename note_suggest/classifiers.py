from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .llm import LLMIntentResult, blend_intent_scores
from .models import INTENT_LABELS, NON_ACTIONABLE_LABELS, ClassifiedSection, Section, ThresholdConfig
from .preprocessing import split_sentences
from .rules import (
    CALENDAR_RE,
    CHANGE_OPERATOR_RE,
    COMMUNICATION_RE,
    DECISION_MARKER_RE,
    DELTA_SHIFT_RE,
    DURATION_RE,
    EXPLICIT_ASK_PREFIX_RE,
    HEDGED_DIRECTIVE_RE,
    IMPERATIVE_START_RE,
    MICRO_ADMIN_RE,
    MONTH_PATTERN,
    NEGATED_WORK_RE,
    PAIN_STATEMENT_RE,
    REQUEST_STEM_RE,
    REQUIREMENT_ASK_RE,
    RESEARCH_RE,
    SCHEDULE_EVENT_RE,
    SPEC_FRAMEWORK_EXCLUSION_RE,
    SPEC_FRAMEWORK_TOKEN_RE,
    STATUS_CHANGE_RE,
    STRATEGY_HEADING_RE,
    STRUCTURED_TASK_RE,
    TARGET_NOUN_RE,
    VERB_OBJECT_RE,
    is_role_assignment,
    matched_terms,
    strip_list_marker,
)


_SMART_QUOTES = {"‘": "'", "’": "'", "“": '"', "”": '"'}
_BULLET_ONLY_RE = re.compile(r"^\s*(?:[-*+•]|\d+[.)])\s+")
_FROM_TO_DATE_RE = re.compile(
    rf"\bfrom\s+(?:q[1-4]|{MONTH_PATTERN}|\d).{{0,30}}?\bto\s+(?:q[1-4]|{MONTH_PATTERN}|\d)",
    re.IGNORECASE,
)

# Section-level actionable signal for two or more distinct work-verb units.
MULTI_VERB_SIGNAL = 0.8
OOS_CLAMP = 0.3
DOMINANCE_GATE = 0.75
IMPERATIVE_FLOOR = 0.9
SHORT_SECTION_PENALTY = 0.15


@dataclass(frozen=True)
class ActionabilitySignals:
    actionable_signal: float
    calendar: float
    communication: float
    micro_tasks: float
    research: float
    has_imperative: bool
    has_change_operator: bool
    has_decision: bool
    has_role_assignment: bool
    has_structured_task: bool
    has_status_change: bool
    work_verb_units: int
    matched_rules: Tuple[str, ...]

    @property
    def out_of_scope_signal(self) -> float:
        return max(self.calendar, self.communication, self.micro_tasks)


def normalize_unit(text: str) -> str:
    for k, v in _SMART_QUOTES.items():
        text = text.replace(k, v)
    return re.sub(r"\s+", " ", strip_list_marker(text)).strip().lower()


def has_concrete_delta(text: str) -> bool:
    t = text or ""
    return bool(DURATION_RE.search(t) or DELTA_SHIFT_RE.search(t) or _FROM_TO_DATE_RE.search(t))


def has_plan_change_eligibility(sentence: str) -> bool:
    """A change marker plus a concrete delta inside the same sentence."""
    return bool(CHANGE_OPERATOR_RE.search(sentence or "")) and has_concrete_delta(sentence)


def score_unit(unit: str) -> Tuple[float, List[str]]:
    """Score one lowercased sentence unit against the actionability rules."""

    if NEGATED_WORK_RE.search(unit):
        return 0.0, ["negated"]

    best = 0.0
    tags: List[str] = []

    def hit(score: float, tag: str) -> None:
        nonlocal best
        best = max(best, score)
        tags.append(tag)

    if REQUEST_STEM_RE.search(unit) or REQUIREMENT_ASK_RE.search(unit) or EXPLICIT_ASK_PREFIX_RE.match(unit):
        hit(1.0, "request")
    if HEDGED_DIRECTIVE_RE.search(unit):
        hit(0.9, "hedged")
    if IMPERATIVE_START_RE.match(unit):
        hit(0.9, "imperative")
    if CHANGE_OPERATOR_RE.search(unit):
        hit(0.8, "change_operator")
    if STATUS_CHANGE_RE.search(unit):
        hit(0.7, "status_change")
    if DECISION_MARKER_RE.search(unit):
        hit(0.7, "decision")
    if PAIN_STATEMENT_RE.search(unit):
        hit(0.6, "pain")
    if best >= 0.6 and TARGET_NOUN_RE.search(unit):
        best = min(1.0, best + 0.2)
        tags.append("target_noun")
    return best, tags


def _family_score(terms: Sequence[str], base: float) -> float:
    if not terms:
        return 0.0
    return min(1.0, base + 0.15 * (len(terms) - 1))


def compute_actionability_signals(section: Section) -> ActionabilitySignals:
    act = 0.0
    tags: List[str] = []
    verb_units = 0
    role = False
    structured = False

    for ln in section.content_lines():
        bullet_stripped = _BULLET_ONLY_RE.sub("", ln.text).strip()
        if STRUCTURED_TASK_RE.match(bullet_stripped):
            structured = True
            act = max(act, 0.8)
            tags.append("structured_task")
        if is_role_assignment(ln.text):
            role = True
            act = max(act, 0.85)
            tags.append("role_assignment")

        for sentence in split_sentences(normalize_unit(ln.text)):
            if len(sentence) < 5:
                continue
            score, unit_tags = score_unit(sentence)
            act = max(act, score)
            tags.extend(unit_tags)
            if "negated" not in unit_tags and VERB_OBJECT_RE.search(sentence):
                verb_units += 1

    text = normalize_unit(section.raw_text.replace("\n", " . "))
    calendar = _family_score(matched_terms(CALENDAR_RE, text), 0.6)
    communication = _family_score(matched_terms(COMMUNICATION_RE, text), 0.6)
    micro = _family_score(matched_terms(MICRO_ADMIN_RE, text), 0.4)

    has_change = "change_operator" in tags
    if verb_units >= 2 and max(calendar, communication, micro) < 0.4:
        act = max(act, MULTI_VERB_SIGNAL)
        tags.append("multi_verb")
    if has_change or verb_units >= 2:
        calendar = min(calendar, OOS_CLAMP)
        communication = min(communication, OOS_CLAMP)
        micro = min(micro, OOS_CLAMP)

    has_imperative = "imperative" in tags
    if has_imperative:
        act = max(act, IMPERATIVE_FLOOR)

    uniq: List[str] = []
    for t in tags:
        if t not in uniq:
            uniq.append(t)

    return ActionabilitySignals(
        actionable_signal=round(act, 4),
        calendar=calendar,
        communication=communication,
        micro_tasks=micro,
        research=0.5 if RESEARCH_RE.search(text) else 0.0,
        has_imperative=has_imperative,
        has_change_operator=has_change,
        has_decision="decision" in tags,
        has_role_assignment=role,
        has_structured_task=structured,
        has_status_change="status_change" in tags,
        work_verb_units=verb_units,
        matched_rules=tuple(uniq),
    )


def classify_intent(section: Section, signals: ActionabilitySignals) -> Dict[str, float]:
    act = signals.actionable_signal
    plan_dominant = signals.has_change_operator or (signals.has_decision and has_concrete_delta(section.raw_text))
    if plan_dominant:
        plan_change, new_workstream = act, round(0.4 * act, 4)
    else:
        plan_change, new_workstream = round(0.4 * act, 4), act

    oos = signals.out_of_scope_signal
    return {
        "plan_change": plan_change,
        "new_workstream": new_workstream,
        "status_informational": round(max(0.0, 0.5 - act + oos * 0.3), 4),
        "communication": signals.communication,
        "research": 0.0 if plan_dominant else signals.research,
        "calendar": signals.calendar,
        "micro_tasks": signals.micro_tasks,
    }


def intent_argmax(intent: Dict[str, float]) -> str:
    # Ties resolve to the earlier label.
    return max(INTENT_LABELS, key=lambda k: (intent.get(k, 0.0), -INTENT_LABELS.index(k)))


def is_plan_change_intent_label(label: str) -> bool:
    return label == "plan_change"


def is_actionable(
    *,
    label: str,
    signals: ActionabilitySignals,
    num_lines: int,
    thresholds: ThresholdConfig,
) -> Tuple[bool, List[str]]:
    """Apply the actionability gate. Returns (actionable, flags).

    Precedence: plan_change argmax, then the out-of-scope dominance gate, then
    the imperative floor, then the out-of-scope threshold, then the plain threshold.
    """

    if is_plan_change_intent_label(label):
        return True, ["plan_change_always_actionable"]

    if max(signals.calendar, signals.communication) >= DOMINANCE_GATE:
        return False, ["dominance_gate"]

    if signals.has_imperative:
        flags = ["imperative_floor"]
        if label in NON_ACTIONABLE_LABELS:
            flags.append("rescued_by_imperative")
        return signals.actionable_signal >= thresholds.T_action, flags

    if label in NON_ACTIONABLE_LABELS:
        return False, ["non_actionable_label"]

    if signals.out_of_scope_signal >= thresholds.T_out_of_scope:
        return False, ["out_of_scope"]

    threshold = thresholds.T_action + (SHORT_SECTION_PENALTY if num_lines <= 2 else 0.0)
    return signals.actionable_signal >= threshold, []


def is_spec_framework_section(heading: Optional[str], raw_text: str) -> bool:
    heading_hit = bool(SPEC_FRAMEWORK_TOKEN_RE.search(heading or ""))
    if not heading_hit and len(matched_terms(SPEC_FRAMEWORK_TOKEN_RE, raw_text)) < 2:
        return False
    if SPEC_FRAMEWORK_EXCLUSION_RE.search(raw_text) or STATUS_CHANGE_RE.search(raw_text):
        return False
    return not has_concrete_delta(raw_text)


def is_strategy_heading_section(heading: Optional[str], num_list_items: int) -> bool:
    return bool(heading and STRATEGY_HEADING_RE.search(heading)) and num_list_items >= 3


def is_strategy_section(heading: Optional[str], raw_text: str, num_list_items: int) -> bool:
    """Strategy narrative: strategy-like heading, a list, and no schedule delta."""
    if not is_strategy_heading_section(heading, num_list_items):
        return False
    return not (has_concrete_delta(raw_text) or SCHEDULE_EVENT_RE.search(raw_text))


def classify_type(section: Section, label: str, signals: ActionabilitySignals) -> Tuple[str, List[str]]:
    heading = section.heading_text
    raw = section.raw_text
    if is_spec_framework_section(heading, raw):
        return "idea", ["spec_framework"]
    if is_strategy_heading_section(heading, section.structural_features.num_list_items):
        if has_concrete_delta(raw) or SCHEDULE_EVENT_RE.search(raw):
            return "project_update", ["strategy_with_delta"]
        return "idea", ["strategy_forced_idea"]
    if is_plan_change_intent_label(label):
        return "project_update", []
    if has_concrete_delta(raw) and (signals.has_change_operator or signals.has_status_change):
        return "project_update", ["concrete_delta"]
    return "idea", []


def classify_section(
    section: Section,
    thresholds: Optional[ThresholdConfig] = None,
    llm_intent: Optional[LLMIntentResult] = None,
) -> ClassifiedSection:
    thresholds = thresholds or ThresholdConfig()
    signals = compute_actionability_signals(section)
    intent = classify_intent(section, signals)
    flags: List[str] = []
    if llm_intent is not None:
        intent = blend_intent_scores(llm_intent.intent, intent, llm_intent.confidence)
        flags.append("llm_blended")

    label = intent_argmax(intent)
    actionable, gate_flags = is_actionable(
        label=label,
        signals=signals,
        num_lines=section.structural_features.num_lines,
        thresholds=thresholds,
    )
    flags.extend(gate_flags)

    suggested_type: Optional[str] = None
    type_confidence = 0.0
    if actionable:
        suggested_type, type_flags = classify_type(section, label, signals)
        flags.extend(type_flags)
        margin = abs(intent["plan_change"] - intent["new_workstream"])
        type_confidence = round(min(1.0, 0.5 + margin * 0.5), 4)
    if signals.has_role_assignment:
        flags.append("role_assignment")
    if signals.has_decision:
        flags.append("decision_marker")

    return ClassifiedSection(
        section=section,
        intent=intent,
        intent_label=label,
        is_actionable=actionable,
        actionable_signal=signals.actionable_signal,
        out_of_scope_signal=signals.out_of_scope_signal,
        suggested_type=suggested_type,
        type_confidence=type_confidence,
        flags=tuple(flags),
    )


def classify_sections(
    sections: Sequence[Section],
    thresholds: Optional[ThresholdConfig] = None,
    llm_intents: Optional[Dict[str, LLMIntentResult]] = None,
) -> List[ClassifiedSection]:
    llm_intents = llm_intents or {}
    return [classify_section(s, thresholds, llm_intents.get(s.section_id)) for s in sections]


def filter_actionable_sections(sections: Sequence[ClassifiedSection]) -> List[ClassifiedSection]:
    return [s for s in sections if s.is_actionable]
