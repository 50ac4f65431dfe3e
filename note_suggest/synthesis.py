"""Candidate synthesis.

Strategies are folded over a `SynthesisState` per section. Each strategy is a
plain function `(section, state, ctx) -> state`; later strategies consult the
covered-evidence set so they only fill gaps left by earlier ones.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

from .candidates import (
    SynthesisState,
    build_candidate,
    join_sentences,
    owner_section_id,
    retitle,
    retype,
    spans_for_lines,
)
from .classifiers import classify_section, is_spec_framework_section
from .llm import LLMIntentResult
from .context import RunContext
from .dense_paragraph import extract_dense_paragraph_candidates
from .ideas import extract_semantic_ideas, structural_idea_bypass
from .logs import log_event
from .models import ClassifiedSection, DropReason, DropRecord, Line, Section, Suggestion, ThresholdConfig
from .noise import (
    dedupe_decisions,
    decision_text,
    find_derivative_source,
    has_decision_markup,
    is_bare_concern,
    is_process_noise_heading,
    is_table_separator,
    role_assignment_lines,
    should_suppress_process_sentence,
)
from .preprocessing import derive_sub_section, split_sentences
from .rules import (
    CHANGE_OPERATOR_RE,
    DECISION_MARKER_RE,
    DECISION_STATUS_SUFFIX_RE,
    STATUS_CHANGE_RE,
    STRUCTURED_TASK_RE,
    TOPIC_ANCHOR_RE,
    has_explicit_ask,
    is_generic_heading,
    is_role_assignment,
    starts_with_work_verb,
    strip_list_marker,
)
from .signals import seed_signal_candidates
from .validators import MAX_ERROR_CHARS


Strategy = Callable[[ClassifiedSection, SynthesisState, RunContext], SynthesisState]


@dataclass(frozen=True)
class SynthesisResult:
    candidates: List[Suggestion]
    drops: List[DropRecord]


# ---------------------------------------------------------------------------
# Canonical synthesis

ANCHOR_CONFIDENCE = {
    "explicit_ask": 0.85,
    "imperative": 0.8,
    "structural": 0.75,
    "fallback": 0.65,
}
_ANCHOR_RANK = ("explicit_ask", "imperative", "structural", "fallback")
MIN_TITLE_WORDS = 3

_REQUIREMENT_LEAD_RE = re.compile(r"^.*?\brequirement\s+to\s+", re.IGNORECASE)
_CLAUSE_BREAK_RE = re.compile(r"\s+(?:because|so\s+that|since|which\s+means)\s+|;\s*|\s+-\s+", re.IGNORECASE)


@dataclass(frozen=True)
class Anchor:
    line: Line
    text: str
    kind: str

    @property
    def rank(self) -> int:
        return _ANCHOR_RANK.index(self.kind)


def _anchor_kind(text: str) -> Tuple[str, str]:
    """Classify one marker-stripped line; returns (kind, anchoring sentence)."""

    sentences = split_sentences(text) or [text]
    for s in sentences:
        if has_explicit_ask(s):
            return "explicit_ask", s
    for s in sentences:
        if starts_with_work_verb(s):
            return "imperative", s
    if (
        is_role_assignment(text)
        or STRUCTURED_TASK_RE.match(text)
        or CHANGE_OPERATOR_RE.search(text)
        or STATUS_CHANGE_RE.search(text)
        or DECISION_MARKER_RE.search(text)
    ):
        return "structural", sentences[0]
    return "fallback", sentences[0]


def select_anchor(section: Section) -> Optional[Anchor]:
    content = section.content_lines()
    best: Optional[Anchor] = None
    for i, ln in enumerate(content):
        if is_table_separator(ln.text):
            continue
        if i + 1 < len(content) and is_table_separator(content[i + 1].text):
            continue
        text = strip_list_marker(ln.text)
        if not text or should_suppress_process_sentence(text) or is_bare_concern(text):
            continue
        kind, sentence = _anchor_kind(text)
        candidate = Anchor(line=ln, text=sentence, kind=kind)
        if best is None or candidate.rank < best.rank:
            best = candidate
    return best


def supporting_line(section: Section, anchor: Anchor) -> Optional[Line]:
    content = [ln for ln in section.content_lines() if not is_table_separator(ln.text)]
    pos = next((i for i, ln in enumerate(content) if ln.index == anchor.line.index), None)
    if pos is None:
        return None
    for j in (pos - 1, pos + 1):
        if 0 <= j < len(content) and not should_suppress_process_sentence(content[j].text):
            return content[j]
    return None


def clause_title(text: str) -> str:
    t = decision_text(text)
    t = (split_sentences(t) or [t])[0]
    t = _REQUIREMENT_LEAD_RE.sub("", t)
    t = _CLAUSE_BREAK_RE.split(t, maxsplit=1)[0]
    t = DECISION_STATUS_SUFFIX_RE.sub("", t)
    return t.strip().rstrip(".!?:;,")


def _heading_leaf(section: ClassifiedSection) -> str:
    return (section.heading_text or "").split(" > ")[-1].strip()


def canonical_synthesis(section: ClassifiedSection, state: SynthesisState, ctx: RunContext) -> SynthesisState:
    if not section.is_actionable or not section.suggested_type:
        return state

    sec = section.section
    anchor = select_anchor(sec)
    if anchor is None:
        return state

    suggestion_type = section.suggested_type
    explicit_ask = anchor.kind == "explicit_ask"
    heading = _heading_leaf(section)
    content = sec.content_lines()

    if has_decision_markup(content):
        decisions = dedupe_decisions(content)
        title = clause_title(decisions[0]) if decisions else clause_title(anchor.text)
        body = join_sentences(decisions[:4])
        evidence = [ln for ln in content if not is_table_separator(ln.text)][:4]
        title_source = "decision"
    else:
        support = supporting_line(sec, anchor)
        evidence = [anchor.line] + ([support] if support is not None else [])
        evidence.sort(key=lambda ln: ln.index)
        body = join_sentences([ln.text for ln in evidence])
        title = clause_title(anchor.text)
        title_source = anchor.kind

    if not title.strip():
        title = strip_list_marker(anchor.line.text)

    if suggestion_type == "project_update" and heading and not is_generic_heading(heading):
        title = f"Update: {heading}"
        title_source = "heading_update"
    elif explicit_ask and heading and len(title.split()) < MIN_TITLE_WORDS:
        # Heading fallback is reserved for explicit asks.
        title = f"New idea: {heading}"
        title_source = "heading"

    return state.add(
        build_candidate(
            section,
            ctx,
            suggestion_type=suggestion_type,
            title=title,
            body=body,
            spans=spans_for_lines(evidence),
            source="canonical",
            confidence=ANCHOR_CONFIDENCE[anchor.kind],
            title_source=title_source,
            label=section.intent_label,
            extra={"anchor_kind": anchor.kind, "has_explicit_ask": explicit_ask},
        )
    )


def ensure_actionable_emission(section: ClassifiedSection, state: SynthesisState, ctx: RunContext) -> SynthesisState:
    """An actionable section with nothing emitted yet gets a whole-section canonical candidate."""

    if not section.is_actionable or state.candidates_for(owner_section_id(section)):
        return state
    return canonical_synthesis(section, state, ctx)


def ensure_plan_change_update(section: ClassifiedSection, state: SynthesisState, ctx: RunContext) -> SynthesisState:
    """A plan-change section always carries a project_update, even when only ideas came out of its units."""

    if section.intent_label != "plan_change" or section.suggested_type != "project_update":
        return state
    if any(c.type == "project_update" for c in state.candidates_for(owner_section_id(section))):
        return state
    return canonical_synthesis(section, state, ctx)


# ---------------------------------------------------------------------------
# Topic isolation

TOPIC_ISOLATION_MIN_BULLETS = 5
TOPIC_ISOLATION_MIN_CHARS = 500


def topic_anchor_lines(section: Section) -> List[Line]:
    out: List[Line] = []
    seen: List[str] = []
    for ln in section.content_lines():
        m = TOPIC_ANCHOR_RE.match(strip_list_marker(ln.text))
        if not m:
            continue
        key = m.group(0).lower().rstrip(":").strip()
        if key in seen:
            continue
        seen.append(key)
        out.append(ln)
    return out


def is_topic_isolation_eligible(section: Section) -> bool:
    mixed = (
        is_generic_heading((section.heading_text or "").split(" > ")[-1])
        or section.structural_features.num_list_items >= TOPIC_ISOLATION_MIN_BULLETS
        or len(section.raw_text) >= TOPIC_ISOLATION_MIN_CHARS
    )
    return mixed and len(topic_anchor_lines(section)) >= 2


def _topic_label(line: Line) -> str:
    text = strip_list_marker(line.text)
    head = text.split(":", 1)[0].strip() if ":" in text else text
    return head[:40].strip()


def isolate_topics(
    section: ClassifiedSection,
    thresholds: ThresholdConfig,
    llm_intent: Optional[LLMIntentResult] = None,
) -> List[ClassifiedSection]:
    """Split a mixed-topic section into classified sub-sections, one per topic anchor.

    Sub-sections are classified with the parent's LLM intent, if any.
    """

    sec = section.section
    if not is_topic_isolation_eligible(sec):
        return [section]

    starts = {ln.index for ln in topic_anchor_lines(sec)}
    groups: List[Tuple[Optional[Line], List[Line]]] = [(None, [])]
    for ln in sec.body_lines:
        if ln.index in starts:
            groups.append((ln, []))
        groups[-1][1].append(ln)

    units: List[ClassifiedSection] = []
    for n, (anchor, body) in enumerate(groups):
        if not any(ln.line_type != "blank" for ln in body):
            continue
        label = _topic_label(anchor) if anchor is not None else "General"
        parent_heading = sec.heading_text or ""
        sub = derive_sub_section(
            sec,
            body,
            marker=f"t{n}",
            heading_text=f"{parent_heading} > {label}" if parent_heading else label,
        )
        units.append(classify_section(sub, thresholds, llm_intent))
    log_event(logging.DEBUG, "topic isolation", section_id=sec.section_id, units=len(units))
    return units or [section]


# ---------------------------------------------------------------------------
# Suppression

def action_items_candidate(section: ClassifiedSection, roles: Sequence[Line], ctx: RunContext) -> Suggestion:
    texts = [strip_list_marker(ln.text) for ln in roles]
    title = f"Action items: {texts[0]}"
    if len(texts) > 1:
        title += f" (+{len(texts) - 1} more)"
    return build_candidate(
        section,
        ctx,
        suggestion_type="idea",
        title=title,
        body=join_sentences(texts[:4]),
        spans=spans_for_lines(roles[:4]),
        source="action_items",
        confidence=0.75,
        id_prefix="act",
        title_source="action_items",
        label="action_items",
        section_actionability=max(0.75, section.actionable_signal),
    )


# ---------------------------------------------------------------------------
# Fold

UNIT_STRATEGIES: Tuple[Strategy, ...] = (
    canonical_synthesis,
    extract_dense_paragraph_candidates,
    seed_signal_candidates,
    extract_semantic_ideas,
)
SECTION_STRATEGIES: Tuple[Strategy, ...] = (
    structural_idea_bypass,
    ensure_actionable_emission,
    ensure_plan_change_update,
)


def run_strategy(strategy: Strategy, unit: ClassifiedSection, state: SynthesisState, ctx: RunContext) -> SynthesisState:
    """Apply one strategy; an exception becomes an internal_error drop for that unit."""

    try:
        return strategy(unit, state, ctx)
    except Exception as e:
        message = f"internal error: {str(e)[:MAX_ERROR_CHARS]}"
        name = getattr(strategy, "__name__", "strategy")
        log_event(logging.ERROR, "synthesis strategy raised", section_id=unit.section_id, strategy=name, error=message)
        return state.drop(
            DropRecord(
                section_id=owner_section_id(unit),
                reason=DropReason.INTERNAL_ERROR,
                stage="synthesis",
                detail=f"{name}: {message}",
            )
        )


def synthesize_section(
    section: ClassifiedSection,
    state: SynthesisState,
    ctx: RunContext,
    *,
    earlier: Sequence[Section] = (),
    thresholds: Optional[ThresholdConfig] = None,
    llm_intent: Optional[LLMIntentResult] = None,
) -> SynthesisState:
    thresholds = thresholds or ThresholdConfig()
    sid = section.section_id

    if is_process_noise_heading(section.heading_text):
        roles = role_assignment_lines(section.section)
        if roles:
            return state.add(action_items_candidate(section, roles, ctx))
        return state.drop(
            DropRecord(section_id=sid, reason=DropReason.PROCESS_NOISE_HEADING, stage="synthesis", detail=section.heading_text or "")
        )

    source = find_derivative_source(section.section, earlier)
    if source is not None:
        return state.drop(
            DropRecord(section_id=sid, reason=DropReason.DERIVATIVE_CONTENT, stage="synthesis", detail=f"restates {source.section_id}")
        )

    for unit in isolate_topics(section, thresholds, llm_intent):
        for strategy in UNIT_STRATEGIES:
            state = run_strategy(strategy, unit, state, ctx)
    for strategy in SECTION_STRATEGIES:
        state = run_strategy(strategy, section, state, ctx)
    return state


_UPDATE_PREFIX_RE = re.compile(r"^update\s*:\s*", re.IGNORECASE)


def enforce_spec_framework_types(candidates: Sequence[Suggestion], sections: Sequence[ClassifiedSection]) -> List[Suggestion]:
    """Spec and framework sections never emit a project_update; any that slipped through become ideas."""

    framework = {c.section_id for c in sections if is_spec_framework_section(c.heading_text, c.raw_text)}
    out: List[Suggestion] = []
    for s in candidates:
        if s.type == "project_update" and s.section_id in framework:
            log_event(logging.DEBUG, "framework update retyped", suggestion_id=s.suggestion_id, section_id=s.section_id)
            s = retype(retitle(s, _UPDATE_PREFIX_RE.sub("", s.title)), "idea")
        out.append(s)
    return out


def synthesize_suggestions(
    sections: Sequence[ClassifiedSection],
    ctx: RunContext,
    thresholds: Optional[ThresholdConfig] = None,
    llm_intents: Optional[Mapping[str, LLMIntentResult]] = None,
) -> SynthesisResult:
    state = SynthesisState()
    earlier: List[Section] = []
    for section in sections:
        intent = (llm_intents or {}).get(section.section_id)
        state = synthesize_section(section, state, ctx, earlier=earlier, thresholds=thresholds, llm_intent=intent)
        earlier.append(section.section)

    for record in state.drops:
        log_event(logging.DEBUG, "synthesis drop", section_id=record.section_id, reason=record.reason.value, detail=record.detail)
    return SynthesisResult(candidates=enforce_spec_framework_types(state.candidates, sections), drops=list(state.drops))
