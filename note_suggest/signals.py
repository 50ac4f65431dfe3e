"""Sentence-level signal extractors (feature demand, plan change, scope risk, bug).

Each extractor looks at one sentence at a time so the type of a candidate is
always derived from its own sentence, never from its parent section.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from .candidates import SynthesisState, build_candidate, owner_section_id, sentence_span, span_from_lines
from .classifiers import is_spec_framework_section, is_strategy_section
from .context import RunContext
from .models import ClassifiedSection, Line
from .preprocessing import contains_verbatim, split_sentences
from .rules import DATE_RE, DURATION_RE, MONTH_RE, QUARTER_RE, strip_list_marker


@dataclass(frozen=True)
class Signal:
    signal_type: str
    label: str
    proposed_type: str
    confidence: float
    sentence: str
    sentence_index: int


SIGNAL_SEED_MIN_CONFIDENCE = 0.65

# Feature demand: an external actor wants something.
EXTERNAL_ACTORS_RE = re.compile(r"\b(?:users?|customers?|cto|cs|sales|trial|prospects?|they|them)\b", re.IGNORECASE)
DESIRE_VERBS_RE = re.compile(r"\b(?:need|needs|require|requires|want|wants|requesting|asking\s+for|screaming\s+for)\b", re.IGNORECASE)
DEMAND_AMPLIFIERS_RE = re.compile(r"\b(?:blocker|failing|expansion)\b", re.IGNORECASE)

# Plan change: a milestone plus a shift verb.
TIME_MILESTONE_RE = re.compile(r"\b(?:date|q[1-4]|launch|release|v1|deadline|milestone)\b", re.IGNORECASE)
SHIFT_VERBS_RE = re.compile(r"\b(?:push(?:ing|ed)?|delay(?:ing|ed)?|mov(?:e|ing|ed)|slip(?:ping|ped)?|pull(?:ing|ed)?)\b", re.IGNORECASE)

# Scope risk.
ACTIONABLE_CONDITIONAL_RE = re.compile(
    r"\b(?:if\s+we\s+don'?t|if\s+we\s+do\s+not|might\s+need\s+to\s+be|could\s+require|may\s+force|might\s+be\s+pulled|could\s+block)\b",
    re.IGNORECASE,
)
CONDITIONAL_RE = re.compile(r"\b(?:if|unless)\b", re.IGNORECASE)
CONSEQUENCE_RE = re.compile(r"\b(?:release|launch|rollout|scope|mobile\s+app|pulled|app\s+store)\b", re.IGNORECASE)
SUBJECTIVE_CONCERN_RE = re.compile(r"^(?:some\s+)?(?:concern|risk|worry|worried|fear)\s+that\b", re.IGNORECASE)

# Bugs: observed failures, not hypotheticals.
BUG_TOKENS_RE = re.compile(r"\b(?:failing|broken|latency|error|regression|crash(?:es|ing)?|not\s+behaving|doesn'?t\s+work|does\s+not\s+work)\b", re.IGNORECASE)
BUG_CONDITIONAL_RE = re.compile(r"\b(?:if|might|could|may|risk|concern)\b", re.IGNORECASE)


def extract_feature_demand(sentences: Sequence[str]) -> List[Signal]:
    out: List[Signal] = []
    for i, sentence in enumerate(sentences):
        if not EXTERNAL_ACTORS_RE.search(sentence) or not DESIRE_VERBS_RE.search(sentence):
            continue
        confidence = 0.75 if DEMAND_AMPLIFIERS_RE.search(sentence) else 0.65
        out.append(Signal("FEATURE_DEMAND", "idea", "idea", confidence, sentence, i))
    return out


def extract_plan_change(sentences: Sequence[str]) -> List[Signal]:
    out: List[Signal] = []
    for i, sentence in enumerate(sentences):
        if TIME_MILESTONE_RE.search(sentence) and SHIFT_VERBS_RE.search(sentence):
            out.append(Signal("PLAN_CHANGE", "update", "project_update", 0.75, sentence, i))
    return out


def extract_scope_risk(sentences: Sequence[str]) -> List[Signal]:
    out: List[Signal] = []
    for i, sentence in enumerate(sentences):
        if SUBJECTIVE_CONCERN_RE.match(sentence.strip()):
            continue
        if ACTIONABLE_CONDITIONAL_RE.search(sentence) or (CONDITIONAL_RE.search(sentence) and CONSEQUENCE_RE.search(sentence)):
            out.append(Signal("SCOPE_RISK", "risk", "risk", 0.7, sentence, i))
    return out


def extract_bug(sentences: Sequence[str]) -> List[Signal]:
    out: List[Signal] = []
    for i, sentence in enumerate(sentences):
        # Conditional phrasing describes a risk, not an observed bug.
        if BUG_TOKENS_RE.search(sentence) and not BUG_CONDITIONAL_RE.search(sentence):
            out.append(Signal("BUG", "bug", "bug", 0.7, sentence, i))
    return out


def extract_signals_from_sentences(sentences: Sequence[str]) -> List[Signal]:
    return [
        *extract_feature_demand(sentences),
        *extract_plan_change(sentences),
        *extract_scope_risk(sentences),
        *extract_bug(sentences),
    ]


def dedupe_signals(signals: Sequence[Signal]) -> List[Signal]:
    """Keep the highest-confidence signal per (sentence, proposed type); stable order."""

    best: Dict[Tuple[int, str], Signal] = {}
    order: List[Tuple[int, str]] = []
    for sig in signals:
        key = (sig.sentence_index, sig.proposed_type)
        if key not in best:
            order.append(key)
            best[key] = sig
        elif sig.confidence > best[key].confidence:
            best[key] = sig
    return [best[k] for k in order]


_OBJECT_RE = re.compile(
    r"\b(?:need|needs|require|requires|want|wants|requesting|asking\s+for|screaming\s+for|implement|build|add|fix|"
    r"push(?:ing|ed)?|pull(?:ing|ed)?|slip(?:ping|ped)?|delay(?:ing|ed)?|mov(?:e|ing|ed)|fail(?:ing)?|block(?:ing)?)\s+([^.,;!?\n]{3,120})",
    re.IGNORECASE,
)
_CLAUSE_BREAK_RE = re.compile(r"\b(?:but|until|because|so|when|unless|due\s+to)\b", re.IGNORECASE)
_LEADING_PREPOSITION_RE = re.compile(r"^(?:by|to|for|until|on|in|at|out|back|forward)\s+", re.IGNORECASE)
_DURATION_ONLY_RE = re.compile(r"^(?:about|around|another|roughly|over)?\s*\d+\s*-?\s*(?:day|week|month|sprint|quarter|year)s?$", re.IGNORECASE)


def extract_object(sentence: str) -> str:
    m = _OBJECT_RE.search(sentence or "")
    if not m:
        return ""
    obj = _CLAUSE_BREAK_RE.split(m.group(1))[0].strip()
    while _LEADING_PREPOSITION_RE.match(obj):
        obj = _LEADING_PREPOSITION_RE.sub("", obj, count=1)
    obj = re.sub(r"^(?:a|an|the)\s+", "", obj, flags=re.IGNORECASE)
    if _DURATION_ONLY_RE.match(obj):
        return ""
    if len(obj) > 50:
        cut = obj[:50]
        space = cut.rfind(" ")
        obj = cut[:space] if space > 10 else cut
    return obj if len(obj) >= 3 else ""


RISK_HEADING_RE = re.compile(r"\b(?:security|compliance|risks?|considerations)\b", re.IGNORECASE)


def title_from_signal(signal: Signal, heading: str = "") -> str:
    obj = extract_object(signal.sentence)
    if signal.signal_type == "FEATURE_DEMAND":
        return f"Implement {obj}" if obj else "Implement requested feature"
    if signal.signal_type == "PLAN_CHANGE":
        if obj:
            return f"Update: {obj}"
        return f"Update: {heading}" if heading else "Update: project plan"
    if signal.signal_type == "SCOPE_RISK":
        if heading and RISK_HEADING_RE.search(heading):
            return f"Risk: {heading}"
        return f"Risk: {obj}" if obj else "Risk: release scope"
    return f"Bug: fix {obj}" if obj else "Bug: fix reported issue"


# Signal seeding over whole sections. Runs regardless of the actionability
# gate so a strong sentence can rescue a section the classifier passed over.

TIMELINE_HEADING_RE = re.compile(r"\b(?:timeline|implementation|schedule|roadmap|milestones?)\b", re.IGNORECASE)
_SECURITY_RE = re.compile(r"\b(?:security|compliance|audit|soc\s*2|gdpr|hipaa|pen(?:etration)?\s+test)\b", re.IGNORECASE)
_TIMELINE_PREFIX_RE = re.compile(r"^(?:[A-Za-z][\w /&-]{0,30}:\s*)")


def _has_date_token(text: str) -> bool:
    # Lowercase "may" is almost always the modal verb.
    month = any(m.group(0) != "may" for m in MONTH_RE.finditer(text))
    return bool(DATE_RE.search(text) or month or QUARTER_RE.search(text) or DURATION_RE.search(text))


def timeline_lines(section: ClassifiedSection) -> List[Line]:
    """Date-bearing lines of a timeline-style section, security items excluded."""

    if not TIMELINE_HEADING_RE.search(section.heading_text or ""):
        return []
    return [
        ln
        for ln in section.section.content_lines()
        if _has_date_token(ln.text) and not _SECURITY_RE.search(ln.text)
    ]


def _seed_timeline_update(section: ClassifiedSection, state: SynthesisState, ctx: RunContext) -> SynthesisState:
    owner = owner_section_id(section)
    lines = [ln for ln in timeline_lines(section) if not state.is_covered(owner, ln.text)]
    if not lines:
        return state
    first = _TIMELINE_PREFIX_RE.sub("", strip_list_marker(lines[0].text)).strip()
    if len(first) > 60:
        cut = first[:60]
        first = cut[: cut.rfind(" ")] if " " in cut else cut
    return state.add(
        build_candidate(
            section,
            ctx,
            suggestion_type="project_update",
            title=f"Update: {first}",
            body="; ".join(strip_list_marker(ln.text) for ln in lines),
            spans=[span_from_lines([ln]) for ln in lines],
            source="signal_seed",
            confidence=0.75,
            id_prefix="sig",
            label="update",
            section_actionability=max(0.75, section.actionable_signal),
            extra={"signal_type": "PLAN_CHANGE", "timeline_merged": len(lines)},
        )
    )


def seed_signal_candidates(section: ClassifiedSection, state: SynthesisState, ctx: RunContext) -> SynthesisState:
    if "dominance_gate" in section.flags:
        return state

    owner = owner_section_id(section)
    heading = section.heading_text or ""
    drop_plan_change = is_strategy_section(heading, section.raw_text, section.features.num_list_items)
    if is_spec_framework_section(heading, section.raw_text):
        drop_plan_change = True

    if timeline_lines(section):
        state = _seed_timeline_update(section, state, ctx)
        drop_plan_change = True

    sentences: List[str] = []
    for ln in section.section.content_lines():
        sentences.extend(split_sentences(strip_list_marker(ln.text)))

    for sig in dedupe_signals(extract_signals_from_sentences(sentences)):
        if sig.confidence < SIGNAL_SEED_MIN_CONFIDENCE:
            continue
        if drop_plan_change and sig.signal_type == "PLAN_CHANGE":
            continue
        if state.is_covered(owner, sig.sentence) or not contains_verbatim(section.raw_text, sig.sentence):
            continue
        state = state.add(
            build_candidate(
                section,
                ctx,
                suggestion_type=sig.proposed_type,
                title=title_from_signal(sig, heading.split(" > ")[-1]),
                body=sig.sentence,
                spans=[sentence_span(section, sig.sentence)],
                source="signal_seed",
                confidence=sig.confidence,
                id_prefix="sig",
                label=sig.label,
                section_actionability=max(sig.confidence, section.actionable_signal),
                extra={"signal_type": sig.signal_type},
            )
        )
    return state
