"""Rule tables shared by classification, synthesis and validation.

One canonical table per concept. Each table is tagged with a version so
debug output can say which vocabulary produced a decision.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Pattern, Sequence

RULES_VERSION = 3


def _alternation(words: Iterable[str]) -> str:
    # Longest first so "set up" wins over "set".
    parts = sorted({w.strip().lower() for w in words if w.strip()}, key=lambda w: (-len(w), w))
    return "|".join(r"\s+".join(re.escape(w) for w in p.split()) for p in parts)


def compile_words(words: Sequence[str]) -> Pattern[str]:
    return re.compile(rf"\b(?:{_alternation(words)})\b", re.IGNORECASE)


def matched_terms(pattern: Pattern[str], text: str) -> List[str]:
    """Distinct lowercase matches of `pattern` in `text`, in first-seen order."""
    seen: List[str] = []
    for m in pattern.finditer(text or ""):
        term = re.sub(r"\s+", " ", m.group(0).lower())
        if term not in seen:
            seen.append(term)
    return seen


# Work verbs used for imperatives, explicit asks and anchor selection.
WORK_VERBS = (
    "add",
    "allow",
    "automate",
    "build",
    "consolidate",
    "create",
    "deploy",
    "design",
    "develop",
    "enable",
    "evaluate",
    "expand",
    "expose",
    "fix",
    "implement",
    "improve",
    "instrument",
    "integrate",
    "introduce",
    "investigate",
    "launch",
    "migrate",
    "optimize",
    "prioritize",
    "provide",
    "redesign",
    "reduce",
    "refactor",
    "remove",
    "replace",
    "rewrite",
    "roll out",
    "set up",
    "ship",
    "spin up",
    "standardize",
    "support",
    "track",
)

WORK_VERB_PATTERN = _alternation(WORK_VERBS)
IMPERATIVE_START_RE = re.compile(rf"^(?:please\s+)?(?:{WORK_VERB_PATTERN})\s+\S", re.IGNORECASE)
VERB_OBJECT_RE = re.compile(rf"\b(?:{WORK_VERB_PATTERN})\s+[a-z0-9]", re.IGNORECASE)

# Explicit request stems that need a work verb within three words.
REQUEST_STEM_RE = re.compile(
    rf"\b(?:need\s+to|needs\s+to|must|have\s+to|has\s+to|request\s+to|asked\s+to|required\s+to)\s+(?:\w+\s+){{0,2}}?(?:{WORK_VERB_PATTERN})\b",
    re.IGNORECASE,
)

# "Requirement to" only pairs with this subset; add/build after it are not
# recognised as an ask (kept as observed behaviour, see DESIGN.md).
REQUIREMENT_ASK_VERBS = ("implement", "create", "support", "enable", "develop", "provide")
REQUIREMENT_ASK_RE = re.compile(rf"\brequirement\s+to\s+(?:{_alternation(REQUIREMENT_ASK_VERBS)})\b", re.IGNORECASE)

HEDGED_DIRECTIVE_RE = re.compile(
    r"\b(?:we\s+should|should\s+we|let'?s|maybe\s+we|we\s+could|could\s+we|it\s+would\s+be\s+(?:good|great|nice)\s+to|would\s+be\s+(?:good|great|nice)\s+to|we\s+might\s+want\s+to)\b",
    re.IGNORECASE,
)

EXPLICIT_ASK_PREFIX_RE = re.compile(
    rf"^(?:suggestion\s*:|request\s+(?:to|for)\s+(?:{WORK_VERB_PATTERN})|proposal\s*:|ask\s*:)",
    re.IGNORECASE,
)

NEGATED_WORK_RE = re.compile(
    rf"\b(?:don'?t|do\s+not|no\s+need\s+to|shouldn'?t|should\s+not|won'?t|will\s+not|not\s+going\s+to|never)\s+(?:\w+\s+){{0,1}}?(?:{WORK_VERB_PATTERN})\b",
    re.IGNORECASE,
)

CHANGE_OPERATOR_RE = re.compile(
    r"\b(?:shift(?:ing|ed)?\s+(?:to|towards?|focus)|pivot(?:ing|ed)?|refocus(?:ing|ed)?|narrow(?:ing|ed)?\s+(?:the\s+)?scope|descop(?:e|ed|ing)|deprioriti[sz](?:e|ed|ing)|"
    r"(?:moved|moving|pushed|pushing|delayed|delaying|slipped|slipping|postponed|rescheduled|deferred|pulled)\s+(?:\w+\s+){0,3}?(?:to|by|until|out|back|in|forward)\b|"
    r"delay(?:ed)?\s+(?:of|by)|cut\s+(?:from|the)\s+scope|out\s+of\s+scope|accelerat(?:e|ed|ing))",
    re.IGNORECASE,
)

STATUS_CHANGE_RE = re.compile(r"\b(?:blocked(?:\s+on|\s+by)?|at\s+risk|off\s+track|behind\s+schedule|slipping)\b", re.IGNORECASE)

STRUCTURED_TASK_RE = re.compile(r"^(?:\[\s\]|todo\s*:|action\s*:|action\s+item\s*:|owner\s*:)", re.IGNORECASE)

DECISION_MARKER_RE = re.compile(
    r"\b(?:decided|agreed|approved|will\s+be|revisit|near-term|going\s+forward|we\s+will)\b",
    re.IGNORECASE,
)

ROLE_WORDS = (
    "pm",
    "eng",
    "engineering",
    "design",
    "designer",
    "qa",
    "ops",
    "sales",
    "marketing",
    "legal",
    "cs",
    "support",
    "product",
    "data",
    "finance",
    "team",
    "leadership",
)

_NOT_A_NAME = {"need", "needs", "going", "want", "wants", "have", "has", "plan", "plans", "how", "what", "is", "it", "this", "that", "time", "ready", "unable", "able", "likely"}

ROLE_ASSIGNMENT_RE = re.compile(rf"^(?:{_alternation(ROLE_WORDS)})\s+to\s+[a-z]+", re.IGNORECASE)
NAMED_ASSIGNMENT_RE = re.compile(r"^([A-Z][a-z]+)\s+to\s+[a-z]+")

TARGET_NOUN_RE = compile_words(
    (
        "alert",
        "api",
        "banner",
        "dashboard",
        "endpoint",
        "export",
        "feature",
        "flow",
        "integration",
        "notification",
        "onboarding",
        "page",
        "pipeline",
        "report",
        "search",
        "service",
        "tool",
        "ui",
        "ux",
        "workflow",
    )
)

PAIN_STATEMENT_RE = re.compile(
    r"\b(?:users?|customers?|clients?)\s+(?:don'?t|do\s+not|can'?t|cannot|struggle|complain|are\s+confused|get\s+confused|keep\s+asking|find\s+it\s+hard)\b",
    re.IGNORECASE,
)

RESEARCH_RE = re.compile(r"\b(?:look\s+into|research|explore\s+whether|spike\s+on|investigate\s+whether|find\s+out\s+whether)\b", re.IGNORECASE)

# Out-of-scope families.
CALENDAR_TERMS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
    "next week",
    "tomorrow",
    "this week",
    "calendar",
    "standup",
    "offsite",
    "schedule a meeting",
    "schedule a call",
    "book a",
)
CALENDAR_RE = compile_words(CALENDAR_TERMS)

COMMUNICATION_TERMS = ("email", "send", "slack", "follow up", "reach out", "ping", "share with", "loop in", "circle back")
COMMUNICATION_RE = compile_words(COMMUNICATION_TERMS)

MICRO_ADMIN_TERMS = ("fix typo", "rename the doc", "update the doc", "clean up notes", "file a ticket", "create a ticket", "add to agenda", "update the spreadsheet")
MICRO_ADMIN_RE = compile_words(MICRO_ADMIN_TERMS)

# Timeline / delta vocabulary.
MONTH_PATTERN = r"jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?"
DURATION_RE = re.compile(r"\b\d+\s*-?\s*(?:day|week|month|sprint|quarter|year)s?\b", re.IGNORECASE)
DELTA_SHIFT_RE = re.compile(
    r"\b(?:moved|moving|pushed|pushing|delayed|delaying|slipped|slipping|postponed|rescheduled|pulled\s+in|shifted)\s+(?:\w+\s+){0,3}?(?:to|by|until|out|back|forward)\b",
    re.IGNORECASE,
)
DATE_RE = re.compile(rf"\b(?:(?:{MONTH_PATTERN})\s+\d{{1,2}}\b|\d{{1,2}}/\d{{1,2}}(?:/\d{{2,4}})?|q[1-4]\s*\d{{4}}|(?:19|20)\d{{2}}-\d{{2}}-\d{{2}})", re.IGNORECASE)
MONTH_RE = re.compile(rf"\b(?:{MONTH_PATTERN})\b", re.IGNORECASE)
YEAR_RE = re.compile(r"\b(?:19|20)\d{2}\b")
QUARTER_RE = re.compile(r"\b(?:q[1-4]|h[12])\b", re.IGNORECASE)
VERSION_RE = re.compile(r"\b(?:v\d+(?:\.\d+)*|mvp|alpha|beta|ga)\b", re.IGNORECASE)
LAUNCH_RE = re.compile(r"\b(?:launch(?:es|ed|ing)?|rollout|roll\s+out|ship(?:s|ped|ping)?|release[sd]?|deploy(?:s|ed|ment)?|go-live)\b", re.IGNORECASE)
SCHEDULE_EVENT_RE = re.compile(r"\b(?:launch(?:es|ed|ing)?|deploy(?:s|ed|ment)?|ship(?:s|ped|ping)?|eta|milestones?|go-live|release\s+date)\b", re.IGNORECASE)
METRIC_RE = re.compile(r"(?:\d+(?:\.\d+)?\s*%|\b\d+(?:\.\d+)?x\b|\$\s?\d|\b(?:arr|mrr|dau|mau|nps|okrs?)\b)", re.IGNORECASE)
INITIATIVE_PHRASE_RE = re.compile(r"\b(?:initiative|workstream|project|program|roadmap|milestone|okr|launch|pilot|rollout)\b", re.IGNORECASE)

TIMELINE_TOKEN_RE = re.compile(
    rf"(?:\b\d+\s*-?\s*(?:week|day|month|year|sprint)s?\b|\b(?:delayed|pushed|slipped|moved)\s+(?:\w+\s+){{0,2}}?to\b|\bq[1-4]\s*\d{{4}}\b|\btarget\s+(?:date|{MONTH_PATTERN})\b|\bdeadline\b|\beta\b)",
    re.IGNORECASE,
)

# Strategy / framework / spec vocabulary.
STRATEGY_HEADING_RE = re.compile(r"\b(?:strategy|strategic|approach|framework|system|vision|principles?|philosophy)\b", re.IGNORECASE)
SPEC_FRAMEWORK_TOKEN_RE = re.compile(
    r"\b(?:scoring|prioriti[sz]ation|three-factor|eligibility|additionality|weighting|framework|rubric|criteria)\b",
    re.IGNORECASE,
)
SPEC_FRAMEWORK_EXCLUSION_RE = re.compile(
    r"\b(?:deploy(?:ed|ing|ment)?|launch(?:ed|ing)?|eta|target\s+date|window|shipped|in\s+progress|completed?|blocked|delayed)\b",
    re.IGNORECASE,
)

# Semantic idea vocabulary: a section needs a strategy-side and a
# mechanism-side hit (feature constructs count for both, and double).
SEMANTIC_STRATEGY_TOKENS = ("strategy", "approach", "system", "framework", "prioritization", "scoring", "automation")
SEMANTIC_MECHANISM_VERBS = ("introduce", "use", "extend", "calculate", "integrate", "automate", "parse", "upload", "layer")
SEMANTIC_FEATURE_CONSTRUCTS = ("photo upload", "ai parsing", "scoring model", "prioritization system")
SEMANTIC_STRATEGY_RE = compile_words(SEMANTIC_STRATEGY_TOKENS)
SEMANTIC_MECHANISM_RE = compile_words(SEMANTIC_MECHANISM_VERBS)
SEMANTIC_CONSTRUCT_RE = compile_words(SEMANTIC_FEATURE_CONSTRUCTS)

GAMIFICATION_RE = re.compile(r"\b(?:gamif(?:y|ication)|points?|badges?|streaks?|leaderboards?|rewards?|incentiv(?:e|es|ize))\b", re.IGNORECASE)
ENGAGEMENT_LOOP_TITLES = (
    (re.compile(r"\b(?:next[- ]field|field[- ]level|per[- ]field)\b", re.IGNORECASE), "Gamify data collection (next-field rewards)"),
    (re.compile(r"\b(?:earn(?:ing)?|payout|earning[- ]potential)\b", re.IGNORECASE), "Gamify data collection (earning-potential rewards)"),
)

GENERIC_HEADINGS = (
    "general",
    "notes",
    "discussion",
    "discussion details",
    "details",
    "topics",
    "items",
    "agenda",
    "meeting notes",
    "misc",
    "miscellaneous",
    "other",
    "overview",
    "updates",
)

TOPIC_ANCHOR_RE = re.compile(
    r"^(?:new\s+feature|feature\s+request|project\s+timelines?|internal\s+operations?|cultural\s+shift|bug\s*:|risk\s*:|[A-Z][A-Za-z /&-]{2,40}:)",
)

DENSE_TOPIC_ANCHOR_PREFIXES = ("new feature", "feature request", "project timeline", "internal operation", "cultural shift", "bug:", "risk:")

CONCERN_STATEMENT_RE = re.compile(r"(?:^(?:some\s+)?(?:concern|risk|worry|worried|fear)\s+that\b|\b(?:concern(?:ed)?\s+that|worried\s+that|risk\s+that|worry\s+that)\b)", re.IGNORECASE)

DECISION_STATUS_SUFFIX_RE = re.compile(r"\s*(?:[-:|(\[]\s*)?\b(?:approved|aligned|pending|agreed|rejected|tbd)\b\s*[)\]]?\s*\.?$", re.IGNORECASE)

STOP_WORDS = frozenset(
    """
    a an and are as at be been being but by can could did do does for from had has have how i if in into is it its
    just more most must new no not now of on or our own same should so some such than that the their them then there
    these they this those through to too very was way we were what when where which who why will with would you your
    also need needs want about after again all any before between during each few further here once only other under
    """.split()
)


def tokenize(text: str, *, min_len: int = 3) -> List[str]:
    words = re.findall(r"[a-z0-9]+(?:['-][a-z0-9]+)*", (text or "").lower())
    return [w for w in words if len(w) >= min_len and w not in STOP_WORDS]


def is_generic_heading(heading: str) -> bool:
    norm = re.sub(r"[^a-z ]", "", (heading or "").lower()).strip()
    if not norm:
        return True
    return any(norm == g or norm.startswith(g + " ") or norm.endswith(" " + g) for g in GENERIC_HEADINGS)


def is_role_assignment(text: str) -> bool:
    s = strip_list_marker(text)
    if ROLE_ASSIGNMENT_RE.match(s):
        return True
    m = NAMED_ASSIGNMENT_RE.match(s)
    return bool(m and m.group(1).lower() not in _NOT_A_NAME)


_LIST_MARKER_RE = re.compile(r"^\s*(?:[-*+•]|\d+[.)])\s+(?:\[[ xX]?\]\s*)?")


def strip_list_marker(text: str) -> str:
    return _LIST_MARKER_RE.sub("", text or "").strip()


def has_explicit_ask(text: str) -> bool:
    s = strip_list_marker(text)
    return bool(
        REQUEST_STEM_RE.search(s)
        or REQUIREMENT_ASK_RE.search(s)
        or HEDGED_DIRECTIVE_RE.search(s)
        or EXPLICIT_ASK_PREFIX_RE.match(s)
    )


def starts_with_work_verb(text: str) -> bool:
    return bool(IMPERATIVE_START_RE.match(strip_list_marker(text)))
