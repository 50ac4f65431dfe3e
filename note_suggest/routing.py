from __future__ import annotations

import math
import re
from collections import Counter
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .models import InitiativeSnapshot, Routing, Suggestion, ThresholdConfig


def similarity_tokens(text: str) -> List[str]:
    return [w for w in re.sub(r"[^a-z0-9\s]", " ", (text or "").lower()).split() if len(w) > 3]


def cosine_similarity(a: str, b: str) -> float:
    """Cosine over token frequency vectors (tokens longer than 3 chars)."""

    fa = Counter(similarity_tokens(a))
    fb = Counter(similarity_tokens(b))
    if not fa or not fb:
        return 0.0
    dot = sum(n * fb.get(t, 0) for t, n in fa.items())
    norm = math.sqrt(sum(n * n for n in fa.values())) * math.sqrt(sum(n * n for n in fb.values()))
    return dot / norm if norm else 0.0


def suggestion_text(suggestion: Suggestion) -> str:
    return f"{suggestion.title}\n{suggestion.body}"


def initiative_text(initiative: InitiativeSnapshot) -> str:
    return f"{initiative.title}\n{initiative.description or ''}"


def find_best_match(
    suggestion: Suggestion, initiatives: Sequence[InitiativeSnapshot]
) -> Tuple[Optional[InitiativeSnapshot], float]:
    """Highest-similarity initiative; ties go to the earlier initiative."""

    best: Optional[InitiativeSnapshot] = None
    best_score = 0.0
    text = suggestion_text(suggestion)
    for initiative in initiatives:
        score = cosine_similarity(text, initiative_text(initiative))
        if best is None or score > best_score:
            best, best_score = initiative, score
    return best, best_score


def route_suggestion(
    suggestion: Suggestion, initiatives: Sequence[InitiativeSnapshot], thresholds: ThresholdConfig
) -> Suggestion:
    if not initiatives:
        return replace(suggestion, routing=Routing(create_new=True))

    initiative, score = find_best_match(suggestion, initiatives)
    if initiative is not None and score >= thresholds.T_attach:
        routing = Routing(create_new=False, attached_initiative_id=initiative.id, similarity=round(score, 4))
    else:
        routing = Routing(create_new=True, similarity=round(score, 4) if score else None)
    return replace(suggestion, routing=routing)


def route_suggestions(
    suggestions: Sequence[Suggestion],
    initiatives: Sequence[InitiativeSnapshot],
    thresholds: ThresholdConfig,
) -> List[Suggestion]:
    return [route_suggestion(s, initiatives, thresholds) for s in suggestions]


def compute_routing_stats(suggestions: Sequence[Suggestion]) -> Dict[str, Any]:
    attached = [s for s in suggestions if s.routing.attached_initiative_id and not s.routing.create_new]
    sims = [s.routing.similarity for s in suggestions if s.routing.similarity is not None]
    return {
        "total": len(suggestions),
        "attached": len(attached),
        "create_new": sum(1 for s in suggestions if s.routing.create_new),
        "avg_similarity": round(sum(sims) / len(sims), 4) if sims else 0.0,
    }
