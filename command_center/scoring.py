"""Deduplication, priority scoring and confidence bucketing of candidates."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List

from .models import Candidate, Confidence, Recommendation, RecommendationDraft

logger = logging.getLogger(__name__)

MIN_SCORE = 0
MAX_SCORE = 100
# Bucket boundaries are shared by every rule so confidence stays comparable.
LOW_CONFIDENCE_BELOW = 50
HIGH_CONFIDENCE_ABOVE = 75

DEFAULT_RECENCY_WINDOW = timedelta(hours=24)
DEFAULT_RECENCY_BONUS = 5


def clamp_score(value: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, int(value)))


def confidence_for(score: int) -> Confidence:
    if score < LOW_CONFIDENCE_BELOW:
        return Confidence.LOW
    if score <= HIGH_CONFIDENCE_ABOVE:
        return Confidence.MEDIUM
    return Confidence.HIGH


def recency_bonus(
    candidate: Candidate,
    now: datetime,
    *,
    window: timedelta = DEFAULT_RECENCY_WINDOW,
    bonus: int = DEFAULT_RECENCY_BONUS,
) -> int:
    cutoff = now - window
    if any(cutoff <= item.observed_at <= now for item in candidate.evidence):
        return bonus
    return 0


def score_candidate(
    candidate: Candidate,
    now: datetime,
    *,
    window: timedelta = DEFAULT_RECENCY_WINDOW,
    bonus: int = DEFAULT_RECENCY_BONUS,
) -> int:
    return clamp_score(candidate.base_priority + recency_bonus(candidate, now, window=window, bonus=bonus))


def _beats(challenger: Candidate, incumbent: Candidate) -> bool:
    if challenger.base_priority != incumbent.base_priority:
        return challenger.base_priority > incumbent.base_priority
    # Equal priority: the earlier registered rule keeps the slot, then first seen.
    return challenger.rule_order < incumbent.rule_order


def dedup_candidates(candidates: Iterable[Candidate], active_keys: Iterable[str]) -> List[Candidate]:
    """Drop candidates colliding with active keys or with a stronger batch sibling."""

    blocked = set(active_keys)
    winners: Dict[str, Candidate] = {}
    for candidate in candidates:
        key = candidate.effective_dedup_key
        if key in blocked:
            logger.debug("Dropping %s: %s is already active", candidate.rule_id, key)
            continue
        incumbent = winners.get(key)
        if incumbent is None or _beats(candidate, incumbent):
            winners[key] = candidate
    return list(winners.values())


def build_drafts(
    candidates: Iterable[Candidate],
    active: Iterable[Recommendation],
    now: datetime,
    *,
    recency_window: timedelta = DEFAULT_RECENCY_WINDOW,
    bonus: int = DEFAULT_RECENCY_BONUS,
) -> List[RecommendationDraft]:
    """Turn raw candidates into scored drafts, best first."""

    survivors = dedup_candidates(candidates, (rec.dedup_key for rec in active))
    drafts: List[RecommendationDraft] = []
    for candidate in survivors:
        score = score_candidate(candidate, now, window=recency_window, bonus=bonus)
        drafts.append(
            RecommendationDraft(
                candidate=candidate,
                dedup_key=candidate.effective_dedup_key,
                priority_score=score,
                confidence=confidence_for(score),
            )
        )
    drafts.sort(
        key=lambda draft: (
            -draft.priority_score,
            draft.candidate.earliest_evidence_at,
            draft.candidate.rule_order,
        )
    )
    return drafts
