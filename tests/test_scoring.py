"""Tests for dedup, scoring and confidence buckets."""

from __future__ import annotations

from datetime import timedelta

from command_center.models import Confidence
from command_center.scoring import (
    build_drafts,
    clamp_score,
    confidence_for,
    dedup_candidates,
    score_candidate,
)

from helpers import NOW, make_candidate


def test_confidence_bucket_boundaries() -> None:
    assert confidence_for(0) is Confidence.LOW
    assert confidence_for(49) is Confidence.LOW
    assert confidence_for(50) is Confidence.MEDIUM
    assert confidence_for(75) is Confidence.MEDIUM
    assert confidence_for(76) is Confidence.HIGH
    assert confidence_for(100) is Confidence.HIGH


def test_confidence_is_monotonic_in_score() -> None:
    ranks = [confidence_for(score).rank for score in range(0, 101)]
    assert ranks == sorted(ranks)


def test_clamp_keeps_scores_in_range() -> None:
    assert clamp_score(-10) == 0
    assert clamp_score(140) == 100
    assert clamp_score(42) == 42


def test_recent_evidence_adds_bonus_and_stays_clamped() -> None:
    top = make_candidate("urgent", 100, observed_at=NOW - timedelta(minutes=5))
    assert score_candidate(top, NOW) == 100

    floor = make_candidate("tip", 0, observed_at=NOW - timedelta(days=10))
    assert score_candidate(floor, NOW) == 0


def test_old_evidence_gets_no_bonus_and_no_penalty() -> None:
    candidate = make_candidate("stale", 70, observed_at=NOW - timedelta(days=3))
    assert score_candidate(candidate, NOW) == 70


def test_high_priority_recent_evidence_is_high_confidence() -> None:
    candidate = make_candidate("deadline", 90, observed_at=NOW - timedelta(hours=2))

    [draft] = build_drafts([candidate], [], NOW)

    assert 90 <= draft.priority_score <= 100
    assert draft.confidence is Confidence.HIGH


def test_batch_collision_keeps_higher_base_priority() -> None:
    low = make_candidate("low", 40, dedup_key="shared", rule_order=0)
    high = make_candidate("high", 80, dedup_key="shared", rule_order=1)

    [winner] = dedup_candidates([low, high], [])

    assert winner.rule_id == "high"


def test_batch_collision_tie_goes_to_first_registered_rule() -> None:
    late = make_candidate("late", 60, dedup_key="shared", rule_order=3)
    early = make_candidate("early", 60, dedup_key="shared", rule_order=1)

    [winner] = dedup_candidates([late, early], [])

    assert winner.rule_id == "early"


def test_candidates_matching_active_keys_are_dropped() -> None:
    candidate = make_candidate("task_breakdown", 70, subject_id="t1")

    assert dedup_candidates([candidate], ["planner:task_breakdown:t1"]) == []


def test_drafts_sorted_by_score_then_oldest_evidence() -> None:
    newer = make_candidate("a", 60, subject_id="newer", observed_at=NOW - timedelta(days=2))
    older = make_candidate("a", 60, subject_id="older", observed_at=NOW - timedelta(days=5))
    best = make_candidate("b", 80, subject_id="best", observed_at=NOW - timedelta(days=4))

    drafts = build_drafts([newer, older, best], [], NOW)

    assert [draft.candidate.subject_id for draft in drafts] == ["best", "older", "newer"]
    assert drafts[0].dedup_key == "planner:b:best"
