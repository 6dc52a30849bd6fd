"""Append-only decision history and derived acceptance statistics."""

from __future__ import annotations

import logging
import sqlite3
from collections import Counter
from typing import Dict, List, Optional

import numpy as np

from .errors import DuplicateHistoryEntry
from .models import HistoryEntry, HistoryFilter, RecommendationStatus, Statistics
from .storage import SqliteStateStore

logger = logging.getLogger(__name__)


def acceptance_rate(accepted: int, declined: int) -> float:
    """Share of decided recommendations that were accepted.

    Expired recommendations never reach the denominator: a suggestion the user
    did not act on should not count against the rules that produced it.
    """

    decided = accepted + declined
    if not decided:
        return 0.0
    return accepted / decided


class HistoryStore:
    """Owns history entries; one entry per recommendation, never rewritten."""

    def __init__(self, store: Optional[SqliteStateStore] = None) -> None:
        self._store = store
        self._entries: List[HistoryEntry] = []
        self._by_id: Dict[str, HistoryEntry] = {}
        if store is not None:
            for entry in store.load_history():
                self._entries.append(entry)
                self._by_id[entry.recommendation_id] = entry

    def append(self, entry: HistoryEntry) -> None:
        if entry.recommendation_id in self._by_id:
            raise DuplicateHistoryEntry(entry.recommendation_id)
        if self._store is not None:
            try:
                self._store.insert_history(entry)
            except sqlite3.IntegrityError as exc:
                raise DuplicateHistoryEntry(entry.recommendation_id) from exc
        self._entries.append(entry)
        self._by_id[entry.recommendation_id] = entry
        logger.debug("History: %s -> %s", entry.recommendation_id, entry.final_status.value)

    def contains(self, recommendation_id: str) -> bool:
        return recommendation_id in self._by_id

    def get(self, recommendation_id: str) -> HistoryEntry | None:
        return self._by_id.get(recommendation_id)

    def all(self) -> tuple[HistoryEntry, ...]:
        return tuple(self._entries)

    def entries(self, history_filter: Optional[HistoryFilter] = None) -> List[HistoryEntry]:
        """Matching entries, most recent decision first."""

        history_filter = history_filter or HistoryFilter()
        matched = [entry for entry in self._entries if history_filter.matches(entry)]
        matched.sort(key=lambda entry: (entry.decided_at, entry.recommendation_id), reverse=True)
        if history_filter.limit is not None:
            matched = matched[: max(history_filter.limit, 0)]
        return matched

    def __len__(self) -> int:
        return len(self._entries)

    def get_statistics(self, history_filter: Optional[HistoryFilter] = None) -> Statistics:
        scope = HistoryFilter(
            module_tag=history_filter.module_tag if history_filter else None,
            rule_id=history_filter.rule_id if history_filter else None,
        )
        entries = [entry for entry in self._entries if scope.matches(entry)]
        statuses = Counter(entry.final_status for entry in entries)
        accepted = statuses[RecommendationStatus.ACCEPTED]
        declined = statuses[RecommendationStatus.DECLINED]
        stats = Statistics(
            total=len(entries),
            accepted_count=accepted,
            declined_count=declined,
            expired_count=statuses[RecommendationStatus.EXPIRED],
            acceptance_rate=acceptance_rate(accepted, declined),
            by_module=dict(Counter(entry.module_tag for entry in entries)),
            by_rule=dict(Counter(entry.rule_id for entry in entries)),
        )
        if entries:
            priorities = np.array([entry.priority_score_at_decision for entry in entries], dtype=float)
            stats.average_priority = round(float(priorities.mean()), 2)
        decided = [entry for entry in entries if entry.final_status is not RecommendationStatus.EXPIRED]
        if decided:
            latencies = np.array([(entry.decided_at - entry.created_at).total_seconds() for entry in decided])
            stats.median_decision_seconds = float(np.median(latencies))
        return stats
