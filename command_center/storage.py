"""SQLite-backed persistence for active recommendations, history and usage."""

from __future__ import annotations

import json
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import List, Optional

from .models import HistoryEntry, Recommendation, RecommendationStatus, UsageWindow
from .utils import parse_timestamp


class SqliteStateStore:
    """Three independently loadable collections; no cross-table constraints."""

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self.db_path = str(db_path)
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with closing(self.conn.cursor()) as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS active_recommendations (
                    id TEXT PRIMARY KEY,
                    dedup_key TEXT NOT NULL UNIQUE,
                    priority_score INTEGER NOT NULL,
                    expires_at TEXT NOT NULL,
                    payload TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS history_entries (
                    recommendation_id TEXT PRIMARY KEY,
                    rule_id TEXT NOT NULL,
                    module_tag TEXT NOT NULL,
                    final_status TEXT NOT NULL,
                    priority_score_at_decision INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    decided_at TEXT NOT NULL,
                    dedup_key TEXT NOT NULL DEFAULT '',
                    subject_id TEXT NOT NULL DEFAULT ''
                )
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_history_decided
                ON history_entries(decided_at)
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS usage_window (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    tier_limit INTEGER NOT NULL,
                    window_start TEXT NOT NULL,
                    window_duration_ms INTEGER NOT NULL,
                    consumed_count INTEGER NOT NULL
                )
                """
            )
            self.conn.commit()

    # active_recommendations

    def load_active(self) -> List[Recommendation]:
        with closing(self.conn.cursor()) as cur:
            cur.execute("SELECT payload FROM active_recommendations ORDER BY priority_score DESC, id")
            rows = cur.fetchall()
        return [Recommendation.from_dict(json.loads(row["payload"])) for row in rows]

    def upsert_active(self, rec: Recommendation) -> None:
        payload = (
            rec.id,
            rec.dedup_key,
            rec.priority_score,
            rec.expires_at.isoformat(),
            json.dumps(rec.to_dict(), ensure_ascii=True),
        )
        with closing(self.conn.cursor()) as cur:
            cur.execute(
                """
                INSERT INTO active_recommendations (id, dedup_key, priority_score, expires_at, payload)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    dedup_key=excluded.dedup_key,
                    priority_score=excluded.priority_score,
                    expires_at=excluded.expires_at,
                    payload=excluded.payload
                """,
                payload,
            )
            self.conn.commit()

    def delete_active(self, rec_id: str) -> None:
        with closing(self.conn.cursor()) as cur:
            cur.execute("DELETE FROM active_recommendations WHERE id = ?", (rec_id,))
            self.conn.commit()

    # history_entries

    def load_history(self) -> List[HistoryEntry]:
        with closing(self.conn.cursor()) as cur:
            cur.execute("SELECT * FROM history_entries ORDER BY decided_at, recommendation_id")
            rows = cur.fetchall()
        return [self._row_to_history(row) for row in rows]

    def insert_history(self, entry: HistoryEntry) -> None:
        """Insert one entry; raises sqlite3.IntegrityError on a repeated id."""

        with closing(self.conn.cursor()) as cur:
            cur.execute(
                """
                INSERT INTO history_entries (
                    recommendation_id, rule_id, module_tag, final_status,
                    priority_score_at_decision, created_at, decided_at, dedup_key, subject_id
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.recommendation_id,
                    entry.rule_id,
                    entry.module_tag,
                    entry.final_status.value,
                    entry.priority_score_at_decision,
                    entry.created_at.isoformat(),
                    entry.decided_at.isoformat(),
                    entry.dedup_key,
                    entry.subject_id,
                ),
            )
            self.conn.commit()

    @staticmethod
    def _row_to_history(row: sqlite3.Row) -> HistoryEntry:
        return HistoryEntry(
            recommendation_id=row["recommendation_id"],
            rule_id=row["rule_id"],
            module_tag=row["module_tag"],
            final_status=RecommendationStatus(row["final_status"]),
            priority_score_at_decision=row["priority_score_at_decision"],
            created_at=parse_timestamp(row["created_at"]),
            decided_at=parse_timestamp(row["decided_at"]),
            dedup_key=row["dedup_key"],
            subject_id=row["subject_id"],
        )

    # usage_window

    def load_usage_window(self) -> Optional[UsageWindow]:
        with closing(self.conn.cursor()) as cur:
            cur.execute("SELECT * FROM usage_window WHERE id = 1")
            row = cur.fetchone()
        if not row:
            return None
        return UsageWindow(
            tier_limit=row["tier_limit"],
            window_start=parse_timestamp(row["window_start"]),
            window_duration_ms=row["window_duration_ms"],
            consumed_count=row["consumed_count"],
        )

    def save_usage_window(self, window: UsageWindow) -> None:
        with closing(self.conn.cursor()) as cur:
            cur.execute(
                """
                INSERT INTO usage_window (id, tier_limit, window_start, window_duration_ms, consumed_count)
                VALUES (1, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    tier_limit=excluded.tier_limit,
                    window_start=excluded.window_start,
                    window_duration_ms=excluded.window_duration_ms,
                    consumed_count=excluded.consumed_count
                """,
                (
                    window.tier_limit,
                    window.window_start.isoformat(),
                    window.window_duration_ms,
                    window.consumed_count,
                ),
            )
            self.conn.commit()

    def close(self) -> None:
        self.conn.close()
