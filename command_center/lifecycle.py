"""Lifecycle of active recommendations: refresh, decide and expiry.

The manager is the only writer of the active set. Every active -> terminal
transition goes through ``_transition`` while holding the engine lock, and the
history append happens before the active set is touched, so a failed append
leaves the recommendation exactly where it was.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from .config import EngineConfig
from .errors import AlreadyDecided, DuplicateHistoryEntry, UnknownRecommendation
from .history import HistoryStore
from .models import Decision, HistoryEntry, Recommendation, RecommendationDraft, RecommendationStatus
from .rules import RuleEvaluator
from .scoring import build_drafts
from .snapshot import SnapshotReader
from .storage import SqliteStateStore
from .usage import UsageGate
from .utils import Clock, generate_id, utc_now

logger = logging.getLogger(__name__)


def _by_priority(rec: Recommendation) -> tuple:
    return (-rec.priority_score, rec.created_at, rec.id)


class LifecycleManager:
    """Owns the canonical active set and drives the refresh pipeline."""

    def __init__(
        self,
        reader: SnapshotReader,
        evaluator: RuleEvaluator,
        history: HistoryStore,
        gate: UsageGate,
        *,
        config: Optional[EngineConfig] = None,
        store: Optional[SqliteStateStore] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.reader = reader
        self.evaluator = evaluator
        self.history = history
        self.gate = gate
        self.config = config or EngineConfig()
        self._store = store
        self._clock = clock
        self._lock = asyncio.Lock()
        self._inflight: Optional[asyncio.Task] = None
        self._active: Dict[str, Recommendation] = {}
        self.evaluation_passes = 0
        self.last_inserted: List[Recommendation] = []
        if store is not None:
            self._load(store)

    def _load(self, store: SqliteStateStore) -> None:
        for rec in store.load_active():
            if rec.status.is_terminal or self.history.contains(rec.id):
                logger.warning("Dropping %s from the active set: already in history", rec.id)
                store.delete_active(rec.id)
                continue
            self._active[rec.id] = rec

    # reads

    def list_active(self) -> List[Recommendation]:
        return sorted(self._active.values(), key=_by_priority)

    def get(self, rec_id: str) -> Recommendation | None:
        return self._active.get(rec_id)

    def __len__(self) -> int:
        return len(self._active)

    # refresh

    async def refresh(self) -> List[Recommendation]:
        """Run one evaluation pass, or join the pass already running."""

        task = self._inflight
        leader = task is None or task.done()
        if leader:
            task = asyncio.ensure_future(self._refresh_pass())
            self._inflight = task
            task.add_done_callback(self._clear_inflight)
        else:
            logger.debug("Refresh already in flight; joining it")
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if leader:
                # Cancelling the caller that started the pass cancels the pass.
                task.cancel()
                raise
            if task.cancelled():
                logger.info("Joined refresh was cancelled; returning the current active set")
                return self.list_active()
            raise

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _refresh_pass(self) -> List[Recommendation]:
        await self.sweep_expired()
        snapshot = await self.reader.read(self.config.lookback)
        now = self._clock()
        candidates = self.evaluator.evaluate(snapshot, self.list_active(), self.history.all(), now)
        self.evaluation_passes += 1
        async with self._lock:
            self._sweep_locked(now)
            drafts = build_drafts(
                candidates,
                self._active.values(),
                now,
                recency_window=self.config.recency_window,
                bonus=self.config.recency_bonus,
            )
            inserted = self._insert_drafts(drafts, now)
        self.last_inserted = inserted
        logger.info(
            "Refresh produced %d candidates, %d drafts, inserted %d (%d rule errors)",
            len(candidates),
            len(drafts),
            len(inserted),
            len(self.evaluator.last_errors),
        )
        return self.list_active()

    def _insert_drafts(self, drafts: List[RecommendationDraft], now: datetime) -> List[Recommendation]:
        free_slots = max(0, self.config.max_active - len(self._active))
        batch = drafts[:free_slots]
        wanted = sum(1 for draft in batch if draft.counts_against_limit)
        granted = self.gate.try_consume(wanted) if wanted else 0
        inserted: List[Recommendation] = []
        for draft in batch:
            if draft.counts_against_limit:
                if granted == 0:
                    break
                granted -= 1
            rec = Recommendation.from_draft(draft, rec_id=self._new_id(), now=now)
            self._active[rec.id] = rec
            if self._store is not None:
                self._store.upsert_active(rec)
            inserted.append(rec)
        discarded = len(drafts) - len(inserted)
        if discarded:
            logger.debug("Discarded %d drafts (slots or quota)", discarded)
        return inserted

    def _new_id(self) -> str:
        while True:
            rec_id = generate_id("rec")
            if rec_id not in self._active and not self.history.contains(rec_id):
                return rec_id

    # transitions

    async def decide(self, rec_id: str, action: Decision | str) -> Recommendation:
        decision = Decision(action)
        async with self._lock:
            now = self._clock()
            if self.history.contains(rec_id):
                raise AlreadyDecided(rec_id)
            rec = self._active.get(rec_id)
            if rec is None:
                raise UnknownRecommendation(rec_id)
            if rec.is_expired(now):
                self._transition(rec, RecommendationStatus.EXPIRED, now)
                raise AlreadyDecided(rec_id)
            terminal = self._transition(rec, decision.final_status, now)
        logger.info("Recommendation %s (%s) %s", rec_id, terminal.rule_id, terminal.status.value)
        return terminal

    async def sweep_expired(self) -> List[Recommendation]:
        async with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: datetime) -> List[Recommendation]:
        expired: List[Recommendation] = []
        for rec in list(self._active.values()):
            if not rec.is_expired(now):
                continue
            try:
                expired.append(self._transition(rec, RecommendationStatus.EXPIRED, now))
            except DuplicateHistoryEntry as exc:
                logger.error("Could not expire %s: %s", rec.id, exc)
        if expired:
            logger.info("Expired %d recommendations", len(expired))
        return expired

    def _transition(self, rec: Recommendation, status: RecommendationStatus, now: datetime) -> Recommendation:
        terminal = replace(rec, status=status, decided_at=now)
        self.history.append(HistoryEntry.from_recommendation(terminal))
        del self._active[rec.id]
        if self._store is not None:
            self._store.delete_active(rec.id)
        return terminal

    async def mark_opened(self, rec_id: str) -> Recommendation:
        async with self._lock:
            rec = self._active.get(rec_id)
            if rec is None:
                if self.history.contains(rec_id):
                    raise AlreadyDecided(rec_id)
                raise UnknownRecommendation(rec_id)
            if rec.opened_at is not None:
                return rec
            opened = replace(rec, opened_at=self._clock())
            self._active[rec_id] = opened
            if self._store is not None:
                self._store.upsert_active(opened)
            return opened
