"""End-to-end orchestration for the Command Center recommendation engine."""

from __future__ import annotations

import logging
from typing import List

from .builtin_rules import build_default_ruleset
from .config import EngineConfig
from .history import HistoryStore
from .lifecycle import LifecycleManager
from .models import Decision, HistoryEntry, HistoryFilter, Recommendation, Statistics, UsageStatus
from .rules import RuleEvaluator, RuleSet
from .snapshot import ModuleProvider, SnapshotReader
from .storage import SqliteStateStore
from .usage import UsageGate
from .utils import Clock, utc_now

logger = logging.getLogger(__name__)


class CommandCenter:
    """Public surface consumed by the presentation layer and the CLI."""

    def __init__(
        self,
        provider: ModuleProvider,
        *,
        config: EngineConfig | None = None,
        rules: RuleSet | None = None,
        store: SqliteStateStore | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.config = config or EngineConfig()
        self.store = store or SqliteStateStore(self.config.db_path)
        self.rules = rules if rules is not None else build_default_ruleset()
        self.history = HistoryStore(self.store)
        self.gate = UsageGate(
            self.config.effective_tier_limit,
            self.config.window_duration,
            store=self.store,
            clock=clock,
        )
        self.reader = SnapshotReader(
            provider,
            self.config.modules,
            timeout=self.config.provider_timeout,
            clock=clock,
        )
        self.evaluator = RuleEvaluator(self.rules)
        self.lifecycle = LifecycleManager(
            self.reader,
            self.evaluator,
            self.history,
            self.gate,
            config=self.config,
            store=self.store,
            clock=clock,
        )

    async def list_active(self) -> List[Recommendation]:
        """Sweep expired cards and top the set up when it runs low."""

        await self.lifecycle.sweep_expired()
        active = self.lifecycle.list_active()
        if self.config.enabled and self.config.auto_refresh and len(active) < self.config.low_water_mark:
            logger.debug("Active set below low-water mark (%d < %d)", len(active), self.config.low_water_mark)
            active = await self.lifecycle.refresh()
        return active

    async def refresh(self) -> List[Recommendation]:
        if not self.config.enabled:
            logger.info("Recommendations are disabled; refresh skipped")
            return self.lifecycle.list_active()
        return await self.lifecycle.refresh()

    async def decide(self, rec_id: str, action: Decision | str) -> Recommendation:
        return await self.lifecycle.decide(rec_id, action)

    async def mark_opened(self, rec_id: str) -> Recommendation:
        return await self.lifecycle.mark_opened(rec_id)

    async def sweep_expired(self) -> List[Recommendation]:
        return await self.lifecycle.sweep_expired()

    def get_history(self, history_filter: HistoryFilter | None = None) -> List[HistoryEntry]:
        return self.history.entries(history_filter)

    def get_statistics(self, history_filter: HistoryFilter | None = None) -> Statistics:
        return self.history.get_statistics(history_filter)

    def get_usage_status(self) -> UsageStatus:
        return self.gate.status()

    def close(self) -> None:
        self.store.close()
