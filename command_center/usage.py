"""Rolling usage quota limiting how many recommendations are surfaced."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from .models import UsageStatus, UsageWindow
from .storage import SqliteStateStore
from .utils import Clock, to_millis, utc_now

logger = logging.getLogger(__name__)


class UsageGate:
    """Owns the usage window and hands out surfacing slots."""

    def __init__(
        self,
        tier_limit: int,
        window_duration: timedelta,
        *,
        store: Optional[SqliteStateStore] = None,
        clock: Clock = utc_now,
    ) -> None:
        if tier_limit < 0:
            raise ValueError("tier_limit must be non-negative")
        self.tier_limit = tier_limit
        self.window_duration = window_duration
        self._store = store
        self._clock = clock
        self._window: Optional[UsageWindow] = store.load_usage_window() if store else None
        if self._window is not None:
            # Tier and duration changes apply to the window already in progress.
            self._window.tier_limit = tier_limit
            self._window.window_duration_ms = to_millis(window_duration)

    def _current(self, now: datetime) -> UsageWindow:
        duration_ms = to_millis(self.window_duration)
        window = self._window
        if window is None:
            window = UsageWindow(tier_limit=self.tier_limit, window_start=now, window_duration_ms=duration_ms)
            self._window = window
            self._save()
        elif now >= window.window_end:
            elapsed = now - window.window_start
            periods = elapsed // timedelta(milliseconds=window.window_duration_ms)
            window.window_start += periods * timedelta(milliseconds=window.window_duration_ms)
            window.consumed_count = 0
            logger.info("Usage window rolled over; next reset at %s", window.window_end.isoformat())
            self._save()
        return window

    def try_consume(self, n: int) -> int:
        """Grant up to ``n`` slots without exceeding the tier limit."""

        if n < 0:
            raise ValueError("n must be non-negative")
        window = self._current(self._clock())
        granted = min(n, window.remaining)
        if granted:
            window.consumed_count += granted
            self._save()
        if granted < n:
            logger.info("Usage quota exhausted: granted %d of %d", granted, n)
        return granted

    def status(self) -> UsageStatus:
        window = self._current(self._clock())
        return UsageStatus(remaining=window.remaining, limit=window.tier_limit, resets_at=window.window_end)

    @property
    def consumed_count(self) -> int:
        return self._current(self._clock()).consumed_count

    def _save(self) -> None:
        if self._store is not None and self._window is not None:
            self._store.save_usage_window(self._window)
