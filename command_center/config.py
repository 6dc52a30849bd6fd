"""Runtime configuration for the Command Center engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional, Tuple

# Recommendations surfaced per usage window, keyed by usage tier.
TIER_LIMITS = {
    0: 6,
    1: 12,
    2: 18,
    3: 24,
}

DEFAULT_MODULES: Tuple[str, ...] = ("notebook", "planner", "calendar")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class EngineConfig:
    """Tunables for refresh, quota and scoring behaviour."""

    tier: int = 1
    tier_limit: Optional[int] = None
    window_duration: timedelta = timedelta(hours=6)
    low_water_mark: int = 3
    max_active: int = 8
    lookback: timedelta = timedelta(days=30)
    provider_timeout: float = 5.0
    recency_window: timedelta = timedelta(hours=24)
    recency_bonus: int = 5
    auto_refresh: bool = True
    enabled: bool = True
    modules: Tuple[str, ...] = field(default_factory=lambda: DEFAULT_MODULES)
    db_path: str = ":memory:"

    def __post_init__(self) -> None:
        if self.tier_limit is None and self.tier not in TIER_LIMITS:
            raise ValueError(f"Unknown usage tier {self.tier}; expected one of {sorted(TIER_LIMITS)}")
        if self.tier_limit is not None and self.tier_limit < 0:
            raise ValueError("tier_limit must be non-negative")
        if self.window_duration <= timedelta(0):
            raise ValueError("window_duration must be positive")
        if self.recency_bonus < 0:
            raise ValueError("recency_bonus must be non-negative")

    @property
    def effective_tier_limit(self) -> int:
        if self.tier_limit is not None:
            return self.tier_limit
        return TIER_LIMITS[self.tier]

    @classmethod
    def from_env(cls) -> "EngineConfig":
        defaults = cls()
        tier_limit_raw = os.getenv("COMMAND_CENTER_TIER_LIMIT")
        return cls(
            tier=_env_int("COMMAND_CENTER_TIER", defaults.tier),
            tier_limit=int(tier_limit_raw) if tier_limit_raw and tier_limit_raw.strip() else None,
            window_duration=timedelta(hours=_env_float("COMMAND_CENTER_WINDOW_HOURS", 6.0)),
            low_water_mark=_env_int("COMMAND_CENTER_LOW_WATER_MARK", defaults.low_water_mark),
            max_active=_env_int("COMMAND_CENTER_MAX_ACTIVE", defaults.max_active),
            lookback=timedelta(days=_env_float("COMMAND_CENTER_LOOKBACK_DAYS", 30.0)),
            provider_timeout=_env_float("COMMAND_CENTER_PROVIDER_TIMEOUT", defaults.provider_timeout),
            recency_window=timedelta(hours=_env_float("COMMAND_CENTER_RECENCY_HOURS", 24.0)),
            recency_bonus=_env_int("COMMAND_CENTER_RECENCY_BONUS", defaults.recency_bonus),
            auto_refresh=_env_bool("COMMAND_CENTER_AUTO_REFRESH", defaults.auto_refresh),
            enabled=_env_bool("COMMAND_CENTER_ENABLED", defaults.enabled),
            db_path=os.getenv("COMMAND_CENTER_DB_PATH", defaults.db_path),
        )
