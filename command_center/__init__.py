"""Command Center: rule-based recommendations across productivity modules."""

from .config import EngineConfig, TIER_LIMITS
from .engine import CommandCenter
from .errors import (
    AlreadyDecided,
    CommandCenterError,
    DuplicateHistoryEntry,
    RuleEvaluationError,
    UnknownRecommendation,
)
from .models import (
    Confidence,
    Decision,
    Evidence,
    HistoryEntry,
    HistoryFilter,
    Recommendation,
    RecommendationStatus,
    Record,
    Statistics,
    UsageStatus,
)
from .rules import CandidateTemplate, Rule, RuleContext, RuleSet
from .snapshot import InMemoryModuleProvider, ModuleProvider, Snapshot

__all__ = [
    "CommandCenter",
    "EngineConfig",
    "TIER_LIMITS",
    "CommandCenterError",
    "RuleEvaluationError",
    "UnknownRecommendation",
    "AlreadyDecided",
    "DuplicateHistoryEntry",
    "Confidence",
    "Decision",
    "Evidence",
    "HistoryEntry",
    "HistoryFilter",
    "Recommendation",
    "RecommendationStatus",
    "Record",
    "Statistics",
    "UsageStatus",
    "CandidateTemplate",
    "Rule",
    "RuleContext",
    "RuleSet",
    "InMemoryModuleProvider",
    "ModuleProvider",
    "Snapshot",
]
