"""Typed failures raised by the Command Center engine."""

from __future__ import annotations


class CommandCenterError(Exception):
    """Base class for engine errors surfaced to callers."""


class RuleEvaluationError(CommandCenterError):
    """A single rule failed; recorded and skipped for the current pass."""

    def __init__(self, rule_id: str, cause: BaseException) -> None:
        super().__init__(f"rule {rule_id} failed: {cause!r}")
        self.rule_id = rule_id
        self.cause = cause


class UnknownRecommendation(CommandCenterError):
    def __init__(self, rec_id: str) -> None:
        super().__init__(f"recommendation {rec_id} is not active")
        self.id = rec_id


class AlreadyDecided(CommandCenterError):
    """The recommendation already left the active set."""

    def __init__(self, rec_id: str) -> None:
        super().__init__(f"recommendation {rec_id} was already decided")
        self.id = rec_id


class DuplicateHistoryEntry(CommandCenterError):
    def __init__(self, recommendation_id: str) -> None:
        super().__init__(f"history already holds an entry for {recommendation_id}")
        self.recommendation_id = recommendation_id
