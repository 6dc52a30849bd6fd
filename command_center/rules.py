"""Rule registry and evaluator for proactive recommendations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

from .errors import RuleEvaluationError
from .models import Candidate, Evidence, HistoryEntry, Recommendation, RecommendationStatus
from .snapshot import Snapshot

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CandidateTemplate:
    """Intermediate representation produced by rule functions."""

    subject_id: str
    title: str
    body: str
    evidence: List[Evidence]
    dedup_key: Optional[str] = None


@dataclass(slots=True, frozen=True)
class RuleContext:
    """Everything a rule may look at; rules keep no state of their own."""

    snapshot: Snapshot
    active: Tuple[Recommendation, ...]
    history: Tuple[HistoryEntry, ...]
    now: datetime

    def recently_declined(self, rule_id: str, dedup_key: str, within: timedelta) -> bool:
        cutoff = self.now - within
        return any(
            entry.rule_id == rule_id
            and entry.dedup_key == dedup_key
            and entry.final_status is RecommendationStatus.DECLINED
            and entry.decided_at >= cutoff
            for entry in self.history
        )


RuleFunction = Callable[[RuleContext], Iterable[CandidateTemplate]]


@dataclass(slots=True, frozen=True)
class Rule:
    rule_id: str
    module_tag: str
    base_priority: int
    evaluate: RuleFunction
    ttl: timedelta = timedelta(hours=24)
    counts_against_limit: bool = True
    description: str = ""

    def __post_init__(self) -> None:
        if not self.rule_id:
            raise ValueError("rule_id must not be empty")
        if not 0 <= self.base_priority <= 100:
            raise ValueError(f"base_priority for {self.rule_id} must be within 0..100")
        if self.ttl <= timedelta(0):
            raise ValueError(f"ttl for {self.rule_id} must be positive")


class RuleSet:
    """Ordered, explicitly constructed collection of rules."""

    def __init__(self, rules: Iterable[Rule] = ()) -> None:
        self._rules: List[Rule] = []
        for rule in rules:
            self.add(rule)

    def add(self, rule: Rule) -> None:
        if any(existing.rule_id == rule.rule_id for existing in self._rules):
            raise ValueError(f"Duplicate rule id: {rule.rule_id}")
        self._rules.append(rule)

    def get(self, rule_id: str) -> Rule | None:
        for rule in self._rules:
            if rule.rule_id == rule_id:
                return rule
        return None

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)


class RuleEvaluator:
    """Evaluates a snapshot against every rule, isolating per-rule failures."""

    def __init__(self, ruleset: RuleSet) -> None:
        self.ruleset = ruleset
        self.last_errors: List[RuleEvaluationError] = []

    def evaluate(
        self,
        snapshot: Snapshot,
        active: Sequence[Recommendation],
        history: Sequence[HistoryEntry],
        now: datetime | None = None,
    ) -> List[Candidate]:
        context = RuleContext(
            snapshot=snapshot,
            active=tuple(active),
            history=tuple(history),
            now=now or snapshot.taken_at,
        )
        candidates: List[Candidate] = []
        errors: List[RuleEvaluationError] = []
        for order, rule in enumerate(self.ruleset):
            try:
                produced = [self._stamp(rule, order, template) for template in rule.evaluate(context) or ()]
            except Exception as exc:
                error = RuleEvaluationError(rule.rule_id, exc)
                logger.warning("Skipping rule %s: %s", rule.rule_id, exc, exc_info=exc)
                errors.append(error)
                continue
            logger.debug("Rule %s produced %d candidates", rule.rule_id, len(produced))
            candidates.extend(produced)
        self.last_errors = errors
        return candidates

    @staticmethod
    def _stamp(rule: Rule, order: int, template: CandidateTemplate) -> Candidate:
        return Candidate(
            rule_id=rule.rule_id,
            module_tag=rule.module_tag,
            base_priority=rule.base_priority,
            subject_id=template.subject_id,
            title=template.title,
            body=template.body,
            evidence=tuple(template.evidence),
            ttl=rule.ttl,
            rule_order=order,
            counts_against_limit=rule.counts_against_limit,
            dedup_key=template.dedup_key,
        )
