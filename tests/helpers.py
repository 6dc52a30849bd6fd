from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from command_center.config import DEFAULT_MODULES, EngineConfig
from command_center.engine import CommandCenter
from command_center.models import Candidate, Evidence, Record
from command_center.rules import CandidateTemplate, Rule, RuleSet
from command_center.snapshot import InMemoryModuleProvider

# A Wednesday.
NOW = datetime(2026, 10, 14, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_record(
    record_id: str,
    module: str,
    *,
    created: datetime,
    updated: Optional[datetime] = None,
    due: Optional[datetime] = None,
    title: str = "",
    tags: Iterable[str] = (),
    **attributes: str,
) -> Record:
    return Record(
        id=record_id,
        module=module,
        created_at=created,
        updated_at=updated or created,
        due_at=due,
        tags=tuple(tags),
        text_fields=(title,) if title else (),
        attributes=dict(attributes),
    )


def make_candidate(
    rule_id: str,
    base_priority: int,
    *,
    subject_id: str = "s1",
    observed_at: datetime = NOW - timedelta(hours=2),
    rule_order: int = 0,
    dedup_key: Optional[str] = None,
    module_tag: str = "planner",
) -> Candidate:
    return Candidate(
        rule_id=rule_id,
        module_tag=module_tag,
        base_priority=base_priority,
        subject_id=subject_id,
        title=f"{rule_id} {subject_id}",
        body="",
        evidence=(Evidence(subject_id, module_tag, observed_at, "excerpt"),),
        ttl=timedelta(hours=24),
        rule_order=rule_order,
        dedup_key=dedup_key,
    )


def fixed_rule(
    rule_id: str,
    base_priority: int,
    subjects: Iterable[str] = ("s1",),
    *,
    module: str = "planner",
    age: timedelta = timedelta(hours=2),
    ttl: timedelta = timedelta(hours=24),
    counts_against_limit: bool = True,
) -> Rule:
    """A rule that always proposes the same subjects."""

    subject_ids = tuple(subjects)

    def evaluate(ctx):
        return [
            CandidateTemplate(
                subject_id=subject,
                title=f"{rule_id} {subject}",
                body=f"{rule_id} suggests {subject}",
                evidence=[Evidence(subject, module, ctx.now - age, subject)],
            )
            for subject in subject_ids
        ]

    return Rule(rule_id, module, base_priority, evaluate, ttl=ttl, counts_against_limit=counts_against_limit)


def failing_rule(rule_id: str = "broken") -> Rule:
    def evaluate(ctx):
        raise RuntimeError("boom")

    return Rule(rule_id, "planner", 50, evaluate)


def empty_provider() -> InMemoryModuleProvider:
    return InMemoryModuleProvider({module: [] for module in DEFAULT_MODULES})


def make_engine(
    rules: Iterable[Rule],
    *,
    clock: Optional[FakeClock] = None,
    provider=None,
    **config: object,
) -> CommandCenter:
    config.setdefault("tier_limit", 24)
    return CommandCenter(
        provider or empty_provider(),
        config=EngineConfig(**config),
        rules=RuleSet(rules),
        clock=clock or FakeClock(),
    )
