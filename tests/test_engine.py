"""Tests for the recommendation lifecycle through the engine facade."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest

from command_center.config import EngineConfig
from command_center.engine import CommandCenter
from command_center.errors import AlreadyDecided, DuplicateHistoryEntry, UnknownRecommendation
from command_center.models import HistoryEntry, HistoryFilter, RecommendationStatus
from command_center.rules import RuleSet
from command_center.snapshot import InMemoryModuleProvider
from command_center.storage import SqliteStateStore

from helpers import NOW, FakeClock, failing_rule, fixed_rule, make_engine, make_record


def _ids(recs):
    return [rec.id for rec in recs]


def test_refresh_twice_returns_same_active_set() -> None:
    engine = make_engine([fixed_rule("a", 80, ["s1", "s2"]), fixed_rule("b", 40)])

    async def scenario():
        first = await engine.refresh()
        second = await engine.refresh()
        return first, second

    first, second = asyncio.run(scenario())

    assert len(first) == 3
    assert _ids(first) == _ids(second)
    assert engine.gate.consumed_count == 3


def test_second_decision_fails_with_already_decided() -> None:
    engine = make_engine([fixed_rule("a", 80)])

    async def scenario():
        [rec] = await engine.refresh()
        accepted = await engine.decide(rec.id, "accept")
        with pytest.raises(AlreadyDecided):
            await engine.decide(rec.id, "decline")
        return accepted

    accepted = asyncio.run(scenario())

    assert accepted.status is RecommendationStatus.ACCEPTED
    assert accepted.decided_at == NOW
    [entry] = engine.get_history()
    assert entry.final_status is RecommendationStatus.ACCEPTED
    assert entry.priority_score_at_decision == accepted.priority_score


def test_unknown_recommendation() -> None:
    engine = make_engine([])

    with pytest.raises(UnknownRecommendation):
        asyncio.run(engine.decide("rec_missing", "accept"))


def test_expired_recommendation_moves_to_history() -> None:
    clock = FakeClock()
    engine = make_engine([fixed_rule("a", 80, ttl=timedelta(hours=2))], clock=clock, auto_refresh=False)

    async def scenario():
        [rec] = await engine.refresh()
        clock.advance(hours=3)
        active = await engine.list_active()
        return rec, active

    rec, active = asyncio.run(scenario())

    assert active == []
    [entry] = engine.get_history(HistoryFilter(status=RecommendationStatus.EXPIRED))
    assert entry.recommendation_id == rec.id
    assert entry.decided_at == NOW + timedelta(hours=3)


def test_deciding_an_unswept_expired_recommendation() -> None:
    clock = FakeClock()
    engine = make_engine([fixed_rule("a", 80, ttl=timedelta(hours=1))], clock=clock)

    async def scenario():
        [rec] = await engine.refresh()
        clock.advance(hours=1)
        with pytest.raises(AlreadyDecided):
            await engine.decide(rec.id, "accept")
        return rec

    rec = asyncio.run(scenario())

    assert engine.history.get(rec.id).final_status is RecommendationStatus.EXPIRED
    assert engine.lifecycle.list_active() == []


def test_quota_admits_highest_scoring_drafts() -> None:
    rules = [fixed_rule(f"r{base}", base) for base in (50, 90, 60, 80, 70)]
    engine = make_engine(rules, tier_limit=3)

    active = asyncio.run(engine.refresh())

    assert [rec.priority_score for rec in active] == [95, 85, 75]
    assert engine.get_usage_status().remaining == 0
    assert engine.gate.consumed_count <= 3


def test_concurrent_refreshes_share_one_pass() -> None:
    engine = make_engine([fixed_rule("a", 80, ["s1", "s2"])])

    async def scenario():
        return await asyncio.gather(engine.refresh(), engine.refresh())

    first, second = asyncio.run(scenario())

    assert _ids(first) == _ids(second)
    assert len(first) == 2
    assert engine.lifecycle.evaluation_passes == 1
    assert engine.gate.consumed_count == 2


def test_concurrent_decisions_have_one_winner() -> None:
    engine = make_engine([fixed_rule("a", 80)])

    async def scenario():
        [rec] = await engine.refresh()
        return await asyncio.gather(
            engine.decide(rec.id, "accept"),
            engine.decide(rec.id, "decline"),
            return_exceptions=True,
        )

    outcomes = asyncio.run(scenario())

    winners = [outcome for outcome in outcomes if not isinstance(outcome, Exception)]
    losers = [outcome for outcome in outcomes if isinstance(outcome, AlreadyDecided)]
    assert len(winners) == 1 and len(losers) == 1
    assert len(engine.get_history()) == 1


def test_every_terminal_recommendation_has_one_history_entry() -> None:
    clock = FakeClock()
    engine = make_engine([fixed_rule("a", 80, ["s1", "s2", "s3", "s4"], ttl=timedelta(hours=4))], clock=clock, auto_refresh=False)

    async def scenario():
        recs = await engine.refresh()
        await engine.decide(recs[0].id, "accept")
        await engine.decide(recs[1].id, "decline")
        clock.advance(hours=5)
        await engine.sweep_expired()
        return recs

    recs = asyncio.run(scenario())

    history_ids = sorted(entry.recommendation_id for entry in engine.get_history())
    assert history_ids == sorted(_ids(recs))
    assert engine.lifecycle.list_active() == []
    stats = engine.get_statistics()
    assert (stats.accepted_count, stats.declined_count, stats.expired_count) == (1, 1, 2)


def test_active_set_never_holds_duplicate_keys() -> None:
    clock = FakeClock()
    engine = make_engine([fixed_rule("a", 80, ["s1", "s2"]), fixed_rule("b", 60, ["s1"])], clock=clock)

    async def scenario():
        await engine.refresh()
        clock.advance(minutes=30)
        await engine.refresh()
        return engine.lifecycle.list_active()

    active = asyncio.run(scenario())

    keys = [rec.dedup_key for rec in active]
    assert len(keys) == len(set(keys)) == 3


def test_declined_subject_can_return_on_a_later_refresh() -> None:
    engine = make_engine([fixed_rule("a", 80)])

    async def scenario():
        [rec] = await engine.refresh()
        await engine.decide(rec.id, "decline")
        return rec, await engine.refresh()

    rec, active = asyncio.run(scenario())

    assert len(active) == 1
    assert active[0].id != rec.id
    assert active[0].dedup_key == rec.dedup_key


def test_active_slots_are_capped() -> None:
    engine = make_engine([fixed_rule("a", 70, [f"s{i}" for i in range(12)])], max_active=8)

    active = asyncio.run(engine.refresh())

    assert len(active) == 8
    assert engine.gate.consumed_count == 8


def test_exempt_rules_bypass_quota() -> None:
    engine = make_engine([fixed_rule("tags", 30, counts_against_limit=False), fixed_rule("a", 20)], tier_limit=0)

    active = asyncio.run(engine.refresh())

    assert [rec.rule_id for rec in active] == ["tags"]
    assert engine.get_usage_status().remaining == 0


def test_list_active_auto_refreshes_below_low_water_mark() -> None:
    engine = make_engine([fixed_rule("a", 80, ["s1", "s2"])], low_water_mark=3)

    active = asyncio.run(engine.list_active())

    assert len(active) == 2
    assert engine.lifecycle.evaluation_passes == 1


def test_auto_refresh_can_be_disabled() -> None:
    engine = make_engine([fixed_rule("a", 80)], auto_refresh=False)

    assert asyncio.run(engine.list_active()) == []
    assert engine.lifecycle.evaluation_passes == 0


def test_disabled_engine_does_not_refresh() -> None:
    engine = make_engine([fixed_rule("a", 80)], enabled=False)

    assert asyncio.run(engine.refresh()) == []
    assert engine.get_usage_status().remaining == 24


def test_rule_errors_do_not_abort_refresh() -> None:
    engine = make_engine([failing_rule(), fixed_rule("a", 80)])

    active = asyncio.run(engine.refresh())

    assert [rec.rule_id for rec in active] == ["a"]
    assert [error.rule_id for error in engine.evaluator.last_errors] == ["broken"]


def test_mark_opened_is_idempotent() -> None:
    clock = FakeClock()
    engine = make_engine([fixed_rule("a", 80)], clock=clock)

    async def scenario():
        [rec] = await engine.refresh()
        first = await engine.mark_opened(rec.id)
        clock.advance(minutes=10)
        second = await engine.mark_opened(rec.id)
        return first, second

    first, second = asyncio.run(scenario())

    assert first.opened_at == NOW
    assert second.opened_at == NOW


def test_state_survives_restart(tmp_path) -> None:
    db_path = tmp_path / "state.db"
    clock = FakeClock()
    rules = [fixed_rule("a", 80, ["s1", "s2"])]
    config = EngineConfig(tier_limit=5, db_path=str(db_path))
    provider = InMemoryModuleProvider({"planner": []})

    engine = CommandCenter(provider, config=config, rules=RuleSet(rules), clock=clock)

    async def first_run():
        recs = await engine.refresh()
        await engine.decide(recs[0].id, "accept")
        return recs

    recs = asyncio.run(first_run())
    engine.close()

    restarted = CommandCenter(provider, config=config, rules=RuleSet(rules), store=SqliteStateStore(db_path), clock=clock)

    assert _ids(restarted.lifecycle.list_active()) == [recs[1].id]
    assert restarted.history.contains(recs[0].id)
    assert restarted.get_usage_status().remaining == 3
    with pytest.raises(AlreadyDecided):
        asyncio.run(restarted.decide(recs[0].id, "decline"))
    restarted.close()


def test_builtin_rules_end_to_end() -> None:
    clock = FakeClock()
    provider = InMemoryModuleProvider(
        {
            "planner": [
                make_record(f"t{i}", "planner", created=NOW - timedelta(days=1), updated=NOW - timedelta(hours=1), due=NOW + timedelta(days=1, hours=i), title=f"Task {i}")
                for i in range(3)
            ],
            "notebook": [],
            "calendar": [],
        }
    )
    engine = CommandCenter(provider, config=EngineConfig(tier=0), clock=clock)

    active = asyncio.run(engine.refresh())

    assert [rec.rule_id for rec in active] == ["due_date_review"]
    assert active[0].priority_score == 95
    assert active[0].confidence.value == "high"
    assert active[0].expires_at == NOW + timedelta(hours=12)
    assert len(active[0].evidence) == 3


class _SlowProvider(InMemoryModuleProvider):
    async def list_records(self, module_name, since):
        await asyncio.sleep(0.05)
        return await super().list_records(module_name, since)


def test_cancelled_refresh_leaves_joined_caller_with_active_set() -> None:
    provider = _SlowProvider({"planner": [], "notebook": [], "calendar": []})
    engine = make_engine([fixed_rule("a", 80)], provider=provider)

    async def scenario():
        leader = asyncio.ensure_future(engine.refresh())
        await asyncio.sleep(0)
        follower = asyncio.ensure_future(engine.refresh())
        await asyncio.sleep(0.01)
        leader.cancel()
        outcomes = await asyncio.gather(leader, follower, return_exceptions=True)
        return outcomes, await engine.refresh()

    (leader_outcome, follower_outcome), later = asyncio.run(scenario())

    assert isinstance(leader_outcome, asyncio.CancelledError)
    assert follower_outcome == []
    assert [rec.rule_id for rec in later] == ["a"]
    assert engine.lifecycle.evaluation_passes == 1
    assert engine.gate.consumed_count == 1


def test_duplicate_history_row_aborts_decision() -> None:
    engine = make_engine([fixed_rule("a", 80)])
    [rec] = asyncio.run(engine.refresh())
    stale = replace(rec, status=RecommendationStatus.DECLINED, decided_at=NOW)
    engine.store.insert_history(HistoryEntry.from_recommendation(stale))

    with pytest.raises(DuplicateHistoryEntry):
        asyncio.run(engine.decide(rec.id, "accept"))

    assert _ids(engine.lifecycle.list_active()) == [rec.id]
    assert _ids(engine.store.load_active()) == [rec.id]
    assert not engine.history.contains(rec.id)
