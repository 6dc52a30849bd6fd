"""Command-line driver for the Command Center recommendation engine."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

from command_center.config import DEFAULT_MODULES, EngineConfig
from command_center.engine import CommandCenter
from command_center.errors import CommandCenterError
from command_center.models import HistoryFilter, RecommendationStatus
from command_center.reporting import daily_report, statistics_report, weekly_report
from command_center.snapshot import InMemoryModuleProvider
from command_center.ui import build_cards, format_refresh_message, render_usage
from command_center.utils import utc_now

logger = logging.getLogger(__name__)


def load_provider(path: Optional[Path]) -> InMemoryModuleProvider:
    """Build a provider from a JSON file mapping module name to records."""

    payload: dict = {module: [] for module in DEFAULT_MODULES}
    if path is None:
        return InMemoryModuleProvider.from_payload(payload)
    if not path.exists():
        logger.warning("Records file %s not found; using empty modules", path)
        return InMemoryModuleProvider.from_payload(payload)
    payload.update(json.loads(path.read_text(encoding="utf-8")))
    return InMemoryModuleProvider.from_payload(payload)


def build_config(args: argparse.Namespace) -> EngineConfig:
    config = EngineConfig.from_env()
    if args.db:
        config = replace(config, db_path=args.db)
    if args.tier is not None:
        config = replace(config, tier=args.tier, tier_limit=None)
    if args.tier_limit is not None:
        config = replace(config, tier_limit=args.tier_limit)
    return config


def print_active(recs, *, show_evidence: bool) -> None:
    if not recs:
        print("No active recommendations.")
        return
    for card in build_cards(recs, now=utc_now(), show_evidence=show_evidence):
        print(card.render_text())
        print()


async def run(args: argparse.Namespace) -> int:
    engine = CommandCenter(load_provider(args.records), config=build_config(args))
    try:
        if args.command == "refresh":
            recs = await engine.refresh()
            print(format_refresh_message(len(engine.lifecycle.last_inserted)))
            for error in engine.evaluator.last_errors:
                print(f"[warn] {error}", file=sys.stderr)
            print_active(recs, show_evidence=args.evidence)
        elif args.command == "list":
            print_active(await engine.list_active(), show_evidence=args.evidence)
        elif args.command == "decide":
            rec = await engine.decide(args.id, args.action)
            print(f"{rec.id}: {rec.status.value} at {rec.decided_at.isoformat()}")
        elif args.command == "open":
            rec = await engine.mark_opened(args.id)
            print(f"{rec.id}: opened at {rec.opened_at.isoformat()}")
        elif args.command == "history":
            history_filter = HistoryFilter(
                module_tag=args.module,
                rule_id=args.rule,
                status=RecommendationStatus(args.status) if args.status else None,
                limit=args.limit,
            )
            entries = engine.get_history(history_filter)
            if not entries:
                print("No history yet.")
            for entry in entries:
                print(
                    f"{entry.decided_at:%Y-%m-%d %H:%M}  {entry.final_status.value:<8}  "
                    f"{entry.priority_score_at_decision:>3}  {entry.module_tag}/{entry.rule_id}  {entry.recommendation_id}"
                )
        elif args.command == "stats":
            history_filter = HistoryFilter(module_tag=args.module, rule_id=args.rule)
            scope = args.module or args.rule or "all"
            print(statistics_report(engine.get_statistics(history_filter), scope=scope).render_text())
        elif args.command == "usage":
            print(render_usage(engine.get_usage_status(), utc_now()))
        elif args.command == "report":
            today = utc_now().date()
            entries = engine.get_history()
            report = weekly_report(entries, end_date=today) if args.weekly else daily_report(entries, target_date=today)
            print(report.render_text())
    except CommandCenterError as exc:
        sys.stderr.write(f"error: {exc}\n")
        return 1
    finally:
        engine.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Command Center recommendations")
    parser.add_argument("--db", help="SQLite file holding engine state (default: in-memory)")
    parser.add_argument("--records", type=Path, help="JSON file mapping module name to records")
    parser.add_argument("--tier", type=int, choices=[0, 1, 2, 3], help="Usage tier")
    parser.add_argument("--tier-limit", type=int, help="Override the per-window recommendation limit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    refresh = sub.add_parser("refresh", help="Evaluate rules and surface new recommendations")
    refresh.add_argument("--evidence", action="store_true", help="Show evidence lines")
    listing = sub.add_parser("list", help="Show active recommendations")
    listing.add_argument("--evidence", action="store_true", help="Show evidence lines")

    decide = sub.add_parser("decide", help="Accept or decline a recommendation")
    decide.add_argument("id")
    decide.add_argument("action", choices=["accept", "decline"])

    opened = sub.add_parser("open", help="Mark a recommendation as viewed")
    opened.add_argument("id")

    history = sub.add_parser("history", help="Show decided and expired recommendations")
    history.add_argument("--module")
    history.add_argument("--rule")
    history.add_argument("--status", choices=[status.value for status in RecommendationStatus if status.is_terminal])
    history.add_argument("--limit", type=int, default=50)

    stats = sub.add_parser("stats", help="Acceptance statistics")
    scope = stats.add_mutually_exclusive_group()
    scope.add_argument("--module")
    scope.add_argument("--rule")

    sub.add_parser("usage", help="Remaining recommendations in the current window")

    report = sub.add_parser("report", help="Daily or weekly activity report")
    report.add_argument("--weekly", action="store_true")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
