"""Daily and weekly recommendation reports built from history."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, List

from .history import acceptance_rate
from .models import HistoryEntry, RecommendationStatus, Statistics


@dataclass(slots=True)
class Report:
    title: str
    summary_lines: List[str]

    def render_text(self) -> str:
        return "\n".join([self.title, "-" * len(self.title), *self.summary_lines])


def daily_report(entries: Iterable[HistoryEntry], *, target_date: date) -> Report:
    title = f"{target_date} Daily Report"
    day_entries = [entry for entry in entries if entry.decided_at.date() == target_date]
    if not day_entries:
        return Report(title=title, summary_lines=["No activity recorded."])
    statuses = Counter(entry.final_status for entry in day_entries)
    rate = acceptance_rate(statuses[RecommendationStatus.ACCEPTED], statuses[RecommendationStatus.DECLINED])
    lines = [
        f"Total recommendations closed: {len(day_entries)}",
        f"Acceptance rate: {rate:.0%}",
    ]
    for module_tag, count in Counter(entry.module_tag for entry in day_entries).most_common():
        lines.append(f"- {module_tag}: {count}")
    return Report(title=title, summary_lines=lines)


def weekly_report(entries: Iterable[HistoryEntry], *, end_date: date) -> Report:
    start_date = end_date - timedelta(days=6)
    title = f"Week ending {end_date}"
    week_entries = [entry for entry in entries if start_date <= entry.decided_at.date() <= end_date]
    if not week_entries:
        return Report(title=title, summary_lines=["No activity recorded."])
    per_rule: dict[str, Counter] = {}
    for entry in week_entries:
        per_rule.setdefault(entry.rule_id, Counter())[entry.final_status] += 1
    lines = [
        f"Span: {start_date} - {end_date}",
        f"Total recommendations closed: {len(week_entries)}",
    ]
    ranked = sorted(per_rule.items(), key=lambda item: (-sum(item[1].values()), item[0]))
    for rule_id, counts in ranked:
        lines.append(
            f"- {rule_id}: {counts[RecommendationStatus.ACCEPTED]} accepted, "
            f"{counts[RecommendationStatus.DECLINED]} declined, "
            f"{counts[RecommendationStatus.EXPIRED]} expired"
        )
    return Report(title=title, summary_lines=lines)


def statistics_report(stats: Statistics, *, scope: str = "all") -> Report:
    lines = [
        f"Total: {stats.total}",
        f"Accepted: {stats.accepted_count}",
        f"Declined: {stats.declined_count}",
        f"Expired: {stats.expired_count}",
        f"Acceptance rate: {stats.acceptance_rate:.0%}",
    ]
    if stats.average_priority is not None:
        lines.append(f"Average priority: {stats.average_priority:.1f}")
    if stats.median_decision_seconds is not None:
        lines.append(f"Median time to decision: {stats.median_decision_seconds / 60:.1f} min")
    for module_tag, count in sorted(stats.by_module.items()):
        lines.append(f"- module {module_tag}: {count}")
    for rule_id, count in sorted(stats.by_rule.items()):
        lines.append(f"- rule {rule_id}: {count}")
    return Report(title=f"Statistics ({scope})", summary_lines=lines)
