"""Plain-text rendering of recommendation cards."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Sequence

from .models import Evidence, Recommendation, UsageStatus
from .utils import format_relative


def evidence_summary(evidence: Sequence[Evidence], now: datetime) -> str:
    """Short line telling the user how many signals back the card."""

    if not evidence:
        return "No supporting signals"
    latest = max(item.observed_at for item in evidence)
    noun = "signal" if len(evidence) == 1 else "signals"
    return f"Based on {len(evidence)} {noun}, latest {format_relative(latest, now)}"


def format_refresh_message(count: int) -> str:
    if count <= 0:
        return "No new recommendations right now."
    if count == 1:
        return "Added 1 new recommendation."
    return f"Added {count} new recommendations."


@dataclass(slots=True)
class RecommendationCard:
    recommendation: Recommendation
    now: datetime
    show_evidence: bool = True

    def render_text(self) -> str:
        rec = self.recommendation
        marker = "*" if rec.opened_at is None else " "
        lines = [
            f"{marker}[{rec.module_tag.upper()}] {rec.title}  ({rec.id})",
            f"  score: {rec.priority_score}  confidence: {rec.confidence.value}",
            f"  {rec.body}",
            f"  {evidence_summary(rec.evidence, self.now)}; expires {format_relative(rec.expires_at, self.now)}",
        ]
        if self.show_evidence:
            for item in rec.evidence:
                lines.append(f"    - {item.source_module}/{item.source_record_id}: {item.excerpt}")
        return "\n".join(lines)


def build_cards(recommendations: Iterable[Recommendation], *, now: datetime, show_evidence: bool = True) -> List[RecommendationCard]:
    return [RecommendationCard(recommendation=rec, now=now, show_evidence=show_evidence) for rec in recommendations]


def render_usage(status: UsageStatus, now: datetime) -> str:
    return f"{status.remaining}/{status.limit} remaining, resets {format_relative(status.resets_at, now)}"
