"""Data models shared by the Command Center recommendation engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .utils import parse_optional_timestamp, parse_timestamp


class RecommendationStatus(str, Enum):
    ACTIVE = "active"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not RecommendationStatus.ACTIVE


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_RANK = {Confidence.LOW: 0, Confidence.MEDIUM: 1, Confidence.HIGH: 2}


class Decision(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"

    @property
    def final_status(self) -> RecommendationStatus:
        if self is Decision.ACCEPT:
            return RecommendationStatus.ACCEPTED
        return RecommendationStatus.DECLINED


def default_dedup_key(module_tag: str, rule_id: str, subject_id: str) -> str:
    return f"{module_tag}:{rule_id}:{subject_id}"


@dataclass(slots=True, frozen=True)
class Record:
    """Normalized, read-only view of a collaborator record."""

    id: str
    module: str
    created_at: datetime
    updated_at: datetime
    due_at: Optional[datetime] = None
    tags: Tuple[str, ...] = ()
    text_fields: Tuple[str, ...] = ()
    attributes: Dict[str, str] = field(default_factory=dict)

    @property
    def title(self) -> str:
        return self.text_fields[0] if self.text_fields else ""

    def attr(self, name: str, default: str = "") -> str:
        return self.attributes.get(name, default)


@dataclass(slots=True, frozen=True)
class Evidence:
    """A source record backing a recommendation."""

    source_record_id: str
    source_module: str
    observed_at: datetime
    excerpt: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_record_id": self.source_record_id,
            "source_module": self.source_module,
            "observed_at": self.observed_at.isoformat(),
            "excerpt": self.excerpt,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Evidence":
        return cls(
            source_record_id=payload["source_record_id"],
            source_module=payload["source_module"],
            observed_at=parse_timestamp(payload["observed_at"]),
            excerpt=payload.get("excerpt", ""),
        )

    @classmethod
    def from_record(cls, record: Record, excerpt: str | None = None) -> "Evidence":
        return cls(
            source_record_id=record.id,
            source_module=record.module,
            observed_at=record.updated_at,
            excerpt=record.title if excerpt is None else excerpt,
        )


@dataclass(slots=True, frozen=True)
class Candidate:
    """Unsaved rule output, stamped with the producing rule's metadata."""

    rule_id: str
    module_tag: str
    base_priority: int
    subject_id: str
    title: str
    body: str
    evidence: Tuple[Evidence, ...]
    ttl: timedelta
    rule_order: int = 0
    counts_against_limit: bool = True
    dedup_key: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.evidence:
            raise ValueError(f"Candidate from rule {self.rule_id} has no evidence")

    @property
    def effective_dedup_key(self) -> str:
        if self.dedup_key:
            return self.dedup_key
        return default_dedup_key(self.module_tag, self.rule_id, self.subject_id)

    @property
    def earliest_evidence_at(self) -> datetime:
        return min(item.observed_at for item in self.evidence)


@dataclass(slots=True, frozen=True)
class RecommendationDraft:
    """Scored candidate ready for insertion; no id or status yet."""

    candidate: Candidate
    dedup_key: str
    priority_score: int
    confidence: Confidence

    @property
    def rule_id(self) -> str:
        return self.candidate.rule_id

    @property
    def counts_against_limit(self) -> bool:
        return self.candidate.counts_against_limit


@dataclass(slots=True, frozen=True)
class Recommendation:
    """A suggestion surfaced to the user."""

    id: str
    rule_id: str
    module_tag: str
    subject_id: str
    title: str
    body: str
    evidence: Tuple[Evidence, ...]
    dedup_key: str
    priority_score: int
    confidence: Confidence
    status: RecommendationStatus
    created_at: datetime
    expires_at: datetime
    decided_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None
    counts_against_limit: bool = True

    def __post_init__(self) -> None:
        if not self.evidence:
            raise ValueError(f"Recommendation {self.id} has no evidence")
        if self.expires_at <= self.created_at:
            raise ValueError(f"Recommendation {self.id} expires before it is created")
        if self.status.is_terminal != (self.decided_at is not None):
            raise ValueError(f"Recommendation {self.id} has inconsistent decided_at for {self.status.value}")

    @classmethod
    def from_draft(cls, draft: RecommendationDraft, *, rec_id: str, now: datetime) -> "Recommendation":
        candidate = draft.candidate
        return cls(
            id=rec_id,
            rule_id=candidate.rule_id,
            module_tag=candidate.module_tag,
            subject_id=candidate.subject_id,
            title=candidate.title,
            body=candidate.body,
            evidence=candidate.evidence,
            dedup_key=draft.dedup_key,
            priority_score=draft.priority_score,
            confidence=draft.confidence,
            status=RecommendationStatus.ACTIVE,
            created_at=now,
            expires_at=now + candidate.ttl,
            counts_against_limit=candidate.counts_against_limit,
        )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "module_tag": self.module_tag,
            "subject_id": self.subject_id,
            "title": self.title,
            "body": self.body,
            "evidence": [item.to_dict() for item in self.evidence],
            "dedup_key": self.dedup_key,
            "priority_score": self.priority_score,
            "confidence": self.confidence.value,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "opened_at": self.opened_at.isoformat() if self.opened_at else None,
            "counts_against_limit": self.counts_against_limit,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Recommendation":
        return cls(
            id=payload["id"],
            rule_id=payload["rule_id"],
            module_tag=payload["module_tag"],
            subject_id=payload.get("subject_id", ""),
            title=payload["title"],
            body=payload.get("body", ""),
            evidence=tuple(Evidence.from_dict(item) for item in payload["evidence"]),
            dedup_key=payload["dedup_key"],
            priority_score=int(payload["priority_score"]),
            confidence=Confidence(payload["confidence"]),
            status=RecommendationStatus(payload["status"]),
            created_at=parse_timestamp(payload["created_at"]),
            expires_at=parse_timestamp(payload["expires_at"]),
            decided_at=parse_optional_timestamp(payload.get("decided_at")),
            opened_at=parse_optional_timestamp(payload.get("opened_at")),
            counts_against_limit=bool(payload.get("counts_against_limit", True)),
        )


@dataclass(slots=True, frozen=True)
class HistoryEntry:
    """Immutable record of a recommendation leaving the active set."""

    recommendation_id: str
    rule_id: str
    module_tag: str
    final_status: RecommendationStatus
    priority_score_at_decision: int
    created_at: datetime
    decided_at: datetime
    dedup_key: str = ""
    subject_id: str = ""

    @classmethod
    def from_recommendation(cls, rec: Recommendation) -> "HistoryEntry":
        if rec.decided_at is None:
            raise ValueError(f"Recommendation {rec.id} is still active")
        return cls(
            recommendation_id=rec.id,
            rule_id=rec.rule_id,
            module_tag=rec.module_tag,
            final_status=rec.status,
            priority_score_at_decision=rec.priority_score,
            created_at=rec.created_at,
            decided_at=rec.decided_at,
            dedup_key=rec.dedup_key,
            subject_id=rec.subject_id,
        )


@dataclass(slots=True)
class UsageWindow:
    tier_limit: int
    window_start: datetime
    window_duration_ms: int
    consumed_count: int = 0

    @property
    def window_end(self) -> datetime:
        return self.window_start + timedelta(milliseconds=self.window_duration_ms)

    @property
    def remaining(self) -> int:
        return max(0, self.tier_limit - self.consumed_count)


@dataclass(slots=True, frozen=True)
class UsageStatus:
    remaining: int
    limit: int
    resets_at: datetime


@dataclass(slots=True, frozen=True)
class HistoryFilter:
    module_tag: Optional[str] = None
    rule_id: Optional[str] = None
    status: Optional[RecommendationStatus] = None
    limit: Optional[int] = None

    def matches(self, entry: HistoryEntry) -> bool:
        if self.module_tag is not None and entry.module_tag != self.module_tag:
            return False
        if self.rule_id is not None and entry.rule_id != self.rule_id:
            return False
        if self.status is not None and entry.final_status != self.status:
            return False
        return True


@dataclass(slots=True)
class Statistics:
    total: int = 0
    accepted_count: int = 0
    declined_count: int = 0
    expired_count: int = 0
    acceptance_rate: float = 0.0
    average_priority: Optional[float] = None
    median_decision_seconds: Optional[float] = None
    by_module: Dict[str, int] = field(default_factory=dict)
    by_rule: Dict[str, int] = field(default_factory=dict)
