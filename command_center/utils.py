"""Utilities supporting Command Center modules."""

from __future__ import annotations

import random
import string
from datetime import datetime, timedelta, timezone
from typing import Callable

_ID_ALPHABET = string.ascii_lowercase + string.digits

Clock = Callable[[], datetime]


def generate_id(prefix: str, *, size: int = 8) -> str:
    """Generate a short unique identifier with a readable prefix."""

    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(size))
    return f"{prefix}_{suffix}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(raw: object) -> datetime:
    """Coerce epoch seconds, ISO strings or datetimes into aware UTC datetimes."""

    if isinstance(raw, datetime):
        ts = raw
    elif isinstance(raw, (int, float)):
        ts = datetime.fromtimestamp(raw, tz=timezone.utc)
    elif isinstance(raw, str):
        # fromisoformat before 3.11 rejects the trailing "Z".
        ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported timestamp value: {raw!r}")
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def parse_optional_timestamp(raw: object) -> datetime | None:
    if raw is None or raw == "":
        return None
    return parse_timestamp(raw)


def to_millis(delta: timedelta) -> int:
    return int(delta.total_seconds() * 1000)


def format_relative(moment: datetime, now: datetime) -> str:
    """Render a coarse 'in 3h' / '2d ago' label."""

    seconds = int((moment - now).total_seconds())
    future = seconds >= 0
    seconds = abs(seconds)
    if seconds < 3600:
        label = f"{max(seconds // 60, 1)}m"
    elif seconds < 86400:
        label = f"{seconds // 3600}h"
    else:
        label = f"{seconds // 86400}d"
    return f"in {label}" if future else f"{label} ago"
