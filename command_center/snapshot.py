"""Read-only snapshots of collaborator module records."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Protocol, Sequence, Tuple

from .models import Record
from .utils import Clock, parse_optional_timestamp, parse_timestamp, utc_now

logger = logging.getLogger(__name__)


class ModuleProvider(Protocol):
    """Collaborator storage exposing records for one or more modules."""

    async def list_records(self, module_name: str, since: datetime) -> Sequence[Record]:
        ...


@dataclass(slots=True, frozen=True)
class Snapshot:
    """Module name mapped to ordered, normalized records."""

    taken_at: datetime
    since: datetime
    records: Mapping[str, Tuple[Record, ...]] = field(default_factory=dict)

    def module(self, name: str) -> Tuple[Record, ...]:
        return self.records.get(name, ())


class SnapshotReader:
    """Pulls a bounded view of every configured module without ever failing."""

    def __init__(
        self,
        provider: ModuleProvider,
        modules: Iterable[str],
        *,
        timeout: float = 5.0,
        clock: Clock = utc_now,
    ) -> None:
        self.provider = provider
        self.modules = tuple(modules)
        self.timeout = timeout
        self._clock = clock

    async def read(self, lookback: timedelta) -> Snapshot:
        now = self._clock()
        since = now - lookback
        results = await asyncio.gather(*(self._read_module(name, since) for name in self.modules))
        return Snapshot(taken_at=now, since=since, records=dict(zip(self.modules, results)))

    async def _read_module(self, name: str, since: datetime) -> Tuple[Record, ...]:
        try:
            records = await asyncio.wait_for(self.provider.list_records(name, since), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Module %s did not answer within %.1fs; treating as empty", name, self.timeout)
            return ()
        except Exception as exc:
            logger.warning("Module %s unavailable: %s", name, exc)
            return ()
        ordered = sorted(records or (), key=lambda record: (record.updated_at, record.id))
        logger.debug("Read %d records from %s", len(ordered), name)
        return tuple(ordered)


class InMemoryModuleProvider:
    """Serves records held in memory; used by the CLI and tests."""

    def __init__(self, records: Mapping[str, Iterable[Record]] | None = None) -> None:
        self._records: Dict[str, List[Record]] = {}
        for module, items in (records or {}).items():
            self._records[module] = list(items)

    def add(self, record: Record) -> None:
        self._records.setdefault(record.module, []).append(record)

    async def list_records(self, module_name: str, since: datetime) -> Sequence[Record]:
        if module_name not in self._records:
            raise KeyError(f"unknown module {module_name}")
        return [record for record in self._records[module_name] if record.updated_at >= since]

    @classmethod
    def from_payload(cls, payload: Mapping[str, Iterable[dict]]) -> "InMemoryModuleProvider":
        provider = cls()
        for module, items in payload.items():
            provider._records.setdefault(module, [])
            for item in items:
                provider.add(record_from_dict({**item, "module": item.get("module", module)}))
        return provider


def record_from_dict(payload: dict) -> Record:
    """Helper to construct a normalized record from a dictionary."""

    created_at = parse_timestamp(payload["created_at"])
    updated_raw = payload.get("updated_at")
    updated_at = parse_timestamp(updated_raw) if updated_raw is not None else created_at
    text_fields = payload.get("text_fields")
    if text_fields is None:
        text_fields = [value for value in (payload.get("title"), payload.get("body")) if value]
    attributes = {
        str(key): str(value)
        for key, value in (payload.get("attributes") or {}).items()
        if value is not None
    }
    return Record(
        id=str(payload["id"]),
        module=payload["module"],
        created_at=created_at,
        updated_at=updated_at,
        due_at=parse_optional_timestamp(payload.get("due_at")),
        tags=tuple(payload.get("tags", ())),
        text_fields=tuple(text_fields),
        attributes=attributes,
    )
