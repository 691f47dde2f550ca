from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Iterable

from .allowlist import WhitelistEntry

DAY = timedelta(hours=24)
WEEK = timedelta(days=7)


@dataclass(frozen=True)
class Statistics:
    total: int = 0
    active_last_24h: int = 0
    active_last_7d: int = 0
    never_used: int = 0
    total_accesses: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "activeLast24h": self.active_last_24h,
            "activeLast7d": self.active_last_7d,
            "neverUsed": self.never_used,
            "totalAccesses": self.total_accesses,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> Statistics:
        if not isinstance(raw, dict):
            raw = {}

        def _int(key: str, *fallbacks: str) -> int:
            for k in (key, *fallbacks):
                if k in raw:
                    try:
                        return int(raw[k])
                    except (TypeError, ValueError):
                        return 0
            return 0

        return cls(
            total=_int("total", "totalDevices"),
            active_last_24h=_int("activeLast24h"),
            active_last_7d=_int("activeLast7d"),
            never_used=_int("neverUsed"),
            total_accesses=_int("totalAccesses"),
        )


def parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts


def compute_statistics(
    entries: Iterable[WhitelistEntry],
    now: datetime | None = None,
) -> Statistics:
    """
    One pass over all entries against a single sampled `now`.
    Entries whose lastSeen cannot be parsed are neither active nor never-used.
    """
    now = now or datetime.now(UTC)

    total = last_24h = last_7d = never_used = accesses = 0
    for e in entries:
        total += 1
        accesses += e.access_count
        if e.last_seen is None:
            never_used += 1
            continue
        seen = parse_timestamp(e.last_seen)
        if seen is None:
            continue
        age = now - seen
        if age <= DAY:
            last_24h += 1
        if age <= WEEK:
            last_7d += 1

    return Statistics(
        total=total,
        active_last_24h=last_24h,
        active_last_7d=last_7d,
        never_used=never_used,
        total_accesses=accesses,
    )
