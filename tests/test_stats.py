from datetime import UTC, datetime, timedelta

from mac_whitelist_auth.allowlist import WhitelistEntry
from mac_whitelist_auth.stats import Statistics, compute_statistics

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=UTC)


def _entry(mac: str, last_seen: datetime | None = None, count: int = 0) -> WhitelistEntry:
    return WhitelistEntry(
        mac=mac,
        description="d",
        added_at="2025-01-01T00:00:00+00:00",
        last_seen=last_seen.isoformat() if last_seen else None,
        access_count=count,
    )


def test_recent_entry_is_active_in_both_windows():
    stats = compute_statistics([_entry("aa:aa:aa:aa:aa:01", NOW - timedelta(hours=2), 1)], now=NOW)
    assert stats.total == 1
    assert stats.active_last_24h == 1
    assert stats.active_last_7d == 1
    assert stats.never_used == 0


def test_never_seen_entry():
    stats = compute_statistics([_entry("aa:aa:aa:aa:aa:01")], now=NOW)
    assert stats.never_used == 1
    assert stats.active_last_24h == 0
    assert stats.active_last_7d == 0


def test_windows_and_totals():
    entries = [
        _entry("aa:aa:aa:aa:aa:01", NOW - timedelta(hours=1), 5),
        _entry("aa:aa:aa:aa:aa:02", NOW - timedelta(days=3), 2),
        _entry("aa:aa:aa:aa:aa:03", NOW - timedelta(days=30), 7),
        _entry("aa:aa:aa:aa:aa:04"),
    ]
    stats = compute_statistics(entries, now=NOW)
    assert stats == Statistics(
        total=4, active_last_24h=1, active_last_7d=2, never_used=1, total_accesses=14
    )


def test_window_boundary_is_inclusive():
    stats = compute_statistics([_entry("aa:aa:aa:aa:aa:01", NOW - timedelta(hours=24))], now=NOW)
    assert stats.active_last_24h == 1


def test_unparseable_last_seen_is_neither_active_nor_never_used():
    e = _entry("aa:aa:aa:aa:aa:01")
    e.last_seen = "yesterday-ish"
    stats = compute_statistics([e], now=NOW)
    assert stats.total == 1
    assert stats.never_used == 0
    assert stats.active_last_7d == 0


def test_statistics_from_legacy_dict():
    stats = Statistics.from_dict({"totalDevices": 3, "totalAccesses": "9"})
    assert stats.total == 3
    assert stats.total_accesses == 9
    assert Statistics.from_dict(None) == Statistics()
