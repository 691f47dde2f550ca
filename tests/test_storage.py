import json

from mac_whitelist_auth.allowlist import EntryStore, WhitelistEntry
from mac_whitelist_auth.storage import (
    SNAPSHOT_VERSION,
    DurabilityManager,
    StorageLocation,
    parse_snapshot,
)


def _locations(tmp_path):
    return [
        StorageLocation("Primary", tmp_path / "data" / "mac-whitelist.json", primary=True),
        StorageLocation("Backup", tmp_path / "mac-whitelist.json"),
        StorageLocation("Fallback", tmp_path / "mac-backup.json"),
    ]


def _snapshot(*macs: str) -> dict:
    return {
        "macAddresses": [
            {"macAddress": m, "description": f"dev {m}", "accessType": "trial", "addedAt": "2024-01-01T00:00:00Z"}
            for m in macs
        ],
        "statistics": {"total": len(macs), "totalAccesses": 4},
        "lastUpdated": "2024-01-01T00:00:00Z",
        "version": "2.0",
    }


def _entry(mac: str) -> WhitelistEntry:
    return WhitelistEntry(mac=mac, description="d", added_at="2024-01-01T00:00:00+00:00")


# ---- Load ------------------------------------------------------------------


def test_load_with_no_files_starts_empty(tmp_path):
    store = EntryStore()
    dm = DurabilityManager(store, _locations(tmp_path))
    assert dm.ensure_loaded() is True
    assert len(store) == 0
    assert dm.loaded is True
    assert dm.load_source is None
    assert dm.last_loaded_at is not None


def test_load_falls_back_past_missing_and_corrupt_locations(tmp_path):
    locs = _locations(tmp_path)
    locs[1].path.write_text("{not json", encoding="utf-8")
    locs[2].path.write_text(json.dumps(_snapshot("aa:bb:cc:dd:ee:01", "aa:bb:cc:dd:ee:02")), encoding="utf-8")

    store = EntryStore()
    dm = DurabilityManager(store, locs)
    dm.ensure_loaded()

    assert len(store) == 2
    assert dm.load_source == "Fallback"
    assert dm.statistics.total_accesses == 4


def test_load_skips_files_without_entries_collection(tmp_path):
    locs = _locations(tmp_path)
    locs[0].path.parent.mkdir()
    locs[0].path.write_text(json.dumps({"version": "2.0"}), encoding="utf-8")
    locs[1].path.write_text(json.dumps(_snapshot("aa:bb:cc:dd:ee:01")), encoding="utf-8")

    store = EntryStore()
    dm = DurabilityManager(store, locs)
    dm.ensure_loaded()
    assert len(store) == 1
    assert dm.load_source == "Backup"


def test_load_prefers_primary(tmp_path):
    locs = _locations(tmp_path)
    locs[0].path.parent.mkdir()
    locs[0].path.write_text(json.dumps(_snapshot("aa:bb:cc:dd:ee:01")), encoding="utf-8")
    locs[1].path.write_text(json.dumps(_snapshot("aa:bb:cc:dd:ee:02", "aa:bb:cc:dd:ee:03")), encoding="utf-8")

    store = EntryStore()
    dm = DurabilityManager(store, locs)
    dm.ensure_loaded()
    assert [e.mac for e in store] == ["aa:bb:cc:dd:ee:01"]
    assert dm.load_source == "Primary"


def test_load_is_idempotent(tmp_path):
    locs = _locations(tmp_path)
    locs[1].path.write_text(json.dumps(_snapshot("aa:bb:cc:dd:ee:01")), encoding="utf-8")

    store = EntryStore()
    dm = DurabilityManager(store, locs)
    dm.ensure_loaded()
    store.set(_entry("aa:bb:cc:dd:ee:99"))

    assert dm.ensure_loaded() is False
    assert len(store) == 2


def test_load_migrates_legacy_keyed_snapshot(tmp_path):
    locs = _locations(tmp_path)
    legacy = {
        "version": "1.0",
        "macAddresses": {
            "AA:BB:CC:DD:EE:01": {"description": "old", "accessType": "admin", "accessCount": 2, "lastSeen": None},
        },
        "statistics": {"totalDevices": 1, "totalAccesses": 2},
    }
    locs[1].path.write_text(json.dumps(legacy), encoding="utf-8")

    store = EntryStore()
    dm = DurabilityManager(store, locs)
    dm.ensure_loaded()
    entry = store.get("aa:bb:cc:dd:ee:01")
    assert entry is not None
    assert entry.access_tier.value == "admin"

    dm.persist()
    written = json.loads(locs[1].path.read_text(encoding="utf-8"))
    assert written["version"] == SNAPSHOT_VERSION
    assert isinstance(written["macAddresses"], list)
    assert written["macAddresses"][0]["macAddress"] == "aa:bb:cc:dd:ee:01"


def test_parse_snapshot_skips_malformed_records():
    parsed = parse_snapshot({"macAddresses": [{"description": "no address"}, "junk", {"macAddress": "aa:bb:cc:dd:ee:01"}]})
    assert parsed is not None
    entries, _ = parsed
    assert [e.mac for e in entries] == ["aa:bb:cc:dd:ee:01"]


def test_parse_snapshot_rejects_non_snapshots():
    assert parse_snapshot([]) is None
    assert parse_snapshot({"devices": []}) is None


def test_load_tolerates_non_object_statistics(tmp_path):
    locs = _locations(tmp_path)
    locs[0].path.parent.mkdir()
    locs[0].path.write_text(json.dumps({"macAddresses": [], "statistics": 5}), encoding="utf-8")
    locs[1].path.write_text(json.dumps(_snapshot("aa:bb:cc:dd:ee:01")), encoding="utf-8")

    store = EntryStore()
    dm = DurabilityManager(store, locs)
    assert dm.ensure_loaded() is True
    assert dm.loaded is True
    assert dm.load_source == "Primary"
    assert len(store) == 0
    assert dm.statistics.total == 0


def test_load_drops_non_object_last_device(tmp_path):
    locs = _locations(tmp_path)
    record = {"macAddress": "aa:bb:cc:dd:ee:01", "description": "d", "lastDevice": "laptop"}
    locs[1].path.write_text(json.dumps({"macAddresses": [record]}), encoding="utf-8")

    store = EntryStore()
    dm = DurabilityManager(store, locs)
    dm.ensure_loaded()
    entry = store.get("aa:bb:cc:dd:ee:01")
    assert entry is not None
    assert entry.last_device is None


def test_numeric_timestamps_load_and_persist(tmp_path):
    locs = _locations(tmp_path)
    record = {
        "macAddress": "aa:bb:cc:dd:ee:01",
        "description": "d",
        "addedAt": 1700000000,
        "lastSeen": 1700000000,
        "accessCount": 3,
    }
    locs[1].path.write_text(json.dumps({"macAddresses": [record]}), encoding="utf-8")

    store = EntryStore()
    dm = DurabilityManager(store, locs)
    dm.ensure_loaded()
    entry = store.get("aa:bb:cc:dd:ee:01")
    assert entry is not None
    assert entry.last_seen is None

    result = dm.persist()
    assert result.success_count == 3
    snapshot = json.loads(locs[0].path.read_text(encoding="utf-8"))
    assert snapshot["statistics"]["totalAccesses"] == 3


def test_load_skips_copy_that_fails_unexpectedly(tmp_path, monkeypatch):
    from mac_whitelist_auth import storage

    locs = _locations(tmp_path)
    locs[0].path.parent.mkdir()
    locs[0].path.write_text(json.dumps(_snapshot("aa:bb:cc:dd:ee:01")), encoding="utf-8")
    locs[1].path.write_text(json.dumps(_snapshot("aa:bb:cc:dd:ee:02")), encoding="utf-8")

    real = storage.parse_snapshot
    calls = []

    def flaky(raw):
        calls.append(raw)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return real(raw)

    monkeypatch.setattr(storage, "parse_snapshot", flaky)
    store = EntryStore()
    dm = DurabilityManager(store, locs)
    dm.ensure_loaded()
    assert dm.loaded is True
    assert dm.load_source == "Backup"
    assert [e.mac for e in store] == ["aa:bb:cc:dd:ee:02"]


# ---- Persist ---------------------------------------------------------------


def test_persist_writes_every_location_and_creates_primary_dir(tmp_path):
    locs = _locations(tmp_path)
    store = EntryStore()
    store.set(_entry("aa:bb:cc:dd:ee:01"))
    dm = DurabilityManager(store, locs)

    result = dm.persist()

    assert result.success is True
    assert result.success_count == 3
    contents = {loc.path.read_text(encoding="utf-8") for loc in locs}
    assert len(contents) == 1
    snapshot = json.loads(contents.pop())
    assert snapshot["statistics"]["total"] == 1
    assert snapshot["statistics"]["neverUsed"] == 1
    assert "lastUpdated" in snapshot


def test_persist_survives_one_unwritable_location(tmp_path):
    locs = _locations(tmp_path)
    locs[1].path.mkdir()  # a directory cannot be written as a file
    store = EntryStore()
    store.set(_entry("aa:bb:cc:dd:ee:01"))
    dm = DurabilityManager(store, locs)

    result = dm.persist()

    assert result.success is True
    by_name = {r.name: r for r in result.results}
    assert by_name["Backup"].success is False
    assert by_name["Backup"].error
    assert by_name["Primary"].success and by_name["Fallback"].success

    reloaded = EntryStore()
    DurabilityManager(reloaded, [locs[2]]).ensure_loaded()
    assert len(reloaded) == 1


def test_persist_total_failure_keeps_memory_backup(tmp_path):
    locs = [
        StorageLocation("Backup", tmp_path / "missing" / "a.json"),
        StorageLocation("Fallback", tmp_path / "missing" / "b.json"),
    ]
    store = EntryStore()
    store.set(_entry("aa:bb:cc:dd:ee:01"))
    dm = DurabilityManager(store, locs)

    result = dm.persist()

    assert result.success is False
    assert all(not r.success for r in result.results)
    assert dm.memory_backup is not None
    assert dm.memory_backup["macAddresses"][0]["macAddress"] == "aa:bb:cc:dd:ee:01"


def test_persist_recomputes_statistics_after_removal(tmp_path):
    locs = _locations(tmp_path)
    store = EntryStore()
    store.set(_entry("aa:bb:cc:dd:ee:01"))
    store.set(_entry("aa:bb:cc:dd:ee:02"))
    dm = DurabilityManager(store, locs)
    dm.persist()
    store.delete("aa:bb:cc:dd:ee:01")
    dm.persist()

    snapshot = json.loads(locs[0].path.read_text(encoding="utf-8"))
    assert snapshot["statistics"]["total"] == 1
    assert dm.statistics.total == 1
