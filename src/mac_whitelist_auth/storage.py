from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .allowlist import EntryStore, WhitelistEntry
from .stats import Statistics, compute_statistics

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "2.0"


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class StorageLocation:
    name: str
    path: Path
    primary: bool = False


@dataclass
class LocationResult:
    name: str
    path: str
    success: bool
    error: str | None = None


@dataclass
class PersistResult:
    results: list[LocationResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return any(r.success for r in self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "locations": [
                {"name": r.name, "path": r.path, "success": r.success, "error": r.error}
                for r in self.results
            ],
        }


# -------------------------------------------------
# Snapshot format
# -------------------------------------------------

def build_snapshot(entries: list[WhitelistEntry], stats: Statistics) -> dict[str, Any]:
    return {
        "macAddresses": [e.to_dict() for e in entries],
        "statistics": stats.to_dict(),
        "lastUpdated": utc_now_iso(),
        "version": SNAPSHOT_VERSION,
    }


def parse_snapshot(raw: Any) -> tuple[list[WhitelistEntry], Statistics] | None:
    """
    Returns (entries, statistics) or None if `raw` is not a snapshot.
    Accepts:
    {
      "macAddresses": [{"macAddress": "...", ...}],         # 2.0
      "macAddresses": {"aa:bb:...": {"description": ...}}   # 1.0, keyed by address
    }
    Individual malformed records are skipped.
    """
    if not isinstance(raw, dict):
        return None

    collection = raw.get("macAddresses")
    if isinstance(collection, list):
        items = [(None, rec) for rec in collection]
    elif isinstance(collection, dict):
        items = list(collection.items())
    else:
        return None

    entries: list[WhitelistEntry] = []
    for mac, rec in items:
        if not isinstance(rec, dict):
            logger.warning("Skipping malformed whitelist record: %r", rec)
            continue
        try:
            entries.append(WhitelistEntry.from_dict(rec, mac=mac))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping malformed whitelist record %r: %s", mac or rec, e)

    return entries, Statistics.from_dict(raw.get("statistics"))


# -------------------------------------------------
# Durability manager
# -------------------------------------------------

class DurabilityManager:
    """
    Keeps an EntryStore consistent with several on-disk copies.

    Load: the first location holding a valid snapshot wins; nothing valid
    anywhere means an empty store. Persist: the same bytes go to every
    location independently; one accepted write counts as success. Nothing
    here raises: unreadable or malformed copies are skipped, failed writes
    are reported per location.

    There is no coordination between processes sharing the same locations:
    the last writer wins.
    """

    def __init__(self, store: EntryStore, locations: list[StorageLocation]) -> None:
        self.store = store
        self.locations = list(locations)
        self.statistics = Statistics()
        self.loaded = False
        self.last_loaded_at: str | None = None
        self.load_source: str | None = None
        self.memory_backup: dict[str, Any] | None = None
        self._load_lock = threading.Lock()

    def ensure_loaded(self) -> bool:
        """Run the load procedure once per process. Returns True if it ran now."""
        if self.loaded:
            return False
        with self._load_lock:
            if self.loaded:
                return False
            self._load()
            self.loaded = True
            return True

    def _load(self) -> None:
        for loc in self.locations:
            try:
                text = loc.path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.info("Could not read %s (%s): %s", loc.name, loc.path, e)
                continue

            try:
                parsed = parse_snapshot(json.loads(text))
            except ValueError as e:
                logger.warning("Unparseable snapshot at %s (%s): %s", loc.name, loc.path, e)
                continue
            except Exception:
                logger.exception("Unusable snapshot at %s (%s)", loc.name, loc.path)
                continue

            if parsed is None:
                logger.warning("No whitelist collection in %s (%s)", loc.name, loc.path)
                continue

            entries, stats = parsed
            self.store.replace_all(entries)
            self.statistics = stats
            self.load_source = loc.name
            self.last_loaded_at = utc_now_iso()
            logger.info("Loaded %d MAC addresses from %s (%s)", len(self.store), loc.name, loc.path)
            return

        self.store.clear()
        self.last_loaded_at = utc_now_iso()
        logger.info("No stored whitelist found; starting empty")

    def persist(self) -> PersistResult:
        result = PersistResult()
        try:
            self.statistics = compute_statistics(self.store)
            snapshot = build_snapshot(self.store.entries(), self.statistics)
            payload = json.dumps(snapshot, indent=2)
        except Exception as e:
            logger.exception("Could not serialize whitelist snapshot")
            result.results = [
                LocationResult(loc.name, str(loc.path), False, f"serialization failed: {e}")
                for loc in self.locations
            ]
            return result

        for loc in self.locations:
            if loc.primary:
                try:
                    loc.path.parent.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    logger.warning("Could not create %s: %s", loc.path.parent, e)

            try:
                loc.path.write_text(payload, encoding="utf-8")
            except OSError as e:
                result.results.append(LocationResult(loc.name, str(loc.path), False, str(e)))
                logger.warning("Failed to save to %s (%s): %s", loc.name, loc.path, e)
                continue

            result.results.append(LocationResult(loc.name, str(loc.path), True))
            logger.debug("Saved to %s (%s)", loc.name, loc.path)

        self.memory_backup = snapshot

        if result.success:
            logger.info(
                "Persisted %d entries to %d/%d locations",
                len(self.store),
                result.success_count,
                len(self.locations),
            )
        else:
            logger.error("Whitelist not persisted to any location; in-memory copy only")
        return result
