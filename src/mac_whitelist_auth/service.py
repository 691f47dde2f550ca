"""Whitelist operations: access checks and admin mutations.

One :class:`WhitelistService` is built per process (see :func:`build_service`)
and handed to whichever front end serves requests. Every operation makes sure
the store has been loaded, mutates it under a single lock and persists through
the :class:`~mac_whitelist_auth.storage.DurabilityManager` before returning.

Expected outcomes (denials, duplicates, unknown addresses, bad input) come
back as :class:`OperationResult` values carrying an HTTP-equivalent status;
they are not raised.

When ``deferred_access_persist`` is enabled, the bookkeeping written by a
successful access check (count, last seen, last device) is persisted on a
background worker after the result is returned. A process recycled between
the two loses at most that one increment.
"""

from __future__ import annotations

import hmac
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from .accesslog import AccessLog
from .allowlist import (
    DeviceInfo,
    EntryStore,
    WhitelistEntry,
    is_valid_mac,
    normalize_mac,
    parse_tier,
)
from .config import Settings
from .errors import ValidationError
from .security_log import SecurityLogger, get_security_logger
from .stats import compute_statistics, parse_timestamp
from .storage import DurabilityManager, utc_now_iso

logger = logging.getLogger(__name__)

_OLDEST = datetime.min.replace(tzinfo=UTC)


@dataclass
class OperationResult:
    status: int
    message: str
    data: Any = None
    persisted: bool | None = None

    @property
    def success(self) -> bool:
        return 200 <= self.status < 300

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data is not None:
            body["data"] = self.data
        if self.persisted is not None:
            body["persisted"] = self.persisted
        return body


class WhitelistService:
    def __init__(
        self,
        store: EntryStore,
        durability: DurabilityManager,
        settings: Settings | None = None,
        access_log: AccessLog | None = None,
        security_logger: SecurityLogger | None = None,
    ) -> None:
        self.store = store
        self.durability = durability
        self.settings = settings or Settings()
        self.access_log = access_log or AccessLog(max_events=self.settings.access_log_size)
        self.security = security_logger or get_security_logger()
        self._lock = threading.RLock()
        self._executor: ThreadPoolExecutor | None = None
        self._pending: list[Future] = []

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_loaded(self) -> None:
        self.durability.ensure_loaded()

    def _persist(self) -> bool:
        with self._lock:
            return self.durability.persist().success

    def _persist_deferred(self) -> None:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="whitelist-persist")
        fut = self._executor.submit(self._persist)
        self._pending = [f for f in self._pending if not f.done()]
        self._pending.append(fut)

    def flush(self) -> None:
        """Wait for background persists scheduled so far."""
        pending, self._pending = self._pending, []
        for fut in pending:
            try:
                fut.result()
            except Exception:
                logger.exception("Background persist failed")

    def close(self) -> None:
        self.flush()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def is_admin(self, admin_key: Any) -> bool:
        required = self.settings.admin_key
        if not isinstance(admin_key, str) or not admin_key or not required:
            return False
        return hmac.compare_digest(admin_key.encode("utf-8"), required.encode("utf-8"))

    def _deny_admin(self, action: str, ip: str) -> OperationResult:
        self.security.log_event(
            "UNAUTHORIZED_ADMIN", ip=ip, level=logging.WARNING, action=action
        )
        return OperationResult(401, "Unauthorized: Invalid admin credentials")

    @staticmethod
    def _not_persisted_message(message: str, persisted: bool) -> str:
        return message if persisted else f"{message} (not fully persisted)"

    # ------------------------------------------------------------------
    # Access evaluation
    # ------------------------------------------------------------------

    def check_access(
        self,
        candidates: Any,
        device_info: DeviceInfo | dict[str, Any] | None,
        ip: str = "unknown",
    ) -> OperationResult:
        """Authorize the first candidate address found in the whitelist."""
        if not isinstance(candidates, list) or not candidates:
            self.security.log_event("INVALID_REQUEST", ip=ip, details="Missing or invalid MAC addresses")
            return OperationResult(400, "MAC addresses are required")
        if not isinstance(device_info, (dict, DeviceInfo)):
            self.security.log_event("INVALID_REQUEST", ip=ip, details="Missing device info")
            return OperationResult(400, "Device information is required")
        for mac in candidates:
            if not is_valid_mac(mac):
                self.security.log_event("INVALID_MAC", ip=ip, mac=mac)
                return OperationResult(400, f"Invalid MAC address format: {mac}")

        device = device_info if isinstance(device_info, DeviceInfo) else DeviceInfo.from_dict(device_info)
        if device.client_ip is None and ip != "unknown":
            device.client_ip = ip

        self._ensure_loaded()

        with self._lock:
            entry = None
            for mac in candidates:
                entry = self.store.get(mac)
                if entry is not None:
                    break

            if entry is None:
                first = normalize_mac(candidates[0])
                self.access_log.record(first, device, False, "MAC address not whitelisted")
                self.security.log_event(
                    "ACCESS_DENIED", ip=ip, mac=first, hostname=device.hostname
                )
                return OperationResult(
                    403,
                    "Device not authorized. MAC address not in whitelist.",
                    data={"authorized": False},
                )

            entry.access_count += 1
            entry.last_seen = utc_now_iso()
            entry.last_device = device
            view = entry.public_view()

            persisted: bool | None = None
            if self.settings.deferred_access_persist:
                self._persist_deferred()
            else:
                persisted = self._persist()

            self.access_log.record(entry.mac, device, True, "Access granted")

        self.security.log_event(
            "ACCESS_GRANTED", ip=ip, mac=entry.mac, hostname=device.hostname
        )
        return OperationResult(
            200,
            "Device authorized",
            data={"authorized": True, "entry": view},
            persisted=persisted,
        )

    # ------------------------------------------------------------------
    # Admin mutations
    # ------------------------------------------------------------------

    def add_mac(
        self,
        mac: Any,
        description: Any,
        access_tier: Any = None,
        admin_key: Any = None,
        ip: str = "unknown",
    ) -> OperationResult:
        if not self.is_admin(admin_key):
            return self._deny_admin("add-mac", ip)
        if not mac or not description:
            return OperationResult(400, "MAC address and description are required")
        if not is_valid_mac(mac):
            return OperationResult(400, "Invalid MAC address format")
        try:
            tier = parse_tier(access_tier)
        except ValidationError as e:
            return OperationResult(400, str(e))

        self._ensure_loaded()
        with self._lock:
            if mac in self.store:
                return OperationResult(409, "MAC address already exists in whitelist")

            entry = WhitelistEntry(
                mac=normalize_mac(mac),
                description=str(description),
                added_at=utc_now_iso(),
                access_tier=tier,
            )
            self.store.set(entry)
            persisted = self._persist()
            data = entry.to_dict()

        self.security.log_event(
            "MAC_ADDED", ip=ip, mac=entry.mac, access_type=tier.value, description=entry.description
        )
        return OperationResult(
            200,
            self._not_persisted_message("MAC address added successfully", persisted),
            data=data,
            persisted=persisted,
        )

    def update_access(
        self,
        mac: Any,
        access_tier: Any,
        admin_key: Any = None,
        ip: str = "unknown",
    ) -> OperationResult:
        if not self.is_admin(admin_key):
            return self._deny_admin("update-access", ip)
        if not mac or not access_tier:
            return OperationResult(400, "MAC address and access type are required")
        if not is_valid_mac(mac):
            return OperationResult(400, "Invalid MAC address format")
        try:
            tier = parse_tier(access_tier)
        except ValidationError as e:
            return OperationResult(400, str(e))

        self._ensure_loaded()
        with self._lock:
            entry = self.store.get(mac)
            if entry is None:
                return OperationResult(404, "MAC address not found in whitelist")

            entry.access_tier = tier
            entry.updated_at = utc_now_iso()
            persisted = self._persist()
            data = entry.to_dict()

        self.security.log_event("MAC_UPDATED", ip=ip, mac=entry.mac, access_type=tier.value)
        return OperationResult(
            200,
            self._not_persisted_message("Access type updated successfully", persisted),
            data=data,
            persisted=persisted,
        )

    def remove_mac(self, mac: Any, admin_key: Any = None, ip: str = "unknown") -> OperationResult:
        if not self.is_admin(admin_key):
            return self._deny_admin("remove-mac", ip)
        if not mac:
            return OperationResult(400, "MAC address is required")
        if not is_valid_mac(mac):
            return OperationResult(400, "Invalid MAC address format")

        self._ensure_loaded()
        with self._lock:
            if not self.store.delete(mac):
                return OperationResult(404, "MAC address not found in whitelist")
            persisted = self._persist()

        self.security.log_event("MAC_REMOVED", ip=ip, mac=normalize_mac(mac))
        return OperationResult(
            200,
            self._not_persisted_message("MAC address removed successfully", persisted),
            persisted=persisted,
        )

    def bulk_add(self, items: Any, admin_key: Any = None, ip: str = "unknown") -> OperationResult:
        """
        Add each valid, not-yet-present item; skip the rest with a reason.
        Duplicates are checked against the store as it grows, so a repeat
        within the same batch is skipped too. Persists once, only if
        something was added.
        """
        if not self.is_admin(admin_key):
            return self._deny_admin("bulk-add", ip)
        if not isinstance(items, list) or not items:
            return OperationResult(400, "MAC addresses array is required")

        self._ensure_loaded()
        results: list[dict[str, Any]] = []
        added = 0
        persisted: bool | None = None

        with self._lock:
            for item in items:
                raw_mac = item.get("macAddress") if isinstance(item, dict) else None
                if not raw_mac:
                    results.append({"macAddress": raw_mac, "status": "skipped", "reason": "Missing MAC address"})
                    continue
                if not is_valid_mac(raw_mac):
                    results.append({"macAddress": raw_mac, "status": "skipped", "reason": "Invalid MAC address format"})
                    continue
                mac = normalize_mac(raw_mac)
                try:
                    tier = parse_tier(item.get("accessType"))
                except ValidationError:
                    results.append({"macAddress": mac, "status": "skipped", "reason": "Invalid access type"})
                    continue
                if mac in self.store:
                    results.append({"macAddress": mac, "status": "skipped", "reason": "Already exists"})
                    continue

                self.store.set(
                    WhitelistEntry(
                        mac=mac,
                        description=str(item.get("description") or "Bulk added device"),
                        added_at=utc_now_iso(),
                        access_tier=tier,
                    )
                )
                results.append({"macAddress": mac, "status": "added", "accessType": tier.value})
                added += 1

            if added:
                persisted = self._persist()

        skipped = len(results) - added
        self.security.log_event("BULK_ADD", ip=ip, added=added, skipped=skipped)
        message = f"Bulk operation completed: {added} added, {skipped} skipped"
        if persisted is False:
            message = self._not_persisted_message(message, False)
        return OperationResult(
            200,
            message,
            data={
                "results": results,
                "summary": {"total": len(items), "added": added, "skipped": skipped},
            },
            persisted=persisted,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_macs(self, admin_key: Any = None, ip: str = "unknown") -> OperationResult:
        if not self.is_admin(admin_key):
            return self._deny_admin("list-macs", ip)

        self._ensure_loaded()
        with self._lock:
            entries = sorted(
                self.store.entries(),
                key=lambda e: parse_timestamp(e.added_at) or _OLDEST,
                reverse=True,
            )
            stats = compute_statistics(entries)
            listing = [e.to_dict() for e in entries]

        self.security.log_event("MAC_LIST_ACCESSED", ip=ip, count=len(listing))
        return OperationResult(
            200,
            "MAC addresses retrieved successfully",
            data={"macAddresses": listing, "statistics": stats.to_dict()},
        )

    def access_events(self, admin_key: Any = None, limit: int | None = None, ip: str = "unknown") -> OperationResult:
        if not self.is_admin(admin_key):
            return self._deny_admin("access-log", ip)
        events = [e.to_dict() for e in self.access_log.recent(limit)]
        return OperationResult(200, "Access log retrieved successfully", data={"accessEvents": events})

    def health(self) -> dict[str, Any]:
        self._ensure_loaded()
        return {
            "status": "ok",
            "loaded": self.durability.loaded,
            "entries": len(self.store),
            "lastLoaded": self.durability.last_loaded_at,
            "loadSource": self.durability.load_source,
        }


def build_service(settings: Settings) -> WhitelistService:
    """Construct the per-process store, durability manager and service."""
    store = EntryStore()
    durability = DurabilityManager(store, settings.storage_locations())
    access_log = AccessLog(settings.access_log_path, max_events=settings.access_log_size)
    return WhitelistService(store, durability, settings=settings, access_log=access_log)
