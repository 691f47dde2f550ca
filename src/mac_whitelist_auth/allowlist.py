from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

from .errors import ValidationError

MAC_PATTERN = re.compile(r"^([0-9A-Fa-f]{2}[:-]){5}([0-9A-Fa-f]{2})$")


class AccessTier(str, Enum):
    TRIAL = "trial"
    UNLIMITED = "unlimited"
    ADMIN = "admin"


DEFAULT_TIER = AccessTier.TRIAL


def normalize_mac(mac: str) -> str:
    # Lowercase colon-separated; the canonical lookup key
    return mac.strip().replace("-", ":").lower()


def is_valid_mac(mac: Any) -> bool:
    return isinstance(mac, str) and MAC_PATTERN.match(mac) is not None


def parse_tier(value: Any) -> AccessTier:
    """
    Missing or empty values default to trial.
    Anything outside {trial, unlimited, admin} raises ValidationError.
    """
    if value is None or value == "":
        return DEFAULT_TIER
    try:
        return AccessTier(value)
    except ValueError:
        raise ValidationError(
            "Invalid access type. Must be: trial, unlimited, or admin"
        ) from None


def _timestamp(value: Any) -> str | None:
    # Stored timestamps are ISO strings; anything else is dropped
    return value if isinstance(value, str) and value else None


@dataclass
class DeviceInfo:
    hostname: str | None = None
    username: str | None = None
    platform: str | None = None
    local_ip: str | None = None
    public_ip: str | None = None
    client_ip: str | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> DeviceInfo:
        if not isinstance(raw, dict):
            raw = {}
        return cls(
            hostname=raw.get("hostname"),
            username=raw.get("username"),
            platform=raw.get("platform"),
            local_ip=raw.get("localIP"),
            public_ip=raw.get("publicIP"),
            client_ip=raw.get("clientIP"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "hostname": self.hostname,
            "username": self.username,
            "platform": self.platform,
            "localIP": self.local_ip,
            "publicIP": self.public_ip,
            "clientIP": self.client_ip,
        }


@dataclass
class WhitelistEntry:
    mac: str
    description: str
    added_at: str
    access_tier: AccessTier = DEFAULT_TIER
    updated_at: str | None = None
    last_seen: str | None = None
    access_count: int = 0
    last_device: DeviceInfo | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def from_dict(cls, raw: dict[str, Any], mac: str | None = None) -> WhitelistEntry:
        """
        Accepts the on-disk camelCase record. `mac` overrides the record's
        own macAddress (legacy snapshots keyed entries by address).
        """
        address = mac if mac is not None else raw["macAddress"]
        last_device = raw.get("lastDevice")
        try:
            tier = parse_tier(raw.get("accessType"))
        except ValidationError:
            tier = DEFAULT_TIER
        entry = cls(
            mac=normalize_mac(str(address)),
            description=str(raw.get("description") or ""),
            added_at=_timestamp(raw.get("addedAt")) or "",
            access_tier=tier,
            updated_at=_timestamp(raw.get("updatedAt")),
            last_seen=_timestamp(raw.get("lastSeen")),
            access_count=max(int(raw.get("accessCount") or 0), 0),
            last_device=DeviceInfo.from_dict(last_device) if isinstance(last_device, dict) else None,
        )
        if raw.get("id"):
            entry.id = str(raw["id"])
        return entry

    def to_dict(self) -> dict[str, Any]:
        return {
            "macAddress": self.mac,
            "description": self.description,
            "accessType": self.access_tier.value,
            "addedAt": self.added_at,
            "updatedAt": self.updated_at,
            "lastSeen": self.last_seen,
            "accessCount": self.access_count,
            "lastDevice": self.last_device.to_dict() if self.last_device else None,
            "id": self.id,
        }

    def public_view(self) -> dict[str, Any]:
        """What a client is allowed to see about its own entry."""
        return {
            "macAddress": self.mac,
            "description": self.description,
            "accessType": self.access_tier.value,
            "addedAt": self.added_at,
            "lastSeen": self.last_seen,
            "accessCount": self.access_count,
        }


class EntryStore:
    """
    In-memory mapping: normalized_mac -> WhitelistEntry.
    Iteration order carries no meaning; listings sort explicitly.
    """

    def __init__(self) -> None:
        self._entries: dict[str, WhitelistEntry] = {}

    def get(self, mac: str) -> WhitelistEntry | None:
        return self._entries.get(normalize_mac(mac))

    def set(self, entry: WhitelistEntry) -> None:
        self._entries[normalize_mac(entry.mac)] = entry

    def delete(self, mac: str) -> bool:
        return self._entries.pop(normalize_mac(mac), None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def replace_all(self, entries: list[WhitelistEntry]) -> None:
        self._entries.clear()
        for e in entries:
            self.set(e)

    def entries(self) -> list[WhitelistEntry]:
        return list(self._entries.values())

    def __contains__(self, mac: object) -> bool:
        return isinstance(mac, str) and normalize_mac(mac) in self._entries

    def __iter__(self) -> Iterator[WhitelistEntry]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)
