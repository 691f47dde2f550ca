from __future__ import annotations

from typing import Any

from manuf import manuf

from .allowlist import is_valid_mac, normalize_mac

UNKNOWN_VENDOR = "(unknown)"
RANDOMIZED_VENDOR = "Local / randomized MAC"


def is_locally_administered(mac: str) -> bool:
    """U/L bit (0x02) of the first octet; set by phones and VMs that randomize."""
    return bool(int(normalize_mac(mac)[:2], 16) & 0x02)


class VendorLabels:
    """
    Display labels for whitelist listings.

    Uses the long vendor name when the `manuf` database has one. Labels are
    cached per address for the life of the object, since a listing repeats
    OUIs heavily.
    """

    def __init__(self, parser: Any = None) -> None:
        self._parser = parser if parser is not None else manuf.MacParser()
        self._cache: dict[str, str] = {}

    def label(self, mac: str) -> str:
        if not is_valid_mac(mac):
            return UNKNOWN_VENDOR
        key = normalize_mac(mac)
        if key not in self._cache:
            self._cache[key] = self._lookup(key)
        return self._cache[key]

    def _lookup(self, mac: str) -> str:
        if is_locally_administered(mac):
            return RANDOMIZED_VENDOR
        vendor = self._parser.get_all(mac.upper())
        return vendor.manuf_long or vendor.manuf or UNKNOWN_VENDOR
