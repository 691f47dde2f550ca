from __future__ import annotations

import getpass
import ipaddress
import platform
import socket

import psutil

from .allowlist import DeviceInfo, is_valid_mac, normalize_mac

_IGNORED_MACS = {"00:00:00:00:00:00", "ff:ff:ff:ff:ff:ff"}


# -------------------------------------------------
# Candidate addresses
# -------------------------------------------------

def local_mac_candidates() -> list[str]:
    """
    Hardware addresses of the local interfaces, in interface order.
    A device may present several; the whitelist check tries each in turn.
    """
    candidates: list[str] = []
    for _, addrs in psutil.net_if_addrs().items():
        for a in addrs:
            if a.family != psutil.AF_LINK:
                continue
            if not a.address or not is_valid_mac(a.address):
                continue
            mac = normalize_mac(a.address)
            if mac in _IGNORED_MACS:
                continue
            candidates.append(mac)

    # De-dup while preserving order
    seen: set[str] = set()
    unique: list[str] = []
    for mac in candidates:
        if mac not in seen:
            seen.add(mac)
            unique.append(mac)
    return unique


# -------------------------------------------------
# Device metadata
# -------------------------------------------------

def _first_ipv4() -> str | None:
    for _, addrs in psutil.net_if_addrs().items():
        for a in addrs:
            if a.family != socket.AF_INET or not a.address:
                continue
            try:
                ip = ipaddress.IPv4Address(a.address)
            except ValueError:
                continue
            if not ip.is_loopback:
                return str(ip)
    return None


def _username() -> str | None:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return None


def local_device_info() -> DeviceInfo:
    return DeviceInfo(
        hostname=socket.gethostname(),
        username=_username(),
        platform=platform.system().lower(),
        local_ip=_first_ipv4(),
    )
