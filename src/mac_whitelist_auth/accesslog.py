from __future__ import annotations

import json
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .allowlist import DeviceInfo
from .storage import utc_now_iso

logger = logging.getLogger(__name__)


@dataclass
class AccessEvent:
    mac: str
    device: DeviceInfo
    success: bool
    message: str
    timestamp: str = field(default_factory=utc_now_iso)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "macAddress": self.mac,
            "deviceInfo": self.device.to_dict(),
            "success": self.success,
            "message": self.message,
        }


class AccessLog:
    """
    Bounded log of access checks, newest last.
    If `path` is set, the log is rewritten there after each event; write
    failures are logged and otherwise ignored.
    """

    def __init__(self, path: str | Path | None = None, max_events: int = 500) -> None:
        self.path = Path(path) if path is not None else None
        self._events: deque[AccessEvent] = deque(maxlen=max_events)

    def record(self, mac: str, device: DeviceInfo, success: bool, message: str) -> AccessEvent:
        event = AccessEvent(mac=mac, device=device, success=success, message=message)
        self._events.append(event)
        self._write()
        return event

    def recent(self, limit: int | None = None) -> list[AccessEvent]:
        events = list(self._events)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def __len__(self) -> int:
        return len(self._events)

    def _write(self) -> None:
        if self.path is None:
            return
        payload = {
            "version": "1.0",
            "accessEvents": [e.to_dict() for e in self._events],
        }
        try:
            self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning("Could not write access log %s: %s", self.path, e)
