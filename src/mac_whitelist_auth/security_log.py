"""Structured security event logging.

Each event is emitted as one JSON line through :mod:`logging`, carrying the
event name, the client IP and arbitrary detail fields::

    from mac_whitelist_auth.security_log import get_security_logger

    get_security_logger().log_event("ACCESS_DENIED", ip="10.0.0.7", mac="aa:...")
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

_LOGGER_NAME = "mac_whitelist_auth.security"


class _JsonFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra = getattr(record, "_structured", None)
        if extra:
            payload.update(extra)
        return json.dumps(payload, default=str)


def get_security_logger(name: str = _LOGGER_NAME) -> "SecurityLogger":
    return SecurityLogger(name)


class SecurityLogger:
    """Security audit logger; the JSON handler is attached once per logger name."""

    def __init__(self, name: str = _LOGGER_NAME) -> None:
        self._logger = logging.getLogger(name)
        if not self._logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(_JsonFormatter())
            self._logger.addHandler(handler)
            self._logger.setLevel(logging.INFO)
            self._logger.propagate = False

    def log_event(
        self,
        event: str,
        *,
        ip: str = "unknown",
        level: int = logging.INFO,
        **fields: Any,
    ) -> dict[str, Any]:
        """Emit a structured security event and return the payload dict."""
        structured: dict[str, Any] = {"event": event, "ip": ip}
        structured.update(fields)

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "(security)",
            0,
            event,
            (),
            None,
        )
        record._structured = structured  # type: ignore[attr-defined]
        self._logger.handle(record)
        return structured
