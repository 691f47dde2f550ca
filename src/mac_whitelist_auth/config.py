"""
Runtime settings, read from the environment.

    ADMIN_SECRET_KEY                shared secret for admin actions
    MAC_WHITELIST_DATA_DIR          primary (project-local) data directory
    MAC_WHITELIST_SCRATCH_DIR       ephemeral scratch directory for backups
    MAC_WHITELIST_RATE_LIMIT        requests per client per hour
    MAC_WHITELIST_DEFERRED_PERSIST  "1" to persist access bookkeeping in the background
    MAC_WHITELIST_LOG_LEVEL         logging level name
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from .storage import StorageLocation

logger = logging.getLogger(__name__)

INSECURE_DEFAULT_ADMIN_KEY = "default-admin-key-change-me"

WHITELIST_FILENAME = "mac-whitelist.json"
BACKUP_FILENAME = "mac-backup.json"
ACCESS_LOG_FILENAME = "access-log.json"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class Settings:
    admin_key: str = INSECURE_DEFAULT_ADMIN_KEY
    data_dir: Path = field(default_factory=lambda: Path.cwd() / "data")
    scratch_dir: Path = Path("/tmp")
    rate_limit: int = 60
    rate_window_seconds: int = 60 * 60
    deferred_access_persist: bool = False
    access_log_size: int = 500
    log_level: str = "INFO"

    @property
    def uses_default_admin_key(self) -> bool:
        return self.admin_key == INSECURE_DEFAULT_ADMIN_KEY

    def storage_locations(self) -> list[StorageLocation]:
        """Most preferred first. Only the primary directory is created on write."""
        return [
            StorageLocation("Primary", self.data_dir / WHITELIST_FILENAME, primary=True),
            StorageLocation("Backup", self.scratch_dir / WHITELIST_FILENAME),
            StorageLocation("Fallback", self.scratch_dir / BACKUP_FILENAME),
        ]

    @property
    def access_log_path(self) -> Path:
        return self.scratch_dir / ACCESS_LOG_FILENAME


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    s = Settings()

    s.admin_key = env.get("ADMIN_SECRET_KEY") or INSECURE_DEFAULT_ADMIN_KEY
    if env.get("MAC_WHITELIST_DATA_DIR"):
        s.data_dir = Path(env["MAC_WHITELIST_DATA_DIR"])
    if env.get("MAC_WHITELIST_SCRATCH_DIR"):
        s.scratch_dir = Path(env["MAC_WHITELIST_SCRATCH_DIR"])

    raw_limit = env.get("MAC_WHITELIST_RATE_LIMIT")
    if raw_limit:
        try:
            s.rate_limit = int(raw_limit)
        except ValueError:
            logger.warning("Ignoring non-integer MAC_WHITELIST_RATE_LIMIT=%r", raw_limit)

    s.deferred_access_persist = (
        env.get("MAC_WHITELIST_DEFERRED_PERSIST", "").strip().lower() in _TRUTHY
    )
    s.log_level = env.get("MAC_WHITELIST_LOG_LEVEL", s.log_level).upper()

    if s.uses_default_admin_key:
        logger.warning(
            "ADMIN_SECRET_KEY is not set; using the insecure default admin key"
        )
    return s
