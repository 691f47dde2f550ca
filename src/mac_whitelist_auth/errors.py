from __future__ import annotations


class WhitelistError(Exception):
    """Base error for the whitelist service."""


class ValidationError(WhitelistError):
    """Malformed address, invalid tier or a missing required field."""
