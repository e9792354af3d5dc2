"""
Zeroed — Platform settings.

Global boolean flags read on (almost) every request. Reads go through a
30-second module-level cache, writes clear it, and a store failure falls
back to the defaults.
"""

from __future__ import annotations

import logging
import time

logger = logging.getLogger(__name__)

SETTING_DEFAULTS: dict[str, bool] = {
    "maintenance_mode": False,
    "signups_enabled": True,
    "email_notifications": True,
}

CACHE_TTL_SECONDS = 30.0

_cache: dict[str, bool] | None = None
_cache_expiry = 0.0


def clear_cache() -> None:
    global _cache, _cache_expiry
    _cache = None
    _cache_expiry = 0.0


def get_all_settings(db) -> dict[str, bool]:
    """All known flags, merged over their defaults."""
    global _cache, _cache_expiry

    if _cache is not None and time.monotonic() < _cache_expiry:
        return dict(_cache)

    try:
        stored = db.get_values()
    except Exception as exc:
        logger.error("Failed to fetch platform settings: %s", exc)
        return dict(SETTING_DEFAULTS)

    result = dict(SETTING_DEFAULTS)
    for key, value in stored.items():
        if key in result:
            result[key] = value == "true"

    _cache = result
    _cache_expiry = time.monotonic() + CACHE_TTL_SECONDS
    return dict(result)


def get_setting(db, key: str) -> bool:
    if key not in SETTING_DEFAULTS:
        raise KeyError(f"Unknown platform setting: {key}")
    return get_all_settings(db).get(key, SETTING_DEFAULTS[key])


def set_setting(db, key: str, value: bool) -> dict[str, bool]:
    """Persist a flag and return the refreshed settings."""
    if key not in SETTING_DEFAULTS:
        raise KeyError(f"Unknown platform setting: {key}")
    db.set_value(key, "true" if value else "false")
    clear_cache()
    return get_all_settings(db)
