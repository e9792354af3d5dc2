"""Sync error bookkeeping stored inside an integration's settings."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from zeroed.data.account_db import IntegrationDB

logger = logging.getLogger(__name__)

SYNC_ERROR_KEY = "last_sync_error"


def record_sync_error(
    db: IntegrationDB, user_id: int, provider: str, message: str, operation: str = "sync",
) -> None:
    """Store the latest failure; never raises."""
    error = {
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "provider": provider,
        "operation": operation,
    }
    try:
        db.merge_settings(user_id, provider, {SYNC_ERROR_KEY: error})
    except Exception as exc:
        logger.error("Failed to record %s sync error for user %d: %s", provider, user_id, exc)
        return
    logger.error("Sync error recorded for %s (user %d): %s", provider, user_id, message)


def clear_sync_error(db: IntegrationDB, user_id: int, provider: str) -> None:
    try:
        integration = db.get_integration(user_id, provider)
        if integration is not None and SYNC_ERROR_KEY in integration.settings:
            db.merge_settings(user_id, provider, {SYNC_ERROR_KEY: None})
    except Exception as exc:
        logger.error("Failed to clear %s sync error for user %d: %s", provider, user_id, exc)


def integration_health(db: IntegrationDB, user_id: int) -> list[dict]:
    """Connection state and last error of every integration the user has."""
    return [
        {
            "provider": i.provider,
            "connected": bool(i.access_token),
            "sync_enabled": i.sync_enabled,
            "last_sync_at": i.last_sync_at,
            "last_error": i.settings.get(SYNC_ERROR_KEY),
            "healthy": bool(i.access_token) and SYNC_ERROR_KEY not in i.settings,
        }
        for i in db.list_integrations(user_id)
    ]
