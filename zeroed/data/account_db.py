"""
Zeroed — Account Database.

Stores for per-user account plumbing: third-party integrations, billing
subscriptions and coupons, outgoing webhooks with their delivery logs,
issued API keys, and global platform settings.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

from zeroed.data.db import DuplicateRecord, RecordNotFound, SQLiteStore, utc_now
from zeroed.data.models import (
    ApiKey,
    Coupon,
    Integration,
    OutgoingWebhook,
    Subscription,
    WebhookLog,
)

logger = logging.getLogger(__name__)


class IntegrationDB(SQLiteStore):
    """One row per (user, provider) OAuth connection."""

    _UPDATABLE = frozenset({
        "access_token", "refresh_token", "token_expires_at", "sync_enabled",
        "last_sync_at",
    })

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS integrations (
                    id               INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id          INTEGER NOT NULL,
                    provider         TEXT    NOT NULL,
                    access_token     TEXT,
                    refresh_token    TEXT,
                    token_expires_at TEXT,
                    settings         TEXT    NOT NULL DEFAULT '{}',
                    sync_enabled     INTEGER NOT NULL DEFAULT 1,
                    last_sync_at     TEXT,
                    created_at       TEXT    NOT NULL,
                    UNIQUE (user_id, provider)
                )
            """)

    @staticmethod
    def _row_to_integration(row: sqlite3.Row) -> Integration:
        return Integration(
            id=row["id"],
            user_id=row["user_id"],
            provider=row["provider"],
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            token_expires_at=row["token_expires_at"],
            settings=json.loads(row["settings"] or "{}"),
            sync_enabled=bool(row["sync_enabled"]),
            last_sync_at=row["last_sync_at"],
            created_at=row["created_at"],
        )

    def upsert_integration(
        self,
        user_id: int,
        provider: str,
        access_token: str | None,
        refresh_token: str | None = None,
        token_expires_at: str | None = None,
        settings: dict | None = None,
    ) -> Integration:
        """Insert or replace the tokens and settings for (user, provider)."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO integrations
                    (user_id, provider, access_token, refresh_token,
                     token_expires_at, settings, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id, provider) DO UPDATE SET
                    access_token = excluded.access_token,
                    refresh_token = COALESCE(excluded.refresh_token, integrations.refresh_token),
                    token_expires_at = excluded.token_expires_at,
                    settings = excluded.settings,
                    sync_enabled = 1
                """,
                (user_id, provider, access_token, refresh_token, token_expires_at,
                 json.dumps(settings or {}), utc_now()),
            )
        logger.info("Integration saved: %s for user %d", provider, user_id)
        integration = self.get_integration(user_id, provider)
        assert integration is not None
        return integration

    def get_integration(self, user_id: int, provider: str) -> Integration | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM integrations WHERE user_id = ? AND provider = ?",
                (user_id, provider),
            ).fetchone()
        return self._row_to_integration(row) if row else None

    def list_integrations(self, user_id: int) -> list[Integration]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM integrations WHERE user_id = ? ORDER BY provider",
                (user_id,),
            ).fetchall()
        return [self._row_to_integration(r) for r in rows]

    def list_by_provider(
        self, provider: str, sync_enabled_only: bool = True,
    ) -> list[Integration]:
        query = "SELECT * FROM integrations WHERE provider = ?"
        if sync_enabled_only:
            query += " AND sync_enabled = 1"
        query += " ORDER BY user_id"
        with self._connect() as conn:
            rows = conn.execute(query, (provider,)).fetchall()
        return [self._row_to_integration(r) for r in rows]

    def find_by_setting(self, provider: str, key: str, value: Any) -> Integration | None:
        """First integration of provider whose settings[key] equals value."""
        for integration in self.list_by_provider(provider, sync_enabled_only=False):
            if integration.settings.get(key) == value:
                return integration
        return None

    def update_integration(self, user_id: int, provider: str, **fields: Any) -> Integration:
        if fields:
            assignments, params = self._set_clause(fields, self._UPDATABLE)
            with self._connect() as conn:
                cursor = conn.execute(
                    f"UPDATE integrations SET {assignments} WHERE user_id = ? AND provider = ?",
                    (*params, user_id, provider),
                )
            if cursor.rowcount == 0:
                raise RecordNotFound(f"No {provider} integration for user {user_id}")
        integration = self.get_integration(user_id, provider)
        if integration is None:
            raise RecordNotFound(f"No {provider} integration for user {user_id}")
        return integration

    def merge_settings(self, user_id: int, provider: str, changes: dict) -> dict:
        """Shallow-merge changes into the settings JSON. None values delete keys."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT settings FROM integrations WHERE user_id = ? AND provider = ?",
                (user_id, provider),
            ).fetchone()
            if row is None:
                raise RecordNotFound(f"No {provider} integration for user {user_id}")
            merged = json.loads(row["settings"] or "{}")
            for key, value in changes.items():
                if value is None:
                    merged.pop(key, None)
                else:
                    merged[key] = value
            conn.execute(
                "UPDATE integrations SET settings = ? WHERE user_id = ? AND provider = ?",
                (json.dumps(merged), user_id, provider),
            )
        return merged

    def delete_integration(self, user_id: int, provider: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM integrations WHERE user_id = ? AND provider = ?",
                (user_id, provider),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Integration removed: %s for user %d", provider, user_id)
        return deleted


class SubscriptionDB(SQLiteStore):
    """Billing state per user, plus redeemable coupons."""

    _UPDATABLE = frozenset({
        "status", "trial_ends_at", "stripe_customer_id", "stripe_subscription_id",
        "stripe_price_id", "current_period_start", "current_period_end",
        "cancel_at_period_end", "canceled_at",
    })

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS subscriptions (
                    user_id                INTEGER PRIMARY KEY,
                    status                 TEXT    NOT NULL DEFAULT 'trialing',
                    trial_ends_at          TEXT,
                    stripe_customer_id     TEXT,
                    stripe_subscription_id TEXT,
                    stripe_price_id        TEXT,
                    current_period_start   TEXT,
                    current_period_end     TEXT,
                    cancel_at_period_end   INTEGER NOT NULL DEFAULT 0,
                    canceled_at            TEXT,
                    updated_at             TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS coupons (
                    code         TEXT    PRIMARY KEY COLLATE NOCASE,
                    coupon_type  TEXT    NOT NULL,
                    value        INTEGER NOT NULL DEFAULT 0,
                    is_active    INTEGER NOT NULL DEFAULT 1,
                    expires_at   TEXT,
                    max_uses     INTEGER,
                    current_uses INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS coupon_redemptions (
                    code        TEXT    NOT NULL COLLATE NOCASE,
                    user_id     INTEGER NOT NULL,
                    redeemed_at TEXT    NOT NULL,
                    PRIMARY KEY (code, user_id)
                )
            """)

    @staticmethod
    def _row_to_subscription(row: sqlite3.Row) -> Subscription:
        return Subscription(
            user_id=row["user_id"],
            status=row["status"],
            trial_ends_at=row["trial_ends_at"],
            stripe_customer_id=row["stripe_customer_id"],
            stripe_subscription_id=row["stripe_subscription_id"],
            stripe_price_id=row["stripe_price_id"],
            current_period_start=row["current_period_start"],
            current_period_end=row["current_period_end"],
            cancel_at_period_end=bool(row["cancel_at_period_end"]),
            canceled_at=row["canceled_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_coupon(row: sqlite3.Row) -> Coupon:
        return Coupon(
            code=row["code"],
            coupon_type=row["coupon_type"],
            value=row["value"],
            is_active=bool(row["is_active"]),
            expires_at=row["expires_at"],
            max_uses=row["max_uses"],
            current_uses=row["current_uses"],
        )

    def create_subscription(
        self, user_id: int, status: str = "trialing", trial_ends_at: str | None = None,
    ) -> Subscription:
        now = utc_now()
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO subscriptions (user_id, status, trial_ends_at, updated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (user_id, status, trial_ends_at, now),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateRecord(f"User {user_id} already has a subscription") from exc
        return Subscription(
            user_id=user_id, status=status, trial_ends_at=trial_ends_at, updated_at=now,
        )

    def get_subscription(self, user_id: int) -> Subscription | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM subscriptions WHERE user_id = ?", (user_id,),
            ).fetchone()
        return self._row_to_subscription(row) if row else None

    def get_by_customer_id(self, customer_id: str) -> Subscription | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM subscriptions WHERE stripe_customer_id = ?", (customer_id,),
            ).fetchone()
        return self._row_to_subscription(row) if row else None

    def update_subscription(self, user_id: int, **fields: Any) -> Subscription:
        assignments, params = self._set_clause(fields, self._UPDATABLE)
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE subscriptions SET {assignments}, updated_at = ? WHERE user_id = ?",
                (*params, utc_now(), user_id),
            )
        if cursor.rowcount == 0:
            raise RecordNotFound(f"No subscription for user {user_id}")
        subscription = self.get_subscription(user_id)
        assert subscription is not None
        return subscription

    def update_by_customer_id(
        self, customer_id: str, only_status: str | None = None, **fields: Any,
    ) -> int:
        """Update rows for a Stripe customer. Returns the number of rows touched."""
        assignments, params = self._set_clause(fields, self._UPDATABLE)
        query = f"UPDATE subscriptions SET {assignments}, updated_at = ? WHERE stripe_customer_id = ?"
        args: list = [*params, utc_now(), customer_id]
        if only_status is not None:
            query += " AND status = ?"
            args.append(only_status)
        with self._connect() as conn:
            cursor = conn.execute(query, args)
        return cursor.rowcount

    # -- coupons ------------------------------------------------------------

    def add_coupon(
        self,
        code: str,
        coupon_type: str,
        value: int = 0,
        expires_at: str | None = None,
        max_uses: int | None = None,
    ) -> Coupon:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO coupons (code, coupon_type, value, expires_at, max_uses)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (code.upper(), coupon_type, value, expires_at, max_uses),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateRecord(f"Coupon {code} already exists") from exc
        return Coupon(
            code=code.upper(), coupon_type=coupon_type, value=value,
            expires_at=expires_at, max_uses=max_uses,
        )

    def get_coupon(self, code: str) -> Coupon | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM coupons WHERE code = ?", (code.strip(),),
            ).fetchone()
        return self._row_to_coupon(row) if row else None

    def record_redemption(self, code: str, user_id: int) -> bool:
        """Record a redemption and bump current_uses. False if already redeemed."""
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO coupon_redemptions (code, user_id, redeemed_at) VALUES (?, ?, ?)",
                    (code.upper(), user_id, utc_now()),
                )
                conn.execute(
                    "UPDATE coupons SET current_uses = current_uses + 1 WHERE code = ?",
                    (code.upper(),),
                )
        except sqlite3.IntegrityError:
            return False
        return True


class WebhookDB(SQLiteStore):
    """Outgoing webhooks, their delivery logs, and issued API keys."""

    _UPDATABLE = frozenset({"name", "url", "events", "is_active"})

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS outgoing_webhooks (
                    id                INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id           INTEGER NOT NULL,
                    name              TEXT,
                    url               TEXT    NOT NULL,
                    secret            TEXT    NOT NULL,
                    events            TEXT    NOT NULL DEFAULT '[]',
                    is_active         INTEGER NOT NULL DEFAULT 1,
                    failure_count     INTEGER NOT NULL DEFAULT 0,
                    last_triggered_at TEXT,
                    created_at        TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS webhook_logs (
                    id              INTEGER PRIMARY KEY AUTOINCREMENT,
                    webhook_id      INTEGER NOT NULL,
                    event_type      TEXT    NOT NULL,
                    payload         TEXT    NOT NULL,
                    response_status INTEGER,
                    response_body   TEXT,
                    success         INTEGER NOT NULL,
                    created_at      TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS api_keys (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id      INTEGER NOT NULL,
                    name         TEXT    NOT NULL,
                    key_hash     TEXT    NOT NULL UNIQUE,
                    key_prefix   TEXT    NOT NULL,
                    expires_at   TEXT,
                    last_used_at TEXT,
                    created_at   TEXT    NOT NULL
                )
            """)

    @staticmethod
    def _row_to_webhook(row: sqlite3.Row) -> OutgoingWebhook:
        return OutgoingWebhook(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            url=row["url"],
            secret=row["secret"],
            events=json.loads(row["events"]),
            is_active=bool(row["is_active"]),
            failure_count=row["failure_count"],
            last_triggered_at=row["last_triggered_at"],
        )

    @staticmethod
    def _row_to_api_key(row: sqlite3.Row) -> ApiKey:
        return ApiKey(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            key_hash=row["key_hash"],
            key_prefix=row["key_prefix"],
            expires_at=row["expires_at"],
            last_used_at=row["last_used_at"],
            created_at=row["created_at"],
        )

    # -- webhooks -----------------------------------------------------------

    def create_webhook(
        self, user_id: int, url: str, secret: str, events: list[str],
        name: str | None = None,
    ) -> OutgoingWebhook:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO outgoing_webhooks (user_id, name, url, secret, events, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, name, url, secret, json.dumps(events), utc_now()),
            )
            webhook_id = cursor.lastrowid
        logger.info("Webhook #%d registered for user %d -> %s", webhook_id, user_id, url)
        return OutgoingWebhook(
            id=webhook_id, user_id=user_id, url=url, secret=secret, events=events, name=name,
        )

    def get_webhook(self, webhook_id: int, user_id: int | None = None) -> OutgoingWebhook | None:
        query = "SELECT * FROM outgoing_webhooks WHERE id = ?"
        params: list = [webhook_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        return self._row_to_webhook(row) if row else None

    def list_webhooks(self, user_id: int) -> list[OutgoingWebhook]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM outgoing_webhooks WHERE user_id = ? ORDER BY id", (user_id,),
            ).fetchall()
        return [self._row_to_webhook(r) for r in rows]

    def list_active_for_event(self, user_id: int, event: str) -> list[OutgoingWebhook]:
        return [
            hook for hook in self.list_webhooks(user_id)
            if hook.is_active and event in hook.events
        ]

    def update_webhook(self, webhook_id: int, user_id: int, **fields: Any) -> OutgoingWebhook:
        if "events" in fields:
            fields["events"] = json.dumps(fields["events"])
        if fields.get("is_active"):
            # re-enabling gives the hook a clean slate
            fields["failure_count"] = 0
        allowed = self._UPDATABLE | {"failure_count"}
        if fields:
            assignments, params = self._set_clause(fields, allowed)
            with self._connect() as conn:
                cursor = conn.execute(
                    f"UPDATE outgoing_webhooks SET {assignments} WHERE id = ? AND user_id = ?",
                    (*params, webhook_id, user_id),
                )
            if cursor.rowcount == 0:
                raise RecordNotFound(f"Webhook {webhook_id} not found")
        hook = self.get_webhook(webhook_id, user_id)
        if hook is None:
            raise RecordNotFound(f"Webhook {webhook_id} not found")
        return hook

    def delete_webhook(self, webhook_id: int, user_id: int) -> bool:
        with self._connect() as conn:
            conn.execute("DELETE FROM webhook_logs WHERE webhook_id = ?", (webhook_id,))
            cursor = conn.execute(
                "DELETE FROM outgoing_webhooks WHERE id = ? AND user_id = ?",
                (webhook_id, user_id),
            )
        return cursor.rowcount > 0

    def record_success(self, webhook_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE outgoing_webhooks
                SET failure_count = 0, last_triggered_at = ?
                WHERE id = ?
                """,
                (utc_now(), webhook_id),
            )

    def record_failure(self, webhook_id: int, disable_after: int) -> bool:
        """Increment failure_count; deactivate at disable_after. Returns is_active."""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE outgoing_webhooks
                SET failure_count = failure_count + 1,
                    last_triggered_at = ?,
                    is_active = CASE WHEN failure_count + 1 >= ? THEN 0 ELSE is_active END
                WHERE id = ?
                """,
                (utc_now(), disable_after, webhook_id),
            )
            row = conn.execute(
                "SELECT is_active FROM outgoing_webhooks WHERE id = ?", (webhook_id,),
            ).fetchone()
        return bool(row["is_active"]) if row else False

    def add_log(
        self,
        webhook_id: int,
        event_type: str,
        payload: str,
        response_status: int | None,
        response_body: str | None,
        success: bool,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO webhook_logs
                    (webhook_id, event_type, payload, response_status,
                     response_body, success, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (webhook_id, event_type, payload, response_status, response_body,
                 int(success), utc_now()),
            )

    def list_logs(self, webhook_id: int, limit: int = 50) -> list[WebhookLog]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM webhook_logs WHERE webhook_id = ?
                ORDER BY id DESC LIMIT ?
                """,
                (webhook_id, limit),
            ).fetchall()
        return [
            WebhookLog(
                id=r["id"],
                webhook_id=r["webhook_id"],
                event_type=r["event_type"],
                response_status=r["response_status"],
                response_body=r["response_body"],
                success=bool(r["success"]),
                created_at=r["created_at"],
            )
            for r in rows
        ]

    # -- API keys -----------------------------------------------------------

    def create_api_key(
        self, user_id: int, name: str, key_hash: str, key_prefix: str,
        expires_at: str | None = None,
    ) -> ApiKey:
        created_at = utc_now()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO api_keys (user_id, name, key_hash, key_prefix, expires_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, name, key_hash, key_prefix, expires_at, created_at),
            )
            key_id = cursor.lastrowid
        logger.info("API key #%d (%s…) issued for user %d", key_id, key_prefix, user_id)
        return ApiKey(
            id=key_id, user_id=user_id, name=name, key_hash=key_hash,
            key_prefix=key_prefix, expires_at=expires_at, created_at=created_at,
        )

    def get_api_key_by_hash(self, key_hash: str) -> ApiKey | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM api_keys WHERE key_hash = ?", (key_hash,),
            ).fetchone()
        return self._row_to_api_key(row) if row else None

    def touch_api_key(self, key_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE api_keys SET last_used_at = ? WHERE id = ?", (utc_now(), key_id),
            )

    def list_api_keys(self, user_id: int) -> list[ApiKey]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM api_keys WHERE user_id = ? ORDER BY id", (user_id,),
            ).fetchall()
        return [self._row_to_api_key(r) for r in rows]

    def delete_api_key(self, key_id: int, user_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM api_keys WHERE id = ? AND user_id = ?", (key_id, user_id),
            )
        return cursor.rowcount > 0


class PlatformSettingsDB(SQLiteStore):
    """Global key/value flags. Values are stored as strings."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS platform_settings (
                    key        TEXT PRIMARY KEY,
                    value      TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

    def get_values(self) -> dict[str, str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT key, value FROM platform_settings").fetchall()
        return {r["key"]: r["value"] for r in rows}

    def set_value(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO platform_settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT (key) DO UPDATE SET
                    value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value, utc_now()),
            )
        logger.info("Platform setting %s = %s", key, value)
