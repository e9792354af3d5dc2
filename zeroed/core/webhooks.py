"""
Zeroed — Webhooks and API keys.

Outgoing webhooks are signed with HMAC-SHA256 over "{timestamp}.{body}" and
sent as `X-Bruh-Signature: t=<unix>,v1=<hex>`. The same scheme verifies
signed payloads coming in (Stripe uses it too). API keys look like
`bruh_<64 hex>`; only their SHA-256 hash is stored.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

from zeroed.data.models import OutgoingWebhook

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 10
_RESPONSE_BODY_LIMIT = 1000
DISABLE_AFTER_FAILURES = 10
API_KEY_PREFIX = "bruh_"

WEBHOOK_EVENTS: dict[str, dict[str, str]] = {
    "task.created": {"label": "Task Created", "description": "When a new task is created"},
    "task.updated": {"label": "Task Updated", "description": "When a task is modified"},
    "task.completed": {"label": "Task Completed", "description": "When a task is marked complete"},
    "task.deleted": {"label": "Task Deleted", "description": "When a task is deleted"},
    "list.created": {"label": "List Created", "description": "When a new list is created"},
    "list.updated": {"label": "List Updated", "description": "When a list is modified"},
    "focus.started": {"label": "Focus Session Started", "description": "When a focus session begins"},
    "focus.completed": {"label": "Focus Session Completed", "description": "When a focus session ends"},
    "habit.completed": {"label": "Habit Completed", "description": "When a habit is marked complete for the day"},
    "goal.completed": {"label": "Goal Achieved", "description": "When a goal is fully completed"},
}


# ---------------------------------------------------------------------------
# Keys and secrets
# ---------------------------------------------------------------------------

def hash_api_key(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()


def generate_api_key() -> tuple[str, str, str]:
    """Return (key, sha256 hash, 12-char display prefix)."""
    key = f"{API_KEY_PREFIX}{secrets.token_hex(32)}"
    return key, hash_api_key(key), key[:12]


def generate_webhook_secret() -> str:
    return f"whsec_{secrets.token_hex(24)}"


def verify_api_key(db, key: str | None) -> int | None:
    """Return the owning user_id for a valid, unexpired key; stamps last_used_at."""
    if not key or not key.startswith(API_KEY_PREFIX):
        return None

    record = db.get_api_key_by_hash(hash_api_key(key))
    if record is None:
        return None

    if record.expires_at:
        expires = datetime.fromisoformat(record.expires_at)
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        if expires < datetime.now(timezone.utc):
            logger.info("Rejected expired API key %s…", record.key_prefix)
            return None

    db.touch_api_key(record.id)
    return record.user_id


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------

def _hmac_hex(secret: str, timestamp: str, payload: str | bytes) -> str:
    if isinstance(payload, str):
        payload = payload.encode()
    message = timestamp.encode() + b"." + payload
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def sign_webhook_payload(payload: str | bytes, secret: str, timestamp: int | None = None) -> str:
    """Return a `t=<unix>,v1=<hex>` signature header for payload."""
    ts = str(int(time.time()) if timestamp is None else timestamp)
    return f"t={ts},v1={_hmac_hex(secret, ts, payload)}"


def verify_webhook_signature(
    payload: str | bytes,
    signature: str | None,
    secret: str,
    tolerance: int = 300,
    now: float | None = None,
) -> bool:
    """Check a `t=,v1=` header: well-formed, fresh within tolerance, matching."""
    if not signature or not secret:
        return False

    timestamp = None
    candidates: list[str] = []
    for part in signature.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1" and value:
            candidates.append(value)

    # isdigit() alone admits "²" and other non-ASCII digits int() rejects
    if not timestamp or not candidates or not (timestamp.isascii() and timestamp.isdigit()):
        return False

    current = time.time() if now is None else now
    if abs(current - int(timestamp)) > tolerance:
        return False

    expected = _hmac_hex(secret, timestamp, payload).encode()
    return any(hmac.compare_digest(c.encode(), expected) for c in candidates)


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------

@dataclass
class DeliveryResult:
    webhook_id: int
    success: bool
    status: int | None
    body: str


async def _send(
    client: httpx.AsyncClient, hook: OutgoingWebhook, event: str, body: str,
) -> DeliveryResult:
    response = await client.post(
        hook.url,
        content=body,
        headers={
            "Content-Type": "application/json",
            "X-Bruh-Signature": sign_webhook_payload(body, hook.secret),
            "X-Bruh-Event": event,
        },
    )
    return DeliveryResult(
        webhook_id=hook.id,
        success=response.is_success,
        status=response.status_code,
        body=response.text[:_RESPONSE_BODY_LIMIT],
    )


def _record(db, hook: OutgoingWebhook, event: str, body: str, outcome) -> DeliveryResult:
    if isinstance(outcome, BaseException):
        logger.warning("Webhook #%d (%s) failed: %s", hook.id, event, outcome)
        result = DeliveryResult(
            webhook_id=hook.id, success=False, status=None,
            body=str(outcome) or type(outcome).__name__,
        )
    else:
        result = outcome

    db.add_log(hook.id, event, body, result.status, result.body, result.success)
    if result.success:
        db.record_success(hook.id)
    else:
        still_active = db.record_failure(hook.id, DISABLE_AFTER_FAILURES)
        if not still_active:
            logger.warning(
                "Webhook #%d disabled after %d consecutive failures",
                hook.id, DISABLE_AFTER_FAILURES,
            )
    return result


async def deliver(db, hooks: list[OutgoingWebhook], event: str, data: dict) -> list[DeliveryResult]:
    """POST one event to several hooks concurrently and log every attempt."""
    if not hooks:
        return []

    body = json.dumps({
        "event": event,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": data,
    })

    async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
        outcomes = await asyncio.gather(
            *(_send(client, hook, event, body) for hook in hooks),
            return_exceptions=True,
        )

    return [_record(db, hook, event, body, outcome) for hook, outcome in zip(hooks, outcomes)]


async def trigger_webhooks(db, user_id: int, event: str, data: dict) -> list[DeliveryResult]:
    """Fan an event out to the user's active hooks subscribed to it. Never raises."""
    if event not in WEBHOOK_EVENTS:
        logger.warning("Ignoring unknown webhook event %r", event)
        return []
    try:
        hooks = db.list_active_for_event(user_id, event)
        return await deliver(db, hooks, event, data)
    except Exception as exc:
        logger.error("Webhook fan-out for %s (user %d) failed: %s", event, user_id, exc)
        return []


async def send_test_webhook(db, hook: OutgoingWebhook) -> DeliveryResult:
    """Deliver a synthetic task.created event to a single hook."""
    data = {
        "test": True,
        "task": {"id": 0, "title": "Test task from bruh.", "status": "pending"},
    }
    results = await deliver(db, [hook], "task.created", data)
    return results[0]
