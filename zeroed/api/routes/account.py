"""Signup, profile, API keys and webhooks (outgoing CRUD plus the incoming automation endpoint)."""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel

from zeroed.adapters.email_notifier import ResendEmailNotifier
from zeroed.api.deps import (
    Stores,
    bearer,
    current_user,
    get_action_service,
    get_mailer,
    get_stores,
)
from zeroed.config import settings
from zeroed.core.action_service import ActionService
from zeroed.core.inbound import (
    INCOMING_WEBHOOK_DOCS,
    IncomingWebhookPayload,
    handle_incoming_action,
)
from zeroed.core.platform_settings import get_setting
from zeroed.core.subscriptions import (
    check_subscription_access,
    get_status_message,
    start_trial,
)
from zeroed.core.webhooks import (
    WEBHOOK_EVENTS,
    generate_api_key,
    generate_webhook_secret,
    send_test_webhook,
    verify_api_key,
)
from zeroed.data.models import INBOX_LIST_NAME, ApiKey, OutgoingWebhook, User
from zeroed.integrations import email_templates
from zeroed.ports.notification_port import NotificationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["account"])


class SignupRequest(BaseModel):
    email: str
    display_name: str | None = None


class PreferencesUpdate(BaseModel):
    display_name: str | None = None
    daily_digest_enabled: bool | None = None
    weekly_summary_enabled: bool | None = None


class ApiKeyCreate(BaseModel):
    name: str
    expires_in_days: int | None = None


class WebhookCreate(BaseModel):
    name: str
    url: str
    events: list[str]


class WebhookUpdate(BaseModel):
    id: int
    name: str | None = None
    url: str | None = None
    events: list[str] | None = None
    is_active: bool | None = None


class WebhookTest(BaseModel):
    webhook_id: int


def _user_dict(user: User) -> dict:
    data = asdict(user)
    data["email_task_address"] = f"task+{user.email_task_id}@{urlparse(settings.APP_URL).hostname or 'localhost'}"
    return data


def _key_dict(key: ApiKey) -> dict:
    return {
        "id": key.id,
        "name": key.name,
        "key_prefix": key.key_prefix,
        "last_used_at": key.last_used_at,
        "expires_at": key.expires_at,
        "created_at": key.created_at,
    }


def _webhook_dict(hook: OutgoingWebhook) -> dict:
    data = asdict(hook)
    data.pop("secret")
    return data


def _check_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise HTTPException(status_code=400, detail="Invalid URL")
    return url


def _check_events(events: list[str]) -> list[str]:
    invalid = [e for e in events if e not in WEBHOOK_EVENTS]
    if invalid:
        raise HTTPException(status_code=400, detail=f"Invalid events: {', '.join(invalid)}")
    return events


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.post("/users/signup", status_code=201)
async def signup(
    body: SignupRequest,
    stores: Stores = Depends(get_stores),
    mailer: ResendEmailNotifier = Depends(get_mailer),
):
    """Register an account: Inbox list, 30-day trial and a first API key."""
    if not get_setting(stores.platform, "signups_enabled"):
        raise HTTPException(status_code=403, detail="Signups are currently disabled")
    if "@" not in body.email:
        raise HTTPException(status_code=400, detail="A valid email is required")

    user = stores.users.create_user(body.email, body.display_name)
    stores.tasks.create_list(user.id, INBOX_LIST_NAME, icon="inbox")
    start_trial(stores.subscriptions, user.id)
    key, key_hash, prefix = generate_api_key()
    stores.webhooks.create_api_key(user.id, "Default", key_hash, prefix)

    subject, html = email_templates.welcome_email(user.display_name, settings.APP_URL)
    try:
        await mailer.send_email(user.email, subject, html)
    except NotificationError as exc:
        logger.warning("Welcome email to %s failed: %s", user.email, exc)

    return {
        "user": _user_dict(user),
        "api_key": key,
        "warning": "Save this key now - you won't be able to see it again!",
    }


@router.get("/users/me")
def me(user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    access = check_subscription_access(stores.subscriptions, user.id)
    return {
        "user": _user_dict(user),
        "subscription": {**access.model_dump(), "message": get_status_message(access)},
    }


@router.patch("/users/me")
def update_me(
    body: PreferencesUpdate,
    user: User = Depends(current_user),
    stores: Stores = Depends(get_stores),
):
    updated = stores.users.update_preferences(user.id, **body.model_dump(exclude_none=True))
    return {"user": _user_dict(updated)}


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


@router.get("/webhooks/keys")
def list_keys(user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    keys = sorted(stores.webhooks.list_api_keys(user.id), key=lambda k: k.id, reverse=True)
    return {"keys": [_key_dict(k) for k in keys]}


@router.post("/webhooks/keys")
def create_key(
    body: ApiKeyCreate,
    user: User = Depends(current_user),
    stores: Stores = Depends(get_stores),
):
    if not body.name.strip():
        raise HTTPException(status_code=400, detail="Name is required")
    expires_at = None
    if body.expires_in_days:
        expiry = datetime.now(timezone.utc) + timedelta(days=body.expires_in_days)
        expires_at = expiry.isoformat(timespec="seconds")

    key, key_hash, prefix = generate_api_key()
    record = stores.webhooks.create_api_key(user.id, body.name.strip(), key_hash, prefix, expires_at)
    return {
        "key": {**_key_dict(record), "secret": key},
        "warning": "Save this key now - you won't be able to see it again!",
    }


@router.delete("/webhooks/keys")
def delete_key(id: int, user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    if not stores.webhooks.delete_api_key(id, user.id):
        raise HTTPException(status_code=404, detail="API key not found")
    return {"success": True}


# ---------------------------------------------------------------------------
# Outgoing webhooks
# ---------------------------------------------------------------------------


@router.get("/webhooks/outgoing")
def list_webhooks(user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    hooks = sorted(stores.webhooks.list_webhooks(user.id), key=lambda h: h.id, reverse=True)
    return {"webhooks": [_webhook_dict(h) for h in hooks], "available_events": WEBHOOK_EVENTS}


@router.post("/webhooks/outgoing")
def create_webhook(
    body: WebhookCreate,
    user: User = Depends(current_user),
    stores: Stores = Depends(get_stores),
):
    if not body.name or not body.url or not body.events:
        raise HTTPException(status_code=400, detail="Name, URL, and at least one event are required")
    secret = generate_webhook_secret()
    hook = stores.webhooks.create_webhook(
        user.id, _check_url(body.url), secret, _check_events(body.events), name=body.name,
    )
    return {
        "webhook": {**_webhook_dict(hook), "secret": secret},
        "warning": "Save this signing secret now - you won't be able to see it again!",
    }


@router.patch("/webhooks/outgoing")
def update_webhook(
    body: WebhookUpdate,
    user: User = Depends(current_user),
    stores: Stores = Depends(get_stores),
):
    changes = body.model_dump(exclude_none=True, exclude={"id"})
    if "url" in changes:
        _check_url(changes["url"])
    if "events" in changes:
        _check_events(changes["events"])
    hook = stores.webhooks.update_webhook(body.id, user.id, **changes)
    return {"webhook": _webhook_dict(hook)}


@router.delete("/webhooks/outgoing")
def delete_webhook(id: int, user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    if not stores.webhooks.delete_webhook(id, user.id):
        raise HTTPException(status_code=404, detail="Webhook not found")
    return {"success": True}


@router.get("/webhooks/outgoing/{webhook_id}/logs")
def webhook_logs(
    webhook_id: int, user: User = Depends(current_user), stores: Stores = Depends(get_stores),
):
    if stores.webhooks.get_webhook(webhook_id, user.id) is None:
        raise HTTPException(status_code=404, detail="Webhook not found")
    return {"logs": [asdict(log) for log in stores.webhooks.list_logs(webhook_id)]}


@router.post("/webhooks/test")
async def test_webhook(
    body: WebhookTest,
    user: User = Depends(current_user),
    stores: Stores = Depends(get_stores),
):
    hook = stores.webhooks.get_webhook(body.webhook_id, user.id)
    if hook is None:
        raise HTTPException(status_code=404, detail="Webhook not found")
    result = await send_test_webhook(stores.webhooks, hook)
    return {"success": result.success, "status": result.status, "response": result.body}


# ---------------------------------------------------------------------------
# Incoming automation webhook
# ---------------------------------------------------------------------------


@router.post("/webhooks/incoming")
async def incoming_webhook(
    payload: IncomingWebhookPayload,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    stores: Stores = Depends(get_stores),
    service: ActionService = Depends(get_action_service),
):
    user_id = verify_api_key(stores.webhooks, credentials.credentials if credentials else None)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
    return await handle_incoming_action(service, stores.tasks, user_id, payload)


@router.get("/webhooks/incoming")
def incoming_webhook_docs():
    return INCOMING_WEBHOOK_DOCS
