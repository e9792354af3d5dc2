"""
Zeroed — Integration routes.

Slack, Notion and Google Calendar connections (OAuth connect/callback,
settings, sync, disconnect), the integration health report, and the two
provider-facing endpoints: the Slack slash command and inbound email.

OAuth callbacks are hit by the browser without our API key, so the user
is taken from the signed `state` and every outcome is a redirect back to
the settings page.
"""

from __future__ import annotations

import logging
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from zeroed.adapters.calendar_sync import (
    google_calendar_for,
    pull_calendar_changes,
    push_all_tasks,
)
from zeroed.adapters.notion_sync import NotionTaskSync
from zeroed.api.deps import Stores, current_user, get_action_service, get_stores
from zeroed.bot.slack_commands import handle_slash_command
from zeroed.config import settings
from zeroed.core.action_service import ActionService
from zeroed.core.inbound import create_task_from_email, email_from_fields
from zeroed.data.models import User
from zeroed.data.query import TaskQuery
from zeroed.integrations import google_auth, notion, slack
from zeroed.integrations.oauth_state import OAuthStateError, make_state, read_state
from zeroed.integrations.sync_errors import integration_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["integrations"])

PROVIDERS = ("slack", "notion", "google_calendar")


class SettingsUpdate(BaseModel):
    settings: dict | None = None
    sync_enabled: bool | None = None


def _settings_redirect(**params: str) -> RedirectResponse:
    query = "&".join(f"{k}={v}" for k, v in params.items())
    return RedirectResponse(f"{settings.APP_URL}/settings?{query}", status_code=302)


def _callback_user(stores: Stores, code: str | None, state: str | None, error: str | None) -> int | RedirectResponse:
    if error:
        return _settings_redirect(error=error)
    if not code or not state:
        return _settings_redirect(error="missing_params")
    try:
        user_id = read_state(state)
    except OAuthStateError as exc:
        return _settings_redirect(error=str(exc))
    if stores.users.get_user(user_id) is None:
        return _settings_redirect(error="user_mismatch")
    return user_id


def _require_integration(stores: Stores, user_id: int, provider: str):
    integration = stores.integrations.get_integration(user_id, provider)
    if integration is None or not integration.access_token:
        raise HTTPException(status_code=400, detail=f"{provider} is not connected")
    return integration


def _update_settings(stores: Stores, user_id: int, provider: str, body: SettingsUpdate) -> dict:
    _require_integration(stores, user_id, provider)
    if body.settings:
        stores.integrations.merge_settings(user_id, provider, body.settings)
    if body.sync_enabled is not None:
        stores.integrations.update_integration(user_id, provider, sync_enabled=body.sync_enabled)
    return {"success": True}


@router.get("/integrations/health")
def health(user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    return {"integrations": integration_health(stores.integrations, user.id)}


@router.delete("/integrations/{provider}")
def disconnect(provider: str, user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    if provider not in PROVIDERS:
        raise HTTPException(status_code=404, detail="Unknown integration")
    stores.integrations.delete_integration(user.id, provider)
    logger.info("User %d disconnected %s", user.id, provider)
    return {"success": True}


# ---------------------------------------------------------------------------
# Slack
# ---------------------------------------------------------------------------


@router.get("/integrations/slack/connect")
def slack_connect(user: User = Depends(current_user)):
    if not settings.SLACK_CLIENT_ID:
        raise HTTPException(status_code=500, detail="Slack integration not configured")
    return {"url": slack.get_auth_url(make_state(user.id))}


@router.get("/integrations/slack/callback")
async def slack_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    stores: Stores = Depends(get_stores),
):
    user_id = _callback_user(stores, code, state, error)
    if isinstance(user_id, RedirectResponse):
        return user_id

    token = await slack.exchange_code_for_token(code)
    if not token.get("ok"):
        logger.error("Slack token error: %s", token.get("error"))
        return _settings_redirect(error="token_exchange_failed")

    stores.integrations.upsert_integration(
        user_id,
        "slack",
        token["access_token"],
        settings={
            "team_id": token.get("team", {}).get("id"),
            "team_name": token.get("team", {}).get("name"),
            "bot_user_id": token.get("bot_user_id"),
            "slack_user_id": token.get("authed_user", {}).get("id"),
            "notify_task_due": True,
            "notify_daily_summary": True,
            "daily_summary_time": "09:00",
        },
    )
    return _settings_redirect(success="slack_connected")


@router.get("/integrations/slack/channels")
async def slack_channels(user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    integration = _require_integration(stores, user.id, "slack")
    result = await slack.list_channels(integration.access_token)
    if not result.get("ok"):
        raise HTTPException(status_code=502, detail=f"Slack error: {result.get('error')}")
    return {"channels": result["channels"]}


@router.patch("/integrations/slack/settings")
def slack_settings(
    body: SettingsUpdate, user: User = Depends(current_user), stores: Stores = Depends(get_stores),
):
    return _update_settings(stores, user.id, "slack", body)


@router.post("/integrations/slack/commands")
async def slack_command(
    request: Request,
    stores: Stores = Depends(get_stores),
    service: ActionService = Depends(get_action_service),
):
    """The /bruh slash command. The raw body is verified before it is parsed."""
    body = await request.body()
    if not slack.verify_slack_request(
        request.headers.get("x-slack-signature"),
        request.headers.get("x-slack-request-timestamp"),
        body,
    ):
        raise HTTPException(status_code=401, detail="Invalid signature")
    form = dict(parse_qsl(body.decode("utf-8"), keep_blank_values=True))
    return await handle_slash_command(stores.integrations, stores.tasks, service, form)


# ---------------------------------------------------------------------------
# Notion
# ---------------------------------------------------------------------------


@router.get("/integrations/notion/connect")
def notion_connect(user: User = Depends(current_user)):
    if not settings.NOTION_CLIENT_ID:
        raise HTTPException(status_code=500, detail="Notion integration not configured")
    return {"url": notion.get_auth_url(make_state(user.id))}


@router.get("/integrations/notion/callback")
async def notion_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    stores: Stores = Depends(get_stores),
):
    user_id = _callback_user(stores, code, state, error)
    if isinstance(user_id, RedirectResponse):
        return user_id

    try:
        token = await notion.exchange_code_for_token(code)
    except notion.NotionError as exc:
        logger.error("Notion token error: %s", exc)
        return _settings_redirect(error="token_exchange_failed")

    stores.integrations.upsert_integration(
        user_id,
        "notion",
        token["access_token"],
        settings={
            "workspace_id": token.get("workspace_id"),
            "workspace_name": token.get("workspace_name"),
            "bot_id": token.get("bot_id"),
            "auto_sync": True,
        },
    )
    return _settings_redirect(success="notion_connected")


@router.get("/integrations/notion/databases")
async def notion_databases(user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    integration = _require_integration(stores, user.id, "notion")
    try:
        databases = await notion.search_databases(integration.access_token)
    except notion.NotionError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"databases": databases}


@router.get("/integrations/notion/settings")
def notion_get_settings(user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    integration = stores.integrations.get_integration(user.id, "notion")
    return {
        "settings": integration.settings if integration else {},
        "sync_enabled": integration.sync_enabled if integration else False,
    }


@router.patch("/integrations/notion/settings")
def notion_settings(
    body: SettingsUpdate, user: User = Depends(current_user), stores: Stores = Depends(get_stores),
):
    return _update_settings(stores, user.id, "notion", body)


@router.post("/integrations/notion/sync")
async def notion_sync(user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    """Push every open task to the selected Notion database."""
    integration = _require_integration(stores, user.id, "notion")
    if not integration.settings.get("database_id"):
        raise HTTPException(status_code=400, detail="No Notion database selected")

    sync = NotionTaskSync(stores.integrations)
    tasks = stores.tasks.run_query(
        TaskQuery().eq("user_id", user.id).in_("status", ["pending", "in_progress"]).is_null("parent_id")
    )
    for task in tasks:
        await sync.task_saved(user.id, task)

    mappings = stores.integrations.get_integration(user.id, "notion").settings.get("task_mappings", {})
    synced = sum(1 for t in tasks if str(t.id) in mappings)
    return {"synced": synced, "errors": len(tasks) - synced}


# ---------------------------------------------------------------------------
# Google Calendar
# ---------------------------------------------------------------------------


@router.get("/integrations/google/connect")
def google_connect(user: User = Depends(current_user)):
    return {"url": google_auth.get_auth_url(make_state(user.id))}


@router.get("/integrations/google/callback")
async def google_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    stores: Stores = Depends(get_stores),
):
    user_id = _callback_user(stores, code, state, error)
    if isinstance(user_id, RedirectResponse):
        return user_id

    try:
        creds = await run_in_threadpool(google_auth.exchange_code, code)
    except Exception as exc:
        logger.error("Google token exchange failed: %s", exc)
        return _settings_redirect(error="token_exchange_failed")

    stores.integrations.upsert_integration(
        user_id,
        google_auth.PROVIDER,
        creds.token,
        refresh_token=creds.refresh_token,
        token_expires_at=google_auth.expiry_iso(creds),
        settings={"calendar_id": "primary", "event_mappings": {}},
    )
    return _settings_redirect(success="google_connected")


@router.get("/integrations/google/calendars")
async def google_calendars(user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    integration = _require_integration(stores, user.id, google_auth.PROVIDER)
    calendar = await run_in_threadpool(google_calendar_for, stores.integrations, integration)
    return {"calendars": await calendar.list_calendars()}


@router.patch("/integrations/google/settings")
def google_settings(
    body: SettingsUpdate, user: User = Depends(current_user), stores: Stores = Depends(get_stores),
):
    return _update_settings(stores, user.id, google_auth.PROVIDER, body)


@router.post("/integrations/google/sync")
async def google_sync(user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    """Push dated tasks to Google, then pull Google-side changes back."""
    integration = _require_integration(stores, user.id, google_auth.PROVIDER)
    if not integration.sync_enabled:
        raise HTTPException(status_code=400, detail="Calendar sync not enabled")

    pushed = await push_all_tasks(stores.integrations, stores.tasks, user.id)
    pulled = await pull_calendar_changes(stores.integrations, stores.tasks, user.id)
    return {"success": True, "pushed": pushed, "pulled": pulled}


# ---------------------------------------------------------------------------
# Inbound email
# ---------------------------------------------------------------------------


@router.post("/email/inbound")
async def email_inbound(
    request: Request,
    stores: Stores = Depends(get_stores),
    service: ActionService = Depends(get_action_service),
):
    """Email-to-task. Accepts JSON, multipart or url-encoded provider payloads."""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        fields = await request.json()
    else:
        fields = dict(await request.form())

    if not isinstance(fields, dict):
        raise HTTPException(status_code=400, detail="Invalid email payload")
    task = await create_task_from_email(stores.users, stores.tasks, service, email_from_fields(fields))
    return {"success": True, "task_id": task.id}
