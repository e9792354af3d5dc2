"""Slack integration — OAuth, request verification and Web API calls.

Talks to the Slack Web API over httpx. Web API calls return Slack's own
{"ok": bool, "error": str} envelope; transport failures are turned into
the same shape so callers only ever check "ok".
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from urllib.parse import urlencode

import httpx

from zeroed.config import settings

logger = logging.getLogger(__name__)

_AUTHORIZE_URL = "https://slack.com/oauth/v2/authorize"
_API_URL = "https://slack.com/api"
_TIMEOUT_SECONDS = 10
OAUTH_SCOPES = "chat:write,commands,users:read,channels:read,groups:read"
REQUEST_TOLERANCE_SECONDS = 60 * 5


def redirect_uri() -> str:
    return f"{settings.APP_URL}/api/integrations/slack/callback"


def get_auth_url(state: str) -> str:
    params = {
        "client_id": settings.SLACK_CLIENT_ID,
        "scope": OAUTH_SCOPES,
        "redirect_uri": redirect_uri(),
        "state": state,
    }
    return f"{_AUTHORIZE_URL}?{urlencode(params)}"


def verify_slack_request(
    signature: str | None,
    timestamp: str | None,
    body: str | bytes,
    now: float | None = None,
) -> bool:
    """Check an X-Slack-Signature header against the signing secret.

    Requests older (or newer) than five minutes are rejected as replays.
    """
    if not signature or not timestamp or not settings.SLACK_SIGNING_SECRET:
        return False
    try:
        ts = int(timestamp)
    except ValueError:
        return False
    if abs((now if now is not None else time.time()) - ts) > REQUEST_TOLERANCE_SECONDS:
        return False

    raw = body if isinstance(body, bytes) else body.encode()
    basestring = b"v0:" + timestamp.encode() + b":" + raw
    expected = "v0=" + hmac.new(
        settings.SLACK_SIGNING_SECRET.encode(), basestring, hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(expected.encode(), signature.encode())


async def _call(
    method: str,
    token: str | None = None,
    json: dict | None = None,
    data: dict | None = None,
    params: dict | None = None,
) -> dict:
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    try:
        async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
            if json is None and data is None:
                resp = await client.get(f"{_API_URL}/{method}", params=params, headers=headers)
            else:
                resp = await client.post(f"{_API_URL}/{method}", json=json, data=data, headers=headers)
            resp.raise_for_status()
            result = resp.json()
    except Exception as exc:
        logger.error("Slack %s failed: %s", method, exc)
        return {"ok": False, "error": str(exc)}

    if not result.get("ok"):
        logger.warning("Slack %s returned error: %s", method, result.get("error"))
    return result


async def exchange_code_for_token(code: str) -> dict:
    """Exchange an OAuth code; the result carries access_token, team and authed_user."""
    return await _call(
        "oauth.v2.access",
        data={
            "client_id": settings.SLACK_CLIENT_ID,
            "client_secret": settings.SLACK_CLIENT_SECRET,
            "code": code,
            "redirect_uri": redirect_uri(),
        },
    )


async def send_message(
    token: str, channel: str, text: str, blocks: list[dict] | None = None,
) -> dict:
    payload: dict = {"channel": channel, "text": text}
    if blocks:
        payload["blocks"] = blocks
    return await _call("chat.postMessage", token, json=payload)


async def send_dm(
    token: str, slack_user_id: str, text: str, blocks: list[dict] | None = None,
) -> dict:
    opened = await _call("conversations.open", token, json={"users": slack_user_id})
    if not opened.get("ok"):
        return {"ok": False, "error": opened.get("error")}
    return await send_message(token, opened["channel"]["id"], text, blocks)


async def list_channels(token: str) -> dict:
    result = await _call(
        "conversations.list",
        token,
        params={"types": "public_channel,private_channel", "exclude_archived": "true", "limit": 100},
    )
    if not result.get("ok"):
        return {"ok": False, "error": result.get("error")}
    channels = [
        {"id": ch["id"], "name": ch["name"], "is_private": ch.get("is_private", False)}
        for ch in result.get("channels", [])
    ]
    return {"ok": True, "channels": channels}


# ---------------------------------------------------------------------------
# Block Kit formatting
# ---------------------------------------------------------------------------


def _section(text: str) -> dict:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def format_task(task) -> list[dict]:
    """One task as a section with a Done/Undo button."""
    if task.due_date:
        due = f"Due: {task.due_date} at {task.due_time}" if task.due_time else f"Due: {task.due_date}"
    else:
        due = "No due date"
    done = task.status == "completed"
    button = {
        "type": "button",
        "text": {"type": "plain_text", "text": "Undo" if done else "Done", "emoji": True},
        "action_id": "toggle_task",
        "value": str(task.id),
    }
    if not done:
        button["style"] = "primary"
    block = _section(f"{'✅' if done else '⬜'} *{task.title}*\n{due}")
    block["accessory"] = button
    return [block]


def format_today_summary(tasks: list) -> list[dict]:
    if not tasks:
        return [_section("🎉 *No tasks for today!* Take a break or get ahead on tomorrow's work.")]

    completed = sum(1 for t in tasks if t.status == "completed")
    blocks = [_section(f"📋 *Today's Tasks* ({completed}/{len(tasks)} done)")]
    for task in tasks:
        emoji = "✅" if task.status == "completed" else "⬜"
        time_text = f" _({task.due_time})_" if task.due_time else ""
        blocks.append(_section(f"{emoji} {task.title}{time_text}"))
    return blocks
