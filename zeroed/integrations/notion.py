"""Notion integration — OAuth and page operations.

OAuth code exchange goes over httpx (Basic auth with the client
credentials); everything else uses notion-client's AsyncClient.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

import httpx
from notion_client import AsyncClient

from zeroed.config import settings

logger = logging.getLogger(__name__)

_AUTHORIZE_URL = "https://api.notion.com/v1/oauth/authorize"
_TOKEN_URL = "https://api.notion.com/v1/oauth/token"
_TIMEOUT_SECONDS = 10

PRIORITY_LABELS = {"low": "Low", "normal": "Medium", "high": "High", "urgent": "Urgent"}


class NotionError(Exception):
    """Raised when a Notion call fails."""


def redirect_uri() -> str:
    return f"{settings.APP_URL}/api/integrations/notion/callback"


def get_auth_url(state: str) -> str:
    params = {
        "client_id": settings.NOTION_CLIENT_ID,
        "response_type": "code",
        "owner": "user",
        "redirect_uri": redirect_uri(),
        "state": state,
    }
    return f"{_AUTHORIZE_URL}?{urlencode(params)}"


async def exchange_code_for_token(code: str) -> dict:
    """Exchange an OAuth code; the result carries access_token and workspace info."""
    try:
        async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
            resp = await client.post(
                _TOKEN_URL,
                json={"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri()},
                auth=(settings.NOTION_CLIENT_ID, settings.NOTION_CLIENT_SECRET),
            )
            resp.raise_for_status()
            return resp.json()
    except httpx.HTTPError as exc:
        raise NotionError(f"Failed to exchange code: {exc}") from exc


def _client(token: str) -> AsyncClient:
    return AsyncClient(auth=token)


async def search_databases(token: str) -> list[dict]:
    """Databases shared with the integration, as [{id, title}]."""
    try:
        result = await _client(token).search(filter={"property": "object", "value": "database"})
    except Exception as exc:
        raise NotionError(f"Notion search failed: {exc}") from exc

    databases = []
    for db in result.get("results", []):
        title = "".join(part.get("plain_text", "") for part in db.get("title", []))
        databases.append({"id": db["id"], "title": title or "Untitled"})
    return databases


def task_properties(task) -> dict:
    """Map a task onto the Name / Description / Due Date / Priority / Status columns."""
    properties: dict = {"Name": {"title": [{"text": {"content": task.title}}]}}
    if task.notes:
        properties["Description"] = {"rich_text": [{"text": {"content": task.notes[:2000]}}]}
    if task.due_date:
        properties["Due Date"] = {"date": {"start": task.due_date}}
    if task.priority:
        properties["Priority"] = {"select": {"name": PRIORITY_LABELS.get(task.priority, "Medium")}}
    properties["Status"] = {"checkbox": task.status == "completed"}
    return properties


async def create_page(token: str, database_id: str, properties: dict) -> str:
    try:
        page = await _client(token).pages.create(
            parent={"database_id": database_id}, properties=properties,
        )
    except Exception as exc:
        raise NotionError(f"Notion page create failed: {exc}") from exc
    return page["id"]


async def update_page(token: str, page_id: str, properties: dict | None = None, archived: bool | None = None) -> None:
    kwargs: dict = {"page_id": page_id}
    if properties is not None:
        kwargs["properties"] = properties
    if archived is not None:
        kwargs["archived"] = archived
    try:
        await _client(token).pages.update(**kwargs)
    except Exception as exc:
        raise NotionError(f"Notion page update failed: {exc}") from exc
