"""
Zeroed — Slack slash command.

/bruh today        today's tasks as Block Kit
/bruh add <text>   add a task due today to the Inbox
/bruh done <text>  complete the first pending task whose title matches
/bruh help         usage

Every reply is ephemeral. Signature verification happens in the HTTP
layer before anything here runs.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING, Mapping

from zeroed.config import settings
from zeroed.data.query import TaskQuery
from zeroed.integrations.slack import format_today_summary

if TYPE_CHECKING:
    from zeroed.core.action_service import ActionService
    from zeroed.data.account_db import IntegrationDB
    from zeroed.data.db import TaskDB

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "• `/bruh today` - See today's tasks\n"
    "• `/bruh add [task]` - Add a new task for today\n"
    "• `/bruh done [task]` - Mark a task as complete\n"
    "• `/bruh help` - Show this help"
)


def ephemeral(text: str | None = None, blocks: list[dict] | None = None) -> dict:
    reply: dict = {"response_type": "ephemeral"}
    if text is not None:
        reply["text"] = text
    if blocks is not None:
        reply["blocks"] = blocks
    return reply


def help_reply() -> dict:
    return ephemeral(blocks=[
        {"type": "section", "text": {"type": "mrkdwn", "text": "*Bruh Commands*"}},
        {"type": "section", "text": {"type": "mrkdwn", "text": HELP_TEXT}},
    ])


def split_command(text: str) -> tuple[str, str]:
    """("today", "") for empty input, else (lower-cased subcommand, rest)."""
    parts = text.strip().split(None, 1)
    if not parts:
        return "today", ""
    return parts[0].lower(), parts[1].strip() if len(parts) > 1 else ""


async def handle_slash_command(
    integration_db: IntegrationDB,
    task_db: TaskDB,
    service: ActionService,
    form: Mapping[str, str],
    today: date | None = None,
) -> dict:
    """Answer one /bruh invocation. Never raises."""
    slack_user_id = form.get("user_id", "")
    integration = integration_db.find_by_setting("slack", "slack_user_id", slack_user_id)
    if integration is None:
        return ephemeral(
            "❌ Your Slack account isn't connected to Bruh. "
            f"Visit {settings.APP_URL}/settings to connect."
        )

    user_id = integration.user_id
    today = today or date.today()
    subcommand, rest = split_command(form.get("text", ""))

    try:
        if subcommand == "add":
            if not rest:
                return ephemeral("Usage: `/bruh add Buy groceries`")
            task = await service.create_task(
                user_id, rest, due_date=today.isoformat(), source="slack",
            )
            return ephemeral(f"✅ Added: *{task.title}*")

        if subcommand == "today":
            tasks = task_db.run_query(
                TaskQuery()
                .eq("user_id", user_id)
                .eq("due_date", today.isoformat())
                .neq("status", "cancelled")
                .order("due_time")
            )
            return ephemeral(blocks=format_today_summary(tasks))

        if subcommand == "done":
            if not rest:
                return ephemeral("Usage: `/bruh done [task name or part of it]`")
            task = task_db.find_open_by_title(user_id, rest)
            if task is None:
                return ephemeral(f'❌ No pending task found matching "{rest}"')
            task = await service.complete_task(user_id, task.id)
            return ephemeral(f"✅ Completed: *{task.title}*")
    except Exception as exc:
        logger.error("Slack command '%s' failed for user %d: %s", subcommand, user_id, exc)
        return ephemeral("❌ Something went wrong. Try again.")

    return help_reply()
