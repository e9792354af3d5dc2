"""
Zeroed — Inbound channels.

Email-to-task: mail sent to task+<id>@... or <id>@task.<domain> becomes a
task in the addressee's Inbox. Providers post JSON, multipart or
url-encoded bodies with slightly different field names; the HTTP layer
hands over whichever mapping it decoded and this module normalises it.

Automation webhook: API-key authenticated create/update/complete/delete
actions for tools like Zapier, Make or n8n.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Mapping

from pydantic import BaseModel, Field

from zeroed.core.errors import NotFoundError, TaskError
from zeroed.core.task_parser import parse_task_input

if TYPE_CHECKING:
    from zeroed.core.action_service import ActionService
    from zeroed.data.db import TaskDB, UserDB
    from zeroed.data.models import Task

logger = logging.getLogger(__name__)

EMAIL_NOTES_LIMIT = 5000
EMAIL_DEFAULT_ESTIMATE = 30
_ADDRESS_PATTERNS = (
    re.compile(r"task\+([a-z0-9]+)@"),
    re.compile(r"([a-z0-9]+)@task\."),
)


# ---------------------------------------------------------------------------
# Email-to-task
# ---------------------------------------------------------------------------


class InboundEmail(BaseModel):
    from_address: str = Field(default="", alias="from")
    to: str = ""
    subject: str = ""
    text: str = ""
    html: str = ""

    model_config = {"populate_by_name": True}


def _first(fields: Mapping[str, Any], *names: str) -> str:
    for name in names:
        value = fields.get(name)
        if value:
            return str(value)
    return ""


def email_from_fields(fields: Mapping[str, Any]) -> InboundEmail:
    """Normalise a decoded form or JSON body (SendGrid, Mailgun, Postmark names)."""
    return InboundEmail(
        from_address=_first(fields, "from", "sender"),
        to=_first(fields, "to", "recipient"),
        subject=_first(fields, "subject"),
        text=_first(fields, "text", "body-plain"),
        html=_first(fields, "html", "body-html"),
    )


def extract_email_task_id(to_address: str) -> str | None:
    address = to_address.lower()
    for pattern in _ADDRESS_PATTERNS:
        match = pattern.search(address)
        if match:
            return match.group(1)
    return None


async def create_task_from_email(
    user_db: UserDB,
    task_db: TaskDB,
    service: ActionService,
    email: InboundEmail,
) -> Task:
    """Create an Inbox task from an inbound email.

    Raises TaskError for an address that is not a task address and
    NotFoundError when no user owns the address token.
    """
    token = extract_email_task_id(email.to)
    if token is None:
        logger.info("Inbound email to non-task address %s", email.to)
        raise TaskError("Invalid address")

    user = user_db.get_by_email_task_id(token)
    if user is None:
        logger.info("No user for email task id %s", token)
        raise NotFoundError("User not found")

    subject = email.subject or "Email task"
    parsed = parse_task_input(subject)
    inbox = service.resolve_list(user.id)

    task = await service.create_task(
        user.id,
        parsed.title or subject,
        list_id=inbox.id,
        tags=parsed.tags,
        source="email",
        notes=email.text[:EMAIL_NOTES_LIMIT] or None,
        priority=parsed.priority or "normal",
        due_date=parsed.due_date,
        due_time=parsed.due_time,
        estimated_minutes=parsed.estimated_minutes or EMAIL_DEFAULT_ESTIMATE,
    )
    task_db.log_email_task(user.id, task.id, email.from_address, email.subject)
    logger.info("Email task #%d created for user %d", task.id, user.id)
    return task


# ---------------------------------------------------------------------------
# Automation webhook
# ---------------------------------------------------------------------------

INCOMING_ACTIONS = ("create_task", "update_task", "complete_task", "delete_task")
_UPDATABLE = ("title", "notes", "due_date", "due_time", "priority")


class IncomingWebhookPayload(BaseModel):
    action: str
    data: dict[str, Any]


def _summary(task: Task) -> dict:
    return {
        "id": task.id,
        "title": task.title,
        "status": task.status,
        "priority": task.priority,
        "due_date": task.due_date,
    }


def _task_id(data: dict[str, Any]) -> int:
    task_id = data.get("task_id")
    if task_id is None:
        raise TaskError("Missing required field: task_id")
    try:
        return int(task_id)
    except (TypeError, ValueError):
        raise TaskError("task_id must be an integer") from None


async def handle_incoming_action(
    service: ActionService, task_db: TaskDB, user_id: int, payload: IncomingWebhookPayload,
) -> dict:
    """Run one automation action for user_id and return the JSON response body."""
    data = payload.data

    if payload.action == "create_task":
        if not data.get("title"):
            raise TaskError("Missing required field: title")
        list_name = data.get("list_name")
        if list_name:
            task_list = task_db.find_list_by_name(user_id, list_name)
            if task_list is None:
                raise NotFoundError(f'List "{list_name}" not found')
        else:
            task_list = service.resolve_list(user_id)
        task = await service.create_task(
            user_id,
            data["title"],
            list_id=task_list.id,
            tags=data.get("tags") or None,
            source="webhook",
            notes=data.get("notes"),
            due_date=data.get("due_date"),
            due_time=data.get("due_time"),
            priority=data.get("priority") or "normal",
        )
        return {"success": True, "task": _summary(task)}

    if payload.action == "update_task":
        task_id = _task_id(data)
        # an empty title or priority leaves the field unchanged
        changes = {
            k: data[k] for k in _UPDATABLE
            if k in data and (data[k] or k not in ("title", "priority"))
        }
        task = await service.update_task(user_id, task_id, **changes)
        return {"success": True, "task": _summary(task)}

    if payload.action == "complete_task":
        task = await service.complete_task(user_id, _task_id(data))
        return {
            "success": True,
            "task": {
                "id": task.id, "title": task.title, "status": task.status,
                "completed_at": task.completed_at,
            },
        }

    if payload.action == "delete_task":
        await service.delete_task(user_id, _task_id(data))
        return {"success": True, "message": "Task deleted"}

    raise TaskError(
        f"Unknown action: {payload.action}. Valid actions: {', '.join(INCOMING_ACTIONS)}"
    )


INCOMING_WEBHOOK_DOCS = {
    "name": "Bruh Incoming Webhook API",
    "version": "1.0",
    "description": "Receive events from external services like Zapier, Make, n8n",
    "authentication": "Bearer token (API key) in Authorization header",
    "endpoints": {
        "POST /api/webhooks/incoming": {
            "description": "Process incoming webhook events",
            "actions": {
                "create_task": {
                    "description": "Create a new task",
                    "required": ["title"],
                    "optional": ["notes", "due_date", "due_time", "priority", "list_name", "tags"],
                },
                "update_task": {
                    "description": "Update an existing task",
                    "required": ["task_id"],
                    "optional": list(_UPDATABLE),
                },
                "complete_task": {"description": "Mark a task as complete", "required": ["task_id"]},
                "delete_task": {"description": "Delete a task", "required": ["task_id"]},
            },
            "example": {
                "action": "create_task",
                "data": {
                    "title": "Review Q4 report",
                    "notes": "Check the financials section",
                    "due_date": "2024-01-15",
                    "priority": "high",
                    "list_name": "Work",
                    "tags": ["review", "quarterly"],
                },
            },
        },
    },
}
