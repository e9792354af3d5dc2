"""Google Calendar task mirror — implements TaskSyncPort, plus the pull side.

Dated tasks are pushed as events; the task id → event id map lives in
the integration settings under "event_mappings". pull_calendar_changes
brings edits made in Google back into tasks and imports new dated events
into the Inbox.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from zeroed.adapters.google_calendar import GoogleCalendarAdapter, event_to_fields
from zeroed.data.db import utc_now
from zeroed.data.query import TaskQuery
from zeroed.integrations import google_auth
from zeroed.integrations.sync_errors import clear_sync_error, record_sync_error
from zeroed.ports.calendar_port import CalendarError

if TYPE_CHECKING:
    from zeroed.data.account_db import IntegrationDB
    from zeroed.data.db import TaskDB
    from zeroed.data.models import Integration, Task
    from zeroed.ports.calendar_port import CalendarPort

logger = logging.getLogger(__name__)

PROVIDER = google_auth.PROVIDER

CalendarFactory = Callable[["IntegrationDB", "Integration"], "CalendarPort"]


def google_calendar_for(db: IntegrationDB, integration: Integration) -> CalendarPort:
    """Build a calendar adapter from the user's stored (and refreshed) credentials."""
    creds = google_auth.get_valid_credentials(db, integration.user_id)
    service = google_auth.build_calendar_service(creds)
    return GoogleCalendarAdapter(service, integration.settings.get("calendar_id") or "primary")


class GoogleCalendarTaskSync:
    """Google Calendar implementation of TaskSyncPort."""

    def __init__(
        self, integration_db: IntegrationDB, calendar_factory: CalendarFactory = google_calendar_for,
    ) -> None:
        self._integrations = integration_db
        self._calendar_for = calendar_factory

    def _active(self, user_id: int) -> Integration | None:
        integration = self._integrations.get_integration(user_id, PROVIDER)
        if integration is None or not integration.access_token or not integration.sync_enabled:
            return None
        return integration

    def _calendar(self, integration: Integration) -> CalendarPort | None:
        try:
            return self._calendar_for(self._integrations, integration)
        except google_auth.GoogleAuthError as exc:
            record_sync_error(self._integrations, integration.user_id, PROVIDER, str(exc), "auth")
            return None

    async def task_saved(self, user_id: int, task: Task) -> None:
        integration = self._active(user_id)
        if integration is None:
            return
        mappings = dict(integration.settings.get("event_mappings", {}))
        event_id = mappings.get(str(task.id))
        if not task.due_date and event_id is None:
            return

        calendar = self._calendar(integration)
        if calendar is None:
            return
        try:
            if task.due_date:
                new_id = await calendar.upsert_task_event(task, event_id)
                if new_id != event_id:
                    mappings[str(task.id)] = new_id
                    self._integrations.merge_settings(user_id, PROVIDER, {"event_mappings": mappings})
            else:
                # date removed: the event goes too
                await calendar.delete_event(event_id)
                mappings.pop(str(task.id), None)
                self._integrations.merge_settings(user_id, PROVIDER, {"event_mappings": mappings})
        except CalendarError as exc:
            record_sync_error(self._integrations, user_id, PROVIDER, str(exc), "push_task")
            return
        clear_sync_error(self._integrations, user_id, PROVIDER)

    async def task_deleted(self, user_id: int, task: Task) -> None:
        integration = self._active(user_id)
        if integration is None:
            return
        mappings = dict(integration.settings.get("event_mappings", {}))
        event_id = mappings.pop(str(task.id), None)
        if event_id is None:
            return

        calendar = self._calendar(integration)
        if calendar is None:
            return
        try:
            await calendar.delete_event(event_id)
        except CalendarError as exc:
            record_sync_error(self._integrations, user_id, PROVIDER, str(exc), "delete_task")
            return
        self._integrations.merge_settings(user_id, PROVIDER, {"event_mappings": mappings})


async def pull_calendar_changes(
    integration_db: IntegrationDB,
    task_db: TaskDB,
    user_id: int,
    calendar_factory: CalendarFactory = google_calendar_for,
) -> dict:
    """Apply Google-side edits to mapped tasks and import new dated events.

    Returns {"updated": n, "created": n}. Writes go straight to the store
    so pulled changes are not pushed back to Google.
    """
    integration = integration_db.get_integration(user_id, PROVIDER)
    if integration is None or not integration.sync_enabled:
        return {"updated": 0, "created": 0}

    try:
        calendar = calendar_factory(integration_db, integration)
        events = await calendar.list_updated_events(integration.last_sync_at)
    except (google_auth.GoogleAuthError, CalendarError) as exc:
        record_sync_error(integration_db, user_id, PROVIDER, str(exc), "pull")
        return {"updated": 0, "created": 0}

    mappings = dict(integration.settings.get("event_mappings", {}))
    task_by_event = {event_id: int(task_id) for task_id, event_id in mappings.items()}
    updated = created = 0
    inbox = None

    for event in events:
        event_id = event.get("id")
        if not event_id or event.get("status") == "cancelled":
            continue
        fields = event_to_fields(event)

        task_id = task_by_event.get(event_id)
        if task_id is not None:
            if task_db.get_task(task_id, user_id) is None:
                continue
            task_db.update_task(task_id, user_id, **fields)
            updated += 1
        elif fields["due_date"]:
            if inbox is None:
                inbox = task_db.get_inbox(user_id)
                if inbox is None:
                    logger.warning("User %d has no Inbox, skipping calendar import", user_id)
                    break
            task = task_db.create_task(user_id=user_id, list_id=inbox.id, source="calendar", **fields)
            mappings[str(task.id)] = event_id
            created += 1

    integration_db.merge_settings(user_id, PROVIDER, {"event_mappings": mappings})
    integration_db.update_integration(user_id, PROVIDER, last_sync_at=utc_now())
    clear_sync_error(integration_db, user_id, PROVIDER)
    logger.info("Calendar pull for user %d: updated %d, created %d", user_id, updated, created)
    return {"updated": updated, "created": created}


async def push_all_tasks(
    integration_db: IntegrationDB, task_db: TaskDB, user_id: int,
    calendar_factory: CalendarFactory = google_calendar_for,
) -> dict:
    """Push every open dated task; returns {"synced": n, "errors": n}."""
    sync = GoogleCalendarTaskSync(integration_db, calendar_factory)
    tasks = task_db.run_query(
        TaskQuery().eq("user_id", user_id).in_("status", ["pending", "in_progress"]).is_not_null("due_date")
    )
    synced = errors = 0
    for task in tasks:
        await sync.task_saved(user_id, task)
        integration = integration_db.get_integration(user_id, PROVIDER)
        if integration is not None and str(task.id) in integration.settings.get("event_mappings", {}):
            synced += 1
        else:
            errors += 1
    return {"synced": synced, "errors": errors}
