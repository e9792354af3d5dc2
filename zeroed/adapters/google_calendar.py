"""Google Calendar adapter — implements CalendarPort for Google Calendar API.

All Google-specific logic lives here. Core modules never import this directly;
they depend on the CalendarPort protocol.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone

from googleapiclient.errors import HttpError

from zeroed.config import settings
from zeroed.data.models import Task
from zeroed.ports.calendar_port import CalendarError

logger = logging.getLogger(__name__)

DEFAULT_EVENT_MINUTES = 30


def task_to_event(task: Task) -> dict:
    """Timed event when the task has a due time, otherwise an all-day event."""
    if not task.due_date:
        raise CalendarError("Task must have a due date to create a calendar event")

    body: dict = {"summary": task.title}
    if task.notes:
        body["description"] = task.notes

    if task.due_time:
        start_dt = datetime.strptime(f"{task.due_date} {task.due_time}", "%Y-%m-%d %H:%M")
        end_dt = start_dt + timedelta(minutes=task.estimated_minutes or DEFAULT_EVENT_MINUTES)
        body["start"] = {"dateTime": start_dt.isoformat(), "timeZone": settings.TIMEZONE}
        body["end"] = {"dateTime": end_dt.isoformat(), "timeZone": settings.TIMEZONE}
    else:
        # all-day end dates are exclusive
        end_day = date.fromisoformat(task.due_date) + timedelta(days=1)
        body["start"] = {"date": task.due_date}
        body["end"] = {"date": end_day.isoformat()}
    return body


def event_to_fields(event: dict) -> dict:
    """Task fields (title, notes, due_date, due_time) carried by a Google event."""
    start = event.get("start", {})
    due_date = due_time = None
    if start.get("date"):
        due_date = start["date"]
    elif start.get("dateTime"):
        dt = datetime.fromisoformat(start["dateTime"].replace("Z", "+00:00"))
        due_date, due_time = dt.date().isoformat(), dt.strftime("%H:%M")
    return {
        "title": event.get("summary") or "Untitled",
        "notes": event.get("description"),
        "due_date": due_date,
        "due_time": due_time,
    }


class GoogleCalendarAdapter:
    """Google Calendar implementation of CalendarPort."""

    def __init__(self, service, calendar_id: str = "primary") -> None:
        self._service = service
        self._calendar_id = calendar_id

    async def list_calendars(self) -> list[dict]:
        try:
            result = self._service.calendarList().list().execute()
        except Exception as exc:
            logger.error("Failed to list calendars: %s", exc)
            raise CalendarError(f"Failed to list calendars: {exc}") from exc
        return [
            {
                "id": item["id"],
                "summary": item.get("summary", ""),
                "primary": item.get("primary", False),
                "background_color": item.get("backgroundColor"),
            }
            for item in result.get("items", [])
        ]

    async def upsert_task_event(self, task: Task, event_id: str | None = None) -> str:
        body = task_to_event(task)
        events = self._service.events()
        try:
            if event_id:
                updated = events.patch(
                    calendarId=self._calendar_id, eventId=event_id, body=body,
                ).execute()
                logger.info("Event %s updated for task #%d", event_id, task.id)
                return updated.get("id", event_id)
            created = events.insert(calendarId=self._calendar_id, body=body).execute()
            logger.info("Event created for task #%d: %s", task.id, created.get("htmlLink", ""))
            return created["id"]
        except Exception as exc:
            logger.error("Google Calendar API error for task #%d: %s", task.id, exc)
            raise CalendarError(f"Failed to save event: {exc}") from exc

    async def delete_event(self, event_id: str) -> None:
        try:
            self._service.events().delete(
                calendarId=self._calendar_id, eventId=event_id,
            ).execute()
            logger.info("Event with ID %s deleted successfully.", event_id)
        except HttpError as exc:
            if exc.resp.status in (404, 410):
                logger.info("Event %s already gone", event_id)
                return
            logger.error("Failed to delete event with ID %s: %s", event_id, exc)
            raise CalendarError(f"Failed to delete event: {exc}") from exc
        except Exception as exc:
            logger.error("Failed to delete event with ID %s: %s", event_id, exc)
            raise CalendarError(f"Failed to delete event: {exc}") from exc

    async def list_updated_events(self, updated_min: str | None = None) -> list[dict]:
        """Events changed since updated_min, from a week ago to a month ahead."""
        now = datetime.now(timezone.utc)
        params = {
            "calendarId": self._calendar_id,
            "singleEvents": True,
            "orderBy": "updated",
            "maxResults": 100,
            "timeMin": (now - timedelta(days=7)).isoformat(timespec="seconds"),
            "timeMax": (now + timedelta(days=30)).isoformat(timespec="seconds"),
        }
        if updated_min:
            params["updatedMin"] = updated_min
        try:
            result = self._service.events().list(**params).execute()
        except Exception as exc:
            logger.error("Failed to list updated events: %s", exc)
            raise CalendarError(f"Failed to list events: {exc}") from exc
        return result.get("items", [])
