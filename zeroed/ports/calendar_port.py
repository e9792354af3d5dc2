"""Calendar port — abstract interface for mirroring tasks into a calendar.

Core modules depend on this protocol, never on a specific provider.
"""

from __future__ import annotations

from typing import Protocol

from zeroed.data.models import Task


class CalendarError(Exception):
    """Raised when any calendar provider operation fails."""


class CalendarPort(Protocol):
    """Abstract calendar interface used by the task sync."""

    async def list_calendars(self) -> list[dict]: ...

    async def upsert_task_event(self, task: Task, event_id: str | None = None) -> str: ...

    async def delete_event(self, event_id: str) -> None: ...

    async def list_updated_events(self, updated_min: str | None = None) -> list[dict]: ...
