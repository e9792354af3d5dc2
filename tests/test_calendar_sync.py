"""Tests for the Google Calendar adapter, the calendar/Notion task mirrors and sync errors.

All Google API calls are mocked. Mirrors get an AsyncMock calendar through
their calendar_factory hook; Notion page calls are patched.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from googleapiclient.errors import HttpError

from zeroed.adapters.calendar_sync import (
    GoogleCalendarTaskSync,
    pull_calendar_changes,
    push_all_tasks,
)
from zeroed.adapters.google_calendar import GoogleCalendarAdapter, event_to_fields, task_to_event
from zeroed.adapters.notion_sync import NotionTaskSync
from zeroed.integrations import google_auth
from zeroed.integrations.notion import NotionError, task_properties
from zeroed.integrations.sync_errors import SYNC_ERROR_KEY, integration_health
from zeroed.ports.calendar_port import CalendarError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _mock_service(insert_id="evt_1", items=None):
    """Create a mock Google Calendar service."""
    service = MagicMock()
    events = MagicMock()
    service.events.return_value = events
    events.insert.return_value.execute.return_value = {"id": insert_id}
    events.patch.return_value.execute.return_value = {"id": insert_id}
    events.list.return_value.execute.return_value = {"items": items or []}
    return service


def _factory(calendar):
    return lambda db, integration: calendar


@pytest.fixture
def calendar():
    mock = MagicMock()
    mock.upsert_task_event = AsyncMock(return_value="evt_1")
    mock.delete_event = AsyncMock()
    mock.list_updated_events = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def google_user(integration_db, user):
    integration_db.upsert_integration(
        user.id, "google_calendar", "ya29.token", "refresh",
        settings={"calendar_id": "primary", "event_mappings": {}},
    )
    return user


# ---------------------------------------------------------------------------
# Event mapping
# ---------------------------------------------------------------------------


class TestEventMapping:
    def test_timed_task(self, task_db, user, inbox):
        task = task_db.create_task(
            user.id, inbox.id, "Dentist", due_date="2025-02-14", due_time="14:00",
            estimated_minutes=45, notes="Bring card",
        )
        body = task_to_event(task)
        assert body["summary"] == "Dentist"
        assert body["description"] == "Bring card"
        assert body["start"]["dateTime"] == "2025-02-14T14:00:00"
        assert body["end"]["dateTime"] == "2025-02-14T14:45:00"

    def test_all_day_end_is_exclusive(self, task_db, user, inbox):
        task = task_db.create_task(user.id, inbox.id, "Birthday", due_date="2025-02-28")
        body = task_to_event(task)
        assert body["start"] == {"date": "2025-02-28"}
        assert body["end"] == {"date": "2025-03-01"}

    def test_undated_task_rejected(self, task_db, user, inbox):
        with pytest.raises(CalendarError):
            task_to_event(task_db.create_task(user.id, inbox.id, "Someday"))

    def test_event_to_fields(self):
        timed = event_to_fields({"summary": "Call", "start": {"dateTime": "2025-02-14T09:30:00Z"}})
        assert (timed["due_date"], timed["due_time"]) == ("2025-02-14", "09:30")
        all_day = event_to_fields({"start": {"date": "2025-02-15"}})
        assert all_day == {"title": "Untitled", "notes": None, "due_date": "2025-02-15", "due_time": None}


class TestGoogleCalendarAdapter:
    @pytest.mark.asyncio
    async def test_insert_then_patch(self, task_db, user, inbox):
        service = _mock_service()
        adapter = GoogleCalendarAdapter(service, "work")
        task = task_db.create_task(user.id, inbox.id, "Standup", due_date="2025-02-14")

        assert await adapter.upsert_task_event(task) == "evt_1"
        service.events.return_value.insert.assert_called_once()
        assert service.events.return_value.insert.call_args.kwargs["calendarId"] == "work"

        await adapter.upsert_task_event(task, "evt_1")
        assert service.events.return_value.patch.call_args.kwargs["eventId"] == "evt_1"

    @pytest.mark.asyncio
    async def test_api_failure_becomes_calendar_error(self, task_db, user, inbox):
        service = _mock_service()
        service.events.return_value.insert.return_value.execute.side_effect = RuntimeError("quota")
        task = task_db.create_task(user.id, inbox.id, "Standup", due_date="2025-02-14")
        with pytest.raises(CalendarError, match="quota"):
            await GoogleCalendarAdapter(service).upsert_task_event(task)

    @pytest.mark.asyncio
    async def test_delete_of_missing_event_is_fine(self):
        service = _mock_service()
        gone = HttpError(MagicMock(status=410, reason="Gone"), b"")
        service.events.return_value.delete.return_value.execute.side_effect = gone
        await GoogleCalendarAdapter(service).delete_event("evt_1")

    @pytest.mark.asyncio
    async def test_list_updated_events_passes_cursor(self):
        service = _mock_service(items=[{"id": "e"}])
        events = await GoogleCalendarAdapter(service).list_updated_events("2025-02-01T00:00:00Z")
        assert events == [{"id": "e"}]
        assert service.events.return_value.list.call_args.kwargs["updatedMin"] == "2025-02-01T00:00:00Z"


# ---------------------------------------------------------------------------
# Calendar mirror
# ---------------------------------------------------------------------------


class TestGoogleCalendarTaskSync:
    @pytest.mark.asyncio
    async def test_dated_task_is_pushed_and_mapped(self, integration_db, task_db, google_user, inbox, calendar):
        task = task_db.create_task(google_user.id, inbox.id, "Dentist", due_date="2025-02-14")
        await GoogleCalendarTaskSync(integration_db, _factory(calendar)).task_saved(google_user.id, task)

        mappings = integration_db.get_integration(google_user.id, "google_calendar").settings["event_mappings"]
        assert mappings == {str(task.id): "evt_1"}

    @pytest.mark.asyncio
    async def test_undated_unmapped_task_is_skipped(self, integration_db, task_db, google_user, inbox, calendar):
        task = task_db.create_task(google_user.id, inbox.id, "Someday")
        await GoogleCalendarTaskSync(integration_db, _factory(calendar)).task_saved(google_user.id, task)
        calendar.upsert_task_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_removing_date_deletes_event(self, integration_db, task_db, google_user, inbox, calendar):
        task = task_db.create_task(google_user.id, inbox.id, "Was dated")
        integration_db.merge_settings(google_user.id, "google_calendar", {"event_mappings": {str(task.id): "evt_9"}})

        await GoogleCalendarTaskSync(integration_db, _factory(calendar)).task_saved(google_user.id, task)

        calendar.delete_event.assert_awaited_once_with("evt_9")
        assert integration_db.get_integration(google_user.id, "google_calendar").settings["event_mappings"] == {}

    @pytest.mark.asyncio
    async def test_failure_is_recorded_not_raised(self, integration_db, task_db, google_user, inbox, calendar):
        calendar.upsert_task_event.side_effect = CalendarError("quota exceeded")
        task = task_db.create_task(google_user.id, inbox.id, "Dentist", due_date="2025-02-14")

        await GoogleCalendarTaskSync(integration_db, _factory(calendar)).task_saved(google_user.id, task)

        health = integration_health(integration_db, google_user.id)[0]
        assert not health["healthy"]
        assert health["last_error"]["message"] == "quota exceeded"
        assert health["last_error"]["operation"] == "push_task"

    @pytest.mark.asyncio
    async def test_success_clears_previous_error(self, integration_db, task_db, google_user, inbox, calendar):
        integration_db.merge_settings(google_user.id, "google_calendar", {SYNC_ERROR_KEY: {"message": "old"}})
        task = task_db.create_task(google_user.id, inbox.id, "Dentist", due_date="2025-02-14")

        await GoogleCalendarTaskSync(integration_db, _factory(calendar)).task_saved(google_user.id, task)

        assert integration_health(integration_db, google_user.id)[0]["healthy"]

    @pytest.mark.asyncio
    async def test_auth_failure_recorded(self, integration_db, task_db, google_user, inbox):
        def broken(db, integration):
            raise google_auth.GoogleAuthError("refresh token revoked")

        task = task_db.create_task(google_user.id, inbox.id, "Dentist", due_date="2025-02-14")
        await GoogleCalendarTaskSync(integration_db, broken).task_saved(google_user.id, task)

        error = integration_db.get_integration(google_user.id, "google_calendar").settings[SYNC_ERROR_KEY]
        assert error["operation"] == "auth"

    @pytest.mark.asyncio
    async def test_deleted_task_removes_event(self, integration_db, task_db, google_user, inbox, calendar):
        task = task_db.create_task(google_user.id, inbox.id, "Dentist", due_date="2025-02-14")
        integration_db.merge_settings(google_user.id, "google_calendar", {"event_mappings": {str(task.id): "evt_3"}})

        await GoogleCalendarTaskSync(integration_db, _factory(calendar)).task_deleted(google_user.id, task)

        calendar.delete_event.assert_awaited_once_with("evt_3")

    @pytest.mark.asyncio
    async def test_no_integration_is_a_no_op(self, integration_db, task_db, user, inbox, calendar):
        task = task_db.create_task(user.id, inbox.id, "Dentist", due_date="2025-02-14")
        await GoogleCalendarTaskSync(integration_db, _factory(calendar)).task_saved(user.id, task)
        calendar.upsert_task_event.assert_not_awaited()


class TestPullAndPush:
    @pytest.mark.asyncio
    async def test_pull_updates_mapped_and_imports_new(self, integration_db, task_db, google_user, inbox, calendar):
        mapped = task_db.create_task(google_user.id, inbox.id, "Old title", due_date="2025-02-14")
        integration_db.merge_settings(
            google_user.id, "google_calendar", {"event_mappings": {str(mapped.id): "evt_a"}},
        )
        calendar.list_updated_events.return_value = [
            {"id": "evt_a", "summary": "New title", "start": {"date": "2025-02-15"}},
            {"id": "evt_b", "summary": "Team lunch", "start": {"dateTime": "2025-02-16T12:00:00"}},
            {"id": "evt_c", "status": "cancelled", "summary": "Nope"},
        ]

        result = await pull_calendar_changes(integration_db, task_db, google_user.id, _factory(calendar))

        assert result == {"updated": 1, "created": 1}
        refreshed = task_db.get_task(mapped.id)
        assert (refreshed.title, refreshed.due_date) == ("New title", "2025-02-15")
        imported = task_db.find_open_by_title(google_user.id, "Team lunch")
        assert imported.source == "calendar"
        assert imported.due_time == "12:00"

        integration = integration_db.get_integration(google_user.id, "google_calendar")
        assert integration.settings["event_mappings"][str(imported.id)] == "evt_b"
        assert integration.last_sync_at

    @pytest.mark.asyncio
    async def test_pull_does_not_touch_calendar_writes(self, integration_db, task_db, google_user, calendar):
        await pull_calendar_changes(integration_db, task_db, google_user.id, _factory(calendar))
        calendar.upsert_task_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pull_failure_recorded(self, integration_db, task_db, google_user, calendar):
        calendar.list_updated_events.side_effect = CalendarError("boom")
        result = await pull_calendar_changes(integration_db, task_db, google_user.id, _factory(calendar))
        assert result == {"updated": 0, "created": 0}
        assert integration_health(integration_db, google_user.id)[0]["last_error"]["operation"] == "pull"

    @pytest.mark.asyncio
    async def test_push_all_counts(self, integration_db, task_db, google_user, inbox, calendar):
        task_db.create_task(google_user.id, inbox.id, "A", due_date="2025-02-14")
        task_db.create_task(google_user.id, inbox.id, "B", due_date="2025-02-15")
        task_db.create_task(google_user.id, inbox.id, "Undated")
        calendar.upsert_task_event.side_effect = ["evt_1", CalendarError("nope")]

        result = await push_all_tasks(integration_db, task_db, google_user.id, _factory(calendar))

        assert result == {"synced": 1, "errors": 1}


# ---------------------------------------------------------------------------
# Notion mirror
# ---------------------------------------------------------------------------


@pytest.fixture
def notion_user(integration_db, user):
    integration_db.upsert_integration(
        user.id, "notion", "secret_token", settings={"database_id": "db_1", "task_mappings": {}},
    )
    return user


class TestNotionTaskSync:
    def test_task_properties(self, task_db, user, inbox):
        task = task_db.create_task(user.id, inbox.id, "Ship", priority="urgent", due_date="2025-02-14")
        props = task_properties(task)
        assert props["Name"]["title"][0]["text"]["content"] == "Ship"
        assert props["Priority"] == {"select": {"name": "Urgent"}}
        assert props["Status"] == {"checkbox": False}
        assert "Description" not in props

    @pytest.mark.asyncio
    async def test_create_then_update(self, integration_db, task_db, notion_user, inbox):
        task = task_db.create_task(notion_user.id, inbox.id, "Ship")
        sync = NotionTaskSync(integration_db)
        with patch("zeroed.adapters.notion_sync.notion.create_page", AsyncMock(return_value="page_1")) as create, \
                patch("zeroed.adapters.notion_sync.notion.update_page", AsyncMock()) as update:
            await sync.task_saved(notion_user.id, task)
            await sync.task_saved(notion_user.id, task)

        create.assert_awaited_once()
        assert create.await_args.args[1] == "db_1"
        assert update.await_args.args[1] == "page_1"
        integration = integration_db.get_integration(notion_user.id, "notion")
        assert integration.settings["task_mappings"] == {str(task.id): "page_1"}

    @pytest.mark.asyncio
    async def test_auto_sync_off(self, integration_db, task_db, notion_user, inbox):
        integration_db.merge_settings(notion_user.id, "notion", {"auto_sync": False})
        task = task_db.create_task(notion_user.id, inbox.id, "Ship")
        with patch("zeroed.adapters.notion_sync.notion.create_page", AsyncMock()) as create:
            await NotionTaskSync(integration_db).task_saved(notion_user.id, task)
        create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_archives_page(self, integration_db, task_db, notion_user, inbox):
        task = task_db.create_task(notion_user.id, inbox.id, "Ship")
        integration_db.merge_settings(notion_user.id, "notion", {"task_mappings": {str(task.id): "page_1"}})
        with patch("zeroed.adapters.notion_sync.notion.update_page", AsyncMock()) as update:
            await NotionTaskSync(integration_db).task_deleted(notion_user.id, task)
        assert update.await_args.kwargs == {"archived": True}
        assert integration_db.get_integration(notion_user.id, "notion").settings["task_mappings"] == {}

    @pytest.mark.asyncio
    async def test_notion_error_recorded(self, integration_db, task_db, notion_user, inbox):
        task = task_db.create_task(notion_user.id, inbox.id, "Ship")
        failing = AsyncMock(side_effect=NotionError("database not shared"))
        with patch("zeroed.adapters.notion_sync.notion.create_page", failing):
            await NotionTaskSync(integration_db).task_saved(notion_user.id, task)
        error = integration_db.get_integration(notion_user.id, "notion").settings[SYNC_ERROR_KEY]
        assert error["message"] == "database not shared"
