"""Tests for zeroed.core.scheduler — cron jobs.

The notifier and mailer are AsyncMocks standing in for NotificationPort
and EmailPort; stores are real temp-file SQLite.
"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from zeroed.core import scheduler
from zeroed.core.platform_settings import set_setting

NOW = datetime(2025, 2, 12, 9, 2)  # Wednesday, inside the reminder window


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.send_message = AsyncMock()
    return mock


@pytest.fixture
def mailer():
    mock = MagicMock()
    mock.send_email = AsyncMock()
    return mock


@pytest.fixture
def slack_user(integration_db, user):
    integration_db.upsert_integration(user.id, "slack", "xoxb", settings={"slack_user_id": "U1"})
    return user


class TestHelpers:
    def test_overdue_line_pluralises(self, task_db, user, inbox):
        one = task_db.create_task(user.id, inbox.id, "A", due_date="2025-02-11")
        many = task_db.create_task(user.id, inbox.id, "B", due_date="2025-02-09")
        today = NOW.date()
        assert scheduler.format_overdue_line(one, today) == "• A (1 day overdue)"
        assert scheduler.format_overdue_line(many, today) == "• B (3 days overdue)"

    def test_current_streak_may_end_yesterday(self):
        today = NOW.date()
        days = {"2025-02-11", "2025-02-10", "2025-02-08"}
        assert scheduler._current_streak(days, today) == 2
        assert scheduler._current_streak(days | {"2025-02-12"}, today) == 3
        assert scheduler._current_streak(set(), today) == 0


class TestOverdueAlerts:
    @pytest.mark.asyncio
    async def test_only_open_overdue_top_level_tasks(
        self, task_db, integration_db, notifier, slack_user, inbox,
    ):
        task_db.create_task(slack_user.id, inbox.id, "Late", due_date="2025-02-10")
        task_db.create_task(slack_user.id, inbox.id, "Done", due_date="2025-02-10", status="completed")
        task_db.create_task(slack_user.id, inbox.id, "Today", due_date="2025-02-12")

        result = await scheduler.send_overdue_alerts(task_db, integration_db, notifier, now=NOW)

        assert result == {"sent": 1, "errors": []}
        text = notifier.send_message.await_args.args[1]
        assert text.startswith("You have 1 overdue task:")
        assert "Late (2 days overdue)" in text
        assert "Done" not in text

    @pytest.mark.asyncio
    async def test_nothing_overdue_sends_nothing(self, task_db, integration_db, notifier, slack_user):
        result = await scheduler.send_overdue_alerts(task_db, integration_db, notifier, now=NOW)
        assert result == {"sent": 0, "errors": []}
        notifier.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_caps_at_ten(self, task_db, integration_db, notifier, slack_user, inbox):
        for i in range(12):
            task_db.create_task(slack_user.id, inbox.id, f"Late {i}", due_date="2025-02-01")
        await scheduler.send_overdue_alerts(task_db, integration_db, notifier, now=NOW)
        text = notifier.send_message.await_args.args[1]
        assert text.count("•") == scheduler.OVERDUE_ALERT_LIMIT

    @pytest.mark.asyncio
    async def test_delivery_errors_are_collected(
        self, task_db, integration_db, notifier, slack_user, inbox,
    ):
        task_db.create_task(slack_user.id, inbox.id, "Late", due_date="2025-02-10")
        notifier.send_message.side_effect = RuntimeError("slack down")
        result = await scheduler.send_overdue_alerts(task_db, integration_db, notifier, now=NOW)
        assert result["sent"] == 0
        assert result["errors"] == [f"user {slack_user.id}: slack down"]


class TestTaskReminders:
    @pytest.mark.asyncio
    async def test_reminds_for_current_hour(self, task_db, integration_db, notifier, slack_user, inbox):
        task_db.create_task(slack_user.id, inbox.id, "Standup", due_date="2025-02-12", due_time="09:30")
        task_db.create_task(slack_user.id, inbox.id, "Lunch", due_date="2025-02-12", due_time="12:00")

        result = await scheduler.send_task_reminders(task_db, integration_db, notifier, now=NOW)

        assert result["sent"] == 1
        assert "*Standup* is due at 09:30" in notifier.send_message.await_args.args[1]

    @pytest.mark.asyncio
    async def test_outside_window_is_a_no_op(self, task_db, integration_db, notifier, slack_user, inbox):
        task_db.create_task(slack_user.id, inbox.id, "Standup", due_date="2025-02-12", due_time="09:30")
        late = NOW.replace(minute=20)
        assert await scheduler.send_task_reminders(task_db, integration_db, notifier, now=late) == {
            "sent": 0, "errors": [],
        }
        notifier.send_message.assert_not_awaited()


class TestDailySummary:
    @pytest.fixture
    def summary_user(self, integration_db, user):
        integration_db.upsert_integration(
            user.id, "slack", "xoxb", settings={"slack_user_id": "U1", "notify_daily_summary": True},
        )
        return user

    @pytest.mark.asyncio
    async def test_lists_todays_tasks_with_progress(
        self, user_db, task_db, integration_db, notifier, summary_user, inbox,
    ):
        task_db.create_task(summary_user.id, inbox.id, "Standup", due_date="2025-02-12", due_time="09:30")
        task_db.create_task(summary_user.id, inbox.id, "Email Sam", due_date="2025-02-12", status="completed")
        task_db.create_task(summary_user.id, inbox.id, "Skipped", due_date="2025-02-12", status="cancelled")
        task_db.create_task(summary_user.id, inbox.id, "Tomorrow", due_date="2025-02-13")

        result = await scheduler.send_daily_summaries(user_db, task_db, integration_db, notifier, now=NOW)

        assert result == {"sent": 1, "errors": []}
        user_id, text, blocks = notifier.send_message.await_args.args
        assert user_id == summary_user.id
        assert text == "Good morning Dana! Here's your task summary for today."
        lines = [b["text"]["text"] for b in blocks]
        assert lines == [
            "📋 *Today's Tasks* (1/2 done)",
            "⬜ Standup _(09:30)_",
            "✅ Email Sam",
        ]

    @pytest.mark.asyncio
    async def test_empty_day(self, user_db, task_db, integration_db, notifier, summary_user):
        await scheduler.send_daily_summaries(user_db, task_db, integration_db, notifier, now=NOW)
        blocks = notifier.send_message.await_args.args[2]
        assert blocks[0]["text"]["text"].startswith("🎉 *No tasks for today!*")

    @pytest.mark.asyncio
    async def test_only_opted_in_connections(self, user_db, task_db, integration_db, notifier, slack_user):
        result = await scheduler.send_daily_summaries(user_db, task_db, integration_db, notifier, now=NOW)
        assert result == {"sent": 0, "errors": []}
        notifier.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_greeting_without_name(self, user_db, task_db, integration_db, notifier):
        anon = user_db.create_user("anon@example.com")
        integration_db.upsert_integration(anon.id, "slack", "xoxb", settings={"notify_daily_summary": True})
        await scheduler.send_daily_summaries(user_db, task_db, integration_db, notifier, now=NOW)
        assert notifier.send_message.await_args.args[1] == "Good morning! Here's your task summary for today."

    @pytest.mark.asyncio
    async def test_delivery_errors_are_collected(
        self, user_db, task_db, integration_db, notifier, summary_user,
    ):
        notifier.send_message.side_effect = RuntimeError("slack down")
        result = await scheduler.send_daily_summaries(user_db, task_db, integration_db, notifier, now=NOW)
        assert result == {"sent": 0, "errors": [f"user {summary_user.id}: slack down"]}


class TestEmailJobs:
    @pytest.mark.asyncio
    async def test_daily_digest_to_opted_in_users(
        self, user_db, task_db, platform_db, mailer, user, inbox,
    ):
        user_db.update_preferences(user.id, daily_digest_enabled=True)
        user_db.create_user("quiet@example.com")
        task_db.create_task(user.id, inbox.id, "Pay rent", due_date="2025-02-12", due_time="10:00")

        result = await scheduler.send_daily_digests(user_db, task_db, platform_db, mailer, now=NOW)

        assert result == {"sent": 1, "errors": []}
        to, subject, html = mailer.send_email.await_args.args
        assert to == "dana@example.com"
        assert subject == "Good morning, Dana - Your Bruh Daily Digest"
        assert "Pay rent at 10:00" in html

    @pytest.mark.asyncio
    async def test_disabled_platform_wide(self, user_db, task_db, platform_db, mailer, user):
        user_db.update_preferences(user.id, daily_digest_enabled=True, weekly_summary_enabled=True)
        set_setting(platform_db, "email_notifications", False)

        assert (await scheduler.send_daily_digests(user_db, task_db, platform_db, mailer, now=NOW))["sent"] == 0
        assert (await scheduler.send_weekly_summaries(user_db, task_db, platform_db, mailer, now=NOW))["sent"] == 0
        mailer.send_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_weekly_summary_totals(self, user_db, task_db, platform_db, mailer, user):
        user_db.update_preferences(user.id, weekly_summary_enabled=True)
        task_db.increment_daily_stat(user.id, "2025-02-10", "tasks_completed", 4)
        task_db.increment_daily_stat(user.id, "2025-02-11", "tasks_completed", 1)
        task_db.increment_daily_stat(user.id, "2025-02-11", "focus_minutes", 120)

        result = await scheduler.send_weekly_summaries(user_db, task_db, platform_db, mailer, now=NOW)

        assert result["sent"] == 1
        subject, html = mailer.send_email.await_args.args[1:]
        assert subject == "Your Weekly Bruh Summary"
        assert "<strong>5</strong> tasks done" in html
        assert "<strong>2h</strong> focus time" in html
        assert "<strong>2</strong> day streak" in html
        assert "<strong>Monday</strong>" in html
