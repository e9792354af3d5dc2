"""
Zeroed — Cron Jobs.

Overdue alerts: a Slack DM listing up to ten overdue tasks.

Daily summary: today's tasks as Slack blocks, for connections with
notify_daily_summary switched on.

Task reminders: a Slack DM for tasks due within the current hour, sent
only during the first five minutes of the hour so an hourly cron fires
each reminder once.

Daily digest / weekly summary: emails to users who opted in, gated by
the email_notifications platform setting.

Delivery is provider-agnostic: jobs depend on the NotificationPort and
EmailPort protocols, not on Slack or Resend; only the summary blocks come
from the Slack formatter. Every job processes users one at a time, records
per-user errors and keeps going; the result is always
{"sent": int, "errors": list[str]}.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from zeroed.config import settings
from zeroed.core.platform_settings import get_setting
from zeroed.data.query import TaskQuery
from zeroed.integrations import email_templates
from zeroed.integrations.slack import format_today_summary

if TYPE_CHECKING:
    from zeroed.data.account_db import IntegrationDB, PlatformSettingsDB
    from zeroed.data.db import TaskDB, UserDB
    from zeroed.data.models import Task
    from zeroed.ports.notification_port import EmailPort, NotificationPort

logger = logging.getLogger(__name__)

OVERDUE_ALERT_LIMIT = 10
REMINDER_WINDOW_MINUTES = 5
_OPEN_STATUSES = ("pending", "in_progress")


def _local_now(now: datetime | None) -> datetime:
    return now or datetime.now(ZoneInfo(settings.TIMEZONE))


def _result(sent: int, errors: list[str]) -> dict:
    return {"sent": sent, "errors": errors}


def _open_tasks(user_id: int) -> TaskQuery:
    return (
        TaskQuery()
        .eq("user_id", user_id)
        .in_("status", list(_OPEN_STATUSES))
        .is_null("parent_id")
    )


def overdue_tasks(task_db: TaskDB, user_id: int, today: date, limit: int | None = None) -> list[Task]:
    query = _open_tasks(user_id).lt("due_date", today.isoformat()).order("due_date")
    if limit is not None:
        query = query.limit(limit)
    return task_db.run_query(query)


def tasks_due_on(task_db: TaskDB, user_id: int, day: date) -> list[Task]:
    query = (
        _open_tasks(user_id)
        .eq("due_date", day.isoformat())
        .order("due_time")
        .order("position")
    )
    return task_db.run_query(query)


def tasks_for_summary(task_db: TaskDB, user_id: int, day: date) -> list[Task]:
    """Every top-level task due on day except cancelled ones, completed included."""
    query = (
        TaskQuery()
        .eq("user_id", user_id)
        .eq("due_date", day.isoformat())
        .neq("status", "cancelled")
        .is_null("parent_id")
        .order("due_time")
        .order("position")
    )
    return task_db.run_query(query)


def days_overdue(task: Task, today: date) -> int:
    return (today - date.fromisoformat(task.due_date)).days


def format_overdue_line(task: Task, today: date) -> str:
    days = days_overdue(task, today)
    return f"• {task.title} ({days} day{'s' if days != 1 else ''} overdue)"


# ---------------------------------------------------------------------------
# Slack jobs
# ---------------------------------------------------------------------------


async def send_overdue_alerts(
    task_db: TaskDB,
    integration_db: IntegrationDB,
    notifier: NotificationPort,
    now: datetime | None = None,
) -> dict:
    """DM every Slack-connected user a list of their overdue tasks."""
    today = _local_now(now).date()
    sent = 0
    errors: list[str] = []

    for integration in integration_db.list_by_provider("slack"):
        user_id = integration.user_id
        try:
            tasks = overdue_tasks(task_db, user_id, today, limit=OVERDUE_ALERT_LIMIT)
            if not tasks:
                continue
            lines = [format_overdue_line(t, today) for t in tasks]
            text = f"You have {len(tasks)} overdue task{'s' if len(tasks) != 1 else ''}:\n" + "\n".join(lines)
            await notifier.send_message(user_id, text)
            sent += 1
        except Exception as exc:
            logger.error("Overdue alert failed for user %d: %s", user_id, exc)
            errors.append(f"user {user_id}: {exc}")

    logger.info("Overdue alerts: %d sent, %d errors", sent, len(errors))
    return _result(sent, errors)


async def send_task_reminders(
    task_db: TaskDB,
    integration_db: IntegrationDB,
    notifier: NotificationPort,
    now: datetime | None = None,
) -> dict:
    """DM reminders for tasks due in the current hour."""
    now = _local_now(now)
    if now.minute > REMINDER_WINDOW_MINUTES:
        return _result(0, [])

    hour_prefix = f"{now.hour:02d}:"
    sent = 0
    errors: list[str] = []

    for integration in integration_db.list_by_provider("slack"):
        user_id = integration.user_id
        try:
            due = [
                t for t in tasks_due_on(task_db, user_id, now.date())
                if t.due_time and t.due_time.startswith(hour_prefix)
            ]
            for task in due:
                await notifier.send_message(user_id, f"⏰ Reminder: *{task.title}* is due at {task.due_time}")
                sent += 1
        except Exception as exc:
            logger.error("Task reminders failed for user %d: %s", user_id, exc)
            errors.append(f"user {user_id}: {exc}")

    logger.info("Task reminders: %d sent, %d errors", sent, len(errors))
    return _result(sent, errors)


async def send_daily_summaries(
    user_db: UserDB,
    task_db: TaskDB,
    integration_db: IntegrationDB,
    notifier: NotificationPort,
    now: datetime | None = None,
) -> dict:
    """Post today's task summary to users who enabled it on their Slack connection."""
    today = _local_now(now).date()
    sent = 0
    errors: list[str] = []

    for integration in integration_db.list_by_provider("slack"):
        user_id = integration.user_id
        if not integration.access_token or not integration.settings.get("notify_daily_summary"):
            continue
        try:
            user = user_db.get_user(user_id)
            name = user.display_name if user else None
            greeting = f"Good morning {name}!" if name else "Good morning!"
            tasks = tasks_for_summary(task_db, user_id, today)
            await notifier.send_message(
                user_id,
                f"{greeting} Here's your task summary for today.",
                format_today_summary(tasks),
            )
            sent += 1
        except Exception as exc:
            logger.error("Daily summary failed for user %d: %s", user_id, exc)
            errors.append(f"user {user_id}: {exc}")

    logger.info("Daily summaries: %d sent, %d errors", sent, len(errors))
    return _result(sent, errors)


# ---------------------------------------------------------------------------
# Email jobs
# ---------------------------------------------------------------------------


async def send_daily_digests(
    user_db: UserDB,
    task_db: TaskDB,
    settings_db: PlatformSettingsDB,
    mailer: EmailPort,
    now: datetime | None = None,
) -> dict:
    """Email today's plan to users with the daily digest enabled."""
    if not get_setting(settings_db, "email_notifications"):
        logger.info("Daily digest skipped: email notifications disabled")
        return _result(0, [])

    now = _local_now(now)
    today = now.date()
    yesterday = today - timedelta(days=1)
    sent = 0
    errors: list[str] = []

    for user in user_db.list_users(daily_digest=True):
        try:
            today_tasks = [
                {"title": t.title, "time": t.due_time} for t in tasks_due_on(task_db, user.id, today)
            ]
            overdue = [
                {"title": t.title, "days_overdue": days_overdue(t, today)}
                for t in overdue_tasks(task_db, user.id, today)
            ]
            completed = task_db.count_completed_between(
                user.id, yesterday.isoformat(), today.isoformat(),
            )
            subject, html = email_templates.daily_digest_email(
                user.display_name, today_tasks, overdue, completed, settings.APP_URL, hour=now.hour,
            )
            await mailer.send_email(user.email, subject, html)
            sent += 1
        except Exception as exc:
            logger.error("Daily digest failed for %s: %s", user.email, exc)
            errors.append(f"{user.email}: {exc}")

    logger.info("Daily digests: %d sent, %d errors", sent, len(errors))
    return _result(sent, errors)


def _current_streak(active_days: set[str], today: date) -> int:
    """Consecutive days with a completion, ending today or yesterday."""
    day = today if today.isoformat() in active_days else today - timedelta(days=1)
    streak = 0
    while day.isoformat() in active_days:
        streak += 1
        day -= timedelta(days=1)
    return streak


async def send_weekly_summaries(
    user_db: UserDB,
    task_db: TaskDB,
    settings_db: PlatformSettingsDB,
    mailer: EmailPort,
    now: datetime | None = None,
) -> dict:
    """Email last week's totals to users with the weekly summary enabled."""
    if not get_setting(settings_db, "email_notifications"):
        logger.info("Weekly summary skipped: email notifications disabled")
        return _result(0, [])

    today = _local_now(now).date()
    week_start = today - timedelta(days=7)
    sent = 0
    errors: list[str] = []

    for user in user_db.list_users(weekly_summary=True):
        try:
            stats = task_db.get_daily_stats(user.id, week_start.isoformat(), today.isoformat())
            tasks_completed = sum(s.tasks_completed for s in stats)
            focus_minutes = sum(s.focus_minutes for s in stats)

            best_day = None
            productive = [s for s in stats if s.tasks_completed > 0]
            if productive:
                best = max(productive, key=lambda s: s.tasks_completed)
                best_day = date.fromisoformat(best.date).strftime("%A")

            history = task_db.get_daily_stats(
                user.id, (today - timedelta(days=365)).isoformat(), today.isoformat(),
            )
            streak = _current_streak({s.date for s in history if s.tasks_completed > 0}, today)

            subject, html = email_templates.weekly_summary_email(
                user.display_name, tasks_completed, focus_minutes, streak,
                settings.APP_URL, best_day=best_day,
            )
            await mailer.send_email(user.email, subject, html)
            sent += 1
        except Exception as exc:
            logger.error("Weekly summary failed for %s: %s", user.email, exc)
            errors.append(f"{user.email}: {exc}")

    logger.info("Weekly summaries: %d sent, %d errors", sent, len(errors))
    return _result(sent, errors)
