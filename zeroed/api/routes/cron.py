"""Scheduled jobs, triggered by an external cron with `Authorization: Bearer <CRON_SECRET>`."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from zeroed.adapters.email_notifier import ResendEmailNotifier
from zeroed.adapters.slack_notifier import SlackNotifier
from zeroed.api.deps import Stores, get_mailer, get_notifier, get_stores, require_cron
from zeroed.core import scheduler

router = APIRouter(prefix="/api/cron", tags=["cron"], dependencies=[Depends(require_cron)])

_METHODS = ["GET", "POST"]


@router.api_route("/overdue-alerts", methods=_METHODS)
async def overdue_alerts(
    stores: Stores = Depends(get_stores),
    notifier: SlackNotifier = Depends(get_notifier),
):
    return await scheduler.send_overdue_alerts(stores.tasks, stores.integrations, notifier)


@router.api_route("/task-reminders", methods=_METHODS)
async def task_reminders(
    stores: Stores = Depends(get_stores),
    notifier: SlackNotifier = Depends(get_notifier),
):
    return await scheduler.send_task_reminders(stores.tasks, stores.integrations, notifier)


@router.api_route("/daily-digest", methods=_METHODS)
async def daily_digest(
    stores: Stores = Depends(get_stores),
    mailer: ResendEmailNotifier = Depends(get_mailer),
):
    return await scheduler.send_daily_digests(stores.users, stores.tasks, stores.platform, mailer)


@router.api_route("/weekly-summary", methods=_METHODS)
async def weekly_summary(
    stores: Stores = Depends(get_stores),
    mailer: ResendEmailNotifier = Depends(get_mailer),
):
    return await scheduler.send_weekly_summaries(stores.users, stores.tasks, stores.platform, mailer)


@router.api_route("/daily-summary", methods=_METHODS)
async def daily_summary(
    stores: Stores = Depends(get_stores),
    notifier: SlackNotifier = Depends(get_notifier),
):
    return await scheduler.send_daily_summaries(stores.users, stores.tasks, stores.integrations, notifier)
