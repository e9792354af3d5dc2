"""
Zeroed — Request dependencies.

Stores live on app.state (one bundle per process, all sharing
DATABASE_PATH). Services are cheap and stateless, so they are built per
request from that bundle.

Auth:
    user routes   Authorization: Bearer bruh_<hex>  (issued API keys)
    cron routes   Authorization: Bearer <CRON_SECRET>
    admin routes  an authenticated user listed in ADMIN_EMAILS
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from zeroed.adapters.calendar_sync import GoogleCalendarTaskSync
from zeroed.adapters.email_notifier import ResendEmailNotifier
from zeroed.adapters.notion_sync import NotionTaskSync
from zeroed.adapters.slack_notifier import SlackNotifier
from zeroed.config import settings
from zeroed.core.action_service import ActionService
from zeroed.core.teams import TeamService
from zeroed.core.webhooks import verify_api_key
from zeroed.data.account_db import (
    IntegrationDB,
    PlatformSettingsDB,
    SubscriptionDB,
    WebhookDB,
)
from zeroed.data.db import GoalDB, HabitDB, SmartFilterDB, TaskDB, UserDB
from zeroed.data.models import User
from zeroed.data.team_db import TeamDB

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


@dataclass
class Stores:
    users: UserDB
    tasks: TaskDB
    filters: SmartFilterDB
    habits: HabitDB
    goals: GoalDB
    integrations: IntegrationDB
    subscriptions: SubscriptionDB
    webhooks: WebhookDB
    platform: PlatformSettingsDB
    teams: TeamDB

    @classmethod
    def open(cls, db_path: str | None = None) -> "Stores":
        return cls(
            users=UserDB(db_path),
            tasks=TaskDB(db_path),
            filters=SmartFilterDB(db_path),
            habits=HabitDB(db_path),
            goals=GoalDB(db_path),
            integrations=IntegrationDB(db_path),
            subscriptions=SubscriptionDB(db_path),
            webhooks=WebhookDB(db_path),
            platform=PlatformSettingsDB(db_path),
            teams=TeamDB(db_path),
        )


def get_stores(request: Request) -> Stores:
    return request.app.state.stores


def build_action_service(stores: Stores) -> ActionService:
    return ActionService(
        stores.tasks,
        webhook_db=stores.webhooks,
        habit_db=stores.habits,
        goal_db=stores.goals,
        task_syncs=[
            NotionTaskSync(stores.integrations),
            GoogleCalendarTaskSync(stores.integrations),
        ],
    )


def get_action_service(stores: Stores = Depends(get_stores)) -> ActionService:
    return build_action_service(stores)


def get_team_service(stores: Stores = Depends(get_stores)) -> TeamService:
    return TeamService(stores.teams, stores.users, ResendEmailNotifier(), settings.APP_URL)


def get_mailer() -> ResendEmailNotifier:
    return ResendEmailNotifier()


def get_notifier(stores: Stores = Depends(get_stores)) -> SlackNotifier:
    return SlackNotifier(stores.integrations)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


def current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    stores: Stores = Depends(get_stores),
) -> User:
    """The user owning the bearer API key. 401 otherwise, 403 when suspended."""
    token = credentials.credentials if credentials else None
    user_id = verify_api_key(stores.webhooks, token)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    user = stores.users.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if user.is_suspended:
        raise HTTPException(status_code=403, detail="Account suspended")
    return user


def is_admin(email: str | None) -> bool:
    return bool(email) and email.lower() in settings.ADMIN_EMAILS


def admin_user(user: User = Depends(current_user)) -> User:
    if not is_admin(user.email):
        raise HTTPException(status_code=403, detail="Unauthorized")
    return user


def require_cron(credentials: HTTPAuthorizationCredentials | None = Depends(bearer)) -> None:
    token = credentials.credentials if credentials else ""
    if not hmac.compare_digest(token.encode(), settings.CRON_SECRET.encode()):
        logger.warning("Rejected cron request with a bad secret")
        raise HTTPException(status_code=401, detail="Unauthorized")
