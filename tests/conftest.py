"""Shared test fixtures and configuration.

Sets up fake environment variables so zeroed.config doesn't sys.exit(),
and provides temp-file SQLite stores plus a ready-made user.
"""

import os

# Patch env vars BEFORE any zeroed imports
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("APP_URL", "https://bruh.test")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("ADMIN_EMAILS", "admin@bruh.test")
os.environ.setdefault("SLACK_SIGNING_SECRET", "slack-signing-secret")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
# No LLM key: brain dump and breakdown use the keyword fallbacks
os.environ["LLM_API_KEY"] = ""

import pytest


@pytest.fixture(autouse=True)
def _fresh_platform_settings():
    """Platform flags are cached at module level; never leak them between tests."""
    from zeroed.core import platform_settings
    platform_settings.clear_cache()
    yield
    platform_settings.clear_cache()


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_zeroed.db")


@pytest.fixture
def user_db(tmp_db_path):
    from zeroed.data.db import UserDB
    return UserDB(db_path=tmp_db_path)


@pytest.fixture
def task_db(tmp_db_path):
    from zeroed.data.db import TaskDB
    return TaskDB(db_path=tmp_db_path)


@pytest.fixture
def filter_db(tmp_db_path):
    from zeroed.data.db import SmartFilterDB
    return SmartFilterDB(db_path=tmp_db_path)


@pytest.fixture
def habit_db(tmp_db_path):
    from zeroed.data.db import HabitDB
    return HabitDB(db_path=tmp_db_path)


@pytest.fixture
def goal_db(tmp_db_path):
    from zeroed.data.db import GoalDB
    return GoalDB(db_path=tmp_db_path)


@pytest.fixture
def integration_db(tmp_db_path):
    from zeroed.data.account_db import IntegrationDB
    return IntegrationDB(db_path=tmp_db_path)


@pytest.fixture
def subscription_db(tmp_db_path):
    from zeroed.data.account_db import SubscriptionDB
    return SubscriptionDB(db_path=tmp_db_path)


@pytest.fixture
def webhook_db(tmp_db_path):
    from zeroed.data.account_db import WebhookDB
    return WebhookDB(db_path=tmp_db_path)


@pytest.fixture
def platform_db(tmp_db_path):
    from zeroed.data.account_db import PlatformSettingsDB
    return PlatformSettingsDB(db_path=tmp_db_path)


@pytest.fixture
def team_db(tmp_db_path):
    from zeroed.data.team_db import TeamDB
    return TeamDB(db_path=tmp_db_path)


@pytest.fixture
def user(user_db, task_db):
    """A registered user with an Inbox list."""
    from zeroed.data.models import INBOX_LIST_NAME
    created = user_db.create_user("dana@example.com", "Dana")
    task_db.create_list(created.id, INBOX_LIST_NAME, icon="inbox")
    return created


@pytest.fixture
def inbox(user, task_db):
    return task_db.get_inbox(user.id)
