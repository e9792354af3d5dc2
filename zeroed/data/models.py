"""
Zeroed — Data Models.

Plain records persisted by the SQLite stores in zeroed.data.db. Ownership is
expressed by user_id (personal data) or team_id (shared data); invariants
live in the stores and the core services, not on these classes.
"""

from __future__ import annotations

from dataclasses import dataclass, field

TASK_STATUSES = ("pending", "in_progress", "completed", "cancelled")
TASK_PRIORITIES = ("low", "normal", "high", "urgent")
TEAM_ROLES = ("owner", "admin", "member", "viewer")
INBOX_LIST_NAME = "Inbox"


@dataclass
class User:
    """A registered account. Authenticates through issued API keys."""

    id: int
    email: str
    display_name: str | None = None
    email_task_id: str | None = None      # token in task+<id>@ addresses
    daily_digest_enabled: bool = False
    weekly_summary_enabled: bool = False
    is_suspended: bool = False
    created_at: str = ""


@dataclass
class TaskList:
    id: int
    user_id: int
    name: str
    color: str = "#6366f1"
    icon: str | None = None
    is_archived: bool = False
    position: int = 0
    created_at: str = ""


@dataclass
class Task:
    """A single to-do item, optionally a subtask of another task."""

    id: int
    user_id: int
    list_id: int
    title: str
    notes: str | None = None
    status: str = "pending"
    priority: str = "normal"
    due_date: str | None = None           # ISO date YYYY-MM-DD
    due_time: str | None = None           # HH:MM, 24h
    start_date: str | None = None
    snoozed_until: str | None = None
    estimated_minutes: int = 25
    actual_minutes: int = 0
    position: int = 0
    parent_id: int | None = None
    is_recurring: bool = False
    source: str = "app"
    completed_at: str | None = None
    created_at: str = ""
    updated_at: str = ""
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "list_id": self.list_id,
            "title": self.title,
            "notes": self.notes,
            "status": self.status,
            "priority": self.priority,
            "due_date": self.due_date,
            "due_time": self.due_time,
            "start_date": self.start_date,
            "snoozed_until": self.snoozed_until,
            "estimated_minutes": self.estimated_minutes,
            "actual_minutes": self.actual_minutes,
            "position": self.position,
            "parent_id": self.parent_id,
            "is_recurring": self.is_recurring,
            "source": self.source,
            "completed_at": self.completed_at,
            "tags": list(self.tags),
        }


@dataclass
class FocusSession:
    id: int
    user_id: int
    task_id: int | None
    duration_minutes: int
    session_type: str = "focus"
    actual_minutes: int = 0
    completed: bool = False
    started_at: str = ""
    ended_at: str | None = None


@dataclass
class DailyStats:
    user_id: int
    date: str
    tasks_created: int = 0
    tasks_completed: int = 0
    focus_minutes: int = 0
    sessions_completed: int = 0


@dataclass
class SmartFilter:
    """A saved, declarative task view. config holds conditions + sort."""

    id: int
    user_id: int
    name: str
    config: dict
    icon: str = "filter"
    is_pinned: bool = False
    use_count: int = 0
    created_at: str = ""


@dataclass
class Habit:
    id: int
    user_id: int
    name: str
    description: str | None = None
    frequency: str = "daily"              # daily | weekdays | weekends | custom
    frequency_days: list[int] = field(default_factory=list)  # 0=Mon … 6=Sun
    target_per_day: int = 1
    streak_current: int = 0
    streak_best: int = 0
    total_completions: int = 0
    is_archived: bool = False
    created_at: str = ""


@dataclass
class HabitLog:
    habit_id: int
    user_id: int
    date: str
    completed_count: int = 0
    notes: str | None = None


@dataclass
class Goal:
    id: int
    user_id: int
    title: str
    target_type: str                      # tasks_completed | focus_minutes | …
    target_value: int
    current_value: int = 0
    period: str = "weekly"
    start_date: str = ""
    end_date: str | None = None
    status: str = "active"                # active | completed | failed | paused
    completed_at: str | None = None
    description: str | None = None


@dataclass
class Integration:
    """Per-user OAuth connection to a third-party provider."""

    id: int
    user_id: int
    provider: str                         # slack | notion | google_calendar
    access_token: str | None = None
    refresh_token: str | None = None
    token_expires_at: str | None = None
    settings: dict = field(default_factory=dict)
    sync_enabled: bool = True
    last_sync_at: str | None = None
    created_at: str = ""


@dataclass
class Team:
    id: int
    name: str
    slug: str
    owner_id: int
    created_at: str = ""


@dataclass
class TeamMember:
    team_id: int
    user_id: int
    role: str = "member"
    invited_by: int | None = None
    joined_at: str = ""


@dataclass
class TeamInvitation:
    id: int
    team_id: int
    email: str
    role: str
    token: str
    expires_at: str
    invited_by: int | None = None
    accepted_at: str | None = None


@dataclass
class Project:
    id: int
    team_id: int
    name: str
    description: str | None = None
    created_by: int | None = None


@dataclass
class TeamTask:
    id: int
    team_id: int
    project_id: int | None
    title: str
    status: str = "pending"
    priority: str = "normal"
    assignee_id: int | None = None
    due_date: str | None = None
    created_by: int | None = None


@dataclass
class Subscription:
    user_id: int
    status: str = "trialing"
    trial_ends_at: str | None = None
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    stripe_price_id: str | None = None
    current_period_start: str | None = None
    current_period_end: str | None = None
    cancel_at_period_end: bool = False
    canceled_at: str | None = None
    updated_at: str = ""


@dataclass
class Coupon:
    code: str
    coupon_type: str                      # free_forever | trial_extension
    value: int = 0                        # extra trial days for trial_extension
    is_active: bool = True
    expires_at: str | None = None
    max_uses: int | None = None
    current_uses: int = 0


@dataclass
class OutgoingWebhook:
    id: int
    user_id: int
    url: str
    secret: str
    events: list[str]
    is_active: bool = True
    failure_count: int = 0
    last_triggered_at: str | None = None
    name: str | None = None


@dataclass
class WebhookLog:
    id: int
    webhook_id: int
    event_type: str
    response_status: int | None
    response_body: str | None
    success: bool
    created_at: str = ""


@dataclass
class ApiKey:
    id: int
    user_id: int
    name: str
    key_hash: str
    key_prefix: str
    expires_at: str | None = None
    last_used_at: str | None = None
    created_at: str = ""
