"""
Zeroed — Smart suggestions.

Rule-based nudges computed from the last 30 days of completions, the open
task list, today's habits and today's stats. Each rule produces at most one
Suggestion with a fixed confidence; the five most confident are returned.
No model is involved: everything here is plain counting.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

from zeroed.core.action_service import is_scheduled
from zeroed.data.query import TaskQuery

if TYPE_CHECKING:
    from zeroed.data.db import HabitDB, TaskDB
    from zeroed.data.models import Task

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 5
HISTORY_DAYS = 30
HISTORY_LIMIT = 200
PENDING_LIMIT = 50
DAY_PATTERN_MIN_COUNT = 3
STREAK_MIN_DAYS = 3
FOCUS_MINUTES = 25

# first keyword hit wins, checked in this order
TASK_CATEGORIES: list[tuple[str, tuple[str, ...]]] = [
    ("meetings", ("meet", "call", "sync")),
    ("communication", ("email", "reply", "respond")),
    ("review", ("review", "check", "read")),
    ("creative", ("write", "draft", "create")),
    ("debugging", ("fix", "bug", "debug")),
    ("planning", ("plan", "prepare", "organize")),
]


class SuggestionAction(BaseModel):
    type: Literal["schedule", "create_task", "start_focus", "complete_habit"]
    payload: dict[str, Any] = Field(default_factory=dict)


class Suggestion(BaseModel):
    id: str
    type: Literal["time", "task", "habit", "insight"]
    title: str
    description: str
    confidence: float = Field(ge=0, le=1)
    action: SuggestionAction | None = None


class CompletionStats(BaseModel):
    avg_completion_hour: float = 12.0
    avg_tasks_per_day: float = 0.0
    streak_days: int = 0


def categorize_task(title: str) -> str:
    lower = title.lower()
    for category, keywords in TASK_CATEGORIES:
        if any(k in lower for k in keywords):
            return category
    return "general"


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def _completed_local(tasks: list[Task]) -> list[tuple[Task, datetime]]:
    """Pair each completed task with its local completion time, the clock daily stats use."""
    pairs = []
    for task in tasks:
        if not task.completed_at:
            continue
        try:
            stamp = datetime.fromisoformat(task.completed_at)
        except ValueError:
            logger.warning("Task %d has unreadable completed_at %r", task.id, task.completed_at)
            continue
        pairs.append((task, stamp.astimezone()))
    return pairs


def completion_stats(completed: list[tuple[Task, datetime]], today: date) -> CompletionStats:
    """Average completion hour, tasks per active day and the current streak.

    The streak counts back from today; a day without completions ends it,
    except today itself, which may still be empty.
    """
    if not completed:
        return CompletionStats()

    per_day = Counter(stamp.date() for _, stamp in completed)
    streak = 0
    for offset in range(HISTORY_DAYS):
        day = today - timedelta(days=offset)
        if day in per_day:
            streak += 1
        elif offset > 0:
            break

    return CompletionStats(
        avg_completion_hour=sum(stamp.hour for _, stamp in completed) / len(completed),
        avg_tasks_per_day=len(completed) / len(per_day),
        streak_days=streak,
    )


def top_day_pattern(completed: list[tuple[Task, datetime]], weekday: int) -> tuple[str, int] | None:
    """Most frequent (hour, category) bucket on the given weekday as (category, count)."""
    buckets = Counter(
        (stamp.hour, categorize_task(task.title))
        for task, stamp in completed
        if stamp.weekday() == weekday
    )
    if not buckets:
        return None
    (_, category), count = buckets.most_common(1)[0]
    return category, count


def generate_suggestions(
    task_db: TaskDB,
    habit_db: HabitDB,
    user_id: int,
    now: datetime | None = None,
) -> list[Suggestion]:
    """The user's top suggestions for this moment, most confident first."""
    now = (now or datetime.now()).astimezone()
    today = now.date()
    hour = now.hour
    today_iso = today.isoformat()

    # completed_at is stored as UTC ISO text
    since = (now - timedelta(days=HISTORY_DAYS)).astimezone(timezone.utc).isoformat(timespec="seconds")
    history = task_db.run_query(
        TaskQuery()
        .eq("user_id", user_id)
        .eq("status", "completed")
        .gte("completed_at", since)
        .order("completed_at", ascending=False)
        .limit(HISTORY_LIMIT)
    )
    pending = task_db.run_query(
        TaskQuery()
        .eq("user_id", user_id)
        .eq("status", "pending")
        .order("due_date")
        .limit(PENDING_LIMIT)
    )
    day_stats = task_db.get_daily_stats(user_id, today_iso, today_iso)
    done_today = day_stats[0].tasks_completed if day_stats else 0
    focus_today = day_stats[0].focus_minutes if day_stats else 0

    completed = _completed_local(history)
    stats = completion_stats(completed, today)
    suggestions: list[Suggestion] = []

    if 9 <= hour <= 11 and 9 <= stats.avg_completion_hour <= 12:
        suggestions.append(Suggestion(
            id="morning-peak",
            type="insight",
            title="Your peak productivity time",
            description="You complete most tasks in the morning. Consider tackling your hardest task now.",
            confidence=0.85,
        ))

    if 14 <= hour <= 15:
        suggestions.append(Suggestion(
            id="afternoon-focus",
            type="time",
            title="Post-lunch focus session",
            description="A 25-minute focus session can help beat the afternoon slump.",
            action=SuggestionAction(type="start_focus", payload={"minutes": FOCUS_MINUTES}),
            confidence=0.7,
        ))

    pattern = top_day_pattern(completed, today.weekday())
    if pattern and pattern[1] >= DAY_PATTERN_MIN_COUNT:
        category, count = pattern
        day_name = today.strftime("%A")
        suggestions.append(Suggestion(
            id=f"day-pattern-{day_name.lower()}",
            type="insight",
            title=f"{day_name} pattern detected",
            description=f'You often work on "{category}" tasks on {day_name}s.',
            confidence=min(count / 10, 0.9),
        ))

    overdue = [t for t in pending if t.due_date and t.due_date < today_iso]
    if overdue:
        suggestions.append(Suggestion(
            id="overdue-tasks",
            type="task",
            title=_plural(len(overdue), "overdue task"),
            description="Consider rescheduling or completing these today.",
            confidence=0.95,
        ))

    important = [t for t in pending if t.due_date == today_iso and t.priority in ("high", "urgent")]
    if important and done_today == 0:
        suggestions.append(Suggestion(
            id="high-priority-today",
            type="task",
            title="High priority tasks today",
            description=f"You have {_plural(len(important), 'important task')} due today.",
            confidence=0.9,
        ))

    if hour >= 17:
        incomplete = []
        for habit in habit_db.list_habits(user_id):
            if not is_scheduled(habit, today):
                continue
            logged = next((log for log in habit_db.get_logs(habit.id) if log.date == today_iso), None)
            if logged is None or logged.completed_count < habit.target_per_day:
                incomplete.append(habit)
        if incomplete:
            suggestions.append(Suggestion(
                id="evening-habits",
                type="habit",
                title="Don't forget your habits",
                description=f"{_plural(len(incomplete), 'habit')} still incomplete today.",
                confidence=0.8,
            ))

    if stats.streak_days >= STREAK_MIN_DAYS:
        suggestions.append(Suggestion(
            id="streak",
            type="insight",
            title=f"{stats.streak_days}-day streak!",
            description="You've been completing tasks consistently. Keep it up!",
            confidence=0.95,
        ))

    if stats.avg_tasks_per_day > 0 and done_today >= stats.avg_tasks_per_day:
        suggestions.append(Suggestion(
            id="above-average",
            type="insight",
            title="Above average day",
            description=(
                f"You've completed {done_today} tasks today, "
                f"above your {stats.avg_tasks_per_day:.1f} daily average."
            ),
            confidence=0.85,
        ))

    if focus_today == 0 and 10 <= hour <= 16:
        suggestions.append(Suggestion(
            id="no-focus-today",
            type="time",
            title="No focus sessions today",
            description="Start a 25-minute Pomodoro to boost productivity.",
            action=SuggestionAction(type="start_focus", payload={"minutes": FOCUS_MINUTES}),
            confidence=0.75,
        ))

    # stable sort keeps rule order among equal confidences
    suggestions.sort(key=lambda s: s.confidence, reverse=True)
    logger.debug("Generated %d suggestions for user %d", len(suggestions), user_id)
    return suggestions[:MAX_SUGGESTIONS]
