"""
Zeroed — UI-Agnostic Action Service.

Stateless service layer that orchestrates the personal productivity
operations: tasks, lists, focus sessions, habits and goals. Every write
updates the daily stats, advances matching goals, fires the user's
outgoing webhooks and notifies the configured task mirrors.

Each surface (HTTP API, Slack command, inbound email, automation webhook)
calls this service instead of touching the stores directly.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from zeroed.core.errors import NotFoundError, TaskError
from zeroed.core.task_parser import parse_task_input
from zeroed.core.webhooks import trigger_webhooks
from zeroed.data.db import RecordNotFound
from zeroed.data.models import INBOX_LIST_NAME, TASK_PRIORITIES, TASK_STATUSES

if TYPE_CHECKING:
    from zeroed.core.brain_dump import GeneratedSubtask, ParsedBrainDump
    from zeroed.data.account_db import WebhookDB
    from zeroed.data.db import GoalDB, HabitDB, TaskDB
    from zeroed.data.models import FocusSession, Goal, Habit, HabitLog, Task, TaskList
    from zeroed.ports.task_sync_port import TaskSyncPort

logger = logging.getLogger(__name__)

DEFAULT_ESTIMATE_MINUTES = 25
HABIT_FREQUENCIES = ("daily", "weekdays", "weekends", "custom")
GOAL_TARGET_TYPES = ("tasks_completed", "focus_minutes", "focus_sessions", "streak_days", "custom")
GOAL_PERIODS = ("daily", "weekly", "monthly", "yearly", "total")

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _today() -> date:
    return date.today()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _local_day(timestamp: str) -> str:
    """Local calendar day of a stored UTC timestamp; daily stats are kept per local day."""
    return datetime.fromisoformat(timestamp).astimezone().date().isoformat()


def validate_task_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Check task field values; returns the fields with strings trimmed."""
    cleaned = dict(fields)

    if "title" in cleaned:
        title = (cleaned["title"] or "").strip()
        if not title:
            raise TaskError("Title is required")
        cleaned["title"] = title
    if "priority" in cleaned and cleaned["priority"] not in TASK_PRIORITIES:
        raise TaskError(f"Invalid priority: {cleaned['priority']!r}")
    if "status" in cleaned and cleaned["status"] not in TASK_STATUSES:
        raise TaskError(f"Invalid status: {cleaned['status']!r}")
    for key in ("due_date", "start_date"):
        if cleaned.get(key):
            try:
                date.fromisoformat(cleaned[key])
            except ValueError:
                raise TaskError(f"{key} must be YYYY-MM-DD") from None
    if cleaned.get("due_time") and not _TIME_RE.match(cleaned["due_time"]):
        raise TaskError("due_time must be HH:MM (24h)")
    if "estimated_minutes" in cleaned:
        minutes = cleaned["estimated_minutes"]
        if minutes is None:
            cleaned["estimated_minutes"] = DEFAULT_ESTIMATE_MINUTES
        elif not isinstance(minutes, int) or minutes < 0:
            raise TaskError("estimated_minutes must be a non-negative integer")
    return cleaned


# ---------------------------------------------------------------------------
# Habit streaks
# ---------------------------------------------------------------------------


def is_scheduled(habit: Habit, day: date) -> bool:
    """Whether the habit is due on day (weekday 0 = Monday)."""
    if habit.frequency == "weekdays":
        return day.weekday() < 5
    if habit.frequency == "weekends":
        return day.weekday() >= 5
    if habit.frequency == "custom":
        return day.weekday() in habit.frequency_days
    return True


def compute_streaks(habit: Habit, logs: list[HabitLog], today: date) -> tuple[int, int, int]:
    """Return (current streak, best streak, total completions).

    A streak counts consecutive scheduled days whose count met target_per_day.
    Unscheduled days neither break nor extend a streak. Today only counts
    once it is satisfied; an unfinished today does not break the streak.
    """
    total = sum(log.completed_count for log in logs)
    satisfied = {
        date.fromisoformat(log.date)
        for log in logs
        if log.completed_count >= habit.target_per_day
    }
    if not satisfied:
        return 0, habit.streak_best, total

    start = min(satisfied)
    best = run = 0
    day = start
    while day <= today:
        if is_scheduled(habit, day):
            if day in satisfied:
                run += 1
                best = max(best, run)
            elif day != today:
                run = 0
        day += timedelta(days=1)

    return run, max(best, habit.streak_best), total


# ---------------------------------------------------------------------------
# ActionService
# ---------------------------------------------------------------------------


class ActionService:
    """Stateless service that orchestrates task, list, focus, habit and goal writes."""

    def __init__(
        self,
        task_db: TaskDB,
        webhook_db: WebhookDB | None = None,
        habit_db: HabitDB | None = None,
        goal_db: GoalDB | None = None,
        task_syncs: list[TaskSyncPort] | None = None,
    ) -> None:
        self._tasks = task_db
        self._webhooks = webhook_db
        self._habits = habit_db
        self._goals = goal_db
        self._syncs = task_syncs or []

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    async def _emit(self, user_id: int, event: str, data: dict) -> None:
        if self._webhooks is not None:
            await trigger_webhooks(self._webhooks, user_id, event, data)

    async def _mirror_saved(self, user_id: int, task: Task) -> None:
        for sync in self._syncs:
            try:
                await sync.task_saved(user_id, task)
            except Exception as exc:
                logger.error("Task mirror %s failed for task #%d: %s", type(sync).__name__, task.id, exc)

    async def _mirror_deleted(self, user_id: int, task: Task) -> None:
        for sync in self._syncs:
            try:
                await sync.task_deleted(user_id, task)
            except Exception as exc:
                logger.error("Task mirror %s failed for deleted task #%d: %s", type(sync).__name__, task.id, exc)

    async def _advance_goals(
        self, user_id: int, target_type: str, amount: int = 1, absolute: bool = False,
    ) -> list[Goal]:
        """Add amount to (or, with absolute, raise to) every active goal of target_type."""
        if self._goals is None:
            return []
        completed: list[Goal] = []
        for goal in self._goals.list_goals(user_id, status="active", target_type=target_type):
            value = max(goal.current_value, amount) if absolute else goal.current_value + amount
            if value == goal.current_value:
                continue
            goal = await self._apply_goal_value(user_id, goal, value)
            if goal.status == "completed":
                completed.append(goal)
        return completed

    async def _apply_goal_value(self, user_id: int, goal: Goal, value: int) -> Goal:
        changes: dict[str, Any] = {"current_value": max(0, value)}
        reached = goal.status == "active" and value >= goal.target_value
        if reached:
            changes.update(status="completed", completed_at=_now_iso())
        goal = self._goals.update_goal(goal.id, user_id, **changes)
        if reached:
            logger.info("Goal #%d '%s' completed for user %d", goal.id, goal.title, user_id)
            await self._emit(user_id, "goal.completed", {
                "goal": {"id": goal.id, "title": goal.title, "target_type": goal.target_type,
                         "target_value": goal.target_value, "current_value": goal.current_value},
            })
        return goal

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _require_task(self, user_id: int, task_id: int) -> Task:
        task = self._tasks.get_task(task_id, user_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    def _require_list(self, user_id: int, list_id: int) -> TaskList:
        task_list = self._tasks.get_list(list_id, user_id)
        if task_list is None:
            raise NotFoundError(f"List {list_id} not found")
        return task_list

    def resolve_list(self, user_id: int, list_name: str | None = None) -> TaskList:
        """List by case-insensitive name, falling back to the Inbox."""
        if list_name:
            found = self._tasks.find_list_by_name(user_id, list_name)
            if found is not None:
                return found
            logger.info("List '%s' not found for user %d, using Inbox", list_name, user_id)
        inbox = self._tasks.get_inbox(user_id)
        if inbox is None:
            inbox = self._tasks.create_list(user_id, INBOX_LIST_NAME)
        return inbox

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def create_task(
        self,
        user_id: int,
        title: str,
        list_id: int | None = None,
        tags: list[str] | None = None,
        source: str = "app",
        **fields: Any,
    ) -> Task:
        """Create a task at the end of its list (the Inbox when list_id is None)."""
        fields = validate_task_fields({"title": title, **fields})
        if fields.get("estimated_minutes") is None:
            fields["estimated_minutes"] = DEFAULT_ESTIMATE_MINUTES

        if fields.get("parent_id") is not None:
            parent = self._require_task(user_id, fields["parent_id"])
            list_id = list_id or parent.list_id
        task_list = self._require_list(user_id, list_id) if list_id else self.resolve_list(user_id)

        task = self._tasks.create_task(
            user_id=user_id, list_id=task_list.id, tags=tags, source=source, **fields,
        )
        self._tasks.increment_daily_stat(user_id, _today().isoformat(), "tasks_created")
        await self._emit(user_id, "task.created", {"task": task.to_dict()})
        await self._mirror_saved(user_id, task)
        return task

    async def quick_add(self, user_id: int, text: str, today: date | None = None) -> Task:
        """Create a task from natural-language quick-add input."""
        parsed = parse_task_input(text, today)
        if not parsed.title:
            raise TaskError("Could not find a task title in the input")

        task_list = self.resolve_list(user_id, parsed.list_name)
        return await self.create_task(
            user_id,
            parsed.title,
            list_id=task_list.id,
            tags=parsed.tags,
            priority=parsed.priority or "normal",
            due_date=parsed.due_date,
            due_time=parsed.due_time,
            estimated_minutes=parsed.estimated_minutes,
        )

    async def update_task(
        self, user_id: int, task_id: int, tags: list[str] | None = None, **changes: Any,
    ) -> Task:
        """Apply field changes (and optionally replace tags)."""
        self._require_task(user_id, task_id)
        changes = validate_task_fields(changes)

        if "list_id" in changes:
            self._require_list(user_id, changes["list_id"])
        if "status" in changes:
            changes.setdefault(
                "completed_at", _now_iso() if changes["status"] == "completed" else None,
            )

        try:
            task = self._tasks.update_task(task_id, user_id, **changes)
        except RecordNotFound as exc:
            raise NotFoundError(str(exc)) from exc
        if tags is not None:
            task.tags = self._tasks.set_tags(task_id, tags)

        await self._emit(user_id, "task.updated", {"task": task.to_dict()})
        await self._mirror_saved(user_id, task)
        return task

    async def toggle_complete(self, user_id: int, task_id: int) -> Task:
        """pending/in_progress → completed, completed → pending."""
        task = self._require_task(user_id, task_id)

        if task.status == "completed":
            completed_day = _local_day(task.completed_at) if task.completed_at else _today().isoformat()
            task = self._tasks.update_task(task_id, user_id, status="pending", completed_at=None)
            self._tasks.increment_daily_stat(user_id, completed_day, "tasks_completed", -1)
            await self._emit(user_id, "task.updated", {"task": task.to_dict()})
            await self._mirror_saved(user_id, task)
            return task

        completed_at = _now_iso()
        task = self._tasks.update_task(task_id, user_id, status="completed", completed_at=completed_at)
        self._tasks.increment_daily_stat(user_id, _local_day(completed_at), "tasks_completed")
        logger.info("Task #%d completed by user %d", task_id, user_id)
        await self._emit(user_id, "task.completed", {"task": task.to_dict()})
        await self._advance_goals(user_id, "tasks_completed")
        await self._mirror_saved(user_id, task)
        return task

    async def complete_task(self, user_id: int, task_id: int) -> Task:
        """Idempotent completion (no toggle)."""
        task = self._require_task(user_id, task_id)
        if task.status == "completed":
            return task
        return await self.toggle_complete(user_id, task_id)

    async def delete_task(self, user_id: int, task_id: int) -> Task:
        task = self._require_task(user_id, task_id)
        self._tasks.delete_task(task_id, user_id)
        await self._emit(user_id, "task.deleted", {"task": {"id": task.id, "title": task.title}})
        await self._mirror_deleted(user_id, task)
        return task

    async def snooze_task(self, user_id: int, task_id: int, until: str) -> Task:
        try:
            date.fromisoformat(until[:10])
        except ValueError:
            raise TaskError("snoozed_until must be an ISO date") from None
        self._require_task(user_id, task_id)
        task = self._tasks.update_task(task_id, user_id, snoozed_until=until)
        await self._emit(user_id, "task.updated", {"task": task.to_dict()})
        return task

    def reorder_tasks(self, user_id: int, list_id: int, ordered_ids: list[int]) -> list[Task]:
        """Assign positions 1..n in the given order; ids must belong to the list."""
        self._require_list(user_id, list_id)
        tasks = []
        for position, task_id in enumerate(ordered_ids, start=1):
            task = self._require_task(user_id, task_id)
            if task.list_id != list_id:
                raise TaskError(f"Task {task_id} is not in list {list_id}")
            tasks.append(self._tasks.update_task(task_id, user_id, position=position))
        return tasks

    async def add_subtasks(
        self, user_id: int, parent_id: int, subtasks: list[GeneratedSubtask],
    ) -> list[Task]:
        """Create AI-generated subtasks under parent_id."""
        parent = self._require_task(user_id, parent_id)
        created = []
        for sub in subtasks:
            created.append(await self.create_task(
                user_id, sub.title, list_id=parent.list_id, parent_id=parent.id,
                notes=sub.notes, estimated_minutes=sub.estimated_minutes,
                source="ai",
            ))
        return created

    async def import_brain_dump(
        self, user_id: int, dump: ParsedBrainDump, list_id: int | None = None,
    ) -> list[Task]:
        """Create the parsed tasks (and their subtasks)."""
        created = []
        for item in dump.tasks:
            try:
                task = await self.create_task(
                    user_id, item.title, list_id=list_id, notes=item.notes,
                    priority=item.priority, due_date=item.due_date,
                    estimated_minutes=item.estimated_minutes, source="ai",
                )
            except TaskError as exc:
                logger.warning("Skipping brain dump task %r: %s", item.title, exc)
                continue
            created.append(task)
            for sub_title in item.subtasks:
                if sub_title.strip():
                    await self.create_task(
                        user_id, sub_title, list_id=task.list_id, parent_id=task.id, source="ai",
                    )
        return created

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    async def create_list(
        self, user_id: int, name: str, color: str = "#6366f1", icon: str | None = None,
    ) -> TaskList:
        name = (name or "").strip()
        if not name:
            raise TaskError("List name is required")
        task_list = self._tasks.create_list(user_id, name, color=color, icon=icon)
        await self._emit(user_id, "list.created", {"list": {"id": task_list.id, "name": task_list.name}})
        return task_list

    async def update_list(self, user_id: int, list_id: int, **changes: Any) -> TaskList:
        current = self._require_list(user_id, list_id)
        if "name" in changes:
            changes["name"] = (changes["name"] or "").strip()
            if not changes["name"]:
                raise TaskError("List name is required")
            if current.name == INBOX_LIST_NAME and changes["name"] != INBOX_LIST_NAME:
                raise TaskError("The Inbox cannot be renamed")
        if changes.get("is_archived") and current.name == INBOX_LIST_NAME:
            raise TaskError("The Inbox cannot be archived")
        task_list = self._tasks.update_list(list_id, user_id, **changes)
        await self._emit(user_id, "list.updated", {"list": {"id": task_list.id, "name": task_list.name}})
        return task_list

    async def archive_list(self, user_id: int, list_id: int) -> TaskList:
        return await self.update_list(user_id, list_id, is_archived=True)

    def delete_list(self, user_id: int, list_id: int) -> None:
        task_list = self._require_list(user_id, list_id)
        if task_list.name == INBOX_LIST_NAME:
            raise TaskError("The Inbox cannot be deleted")
        self._tasks.delete_list(list_id, user_id)

    # ------------------------------------------------------------------
    # Focus sessions
    # ------------------------------------------------------------------

    async def start_focus(
        self, user_id: int, task_id: int | None = None, duration_minutes: int = 25,
        session_type: str = "focus",
    ) -> FocusSession:
        if duration_minutes <= 0:
            raise TaskError("duration_minutes must be positive")
        if task_id is not None:
            self._require_task(user_id, task_id)
        session = self._tasks.create_focus_session(user_id, task_id, duration_minutes, session_type)
        await self._emit(user_id, "focus.started", {
            "session": {"id": session.id, "task_id": task_id, "duration_minutes": duration_minutes},
        })
        return session

    async def complete_focus(
        self, user_id: int, session_id: int, actual_minutes: int | None = None,
    ) -> FocusSession:
        """Close a session and credit its minutes to the task, stats and goals."""
        session = self._tasks.get_focus_session(session_id, user_id)
        if session is None:
            raise NotFoundError(f"Focus session {session_id} not found")
        if session.completed:
            return session

        minutes = session.duration_minutes if actual_minutes is None else max(0, actual_minutes)
        session = self._tasks.complete_focus_session(session_id, user_id, minutes)

        if session.task_id is not None:
            task = self._tasks.get_task(session.task_id, user_id)
            if task is not None:
                self._tasks.update_task(
                    task.id, user_id, actual_minutes=task.actual_minutes + minutes,
                )

        today = _today().isoformat()
        if session.session_type == "focus":
            self._tasks.increment_daily_stat(user_id, today, "focus_minutes", minutes)
            self._tasks.increment_daily_stat(user_id, today, "sessions_completed")
            await self._advance_goals(user_id, "focus_minutes", minutes)
            await self._advance_goals(user_id, "focus_sessions")

        await self._emit(user_id, "focus.completed", {
            "session": {"id": session.id, "task_id": session.task_id, "actual_minutes": minutes},
        })
        return session

    # ------------------------------------------------------------------
    # Habits
    # ------------------------------------------------------------------

    def create_habit(
        self,
        user_id: int,
        name: str,
        frequency: str = "daily",
        frequency_days: list[int] | None = None,
        target_per_day: int = 1,
        description: str | None = None,
    ) -> Habit:
        name = (name or "").strip()
        if not name:
            raise TaskError("Habit name is required")
        if frequency not in HABIT_FREQUENCIES:
            raise TaskError(f"Invalid frequency: {frequency!r}")
        days = sorted(set(frequency_days or []))
        if frequency == "custom" and not days:
            raise TaskError("Custom habits need at least one day")
        if any(d < 0 or d > 6 for d in days):
            raise TaskError("frequency_days must be between 0 (Monday) and 6 (Sunday)")
        if target_per_day < 1:
            raise TaskError("target_per_day must be at least 1")
        return self._habits.create_habit(
            user_id, name, frequency=frequency, frequency_days=days,
            target_per_day=target_per_day, description=description,
        )

    async def log_habit(
        self, user_id: int, habit_id: int, day: date | None = None, count: int = 1,
        notes: str | None = None,
    ) -> tuple[Habit, HabitLog]:
        """Record completions for a day and recompute streaks."""
        habit = self._habits.get_habit(habit_id, user_id)
        if habit is None:
            raise NotFoundError(f"Habit {habit_id} not found")

        today = _today()
        day = day or today
        if day > today:
            raise TaskError("Cannot log a habit in the future")

        logs_before = {log.date: log.completed_count for log in self._habits.get_logs(habit_id)}
        previous = logs_before.get(day.isoformat(), 0)

        log = self._habits.add_log(habit_id, user_id, day.isoformat(), count, notes)
        current, best, total = compute_streaks(habit, self._habits.get_logs(habit_id), today)
        self._habits.update_stats(habit_id, current, best, total)
        habit = self._habits.get_habit(habit_id, user_id)

        if previous < habit.target_per_day <= log.completed_count:
            logger.info("Habit #%d '%s' done for %s (streak %d)", habit_id, habit.name, day, current)
            await self._emit(user_id, "habit.completed", {
                "habit": {"id": habit.id, "name": habit.name, "date": day.isoformat(),
                          "streak_current": habit.streak_current},
            })
            await self._advance_goals(user_id, "streak_days", habit.streak_current, absolute=True)
        return habit, log

    def archive_habit(self, user_id: int, habit_id: int) -> None:
        if not self._habits.archive_habit(habit_id, user_id):
            raise NotFoundError(f"Habit {habit_id} not found")

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    def create_goal(
        self,
        user_id: int,
        title: str,
        target_type: str,
        target_value: int,
        period: str = "weekly",
        start_date: str | None = None,
        end_date: str | None = None,
        description: str | None = None,
    ) -> Goal:
        title = (title or "").strip()
        if not title:
            raise TaskError("Goal title is required")
        if target_type not in GOAL_TARGET_TYPES:
            raise TaskError(f"Invalid target_type: {target_type!r}")
        if period not in GOAL_PERIODS:
            raise TaskError(f"Invalid period: {period!r}")
        if target_value <= 0:
            raise TaskError("target_value must be positive")
        start = start_date or _today().isoformat()
        if end_date and end_date < start:
            raise TaskError("end_date is before start_date")
        return self._goals.create_goal(
            user_id, title, target_type, target_value, period, start,
            end_date=end_date, description=description,
        )

    async def record_goal_progress(
        self, user_id: int, goal_id: int, amount: int | None = None, value: int | None = None,
    ) -> Goal:
        """Add amount to (or set value on) a goal; completes it when the target is met."""
        goal = self._goals.get_goal(goal_id, user_id)
        if goal is None:
            raise NotFoundError(f"Goal {goal_id} not found")
        if (amount is None) == (value is None):
            raise TaskError("Provide exactly one of amount or value")
        new_value = goal.current_value + amount if amount is not None else value
        return await self._apply_goal_value(user_id, goal, new_value)

    def set_goal_status(self, user_id: int, goal_id: int, status: str) -> Goal:
        if status not in ("active", "paused", "failed"):
            raise TaskError(f"Invalid goal status: {status!r}")
        try:
            return self._goals.update_goal(goal_id, user_id, status=status)
        except RecordNotFound as exc:
            raise NotFoundError(str(exc)) from exc
