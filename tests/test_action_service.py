"""Tests for zeroed.core.action_service — UI-agnostic service layer.

Runs the ActionService against real temp-file stores. Outgoing webhooks
are patched out and task mirrors are AsyncMocks.
"""

from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from zeroed.core.action_service import ActionService, compute_streaks, is_scheduled
from zeroed.core.errors import NotFoundError, TaskError
from zeroed.data.models import Habit, HabitLog


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync():
    mirror = MagicMock()
    mirror.task_saved = AsyncMock()
    mirror.task_deleted = AsyncMock()
    return mirror


@pytest.fixture
def service(task_db, webhook_db, habit_db, goal_db, sync):
    return ActionService(
        task_db, webhook_db=webhook_db, habit_db=habit_db, goal_db=goal_db, task_syncs=[sync],
    )


@pytest.fixture
def emitted():
    """Patch the webhook fan-out and expose the AsyncMock."""
    with patch("zeroed.core.action_service.trigger_webhooks", AsyncMock(return_value=[])) as mock:
        yield mock


def _events(mock):
    return [c.args[2] for c in mock.call_args_list]


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TestCreateTask:
    @pytest.mark.asyncio
    async def test_defaults_to_inbox(self, service, task_db, user, inbox, sync, emitted):
        task = await service.create_task(user.id, "  Buy milk  ")

        assert task.title == "Buy milk"
        assert task.list_id == inbox.id
        assert task.estimated_minutes == 25
        assert _events(emitted) == ["task.created"]
        sync.task_saved.assert_awaited_once()
        stats = task_db.get_daily_stats(user.id, date.today().isoformat(), date.today().isoformat())
        assert stats[0].tasks_created == 1

    @pytest.mark.asyncio
    async def test_invalid_fields(self, service, user, inbox, emitted):
        with pytest.raises(TaskError):
            await service.create_task(user.id, "X", priority="critical")
        with pytest.raises(TaskError):
            await service.create_task(user.id, "X", due_date="tomorrow")
        with pytest.raises(TaskError):
            await service.create_task(user.id, "X", due_time="25:00")
        with pytest.raises(TaskError):
            await service.create_task(user.id, "   ")

    @pytest.mark.asyncio
    async def test_unknown_list(self, service, user, inbox, emitted):
        with pytest.raises(NotFoundError):
            await service.create_task(user.id, "X", list_id=999)

    @pytest.mark.asyncio
    async def test_subtask_inherits_parent_list(self, service, task_db, user, emitted):
        work = task_db.create_list(user.id, "Work")
        parent = await service.create_task(user.id, "Launch", list_id=work.id)
        child = await service.create_task(user.id, "Write copy", parent_id=parent.id)
        assert child.list_id == work.id
        assert child.parent_id == parent.id

    @pytest.mark.asyncio
    async def test_mirror_failure_does_not_fail_write(self, service, user, inbox, sync, emitted):
        sync.task_saved.side_effect = RuntimeError("notion down")
        task = await service.create_task(user.id, "Still saved")
        assert task.id is not None


class TestQuickAdd:
    @pytest.mark.asyncio
    async def test_parses_and_resolves_list(self, service, task_db, user, emitted):
        work = task_db.create_list(user.id, "Work")
        task = await service.quick_add(
            user.id, "Send invoice tomorrow !high #billing @work", today=date(2025, 2, 12),
        )
        assert task.title == "Send invoice"
        assert task.list_id == work.id
        assert task.priority == "high"
        assert task.due_date == "2025-02-13"
        assert task.tags == ["billing"]

    @pytest.mark.asyncio
    async def test_unknown_list_falls_back_to_inbox(self, service, user, inbox, emitted):
        task = await service.quick_add(user.id, "Thing @nowhere")
        assert task.list_id == inbox.id

    @pytest.mark.asyncio
    async def test_markers_only_is_rejected(self, service, user, inbox, emitted):
        with pytest.raises(TaskError):
            await service.quick_add(user.id, "#tag !!")


class TestCompletion:
    @pytest.mark.asyncio
    async def test_toggle_round_trip_keeps_stats_balanced(self, service, task_db, user, inbox, emitted):
        task = await service.create_task(user.id, "Write")
        done = await service.toggle_complete(user.id, task.id)
        assert done.status == "completed"
        assert done.completed_at

        undone = await service.toggle_complete(user.id, task.id)
        assert undone.status == "pending"
        assert undone.completed_at is None

        today = date.today().isoformat()
        assert task_db.get_daily_stats(user.id, today, today)[0].tasks_completed == 0
        assert "task.completed" in _events(emitted)

    @pytest.mark.asyncio
    async def test_undo_near_midnight_reverses_the_same_day(self, service, task_db, user, inbox, emitted):
        task = await service.create_task(user.id, "Late night")
        with patch("zeroed.core.action_service._now_iso", return_value="2025-02-12T23:59:30+00:00"):
            await service.toggle_complete(user.id, task.id)
        # undone "tomorrow" by the local clock
        with patch("zeroed.core.action_service._today", return_value=date(2025, 2, 14)):
            await service.toggle_complete(user.id, task.id)

        stats = task_db.get_daily_stats(user.id, "2025-02-01", "2025-02-28")
        assert stats
        assert all(row.tasks_completed == 0 for row in stats)

    @pytest.mark.asyncio
    async def test_complete_is_idempotent(self, service, user, inbox, emitted):
        task = await service.create_task(user.id, "Write")
        await service.complete_task(user.id, task.id)
        again = await service.complete_task(user.id, task.id)
        assert again.status == "completed"
        assert _events(emitted).count("task.completed") == 1

    @pytest.mark.asyncio
    async def test_completion_advances_goal(self, service, goal_db, user, inbox, emitted):
        goal = service.create_goal(user.id, "Two tasks", "tasks_completed", 2)
        for title in ("A", "B"):
            task = await service.create_task(user.id, title)
            await service.toggle_complete(user.id, task.id)

        goal = goal_db.get_goal(goal.id, user.id)
        assert goal.current_value == 2
        assert goal.status == "completed"
        assert "goal.completed" in _events(emitted)

    @pytest.mark.asyncio
    async def test_status_update_stamps_completed_at(self, service, user, inbox, emitted):
        task = await service.create_task(user.id, "Write")
        updated = await service.update_task(user.id, task.id, status="completed", tags=["Done"])
        assert updated.completed_at
        assert updated.tags == ["done"]


class TestDeleteAndSnooze:
    @pytest.mark.asyncio
    async def test_delete_notifies_mirrors(self, service, task_db, user, inbox, sync, emitted):
        task = await service.create_task(user.id, "Temp")
        await service.delete_task(user.id, task.id)
        assert task_db.get_task(task.id) is None
        sync.task_deleted.assert_awaited_once()
        assert _events(emitted)[-1] == "task.deleted"

    @pytest.mark.asyncio
    async def test_delete_missing(self, service, user, emitted):
        with pytest.raises(NotFoundError):
            await service.delete_task(user.id, 404)

    @pytest.mark.asyncio
    async def test_snooze_validates_date(self, service, user, inbox, emitted):
        task = await service.create_task(user.id, "Later")
        with pytest.raises(TaskError):
            await service.snooze_task(user.id, task.id, "someday")
        snoozed = await service.snooze_task(user.id, task.id, "2030-01-01")
        assert snoozed.snoozed_until == "2030-01-01"


class TestReorder:
    @pytest.mark.asyncio
    async def test_positions_follow_given_order(self, service, user, inbox, emitted):
        a = await service.create_task(user.id, "A")
        b = await service.create_task(user.id, "B")
        tasks = service.reorder_tasks(user.id, inbox.id, [b.id, a.id])
        assert [(t.title, t.position) for t in tasks] == [("B", 1), ("A", 2)]

    @pytest.mark.asyncio
    async def test_task_from_other_list_rejected(self, service, task_db, user, inbox, emitted):
        work = task_db.create_list(user.id, "Work")
        task = await service.create_task(user.id, "A", list_id=work.id)
        with pytest.raises(TaskError):
            service.reorder_tasks(user.id, inbox.id, [task.id])


class TestLists:
    @pytest.mark.asyncio
    async def test_inbox_is_protected(self, service, user, inbox, emitted):
        with pytest.raises(TaskError):
            service.delete_list(user.id, inbox.id)
        with pytest.raises(TaskError):
            await service.update_list(user.id, inbox.id, name="Stuff")
        with pytest.raises(TaskError):
            await service.archive_list(user.id, inbox.id)

    @pytest.mark.asyncio
    async def test_create_requires_name(self, service, user, emitted):
        with pytest.raises(TaskError):
            await service.create_list(user.id, "  ")
        created = await service.create_list(user.id, "Errands", color="#ff0000")
        assert created.color == "#ff0000"
        assert _events(emitted) == ["list.created"]


# ---------------------------------------------------------------------------
# Focus
# ---------------------------------------------------------------------------


class TestFocus:
    @pytest.mark.asyncio
    async def test_completion_credits_task_stats_and_goals(self, service, task_db, goal_db, user, inbox, emitted):
        task = await service.create_task(user.id, "Deep work")
        goal = service.create_goal(user.id, "Focus an hour", "focus_minutes", 60)

        session = await service.start_focus(user.id, task.id, 25)
        done = await service.complete_focus(user.id, session.id, actual_minutes=30)

        assert done.completed
        assert task_db.get_task(task.id).actual_minutes == 30
        today = date.today().isoformat()
        stats = task_db.get_daily_stats(user.id, today, today)[0]
        assert stats.focus_minutes == 30
        assert stats.sessions_completed == 1
        assert goal_db.get_goal(goal.id, user.id).current_value == 30

    @pytest.mark.asyncio
    async def test_breaks_do_not_count(self, service, task_db, user, emitted):
        session = await service.start_focus(user.id, None, 5, session_type="short_break")
        await service.complete_focus(user.id, session.id)
        today = date.today().isoformat()
        assert task_db.get_daily_stats(user.id, today, today) == []

    @pytest.mark.asyncio
    async def test_invalid_duration(self, service, user, emitted):
        with pytest.raises(TaskError):
            await service.start_focus(user.id, None, 0)


# ---------------------------------------------------------------------------
# Habits
# ---------------------------------------------------------------------------


def _habit(**kwargs):
    return Habit(id=1, user_id=1, name="Run", **kwargs)


def _log(day, count=1):
    return HabitLog(habit_id=1, user_id=1, date=day.isoformat(), completed_count=count)


class TestStreaks:
    def test_consecutive_days(self):
        today = date(2025, 2, 12)
        logs = [_log(today - timedelta(days=n)) for n in range(3)]
        assert compute_streaks(_habit(), logs, today) == (3, 3, 3)

    def test_gap_breaks_streak(self):
        today = date(2025, 2, 12)
        logs = [_log(today - timedelta(days=3)), _log(today - timedelta(days=2)), _log(today - timedelta(days=1))]
        logs.append(_log(today - timedelta(days=5)))
        current, best, _ = compute_streaks(_habit(), logs, today)
        assert current == 3
        assert best == 3

    def test_unfinished_today_does_not_break(self):
        today = date(2025, 2, 12)
        logs = [_log(today - timedelta(days=1))]
        assert compute_streaks(_habit(), logs, today)[0] == 1

    def test_below_target_does_not_count(self):
        today = date(2025, 2, 12)
        logs = [_log(today, count=1)]
        assert compute_streaks(_habit(target_per_day=2), logs, today)[0] == 0

    def test_unscheduled_days_are_skipped(self):
        # Friday and the following Monday, weekdays-only habit
        friday, monday = date(2025, 2, 7), date(2025, 2, 10)
        logs = [_log(friday), _log(monday)]
        assert compute_streaks(_habit(frequency="weekdays"), logs, monday)[0] == 2

    def test_is_scheduled_custom(self):
        habit = _habit(frequency="custom", frequency_days=[0, 2])
        assert is_scheduled(habit, date(2025, 2, 10))       # Monday
        assert not is_scheduled(habit, date(2025, 2, 11))   # Tuesday


class TestHabits:
    def test_create_validation(self, service, user):
        with pytest.raises(TaskError):
            service.create_habit(user.id, "Run", frequency="hourly")
        with pytest.raises(TaskError):
            service.create_habit(user.id, "Run", frequency="custom")
        with pytest.raises(TaskError):
            service.create_habit(user.id, "Run", frequency="custom", frequency_days=[7])

    @pytest.mark.asyncio
    async def test_log_reaching_target_emits_once(self, service, user, emitted):
        habit = service.create_habit(user.id, "Water", target_per_day=2)
        await service.log_habit(user.id, habit.id)
        habit, log = await service.log_habit(user.id, habit.id)
        await service.log_habit(user.id, habit.id)

        assert log.completed_count == 2
        assert habit.streak_current == 1
        assert _events(emitted).count("habit.completed") == 1

    @pytest.mark.asyncio
    async def test_future_log_rejected(self, service, user, emitted):
        habit = service.create_habit(user.id, "Run")
        with pytest.raises(TaskError):
            await service.log_habit(user.id, habit.id, date.today() + timedelta(days=1))

    def test_archive_missing(self, service, user):
        with pytest.raises(NotFoundError):
            service.archive_habit(user.id, 77)


# ---------------------------------------------------------------------------
# Goals
# ---------------------------------------------------------------------------


class TestGoals:
    def test_create_validation(self, service, user):
        with pytest.raises(TaskError):
            service.create_goal(user.id, "X", "pushups", 10)
        with pytest.raises(TaskError):
            service.create_goal(user.id, "X", "custom", 0)
        with pytest.raises(TaskError):
            service.create_goal(
                user.id, "X", "custom", 5, start_date="2025-02-10", end_date="2025-02-01",
            )

    @pytest.mark.asyncio
    async def test_manual_progress(self, service, user, emitted):
        goal = service.create_goal(user.id, "Read 3 books", "custom", 3)
        goal = await service.record_goal_progress(user.id, goal.id, amount=2)
        assert goal.status == "active"
        goal = await service.record_goal_progress(user.id, goal.id, value=3)
        assert goal.status == "completed"
        assert goal.completed_at

    @pytest.mark.asyncio
    async def test_progress_needs_exactly_one_input(self, service, user, emitted):
        goal = service.create_goal(user.id, "Read", "custom", 3)
        with pytest.raises(TaskError):
            await service.record_goal_progress(user.id, goal.id)
        with pytest.raises(TaskError):
            await service.record_goal_progress(user.id, goal.id, amount=1, value=1)

    def test_pause(self, service, user):
        goal = service.create_goal(user.id, "Read", "custom", 3)
        assert service.set_goal_status(user.id, goal.id, "paused").status == "paused"
        with pytest.raises(TaskError):
            service.set_goal_status(user.id, goal.id, "completed")
