"""Smart filters, focus sessions, habits, goals and daily stats."""

from __future__ import annotations

from dataclasses import asdict
from datetime import date, timedelta
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from zeroed.api.deps import Stores, current_user, get_action_service, get_stores
from zeroed.core.action_service import ActionService
from zeroed.core.filters import (
    SmartFilterConfig,
    build_filter_query,
    execute_filter,
    run_saved_filter,
)
from zeroed.core.suggestions import generate_suggestions
from zeroed.data.models import User
from zeroed.data.query import TaskQuery

router = APIRouter(prefix="/api", tags=["productivity"])


class FilterCreate(BaseModel):
    name: str
    config: SmartFilterConfig
    icon: str = "filter"
    is_pinned: bool = False


class FocusStart(BaseModel):
    task_id: int | None = None
    duration_minutes: int = 25
    session_type: Literal["focus", "short_break", "long_break"] = "focus"


class FocusComplete(BaseModel):
    actual_minutes: int | None = None


class HabitCreate(BaseModel):
    name: str
    description: str | None = None
    frequency: str = "daily"
    frequency_days: list[int] = Field(default_factory=list)
    target_per_day: int = 1


class HabitLogRequest(BaseModel):
    day: date | None = Field(default=None, alias="date")
    count: int = 1
    notes: str | None = None


class GoalCreate(BaseModel):
    title: str
    target_type: str
    target_value: int
    period: str = "weekly"
    start_date: str | None = None
    end_date: str | None = None
    description: str | None = None


class GoalProgress(BaseModel):
    amount: int | None = None
    value: int | None = None


class GoalStatus(BaseModel):
    status: Literal["active", "paused", "failed"]


# ---------------------------------------------------------------------------
# Smart filters
# ---------------------------------------------------------------------------


@router.get("/filters")
def list_filters(user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    return {"filters": [asdict(f) for f in stores.filters.list_filters(user.id)]}


@router.post("/filters", status_code=201)
def create_filter(
    body: FilterCreate,
    user: User = Depends(current_user),
    stores: Stores = Depends(get_stores),
):
    if not body.name.strip():
        raise HTTPException(status_code=400, detail="Name is required")
    # rejects unknown fields and operators before anything is saved
    build_filter_query(TaskQuery(), body.config)
    saved = stores.filters.create_filter(
        user.id, body.name.strip(), body.config.model_dump(exclude_none=True),
        icon=body.icon, is_pinned=body.is_pinned,
    )
    return {"filter": asdict(saved)}


@router.post("/filters/preview")
def preview_filter(
    config: SmartFilterConfig,
    user: User = Depends(current_user),
    stores: Stores = Depends(get_stores),
):
    tasks = execute_filter(stores.tasks, user.id, config)
    return {"tasks": [t.to_dict() for t in tasks]}


@router.get("/filters/{filter_id}/tasks")
def run_filter(filter_id: int, user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    tasks = run_saved_filter(stores.filters, stores.tasks, user.id, filter_id)
    if tasks is None:
        raise HTTPException(status_code=404, detail="Filter not found")
    return {"tasks": [t.to_dict() for t in tasks]}


@router.delete("/filters/{filter_id}")
def delete_filter(filter_id: int, user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    if not stores.filters.delete_filter(filter_id, user.id):
        raise HTTPException(status_code=404, detail="Filter not found")
    return {"success": True}


# ---------------------------------------------------------------------------
# Focus sessions
# ---------------------------------------------------------------------------


@router.post("/focus/start", status_code=201)
async def start_focus(
    body: FocusStart,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    session = await service.start_focus(
        user.id, body.task_id, body.duration_minutes, body.session_type,
    )
    return {"session": asdict(session)}


@router.post("/focus/{session_id}/complete")
async def complete_focus(
    session_id: int,
    body: FocusComplete,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    session = await service.complete_focus(user.id, session_id, body.actual_minutes)
    return {"session": asdict(session)}


# ---------------------------------------------------------------------------
# Habits
# ---------------------------------------------------------------------------


@router.get("/habits")
def list_habits(
    include_archived: bool = False,
    user: User = Depends(current_user),
    stores: Stores = Depends(get_stores),
):
    return {"habits": [asdict(h) for h in stores.habits.list_habits(user.id, include_archived)]}


@router.post("/habits", status_code=201)
def create_habit(
    body: HabitCreate,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    habit = service.create_habit(
        user.id, body.name, frequency=body.frequency, frequency_days=body.frequency_days,
        target_per_day=body.target_per_day, description=body.description,
    )
    return {"habit": asdict(habit)}


@router.post("/habits/{habit_id}/log")
async def log_habit(
    habit_id: int,
    body: HabitLogRequest,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    habit, log = await service.log_habit(user.id, habit_id, body.day, body.count, body.notes)
    return {"habit": asdict(habit), "log": asdict(log)}


@router.delete("/habits/{habit_id}")
def archive_habit(
    habit_id: int,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    service.archive_habit(user.id, habit_id)
    return {"success": True}


# ---------------------------------------------------------------------------
# Goals
# ---------------------------------------------------------------------------


@router.get("/goals")
def list_goals(
    status: str | None = None,
    user: User = Depends(current_user),
    stores: Stores = Depends(get_stores),
):
    return {"goals": [asdict(g) for g in stores.goals.list_goals(user.id, status=status)]}


@router.post("/goals", status_code=201)
def create_goal(
    body: GoalCreate,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    goal = service.create_goal(user.id, **body.model_dump())
    return {"goal": asdict(goal)}


@router.post("/goals/{goal_id}/progress")
async def goal_progress(
    goal_id: int,
    body: GoalProgress,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    goal = await service.record_goal_progress(user.id, goal_id, amount=body.amount, value=body.value)
    return {"goal": asdict(goal)}


@router.patch("/goals/{goal_id}")
def set_goal_status(
    goal_id: int,
    body: GoalStatus,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    return {"goal": asdict(service.set_goal_status(user.id, goal_id, body.status))}


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


@router.get("/stats")
def daily_stats(
    days: int = 7,
    user: User = Depends(current_user),
    stores: Stores = Depends(get_stores),
):
    if days < 1 or days > 365:
        raise HTTPException(status_code=400, detail="days must be between 1 and 365")
    end = date.today()
    start = end - timedelta(days=days - 1)
    stats = stores.tasks.get_daily_stats(user.id, start.isoformat(), end.isoformat())
    return {
        "stats": [asdict(s) for s in stats],
        "totals": {
            "tasks_completed": sum(s.tasks_completed for s in stats),
            "focus_minutes": sum(s.focus_minutes for s in stats),
        },
    }


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------


@router.get("/suggestions")
def suggestions(user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    found = generate_suggestions(stores.tasks, stores.habits, user.id)
    return {"suggestions": [s.model_dump(exclude_none=True) for s in found]}
