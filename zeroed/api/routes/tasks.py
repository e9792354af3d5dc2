"""Tasks, lists, natural-language quick add and the AI helpers."""

from __future__ import annotations

from dataclasses import asdict
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from zeroed.api.deps import Stores, current_user, get_action_service, get_stores
from zeroed.core.action_service import ActionService
from zeroed.core.brain_dump import breakdown_task, parse_brain_dump
from zeroed.core.task_parser import has_natural_language_elements, parse_task_input
from zeroed.data.models import User
from zeroed.data.query import TaskQuery

router = APIRouter(prefix="/api", tags=["tasks"])

Priority = Literal["low", "normal", "high", "urgent"]
Status = Literal["pending", "in_progress", "completed", "cancelled"]


class TaskCreate(BaseModel):
    title: str
    list_id: int | None = None
    notes: str | None = None
    priority: Priority = "normal"
    status: Status = "pending"
    due_date: str | None = None
    due_time: str | None = None
    start_date: str | None = None
    estimated_minutes: int | None = None
    parent_id: int | None = None
    is_recurring: bool = False
    tags: list[str] = Field(default_factory=list)


class TaskUpdate(BaseModel):
    title: str | None = None
    list_id: int | None = None
    notes: str | None = None
    priority: Priority | None = None
    status: Status | None = None
    due_date: str | None = None
    due_time: str | None = None
    start_date: str | None = None
    estimated_minutes: int | None = None
    is_recurring: bool | None = None
    tags: list[str] | None = None


class TextInput(BaseModel):
    text: str


class SnoozeRequest(BaseModel):
    until: str


class ReorderRequest(BaseModel):
    task_ids: list[int]


class ListCreate(BaseModel):
    name: str
    color: str = "#6366f1"
    icon: str | None = None


class ListUpdate(BaseModel):
    name: str | None = None
    color: str | None = None
    icon: str | None = None
    is_archived: bool | None = None
    position: int | None = None


class BrainDumpRequest(BaseModel):
    text: str
    list_id: int | None = None
    create: bool = False


class BreakdownRequest(BaseModel):
    context: str | None = None
    create: bool = False


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@router.get("/tasks")
def list_tasks(
    list_id: int | None = None,
    status: Status | None = None,
    due_date: str | None = None,
    tag: str | None = None,
    include_subtasks: bool = False,
    user: User = Depends(current_user),
    stores: Stores = Depends(get_stores),
):
    query = TaskQuery().eq("user_id", user.id)
    if list_id is not None:
        query = query.eq("list_id", list_id)
    if status is not None:
        query = query.eq("status", status)
    if due_date is not None:
        query = query.eq("due_date", due_date)
    if tag is not None:
        query = query.contains("tags", [tag])
    if not include_subtasks:
        query = query.is_null("parent_id")
    tasks = stores.tasks.run_query(query.order("position").order("id"))
    return {"tasks": [t.to_dict() for t in tasks]}


@router.post("/tasks", status_code=201)
async def create_task(
    body: TaskCreate,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    fields = body.model_dump(exclude={"title", "list_id", "tags"})
    task = await service.create_task(
        user.id, body.title, list_id=body.list_id, tags=body.tags, **fields,
    )
    return {"task": task.to_dict()}


@router.post("/tasks/quick-add", status_code=201)
async def quick_add(
    body: TextInput,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    task = await service.quick_add(user.id, body.text)
    return {"task": task.to_dict()}


@router.post("/tasks/parse")
def parse_preview(body: TextInput, user: User = Depends(current_user)):
    """What quick add would extract, without creating anything."""
    return {
        "parsed": parse_task_input(body.text).to_dict(),
        "has_natural_language": has_natural_language_elements(body.text),
    }


@router.get("/tasks/{task_id}")
def get_task(task_id: int, user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    task = stores.tasks.get_task(task_id, user.id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return {
        "task": task.to_dict(),
        "subtasks": [t.to_dict() for t in stores.tasks.list_subtasks(task.id)],
    }


@router.patch("/tasks/{task_id}")
async def update_task(
    task_id: int,
    body: TaskUpdate,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    changes = body.model_dump(exclude_unset=True, exclude={"tags"})
    task = await service.update_task(user.id, task_id, tags=body.tags, **changes)
    return {"task": task.to_dict()}


@router.post("/tasks/{task_id}/toggle")
async def toggle_task(
    task_id: int,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    task = await service.toggle_complete(user.id, task_id)
    return {"task": task.to_dict()}


@router.post("/tasks/{task_id}/snooze")
async def snooze_task(
    task_id: int,
    body: SnoozeRequest,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    task = await service.snooze_task(user.id, task_id, body.until)
    return {"task": task.to_dict()}


@router.delete("/tasks/{task_id}")
async def delete_task(
    task_id: int,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    await service.delete_task(user.id, task_id)
    return {"success": True}


@router.post("/tasks/{task_id}/breakdown")
async def breakdown(
    task_id: int,
    body: BreakdownRequest,
    user: User = Depends(current_user),
    stores: Stores = Depends(get_stores),
    service: ActionService = Depends(get_action_service),
):
    """Suggest subtasks; with create=true they are added under the task."""
    task = stores.tasks.get_task(task_id, user.id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    result = await breakdown_task(task.title, task.notes, body.context)
    response: dict = result.model_dump()
    if body.create:
        created = await service.add_subtasks(user.id, task.id, result.subtasks)
        response["created"] = [t.to_dict() for t in created]
    return response


@router.post("/ai/brain-dump")
async def brain_dump(
    body: BrainDumpRequest,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    """Parse free text into tasks; with create=true they are imported."""
    if not body.text.strip():
        raise HTTPException(status_code=400, detail="Text is required")
    dump = await parse_brain_dump(body.text)
    response: dict = dump.model_dump()
    if body.create:
        created = await service.import_brain_dump(user.id, dump, list_id=body.list_id)
        response["created"] = [t.to_dict() for t in created]
    return response


# ---------------------------------------------------------------------------
# Lists
# ---------------------------------------------------------------------------


@router.get("/lists")
def list_lists(
    include_archived: bool = False,
    user: User = Depends(current_user),
    stores: Stores = Depends(get_stores),
):
    return {"lists": [asdict(task_list) for task_list in stores.tasks.list_lists(user.id, include_archived)]}


@router.post("/lists", status_code=201)
async def create_list(
    body: ListCreate,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    task_list = await service.create_list(user.id, body.name, color=body.color, icon=body.icon)
    return {"list": asdict(task_list)}


@router.patch("/lists/{list_id}")
async def update_list(
    list_id: int,
    body: ListUpdate,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    task_list = await service.update_list(user.id, list_id, **body.model_dump(exclude_none=True))
    return {"list": asdict(task_list)}


@router.delete("/lists/{list_id}")
def delete_list(
    list_id: int,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    service.delete_list(user.id, list_id)
    return {"success": True}


@router.post("/lists/{list_id}/archive")
async def archive_list(
    list_id: int,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    task_list = await service.archive_list(user.id, list_id)
    return {"list": asdict(task_list)}


@router.post("/lists/{list_id}/reorder")
def reorder_list(
    list_id: int,
    body: ReorderRequest,
    user: User = Depends(current_user),
    service: ActionService = Depends(get_action_service),
):
    tasks = service.reorder_tasks(user.id, list_id, body.task_ids)
    return {"tasks": [t.to_dict() for t in tasks]}
