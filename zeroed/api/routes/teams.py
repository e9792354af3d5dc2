"""Teams: membership, invitations, projects and shared tasks."""

from __future__ import annotations

from dataclasses import asdict
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from zeroed.api.deps import current_user, get_team_service
from zeroed.core.teams import TeamService
from zeroed.data.models import User

router = APIRouter(prefix="/api", tags=["teams"])

InviteRole = Literal["admin", "member", "viewer"]


class TeamCreate(BaseModel):
    name: str


class InviteRequest(BaseModel):
    email: str
    role: InviteRole = "member"


class InviteLinkRequest(BaseModel):
    role: InviteRole = "member"


class ProjectCreate(BaseModel):
    name: str
    description: str | None = None


class TeamTaskCreate(BaseModel):
    title: str
    project_id: int | None = None
    priority: str = "normal"
    due_date: str | None = None


class AssignRequest(BaseModel):
    assignee_id: int | None = None


class StatusRequest(BaseModel):
    status: str


@router.get("/teams")
def list_teams(user: User = Depends(current_user), teams: TeamService = Depends(get_team_service)):
    return {"teams": [asdict(t) for t in teams.list_teams(user.id)]}


@router.post("/teams", status_code=201)
def create_team(
    body: TeamCreate,
    user: User = Depends(current_user),
    teams: TeamService = Depends(get_team_service),
):
    return {"team": asdict(teams.create_team(user.id, body.name))}


@router.get("/teams/{slug}/members")
def list_members(slug: str, user: User = Depends(current_user), teams: TeamService = Depends(get_team_service)):
    return {"members": [asdict(m) for m in teams.list_members(slug, user.id)]}


@router.post("/teams/{slug}/invite", status_code=201)
async def invite(
    slug: str,
    body: InviteRequest,
    user: User = Depends(current_user),
    teams: TeamService = Depends(get_team_service),
):
    invitation = await teams.invite(slug, user.id, body.email, body.role)
    return {
        "invitation": {
            "id": invitation.id,
            "email": invitation.email,
            "role": invitation.role,
            "expires_at": invitation.expires_at,
        },
        "url": teams.invite_url(invitation.token),
    }


@router.post("/teams/{slug}/invite-link", status_code=201)
def invite_link(
    slug: str,
    body: InviteLinkRequest,
    user: User = Depends(current_user),
    teams: TeamService = Depends(get_team_service),
):
    return {"url": teams.create_invite_link(slug, user.id, body.role)}


@router.post("/invite/{token}/accept")
def accept_invite(token: str, user: User = Depends(current_user), teams: TeamService = Depends(get_team_service)):
    team = teams.accept_invitation(token, user.id)
    return {"success": True, "team": asdict(team)}


@router.get("/teams/{slug}/projects")
def list_projects(slug: str, user: User = Depends(current_user), teams: TeamService = Depends(get_team_service)):
    return {"projects": [asdict(p) for p in teams.list_projects(slug, user.id)]}


@router.post("/teams/{slug}/projects", status_code=201)
def create_project(
    slug: str,
    body: ProjectCreate,
    user: User = Depends(current_user),
    teams: TeamService = Depends(get_team_service),
):
    project = teams.create_project(slug, user.id, body.name, body.description)
    return {"project": asdict(project)}


@router.get("/teams/{slug}/tasks")
def list_team_tasks(
    slug: str,
    project_id: int | None = None,
    user: User = Depends(current_user),
    teams: TeamService = Depends(get_team_service),
):
    return {"tasks": [asdict(t) for t in teams.list_team_tasks(slug, user.id, project_id)]}


@router.post("/teams/{slug}/tasks", status_code=201)
def create_team_task(
    slug: str,
    body: TeamTaskCreate,
    user: User = Depends(current_user),
    teams: TeamService = Depends(get_team_service),
):
    task = teams.create_team_task(
        slug, user.id, body.title, project_id=body.project_id,
        priority=body.priority, due_date=body.due_date,
    )
    return {"task": asdict(task)}


@router.post("/teams/{slug}/tasks/{task_id}/assign")
async def assign_task(
    slug: str,
    task_id: int,
    body: AssignRequest,
    user: User = Depends(current_user),
    teams: TeamService = Depends(get_team_service),
):
    task = await teams.assign_task(slug, user.id, task_id, body.assignee_id)
    return {"task": asdict(task)}


@router.post("/teams/{slug}/tasks/{task_id}/status")
def set_task_status(
    slug: str,
    task_id: int,
    body: StatusRequest,
    user: User = Depends(current_user),
    teams: TeamService = Depends(get_team_service),
):
    return {"task": asdict(teams.set_task_status(slug, user.id, task_id, body.status))}
