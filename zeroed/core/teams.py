"""
Zeroed — Teams.

Role-based collaboration: owners and admins manage membership, members
create and assign work, viewers only read. Invitations are single-use
random tokens that expire after seven days.
"""

from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from zeroed.core.errors import NotFoundError, PermissionDeniedError, TaskError
from zeroed.data.db import DuplicateRecord
from zeroed.data.models import TASK_PRIORITIES, TEAM_ROLES
from zeroed.integrations import email_templates
from zeroed.ports.notification_port import NotificationError

if TYPE_CHECKING:
    from zeroed.data.db import UserDB
    from zeroed.data.models import Project, Team, TeamInvitation, TeamMember, TeamTask
    from zeroed.data.team_db import TeamDB
    from zeroed.ports.notification_port import EmailPort

logger = logging.getLogger(__name__)

INVITE_TTL_DAYS = 7
MANAGER_ROLES = ("owner", "admin")
WRITER_ROLES = ("owner", "admin", "member")


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "team"


def _parse(ts: str) -> datetime:
    parsed = datetime.fromisoformat(ts)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TeamService:
    """Team membership, invitations, projects and shared tasks."""

    def __init__(
        self,
        team_db: TeamDB,
        user_db: UserDB,
        mailer: EmailPort | None = None,
        app_url: str = "",
    ) -> None:
        self._teams = team_db
        self._users = user_db
        self._mailer = mailer
        self._app_url = app_url

    # ------------------------------------------------------------------
    # Access checks
    # ------------------------------------------------------------------

    def _require_team(self, slug: str) -> Team:
        team = self._teams.get_team_by_slug(slug)
        if team is None:
            raise NotFoundError(f"Team '{slug}' not found")
        return team

    def _require_role(self, team: Team, user_id: int, roles: tuple[str, ...]) -> TeamMember:
        member = self._teams.get_member(team.id, user_id)
        if member is None:
            # non-members must not learn the team exists
            raise NotFoundError(f"Team '{team.slug}' not found")
        if member.role not in roles:
            raise PermissionDeniedError("Permission denied")
        return member

    def get_team_for_member(self, slug: str, user_id: int) -> tuple[Team, TeamMember]:
        team = self._require_team(slug)
        return team, self._require_role(team, user_id, TEAM_ROLES)

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    def create_team(self, owner_id: int, name: str) -> Team:
        """Create a team with a unique slug derived from name."""
        name = (name or "").strip()
        if not name:
            raise TaskError("Team name is required")

        base = slugify(name)
        for attempt in range(1, 50):
            slug = base if attempt == 1 else f"{base}-{attempt}"
            if self._teams.get_team_by_slug(slug) is not None:
                continue
            try:
                return self._teams.create_team(name, slug, owner_id)
            except DuplicateRecord:
                continue
        return self._teams.create_team(name, f"{base}-{secrets.token_hex(3)}", owner_id)

    def list_teams(self, user_id: int) -> list[Team]:
        return self._teams.list_user_teams(user_id)

    def list_members(self, slug: str, user_id: int) -> list[TeamMember]:
        team, _ = self.get_team_for_member(slug, user_id)
        return self._teams.list_members(team.id)

    # ------------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------------

    async def invite(
        self, slug: str, inviter_id: int, email: str, role: str = "member",
    ) -> TeamInvitation:
        """Invite an email address; only owners and admins may invite."""
        team = self._require_team(slug)
        self._require_role(team, inviter_id, MANAGER_ROLES)

        email = (email or "").strip().lower()
        if "@" not in email:
            raise TaskError("A valid email is required")
        if role not in TEAM_ROLES or role == "owner":
            raise TaskError(f"Invalid role: {role!r}")

        existing = self._users.get_by_email(email)
        if existing is not None and self._teams.get_member(team.id, existing.id) is not None:
            raise TaskError("User is already a member of this team")

        invitation = self._create_invitation(team, inviter_id, email, role)
        await self._send_invite_email(team, inviter_id, invitation)
        return invitation

    def create_invite_link(self, slug: str, inviter_id: int, role: str = "member") -> str:
        """A shareable invite link backed by a placeholder-address invitation."""
        team = self._require_team(slug)
        self._require_role(team, inviter_id, MANAGER_ROLES)
        if role not in TEAM_ROLES or role == "owner":
            raise TaskError(f"Invalid role: {role!r}")

        token = secrets.token_hex(32)
        placeholder = f"link-{token[:8]}@invite.local"
        invitation = self._create_invitation(team, inviter_id, placeholder, role, token)
        return self.invite_url(invitation.token)

    def _create_invitation(
        self, team: Team, inviter_id: int, email: str, role: str, token: str | None = None,
    ) -> TeamInvitation:
        expires_at = datetime.now(timezone.utc) + timedelta(days=INVITE_TTL_DAYS)
        invitation = self._teams.create_invitation(
            team.id, email, role, token or secrets.token_hex(32),
            expires_at.isoformat(timespec="seconds"), invited_by=inviter_id,
        )
        logger.info("Invitation #%d to team '%s' created for %s", invitation.id, team.slug, email)
        return invitation

    def invite_url(self, token: str) -> str:
        return f"{self._app_url}/invite/{token}"

    async def _send_invite_email(self, team: Team, inviter_id: int, invitation: TeamInvitation) -> None:
        if self._mailer is None:
            return
        inviter = self._users.get_user(inviter_id)
        inviter_name = (inviter.display_name or inviter.email) if inviter else "A teammate"
        subject, html = email_templates.team_invite_email(
            team.name, inviter_name, invitation.role, self.invite_url(invitation.token), self._app_url,
        )
        try:
            await self._mailer.send_email(invitation.email, subject, html)
        except NotificationError as exc:
            # invitation stays valid; the link can be shared manually
            logger.warning("Invite email to %s failed: %s", invitation.email, exc)

    def accept_invitation(self, token: str, user_id: int, now: datetime | None = None) -> Team:
        """Join the invitation's team. Existing members just consume the token."""
        invitation = self._teams.get_invitation_by_token(token)
        if invitation is None:
            raise NotFoundError("Invitation not found")
        if invitation.accepted_at:
            raise TaskError("This invitation has already been used")
        if _parse(invitation.expires_at) < (now or datetime.now(timezone.utc)):
            raise TaskError("This invitation has expired")

        team = self._teams.get_team(invitation.team_id)
        if team is None:
            raise NotFoundError("Team no longer exists")

        if self._teams.get_member(team.id, user_id) is None:
            self._teams.add_member(team.id, user_id, invitation.role, invitation.invited_by)
        else:
            logger.info("User %d already in team '%s', marking invite used", user_id, team.slug)
        self._teams.mark_invitation_accepted(invitation.id)
        return team

    # ------------------------------------------------------------------
    # Projects & team tasks
    # ------------------------------------------------------------------

    def create_project(
        self, slug: str, user_id: int, name: str, description: str | None = None,
    ) -> Project:
        team = self._require_team(slug)
        self._require_role(team, user_id, WRITER_ROLES)
        name = (name or "").strip()
        if not name:
            raise TaskError("Project name is required")
        return self._teams.create_project(team.id, name, description, created_by=user_id)

    def list_projects(self, slug: str, user_id: int) -> list[Project]:
        team, _ = self.get_team_for_member(slug, user_id)
        return self._teams.list_projects(team.id)

    def create_team_task(
        self,
        slug: str,
        user_id: int,
        title: str,
        project_id: int | None = None,
        priority: str = "normal",
        due_date: str | None = None,
    ) -> TeamTask:
        team = self._require_team(slug)
        self._require_role(team, user_id, WRITER_ROLES)
        title = (title or "").strip()
        if not title:
            raise TaskError("Title is required")
        if priority not in TASK_PRIORITIES:
            raise TaskError(f"Invalid priority: {priority!r}")
        if project_id is not None and self._teams.get_project(project_id, team.id) is None:
            raise NotFoundError(f"Project {project_id} not found")
        return self._teams.create_team_task(
            team.id, title, project_id=project_id, priority=priority,
            due_date=due_date, created_by=user_id,
        )

    def list_team_tasks(
        self, slug: str, user_id: int, project_id: int | None = None,
    ) -> list[TeamTask]:
        team, _ = self.get_team_for_member(slug, user_id)
        return self._teams.list_team_tasks(team.id, project_id=project_id)

    async def assign_task(
        self, slug: str, user_id: int, task_id: int, assignee_id: int | None,
    ) -> TeamTask:
        """Assign (or with None, unassign) a team task. Notifies the new assignee."""
        team = self._require_team(slug)
        self._require_role(team, user_id, WRITER_ROLES)

        task = self._teams.get_team_task(task_id, team.id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        if assignee_id is not None and self._teams.get_member(team.id, assignee_id) is None:
            raise TaskError("Assignee must be a member of the team")

        task = self._teams.assign_team_task(task_id, team.id, assignee_id)
        if assignee_id is not None and assignee_id != user_id:
            await self._send_assignment_email(team, user_id, task)
        return task

    async def _send_assignment_email(self, team: Team, assigner_id: int, task: TeamTask) -> None:
        if self._mailer is None:
            return
        assignee = self._users.get_user(task.assignee_id)
        if assignee is None:
            return
        assigner = self._users.get_user(assigner_id)
        project = self._teams.get_project(task.project_id, team.id) if task.project_id else None
        subject, html = email_templates.task_assigned_email(
            task.title,
            project.name if project else team.name,
            (assigner.display_name or assigner.email) if assigner else "A teammate",
            f"{self._app_url}/teams/{team.slug}",
            self._app_url,
            due_date=task.due_date,
        )
        try:
            await self._mailer.send_email(assignee.email, subject, html)
        except NotificationError as exc:
            logger.warning("Assignment email to %s failed: %s", assignee.email, exc)

    def set_task_status(self, slug: str, user_id: int, task_id: int, status: str) -> TeamTask:
        team = self._require_team(slug)
        self._require_role(team, user_id, WRITER_ROLES)
        if status not in ("pending", "in_progress", "completed", "cancelled"):
            raise TaskError(f"Invalid status: {status!r}")
        if self._teams.get_team_task(task_id, team.id) is None:
            raise NotFoundError(f"Task {task_id} not found")
        return self._teams.set_team_task_status(task_id, team.id, status)
