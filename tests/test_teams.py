"""Tests for zeroed.core.teams — roles, invitations, projects, team tasks."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from zeroed.core.errors import NotFoundError, PermissionDeniedError, TaskError
from zeroed.core.teams import TeamService, slugify
from zeroed.ports.notification_port import NotificationError


@pytest.fixture
def mailer():
    mock = MagicMock()
    mock.send_email = AsyncMock()
    return mock


@pytest.fixture
def teams(team_db, user_db, mailer):
    return TeamService(team_db, user_db, mailer=mailer, app_url="https://bruh.test")


@pytest.fixture
def team(teams, user):
    return teams.create_team(user.id, "Launch Crew")


def _join(team_db, team, user_db, email, role):
    member = user_db.create_user(email, email.split("@")[0].title())
    team_db.add_member(team.id, member.id, role)
    return member


class TestTeams:
    def test_slugify(self):
        assert slugify("Launch Crew!") == "launch-crew"
        assert slugify("!!!") == "team"

    def test_creator_is_owner(self, teams, team_db, team, user):
        assert team.slug == "launch-crew"
        assert team_db.get_member(team.id, user.id).role == "owner"
        assert [t.slug for t in teams.list_teams(user.id)] == ["launch-crew"]

    def test_slug_collision_gets_suffix(self, teams, user, team):
        assert teams.create_team(user.id, "Launch crew").slug == "launch-crew-2"

    def test_blank_name(self, teams, user):
        with pytest.raises(TaskError):
            teams.create_team(user.id, "   ")

    def test_non_member_sees_not_found(self, teams, team, user_db):
        stranger = user_db.create_user("stranger@example.com")
        with pytest.raises(NotFoundError):
            teams.list_members(team.slug, stranger.id)


class TestInvitations:
    @pytest.mark.asyncio
    async def test_invite_emails_and_accept_joins(self, teams, team_db, user_db, team, user, mailer):
        invitation = await teams.invite(team.slug, user.id, " Sam@Example.com ", "admin")

        assert invitation.email == "sam@example.com"
        to, subject, html = mailer.send_email.await_args.args
        assert to == "sam@example.com"
        assert subject == "You've been invited to join Launch Crew on Bruh"
        assert f"https://bruh.test/invite/{invitation.token}" in html

        sam = user_db.create_user("sam@example.com")
        joined = teams.accept_invitation(invitation.token, sam.id)
        assert joined.id == team.id
        assert team_db.get_member(team.id, sam.id).role == "admin"

    @pytest.mark.asyncio
    async def test_token_is_single_use(self, teams, user_db, team, user):
        invitation = await teams.invite(team.slug, user.id, "sam@example.com")
        sam = user_db.create_user("sam@example.com")
        teams.accept_invitation(invitation.token, sam.id)
        with pytest.raises(TaskError, match="already been used"):
            teams.accept_invitation(invitation.token, sam.id)

    @pytest.mark.asyncio
    async def test_expired_invitation(self, teams, user_db, team, user):
        invitation = await teams.invite(team.slug, user.id, "sam@example.com")
        sam = user_db.create_user("sam@example.com")
        later = datetime.now(timezone.utc) + timedelta(days=8)
        with pytest.raises(TaskError, match="expired"):
            teams.accept_invitation(invitation.token, sam.id, now=later)

    def test_unknown_token(self, teams, user):
        with pytest.raises(NotFoundError):
            teams.accept_invitation("nope", user.id)

    @pytest.mark.asyncio
    async def test_members_cannot_invite(self, teams, team_db, user_db, team):
        member = _join(team_db, team, user_db, "mo@example.com", "member")
        with pytest.raises(PermissionDeniedError):
            await teams.invite(team.slug, member.id, "new@example.com")

    @pytest.mark.asyncio
    async def test_cannot_invite_owner_role_or_existing_member(self, teams, team_db, user_db, team, user):
        _join(team_db, team, user_db, "mo@example.com", "member")
        with pytest.raises(TaskError, match="Invalid role"):
            await teams.invite(team.slug, user.id, "new@example.com", "owner")
        with pytest.raises(TaskError, match="already a member"):
            await teams.invite(team.slug, user.id, "MO@example.com")

    @pytest.mark.asyncio
    async def test_email_failure_keeps_invitation(self, teams, team_db, team, user, mailer):
        mailer.send_email.side_effect = NotificationError("resend down")
        invitation = await teams.invite(team.slug, user.id, "sam@example.com")
        assert team_db.get_invitation_by_token(invitation.token) is not None

    def test_invite_link(self, teams, team_db, user_db, team, user):
        url = teams.create_invite_link(team.slug, user.id, "viewer")
        token = url.rsplit("/", 1)[1]
        assert url == f"https://bruh.test/invite/{token}"
        assert team_db.get_invitation_by_token(token).email.endswith("@invite.local")

        guest = user_db.create_user("guest@example.com")
        teams.accept_invitation(token, guest.id)
        assert team_db.get_member(team.id, guest.id).role == "viewer"


class TestTeamTasks:
    def test_viewer_is_read_only(self, teams, team_db, user_db, team):
        viewer = _join(team_db, team, user_db, "vi@example.com", "viewer")
        assert teams.list_team_tasks(team.slug, viewer.id) == []
        with pytest.raises(PermissionDeniedError):
            teams.create_team_task(team.slug, viewer.id, "Sneaky")
        with pytest.raises(PermissionDeniedError):
            teams.create_project(team.slug, viewer.id, "Sneaky")

    def test_project_scoping(self, teams, user, team):
        project = teams.create_project(team.slug, user.id, "Website")
        in_project = teams.create_team_task(team.slug, user.id, "Hero copy", project_id=project.id)
        teams.create_team_task(team.slug, user.id, "Loose end")

        assert [t.id for t in teams.list_team_tasks(team.slug, user.id, project_id=project.id)] == [in_project.id]
        assert len(teams.list_team_tasks(team.slug, user.id)) == 2
        with pytest.raises(NotFoundError):
            teams.create_team_task(team.slug, user.id, "Orphan", project_id=999)

    def test_invalid_priority(self, teams, user, team):
        with pytest.raises(TaskError):
            teams.create_team_task(team.slug, user.id, "x", priority="someday")

    @pytest.mark.asyncio
    async def test_assign_notifies_assignee(self, teams, team_db, user_db, team, user, mailer):
        mo = _join(team_db, team, user_db, "mo@example.com", "member")
        task = teams.create_team_task(team.slug, user.id, "Ship it", due_date="2025-03-01")

        assigned = await teams.assign_task(team.slug, user.id, task.id, mo.id)

        assert assigned.assignee_id == mo.id
        to, subject, html = mailer.send_email.await_args.args
        assert to == "mo@example.com"
        assert subject == "New task assigned: Ship it"
        assert "Due: 2025-03-01" in html

    @pytest.mark.asyncio
    async def test_self_assignment_is_silent(self, teams, team, user, mailer):
        task = teams.create_team_task(team.slug, user.id, "Mine")
        await teams.assign_task(team.slug, user.id, task.id, user.id)
        mailer.send_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_assignee_must_be_member(self, teams, user_db, team, user):
        outsider = user_db.create_user("out@example.com")
        task = teams.create_team_task(team.slug, user.id, "Ship it")
        with pytest.raises(TaskError):
            await teams.assign_task(team.slug, user.id, task.id, outsider.id)

    def test_status_changes(self, teams, team, user):
        task = teams.create_team_task(team.slug, user.id, "Ship it")
        assert teams.set_task_status(team.slug, user.id, task.id, "completed").status == "completed"
        with pytest.raises(TaskError):
            teams.set_task_status(team.slug, user.id, task.id, "done-ish")
