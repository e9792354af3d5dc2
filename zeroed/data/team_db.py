"""
Zeroed — Team Database.

Teams, memberships, invitations, projects and shared team tasks.
"""

from __future__ import annotations

import logging
import sqlite3

from zeroed.data.db import DuplicateRecord, RecordNotFound, SQLiteStore, utc_now
from zeroed.data.models import Project, Team, TeamInvitation, TeamMember, TeamTask

logger = logging.getLogger(__name__)


class TeamDB(SQLiteStore):
    """Shared workspaces scoped by team_id."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS teams (
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    name       TEXT    NOT NULL,
                    slug       TEXT    NOT NULL UNIQUE,
                    owner_id   INTEGER NOT NULL,
                    created_at TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS team_members (
                    team_id    INTEGER NOT NULL,
                    user_id    INTEGER NOT NULL,
                    role       TEXT    NOT NULL DEFAULT 'member',
                    invited_by INTEGER,
                    joined_at  TEXT    NOT NULL,
                    PRIMARY KEY (team_id, user_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS team_invitations (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    team_id     INTEGER NOT NULL,
                    email       TEXT    NOT NULL COLLATE NOCASE,
                    role        TEXT    NOT NULL,
                    token       TEXT    NOT NULL UNIQUE,
                    invited_by  INTEGER,
                    expires_at  TEXT    NOT NULL,
                    accepted_at TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS projects (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    team_id     INTEGER NOT NULL,
                    name        TEXT    NOT NULL,
                    description TEXT,
                    created_by  INTEGER,
                    created_at  TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS team_tasks (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    team_id     INTEGER NOT NULL,
                    project_id  INTEGER,
                    title       TEXT    NOT NULL,
                    status      TEXT    NOT NULL DEFAULT 'pending',
                    priority    TEXT    NOT NULL DEFAULT 'normal',
                    assignee_id INTEGER,
                    due_date    TEXT,
                    created_by  INTEGER,
                    created_at  TEXT    NOT NULL
                )
            """)

    @staticmethod
    def _row_to_team(row: sqlite3.Row) -> Team:
        return Team(
            id=row["id"], name=row["name"], slug=row["slug"],
            owner_id=row["owner_id"], created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_member(row: sqlite3.Row) -> TeamMember:
        return TeamMember(
            team_id=row["team_id"], user_id=row["user_id"], role=row["role"],
            invited_by=row["invited_by"], joined_at=row["joined_at"],
        )

    @staticmethod
    def _row_to_invitation(row: sqlite3.Row) -> TeamInvitation:
        return TeamInvitation(
            id=row["id"], team_id=row["team_id"], email=row["email"],
            role=row["role"], token=row["token"], expires_at=row["expires_at"],
            invited_by=row["invited_by"], accepted_at=row["accepted_at"],
        )

    @staticmethod
    def _row_to_team_task(row: sqlite3.Row) -> TeamTask:
        return TeamTask(
            id=row["id"], team_id=row["team_id"], project_id=row["project_id"],
            title=row["title"], status=row["status"], priority=row["priority"],
            assignee_id=row["assignee_id"], due_date=row["due_date"],
            created_by=row["created_by"],
        )

    # -- teams & members ----------------------------------------------------

    def create_team(self, name: str, slug: str, owner_id: int) -> Team:
        """Insert a team and enrol owner_id as its owner."""
        created_at = utc_now()
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "INSERT INTO teams (name, slug, owner_id, created_at) VALUES (?, ?, ?, ?)",
                    (name, slug, owner_id, created_at),
                )
                team_id = cursor.lastrowid
                conn.execute(
                    """
                    INSERT INTO team_members (team_id, user_id, role, joined_at)
                    VALUES (?, ?, 'owner', ?)
                    """,
                    (team_id, owner_id, created_at),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateRecord(f"Team slug {slug!r} is taken") from exc
        logger.info("Team created: #%d '%s' (%s)", team_id, name, slug)
        return Team(id=team_id, name=name, slug=slug, owner_id=owner_id, created_at=created_at)

    def get_team(self, team_id: int) -> Team | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM teams WHERE id = ?", (team_id,)).fetchone()
        return self._row_to_team(row) if row else None

    def get_team_by_slug(self, slug: str) -> Team | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM teams WHERE slug = ?", (slug,)).fetchone()
        return self._row_to_team(row) if row else None

    def list_user_teams(self, user_id: int) -> list[Team]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT teams.* FROM teams
                JOIN team_members ON team_members.team_id = teams.id
                WHERE team_members.user_id = ?
                ORDER BY teams.id
                """,
                (user_id,),
            ).fetchall()
        return [self._row_to_team(r) for r in rows]

    def get_member(self, team_id: int, user_id: int) -> TeamMember | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM team_members WHERE team_id = ? AND user_id = ?",
                (team_id, user_id),
            ).fetchone()
        return self._row_to_member(row) if row else None

    def list_members(self, team_id: int) -> list[TeamMember]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM team_members WHERE team_id = ? ORDER BY joined_at, user_id",
                (team_id,),
            ).fetchall()
        return [self._row_to_member(r) for r in rows]

    def add_member(
        self, team_id: int, user_id: int, role: str, invited_by: int | None = None,
    ) -> TeamMember:
        joined_at = utc_now()
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO team_members (team_id, user_id, role, invited_by, joined_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (team_id, user_id, role, invited_by, joined_at),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateRecord(f"User {user_id} is already in team {team_id}") from exc
        logger.info("User %d joined team %d as %s", user_id, team_id, role)
        return TeamMember(
            team_id=team_id, user_id=user_id, role=role, invited_by=invited_by,
            joined_at=joined_at,
        )

    # -- invitations --------------------------------------------------------

    def create_invitation(
        self, team_id: int, email: str, role: str, token: str, expires_at: str,
        invited_by: int | None = None,
    ) -> TeamInvitation:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO team_invitations
                    (team_id, email, role, token, invited_by, expires_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (team_id, email.lower(), role, token, invited_by, expires_at),
            )
            invitation_id = cursor.lastrowid
        return TeamInvitation(
            id=invitation_id, team_id=team_id, email=email.lower(), role=role,
            token=token, expires_at=expires_at, invited_by=invited_by,
        )

    def get_invitation_by_token(self, token: str) -> TeamInvitation | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM team_invitations WHERE token = ?", (token,),
            ).fetchone()
        return self._row_to_invitation(row) if row else None

    def mark_invitation_accepted(self, invitation_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE team_invitations SET accepted_at = ? WHERE id = ?",
                (utc_now(), invitation_id),
            )

    # -- projects & team tasks ---------------------------------------------

    def create_project(
        self, team_id: int, name: str, description: str | None = None,
        created_by: int | None = None,
    ) -> Project:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO projects (team_id, name, description, created_by, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (team_id, name, description, created_by, utc_now()),
            )
            project_id = cursor.lastrowid
        return Project(
            id=project_id, team_id=team_id, name=name, description=description,
            created_by=created_by,
        )

    def get_project(self, project_id: int, team_id: int) -> Project | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM projects WHERE id = ? AND team_id = ?", (project_id, team_id),
            ).fetchone()
        if row is None:
            return None
        return Project(
            id=row["id"], team_id=row["team_id"], name=row["name"],
            description=row["description"], created_by=row["created_by"],
        )

    def list_projects(self, team_id: int) -> list[Project]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM projects WHERE team_id = ? ORDER BY id", (team_id,),
            ).fetchall()
        return [
            Project(
                id=r["id"], team_id=r["team_id"], name=r["name"],
                description=r["description"], created_by=r["created_by"],
            )
            for r in rows
        ]

    def create_team_task(
        self,
        team_id: int,
        title: str,
        project_id: int | None = None,
        priority: str = "normal",
        assignee_id: int | None = None,
        due_date: str | None = None,
        created_by: int | None = None,
    ) -> TeamTask:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO team_tasks
                    (team_id, project_id, title, priority, assignee_id,
                     due_date, created_by, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (team_id, project_id, title, priority, assignee_id, due_date,
                 created_by, utc_now()),
            )
            task_id = cursor.lastrowid
        return TeamTask(
            id=task_id, team_id=team_id, project_id=project_id, title=title,
            priority=priority, assignee_id=assignee_id, due_date=due_date,
            created_by=created_by,
        )

    def get_team_task(self, task_id: int, team_id: int) -> TeamTask | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM team_tasks WHERE id = ? AND team_id = ?", (task_id, team_id),
            ).fetchone()
        return self._row_to_team_task(row) if row else None

    def list_team_tasks(
        self, team_id: int, project_id: int | None = None,
        assignee_id: int | None = None,
    ) -> list[TeamTask]:
        query = "SELECT * FROM team_tasks WHERE team_id = ?"
        params: list = [team_id]
        if project_id is not None:
            query += " AND project_id = ?"
            params.append(project_id)
        if assignee_id is not None:
            query += " AND assignee_id = ?"
            params.append(assignee_id)
        query += " ORDER BY id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_team_task(r) for r in rows]

    def assign_team_task(self, task_id: int, team_id: int, assignee_id: int | None) -> TeamTask:
        """Set (or clear, with None) the assignee."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE team_tasks SET assignee_id = ? WHERE id = ? AND team_id = ?",
                (assignee_id, task_id, team_id),
            )
        if cursor.rowcount == 0:
            raise RecordNotFound(f"Team task {task_id} not found")
        task = self.get_team_task(task_id, team_id)
        assert task is not None
        return task

    def set_team_task_status(self, task_id: int, team_id: int, status: str) -> TeamTask:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE team_tasks SET status = ? WHERE id = ? AND team_id = ?",
                (status, task_id, team_id),
            )
        if cursor.rowcount == 0:
            raise RecordNotFound(f"Team task {task_id} not found")
        task = self.get_team_task(task_id, team_id)
        assert task is not None
        return task
