"""
Zeroed — Task Database.

SQLite-backed storage for users, lists, tasks, focus sessions, daily stats,
saved smart filters, habits and goals. Every store shares DATABASE_PATH and
creates its own tables on construction.
"""

from __future__ import annotations

import json
import logging
import secrets
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from zeroed.data.models import (
    INBOX_LIST_NAME,
    DailyStats,
    FocusSession,
    Goal,
    Habit,
    HabitLog,
    SmartFilter,
    Task,
    TaskList,
    User,
)
from zeroed.data.query import TaskQuery

logger = logging.getLogger(__name__)


class RecordNotFound(ValueError):
    """Raised when an update targets a row that does not exist (or is not owned)."""


class DuplicateRecord(ValueError):
    """Raised when an insert violates a uniqueness constraint."""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class SQLiteStore:
    """Connection handling shared by every store."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from zeroed.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError

    @staticmethod
    def _set_clause(fields: dict[str, Any], allowed: frozenset[str]) -> tuple[str, list[Any]]:
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        params = [int(v) if isinstance(v, bool) else v for v in fields.values()]
        return ", ".join(f"{name} = ?" for name in fields), params


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserDB(SQLiteStore):
    """Registered accounts and their notification preferences."""

    _UPDATABLE = frozenset({
        "display_name", "daily_digest_enabled", "weekly_summary_enabled",
    })

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id                     INTEGER PRIMARY KEY AUTOINCREMENT,
                    email                  TEXT    NOT NULL UNIQUE COLLATE NOCASE,
                    display_name           TEXT,
                    email_task_id          TEXT    UNIQUE,
                    daily_digest_enabled   INTEGER NOT NULL DEFAULT 0,
                    weekly_summary_enabled INTEGER NOT NULL DEFAULT 0,
                    is_suspended           INTEGER NOT NULL DEFAULT 0,
                    created_at             TEXT    NOT NULL
                )
            """)
            columns = {r["name"] for r in conn.execute("PRAGMA table_info(users)")}
            if "is_suspended" not in columns:
                conn.execute("ALTER TABLE users ADD COLUMN is_suspended INTEGER NOT NULL DEFAULT 0")
        logger.debug("Users table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            display_name=row["display_name"],
            email_task_id=row["email_task_id"],
            daily_digest_enabled=bool(row["daily_digest_enabled"]),
            weekly_summary_enabled=bool(row["weekly_summary_enabled"]),
            is_suspended=bool(row["is_suspended"]),
            created_at=row["created_at"],
        )

    def create_user(self, email: str, display_name: str | None = None) -> User:
        """Insert a new user with a fresh email-to-task address token."""
        email = email.strip().lower()
        email_task_id = secrets.token_hex(6)
        created_at = utc_now()
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO users (email, display_name, email_task_id, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (email, display_name, email_task_id, created_at),
                )
                user_id = cursor.lastrowid
        except sqlite3.IntegrityError as exc:
            raise DuplicateRecord(f"User {email} already exists") from exc

        logger.info("User registered: #%d <%s>", user_id, email)
        return User(
            id=user_id,
            email=email,
            display_name=display_name,
            email_task_id=email_task_id,
            created_at=created_at,
        )

    def get_user(self, user_id: int) -> User | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    def get_by_email(self, email: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?", (email.strip().lower(),)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def get_by_email_task_id(self, email_task_id: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email_task_id = ?", (email_task_id,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def list_users(
        self,
        daily_digest: bool | None = None,
        weekly_summary: bool | None = None,
    ) -> list[User]:
        """Return all users, optionally filtered by notification preference."""
        conditions: list[str] = []
        params: list = []
        if daily_digest is not None:
            conditions.append("daily_digest_enabled = ?")
            params.append(int(daily_digest))
        if weekly_summary is not None:
            conditions.append("weekly_summary_enabled = ?")
            params.append(int(weekly_summary))

        query = "SELECT * FROM users"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY id"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_user(r) for r in rows]

    def update_preferences(self, user_id: int, **fields: Any) -> User:
        if fields:
            assignments, params = self._set_clause(fields, self._UPDATABLE)
            with self._connect() as conn:
                cursor = conn.execute(
                    f"UPDATE users SET {assignments} WHERE id = ?", (*params, user_id),
                )
            if cursor.rowcount == 0:
                raise RecordNotFound(f"User {user_id} not found")
        user = self.get_user(user_id)
        if user is None:
            raise RecordNotFound(f"User {user_id} not found")
        return user

    def set_suspended(self, user_id: int, suspended: bool) -> User:
        """Suspend or reinstate an account. Suspended users fail API-key auth."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE users SET is_suspended = ? WHERE id = ?", (int(suspended), user_id),
            )
        if cursor.rowcount == 0:
            raise RecordNotFound(f"User {user_id} not found")
        logger.info("User #%d %s", user_id, "suspended" if suspended else "unsuspended")
        return self.get_user(user_id)

    def delete_user(self, user_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("User #%d deleted", user_id)
        return deleted


# ---------------------------------------------------------------------------
# Lists, tasks, focus sessions, daily stats
# ---------------------------------------------------------------------------


class TaskDB(SQLiteStore):
    """Lists, tasks (with tags and subtasks), focus sessions and daily stats."""

    _LIST_UPDATABLE = frozenset({"name", "color", "icon", "is_archived", "position"})
    _TASK_UPDATABLE = frozenset({
        "list_id", "title", "notes", "status", "priority", "due_date", "due_time",
        "start_date", "snoozed_until", "estimated_minutes", "actual_minutes",
        "position", "parent_id", "is_recurring", "completed_at",
    })
    _STAT_FIELDS = frozenset({
        "tasks_created", "tasks_completed", "focus_minutes", "sessions_completed",
    })

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS lists (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id     INTEGER NOT NULL,
                    name        TEXT    NOT NULL,
                    color       TEXT    NOT NULL DEFAULT '#6366f1',
                    icon        TEXT,
                    is_archived INTEGER NOT NULL DEFAULT 0,
                    position    INTEGER NOT NULL DEFAULT 0,
                    created_at  TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id                INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id           INTEGER NOT NULL,
                    list_id           INTEGER NOT NULL,
                    title             TEXT    NOT NULL,
                    notes             TEXT,
                    status            TEXT    NOT NULL DEFAULT 'pending',
                    priority          TEXT    NOT NULL DEFAULT 'normal',
                    due_date          TEXT,
                    due_time          TEXT,
                    start_date        TEXT,
                    snoozed_until     TEXT,
                    estimated_minutes INTEGER NOT NULL DEFAULT 25,
                    actual_minutes    INTEGER NOT NULL DEFAULT 0,
                    position          INTEGER NOT NULL DEFAULT 0,
                    parent_id         INTEGER,
                    is_recurring      INTEGER NOT NULL DEFAULT 0,
                    source            TEXT    NOT NULL DEFAULT 'app',
                    completed_at      TEXT,
                    created_at        TEXT    NOT NULL,
                    updated_at        TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_tags (
                    task_id INTEGER NOT NULL,
                    tag     TEXT    NOT NULL,
                    PRIMARY KEY (task_id, tag)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS focus_sessions (
                    id               INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id          INTEGER NOT NULL,
                    task_id          INTEGER,
                    duration_minutes INTEGER NOT NULL,
                    session_type     TEXT    NOT NULL DEFAULT 'focus',
                    actual_minutes   INTEGER NOT NULL DEFAULT 0,
                    completed        INTEGER NOT NULL DEFAULT 0,
                    started_at       TEXT    NOT NULL,
                    ended_at         TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS daily_stats (
                    user_id            INTEGER NOT NULL,
                    date               TEXT    NOT NULL,
                    tasks_created      INTEGER NOT NULL DEFAULT 0,
                    tasks_completed    INTEGER NOT NULL DEFAULT 0,
                    focus_minutes      INTEGER NOT NULL DEFAULT 0,
                    sessions_completed INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (user_id, date)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS email_logs (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id      INTEGER NOT NULL,
                    task_id      INTEGER NOT NULL,
                    from_email   TEXT,
                    subject      TEXT,
                    processed_at TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_user_due ON tasks (user_id, due_date)"
            )
        logger.debug("Task tables initialized at %s", self._db_path)

    # -- lists --------------------------------------------------------------

    @staticmethod
    def _row_to_list(row: sqlite3.Row) -> TaskList:
        return TaskList(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            color=row["color"],
            icon=row["icon"],
            is_archived=bool(row["is_archived"]),
            position=row["position"],
            created_at=row["created_at"],
        )

    def create_list(
        self,
        user_id: int,
        name: str,
        color: str = "#6366f1",
        icon: str | None = None,
    ) -> TaskList:
        """Insert a list at the end of the user's list order."""
        created_at = utc_now()
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COALESCE(MAX(position), 0) AS pos FROM lists WHERE user_id = ?",
                (user_id,),
            ).fetchone()
            position = row["pos"] + 1
            cursor = conn.execute(
                """
                INSERT INTO lists (user_id, name, color, icon, position, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, name, color, icon, position, created_at),
            )
            list_id = cursor.lastrowid

        logger.info("List created: #%d '%s' for user %d", list_id, name, user_id)
        return TaskList(
            id=list_id, user_id=user_id, name=name, color=color, icon=icon,
            position=position, created_at=created_at,
        )

    def get_list(self, list_id: int, user_id: int | None = None) -> TaskList | None:
        query = "SELECT * FROM lists WHERE id = ?"
        params: list = [list_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        return self._row_to_list(row) if row else None

    def find_list_by_name(self, user_id: int, name: str) -> TaskList | None:
        """Case-insensitive exact match on list name."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM lists
                WHERE user_id = ? AND name = ? COLLATE NOCASE
                ORDER BY position LIMIT 1
                """,
                (user_id, name.strip()),
            ).fetchone()
        return self._row_to_list(row) if row else None

    def get_inbox(self, user_id: int) -> TaskList | None:
        return self.find_list_by_name(user_id, INBOX_LIST_NAME)

    def list_lists(self, user_id: int, include_archived: bool = False) -> list[TaskList]:
        query = "SELECT * FROM lists WHERE user_id = ?"
        if not include_archived:
            query += " AND is_archived = 0"
        query += " ORDER BY position"
        with self._connect() as conn:
            rows = conn.execute(query, (user_id,)).fetchall()
        return [self._row_to_list(r) for r in rows]

    def update_list(self, list_id: int, user_id: int, **fields: Any) -> TaskList:
        if fields:
            assignments, params = self._set_clause(fields, self._LIST_UPDATABLE)
            with self._connect() as conn:
                cursor = conn.execute(
                    f"UPDATE lists SET {assignments} WHERE id = ? AND user_id = ?",
                    (*params, list_id, user_id),
                )
            if cursor.rowcount == 0:
                raise RecordNotFound(f"List {list_id} not found")
        task_list = self.get_list(list_id, user_id)
        if task_list is None:
            raise RecordNotFound(f"List {list_id} not found")
        return task_list

    def delete_list(self, list_id: int, user_id: int) -> bool:
        """Delete a list together with its tasks and their tags."""
        with self._connect() as conn:
            conn.execute(
                """
                DELETE FROM task_tags WHERE task_id IN
                    (SELECT id FROM tasks WHERE list_id = ? AND user_id = ?)
                """,
                (list_id, user_id),
            )
            conn.execute(
                "DELETE FROM tasks WHERE list_id = ? AND user_id = ?", (list_id, user_id),
            )
            cursor = conn.execute(
                "DELETE FROM lists WHERE id = ? AND user_id = ?", (list_id, user_id),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("List #%d deleted", list_id)
        return deleted

    # -- tasks --------------------------------------------------------------

    @staticmethod
    def _row_to_task(row: sqlite3.Row, tags: list[str] | None = None) -> Task:
        return Task(
            id=row["id"],
            user_id=row["user_id"],
            list_id=row["list_id"],
            title=row["title"],
            notes=row["notes"],
            status=row["status"],
            priority=row["priority"],
            due_date=row["due_date"],
            due_time=row["due_time"],
            start_date=row["start_date"],
            snoozed_until=row["snoozed_until"],
            estimated_minutes=row["estimated_minutes"],
            actual_minutes=row["actual_minutes"],
            position=row["position"],
            parent_id=row["parent_id"],
            is_recurring=bool(row["is_recurring"]),
            source=row["source"],
            completed_at=row["completed_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            tags=tags or [],
        )

    @staticmethod
    def _load_tags(conn: sqlite3.Connection, task_ids: list[int]) -> dict[int, list[str]]:
        if not task_ids:
            return {}
        placeholders = ", ".join("?" for _ in task_ids)
        rows = conn.execute(
            f"SELECT task_id, tag FROM task_tags WHERE task_id IN ({placeholders}) ORDER BY tag",
            task_ids,
        ).fetchall()
        tags: dict[int, list[str]] = {}
        for row in rows:
            tags.setdefault(row["task_id"], []).append(row["tag"])
        return tags

    def _rows_to_tasks(self, conn: sqlite3.Connection, rows: list[sqlite3.Row]) -> list[Task]:
        tags = self._load_tags(conn, [r["id"] for r in rows])
        return [self._row_to_task(r, tags.get(r["id"])) for r in rows]

    @staticmethod
    def _clean_tags(tags: list[str] | None) -> list[str]:
        seen: list[str] = []
        for tag in tags or []:
            tag = tag.strip().lstrip("#").lower()
            if tag and tag not in seen:
                seen.append(tag)
        return seen

    def create_task(
        self,
        user_id: int,
        list_id: int,
        title: str,
        notes: str | None = None,
        priority: str = "normal",
        status: str = "pending",
        due_date: str | None = None,
        due_time: str | None = None,
        start_date: str | None = None,
        estimated_minutes: int = 25,
        parent_id: int | None = None,
        is_recurring: bool = False,
        source: str = "app",
        tags: list[str] | None = None,
        position: int | None = None,
    ) -> Task:
        """Insert a task. position defaults to the end of its list."""
        now = utc_now()
        clean_tags = self._clean_tags(tags)

        with self._connect() as conn:
            if position is None:
                row = conn.execute(
                    "SELECT COALESCE(MAX(position), 0) AS pos FROM tasks WHERE list_id = ?",
                    (list_id,),
                ).fetchone()
                position = row["pos"] + 1
            cursor = conn.execute(
                """
                INSERT INTO tasks
                    (user_id, list_id, title, notes, status, priority,
                     due_date, due_time, start_date, estimated_minutes,
                     position, parent_id, is_recurring, source,
                     created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id, list_id, title, notes, status, priority,
                    due_date, due_time, start_date, estimated_minutes,
                    position, parent_id, int(is_recurring), source,
                    now, now,
                ),
            )
            task_id = cursor.lastrowid
            conn.executemany(
                "INSERT OR IGNORE INTO task_tags (task_id, tag) VALUES (?, ?)",
                [(task_id, t) for t in clean_tags],
            )

        logger.info("Task created: #%d '%s' in list %d", task_id, title, list_id)
        return Task(
            id=task_id, user_id=user_id, list_id=list_id, title=title, notes=notes,
            status=status, priority=priority, due_date=due_date, due_time=due_time,
            start_date=start_date, estimated_minutes=estimated_minutes,
            position=position, parent_id=parent_id, is_recurring=is_recurring,
            source=source, created_at=now, updated_at=now, tags=sorted(clean_tags),
        )

    def get_task(self, task_id: int, user_id: int | None = None) -> Task | None:
        query = "SELECT * FROM tasks WHERE id = ?"
        params: list = [task_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
            if row is None:
                return None
            return self._rows_to_tasks(conn, [row])[0]

    def update_task(self, task_id: int, user_id: int, **fields: Any) -> Task:
        """Update whitelisted columns and stamp updated_at."""
        if fields:
            assignments, params = self._set_clause(fields, self._TASK_UPDATABLE)
            with self._connect() as conn:
                cursor = conn.execute(
                    f"UPDATE tasks SET {assignments}, updated_at = ? WHERE id = ? AND user_id = ?",
                    (*params, utc_now(), task_id, user_id),
                )
            if cursor.rowcount == 0:
                raise RecordNotFound(f"Task {task_id} not found")
        task = self.get_task(task_id, user_id)
        if task is None:
            raise RecordNotFound(f"Task {task_id} not found")
        return task

    def set_tags(self, task_id: int, tags: list[str]) -> list[str]:
        """Replace a task's tags. Tags are lower-cased and de-duplicated."""
        clean_tags = self._clean_tags(tags)
        with self._connect() as conn:
            conn.execute("DELETE FROM task_tags WHERE task_id = ?", (task_id,))
            conn.executemany(
                "INSERT INTO task_tags (task_id, tag) VALUES (?, ?)",
                [(task_id, t) for t in clean_tags],
            )
        return sorted(clean_tags)

    def delete_task(self, task_id: int, user_id: int) -> bool:
        """Hard-delete a task and its subtasks."""
        with self._connect() as conn:
            conn.execute(
                """
                DELETE FROM task_tags WHERE task_id IN
                    (SELECT id FROM tasks WHERE (id = ? OR parent_id = ?) AND user_id = ?)
                """,
                (task_id, task_id, user_id),
            )
            conn.execute(
                "DELETE FROM tasks WHERE parent_id = ? AND user_id = ?", (task_id, user_id),
            )
            cursor = conn.execute(
                "DELETE FROM tasks WHERE id = ? AND user_id = ?", (task_id, user_id),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Task #%d deleted", task_id)
        return deleted

    def run_query(self, query: TaskQuery) -> list[Task]:
        """Execute a TaskQuery and return matching tasks with their tags."""
        sql, params = query.to_sql()
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
            return self._rows_to_tasks(conn, rows)

    def list_subtasks(self, parent_id: int) -> list[Task]:
        return self.run_query(TaskQuery().eq("parent_id", parent_id))

    def find_open_by_title(self, user_id: int, fragment: str) -> Task | None:
        """First pending task whose title contains fragment (case-insensitive)."""
        query = (
            TaskQuery()
            .eq("user_id", user_id)
            .eq("status", "pending")
            .ilike("title", f"%{fragment}%")
            .limit(1)
        )
        tasks = self.run_query(query)
        return tasks[0] if tasks else None

    def count_completed_between(self, user_id: int, start: str, end: str) -> int:
        """Count tasks completed in [start, end) (ISO timestamps or dates)."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS n FROM tasks
                WHERE user_id = ? AND status = 'completed'
                  AND completed_at >= ? AND completed_at < ?
                """,
                (user_id, start, end),
            ).fetchone()
        return row["n"]

    def log_email_task(
        self, user_id: int, task_id: int, from_email: str, subject: str,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO email_logs (user_id, task_id, from_email, subject, processed_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, task_id, from_email, subject, utc_now()),
            )

    # -- focus sessions -----------------------------------------------------

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> FocusSession:
        return FocusSession(
            id=row["id"],
            user_id=row["user_id"],
            task_id=row["task_id"],
            duration_minutes=row["duration_minutes"],
            session_type=row["session_type"],
            actual_minutes=row["actual_minutes"],
            completed=bool(row["completed"]),
            started_at=row["started_at"],
            ended_at=row["ended_at"],
        )

    def create_focus_session(
        self,
        user_id: int,
        task_id: int | None,
        duration_minutes: int,
        session_type: str = "focus",
    ) -> FocusSession:
        started_at = utc_now()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO focus_sessions
                    (user_id, task_id, duration_minutes, session_type, started_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, task_id, duration_minutes, session_type, started_at),
            )
            session_id = cursor.lastrowid
        return FocusSession(
            id=session_id, user_id=user_id, task_id=task_id,
            duration_minutes=duration_minutes, session_type=session_type,
            started_at=started_at,
        )

    def get_focus_session(self, session_id: int, user_id: int) -> FocusSession | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM focus_sessions WHERE id = ? AND user_id = ?",
                (session_id, user_id),
            ).fetchone()
        return self._row_to_session(row) if row else None

    def complete_focus_session(
        self, session_id: int, user_id: int, actual_minutes: int,
    ) -> FocusSession:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE focus_sessions
                SET completed = 1, actual_minutes = ?, ended_at = ?
                WHERE id = ? AND user_id = ?
                """,
                (actual_minutes, utc_now(), session_id, user_id),
            )
        if cursor.rowcount == 0:
            raise RecordNotFound(f"Focus session {session_id} not found")
        session = self.get_focus_session(session_id, user_id)
        assert session is not None
        return session

    # -- daily stats --------------------------------------------------------

    def increment_daily_stat(
        self, user_id: int, day: str, field: str, amount: int = 1,
    ) -> None:
        """Upsert the (user, day) row and add amount to one counter."""
        if field not in self._STAT_FIELDS:
            raise ValueError(f"Unknown daily stat: {field!r}")
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO daily_stats (user_id, date) VALUES (?, ?)",
                (user_id, day),
            )
            conn.execute(
                f"UPDATE daily_stats SET {field} = {field} + ? WHERE user_id = ? AND date = ?",
                (amount, user_id, day),
            )

    def get_daily_stats(self, user_id: int, start: str, end: str) -> list[DailyStats]:
        """Stats rows with start <= date <= end, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM daily_stats
                WHERE user_id = ? AND date >= ? AND date <= ?
                ORDER BY date
                """,
                (user_id, start, end),
            ).fetchall()
        return [
            DailyStats(
                user_id=r["user_id"],
                date=r["date"],
                tasks_created=r["tasks_created"],
                tasks_completed=r["tasks_completed"],
                focus_minutes=r["focus_minutes"],
                sessions_completed=r["sessions_completed"],
            )
            for r in rows
        ]


# ---------------------------------------------------------------------------
# Saved smart filters
# ---------------------------------------------------------------------------


class SmartFilterDB(SQLiteStore):
    """Saved filter definitions (conditions + sort) per user."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS smart_filters (
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id    INTEGER NOT NULL,
                    name       TEXT    NOT NULL,
                    config     TEXT    NOT NULL,
                    icon       TEXT    NOT NULL DEFAULT 'filter',
                    is_pinned  INTEGER NOT NULL DEFAULT 0,
                    use_count  INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT    NOT NULL
                )
            """)

    @staticmethod
    def _row_to_filter(row: sqlite3.Row) -> SmartFilter:
        return SmartFilter(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            config=json.loads(row["config"]),
            icon=row["icon"],
            is_pinned=bool(row["is_pinned"]),
            use_count=row["use_count"],
            created_at=row["created_at"],
        )

    def create_filter(
        self, user_id: int, name: str, config: dict, icon: str = "filter",
        is_pinned: bool = False,
    ) -> SmartFilter:
        created_at = utc_now()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO smart_filters (user_id, name, config, icon, is_pinned, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, name, json.dumps(config), icon, int(is_pinned), created_at),
            )
            filter_id = cursor.lastrowid
        logger.info("Smart filter saved: #%d '%s'", filter_id, name)
        return SmartFilter(
            id=filter_id, user_id=user_id, name=name, config=config, icon=icon,
            is_pinned=is_pinned, created_at=created_at,
        )

    def get_filter(self, filter_id: int, user_id: int) -> SmartFilter | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM smart_filters WHERE id = ? AND user_id = ?",
                (filter_id, user_id),
            ).fetchone()
        return self._row_to_filter(row) if row else None

    def list_filters(self, user_id: int) -> list[SmartFilter]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM smart_filters WHERE user_id = ?
                ORDER BY is_pinned DESC, use_count DESC, id
                """,
                (user_id,),
            ).fetchall()
        return [self._row_to_filter(r) for r in rows]

    def increment_use(self, filter_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE smart_filters SET use_count = use_count + 1 WHERE id = ?",
                (filter_id,),
            )

    def delete_filter(self, filter_id: int, user_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM smart_filters WHERE id = ? AND user_id = ?",
                (filter_id, user_id),
            )
        return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Habits
# ---------------------------------------------------------------------------


class HabitDB(SQLiteStore):
    """Habits and their per-day completion logs."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS habits (
                    id                INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id           INTEGER NOT NULL,
                    name              TEXT    NOT NULL,
                    description       TEXT,
                    frequency         TEXT    NOT NULL DEFAULT 'daily',
                    frequency_days    TEXT    NOT NULL DEFAULT '[]',
                    target_per_day    INTEGER NOT NULL DEFAULT 1,
                    streak_current    INTEGER NOT NULL DEFAULT 0,
                    streak_best       INTEGER NOT NULL DEFAULT 0,
                    total_completions INTEGER NOT NULL DEFAULT 0,
                    is_archived       INTEGER NOT NULL DEFAULT 0,
                    created_at        TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS habit_logs (
                    habit_id        INTEGER NOT NULL,
                    user_id         INTEGER NOT NULL,
                    date            TEXT    NOT NULL,
                    completed_count INTEGER NOT NULL DEFAULT 0,
                    notes           TEXT,
                    PRIMARY KEY (habit_id, date)
                )
            """)

    @staticmethod
    def _row_to_habit(row: sqlite3.Row) -> Habit:
        return Habit(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            description=row["description"],
            frequency=row["frequency"],
            frequency_days=json.loads(row["frequency_days"]),
            target_per_day=row["target_per_day"],
            streak_current=row["streak_current"],
            streak_best=row["streak_best"],
            total_completions=row["total_completions"],
            is_archived=bool(row["is_archived"]),
            created_at=row["created_at"],
        )

    def create_habit(
        self,
        user_id: int,
        name: str,
        frequency: str = "daily",
        frequency_days: list[int] | None = None,
        target_per_day: int = 1,
        description: str | None = None,
    ) -> Habit:
        created_at = utc_now()
        days = frequency_days or []
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO habits
                    (user_id, name, description, frequency, frequency_days,
                     target_per_day, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (user_id, name, description, frequency, json.dumps(days),
                 target_per_day, created_at),
            )
            habit_id = cursor.lastrowid
        logger.info("Habit created: #%d '%s' (%s)", habit_id, name, frequency)
        return Habit(
            id=habit_id, user_id=user_id, name=name, description=description,
            frequency=frequency, frequency_days=days, target_per_day=target_per_day,
            created_at=created_at,
        )

    def get_habit(self, habit_id: int, user_id: int) -> Habit | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM habits WHERE id = ? AND user_id = ?", (habit_id, user_id),
            ).fetchone()
        return self._row_to_habit(row) if row else None

    def list_habits(self, user_id: int, include_archived: bool = False) -> list[Habit]:
        query = "SELECT * FROM habits WHERE user_id = ?"
        if not include_archived:
            query += " AND is_archived = 0"
        query += " ORDER BY id"
        with self._connect() as conn:
            rows = conn.execute(query, (user_id,)).fetchall()
        return [self._row_to_habit(r) for r in rows]

    def archive_habit(self, habit_id: int, user_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE habits SET is_archived = 1 WHERE id = ? AND user_id = ?",
                (habit_id, user_id),
            )
        return cursor.rowcount > 0

    def add_log(
        self, habit_id: int, user_id: int, day: str, count: int = 1,
        notes: str | None = None,
    ) -> HabitLog:
        """Add count completions on day (creating the log row if needed)."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO habit_logs (habit_id, user_id, date, completed_count)
                VALUES (?, ?, ?, 0)
                """,
                (habit_id, user_id, day),
            )
            conn.execute(
                """
                UPDATE habit_logs
                SET completed_count = MAX(completed_count + ?, 0),
                    notes = COALESCE(?, notes)
                WHERE habit_id = ? AND date = ?
                """,
                (count, notes, habit_id, day),
            )
            row = conn.execute(
                "SELECT * FROM habit_logs WHERE habit_id = ? AND date = ?", (habit_id, day),
            ).fetchone()
        return HabitLog(
            habit_id=row["habit_id"],
            user_id=row["user_id"],
            date=row["date"],
            completed_count=row["completed_count"],
            notes=row["notes"],
        )

    def get_logs(self, habit_id: int) -> list[HabitLog]:
        """All logs for a habit, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM habit_logs WHERE habit_id = ? ORDER BY date DESC",
                (habit_id,),
            ).fetchall()
        return [
            HabitLog(
                habit_id=r["habit_id"],
                user_id=r["user_id"],
                date=r["date"],
                completed_count=r["completed_count"],
                notes=r["notes"],
            )
            for r in rows
        ]

    def update_stats(
        self, habit_id: int, streak_current: int, streak_best: int,
        total_completions: int,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE habits
                SET streak_current = ?, streak_best = ?, total_completions = ?
                WHERE id = ?
                """,
                (streak_current, streak_best, total_completions, habit_id),
            )


# ---------------------------------------------------------------------------
# Goals
# ---------------------------------------------------------------------------


class GoalDB(SQLiteStore):
    """Measurable goals with a target and running progress."""

    _UPDATABLE = frozenset({
        "title", "description", "target_value", "current_value", "end_date",
        "status", "completed_at",
    })

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS goals (
                    id            INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id       INTEGER NOT NULL,
                    title         TEXT    NOT NULL,
                    description   TEXT,
                    target_type   TEXT    NOT NULL,
                    target_value  INTEGER NOT NULL,
                    current_value INTEGER NOT NULL DEFAULT 0,
                    period        TEXT    NOT NULL DEFAULT 'weekly',
                    start_date    TEXT    NOT NULL,
                    end_date      TEXT,
                    status        TEXT    NOT NULL DEFAULT 'active',
                    completed_at  TEXT
                )
            """)

    @staticmethod
    def _row_to_goal(row: sqlite3.Row) -> Goal:
        return Goal(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            description=row["description"],
            target_type=row["target_type"],
            target_value=row["target_value"],
            current_value=row["current_value"],
            period=row["period"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            status=row["status"],
            completed_at=row["completed_at"],
        )

    def create_goal(
        self,
        user_id: int,
        title: str,
        target_type: str,
        target_value: int,
        period: str,
        start_date: str,
        end_date: str | None = None,
        description: str | None = None,
    ) -> Goal:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO goals
                    (user_id, title, description, target_type, target_value,
                     period, start_date, end_date)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (user_id, title, description, target_type, target_value,
                 period, start_date, end_date),
            )
            goal_id = cursor.lastrowid
        logger.info("Goal created: #%d '%s' (%s %d)", goal_id, title, target_type, target_value)
        return Goal(
            id=goal_id, user_id=user_id, title=title, description=description,
            target_type=target_type, target_value=target_value, period=period,
            start_date=start_date, end_date=end_date,
        )

    def get_goal(self, goal_id: int, user_id: int) -> Goal | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM goals WHERE id = ? AND user_id = ?", (goal_id, user_id),
            ).fetchone()
        return self._row_to_goal(row) if row else None

    def list_goals(
        self, user_id: int, status: str | None = None, target_type: str | None = None,
    ) -> list[Goal]:
        query = "SELECT * FROM goals WHERE user_id = ?"
        params: list = [user_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        if target_type is not None:
            query += " AND target_type = ?"
            params.append(target_type)
        query += " ORDER BY id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_goal(r) for r in rows]

    def update_goal(self, goal_id: int, user_id: int, **fields: Any) -> Goal:
        if fields:
            assignments, params = self._set_clause(fields, self._UPDATABLE)
            with self._connect() as conn:
                cursor = conn.execute(
                    f"UPDATE goals SET {assignments} WHERE id = ? AND user_id = ?",
                    (*params, goal_id, user_id),
                )
            if cursor.rowcount == 0:
                raise RecordNotFound(f"Goal {goal_id} not found")
        goal = self.get_goal(goal_id, user_id)
        if goal is None:
            raise RecordNotFound(f"Goal {goal_id} not found")
        return goal
