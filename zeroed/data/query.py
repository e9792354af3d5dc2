"""
Zeroed — Task query builder.

A chainable builder over the tasks table that renders parameterised SQL.
Each filter method appends one AND-ed clause and returns the builder, so
callers (notably the smart filter engine) can fold conditions onto it.
Column names never come from user input directly: every field is looked up
in _FIELDS and unknown names raise QueryError.
"""

from __future__ import annotations

from typing import Any


class QueryError(Exception):
    """Raised for unknown fields or malformed values in a TaskQuery."""


# field name → SQL expression evaluated against the tasks table
_FIELDS: dict[str, str] = {
    "id": "tasks.id",
    "user_id": "tasks.user_id",
    "list_id": "tasks.list_id",
    "title": "tasks.title",
    "notes": "tasks.notes",
    "status": "tasks.status",
    "priority": "tasks.priority",
    "due_date": "tasks.due_date",
    "due_time": "tasks.due_time",
    "start_date": "tasks.start_date",
    "snoozed_until": "tasks.snoozed_until",
    "estimated_minutes": "tasks.estimated_minutes",
    "actual_minutes": "tasks.actual_minutes",
    "position": "tasks.position",
    "parent_id": "tasks.parent_id",
    "is_recurring": "tasks.is_recurring",
    "source": "tasks.source",
    "completed_at": "tasks.completed_at",
    "created_at": "tasks.created_at",
    "updated_at": "tasks.updated_at",
    "has_subtasks": "EXISTS (SELECT 1 FROM tasks AS sub WHERE sub.parent_id = tasks.id)",
}

_TAG_EXISTS = "EXISTS (SELECT 1 FROM task_tags AS tt WHERE tt.task_id = tasks.id AND tt.tag = ?)"


def _normalize(value: Any) -> Any:
    # SQLite stores booleans as 0/1
    if isinstance(value, bool):
        return int(value)
    return value


class TaskQuery:
    """Chainable SELECT over tasks. All clauses are joined with AND."""

    def __init__(self) -> None:
        self._clauses: list[str] = []
        self._params: list[Any] = []
        self._order: list[str] = []
        self._limit: int | None = None

    @staticmethod
    def _column(field: str) -> str:
        try:
            return _FIELDS[field]
        except KeyError:
            raise QueryError(f"Unknown task field: {field!r}") from None

    def _compare(self, field: str, op: str, value: Any) -> TaskQuery:
        self._clauses.append(f"{self._column(field)} {op} ?")
        self._params.append(_normalize(value))
        return self

    def eq(self, field: str, value: Any) -> TaskQuery:
        if value is None:
            return self.is_null(field)
        return self._compare(field, "=", value)

    def neq(self, field: str, value: Any) -> TaskQuery:
        if value is None:
            return self.is_not_null(field)
        # NULL columns count as "not equal"
        column = self._column(field)
        self._clauses.append(f"({column} IS NULL OR {column} != ?)")
        self._params.append(_normalize(value))
        return self

    def gt(self, field: str, value: Any) -> TaskQuery:
        return self._compare(field, ">", value)

    def gte(self, field: str, value: Any) -> TaskQuery:
        return self._compare(field, ">=", value)

    def lt(self, field: str, value: Any) -> TaskQuery:
        return self._compare(field, "<", value)

    def lte(self, field: str, value: Any) -> TaskQuery:
        return self._compare(field, "<=", value)

    def in_(self, field: str, values: list[Any]) -> TaskQuery:
        values = self._as_list(values)
        if not values:
            self._clauses.append("0")
            return self
        placeholders = ", ".join("?" for _ in values)
        self._clauses.append(f"{self._column(field)} IN ({placeholders})")
        self._params.extend(_normalize(v) for v in values)
        return self

    def not_in(self, field: str, values: list[Any]) -> TaskQuery:
        values = self._as_list(values)
        if not values:
            return self
        column = self._column(field)
        placeholders = ", ".join("?" for _ in values)
        self._clauses.append(f"({column} IS NULL OR {column} NOT IN ({placeholders}))")
        self._params.extend(_normalize(v) for v in values)
        return self

    def is_null(self, field: str) -> TaskQuery:
        self._clauses.append(f"{self._column(field)} IS NULL")
        return self

    def is_not_null(self, field: str) -> TaskQuery:
        self._clauses.append(f"{self._column(field)} IS NOT NULL")
        return self

    def contains(self, field: str, value: Any) -> TaskQuery:
        """Tags: the task carries every given tag. Text: substring match."""
        if field == "tags":
            for tag in self._as_list(value):
                self._clauses.append(_TAG_EXISTS)
                self._params.append(str(tag).lower())
            return self
        self._clauses.append(f"{self._column(field)} LIKE ?")
        self._params.append(f"%{value}%")
        return self

    def ilike(self, field: str, pattern: str) -> TaskQuery:
        # SQLite LIKE is case-insensitive for ASCII
        self._clauses.append(f"{self._column(field)} LIKE ?")
        self._params.append(pattern)
        return self

    def order(self, field: str, ascending: bool = True, nulls_last: bool = True) -> TaskQuery:
        column = self._column(field)
        if nulls_last:
            self._order.append(f"{column} IS NULL")
        self._order.append(f"{column} {'ASC' if ascending else 'DESC'}")
        return self

    def limit(self, count: int) -> TaskQuery:
        if count < 0:
            raise QueryError(f"Negative limit: {count}")
        self._limit = count
        return self

    @staticmethod
    def _as_list(values: Any) -> list[Any]:
        if values is None:
            return []
        if isinstance(values, (list, tuple, set)):
            return list(values)
        if isinstance(values, str):
            return [v.strip() for v in values.split(",") if v.strip()]
        return [values]

    @property
    def params(self) -> list[Any]:
        return list(self._params)

    def to_sql(self) -> tuple[str, list[Any]]:
        """Render the builder as (sql, params)."""
        sql = "SELECT tasks.* FROM tasks"
        if self._clauses:
            sql += " WHERE " + " AND ".join(self._clauses)
        if self._order:
            sql += " ORDER BY " + ", ".join(self._order)
        else:
            sql += " ORDER BY tasks.position, tasks.id"
        if self._limit is not None:
            sql += f" LIMIT {int(self._limit)}"
        return sql, list(self._params)
