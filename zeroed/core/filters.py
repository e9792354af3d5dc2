"""
Zeroed — Smart filter engine.

A smart filter is a saved list of {field, operator, value} conditions plus an
optional sort. Conditions are folded onto a TaskQuery in order and are always
ANDed together; there is no grouping and no OR.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta
from typing import Any, Literal

from pydantic import BaseModel, Field

from zeroed.data.query import QueryError, TaskQuery

logger = logging.getLogger(__name__)

FILTER_RESULT_LIMIT = 100

OPERATORS = (
    "eq", "neq", "gt", "gte", "lt", "lte", "in", "not_in",
    "is_null", "is_not_null", "contains",
)

# Fields a filter condition may reference
FILTERABLE_FIELDS = frozenset({
    "priority", "status", "list_id", "due_date", "due_time", "start_date",
    "snoozed_until", "tags", "estimated_minutes", "actual_minutes",
    "has_subtasks", "is_recurring", "title", "notes", "source",
    "completed_at", "created_at", "updated_at",
})

SORTABLE_FIELDS = frozenset({
    "priority", "status", "due_date", "due_time", "start_date", "snoozed_until",
    "estimated_minutes", "actual_minutes", "position", "title",
    "completed_at", "created_at", "updated_at",
})

DATE_FIELDS = frozenset({"due_date", "start_date", "snoozed_until"})


class FilterError(ValueError):
    """Raised for an unknown field or operator in a filter config."""


class FilterCondition(BaseModel):
    field: str
    operator: str
    value: Any = None


class FilterSort(BaseModel):
    field: str
    direction: Literal["asc", "desc"] = "asc"


class SmartFilterConfig(BaseModel):
    """
    JSON example:
    {
        "conditions": [
            {"field": "due_date", "operator": "lte", "value": "end_of_week"},
            {"field": "status", "operator": "neq", "value": "completed"}
        ],
        "sort": {"field": "due_date", "direction": "asc"}
    }
    """
    conditions: list[FilterCondition] = Field(default_factory=list)
    sort: FilterSort | None = None


def resolve_date_value(value: Any, today: date | None = None) -> Any:
    """Resolve a relative date token to an ISO date. Other values pass through."""
    if not isinstance(value, str):
        return value

    today = today or date.today()
    token = value.strip().lower()

    if token == "today":
        return today.isoformat()
    if token == "tomorrow":
        return (today + timedelta(days=1)).isoformat()
    if token == "yesterday":
        return (today - timedelta(days=1)).isoformat()
    if token == "start_of_week":
        return (today - timedelta(days=today.weekday())).isoformat()
    if token == "end_of_week":
        return (today + timedelta(days=6 - today.weekday())).isoformat()
    if token == "start_of_month":
        return today.replace(day=1).isoformat()
    if token == "end_of_month":
        last = calendar.monthrange(today.year, today.month)[1]
        return today.replace(day=last).isoformat()
    return value


def _apply_condition(query: TaskQuery, condition: FilterCondition, value: Any) -> TaskQuery:
    field = condition.field
    op = condition.operator

    if op == "eq":
        return query.eq(field, value)
    if op == "neq":
        return query.neq(field, value)
    if op == "gt":
        return query.gt(field, value)
    if op == "gte":
        return query.gte(field, value)
    if op == "lt":
        return query.lt(field, value)
    if op == "lte":
        return query.lte(field, value)
    if op == "in":
        return query.in_(field, value)
    if op == "not_in":
        return query.not_in(field, value)
    if op == "is_null":
        return query.is_null(field)
    if op == "is_not_null":
        return query.is_not_null(field)
    if op == "contains":
        return query.contains(field, value)
    raise FilterError(f"Unknown operator: {op!r}")


def build_filter_query(
    query: TaskQuery,
    config: SmartFilterConfig | dict,
    today: date | None = None,
) -> TaskQuery:
    """Fold every condition (and the sort) of config onto query."""
    if isinstance(config, dict):
        config = SmartFilterConfig.model_validate(config)

    for condition in config.conditions:
        if condition.field not in FILTERABLE_FIELDS:
            raise FilterError(f"Unknown filter field: {condition.field!r}")
        if condition.operator not in OPERATORS:
            raise FilterError(f"Unknown operator: {condition.operator!r}")

        value = condition.value
        if condition.field in DATE_FIELDS:
            value = resolve_date_value(value, today)
        if condition.field == "tags" and condition.operator != "contains":
            raise FilterError("Tags only support the 'contains' operator")

        try:
            query = _apply_condition(query, condition, value)
        except QueryError as exc:
            raise FilterError(str(exc)) from exc

    if config.sort is not None:
        if config.sort.field not in SORTABLE_FIELDS:
            raise FilterError(f"Cannot sort by {config.sort.field!r}")
        query = query.order(config.sort.field, ascending=config.sort.direction == "asc")

    return query


def execute_filter(task_db, user_id: int, config: SmartFilterConfig | dict, today: date | None = None) -> list:
    """Run a filter for one user: top-level tasks only, at most 100 rows."""
    query = TaskQuery().eq("user_id", user_id).is_null("parent_id")
    query = build_filter_query(query, config, today)
    tasks = task_db.run_query(query.limit(FILTER_RESULT_LIMIT))
    logger.debug("Filter for user %d matched %d task(s)", user_id, len(tasks))
    return tasks


def run_saved_filter(filter_db, task_db, user_id: int, filter_id: int) -> list | None:
    """Execute a saved filter and bump its use_count. None if it does not exist."""
    saved = filter_db.get_filter(filter_id, user_id)
    if saved is None:
        return None
    tasks = execute_filter(task_db, user_id, saved.config)
    filter_db.increment_use(saved.id)
    return tasks
