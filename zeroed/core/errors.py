"""Domain errors shared by the core services and translated by the HTTP layer."""

from __future__ import annotations


class NotFoundError(LookupError):
    """The requested record does not exist or is not visible to the caller."""


class PermissionDeniedError(PermissionError):
    """The caller is authenticated but not allowed to perform the action."""


class TaskError(ValueError):
    """Invalid input for a task, list, habit or goal operation."""
