"""Task sync port — outbound mirrors notified after task writes.

Implementations must not raise: a failed mirror is recorded on the
integration and never fails the task write itself.
"""

from __future__ import annotations

from typing import Protocol

from zeroed.data.models import Task


class TaskSyncPort(Protocol):

    async def task_saved(self, user_id: int, task: Task) -> None: ...

    async def task_deleted(self, user_id: int, task: Task) -> None: ...
