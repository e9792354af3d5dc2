"""Notion task mirror — implements TaskSyncPort.

Every saved task is written to the user's chosen Notion database; the
task id → page id map lives in the integration settings under
"task_mappings". Deleted tasks archive their page.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from zeroed.data.db import utc_now
from zeroed.integrations import notion
from zeroed.integrations.sync_errors import clear_sync_error, record_sync_error

if TYPE_CHECKING:
    from zeroed.data.account_db import IntegrationDB
    from zeroed.data.models import Integration, Task

logger = logging.getLogger(__name__)

PROVIDER = "notion"


class NotionTaskSync:
    """Notion implementation of TaskSyncPort."""

    def __init__(self, integration_db: IntegrationDB) -> None:
        self._integrations = integration_db

    def _active(self, user_id: int) -> Integration | None:
        integration = self._integrations.get_integration(user_id, PROVIDER)
        if integration is None or not integration.access_token or not integration.sync_enabled:
            return None
        if not integration.settings.get("database_id"):
            return None
        if integration.settings.get("auto_sync") is False:
            return None
        return integration

    async def task_saved(self, user_id: int, task: Task) -> None:
        integration = self._active(user_id)
        if integration is None:
            return

        mappings = dict(integration.settings.get("task_mappings", {}))
        page_id = mappings.get(str(task.id))
        properties = notion.task_properties(task)
        try:
            if page_id:
                await notion.update_page(integration.access_token, page_id, properties)
                logger.info("Updated Notion page %s for task #%d", page_id, task.id)
            else:
                page_id = await notion.create_page(
                    integration.access_token, integration.settings["database_id"], properties,
                )
                mappings[str(task.id)] = page_id
                self._integrations.merge_settings(user_id, PROVIDER, {"task_mappings": mappings})
                logger.info("Created Notion page %s for task #%d", page_id, task.id)
        except notion.NotionError as exc:
            record_sync_error(self._integrations, user_id, PROVIDER, str(exc), "push_task")
            return

        self._integrations.update_integration(user_id, PROVIDER, last_sync_at=utc_now())
        clear_sync_error(self._integrations, user_id, PROVIDER)

    async def task_deleted(self, user_id: int, task: Task) -> None:
        integration = self._active(user_id)
        if integration is None:
            return

        mappings = dict(integration.settings.get("task_mappings", {}))
        page_id = mappings.pop(str(task.id), None)
        if page_id is None:
            return
        try:
            await notion.update_page(integration.access_token, page_id, archived=True)
        except notion.NotionError as exc:
            record_sync_error(self._integrations, user_id, PROVIDER, str(exc), "archive_task")
            return
        self._integrations.merge_settings(user_id, PROVIDER, {"task_mappings": mappings})
        logger.info("Archived Notion page %s for deleted task #%d", page_id, task.id)
