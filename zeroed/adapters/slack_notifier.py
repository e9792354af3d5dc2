"""Slack notification adapter — implements NotificationPort.

Looks up the user's Slack integration and posts either to the configured
notification channel or as a DM to the Slack user who connected it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from zeroed.integrations import slack
from zeroed.ports.notification_port import NotificationError

if TYPE_CHECKING:
    from zeroed.data.account_db import IntegrationDB

logger = logging.getLogger(__name__)


class SlackNotifier:
    """Slack implementation of NotificationPort."""

    def __init__(self, integration_db: IntegrationDB) -> None:
        self._integrations = integration_db

    async def send_message(
        self, user_id: int, text: str, blocks: list[dict] | None = None,
    ) -> None:
        integration = self._integrations.get_integration(user_id, "slack")
        if integration is None or not integration.access_token:
            raise NotificationError(f"User {user_id} has no Slack connection")

        channel = integration.settings.get("notification_channel_id")
        slack_user = integration.settings.get("slack_user_id")
        if channel and channel != "dm":
            result = await slack.send_message(integration.access_token, channel, text, blocks)
        elif slack_user:
            result = await slack.send_dm(integration.access_token, slack_user, text, blocks)
        else:
            raise NotificationError("No notification destination configured")

        if not result.get("ok"):
            raise NotificationError(f"Slack delivery failed: {result.get('error')}")
        logger.info("Slack message sent to user %d", user_id)
