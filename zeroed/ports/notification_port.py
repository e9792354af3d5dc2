"""Notification ports — abstract interfaces for reaching users.

Core modules depend on these protocols, never on a specific provider.
"""

from __future__ import annotations

from typing import Protocol


class NotificationError(Exception):
    """Raised when a message could not be delivered."""


class NotificationPort(Protocol):
    """Chat-style delivery (Slack DM) keyed by our user id."""

    async def send_message(
        self, user_id: int, text: str, blocks: list[dict] | None = None,
    ) -> None: ...


class EmailPort(Protocol):
    """Transactional email delivery."""

    async def send_email(self, to: str, subject: str, html: str) -> None: ...
