"""Resend email adapter — implements EmailPort.

Wraps zeroed.integrations.email.send_email and turns an unsuccessful
result into a NotificationError.
"""

from __future__ import annotations

import logging

from zeroed.integrations.email import send_email
from zeroed.ports.notification_port import NotificationError

logger = logging.getLogger(__name__)


class ResendEmailNotifier:
    """Resend implementation of EmailPort."""

    async def send_email(self, to: str, subject: str, html: str) -> None:
        result = await send_email(to, subject, html)
        if not result.success:
            raise NotificationError(result.error or "Email delivery failed")
