"""Resend integration — transactional email over the Resend REST API.

Gracefully degrades: send_email() returns an unsuccessful EmailResult
(never raises) when no API key is configured or the request fails.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

import httpx

from zeroed.config import settings

logger = logging.getLogger(__name__)

_RESEND_EMAILS_URL = "https://api.resend.com/emails"
_TIMEOUT_SECONDS = 10


@dataclass
class EmailResult:
    success: bool
    id: str | None = None
    error: str | None = None


def html_to_text(html: str) -> str:
    """Plain-text alternative: drop style/script blocks and tags, collapse whitespace."""
    text = re.sub(r"<style[^>]*>[\s\S]*?</style>", "", html, flags=re.I)
    text = re.sub(r"<script[^>]*>[\s\S]*?</script>", "", text, flags=re.I)
    text = re.sub(r"<[^>]+>", " ", text)
    return re.sub(r"\s+", " ", text).strip()


async def send_email(
    to: str | list[str],
    subject: str,
    html: str,
    text: str | None = None,
    reply_to: str | None = None,
) -> EmailResult:
    """Send one email through Resend."""
    if not settings.RESEND_API_KEY:
        logger.warning("RESEND_API_KEY not set, skipping email to %s", to)
        return EmailResult(success=False, error="Email not configured")

    payload: dict = {
        "from": settings.RESEND_FROM_EMAIL,
        "to": to if isinstance(to, list) else [to],
        "subject": subject,
        "html": html,
        "text": text or html_to_text(html),
    }
    if reply_to:
        payload["reply_to"] = reply_to

    try:
        async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
            resp = await client.post(
                _RESEND_EMAILS_URL,
                json=payload,
                headers={"Authorization": f"Bearer {settings.RESEND_API_KEY}"},
            )
            resp.raise_for_status()
            data = resp.json()
    except httpx.HTTPStatusError as exc:
        logger.error("Email send error (%s): %s", exc.response.status_code, exc.response.text)
        return EmailResult(success=False, error=f"HTTP {exc.response.status_code}")
    except Exception as exc:
        logger.error("Email send exception: %s", exc)
        return EmailResult(success=False, error=str(exc))

    logger.info("Email '%s' sent to %s", subject, to)
    return EmailResult(success=True, id=data.get("id"))
