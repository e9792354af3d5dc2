"""
Zeroed — Google Calendar Authentication.

Web-server OAuth flow for Google Calendar. Tokens live on the user's
google_calendar integration row; credentials are refreshed when they are
within five minutes of expiry and the new access token is written back.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build

from zeroed.config import settings

if TYPE_CHECKING:
    from zeroed.data.account_db import IntegrationDB
    from zeroed.data.models import Integration

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar.readonly",
]
TOKEN_URI = "https://oauth2.googleapis.com/token"
PROVIDER = "google_calendar"
REFRESH_BUFFER = timedelta(minutes=5)


class GoogleAuthError(Exception):
    """Raised when Google credentials are missing or cannot be refreshed."""


def redirect_uri() -> str:
    return f"{settings.APP_URL}/api/integrations/google/callback"


def _flow() -> Flow:
    if not settings.GOOGLE_CLIENT_ID or not settings.GOOGLE_CLIENT_SECRET:
        raise GoogleAuthError("Google OAuth credentials not configured")
    client_config = {
        "web": {
            "client_id": settings.GOOGLE_CLIENT_ID,
            "client_secret": settings.GOOGLE_CLIENT_SECRET,
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": TOKEN_URI,
        }
    }
    return Flow.from_client_config(client_config, scopes=SCOPES, redirect_uri=redirect_uri())


def get_auth_url(state: str) -> str:
    """Consent URL; offline access with a forced prompt so Google returns a refresh token."""
    auth_url, _ = _flow().authorization_url(
        access_type="offline", prompt="consent", state=state,
    )
    return auth_url


def exchange_code(code: str) -> Credentials:
    flow = _flow()
    flow.fetch_token(code=code)
    return flow.credentials


def _as_utc(expiry: datetime | None) -> datetime | None:
    # google-auth keeps expiry as naive UTC
    if expiry is None:
        return None
    return expiry.replace(tzinfo=timezone.utc) if expiry.tzinfo is None else expiry


def expiry_iso(creds: Credentials) -> str | None:
    expiry = _as_utc(creds.expiry)
    return expiry.isoformat(timespec="seconds") if expiry else None


def credentials_for(integration: Integration) -> Credentials:
    expiry = None
    if integration.token_expires_at:
        parsed = datetime.fromisoformat(integration.token_expires_at)
        expiry = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return Credentials(
        token=integration.access_token,
        refresh_token=integration.refresh_token,
        token_uri=TOKEN_URI,
        client_id=settings.GOOGLE_CLIENT_ID,
        client_secret=settings.GOOGLE_CLIENT_SECRET,
        scopes=SCOPES,
        expiry=expiry,
    )


def needs_refresh(integration: Integration, now: datetime | None = None) -> bool:
    """A missing expiry counts as expired."""
    if not integration.token_expires_at:
        return True
    expires_at = datetime.fromisoformat(integration.token_expires_at)
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at - (now or datetime.now(timezone.utc)) < REFRESH_BUFFER


def get_valid_credentials(db: IntegrationDB, user_id: int) -> Credentials:
    """Credentials for the user's calendar, refreshed and persisted when needed."""
    integration = db.get_integration(user_id, PROVIDER)
    if integration is None or not integration.access_token:
        raise GoogleAuthError("Google Calendar is not connected")

    creds = credentials_for(integration)
    if not needs_refresh(integration):
        return creds
    if not integration.refresh_token:
        raise GoogleAuthError("Google token expired and no refresh token is stored")

    try:
        creds.refresh(Request())
    except Exception as exc:
        logger.warning("Google token refresh failed for user %d: %s", user_id, exc)
        raise GoogleAuthError(f"Token refresh failed: {exc}") from exc

    db.update_integration(
        user_id, PROVIDER, access_token=creds.token, token_expires_at=expiry_iso(creds),
    )
    logger.info("Google token refreshed for user %d", user_id)
    return creds


def build_calendar_service(creds: Credentials):
    return build("calendar", "v3", credentials=creds, cache_discovery=False)
