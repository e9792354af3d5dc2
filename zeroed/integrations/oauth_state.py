"""Signed OAuth `state` values binding a callback to the user who started it.

state = base64url(json({"user_id", "ts"})) + "." + hex HMAC-SHA256 keyed
with CRON_SECRET. States older than ten minutes are rejected.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time

from zeroed.config import settings

STATE_MAX_AGE_SECONDS = 10 * 60


class OAuthStateError(ValueError):
    """Raised for a malformed, tampered or expired OAuth state."""


def _sign(body: str) -> str:
    return hmac.new(settings.CRON_SECRET.encode(), body.encode(), hashlib.sha256).hexdigest()


def make_state(user_id: int, now: float | None = None) -> str:
    payload = {"user_id": user_id, "ts": int(now if now is not None else time.time())}
    body = base64.urlsafe_b64encode(json.dumps(payload).encode()).decode().rstrip("=")
    return f"{body}.{_sign(body)}"


def read_state(state: str | None, now: float | None = None) -> int:
    """Return the user id carried by state."""
    if not state or "." not in state:
        raise OAuthStateError("invalid_state")
    body, signature = state.rsplit(".", 1)
    if not hmac.compare_digest(_sign(body), signature):
        raise OAuthStateError("invalid_state")
    try:
        padded = body + "=" * (-len(body) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded))
        user_id, ts = int(payload["user_id"]), int(payload["ts"])
    except (ValueError, KeyError, TypeError):
        raise OAuthStateError("invalid_state") from None
    if (now if now is not None else time.time()) - ts > STATE_MAX_AGE_SECONDS:
        raise OAuthStateError("state_expired")
    return user_id
