"""Stripe integration — checkout, billing portal and webhook handling.

Calls Stripe's REST API directly over httpx (form-encoded, secret key as
Basic auth). Incoming webhooks are authenticated with the Stripe-Signature
header, which uses the same `t=,v1=` HMAC scheme as our outgoing hooks.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import httpx

from zeroed.config import settings
from zeroed.core.subscriptions import start_trial
from zeroed.core.webhooks import verify_webhook_signature
from zeroed.data.db import RecordNotFound

if TYPE_CHECKING:
    from zeroed.data.account_db import SubscriptionDB
    from zeroed.data.models import User

logger = logging.getLogger(__name__)

_API_URL = "https://api.stripe.com/v1"
_TIMEOUT_SECONDS = 15
SIGNATURE_TOLERANCE_SECONDS = 300

# Stripe subscription status → ours
_STATUS_MAP = {
    "active": "active",
    "trialing": "trialing",
    "past_due": "past_due",
    "canceled": "canceled",
    "unpaid": "canceled",
}


class BillingError(Exception):
    """Raised when Stripe is unconfigured or a Stripe call fails."""


def is_configured() -> bool:
    return bool(settings.STRIPE_SECRET_KEY)


def success_url() -> str:
    return f"{settings.APP_URL}/settings?tab=billing&success=true"


def cancel_url() -> str:
    return f"{settings.APP_URL}/settings?tab=billing&canceled=true"


def portal_return_url() -> str:
    return f"{settings.APP_URL}/settings?tab=billing"


async def _post(path: str, data: dict) -> dict:
    if not is_configured():
        raise BillingError("Stripe is not configured")
    try:
        async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
            resp = await client.post(
                f"{_API_URL}/{path}", data=data, auth=(settings.STRIPE_SECRET_KEY, ""),
            )
            resp.raise_for_status()
            return resp.json()
    except httpx.HTTPStatusError as exc:
        logger.error("Stripe %s error (%s): %s", path, exc.response.status_code, exc.response.text)
        raise BillingError(f"Stripe request failed: HTTP {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        logger.error("Stripe %s exception: %s", path, exc)
        raise BillingError(f"Stripe request failed: {exc}") from exc


async def ensure_customer(db: SubscriptionDB, user: User) -> str:
    """The user's Stripe customer id, creating the customer on first checkout."""
    subscription = db.get_subscription(user.id)
    if subscription is not None and subscription.stripe_customer_id:
        return subscription.stripe_customer_id

    customer = await _post("customers", {"email": user.email, "metadata[user_id]": str(user.id)})
    if subscription is None:
        start_trial(db, user.id)
    db.update_subscription(user.id, stripe_customer_id=customer["id"])
    logger.info("Stripe customer %s created for user %d", customer["id"], user.id)
    return customer["id"]


async def create_checkout_session(db: SubscriptionDB, user: User) -> str:
    """Start a subscription checkout; returns the hosted checkout URL."""
    customer_id = await ensure_customer(db, user)
    session = await _post("checkout/sessions", {
        "customer": customer_id,
        "mode": "subscription",
        "payment_method_types[0]": "card",
        "line_items[0][price]": settings.STRIPE_PRICE_ID,
        "line_items[0][quantity]": "1",
        "success_url": success_url(),
        "cancel_url": cancel_url(),
        "metadata[user_id]": str(user.id),
        "subscription_data[metadata][user_id]": str(user.id),
        "allow_promotion_codes": "true",
    })
    return session["url"]


async def create_portal_session(db: SubscriptionDB, user_id: int) -> str:
    subscription = db.get_subscription(user_id)
    if subscription is None or not subscription.stripe_customer_id:
        raise BillingError("No billing account found")
    session = await _post("billing_portal/sessions", {
        "customer": subscription.stripe_customer_id,
        "return_url": portal_return_url(),
    })
    return session["url"]


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


def construct_event(payload: bytes, signature: str | None, now: float | None = None) -> dict:
    """Verify Stripe-Signature and decode the event. Raises BillingError."""
    if not signature:
        raise BillingError("No signature")
    if not verify_webhook_signature(
        payload, signature, settings.STRIPE_WEBHOOK_SECRET,
        tolerance=SIGNATURE_TOLERANCE_SECONDS, now=now,
    ):
        raise BillingError("Invalid signature")
    try:
        return json.loads(payload)
    except ValueError as exc:
        raise BillingError("Invalid payload") from exc


def _iso(unix: int | None) -> str | None:
    if not unix:
        return None
    return datetime.fromtimestamp(unix, tz=timezone.utc).isoformat(timespec="seconds")


def _customer_id(obj: dict) -> str | None:
    customer = obj.get("customer")
    if isinstance(customer, dict):
        return customer.get("id")
    return customer


def _checkout_completed(db: SubscriptionDB, session: dict) -> None:
    user_id = (session.get("metadata") or {}).get("user_id")
    customer_id = _customer_id(session)
    if user_id is None:
        if customer_id and db.get_by_customer_id(customer_id) is not None:
            logger.info("Checkout completed for customer %s", customer_id)
        else:
            logger.error("Could not find user for checkout session %s", session.get("id"))
        return

    fields: dict = {"stripe_customer_id": customer_id}
    subscription_id = session.get("subscription")
    if isinstance(subscription_id, str):
        fields["stripe_subscription_id"] = subscription_id
    try:
        db.update_subscription(int(user_id), **fields)
    except RecordNotFound:
        db.create_subscription(int(user_id), status="active")
        db.update_subscription(int(user_id), **fields)
    logger.info("Checkout completed for user %s", user_id)


def _subscription_updated(db: SubscriptionDB, subscription: dict) -> None:
    items = (subscription.get("items") or {}).get("data") or []
    price_id = items[0].get("price", {}).get("id") if items else None
    db.update_by_customer_id(
        _customer_id(subscription),
        status=_STATUS_MAP.get(subscription.get("status"), subscription.get("status")),
        stripe_subscription_id=subscription.get("id"),
        stripe_price_id=price_id,
        current_period_start=_iso(subscription.get("current_period_start")),
        current_period_end=_iso(subscription.get("current_period_end")),
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
        canceled_at=_iso(subscription.get("canceled_at")),
    )


def _subscription_deleted(db: SubscriptionDB, subscription: dict) -> None:
    db.update_by_customer_id(
        _customer_id(subscription),
        status="canceled",
        stripe_subscription_id=None,
        canceled_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
    )


def handle_event(db: SubscriptionDB, event: dict) -> bool:
    """Apply one Stripe event. Returns False for event types we ignore."""
    event_type = event.get("type", "")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == "checkout.session.completed":
        _checkout_completed(db, obj)
    elif event_type in ("customer.subscription.created", "customer.subscription.updated"):
        _subscription_updated(db, obj)
    elif event_type == "customer.subscription.deleted":
        _subscription_deleted(db, obj)
    elif event_type == "invoice.payment_failed":
        if _customer_id(obj):
            db.update_by_customer_id(_customer_id(obj), status="past_due")
    elif event_type == "invoice.payment_succeeded":
        if _customer_id(obj):
            db.update_by_customer_id(_customer_id(obj), only_status="past_due", status="active")
    else:
        logger.info("Unhandled Stripe event type: %s", event_type)
        return False

    logger.info("Stripe event %s processed", event_type)
    return True
