"""
Zeroed — Subscription access.

Access is derived locally from the subscription row: a 30-day trial for new
users, then Stripe-managed statuses or a lifetime coupon. Lookups fail open
so a storage hiccup never locks a user out.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel

from zeroed.data.models import Coupon, Subscription

logger = logging.getLogger(__name__)

PRICE_MONTHLY_CENTS = 1999
PRICE_DISPLAY = "$19.99"
TRIAL_DAYS = 30
UPGRADE_PROMPT_DAYS = 7


class SubscriptionAccess(BaseModel):
    has_access: bool
    status: str
    days_remaining: int | None = None


class CouponRedemptionResult(BaseModel):
    success: bool
    message: str
    new_status: str | None = None


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def _parse(ts: str | None) -> datetime | None:
    if not ts:
        return None
    parsed = datetime.fromisoformat(ts)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _days_until(moment: datetime, now: datetime) -> int:
    return max(0, math.ceil((moment - now).total_seconds() / 86400))


def start_trial(db, user_id: int, now: datetime | None = None) -> Subscription:
    """Create the trialing subscription row for a new user."""
    trial_ends = _now(now) + timedelta(days=TRIAL_DAYS)
    subscription = db.create_subscription(
        user_id, status="trialing", trial_ends_at=trial_ends.isoformat(timespec="seconds"),
    )
    logger.info("Trial started for user %d (ends %s)", user_id, subscription.trial_ends_at)
    return subscription


def _get_or_start(db, user_id: int, now: datetime) -> Subscription:
    subscription = db.get_subscription(user_id)
    if subscription is None:
        subscription = start_trial(db, user_id, now)
    return subscription


def _derive_access(db, subscription: Subscription, now: datetime) -> SubscriptionAccess:
    status = subscription.status

    if status in ("active", "free_forever", "past_due"):
        return SubscriptionAccess(has_access=True, status=status)

    if status == "trialing":
        ends = _parse(subscription.trial_ends_at)
        if ends is None or ends > now:
            days = _days_until(ends, now) if ends else TRIAL_DAYS
            return SubscriptionAccess(has_access=True, status="trialing", days_remaining=days)
        db.update_subscription(subscription.user_id, status="trial_expired")
        logger.info("Trial expired for user %d", subscription.user_id)
        return SubscriptionAccess(has_access=False, status="trial_expired", days_remaining=0)

    if status == "canceled":
        period_end = _parse(subscription.current_period_end)
        if period_end and period_end > now:
            return SubscriptionAccess(
                has_access=True, status="canceled",
                days_remaining=_days_until(period_end, now),
            )
        return SubscriptionAccess(has_access=False, status="canceled", days_remaining=0)

    return SubscriptionAccess(has_access=False, status=status, days_remaining=0)


def check_subscription_access(db, user_id: int, now: datetime | None = None) -> SubscriptionAccess:
    """Whether the user may use the app, and why."""
    now = _now(now)
    try:
        return _derive_access(db, _get_or_start(db, user_id, now), now)
    except Exception as exc:
        logger.error("Error checking subscription for user %d: %s", user_id, exc)
        return SubscriptionAccess(has_access=True, status="trialing", days_remaining=TRIAL_DAYS)


# ---------------------------------------------------------------------------
# Coupons
# ---------------------------------------------------------------------------

def validate_coupon(db, code: str, now: datetime | None = None) -> Coupon | None:
    """The coupon if it is active, unexpired and under its use limit."""
    coupon = db.get_coupon(code.strip()) if code and code.strip() else None
    if coupon is None or not coupon.is_active:
        return None
    expires = _parse(coupon.expires_at)
    if expires is not None and expires <= _now(now):
        return None
    if coupon.max_uses is not None and coupon.current_uses >= coupon.max_uses:
        return None
    return coupon


def redeem_coupon(db, user_id: int, code: str, now: datetime | None = None) -> CouponRedemptionResult:
    now = _now(now)
    coupon = validate_coupon(db, code, now)
    if coupon is None:
        return CouponRedemptionResult(success=False, message="Invalid or expired coupon code")

    subscription = _get_or_start(db, user_id, now)

    if coupon.coupon_type == "free_forever":
        if subscription.status == "free_forever":
            return CouponRedemptionResult(
                success=False, message="You already have lifetime access",
                new_status="free_forever",
            )
        if not db.record_redemption(coupon.code, user_id):
            return CouponRedemptionResult(success=False, message="You have already redeemed this coupon")
        db.update_subscription(user_id, status="free_forever")
        logger.info("User %d redeemed lifetime coupon %s", user_id, coupon.code)
        return CouponRedemptionResult(
            success=True, message="Lifetime access unlocked", new_status="free_forever",
        )

    if coupon.coupon_type == "trial_extension":
        if subscription.status not in ("trialing", "trial_expired"):
            return CouponRedemptionResult(
                success=False, message="Trial extensions only apply to trial accounts",
                new_status=subscription.status,
            )
        if not db.record_redemption(coupon.code, user_id):
            return CouponRedemptionResult(success=False, message="You have already redeemed this coupon")
        base = max(now, _parse(subscription.trial_ends_at) or now)
        new_end = base + timedelta(days=coupon.value)
        db.update_subscription(
            user_id, status="trialing", trial_ends_at=new_end.isoformat(timespec="seconds"),
        )
        logger.info("User %d extended trial by %d days with %s", user_id, coupon.value, coupon.code)
        return CouponRedemptionResult(
            success=True, message=f"Trial extended by {coupon.value} days", new_status="trialing",
        )

    logger.warning("Coupon %s has unknown type %r", coupon.code, coupon.coupon_type)
    return CouponRedemptionResult(success=False, message="Invalid or expired coupon code")


# ---------------------------------------------------------------------------
# Presentation helpers
# ---------------------------------------------------------------------------

def should_show_upgrade_prompt(access: SubscriptionAccess) -> bool:
    if access.status == "trialing" and access.days_remaining is not None:
        return access.days_remaining <= UPGRADE_PROMPT_DAYS
    return access.status in ("trial_expired", "canceled")


def get_status_message(access: SubscriptionAccess) -> str:
    if access.status == "free_forever":
        return "Lifetime access"
    if access.status == "active":
        return "Pro subscription"
    if access.status == "trialing":
        if access.days_remaining == 1:
            return "1 day left in trial"
        return f"{access.days_remaining} days left in trial"
    if access.status == "past_due":
        return "Payment past due"
    if access.status == "canceled":
        return "Subscription canceled"
    if access.status == "trial_expired":
        return "Trial expired"
    return "Unknown status"
