"""Stripe checkout/portal/webhook and subscription status + coupons."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from zeroed.api.deps import Stores, current_user, get_stores
from zeroed.core.subscriptions import (
    PRICE_DISPLAY,
    check_subscription_access,
    get_status_message,
    redeem_coupon,
    should_show_upgrade_prompt,
)
from zeroed.data.models import User
from zeroed.integrations import stripe_billing

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["billing"])


class CouponRequest(BaseModel):
    code: str


def _require_stripe() -> None:
    if not stripe_billing.is_configured():
        raise HTTPException(status_code=500, detail="Billing is not configured")


@router.post("/stripe/checkout")
async def checkout(user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    _require_stripe()
    url = await stripe_billing.create_checkout_session(stores.subscriptions, user)
    return {"url": url}


@router.post("/stripe/portal")
async def portal(user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    _require_stripe()
    url = await stripe_billing.create_portal_session(stores.subscriptions, user.id)
    return {"url": url}


@router.post("/stripe/webhook")
async def stripe_webhook(request: Request, stores: Stores = Depends(get_stores)):
    """Stripe events; the raw body is needed for the signature check."""
    payload = await request.body()
    event = stripe_billing.construct_event(payload, request.headers.get("stripe-signature"))
    stripe_billing.handle_event(stores.subscriptions, event)
    return {"received": True}


@router.get("/billing/status")
def billing_status(user: User = Depends(current_user), stores: Stores = Depends(get_stores)):
    access = check_subscription_access(stores.subscriptions, user.id)
    return {
        **access.model_dump(),
        "message": get_status_message(access),
        "show_upgrade": should_show_upgrade_prompt(access),
        "price": PRICE_DISPLAY,
    }


@router.post("/billing/coupon")
def apply_coupon(
    body: CouponRequest,
    user: User = Depends(current_user),
    stores: Stores = Depends(get_stores),
):
    if not body.code.strip():
        raise HTTPException(status_code=400, detail="Coupon code is required")
    result = redeem_coupon(stores.subscriptions, user.id, body.code)
    if not result.success:
        return {"error": result.message, **result.model_dump()}
    return result.model_dump()
