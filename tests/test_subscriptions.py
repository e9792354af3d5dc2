"""Tests for zeroed.core.subscriptions and the Stripe webhook handling."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import httpx
import pytest

from zeroed.config import settings
from zeroed.core.subscriptions import (
    TRIAL_DAYS,
    SubscriptionAccess,
    check_subscription_access,
    get_status_message,
    redeem_coupon,
    should_show_upgrade_prompt,
    start_trial,
    validate_coupon,
)
from zeroed.core.webhooks import sign_webhook_payload
from zeroed.integrations.stripe_billing import (
    BillingError,
    construct_event,
    create_checkout_session,
    create_portal_session,
    handle_event,
)

NOW = datetime(2025, 2, 12, 12, 0, tzinfo=timezone.utc)


class TestAccess:
    def test_first_check_starts_trial(self, subscription_db):
        access = check_subscription_access(subscription_db, 1, NOW)
        assert access.has_access
        assert access.status == "trialing"
        assert access.days_remaining == TRIAL_DAYS
        assert subscription_db.get_subscription(1).trial_ends_at.startswith("2025-03-14")

    def test_expired_trial_is_persisted(self, subscription_db):
        start_trial(subscription_db, 1, NOW - timedelta(days=TRIAL_DAYS + 1))
        access = check_subscription_access(subscription_db, 1, NOW)
        assert not access.has_access
        assert access.status == "trial_expired"
        assert subscription_db.get_subscription(1).status == "trial_expired"

    def test_partial_day_rounds_up(self, subscription_db):
        start_trial(subscription_db, 1, NOW - timedelta(days=TRIAL_DAYS - 1, hours=1))
        assert check_subscription_access(subscription_db, 1, NOW).days_remaining == 1

    def test_canceled_keeps_access_until_period_end(self, subscription_db):
        start_trial(subscription_db, 1, NOW)
        subscription_db.update_subscription(
            1, status="canceled", current_period_end=(NOW + timedelta(days=3)).isoformat(),
        )
        access = check_subscription_access(subscription_db, 1, NOW)
        assert access.has_access
        assert access.days_remaining == 3
        assert not check_subscription_access(subscription_db, 1, NOW + timedelta(days=4)).has_access

    @pytest.mark.parametrize("status", ["active", "past_due", "free_forever"])
    def test_paid_statuses_have_access(self, subscription_db, status):
        start_trial(subscription_db, 1, NOW)
        subscription_db.update_subscription(1, status=status)
        assert check_subscription_access(subscription_db, 1, NOW).has_access

    def test_store_failure_fails_open(self):
        db = MagicMock()
        db.get_subscription.side_effect = RuntimeError("disk gone")
        access = check_subscription_access(db, 1, NOW)
        assert access.has_access
        assert access.status == "trialing"


class TestCoupons:
    def test_free_forever(self, subscription_db):
        subscription_db.add_coupon("lifetime", "free_forever")
        result = redeem_coupon(subscription_db, 1, " LIFETIME ", NOW)
        assert result.success
        assert result.new_status == "free_forever"
        assert subscription_db.get_coupon("LIFETIME").current_uses == 1

        again = redeem_coupon(subscription_db, 1, "LIFETIME", NOW)
        assert not again.success
        assert again.message == "You already have lifetime access"

    def test_trial_extension_stacks_on_trial_end(self, subscription_db):
        start_trial(subscription_db, 1, NOW)
        subscription_db.add_coupon("MORE", "trial_extension", value=14)
        assert redeem_coupon(subscription_db, 1, "more", NOW).success
        assert check_subscription_access(subscription_db, 1, NOW).days_remaining == TRIAL_DAYS + 14

    def test_trial_extension_revives_expired_trial(self, subscription_db):
        start_trial(subscription_db, 1, NOW - timedelta(days=60))
        check_subscription_access(subscription_db, 1, NOW)
        subscription_db.add_coupon("MORE", "trial_extension", value=7)
        assert redeem_coupon(subscription_db, 1, "MORE", NOW).success
        access = check_subscription_access(subscription_db, 1, NOW)
        assert access.has_access
        assert access.days_remaining == 7

    def test_trial_extension_rejected_for_paid_users(self, subscription_db):
        start_trial(subscription_db, 1, NOW)
        subscription_db.update_subscription(1, status="active")
        subscription_db.add_coupon("MORE", "trial_extension", value=7)
        result = redeem_coupon(subscription_db, 1, "MORE", NOW)
        assert not result.success
        assert result.new_status == "active"

    def test_same_user_cannot_redeem_twice(self, subscription_db):
        subscription_db.add_coupon("MORE", "trial_extension", value=7)
        assert redeem_coupon(subscription_db, 1, "MORE", NOW).success
        result = redeem_coupon(subscription_db, 1, "MORE", NOW)
        assert result.message == "You have already redeemed this coupon"

    def test_exhausted_and_expired_coupons(self, subscription_db):
        subscription_db.add_coupon("ONCE", "trial_extension", value=7, max_uses=1)
        subscription_db.add_coupon("OLD", "free_forever", expires_at="2025-01-01T00:00:00+00:00")
        assert redeem_coupon(subscription_db, 1, "ONCE", NOW).success
        assert validate_coupon(subscription_db, "ONCE", NOW) is None
        assert validate_coupon(subscription_db, "OLD", NOW) is None
        assert validate_coupon(subscription_db, "", NOW) is None

    def test_unknown_code(self, subscription_db):
        result = redeem_coupon(subscription_db, 1, "NOPE", NOW)
        assert not result.success
        assert result.message == "Invalid or expired coupon code"


class TestPresentation:
    def test_upgrade_prompt(self):
        assert should_show_upgrade_prompt(SubscriptionAccess(has_access=True, status="trialing", days_remaining=7))
        assert not should_show_upgrade_prompt(SubscriptionAccess(has_access=True, status="trialing", days_remaining=8))
        assert should_show_upgrade_prompt(SubscriptionAccess(has_access=False, status="trial_expired"))
        assert not should_show_upgrade_prompt(SubscriptionAccess(has_access=True, status="active"))

    def test_status_messages(self):
        assert get_status_message(SubscriptionAccess(has_access=True, status="trialing", days_remaining=1)) == "1 day left in trial"
        assert get_status_message(SubscriptionAccess(has_access=True, status="trialing", days_remaining=5)) == "5 days left in trial"
        assert get_status_message(SubscriptionAccess(has_access=True, status="free_forever")) == "Lifetime access"


def _signed(event: dict) -> tuple[bytes, str]:
    payload = json.dumps(event).encode()
    return payload, sign_webhook_payload(payload, settings.STRIPE_WEBHOOK_SECRET)


class TestStripeWebhooks:
    def test_construct_event(self):
        payload, signature = _signed({"type": "invoice.payment_failed"})
        assert construct_event(payload, signature)["type"] == "invoice.payment_failed"

    def test_construct_event_rejects_bad_signatures(self):
        payload, signature = _signed({"type": "x"})
        with pytest.raises(BillingError, match="No signature"):
            construct_event(payload, None)
        with pytest.raises(BillingError, match="Invalid signature"):
            construct_event(payload + b" ", signature)
        with pytest.raises(BillingError, match="Invalid signature"):
            construct_event(b"{}", "t=²,v1=00")

    def test_checkout_completed_links_customer(self, subscription_db):
        start_trial(subscription_db, 1, NOW)
        handle_event(subscription_db, {
            "type": "checkout.session.completed",
            "data": {"object": {"metadata": {"user_id": "1"}, "customer": "cus_1", "subscription": "sub_1"}},
        })
        subscription = subscription_db.get_subscription(1)
        assert subscription.stripe_customer_id == "cus_1"
        assert subscription.stripe_subscription_id == "sub_1"

    def test_subscription_updated_maps_status_and_period(self, subscription_db):
        start_trial(subscription_db, 1, NOW)
        subscription_db.update_subscription(1, stripe_customer_id="cus_1")
        handle_event(subscription_db, {
            "type": "customer.subscription.updated",
            "data": {"object": {
                "id": "sub_1", "customer": "cus_1", "status": "unpaid",
                "current_period_end": 1739750400,
                "items": {"data": [{"price": {"id": "price_1"}}]},
            }},
        })
        subscription = subscription_db.get_subscription(1)
        assert subscription.status == "canceled"
        assert subscription.stripe_price_id == "price_1"
        assert subscription.current_period_end == "2025-02-17T00:00:00+00:00"

    def test_payment_succeeded_only_clears_past_due(self, subscription_db):
        start_trial(subscription_db, 1, NOW)
        subscription_db.update_subscription(1, stripe_customer_id="cus_1")
        succeeded = {"type": "invoice.payment_succeeded", "data": {"object": {"customer": "cus_1"}}}

        handle_event(subscription_db, succeeded)
        assert subscription_db.get_subscription(1).status == "trialing"

        handle_event(subscription_db, {"type": "invoice.payment_failed", "data": {"object": {"customer": "cus_1"}}})
        assert subscription_db.get_subscription(1).status == "past_due"
        handle_event(subscription_db, succeeded)
        assert subscription_db.get_subscription(1).status == "active"

    def test_deleted_cancels(self, subscription_db):
        start_trial(subscription_db, 1, NOW)
        subscription_db.update_subscription(1, stripe_customer_id="cus_1", status="active")
        handle_event(subscription_db, {
            "type": "customer.subscription.deleted", "data": {"object": {"customer": "cus_1"}},
        })
        subscription = subscription_db.get_subscription(1)
        assert subscription.status == "canceled"
        assert subscription.canceled_at

    def test_unhandled_event(self, subscription_db):
        assert handle_event(subscription_db, {"type": "charge.refunded"}) is False


class TestStripeSessions:
    @pytest.mark.asyncio
    async def test_checkout_creates_customer_once(self, subscription_db, user):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            if request.url.path.endswith("/customers"):
                return httpx.Response(200, json={"id": "cus_new"})
            return httpx.Response(200, json={"url": "https://checkout.stripe.test/s"})

        real_client = httpx.AsyncClient
        transport = httpx.MockTransport(handler)
        with patch.object(settings, "STRIPE_SECRET_KEY", "sk_test"), patch(
            "zeroed.integrations.stripe_billing.httpx.AsyncClient",
            lambda **kwargs: real_client(transport=transport, **kwargs),
        ):
            assert await create_checkout_session(subscription_db, user) == "https://checkout.stripe.test/s"
            await create_checkout_session(subscription_db, user)

        assert paths.count("/v1/customers") == 1
        assert subscription_db.get_subscription(user.id).stripe_customer_id == "cus_new"

    @pytest.mark.asyncio
    async def test_unconfigured_stripe(self, subscription_db, user):
        with patch.object(settings, "STRIPE_SECRET_KEY", ""):
            with pytest.raises(BillingError):
                await create_checkout_session(subscription_db, user)

    @pytest.mark.asyncio
    async def test_portal_needs_customer(self, subscription_db, user):
        with pytest.raises(BillingError, match="No billing account"):
            await create_portal_session(subscription_db, user.id)
