"""Admin-only routes: platform flags, user management, coupons and broadcast email.

Admins are the accounts whose email appears in ADMIN_EMAILS. These routes
stay reachable in maintenance mode.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from zeroed.adapters.email_notifier import ResendEmailNotifier
from zeroed.api.deps import Stores, admin_user, get_mailer, get_stores
from zeroed.config import settings
from zeroed.core.platform_settings import get_all_settings, set_setting
from zeroed.data.models import User
from zeroed.integrations.email_templates import admin_email
from zeroed.ports.notification_port import NotificationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(admin_user)])


class SettingUpdate(BaseModel):
    key: str
    value: bool


class AdminEmail(BaseModel):
    to: Literal["all"] | list[str]
    subject: str
    message: str


class UserAction(BaseModel):
    action: str


class CouponCreate(BaseModel):
    code: str
    coupon_type: Literal["free_forever", "trial_extension"]
    value: int = 0
    expires_at: str | None = None
    max_uses: int | None = None


@router.get("/settings")
def get_settings(stores: Stores = Depends(get_stores)):
    return {"settings": get_all_settings(stores.platform)}


@router.patch("/settings")
def update_setting(body: SettingUpdate, stores: Stores = Depends(get_stores)):
    try:
        updated = set_setting(stores.platform, body.key, body.value)
    except KeyError as exc:
        raise HTTPException(status_code=400, detail=f"Unknown setting: {body.key}") from exc
    logger.info("Platform setting %s set to %s", body.key, body.value)
    return {"settings": updated}


@router.get("/users")
def list_users(stores: Stores = Depends(get_stores)):
    return {"users": [asdict(u) for u in stores.users.list_users()]}


def _other_user(stores: Stores, user_id: int, admin: User) -> User:
    if user_id == admin.id:
        raise HTTPException(status_code=400, detail="Cannot modify your own account")
    target = stores.users.get_user(user_id)
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")
    return target


@router.patch("/users/{user_id}")
def update_user(
    user_id: int,
    body: UserAction,
    admin: User = Depends(admin_user),
    stores: Stores = Depends(get_stores),
):
    """Suspend or reinstate an account."""
    if body.action not in ("suspend", "unsuspend"):
        raise HTTPException(status_code=400, detail="Invalid action")
    _other_user(stores, user_id, admin)
    suspended = body.action == "suspend"
    stores.users.set_suspended(user_id, suspended)
    logger.info("Admin %s %sed user #%d", admin.email, body.action, user_id)
    return {"success": True, "message": "User suspended" if suspended else "User unsuspended"}


@router.delete("/users/{user_id}")
def delete_user(
    user_id: int,
    admin: User = Depends(admin_user),
    stores: Stores = Depends(get_stores),
):
    """Delete an account, revoking its API keys and integrations."""
    _other_user(stores, user_id, admin)
    for key in stores.webhooks.list_api_keys(user_id):
        stores.webhooks.delete_api_key(key.id, user_id)
    for integration in stores.integrations.list_integrations(user_id):
        stores.integrations.delete_integration(user_id, integration.provider)
    stores.users.delete_user(user_id)
    logger.info("Admin %s deleted user #%d", admin.email, user_id)
    return {"success": True, "message": "User deleted"}


@router.post("/coupons", status_code=201)
def create_coupon(body: CouponCreate, stores: Stores = Depends(get_stores)):
    if not body.code.strip():
        raise HTTPException(status_code=400, detail="Code is required")
    coupon = stores.subscriptions.add_coupon(
        body.code.strip(), body.coupon_type, body.value, body.expires_at, body.max_uses,
    )
    return {"coupon": asdict(coupon)}


@router.post("/email")
async def send_admin_email(
    body: AdminEmail,
    stores: Stores = Depends(get_stores),
    mailer: ResendEmailNotifier = Depends(get_mailer),
):
    """Send a plain message to every user, or to the listed addresses."""
    if not body.subject.strip() or not body.message.strip():
        raise HTTPException(status_code=400, detail="Subject and message are required")

    recipients = [u.email for u in stores.users.list_users()] if body.to == "all" else body.to
    html = admin_email(body.message, settings.APP_URL)

    sent = 0
    errors: list[str] = []
    for address in recipients:
        try:
            await mailer.send_email(address, body.subject, html)
            sent += 1
        except NotificationError as exc:
            logger.warning("Admin email to %s failed: %s", address, exc)
            errors.append(f"{address}: {exc}")
    return {"sent": sent, "errors": errors}
