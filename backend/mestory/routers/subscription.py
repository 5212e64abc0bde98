from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel

from ..auth.deps import current_user
from ..auth.tokens import AuthUser, create_access_token
from ..observability.logging import get_logger
from ..repositories import users_repo
from ..repositories.common import now_iso
from ..responses import ok
from ..services import notifications, plans
from ..settings import settings

router = APIRouter(tags=["subscription"])
log = get_logger("subscription")

SUBSCRIPTION_DAYS = 30


class PlanRequest(BaseModel):
    plan: str


def require_plan(plan_id: str) -> dict[str, Any]:
    plan = plans.get_plan(plan_id)
    if plan is None:
        raise HTTPException(status_code=400, detail="Invalid plan selected")
    return plan


def apply_plan(user: dict[str, Any], plan: dict[str, Any]) -> dict[str, Any]:
    """Role, credits and a one-month subscription window; admins keep their role."""
    start = datetime.now(timezone.utc)
    end = start + timedelta(days=SUBSCRIPTION_DAYS)
    fields: dict[str, Any] = {
        "credits": plans.stored_credits(plan),
        "subscription": {
            "plan": plan["id"],
            "tier": plan["tier"],
            "price": plan["price"],
            "credits": plan["credits"],
            "startDate": start.isoformat().replace("+00:00", "Z"),
            "endDate": end.isoformat().replace("+00:00", "Z"),
            "isActive": True,
            "autoRenew": plan["id"] != "free",
        },
    }
    if user.get("role") != "admin":
        fields["role"] = plan["tier"]
    return users_repo.update_user(str(user.get("userId")), fields) or {**user, **fields}


def account_view(user: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": user.get("userId"),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role"),
        "credits": user.get("credits"),
        "subscription": user.get("subscription"),
    }


def fresh_token(user: dict[str, Any]) -> str:
    return create_access_token(
        user_id=str(user.get("userId")), email=user.get("email"), role=str(user.get("role") or "free")
    )


@router.get("/plans")
def get_plans():
    return ok({"plans": plans.list_plans()})


@router.post("/upgrade")
def change_plan(body: PlanRequest, background_tasks: BackgroundTasks, user: AuthUser = Depends(current_user)):
    plan = require_plan(body.plan)
    item = users_repo.get_user_by_id(user.id)
    if not item:
        raise HTTPException(status_code=404, detail="User not found")

    previous = str(item.get("role") or "free")
    upgrade = plans.is_upgrade(previous, plan["id"])
    if upgrade and plan["price"] > 0 and not settings.paypal_mock_mode:
        raise HTTPException(status_code=400, detail="Paid upgrades must go through checkout")

    updated = apply_plan(item, plan)
    background_tasks.add_task(
        notifications.notify_subscription_change,
        user_id=user.id,
        plan=plans.plan_label(plan["id"]),
        is_upgrade=upgrade,
    )
    log.info("subscription_changed", user_id=user.id, previous=previous, plan=plan["id"])
    return ok(
        {"user": account_view(updated), "plan": {"name": plan["id"], **plan}, "token": fresh_token(updated)},
        message=f"Successfully changed to {plan['id']} plan!",
    )


@router.post("/cancel")
def cancel(user: AuthUser = Depends(current_user)):
    item = users_repo.get_user_by_id(user.id)
    if not item:
        raise HTTPException(status_code=404, detail="User not found")
    sub = dict(item.get("subscription") or {})
    if not sub or not sub.get("isActive", True) or sub.get("plan", "free") == "free":
        raise HTTPException(status_code=400, detail="No active subscription to cancel")

    sub["autoRenew"] = False
    sub["cancelledAt"] = now_iso()
    users_repo.update_user(user.id, {"subscription": sub})
    log.info("subscription_cancelled", user_id=user.id)
    return ok({"subscription": sub}, message="Subscription will not renew after current period ends")
