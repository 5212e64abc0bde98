from __future__ import annotations

from typing import Any

from ..settings import settings

PLAN_ORDER = ("free", "standard", "premium")

# Stored credit balance for plans with unlimited credits (-1).
UNLIMITED_CREDITS = 999_999

_FEATURES: dict[str, list[str]] = {
    "free": [
        "Basic writing tools",
        "Limited AI assistance",
        "100 credits/month",
        "Export to PDF",
        "Single book writing",
    ],
    "standard": [
        "Full AI writing assistant",
        "Quality scoring",
        "500 credits/month",
        "Publish to marketplace",
        "Advanced exports",
        "Cover design studio",
        "Unlimited books",
    ],
    "premium": [
        "Everything in Standard",
        "Unlimited AI credits",
        "Priority AI processing",
        "Advanced analytics",
        "Custom branding",
        "Early access to features",
        "Priority support",
    ],
}

_PRICE_ILS = {"free": 0, "standard": 99, "premium": 250}


def get_plan(plan: str) -> dict[str, Any] | None:
    p = str(plan or "").strip().lower()
    if p not in PLAN_ORDER:
        return None
    price = {"free": 0.0, "standard": settings.standard_plan_price, "premium": settings.premium_plan_price}[p]
    credits = {"free": 100, "standard": settings.standard_plan_credits, "premium": settings.premium_plan_credits}[p]
    return {
        "id": p,
        "tier": p,
        "price": float(price),
        "priceILS": _PRICE_ILS[p],
        "currency": "USD",
        "credits": int(credits),
        "features": list(_FEATURES[p]),
    }


def list_plans() -> list[dict[str, Any]]:
    return [get_plan(p) for p in PLAN_ORDER]  # type: ignore[misc]


def rank(role: str | None) -> int:
    """Plan rank of a role; admins rank above every plan."""
    r = str(role or "free").lower()
    if r == "admin":
        return len(PLAN_ORDER)
    return PLAN_ORDER.index(r) if r in PLAN_ORDER else 0


def is_upgrade(previous_role: str | None, plan: str) -> bool:
    return rank(plan) > rank(previous_role)


def stored_credits(plan: dict[str, Any]) -> int:
    return UNLIMITED_CREDITS if int(plan["credits"]) == -1 else int(plan["credits"])


def plan_label(plan: str) -> str:
    return str(plan or "").capitalize()
