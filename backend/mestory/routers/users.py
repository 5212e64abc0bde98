from __future__ import annotations

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field

from ..auth.deps import current_user, optional_user
from ..auth.passwords import hash_password, verify_password
from ..auth.tokens import AuthUser
from ..observability.logging import get_logger
from ..repositories import books_repo, users_repo
from ..repositories.common import new_id, now_iso
from ..responses import ok
from ..services import notifications
from ..services.analytics import AUTHOR_SHARE
from .auth import ProfileUpdateRequest, apply_profile_update

router = APIRouter(tags=["users"])
log = get_logger("users")

MIN_WITHDRAWAL = 10


class PasswordChangeRequest(BaseModel):
    oldPassword: str | None = None
    newPassword: str | None = None


class WithdrawRequest(BaseModel):
    amount: float


class PayPalConnectRequest(BaseModel):
    email: EmailStr


def _require_user(user_id: str) -> dict[str, Any]:
    item = users_repo.get_user_by_id(user_id)
    if not item:
        raise HTTPException(status_code=404, detail="User not found")
    return item


def _earnings(item: dict[str, Any]) -> dict[str, Any]:
    return dict((item.get("profile") or {}).get("earnings") or {})


def _followers(item: dict[str, Any]) -> list[str]:
    return [str(x) for x in ((item.get("profile") or {}).get("authorProfile") or {}).get("followers") or []]


@router.get("/profile/{userId}")
def get_profile(userId: str, viewer: AuthUser | None = Depends(optional_user)):
    item = _require_user(userId)
    books = [
        books_repo.normalize_book_for_api(b, include_content=False)
        for b in books_repo.list_books_by_author(userId)
        if (b.get("publishingStatus") or {}).get("status") == "published"
        and (b.get("publishingStatus") or {}).get("isPublic")
    ]
    followers = _followers(item)
    return ok(
        {
            "user": users_repo.public_profile(item),
            "books": books,
            "followersCount": len(followers),
            "isFollowing": bool(viewer and viewer.id in followers),
        }
    )


@router.get("/earnings")
def get_earnings(user: AuthUser = Depends(current_user)):
    item = _require_user(user.id)
    earnings = _earnings(item)
    books = [b for b in books_repo.list_books_by_author(user.id) if (b.get("publishingStatus") or {}).get("status") == "published"]

    per_book = []
    total_revenue = 0.0
    total_sales = 0
    for b in books:
        stats = b.get("statistics") or {}
        revenue = float(stats.get("revenue") or 0)
        sales = int(stats.get("purchases") or 0)
        total_revenue += revenue
        total_sales += sales
        per_book.append(
            {
                "bookId": b.get("bookId"),
                "title": b.get("title"),
                "sales": sales,
                "revenue": round(revenue, 2),
                "earnings": round(revenue * AUTHOR_SHARE, 2),
            }
        )
    per_book.sort(key=lambda x: x["revenue"], reverse=True)

    return ok(
        {
            "totalRevenue": round(total_revenue, 2),
            "totalEarned": round(total_revenue * AUTHOR_SHARE, 2),
            "authorShare": AUTHOR_SHARE,
            "totalSales": total_sales,
            "pendingPayout": round(float(earnings.get("pendingPayout") or 0), 2),
            "withdrawn": round(float(earnings.get("withdrawn") or 0), 2),
            "paypalEmail": earnings.get("paypalEmail"),
            "history": list(earnings.get("history") or []),
            "topBooks": per_book[:5],
        }
    )


@router.put("/profile")
def update_profile(body: ProfileUpdateRequest, user: AuthUser = Depends(current_user)):
    _require_user(user.id)
    return ok(apply_profile_update(user.id, body), message="Profile updated successfully")


@router.put("/password")
def change_password(body: PasswordChangeRequest, user: AuthUser = Depends(current_user)):
    if not body.oldPassword or not body.newPassword:
        raise HTTPException(status_code=400, detail="Current password and new password are required")
    if len(body.newPassword) < 6:
        raise HTTPException(status_code=400, detail="New password must be at least 6 characters")

    item = _require_user(user.id)
    if not verify_password(body.oldPassword, item.get("passwordHash")):
        raise HTTPException(status_code=400, detail="Current password is incorrect")

    users_repo.update_user(user.id, {"passwordHash": hash_password(body.newPassword)})
    log.info("password_changed", user_id=user.id)
    return ok(message="Password updated successfully")


@router.post("/withdraw")
def withdraw(body: WithdrawRequest, user: AuthUser = Depends(current_user)):
    amount = round(float(body.amount), 2)
    if amount < MIN_WITHDRAWAL:
        raise HTTPException(status_code=400, detail=f"Minimum withdrawal amount is ${MIN_WITHDRAWAL}")

    item = _require_user(user.id)
    earnings = _earnings(item)
    if not earnings.get("paypalEmail"):
        raise HTTPException(status_code=400, detail="Please connect a PayPal account before withdrawing")
    available = float(earnings.get("pendingPayout") or 0)
    if amount > available:
        raise HTTPException(status_code=400, detail=f"Insufficient balance. Available: ${available:.2f}")

    entry = {
        "id": new_id("wd"),
        "type": "withdrawal",
        "amount": amount,
        "status": "pending",
        "paypalEmail": earnings.get("paypalEmail"),
        "createdAt": now_iso(),
    }
    updated = users_repo.update_user(
        user.id,
        {
            "profile.earnings.pendingPayout": round(available - amount, 2),
            "profile.earnings.withdrawn": round(float(earnings.get("withdrawn") or 0) + amount, 2),
            "profile.earnings.history": [*list(earnings.get("history") or []), entry],
        },
    )
    log.info("withdrawal_requested", user_id=user.id, amount=amount)
    return ok(
        {"withdrawal": entry, "earnings": _earnings(updated or {})},
        message="Withdrawal request submitted",
    )


@router.put("/paypal")
def connect_paypal(body: PayPalConnectRequest, user: AuthUser = Depends(current_user)):
    _require_user(user.id)
    email = users_repo.normalize_email(str(body.email))
    users_repo.update_user(user.id, {"profile.earnings.paypalEmail": email})
    return ok({"paypalEmail": email}, message="PayPal account connected")


@router.post("/{userId}/follow")
def toggle_follow(userId: str, background_tasks: BackgroundTasks, user: AuthUser = Depends(current_user)):
    if userId == user.id:
        raise HTTPException(status_code=400, detail="You cannot follow yourself")

    target = _require_user(userId)
    me = _require_user(user.id)

    followers = _followers(target)
    following = [str(x) for x in (me.get("profile") or {}).get("following") or []]
    is_following = user.id in followers
    if is_following:
        followers = [f for f in followers if f != user.id]
        following = [f for f in following if f != userId]
    else:
        followers.append(user.id)
        if userId not in following:
            following.append(userId)

    users_repo.update_user(userId, {"profile.authorProfile.followers": followers})
    users_repo.update_user(user.id, {"profile.following": following})

    if not is_following:
        background_tasks.add_task(notifications.notify_new_follower, author_id=userId, follower_id=user.id)

    return ok({"isFollowing": not is_following, "followersCount": len(followers)})
