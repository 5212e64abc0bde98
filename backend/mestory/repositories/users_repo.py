from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import get_main_table
from .common import iso_in, new_id, now_iso, strip_internal

FREE_CREDITS = 100


def user_key(user_id: str) -> dict[str, str]:
    uid = str(user_id or "").strip()
    if not uid:
        raise ValueError("user_id is required")
    return {"pk": f"USER#{uid}", "sk": "PROFILE"}


def email_key(email: str, user_id: str) -> dict[str, str]:
    return {"pk": f"USER_EMAIL#{normalize_email(email)}", "sk": f"USER#{user_id}"}


def normalize_email(email: str) -> str:
    return str(email or "").strip().lower()


def normalize_user_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    """Public shape: no password hash, no verification code."""
    if not item:
        return None
    out = strip_internal(item, "userId")
    out["id"] = out["_id"]
    out.pop("userId", None)
    out.pop("passwordHash", None)
    ev = dict(out.get("emailVerification") or {})
    out["emailVerification"] = {"isVerified": bool(ev.get("isVerified"))}
    if ev.get("verifiedAt"):
        out["emailVerification"]["verifiedAt"] = ev.get("verifiedAt")
    return out


def public_profile(item: dict[str, Any] | None) -> dict[str, Any] | None:
    """Fields other users may see."""
    if not item:
        return None
    profile = dict(item.get("profile") or {})
    author = dict(profile.get("authorProfile") or {})
    return {
        "_id": item.get("userId"),
        "id": item.get("userId"),
        "name": item.get("name"),
        "role": item.get("role"),
        "createdAt": item.get("createdAt"),
        "profile": {
            "bio": profile.get("bio"),
            "avatar": profile.get("avatar"),
            "authorProfile": {
                "publishedBooks": author.get("publishedBooks", 0),
                "totalSales": author.get("totalSales", 0),
                "rating": author.get("rating", 0),
            },
        },
    }


def _default_profile() -> dict[str, Any]:
    return {
        "bio": "",
        "avatar": "",
        "authorProfile": {"publishedBooks": 0, "totalSales": 0, "rating": 0, "followers": []},
        "following": [],
        "readingHistory": [],
        "writingStatistics": {"totalWords": 0, "booksWritten": 0},
        "earnings": {"totalEarned": 0, "pendingPayout": 0, "withdrawn": 0, "history": []},
        "notificationPreferences": {
            "writing": True,
            "publishing": True,
            "sales": True,
            "social": True,
            "system": True,
            "emailDigest": False,
        },
    }


def create_user(
    *,
    name: str,
    email: str,
    password_hash: str,
    verification_code: str | None = None,
    verification_expires_at: str | None = None,
    role: str = "free",
) -> dict[str, Any]:
    """Create the profile and its email index atomically; DdbConflict on duplicate email."""
    user_id = new_id("user")
    created_at = now_iso()
    item: dict[str, Any] = {
        **user_key(user_id),
        "entityType": "User",
        "userId": user_id,
        "name": str(name).strip(),
        "email": normalize_email(email),
        "passwordHash": password_hash,
        "role": role,
        "credits": FREE_CREDITS,
        "subscription": {
            "plan": "free",
            "startDate": created_at,
            "endDate": iso_in(days=365),
            "autoRenew": False,
        },
        "profile": _default_profile(),
        "emailVerification": {
            "isVerified": False,
            "code": verification_code,
            "expiresAt": verification_expires_at,
        },
        "createdAt": created_at,
        "updatedAt": created_at,
        "gsi1pk": "USERS",
        "gsi1sk": f"{created_at}#{user_id}",
    }
    index_item = {
        **email_key(email, user_id),
        "entityType": "UserEmail",
        "userId": user_id,
        "email": normalize_email(email),
    }

    t = get_main_table()
    t.transact_write(
        puts=[
            t.tx_put(item=index_item, condition_expression="attribute_not_exists(pk)"),
            t.tx_put(item=item, condition_expression="attribute_not_exists(pk)"),
        ]
    )
    return item


def get_user_by_id(user_id: str) -> dict[str, Any] | None:
    uid = str(user_id or "").strip()
    if not uid:
        return None
    return get_main_table().get_item(key=user_key(uid))


def get_user_by_email(email: str) -> dict[str, Any] | None:
    e = normalize_email(email)
    if not e:
        return None
    links = get_main_table().query_all(
        key_condition_expression=Key("pk").eq(f"USER_EMAIL#{e}"),
        max_items=1,
    )
    if not links:
        return None
    return get_user_by_id(str(links[0].get("userId") or ""))


def update_user(user_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
    updates = dict(fields)
    updates["updatedAt"] = now_iso()
    return get_main_table().update_fields(key=user_key(user_id), fields=updates)


def add_user_counters(user_id: str, counters: dict[str, int | float]) -> dict[str, Any] | None:
    return get_main_table().add_counters(key=user_key(user_id), counters=counters)


def list_users(*, max_items: int | None = None) -> list[dict[str, Any]]:
    """All users, newest first."""
    return get_main_table().query_all(
        key_condition_expression=Key("gsi1pk").eq("USERS"),
        index_name="GSI1",
        scan_index_forward=False,
        max_items=max_items,
    )


def get_users_by_ids(user_ids: list[str]) -> dict[str, dict[str, Any]]:
    out: dict[str, dict[str, Any]] = {}
    for uid in dict.fromkeys(str(u) for u in user_ids if u):
        u = get_user_by_id(uid)
        if u:
            out[uid] = u
    return out


def delete_user(user_id: str) -> None:
    item = get_user_by_id(user_id)
    if not item:
        return
    t = get_main_table()
    t.transact_write(
        deletes=[
            t.tx_delete(key=email_key(str(item.get("email") or ""), user_id)),
            t.tx_delete(key=user_key(user_id)),
        ]
    )
