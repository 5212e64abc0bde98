from __future__ import annotations

import time
import uuid
from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import get_main_table
from .common import now_iso, strip_internal

NOTIFICATION_TYPES = (
    "like",
    "comment",
    "share",
    "purchase",
    "new_message",
    "new_follower",
    "book_published",
    "payment",
    "subscription",
    "quality_score",
    "mention",
    "system",
    "promotion",
)

# DynamoDB TTL (epoch seconds) removes notifications after 90 days.
TTL_SECONDS = 90 * 86400


def notification_key(user_id: str, notification_id: str) -> dict[str, str]:
    return {"pk": f"USER#{user_id}", "sk": f"NOTIF#{notification_id}"}


def normalize_notification_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    if not item:
        return None
    out = strip_internal(item, "notificationId")
    out.pop("expiresAt", None)
    out.setdefault("readAt", None)
    return out


def create_notification(
    *,
    recipient_id: str,
    type: str,
    title: str,
    message: str,
    sender_id: str | None = None,
    data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    if type not in NOTIFICATION_TYPES:
        raise ValueError(f"invalid notification type: {type}")
    created_at = now_iso()
    notification_id = f"{created_at}-{uuid.uuid4().hex[:8]}"
    item: dict[str, Any] = {
        **notification_key(recipient_id, notification_id),
        "entityType": "Notification",
        "notificationId": notification_id,
        "recipientId": str(recipient_id),
        "senderId": str(sender_id) if sender_id else None,
        "type": type,
        "title": str(title)[:200],
        "message": str(message)[:1000],
        "data": data or {},
        "isRead": False,
        "readAt": None,
        "isArchived": False,
        "createdAt": created_at,
        "expiresAt": int(time.time()) + TTL_SECONDS,
    }
    get_main_table().put_item(item=item)
    return item


def list_notifications(user_id: str) -> list[dict[str, Any]]:
    """Newest first (ids sort by creation time)."""
    return get_main_table().query_all(
        key_condition_expression=Key("pk").eq(f"USER#{user_id}") & Key("sk").begins_with("NOTIF#"),
        scan_index_forward=False,
    )


def get_notification(user_id: str, notification_id: str) -> dict[str, Any] | None:
    return get_main_table().get_item(key=notification_key(user_id, notification_id))


def update_notification(user_id: str, notification_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
    return get_main_table().update_fields(key=notification_key(user_id, notification_id), fields=fields)


def delete_notification(user_id: str, notification_id: str) -> None:
    get_main_table().delete_item(
        key=notification_key(user_id, notification_id),
        condition_expression="attribute_exists(pk)",
    )
