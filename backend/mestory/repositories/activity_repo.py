from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import get_main_table
from .common import now_iso

# Most recent interaction events kept on the activity document.
MAX_EVENTS = 200


def activity_key(user_id: str) -> dict[str, str]:
    return {"pk": f"USER#{user_id}", "sk": "ACTIVITY"}


def empty_activity(user_id: str) -> dict[str, Any]:
    ts = now_iso()
    return {
        **activity_key(user_id),
        "entityType": "UserActivity",
        "userId": user_id,
        "readingHistory": [],
        "currentlyReading": [],
        "completedBooks": [],
        "abandonedBooks": [],
        "writingProgress": [],
        "currentlyWriting": [],
        "completedWriting": [],
        "genrePreferences": [],
        "authorPreferences": [],
        "interactionEvents": [],
        "totalBooksRead": 0,
        "totalBooksWritten": 0,
        "totalReadingTime": 0,
        "lastActiveAt": ts,
        "createdAt": ts,
        "updatedAt": ts,
    }


def get_activity(user_id: str) -> dict[str, Any] | None:
    return get_main_table().get_item(key=activity_key(user_id))


def get_or_create_activity(user_id: str) -> dict[str, Any]:
    return get_activity(user_id) or empty_activity(user_id)


def save_activity(activity: dict[str, Any]) -> dict[str, Any]:
    """Whole-document write; the activity document has a single writer (its user)."""
    item = dict(activity)
    events = list(item.get("interactionEvents") or [])
    item["interactionEvents"] = events[-MAX_EVENTS:]
    item["updatedAt"] = now_iso()
    item["gsi1pk"] = "ACTIVITIES"
    item["gsi1sk"] = f"{item.get('lastActiveAt') or item['updatedAt']}#{item.get('userId')}"
    get_main_table().put_item(item=item)
    return item


def delete_activity(user_id: str) -> None:
    get_main_table().delete_item(key=activity_key(user_id))


def list_activities(*, active_since: str | None = None) -> list[dict[str, Any]]:
    """Activity documents ordered by lastActiveAt, most recent first."""
    cond = Key("gsi1pk").eq("ACTIVITIES")
    if active_since:
        cond = cond & Key("gsi1sk").gte(active_since)
    return get_main_table().query_all(
        key_condition_expression=cond,
        index_name="GSI1",
        scan_index_forward=False,
    )
