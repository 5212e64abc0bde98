from __future__ import annotations

import uuid
from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import get_main_table
from ..services.book_stats import derived_statistics, normalize_chapters
from .common import new_id, now_iso, strip_internal

BOOK_STATUSES = ("draft", "published", "unpublished")

DEFAULT_PAGE_LAYOUT: dict[str, Any] = {
    "bodyFont": "Georgia",
    "fontSize": 12,
    "lineHeight": 1.6,
    "pageSize": "A5",
    "margins": {"top": 25, "bottom": 25, "left": 25, "right": 25},
    "includeTableOfContents": True,
    "headerFooter": {
        "includeHeader": False,
        "includeFooter": True,
        "includePageNumbers": True,
        "pageNumberPosition": "bottom",
    },
}


def book_key(book_id: str) -> dict[str, str]:
    bid = str(book_id or "").strip()
    if not bid:
        raise ValueError("book_id is required")
    return {"pk": f"BOOK#{bid}", "sk": "META"}


def _status_index(status: str, created_at: str, book_id: str) -> dict[str, str]:
    return {"gsi2pk": f"BOOK_STATUS#{status}", "gsi2sk": f"{created_at}#{book_id}"}


def normalize_book_for_api(item: dict[str, Any] | None, *, include_content: bool = True) -> dict[str, Any] | None:
    if not item:
        return None
    out = strip_internal(item, "bookId")
    out.pop("likedBy", None)
    if not include_content:
        out["chapters"] = [{k: v for k, v in ch.items() if k != "content"} for ch in out.get("chapters") or []]
    return out


def create_book(*, author_id: str, fields: dict[str, Any]) -> dict[str, Any]:
    book_id = new_id("book")
    created_at = now_iso()
    chapters = normalize_chapters(fields.get("chapters"))
    characters = list(fields.get("characters") or [])

    item: dict[str, Any] = {
        **book_key(book_id),
        "entityType": "Book",
        "bookId": book_id,
        "authorId": str(author_id),
        "title": str(fields.get("title") or "").strip(),
        "genre": str(fields.get("genre") or "").strip(),
        "description": str(fields.get("description") or ""),
        "language": str(fields.get("language") or "en"),
        "storyContext": fields.get("storyContext") or {},
        "writingGoal": fields.get("writingGoal"),
        "targetAudience": fields.get("targetAudience"),
        "chapters": chapters,
        "characters": characters,
        "tags": [],
        "pageImages": [],
        "pageLayout": dict(DEFAULT_PAGE_LAYOUT),
        "publishingStatus": {"status": "draft", "price": 0, "isFree": True, "isPublic": False},
        "statistics": {
            **derived_statistics(chapters, characters),
            "views": 0,
            "purchases": 0,
            "revenue": 0,
            "averageRating": 0,
            "totalReviews": 0,
            "completionRate": 0,
            "shares": 0,
            "comments": 0,
        },
        "likes": 0,
        "likedBy": [],
        "createdAt": created_at,
        "updatedAt": created_at,
        "gsi1pk": f"AUTHOR#{author_id}",
        "gsi1sk": f"BOOK#{created_at}#{book_id}",
        **_status_index("draft", created_at, book_id),
    }
    get_main_table().put_item(item=item, condition_expression="attribute_not_exists(pk)")
    return item


def get_book(book_id: str) -> dict[str, Any] | None:
    bid = str(book_id or "").strip()
    if not bid:
        return None
    return get_main_table().get_item(key=book_key(bid))


def list_books_by_author(author_id: str) -> list[dict[str, Any]]:
    return get_main_table().query_all(
        key_condition_expression=Key("gsi1pk").eq(f"AUTHOR#{author_id}"),
        index_name="GSI1",
        scan_index_forward=False,
    )


def list_books_by_status(status: str) -> list[dict[str, Any]]:
    return get_main_table().query_all(
        key_condition_expression=Key("gsi2pk").eq(f"BOOK_STATUS#{status}"),
        index_name="GSI2",
        scan_index_forward=False,
    )


def list_public_books() -> list[dict[str, Any]]:
    """Published and public, newest first."""
    return [
        b
        for b in list_books_by_status("published")
        if bool((b.get("publishingStatus") or {}).get("isPublic"))
    ]


def list_all_books() -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for s in BOOK_STATUSES:
        out.extend(list_books_by_status(s))
    return out


def update_book(book_id: str, fields: dict[str, Any], *, current: dict[str, Any] | None = None) -> dict[str, Any] | None:
    """SET top-level fields; chapter/character writes also refresh derived statistics."""
    updates = dict(fields)
    if "chapters" in updates or "characters" in updates:
        cur = current or get_book(book_id) or {}
        chapters = normalize_chapters(updates["chapters"]) if "chapters" in updates else list(cur.get("chapters") or [])
        characters = list(updates["characters"] or []) if "characters" in updates else list(cur.get("characters") or [])
        if "chapters" in updates:
            updates["chapters"] = chapters
        for k, v in derived_statistics(chapters, characters).items():
            updates[f"statistics.{k}"] = v
    updates["updatedAt"] = now_iso()
    return get_main_table().update_fields(key=book_key(book_id), fields=updates)


def set_status(book: dict[str, Any], status: str, fields: dict[str, Any] | None = None) -> dict[str, Any] | None:
    if status not in BOOK_STATUSES:
        raise ValueError(f"invalid status: {status}")
    book_id = str(book.get("bookId"))
    updates: dict[str, Any] = {
        "publishingStatus.status": status,
        **_status_index(status, str(book.get("createdAt") or now_iso()), book_id),
        **(fields or {}),
    }
    return update_book(book_id, updates)


def add_book_counters(book_id: str, counters: dict[str, int | float]) -> dict[str, Any] | None:
    return get_main_table().add_counters(key=book_key(book_id), counters=counters)


def delete_book(book_id: str) -> None:
    """Deletes the book and everything stored under its partition (reviews, events)."""
    t = get_main_table()
    children = t.query_all(key_condition_expression=Key("pk").eq(f"BOOK#{book_id}"))
    for it in children:
        t.delete_item(key={"pk": it["pk"], "sk": it["sk"]})


# --- reviews ---


def review_key(book_id: str, user_id: str) -> dict[str, str]:
    return {"pk": f"BOOK#{book_id}", "sk": f"REVIEW#{user_id}"}


def put_review(*, book_id: str, user_id: str, user_name: str, rating: int, comment: str) -> dict[str, Any]:
    """One review per user per book; DdbConflict when the user already reviewed."""
    item = {
        **review_key(book_id, user_id),
        "entityType": "Review",
        "reviewId": f"{book_id}:{user_id}",
        "bookId": book_id,
        "userId": user_id,
        "userName": user_name,
        "rating": int(rating),
        "comment": str(comment).strip(),
        "createdAt": now_iso(),
    }
    get_main_table().put_item(item=item, condition_expression="attribute_not_exists(pk)")
    return item


def list_reviews(book_id: str) -> list[dict[str, Any]]:
    items = get_main_table().query_all(
        key_condition_expression=Key("pk").eq(f"BOOK#{book_id}") & Key("sk").begins_with("REVIEW#"),
    )
    items.sort(key=lambda r: str(r.get("createdAt") or ""), reverse=True)
    return [strip_internal(r, "reviewId") for r in items]


# --- interaction events ---

INTERACTION_TYPES = ("view", "read", "complete", "purchase", "like", "share", "comment", "abandon")


def record_event(
    *,
    book_id: str,
    user_id: str | None,
    event_type: str,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    ts = now_iso()
    item = {
        "pk": f"BOOK#{book_id}",
        "sk": f"EVENT#{ts}#{uuid.uuid4().hex[:8]}",
        "entityType": "InteractionEvent",
        "bookId": book_id,
        "userId": user_id,
        "type": event_type,
        "metadata": metadata or {},
        "createdAt": ts,
        "gsi1pk": "EVENTS",
        "gsi1sk": ts,
    }
    get_main_table().put_item(item=item)
    return item


def list_book_events(book_id: str, *, since: str) -> list[dict[str, Any]]:
    return get_main_table().query_all(
        key_condition_expression=Key("pk").eq(f"BOOK#{book_id}") & Key("sk").between(f"EVENT#{since}", "EVENT#~"),
    )


def list_events_since(since: str) -> list[dict[str, Any]]:
    return get_main_table().query_all(
        key_condition_expression=Key("gsi1pk").eq("EVENTS") & Key("gsi1sk").gte(since),
        index_name="GSI1",
        scan_index_forward=False,
    )
