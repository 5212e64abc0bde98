from __future__ import annotations

import hashlib
import uuid
from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.errors import DdbConflict
from ..db.dynamodb.table import get_main_table
from .common import now_iso, strip_internal


def conversation_key(conversation_id: str) -> dict[str, str]:
    return {"pk": f"CONV#{conversation_id}", "sk": "META"}


def pointer_key(user_id: str, conversation_id: str) -> dict[str, str]:
    return {"pk": f"USER#{user_id}", "sk": f"CONV#{conversation_id}"}


def conversation_id_for(participants: list[str], book_id: str | None) -> str:
    """Same two participants and book always map to the same conversation."""
    raw = "|".join(sorted(str(p) for p in participants)) + "|" + (str(book_id) if book_id else "-")
    return "conv_" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:24]


def normalize_conversation_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    if not item:
        return None
    return strip_internal(item, "conversationId")


def normalize_message_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    if not item:
        return None
    out = strip_internal(item, "messageId")
    out.setdefault("readAt", None)
    return out


def get_conversation(conversation_id: str) -> dict[str, Any] | None:
    cid = str(conversation_id or "").strip()
    if not cid:
        return None
    return get_main_table().get_item(key=conversation_key(cid))


def get_or_create_conversation(*, participants: list[str], book_id: str | None) -> dict[str, Any]:
    participants = sorted(str(p) for p in participants)
    conversation_id = conversation_id_for(participants, book_id)
    existing = get_conversation(conversation_id)
    if existing:
        if not existing.get("isActive", True):
            return get_main_table().update_fields(
                key=conversation_key(conversation_id), fields={"isActive": True}
            ) or existing
        return existing

    ts = now_iso()
    item: dict[str, Any] = {
        **conversation_key(conversation_id),
        "entityType": "Conversation",
        "conversationId": conversation_id,
        "participants": participants,
        "bookId": book_id,
        "lastMessage": None,
        "unreadCount": {p: 0 for p in participants},
        "isActive": True,
        "createdAt": ts,
        "updatedAt": ts,
    }
    t = get_main_table()
    try:
        t.transact_write(
            puts=[
                t.tx_put(item=item, condition_expression="attribute_not_exists(pk)"),
                *[
                    t.tx_put(
                        item={
                            **pointer_key(p, conversation_id),
                            "entityType": "ConversationPointer",
                            "conversationId": conversation_id,
                            "userId": p,
                        }
                    )
                    for p in participants
                ],
            ]
        )
    except DdbConflict:
        # Created concurrently by the other participant.
        return get_conversation(conversation_id) or item
    return item


def list_conversations_for_user(user_id: str) -> list[dict[str, Any]]:
    pointers = get_main_table().query_all(
        key_condition_expression=Key("pk").eq(f"USER#{user_id}") & Key("sk").begins_with("CONV#"),
    )
    out: list[dict[str, Any]] = []
    for p in pointers:
        conv = get_conversation(str(p.get("conversationId") or ""))
        if conv:
            out.append(conv)
    return out


def update_conversation(conversation_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
    updates = dict(fields)
    updates["updatedAt"] = now_iso()
    return get_main_table().update_fields(key=conversation_key(conversation_id), fields=updates)


def increment_unread(conversation_id: str, user_id: str, by: int = 1) -> dict[str, Any] | None:
    return get_main_table().add_counters(
        key=conversation_key(conversation_id), counters={f"unreadCount.{user_id}": by}
    )


def add_message(*, conversation_id: str, sender_id: str, content: str) -> dict[str, Any]:
    created_at = now_iso()
    message_id = f"msg_{uuid.uuid4().hex}"
    item = {
        "pk": f"CONV#{conversation_id}",
        "sk": f"MSG#{created_at}#{message_id}",
        "entityType": "Message",
        "messageId": message_id,
        "conversationId": conversation_id,
        "senderId": sender_id,
        "content": content,
        "readAt": None,
        "createdAt": created_at,
    }
    get_main_table().put_item(item=item)
    return item


def list_messages(conversation_id: str) -> list[dict[str, Any]]:
    """Oldest first."""
    return get_main_table().query_all(
        key_condition_expression=Key("pk").eq(f"CONV#{conversation_id}") & Key("sk").begins_with("MSG#"),
        scan_index_forward=True,
    )


def mark_messages_read(conversation_id: str, reader_id: str) -> int:
    """Stamp readAt on the other side's unread messages; returns how many changed."""
    t = get_main_table()
    ts = now_iso()
    n = 0
    for m in list_messages(conversation_id):
        if m.get("senderId") == reader_id or m.get("readAt"):
            continue
        t.update_fields(key={"pk": m["pk"], "sk": m["sk"]}, fields={"readAt": ts})
        n += 1
    return n
