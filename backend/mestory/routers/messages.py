from __future__ import annotations

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field

from ..auth.deps import current_user
from ..auth.tokens import AuthUser
from ..observability.logging import get_logger
from ..repositories import books_repo, conversations_repo, users_repo
from ..repositories.common import now_iso
from ..responses import ok
from ..services import notifications

router = APIRouter(tags=["messages"])
log = get_logger("messages")

PREVIEW_CHARS = 100


class StartConversationRequest(BaseModel):
    authorId: str = Field(..., min_length=1)
    bookId: str | None = None


class SendMessageRequest(BaseModel):
    conversationId: str = Field(..., min_length=1)
    content: str = Field(..., max_length=10000)


def _page(items: list[Any], page: int, limit: int) -> tuple[list[Any], dict[str, int]]:
    page = max(1, int(page))
    limit = max(1, min(100, int(limit)))
    total = len(items)
    start = (page - 1) * limit
    return items[start : start + limit], {"page": page, "limit": limit, "total": total, "pages": -(-total // limit)}


def _participant_conversation(conversation_id: str, user: AuthUser) -> dict[str, Any]:
    conv = conversations_repo.get_conversation(conversation_id)
    if not conv or not conv.get("isActive", True):
        raise HTTPException(status_code=404, detail="Conversation not found")
    if user.id not in [str(p) for p in conv.get("participants") or []]:
        raise HTTPException(status_code=403, detail="You are not a participant in this conversation")
    return conv


def _other(conv: dict[str, Any], user_id: str) -> str | None:
    return next((str(p) for p in conv.get("participants") or [] if str(p) != user_id), None)


def _book_summary(book_id: str | None) -> dict[str, Any] | None:
    if not book_id:
        return None
    book = books_repo.get_book(book_id)
    if not book:
        return None
    front = (book.get("coverDesign") or {}).get("front") or {}
    return {"_id": book_id, "title": book.get("title"), "coverImage": front.get("imageUrl")}


def _conversation_view(conv: dict[str, Any], user_id: str) -> dict[str, Any]:
    out = conversations_repo.normalize_conversation_for_api(conv) or {}
    other_id = _other(conv, user_id)
    out["otherParticipant"] = users_repo.public_profile(users_repo.get_user_by_id(other_id)) if other_id else None
    out["book"] = _book_summary(conv.get("bookId"))
    out["myUnreadCount"] = int((conv.get("unreadCount") or {}).get(user_id) or 0)
    return out


@router.post("/conversation")
def start_conversation(body: StartConversationRequest, user: AuthUser = Depends(current_user)):
    if body.authorId == user.id:
        raise HTTPException(status_code=400, detail="You cannot start a conversation with yourself")
    if not users_repo.get_user_by_id(body.authorId):
        raise HTTPException(status_code=404, detail="Author not found")
    if body.bookId:
        book = books_repo.get_book(body.bookId)
        if not book:
            raise HTTPException(status_code=404, detail="Book not found")
        if str(book.get("authorId")) != body.authorId:
            raise HTTPException(status_code=400, detail="This book does not belong to the specified author")

    conv = conversations_repo.get_or_create_conversation(participants=[user.id, body.authorId], book_id=body.bookId)
    return ok({"conversation": _conversation_view(conv, user.id)})


@router.post("/send", status_code=201)
def send_message(body: SendMessageRequest, background_tasks: BackgroundTasks, user: AuthUser = Depends(current_user)):
    content = body.content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="Message content is required")
    if len(content) > 5000:
        raise HTTPException(status_code=400, detail="Message cannot exceed 5000 characters")

    conv = _participant_conversation(body.conversationId, user)
    message = conversations_repo.add_message(conversation_id=body.conversationId, sender_id=user.id, content=content)
    conversations_repo.update_conversation(
        body.conversationId,
        {
            "lastMessage": {
                "content": content[:PREVIEW_CHARS],
                "senderId": user.id,
                "createdAt": message["createdAt"],
            },
            "lastMessageAt": message["createdAt"],
        },
    )
    recipient = _other(conv, user.id)
    if recipient:
        conversations_repo.increment_unread(body.conversationId, recipient)
        book = _book_summary(conv.get("bookId"))
        background_tasks.add_task(
            notifications.notify_new_message,
            recipient_id=recipient,
            sender_id=user.id,
            conversation_id=body.conversationId,
            preview=content,
            book_title=(book or {}).get("title"),
        )
    log.info("message_sent", conversation_id=body.conversationId, sender_id=user.id)
    return ok({"message": conversations_repo.normalize_message_for_api(message)}, message="Message sent")


@router.get("/conversations")
def list_conversations(page: int = 1, limit: int = 20, user: AuthUser = Depends(current_user)):
    convs = [c for c in conversations_repo.list_conversations_for_user(user.id) if c.get("isActive", True)]
    convs.sort(key=lambda c: str(c.get("lastMessageAt") or c.get("updatedAt") or ""), reverse=True)
    items, pagination = _page(convs, page, limit)
    return ok({"conversations": [_conversation_view(c, user.id) for c in items], "pagination": pagination})


@router.get("/conversation/{conversationId}")
def get_conversation(conversationId: str, page: int = 1, limit: int = 50, user: AuthUser = Depends(current_user)):
    conv = _participant_conversation(conversationId, user)
    messages = conversations_repo.list_messages(conversationId)
    # Newest page first; each page is returned in chronological order.
    newest_first = list(reversed(messages))
    items, pagination = _page(newest_first, page, limit)

    conversations_repo.mark_messages_read(conversationId, user.id)
    conversations_repo.update_conversation(conversationId, {f"unreadCount.{user.id}": 0})
    conv = {**conv, "unreadCount": {**(conv.get("unreadCount") or {}), user.id: 0}}
    return ok(
        {
            "conversation": _conversation_view(conv, user.id),
            "messages": [conversations_repo.normalize_message_for_api(m) for m in reversed(items)],
            "pagination": pagination,
        }
    )


@router.get("/unread-count")
def unread_count(user: AuthUser = Depends(current_user)):
    total = sum(
        int((c.get("unreadCount") or {}).get(user.id) or 0)
        for c in conversations_repo.list_conversations_for_user(user.id)
        if c.get("isActive", True)
    )
    return ok({"unreadCount": total})


@router.delete("/conversation/{conversationId}")
def delete_conversation(conversationId: str, user: AuthUser = Depends(current_user)):
    _participant_conversation(conversationId, user)
    conversations_repo.update_conversation(conversationId, {"isActive": False, "deletedAt": now_iso()})
    log.info("conversation_deleted", conversation_id=conversationId, user_id=user.id)
    return ok(message="Conversation deleted")
