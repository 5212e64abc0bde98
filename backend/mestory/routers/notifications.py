from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from ..auth.deps import current_user
from ..auth.tokens import AuthUser
from ..repositories import notifications_repo
from ..repositories.common import now_iso
from ..responses import ok
from ..services import notifications as notification_service

router = APIRouter(tags=["notifications"])


def _get(user: AuthUser, notification_id: str) -> dict[str, Any]:
    item = notifications_repo.get_notification(user.id, notification_id)
    if not item:
        raise HTTPException(status_code=404, detail="Notification not found")
    return item


@router.get("")
@router.get("/", include_in_schema=False)
def list_notifications(
    page: int = 1,
    limit: int = 20,
    type: str | None = None,
    unreadOnly: bool = False,
    includeArchived: bool = False,
    user: AuthUser = Depends(current_user),
):
    return ok(
        notification_service.list_for_user(
            user.id,
            page=page,
            limit=limit,
            type=type,
            unread_only=unreadOnly,
            include_archived=includeArchived,
        )
    )


@router.get("/unread-count")
def unread_count(user: AuthUser = Depends(current_user)):
    return ok({"unreadCount": notification_service.unread_count(user.id)})


@router.get("/summary")
def summary(user: AuthUser = Depends(current_user)):
    return ok(notification_service.summary(user.id))


@router.put("/read-all")
def mark_all_read(user: AuthUser = Depends(current_user)):
    ts = now_iso()
    count = 0
    for n in notifications_repo.list_notifications(user.id):
        if n.get("isRead") or n.get("isArchived"):
            continue
        notifications_repo.update_notification(user.id, str(n.get("notificationId")), {"isRead": True, "readAt": ts})
        count += 1
    return ok({"modifiedCount": count}, message="All notifications marked as read")


@router.put("/{notificationId}/read")
def mark_read(notificationId: str, user: AuthUser = Depends(current_user)):
    item = _get(user, notificationId)
    if not item.get("isRead"):
        item = notifications_repo.update_notification(user.id, notificationId, {"isRead": True, "readAt": now_iso()}) or item
    return ok({"notification": notifications_repo.normalize_notification_for_api(item)})


@router.put("/{notificationId}/archive")
def archive(notificationId: str, user: AuthUser = Depends(current_user)):
    _get(user, notificationId)
    item = notifications_repo.update_notification(user.id, notificationId, {"isArchived": True})
    return ok({"notification": notifications_repo.normalize_notification_for_api(item)}, message="Notification archived")


@router.delete("/{notificationId}")
def delete(notificationId: str, user: AuthUser = Depends(current_user)):
    _get(user, notificationId)
    notifications_repo.delete_notification(user.id, notificationId)
    return ok(message="Notification deleted")
