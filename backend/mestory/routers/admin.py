from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..auth.deps import require_admin
from ..auth.tokens import AuthUser
from ..observability.logging import get_logger
from ..repositories import books_repo, users_repo
from ..repositories.common import now_iso
from ..responses import ok
from ..services import analytics, notifications, plans

router = APIRouter(tags=["admin"], dependencies=[Depends(require_admin)])
log = get_logger("admin")

ROLES = ("free", "standard", "premium", "admin")
FLAGGED_QUALITY_BELOW = 60
FLAGGED_LIMIT = 50


class AdminUserUpdateRequest(BaseModel):
    role: Literal["free", "standard", "premium", "admin"] | None = None
    credits: int | None = Field(default=None, ge=0)
    action: Literal["ban", "reset-password"] | None = None


class UnpublishRequest(BaseModel):
    reason: str = ""


def _admin_user_view(item: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": item.get("userId"),
        "name": item.get("name"),
        "email": item.get("email"),
        "role": item.get("role"),
        "credits": item.get("credits"),
    }


def _quality(book: dict[str, Any]) -> float:
    return float((book.get("qualityScore") or {}).get("overallScore") or 0)


@router.get("/stats")
def stats():
    return ok(analytics.admin_stats())


@router.get("/users")
def list_users(
    role: str | None = None,
    search: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
):
    users = users_repo.list_users()
    if role and role != "all":
        users = [u for u in users if u.get("role") == role]
    needle = str(search or "").strip().lower()
    if needle:
        users = [
            u
            for u in users
            if needle in str(u.get("name") or "").lower() or needle in str(u.get("email") or "").lower()
        ]
    total = len(users)
    start = (page - 1) * limit
    return ok(
        {
            "users": [users_repo.normalize_user_for_api(u) for u in users[start : start + limit]],
            "pagination": {"page": page, "limit": limit, "total": total, "pages": -(-total // limit)},
        }
    )


@router.put("/users/{id}")
def update_user(id: str, body: AdminUserUpdateRequest, admin: AuthUser = Depends(require_admin)):
    item = users_repo.get_user_by_id(id)
    if not item:
        raise HTTPException(status_code=404, detail="User not found")
    if item.get("role") == "admin" and id != admin.id:
        raise HTTPException(status_code=403, detail="Cannot modify other admin accounts")

    fields: dict[str, Any] = {}
    if body.role:
        fields["role"] = body.role
        plan = plans.get_plan(body.role)
        if plan is not None:
            fields["credits"] = plans.stored_credits(plan)
    if body.credits is not None:
        fields["credits"] = body.credits
    if body.action == "ban":
        fields["role"] = "free"
        fields["credits"] = 0
        fields["bannedAt"] = now_iso()

    updated = users_repo.update_user(id, fields) if fields else item
    log.info("admin_user_updated", admin_id=admin.id, user_id=id, fields=sorted(fields), action=body.action)
    return ok({"user": _admin_user_view(updated or item)}, message="User updated successfully")


@router.delete("/users/{id}")
def delete_user(id: str, admin: AuthUser = Depends(require_admin)):
    item = users_repo.get_user_by_id(id)
    if not item:
        raise HTTPException(status_code=404, detail="User not found")
    if item.get("role") == "admin":
        raise HTTPException(status_code=403, detail="Cannot delete admin accounts")

    books = books_repo.list_books_by_author(id)
    for book in books:
        books_repo.delete_book(str(book.get("bookId")))
    users_repo.delete_user(id)
    log.info("admin_user_deleted", admin_id=admin.id, user_id=id, books_deleted=len(books))
    return ok(message="User deleted successfully")


@router.get("/books/flagged")
def flagged_books():
    books = [
        b for b in books_repo.list_books_by_status("published") if 0 < _quality(b) < FLAGGED_QUALITY_BELOW
    ]
    books.sort(key=_quality)
    books = books[:FLAGGED_LIMIT]
    authors = users_repo.get_users_by_ids([str(b.get("authorId")) for b in books])
    out = []
    for b in books:
        item = books_repo.normalize_book_for_api(b, include_content=False) or {}
        author = authors.get(str(b.get("authorId"))) or {}
        item["author"] = {"id": b.get("authorId"), "name": author.get("name"), "email": author.get("email")}
        out.append(item)
    return ok({"books": out})


@router.put("/books/{id}/unpublish")
def unpublish_book(
    id: str, body: UnpublishRequest, background_tasks: BackgroundTasks, admin: AuthUser = Depends(require_admin)
):
    book = books_repo.get_book(id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")

    was_published = (book.get("publishingStatus") or {}).get("status") == "published"
    books_repo.set_status(book, "unpublished", {"publishingStatus.isPublic": False})
    author_id = str(book.get("authorId"))
    if was_published:
        users_repo.add_user_counters(author_id, {"profile.authorProfile.publishedBooks": -1})
    reason = body.reason.strip()
    message = f'Your book "{book.get("title")}" was unpublished by a moderator.'
    if reason:
        message += f" Reason: {reason}"
    background_tasks.add_task(
        notifications.notify_system,
        user_id=author_id,
        title="Book unpublished",
        message=message,
        link=f"/books/{id}",
    )
    log.info("admin_book_unpublished", admin_id=admin.id, book_id=id, reason=reason)
    return ok({"bookId": id, "reason": reason}, message="Book unpublished successfully")


# --- analytics ---


@router.get("/analytics/metrics")
def platform_metrics():
    return ok(analytics.platform_metrics())


@router.get("/analytics/real-time")
def real_time_activity():
    return ok(analytics.real_time_activity())


@router.get("/analytics/engagement-funnel")
def engagement_funnel():
    return ok(analytics.engagement_funnel())


@router.get("/analytics/top-books")
def top_books(limit: int = Query(default=20, ge=1, le=100), sortBy: str = "views"):
    if sortBy not in analytics.TOP_BOOK_SORTS:
        raise HTTPException(
            status_code=400, detail=f"Invalid sortBy. Must be one of: {', '.join(analytics.TOP_BOOK_SORTS)}"
        )
    return ok({"books": analytics.top_books(limit, sortBy)})


@router.get("/analytics/top-authors")
def top_authors(limit: int = Query(default=20, ge=1, le=100)):
    return ok({"authors": analytics.top_authors(limit)})


@router.get("/analytics/genres")
def genres():
    return ok({"genres": analytics.genre_analytics()})


@router.get("/analytics/books-need-evaluation")
def books_need_evaluation(limit: int = Query(default=50, ge=1, le=200)):
    books = analytics.books_needing_evaluation(limit)
    return ok({"books": books, "count": len(books)})


@router.get("/analytics/activity-trends")
def activity_trends(days: int = Query(default=30, ge=1, le=365)):
    return ok({"trends": analytics.activity_trends(days)})


@router.get("/analytics/revenue")
def revenue(days: int = Query(default=30, ge=1, le=365)):
    return ok(analytics.revenue(days))


@router.get("/analytics/churned-users")
def churned_users(days: int = Query(default=30, ge=1, le=365), limit: int = Query(default=50, ge=1, le=200)):
    users = analytics.churned_users(days, limit)
    return ok({"users": users, "count": len(users)})


@router.get("/analytics/social-engagement")
def social_engagement():
    return ok(analytics.social_engagement())


@router.get("/analytics/inactive-new-users")
def inactive_new_users(days: int = Query(default=7, ge=1, le=90), limit: int = Query(default=50, ge=1, le=200)):
    users = analytics.inactive_new_users(days, limit)
    return ok({"users": users, "count": len(users)})


@router.get("/analytics/engaged-users")
def engaged_users(limit: int = Query(default=20, ge=1, le=100)):
    users = analytics.engaged_users(limit)
    return ok({"users": users, "count": len(users)})


@router.get("/analytics/engaged-books")
def engaged_books(limit: int = Query(default=20, ge=1, le=100)):
    books = analytics.engaged_books(limit)
    return ok({"books": books, "count": len(books)})


@router.get("/analytics/social-trends")
def social_trends(days: int = Query(default=30, ge=1, le=365)):
    return ok({"trends": analytics.social_trends(days)})
