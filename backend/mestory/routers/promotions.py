from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from ..auth.deps import require_admin
from ..auth.tokens import AuthUser
from ..observability.logging import get_logger
from ..repositories import books_repo
from ..responses import ok
from ..services import notifications, promotion

router = APIRouter(tags=["promotions"])
log = get_logger("promotions")


class PromotionNotifyRequest(BaseModel):
    type: str


@router.get("/featured")
def featured(limit: int = Query(default=10, ge=1, le=50)):
    books = promotion.featured_books(limit)
    return ok({"books": books, "count": len(books)})


@router.get("/rising-stars")
def rising_stars(limit: int = Query(default=10, ge=1, le=50)):
    books = promotion.rising_stars(limit)
    return ok({"books": books, "count": len(books)})


@router.get("/quality-releases")
def quality_releases(
    limit: int = Query(default=20, ge=1, le=100),
    minQuality: float = Query(default=60, ge=0, le=100),
    days: int = Query(default=30, ge=1, le=365),
    minViews: int = Query(default=0, ge=0),
    minPurchases: int = Query(default=0, ge=0),
):
    books = promotion.quality_new_releases(
        limit, min_quality=minQuality, days=days, min_views=minViews, min_purchases=minPurchases
    )
    return ok({"books": books, "count": len(books)})


@router.get("/trending")
def trending(days: int = Query(default=7, ge=1, le=90), limit: int = Query(default=20, ge=1, le=100)):
    books = promotion.trending_by_velocity(days, limit)
    return ok({"books": books, "count": len(books)})


@router.get("/top-authors")
def top_authors(limit: int = Query(default=10, ge=1, le=50)):
    authors = promotion.top_authors(limit)
    return ok({"authors": authors, "count": len(authors)})


@router.get("/genre/{genre}")
def top_in_genre(genre: str, limit: int = Query(default=10, ge=1, le=50)):
    books = promotion.top_in_genre(genre, limit)
    return ok({"genre": genre, "books": books, "count": len(books)})


@router.get("/summary")
def summary():
    return ok(promotion.promotion_summary())


@router.post("/notify/{bookId}")
def notify_promotion(bookId: str, body: PromotionNotifyRequest, admin: AuthUser = Depends(require_admin)):
    if body.type not in promotion.PROMOTION_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid promotion type. Must be one of: {', '.join(promotion.PROMOTION_TYPES)}",
        )
    book = books_repo.get_book(bookId)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")

    sent = notifications.notify_book_promotion(
        author_id=str(book.get("authorId")),
        book_id=bookId,
        book_title=str(book.get("title") or ""),
        promotion_type=body.type,
    )
    log.info("promotion_notified", book_id=bookId, type=body.type, admin_id=admin.id)
    return ok({"notified": sent is not None}, message="Promotion notification sent")
