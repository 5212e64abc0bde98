from __future__ import annotations

import io
import uuid
from typing import Any, Literal

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ..auth.deps import current_user, optional_user
from ..auth.tokens import AuthUser
from ..db.dynamodb.errors import DdbConflict
from ..observability.logging import get_logger
from ..repositories import books_repo, users_repo
from ..repositories.common import now_iso
from ..responses import ok
from ..services import (
    book_export,
    email_ses,
    manuscript_import,
    notifications,
    pricing,
    recommendations,
    s3_assets,
    writing_ai,
)
from ..services.analytics import AUTHOR_SHARE
from ..services.book_stats import strip_html
from ..settings import settings

router = APIRouter(tags=["books"])
log = get_logger("books")

MAX_BOOK_PRICE = 25
MAX_COVER_BYTES = 10 * 1024 * 1024
IMAGE_TYPES = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp", "image/gif": ".gif"}

UPDATABLE_FIELDS = (
    "title",
    "genre",
    "description",
    "synopsis",
    "language",
    "chapters",
    "characters",
    "plotStructure",
    "coverDesign",
    "pageLayout",
    "pageImages",
    "tags",
    "ageRating",
    "storyContext",
    "writingGoal",
    "targetAudience",
)

OWN_BOOK_SORTS = ("createdAt", "updatedAt", "title")


class ChapterIn(BaseModel):
    title: str = Field(default="", max_length=300)
    content: str = ""
    order: int | None = None


class BookCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    genre: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=2000)
    language: str = Field(default="en", min_length=2, max_length=5)
    storyContext: dict[str, Any] | None = None
    chapters: list[ChapterIn] | None = None
    characters: list[dict[str, Any]] | None = None
    writingGoal: dict[str, Any] | None = None
    targetAudience: str | None = None


class PublishRequest(BaseModel):
    price: float | None = None
    isFree: bool | None = None
    marketingStrategy: dict[str, Any] | None = None
    tags: list[str] | None = None
    synopsis: str | None = None


class ShareRequest(BaseModel):
    platform: str | None = None


class ReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1, max_length=1000)


class PageImagesRequest(BaseModel):
    pageImages: list[dict[str, Any]]


class PageImageUpdateRequest(BaseModel):
    pageIndex: int | None = Field(default=None, ge=0)
    x: float | None = None
    y: float | None = None
    width: float | None = None
    height: float | None = None
    rotation: float | None = None


class QualityScoreRequest(BaseModel):
    text: str | None = None


# --- helpers ---


def _get_book(book_id: str) -> dict[str, Any]:
    book = books_repo.get_book(book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return book


def _publishing(book: dict[str, Any]) -> dict[str, Any]:
    return dict(book.get("publishingStatus") or {})


def _is_owner(book: dict[str, Any], user: AuthUser | None) -> bool:
    return user is not None and str(book.get("authorId")) == user.id


def _require_owner(book: dict[str, Any], user: AuthUser, action: str = "update") -> None:
    if not _is_owner(book, user):
        raise HTTPException(status_code=403, detail=f"You do not have permission to {action} this book")


def _is_readable(book: dict[str, Any]) -> bool:
    ps = _publishing(book)
    return ps.get("status") == "published" and bool(ps.get("isPublic"))


def has_purchased(user_id: str, book_id: str) -> bool:
    user = users_repo.get_user_by_id(user_id) or {}
    history = (user.get("profile") or {}).get("readingHistory") or []
    return any(str(h.get("bookId")) == str(book_id) for h in history)


def require_reader_access(book: dict[str, Any], user: AuthUser | None) -> None:
    """Owner, purchaser, or anyone for a free public book."""
    if _is_owner(book, user):
        return
    if user and has_purchased(user.id, str(book.get("bookId"))):
        return
    ps = _publishing(book)
    if _is_readable(book) and (ps.get("isFree") or not float(ps.get("price") or 0)):
        return
    raise HTTPException(status_code=403, detail="You do not have access to this book")


def _author_name(book: dict[str, Any]) -> str:
    author = users_repo.get_user_by_id(str(book.get("authorId"))) or {}
    return str(author.get("name") or "")


def _sync_author_words(author_id: str) -> None:
    total = sum(int((b.get("statistics") or {}).get("wordCount") or 0) for b in books_repo.list_books_by_author(author_id))
    users_repo.update_user(author_id, {"profile.writingStatistics.totalWords": total})


def _api(book: dict[str, Any] | None, **kw: Any) -> dict[str, Any] | None:
    return books_repo.normalize_book_for_api(book, **kw)


def _store_image(upload_data: bytes, content_type: str, *, owner_id: str, kind: str, file_name: str) -> str:
    if content_type not in IMAGE_TYPES:
        raise HTTPException(status_code=400, detail="Only image files (JPEG, PNG, WebP, GIF) are allowed")
    if not upload_data:
        raise HTTPException(status_code=400, detail="No image file uploaded")
    if len(upload_data) > MAX_COVER_BYTES:
        raise HTTPException(status_code=400, detail="Image must be 10MB or smaller")
    if not s3_assets.is_configured():
        raise HTTPException(status_code=503, detail="Asset storage is not configured")
    stored = s3_assets.store_bytes(
        kind=kind,
        data=upload_data,
        content_type=content_type,
        owner_id=owner_id,
        file_name=file_name,
        ext=IMAGE_TYPES[content_type],
    )
    return str(stored["url"])


# --- CRUD ---


@router.post("", status_code=201)
@router.post("/", status_code=201, include_in_schema=False)
def create_book(body: BookCreateRequest, user: AuthUser = Depends(current_user)):
    fields = body.model_dump(exclude_none=True)
    if body.chapters is not None:
        fields["chapters"] = [c.model_dump(exclude_none=True) for c in body.chapters]
    book = books_repo.create_book(author_id=user.id, fields=fields)
    users_repo.add_user_counters(user.id, {"profile.writingStatistics.booksWritten": 1})
    recommendations.record_writing_activity(user.id, str(book["bookId"]), str(book.get("genre") or ""))
    log.info("book_created", book_id=book["bookId"], user_id=user.id)
    return ok({"book": _api(book)}, message="Book created successfully")


@router.post("/upload", status_code=201)
async def upload_manuscript(
    manuscript: UploadFile | None = File(default=None),
    title: str = Form(default=""),
    genre: str = Form(default=""),
    user: AuthUser = Depends(current_user),
):
    if manuscript is None:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if not title.strip() or not genre.strip():
        raise HTTPException(status_code=400, detail="Title and genre are required")
    data = await manuscript.read()
    if len(data) > manuscript_import.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large. Maximum size is 10MB")
    file_name = manuscript.filename or ""
    try:
        text = manuscript_import.extract_text(data, file_name)
    except manuscript_import.ManuscriptImportError as e:
        raise HTTPException(status_code=400, detail=str(e))

    book = books_repo.create_book(
        author_id=user.id,
        fields={
            "title": title.strip(),
            "genre": genre.strip(),
            "description": f"Imported from {file_name}",
            "chapters": manuscript_import.split_chapters(text),
        },
    )
    words = int((book.get("statistics") or {}).get("wordCount") or 0)
    users_repo.add_user_counters(user.id, {"profile.writingStatistics.booksWritten": 1})
    _sync_author_words(user.id)
    recommendations.record_writing_activity(user.id, str(book["bookId"]), str(book.get("genre") or ""))
    log.info("manuscript_imported", book_id=book["bookId"], user_id=user.id, words=words, bytes=len(data))
    return ok(
        {
            "book": {
                "_id": book["bookId"],
                "title": book.get("title"),
                "genre": book.get("genre"),
                "wordCount": words,
                "chapters": [
                    {"title": ch.get("title"), "wordCount": int(ch.get("wordCount") or 0)}
                    for ch in book.get("chapters") or []
                ],
            }
        },
        message="Manuscript uploaded and processed successfully",
    )


@router.get("")
@router.get("/", include_in_schema=False)
def list_own_books(
    status: str | None = None,
    genre: str | None = None,
    sortBy: str = "updatedAt",
    order: Literal["asc", "desc"] = "desc",
    user: AuthUser = Depends(current_user),
):
    books = books_repo.list_books_by_author(user.id)
    if status:
        books = [b for b in books if _publishing(b).get("status") == status]
    if genre:
        books = [b for b in books if str(b.get("genre") or "") == genre]
    sort_key = sortBy if sortBy in OWN_BOOK_SORTS else "updatedAt"
    books.sort(key=lambda b: str(b.get(sort_key) or "").lower(), reverse=order == "desc")
    return ok({"books": [_api(b, include_content=False) for b in books], "count": len(books)})


@router.get("/public")
def list_public_books(
    genre: str | None = None,
    category: str | None = None,
    search: str | None = None,
    sortBy: str = "newest",
    order: Literal["asc", "desc"] = "desc",
):
    books = books_repo.list_public_books()
    if genre:
        books = [b for b in books if str(b.get("genre") or "") == genre]
    if category:
        books = [
            b for b in books if category in ((_publishing(b).get("marketingStrategy") or {}).get("categories") or [])
        ]
    if search:
        needle = search.strip().lower()
        books = [
            b
            for b in books
            if needle in str(b.get("title") or "").lower() or needle in str(b.get("description") or "").lower()
        ]

    reverse = order == "desc"
    if sortBy == "price":
        books.sort(key=lambda b: float(_publishing(b).get("price") or 0), reverse=reverse)
    elif sortBy == "quality":
        books.sort(key=lambda b: float((b.get("qualityScore") or {}).get("overallScore") or 0), reverse=reverse)
    elif sortBy == "popularity":
        books.sort(key=lambda b: int((b.get("statistics") or {}).get("views") or 0), reverse=True)
    else:
        books.sort(key=lambda b: str(_publishing(b).get("publishedAt") or b.get("createdAt") or ""), reverse=reverse)

    books = books[:100]
    authors = users_repo.get_users_by_ids([str(b.get("authorId")) for b in books])
    out = []
    for b in books:
        item = _api(b, include_content=False) or {}
        item.pop("chapters", None)
        item["author"] = users_repo.public_profile(authors.get(str(b.get("authorId"))))
        out.append(item)
    return ok({"books": out, "count": len(out)})


@router.get("/{id}")
def get_book(id: str, user: AuthUser | None = Depends(optional_user)):
    book = _get_book(id)
    if _is_owner(book, user):
        return ok({"book": _api(book)})
    if not _is_readable(book):
        raise HTTPException(status_code=403, detail="You do not have permission to view this book")

    updated = books_repo.add_book_counters(id, {"statistics.views": 1}) or book
    if user:
        recommendations.record_interaction(user.id, id, "view")
    else:
        books_repo.record_event(book_id=id, user_id=None, event_type="view")

    out = _api(updated) or {}
    out["author"] = users_repo.public_profile(users_repo.get_user_by_id(str(book.get("authorId"))))
    out["isLiked"] = bool(user and user.id in (book.get("likedBy") or []))
    return ok({"book": out})


@router.put("/{id}")
def update_book(id: str, body: dict[str, Any], user: AuthUser = Depends(current_user)):
    book = _get_book(id)
    _require_owner(book, user)

    fields = {k: v for k, v in body.items() if k in UPDATABLE_FIELDS and v is not None}
    if "title" in fields and not str(fields["title"]).strip():
        raise HTTPException(status_code=400, detail="Title cannot be empty")
    if not fields:
        return ok({"book": _api(book)}, message="Nothing to update")

    updated = books_repo.update_book(id, fields, current=book)
    if "chapters" in fields:
        _sync_author_words(user.id)
    recommendations.record_writing_activity(user.id, id, str((updated or book).get("genre") or ""))
    log.info("book_updated", book_id=id, fields=sorted(fields))
    return ok({"book": _api(updated)}, message="Book updated successfully")


@router.delete("/{id}")
def delete_book(id: str, user: AuthUser = Depends(current_user)):
    book = _get_book(id)
    _require_owner(book, user, "delete")
    if _publishing(book).get("status") == "published":
        raise HTTPException(status_code=400, detail="Cannot delete a published book. Unpublish it first.")

    books_repo.delete_book(id)
    users_repo.add_user_counters(user.id, {"profile.writingStatistics.booksWritten": -1})
    _sync_author_words(user.id)
    log.info("book_deleted", book_id=id, user_id=user.id)
    return ok(message="Book deleted successfully")


# --- publishing ---


@router.post("/{id}/publish")
def publish_book(id: str, body: PublishRequest, background_tasks: BackgroundTasks, user: AuthUser = Depends(current_user)):
    book = _get_book(id)
    _require_owner(book, user, "publish")

    synopsis = body.synopsis if body.synopsis is not None else book.get("synopsis")
    tags = [t.strip() for t in (body.tags if body.tags is not None else book.get("tags") or []) if str(t).strip()]

    if not book.get("chapters"):
        raise HTTPException(status_code=400, detail="Cannot publish a book without chapters")
    if not synopsis or len(str(synopsis).strip()) < 100:
        raise HTTPException(status_code=400, detail="Please add a synopsis (minimum 100 characters) before publishing")
    if not tags:
        raise HTTPException(status_code=400, detail="Please add at least one tag before publishing")
    is_free = bool(body.isFree)
    price = 0.0 if is_free else float(body.price or 0)
    if price < 0 or price > MAX_BOOK_PRICE:
        raise HTTPException(status_code=400, detail=f"Price must be between $0 and ${MAX_BOOK_PRICE}")

    fields: dict[str, Any] = {
        "publishingStatus.isPublic": True,
        "publishingStatus.publishedAt": now_iso(),
        "publishingStatus.isFree": is_free or price == 0,
        "publishingStatus.price": price,
        "synopsis": str(synopsis).strip(),
        "tags": tags,
    }
    if body.marketingStrategy is not None:
        fields["publishingStatus.marketingStrategy"] = body.marketingStrategy
    updated = books_repo.set_status(book, "published", fields) or book

    if _publishing(book).get("status") != "published":
        users_repo.add_user_counters(user.id, {"profile.authorProfile.publishedBooks": 1})
    recommendations.record_writing_activity(user.id, id, str(book.get("genre") or ""), published=True)
    background_tasks.add_task(
        notifications.notify_book_published, author_id=user.id, book_id=id, book_title=str(book.get("title") or "")
    )
    log.info("book_published", book_id=id, price=price)
    return ok(
        {"book": {"id": id, "title": updated.get("title"), "publishingStatus": updated.get("publishingStatus")}},
        message="Book published successfully",
    )


@router.post("/{id}/unpublish")
def unpublish_book(id: str, user: AuthUser = Depends(current_user)):
    book = _get_book(id)
    _require_owner(book, user)
    if _publishing(book).get("status") != "published":
        raise HTTPException(status_code=400, detail="Book is not published")

    updated = books_repo.set_status(book, "unpublished", {"publishingStatus.isPublic": False}) or book
    users_repo.add_user_counters(user.id, {"profile.authorProfile.publishedBooks": -1})
    log.info("book_unpublished", book_id=id)
    return ok(
        {"book": {"id": id, "title": updated.get("title"), "publishingStatus": updated.get("publishingStatus")}},
        message="Book unpublished successfully",
    )


@router.post("/{id}/purchase")
def purchase_book(id: str, background_tasks: BackgroundTasks, user: AuthUser = Depends(current_user)):
    book = _get_book(id)
    if _publishing(book).get("status") != "published":
        raise HTTPException(status_code=400, detail="This book is not available for purchase")
    if _is_owner(book, user):
        raise HTTPException(status_code=400, detail="You cannot purchase your own book")

    buyer = users_repo.get_user_by_id(user.id)
    if not buyer:
        raise HTTPException(status_code=404, detail="User not found")
    history = list((buyer.get("profile") or {}).get("readingHistory") or [])
    if any(str(h.get("bookId")) == id for h in history):
        raise HTTPException(status_code=400, detail="You have already purchased this book")

    price = float(_publishing(book).get("price") or 0)
    author_share = round(price * AUTHOR_SHARE, 2)
    author_id = str(book.get("authorId"))

    history.append({"bookId": id, "progress": 0, "lastRead": now_iso(), "purchasedAt": now_iso(), "price": price})
    users_repo.update_user(user.id, {"profile.readingHistory": history})
    books_repo.add_book_counters(id, {"statistics.purchases": 1, "statistics.revenue": price})
    users_repo.add_user_counters(
        author_id,
        {
            "profile.earnings.totalEarned": author_share,
            "profile.earnings.pendingPayout": author_share,
            "profile.authorProfile.totalSales": 1,
        },
    )
    recommendations.record_interaction(user.id, id, "purchase", metadata={"price": price})

    title = str(book.get("title") or "")
    read_url = f"/read/{id}"
    background_tasks.add_task(
        notifications.notify_book_purchase, book_id=id, buyer_id=user.id, author_id=author_id, amount=price
    )
    background_tasks.add_task(
        email_ses.send_email_safe,
        **email_ses.purchase_email(
            to_email=str(buyer.get("email")),
            name=str(buyer.get("name") or ""),
            book_title=title,
            price=price,
            read_url=f"{settings.frontend_base_url}{read_url}",
        ),
    )
    author = users_repo.get_user_by_id(author_id)
    if author:
        background_tasks.add_task(
            email_ses.send_email_safe,
            **email_ses.sale_email(
                to_email=str(author.get("email")),
                name=str(author.get("name") or ""),
                book_title=title,
                earned=author_share,
            ),
        )

    log.info("book_purchased", book_id=id, buyer_id=user.id, price=price)
    return ok({"bookId": id, "title": title, "price": price, "readUrl": read_url}, message="Book purchased successfully")


# --- export ---


def _export(id: str, fmt: str, user: AuthUser) -> StreamingResponse:
    if fmt not in book_export.EXPORT_FORMATS:
        raise HTTPException(status_code=400, detail="Invalid format. Supported formats: pdf, docx")
    book = _get_book(id)
    if not _is_owner(book, user) and not has_purchased(user.id, id):
        raise HTTPException(status_code=403, detail="You do not have permission to export this book")

    data, media_type, filename = book_export.export_book(book, fmt, _author_name(book))
    log.info("book_exported", book_id=id, format=fmt, bytes=len(data))
    return StreamingResponse(
        io.BytesIO(data),
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename=\"{filename}\""},
    )


@router.get("/{id}/export")
def export_pdf(id: str, user: AuthUser = Depends(current_user)):
    return _export(id, "pdf", user)


@router.get("/{id}/export/{format}")
def export_format(id: str, format: str, user: AuthUser = Depends(current_user)):
    return _export(id, format.lower(), user)


# --- social ---


@router.post("/{id}/like")
def toggle_like(id: str, background_tasks: BackgroundTasks, user: AuthUser = Depends(current_user)):
    book = _get_book(id)
    liked_by = [str(x) for x in book.get("likedBy") or []]
    is_liked = user.id in liked_by
    if is_liked:
        liked_by = [x for x in liked_by if x != user.id]
    else:
        liked_by.append(user.id)

    books_repo.update_book(id, {"likedBy": liked_by, "likes": len(liked_by)})
    if not is_liked:
        recommendations.record_interaction(user.id, id, "like")
        background_tasks.add_task(
            notifications.notify_book_like, book_id=id, liker_id=user.id, author_id=str(book.get("authorId"))
        )
    return ok({"likes": len(liked_by), "isLiked": not is_liked})


@router.post("/{id}/share")
def share_book(id: str, background_tasks: BackgroundTasks, body: ShareRequest | None = None, user: AuthUser = Depends(current_user)):
    book = _get_book(id)
    platform = (body.platform if body else None) or "unknown"
    updated = books_repo.add_book_counters(id, {"statistics.shares": 1}) or book
    recommendations.record_interaction(user.id, id, "share", metadata={"platform": platform})
    background_tasks.add_task(
        notifications.notify_book_share,
        book_id=id,
        sharer_id=user.id,
        author_id=str(book.get("authorId")),
        platform=platform,
    )
    return ok(
        {
            "shares": int((updated.get("statistics") or {}).get("shares") or 0),
            "shareUrl": f"{settings.frontend_base_url}/reader/{id}",
            "platform": platform,
        },
        message="Share tracked successfully",
    )


@router.get("/{id}/social-stats")
def social_stats(id: str):
    book = _get_book(id)
    stats = book.get("statistics") or {}
    return ok(
        {
            "likes": int(book.get("likes") or 0),
            "shares": int(stats.get("shares") or 0),
            "comments": int(stats.get("totalReviews") or 0),
            "averageRating": float(stats.get("averageRating") or 0),
        }
    )


@router.post("/{id}/review", status_code=201)
def add_review(id: str, body: ReviewRequest, background_tasks: BackgroundTasks, user: AuthUser = Depends(current_user)):
    book = _get_book(id)
    if _is_owner(book, user):
        raise HTTPException(status_code=400, detail="You cannot review your own book")
    reviewer = users_repo.get_user_by_id(user.id) or {}

    try:
        review = books_repo.put_review(
            book_id=id,
            user_id=user.id,
            user_name=str(reviewer.get("name") or ""),
            rating=body.rating,
            comment=body.comment,
        )
    except DdbConflict:
        raise HTTPException(status_code=400, detail="You have already reviewed this book")

    # Totals are recounted from the stored reviews, never incremented.
    ratings = [int(r.get("rating") or 0) for r in books_repo.list_reviews(id)]
    books_repo.update_book(
        id,
        {
            "statistics.totalReviews": len(ratings),
            "statistics.averageRating": round(sum(ratings) / len(ratings), 2) if ratings else 0,
            "statistics.comments": len(ratings),
        },
    )
    recommendations.record_interaction(user.id, id, "comment", metadata={"rating": body.rating})
    background_tasks.add_task(
        notifications.notify_book_comment,
        book_id=id,
        commenter_id=user.id,
        author_id=str(book.get("authorId")),
        rating=body.rating,
    )
    return ok(
        {"review": {k: v for k, v in review.items() if k not in ("pk", "sk", "entityType")}},
        message="Review added successfully",
    )


@router.get("/{id}/reviews")
def list_reviews(id: str):
    book = _get_book(id)
    stats = book.get("statistics") or {}
    return ok(
        {
            "reviews": books_repo.list_reviews(id),
            "averageRating": float(stats.get("averageRating") or 0),
            "totalReviews": int(stats.get("totalReviews") or 0),
        }
    )


# --- cover, pricing, quality ---


@router.post("/{id}/upload-cover")
async def upload_cover(id: str, cover: UploadFile = File(...), user: AuthUser = Depends(current_user)):
    book = _get_book(id)
    _require_owner(book, user)
    data = await cover.read()
    url = _store_image(data, cover.content_type or "", owner_id=user.id, kind="covers", file_name=cover.filename or "")

    cover_design = dict(book.get("coverDesign") or {})
    front = dict(cover_design.get("front") or {})
    front.update({"type": "uploaded", "imageUrl": url})
    cover_design["front"] = front
    books_repo.update_book(id, {"coverDesign": cover_design})
    log.info("cover_uploaded", book_id=id, bytes=len(data))
    return ok({"imageUrl": url, "coverDesign": cover_design}, message="Cover image uploaded successfully")


@router.get("/{id}/pricing-strategy")
def pricing_strategy(id: str, user: AuthUser = Depends(current_user)):
    book = _get_book(id)
    _require_owner(book, user, "view pricing for")
    return ok(pricing.pricing_strategy(book))


@router.post("/{id}/quality-score")
def score_quality(
    id: str, background_tasks: BackgroundTasks, body: QualityScoreRequest | None = None, user: AuthUser = Depends(current_user)
):
    book = _get_book(id)
    _require_owner(book, user)

    text = (body.text if body else None) or "\n\n".join(
        strip_html(str(ch.get("content") or "")) for ch in (book.get("chapters") or [])[:3]
    )
    if len(text.strip()) < 100:
        raise HTTPException(status_code=400, detail="Book needs at least 100 characters of content to be scored")

    analysis = writing_ai.analyze_quality(text=text, genre=str(book.get("genre") or "") or None)
    record = writing_ai.book_quality_record(analysis)
    books_repo.update_book(id, {"qualityScore": record})
    background_tasks.add_task(
        notifications.notify_quality_score,
        author_id=user.id,
        book_id=id,
        book_title=str(book.get("title") or ""),
        score=int(record["overallScore"]),
        rating_label=str(record["ratingLabel"]),
    )
    return ok({"qualityScore": record, "analysis": analysis})


# --- page images ---


def _page_images(book: dict[str, Any]) -> list[dict[str, Any]]:
    return [dict(i) for i in book.get("pageImages") or []]


def _new_page_image(*, url: str, page_index: int, values: dict[str, Any], ai_generated: bool = False) -> dict[str, Any]:
    def _num(key: str, default: float) -> float:
        try:
            return float(values.get(key)) if values.get(key) not in (None, "") else default
        except (TypeError, ValueError):
            return default

    return {
        "_id": uuid.uuid4().hex,
        "pageIndex": page_index,
        "url": url,
        "x": _num("x", 10),
        "y": _num("y", 10),
        "width": _num("width", 30),
        "height": _num("height", 30),
        "rotation": _num("rotation", 0),
        "isAiGenerated": ai_generated,
        "createdAt": now_iso(),
    }


def _page_index(raw: Any) -> int:
    try:
        idx = int(raw)
    except (TypeError, ValueError):
        idx = -1
    if idx < 0:
        raise HTTPException(status_code=400, detail="Valid page index is required")
    return idx


@router.get("/{id}/page-images")
def get_page_images(id: str, user: AuthUser = Depends(current_user)):
    book = _get_book(id)
    require_reader_access(book, user)
    return ok({"pageImages": _page_images(book)})


@router.put("/{id}/page-images")
def replace_page_images(id: str, body: PageImagesRequest, user: AuthUser = Depends(current_user)):
    book = _get_book(id)
    _require_owner(book, user)
    images = []
    for img in body.pageImages:
        entry = dict(img)
        entry.setdefault("_id", uuid.uuid4().hex)
        entry["pageIndex"] = _page_index(entry.get("pageIndex"))
        images.append(entry)
    books_repo.update_book(id, {"pageImages": images})
    return ok({"pageImages": images}, message="Page images updated successfully")


@router.post("/{id}/page-image", status_code=201)
async def add_page_image(id: str, request: Request, user: AuthUser = Depends(current_user)):
    book = _get_book(id)
    _require_owner(book, user)

    content_type = request.headers.get("content-type") or ""
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        values: dict[str, Any] = {k: v for k, v in form.items() if isinstance(v, str)}
        upload = form.get("image")
        if upload is None or isinstance(upload, str):
            raise HTTPException(status_code=400, detail="No image file uploaded")
        page_index = _page_index(values.get("pageIndex"))
        data = await upload.read()
        url = _store_image(
            data, upload.content_type or "", owner_id=user.id, kind="page-images", file_name=upload.filename or ""
        )
        image = _new_page_image(url=url, page_index=page_index, values=values)
    else:
        values = await request.json()
        if not isinstance(values, dict) or not str(values.get("url") or "").strip():
            raise HTTPException(status_code=400, detail="No image file uploaded")
        page_index = _page_index(values.get("pageIndex"))
        image = _new_page_image(
            url=str(values["url"]).strip(),
            page_index=page_index,
            values=values,
            ai_generated=bool(values.get("isAiGenerated")),
        )

    images = _page_images(book) + [image]
    books_repo.update_book(id, {"pageImages": images})
    return ok({"image": image}, message="Page image uploaded successfully")


@router.put("/{id}/page-image/{imageId}")
def update_page_image(id: str, imageId: str, body: PageImageUpdateRequest, user: AuthUser = Depends(current_user)):
    book = _get_book(id)
    _require_owner(book, user)
    images = _page_images(book)
    image = next((i for i in images if str(i.get("_id")) == imageId), None)
    if image is None:
        raise HTTPException(status_code=404, detail="Page image not found")

    image.update(body.model_dump(exclude_none=True))
    books_repo.update_book(id, {"pageImages": images})
    return ok({"image": image}, message="Page image updated successfully")


@router.delete("/{id}/page-image/{imageId}")
def delete_page_image(id: str, imageId: str, user: AuthUser = Depends(current_user)):
    book = _get_book(id)
    _require_owner(book, user)
    images = _page_images(book)
    remaining = [i for i in images if str(i.get("_id")) != imageId]
    if len(remaining) == len(images):
        raise HTTPException(status_code=404, detail="Page image not found")

    books_repo.update_book(id, {"pageImages": remaining})
    return ok({"pageImages": remaining}, message="Page image deleted successfully")
