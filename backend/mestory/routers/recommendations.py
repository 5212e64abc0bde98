from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..auth.deps import current_user
from ..auth.tokens import AuthUser
from ..observability.logging import get_logger
from ..repositories import books_repo
from ..responses import ok
from ..services import recommendations as engine

router = APIRouter(tags=["recommendations"])
log = get_logger("recommendations")


class InteractionRequest(BaseModel):
    bookId: str = Field(..., min_length=1)
    type: str
    duration: int | None = Field(default=None, ge=0)
    metadata: dict[str, Any] | None = None


class ReadingProgressRequest(BaseModel):
    bookId: str = Field(..., min_length=1)
    progress: float = Field(..., ge=0, le=100)
    chapter: int = Field(default=0, ge=0)
    readingTime: int = Field(default=0, ge=0)


@router.get("")
@router.get("/", include_in_schema=False)
def personalized(limit: int = Query(default=20, ge=1, le=50), user: AuthUser = Depends(current_user)):
    result = engine.personalized(user.id, limit)
    return ok({**result, "count": len(result["books"])})


@router.get("/personalized-feed")
def personalized_feed(user: AuthUser = Depends(current_user)):
    return ok(engine.personalized_feed(user.id))


@router.get("/because-you-read")
def because_you_read(
    limit: int = Query(default=3, ge=1, le=10),
    booksPerSource: int = Query(default=4, ge=1, le=20),
    user: AuthUser = Depends(current_user),
):
    return ok({"sections": engine.because_you_read(user.id, limit, booksPerSource)})


@router.get("/trending")
def trending(limit: int = Query(default=20, ge=1, le=50)):
    result = engine.trending(limit)
    return ok({**result, "count": len(result["books"])})


@router.get("/new-releases")
def new_releases(
    limit: int = Query(default=20, ge=1, le=50),
    minQuality: float = Query(default=60, ge=0, le=100),
    days: int = Query(default=30, ge=1, le=365),
):
    books = engine.new_releases(limit, min_quality=minQuality, days=days)
    return ok({"books": books, "count": len(books)})


@router.get("/genre/{genre}")
def by_genre(genre: str, limit: int = Query(default=20, ge=1, le=50)):
    books = engine.by_genre(genre, limit)
    return ok({"genre": genre, "books": books, "count": len(books)})


@router.get("/similar/{bookId}")
def similar(bookId: str, limit: int = Query(default=10, ge=1, le=50)):
    if not books_repo.get_book(bookId):
        raise HTTPException(status_code=404, detail="Book not found")
    books = engine.similar(bookId, limit)
    return ok({"books": books, "count": len(books)})


@router.get("/top-authors")
def top_authors(limit: int = Query(default=10, ge=1, le=50)):
    authors = engine.top_authors(limit)
    return ok({"authors": authors, "count": len(authors)})


@router.get("/continue-reading")
def continue_reading(user: AuthUser = Depends(current_user)):
    books = engine.continue_reading(user.id)
    return ok({"books": books, "count": len(books)})


@router.get("/continue-writing")
def continue_writing(limit: int | None = Query(default=None, ge=1, le=50), user: AuthUser = Depends(current_user)):
    books = engine.continue_writing(user.id, limit)
    return ok({"books": books, "count": len(books)})


@router.get("/progress-details")
def progress_details(user: AuthUser = Depends(current_user)):
    return ok(engine.progress_details(user.id))


@router.post("/interaction")
def record_interaction(body: InteractionRequest, user: AuthUser = Depends(current_user)):
    if body.type not in books_repo.INTERACTION_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid interaction type. Must be one of: {', '.join(books_repo.INTERACTION_TYPES)}",
        )
    recorded = engine.record_interaction(
        user.id, body.bookId, body.type, duration=body.duration, metadata=body.metadata
    )
    if not recorded:
        raise HTTPException(status_code=404, detail="Book not found")
    return ok(message="Interaction recorded")


@router.post("/reading-progress")
def reading_progress(body: ReadingProgressRequest, user: AuthUser = Depends(current_user)):
    if not books_repo.get_book(body.bookId):
        raise HTTPException(status_code=404, detail="Book not found")
    entry = engine.update_reading_progress(
        user.id,
        body.bookId,
        chapter=body.chapter,
        percentage=body.progress,
        reading_time=body.readingTime,
    )
    log.info("reading_progress_updated", user_id=user.id, book_id=body.bookId, progress=body.progress)
    return ok({"progress": entry}, message="Reading progress updated")
