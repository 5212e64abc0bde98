from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..auth.deps import current_user
from ..auth.tokens import AuthUser
from ..observability.logging import get_logger
from ..responses import ok
from ..services import manuscript_analysis
from .ai import owned_book

router = APIRouter(tags=["analysis"])
log = get_logger("analysis")


class EnhanceContext(BaseModel):
    genre: str | None = None
    bookId: str | None = None
    bookTitle: str | None = None
    chapterTitle: str | None = None
    surroundingText: str | None = None


class EnhancePassageRequest(BaseModel):
    text: str = ""
    action: str = ""
    context: EnhanceContext | None = None


class GuidanceRequest(BaseModel):
    bookId: str | None = None
    chapterIndex: int | None = None
    recentText: str | None = None


class ScoreChangeRequest(BaseModel):
    previousText: str | None = None
    newText: str | None = None
    genre: str | None = None


def _book_with_chapters(book_id: str, user: AuthUser, purpose: str) -> dict[str, Any]:
    book = owned_book(book_id, user)
    if not book.get("chapters"):
        raise HTTPException(status_code=400, detail=f"Book must have at least one chapter for {purpose} analysis")
    return book


@router.post("/enhance-text")
def enhance_text(body: EnhancePassageRequest, user: AuthUser = Depends(current_user)):
    error = manuscript_analysis.validate_enhance_request(body.text, body.action)
    if error:
        raise HTTPException(status_code=400, detail=error)
    context = body.context.model_dump(exclude_none=True) if body.context else {}
    return ok(manuscript_analysis.enhance_passage(text=body.text, action=body.action, context=context))


@router.get("/plot-structure/{bookId}")
def plot_structure(bookId: str, user: AuthUser = Depends(current_user)):
    book = _book_with_chapters(bookId, user, "plot")
    return ok(manuscript_analysis.analyze_plot_structure(book))


@router.get("/tension/{bookId}")
def tension(bookId: str, user: AuthUser = Depends(current_user)):
    book = _book_with_chapters(bookId, user, "tension")
    return ok(manuscript_analysis.analyze_tension(book))


@router.get("/techniques/{bookId}")
def techniques(bookId: str, user: AuthUser = Depends(current_user)):
    book = _book_with_chapters(bookId, user, "techniques")
    return ok(manuscript_analysis.analyze_techniques(book))


@router.post("/guidance")
def guidance(body: GuidanceRequest, user: AuthUser = Depends(current_user)):
    if not body.bookId or body.chapterIndex is None or not (body.recentText or "").strip():
        raise HTTPException(status_code=400, detail="bookId, chapterIndex, and recentText are required")
    book = owned_book(body.bookId, user)
    out = manuscript_analysis.writing_guidance(
        book=book, chapter_index=body.chapterIndex, recent_text=body.recentText or ""
    )
    return ok({"guidance": out})


@router.post("/score-change")
def score_change(body: ScoreChangeRequest, user: AuthUser = Depends(current_user)):
    if not (body.previousText or "").strip() or not (body.newText or "").strip():
        raise HTTPException(status_code=400, detail="previousText and newText are required")
    return ok(
        manuscript_analysis.score_change(
            previous_text=body.previousText or "", new_text=body.newText or "", genre=body.genre
        )
    )
