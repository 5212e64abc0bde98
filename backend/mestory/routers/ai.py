from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..auth.deps import current_user
from ..auth.tokens import AuthUser
from ..observability.logging import get_logger
from ..repositories import books_repo
from ..responses import ok
from ..services import writing_ai

router = APIRouter(tags=["ai"])
log = get_logger("ai")


class SuggestionsRequest(BaseModel):
    currentText: str = Field(..., min_length=50)
    genre: str = Field(..., min_length=1)
    context: str | None = None


class AnalyzeRequest(BaseModel):
    text: str = Field(..., min_length=100)
    bookId: str | None = None
    genre: str | None = None


class EnhanceRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=20000)
    type: str


class TitlesRequest(BaseModel):
    genre: str = Field(..., min_length=1)
    count: int = Field(default=5, ge=1, le=10)
    description: str | None = None


class SynopsisRequest(BaseModel):
    bookId: str


class CoverColorsRequest(BaseModel):
    title: str = Field(..., min_length=1)
    genre: str = Field(..., min_length=1)
    mood: str | None = None


class CoverConceptRequest(BaseModel):
    synopsis: str = Field(..., min_length=1)
    genre: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)


def owned_book(book_id: str, user: AuthUser) -> dict[str, Any]:
    book = books_repo.get_book(book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    if str(book.get("authorId")) != user.id:
        raise HTTPException(status_code=403, detail="You do not have permission to access this book")
    return book


@router.post("/suggestions")
def suggestions(body: SuggestionsRequest, user: AuthUser = Depends(current_user)):
    out = writing_ai.suggest_continuations(current_text=body.currentText, genre=body.genre, context=body.context)
    return ok({"suggestions": out})


@router.post("/analyze")
def analyze(body: AnalyzeRequest, user: AuthUser = Depends(current_user)):
    book = owned_book(body.bookId, user) if body.bookId else None
    analysis = writing_ai.analyze_quality(text=body.text, genre=body.genre or (book or {}).get("genre"))
    if book is not None:
        books_repo.update_book(body.bookId or "", {"qualityScore": writing_ai.book_quality_record(analysis)})
        log.info("quality_score_saved", book_id=body.bookId, score=analysis["overallScore"])
    return ok(analysis)


@router.post("/enhance-text")
def enhance_text(body: EnhanceRequest, user: AuthUser = Depends(current_user)):
    if body.type not in writing_ai.ENHANCE_INSTRUCTIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid enhancement type. Must be one of: {', '.join(writing_ai.ENHANCE_INSTRUCTIONS)}",
        )
    enhanced = writing_ai.enhance_text(text=body.text, type=body.type)
    return ok({"original": body.text, "enhanced": enhanced, "type": body.type})


@router.post("/generate-titles")
def generate_titles(body: TitlesRequest, user: AuthUser = Depends(current_user)):
    titles = writing_ai.generate_titles(genre=body.genre, count=body.count, description=body.description)
    return ok({"titles": titles})


@router.post("/generate-synopsis")
def generate_synopsis(body: SynopsisRequest, user: AuthUser = Depends(current_user)):
    book = owned_book(body.bookId, user)
    if not book.get("chapters"):
        raise HTTPException(status_code=400, detail="Book must have at least one chapter to generate a synopsis")
    synopsis = writing_ai.generate_synopsis(book=book)
    return ok({"synopsis": synopsis, "length": len(synopsis)})


@router.post("/generate-cover-colors")
def generate_cover_colors(body: CoverColorsRequest, user: AuthUser = Depends(current_user)):
    return ok(writing_ai.generate_cover_colors(title=body.title, genre=body.genre, mood=body.mood))


@router.post("/generate-cover")
def generate_cover(body: CoverConceptRequest, user: AuthUser = Depends(current_user)):
    return ok(writing_ai.generate_cover_concept(synopsis=body.synopsis, genre=body.genre, title=body.title))
