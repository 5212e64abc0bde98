from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..auth.deps import current_user
from ..auth.tokens import AuthUser
from ..observability.logging import get_logger
from ..repositories import books_repo, users_repo
from ..responses import ok
from ..services import book_design
from .ai import owned_book

router = APIRouter(tags=["ai-design"])
log = get_logger("ai_design")


class ApplyDesignRequest(BaseModel):
    design: dict[str, Any]


def _design_input(book: dict[str, Any]) -> dict[str, Any]:
    author = users_repo.get_user_by_id(str(book.get("authorId"))) or {}
    return book_design.design_input(book, str(author.get("name") or ""))


@router.post("/design-typography/{bookId}")
def design_typography(bookId: str, user: AuthUser = Depends(current_user)):
    inp = _design_input(owned_book(bookId, user))
    typography = book_design.generate_typography(inp)
    return ok({"typography": typography.model_dump(), "availableFonts": book_design.font_choices(inp)})


@router.post("/suggest-images/{bookId}")
def suggest_images(bookId: str, user: AuthUser = Depends(current_user)):
    book = owned_book(bookId, user)
    if not book.get("chapters"):
        raise HTTPException(status_code=400, detail="Book has no chapters")
    placements = book_design.suggest_image_placements(_design_input(book))
    return ok({"placements": placements, "count": len(placements)})


@router.post("/design-book/{bookId}")
def design_book(bookId: str, user: AuthUser = Depends(current_user)):
    book = owned_book(bookId, user)
    design = book_design.generate_complete_design(_design_input(book), owner_id=user.id)
    return ok({"design": design}, message="Book design generated successfully")


@router.post("/apply-design/{bookId}")
def apply_design(bookId: str, body: ApplyDesignRequest, user: AuthUser = Depends(current_user)):
    book = owned_book(bookId, user)
    if not body.design:
        raise HTTPException(status_code=400, detail="Design is required")

    page_layout = book_design.apply_design_to_page_layout(body.design, book.get("pageLayout"))
    cover_design = book_design.apply_design_to_cover_design(body.design)
    updated = books_repo.update_book(bookId, {"pageLayout": page_layout, "coverDesign": cover_design})
    log.info("book_design_applied", book_id=bookId)
    return ok(
        {"book": books_repo.normalize_book_for_api(updated, include_content=False)},
        message="Design applied successfully",
    )
