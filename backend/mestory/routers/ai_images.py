from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..auth.deps import current_user
from ..auth.tokens import AuthUser
from ..observability.logging import get_logger
from ..responses import ok
from ..services import image_generation
from .ai import owned_book

router = APIRouter(tags=["ai"])
log = get_logger("ai_images")


class ImageRequest(BaseModel):
    prompt: str = Field(..., min_length=3, max_length=2000)
    style: str | None = None
    aspectRatio: str | None = None
    provider: str | None = None
    bookContext: dict | None = None


class VariationsRequest(ImageRequest):
    count: int = Field(default=4, ge=1, le=4)


class IllustrationRequest(BaseModel):
    style: str | None = None
    provider: str | None = None


class PreviewPromptRequest(BaseModel):
    prompt: str = Field(..., min_length=3, max_length=2000)
    style: str | None = None
    bookContext: dict | None = None


class ContextualImageRequest(BaseModel):
    textContext: str = Field(..., min_length=10, max_length=5000)
    genre: str | None = None
    style: str | None = None
    aspectRatio: str | None = None
    provider: str | None = None


def _check_aspect_ratio(aspect_ratio: str | None) -> None:
    if aspect_ratio and aspect_ratio not in image_generation.ASPECT_RATIOS:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid aspect ratio. Must be one of: {', '.join(image_generation.ASPECT_RATIOS)}",
        )


def _image_or_502(result: dict) -> dict:
    if not result.get("success"):
        raise HTTPException(status_code=502, detail=str(result.get("error") or "Failed to generate image"))
    return result


@router.post("/generate-image")
def generate_image(body: ImageRequest, user: AuthUser = Depends(current_user)):
    _check_aspect_ratio(body.aspectRatio)
    result = image_generation.generate_image(
        prompt=body.prompt,
        style=body.style,
        aspect_ratio=body.aspectRatio,
        provider=body.provider,
        book_context=body.bookContext,
        owner_id=user.id,
    )
    return ok(_image_or_502(result))


@router.post("/generate-variations")
def generate_variations(body: VariationsRequest, user: AuthUser = Depends(current_user)):
    _check_aspect_ratio(body.aspectRatio)
    results = image_generation.generate_variations(
        prompt=body.prompt,
        count=body.count,
        style=body.style,
        aspect_ratio=body.aspectRatio,
        provider=body.provider,
        book_context=body.bookContext,
        owner_id=user.id,
    )
    images = [r for r in results if r.get("success")]
    if not images:
        raise HTTPException(status_code=502, detail="Failed to generate image variations")
    return ok({"variations": images, "count": len(images)})


@router.post("/generate-illustration/{bookId}/{chapterIndex}")
def generate_illustration(
    bookId: str, chapterIndex: int, body: IllustrationRequest | None = None, user: AuthUser = Depends(current_user)
):
    book = owned_book(bookId, user)
    chapters = list(book.get("chapters") or [])
    if chapterIndex < 0 or chapterIndex >= len(chapters):
        raise HTTPException(status_code=400, detail="Invalid chapter index")
    chapter = chapters[chapterIndex]
    content = str(chapter.get("content") or "").strip()
    if not content:
        raise HTTPException(status_code=400, detail="Chapter has no content to illustrate")

    result = image_generation.generate_illustration(
        chapter_content=content,
        book_context={
            "title": book.get("title"),
            "genre": book.get("genre"),
            "chapterTitle": chapter.get("title"),
        },
        style=(body.style if body else None) or "illustration",
        provider=body.provider if body else None,
        owner_id=user.id,
    )
    log.info("illustration_generated", book_id=bookId, chapter_index=chapterIndex, success=result.get("success"))
    return ok({**_image_or_502(result), "chapterIndex": chapterIndex})


@router.post("/preview-prompt")
def preview_prompt(body: PreviewPromptRequest, user: AuthUser = Depends(current_user)):
    enhanced = image_generation.enhance_prompt(prompt=body.prompt, style=body.style, book_context=body.bookContext)
    return ok({"originalPrompt": body.prompt, "enhancedPrompt": enhanced})


@router.post("/generate-contextual-image")
def generate_contextual_image(body: ContextualImageRequest, user: AuthUser = Depends(current_user)):
    _check_aspect_ratio(body.aspectRatio)
    prompt = image_generation.contextual_prompt(text_context=body.textContext, genre=body.genre, style=body.style)
    result = image_generation.generate_image(
        prompt=prompt,
        style=body.style,
        aspect_ratio=body.aspectRatio or "4:3",
        provider=body.provider,
        book_context={"genre": body.genre} if body.genre else None,
        owner_id=user.id,
    )
    return ok(_image_or_502(result))
