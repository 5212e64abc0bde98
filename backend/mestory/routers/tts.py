from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..auth.deps import current_user
from ..auth.tokens import AuthUser
from ..observability.logging import get_logger
from ..repositories import books_repo
from ..responses import ok
from ..services import tts
from .books import require_reader_access

router = APIRouter(tags=["tts"])
log = get_logger("tts")

Provider = Literal["browser", "google", "elevenlabs"]


class SynthesizeRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=tts.MAX_TEXT_CHARS)
    provider: Provider = "browser"
    voiceId: str | None = None
    language: str = "he"
    speed: float = Field(default=1.0, ge=0.25, le=4.0)
    pitch: float = Field(default=0.0, ge=-20.0, le=20.0)


class NarrateRequest(BaseModel):
    provider: Provider = "browser"
    voiceId: str | None = None
    speed: float = Field(default=1.0, ge=0.25, le=4.0)
    pitch: float = Field(default=0.0, ge=-20.0, le=20.0)


def _synthesize(**kwargs: Any) -> dict[str, Any]:
    try:
        return tts.synthesize(**kwargs)
    except tts.TtsError as e:
        status = 400 if "No text content" in str(e) else 502
        raise HTTPException(status_code=status, detail=str(e))


def _chapter(book_id: str, chapter_index: int, user: AuthUser) -> tuple[dict[str, Any], dict[str, Any]]:
    book = books_repo.get_book(book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    require_reader_access(book, user)
    chapters = list(book.get("chapters") or [])
    if chapter_index < 0 or chapter_index >= len(chapters):
        raise HTTPException(status_code=400, detail="Invalid chapter index")
    return book, chapters[chapter_index]


@router.get("/voices")
def voices(language: str | None = None, provider: str | None = None):
    return ok({"voices": tts.available_voices(language, provider), "providers": tts.provider_status()})


@router.post("/synthesize")
def synthesize(body: SynthesizeRequest, user: AuthUser = Depends(current_user)):
    result = _synthesize(
        text=body.text,
        provider=body.provider,
        voice_id=body.voiceId,
        language=body.language,
        speed=body.speed,
        pitch=body.pitch,
        owner_id=user.id,
    )
    return ok(result)


@router.post("/narrate-chapter/{bookId}/{chapterIndex}")
def narrate_chapter(bookId: str, chapterIndex: int, body: NarrateRequest | None = None, user: AuthUser = Depends(current_user)):
    book, chapter = _chapter(bookId, chapterIndex, user)
    opts = body or NarrateRequest()
    text = tts.clean_text(str(chapter.get("content") or ""))[: tts.MAX_TEXT_CHARS]
    result = _synthesize(
        text=text,
        provider=opts.provider,
        voice_id=opts.voiceId,
        language=str(book.get("language") or "he"),
        speed=opts.speed,
        pitch=opts.pitch,
        owner_id=user.id,
    )
    log.info("chapter_narrated", book_id=bookId, chapter_index=chapterIndex, provider=opts.provider)
    return ok({**result, "bookId": bookId, "chapterIndex": chapterIndex, "chapterTitle": chapter.get("title")})


@router.get("/prepare/{bookId}/{chapterIndex}")
def prepare_chapter(bookId: str, chapterIndex: int, user: AuthUser = Depends(current_user)):
    book, chapter = _chapter(bookId, chapterIndex, user)
    language = str(book.get("language") or "he")
    text = tts.clean_text(str(chapter.get("content") or ""))
    return ok(
        {
            "bookId": bookId,
            "chapterIndex": chapterIndex,
            "chapterTitle": chapter.get("title"),
            "language": language,
            "text": text,
            "sentences": tts.split_sentences(text),
            "wordCount": len(text.split()),
            "estimatedDuration": tts.estimate_duration_seconds(text, language),
            "totalChapters": len(book.get("chapters") or []),
        }
    )
