from __future__ import annotations

import re
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from ..ai import client as ai_client
from ..ai.schemas import (
    BackCoverAI,
    ChapterImagePlacementsAI,
    CoverDesignAI,
    CoverTextAI,
    FrontCoverAI,
    PageLayoutAI,
    SpineAI,
    TypographyAI,
)
from ..observability.logging import get_logger
from . import s3_assets

log = get_logger("book_design")

FONT_DATABASE: dict[str, dict[str, list[str]]] = {
    "hebrew": {
        "serif": ["David Libre", "Frank Ruhl Libre", "Heebo", "Assistant"],
        "sansSerif": ["Heebo", "Assistant", "Rubik", "Open Sans Hebrew"],
        "display": ["Secular One", "Suez One", "Alef"],
        "handwriting": ["Amatic SC", "Varela Round"],
    },
    "english": {
        "serif": ["Playfair Display", "Merriweather", "Lora", "Crimson Text", "EB Garamond"],
        "sansSerif": ["Inter", "Open Sans", "Roboto", "Lato", "Source Sans Pro"],
        "display": ["Bebas Neue", "Oswald", "Montserrat", "Poppins"],
        "handwriting": ["Dancing Script", "Pacifico", "Caveat", "Great Vibes"],
    },
}

GENRE_FONT_MAPPING: dict[str, dict[str, str]] = {
    "fantasy": {"body": "serif", "heading": "display", "title": "display"},
    "romance": {"body": "serif", "heading": "handwriting", "title": "handwriting"},
    "thriller": {"body": "sansSerif", "heading": "display", "title": "display"},
    "sci-fi": {"body": "sansSerif", "heading": "sansSerif", "title": "display"},
    "mystery": {"body": "serif", "heading": "serif", "title": "display"},
    "horror": {"body": "serif", "heading": "display", "title": "display"},
    "literary": {"body": "serif", "heading": "serif", "title": "serif"},
    "children": {"body": "sansSerif", "heading": "display", "title": "handwriting"},
    "young-adult": {"body": "sansSerif", "heading": "display", "title": "display"},
    "historical": {"body": "serif", "heading": "serif", "title": "serif"},
    "biography": {"body": "serif", "heading": "sansSerif", "title": "sansSerif"},
    "self-help": {"body": "sansSerif", "heading": "sansSerif", "title": "display"},
    "default": {"body": "serif", "heading": "serif", "title": "display"},
}

DEFAULT_PALETTE = ["#1a1a2e", "#16213e", "#0f3460", "#e94560"]
MIN_WORDS_FOR_IMAGES = 200
_IMPORTANCE_ORDER = {"high": 0, "medium": 1, "low": 2}
_HEBREW_RE = re.compile(r"[\u0590-\u05FF]")


def is_hebrew(language: str | None, title: str | None) -> bool:
    return str(language or "").lower() == "he" or bool(_HEBREW_RE.search(str(title or "")))


def design_input(book: dict[str, Any], author_name: str) -> dict[str, Any]:
    """The subset of a book the designers look at."""
    return {
        "title": str(book.get("title") or ""),
        "authorName": author_name,
        "genre": str(book.get("genre") or ""),
        "language": str(book.get("language") or "en"),
        "synopsis": book.get("synopsis") or book.get("description") or "",
        "targetAudience": book.get("targetAudience"),
        "chapters": [
            {
                "title": str(ch.get("title") or ""),
                "content": str(ch.get("content") or ""),
                "wordCount": int(ch.get("wordCount") or 0),
            }
            for ch in book.get("chapters") or []
        ],
    }


def font_choices(inp: dict[str, Any]) -> dict[str, list[str]]:
    db = FONT_DATABASE["hebrew" if is_hebrew(inp.get("language"), inp.get("title")) else "english"]
    mapping = GENRE_FONT_MAPPING.get(str(inp.get("genre") or "").lower(), GENRE_FONT_MAPPING["default"])
    return {"body": db[mapping["body"]], "heading": db[mapping["heading"]], "title": db[mapping["title"]]}


def _user(prompt: str) -> list[dict[str, str]]:
    return [{"role": "user", "content": prompt}]


# --- typography ---


def default_typography(inp: dict[str, Any]) -> TypographyAI:
    fonts = font_choices(inp)
    return TypographyAI(
        bodyFont=fonts["body"][0],
        headingFont=fonts["heading"][0],
        titleFont=fonts["title"][0],
        reasoning="Default typography based on genre conventions.",
    )


def validate_fonts(typography: TypographyAI, inp: dict[str, Any]) -> TypographyAI:
    fonts = font_choices(inp)
    if typography.bodyFont not in fonts["body"]:
        typography.bodyFont = fonts["body"][0]
    if typography.headingFont not in fonts["heading"]:
        typography.headingFont = fonts["heading"][0]
    if typography.titleFont not in fonts["title"]:
        typography.titleFont = fonts["title"][0]
    return typography


def generate_typography(inp: dict[str, Any]) -> TypographyAI:
    hebrew = is_hebrew(inp.get("language"), inp.get("title"))
    fonts = font_choices(inp)
    prompt = (
        "You are a professional book designer and typographer. Recommend the best typography for this book.\n\n"
        f'Title: "{inp["title"]}"\nGenre: {inp["genre"]}\n'
        f"Language: {'Hebrew' if hebrew else 'English'}\n"
        f"Target Audience: {inp.get('targetAudience') or 'General'}\n"
        f"Synopsis: {inp.get('synopsis') or 'Not provided'}\n\n"
        f"Body fonts: {', '.join(fonts['body'])}\n"
        f"Heading fonts: {', '.join(fonts['heading'])}\n"
        f"Title fonts: {', '.join(fonts['title'])}\n\n"
        "Consider genre conventions, audience readability, mood, and Hebrew/English legibility.\n"
        'Return JSON: {"bodyFont": "...", "headingFont": "...", "titleFont": "...", "fontSize": 12, '
        '"lineHeight": 1.6, "chapterTitleSize": 24, "pageNumberSize": 10, '
        '"colors": {"text": "#hex", "heading": "#hex", "accent": "#hex"}, "reasoning": "2-3 sentences"}'
    )
    parsed, _ = ai_client.call_json(
        purpose="typography",
        response_model=TypographyAI,
        messages=_user(prompt),
        max_tokens=800,
        fallback=lambda: default_typography(inp),
    )
    return validate_fonts(parsed, inp)


# --- layout ---


def default_layout() -> PageLayoutAI:
    return PageLayoutAI(reasoning="Default layout based on standard book conventions.")


def generate_layout(inp: dict[str, Any]) -> PageLayoutAI:
    hebrew = is_hebrew(inp.get("language"), inp.get("title"))
    words = sum(int(ch.get("wordCount") or 0) for ch in inp["chapters"])
    prompt = (
        "You are a professional book designer specializing in page layout.\n\n"
        f'Title: "{inp["title"]}"\nGenre: {inp["genre"]}\n'
        f"Language: {'Hebrew (RTL)' if hebrew else 'English (LTR)'}\n"
        f"Total Chapters: {len(inp['chapters'])}\n"
        f"Estimated Pages: {-(-words // 250)}\n"
        f"Target Audience: {inp.get('targetAudience') or 'General'}\n\n"
        "Design margins (points), chapter openings, page numbers and headers.\n"
        'Return JSON: {"margins": {"top": 60, "bottom": 60, "inner": 70, "outer": 50}, '
        '"chapterStartStyle": "same-page|new-page|new-page-centered", '
        '"pageNumberPosition": "bottom-center|bottom-outer|top-outer|none", '
        '"headerStyle": "none|book-title|chapter-title|author-name", '
        '"dropCaps": true, "ornaments": false, "reasoning": "2-3 sentences"}'
    )
    parsed, _ = ai_client.call_json(
        purpose="layout",
        response_model=PageLayoutAI,
        messages=_user(prompt),
        max_tokens=600,
        fallback=default_layout,
    )
    return parsed


# --- image placements ---


def suggest_image_placements(inp: dict[str, Any]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for i, ch in enumerate(inp["chapters"]):
        if int(ch.get("wordCount") or 0) < MIN_WORDS_FOR_IMAGES:
            continue
        prompt = (
            "You are a professional book illustration consultant. Suggest the best places for illustrations.\n\n"
            f'BOOK: "{inp["title"]}" ({inp["genre"]})\n'
            f'CHAPTER {i + 1}: "{ch["title"]}"\n'
            f"CHAPTER CONTENT (first 2000 chars):\n{ch['content'][:2000]}\n\n"
            "Identify 1-2 vivid, important or hard-to-visualize moments. Give each a detailed AI image prompt.\n"
            'Return JSON: {"placements": [{"position": "chapter-start|mid-chapter|chapter-end", '
            '"textContext": "max 100 chars", "suggestedPrompt": "...", "importance": "high|medium|low", '
            '"reasoning": "..."}]} or {"placements": []} when no illustration is needed.'
        )
        try:
            parsed, _ = ai_client.call_json(
                purpose="image_placements",
                response_model=ChapterImagePlacementsAI,
                messages=_user(prompt),
                max_tokens=900,
                retries=1,
            )
        except ai_client.AiError as e:
            log.warning("image_placements_chapter_failed", chapter_index=i, error=str(e))
            continue
        out.extend({**p.model_dump(), "chapterIndex": i} for p in parsed.placements)
    out.sort(key=lambda p: _IMPORTANCE_ORDER.get(str(p.get("importance")), 1))
    return out


# --- cover ---


def default_cover(inp: dict[str, Any], typography: TypographyAI) -> CoverDesignAI:
    title, author, genre = inp["title"], inp["authorName"], inp["genre"]
    return CoverDesignAI(
        front=FrontCoverAI(
            imagePrompt=(
                f'Book cover art for "{title}", a {genre} book. Professional, atmospheric, '
                "cinematic lighting, high quality illustration suitable for book cover."
            ),
            title=CoverTextAI(text=title, font=typography.titleFont, size=48, position="center"),
            author=CoverTextAI(text=author, font=typography.bodyFont, size=18, position="bottom"),
            colorPalette=list(DEFAULT_PALETTE),
        ),
        back=BackCoverAI(
            imagePrompt=(
                f"Subtle abstract background matching {genre} genre, muted colors, "
                "good for text overlay, soft gradient."
            ),
            synopsis=CoverTextAI(text=str(inp.get("synopsis") or ""), font=typography.bodyFont, size=12),
            author=CoverTextAI(text=author, font=typography.headingFont, size=14),
            backgroundColor="#1a1a2e",
        ),
        spine=SpineAI(title=title, author=author, font=typography.titleFont),
        reasoning="Default cover design based on genre conventions.",
    )


def generate_cover(inp: dict[str, Any], typography: TypographyAI) -> CoverDesignAI:
    hebrew = is_hebrew(inp.get("language"), inp.get("title"))
    first = inp["chapters"][0]["content"][:1000] if inp["chapters"] else "Not available"
    prompt = (
        "You are a professional book cover designer.\n\n"
        f'Title: "{inp["title"]}"\nAuthor: "{inp["authorName"]}"\nGenre: {inp["genre"]}\n'
        f"Language: {'Hebrew' if hebrew else 'English'}\n"
        f"Synopsis: {inp.get('synopsis') or 'Not provided'}\n"
        f"First chapter excerpt:\n{first}\n\n"
        f"Title Font: {typography.titleFont}\nBody Font: {typography.bodyFont}\n\n"
        "Design the front cover (a detailed 200+ character AI image prompt that works with text overlay), "
        "the back cover (subtle version of the front with the synopsis) and the spine.\n"
        'Return JSON: {"front": {"imagePrompt": "...", "title": {"text": "", "font": "", "size": 48, '
        '"color": "#hex", "position": "center", "alignment": "center"}, "author": {"text": "", "font": "", '
        '"size": 18, "color": "#hex", "position": "bottom"}, "colorPalette": ["#hex", "#hex", "#hex", "#hex"]}, '
        '"back": {"imagePrompt": "...", "synopsis": {"text": "", "font": "", "size": 12, "color": "#hex"}, '
        '"author": {"text": "", "font": "", "size": 14, "color": "#hex"}, "backgroundColor": "#hex"}, '
        '"spine": {"title": "", "author": "", "font": "", "color": "#hex", "backgroundColor": "#hex"}, '
        '"reasoning": "3-4 sentences"}'
    )
    parsed, _ = ai_client.call_json(
        purpose="cover_design",
        response_model=CoverDesignAI,
        messages=_user(prompt),
        max_tokens=1500,
        fallback=lambda: default_cover(inp, typography),
    )
    return parsed


def cover_image_url(prompt: str, *, owner_id: str | None) -> str | None:
    """Pollinations portrait cover; copied to S3 when a bucket is configured."""
    if not prompt.strip():
        return None
    url = f"https://image.pollinations.ai/prompt/{quote(prompt, safe='')}?width=600&height=900&seed={int(time.time() * 1000)}"
    if not s3_assets.is_configured():
        return url
    try:
        with httpx.Client(timeout=120, follow_redirects=True) as client:
            resp = client.get(url)
            resp.raise_for_status()
        stored = s3_assets.store_bytes(
            kind="covers", data=resp.content, content_type="image/png", owner_id=owner_id, ext=".png"
        )
        return str(stored["url"])
    except httpx.HTTPError as e:
        log.warning("cover_image_failed", error=str(e))
        return None


def style_description(inp: dict[str, Any], typography: TypographyAI, cover: CoverDesignAI) -> str:
    fallback = (
        f"Professional {inp['genre']} design with {typography.bodyFont} typography and "
        f"{'rich color palette' if cover.front.colorPalette else 'classic styling'}."
    )
    prompt = (
        "Based on these design choices, write a brief 2-sentence style summary.\n"
        f'Book: "{inp["title"]}" ({inp["genre"]})\n'
        f"Typography: {typography.bodyFont}, {typography.headingFont}\n"
        f"Colors: {', '.join(cover.front.colorPalette)}\n"
        f"Cover concept: {cover.reasoning}"
    )
    try:
        out, _ = ai_client.call_text(purpose="cover_design", messages=_user(prompt), max_tokens=200, retries=1)
    except ai_client.AiError:
        return fallback
    return out.strip() or fallback


def generate_complete_design(inp: dict[str, Any], *, owner_id: str | None = None) -> dict[str, Any]:
    """Typography first; layout and cover in parallel; then placements, cover art and a style summary."""
    log.info("book_design_started", title=inp.get("title"), chapters=len(inp.get("chapters") or []))
    typography = generate_typography(inp)

    with ThreadPoolExecutor(max_workers=2) as ex:
        layout_f = ex.submit(generate_layout, inp)
        cover_f = ex.submit(generate_cover, inp, typography)
        layout = layout_f.result()
        cover = cover_f.result()

    placements = suggest_image_placements(inp)

    with ThreadPoolExecutor(max_workers=2) as ex:
        front_f = ex.submit(cover_image_url, cover.front.imagePrompt, owner_id=owner_id)
        back_f = ex.submit(cover_image_url, cover.back.imagePrompt, owner_id=owner_id)
        front_url = front_f.result()
        back_url = back_f.result()
    if front_url:
        cover.front.imageUrl = front_url
    if back_url:
        cover.back.imageUrl = back_url

    overall = style_description(inp, typography, cover)
    log.info("book_design_completed", title=inp.get("title"), placements=len(placements))
    return {
        "typography": typography.model_dump(),
        "layout": layout.model_dump(),
        "cover": cover.model_dump(),
        "imagePlacements": placements,
        "overallStyle": overall,
        "moodDescription": cover.reasoning,
        "generatedAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }


# --- apply ---


def apply_design_to_page_layout(design: dict[str, Any], existing: dict[str, Any] | None) -> dict[str, Any]:
    typography = design.get("typography") or {}
    layout = design.get("layout") or {}
    position = layout.get("pageNumberPosition") or "bottom-outer"
    return {
        **(existing or {}),
        "bodyFont": typography.get("bodyFont"),
        "fontSize": typography.get("fontSize", 12),
        "lineHeight": typography.get("lineHeight", 1.6),
        "margins": layout.get("margins") or {"top": 60, "bottom": 60, "inner": 70, "outer": 50},
        "showPageNumbers": position != "none",
        "pageNumberPosition": position,
        "headerStyle": layout.get("headerStyle"),
        "chapterStartStyle": layout.get("chapterStartStyle"),
        "dropCaps": bool(layout.get("dropCaps", True)),
        "ornaments": bool(layout.get("ornaments", False)),
    }


def apply_design_to_cover_design(design: dict[str, Any]) -> dict[str, Any]:
    cover = design.get("cover") or {}
    front = cover.get("front") or {}
    back = cover.get("back") or {}
    palette = list(front.get("colorPalette") or [])
    return {
        "front": {
            "type": "ai-generated" if front.get("imageUrl") else "gradient",
            "imageUrl": front.get("imageUrl"),
            "backgroundColor": palette[0] if palette else None,
            "gradientColors": palette,
            "title": front.get("title"),
            "authorName": front.get("author"),
        },
        "back": {
            "imageUrl": back.get("imageUrl"),
            "backgroundColor": back.get("backgroundColor"),
            "synopsis": (back.get("synopsis") or {}).get("text"),
        },
        "spine": cover.get("spine") or {},
    }
