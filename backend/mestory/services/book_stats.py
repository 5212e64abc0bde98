from __future__ import annotations

import math
import re
from typing import Any

WORDS_PER_PAGE = 250
WORDS_PER_MINUTE = 250

_TAG_RE = re.compile(r"<[^>]+>")
_ENTITY_RE = re.compile(r"&[a-zA-Z#0-9]+;")


def strip_html(text: str) -> str:
    s = _TAG_RE.sub(" ", str(text or ""))
    s = _ENTITY_RE.sub(" ", s)
    return re.sub(r"\s+", " ", s).strip()


def count_words(text: str) -> int:
    s = strip_html(text)
    return len(s.split()) if s else 0


def page_count(words: int) -> int:
    """Printed pages: 250 words a page, padded to a multiple of 4 (one signature)."""
    pages = math.ceil(max(0, int(words)) / WORDS_PER_PAGE)
    rem = pages % 4
    return pages + (4 - rem) if rem else pages


def reading_time(words: int) -> int:
    return math.ceil(max(0, int(words)) / WORDS_PER_MINUTE)


def normalize_chapters(chapters: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for i, ch in enumerate(chapters or []):
        if not isinstance(ch, dict):
            continue
        c = dict(ch)
        c["title"] = str(c.get("title") or f"Chapter {i + 1}")
        c["content"] = str(c.get("content") or "")
        c["order"] = int(c.get("order") if c.get("order") is not None else i)
        c["wordCount"] = count_words(c["content"])
        out.append(c)
    return sorted(out, key=lambda c: c["order"])


def derived_statistics(chapters: list[dict[str, Any]], characters: list[Any] | None) -> dict[str, int]:
    words = sum(int(c.get("wordCount") or 0) for c in chapters)
    return {
        "chapterCount": len(chapters),
        "characterCount": len(characters or []),
        "wordCount": words,
        "pageCount": page_count(words),
        "readingTime": reading_time(words),
    }
