from __future__ import annotations

import re
from typing import Any

from ..ai import client as ai_client
from ..ai.schemas import ContinuationsAI, CoverColorsAI, CoverConceptAI, QualityAnalysisAI
from ..observability.logging import get_logger
from ..repositories.common import now_iso

log = get_logger("writing_ai")

SCORE_WEIGHTS: dict[str, float] = {
    "writingQuality": 0.25,
    "plotStructure": 0.20,
    "characterDevelopment": 0.20,
    "dialogue": 0.15,
    "setting": 0.10,
    "originality": 0.10,
}

ENHANCE_INSTRUCTIONS: dict[str, str] = {
    "rephrase": "Rephrase the following text so it reads more smoothly while keeping its meaning",
    "expand": "Expand the following text with more detail and description, keeping the same voice",
    "improve-dialogue": "Improve the dialogue in the following text so it sounds more natural and characterful",
    "add-sensory": "Enrich the following text with sensory details (sight, sound, smell, touch, taste)",
    "strengthen-verbs": "Replace weak verbs in the following text with strong, precise, vivid verbs",
}

CONTINUATION_PLACEHOLDER = "Continue writing here..."
SYNOPSIS_MAX_CHARS = 1000

_NUMBERED_RE = re.compile(r"^\d+[\.)]\s*")


def _user(prompt: str) -> list[dict[str, str]]:
    return [{"role": "user", "content": prompt}]


def rating_for(score: int) -> tuple[int, str]:
    if score >= 90:
        return 5, "Masterpiece"
    if score >= 80:
        return 4, "Excellent"
    if score >= 70:
        return 3, "Good"
    if score >= 60:
        return 2, "Fair"
    return 1, "Needs Work"


def overall_score(scores: dict[str, float]) -> int:
    return int(round(sum(float(scores.get(k) or 0) * w for k, w in SCORE_WEIGHTS.items())))


# --- continuations ---


def suggest_continuations(*, current_text: str, genre: str, context: str | None = None) -> list[str]:
    tail = current_text[-500:]
    prompt = (
        f"You are a creative writing assistant for a {genre} book.\n"
        + (f"Story context: {context}\n" if context else "")
        + f"The author has written so far (ending):\n\"\"\"{tail}\"\"\"\n\n"
        "Suggest 3 different ways to continue the story. Each continuation should be 50-100 words, "
        "match the tone and language of the text, and take the plot in a distinct direction.\n"
        'Return JSON: {"suggestions": ["...", "...", "..."]}'
    )
    parsed, _ = ai_client.call_json(
        purpose="suggestions",
        response_model=ContinuationsAI,
        messages=_user(prompt),
        max_tokens=1200,
        temperature=0.9,
    )
    out = [s.strip() for s in parsed.suggestions if str(s or "").strip()][:3]
    while len(out) < 3:
        out.append(CONTINUATION_PLACEHOLDER)
    return out


# --- quality analysis ---


def analyze_quality(*, text: str, genre: str | None = None) -> dict[str, Any]:
    """Score a text on six weighted categories; overall is the rounded weighted sum."""
    sample = text[:8000]
    prompt = (
        "You are a professional literary editor. Analyze the writing quality of the following "
        + (f"{genre} " if genre else "")
        + "text.\n"
        "Score each category from 0 to 100: writingQuality, plotStructure, characterDevelopment, "
        "dialogue, setting, originality.\n"
        "Give concise overall feedback and 3-5 concrete suggestions for improvement.\n"
        'Return JSON: {"scores": {"writingQuality": 0, "plotStructure": 0, "characterDevelopment": 0, '
        '"dialogue": 0, "setting": 0, "originality": 0}, "feedback": "...", "suggestions": ["..."]}\n\n'
        f"TEXT:\n\"\"\"{sample}\"\"\""
    )
    parsed, meta = ai_client.call_json(
        purpose="quality_analysis",
        response_model=QualityAnalysisAI,
        messages=_user(prompt),
        max_tokens=1500,
        temperature=0.3,
    )
    scores = {k: int(round(v)) for k, v in parsed.scores.model_dump().items()}
    overall = overall_score(scores)
    rating, label = rating_for(overall)
    return {
        "overallScore": overall,
        "scores": scores,
        "rating": rating,
        "ratingLabel": label,
        "feedback": parsed.feedback,
        "suggestions": [s for s in parsed.suggestions if str(s or "").strip()],
        "model": meta.model,
    }


def book_quality_record(analysis: dict[str, Any]) -> dict[str, Any]:
    """Shape stored on the book as `qualityScore`."""
    return {
        "overallScore": analysis["overallScore"],
        "scores": analysis["scores"],
        "rating": analysis["rating"],
        "ratingLabel": analysis["ratingLabel"],
        "feedback": analysis.get("feedback") or "",
        "suggestions": analysis.get("suggestions") or [],
        "lastScored": now_iso(),
    }


# --- enhance ---


def enhance_text(*, text: str, type: str) -> str:
    instruction = ENHANCE_INSTRUCTIONS.get(type)
    if not instruction:
        raise ValueError(f"Invalid enhancement type. Must be one of: {', '.join(ENHANCE_INSTRUCTIONS)}")
    prompt = (
        f"{instruction}. Keep the original language. Return only the improved text, "
        f"without explanations or quotes.\n\nTEXT:\n{text}"
    )
    out, _ = ai_client.call_text(purpose="enhance_text", messages=_user(prompt), max_tokens=2000, temperature=0.7)
    return out.strip().strip('"').strip()


# --- titles ---


def parse_titles(raw: str, count: int) -> list[str]:
    titles: list[str] = []
    for line in str(raw or "").splitlines():
        t = _NUMBERED_RE.sub("", line.strip()).strip().strip('"').strip("*").strip()
        if t:
            titles.append(t)
    return titles[:count]


def generate_titles(*, genre: str, count: int = 5, description: str | None = None) -> list[str]:
    prompt = (
        f"Generate {count} creative, memorable book titles for a {genre} book.\n"
        + (f"About the book: {description}\n" if description else "")
        + "Return one title per line as a numbered list, with no other text."
    )
    raw, _ = ai_client.call_text(purpose="titles", messages=_user(prompt), max_tokens=400, temperature=0.9)
    titles = parse_titles(raw, count)
    if not titles:
        raise ai_client.AiParseError("No titles generated")
    return titles


# --- synopsis ---


def fit_synopsis(text: str) -> str:
    s = str(text or "").strip()
    if len(s) > SYNOPSIS_MAX_CHARS:
        s = s[: SYNOPSIS_MAX_CHARS - 3] + "..."
    return s


def generate_synopsis(*, book: dict[str, Any]) -> str:
    chapters = list(book.get("chapters") or [])
    sample = "\n\n".join(
        f"{ch.get('title') or f'Chapter {i + 1}'}:\n{str(ch.get('content') or '')[:1000]}"
        for i, ch in enumerate(chapters[:3])
    )
    prompt = (
        "Write a compelling back-cover synopsis for the following book. "
        "It must be 100-1000 characters, written in the book's language, and must not reveal the ending. "
        "Return only the synopsis text.\n\n"
        f"Title: {book.get('title') or ''}\n"
        f"Genre: {book.get('genre') or ''}\n"
        f"Description: {book.get('description') or ''}\n\n"
        f"Opening chapters:\n{sample}"
    )

    def _long_enough(text: str) -> str | None:
        return None if len(text.strip()) >= 100 else "synopsis must be at least 100 characters"

    raw, _ = ai_client.call_text(
        purpose="synopsis",
        messages=_user(prompt),
        max_tokens=600,
        temperature=0.7,
        validate=_long_enough,
    )
    return fit_synopsis(raw)


# --- cover colours / concept ---


def generate_cover_colors(*, title: str, genre: str, mood: str | None = None) -> dict[str, Any]:
    prompt = (
        f'Suggest a book cover colour scheme for "{title}", a {genre} book'
        + (f" with a {mood} mood" if mood else "")
        + ".\nReturn JSON with hex colours: "
        '{"backgroundColor": "#...", "gradientColors": ["#...", "#..."], "titleColor": "#...", '
        '"authorColor": "#...", "suggestion": "one sentence explaining the palette"}'
    )
    parsed, _ = ai_client.call_json(
        purpose="cover_design",
        response_model=CoverColorsAI,
        messages=_user(prompt),
        max_tokens=500,
        temperature=0.8,
    )
    return parsed.model_dump()


def generate_cover_concept(*, synopsis: str, genre: str, title: str) -> dict[str, Any]:
    prompt = (
        f'Design a typographic book cover concept for "{title}" ({genre}).\n'
        f"Synopsis: {synopsis[:1500]}\n\n"
        "Choose either a gradient or a pattern background.\n"
        'Return JSON: {"type": "gradient"|"pattern", "backgroundColor": "#...", '
        '"gradientColors": ["#...", "#..."], "pattern": "short pattern description", '
        '"overlayOpacity": 0.3, "suggestion": "one sentence describing the concept"}'
    )
    parsed, _ = ai_client.call_json(
        purpose="cover_design",
        response_model=CoverConceptAI,
        messages=_user(prompt),
        max_tokens=600,
        temperature=0.8,
    )
    return parsed.model_dump()
