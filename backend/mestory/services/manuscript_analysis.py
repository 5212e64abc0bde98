"""
Whole-manuscript analysis: passage enhancement, three-act plot structure,
chapter tension curves, writing techniques, in-flow guidance and quality
score deltas.

Book-level analyses never fail on a bad model response; they fall back to a
neutral result so the editor can still render its panels.
"""

from __future__ import annotations

import math
from typing import Any

from ..ai import client as ai_client
from ..ai.schemas import (
    ActAI,
    ChapterTensionAI,
    EnhancedPassageAI,
    GuidanceResponseAI,
    PlotStructureAI,
    TechniquesAnalysisAI,
    TensionAnalysisAI,
    ThreeActAI,
)
from ..observability.logging import get_logger
from .book_stats import count_words, strip_html
from .writing_ai import SCORE_WEIGHTS, analyze_quality

log = get_logger("manuscript_analysis")

ENHANCE_ACTIONS: dict[str, str] = {
    "improve": (
        "Improve the following passage: tighten the prose, sharpen word choice and fix awkward phrasing "
        "while keeping the author's voice and meaning."
    ),
    "expand": (
        "Expand the following passage to roughly 150-200% of its length with richer description, "
        "sensory detail and interiority, keeping the same voice."
    ),
    "shorten": (
        "Shorten the following passage to roughly 50-70% of its length, keeping every essential "
        "story beat and the author's voice."
    ),
    "continue": (
        "Continue the story from the end of the following passage with 80-120 new words that follow "
        "naturally from it. Return only the new words."
    ),
}

MIN_ENHANCE_CHARS = 10
MAX_ENHANCE_CHARS = 5000


def _user(prompt: str) -> list[dict[str, str]]:
    return [{"role": "user", "content": prompt}]


def _chapters(book: dict[str, Any]) -> list[dict[str, Any]]:
    return sorted(book.get("chapters") or [], key=lambda c: int(c.get("order") or 0))


def _title(ch: dict[str, Any], i: int) -> str:
    return str(ch.get("title") or f"Chapter {i + 1}")


def _chapter_digest(book: dict[str, Any], *, per_chapter: int, total: int) -> str:
    parts: list[str] = []
    used = 0
    for i, ch in enumerate(_chapters(book)):
        text = strip_html(ch.get("content") or "")[:per_chapter]
        block = f"Chapter {i} - {_title(ch, i)} ({count_words(ch.get('content') or '')} words):\n{text}"
        if parts and used + len(block) > total:
            break
        parts.append(block)
        used += len(block)
    return "\n\n".join(parts)


def _book_header(book: dict[str, Any]) -> str:
    return f"Title: {book.get('title') or ''}\nGenre: {book.get('genre') or ''}\n"


# --- passage enhancement ---


def validate_enhance_request(text: str, action: str) -> str | None:
    if not str(text or "").strip():
        return "text is required"
    if action not in ENHANCE_ACTIONS:
        return f"action must be one of: {', '.join(ENHANCE_ACTIONS)}"
    if len(text.strip()) < MIN_ENHANCE_CHARS:
        return f"text must be at least {MIN_ENHANCE_CHARS} characters"
    if len(text) > MAX_ENHANCE_CHARS:
        return f"text must be less than {MAX_ENHANCE_CHARS} characters"
    return None


def enhance_passage(*, text: str, action: str, context: dict[str, Any] | None = None) -> dict[str, Any]:
    context = context or {}
    lines = []
    if context.get("bookTitle"):
        lines.append(f"Book: {context['bookTitle']}")
    if context.get("chapterTitle"):
        lines.append(f"Chapter: {context['chapterTitle']}")
    if context.get("genre"):
        lines.append(f"Genre: {context['genre']}")
    if action == "continue" and context.get("surroundingText"):
        lines.append(f"Surrounding text:\n{str(context['surroundingText'])[-1500:]}")

    prompt = (
        "You are an experienced fiction editor. Keep the original language of the text.\n"
        + ("\n".join(lines) + "\n\n" if lines else "\n")
        + f"{ENHANCE_ACTIONS[action]}\n\n"
        f"PASSAGE:\n\"\"\"{text}\"\"\"\n\n"
        'Return JSON: {"enhanced": "...", "explanation": "one or two sentences on what changed"}'
    )
    parsed, _ = ai_client.call_json(
        purpose="enhance_text",
        response_model=EnhancedPassageAI,
        messages=_user(prompt),
        max_tokens=2500,
        temperature=0.7,
        validate_parsed=lambda p: None if p.enhanced.strip() else "enhanced text is empty",
    )
    return {
        "originalText": text,
        "enhancedText": parsed.enhanced.strip(),
        "explanation": parsed.explanation,
        "action": action,
    }


# --- plot structure ---


def default_plot_structure(chapter_count: int) -> PlotStructureAI:
    """Even 25/50/25 split of the chapters."""
    n = chapter_count
    end1, end2 = math.floor(n * 0.25), math.floor(n * 0.75)
    return PlotStructureAI(
        threeActStructure=ThreeActAI(
            act1=ActAI(chapters=list(range(0, end1)), percentage=25, completeness=50),
            act2=ActAI(chapters=list(range(end1, end2)), percentage=50, completeness=50),
            act3=ActAI(chapters=list(range(end2, n)), percentage=25, completeness=50),
        ),
        balance="balanced",
    )


def analyze_plot_structure(book: dict[str, Any]) -> dict[str, Any]:
    chapters = _chapters(book)
    total_words = sum(count_words(c.get("content") or "") for c in chapters)
    prompt = (
        "You are a story structure expert. Analyze the manuscript below against the three-act structure.\n"
        + _book_header(book)
        + f"Chapters: {len(chapters)} (indexed from 0), total words: {total_words}\n\n"
        f"{_chapter_digest(book, per_chapter=800, total=12000)}\n\n"
        "For each act list its chapter indexes, the share of the book it covers (percentage), how complete "
        "it feels (completeness 0-100), the story elements present and concrete suggestions. Identify the "
        "inciting incident, midpoint and climax by chapter index. Judge the balance as balanced, "
        "front-heavy, back-heavy or middle-heavy.\n"
        'Return JSON: {"threeActStructure": {"act1": {"chapters": [0], "percentage": 25, "completeness": 80, '
        '"elements": ["..."], "suggestions": ["..."]}, "act2": {...}, "act3": {...}}, '
        '"plotPoints": {"incitingIncident": {"chapter": 0, "description": "..."}, "midpoint": {...}, '
        '"climax": {...}}, "balance": "balanced", "suggestions": ["..."]}'
    )
    parsed, meta = ai_client.call_json(
        purpose="manuscript_analysis",
        response_model=PlotStructureAI,
        messages=_user(prompt),
        max_tokens=2500,
        temperature=0.3,
        fallback=lambda: default_plot_structure(len(chapters)),
    )
    return {**parsed.model_dump(), "model": meta.model}


# --- tension ---


def fit_tension_chapters(analysis: TensionAnalysisAI, chapters: list[dict[str, Any]]) -> list[ChapterTensionAI]:
    """One entry per chapter in order; chapters the model skipped sit at a stable 50."""
    by_index = {c.chapterIndex: c for c in analysis.chapters}
    out = []
    for i, ch in enumerate(chapters):
        entry = by_index.get(i) or ChapterTensionAI(chapterIndex=i, tensionLevel=50, type="stable")
        out.append(entry.model_copy(update={"title": entry.title or _title(ch, i)}))
    return out


def analyze_tension(book: dict[str, Any]) -> dict[str, Any]:
    chapters = _chapters(book)
    prompt = (
        "You are a developmental editor. Rate the narrative tension of each chapter below from 0 to 100, "
        "classify it as rising, falling, peak, valley or stable, and list its key moments with their "
        "relative position in the chapter (0-1) and type (conflict, revelation, resolution, cliffhanger, "
        "suspense). Classify the overall arc as classic, episodic, building, flat or irregular.\n"
        + _book_header(book)
        + "\n"
        + _chapter_digest(book, per_chapter=1500, total=8000)
        + "\n\n"
        'Return JSON: {"chapters": [{"chapterIndex": 0, "title": "...", "tensionLevel": 40, "type": "rising", '
        '"keyMoments": [{"position": 0.8, "type": "cliffhanger", "description": "..."}]}], '
        '"overallArc": "classic", "suggestions": ["..."]}'
    )
    parsed, meta = ai_client.call_json(
        purpose="manuscript_analysis",
        response_model=TensionAnalysisAI,
        messages=_user(prompt),
        max_tokens=2500,
        temperature=0.3,
        fallback=lambda: TensionAnalysisAI(overallArc="flat"),
    )
    fitted = fit_tension_chapters(parsed, chapters)
    return {
        "chapters": [c.model_dump() for c in fitted],
        "overallArc": parsed.overallArc,
        "suggestions": parsed.suggestions,
        "model": meta.model,
    }


# --- techniques ---


def analyze_techniques(book: dict[str, Any]) -> dict[str, Any]:
    prompt = (
        "You are a creative writing teacher. Assess how the manuscript below uses six techniques: "
        "tensionCreation, problemResolution, characterDevelopment, motifsThemes, dialogueQuality and pacing. "
        "For each give a score 0-100, a trend across the chapters (improving, stable, declining), up to two "
        "examples quoting a short excerpt with its chapter index, your analysis and its quality "
        "(excellent, good, needs-improvement), and suggestions. Finish with an overall score and the most "
        "important improvements.\n"
        + _book_header(book)
        + "\n"
        + _chapter_digest(book, per_chapter=1000, total=6000)
        + "\n\n"
        'Return JSON: {"techniques": {"tensionCreation": {"score": 70, "trend": "stable", "examples": '
        '[{"chapterIndex": 0, "excerpt": "...", "analysis": "...", "quality": "good"}], "suggestions": ["..."]}, '
        '"problemResolution": {...}, "characterDevelopment": {...}, "motifsThemes": {...}, '
        '"dialogueQuality": {...}, "pacing": {...}}, "overallScore": 70, "improvements": ["..."]}'
    )
    parsed, meta = ai_client.call_json(
        purpose="manuscript_analysis",
        response_model=TechniquesAnalysisAI,
        messages=_user(prompt),
        max_tokens=3000,
        temperature=0.3,
        fallback=TechniquesAnalysisAI,
    )
    return {**parsed.model_dump(), "model": meta.model}


# --- in-flow guidance ---


def writing_guidance(*, book: dict[str, Any], chapter_index: int, recent_text: str) -> dict[str, Any] | None:
    """A single nudge for the chapter being written, or None when nothing needs saying."""
    chapters = _chapters(book)
    if chapter_index < 0 or chapter_index >= len(chapters):
        return None
    chapter = chapters[chapter_index]
    outline = "\n".join(f"{i}. {_title(c, i)}" for i, c in enumerate(chapters))
    tail = strip_html(chapter.get("content") or "")[-500:]
    prompt = (
        "You are a gentle writing coach watching an author draft a chapter. Only speak up when there is "
        "something genuinely useful: the draft drifts from the book's direction, the structure or pacing "
        "sags, tension drops, a character acts out of character, or a theme is lost.\n"
        + _book_header(book)
        + f"Description: {book.get('description') or ''}\n"
        f"Chapters:\n{outline}\n\n"
        f"Current chapter: {chapter_index}. {_title(chapter, chapter_index)}\n"
        f"End of the chapter so far:\n\"\"\"{tail}\"\"\"\n"
        f"Just written:\n\"\"\"{recent_text[-2000:]}\"\"\"\n\n"
        'Return JSON: {"hasGuidance": false} when all is well, otherwise {"hasGuidance": true, "guidance": '
        '{"type": "deviation|structure|tension|character|pacing|theme", "severity": "info|warning|suggestion", '
        '"message": "...", "context": "...", "suggestions": [{"text": "...", "insertable": false}], '
        '"dismissible": true}}'
    )
    parsed, _ = ai_client.call_json(
        purpose="writing_guidance",
        response_model=GuidanceResponseAI,
        messages=_user(prompt),
        max_tokens=800,
        temperature=0.5,
        fallback=GuidanceResponseAI,
    )
    if not parsed.hasGuidance or parsed.guidance is None:
        return None
    return parsed.guidance.model_dump()


# --- score change ---


def score_change(*, previous_text: str, new_text: str, genre: str | None = None) -> dict[str, Any]:
    before = analyze_quality(text=previous_text, genre=genre)
    after = analyze_quality(text=new_text, genre=genre)
    breakdown = []
    for category in SCORE_WEIGHTS:
        prev = int(before["scores"].get(category) or 0)
        new = int(after["scores"].get(category) or 0)
        breakdown.append({"category": category, "previousValue": prev, "newValue": new, "delta": new - prev})
    delta = after["overallScore"] - before["overallScore"]
    log.info("score_change", previous=before["overallScore"], new=after["overallScore"], delta=delta)
    return {
        "previousScore": before["overallScore"],
        "newScore": after["overallScore"],
        "delta": delta,
        "breakdown": breakdown,
        "improvements": [f"{b['category']}: +{b['delta']}" for b in breakdown if b["delta"] > 0],
        "newRating": after["rating"],
        "newRatingLabel": after["ratingLabel"],
    }
