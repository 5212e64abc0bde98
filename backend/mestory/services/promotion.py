"""
Organic book promotion.

A book's promotion score weighs quality (35%), 7-day engagement velocity (20%),
social engagement (20%), conversion (15%) and author credibility (10%). The
scoring functions are pure; the list builders load books, events and authors.
"""

from __future__ import annotations

import math
import re
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from ..repositories import books_repo, users_repo
from ..repositories.common import parse_iso

VELOCITY_WEIGHTS: dict[str, float] = {
    "view": 0.05,
    "read": 0.15,
    "complete": 0.2,
    "purchase": 0.2,
    "like": 0.1,
    "share": 0.2,
    "comment": 0.1,
}

PROMOTION_TYPES = ("FEATURED", "TRENDING", "RISING_STAR", "EDITOR_PICK")

NEW_AUTHOR_CREDIBILITY = 0.1


def _quality(book: dict[str, Any]) -> float:
    return float((book.get("qualityScore") or {}).get("overallScore") or 0)


def _stats(book: dict[str, Any]) -> dict[str, Any]:
    return book.get("statistics") or {}


def _publishing(book: dict[str, Any]) -> dict[str, Any]:
    return book.get("publishingStatus") or {}


def days_since(value: Any, *, now: datetime | None = None) -> int | None:
    dt = parse_iso(value)
    if dt is None:
        return None
    now = now or datetime.now(timezone.utc)
    return int((now - dt).total_seconds() // 86400)


# --- scoring ---


def velocity_score(events: Iterable[dict[str, Any]]) -> float:
    """Weighted interaction count over the window, normalised by 30 and capped at 1."""
    counts = Counter(str(e.get("type")) for e in events)
    engagement = sum(counts.get(t, 0) * w for t, w in VELOCITY_WEIGHTS.items())
    return min(engagement / 30, 1.0)


def social_score(*, likes: int, shares: int, comments: int) -> float:
    likes_n = min(math.log10(likes + 1) / 3, 1)
    shares_n = min(math.log10(shares * 5 + 1) / 3, 1)
    comments_n = min(math.log10(comments * 3 + 1) / 3, 1)
    return likes_n * 0.3 + shares_n * 0.4 + comments_n * 0.3


def conversion_score(*, views: int, purchases: int, completion_rate: float) -> float:
    if views <= 0:
        return 0.0
    return min((purchases / views * 10 + completion_rate) / 2, 1.0)


def author_credibility(published_books: list[dict[str, Any]]) -> float:
    if not published_books:
        return NEW_AUTHOR_CREDIBILITY
    total_views = sum(int(_stats(b).get("views") or 0) for b in published_books)
    total_purchases = sum(int(_stats(b).get("purchases") or 0) for b in published_books)
    scored = [_quality(b) for b in published_books if _quality(b) > 0]
    avg_quality = sum(scored) / len(scored) if scored else 0
    return (
        min(len(published_books) / 10, 1) * 0.2
        + min(math.log10(total_views + 1) / 5, 1) * 0.25
        + min(math.log10(total_purchases + 1) / 3, 1) * 0.3
        + ((avg_quality or 50) / 100) * 0.25
    )


def promotion_score(
    book: dict[str, Any],
    *,
    velocity: float,
    credibility: float,
    now: datetime | None = None,
) -> dict[str, Any]:
    badges: list[str] = []

    overall = _quality(book)
    quality = overall / 100 if overall else 0.0
    if overall >= 90:
        badges.append("MASTERPIECE")
    elif overall >= 80:
        badges.append("EXCELLENT")
    elif overall >= 70:
        badges.append("HIGH_QUALITY")

    if velocity > 0.7:
        badges.append("TRENDING")

    stats = _stats(book)
    likes = int(book.get("likes") or 0)
    shares = int(stats.get("shares") or 0)
    comments = int(stats.get("comments") or stats.get("totalReviews") or 0)
    social = social_score(likes=likes, shares=shares, comments=comments)
    if likes >= 100:
        badges.append("POPULAR")
    if shares >= 50:
        badges.append("VIRAL")
    if comments >= 20:
        badges.append("ENGAGING")

    conversion = conversion_score(
        views=int(stats.get("views") or 0),
        purchases=int(stats.get("purchases") or 0),
        completion_rate=float(stats.get("completionRate") or 0),
    )

    if credibility > 0.8:
        badges.append("TOP_AUTHOR")

    score = quality * 0.35 + velocity * 0.20 + social * 0.20 + conversion * 0.15 + credibility * 0.10

    pub = _publishing(book)
    if float(pub.get("price") or 0) == 0 or pub.get("isFree"):
        badges.append("FREE")
    age = days_since(pub.get("publishedAt"), now=now)
    if age is not None and age <= 7:
        badges.append("NEW")

    return {
        "score": score,
        "breakdown": {
            "quality": quality,
            "velocity": velocity,
            "social": social,
            "conversion": conversion,
            "authorCredibility": credibility,
        },
        "badges": badges,
    }


# --- data access ---


class _Scorer:
    """Per-request caches for velocity and author credibility."""

    def __init__(self, books: list[dict[str, Any]]):
        self.by_author: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for b in books:
            if _publishing(b).get("status") == "published":
                self.by_author[str(b.get("authorId"))].append(b)
        self._velocity: dict[tuple[str, int], float] = {}
        self._authors: dict[str, dict[str, Any]] = {}

    def velocity(self, book: dict[str, Any], days: int = 7) -> float:
        bid = str(book.get("bookId"))
        key = (bid, days)
        if key not in self._velocity:
            since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat().replace("+00:00", "Z")
            self._velocity[key] = velocity_score(books_repo.list_book_events(bid, since=since))
        return self._velocity[key]

    def credibility(self, author_id: str) -> float:
        return author_credibility(self.by_author.get(str(author_id), []))

    def score(self, book: dict[str, Any]) -> dict[str, Any]:
        return promotion_score(
            book,
            velocity=self.velocity(book),
            credibility=self.credibility(str(book.get("authorId"))),
        )

    def load_authors(self, books: list[dict[str, Any]]) -> None:
        missing = {str(b.get("authorId")) for b in books} - set(self._authors)
        if missing:
            self._authors.update(users_repo.get_users_by_ids(sorted(missing)))

    def author_summary(self, author_id: str) -> dict[str, Any]:
        u = self._authors.get(str(author_id)) or {}
        return {
            "id": str(author_id),
            "name": u.get("name") or "",
            "avatar": (u.get("profile") or {}).get("avatar") or "",
        }


def _public_books() -> list[dict[str, Any]]:
    return books_repo.list_public_books()


def _promoted(scorer: _Scorer, book: dict[str, Any], score: float, reasons: list[str], badges: list[str]) -> dict[str, Any]:
    out = books_repo.normalize_book_for_api(book, include_content=False) or {}
    out["author"] = scorer.author_summary(str(book.get("authorId")))
    return {"book": out, "promotionScore": round(score, 4), "promotionReasons": reasons, "badges": badges}


def _by_quality_then_views(b: dict[str, Any]) -> tuple[float, int]:
    return (_quality(b), int(_stats(b).get("views") or 0))


def featured_books(limit: int = 10) -> list[dict[str, Any]]:
    books = _public_books()
    scorer = _Scorer(books)
    pool = sorted((b for b in books if _quality(b) >= 75), key=_by_quality_then_views, reverse=True)[: limit * 2]
    scorer.load_authors(pool)

    out: list[dict[str, Any]] = []
    for b in pool:
        s = scorer.score(b)
        reasons: list[str] = []
        if _quality(b) >= 85:
            reasons.append("Exceptional writing quality")
        if "TOP_AUTHOR" in s["badges"]:
            reasons.append("From a top-rated author")
        out.append(_promoted(scorer, b, s["score"], reasons or ["Featured selection"], s["badges"]))
    out.sort(key=lambda p: p["promotionScore"], reverse=True)
    return out[:limit]


def _published_within(book: dict[str, Any], days: int) -> bool:
    age = days_since(_publishing(book).get("publishedAt"))
    return age is not None and age <= days


def rising_stars(limit: int = 10) -> list[dict[str, Any]]:
    books = _public_books()
    scorer = _Scorer(books)
    pool = [
        b
        for b in books
        if _published_within(b, 14) and (not b.get("qualityScore") or _quality(b) >= 60)
    ]
    pool = sorted(pool, key=lambda b: int(_stats(b).get("views") or 0), reverse=True)[: limit * 3]
    scorer.load_authors(pool)

    out: list[dict[str, Any]] = []
    for b in pool:
        velocity = scorer.velocity(b)
        if velocity < 0.2:
            continue
        s = scorer.score(b)
        out.append(
            _promoted(
                scorer,
                b,
                s["score"] + velocity * 0.5,
                ["Rising in popularity", "Gaining readers quickly"],
                [*s["badges"], "RISING_STAR"],
            )
        )
    out.sort(key=lambda p: p["promotionScore"], reverse=True)
    return out[:limit]


def quality_new_releases(
    limit: int = 20,
    *,
    min_quality: float = 60,
    days: int = 30,
    min_views: int = 0,
    min_purchases: int = 0,
) -> list[dict[str, Any]]:
    books = _public_books()
    scorer = _Scorer(books)
    pool = [
        b
        for b in books
        if _published_within(b, days)
        and (not b.get("qualityScore") or _quality(b) >= min_quality)
        and int(_stats(b).get("views") or 0) >= min_views
        and int(_stats(b).get("purchases") or 0) >= min_purchases
    ]
    pool.sort(key=lambda b: str(_publishing(b).get("publishedAt") or ""), reverse=True)
    pool = pool[:limit]
    scorer.load_authors(pool)

    out: list[dict[str, Any]] = []
    for b in pool:
        s = scorer.score(b)
        age = days_since(_publishing(b).get("publishedAt")) or 0
        reasons = [f"Published {age} day{'' if age == 1 else 's'} ago"]
        if _quality(b) >= 75:
            reasons.append("High quality score")
        out.append(_promoted(scorer, b, s["score"], reasons, [*s["badges"], "NEW_RELEASE"]))
    return out


def trending_by_velocity(days: int = 7, limit: int = 20) -> list[dict[str, Any]]:
    books = _public_books()
    scorer = _Scorer(books)
    pool = sorted(books, key=lambda b: int(_stats(b).get("views") or 0), reverse=True)[:100]
    ranked = sorted(((b, scorer.velocity(b, days)) for b in pool), key=lambda t: t[1], reverse=True)[:limit]
    scorer.load_authors([b for b, _ in ranked])

    out: list[dict[str, Any]] = []
    for b, velocity in ranked:
        s = scorer.score(b)
        badges = [*s["badges"], "HOT"] if velocity > 0.5 else s["badges"]
        out.append(
            _promoted(
                scorer,
                b,
                s["score"],
                ["Trending this week", f"{round(velocity * 100)}% engagement growth"],
                badges,
            )
        )
    return out


def top_authors(limit: int = 10) -> list[dict[str, Any]]:
    books = _public_books()
    scorer = _Scorer(books)
    rows: list[dict[str, Any]] = []
    for author_id, author_books in scorer.by_author.items():
        scored = [_quality(b) for b in author_books if _quality(b) > 0]
        rows.append(
            {
                "authorId": author_id,
                "totalBooks": len(author_books),
                "totalReaders": sum(int(_stats(b).get("views") or 0) for b in author_books),
                "averageQuality": sum(scored) / len(scored) if scored else 0,
                "credibilityScore": round(scorer.credibility(author_id), 4),
                "_books": author_books,
            }
        )
    rows.sort(key=lambda r: r["credibilityScore"], reverse=True)
    rows = rows[:limit]
    scorer.load_authors([b for r in rows for b in r["_books"]])

    out: list[dict[str, Any]] = []
    for r in rows:
        summary = scorer.author_summary(r["authorId"])
        best = sorted(r.pop("_books"), key=_by_quality_then_views, reverse=True)[:3]
        out.append(
            {
                **r,
                "name": summary["name"],
                "avatar": summary["avatar"],
                "featuredBooks": [books_repo.normalize_book_for_api(b, include_content=False) for b in best],
            }
        )
    return out


def genre_badge(genre: str) -> str:
    return "TOP_" + re.sub(r"\s+", "_", genre.strip().upper())


def top_in_genre(genre: str, limit: int = 10) -> list[dict[str, Any]]:
    books = _public_books()
    scorer = _Scorer(books)
    needle = genre.strip().lower()
    pool = sorted(
        (b for b in books if needle and needle in str(b.get("genre") or "").lower()),
        key=_by_quality_then_views,
        reverse=True,
    )[:limit]
    scorer.load_authors(pool)
    out: list[dict[str, Any]] = []
    for b in pool:
        s = scorer.score(b)
        out.append(
            _promoted(
                scorer,
                b,
                s["score"],
                [f"Top {genre} book", "Highly rated in category"],
                [*s["badges"], genre_badge(genre)],
            )
        )
    return out


def promotion_summary() -> dict[str, Any]:
    published = books_repo.list_books_by_status("published")
    featured = sum(1 for b in published if _quality(b) >= 80)
    rising = sum(1 for b in published if _published_within(b, 14) and int(_stats(b).get("views") or 0) >= 50)

    genres: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for b in published:
        if _publishing(b).get("isPublic"):
            genres[str(b.get("genre") or "Unknown")].append(b)
    top_genres = []
    for g, gb in sorted(genres.items(), key=lambda kv: len(kv[1]), reverse=True)[:10]:
        scored = [_quality(b) for b in gb if _quality(b) > 0]
        top_genres.append({"genre": g, "count": len(gb), "avgQuality": sum(scored) / len(scored) if scored else 0})

    views_by_author: dict[str, int] = defaultdict(int)
    for b in published:
        views_by_author[str(b.get("authorId"))] += int(_stats(b).get("views") or 0)

    return {
        "totalFeatured": featured,
        "totalRisingStars": rising,
        "totalTrending": rising,
        "topGenres": top_genres,
        "topAuthorsCount": sum(1 for v in views_by_author.values() if v >= 100),
    }
