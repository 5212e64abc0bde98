"""
Personalized book recommendations.

Candidates are public published books the reader has not finished, started,
abandoned or written. Each candidate is scored from the reader's activity
document:

    0.35 genre + 0.20 author + 0.25 quality + 0.10 popularity + 0.10 freshness
    - penalty (negative signals, capped at 0.5)

Genre preference decays with a 14-day half-life since the last interaction.
Readers without any activity get the trending list instead.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any

from ..observability.logging import get_logger
from ..repositories import activity_repo, books_repo, users_repo
from ..repositories.common import now_iso
from .promotion import days_since

log = get_logger("recommendations")

HALF_LIFE_DAYS = 14
MAX_PENALTY = 0.5

# Genre weight added per interaction type (new genres start at 50).
GENRE_WEIGHT_INCREMENTS = {"complete": 10, "purchase": 15, "like": 5, "read": 3}
NEW_GENRE_WEIGHT = 50
WRITTEN_GENRE_WEIGHT = 60
WRITTEN_GENRE_INCREMENT = 15

TRENDING_REASON = "Trending on MeStory"


def _quality(book: dict[str, Any]) -> float:
    return float((book.get("qualityScore") or {}).get("overallScore") or 0)


def _stats(book: dict[str, Any]) -> dict[str, Any]:
    return book.get("statistics") or {}


def _published_at(book: dict[str, Any]) -> str:
    return str((book.get("publishingStatus") or {}).get("publishedAt") or "")


# --- scoring ---


def recency_decay(value: Any, *, now: datetime | None = None) -> float:
    days = days_since(value, now=now)
    if days is None:
        return 0.1
    return max(0.1, math.exp(-0.693 * max(days, 0) / HALF_LIFE_DAYS))


def _find_genre(activity: dict[str, Any], genre: str) -> dict[str, Any] | None:
    needle = str(genre or "").lower()
    for pref in activity.get("genrePreferences") or []:
        if str(pref.get("genre") or "").lower() == needle:
            return pref
    return None


def _find_author(activity: dict[str, Any], author_id: str) -> dict[str, Any] | None:
    for pref in activity.get("authorPreferences") or []:
        if str(pref.get("authorId")) == str(author_id):
            return pref
    return None


def genre_score(book: dict[str, Any], activity: dict[str, Any], *, now: datetime | None = None) -> float:
    pref = _find_genre(activity, str(book.get("genre") or ""))
    if not pref:
        return 0.3
    score = float(pref.get("weight") or 0) / 100
    score += min(int(pref.get("readCount") or 0) * 0.05, 0.3)
    if int(pref.get("writtenCount") or 0) > 0:
        score += 0.2
    return min(1.0, score * recency_decay(pref.get("lastInteraction"), now=now))


def author_score(book: dict[str, Any], activity: dict[str, Any]) -> float:
    pref = _find_author(activity, str(book.get("authorId")))
    if not pref:
        return 0.0
    score = 0.4 if pref.get("isFollowing") else 0.0
    score += min(int(pref.get("booksRead") or 0) * 0.1, 0.3)
    rating = float(pref.get("averageRating") or 0)
    if rating > 0:
        score += rating / 5 * 0.3
    return min(1.0, score)


def quality_score(book: dict[str, Any]) -> float:
    overall = _quality(book)
    return overall / 100 if overall else 0.5


def popularity_score(book: dict[str, Any]) -> float:
    stats = _stats(book)
    views = int(stats.get("views") or 0)
    purchases = int(stats.get("purchases") or 0)
    reviews = int(stats.get("totalReviews") or 0)
    rating = float(stats.get("averageRating") or 0)
    return (
        min(math.log10(views + 1) / 5, 1) * 0.2
        + min(math.log10(purchases + 1) / 3, 1) * 0.3
        + min(math.log10(reviews + 1) / 2, 1) * 0.2
        + (rating / 5 if rating else 0.5) * 0.3
    )


def freshness_score(book: dict[str, Any], *, now: datetime | None = None) -> float:
    days = days_since(_published_at(book), now=now)
    if days is None:
        return 0.0
    if days <= 7:
        return 1.0
    if days <= 30:
        return max(0.5, 1 - (days - 7) * 0.02)
    return 0.3


def negative_penalty(book: dict[str, Any], activity: dict[str, Any]) -> float:
    abandons = [e for e in activity.get("interactionEvents") or [] if e.get("type") == "abandon"]
    genre = str(book.get("genre") or "").lower()

    same_genre = sum(1 for e in abandons if str(e.get("genre") or "").lower() == genre)
    penalty = min(same_genre * 0.08, 0.25)

    pref = _find_author(activity, str(book.get("authorId")))
    if pref:
        rating = float(pref.get("averageRating") or 0)
        if 0 < rating < 2.5 and int(pref.get("booksRead") or 0) > 0:
            penalty += 0.2

    if int(_stats(book).get("wordCount") or 0) > 50000:
        long_abandons = sum(1 for e in abandons if int((e.get("metadata") or {}).get("wordCount") or 0) > 50000)
        if long_abandons >= 2:
            penalty += 0.1

    return min(penalty, MAX_PENALTY)


def score_book(book: dict[str, Any], activity: dict[str, Any], *, now: datetime | None = None) -> dict[str, Any]:
    g = genre_score(book, activity, now=now)
    a = author_score(book, activity)
    q = quality_score(book)
    p = popularity_score(book)
    f = freshness_score(book, now=now)
    penalty = negative_penalty(book, activity)
    total = max(0.0, g * 0.35 + a * 0.2 + q * 0.25 + p * 0.1 + f * 0.1 - penalty)

    reasons: list[str] = []
    if g > 0.6:
        reasons.append(f"Matches your love for {book.get('genre')}")
    if a > 0.5:
        reasons.append("From an author you enjoy")
    if q > 0.8:
        reasons.append("Highly rated by AI")
    if p > 0.7:
        reasons.append("Popular among readers")
    if f > 0.8:
        reasons.append("New release")

    return {
        "score": total,
        "reasons": reasons or ["Recommended for you"],
        "breakdown": {
            "genre": g,
            "author": a,
            "quality": q,
            "popularity": p,
            "freshness": f,
            "penalty": penalty,
        },
    }


def has_activity(activity: dict[str, Any] | None) -> bool:
    if not activity:
        return False
    return bool(
        activity.get("interactionEvents")
        or activity.get("genrePreferences")
        or activity.get("readingHistory")
        or activity.get("completedBooks")
    )


def excluded_book_ids(activity: dict[str, Any]) -> set[str]:
    out: set[str] = set()
    for field in ("completedBooks", "currentlyReading", "abandonedBooks"):
        out.update(str(b) for b in activity.get(field) or [])
    return out


# --- data access ---


def _with_authors(books: list[dict[str, Any]]) -> list[dict[str, Any]]:
    authors = users_repo.get_users_by_ids(sorted({str(b.get("authorId")) for b in books}))
    out: list[dict[str, Any]] = []
    for b in books:
        item = books_repo.normalize_book_for_api(b, include_content=False) or {}
        u = authors.get(str(b.get("authorId"))) or {}
        item["author"] = {
            "id": str(b.get("authorId")),
            "name": u.get("name") or "",
            "avatar": (u.get("profile") or {}).get("avatar") or "",
        }
        out.append(item)
    return out


def _trending_sort_key(b: dict[str, Any]) -> tuple[int, int, float]:
    stats = _stats(b)
    return (int(stats.get("views") or 0), int(stats.get("purchases") or 0), _quality(b))


def _quality_then_views(b: dict[str, Any]) -> tuple[float, int]:
    return (_quality(b), int(_stats(b).get("views") or 0))


def trending(limit: int = 20) -> dict[str, Any]:
    books = sorted(books_repo.list_public_books(), key=_trending_sort_key, reverse=True)[:limit]
    reasons = {str(b.get("bookId")): [TRENDING_REASON] for b in books}
    return {"books": _with_authors(books), "reasons": reasons}


def personalized(user_id: str, limit: int = 20) -> dict[str, Any]:
    """Returns {books, reasons} where reasons maps bookId to reason strings."""
    activity = activity_repo.get_activity(user_id)
    if activity is None or not has_activity(activity):
        return trending(limit)

    excluded = excluded_book_ids(activity)
    candidates = [
        b
        for b in books_repo.list_public_books()
        if str(b.get("bookId")) not in excluded and str(b.get("authorId")) != str(user_id)
    ]
    now = datetime.now(timezone.utc)
    scored = [(b, score_book(b, activity, now=now)) for b in candidates]
    scored.sort(key=lambda t: t[1]["score"], reverse=True)
    top = scored[:limit]
    log.info("recommendations_scored", user_id=user_id, candidates=len(candidates), returned=len(top))
    return {
        "books": _with_authors([b for b, _ in top]),
        "reasons": {str(b.get("bookId")): s["reasons"] for b, s in top},
    }


def new_releases(limit: int = 20, min_quality: float = 60, days: int = 30) -> list[dict[str, Any]]:
    pool = []
    for b in books_repo.list_public_books():
        age = days_since(_published_at(b))
        if age is None or age > days:
            continue
        if b.get("qualityScore") and _quality(b) < min_quality:
            continue
        pool.append(b)
    pool.sort(key=_published_at, reverse=True)
    return _with_authors(pool[:limit])


def by_genre(genre: str, limit: int = 20) -> list[dict[str, Any]]:
    needle = str(genre or "").strip().lower()
    pool = [b for b in books_repo.list_public_books() if needle and needle in str(b.get("genre") or "").lower()]
    pool.sort(key=_quality_then_views, reverse=True)
    return _with_authors(pool[:limit])


def similar(book_id: str, limit: int = 10) -> list[dict[str, Any]]:
    source = books_repo.get_book(book_id)
    if not source:
        return []
    genre = str(source.get("genre") or "").lower()
    pool = [
        b
        for b in books_repo.list_public_books()
        if str(b.get("bookId")) != str(book_id) and str(b.get("genre") or "").lower() == genre
    ]
    pool.sort(key=_quality_then_views, reverse=True)
    return _with_authors(pool[:limit])


def top_authors(limit: int = 10) -> list[dict[str, Any]]:
    by_author: dict[str, list[dict[str, Any]]] = {}
    for b in books_repo.list_books_by_status("published"):
        by_author.setdefault(str(b.get("authorId")), []).append(b)

    rows: list[dict[str, Any]] = []
    for author_id, books in by_author.items():
        views = sum(int(_stats(b).get("views") or 0) for b in books)
        purchases = sum(int(_stats(b).get("purchases") or 0) for b in books)
        scored = [_quality(b) for b in books if _quality(b) > 0]
        avg_quality = sum(scored) / len(scored) if scored else None
        rows.append(
            {
                "authorId": author_id,
                "totalBooks": len(books),
                "totalViews": views,
                "totalPurchases": purchases,
                "avgQuality": avg_quality,
                "engagementScore": len(books) * 10 + views * 0.1 + purchases * 5 + (avg_quality or 50) * 0.5,
            }
        )
    rows.sort(key=lambda r: r["engagementScore"], reverse=True)
    rows = rows[:limit]

    users = users_repo.get_users_by_ids([r["authorId"] for r in rows])
    out = []
    for r in rows:
        u = users.get(r["authorId"])
        if not u:
            continue
        out.append({**r, "name": u.get("name") or "", "avatar": (u.get("profile") or {}).get("avatar") or ""})
    return out


def _history_by_book(activity: dict[str, Any]) -> dict[str, dict[str, Any]]:
    return {str(h.get("bookId")): h for h in activity.get("readingHistory") or []}


def continue_reading(user_id: str) -> list[dict[str, Any]]:
    activity = activity_repo.get_activity(user_id)
    if not activity or not activity.get("currentlyReading"):
        return []
    history = _history_by_book(activity)
    books = [b for b in (books_repo.get_book(str(bid)) for bid in activity["currentlyReading"]) if b]
    books.sort(key=lambda b: str((history.get(str(b.get("bookId"))) or {}).get("lastReadAt") or ""), reverse=True)
    return _with_authors(books)


def continue_writing(user_id: str, limit: int | None = None) -> list[dict[str, Any]]:
    drafts = [
        b
        for b in books_repo.list_books_by_author(user_id)
        if (b.get("publishingStatus") or {}).get("status") == "draft"
    ]
    drafts.sort(key=lambda b: str(b.get("updatedAt") or ""), reverse=True)
    if limit is not None:
        drafts = drafts[:limit]
    return [books_repo.normalize_book_for_api(b, include_content=False) for b in drafts]


def progress_details(user_id: str) -> dict[str, Any]:
    """Continue-reading entries with progress plus draft entries with word counts."""
    activity = activity_repo.get_activity(user_id) or activity_repo.empty_activity(user_id)
    history = _history_by_book(activity)
    reading = []
    for book in continue_reading(user_id):
        h = history.get(str(book.get("bookId"))) or {}
        reading.append(
            {
                "book": book,
                "progress": h.get("percentageComplete") or 0,
                "lastChapterRead": h.get("lastChapterRead") or 0,
                "lastReadAt": h.get("lastReadAt"),
            }
        )
    writing = [
        {
            "book": book,
            "lastEditedAt": book.get("updatedAt"),
            "wordCount": int((book.get("statistics") or {}).get("wordCount") or 0),
        }
        for book in continue_writing(user_id, limit=5)
    ]
    return {"continueReading": reading, "continueWriting": writing}


def because_you_read(user_id: str, limit: int = 3, books_per_source: int = 4) -> list[dict[str, Any]]:
    activity = activity_repo.get_activity(user_id)
    if not activity or not activity.get("completedBooks"):
        return []
    completed = [h for h in activity.get("readingHistory") or [] if h.get("isCompleted")]
    completed.sort(key=lambda h: str(h.get("lastReadAt") or ""), reverse=True)
    source_ids = [str(h.get("bookId")) for h in completed[:limit]]
    if not source_ids:
        # Completed through an explicit interaction without reading progress.
        source_ids = [str(b) for b in reversed(activity["completedBooks"])][:limit]

    seen = excluded_book_ids(activity)
    results = []
    for source_id in source_ids:
        source = books_repo.get_book(source_id)
        if not source:
            continue
        recs = [b for b in similar(source_id, books_per_source * 2) if str(b.get("bookId")) not in seen]
        if recs:
            results.append(
                {
                    "basedOn": _with_authors([source])[0],
                    "recommendations": recs[:books_per_source],
                }
            )
    return results


def personalized_feed(user_id: str) -> dict[str, Any]:
    recommended = personalized(user_id, 12)
    details = progress_details(user_id)

    fresh = [
        b
        for b in books_repo.list_public_books()
        if _quality(b) >= 65 and (days_since(_published_at(b)) is not None and days_since(_published_at(b)) <= 30)
    ]
    fresh.sort(key=_published_at, reverse=True)

    return {
        "recommendedForYou": [
            {"book": b, "reasons": recommended["reasons"].get(str(b.get("bookId")), [])}
            for b in recommended["books"]
        ],
        "continueReading": details["continueReading"],
        "continueWriting": details["continueWriting"],
        "becauseYouRead": because_you_read(user_id, 2, 4),
        "trending": trending(8)["books"],
        "newReleases": _with_authors(fresh[:8]),
    }


# --- activity updates ---


def _add_unique(values: list[Any], book_id: str) -> bool:
    if book_id in [str(v) for v in values]:
        return False
    values.append(book_id)
    return True


def _remove(values: list[Any], book_id: str) -> list[Any]:
    return [v for v in values if str(v) != book_id]


def apply_interaction(
    activity: dict[str, Any],
    *,
    book: dict[str, Any],
    author_name: str,
    interaction_type: str,
    duration: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Folds one interaction into the activity document (in place) and returns it."""
    ts = now_iso()
    book_id = str(book.get("bookId"))
    author_id = str(book.get("authorId"))
    genre = str(book.get("genre") or "")
    metadata = metadata or {}

    activity.setdefault("interactionEvents", []).append(
        {
            "type": interaction_type,
            "bookId": book_id,
            "genre": genre,
            "authorId": author_id,
            "duration": duration,
            "timestamp": ts,
            "metadata": metadata,
        }
    )

    pref = _find_genre(activity, genre)
    if pref is None:
        activity.setdefault("genrePreferences", []).append(
            {
                "genre": genre,
                "weight": NEW_GENRE_WEIGHT,
                "readCount": 1 if interaction_type == "complete" else 0,
                "writtenCount": 0,
                "lastInteraction": ts,
            }
        )
    else:
        pref["lastInteraction"] = ts
        pref["weight"] = min(100, int(pref.get("weight") or 0) + GENRE_WEIGHT_INCREMENTS.get(interaction_type, 1))
        if interaction_type == "complete":
            pref["readCount"] = int(pref.get("readCount") or 0) + 1

    rating = float(metadata.get("rating") or 0) if interaction_type in ("comment", "review") else 0.0
    author = _find_author(activity, author_id)
    if author is None and interaction_type != "view":
        activity.setdefault("authorPreferences", []).append(
            {
                "authorId": author_id,
                "authorName": author_name or "Unknown",
                "booksRead": 1 if interaction_type == "complete" else 0,
                "averageRating": rating,
                "isFollowing": False,
                "lastInteraction": ts,
            }
        )
    elif author is not None:
        author["lastInteraction"] = ts
        if interaction_type == "complete":
            author["booksRead"] = int(author.get("booksRead") or 0) + 1
        if rating:
            books_read = int(author.get("booksRead") or 0) or 1
            current = float(author.get("averageRating") or 0)
            author["averageRating"] = rating if current == 0 else (current * (books_read - 1) + rating) / books_read

    if interaction_type in ("read", "view"):
        _add_unique(activity.setdefault("currentlyReading", []), book_id)
    elif interaction_type == "complete":
        activity["currentlyReading"] = _remove(activity.get("currentlyReading") or [], book_id)
        if _add_unique(activity.setdefault("completedBooks", []), book_id):
            activity["totalBooksRead"] = int(activity.get("totalBooksRead") or 0) + 1
    elif interaction_type == "abandon":
        activity["currentlyReading"] = _remove(activity.get("currentlyReading") or [], book_id)
        _add_unique(activity.setdefault("abandonedBooks", []), book_id)

    activity["lastActiveAt"] = ts
    if duration:
        activity["totalReadingTime"] = int(activity.get("totalReadingTime") or 0) + int(duration)
    return activity


def record_interaction(
    user_id: str,
    book_id: str,
    interaction_type: str,
    *,
    duration: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """Updates the reader's activity and appends a book interaction event. False when the book is unknown."""
    book = books_repo.get_book(book_id)
    if not book:
        return False
    author = users_repo.get_user_by_id(str(book.get("authorId"))) or {}
    activity = activity_repo.get_or_create_activity(user_id)
    apply_interaction(
        activity,
        book=book,
        author_name=str(author.get("name") or ""),
        interaction_type=interaction_type,
        duration=duration,
        metadata=metadata,
    )
    activity_repo.save_activity(activity)
    books_repo.record_event(book_id=book_id, user_id=user_id, event_type=interaction_type, metadata=metadata)
    log.info("interaction_recorded", user_id=user_id, book_id=book_id, type=interaction_type)
    return True


def apply_writing_activity(activity: dict[str, Any], *, book_id: str, genre: str, published: bool) -> dict[str, Any]:
    ts = now_iso()
    pref = _find_genre(activity, genre)
    if pref is None:
        activity.setdefault("genrePreferences", []).append(
            {
                "genre": genre,
                "weight": WRITTEN_GENRE_WEIGHT,
                "readCount": 0,
                "writtenCount": 1,
                "lastInteraction": ts,
            }
        )
    else:
        pref["lastInteraction"] = ts
        if published:
            pref["writtenCount"] = int(pref.get("writtenCount") or 0) + 1
            pref["weight"] = min(100, int(pref.get("weight") or 0) + WRITTEN_GENRE_INCREMENT)

    if published:
        activity["currentlyWriting"] = _remove(activity.get("currentlyWriting") or [], book_id)
        if _add_unique(activity.setdefault("completedWriting", []), book_id):
            activity["totalBooksWritten"] = int(activity.get("totalBooksWritten") or 0) + 1
    else:
        _add_unique(activity.setdefault("currentlyWriting", []), book_id)
    activity["lastActiveAt"] = ts
    return activity


def record_writing_activity(user_id: str, book_id: str, genre: str, *, published: bool = False) -> None:
    """Edits keep the book in currentlyWriting; publishing moves it to completedWriting."""
    activity = activity_repo.get_or_create_activity(user_id)
    apply_writing_activity(activity, book_id=book_id, genre=genre, published=published)
    activity_repo.save_activity(activity)


def update_reading_progress(
    user_id: str,
    book_id: str,
    *,
    chapter: int = 0,
    percentage: float = 0,
    reading_time: int = 0,
) -> dict[str, Any]:
    activity = activity_repo.get_or_create_activity(user_id)
    history = activity.setdefault("readingHistory", [])
    entry = next((h for h in history if str(h.get("bookId")) == str(book_id)), None)
    ts = now_iso()
    if entry is None:
        entry = {"bookId": book_id, "totalReadingTime": 0}
        history.append(entry)
    entry["lastChapterRead"] = chapter
    entry["percentageComplete"] = percentage
    entry["totalReadingTime"] = int(entry.get("totalReadingTime") or 0) + int(reading_time or 0)
    entry["lastReadAt"] = ts
    entry["isCompleted"] = percentage >= 100
    activity_repo.save_activity(activity)

    if percentage >= 100:
        record_interaction(user_id, book_id, "complete", duration=reading_time or None)
    return entry
