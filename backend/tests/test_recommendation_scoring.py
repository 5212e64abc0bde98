from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from mestory.services import recommendations as engine

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _iso(days_ago: float) -> str:
    return (NOW - timedelta(days=days_ago)).isoformat().replace("+00:00", "Z")


def _book(**overrides):
    book = {
        "bookId": "book_1",
        "authorId": "user_author",
        "genre": "Fantasy",
        "statistics": {"views": 0, "purchases": 0, "totalReviews": 0, "averageRating": 0, "wordCount": 1000},
        "publishingStatus": {"status": "published", "publishedAt": _iso(3)},
    }
    book.update(overrides)
    return book


def test_recency_decay_halves_every_fourteen_days():
    assert engine.recency_decay(_iso(0), now=NOW) == pytest.approx(1.0)
    assert engine.recency_decay(_iso(14), now=NOW) == pytest.approx(0.5, abs=0.01)
    assert engine.recency_decay(_iso(365), now=NOW) == 0.1
    assert engine.recency_decay(None, now=NOW) == 0.1


def test_genre_score_uses_preference_weight_and_reads():
    activity = {
        "genrePreferences": [
            {"genre": "fantasy", "weight": 80, "readCount": 2, "writtenCount": 0, "lastInteraction": _iso(0)}
        ]
    }
    assert engine.genre_score(_book(), activity, now=NOW) == pytest.approx(0.9)
    assert engine.genre_score(_book(genre="Horror"), activity, now=NOW) == 0.3


def test_author_score_caps_at_one():
    activity = {
        "authorPreferences": [
            {"authorId": "user_author", "isFollowing": True, "booksRead": 5, "averageRating": 5}
        ]
    }
    assert engine.author_score(_book(), activity) == pytest.approx(1.0)
    assert engine.author_score(_book(authorId="someone_else"), activity) == 0.0


def test_quality_and_freshness_defaults():
    assert engine.quality_score(_book()) == 0.5
    assert engine.quality_score(_book(qualityScore={"overallScore": 84})) == pytest.approx(0.84)

    assert engine.freshness_score(_book(), now=NOW) == 1.0
    assert engine.freshness_score(
        _book(publishingStatus={"publishedAt": _iso(17)}), now=NOW
    ) == pytest.approx(0.8)
    assert engine.freshness_score(_book(publishingStatus={"publishedAt": _iso(60)}), now=NOW) == 0.3
    assert engine.freshness_score(_book(publishingStatus={}), now=NOW) == 0.0


def test_negative_penalty_is_capped():
    abandons = [
        {"type": "abandon", "genre": "Fantasy", "metadata": {"wordCount": 60000}} for _ in range(4)
    ]
    activity = {
        "interactionEvents": abandons,
        "authorPreferences": [{"authorId": "user_author", "booksRead": 1, "averageRating": 2.0}],
    }
    long_book = _book(statistics={"wordCount": 80000})
    assert engine.negative_penalty(long_book, activity) == engine.MAX_PENALTY
    assert engine.negative_penalty(_book(genre="Poetry", authorId="x"), activity) == 0.0


def test_score_book_reasons():
    activity = {
        "genrePreferences": [
            {"genre": "Fantasy", "weight": 100, "readCount": 6, "writtenCount": 1, "lastInteraction": _iso(0)}
        ]
    }
    result = engine.score_book(_book(qualityScore={"overallScore": 90}), activity, now=NOW)
    assert "Matches your love for Fantasy" in result["reasons"]
    assert "Highly rated by AI" in result["reasons"]
    assert "New release" in result["reasons"]
    assert result["score"] > 0.5

    plain = engine.score_book(_book(publishingStatus={}), {}, now=NOW)
    assert plain["reasons"] == ["Recommended for you"]


def test_apply_interaction_tracks_reading_state():
    activity: dict = {}
    book = _book()
    engine.apply_interaction(activity, book=book, author_name="Ada", interaction_type="read")
    assert activity["currentlyReading"] == ["book_1"]
    assert activity["genrePreferences"][0]["weight"] == engine.NEW_GENRE_WEIGHT

    engine.apply_interaction(activity, book=book, author_name="Ada", interaction_type="complete", duration=30)
    assert activity["currentlyReading"] == []
    assert activity["completedBooks"] == ["book_1"]
    assert activity["totalBooksRead"] == 1
    assert activity["totalReadingTime"] == 30
    assert activity["genrePreferences"][0]["weight"] == engine.NEW_GENRE_WEIGHT + 10
    assert activity["authorPreferences"][0]["booksRead"] == 1

    engine.apply_interaction(activity, book=book, author_name="Ada", interaction_type="complete")
    assert activity["totalBooksRead"] == 1


def test_excluded_and_has_activity():
    assert engine.has_activity(None) is False
    assert engine.has_activity({"genrePreferences": []}) is False
    activity = {"completedBooks": ["a"], "currentlyReading": ["b"], "abandonedBooks": ["c"]}
    assert engine.has_activity(activity) is True
    assert engine.excluded_book_ids(activity) == {"a", "b", "c"}
