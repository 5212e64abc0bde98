from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from mestory.services import promotion

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _iso(days_ago: int) -> str:
    return (NOW - timedelta(days=days_ago)).isoformat().replace("+00:00", "Z")


def test_days_since():
    assert promotion.days_since(_iso(3), now=NOW) == 3
    assert promotion.days_since("not a date", now=NOW) is None
    assert promotion.days_since(None, now=NOW) is None


def test_velocity_score_weights_and_caps():
    assert promotion.velocity_score([]) == 0.0
    assert promotion.velocity_score([{"type": "view"}] * 20) == pytest.approx(1 / 30)
    assert promotion.velocity_score([{"type": "purchase"}] * 10 + [{"type": "abandon"}]) == pytest.approx(2 / 30)
    assert promotion.velocity_score([{"type": "share"}] * 1000) == 1.0


def test_social_and_conversion_scores():
    assert promotion.social_score(likes=0, shares=0, comments=0) == 0.0
    assert promotion.social_score(likes=999, shares=200, comments=333) == pytest.approx(1.0)
    assert promotion.conversion_score(views=0, purchases=3, completion_rate=1) == 0.0
    assert promotion.conversion_score(views=100, purchases=5, completion_rate=0.5) == pytest.approx(0.5)


def test_new_author_credibility():
    assert promotion.author_credibility([]) == promotion.NEW_AUTHOR_CREDIBILITY
    veteran = [
        {"statistics": {"views": 100000, "purchases": 1000}, "qualityScore": {"overallScore": 100}}
        for _ in range(10)
    ]
    assert promotion.author_credibility(veteran) == pytest.approx(1.0)


def test_promotion_score_badges():
    book = {
        "likes": 150,
        "qualityScore": {"overallScore": 92},
        "statistics": {"views": 10, "purchases": 1, "shares": 60, "comments": 25},
        "publishingStatus": {"price": 0, "isFree": True, "publishedAt": _iso(2)},
    }
    result = promotion.promotion_score(book, velocity=0.8, credibility=0.9, now=NOW)
    for badge in ("MASTERPIECE", "TRENDING", "POPULAR", "VIRAL", "ENGAGING", "TOP_AUTHOR", "FREE", "NEW"):
        assert badge in result["badges"]
    assert 0 < result["score"] <= 1
    assert result["breakdown"]["quality"] == pytest.approx(0.92)


def test_promotion_score_for_paid_older_book():
    book = {
        "qualityScore": {"overallScore": 72},
        "statistics": {},
        "publishingStatus": {"price": 9.99, "isFree": False, "publishedAt": _iso(40)},
    }
    result = promotion.promotion_score(book, velocity=0.0, credibility=0.1, now=NOW)
    assert result["badges"] == ["HIGH_QUALITY"]
    assert result["score"] == pytest.approx(0.72 * 0.35 + 0.1 * 0.10)


def test_genre_badge():
    assert promotion.genre_badge("Science Fiction") == "TOP_SCIENCE_FICTION"
