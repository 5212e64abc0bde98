from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from mestory.repositories import books_repo, notifications_repo


def _scored(make_book, author, title, score, **fields):
    book = make_book(author, published=True, title=title, **fields)
    books_repo.update_book(book["bookId"], {"qualityScore": {"overallScore": score}})
    return book


def test_featured_requires_quality(client, make_user, make_book):
    author = make_user(name="Mira")
    great = _scored(make_book, author, "Tidewater", 90)
    _scored(make_book, author, "Midling", 60)

    data = client.get("/api/promotions/featured").json()["data"]
    assert data["count"] == 1
    entry = data["books"][0]
    assert entry["book"]["_id"] == great["bookId"]
    assert entry["book"]["author"]["name"] == "Mira"
    assert "Exceptional writing quality" in entry["promotionReasons"]


def test_genre_and_summary_are_public(client, make_user, make_book):
    author = make_user()
    _scored(make_book, author, "Tidewater", 82)
    _scored(make_book, author, "Cellar Door", 70, genre="Horror")

    genre = client.get("/api/promotions/genre/Horror").json()["data"]
    assert genre["genre"] == "Horror"
    assert [b["book"]["title"] for b in genre["books"]] == ["Cellar Door"]

    summary = client.get("/api/promotions/summary").json()["data"]
    assert summary["totalFeatured"] == 1
    assert {g["genre"] for g in summary["topGenres"]} == {"Fantasy", "Horror"}

    for path in ("rising-stars", "quality-releases", "trending", "top-authors"):
        assert client.get(f"/api/promotions/{path}").status_code == 200


def test_notify_promotion_is_admin_only(client, make_user, make_book, auth_headers):
    author = make_user()
    book = make_book(author, published=True, title="Tidewater")
    admin = make_user(role="admin")

    r = client.post(f"/api/promotions/notify/{book['bookId']}", json={"type": "FEATURED"}, headers=auth_headers(author))
    assert r.status_code == 403

    r = client.post(f"/api/promotions/notify/{book['bookId']}", json={"type": "HOT"}, headers=auth_headers(admin))
    assert r.status_code == 400
    assert r.json()["detail"].startswith("Invalid promotion type")

    r = client.post(f"/api/promotions/notify/{book['bookId']}", json={"type": "FEATURED"}, headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.json()["data"] == {"notified": True}
    note = notifications_repo.list_notifications(author["userId"])[0]
    assert note["type"] == "promotion"
    assert note["message"] == '"Tidewater" was selected as a featured book and will get extra exposure'


def _events(book, event_type, n):
    for _ in range(n):
        books_repo.record_event(book_id=book["bookId"], user_id=None, event_type=event_type)


def _days_ago(days):
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat().replace("+00:00", "Z")


def test_rising_stars_need_velocity_and_get_a_boost(client, make_user, make_book):
    author = make_user()
    quick = make_book(author, published=True, title="Quickening")
    slow = make_book(author, published=True, title="Slow Burn")
    _events(quick, "share", 30)  # 30 * 0.2 / 30 = 0.2
    _events(slow, "share", 5)

    data = client.get("/api/promotions/rising-stars").json()["data"]
    assert data["count"] == 1
    entry = data["books"][0]
    assert entry["book"]["_id"] == quick["bookId"]
    assert entry["badges"] == ["FREE", "NEW", "RISING_STAR"]
    assert entry["promotionReasons"] == ["Rising in popularity", "Gaining readers quickly"]

    trending = client.get("/api/promotions/trending").json()["data"]["books"]
    base = next(b for b in trending if b["book"]["_id"] == quick["bookId"])
    assert entry["promotionScore"] == pytest.approx(base["promotionScore"] + 0.5 * 0.2, abs=1e-3)


def test_trending_orders_by_velocity_and_marks_hot_books(client, make_user, make_book):
    author = make_user()
    hot = make_book(author, published=True, title="Hot")
    warm = make_book(author, published=True, title="Warm")
    _events(hot, "share", 80)
    _events(warm, "share", 30)

    books = client.get("/api/promotions/trending").json()["data"]["books"]
    assert [b["book"]["title"] for b in books] == ["Hot", "Warm"]
    assert "HOT" in books[0]["badges"]
    assert books[0]["promotionReasons"] == ["Trending this week", "53% engagement growth"]
    assert "HOT" not in books[1]["badges"]
    assert books[1]["promotionReasons"][1] == "20% engagement growth"


def test_top_authors_rank_by_credibility(client, make_user, make_book):
    newcomer, veteran = make_user(name="Newcomer"), make_user(name="Veteran")
    make_book(newcomer, published=True, title="First Light")
    for title in ("Ebb", "Flow", "Undertow"):
        b = make_book(veteran, published=True, title=title)
        books_repo.update_book(
            b["bookId"],
            {"statistics.views": 5000, "statistics.purchases": 40, "qualityScore": {"overallScore": 88}},
        )

    authors = client.get("/api/promotions/top-authors").json()["data"]["authors"]
    assert [a["name"] for a in authors] == ["Veteran", "Newcomer"]
    assert authors[0]["totalBooks"] == 3
    assert authors[0]["totalReaders"] == 15000
    assert authors[0]["averageQuality"] == 88
    assert len(authors[0]["featuredBooks"]) == 3
    # One unscored book with no readers: 0.1 * 0.2 + 0.5 * 0.25
    assert authors[1]["credibilityScore"] == 0.145
    assert authors[0]["credibilityScore"] > authors[1]["credibilityScore"]


def test_quality_releases_filter_by_views_and_purchases(client, make_user, make_book):
    author = make_user()
    popular = _scored(make_book, author, "Popular", 80)
    books_repo.update_book(
        popular["bookId"],
        {"publishingStatus.publishedAt": _days_ago(3), "statistics.views": 50, "statistics.purchases": 2},
    )
    quiet = make_book(author, published=True, title="Quiet")
    books_repo.update_book(quiet["bookId"], {"publishingStatus.publishedAt": _days_ago(1), "statistics.views": 5})
    old = make_book(author, published=True, title="Old")
    books_repo.update_book(old["bookId"], {"publishingStatus.publishedAt": _days_ago(40)})

    books = client.get("/api/promotions/quality-releases").json()["data"]["books"]
    assert [b["book"]["title"] for b in books] == ["Quiet", "Popular"]
    assert books[0]["promotionReasons"] == ["Published 1 day ago"]
    assert books[1]["promotionReasons"] == ["Published 3 days ago", "High quality score"]
    assert all("NEW_RELEASE" in b["badges"] for b in books)

    filtered = client.get("/api/promotions/quality-releases?minViews=10&minPurchases=1").json()["data"]
    assert [b["book"]["title"] for b in filtered["books"]] == ["Popular"]
    assert client.get("/api/promotions/quality-releases?minPurchases=3").json()["data"]["count"] == 0
