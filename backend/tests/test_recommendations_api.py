from __future__ import annotations

from mestory.repositories import activity_repo
from mestory.services.recommendations import TRENDING_REASON


def _library(make_user, make_book):
    author = make_user(name="Ursula")
    first = make_book(author, published=True, title="Wizard of the Isles")
    second = make_book(author, published=True, title="Tombs of the Isles")
    other = make_book(author, published=True, title="Night House", genre="Horror")
    return author, first, second, other


def test_public_lists_need_no_token(client, make_user, make_book):
    _, first, second, other = _library(make_user, make_book)

    data = client.get("/api/recommendations/trending").json()["data"]
    assert data["count"] == 3
    assert data["reasons"][first["bookId"]] == [TRENDING_REASON]
    assert data["books"][0]["author"]["name"] == "Ursula"

    genre = client.get("/api/recommendations/genre/fantasy").json()["data"]
    assert {b["title"] for b in genre["books"]} == {"Wizard of the Isles", "Tombs of the Isles"}

    similar = client.get(f"/api/recommendations/similar/{first['bookId']}").json()["data"]
    assert [b["title"] for b in similar["books"]] == ["Tombs of the Isles"]
    assert client.get("/api/recommendations/similar/book_missing").status_code == 404

    authors = client.get("/api/recommendations/top-authors").json()["data"]["authors"]
    assert authors[0]["totalBooks"] == 3

    releases = client.get("/api/recommendations/new-releases").json()["data"]
    assert releases["count"] == 3


def test_new_reader_gets_trending(client, make_user, make_book, auth_headers):
    _library(make_user, make_book)
    reader = make_user()
    data = client.get("/api/recommendations", headers=auth_headers(reader)).json()["data"]
    assert data["count"] == 3
    assert all(r == [TRENDING_REASON] for r in data["reasons"].values())


def test_interaction_validation(client, make_user, make_book, auth_headers):
    _, first, _, _ = _library(make_user, make_book)
    h = auth_headers(make_user())

    r = client.post("/api/recommendations/interaction", json={"bookId": first["bookId"], "type": "stare"}, headers=h)
    assert r.status_code == 400
    assert r.json()["detail"].startswith("Invalid interaction type. Must be one of: view, read")

    r = client.post("/api/recommendations/interaction", json={"bookId": "book_missing", "type": "view"}, headers=h)
    assert r.status_code == 404

    r = client.post("/api/recommendations/interaction", json={"bookId": first["bookId"], "type": "like"}, headers=h)
    assert r.status_code == 200
    assert r.json()["message"] == "Interaction recorded"


def test_finishing_a_book_drives_personalized_results(client, make_user, make_book, auth_headers):
    _, first, second, other = _library(make_user, make_book)
    reader = make_user()
    h = auth_headers(reader)

    r = client.post(
        "/api/recommendations/reading-progress",
        json={"bookId": first["bookId"], "progress": 100, "chapter": 2, "readingTime": 600},
        headers=h,
    )
    assert r.status_code == 200
    entry = r.json()["data"]["progress"]
    assert entry["isCompleted"] is True
    assert entry["totalReadingTime"] == 600

    activity = activity_repo.get_activity(reader["userId"])
    assert activity["completedBooks"] == [first["bookId"]]
    assert activity["totalBooksRead"] == 1

    data = client.get("/api/recommendations", headers=h).json()["data"]
    titles = [b["title"] for b in data["books"]]
    assert "Wizard of the Isles" not in titles
    assert titles[0] == "Tombs of the Isles"
    assert data["reasons"][second["bookId"]] == ["New release"]

    sections = client.get("/api/recommendations/because-you-read", headers=h).json()["data"]["sections"]
    assert sections[0]["basedOn"]["_id"] == first["bookId"]
    assert [b["_id"] for b in sections[0]["recommendations"]] == [second["bookId"]]


def test_continue_reading_and_writing(client, make_user, make_book, auth_headers):
    author, _, _, other = _library(make_user, make_book)
    make_book(author, title="Work In Progress")
    reader = make_user()

    client.post("/api/recommendations/interaction", json={"bookId": other["bookId"], "type": "read"},
                headers=auth_headers(reader))
    client.post("/api/recommendations/reading-progress", json={"bookId": other["bookId"], "progress": 40},
                headers=auth_headers(reader))

    reading = client.get("/api/recommendations/continue-reading", headers=auth_headers(reader)).json()["data"]
    assert [b["title"] for b in reading["books"]] == ["Night House"]

    details = client.get("/api/recommendations/progress-details", headers=auth_headers(reader)).json()["data"]
    assert details["continueReading"][0]["progress"] == 40

    writing = client.get("/api/recommendations/continue-writing", headers=auth_headers(author)).json()["data"]
    assert [b["title"] for b in writing["books"]] == ["Work In Progress"]

    feed = client.get("/api/recommendations/personalized-feed", headers=auth_headers(reader)).json()["data"]
    assert set(feed) == {
        "recommendedForYou",
        "continueReading",
        "continueWriting",
        "becauseYouRead",
        "trending",
        "newReleases",
    }
