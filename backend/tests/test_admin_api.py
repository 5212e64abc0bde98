from __future__ import annotations

import pytest

from datetime import datetime, timedelta, timezone

from mestory.repositories import activity_repo, books_repo, notifications_repo, users_repo
from mestory.services import plans


@pytest.fixture
def admin(make_user):
    return make_user(name="Root", role="admin")


def test_admin_routes_require_admin_role(client, make_user, auth_headers):
    r = client.get("/api/admin/stats", headers=auth_headers(make_user()))
    assert r.status_code == 403
    assert r.json()["detail"] == "Access denied. Admin privileges required."
    assert client.get("/api/admin/stats").status_code == 401


def test_stats_overview(client, admin, make_user, make_book, auth_headers):
    author = make_user(role="standard")
    make_book(author, published=True, price=10)
    make_book(author)

    data = client.get("/api/admin/stats", headers=auth_headers(admin)).json()["data"]
    assert data["overview"]["totalUsers"] == 2
    assert data["overview"]["totalBooks"] == 2
    assert data["overview"]["publishedBooks"] == 1
    assert data["users"]["standard"] == 1
    assert data["users"]["admin"] == 1
    assert data["books"]["drafts"] == 1


def test_list_users_filters_and_paginates(client, admin, make_user, auth_headers):
    make_user(name="Alice Reader")
    make_user(name="Bob Writer", role="premium")
    h = auth_headers(admin)

    data = client.get("/api/admin/users?role=premium", headers=h).json()["data"]
    assert [u["name"] for u in data["users"]] == ["Bob Writer"]

    data = client.get("/api/admin/users?search=alice", headers=h).json()["data"]
    assert [u["name"] for u in data["users"]] == ["Alice Reader"]
    assert "passwordHash" not in data["users"][0]

    data = client.get("/api/admin/users?role=all&limit=2&page=2", headers=h).json()["data"]
    assert data["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}
    assert len(data["users"]) == 1


def test_update_user_role_resets_credits(client, admin, make_user, auth_headers):
    user = make_user()
    h = auth_headers(admin)

    r = client.put(f"/api/admin/users/{user['userId']}", json={"role": "premium"}, headers=h)
    assert r.status_code == 200
    assert r.json()["message"] == "User updated successfully"
    assert r.json()["data"]["user"]["credits"] == plans.UNLIMITED_CREDITS

    r = client.put(f"/api/admin/users/{user['userId']}", json={"role": "standard", "credits": 42}, headers=h)
    assert r.json()["data"]["user"] == {
        "id": user["userId"],
        "name": user["name"],
        "email": user["email"],
        "role": "standard",
        "credits": 42,
    }

    r = client.put(f"/api/admin/users/{user['userId']}", json={"action": "ban"}, headers=h)
    assert r.json()["data"]["user"]["role"] == "free"
    assert r.json()["data"]["user"]["credits"] == 0
    assert users_repo.get_user_by_id(user["userId"])["bannedAt"]


def test_admins_are_protected(client, admin, make_user, auth_headers):
    other_admin = make_user(role="admin")
    h = auth_headers(admin)
    r = client.put(f"/api/admin/users/{other_admin['userId']}", json={"credits": 1}, headers=h)
    assert r.status_code == 403
    assert r.json()["detail"] == "Cannot modify other admin accounts"
    r = client.delete(f"/api/admin/users/{other_admin['userId']}", headers=h)
    assert r.json()["detail"] == "Cannot delete admin accounts"
    assert client.put("/api/admin/users/user_missing", json={}, headers=h).status_code == 404


def test_delete_user_removes_their_books(client, admin, make_user, make_book, auth_headers):
    user = make_user()
    book = make_book(user, published=True)
    r = client.delete(f"/api/admin/users/{user['userId']}", headers=auth_headers(admin))
    assert r.status_code == 200
    assert users_repo.get_user_by_id(user["userId"]) is None
    assert users_repo.get_user_by_email(user["email"]) is None
    assert books_repo.get_book(book["bookId"]) is None


def test_flagged_books_and_unpublish(client, admin, make_user, make_book, auth_headers):
    author = make_user(name="Weak Writer")
    weak = make_book(author, published=True, title="Rough Draft")
    polished = make_book(author, published=True, title="Polished")
    books_repo.update_book(weak["bookId"], {"qualityScore": {"overallScore": 40}})
    books_repo.update_book(polished["bookId"], {"qualityScore": {"overallScore": 88}})
    make_book(author, published=True, title="Unscored")
    users_repo.add_user_counters(author["userId"], {"profile.authorProfile.publishedBooks": 3})
    h = auth_headers(admin)

    flagged = client.get("/api/admin/books/flagged", headers=h).json()["data"]["books"]
    assert [b["title"] for b in flagged] == ["Rough Draft"]
    assert flagged[0]["author"]["name"] == "Weak Writer"

    r = client.put(f"/api/admin/books/{weak['bookId']}/unpublish", json={"reason": "Plagiarism"}, headers=h)
    assert r.status_code == 200
    assert r.json()["data"] == {"bookId": weak["bookId"], "reason": "Plagiarism"}

    stored = books_repo.get_book(weak["bookId"])
    assert stored["publishingStatus"]["status"] == "unpublished"
    assert stored["publishingStatus"]["isPublic"] is False
    author_item = users_repo.get_user_by_id(author["userId"])
    assert author_item["profile"]["authorProfile"]["publishedBooks"] == 2
    notes = notifications_repo.list_notifications(author["userId"])
    assert notes[0]["type"] == "system"
    assert notes[0]["message"].endswith("Reason: Plagiarism")


def test_analytics_endpoints(client, admin, make_user, make_book, auth_headers):
    author, buyer = make_user(name="Author"), make_user()
    book = make_book(author, published=True, price=10)
    client.post(f"/api/books/{book['bookId']}/purchase", headers=auth_headers(buyer))
    h = auth_headers(admin)

    top = client.get("/api/admin/analytics/top-books?sortBy=revenue", headers=h).json()["data"]["books"]
    assert top[0]["bookId"] == book["bookId"]
    assert top[0]["author"] == "Author"
    assert top[0]["revenue"] == 10.0

    r = client.get("/api/admin/analytics/top-books?sortBy=likes", headers=h)
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid sortBy. Must be one of: views, purchases, quality, revenue"

    revenue = client.get("/api/admin/analytics/revenue?days=7", headers=h).json()["data"]
    assert revenue["bookSalesRevenue"] == 10.0
    assert revenue["topEarningAuthors"][0]["name"] == "Author"

    genres = client.get("/api/admin/analytics/genres", headers=h).json()["data"]["genres"]
    assert genres[0]["genre"] == "Fantasy"

    needs = client.get("/api/admin/analytics/books-need-evaluation", headers=h).json()["data"]
    assert needs["count"] == 1

    trends = client.get("/api/admin/analytics/activity-trends", headers=h).json()["data"]["trends"]
    assert trends[0]["breakdown"]["purchase"] == 1

    funnel = client.get("/api/admin/analytics/engagement-funnel", headers=h).json()["data"]
    assert funnel["registered"] == 3
    assert funnel["purchasers"] == 1

    for path in ("metrics", "real-time", "top-authors", "churned-users", "social-engagement"):
        assert client.get(f"/api/admin/analytics/{path}", headers=h).status_code == 200


def test_social_engagement_details(client, admin, make_user, make_book, auth_headers):
    author, fan = make_user(name="Author"), make_user(name="Fan")
    book = make_book(author, published=True, title="Tidewater")
    fh = auth_headers(fan)
    client.post(f"/api/books/{book['bookId']}/like", headers=fh)
    client.post(f"/api/books/{book['bookId']}/share", json={"platform": "twitter"}, headers=fh)
    client.post(f"/api/books/{book['bookId']}/review", json={"rating": 5, "comment": "Wonderful"}, headers=fh)
    conv = client.post("/api/messages/conversation", json={"authorId": author["userId"]}, headers=fh).json()["data"]
    client.post(
        "/api/messages/send", json={"conversationId": conv["conversation"]["_id"], "content": "More please"}, headers=fh
    )
    h = auth_headers(admin)

    users = client.get("/api/admin/analytics/engaged-users", headers=h).json()["data"]["users"]
    top = users[0]
    assert top["name"] == "Fan"
    assert (top["totalLikes"], top["totalShares"], top["totalComments"]) == (1, 1, 1)
    assert (top["conversationsStarted"], top["messagesSent"]) == (1, 1)
    # 1 + 1*5 + 1*3 + 1*2 + 1*0.5
    assert top["engagementScore"] == 11.5

    books = client.get("/api/admin/analytics/engaged-books", headers=h).json()["data"]["books"]
    assert books == [
        {
            "bookId": book["bookId"],
            "title": "Tidewater",
            "authorName": "Author",
            "likes": 1,
            "shares": 1,
            "comments": 1,
            "engagementScore": 9,
            "socialVelocity": 3,
        }
    ]

    trends = client.get("/api/admin/analytics/social-trends?days=7", headers=h).json()["data"]["trends"]
    assert len(trends) == 1
    assert {k: trends[0][k] for k in ("likes", "shares", "comments", "total")} == {
        "likes": 1,
        "shares": 1,
        "comments": 1,
        "total": 3,
    }


def test_inactive_new_users(client, admin, make_user, auth_headers):
    idle = make_user(name="Idle")
    reader = make_user(name="Reader")
    activity = activity_repo.get_or_create_activity(reader["userId"])
    activity["totalBooksRead"] = 1
    activity_repo.save_activity(activity)
    old = (datetime.now(timezone.utc) - timedelta(days=30)).isoformat().replace("+00:00", "Z")
    make_user(name="Veteran", createdAt=old)

    data = client.get("/api/admin/analytics/inactive-new-users?days=7", headers=auth_headers(admin)).json()["data"]
    names = {u["name"] for u in data["users"]}
    assert names == {"Idle", "Root"}
    entry = next(u for u in data["users"] if u["userId"] == idle["userId"])
    assert entry["daysSinceRegistration"] == 0
    assert entry["email"] == idle["email"]
