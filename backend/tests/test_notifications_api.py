from __future__ import annotations

import pytest

from mestory.repositories import notifications_repo
from mestory.services import notifications


def _seed(user_id: str, n: int = 3) -> list[str]:
    ids = []
    for i in range(n):
        item = notifications.notify_system(user_id=user_id, title=f"Notice {i}", message="Scheduled maintenance")
        ids.append(item["notificationId"])
    return ids


def test_create_rejects_unknown_type(table):
    with pytest.raises(ValueError):
        notifications_repo.create_notification(recipient_id="u1", type="bogus", title="t", message="m")
    # notify() logs instead of raising
    assert notifications.notify(recipient_id="u1", type="bogus", title="t", message="m") is None


def test_self_interactions_do_not_notify(table):
    assert notifications.notify_book_like(book_id="b1", liker_id="u1", author_id="u1") is None
    assert notifications.notify_new_follower(author_id="u1", follower_id="u1") is None


def test_list_unread_count_and_pagination(client, make_user, auth_headers):
    user = make_user()
    _seed(user["userId"], 3)
    h = auth_headers(user)

    data = client.get("/api/notifications?limit=2", headers=h).json()["data"]
    assert len(data["notifications"]) == 2
    assert data["unreadCount"] == 3
    assert data["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
    first = data["notifications"][0]
    assert first["_id"]
    assert "expiresAt" not in first
    assert first["isRead"] is False
    assert first["readAt"] is None
    assert "pk" not in first

    assert client.get("/api/notifications/unread-count", headers=h).json()["data"] == {"unreadCount": 3}


def test_mark_read_and_read_all(client, make_user, auth_headers):
    user = make_user()
    ids = _seed(user["userId"], 3)
    h = auth_headers(user)

    r = client.put(f"/api/notifications/{ids[0]}/read", headers=h)
    assert r.status_code == 200
    assert r.json()["data"]["notification"]["isRead"] is True
    assert r.json()["data"]["notification"]["readAt"]

    r = client.put("/api/notifications/read-all", headers=h)
    assert r.json()["data"] == {"modifiedCount": 2}
    assert notifications.unread_count(user["userId"]) == 0


def test_archive_hides_and_delete_removes(client, make_user, auth_headers):
    user = make_user()
    ids = _seed(user["userId"], 2)
    h = auth_headers(user)

    assert client.put(f"/api/notifications/{ids[0]}/archive", headers=h).status_code == 200
    data = client.get("/api/notifications", headers=h).json()["data"]
    assert [n["_id"] for n in data["notifications"]] == [ids[1]]
    data = client.get("/api/notifications?includeArchived=true", headers=h).json()["data"]
    assert len(data["notifications"]) == 2

    assert client.delete(f"/api/notifications/{ids[1]}", headers=h).status_code == 200
    r = client.delete(f"/api/notifications/{ids[1]}", headers=h)
    assert r.status_code == 404
    assert r.json()["detail"] == "Notification not found"


def test_notifications_are_private(client, make_user, auth_headers):
    owner, other = make_user(), make_user()
    ids = _seed(owner["userId"], 1)
    r = client.put(f"/api/notifications/{ids[0]}/read", headers=auth_headers(other))
    assert r.status_code == 404


def test_summary_groups_by_type(client, make_user, make_book, auth_headers):
    author, fan = make_user(), make_user(name="Fan")
    book = make_book(author, published=True)
    notifications.notify_book_like(book_id=book["bookId"], liker_id=fan["userId"], author_id=author["userId"])
    notifications.notify_new_follower(author_id=author["userId"], follower_id=fan["userId"])
    notifications.notify_system(user_id=author["userId"], title="Hi", message="Welcome")

    data = client.get("/api/notifications/summary", headers=auth_headers(author)).json()["data"]
    assert data["total"] == 3
    assert data["unread"] == 3
    assert data["byType"] == {"like": 1, "new_follower": 1, "system": 1}
