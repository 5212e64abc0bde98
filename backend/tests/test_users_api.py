from __future__ import annotations

from mestory.auth.passwords import verify_password
from mestory.repositories import notifications_repo, users_repo


def test_public_profile_lists_published_books_only(client, make_user, make_book):
    author = make_user(name="Octavia")
    make_book(author, title="Unfinished")
    make_book(author, title="Parable", published=True)

    r = client.get(f"/api/user/profile/{author['userId']}")
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["user"]["name"] == "Octavia"
    assert "email" not in data["user"]
    assert [b["title"] for b in data["books"]] == ["Parable"]
    assert data["isFollowing"] is False

    assert client.get("/api/user/profile/user_nope").status_code == 404


def test_follow_toggle_and_notification(client, make_user, auth_headers):
    author, fan = make_user(name="Author"), make_user(name="Fan")
    url = f"/api/user/{author['userId']}/follow"

    r = client.post(url, headers=auth_headers(fan))
    assert r.json()["data"] == {"isFollowing": True, "followersCount": 1}
    assert users_repo.get_user_by_id(fan["userId"])["profile"]["following"] == [author["userId"]]

    notes = notifications_repo.list_notifications(author["userId"])
    assert [n["message"] for n in notes] == ["Fan started following you"]

    profile = client.get(f"/api/user/profile/{author['userId']}", headers=auth_headers(fan)).json()["data"]
    assert profile["isFollowing"] is True

    r = client.post(url, headers=auth_headers(fan))
    assert r.json()["data"] == {"isFollowing": False, "followersCount": 0}

    r = client.post(f"/api/user/{fan['userId']}/follow", headers=auth_headers(fan))
    assert r.status_code == 400
    assert r.json()["detail"] == "You cannot follow yourself"


def test_change_password(client, make_user, auth_headers):
    user = make_user()
    h = auth_headers(user)

    r = client.put("/api/user/password", json={"oldPassword": "Secret123"}, headers=h)
    assert r.json()["detail"] == "Current password and new password are required"
    r = client.put("/api/user/password", json={"oldPassword": "Secret123", "newPassword": "abc"}, headers=h)
    assert r.json()["detail"] == "New password must be at least 6 characters"
    r = client.put("/api/user/password", json={"oldPassword": "nope", "newPassword": "Better456"}, headers=h)
    assert r.status_code == 400
    assert r.json()["detail"] == "Current password is incorrect"

    r = client.put("/api/user/password", json={"oldPassword": "Secret123", "newPassword": "Better456"}, headers=h)
    assert r.status_code == 200
    assert verify_password("Better456", users_repo.get_user_by_id(user["userId"])["passwordHash"])


def test_withdraw_requires_paypal_and_balance(client, make_user, auth_headers):
    user = make_user()
    users_repo.update_user(user["userId"], {"profile.earnings.pendingPayout": 30})
    h = auth_headers(user)

    r = client.post("/api/user/withdraw", json={"amount": 5}, headers=h)
    assert r.json()["detail"] == "Minimum withdrawal amount is $10"
    r = client.post("/api/user/withdraw", json={"amount": 20}, headers=h)
    assert r.json()["detail"] == "Please connect a PayPal account before withdrawing"

    r = client.put("/api/user/paypal", json={"email": "Payouts@Example.com"}, headers=h)
    assert r.json()["data"] == {"paypalEmail": "payouts@example.com"}

    r = client.post("/api/user/withdraw", json={"amount": 50}, headers=h)
    assert r.json()["detail"] == "Insufficient balance. Available: $30.00"

    r = client.post("/api/user/withdraw", json={"amount": 20}, headers=h)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["withdrawal"]["status"] == "pending"
    assert data["earnings"]["pendingPayout"] == 10
    assert data["earnings"]["withdrawn"] == 20
    assert len(data["earnings"]["history"]) == 1


def test_earnings_summary_after_sale(client, make_user, make_book, auth_headers):
    author, buyer = make_user(), make_user()
    book = make_book(author, published=True, price=8)
    client.post(f"/api/books/{book['bookId']}/purchase", headers=auth_headers(buyer))

    data = client.get("/api/user/earnings", headers=auth_headers(author)).json()["data"]
    assert data["totalRevenue"] == 8
    assert data["totalEarned"] == 4
    assert data["totalSales"] == 1
    assert data["pendingPayout"] == 4
    assert data["topBooks"][0]["bookId"] == book["bookId"]
