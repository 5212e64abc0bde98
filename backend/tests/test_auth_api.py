from __future__ import annotations

from mestory.repositories import users_repo


def _register(client, email="ada@mestory.io", password="Secret123", name="Ada Lovelace"):
    return client.post("/api/auth/register", json={"name": name, "email": email, "password": password})


def test_register_returns_token_and_requires_verification(client, table):
    r = _register(client)
    assert r.status_code == 201
    data = r.json()["data"]
    assert data["token"]
    assert data["requiresVerification"] is True
    user = data["user"]
    assert user["email"] == "ada@mestory.io"
    assert user["role"] == "free"
    assert user["credits"] == 100
    assert "passwordHash" not in user
    assert user["emailVerification"] == {"isVerified": False}


def test_register_rejects_weak_password_and_duplicates(client, table):
    r = _register(client, password="alllowercase1")
    assert r.status_code == 400
    assert r.json()["detail"] == "Password must contain at least one uppercase letter"

    assert _register(client).status_code == 201
    r = _register(client, email="ADA@mestory.io")
    assert r.status_code == 400
    assert r.json()["detail"] == "User with this email already exists"


def test_login_and_me(client, table):
    _register(client)
    bad = client.post("/api/auth/login", json={"email": "ada@mestory.io", "password": "Wrong1234"})
    assert bad.status_code == 401
    assert bad.json()["detail"] == "Invalid email or password"

    r = client.post("/api/auth/login", json={"email": "ada@mestory.io", "password": "Secret123"})
    assert r.status_code == 200
    token = r.json()["data"]["token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["data"]["name"] == "Ada Lovelace"
    assert me.json()["data"]["lastLoginAt"]


def test_verify_email_flow(client, table):
    data = _register(client).json()["data"]
    headers = {"Authorization": f"Bearer {data['token']}"}
    stored = users_repo.get_user_by_id(data["user"]["id"])
    code = stored["emailVerification"]["code"]

    assert client.post("/api/auth/verify-email", json={}, headers=headers).json()["detail"] == (
        "Verification code is required"
    )
    wrong = "000000" if code != "000000" else "111111"
    r = client.post("/api/auth/verify-email", json={"code": wrong}, headers=headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid verification code"

    r = client.post("/api/auth/verify-email", json={"code": code}, headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["user"]["emailVerification"]["isVerified"] is True

    r = client.post("/api/auth/verify-email", json={"code": code}, headers=headers)
    assert r.json()["detail"] == "Email is already verified"
    assert client.post("/api/auth/resend-verification", headers=headers).status_code == 400


def test_expired_verification_code(client, table):
    data = _register(client).json()["data"]
    headers = {"Authorization": f"Bearer {data['token']}"}
    uid = data["user"]["id"]
    users_repo.update_user(
        uid,
        {"emailVerification": {"isVerified": False, "code": "123456", "expiresAt": "2020-01-01T00:00:00Z"}},
    )
    r = client.post("/api/auth/verify-email", json={"code": "123456"}, headers=headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "Verification code has expired. Please request a new one."

    assert client.post("/api/auth/resend-verification", headers=headers).status_code == 200
    assert users_repo.get_user_by_id(uid)["emailVerification"]["code"] != "123456"


def test_profile_update(client, make_user, auth_headers):
    user = make_user()
    headers = auth_headers(user)
    assert client.put("/api/auth/profile", json={}, headers=headers).status_code == 400

    r = client.put("/api/auth/profile", json={"name": "Grace", "bio": "Writes sea stories"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["name"] == "Grace"
    assert r.json()["data"]["profile"]["bio"] == "Writes sea stories"


def test_auth_routes_are_rate_limited(client, table):
    for _ in range(5):
        client.post("/api/auth/login", json={"email": "nobody@mestory.io", "password": "Wrong1234"})
    r = client.post("/api/auth/login", json={"email": "nobody@mestory.io", "password": "Wrong1234"})
    assert r.status_code == 429
    assert r.headers.get("Retry-After")
    assert r.json()["detail"] == "Too many authentication attempts, please try again later"


def test_expired_rate_limit_buckets_are_pruned(client, table):
    from mestory.middleware.rate_limit import RateLimitMiddleware, _Bucket

    RateLimitMiddleware._buckets["api:10.0.0.1"] = _Bucket(window_start=0.0, count=3, window_s=60.0)
    RateLimitMiddleware._buckets["api:10.0.0.2"] = _Bucket(window_start=1000.0, count=1, window_s=60.0)
    assert RateLimitMiddleware.prune(1030.0) == 1
    assert set(RateLimitMiddleware._buckets) == {"api:10.0.0.2"}

    # A live request sweeps stale buckets left by other clients.
    RateLimitMiddleware._last_prune = 0.0
    client.get("/api/books/public")
    assert "api:10.0.0.2" not in RateLimitMiddleware._buckets
    assert len(RateLimitMiddleware._buckets) == 1
