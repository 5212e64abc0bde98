from __future__ import annotations


def test_request_id_is_generated_and_returned(client):
    r = client.get("/")
    assert r.status_code == 200
    assert "X-Request-Id" in r.headers
    assert r.headers["X-Request-Id"]


def test_request_id_is_propagated_from_client(client):
    r = client.get("/", headers={"X-Request-Id": "abc-123"})
    assert r.status_code == 200
    assert r.headers.get("X-Request-Id") == "abc-123"


def test_health_reports_service_info(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    body = r.json()
    assert body["message"] == "MeStory API"
    assert body["status"] == "running"
    assert "POST /api/auth/register" in body["endpoints"]


def test_validation_errors_are_problem_json(client):
    # Missing required body fields => pydantic validation error
    r = client.post("/api/auth/login", json={})
    assert r.status_code == 422
    assert r.headers.get("content-type", "").startswith("application/problem+json")
    body = r.json()
    assert body["title"] == "Validation Failed"
    assert body["status"] == 422
    assert body["success"] is False
    assert "errors" in body and isinstance(body["errors"], list)
    assert {e["path"] for e in body["errors"]} >= {"email", "password"}
    assert body.get("requestId")


def test_404_is_problem_json(client):
    r = client.get("/this-route-does-not-exist")
    assert r.status_code == 404
    assert r.headers.get("content-type", "").startswith("application/problem+json")
    body = r.json()
    assert body["status"] == 404
    assert body.get("requestId")


def test_auth_denied_is_problem_json(client):
    r = client.get("/api/auth/me")
    assert r.status_code == 401
    assert r.headers.get("content-type", "").startswith("application/problem+json")
    body = r.json()
    assert body["status"] == 401
    assert body["title"] == "Unauthorized"
    assert body.get("requestId")


def test_invalid_token_is_rejected(client):
    r = client.get("/api/books", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid token"


def test_public_route_tolerates_stale_token(client):
    r = client.get("/api/subscription/plans", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 200
    plans = r.json()["data"]["plans"]
    assert [p["id"] for p in plans] == ["free", "standard", "premium"]
    assert [p["priceILS"] for p in plans] == [0, 99, 250]


def test_http_errors_carry_legacy_error_field(client, make_user, auth_headers):
    user = make_user()
    r = client.get("/api/books/book_missing", headers=auth_headers(user))
    assert r.status_code == 404
    body = r.json()
    assert body["detail"] == "Book not found"
    assert body["error"] == "Book not found"
