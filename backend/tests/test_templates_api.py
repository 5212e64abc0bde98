from __future__ import annotations

import pytest

from mestory.repositories import books_repo, templates_repo
from mestory.services import templates


@pytest.fixture
def seeded(table):
    assert templates.seed_system_templates() == len(templates.DEFAULT_TEMPLATES)
    return table


def test_seeding_is_idempotent(seeded):
    assert templates.seed_system_templates() == 0
    assert len(templates.list_system()) == len(templates.DEFAULT_TEMPLATES)


def test_public_listing_and_category_validation(client, seeded):
    r = client.get("/api/templates")
    assert r.status_code == 200
    assert r.json()["data"]["count"] == len(templates.DEFAULT_TEMPLATES)

    r = client.get("/api/templates/category/poetry")
    assert [t["name"] for t in r.json()["data"]["templates"]] == ["Poetry Collection"]

    r = client.get("/api/templates?category=comics")
    assert r.status_code == 400
    assert r.json()["detail"].startswith("Invalid category. Must be one of: academic")

    r = client.get(f"/api/templates/{templates.system_template_id('novel')}")
    assert r.json()["data"]["template"]["name"] == "Classic Novel"
    assert client.get("/api/templates/tpl_missing").status_code == 404


def test_search_and_recommendations(client, seeded):
    assert client.get("/api/templates/search?q=").status_code == 400
    found = client.get("/api/templates/search?q=travel").json()["data"]["templates"]
    assert "Travel Journal" in [t["name"] for t in found]

    recs = client.get("/api/templates/recommendations?genre=Fantasy").json()["data"]["templates"]
    assert {t["category"] for t in recs} == {"novel", "children", "custom"}


def test_system_templates_are_read_only(client, seeded, make_user, auth_headers):
    h = auth_headers(make_user())
    tid = templates.system_template_id("novel")
    r = client.put(f"/api/templates/{tid}", json={"name": "Mine now"}, headers=h)
    assert r.status_code == 403
    assert r.json()["detail"] == "Cannot modify system templates"
    r = client.delete(f"/api/templates/{tid}", headers=h)
    assert r.json()["detail"] == "Cannot delete system templates"


def test_user_template_lifecycle(client, table, make_user, auth_headers):
    owner, other = make_user(), make_user()
    h = auth_headers(owner)

    r = client.post(
        "/api/templates",
        json={"name": "Night Print", "category": "novel", "pageLayout": {"pageSize": "A5"}, "isSystem": True},
        headers=h,
    )
    assert r.status_code == 201
    created = r.json()["data"]["template"]
    assert created["isSystem"] is False
    assert created["createdBy"] == owner["userId"]
    tid = created["_id"]

    r = client.post("/api/templates", json={"name": "Odd", "pageLayout": {"pageSize": "B7"}}, headers=h)
    assert r.status_code == 400
    assert r.json()["detail"].startswith("Invalid page size")

    r = client.put(f"/api/templates/{tid}", json={"description": "Dark pages", "usageCount": 99}, headers=h)
    assert r.status_code == 200
    assert r.json()["data"]["template"]["description"] == "Dark pages"
    assert r.json()["data"]["template"]["usageCount"] == 0

    r = client.put(f"/api/templates/{tid}", json={"name": "Stolen"}, headers=auth_headers(other))
    assert r.status_code == 403
    assert r.json()["detail"] == "Not authorized to modify this template"

    mine = client.get("/api/templates/user/my-templates", headers=h).json()["data"]["templates"]
    assert [t["_id"] for t in mine] == [tid]

    assert client.delete(f"/api/templates/{tid}", headers=h).status_code == 200
    assert templates_repo.get_template(tid) is None


def test_clone_template(client, seeded, make_user, auth_headers):
    user = make_user()
    tid = templates.system_template_id("poetry")
    r = client.post(f"/api/templates/{tid}/clone", headers=auth_headers(user))
    assert r.status_code == 201
    clone = r.json()["data"]["template"]
    assert clone["name"] == "Poetry Collection (Copy)"
    assert clone["isSystem"] is False
    assert clone["createdBy"] == user["userId"]
    assert clone["_id"] != tid


def test_apply_template_sets_layout_and_cover(client, seeded, make_user, make_book, auth_headers):
    author = make_user()
    book = make_book(author)
    tid = templates.system_template_id("novel")

    r = client.post(
        f"/api/templates/books/{book['bookId']}/apply-template", json={"templateId": tid}, headers=auth_headers(author)
    )
    assert r.status_code == 200
    stored = books_repo.get_book(book["bookId"])
    assert stored["templateId"] == tid
    assert stored["pageLayout"]["headerFooter"]["pageNumberPosition"] in ("top", "bottom")
    assert stored["coverDesign"]["front"]["title"]["text"] == book["title"]
    assert templates_repo.get_template(tid)["usageCount"] == 1

    r = client.post(
        f"/api/templates/books/{book['bookId']}/apply-template",
        json={"templateId": tid},
        headers=auth_headers(make_user()),
    )
    assert r.status_code == 403


def test_save_book_as_template(client, table, make_user, make_book, auth_headers):
    author = make_user()
    book = make_book(author)
    r = client.post(
        f"/api/templates/books/{book['bookId']}/save-as-template",
        json={"name": "My House Style"},
        headers=auth_headers(author),
    )
    assert r.status_code == 201
    tpl = r.json()["data"]["template"]
    assert tpl["name"] == "My House Style"
    assert tpl["category"] == "custom"
    assert tpl["description"] == f'Custom template created from "{book["title"]}"'
    assert "user-created" in tpl["tags"]
