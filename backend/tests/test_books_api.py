from __future__ import annotations

from mestory.repositories import books_repo, notifications_repo, users_repo

SYNOPSIS = (
    "A lighthouse keeper on a remote island discovers that the beam she tends each night "
    "is the only thing holding back an ancient tide of forgotten memories."
)


def test_create_book_counts_words_and_tracks_author(client, make_user, auth_headers):
    author = make_user()
    r = client.post(
        "/api/books",
        json={
            "title": "Salt and Stone",
            "genre": "Fantasy",
            "chapters": [{"title": "One", "content": "<p>Waves broke on the rocks</p>"}],
        },
        headers=auth_headers(author),
    )
    assert r.status_code == 201
    body = r.json()
    assert body["message"] == "Book created successfully"
    book = body["data"]["book"]
    assert book["title"] == "Salt and Stone"
    assert book["publishingStatus"]["status"] == "draft"
    assert book["statistics"]["wordCount"] == 5
    assert "likedBy" not in book

    stored = users_repo.get_user_by_id(author["userId"])
    assert stored["profile"]["writingStatistics"]["booksWritten"] == 1


def test_create_book_requires_auth_and_title(client, make_user, auth_headers):
    assert client.post("/api/books", json={"title": "x", "genre": "Drama"}).status_code == 401
    r = client.post("/api/books", json={"title": "", "genre": "Drama"}, headers=auth_headers(make_user()))
    assert r.status_code == 422


def test_list_own_books_filters_by_status(client, make_user, make_book, auth_headers):
    author = make_user()
    make_book(author, title="Draft One")
    make_book(author, title="Out There", published=True)
    make_book(make_user(), title="Someone Else")

    r = client.get("/api/books", headers=auth_headers(author))
    assert r.status_code == 200
    assert r.json()["data"]["count"] == 2
    assert all("content" not in ch for b in r.json()["data"]["books"] for ch in b["chapters"])

    r = client.get("/api/books?status=published", headers=auth_headers(author))
    assert [b["title"] for b in r.json()["data"]["books"]] == ["Out There"]


def test_public_list_shows_only_published_books_with_author(client, make_user, make_book):
    author = make_user(name="Grace Hopper")
    make_book(author, title="Hidden Draft")
    make_book(author, title="Cheap", published=True, price=3)
    make_book(author, title="Pricey", published=True, price=12)

    r = client.get("/api/books/public?sortBy=price&order=asc")
    assert r.status_code == 200
    books = r.json()["data"]["books"]
    assert [b["title"] for b in books] == ["Cheap", "Pricey"]
    assert books[0]["author"]["name"] == "Grace Hopper"
    assert "chapters" not in books[0]

    r = client.get("/api/books/public?search=pric")
    assert [b["title"] for b in r.json()["data"]["books"]] == ["Pricey"]


def test_get_book_access_rules_and_view_count(client, make_user, make_book, auth_headers):
    author, reader = make_user(), make_user()
    draft = make_book(author)
    published = make_book(author, published=True)

    assert client.get(f"/api/books/{draft['bookId']}", headers=auth_headers(author)).status_code == 200
    r = client.get(f"/api/books/{draft['bookId']}", headers=auth_headers(reader))
    assert r.status_code == 403
    assert r.json()["detail"] == "You do not have permission to view this book"

    r = client.get(f"/api/books/{published['bookId']}", headers=auth_headers(reader))
    assert r.status_code == 200
    book = r.json()["data"]["book"]
    assert book["statistics"]["views"] == 1
    assert book["isLiked"] is False
    assert book["author"]["id"] == author["userId"]

    assert client.get("/api/books/book_missing").status_code == 404


def test_update_book_owner_only_and_title_required(client, make_user, make_book, auth_headers):
    author, other = make_user(), make_user()
    book = make_book(author)
    url = f"/api/books/{book['bookId']}"

    r = client.put(url, json={"title": "Hijacked"}, headers=auth_headers(other))
    assert r.status_code == 403
    assert r.json()["detail"] == "You do not have permission to update this book"

    r = client.put(url, json={"title": "   "}, headers=auth_headers(author))
    assert r.status_code == 400
    assert r.json()["detail"] == "Title cannot be empty"

    r = client.put(
        url,
        json={"title": "New Title", "chapters": [{"title": "Only", "content": "<p>one two three</p>"}]},
        headers=auth_headers(author),
    )
    assert r.status_code == 200
    updated = r.json()["data"]["book"]
    assert updated["title"] == "New Title"
    assert updated["statistics"]["wordCount"] == 3
    stored = users_repo.get_user_by_id(author["userId"])
    assert stored["profile"]["writingStatistics"]["totalWords"] == 3


def test_delete_refuses_published_books(client, make_user, make_book, auth_headers):
    author = make_user()
    published = make_book(author, published=True)
    draft = make_book(author)

    r = client.delete(f"/api/books/{published['bookId']}", headers=auth_headers(author))
    assert r.status_code == 400
    assert r.json()["detail"] == "Cannot delete a published book. Unpublish it first."

    r = client.delete(f"/api/books/{draft['bookId']}", headers=auth_headers(author))
    assert r.status_code == 200
    assert books_repo.get_book(draft["bookId"]) is None


def test_publish_validations_then_success(client, make_user, make_book, auth_headers):
    author = make_user()
    book = make_book(author)
    url = f"/api/books/{book['bookId']}/publish"
    h = auth_headers(author)

    r = client.post(url, json={"synopsis": "too short"}, headers=h)
    assert r.json()["detail"] == "Please add a synopsis (minimum 100 characters) before publishing"
    r = client.post(url, json={"synopsis": SYNOPSIS}, headers=h)
    assert r.json()["detail"] == "Please add at least one tag before publishing"
    r = client.post(url, json={"synopsis": SYNOPSIS, "tags": ["sea"], "price": 40}, headers=h)
    assert r.status_code == 400
    assert r.json()["detail"] == "Price must be between $0 and $25"

    r = client.post(url, json={"synopsis": SYNOPSIS, "tags": ["sea", " "], "price": 9.5}, headers=h)
    assert r.status_code == 200
    status = r.json()["data"]["book"]["publishingStatus"]
    assert status["status"] == "published"
    assert status["isPublic"] is True
    assert status["price"] == 9.5
    assert status["isFree"] is False

    stored = books_repo.get_book(book["bookId"])
    assert stored["tags"] == ["sea"]
    author_item = users_repo.get_user_by_id(author["userId"])
    assert author_item["profile"]["authorProfile"]["publishedBooks"] == 1
    kinds = [n["type"] for n in notifications_repo.list_notifications(author["userId"])]
    assert kinds == ["book_published"]


def test_publish_requires_chapters(client, make_user, make_book, auth_headers):
    author = make_user()
    book = make_book(author, chapters=[])
    r = client.post(f"/api/books/{book['bookId']}/publish", json={"synopsis": SYNOPSIS}, headers=auth_headers(author))
    assert r.status_code == 400
    assert r.json()["detail"] == "Cannot publish a book without chapters"


def test_unpublish(client, make_user, make_book, auth_headers):
    author = make_user()
    draft = make_book(author)
    r = client.post(f"/api/books/{draft['bookId']}/unpublish", headers=auth_headers(author))
    assert r.status_code == 400
    assert r.json()["detail"] == "Book is not published"

    book = make_book(author, published=True)
    r = client.post(f"/api/books/{book['bookId']}/unpublish", headers=auth_headers(author))
    assert r.status_code == 200
    assert r.json()["data"]["book"]["publishingStatus"]["status"] == "unpublished"
    assert books_repo.list_public_books() == []


def test_purchase_credits_author_and_blocks_repeat(client, make_user, make_book, auth_headers):
    author, buyer = make_user(name="Author"), make_user(name="Buyer")
    book = make_book(author, published=True, price=10)
    url = f"/api/books/{book['bookId']}/purchase"

    r = client.post(url, headers=auth_headers(author))
    assert r.json()["detail"] == "You cannot purchase your own book"

    r = client.post(url, headers=auth_headers(buyer))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data == {"bookId": book["bookId"], "title": book["title"], "price": 10.0, "readUrl": f"/read/{book['bookId']}"}

    earnings = users_repo.get_user_by_id(author["userId"])["profile"]["earnings"]
    assert earnings["totalEarned"] == 5.0
    assert earnings["pendingPayout"] == 5.0
    stats = books_repo.get_book(book["bookId"])["statistics"]
    assert stats["purchases"] == 1
    assert stats["revenue"] == 10.0
    history = users_repo.get_user_by_id(buyer["userId"])["profile"]["readingHistory"]
    assert [h["bookId"] for h in history] == [book["bookId"]]

    r = client.post(url, headers=auth_headers(buyer))
    assert r.status_code == 400
    assert r.json()["detail"] == "You have already purchased this book"


def test_purchase_requires_published_book(client, make_user, make_book, auth_headers):
    book = make_book(make_user())
    r = client.post(f"/api/books/{book['bookId']}/purchase", headers=auth_headers(make_user()))
    assert r.status_code == 400
    assert r.json()["detail"] == "This book is not available for purchase"


def test_like_toggles_and_notifies_author(client, make_user, make_book, auth_headers):
    author, fan = make_user(), make_user(name="Fan")
    book = make_book(author, published=True)
    url = f"/api/books/{book['bookId']}/like"

    r = client.post(url, headers=auth_headers(fan))
    assert r.json()["data"] == {"likes": 1, "isLiked": True}
    r = client.post(url, headers=auth_headers(fan))
    assert r.json()["data"] == {"likes": 0, "isLiked": False}

    notes = notifications_repo.list_notifications(author["userId"])
    assert [n["type"] for n in notes] == ["like"]
    assert notes[0]["message"] == f'Fan liked your book "{book["title"]}"'


def test_share_and_social_stats(client, make_user, make_book, auth_headers):
    author, reader = make_user(), make_user()
    book = make_book(author, published=True)

    r = client.post(f"/api/books/{book['bookId']}/share", json={"platform": "twitter"}, headers=auth_headers(reader))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["shares"] == 1
    assert data["platform"] == "twitter"
    assert data["shareUrl"].endswith(f"/reader/{book['bookId']}")

    stats = client.get(f"/api/books/{book['bookId']}/social-stats").json()["data"]
    assert stats == {"likes": 0, "shares": 1, "comments": 0, "averageRating": 0.0}


def test_reviews_update_rating_once_per_reader(client, make_user, make_book, auth_headers):
    author, a, b = make_user(), make_user(name="Reader A"), make_user(name="Reader B")
    book = make_book(author, published=True)
    url = f"/api/books/{book['bookId']}/review"

    r = client.post(url, json={"rating": 5, "comment": "Loved it"}, headers=auth_headers(author))
    assert r.json()["detail"] == "You cannot review your own book"

    r = client.post(url, json={"rating": 5, "comment": "Loved it"}, headers=auth_headers(a))
    assert r.status_code == 201
    assert r.json()["data"]["review"]["userName"] == "Reader A"
    client.post(url, json={"rating": 2, "comment": "Slow start"}, headers=auth_headers(b))

    r = client.post(url, json={"rating": 1, "comment": "Changed my mind"}, headers=auth_headers(a))
    assert r.status_code == 400
    assert r.json()["detail"] == "You have already reviewed this book"

    data = client.get(f"/api/books/{book['bookId']}/reviews").json()["data"]
    assert data["totalReviews"] == 2
    assert data["averageRating"] == 3.5
    assert sorted(r["rating"] for r in data["reviews"]) == [2, 5]


def test_review_totals_include_reviews_missing_from_counters(client, make_user, make_book, auth_headers):
    author, a = make_user(), make_user(name="Reader A")
    book = make_book(author, published=True)
    # A review stored without its counter update, as when two readers review at once.
    books_repo.put_review(book_id=book["bookId"], user_id="other-reader", user_name="Other", rating=4, comment="Nice")

    r = client.post(f"/api/books/{book['bookId']}/review", json={"rating": 2, "comment": "Slow"}, headers=auth_headers(a))
    assert r.status_code == 201

    stats = books_repo.get_book(book["bookId"])["statistics"]
    assert stats["totalReviews"] == 2
    assert stats["averageRating"] == 3.0
    assert stats["comments"] == 2


def test_export_pdf_and_docx(client, make_user, make_book, auth_headers):
    author, stranger = make_user(), make_user()
    book = make_book(author)
    h = auth_headers(author)

    r = client.get(f"/api/books/{book['bookId']}/export", headers=h)
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert r.headers["content-disposition"] == 'attachment; filename="The_Lighthouse_Keeper.pdf"'
    assert r.content.startswith(b"%PDF")

    r = client.get(f"/api/books/{book['bookId']}/export/docx", headers=h)
    assert r.status_code == 200
    assert r.content.startswith(b"PK")

    r = client.get(f"/api/books/{book['bookId']}/export/epub", headers=h)
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid format. Supported formats: pdf, docx"

    r = client.get(f"/api/books/{book['bookId']}/export", headers=auth_headers(stranger))
    assert r.status_code == 403


def test_pricing_strategy_is_owner_only(client, make_user, make_book, auth_headers):
    author = make_user()
    book = make_book(author)
    r = client.get(f"/api/books/{book['bookId']}/pricing-strategy", headers=auth_headers(make_user()))
    assert r.status_code == 403

    r = client.get(f"/api/books/{book['bookId']}/pricing-strategy", headers=auth_headers(author))
    assert r.status_code == 200
    assert r.json()["data"]["recommendedPrice"] == 0


def test_upload_cover_without_storage_returns_503(client, make_user, make_book, auth_headers):
    author = make_user()
    book = make_book(author)
    r = client.post(
        f"/api/books/{book['bookId']}/upload-cover",
        files={"cover": ("cover.png", b"\x89PNG fake", "image/png")},
        headers=auth_headers(author),
    )
    assert r.status_code == 503
    assert r.json()["detail"] == "Asset storage is not configured"

    r = client.post(
        f"/api/books/{book['bookId']}/upload-cover",
        files={"cover": ("notes.txt", b"hello", "text/plain")},
        headers=auth_headers(author),
    )
    assert r.status_code == 400


def test_quality_score_needs_enough_text(client, make_user, make_book, auth_headers):
    author = make_user()
    book = make_book(author)
    r = client.post(f"/api/books/{book['bookId']}/quality-score", headers=auth_headers(author))
    assert r.status_code == 400
    assert r.json()["detail"] == "Book needs at least 100 characters of content to be scored"
