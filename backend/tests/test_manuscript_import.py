from __future__ import annotations

import io

from docx import Document
from reportlab.pdfgen import canvas

from mestory.repositories import books_repo, users_repo
from mestory.services import manuscript_import

FIRST = "The keeper lit the lamp at dusk and watched the black water heave against the rocks below."
SECOND = "A ship appeared on the horizon with its sails torn and no lights burning on deck."


def _docx(*paragraphs: str) -> bytes:
    doc = Document()
    for p in paragraphs:
        doc.add_paragraph(p)
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


def _pdf(*lines: str) -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf)
    y = 800
    for line in lines:
        c.drawString(40, y, line)
        y -= 18
    c.save()
    return buf.getvalue()


def _upload(client, headers, name, data, content_type, **form):
    form = {"title": "Salt Light", "genre": "Literary Fiction", **form}
    return client.post("/api/books/upload", files={"manuscript": (name, data, content_type)}, data=form, headers=headers)


def test_split_chapters_on_headings():
    text = f"Prologue\n{FIRST}\n\nChapter 2: The Ship\n{SECOND}\n"
    chapters = manuscript_import.split_chapters(text)
    assert [c["title"] for c in chapters] == ["Prologue", "Chapter 2: The Ship"]
    assert chapters[1]["content"] == f"<p>{SECOND}</p>"

    plain = manuscript_import.split_chapters("One & two\nthree")
    assert plain == [{"title": "Imported Content", "content": "<p>One &amp; two</p><p>three</p>"}]


def test_upload_docx_creates_draft_book(client, make_user, auth_headers):
    author = make_user()
    data = _docx("Chapter 1", FIRST, "Chapter 2", SECOND)
    r = _upload(
        client,
        auth_headers(author),
        "salt-light.docx",
        data,
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    )
    assert r.status_code == 201
    body = r.json()
    assert body["message"] == "Manuscript uploaded and processed successfully"
    book = body["data"]["book"]
    assert book["title"] == "Salt Light"
    assert book["wordCount"] == 33
    assert book["chapters"] == [{"title": "Chapter 1", "wordCount": 17}, {"title": "Chapter 2", "wordCount": 16}]

    stored = books_repo.get_book(book["_id"])
    assert stored["authorId"] == author["userId"]
    assert stored["description"] == "Imported from salt-light.docx"
    assert stored["publishingStatus"]["status"] == "draft"
    profile = users_repo.get_user_by_id(author["userId"])["profile"]
    assert profile["writingStatistics"]["booksWritten"] == 1
    assert profile["writingStatistics"]["totalWords"] == 33


def test_upload_txt_and_pdf(client, make_user, auth_headers):
    h = auth_headers(make_user())
    r = _upload(client, h, "draft.txt", f"{FIRST}\n{SECOND}".encode(), "text/plain")
    assert r.status_code == 201
    assert [c["title"] for c in r.json()["data"]["book"]["chapters"]] == ["Imported Content"]

    r = _upload(client, h, "draft.pdf", _pdf(FIRST, SECOND), "application/pdf")
    assert r.status_code == 201
    stored = books_repo.get_book(r.json()["data"]["book"]["_id"])
    assert "keeper lit the lamp" in stored["chapters"][0]["content"]


def test_upload_rejections(client, make_user, auth_headers):
    h = auth_headers(make_user())

    r = client.post("/api/books/upload", data={"title": "Salt Light", "genre": "Drama"}, headers=h)
    assert r.status_code == 400
    assert r.json()["detail"] == "No file uploaded"

    r = _upload(client, h, "draft.txt", FIRST.encode(), "text/plain", title="  ")
    assert r.json()["detail"] == "Title and genre are required"

    r = _upload(client, h, "draft.doc", b"binary", "application/msword")
    assert r.status_code == 400
    assert r.json()["detail"] == "Unsupported file type. Please upload PDF, DOCX, or TXT files."

    r = _upload(client, h, "draft.txt", b"Too short.", "text/plain")
    assert r.status_code == 400
    assert r.json()["detail"].startswith("Could not extract sufficient text")

    assert client.post("/api/books/upload", data={"title": "x", "genre": "y"}).status_code == 401


def test_upload_corrupt_files(client, make_user, auth_headers):
    h = auth_headers(make_user())
    for name, content_type in (("draft.pdf", "application/pdf"), ("draft.docx", "application/octet-stream")):
        r = _upload(client, h, name, b"this is not really a document", content_type)
        assert r.status_code == 400
        assert r.json()["detail"] == "Could not read the uploaded file. Please check it is not corrupted."
