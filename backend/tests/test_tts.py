from __future__ import annotations

from mestory.services import tts
from mestory.settings import settings


def test_clean_text_strips_markup_and_entities():
    assert tts.clean_text("<p>Hello&nbsp;<b>world</b></p>\n\n<p>Again</p>") == "Hello world Again"
    assert tts.clean_text(None) == ""


def test_split_sentences():
    assert tts.split_sentences("One. Two!  Three? four") == ["One.", "Two!", "Three?", "four"]


def test_estimate_duration_uses_language_rate_and_speed():
    assert tts.estimate_duration_seconds(" ".join(["word"] * 150), "en") == 60
    assert tts.estimate_duration_seconds(" ".join(["word"] * 130), "he") == 60
    assert tts.estimate_duration_seconds(" ".join(["word"] * 150), "en", speed=2.0) == 30


def test_available_voices_filters():
    hebrew = tts.available_voices("he")
    assert hebrew and all(v["language"] == "he" for v in hebrew)
    assert {v["provider"] for v in tts.available_voices(provider="elevenlabs")} == {"elevenlabs"}


def test_voices_endpoint_is_public(client, monkeypatch):
    monkeypatch.setattr(settings, "google_tts_api_key", None)
    data = client.get("/api/tts/voices?language=en").json()["data"]
    assert data["providers"]["browser"] is True
    assert data["providers"]["google"] is False
    assert all(v["language"] == "en" for v in data["voices"])


def test_synthesize_browser_returns_text(client, make_user, auth_headers):
    r = client.post(
        "/api/tts/synthesize",
        json={"text": "<p>It was night. The sea was calm.</p>", "language": "en"},
        headers=auth_headers(make_user()),
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["provider"] == "browser"
    assert data["text"] == "It was night. The sea was calm."
    assert data["sentences"] == ["It was night.", "The sea was calm."]


def test_synthesize_errors(client, make_user, auth_headers, monkeypatch):
    monkeypatch.setattr(settings, "google_tts_api_key", None)
    h = auth_headers(make_user())

    r = client.post("/api/tts/synthesize", json={"text": "<br/>"}, headers=h)
    assert r.status_code == 400
    assert r.json()["detail"] == "No text content to narrate"

    r = client.post("/api/tts/synthesize", json={"text": "Hello", "provider": "google"}, headers=h)
    assert r.status_code == 502
    assert r.json()["detail"] == "Google Cloud TTS API key not configured"


def test_prepare_chapter_access(client, make_user, make_book, auth_headers):
    author, stranger = make_user(), make_user()
    book = make_book(author)

    r = client.get(f"/api/tts/prepare/{book['bookId']}/1", headers=auth_headers(author))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["chapterTitle"] == "The Lamp"
    assert data["text"] == "She climbed the spiral stairs every night."
    assert data["totalChapters"] == 2

    assert client.get(f"/api/tts/prepare/{book['bookId']}/5", headers=auth_headers(author)).status_code == 400
    r = client.get(f"/api/tts/prepare/{book['bookId']}/0", headers=auth_headers(stranger))
    assert r.status_code == 403
    assert r.json()["detail"] == "You do not have access to this book"


def test_narrate_free_public_chapter(client, make_user, make_book, auth_headers):
    book = make_book(make_user(), published=True)
    r = client.post(f"/api/tts/narrate-chapter/{book['bookId']}/0", headers=auth_headers(make_user()))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["chapterTitle"] == "Arrival"
    assert data["text"] == "The storm rolled in over the cliffs."
