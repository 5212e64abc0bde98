from __future__ import annotations

from mestory.ai import client as ai_client
from mestory.ai.schemas import (
    ChapterTensionAI,
    EnhancedPassageAI,
    GuidanceResponseAI,
    QualityAnalysisAI,
    TensionAnalysisAI,
)
from mestory.settings import settings

FOUR_CHAPTERS = [
    {"title": "Arrival", "content": "<p>The storm rolled in over the cliffs.</p>"},
    {"title": "The Lamp", "content": "<p>She climbed the spiral stairs every night.</p>"},
    {"title": "Wreck", "content": "<p>A ship broke apart on the reef.</p>"},
    {"title": "Dawn", "content": "<p>The survivors walked up the beach.</p>"},
]


def _meta(purpose: str = "test", model: str = "gemini-test") -> ai_client.AiMeta:
    return ai_client.AiMeta(purpose=purpose, model=model, attempts=1, used_response_format="chat_json_schema")


def _use_fallback(**kw):
    return kw["fallback"](), _meta(kw["purpose"], model="fallback")


def test_enhance_text_validation(client, make_user, auth_headers):
    h = auth_headers(make_user())
    cases = [
        ({"action": "improve"}, "text is required"),
        ({"text": "A long enough passage.", "action": "shout"}, "action must be one of: improve, expand, shorten, continue"),
        ({"text": "Too short", "action": "improve"}, "text must be at least 10 characters"),
        ({"text": "x" * 5001, "action": "improve"}, "text must be less than 5000 characters"),
    ]
    for body, detail in cases:
        r = client.post("/api/analysis/enhance-text", json=body, headers=h)
        assert r.status_code == 400
        assert r.json()["detail"] == detail


def test_enhance_text_uses_context(client, make_user, auth_headers, monkeypatch):
    seen = {}

    def fake(**kw):
        seen.update(kw)
        return EnhancedPassageAI(enhanced="  The gale tore at the cliffs.  ", explanation="Stronger verb."), _meta()

    monkeypatch.setattr(ai_client, "call_json", fake)
    r = client.post(
        "/api/analysis/enhance-text",
        json={
            "text": "The storm came over the cliffs.",
            "action": "improve",
            "context": {"bookTitle": "Tidewater", "genre": "Fantasy"},
        },
        headers=auth_headers(make_user()),
    )
    assert r.status_code == 200
    assert r.json()["data"] == {
        "originalText": "The storm came over the cliffs.",
        "enhancedText": "The gale tore at the cliffs.",
        "explanation": "Stronger verb.",
        "action": "improve",
    }
    assert seen["purpose"] == "enhance_text"
    prompt = seen["messages"][0]["content"]
    assert "Book: Tidewater" in prompt
    assert "Genre: Fantasy" in prompt


def test_book_analyses_check_access_and_chapters(client, make_user, make_book, auth_headers, monkeypatch):
    monkeypatch.setattr(ai_client, "call_json", _use_fallback)
    author, stranger = make_user(), make_user()
    book = make_book(author)
    empty = make_book(author, title="Blank Pages", chapters=[])

    r = client.get(f"/api/analysis/plot-structure/{book['bookId']}", headers=auth_headers(stranger))
    assert r.status_code == 403
    r = client.get("/api/analysis/tension/missing", headers=auth_headers(author))
    assert r.status_code == 404
    assert r.json()["detail"] == "Book not found"

    for path, word in (("plot-structure", "plot"), ("tension", "tension"), ("techniques", "techniques")):
        r = client.get(f"/api/analysis/{path}/{empty['bookId']}", headers=auth_headers(author))
        assert r.status_code == 400
        assert r.json()["detail"] == f"Book must have at least one chapter for {word} analysis"

    assert client.get(f"/api/analysis/techniques/{book['bookId']}").status_code == 401


def test_plot_structure_falls_back_to_even_acts(client, make_user, make_book, auth_headers, monkeypatch):
    monkeypatch.setattr(ai_client, "call_json", _use_fallback)
    author = make_user()
    book = make_book(author, chapters=FOUR_CHAPTERS)

    data = client.get(f"/api/analysis/plot-structure/{book['bookId']}", headers=auth_headers(author)).json()["data"]
    acts = data["threeActStructure"]
    assert [acts[a]["chapters"] for a in ("act1", "act2", "act3")] == [[0], [1, 2], [3]]
    assert [acts[a]["percentage"] for a in ("act1", "act2", "act3")] == [25, 50, 25]
    assert acts["act1"]["completeness"] == 50
    assert data["balance"] == "balanced"
    assert data["model"] == "fallback"


def test_tension_pads_chapters_the_model_skipped(client, make_user, make_book, auth_headers, monkeypatch):
    parsed = TensionAnalysisAI(
        chapters=[ChapterTensionAI(chapterIndex=1, tensionLevel=85, type="peak")],
        overallArc="building",
        suggestions=["Raise the stakes earlier."],
    )
    monkeypatch.setattr(ai_client, "call_json", lambda **kw: (parsed, _meta(kw["purpose"])))
    author = make_user()
    book = make_book(author)

    data = client.get(f"/api/analysis/tension/{book['bookId']}", headers=auth_headers(author)).json()["data"]
    assert [(c["chapterIndex"], c["title"], c["tensionLevel"], c["type"]) for c in data["chapters"]] == [
        (0, "Arrival", 50, "stable"),
        (1, "The Lamp", 85, "peak"),
    ]
    assert data["overallArc"] == "building"
    assert data["suggestions"] == ["Raise the stakes earlier."]


def test_techniques_fallback_scores(client, make_user, make_book, auth_headers, monkeypatch):
    monkeypatch.setattr(ai_client, "call_json", _use_fallback)
    author = make_user()
    book = make_book(author)

    data = client.get(f"/api/analysis/techniques/{book['bookId']}", headers=auth_headers(author)).json()["data"]
    assert set(data["techniques"]) == {
        "tensionCreation",
        "problemResolution",
        "characterDevelopment",
        "motifsThemes",
        "dialogueQuality",
        "pacing",
    }
    assert all(t["score"] == 60 and t["trend"] == "stable" for t in data["techniques"].values())
    assert data["overallScore"] == 60


def test_guidance(client, make_user, make_book, auth_headers, monkeypatch):
    author = make_user()
    book = make_book(author)
    h = auth_headers(author)

    r = client.post("/api/analysis/guidance", json={"bookId": book["bookId"], "chapterIndex": 0}, headers=h)
    assert r.status_code == 400
    assert r.json()["detail"] == "bookId, chapterIndex, and recentText are required"
    r = client.post("/api/analysis/guidance", json={"bookId": "missing", "chapterIndex": 0, "recentText": "x"}, headers=h)
    assert r.status_code == 404

    calls = []

    def fake(**kw):
        calls.append(kw["purpose"])
        return (
            GuidanceResponseAI.model_validate(
                {
                    "hasGuidance": True,
                    "guidance": {
                        "type": "tension",
                        "severity": "suggestion",
                        "message": "The storm has passed too quickly.",
                        "suggestions": [{"text": "Let the wind return.", "insertable": True}],
                    },
                }
            ),
            _meta(kw["purpose"]),
        )

    monkeypatch.setattr(ai_client, "call_json", fake)
    body = {"bookId": book["bookId"], "chapterIndex": 0, "recentText": "The sky cleared at once."}
    out = client.post("/api/analysis/guidance", json=body, headers=h).json()["data"]["guidance"]
    assert out["type"] == "tension"
    assert out["message"] == "The storm has passed too quickly."
    assert out["suggestions"] == [{"text": "Let the wind return.", "insertable": True}]
    assert out["dismissible"] is True

    # Unknown chapters get no guidance and never reach the model.
    out = client.post("/api/analysis/guidance", json={**body, "chapterIndex": 9}, headers=h).json()["data"]
    assert out == {"guidance": None}
    assert calls == ["writing_guidance"]

    monkeypatch.setattr(ai_client, "call_json", _use_fallback)
    assert client.post("/api/analysis/guidance", json=body, headers=h).json()["data"] == {"guidance": None}


def test_score_change(client, make_user, auth_headers, monkeypatch):
    def fake(**kw):
        prompt = kw["messages"][0]["content"]
        writing = 80 if "second draft" in prompt else 60
        scores = {
            "writingQuality": writing,
            "plotStructure": 60,
            "characterDevelopment": 60,
            "dialogue": 60,
            "setting": 60,
            "originality": 60,
        }
        return QualityAnalysisAI.model_validate({"scores": scores}), _meta(kw["purpose"])

    monkeypatch.setattr(ai_client, "call_json", fake)
    h = auth_headers(make_user())

    r = client.post("/api/analysis/score-change", json={"previousText": "first draft"}, headers=h)
    assert r.status_code == 400
    assert r.json()["detail"] == "previousText and newText are required"

    r = client.post(
        "/api/analysis/score-change",
        json={"previousText": "The first draft of the scene.", "newText": "The second draft of the scene."},
        headers=h,
    )
    data = r.json()["data"]
    assert (data["previousScore"], data["newScore"], data["delta"]) == (60, 65, 5)
    assert data["improvements"] == ["writingQuality: +20"]
    assert data["breakdown"][0] == {"category": "writingQuality", "previousValue": 60, "newValue": 80, "delta": 20}
    assert (data["newRating"], data["newRatingLabel"]) == (2, "Fair")


def test_analysis_routes_return_503_without_gemini_key(client, make_user, make_book, auth_headers, monkeypatch):
    monkeypatch.setattr(settings, "gemini_api_key", None)
    author = make_user()
    book = make_book(author)
    r = client.get(f"/api/analysis/plot-structure/{book['bookId']}", headers=auth_headers(author))
    assert r.status_code == 503
    assert r.json()["detail"] == "GEMINI_API_KEY is not configured"
