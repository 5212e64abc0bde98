from __future__ import annotations

import base64
import html
import re
from typing import Any

import httpx

from ..observability.logging import get_logger
from ..settings import settings
from . import s3_assets

log = get_logger("tts")

PROVIDERS = ("browser", "google", "elevenlabs")
MAX_TEXT_CHARS = 10_000

# Words per minute at speed 1.0.
WORDS_PER_MINUTE = {"he": 130, "en": 150}

VOICES: dict[str, list[dict[str, str]]] = {
    "browser": [
        {"id": "he-IL-Standard", "name": "Hebrew Standard", "language": "he", "gender": "female"},
        {"id": "en-US-Standard", "name": "English US", "language": "en", "gender": "female"},
        {"id": "en-GB-Standard", "name": "English UK", "language": "en", "gender": "male"},
    ],
    "google": [
        {"id": "he-IL-Standard-A", "name": "Hebrew Female", "language": "he", "gender": "female"},
        {"id": "he-IL-Standard-B", "name": "Hebrew Male", "language": "he", "gender": "male"},
        {"id": "he-IL-Wavenet-A", "name": "Hebrew Premium Female", "language": "he", "gender": "female"},
        {"id": "he-IL-Wavenet-B", "name": "Hebrew Premium Male", "language": "he", "gender": "male"},
        {"id": "en-US-Neural2-A", "name": "English US Female", "language": "en", "gender": "female"},
        {"id": "en-US-Neural2-D", "name": "English US Male", "language": "en", "gender": "male"},
    ],
    "elevenlabs": [
        {"id": "rachel", "name": "Rachel (Calm)", "language": "en", "gender": "female"},
        {"id": "domi", "name": "Domi (Strong)", "language": "en", "gender": "female"},
        {"id": "bella", "name": "Bella (Soft)", "language": "en", "gender": "female"},
        {"id": "antoni", "name": "Antoni (Well-rounded)", "language": "en", "gender": "male"},
        {"id": "josh", "name": "Josh (Young)", "language": "en", "gender": "male"},
        {"id": "arnold", "name": "Arnold (Deep)", "language": "en", "gender": "male"},
    ],
}

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


class TtsError(RuntimeError):
    pass


def available_voices(language: str | None = None, provider: str | None = None) -> list[dict[str, str]]:
    providers = [provider] if provider else list(PROVIDERS)
    out: list[dict[str, str]] = []
    for p in providers:
        for v in VOICES.get(p, []):
            if not language or v["language"].startswith(language):
                out.append({**v, "provider": p})
    return out


def provider_status() -> dict[str, bool]:
    return {
        "browser": True,
        "google": bool(settings.google_tts_api_key),
        "elevenlabs": bool(settings.elevenlabs_api_key),
    }


def clean_text(raw: str) -> str:
    """Strip HTML and collapse whitespace."""
    text = _TAG_RE.sub(" ", str(raw or ""))
    text = html.unescape(text)
    return _WS_RE.sub(" ", text).strip()


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_RE.split(text) if s.strip()]


def estimate_duration_seconds(text: str, language: str = "he", speed: float = 1.0) -> int:
    words = len(text.split())
    wpm = WORDS_PER_MINUTE.get(language, WORDS_PER_MINUTE["en"]) * max(float(speed or 1.0), 0.1)
    return int(round(words / wpm * 60))


def _google(text: str, *, language: str, voice_id: str | None, speed: float, pitch: float) -> bytes:
    if not settings.google_tts_api_key:
        raise TtsError("Google Cloud TTS API key not configured")
    language_code = "he-IL" if language == "he" else "en-US"
    voice_name = voice_id or ("he-IL-Wavenet-A" if language == "he" else "en-US-Neural2-A")
    with httpx.Client(timeout=60) as client:
        resp = client.post(
            "https://texttospeech.googleapis.com/v1/text:synthesize",
            params={"key": settings.google_tts_api_key},
            json={
                "input": {"text": text},
                "voice": {"languageCode": language_code, "name": voice_name},
                "audioConfig": {"audioEncoding": "MP3", "speakingRate": speed, "pitch": pitch},
            },
        )
        resp.raise_for_status()
        content = (resp.json() or {}).get("audioContent")
    if not content:
        raise TtsError("No audio content received")
    return base64.b64decode(content)


def _elevenlabs(text: str, *, voice_id: str | None) -> bytes:
    if not settings.elevenlabs_api_key:
        raise TtsError("ElevenLabs API key not configured")
    with httpx.Client(timeout=120) as client:
        resp = client.post(
            f"https://api.elevenlabs.io/v1/text-to-speech/{voice_id or 'rachel'}",
            json={
                "text": text,
                "model_id": "eleven_multilingual_v2",
                "voice_settings": {
                    "stability": 0.5,
                    "similarity_boost": 0.75,
                    "style": 0.5,
                    "use_speaker_boost": True,
                },
            },
            headers={
                "xi-api-key": settings.elevenlabs_api_key,
                "Content-Type": "application/json",
                "Accept": "audio/mpeg",
            },
        )
        resp.raise_for_status()
        return resp.content


def synthesize(
    *,
    text: str,
    provider: str = "browser",
    voice_id: str | None = None,
    language: str = "he",
    speed: float = 1.0,
    pitch: float = 0.0,
    owner_id: str | None = None,
) -> dict[str, Any]:
    """
    Browser mode returns the cleaned text (and sentences) for client-side speech.
    Server providers return an S3 URL when a bucket is configured, else base64 audio.
    """
    cleaned = clean_text(text)
    if not cleaned:
        raise TtsError("No text content to narrate")
    result: dict[str, Any] = {
        "provider": provider,
        "language": language,
        "estimatedDuration": estimate_duration_seconds(cleaned, language, speed),
    }
    if provider == "browser":
        result.update({"text": cleaned, "sentences": split_sentences(cleaned), "voiceId": voice_id, "speed": speed})
        return result

    try:
        if provider == "google":
            audio = _google(cleaned, language=language, voice_id=voice_id, speed=speed, pitch=pitch)
        elif provider == "elevenlabs":
            audio = _elevenlabs(cleaned, voice_id=voice_id)
        else:
            raise TtsError(f"Unknown TTS provider: {provider}")
    except httpx.HTTPError as e:
        log.warning("tts_provider_failed", provider=provider, error=str(e))
        raise TtsError("Failed to generate speech") from e

    log.info("tts_synthesized", provider=provider, chars=len(cleaned), bytes=len(audio))
    if s3_assets.is_configured():
        stored = s3_assets.store_bytes(
            kind="narration", data=audio, content_type="audio/mpeg", owner_id=owner_id, ext=".mp3"
        )
        result["audioUrl"] = stored["url"]
    else:
        result["audioBase64"] = base64.b64encode(audio).decode("ascii")
        result["contentType"] = "audio/mpeg"
    return result
