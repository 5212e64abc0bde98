from __future__ import annotations

import base64
import random
import re
import time
from typing import Any
from urllib.parse import quote

import httpx

from ..ai import client as ai_client
from ..observability.logging import get_logger
from ..settings import settings
from . import s3_assets

log = get_logger("image_generation")

STYLES = ("realistic", "illustration", "artistic", "manga", "watercolor", "oil-painting")
ASPECT_RATIOS = ("1:1", "16:9", "9:16", "4:3", "3:4")
PROVIDERS = ("stability", "pollinations", "placeholder")

VARIATION_SUFFIXES = ("", ", dramatic lighting", ", soft ethereal glow", ", vibrant colors")

STABILITY_URL = "https://api.stability.ai/v1/generation/stable-diffusion-xl-1024-v1-0/text-to-image"
POLLINATIONS_URL = "https://image.pollinations.ai/prompt/"

# (width, height) for AI providers and for placeholders.
_AI_SIZES = {"16:9": (896, 512), "9:16": (512, 896), "4:3": (640, 480), "3:4": (480, 640)}
_PLACEHOLDER_SIZES = {"16:9": (640, 360), "9:16": (360, 640), "4:3": (480, 360), "3:4": (360, 480)}


class ImageGenerationError(RuntimeError):
    pass


def dimensions(aspect_ratio: str | None, *, placeholder: bool = False) -> tuple[int, int]:
    if placeholder:
        return _PLACEHOLDER_SIZES.get(str(aspect_ratio or ""), (400, 400))
    return _AI_SIZES.get(str(aspect_ratio or ""), (512, 512))


def default_provider() -> str:
    return "stability" if settings.stability_api_key else "pollinations"


def enhance_prompt(
    *, prompt: str, style: str | None = None, book_context: dict[str, Any] | None = None
) -> str:
    """Gemini rewrite of a user prompt into a detailed image prompt; the raw prompt on any failure."""
    ctx = book_context or {}
    context_info = ""
    if ctx:
        context_info = (
            f"Book Title: {ctx.get('title') or 'Unknown'}\n"
            f"Genre: {ctx.get('genre') or 'Fiction'}\n"
            f"Chapter: {ctx.get('chapterTitle') or 'Unknown'}\n"
            f"Scene: {ctx.get('sceneDescription') or 'Not specified'}\n"
        )
    ai_prompt = (
        "You are a professional book illustrator and prompt engineer. Create an enhanced, "
        "detailed image generation prompt based on the following request.\n\n"
        f"USER'S REQUEST:\n{prompt}\n\n"
        f"{context_info}"
        + (f"Requested Style: {style}\n" if style else "")
        + "\nDescribe the scene in rich visual detail with lighting, mood and atmosphere, "
        "suitable for a book illustration and free of copyrighted content.\n"
        "Keep the enhanced prompt under 300 characters.\n"
        "Respond ONLY with the enhanced prompt text, nothing else."
    )
    try:
        out, _ = ai_client.call_text(
            purpose="image_prompt",
            messages=[{"role": "user", "content": ai_prompt}],
            max_tokens=200,
            temperature=0.8,
            retries=1,
        )
    except ai_client.AiError as e:
        log.info("image_prompt_enhance_skipped", error=str(e))
        return prompt
    out = out.strip().strip('"')
    return out[:300] if out else prompt


def pollinations_url(prompt: str, aspect_ratio: str | None = None, *, seed: int | None = None) -> str:
    width, height = dimensions(aspect_ratio)
    seed = seed if seed is not None else int(time.time() * 1000)
    return f"{POLLINATIONS_URL}{quote(prompt, safe='')}?width={width}&height={height}&seed={seed}"


def placeholder_url(genre: str, aspect_ratio: str | None = None) -> str:
    width, height = dimensions(aspect_ratio, placeholder=True)
    genre_seed = re.sub(r"\s+", "-", str(genre or "fiction").strip().lower()) or "fiction"
    return f"https://picsum.photos/seed/{genre_seed}-{random.randint(0, 999)}/{width}/{height}"


def store_base64_image(data_b64: str, *, owner_id: str | None) -> str:
    """Persist a base64 PNG to S3; returns a presigned URL."""
    raw = base64.b64decode(data_b64)
    stored = s3_assets.store_bytes(
        kind="generated-images",
        data=raw,
        content_type="image/png",
        owner_id=owner_id,
        ext=".png",
    )
    return str(stored["url"])


def stability_generate(prompt: str, aspect_ratio: str | None, *, owner_id: str | None) -> str:
    if not settings.stability_api_key:
        raise ImageGenerationError("Stability AI API key not configured")
    width, height = dimensions(aspect_ratio)
    body = {
        "text_prompts": [
            {"text": prompt, "weight": 1},
            {"text": "blurry, bad quality, watermark, text, signature", "weight": -1},
        ],
        "cfg_scale": 7,
        "width": width,
        "height": height,
        "samples": 1,
        "steps": 30,
    }
    with httpx.Client(timeout=120) as client:
        resp = client.post(
            STABILITY_URL,
            json=body,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "Authorization": f"Bearer {settings.stability_api_key}",
            },
        )
        resp.raise_for_status()
        artifacts = (resp.json() or {}).get("artifacts") or []
    if not artifacts or not artifacts[0].get("base64"):
        raise ImageGenerationError("No image generated")
    return store_base64_image(artifacts[0]["base64"], owner_id=owner_id)


def generate_image(
    *,
    prompt: str,
    style: str | None = None,
    aspect_ratio: str | None = None,
    provider: str | None = None,
    book_context: dict[str, Any] | None = None,
    owner_id: str | None = None,
    enhance: bool = True,
) -> dict[str, Any]:
    """Returns {success, imageUrl?, prompt, enhancedPrompt?, provider, error?}."""
    provider = provider if provider in PROVIDERS else default_provider()
    enhanced = enhance_prompt(prompt=prompt, style=style, book_context=book_context) if enhance else prompt
    try:
        if provider == "stability":
            url = stability_generate(enhanced, aspect_ratio, owner_id=owner_id)
        elif provider == "pollinations":
            url = pollinations_url(enhanced, aspect_ratio)
        else:
            url = placeholder_url(str((book_context or {}).get("genre") or "fiction"), aspect_ratio)
    except (httpx.HTTPError, ImageGenerationError) as e:
        log.warning("image_generation_failed", provider=provider, error=str(e))
        return {
            "success": False,
            "prompt": prompt,
            "provider": provider,
            "error": str(e) or "Failed to generate image",
        }
    log.info("image_generated", provider=provider, aspect_ratio=aspect_ratio)
    return {
        "success": True,
        "imageUrl": url,
        "prompt": prompt,
        "enhancedPrompt": enhanced,
        "provider": provider,
    }


def generate_variations(
    *,
    prompt: str,
    count: int = 4,
    style: str | None = None,
    aspect_ratio: str | None = None,
    provider: str | None = None,
    book_context: dict[str, Any] | None = None,
    owner_id: str | None = None,
) -> list[dict[str, Any]]:
    base = enhance_prompt(prompt=prompt, style=style, book_context=book_context)
    n = max(1, min(int(count), len(VARIATION_SUFFIXES)))
    return [
        generate_image(
            prompt=f"{base}{suffix}",
            style=style,
            aspect_ratio=aspect_ratio,
            provider=provider,
            book_context=book_context,
            owner_id=owner_id,
            enhance=False,
        )
        for suffix in VARIATION_SUFFIXES[:n]
    ]


def describe_scene(*, chapter_content: str, book_context: dict[str, Any]) -> str:
    prompt = (
        "Analyze the following book chapter excerpt and describe the most visually compelling "
        "scene that would make a great illustration.\n\n"
        f"CHAPTER CONTENT:\n{chapter_content[:2000]}\n\n"
        f"Title: {book_context.get('title') or 'Unknown'}\n"
        f"Genre: {book_context.get('genre') or 'Fiction'}\n"
        f"Chapter: {book_context.get('chapterTitle') or 'Unknown'}\n\n"
        "Describe the scene in 2-3 sentences: main subjects, setting, mood and key visual elements.\n"
        "Respond with ONLY the scene description."
    )
    out, _ = ai_client.call_text(
        purpose="image_prompt",
        messages=[{"role": "user", "content": prompt}],
        max_tokens=300,
        temperature=0.7,
    )
    return out.strip()


def generate_illustration(
    *,
    chapter_content: str,
    book_context: dict[str, Any],
    style: str | None = "illustration",
    provider: str | None = None,
    owner_id: str | None = None,
) -> dict[str, Any]:
    scene = describe_scene(chapter_content=chapter_content, book_context=book_context)
    return generate_image(
        prompt=scene,
        style=style or "illustration",
        aspect_ratio="4:3",
        provider=provider,
        book_context={**book_context, "sceneDescription": scene},
        owner_id=owner_id,
    )


def contextual_prompt(*, text_context: str, genre: str | None = None, style: str | None = None) -> str:
    genre_part = f" for a {genre} book" if genre else ""
    style_part = f", {style} style" if style else ", book illustration style"
    return f"Scene{genre_part}: {text_context[:500].strip()}{style_part}"
