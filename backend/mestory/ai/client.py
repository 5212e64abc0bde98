from __future__ import annotations

import json
import random
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from openai import OpenAI
from pydantic import BaseModel, ValidationError

from ..observability.logging import get_logger
from ..settings import settings

log = get_logger("ai")

T = TypeVar("T", bound=BaseModel)
Validator = Callable[[str], str | None]


class AiError(RuntimeError):
    pass


class AiNotConfigured(AiError):
    pass


class AiUpstreamError(AiError):
    pass


class AiParseError(AiError):
    pass


_CIRCUIT_OPEN_UNTIL: float = 0.0
_CONSECUTIVE_FAILURES: int = 0
_LAST_FAILURE_AT: float = 0.0


def _status_code(exc: Exception) -> int | None:
    for attr in ("status_code", "status", "http_status"):
        v = getattr(exc, attr, None)
        if isinstance(v, int):
            return v
    v = getattr(getattr(exc, "response", None), "status_code", None)
    return v if isinstance(v, int) else None


def _is_retryable(exc: Exception) -> bool:
    code = _status_code(exc)
    if code in (408, 409, 425, 429, 500, 502, 503, 504):
        return True
    msg = (str(exc) or "").lower()
    return any(k in msg for k in ("timeout", "timed out", "temporarily unavailable", "connection", "rate limit"))


def _circuit_check() -> None:
    if _CIRCUIT_OPEN_UNTIL and time.time() < _CIRCUIT_OPEN_UNTIL:
        raise AiUpstreamError("ai_temporarily_unavailable")


def _circuit_record_success() -> None:
    global _CONSECUTIVE_FAILURES, _LAST_FAILURE_AT, _CIRCUIT_OPEN_UNTIL
    _CONSECUTIVE_FAILURES = 0
    _LAST_FAILURE_AT = 0.0
    _CIRCUIT_OPEN_UNTIL = 0.0


def _circuit_record_failure(exc: Exception) -> None:
    """
    After 5 retryable upstream failures within a minute of each other, open
    the circuit for 15s so callers fail fast instead of stampeding Gemini.
    """
    global _CONSECUTIVE_FAILURES, _LAST_FAILURE_AT, _CIRCUIT_OPEN_UNTIL
    if not _is_retryable(exc):
        return
    now = time.time()
    if _LAST_FAILURE_AT and (now - _LAST_FAILURE_AT) > 60:
        _CONSECUTIVE_FAILURES = 0
    _LAST_FAILURE_AT = now
    _CONSECUTIVE_FAILURES += 1
    if _CONSECUTIVE_FAILURES >= 5:
        _CIRCUIT_OPEN_UNTIL = now + 15


def _is_model_access_error(e: Exception, *, model: str) -> bool:
    """Configured model unknown / not enabled for this key: fail over, never retry."""
    msg = (str(e) or "").lower()
    if not msg:
        return False
    if "model_not_found" in msg or "is not found for api version" in msg:
        return True
    if _status_code(e) == 404 and "model" in msg:
        return True
    return bool(model) and model.lower() in msg and "not supported" in msg


def _models_to_try(purpose: str) -> list[str]:
    """Per-purpose model, then GEMINI_MODEL, then GEMINI_FALLBACK_MODELS."""
    out: list[str] = []
    for m in [settings.gemini_model_for(purpose), settings.gemini_model]:
        m = str(m or "").strip()
        if m and m not in out:
            out.append(m)
    for m in str(settings.gemini_fallback_models or "").split(","):
        m = m.strip()
        if m and m not in out:
            out.append(m)
    return out


@dataclass(frozen=True)
class AiMeta:
    purpose: str
    model: str
    attempts: int
    used_response_format: str | None
    response_id: str | None = None


def is_configured() -> bool:
    return bool(settings.gemini_api_key and str(settings.gemini_api_key).strip())


def _client(*, timeout_s: int = 60) -> Any:
    if not is_configured():
        raise AiNotConfigured("GEMINI_API_KEY is not configured")
    # Retries happen here, not in the SDK.
    return OpenAI(
        api_key=settings.gemini_api_key,
        base_url=settings.gemini_base_url,
        max_retries=0,
        timeout=max(5, int(timeout_s or 60)),
    )


def _clip(s: str, max_len: int) -> str:
    s = str(s or "")
    return s if len(s) <= max_len else s[:max_len]


def _is_parse_failure(e: Exception | None) -> bool:
    return isinstance(e, AiParseError)


def _retry_feedback_message(*, kind: str, purpose: str, prev_err: Exception, last_output: str | None) -> dict[str, str]:
    err = _clip(str(prev_err) or "error", 500)
    if kind == "json":
        txt = (
            "Your previous attempt did not produce valid JSON for the required schema.\n"
            f"Error: {err}\n"
            "Return ONLY a single JSON object that matches the schema exactly. No markdown, no extra keys."
        )
    else:
        prev = _clip(str(last_output or ""), 1200)
        txt = (
            "Your previous attempt failed verification.\n"
            f"Error: {err}\n"
            "Fix the output to satisfy the requirement. Return ONLY the corrected final output."
            + (f"\nPrevious output (truncated):\n{prev}" if prev else "")
        )
    return {"role": "user", "content": f"[RETRY_FEEDBACK purpose={purpose} kind={kind}]\n{txt}"}


def _run_validator(validate: Validator | list[Validator] | None, text: str) -> str | None:
    if validate is None:
        return None
    for fn in validate if isinstance(validate, list) else [validate]:
        msg = fn(text)
        if msg:
            return str(msg)
    return None


def _normalize_messages(messages: list[dict[str, str]], max_chars: int) -> list[dict[str, str]]:
    # Guard against huge prompts (timeouts / cost).
    return [
        {"role": str(m.get("role") or "user"), "content": _clip(str(m.get("content") or ""), max_chars)}
        for m in messages or []
    ]


def extract_first_json_object(text: str) -> str | None:
    if not text:
        return None
    m = re.search(r"\{[\s\S]*\}", text)
    return m.group(0) if m else None


def _strict_json_schema(schema: Any) -> Any:
    """
    Structured outputs want every object closed (`additionalProperties: false`)
    with all keys listed in `required`; pydantic omits those for defaulted fields.
    """
    if isinstance(schema, dict):
        if schema.get("type") == "object":
            props = schema.get("properties")
            if isinstance(props, dict) and props:
                schema["required"] = list(props.keys())
            schema["additionalProperties"] = False
        for v in schema.values():
            _strict_json_schema(v)
    elif isinstance(schema, list):
        for v in schema:
            _strict_json_schema(v)
    return schema


def _backoff(attempt: int) -> None:
    time.sleep(min(2.5, 0.3 * (2 ** (attempt - 1)) + random.random() * 0.15))


def _cap_tokens(max_tokens: int) -> int:
    return int(min(int(max_tokens), int(settings.ai_max_output_tokens_cap or max_tokens)))


def call_text(
    *,
    purpose: str,
    messages: list[dict[str, str]],
    max_tokens: int = 1200,
    temperature: float = 0.7,
    validate: Validator | list[Validator] | None = None,
    retries: int = 2,
    timeout_s: int = 60,
    max_prompt_chars: int = 60_000,
) -> tuple[str, AiMeta]:
    _circuit_check()
    max_tokens = _cap_tokens(max_tokens)
    client = _client(timeout_s=timeout_s)
    messages = _normalize_messages(messages, max_prompt_chars)

    last_err: Exception | None = None
    for model in _models_to_try(purpose):
        prev_err: Exception | None = None
        prev_output: str | None = None
        for attempt in range(1, max(1, int(retries)) + 1):
            attempt_messages = list(messages)
            if attempt >= 2 and _is_parse_failure(prev_err):
                attempt_messages.append(
                    _retry_feedback_message(kind="text", purpose=purpose, prev_err=prev_err, last_output=prev_output)
                )
            out: str | None = None
            try:
                completion = client.chat.completions.create(
                    model=model,
                    messages=attempt_messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                )
                out = (completion.choices[0].message.content or "").strip()
                if not out:
                    raise AiParseError("empty_model_response")
                msg = _run_validator(validate, out)
                if msg:
                    raise AiParseError(f"validation_failed: {msg}")
                _circuit_record_success()
                log.info("ai_call_ok", purpose=purpose, model=model, attempts=attempt, response_format="chat_text")
                return out, AiMeta(
                    purpose=purpose,
                    model=model,
                    attempts=attempt,
                    used_response_format="chat_text",
                    response_id=getattr(completion, "id", None),
                )
            except Exception as e:  # noqa: BLE001
                last_err = e
                prev_err = e
                prev_output = out or prev_output
                _circuit_record_failure(e)
                if _is_model_access_error(e, model=model):
                    log.warning("ai_model_unavailable", purpose=purpose, model=model, error=str(e))
                    break
                log.warning(
                    "ai_text_failed",
                    purpose=purpose,
                    model=model,
                    attempt=attempt,
                    error=str(e),
                    status_code=_status_code(e),
                )
                if attempt < retries:
                    _backoff(attempt)

    if last_err and _is_model_access_error(last_err, model=settings.gemini_model_for(purpose)):
        raise AiNotConfigured(
            f"Configured Gemini model is not available (purpose '{purpose}'). "
            "Check GEMINI_MODEL / GEMINI_MODEL_* overrides."
        )
    raise AiUpstreamError(str(last_err) if last_err else "ai_text_failed")


def call_json(
    *,
    purpose: str,
    response_model: type[T],
    messages: list[dict[str, str]],
    max_tokens: int = 1500,
    temperature: float = 0.4,
    retries: int = 2,
    validate_parsed: Callable[[T], str | None] | None = None,
    fallback: Callable[[], T] | None = None,
    timeout_s: int = 60,
    max_prompt_chars: int = 60_000,
) -> tuple[T, AiMeta]:
    """Call Gemini and parse into a Pydantic model.

    Strategy per attempt:
    - JSON schema enforcement (response_format json_schema)
    - JSON object enforcement (response_format json_object)
    - plain completion, extracting the first {...} block

    With `fallback`, returns its value (model "fallback") instead of raising
    on upstream or parse failures. Missing configuration always raises.
    """
    _circuit_check()
    max_tokens = _cap_tokens(max_tokens)
    client = _client(timeout_s=timeout_s)
    messages = _normalize_messages(messages, max_prompt_chars)

    rf_json_schema: dict[str, Any] = {
        "type": "json_schema",
        "json_schema": {
            "name": response_model.__name__,
            "schema": _strict_json_schema(response_model.model_json_schema()),
            "strict": True,
        },
    }
    modes: list[tuple[dict[str, Any] | None, float]] = [
        (rf_json_schema, 0.2),
        ({"type": "json_object"}, 0.2),
        (None, temperature),
    ]

    last_err: Exception | None = None
    last_preview: str | None = None
    for model in _models_to_try(purpose):
        prev_err: Exception | None = None
        model_unavailable = False
        for attempt in range(1, max(1, int(retries)) + 1):
            attempt_messages = list(messages)
            if attempt >= 2 and _is_parse_failure(prev_err):
                attempt_messages.append(
                    _retry_feedback_message(kind="json", purpose=purpose, prev_err=prev_err, last_output=None)
                )
            for response_format, temp in modes:
                used_rf = response_format.get("type") if response_format else None
                content = ""
                try:
                    kwargs: dict[str, Any] = {
                        "model": model,
                        "messages": attempt_messages,
                        "temperature": temp,
                        "max_tokens": max_tokens,
                    }
                    if response_format is not None:
                        kwargs["response_format"] = response_format
                    completion = client.chat.completions.create(**kwargs)
                    content = (completion.choices[0].message.content or "").strip()
                    if not content:
                        raise AiParseError("empty_model_response")

                    raw_json = extract_first_json_object(content) or content
                    try:
                        data = json.loads(raw_json)
                    except ValueError as e:
                        raise AiParseError(f"json_decode_error: {e}") from e
                    try:
                        parsed = response_model.model_validate(data)
                    except ValidationError as e:
                        raise AiParseError(f"schema_validation_error: {e}") from e
                    if validate_parsed is not None:
                        msg = validate_parsed(parsed)
                        if msg:
                            raise AiParseError(f"validation_failed: {msg}")

                    _circuit_record_success()
                    log.info(
                        "ai_call_ok",
                        purpose=purpose,
                        model=model,
                        attempts=attempt,
                        response_format=f"chat_{used_rf or 'none'}",
                    )
                    return parsed, AiMeta(
                        purpose=purpose,
                        model=model,
                        attempts=attempt,
                        used_response_format=f"chat_{used_rf or 'none'}",
                        response_id=getattr(completion, "id", None),
                    )
                except Exception as e:  # noqa: BLE001
                    last_err = e
                    prev_err = e
                    last_preview = content[:240] or last_preview
                    _circuit_record_failure(e)
                    if _is_model_access_error(e, model=model):
                        log.warning("ai_model_unavailable", purpose=purpose, model=model, error=str(e))
                        model_unavailable = True
                        break
                    # Unsupported response_format on this endpoint/model: try the next mode.
                    if _status_code(e) == 400 and response_format is not None:
                        continue
                    if not _is_parse_failure(e) and not _is_retryable(e):
                        break
            if model_unavailable:
                break
            log.warning(
                "ai_json_failed",
                purpose=purpose,
                model=model,
                attempt=attempt,
                error=str(prev_err),
                preview=last_preview,
            )
            if attempt < retries:
                _backoff(attempt)

    if fallback is not None:
        log.warning("ai_json_fallback", purpose=purpose, error=str(last_err) if last_err else None)
        return fallback(), AiMeta(purpose=purpose, model="fallback", attempts=0, used_response_format=None)

    if isinstance(last_err, AiParseError):
        raise last_err
    raise AiUpstreamError(str(last_err) if last_err else "ai_json_failed")
