from __future__ import annotations

import random
import string
import time
from typing import Any

import httpx
from cachetools import TTLCache

from ..observability.logging import get_logger
from ..settings import settings

log = get_logger("paypal")

# Client-credentials tokens are valid ~9h; refresh well before expiry.
_token_cache: TTLCache[str, str] = TTLCache(maxsize=2, ttl=30 * 60)


class PayPalError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def is_mock_mode() -> bool:
    return settings.paypal_mock_mode


def is_configured() -> bool:
    return bool(settings.paypal_client_id and settings.paypal_client_secret)


def mock_order_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"MOCK-{int(time.time() * 1000)}-{suffix}"


def mock_capture_id() -> str:
    return f"MOCK-CAPTURE-{int(time.time() * 1000)}"


def _access_token() -> str:
    cached = _token_cache.get("token")
    if cached:
        return cached
    if not is_configured():
        raise PayPalError("PayPal is not configured", status_code=503)
    with httpx.Client(timeout=30) as client:
        resp = client.post(
            f"{settings.paypal_api_base}/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(str(settings.paypal_client_id), str(settings.paypal_client_secret)),
            headers={"Accept": "application/json"},
        )
    if resp.status_code >= 400:
        log.warning("paypal_token_failed", status_code=resp.status_code)
        raise PayPalError("PayPal authentication failed", status_code=502)
    token = str((resp.json() or {}).get("access_token") or "")
    if not token:
        raise PayPalError("PayPal authentication failed", status_code=502)
    _token_cache["token"] = token
    return token


def _request(method: str, path: str, *, json: dict[str, Any] | None = None) -> dict[str, Any]:
    token = _access_token()
    with httpx.Client(timeout=30) as client:
        resp = client.request(
            method,
            f"{settings.paypal_api_base}{path}",
            json=json,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "Prefer": "return=representation",
            },
        )
    if resp.status_code >= 400:
        log.warning("paypal_request_failed", path=path, status_code=resp.status_code, body=resp.text[:500])
        raise PayPalError(f"PayPal request failed ({resp.status_code})", status_code=502)
    return resp.json() or {}


def create_order(
    *, amount: float, currency: str, description: str, return_url: str, cancel_url: str
) -> dict[str, Any]:
    """Orders v2 CAPTURE intent; returns {id, status, approvalUrl}."""
    body = {
        "intent": "CAPTURE",
        "purchase_units": [
            {
                "amount": {"currency_code": currency, "value": f"{float(amount):.2f}"},
                "description": description[:127],
            }
        ],
        "application_context": {
            "brand_name": "MeStory",
            "user_action": "PAY_NOW",
            "return_url": return_url,
            "cancel_url": cancel_url,
        },
    }
    data = _request("POST", "/v2/checkout/orders", json=body)
    approval = next(
        (str(link.get("href")) for link in data.get("links") or [] if link.get("rel") in ("approve", "payer-action")),
        None,
    )
    log.info("paypal_order_created", order_id=data.get("id"), status=data.get("status"))
    return {"id": data.get("id"), "status": data.get("status"), "approvalUrl": approval}


def capture_order(order_id: str) -> dict[str, Any]:
    """Returns {status, captureId}; raises PayPalError when the capture is not COMPLETED."""
    data = _request("POST", f"/v2/checkout/orders/{order_id}/capture", json={})
    status = str(data.get("status") or "")
    capture_id = None
    for unit in data.get("purchase_units") or []:
        for cap in (unit.get("payments") or {}).get("captures") or []:
            capture_id = cap.get("id") or capture_id
    if status != "COMPLETED":
        raise PayPalError(f"Payment not completed (status {status or 'unknown'})", status_code=400)
    log.info("paypal_order_captured", order_id=order_id, capture_id=capture_id)
    return {"status": status, "captureId": capture_id}
