from __future__ import annotations

from typing import Any


def ok(data: Any = None, *, message: str | None = None, **extra: Any) -> dict[str, Any]:
    """Success envelope shared by every endpoint: {"success": true, "data": ...}."""
    out: dict[str, Any] = {"success": True}
    if message:
        out["message"] = message
    if data is not None:
        out["data"] = data
    out.update(extra)
    return out
