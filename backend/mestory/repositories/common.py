from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

_INTERNAL_KEYS = ("pk", "sk", "gsi1pk", "gsi1sk", "gsi2pk", "gsi2sk", "entityType")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def iso_in(*, days: float = 0, minutes: float = 0) -> str:
    dt = datetime.now(timezone.utc) + timedelta(days=days, minutes=minutes)
    return dt.isoformat().replace("+00:00", "Z")


def parse_iso(value: Any) -> datetime | None:
    s = str(value or "").strip()
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def strip_internal(item: dict[str, Any], id_field: str) -> dict[str, Any]:
    out = dict(item)
    out["_id"] = item.get(id_field)
    for k in _INTERNAL_KEYS:
        out.pop(k, None)
    return out
