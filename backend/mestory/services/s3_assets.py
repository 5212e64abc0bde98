from __future__ import annotations

import re
import uuid
from functools import lru_cache
from typing import Any

import boto3

from ..settings import settings

ASSET_KINDS = ("covers", "page-images", "generated-images", "narration")


def get_assets_bucket_name() -> str:
    name = (settings.assets_bucket_name or "").strip()
    if not name:
        raise RuntimeError("ASSETS_BUCKET_NAME is not set")
    return name


def is_configured() -> bool:
    return bool((settings.assets_bucket_name or "").strip())


def _safe_owner(owner_id: str | None) -> str:
    safe = (owner_id or "shared").strip() or "shared"
    return re.sub(r"[^a-zA-Z0-9_-]", "_", safe)[:80]


def make_key(*, kind: str, file_name: str = "", owner_id: str | None = None, ext: str | None = None) -> str:
    if kind not in ASSET_KINDS:
        raise ValueError(f"unknown asset kind: {kind}")
    suffix = ""
    if ext:
        suffix = "." + ext.lstrip(".").lower()
    else:
        m = re.search(r"\.([a-zA-Z0-9]{1,10})$", (file_name or "").strip())
        if m:
            suffix = f".{m.group(1).lower()}"
    return f"mestory/{kind}/{_safe_owner(owner_id)}/{uuid.uuid4()}{suffix}"


@lru_cache(maxsize=1)
def _s3_client():
    return boto3.client("s3", region_name=settings.aws_region)


def put_object_bytes(*, key: str, data: bytes, content_type: str | None) -> dict[str, Any]:
    bucket = get_assets_bucket_name()
    params: dict[str, Any] = {"Bucket": bucket, "Key": key, "Body": data}
    if content_type:
        params["ContentType"] = str(content_type)
    _s3_client().put_object(**params)
    return {"bucket": bucket, "key": key}


def presign_get_object(*, key: str, expires_in: int = 7 * 24 * 3600) -> dict[str, Any]:
    bucket = get_assets_bucket_name()
    url = _s3_client().generate_presigned_url(
        ClientMethod="get_object",
        Params={"Bucket": bucket, "Key": key},
        ExpiresIn=max(60, min(7 * 24 * 3600, int(expires_in or 3600))),
    )
    return {"bucket": bucket, "key": key, "url": url}


def store_bytes(*, kind: str, data: bytes, content_type: str, owner_id: str | None, file_name: str = "", ext: str | None = None) -> dict[str, Any]:
    """Upload and return {bucket, key, url} with a presigned GET url."""
    key = make_key(kind=kind, file_name=file_name, owner_id=owner_id, ext=ext)
    put_object_bytes(key=key, data=data, content_type=content_type)
    return presign_get_object(key=key)


def delete_object(*, key: str) -> None:
    bucket = get_assets_bucket_name()
    _s3_client().delete_object(Bucket=bucket, Key=key)
