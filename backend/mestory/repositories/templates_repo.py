from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import get_main_table
from .common import new_id, now_iso, strip_internal

# Fields callers may never set directly.
PROTECTED_FIELDS = ("templateId", "isSystem", "createdBy", "usageCount", "createdAt", "_id", "id")


def template_key(template_id: str) -> dict[str, str]:
    return {"pk": f"TEMPLATE#{template_id}", "sk": "META"}


def normalize_template_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    if not item:
        return None
    return strip_internal(item, "templateId")


def _index(category: str, template_id: str) -> dict[str, str]:
    return {"gsi1pk": "TEMPLATES", "gsi1sk": f"{category}#{template_id}"}


def put_template(
    *,
    fields: dict[str, Any],
    created_by: str | None,
    is_system: bool = False,
    template_id: str | None = None,
    only_if_absent: bool = False,
) -> dict[str, Any]:
    tid = template_id or new_id("tpl")
    ts = now_iso()
    body = {k: v for k, v in fields.items() if k not in PROTECTED_FIELDS}
    category = str(body.get("category") or "custom")
    item: dict[str, Any] = {
        **body,
        **template_key(tid),
        **_index(category, tid),
        "entityType": "BookTemplate",
        "templateId": tid,
        "category": category,
        "isSystem": bool(is_system),
        "createdBy": created_by,
        "isActive": bool(body.get("isActive", True)),
        "usageCount": 0,
        "createdAt": ts,
        "updatedAt": ts,
    }
    get_main_table().put_item(
        item=item,
        condition_expression="attribute_not_exists(pk)" if only_if_absent else None,
    )
    return item


def get_template(template_id: str) -> dict[str, Any] | None:
    tid = str(template_id or "").strip()
    if not tid:
        return None
    return get_main_table().get_item(key=template_key(tid))


def list_templates() -> list[dict[str, Any]]:
    return get_main_table().query_all(
        key_condition_expression=Key("gsi1pk").eq("TEMPLATES"),
        index_name="GSI1",
        scan_index_forward=True,
    )


def update_template(template_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
    updates = {k: v for k, v in fields.items() if k not in PROTECTED_FIELDS and v is not None}
    if "category" in updates:
        updates.update(_index(str(updates["category"] or "custom"), template_id))
    updates["updatedAt"] = now_iso()
    return get_main_table().update_fields(key=template_key(template_id), fields=updates)


def increment_usage(template_id: str) -> None:
    get_main_table().add_counters(key=template_key(template_id), counters={"usageCount": 1})


def delete_template(template_id: str) -> None:
    get_main_table().delete_item(key=template_key(template_id))
