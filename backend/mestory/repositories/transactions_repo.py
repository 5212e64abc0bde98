from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import get_main_table
from . import users_repo
from .common import now_iso, strip_internal

TRANSACTION_STATUSES = ("pending", "completed", "failed", "refunded")


def transaction_key(order_id: str) -> dict[str, str]:
    return {"pk": f"ORDER#{order_id}", "sk": "TXN"}


def normalize_transaction_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    if not item:
        return None
    return strip_internal(item, "orderId")


def create_transaction(
    *,
    user_id: str,
    order_id: str,
    amount: float,
    currency: str,
    plan: str,
    payment_method: str,
    description: str,
    paypal_order_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    ts = now_iso()
    item: dict[str, Any] = {
        **transaction_key(order_id),
        "entityType": "Transaction",
        "orderId": order_id,
        "userId": user_id,
        "amount": float(amount),
        "currency": currency,
        "plan": plan,
        "status": "pending",
        "paymentMethod": payment_method,
        "paypalOrderId": paypal_order_id,
        "description": description,
        "metadata": metadata or {},
        "createdAt": ts,
        "updatedAt": ts,
        "gsi1pk": f"USER_TXN#{user_id}",
        "gsi1sk": ts,
    }
    get_main_table().put_item(item=item, condition_expression="attribute_not_exists(pk)")
    return item


def get_transaction(order_id: str) -> dict[str, Any] | None:
    oid = str(order_id or "").strip()
    if not oid:
        return None
    return get_main_table().get_item(key=transaction_key(oid))


def update_transaction(order_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
    updates = dict(fields)
    updates["updatedAt"] = now_iso()
    return get_main_table().update_fields(key=transaction_key(order_id), fields=updates)


def complete_transaction(order_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
    return update_transaction(order_id, {**fields, "status": "completed", "completedAt": now_iso()})


def list_user_transactions(user_id: str, *, limit: int = 50) -> list[dict[str, Any]]:
    return get_main_table().query_all(
        key_condition_expression=Key("gsi1pk").eq(f"USER_TXN#{user_id}"),
        index_name="GSI1",
        scan_index_forward=False,
        max_items=limit,
    )


def list_completed_transactions() -> list[dict[str, Any]]:
    """All completed transactions across users (admin revenue reports)."""
    out: list[dict[str, Any]] = []
    for u in users_repo.list_users():
        uid = str(u.get("userId") or "")
        out.extend(t for t in list_user_transactions(uid, limit=1000) if t.get("status") == "completed")
    return out
