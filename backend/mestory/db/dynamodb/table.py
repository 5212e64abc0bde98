from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from boto3.dynamodb.types import TypeSerializer

from .client import dynamodb_client, table_resource
from .errors import DdbInternal, DdbNotFound
from .pagination import decode_next_token, encode_next_token
from .retry import RetryPolicy, ddb_call

_serializer = TypeSerializer()


def to_ddb(value: Any) -> Any:
    """Convert floats (recursively) to Decimal; boto3 rejects Python floats."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_ddb(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [to_ddb(v) for v in value]
    return value


def from_ddb(value: Any) -> Any:
    """Convert Decimals back to int/float so API payloads serialize cleanly."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_ddb(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_ddb(v) for v in value]
    if isinstance(value, set):
        return sorted(from_ddb(v) for v in value)
    return value


def _serialize_item(item: dict[str, Any]) -> dict[str, Any]:
    # Client-shaped AttributeValues ({'S': ...}) for TransactWriteItems.
    return {k: _serializer.serialize(v) for k, v in to_ddb(item).items()}


def _path_placeholders(path: str, names: dict[str, str], prefix: str) -> str:
    parts = []
    for j, seg in enumerate(str(path).split(".")):
        ph = f"#{prefix}_{j}"
        names[ph] = seg
        parts.append(ph)
    return ".".join(parts)


@dataclass(slots=True)
class Page:
    items: list[dict[str, Any]]
    next_token: str | None


class DynamoTable:
    def __init__(self, *, table_name: str):
        self.table_name = str(table_name)
        self._table = table_resource(self.table_name)
        self._client = dynamodb_client()

    # --- basic operations ---

    def get_item(self, *, key: dict[str, Any]) -> dict[str, Any] | None:
        def _op():
            return self._table.get_item(Key=key).get("Item")

        item = ddb_call("GetItem", _op, table_name=self.table_name, key=key)
        return from_ddb(item) if item else None

    def get_required(self, *, key: dict[str, Any], message: str = "Item not found") -> dict[str, Any]:
        item = self.get_item(key=key)
        if not item:
            raise DdbNotFound(message=message, operation="GetItem", table_name=self.table_name, key=key)
        return item

    def put_item(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        def _op():
            kwargs: dict[str, Any] = {"Item": to_ddb(item)}
            if condition_expression:
                kwargs["ConditionExpression"] = condition_expression
            if expression_attribute_names:
                kwargs["ExpressionAttributeNames"] = expression_attribute_names
            if expression_attribute_values:
                kwargs["ExpressionAttributeValues"] = to_ddb(expression_attribute_values)
            return self._table.put_item(**kwargs)

        return ddb_call("PutItem", _op, table_name=self.table_name)

    def delete_item(
        self,
        *,
        key: dict[str, Any],
        condition_expression: str | None = None,
    ) -> dict[str, Any]:
        def _op():
            kwargs: dict[str, Any] = {"Key": key}
            if condition_expression:
                kwargs["ConditionExpression"] = condition_expression
            return self._table.delete_item(**kwargs)

        return ddb_call("DeleteItem", _op, table_name=self.table_name, key=key)

    def update_item(
        self,
        *,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_names: dict[str, str] | None,
        expression_attribute_values: dict[str, Any],
        condition_expression: str | None = None,
        return_values: str = "ALL_NEW",
    ) -> dict[str, Any] | None:
        def _op():
            kwargs: dict[str, Any] = {
                "Key": key,
                "UpdateExpression": update_expression,
                "ExpressionAttributeValues": to_ddb(expression_attribute_values),
                "ReturnValues": return_values,
            }
            if expression_attribute_names:
                kwargs["ExpressionAttributeNames"] = expression_attribute_names
            if condition_expression:
                kwargs["ConditionExpression"] = condition_expression
            return self._table.update_item(**kwargs).get("Attributes")

        attrs = ddb_call("UpdateItem", _op, table_name=self.table_name, key=key)
        return from_ddb(attrs) if attrs else None

    def update_fields(
        self,
        *,
        key: dict[str, Any],
        fields: dict[str, Any],
        condition_expression: str | None = "attribute_exists(pk)",
    ) -> dict[str, Any] | None:
        """SET top-level or dotted attributes; fails when the item does not exist."""
        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        parts: list[str] = []
        for i, (path, value) in enumerate(fields.items()):
            ph = _path_placeholders(path, names, f"f{i}")
            values[f":v{i}"] = value
            parts.append(f"{ph} = :v{i}")
        if not parts:
            return self.get_item(key=key)
        return self.update_item(
            key=key,
            update_expression="SET " + ", ".join(parts),
            expression_attribute_names=names,
            expression_attribute_values=values,
            condition_expression=condition_expression,
        )

    def add_counters(self, *, key: dict[str, Any], counters: dict[str, int | float]) -> dict[str, Any] | None:
        """Atomically increment numeric attributes (dotted paths allowed)."""
        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        parts: list[str] = []
        for i, (path, delta) in enumerate(counters.items()):
            ph = _path_placeholders(path, names, f"c{i}")
            values[f":d{i}"] = delta
            parts.append(f"{ph} :d{i}")
        return self.update_item(
            key=key,
            update_expression="ADD " + ", ".join(parts),
            expression_attribute_names=names,
            expression_attribute_values=values,
            condition_expression="attribute_exists(pk)",
        )

    # --- query/pagination ---

    def query_page(
        self,
        *,
        key_condition_expression: Any,
        index_name: str | None = None,
        limit: int = 50,
        scan_index_forward: bool = False,
        filter_expression: Any | None = None,
        next_token: str | None = None,
    ) -> Page:
        lim = max(1, min(500, int(limit or 50)))
        lek = decode_next_token(next_token) if next_token else None

        def _op():
            kwargs: dict[str, Any] = {
                "KeyConditionExpression": key_condition_expression,
                "ScanIndexForward": bool(scan_index_forward),
                "Limit": lim,
            }
            if index_name:
                kwargs["IndexName"] = index_name
            if filter_expression is not None:
                kwargs["FilterExpression"] = filter_expression
            if lek:
                kwargs["ExclusiveStartKey"] = lek
            return self._table.query(**kwargs)

        resp = ddb_call("Query", _op, table_name=self.table_name)
        items = [from_ddb(i) for i in (resp.get("Items") or [])]
        return Page(items=items, next_token=encode_next_token(resp.get("LastEvaluatedKey")))

    def query_all(
        self,
        *,
        key_condition_expression: Any,
        index_name: str | None = None,
        scan_index_forward: bool = False,
        max_items: int | None = None,
    ) -> list[dict[str, Any]]:
        """Follow pages until exhausted (or `max_items` collected)."""
        out: list[dict[str, Any]] = []
        token: str | None = None
        while True:
            page = self.query_page(
                key_condition_expression=key_condition_expression,
                index_name=index_name,
                limit=500,
                scan_index_forward=scan_index_forward,
                next_token=token,
            )
            out.extend(page.items)
            if max_items is not None and len(out) >= max_items:
                return out[:max_items]
            if not page.next_token:
                return out
            token = page.next_token

    # --- transactions ---

    def transact_write(
        self,
        *,
        puts: Iterable[dict[str, Any]] = (),
        deletes: Iterable[dict[str, Any]] = (),
        updates: Iterable[dict[str, Any]] = (),
        retry_policy: RetryPolicy | None = None,
    ) -> dict[str, Any]:
        # Entries must already be client-shaped (see tx_put / tx_delete / tx_update).
        items: list[dict[str, Any]] = (
            [{"Put": p} for p in puts] + [{"Delete": d} for d in deletes] + [{"Update": u} for u in updates]
        )
        if not items:
            return {"ok": True}

        def _op():
            return self._client.transact_write_items(TransactItems=items)

        return ddb_call(
            "TransactWriteItems",
            _op,
            table_name=self.table_name,
            retry_policy=retry_policy or RetryPolicy(max_attempts=6, base_delay_s=0.08, max_delay_s=2.0),
        )

    def tx_put(self, *, item: dict[str, Any], condition_expression: str | None = None) -> dict[str, Any]:
        out: dict[str, Any] = {"TableName": self.table_name, "Item": _serialize_item(item)}
        if condition_expression:
            out["ConditionExpression"] = condition_expression
        return out

    def tx_delete(self, *, key: dict[str, Any], condition_expression: str | None = None) -> dict[str, Any]:
        out: dict[str, Any] = {"TableName": self.table_name, "Key": _serialize_item(key)}
        if condition_expression:
            out["ConditionExpression"] = condition_expression
        return out

    def tx_update(
        self,
        *,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_names: dict[str, str] | None,
        expression_attribute_values: dict[str, Any],
        condition_expression: str | None = None,
    ) -> dict[str, Any]:
        out: dict[str, Any] = {
            "TableName": self.table_name,
            "Key": _serialize_item(key),
            "UpdateExpression": update_expression,
            "ExpressionAttributeValues": _serialize_item(expression_attribute_values),
        }
        if expression_attribute_names:
            out["ExpressionAttributeNames"] = expression_attribute_names
        if condition_expression:
            out["ConditionExpression"] = condition_expression
        return out


def get_main_table() -> DynamoTable:
    from ...settings import settings

    if not settings.ddb_table_name:
        raise DdbInternal(message="DDB_TABLE_NAME is not set", operation="Config")
    return DynamoTable(table_name=settings.ddb_table_name)
