from __future__ import annotations

import copy
import sys
from pathlib import Path
from typing import Any, Iterable

import pytest

# Ensure `backend/` is on sys.path so `import mestory.*` works in tests.
BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

from mestory.db.dynamodb.errors import DdbConflict, DdbValidation  # noqa: E402

_SORT_ATTR = {None: "sk", "GSI1": "gsi1sk", "GSI2": "gsi2sk"}


def _clean(value: Any) -> Any:
    # Mirrors to_ddb: None values inside maps are not stored.
    if isinstance(value, dict):
        return {k: _clean(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_clean(v) for v in value]
    return value


def _parent(item: dict[str, Any], path: str) -> tuple[dict[str, Any], str]:
    parts = path.split(".")
    cur = item
    for seg in parts[:-1]:
        cur = cur.setdefault(seg, {})
    return cur, parts[-1]


def _conditions(cond: Any) -> list[tuple[str, str, tuple[Any, ...]]]:
    expr = cond.get_expression()
    op = expr["operator"]
    values = expr["values"]
    if op == "AND":
        return _conditions(values[0]) + _conditions(values[1])
    return [(values[0].name, op, tuple(values[1:]))]


def _matches(item: dict[str, Any], attr: str, op: str, args: tuple[Any, ...]) -> bool:
    if attr not in item:
        return False
    v = item[attr]
    if op == "=":
        return v == args[0]
    if op == "begins_with":
        return str(v).startswith(str(args[0]))
    if op == "BETWEEN":
        return str(args[0]) <= str(v) <= str(args[1])
    if op == ">=":
        return str(v) >= str(args[0])
    if op == ">":
        return str(v) > str(args[0])
    if op == "<=":
        return str(v) <= str(args[0])
    if op == "<":
        return str(v) < str(args[0])
    raise AssertionError(f"unsupported key condition: {op}")


class FakeTable:
    """In-memory stand-in for DynamoTable covering the calls the repositories make."""

    table_name = "mestory-test"

    def __init__(self) -> None:
        self.items: dict[tuple[str, str], dict[str, Any]] = {}

    @staticmethod
    def _k(key: dict[str, Any]) -> tuple[str, str]:
        return (str(key["pk"]), str(key["sk"]))

    def _check(self, k: tuple[str, str], condition_expression: str | None, operation: str) -> None:
        if condition_expression == "attribute_not_exists(pk)" and k in self.items:
            raise DdbConflict(message="DynamoDB conditional check failed", operation=operation)
        if condition_expression == "attribute_exists(pk)" and k not in self.items:
            raise DdbConflict(message="DynamoDB conditional check failed", operation=operation)

    def get_item(self, *, key: dict[str, Any]) -> dict[str, Any] | None:
        item = self.items.get(self._k(key))
        return copy.deepcopy(item) if item else None

    def put_item(self, *, item: dict[str, Any], condition_expression: str | None = None, **_: Any) -> dict[str, Any]:
        k = self._k(item)
        self._check(k, condition_expression, "PutItem")
        self.items[k] = _clean(copy.deepcopy(item))
        return {}

    def delete_item(self, *, key: dict[str, Any], condition_expression: str | None = None) -> dict[str, Any]:
        k = self._k(key)
        self._check(k, condition_expression, "DeleteItem")
        self.items.pop(k, None)
        return {}

    def update_fields(
        self,
        *,
        key: dict[str, Any],
        fields: dict[str, Any],
        condition_expression: str | None = "attribute_exists(pk)",
    ) -> dict[str, Any] | None:
        k = self._k(key)
        self._check(k, condition_expression, "UpdateItem")
        for path, value in fields.items():
            if value is None:
                # A dropped :vN placeholder is rejected by DynamoDB.
                raise DdbValidation(message="DynamoDB request validation failed", operation="UpdateItem")
        item = self.items.setdefault(k, {"pk": k[0], "sk": k[1]})
        for path, value in fields.items():
            parent, leaf = _parent(item, path)
            parent[leaf] = _clean(copy.deepcopy(value))
        return copy.deepcopy(item)

    def add_counters(self, *, key: dict[str, Any], counters: dict[str, int | float]) -> dict[str, Any] | None:
        k = self._k(key)
        self._check(k, "attribute_exists(pk)", "UpdateItem")
        item = self.items[k]
        for path, delta in counters.items():
            parent, leaf = _parent(item, path)
            parent[leaf] = (parent.get(leaf) or 0) + delta
        return copy.deepcopy(item)

    def query_all(
        self,
        *,
        key_condition_expression: Any,
        index_name: str | None = None,
        scan_index_forward: bool = False,
        max_items: int | None = None,
    ) -> list[dict[str, Any]]:
        conds = _conditions(key_condition_expression)
        sort_attr = _SORT_ATTR[index_name]
        out = [it for it in self.items.values() if all(_matches(it, *c) for c in conds)]
        out.sort(key=lambda it: str(it.get(sort_attr) or ""), reverse=not scan_index_forward)
        if max_items is not None:
            out = out[:max_items]
        return copy.deepcopy(out)

    def transact_write(
        self,
        *,
        puts: Iterable[dict[str, Any]] = (),
        deletes: Iterable[dict[str, Any]] = (),
        updates: Iterable[dict[str, Any]] = (),
        retry_policy: Any = None,
    ) -> dict[str, Any]:
        puts, deletes = list(puts), list(deletes)
        try:
            for p in puts:
                self._check(self._k(p["Item"]), p.get("ConditionExpression"), "TransactWriteItems")
            for d in deletes:
                self._check(self._k(d["Key"]), d.get("ConditionExpression"), "TransactWriteItems")
        except DdbConflict:
            raise DdbConflict(message="DynamoDB transaction cancelled", operation="TransactWriteItems")
        for p in puts:
            self.items[self._k(p["Item"])] = _clean(copy.deepcopy(p["Item"]))
        for d in deletes:
            self.items.pop(self._k(d["Key"]), None)
        return {"ok": True}

    def tx_put(self, *, item: dict[str, Any], condition_expression: str | None = None) -> dict[str, Any]:
        out: dict[str, Any] = {"Item": copy.deepcopy(item)}
        if condition_expression:
            out["ConditionExpression"] = condition_expression
        return out

    def tx_delete(self, *, key: dict[str, Any], condition_expression: str | None = None) -> dict[str, Any]:
        out: dict[str, Any] = {"Key": dict(key)}
        if condition_expression:
            out["ConditionExpression"] = condition_expression
        return out


@pytest.fixture
def table(monkeypatch) -> FakeTable:
    from mestory.repositories import (
        activity_repo,
        books_repo,
        conversations_repo,
        notifications_repo,
        templates_repo,
        transactions_repo,
        users_repo,
    )

    fake = FakeTable()
    for mod in (
        activity_repo,
        books_repo,
        conversations_repo,
        notifications_repo,
        templates_repo,
        transactions_repo,
        users_repo,
    ):
        monkeypatch.setattr(mod, "get_main_table", lambda: fake)
    return fake


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    from mestory.middleware.rate_limit import RateLimitMiddleware

    RateLimitMiddleware.reset()
    yield
    RateLimitMiddleware.reset()


@pytest.fixture
def client(table):
    from fastapi.testclient import TestClient

    from mestory.main import create_app

    return TestClient(create_app())


@pytest.fixture
def auth_headers():
    from mestory.auth.tokens import create_access_token

    def _headers(user: dict[str, Any]) -> dict[str, str]:
        token = create_access_token(
            user_id=str(user["userId"]), email=user.get("email"), role=str(user.get("role") or "free")
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def make_user(table):
    from mestory.auth.passwords import hash_password
    from mestory.repositories import users_repo

    counter = {"n": 0}

    def _make(*, name: str = "Test Writer", role: str = "free", password: str = "Secret123", **fields: Any) -> dict[str, Any]:
        counter["n"] += 1
        user = users_repo.create_user(
            name=name,
            email=f"writer{counter['n']}@mestory.io",
            password_hash=hash_password(password),
            role=role,
        )
        if fields:
            user = users_repo.update_user(str(user["userId"]), fields) or user
        return user

    return _make


@pytest.fixture
def make_book(table):
    from mestory.repositories import books_repo

    def _make(author: dict[str, Any], *, published: bool = False, price: float = 0, **fields: Any) -> dict[str, Any]:
        base = {
            "title": "The Lighthouse Keeper",
            "genre": "Fantasy",
            "chapters": [
                {"title": "Arrival", "content": "<p>The storm rolled in over the cliffs.</p>"},
                {"title": "The Lamp", "content": "<p>She climbed the spiral stairs every night.</p>"},
            ],
        }
        book = books_repo.create_book(author_id=str(author["userId"]), fields={**base, **fields})
        if published:
            book = (
                books_repo.set_status(
                    book,
                    "published",
                    {
                        "publishingStatus.isPublic": True,
                        "publishingStatus.publishedAt": book["createdAt"],
                        "publishingStatus.isFree": price == 0,
                        "publishingStatus.price": price,
                    },
                )
                or book
            )
        return book

    return _make
