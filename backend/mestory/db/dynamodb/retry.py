from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from .errors import (
    DdbConflict,
    DdbError,
    DdbInternal,
    DdbThrottled,
    DdbUnavailable,
    DdbValidation,
)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay_s: float = 0.05
    max_delay_s: float = 1.0


_RETRYABLE_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
    "InternalServerError",
    "ServiceUnavailable",
    "TransactionConflictException",
}

# (error class, message, retryable) per non-retryable AWS error code.
_CODE_MAP: dict[str, tuple[type[DdbError], str]] = {
    "ConditionalCheckFailedException": (DdbConflict, "DynamoDB conditional check failed"),
    "ValidationException": (DdbValidation, "DynamoDB request validation failed"),
    "ParamValidationError": (DdbValidation, "DynamoDB request validation failed"),
    "AccessDeniedException": (DdbUnavailable, "DynamoDB access denied"),
    "UnrecognizedClientException": (DdbUnavailable, "DynamoDB access denied"),
    "ResourceNotFoundException": (DdbUnavailable, "DynamoDB table not found"),
}


def _sleep_backoff(policy: RetryPolicy, attempt: int) -> None:
    # Full jitter exponential backoff.
    exp = min(policy.max_delay_s, policy.base_delay_s * (2 ** max(0, attempt - 1)))
    time.sleep(random.random() * exp)


def _client_error_code(e: ClientError) -> str:
    return str(((e.response or {}).get("Error") or {}).get("Code") or "")


def _client_error_request_id(e: ClientError) -> str | None:
    return ((e.response or {}).get("ResponseMetadata") or {}).get("RequestId")


def _is_retryable_client_error(e: ClientError) -> bool:
    code = _client_error_code(e)
    if code in _RETRYABLE_CODES:
        return True
    if code == "TransactionCanceledException":
        # Only contention-driven cancellations are worth retrying.
        reasons = (e.response or {}).get("CancellationReasons") or []
        return any((r or {}).get("Code") == "TransactionConflictException" for r in reasons)
    return False


def _map_botocore_error(
    *,
    operation: str,
    table_name: str | None,
    key: dict[str, Any] | None,
    exc: Exception,
) -> DdbError:
    if isinstance(exc, DdbError):
        return exc

    common = {"operation": operation, "table_name": table_name, "key": key, "cause": exc}

    if isinstance(exc, ClientError):
        code = _client_error_code(exc)
        rid = _client_error_request_id(exc)
        if code in _CODE_MAP:
            cls, msg = _CODE_MAP[code]
            return cls(message=msg, aws_request_id=rid, retryable=False, **common)
        if _is_retryable_client_error(exc):
            return DdbThrottled(
                message="DynamoDB request throttled or unavailable",
                aws_request_id=rid,
                retryable=True,
                **common,
            )
        if code == "TransactionCanceledException":
            # Condition failures inside a transaction (duplicate keys, stale writes).
            return DdbConflict(message="DynamoDB transaction cancelled", aws_request_id=rid, **common)
        return DdbInternal(
            message=f"DynamoDB request failed ({code or 'ClientError'})",
            aws_request_id=rid,
            **common,
        )

    if isinstance(exc, BotoCoreError):
        return DdbUnavailable(message="DynamoDB client error", retryable=True, **common)

    return DdbInternal(message="Unexpected DynamoDB error", **common)


def ddb_call(
    operation: str,
    fn: Callable[[], T],
    *,
    table_name: str | None = None,
    key: dict[str, Any] | None = None,
    retry_policy: RetryPolicy | None = None,
) -> T:
    policy = retry_policy or RetryPolicy()
    attempts = max(1, int(policy.max_attempts))

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as e:  # noqa: BLE001
            mapped = _map_botocore_error(operation=operation, table_name=table_name, key=key, exc=e)
            if not mapped.retryable or attempt >= attempts:
                raise mapped from e
            _sleep_backoff(policy, attempt)

    raise DdbInternal(message="DynamoDB request failed", operation=operation, table_name=table_name, key=key)
