from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

from ..settings import settings

_ALGORITHM = "HS256"


class TokenError(Exception):
    def __init__(self, message: str, *, status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class AuthUser:
    id: str
    email: str | None
    role: str
    claims: dict[str, Any] = field(default_factory=dict)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _secret() -> str:
    # Production refuses to start without JWT_SECRET (Settings.require_in_production).
    return settings.jwt_secret or "mestory-dev-secret"


def create_access_token(*, user_id: str, email: str | None, role: str, now: int | None = None) -> str:
    issued = int(now if now is not None else time.time())
    claims = {
        "id": str(user_id),
        "sub": str(user_id),
        "email": email,
        "role": str(role or "free"),
        "iss": settings.jwt_issuer,
        "iat": issued,
        "exp": issued + int(settings.jwt_expires_days) * 86400,
    }
    return jwt.encode(claims, _secret(), algorithm=_ALGORITHM)


def verify_access_token(token: str) -> AuthUser:
    if not token:
        raise TokenError("Authentication required")
    try:
        claims = jwt.decode(
            token,
            _secret(),
            algorithms=[_ALGORITHM],
            issuer=settings.jwt_issuer,
            options={"verify_aud": False},
        )
    except ExpiredSignatureError as e:
        raise TokenError("Token expired") from e
    except JWTError as e:
        raise TokenError("Invalid token") from e

    uid = str(claims.get("id") or claims.get("sub") or "").strip()
    if not uid:
        raise TokenError("Invalid token")
    return AuthUser(id=uid, email=claims.get("email"), role=str(claims.get("role") or "free"), claims=claims)


def bearer_from_header(value: str | None) -> str | None:
    parts = str(value or "").split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None
