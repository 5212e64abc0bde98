from __future__ import annotations

from fastapi import HTTPException, Request

from .tokens import AuthUser


def current_user(request: Request) -> AuthUser:
    """Dependency: the user attached by AuthMiddleware (401 when absent)."""
    user = getattr(request.state, "user", None)
    if not isinstance(user, AuthUser):
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


def optional_user(request: Request) -> AuthUser | None:
    user = getattr(request.state, "user", None)
    return user if isinstance(user, AuthUser) else None


def require_admin(request: Request) -> AuthUser:
    user = current_user(request)
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Access denied. Admin privileges required.")
    return user
