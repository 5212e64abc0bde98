from __future__ import annotations

import re

from fastapi import HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..auth.tokens import TokenError, bearer_from_header, verify_access_token
from ..observability.logging import get_logger
from ..problem_details import problem_response

# (method, path pattern) pairs reachable without a bearer token. A valid token
# on these paths is still attached to request.state.user.
_PUBLIC_ROUTES: list[tuple[str, re.Pattern[str]]] = [
    (m, re.compile(p))
    for m, p in [
        ("*", r"^/$"),
        ("*", r"^/api/health$"),
        ("POST", r"^/api/auth/(register|login)$"),
        ("GET", r"^/api/books/public$"),
        ("GET", r"^/api/books/[^/]+$"),
        ("GET", r"^/api/books/[^/]+/(reviews|social-stats)$"),
        ("GET", r"^/api/templates(/(?!user/).*)?$"),
        ("GET", r"^/api/promotions/.+$"),
        ("GET", r"^/api/recommendations/(trending|new-releases|top-authors)$"),
        ("GET", r"^/api/recommendations/(genre|similar)/[^/]+$"),
        ("GET", r"^/api/subscription/plans$"),
        ("GET", r"^/api/tts/voices$"),
        ("GET", r"^/api/user/profile/[^/]+$"),
    ]
]


def is_public_path(path: str, method: str = "GET") -> bool:
    m = str(method or "GET").upper()
    for route_method, pattern in _PUBLIC_ROUTES:
        if route_method in ("*", m) and pattern.match(path):
            return True
    return False


async def require_auth(request: Request):
    path = request.url.path

    # CORS preflight is answered by CORSMiddleware.
    if request.method.upper() == "OPTIONS":
        return

    # Only API routes carry auth; non-API paths fall through to 404s.
    if not path.startswith("/api/") and path != "/":
        return

    public = is_public_path(path, request.method)
    token = bearer_from_header(request.headers.get("authorization"))

    if not token:
        if public:
            return
        raise HTTPException(status_code=401, detail="Authentication required. Please provide a valid token.")

    try:
        request.state.user = verify_access_token(token)
    except TokenError as e:
        if public:
            # Optional auth: a stale token must not break public pages.
            return
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e


class AuthMiddleware(BaseHTTPMiddleware):
    """
    Bearer-token enforcement for /api routes.

    Added before CORSMiddleware so CORS wraps auth failures and preflight works.
    """

    async def dispatch(self, request: Request, call_next):
        log = get_logger("auth_middleware")
        try:
            await require_auth(request)
        except HTTPException as exc:
            log.info("auth_middleware_denied", status_code=exc.status_code, path=request.url.path)
            return problem_response(
                request=request,
                status_code=exc.status_code,
                title="Unauthorized" if exc.status_code == 401 else None,
                detail=str(exc.detail) if isinstance(exc.detail, str) else None,
            )
        return await call_next(request)
