from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from .ai.client import AiError, AiNotConfigured, AiParseError
from .db.dynamodb.errors import (
    DdbConflict,
    DdbError,
    DdbNotFound,
    DdbThrottled,
    DdbUnavailable,
    DdbValidation,
)
from .middleware.access_log import AccessLogMiddleware
from .middleware.auth import AuthMiddleware
from .middleware.cors import build_allowed_origin_regex, build_allowed_origins
from .middleware.rate_limit import RateLimitMiddleware
from .middleware.request_context import RequestContextMiddleware
from .observability.logging import configure_logging, get_logger
from .observability.otel import configure_otel, instrument_app
from .problem_details import problem_response
from .routers.admin import router as admin_router
from .routers.ai import router as ai_router
from .routers.ai_design import router as ai_design_router
from .routers.ai_images import router as ai_images_router
from .routers.analysis import router as analysis_router
from .routers.auth import router as auth_router
from .routers.books import router as books_router
from .routers.health import router as health_router
from .routers.messages import router as messages_router
from .routers.notifications import router as notifications_router
from .routers.payments import router as payments_router
from .routers.promotions import router as promotions_router
from .routers.recommendations import router as recommendations_router
from .routers.subscription import router as subscription_router
from .routers.templates import router as templates_router
from .routers.tts import router as tts_router
from .routers.users import router as users_router
from .services.templates import seed_system_templates
from .settings import settings


def create_app() -> FastAPI:
    # Logging must be configured before the app starts handling requests.
    configure_logging(level="INFO")
    log = get_logger("startup")

    # Optional tracing (no-op unless OTEL_ENABLED=true)
    configure_otel(settings)

    app = FastAPI(
        title="MeStory API",
        version="1.0.0",
        default_response_class=ORJSONResponse,
        # /path and /path/ are both registered explicitly where needed.
        redirect_slashes=False,
    )

    allowed_origins = build_allowed_origins(
        frontend_base_url=settings.frontend_base_url,
        frontend_url=settings.frontend_url,
        frontend_urls=settings.frontend_urls,
    )

    log.info("app_starting", settings=settings.to_log_safe_dict())

    # Middlewares (order matters; last added is outermost)
    # Auth runs inside CORS so auth failures still get CORS headers.
    app.add_middleware(AuthMiddleware)
    # Per-client throttling; auth and AI routes get tighter limits.
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(AccessLogMiddleware, exclude_paths={"/"})
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_origin_regex=build_allowed_origin_regex(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
        expose_headers=["ETag"],
        max_age=3000,
    )
    # Outermost: request context (request-id) wraps everything.
    app.add_middleware(RequestContextMiddleware)

    # Error handlers
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DdbError, _ddb_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(AiError, _ai_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_exception_handler)

    @app.on_event("startup")
    def _startup() -> None:
        settings.require_in_production()
        if not settings.ddb_table_name:
            log.warning("system_templates_not_seeded", reason="DDB_TABLE_NAME not set")
            return
        try:
            seed_system_templates()
        except DdbError as e:
            log.warning("system_templates_seed_failed", error=str(e))

    # Routes
    app.include_router(health_router)
    app.include_router(auth_router, prefix="/api/auth")
    app.include_router(users_router, prefix="/api/user")
    app.include_router(books_router, prefix="/api/books")
    app.include_router(ai_router, prefix="/api/ai")
    app.include_router(ai_images_router, prefix="/api/ai")
    app.include_router(ai_design_router, prefix="/api/ai")
    app.include_router(analysis_router, prefix="/api/analysis")
    app.include_router(tts_router, prefix="/api/tts")
    app.include_router(templates_router, prefix="/api/templates")
    app.include_router(notifications_router, prefix="/api/notifications")
    app.include_router(messages_router, prefix="/api/messages")
    app.include_router(promotions_router, prefix="/api/promotions")
    app.include_router(recommendations_router, prefix="/api/recommendations")
    app.include_router(subscription_router, prefix="/api/subscription")
    app.include_router(payments_router, prefix="/api/payments")
    app.include_router(admin_router, prefix="/api/admin")

    # Instrument after routers/middleware are attached.
    instrument_app(app, settings)

    return app


def _ddb_error_handler(request: Request, exc: DdbError) -> Response:
    # Map storage-layer errors to stable HTTP semantics.
    status_code = 500
    title = "Storage Error"

    if isinstance(exc, DdbValidation):
        status_code = 400
        title = "Bad Request"
    elif isinstance(exc, DdbNotFound):
        status_code = 404
        title = "Not Found"
    elif isinstance(exc, DdbConflict):
        status_code = 409
        title = "Conflict"
    elif isinstance(exc, (DdbThrottled, DdbUnavailable)):
        status_code = 503
        title = "Service Unavailable"

    extensions = {
        "operation": getattr(exc, "operation", None),
        "table": getattr(exc, "table_name", None),
        "key": getattr(exc, "key", None),
        "awsRequestId": getattr(exc, "aws_request_id", None),
        "retryable": bool(getattr(exc, "retryable", False)),
    }
    extensions = {k: v for k, v in extensions.items() if v is not None}

    # In production, problem_response already suppresses 5xx detail.
    return problem_response(
        request=request,
        status_code=status_code,
        title=title,
        detail=str(exc) if isinstance(getattr(exc, "message", None), str) else None,
        extensions=extensions,
    )


def _ai_error_handler(request: Request, exc: AiError) -> Response:
    if isinstance(exc, AiNotConfigured):
        status_code, title = 503, "AI Not Configured"
    elif isinstance(exc, AiParseError):
        status_code, title = 502, "AI Response Invalid"
    else:
        status_code, title = 502, "AI Service Error"
    get_logger("ai").warning("ai_request_failed", path=request.url.path, error=str(exc), status_code=status_code)
    return problem_response(request=request, status_code=status_code, title=title, detail=str(exc) or None)


def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    status_code = int(getattr(exc, "status_code", 500) or 500)
    detail = getattr(exc, "detail", None)

    # Routes may raise HTTPException(detail={...}) with structured fields.
    title: str | None = None
    extensions: dict | None = None
    safe_detail: str | None = None

    if isinstance(detail, dict):
        extensions = detail
        if "error" in detail and isinstance(detail.get("error"), str):
            title = detail.get("error")
        msg = detail.get("message")
        if isinstance(msg, str) and msg.strip():
            safe_detail = msg.strip()
    elif detail is not None:
        safe_detail = str(detail)

    if status_code == 404:
        title = title or "Not Found"
        safe_detail = safe_detail or "Route not found"

    return problem_response(
        request=request,
        status_code=status_code,
        title=title,
        detail=safe_detail,
        extensions=extensions,
        headers=getattr(exc, "headers", None),
    )


def _validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    errors: list[dict[str, object]] = []
    for e in exc.errors():
        loc = e.get("loc") or ()
        loc_path = ".".join([str(x) for x in loc if x != "body"])
        errors.append(
            {
                "location": list(loc) if isinstance(loc, (list, tuple)) else [],
                "path": loc_path,
                "message": e.get("msg", "Invalid value"),
                "type": e.get("type"),
            }
        )
    return problem_response(
        request=request,
        status_code=422,
        title="Validation Failed",
        detail="Request validation failed",
        errors=errors,
    )


def _unhandled_exception_handler(request: Request, exc: Exception) -> Response:
    # Full traceback goes to the logs; problem_response hides 5xx detail in production.
    rid = getattr(getattr(request, "state", None), "request_id", None)
    user = getattr(getattr(request, "state", None), "user", None)
    get_logger("unhandled").exception(
        "unhandled_exception",
        request_id=str(rid) if rid else None,
        http_method=str(request.method or "").upper() or None,
        path=request.url.path,
        user_id=getattr(user, "id", None),
    )
    return problem_response(
        request=request,
        status_code=500,
        title="Internal Server Error",
        detail=str(exc) if exc else None,
    )


app = create_app()
