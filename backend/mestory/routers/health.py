from __future__ import annotations

from fastapi import APIRouter

from ..settings import settings

router = APIRouter()


def _health() -> dict[str, object]:
    return {
        "message": "MeStory API",
        "version": "1.0.0",
        "status": "running",
        "port": settings.port,
        "environment": settings.environment,
        "dynamodb": "configured" if settings.ddb_table_name else "missing",
        "endpoints": [
            "POST /api/auth/register",
            "POST /api/auth/login",
            "GET /api/books",
            "POST /api/books",
            "GET /api/books/public",
            "POST /api/ai",
            "POST /api/tts/synthesize",
            "GET /api/templates",
            "GET /api/notifications",
            "GET /api/messages/conversations",
            "GET /api/promotions/featured",
            "GET /api/recommendations",
            "GET /api/subscription/plans",
            "POST /api/payments/create-order",
            "GET /api/admin/stats",
        ],
    }


@router.get("/", tags=["health"])
def root():
    return _health()


@router.get("/api/health", tags=["health"])
def health():
    return _health()
