from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from subsync.apps.api.deps import get_app_settings, get_store
from subsync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from subsync.core.config import Settings
from subsync.persistence.db import Store

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)

API_VERSION = "1.0.0"

ENDPOINT_INDEX: dict[str, dict[str, str]] = {
    "auth": {
        "signup": "POST /api/auth/signup",
        "login": "POST /api/auth/login",
        "me": "GET /api/auth/me",
        "updateMe": "PATCH /api/auth/me",
        "deleteMe": "DELETE /api/auth/me",
        "logout": "POST /api/auth/logout",
        "forgotPassword": "POST /api/auth/forgot-password",
        "resetPassword": "POST /api/auth/reset-password",
        "verifyResetToken": "GET /api/auth/verify-reset-token",
    },
    "stripe": {
        "createCheckout": "POST /api/stripe/create-checkout-session",
        "getSession": "GET /api/stripe/session/{session_id}",
        "createPortal": "POST /api/stripe/create-portal-session",
        "webhook": "POST /api/stripe/webhook",
    },
}


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    service: str
    version: str
    database: str


class ApiIndexResponse(BaseModel):
    name: str
    version: str
    endpoints: dict[str, dict[str, str]]


@router.get("/health", response_model=HealthResponse)
async def health(
    settings: Settings = Depends(get_app_settings),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    # Liveness only; the store was verified at startup.
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.app_name,
        "version": API_VERSION,
        "database": store.backend,
    }


@router.get("/api", response_model=ApiIndexResponse)
async def api_index(settings: Settings = Depends(get_app_settings)) -> dict[str, Any]:
    return {"name": settings.app_name, "version": API_VERSION, "endpoints": ENDPOINT_INDEX}
