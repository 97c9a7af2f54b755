from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from subsync.apps.api.deps import get_app_settings, get_email_sender, get_store
from subsync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from subsync.core.config import Settings
from subsync.core.errors import InputValidationError
from subsync.persistence.db import Store
from subsync.services import password_reset
from subsync.services.notifications.email import EmailSender


router = APIRouter(prefix="/api/auth", tags=["password-reset"], responses=DEFAULT_ERROR_RESPONSES)


class ForgotPasswordRequest(BaseModel):
    email: str | None = None


class ResetPasswordRequest(BaseModel):
    token: str | None = None
    password: str | None = None


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class TokenValidityResponse(BaseModel):
    success: bool = True
    valid: bool


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    payload: ForgotPasswordRequest,
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
    email_sender: EmailSender = Depends(get_email_sender),
) -> dict[str, Any]:
    # Known and unknown addresses produce the same body.
    if not payload.email or not payload.email.strip():
        raise InputValidationError("Email is required")
    await password_reset.request_password_reset(
        store,
        payload.email,
        settings=settings,
        email_sender=email_sender,
    )
    return {"success": True, "message": password_reset.RESET_REQUEST_MESSAGE}


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    payload: ResetPasswordRequest,
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    if not payload.token or not payload.password:
        raise InputValidationError("Token and password are required")
    await password_reset.consume_reset_token(store, payload.token, payload.password, settings=settings)
    return {"success": True, "message": "Password has been reset successfully"}


@router.get("/verify-reset-token", response_model=TokenValidityResponse)
async def verify_reset_token(
    token: str | None = Query(default=None),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    if not token:
        raise InputValidationError("Token is required")
    return {"success": True, "valid": await password_reset.reset_token_is_valid(store, token)}
