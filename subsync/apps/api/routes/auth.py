from __future__ import annotations

from datetime import timedelta
import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel, Field

from subsync.apps.api.deps import get_app_settings, get_email_sender, get_store, require_identity
from subsync.apps.api.openapi import AUTH_ERROR_RESPONSES
from subsync.apps.api.response import PublicUser
from subsync.core.config import Settings
from subsync.domain.models import SessionIdentity, User
from subsync.persistence.db import Store
from subsync.services.auth import accounts
from subsync.services.auth.credentials import issue_session_token
from subsync.services.notifications.email import KIND_WELCOME, EmailSender


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"], responses=AUTH_ERROR_RESPONSES)


class SignupRequest(BaseModel):
    # Fields are optional here so missing values get the same 400 shape as malformed ones.
    email: str | None = None
    password: str | None = None
    name: str | None = Field(default=None, max_length=200)


class LoginRequest(BaseModel):
    email: str | None = None
    password: str | None = None


class ProfileUpdateRequest(BaseModel):
    name: str | None = Field(default=None, max_length=200)
    email: str | None = None


class AuthResponse(BaseModel):
    success: bool = True
    message: str
    token: str
    user: PublicUser


class UserResponse(BaseModel):
    success: bool = True
    user: PublicUser


class MessageResponse(BaseModel):
    success: bool = True
    message: str


def _issue_token(user: User, settings: Settings) -> str:
    return issue_session_token(
        user_id=user.id,
        email=user.email,
        secret=settings.jwt_secret,
        ttl=timedelta(days=settings.jwt_expiration_days),
        algorithm=settings.jwt_algorithm,
    )


async def _send_welcome(email_sender: EmailSender, user: User, app_url: str) -> None:
    result = await email_sender.send(KIND_WELCOME, user.email, {"name": user.name, "app_url": app_url})
    if not result.success:
        logger.warning("welcome_email_failed user_id=%s error=%s", user.id, result.error)


@router.post("/signup", status_code=201, response_model=AuthResponse)
async def signup(
    payload: SignupRequest,
    background_tasks: BackgroundTasks,
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
    email_sender: EmailSender = Depends(get_email_sender),
) -> dict[str, Any]:
    user = await accounts.signup(
        store,
        email=payload.email,
        password=payload.password,
        name=payload.name,
        settings=settings,
    )
    # The welcome email never blocks or fails the signup response.
    background_tasks.add_task(_send_welcome, email_sender, user, settings.frontend_url)
    return {
        "success": True,
        "message": "Account created successfully",
        "token": _issue_token(user, settings),
        "user": PublicUser.from_user(user),
    }


@router.post("/login", response_model=AuthResponse)
async def login(
    payload: LoginRequest,
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    user = await accounts.login(store, email=payload.email, password=payload.password, settings=settings)
    return {
        "success": True,
        "message": "Login successful",
        "token": _issue_token(user, settings),
        "user": PublicUser.from_user(user),
    }


@router.get("/me", response_model=UserResponse)
async def get_me(
    identity: SessionIdentity = Depends(require_identity),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    user = await accounts.get_account(store, identity.user_id)
    return {"success": True, "user": PublicUser.from_user(user)}


@router.patch("/me", response_model=UserResponse)
async def update_me(
    payload: ProfileUpdateRequest,
    identity: SessionIdentity = Depends(require_identity),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    user = await accounts.update_account(store, identity.user_id, name=payload.name, email=payload.email)
    return {"success": True, "user": PublicUser.from_user(user)}


@router.delete("/me", response_model=MessageResponse)
async def delete_me(
    identity: SessionIdentity = Depends(require_identity),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    await accounts.delete_account(store, identity.user_id)
    return {"success": True, "message": "Account deleted"}


@router.post("/logout", response_model=MessageResponse)
async def logout(identity: SessionIdentity = Depends(require_identity)) -> dict[str, Any]:
    # Credentials are stateless; the client discards its token.
    logger.info("logout user_id=%s", identity.user_id)
    return {"success": True, "message": "Logged out successfully"}
