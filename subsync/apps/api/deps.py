from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request, status

from subsync.core.config import Settings
from subsync.domain.models import SessionIdentity
from subsync.persistence.db import Store
from subsync.services.auth.credentials import verify_session_token
from subsync.services.billing.gateway import PaymentGateway
from subsync.services.notifications.email import EmailSender


def get_store(request: Request) -> Store:
    # The store handle is built once at startup and shared by every request.
    return request.app.state.store


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_email_sender(request: Request) -> EmailSender:
    return request.app.state.email_sender


def get_payment_gateway(request: Request) -> PaymentGateway:
    return request.app.state.payment_gateway


def _auth_error(message: str) -> HTTPException:
    # Normalize auth errors for clients without leaking internal details.
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden_error(message: str) -> HTTPException:
    # A token was presented but did not verify.
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


async def require_identity(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_app_settings),
) -> SessionIdentity:
    token = _parse_bearer_token(authorization)
    if token is None:
        raise _auth_error("Access token required")
    identity = verify_session_token(token, secret=settings.jwt_secret, algorithm=settings.jwt_algorithm)
    if identity is None:
        raise _forbidden_error("Invalid or expired token")
    return identity
