from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from subsync.domain.models import User


class ErrorBody(BaseModel):
    # Shared error shape for every non-2xx JSON response.
    success: bool = False
    error: str
    code: str
    details: dict[str, Any] | None = None


class PublicUser(BaseModel):
    # Public projection of a user; the password hash has no field here.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    email: str
    name: str | None = None
    subscription_tier: str
    subscription_status: str
    created_at: datetime | None = None
    last_login: datetime | None = None

    @classmethod
    def from_user(cls, user: User) -> "PublicUser":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            subscription_tier=user.subscription_tier,
            subscription_status=user.subscription_status,
            created_at=user.created_at,
            last_login=user.last_login,
        )


def get_request_id(request: Request) -> str:
    # Use existing request IDs when provided to preserve traceability.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    header_request_id = request.headers.get("X-Request-Id")
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = str(uuid4())
    request.state.request_id = generated
    return generated


def error_response(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return ErrorBody(error=message, code=code, details=details).model_dump(exclude_none=True)
