from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging

from subsync.core.config import Settings
from subsync.core.errors import ResetTokenInvalidError
from subsync.persistence.db import Store
from subsync.persistence.repos import reset_tokens as tokens_repo
from subsync.persistence.repos import users as users_repo
from subsync.services.auth.credentials import generate_reset_secret, hash_token
from subsync.services.auth.passwords import hash_password, validate_password
from subsync.services.notifications.email import KIND_PASSWORD_RESET, EmailSender


logger = logging.getLogger(__name__)

# Returned for every request so callers cannot discover which emails have accounts.
RESET_REQUEST_MESSAGE = "If an account exists with this email, you will receive a password reset link."


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_reset_url(frontend_url: str, secret: str) -> str:
    return f"{frontend_url.rstrip('/')}/reset-password?token={secret}"


async def request_password_reset(
    store: Store,
    email: str,
    *,
    settings: Settings,
    email_sender: EmailSender,
    now: datetime | None = None,
) -> None:
    user = await users_repo.get_user_by_email(store, email)
    if user is None:
        logger.info("password_reset_requested account=unknown")
        return

    secret, token_hash = generate_reset_secret()
    expires_at = (now or _utc_now()) + timedelta(minutes=settings.reset_token_ttl_minutes)
    # Upsert on user id: issuing a new token invalidates any earlier one.
    await tokens_repo.upsert_token(store, user_id=user.id, token_hash=token_hash, expires_at=expires_at)
    logger.info("password_reset_requested account=known user_id=%s", user.id)

    result = await email_sender.send(
        KIND_PASSWORD_RESET,
        user.email,
        {"name": user.name, "reset_url": build_reset_url(settings.frontend_url, secret)},
    )
    if not result.success:
        # The token stays valid; the user can simply ask again.
        logger.warning("password_reset_email_failed user_id=%s error=%s", user.id, result.error)


async def validate_reset_token(
    store: Store,
    secret: str | None,
    *,
    now: datetime | None = None,
) -> str | None:
    # Resolve a presented secret to its user id; expired rows are deleted on sight.
    if not secret:
        return None
    token = await tokens_repo.get_token_by_hash(store, hash_token(secret))
    if token is None:
        return None
    if token.is_expired(now or _utc_now()):
        await tokens_repo.delete_token_by_hash(store, token.token_hash)
        logger.info("password_reset_token_expired user_id=%s", token.user_id)
        return None
    return token.user_id


async def reset_token_is_valid(store: Store, secret: str | None, *, now: datetime | None = None) -> bool:
    # Read-only check; unlike validate_reset_token it never deletes anything.
    if not secret:
        return False
    token = await tokens_repo.get_token_by_hash(store, hash_token(secret))
    return token is not None and not token.is_expired(now or _utc_now())


async def consume_reset_token(
    store: Store,
    secret: str | None,
    new_password: str | None,
    *,
    settings: Settings,
    now: datetime | None = None,
) -> str:
    password = validate_password(new_password, min_length=settings.password_min_length)
    if not secret:
        raise ResetTokenInvalidError()
    user_id = await validate_reset_token(store, secret, now=now)
    if user_id is None:
        raise ResetTokenInvalidError()
    # Hash before the claim so a hashing failure leaves the token usable.
    password_hash = await hash_password(password, rounds=settings.password_hash_rounds)
    # Deleting the row is the claim: of two concurrent consumers only one sees a row affected.
    if await tokens_repo.delete_token_by_hash(store, hash_token(secret)) != 1:
        raise ResetTokenInvalidError()
    if not await users_repo.update_password_hash(store, user_id, password_hash):
        raise ResetTokenInvalidError()
    logger.info("password_reset_completed user_id=%s", user_id)
    return user_id
