from __future__ import annotations

import logging

from subsync.core.config import Settings
from subsync.core.errors import (
    DuplicateKeyError,
    EmailAlreadyExistsError,
    InputValidationError,
    InvalidCredentialsError,
    UserNotFoundError,
)
from subsync.domain.models import User
from subsync.persistence.db import Store
from subsync.persistence.repos import users as users_repo
from subsync.persistence.repos.users import normalize_email
from subsync.services.auth.passwords import (
    burn_verification,
    hash_password,
    validate_email,
    validate_password,
    verify_password,
)


logger = logging.getLogger(__name__)

__all__ = [
    "delete_account",
    "get_account",
    "login",
    "normalize_email",
    "signup",
    "update_account",
]


async def signup(
    store: Store,
    *,
    email: str | None,
    password: str | None,
    name: str | None = None,
    settings: Settings,
) -> User:
    if not email or not password:
        raise InputValidationError("Email and password are required")
    address = normalize_email(validate_email(email))
    validate_password(password, min_length=settings.password_min_length)
    password_hash = await hash_password(password, rounds=settings.password_hash_rounds)
    try:
        user = await users_repo.create_user(
            store,
            email=address,
            password_hash=password_hash,
            name=(name or "").strip() or None,
        )
    except DuplicateKeyError as exc:
        # The unique index is the source of truth; concurrent signups race to it.
        raise EmailAlreadyExistsError() from exc
    logger.info("account_created user_id=%s", user.id)
    return user


async def login(
    store: Store,
    *,
    email: str | None,
    password: str | None,
    settings: Settings,
) -> User:
    # Unknown email and wrong password must be indistinguishable to the caller.
    if not email or not password:
        raise InputValidationError("Email and password are required")
    user = await users_repo.get_user_by_email(store, email)
    if user is None:
        await burn_verification(rounds=settings.password_hash_rounds)
        logger.info("login_rejected reason=unknown_account")
        raise InvalidCredentialsError()
    if not await verify_password(password, user.password_hash):
        logger.info("login_rejected reason=bad_password user_id=%s", user.id)
        raise InvalidCredentialsError()
    await users_repo.update_last_login(store, user.id)
    refreshed = await users_repo.get_user_by_id(store, user.id)
    if refreshed is None:
        raise InvalidCredentialsError()
    logger.info("login_succeeded user_id=%s", user.id)
    return refreshed


async def get_account(store: Store, user_id: str) -> User:
    user = await users_repo.get_user_by_id(store, user_id)
    if user is None:
        raise UserNotFoundError()
    return user


async def update_account(
    store: Store,
    user_id: str,
    *,
    name: str | None = None,
    email: str | None = None,
) -> User:
    address = normalize_email(validate_email(email)) if email is not None else None
    try:
        user = await users_repo.update_profile(store, user_id, name=name, email=address)
    except DuplicateKeyError as exc:
        raise EmailAlreadyExistsError() from exc
    if user is None:
        raise UserNotFoundError()
    return user


async def delete_account(store: Store, user_id: str) -> None:
    if not await users_repo.delete_user(store, user_id):
        raise UserNotFoundError()
    logger.info("account_deleted user_id=%s", user_id)
