from __future__ import annotations

import asyncio
from functools import lru_cache
import re

import bcrypt

from subsync.core.errors import InputValidationError


_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DEFAULT_MIN_LENGTH = 8
DEFAULT_ROUNDS = 12
# bcrypt only reads the first 72 bytes of its input; newer releases refuse anything longer.
PASSWORD_MAX_BYTES = 72


def validate_email(email: str | None) -> str:
    # Returns the trimmed address so callers can validate and normalize in one step.
    candidate = (email or "").strip()
    if not candidate:
        raise InputValidationError("Email is required")
    if not _EMAIL_PATTERN.match(candidate):
        raise InputValidationError("Invalid email format")
    return candidate


def validate_password(password: str | None, *, min_length: int = DEFAULT_MIN_LENGTH) -> str:
    if not password:
        raise InputValidationError("Password is required")
    if len(password) < min_length:
        raise InputValidationError(f"Password must be at least {min_length} characters")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise InputValidationError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes")
    return password


def _hash_sync(password: str, rounds: int) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def _verify_sync(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash; treat as a mismatch rather than a server error.
        return False


async def hash_password(password: str, *, rounds: int = DEFAULT_ROUNDS) -> str:
    # bcrypt is CPU-bound; keep it off the event loop.
    return await asyncio.to_thread(_hash_sync, password, rounds)


async def verify_password(password: str, password_hash: str) -> bool:
    return await asyncio.to_thread(_verify_sync, password, password_hash)


@lru_cache(maxsize=8)
def _dummy_hash(rounds: int) -> str:
    return _hash_sync("subsync-timing-equalizer", rounds)


async def burn_verification(*, rounds: int = DEFAULT_ROUNDS) -> None:
    """Spend the same bcrypt work as a real check so unknown emails are not faster to reject."""
    await asyncio.to_thread(_burn_sync, rounds)


def _burn_sync(rounds: int) -> None:
    _verify_sync("not-the-password", _dummy_hash(rounds))
