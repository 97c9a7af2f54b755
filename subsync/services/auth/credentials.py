from __future__ import annotations

from datetime import datetime, timedelta, timezone
import hashlib
import logging
import secrets

import jwt

from subsync.domain.models import SessionIdentity


logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL = timedelta(days=7)
SESSION_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ["sub", "email", "iat", "exp"]


def hash_token(raw_token: str) -> str:
    # Use SHA-256 for deterministic, non-reversible token storage.
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def generate_reset_secret() -> tuple[str, str]:
    # 256 bits of entropy; only the hash is ever persisted.
    raw = secrets.token_hex(32)
    return raw, hash_token(raw)


def issue_session_token(
    *,
    user_id: str,
    email: str,
    secret: str,
    ttl: timedelta = DEFAULT_SESSION_TTL,
    now: datetime | None = None,
    algorithm: str = SESSION_ALGORITHM,
) -> str:
    issued_at = now or datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "email": email,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + ttl).timestamp()),
    }
    return jwt.encode(claims, secret, algorithm=algorithm)


def verify_session_token(
    token: str | None,
    *,
    secret: str,
    algorithm: str = SESSION_ALGORITHM,
) -> SessionIdentity | None:
    """Return the identity asserted by ``token`` or ``None``.

    Tampered, malformed, expired and incomplete tokens are indistinguishable to the caller.
    """
    if not token:
        return None
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[algorithm],
            options={"require": _REQUIRED_CLAIMS},
        )
    except jwt.PyJWTError as exc:
        logger.debug("session_token_rejected reason=%s", type(exc).__name__)
        return None
    user_id = claims.get("sub")
    email = claims.get("email")
    if not isinstance(user_id, str) or not isinstance(email, str) or not user_id:
        return None
    return SessionIdentity(user_id=user_id, email=email)
