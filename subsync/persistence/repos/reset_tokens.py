from __future__ import annotations

from datetime import datetime, timezone

from subsync.core.errors import DatabaseError
from subsync.domain.models import PasswordResetToken, parse_timestamp
from subsync.persistence.db import Store


def _to_token(row: dict) -> PasswordResetToken:
    expires_at = parse_timestamp(row["expires_at"])
    if expires_at is None:
        raise DatabaseError(f"reset token row for user {row['user_id']} has no expiry")
    return PasswordResetToken(
        user_id=row["user_id"],
        token_hash=row["token_hash"],
        expires_at=expires_at,
        created_at=parse_timestamp(row.get("created_at")),
    )


async def upsert_token(store: Store, *, user_id: str, token_hash: str, expires_at: datetime) -> None:
    # One row per user: a new request replaces (and thereby invalidates) any earlier token.
    now = datetime.now(timezone.utc)
    await store.execute(
        """
        INSERT INTO password_reset_tokens (user_id, token_hash, expires_at, created_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT (user_id) DO UPDATE SET
            token_hash = excluded.token_hash,
            expires_at = excluded.expires_at,
            created_at = excluded.created_at
        """,
        [user_id, token_hash, expires_at, now],
    )


async def get_token_by_hash(store: Store, token_hash: str) -> PasswordResetToken | None:
    row = await store.fetch_one(
        "SELECT user_id, token_hash, expires_at, created_at FROM password_reset_tokens WHERE token_hash = ?",
        [token_hash],
    )
    return _to_token(row) if row else None


async def get_token_for_user(store: Store, user_id: str) -> PasswordResetToken | None:
    row = await store.fetch_one(
        "SELECT user_id, token_hash, expires_at, created_at FROM password_reset_tokens WHERE user_id = ?",
        [user_id],
    )
    return _to_token(row) if row else None


async def delete_token_by_hash(store: Store, token_hash: str) -> int:
    # Returns the affected row count so callers can use the delete as an atomic claim.
    return await store.execute("DELETE FROM password_reset_tokens WHERE token_hash = ?", [token_hash])


async def delete_tokens_for_user(store: Store, user_id: str) -> int:
    return await store.execute("DELETE FROM password_reset_tokens WHERE user_id = ?", [user_id])
