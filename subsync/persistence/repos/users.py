from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from subsync.core.config import TIER_FREE
from subsync.domain.models import STATUS_ACTIVE, User, tier_for_status
from subsync.persistence.db import Store


_PUBLIC_COLUMNS = (
    "id, email, name, subscription_tier, subscription_status, stripe_customer_id, "
    "created_at, updated_at, last_login"
)
_ALL_COLUMNS = _PUBLIC_COLUMNS + ", password_hash"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    # Email is the lookup key; normalize at the store boundary so every caller agrees.
    return email.strip().lower()


async def create_user(
    store: Store,
    *,
    email: str,
    password_hash: str,
    name: str | None = None,
) -> User:
    # Uniqueness is enforced by the users.email index; DuplicateKeyError propagates.
    user_id = str(uuid4())
    now = _utc_now()
    await store.execute(
        """
        INSERT INTO users (
            id, email, password_hash, name, subscription_tier, subscription_status,
            created_at, updated_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [user_id, normalize_email(email), password_hash, name, TIER_FREE, STATUS_ACTIVE, now, now],
    )
    created = await get_user_by_id(store, user_id)
    if created is None:
        raise LookupError(f"user {user_id} missing after insert")
    return created


async def get_user_by_id(store: Store, user_id: str) -> User | None:
    row = await store.fetch_one(f"SELECT {_PUBLIC_COLUMNS} FROM users WHERE id = ?", [user_id])
    return User.from_row(row) if row else None


async def get_user_by_email(store: Store, email: str) -> User | None:
    # Includes the password hash for credential checks.
    row = await store.fetch_one(
        f"SELECT {_ALL_COLUMNS} FROM users WHERE email = ?",
        [normalize_email(email)],
    )
    return User.from_row(row) if row else None


async def get_user_by_customer_id(store: Store, customer_id: str) -> User | None:
    row = await store.fetch_one(
        f"SELECT {_PUBLIC_COLUMNS} FROM users WHERE stripe_customer_id = ?",
        [customer_id],
    )
    return User.from_row(row) if row else None


async def update_last_login(store: Store, user_id: str) -> None:
    await store.execute("UPDATE users SET last_login = ? WHERE id = ?", [_utc_now(), user_id])


async def update_password_hash(store: Store, user_id: str, password_hash: str) -> int:
    return await store.execute(
        "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
        [password_hash, _utc_now(), user_id],
    )


async def update_profile(
    store: Store,
    user_id: str,
    *,
    name: str | None = None,
    email: str | None = None,
) -> User | None:
    # Only supplied fields are rewritten; None means "leave as is", never "clear".
    assignments: list[str] = []
    values: list[object] = []
    if name is not None:
        assignments.append("name = ?")
        values.append(name)
    if email is not None:
        assignments.append("email = ?")
        values.append(normalize_email(email))
    if assignments:
        assignments.append("updated_at = ?")
        values.extend([_utc_now(), user_id])
        await store.execute(f"UPDATE users SET {', '.join(assignments)} WHERE id = ?", values)
    return await get_user_by_id(store, user_id)


async def set_customer_id(store: Store, user_id: str, customer_id: str) -> int:
    return await store.execute(
        "UPDATE users SET stripe_customer_id = ?, updated_at = ? WHERE id = ?",
        [customer_id, _utc_now(), user_id],
    )


async def set_subscription_status(
    store: Store,
    user_id: str,
    status: str,
    *,
    customer_id: str | None = None,
) -> int:
    # Unconditional single-statement upsert of subscription fields; tier is derived from status
    # so tier=pro can only coexist with a paid status. A None customer id keeps the stored one.
    return await store.execute(
        """
        UPDATE users
        SET subscription_tier = ?,
            subscription_status = ?,
            stripe_customer_id = COALESCE(?, stripe_customer_id),
            updated_at = ?
        WHERE id = ?
        """,
        [tier_for_status(status), status, customer_id, _utc_now(), user_id],
    )


async def delete_user(store: Store, user_id: str) -> bool:
    # SQLite runs without foreign key enforcement, so dependent token rows are removed explicitly.
    await store.execute("DELETE FROM password_reset_tokens WHERE user_id = ?", [user_id])
    return await store.execute("DELETE FROM users WHERE id = ?", [user_id]) > 0
