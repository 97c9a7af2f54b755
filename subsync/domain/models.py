from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from subsync.core.config import TIER_FREE, TIER_PRO


STATUS_ACTIVE = "active"
STATUS_CANCELED = "canceled"
# Processor statuses that keep paid access; every other status (known or not) means free.
PRO_STATUSES = frozenset({"active", "trialing"})


def tier_for_status(status: str) -> str:
    return TIER_PRO if status in PRO_STATUSES else TIER_FREE


def parse_timestamp(value: Any) -> datetime | None:
    # Stores hand back ISO-8601 strings; SQLite defaults omit the offset, which is always UTC.
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class User:
    id: str
    email: str
    name: str | None
    subscription_tier: str
    subscription_status: str
    stripe_customer_id: str | None
    created_at: datetime | None
    updated_at: datetime | None
    last_login: datetime | None
    # Never rendered in projections or reprs.
    password_hash: str = field(default="", repr=False)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "User":
        return cls(
            id=row["id"],
            email=row["email"],
            name=row.get("name"),
            subscription_tier=row.get("subscription_tier") or TIER_FREE,
            subscription_status=row.get("subscription_status") or STATUS_ACTIVE,
            stripe_customer_id=row.get("stripe_customer_id"),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
            last_login=parse_timestamp(row.get("last_login")),
            password_hash=row.get("password_hash") or "",
        )

    @property
    def has_active_pro(self) -> bool:
        return self.subscription_tier == TIER_PRO and self.subscription_status == STATUS_ACTIVE


@dataclass(frozen=True)
class PasswordResetToken:
    user_id: str
    token_hash: str
    expires_at: datetime
    created_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class SessionIdentity:
    # Claims carried by a verified session credential.
    user_id: str
    email: str
