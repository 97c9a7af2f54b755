from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from subsync.persistence.repos import reset_tokens as tokens_repo
from subsync.persistence.repos import users as users_repo


@pytest.mark.asyncio
async def test_create_user_defaults_to_free_active(store) -> None:
    user = await users_repo.create_user(store, email="  New@Example.COM ", password_hash="hash", name="New")

    assert user.email == "new@example.com"
    assert user.subscription_tier == "free"
    assert user.subscription_status == "active"
    assert user.stripe_customer_id is None
    # Public lookups never carry the hash.
    assert user.password_hash == ""


@pytest.mark.asyncio
async def test_update_profile_only_rewrites_supplied_fields(store) -> None:
    user = await users_repo.create_user(store, email="p@example.com", password_hash="hash", name="Before")

    renamed = await users_repo.update_profile(store, user.id, name="After")
    assert renamed is not None
    assert renamed.name == "After"
    assert renamed.email == "p@example.com"

    moved = await users_repo.update_profile(store, user.id, email="Moved@Example.com")
    assert moved is not None
    assert moved.name == "After"
    assert moved.email == "moved@example.com"


@pytest.mark.asyncio
async def test_set_subscription_status_derives_tier_and_keeps_customer(store) -> None:
    user = await users_repo.create_user(store, email="s@example.com", password_hash="hash")

    await users_repo.set_subscription_status(store, user.id, "trialing", customer_id="cus_1")
    trialing = await users_repo.get_user_by_id(store, user.id)
    assert trialing is not None
    assert (trialing.subscription_tier, trialing.subscription_status) == ("pro", "trialing")

    await users_repo.set_subscription_status(store, user.id, "past_due")
    past_due = await users_repo.get_user_by_customer_id(store, "cus_1")
    assert past_due is not None
    assert (past_due.subscription_tier, past_due.subscription_status) == ("free", "past_due")


@pytest.mark.asyncio
async def test_delete_user_removes_reset_token(store) -> None:
    user = await users_repo.create_user(store, email="d@example.com", password_hash="hash")
    await tokens_repo.upsert_token(
        store,
        user_id=user.id,
        token_hash="abc",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )

    assert await users_repo.delete_user(store, user.id) is True
    assert await users_repo.get_user_by_id(store, user.id) is None
    assert await tokens_repo.get_token_by_hash(store, "abc") is None
    assert await users_repo.delete_user(store, user.id) is False
