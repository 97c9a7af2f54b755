from __future__ import annotations

from datetime import datetime, timezone

import pytest

from subsync.core.errors import DatabaseError, DuplicateKeyError
from subsync.persistence.db import EmbeddedStore
from subsync.persistence.repos import users as users_repo
from subsync.persistence.schema import ensure_schema, is_initialized


@pytest.mark.asyncio
async def test_embedded_store_persists_across_reopen(tmp_path) -> None:
    path = tmp_path / "nested" / "image.db"
    first = EmbeddedStore(path)
    await first.connect()
    assert await ensure_schema(first) is True
    user = await users_repo.create_user(first, email="Persist@Example.com", password_hash="x")
    await first.close()

    assert path.exists()
    second = EmbeddedStore(path)
    await second.connect()
    try:
        assert await is_initialized(second) is True
        assert await ensure_schema(second) is False
        reloaded = await users_repo.get_user_by_email(second, "persist@example.com")
        assert reloaded is not None
        assert reloaded.id == user.id
        assert reloaded.created_at is not None
    finally:
        await second.close()


@pytest.mark.asyncio
async def test_duplicate_email_surfaces_duplicate_key(store) -> None:
    await users_repo.create_user(store, email="dup@example.com", password_hash="x")

    with pytest.raises(DuplicateKeyError):
        await users_repo.create_user(store, email="  DUP@example.com ", password_hash="y")

    rows = await store.fetch_all("SELECT id FROM users WHERE email = ?", ["dup@example.com"])
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_parameter_count_mismatch_is_database_error(store) -> None:
    with pytest.raises(DatabaseError):
        await store.execute("DELETE FROM users WHERE id = ?", [])


@pytest.mark.asyncio
async def test_execute_returns_affected_rows(store) -> None:
    await users_repo.create_user(store, email="a@example.com", password_hash="x")
    await users_repo.create_user(store, email="b@example.com", password_hash="x")

    affected = await store.execute("UPDATE users SET name = ? WHERE email LIKE ?", ["n", "%@example.com"])

    assert affected == 2
    assert await store.execute("DELETE FROM users WHERE id = ?", ["missing"]) == 0


@pytest.mark.asyncio
async def test_datetime_params_round_trip_as_utc_iso(store) -> None:
    user = await users_repo.create_user(store, email="ts@example.com", password_hash="x")
    moment = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)

    await store.execute("UPDATE users SET last_login = ? WHERE id = ?", [moment, user.id])
    row = await store.fetch_one("SELECT last_login FROM users WHERE id = ?", [user.id])

    assert row == {"last_login": "2024-05-01T12:30:00+00:00"}


@pytest.mark.asyncio
async def test_in_memory_store_writes_no_file(tmp_path) -> None:
    memory = EmbeddedStore(None)
    await memory.connect()
    try:
        await ensure_schema(memory)
        await users_repo.create_user(memory, email="mem@example.com", password_hash="x")
        assert await users_repo.get_user_by_email(memory, "mem@example.com") is not None
    finally:
        await memory.close()
    assert list(tmp_path.iterdir()) == []
