from __future__ import annotations

import logging

from subsync.persistence.db import Store


logger = logging.getLogger(__name__)


def _table_statements(timestamp_type: str) -> list[str]:
    # Timestamp columns differ per backend; everything else is shared DDL.
    ts = timestamp_type
    return [
        f"""
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            name TEXT,
            phone TEXT,
            phone_verified INTEGER DEFAULT 0,
            email_verified INTEGER DEFAULT 0,
            subscription_tier TEXT DEFAULT 'free',
            subscription_status TEXT DEFAULT 'active',
            stripe_customer_id TEXT,
            created_at {ts} DEFAULT CURRENT_TIMESTAMP,
            updated_at {ts} DEFAULT CURRENT_TIMESTAMP,
            last_login {ts}
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS phone_verification_attempts (
            id TEXT PRIMARY KEY,
            user_id TEXT REFERENCES users(id) ON DELETE CASCADE,
            phone TEXT NOT NULL,
            code TEXT,
            verified INTEGER DEFAULT 0,
            expires_at {ts},
            created_at {ts} DEFAULT CURRENT_TIMESTAMP
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS user_watchlist (
            id TEXT PRIMARY KEY,
            user_id TEXT REFERENCES users(id) ON DELETE CASCADE,
            symbol TEXT NOT NULL,
            name TEXT,
            category TEXT,
            added_at {ts} DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(user_id, symbol)
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS user_alerts (
            id TEXT PRIMARY KEY,
            user_id TEXT REFERENCES users(id) ON DELETE CASCADE,
            symbol TEXT NOT NULL,
            alert_type TEXT NOT NULL,
            threshold_value REAL,
            threshold_direction TEXT,
            is_active INTEGER DEFAULT 1,
            last_triggered {ts},
            created_at {ts} DEFAULT CURRENT_TIMESTAMP
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS sessions (
            id TEXT PRIMARY KEY,
            user_id TEXT REFERENCES users(id) ON DELETE CASCADE,
            refresh_token TEXT,
            device_info TEXT,
            ip_address TEXT,
            expires_at {ts} NOT NULL,
            created_at {ts} DEFAULT CURRENT_TIMESTAMP
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS password_reset_tokens (
            user_id TEXT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            token_hash TEXT NOT NULL,
            expires_at {ts} NOT NULL,
            created_at {ts} DEFAULT CURRENT_TIMESTAMP
        )
        """,
    ]


_INDEX_STATEMENTS = [
    "CREATE INDEX IF NOT EXISTS idx_users_email ON users(email)",
    "CREATE INDEX IF NOT EXISTS idx_users_phone ON users(phone)",
    "CREATE INDEX IF NOT EXISTS idx_users_stripe_customer ON users(stripe_customer_id)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_password_reset_tokens_hash ON password_reset_tokens(token_hash)",
]


def schema_statements(backend: str) -> list[str]:
    timestamp_type = "TIMESTAMPTZ" if backend == "postgresql" else "TEXT"
    return [statement.strip() for statement in _table_statements(timestamp_type)] + list(_INDEX_STATEMENTS)


async def is_initialized(store: Store) -> bool:
    if store.backend == "postgresql":
        row = await store.fetch_one(
            "SELECT COUNT(*) AS found FROM information_schema.tables WHERE table_name = ?",
            ["users"],
        )
    else:
        row = await store.fetch_one(
            "SELECT COUNT(*) AS found FROM sqlite_master WHERE type = 'table' AND name = ?",
            ["users"],
        )
    return bool(row and row["found"])


async def setup_tables(store: Store) -> None:
    logger.info("schema_setup_started backend=%s", store.backend)
    await store.execute_script(schema_statements(store.backend))
    logger.info("schema_setup_finished backend=%s", store.backend)


async def ensure_schema(store: Store) -> bool:
    # Create tables on first boot only; returns whether setup ran.
    if await is_initialized(store):
        return False
    await setup_tables(store)
    return True
