from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict

from subsync.core.errors import ServiceMisconfiguredError


# Plan tiers stay centralized so the reconciler and the user projection agree on vocabulary.
TIER_FREE = "free"
TIER_PRO = "pro"

# Signing secret used when JWT_SECRET is unset; only acceptable in development.
DEV_JWT_SECRET = "dev-jwt-secret-change-me"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "subsync"
    # Controls error detail exposure: only "development" returns raw exception messages,
    # so an unset value behaves like production.
    environment: str = "production"
    log_level: str = "INFO"

    # Presence of a connection string selects the networked backend for the process lifetime.
    database_url: str | None = None
    # Railway-style managed Postgres requires TLS in production.
    database_ssl: bool = False
    # File image for the embedded backend; rewritten after every mutation.
    sqlite_path: str = "data/subsync.db"
    # Configure bounded asyncpg pools for predictable latency under load.
    api_db_pool_size: int = 5
    api_db_max_overflow: int = 5

    # Process-wide signing secret for session credentials.
    jwt_secret: str = DEV_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_expiration_days: int = 7

    password_min_length: int = 8
    # bcrypt cost factor; tests lower it to keep hashing fast.
    password_hash_rounds: int = 12
    reset_token_ttl_minutes: int = 60

    # Base URL for links embedded in emails and checkout redirects.
    frontend_url: str = "http://localhost:3000"
    # Comma-delimited browser origins allowed by CORS.
    cors_allowed_origins: str = "http://localhost:3000"

    stripe_secret_key: str | None = None
    stripe_price_id: str | None = None
    stripe_webhook_secret: str | None = None
    # Reject webhook signatures whose timestamp drifts further than this from now.
    stripe_webhook_tolerance_s: int = 300

    # Transactional email provider (Resend HTTP API).
    resend_api_key: str | None = None
    email_from: str = "subsync <noreply@example.com>"
    email_api_url: str = "https://api.resend.com/emails"
    # Keep email timeouts short to avoid blocking API responses.
    email_timeout_ms: int = 5000

    @property
    def is_development(self) -> bool:
        return self.environment.strip().lower() == "development"

    def require_production_secrets(self) -> None:
        # Outside development the process must not sign sessions with a guessable secret.
        if self.is_development:
            return
        if not self.jwt_secret.strip() or self.jwt_secret == DEV_JWT_SECRET:
            raise ServiceMisconfiguredError(
                f"JWT_SECRET must be set when ENVIRONMENT is {self.environment!r}"
            )

    def cors_origins(self) -> list[str]:
        origins = [item.strip() for item in self.cors_allowed_origins.split(",")]
        origins.append(self.frontend_url)
        return sorted({origin for origin in origins if origin})


@lru_cache
def get_settings() -> Settings:
    return Settings()
