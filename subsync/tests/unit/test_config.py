from __future__ import annotations

import pytest

from subsync.apps.api.main import create_app
from subsync.core.config import DEV_JWT_SECRET, Settings
from subsync.core.errors import ServiceMisconfiguredError


@pytest.fixture
def clean_env(monkeypatch) -> None:
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    monkeypatch.delenv("JWT_SECRET", raising=False)


def test_unset_environment_behaves_like_production(clean_env) -> None:
    settings = Settings(_env_file=None)

    assert settings.environment == "production"
    assert settings.is_development is False


def test_placeholder_secret_is_refused_outside_development(clean_env) -> None:
    with pytest.raises(ServiceMisconfiguredError) as excinfo:
        Settings(_env_file=None).require_production_secrets()
    with pytest.raises(ServiceMisconfiguredError):
        Settings(_env_file=None, environment="staging", jwt_secret="   ").require_production_secrets()

    assert excinfo.value.message == "JWT_SECRET must be set when ENVIRONMENT is 'production'"


def test_placeholder_secret_is_tolerated_in_development(clean_env) -> None:
    Settings(_env_file=None, environment="Development").require_production_secrets()
    Settings(_env_file=None, jwt_secret="a-real-secret").require_production_secrets()

    assert Settings(_env_file=None, environment="development").jwt_secret == DEV_JWT_SECRET


@pytest.mark.asyncio
async def test_app_refuses_to_start_with_placeholder_secret(settings, store, email_sender, gateway) -> None:
    misconfigured = settings.model_copy(update={"environment": "production", "jwt_secret": DEV_JWT_SECRET})
    app = create_app(misconfigured, store=store, email_sender=email_sender, payment_gateway=gateway)

    with pytest.raises(ServiceMisconfiguredError):
        async with app.router.lifespan_context(app):
            pass


@pytest.mark.asyncio
async def test_app_starts_with_configured_secret(settings, store, email_sender, gateway) -> None:
    app = create_app(settings, store=store, email_sender=email_sender, payment_gateway=gateway)

    async with app.router.lifespan_context(app):
        assert app.state.store is store
