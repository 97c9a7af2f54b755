from __future__ import annotations

from typing import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

from subsync.apps.api.main import create_app
from subsync.core.config import Settings
from subsync.persistence.db import EmbeddedStore
from subsync.persistence.schema import ensure_schema
from subsync.tests.utils.fakes import (
    TEST_JWT_SECRET,
    TEST_WEBHOOK_SECRET,
    FakePaymentGateway,
    RecordingEmailSender,
)


@pytest.fixture
def settings(tmp_path) -> Settings:
    # Explicit values shadow any developer .env or exported variables.
    return Settings(
        _env_file=None,
        environment="test",
        database_url=None,
        sqlite_path=str(tmp_path / "subsync.db"),
        jwt_secret=TEST_JWT_SECRET,
        password_hash_rounds=4,
        stripe_webhook_secret=TEST_WEBHOOK_SECRET,
        frontend_url="http://frontend.test",
        resend_api_key=None,
    )


@pytest.fixture
async def store(settings: Settings) -> AsyncIterator[EmbeddedStore]:
    # A fresh file-backed embedded store per test keeps state isolated.
    embedded = EmbeddedStore(settings.sqlite_path)
    await embedded.connect()
    await ensure_schema(embedded)
    yield embedded
    await embedded.close()


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
async def client(
    settings: Settings,
    store: EmbeddedStore,
    email_sender: RecordingEmailSender,
    gateway: FakePaymentGateway,
) -> AsyncIterator[AsyncClient]:
    # ASGITransport skips the lifespan, so every collaborator is injected ready to use.
    app = create_app(settings, store=store, email_sender=email_sender, payment_gateway=gateway)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
