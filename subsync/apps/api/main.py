from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi

from subsync.apps.api.errors import register_exception_handlers
from subsync.apps.api.routes.auth import router as auth_router
from subsync.apps.api.routes.billing import router as billing_router
from subsync.apps.api.routes.health import API_VERSION, router as health_router
from subsync.apps.api.routes.password_reset import router as password_reset_router
from subsync.core.config import Settings, get_settings
from subsync.core.errors import ServiceMisconfiguredError, StoreUnavailableError
from subsync.core.logging import configure_logging
from subsync.persistence.db import Store, create_store
from subsync.persistence.schema import ensure_schema
from subsync.services.billing.gateway import PaymentGateway, create_payment_gateway
from subsync.services.notifications.email import EmailSender, create_email_sender


logger = logging.getLogger(__name__)

# Endpoints reachable without a session token.
_PUBLIC_PATHS = {
    "/health",
    "/api",
    "/api/auth/signup",
    "/api/auth/login",
    "/api/auth/forgot-password",
    "/api/auth/reset-password",
    "/api/auth/verify-reset-token",
    "/api/stripe/webhook",
    "/api/stripe/session/{session_id}",
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    try:
        settings.require_production_secrets()
    except ServiceMisconfiguredError as exc:
        logger.critical("startup_refused environment=%s reason=%s", settings.environment, exc.message)
        raise
    # A store that cannot be reached at startup aborts the process instead of degrading.
    store: Store = app.state.store
    owns_store: bool = app.state.owns_store
    if owns_store:
        try:
            await store.connect()
        except StoreUnavailableError:
            logger.critical("store_unavailable backend=%s", store.backend)
            raise
    created = await ensure_schema(store)
    logger.info("startup_complete backend=%s schema_created=%s", store.backend, created)
    try:
        yield
    finally:
        if owns_store:
            await store.close()
            logger.info("store_closed backend=%s", store.backend)


def create_app(
    settings: Settings | None = None,
    *,
    store: Store | None = None,
    email_sender: EmailSender | None = None,
    payment_gateway: PaymentGateway | None = None,
) -> FastAPI:
    """Build the API application.

    Collaborators passed in are used as-is (an injected store is expected to be connected
    already); anything omitted is built from settings and owned by the app lifespan.
    """
    resolved = settings or get_settings()
    configure_logging(resolved.log_level)
    app = FastAPI(title=f"{resolved.app_name} API", version=API_VERSION, lifespan=lifespan)
    app.state.settings = resolved
    app.state.owns_store = store is None
    app.state.store = store if store is not None else create_store(resolved)
    app.state.email_sender = email_sender or create_email_sender(resolved)
    app.state.payment_gateway = payment_gateway or create_payment_gateway(resolved)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_completed request_id=%s method=%s path=%s status=%s latency_ms=%.1f",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=resolved.cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(password_reset_router)
    app.include_router(billing_router)

    def custom_openapi() -> dict:
        # Cache the schema and mark session-protected operations.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title=app.title, version=app.version, routes=app.routes)
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        for path, operations in schema.get("paths", {}).items():
            if path in _PUBLIC_PATHS:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi  # type: ignore[method-assign]

    return app


app = create_app()
