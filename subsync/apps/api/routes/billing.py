from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from subsync.apps.api.deps import (
    get_app_settings,
    get_email_sender,
    get_payment_gateway,
    get_store,
    require_identity,
)
from subsync.apps.api.openapi import AUTH_ERROR_RESPONSES
from subsync.apps.api.response import error_response
from subsync.core.config import Settings
from subsync.core.errors import WebhookRejectedError
from subsync.domain.models import SessionIdentity
from subsync.persistence.db import Store
from subsync.persistence.repos import users as users_repo
from subsync.services.auth import accounts
from subsync.services.billing.gateway import PaymentGateway
from subsync.services.billing.reconciler import handle_webhook
from subsync.services.notifications.email import EmailSender


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["billing"], responses=AUTH_ERROR_RESPONSES)


class WebhookAck(BaseModel):
    received: bool = True


class CheckoutSessionResponse(BaseModel):
    sessionId: str
    url: str


class PortalSessionResponse(BaseModel):
    url: str


class SessionSummaryResponse(BaseModel):
    success: bool = True
    session: dict[str, Any]


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": code, "message": message})


@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
    email_sender: EmailSender = Depends(get_email_sender),
) -> Any:
    # The signature covers the exact bytes received, so the body is never parsed beforehand.
    payload = await request.body()
    try:
        outcome = await handle_webhook(
            store,
            payload,
            stripe_signature,
            settings=settings,
            email_sender=email_sender,
        )
    except WebhookRejectedError as exc:
        logger.warning("stripe_webhook_rejected code=%s reason=%s", exc.code, exc.message)
        raise
    except Exception as exc:  # noqa: BLE001 - the processor re-delivers on 5xx
        logger.error("stripe_webhook_failed", exc_info=exc)
        return JSONResponse(
            content=error_response(code="INTERNAL_ERROR", message="Webhook handler failed"),
            status_code=500,
        )
    logger.info(
        "stripe_webhook_processed event_type=%s applied=%s user_id=%s",
        outcome.event_type,
        outcome.applied,
        outcome.user_id,
    )
    return {"received": True}


@router.post("/create-checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    identity: SessionIdentity = Depends(require_identity),
    store: Store = Depends(get_store),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> dict[str, Any]:
    user = await accounts.get_account(store, identity.user_id)
    if user.has_active_pro:
        raise _bad_request("SUBSCRIPTION_ACTIVE", "You already have an active Pro subscription")
    customer_id = user.stripe_customer_id
    if not customer_id:
        customer_id = await gateway.create_customer(user.email, user.id)
        await users_repo.set_customer_id(store, user.id, customer_id)
    session = await gateway.create_checkout_session(customer_id, user.id, user.email)
    logger.info("checkout_session_created user_id=%s session_id=%s", user.id, session.id)
    return {"sessionId": session.id, "url": session.url}


@router.post("/create-portal-session", response_model=PortalSessionResponse)
async def create_portal_session(
    identity: SessionIdentity = Depends(require_identity),
    store: Store = Depends(get_store),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> dict[str, Any]:
    user = await accounts.get_account(store, identity.user_id)
    if not user.stripe_customer_id:
        raise _bad_request("NO_SUBSCRIPTION", "No active subscription found")
    return {"url": await gateway.create_portal_session(user.stripe_customer_id)}


@router.get("/session/{session_id}", response_model=SessionSummaryResponse)
async def get_checkout_session(
    session_id: str,
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> dict[str, Any]:
    return {"success": True, "session": await gateway.get_checkout_session(session_id)}
