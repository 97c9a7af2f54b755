from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, assert_never

from subsync.core.config import Settings
from subsync.core.errors import ServiceMisconfiguredError
from subsync.domain.events import (
    EVENT_CHECKOUT_COMPLETED,
    EVENT_INVOICE_PAYMENT_FAILED,
    EVENT_SUBSCRIPTION_CREATED,
    EVENT_SUBSCRIPTION_DELETED,
    EVENT_SUBSCRIPTION_UPDATED,
    CheckoutCompleted,
    InvoicePaymentFailed,
    PaymentEvent,
    SubscriptionChanged,
    SubscriptionDeleted,
    UnknownEvent,
)
from subsync.domain.models import STATUS_ACTIVE, STATUS_CANCELED
from subsync.persistence.db import Store
from subsync.persistence.repos import users as users_repo
from subsync.services.billing.signature import construct_event
from subsync.services.notifications.email import KIND_SUBSCRIPTION_CONFIRMED, EmailSender


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileOutcome:
    # Summarize what one delivery did; every outcome is acknowledged to the processor.
    event_type: str
    applied: bool
    user_id: str | None = None
    detail: str = ""


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _reference(value: Any) -> str | None:
    # Processor references arrive either as ids or as expanded objects carrying an id.
    if isinstance(value, dict):
        value = value.get("id")
    if isinstance(value, str) and value:
        return value
    return None


def parse_event(payload: dict[str, Any]) -> PaymentEvent:
    event_type = payload.get("type")
    event_id = payload.get("id") if isinstance(payload.get("id"), str) else None
    if not isinstance(event_type, str):
        return UnknownEvent(event_id=event_id, event_type="")
    obj = _as_dict(_as_dict(payload.get("data")).get("object"))
    metadata = _as_dict(obj.get("metadata"))
    user_id = _reference(metadata.get("userId"))
    customer_id = _reference(obj.get("customer"))

    if event_type == EVENT_CHECKOUT_COMPLETED:
        details = _as_dict(obj.get("customer_details"))
        return CheckoutCompleted(
            event_id=event_id,
            user_id=user_id or _reference(obj.get("client_reference_id")),
            customer_id=customer_id,
            email=obj.get("customer_email") or details.get("email"),
        )
    if event_type in (EVENT_SUBSCRIPTION_CREATED, EVENT_SUBSCRIPTION_UPDATED):
        status = obj.get("status")
        return SubscriptionChanged(
            event_id=event_id,
            event_type=event_type,
            user_id=user_id,
            customer_id=customer_id,
            status=status if isinstance(status, str) and status else None,
        )
    if event_type == EVENT_SUBSCRIPTION_DELETED:
        return SubscriptionDeleted(event_id=event_id, user_id=user_id, customer_id=customer_id)
    if event_type == EVENT_INVOICE_PAYMENT_FAILED:
        return InvoicePaymentFailed(event_id=event_id, customer_id=customer_id)
    return UnknownEvent(event_id=event_id, event_type=event_type)


async def _resolve_user_id(store: Store, user_id: str | None, customer_id: str | None) -> str | None:
    # Prefer the reference embedded at checkout; fall back to the processor customer id.
    if user_id:
        return user_id
    if customer_id:
        user = await users_repo.get_user_by_customer_id(store, customer_id)
        if user is not None:
            return user.id
    return None


async def _transition(
    store: Store,
    *,
    event_type: str,
    user_id: str | None,
    customer_id: str | None,
    status: str,
) -> ReconcileOutcome:
    resolved = await _resolve_user_id(store, user_id, customer_id)
    if resolved is None:
        logger.warning(
            "billing_event_unresolved event_type=%s customer_id=%s",
            event_type,
            customer_id,
        )
        return ReconcileOutcome(event_type=event_type, applied=False, detail="user reference missing")
    affected = await users_repo.set_subscription_status(store, resolved, status, customer_id=customer_id)
    if not affected:
        logger.warning("billing_event_user_missing event_type=%s user_id=%s", event_type, resolved)
        return ReconcileOutcome(
            event_type=event_type,
            applied=False,
            user_id=resolved,
            detail="user not found",
        )
    logger.info("billing_event_applied event_type=%s user_id=%s status=%s", event_type, resolved, status)
    return ReconcileOutcome(event_type=event_type, applied=True, user_id=resolved, detail=status)


async def _send_confirmation(email_sender: EmailSender, store: Store, user_id: str, email: str | None) -> None:
    user = await users_repo.get_user_by_id(store, user_id)
    recipient = user.email if user is not None else email
    if not recipient:
        return
    result = await email_sender.send(
        KIND_SUBSCRIPTION_CONFIRMED,
        recipient,
        {"name": user.name if user is not None else None},
    )
    if not result.success:
        logger.warning("subscription_email_failed user_id=%s error=%s", user_id, result.error)


async def apply_event(
    store: Store,
    event: PaymentEvent,
    *,
    email_sender: EmailSender | None = None,
) -> ReconcileOutcome:
    """Apply one processor event to the local subscription fields.

    Every transition is a single unconditional update keyed by user id, so duplicate
    deliveries are harmless and out-of-order deliveries converge to the last one applied.
    """
    if isinstance(event, CheckoutCompleted):
        if not event.user_id:
            logger.warning("billing_event_unresolved event_type=%s", EVENT_CHECKOUT_COMPLETED)
            return ReconcileOutcome(
                event_type=EVENT_CHECKOUT_COMPLETED,
                applied=False,
                detail="user reference missing",
            )
        outcome = await _transition(
            store,
            event_type=EVENT_CHECKOUT_COMPLETED,
            user_id=event.user_id,
            customer_id=event.customer_id,
            status=STATUS_ACTIVE,
        )
        if outcome.applied and outcome.user_id and email_sender is not None:
            await _send_confirmation(email_sender, store, outcome.user_id, event.email)
        return outcome
    if isinstance(event, SubscriptionChanged):
        if event.status is None:
            logger.warning("billing_event_missing_status event_type=%s", event.event_type)
            return ReconcileOutcome(event_type=event.event_type, applied=False, detail="status missing")
        # Unrecognized statuses are stored as-is; tier_for_status maps them to free.
        return await _transition(
            store,
            event_type=event.event_type,
            user_id=event.user_id,
            customer_id=event.customer_id,
            status=event.status,
        )
    if isinstance(event, SubscriptionDeleted):
        return await _transition(
            store,
            event_type=EVENT_SUBSCRIPTION_DELETED,
            user_id=event.user_id,
            customer_id=event.customer_id,
            status=STATUS_CANCELED,
        )
    if isinstance(event, InvoicePaymentFailed):
        # Observation only; the subscription.updated delivery carries the resulting status.
        user_id = await _resolve_user_id(store, None, event.customer_id)
        logger.warning(
            "billing_invoice_payment_failed customer_id=%s user_id=%s",
            event.customer_id,
            user_id,
        )
        return ReconcileOutcome(
            event_type=EVENT_INVOICE_PAYMENT_FAILED,
            applied=False,
            user_id=user_id,
            detail="observed",
        )
    if isinstance(event, UnknownEvent):
        logger.info("billing_event_ignored event_type=%s", event.event_type)
        return ReconcileOutcome(event_type=event.event_type, applied=False, detail="ignored")
    assert_never(event)


async def handle_webhook(
    store: Store,
    payload: bytes,
    signature_header: str | None,
    *,
    settings: Settings,
    email_sender: EmailSender | None = None,
    now: float | None = None,
) -> ReconcileOutcome:
    # Verification runs on the raw body before any parsing or business logic.
    if not settings.stripe_webhook_secret:
        raise ServiceMisconfiguredError("Webhook secret is not configured")
    raw_event = construct_event(
        payload,
        signature_header,
        secret=settings.stripe_webhook_secret,
        tolerance_s=settings.stripe_webhook_tolerance_s,
        now=now,
    )
    event = parse_event(raw_event)
    return await apply_event(store, event, email_sender=email_sender)
