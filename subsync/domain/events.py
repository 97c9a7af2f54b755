from __future__ import annotations

from dataclasses import dataclass
from typing import Union


EVENT_CHECKOUT_COMPLETED = "checkout.session.completed"
EVENT_SUBSCRIPTION_CREATED = "customer.subscription.created"
EVENT_SUBSCRIPTION_UPDATED = "customer.subscription.updated"
EVENT_SUBSCRIPTION_DELETED = "customer.subscription.deleted"
EVENT_INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str | None
    user_id: str | None
    customer_id: str | None
    email: str | None


@dataclass(frozen=True)
class SubscriptionChanged:
    # Covers both created and updated deliveries; they carry the same state.
    event_id: str | None
    event_type: str
    user_id: str | None
    customer_id: str | None
    status: str | None


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str | None
    user_id: str | None
    customer_id: str | None


@dataclass(frozen=True)
class InvoicePaymentFailed:
    event_id: str | None
    customer_id: str | None


@dataclass(frozen=True)
class UnknownEvent:
    event_id: str | None
    event_type: str


PaymentEvent = Union[
    CheckoutCompleted,
    SubscriptionChanged,
    SubscriptionDeleted,
    InvoicePaymentFailed,
    UnknownEvent,
]
