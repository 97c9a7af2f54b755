from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, Callable, Protocol, TypeVar

import stripe

from subsync.core.config import Settings
from subsync.core.errors import PaymentGatewayError, ServiceMisconfiguredError


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


class PaymentGateway(Protocol):
    async def create_customer(self, email: str, user_id: str) -> str: ...

    async def create_checkout_session(self, customer_id: str, user_id: str, email: str) -> CheckoutSession: ...

    async def create_portal_session(self, customer_id: str) -> str: ...

    async def get_checkout_session(self, session_id: str) -> dict[str, Any]: ...


class StripeGateway:
    """Hosted checkout and billing portal sessions through the Stripe SDK.

    The SDK is synchronous, so each call runs in a worker thread with a per-request API key
    instead of the module-global one.
    """

    def __init__(self, *, secret_key: str | None, price_id: str | None, frontend_url: str) -> None:
        self._secret_key = secret_key
        self._price_id = price_id
        self._frontend_url = frontend_url.rstrip("/")

    def _api_key(self) -> str:
        if not self._secret_key:
            raise ServiceMisconfiguredError("Payment processor is not configured")
        return self._secret_key

    async def _call(self, operation: str, func: Callable[..., T], **kwargs: Any) -> T:
        api_key = self._api_key()
        try:
            return await asyncio.to_thread(func, api_key=api_key, **kwargs)
        except stripe.StripeError as exc:
            logger.warning("stripe_call_failed operation=%s", operation, exc_info=exc)
            raise PaymentGatewayError(exc.user_message or "Payment processor request failed") from exc

    async def create_customer(self, email: str, user_id: str) -> str:
        customer = await self._call(
            "customer.create",
            stripe.Customer.create,
            email=email,
            metadata={"userId": user_id},
        )
        return customer.id

    async def create_checkout_session(self, customer_id: str, user_id: str, email: str) -> CheckoutSession:
        if not self._price_id:
            raise ServiceMisconfiguredError("Subscription price is not configured")
        # userId travels in both metadata blocks so every later webhook can be mapped back.
        session = await self._call(
            "checkout.create",
            stripe.checkout.Session.create,
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": self._price_id, "quantity": 1}],
            success_url=f"{self._frontend_url}/dashboard?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{self._frontend_url}/pricing?canceled=true",
            client_reference_id=user_id,
            metadata={"userId": user_id, "userEmail": email},
            subscription_data={"metadata": {"userId": user_id}},
        )
        return CheckoutSession(id=session.id, url=session.url)

    async def create_portal_session(self, customer_id: str) -> str:
        session = await self._call(
            "portal.create",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=f"{self._frontend_url}/dashboard",
        )
        return session.url

    async def get_checkout_session(self, session_id: str) -> dict[str, Any]:
        session = await self._call(
            "checkout.retrieve",
            stripe.checkout.Session.retrieve,
            id=session_id,
            expand=["subscription"],
        )
        details = getattr(session, "customer_details", None)
        # With expand, subscription is an object; otherwise it is a bare id string.
        subscription = getattr(session, "subscription", None)
        return {
            "id": session.id,
            "status": getattr(session, "status", None),
            "customerEmail": getattr(details, "email", None) if details is not None else None,
            "subscriptionStatus": None if isinstance(subscription, str) else getattr(subscription, "status", None),
        }


def create_payment_gateway(settings: Settings) -> StripeGateway:
    return StripeGateway(
        secret_key=settings.stripe_secret_key,
        price_id=settings.stripe_price_id,
        frontend_url=settings.frontend_url,
    )
