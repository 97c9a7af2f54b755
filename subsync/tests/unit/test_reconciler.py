from __future__ import annotations

import pytest

from subsync.core.config import Settings
from subsync.core.errors import ServiceMisconfiguredError, WebhookSignatureError
from subsync.domain.events import (
    CheckoutCompleted,
    InvoicePaymentFailed,
    SubscriptionChanged,
    SubscriptionDeleted,
    UnknownEvent,
)
from subsync.persistence.repos import users as users_repo
from subsync.services.billing.reconciler import apply_event, handle_webhook, parse_event
from subsync.services.notifications.email import KIND_SUBSCRIPTION_CONFIRMED
from subsync.tests.utils.fakes import make_event, sign_event


async def _state(store, user_id: str) -> tuple[str, str, str | None]:
    user = await users_repo.get_user_by_id(store, user_id)
    assert user is not None
    return user.subscription_tier, user.subscription_status, user.stripe_customer_id


async def _new_user(store, email: str = "sub@example.com") -> str:
    user = await users_repo.create_user(store, email=email, password_hash="x")
    return user.id


def test_parse_event_maps_known_types() -> None:
    checkout = parse_event(
        make_event(
            "checkout.session.completed",
            {"metadata": {"userId": "u1"}, "customer": "cus_1", "customer_email": "a@b.com"},
        )
    )
    changed = parse_event(
        make_event("customer.subscription.updated", {"metadata": {"userId": "u1"}, "customer": "cus_1", "status": "past_due"})
    )
    deleted = parse_event(make_event("customer.subscription.deleted", {"customer": {"id": "cus_1"}}))
    failed = parse_event(make_event("invoice.payment_failed", {"customer": "cus_1"}))
    unknown = parse_event(make_event("charge.refunded", {}))

    assert isinstance(checkout, CheckoutCompleted)
    assert (checkout.user_id, checkout.customer_id, checkout.email) == ("u1", "cus_1", "a@b.com")
    assert isinstance(changed, SubscriptionChanged)
    assert changed.status == "past_due"
    assert isinstance(deleted, SubscriptionDeleted)
    assert (deleted.user_id, deleted.customer_id) == (None, "cus_1")
    assert isinstance(failed, InvoicePaymentFailed)
    assert isinstance(unknown, UnknownEvent)
    assert unknown.event_type == "charge.refunded"


def test_parse_event_falls_back_to_client_reference() -> None:
    event = parse_event(make_event("checkout.session.completed", {"client_reference_id": "u9"}))

    assert isinstance(event, CheckoutCompleted)
    assert event.user_id == "u9"


@pytest.mark.asyncio
async def test_checkout_completed_upgrades_and_sends_confirmation(store, email_sender) -> None:
    user_id = await _new_user(store)
    event = parse_event(make_event("checkout.session.completed", {"metadata": {"userId": user_id}, "customer": "cus_9"}))

    outcome = await apply_event(store, event, email_sender=email_sender)

    assert outcome.applied is True
    assert await _state(store, user_id) == ("pro", "active", "cus_9")
    assert [item[1] for item in email_sender.of_kind(KIND_SUBSCRIPTION_CONFIRMED)] == ["sub@example.com"]


@pytest.mark.asyncio
async def test_subscription_deleted_twice_is_idempotent(store) -> None:
    user_id = await _new_user(store)
    await users_repo.set_subscription_status(store, user_id, "active", customer_id="cus_1")
    event = parse_event(make_event("customer.subscription.deleted", {"metadata": {"userId": user_id}, "customer": "cus_1"}))

    await apply_event(store, event)
    once = await _state(store, user_id)
    await apply_event(store, event)
    twice = await _state(store, user_id)

    assert once == twice == ("free", "canceled", "cus_1")


@pytest.mark.asyncio
async def test_conflicting_updates_converge_to_last_applied(store) -> None:
    user_id = await _new_user(store)
    earlier = parse_event(
        make_event("customer.subscription.updated", {"metadata": {"userId": user_id}, "status": "active"})
    )
    later = parse_event(
        make_event("customer.subscription.updated", {"metadata": {"userId": user_id}, "status": "past_due"})
    )

    # Delivered out of order: the processor's later event arrives first.
    await apply_event(store, later)
    await apply_event(store, earlier)

    tier, status, _customer = await _state(store, user_id)
    assert (tier, status) == ("pro", "active")


@pytest.mark.asyncio
async def test_unknown_status_passes_through_as_free(store) -> None:
    user_id = await _new_user(store)
    event = parse_event(
        make_event("customer.subscription.created", {"metadata": {"userId": user_id}, "status": "paused_by_vendor"})
    )

    outcome = await apply_event(store, event)

    assert outcome.applied is True
    tier, status, _customer = await _state(store, user_id)
    assert (tier, status) == ("free", "paused_by_vendor")


@pytest.mark.asyncio
async def test_subscription_update_resolves_user_by_customer(store) -> None:
    user_id = await _new_user(store)
    await users_repo.set_customer_id(store, user_id, "cus_lookup")
    event = parse_event(make_event("customer.subscription.updated", {"customer": "cus_lookup", "status": "trialing"}))

    outcome = await apply_event(store, event)

    assert outcome.user_id == user_id
    assert await _state(store, user_id) == ("pro", "trialing", "cus_lookup")


@pytest.mark.asyncio
async def test_missing_user_reference_is_acknowledged_without_change(store) -> None:
    user_id = await _new_user(store)
    event = parse_event(make_event("checkout.session.completed", {"customer": "cus_orphan"}))

    outcome = await apply_event(store, event)

    assert outcome.applied is False
    assert await _state(store, user_id) == ("free", "active", None)


@pytest.mark.asyncio
async def test_invoice_failure_and_unknown_events_do_not_mutate(store) -> None:
    user_id = await _new_user(store)
    await users_repo.set_subscription_status(store, user_id, "active", customer_id="cus_2")

    failed = await apply_event(store, parse_event(make_event("invoice.payment_failed", {"customer": "cus_2"})))
    ignored = await apply_event(store, parse_event(make_event("charge.refunded", {"customer": "cus_2"})))

    assert failed.applied is False
    assert failed.user_id == user_id
    assert ignored.applied is False
    assert await _state(store, user_id) == ("pro", "active", "cus_2")


@pytest.mark.asyncio
async def test_handle_webhook_requires_secret(store, settings: Settings) -> None:
    unconfigured = settings.model_copy(update={"stripe_webhook_secret": None})
    body, header = sign_event("whsec_any", make_event("charge.refunded", {}))

    with pytest.raises(ServiceMisconfiguredError):
        await handle_webhook(store, body, header, settings=unconfigured)


@pytest.mark.asyncio
async def test_handle_webhook_rejects_forged_body_before_applying(store, settings: Settings) -> None:
    user_id = await _new_user(store)
    genuine = make_event("customer.subscription.updated", {"metadata": {"userId": user_id}, "status": "canceled"})
    forged = make_event("customer.subscription.updated", {"metadata": {"userId": user_id}, "status": "active"})
    _body, header = sign_event(settings.stripe_webhook_secret or "", genuine)
    forged_body, _header = sign_event(settings.stripe_webhook_secret or "", forged)

    with pytest.raises(WebhookSignatureError):
        await handle_webhook(store, forged_body, header, settings=settings)

    assert await _state(store, user_id) == ("free", "active", None)
