from __future__ import annotations

import json
import time
from typing import Any, Mapping
from urllib.parse import parse_qs, urlparse
from uuid import uuid4

from subsync.services.billing.gateway import CheckoutSession
from subsync.services.billing.signature import build_signature_header
from subsync.services.notifications.email import KIND_PASSWORD_RESET, EmailResult


TEST_WEBHOOK_SECRET = "whsec_test_secret"
TEST_JWT_SECRET = "test-jwt-secret"


class RecordingEmailSender:
    # Capture outgoing email instead of calling the provider.

    def __init__(self, *, succeed: bool = True) -> None:
        self.succeed = succeed
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    async def send(self, kind: str, recipient: str, data: Mapping[str, Any]) -> EmailResult:
        self.sent.append((kind, recipient, dict(data)))
        if not self.succeed:
            return EmailResult(success=False, error="provider down")
        return EmailResult(success=True, id=f"email_{len(self.sent)}")

    def of_kind(self, kind: str) -> list[tuple[str, str, dict[str, Any]]]:
        return [item for item in self.sent if item[0] == kind]

    def last_reset_secret(self) -> str:
        # Pull the raw secret out of the most recent reset link.
        _kind, _recipient, data = self.of_kind(KIND_PASSWORD_RESET)[-1]
        return parse_qs(urlparse(data["reset_url"]).query)["token"][0]


class FakePaymentGateway:
    def __init__(self) -> None:
        self.customers: dict[str, tuple[str, str]] = {}
        self.checkout_calls: list[tuple[str, str, str]] = []
        self.portal_calls: list[str] = []

    async def create_customer(self, email: str, user_id: str) -> str:
        customer_id = f"cus_{len(self.customers) + 1}"
        self.customers[customer_id] = (email, user_id)
        return customer_id

    async def create_checkout_session(self, customer_id: str, user_id: str, email: str) -> CheckoutSession:
        self.checkout_calls.append((customer_id, user_id, email))
        session_id = f"cs_test_{len(self.checkout_calls)}"
        return CheckoutSession(id=session_id, url=f"https://checkout.test/{session_id}")

    async def create_portal_session(self, customer_id: str) -> str:
        self.portal_calls.append(customer_id)
        return f"https://portal.test/{customer_id}"

    async def get_checkout_session(self, session_id: str) -> dict[str, Any]:
        return {"id": session_id, "status": "complete", "customerEmail": None, "subscriptionStatus": "active"}


def make_event(event_type: str, obj: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": f"evt_{uuid4().hex[:24]}",
        "type": event_type,
        "created": int(time.time()),
        "data": {"object": obj},
    }


def sign_event(secret: str, event: dict[str, Any], *, timestamp: int | None = None) -> tuple[bytes, str]:
    # Serialize once and sign those exact bytes, as the processor does.
    body = json.dumps(event, separators=(",", ":")).encode("utf-8")
    return body, build_signature_header(secret, body, timestamp)
