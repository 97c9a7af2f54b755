from __future__ import annotations

import argparse
import json
import sys
import time
from uuid import uuid4

import httpx

from subsync.core.config import get_settings
from subsync.services.billing.signature import build_signature_header


_EVENT_TYPES = (
    "checkout.session.completed",
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "invoice.payment_failed",
)


def _build_parser() -> argparse.ArgumentParser:
    # Deliver a locally signed event so the webhook path can be exercised without the processor.
    parser = argparse.ArgumentParser(description="Send a signed test webhook to a running subsync API")
    parser.add_argument("--url", default="http://localhost:3001/api/stripe/webhook", help="Webhook endpoint")
    parser.add_argument("--type", dest="event_type", choices=_EVENT_TYPES, required=True)
    parser.add_argument("--user-id", default=None, help="metadata.userId to embed")
    parser.add_argument("--customer", default=None, help="Processor customer id")
    parser.add_argument("--status", default="active", help="Subscription status for created/updated")
    return parser


def _build_event(args: argparse.Namespace) -> dict:
    obj: dict = {"id": f"obj_{uuid4().hex[:14]}", "metadata": {}}
    if args.user_id:
        obj["metadata"]["userId"] = args.user_id
    if args.customer:
        obj["customer"] = args.customer
    if args.event_type.startswith("customer.subscription") and args.event_type != "customer.subscription.deleted":
        obj["status"] = args.status
    return {
        "id": f"evt_{uuid4().hex[:24]}",
        "type": args.event_type,
        "created": int(time.time()),
        "data": {"object": obj},
    }


def main() -> int:
    args = _build_parser().parse_args()
    secret = get_settings().stripe_webhook_secret
    if not secret:
        print("STRIPE_WEBHOOK_SECRET is not set", file=sys.stderr)
        return 1
    body = json.dumps(_build_event(args), separators=(",", ":")).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "Stripe-Signature": build_signature_header(secret, body),
    }
    try:
        response = httpx.post(args.url, content=body, headers=headers, timeout=10.0)
    except httpx.HTTPError as exc:
        print(f"send_test_webhook failed: {exc}", file=sys.stderr)
        return 1
    print(f"status={response.status_code} body={response.text}")
    return 0 if response.status_code < 400 else 1


if __name__ == "__main__":
    raise SystemExit(main())
