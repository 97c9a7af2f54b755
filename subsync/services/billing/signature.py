from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any

from subsync.core.errors import WebhookPayloadError, WebhookSignatureError


SIGNATURE_SCHEME = "v1"
DEFAULT_TOLERANCE_S = 300


def compute_signature(secret: str, payload: bytes, timestamp: int) -> str:
    # Compute HMAC SHA256 over "<timestamp>.<raw body>" as the processor does.
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def build_signature_header(secret: str, payload: bytes, timestamp: int | None = None) -> str:
    resolved = int(time.time()) if timestamp is None else int(timestamp)
    return f"t={resolved},{SIGNATURE_SCHEME}={compute_signature(secret, payload, resolved)}"


def _parse_header(header: str) -> tuple[int, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as exc:
                raise WebhookSignatureError("Malformed signature timestamp") from exc
        elif key == SIGNATURE_SCHEME:
            signatures.append(value)
    if timestamp is None or not signatures:
        raise WebhookSignatureError("Unable to extract timestamp and signatures from header")
    return timestamp, signatures


def construct_event(
    payload: bytes,
    signature_header: str | None,
    *,
    secret: str,
    tolerance_s: int = DEFAULT_TOLERANCE_S,
    now: float | None = None,
) -> dict[str, Any]:
    """Verify a webhook delivery against the raw request body and return the decoded event.

    Raises WebhookSignatureError for a missing or malformed header, a signature mismatch,
    or a timestamp outside the tolerance window. A correctly signed body that is not a
    JSON object raises WebhookPayloadError instead.
    """
    if not signature_header:
        raise WebhookSignatureError("Missing signature header")
    timestamp, signatures = _parse_header(signature_header)
    expected = compute_signature(secret, payload, timestamp)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookSignatureError("No signatures found matching the expected signature for payload")
    current = time.time() if now is None else now
    if tolerance_s > 0 and abs(current - timestamp) > tolerance_s:
        raise WebhookSignatureError("Timestamp outside the tolerance zone")
    try:
        event = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise WebhookPayloadError("Webhook payload is not valid JSON") from exc
    if not isinstance(event, dict):
        raise WebhookPayloadError("Webhook payload is not a JSON object")
    return event
