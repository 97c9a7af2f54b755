from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Any, Mapping, Protocol

import httpx

from subsync.core.config import Settings


logger = logging.getLogger(__name__)

KIND_WELCOME = "welcome"
KIND_PASSWORD_RESET = "password_reset"
KIND_SUBSCRIPTION_CONFIRMED = "subscription_confirmed"


@dataclass(frozen=True)
class EmailResult:
    # Outcome of one send attempt; callers log it and move on.
    success: bool
    id: str | None = None
    error: str | None = None


class EmailSender(Protocol):
    async def send(self, kind: str, recipient: str, data: Mapping[str, Any]) -> EmailResult: ...


def render_message(kind: str, data: Mapping[str, Any]) -> tuple[str, str]:
    # Plain-text bodies only; presentation lives with the frontend.
    name = data.get("name") or "there"
    if kind == KIND_WELCOME:
        return (
            "Welcome aboard",
            f"Hi {name},\n\nYour account is ready. Sign in any time at {data.get('app_url', '')}.\n",
        )
    if kind == KIND_PASSWORD_RESET:
        return (
            "Reset your password",
            "We received a request to reset your password.\n\n"
            f"Open this link within one hour to choose a new one:\n{data['reset_url']}\n\n"
            "If you did not ask for this, you can ignore this email.\n",
        )
    if kind == KIND_SUBSCRIPTION_CONFIRMED:
        return (
            "Your Pro subscription is active",
            f"Hi {name},\n\nThanks for subscribing. Pro features are now unlocked on your account.\n",
        )
    raise ValueError(f"Unsupported email kind: {kind}")


class ResendEmailSender:
    """Send transactional email through the Resend HTTP API.

    ``send`` never raises: configuration gaps, transport errors and provider rejections all
    come back as ``EmailResult(success=False, ...)``.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        sender: str,
        api_url: str,
        timeout_s: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._sender = sender
        self._api_url = api_url
        self._timeout_s = timeout_s
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def send(self, kind: str, recipient: str, data: Mapping[str, Any]) -> EmailResult:
        if not self.configured:
            logger.warning("email_not_configured kind=%s", kind)
            return EmailResult(success=False, error="Email service is not configured")
        try:
            subject, body = render_message(kind, data)
        except (KeyError, ValueError) as exc:
            logger.warning("email_render_failed kind=%s", kind, exc_info=exc)
            return EmailResult(success=False, error=str(exc))

        payload = {"from": self._sender, "to": [recipient], "subject": subject, "text": body}
        headers = {"Authorization": f"Bearer {self._api_key}"}
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                response = await client.post(self._api_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("email_send_failed kind=%s", kind, exc_info=exc)
            return EmailResult(success=False, error=str(exc))

        latency_ms = (time.monotonic() - start) * 1000.0
        if response.status_code >= 400:
            logger.warning(
                "email_send_rejected kind=%s status=%s latency_ms=%.1f",
                kind,
                response.status_code,
                latency_ms,
            )
            return EmailResult(success=False, error=f"Email provider responded with status {response.status_code}")

        try:
            message_id = response.json().get("id")
        except ValueError:
            message_id = None
        logger.info("email_sent kind=%s id=%s latency_ms=%.1f", kind, message_id, latency_ms)
        return EmailResult(success=True, id=message_id)


def create_email_sender(settings: Settings) -> ResendEmailSender:
    return ResendEmailSender(
        api_key=settings.resend_api_key,
        sender=settings.email_from,
        api_url=settings.email_api_url,
        timeout_s=settings.email_timeout_ms / 1000.0,
    )
