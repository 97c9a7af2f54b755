from __future__ import annotations


class SubsyncError(Exception):
    """Base error for subsync."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__doc__ or self.code)

    @property
    def message(self) -> str:
        return str(self)


class DatabaseError(SubsyncError):
    """Database layer failure."""


class StoreUnavailableError(DatabaseError):
    """Configured store could not be reached."""


class DuplicateKeyError(DatabaseError):
    """Uniqueness constraint violated on write."""

    status_code = 409
    code = "CONFLICT"


class InputValidationError(SubsyncError):
    """Malformed or missing input."""

    status_code = 400
    code = "VALIDATION_ERROR"


class InvalidCredentialsError(SubsyncError):
    """Invalid email or password"""

    status_code = 401
    code = "AUTH_UNAUTHORIZED"


class EmailAlreadyExistsError(SubsyncError):
    """An account with this email already exists"""

    status_code = 409
    code = "CONFLICT"


class UserNotFoundError(SubsyncError):
    """User not found"""

    status_code = 404
    code = "NOT_FOUND"


class ResetTokenInvalidError(SubsyncError):
    """Invalid or expired reset token"""

    status_code = 400
    code = "RESET_TOKEN_INVALID"


class WebhookRejectedError(SubsyncError):
    """Webhook delivery rejected."""

    status_code = 400
    code = "WEBHOOK_REJECTED"


class WebhookSignatureError(WebhookRejectedError):
    """Webhook signature verification failed."""

    code = "WEBHOOK_SIGNATURE_INVALID"


class WebhookPayloadError(WebhookRejectedError):
    """Webhook payload is not a valid event."""

    code = "WEBHOOK_PAYLOAD_INVALID"


class PaymentGatewayError(SubsyncError):
    """Payment processor request failure."""

    status_code = 502
    code = "PAYMENT_GATEWAY_ERROR"


class ServiceMisconfiguredError(SubsyncError):
    """Missing or invalid integration configuration."""

    status_code = 503
    code = "SERVICE_UNAVAILABLE"
