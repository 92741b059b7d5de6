from typing import Any


class HubError(Exception):
    status_code = 400
    code = "bad_request"

    def __init__(self, message: str, *, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class DuplicateEvent(HubError):
    """Raised when a provider callback was already recorded; callers answer success."""

    status_code = 200
    code = "duplicate_event"


class NotFoundError(HubError):
    status_code = 404
    code = "not_found"


class ValidationError(HubError):
    status_code = 422
    code = "validation_error"


class InvalidTransitionError(HubError):
    status_code = 409
    code = "conflict"


class AuthenticationError(HubError):
    status_code = 401
    code = "unauthorized"


class ProviderError(HubError):
    status_code = 502
    code = "provider_error"

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_status: int | None = None,
        details: Any = None,
    ):
        super().__init__(message, details=details)
        self.provider = provider
        self.provider_status = provider_status


class InvalidWebhookPayload(HubError):
    """Raised before the ledger claim when a callback carries no usable event id or type."""

    status_code = 400
    code = "bad_request"
