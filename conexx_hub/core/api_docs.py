from conexx_hub.schemas.common import ErrorOut


_ERROR_EXAMPLES: dict[int, tuple[str, str]] = {
    400: ("bad_request", "Bad request"),
    401: ("unauthorized", "Invalid credentials"),
    403: ("forbidden", "Insufficient role for this action"),
    404: ("not_found", "Weekly fee not found"),
    409: ("conflict", "Cannot transition weekly fee from 'paid' to 'canceled'"),
    422: ("validation_error", "Validation failed"),
    429: ("rate_limited", "Too many failed attempts. Try again later."),
    500: ("internal_error", "Internal server error"),
    502: ("provider_error", "Asaas request rejected"),
}

_WEBHOOK_EXAMPLES: dict[int, tuple[str, dict]] = {
    200: ("Processed, or already processed", {"success": True}),
    400: ("Payload without event id or type", {"error": "Webhook payload has no event id"}),
    401: ("Invalid webhook token", {"error": "Invalid webhook token"}),
    500: ("Handler failure; Asaas retries the delivery", {"error": "Subscription not found: sub_123"}),
}


def error_responses(*status_codes: int) -> dict[int, dict]:
    responses: dict[int, dict] = {}
    for status_code in status_codes:
        code, message = _ERROR_EXAMPLES.get(status_code, ("http_error", "HTTP error"))
        responses[status_code] = {
            "model": ErrorOut,
            "description": message,
            "content": {
                "application/json": {
                    "example": {
                        "error": {
                            "code": code,
                            "message": message,
                            "request_id": "request-id",
                            "path": "/example",
                            "details": None,
                        }
                    }
                }
            },
        }
    return responses


def webhook_responses(*status_codes: int) -> dict[int, dict]:
    """Flat ``{"error": message}`` bodies answered to the payment provider."""
    return {
        status_code: {
            "description": _WEBHOOK_EXAMPLES[status_code][0],
            "content": {"application/json": {"example": _WEBHOOK_EXAMPLES[status_code][1]}},
        }
        for status_code in status_codes
    }
