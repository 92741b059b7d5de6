import hmac

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from conexx_hub.core.api_docs import webhook_responses
from conexx_hub.core.config import settings
from conexx_hub.core.deps import get_db
from conexx_hub.core.errors import DuplicateEvent, InvalidWebhookPayload
from conexx_hub.schemas.webhook import AsaasWebhookIn, WebhookAckOut
from conexx_hub.services.webhook_ledger import process_webhook

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

WEBHOOK_TOKEN_HEADER = "asaas-access-token"


def _webhook_token_valid(request: Request) -> bool:
    expected = settings.asaas_webhook_token
    if not expected:
        return True
    received = request.headers.get(WEBHOOK_TOKEN_HEADER) or ""
    return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))


@router.post(
    "/asaas",
    response_model=WebhookAckOut,
    summary="Process Asaas webhook callback",
    description=(
        "Idempotent: a redelivered event answers 200 without side effects. "
        "Handler failures answer 500 so Asaas retries the delivery."
    ),
    responses=webhook_responses(200, 400, 401, 500),
)
def asaas_webhook(
    payload: AsaasWebhookIn,
    request: Request,
    db: Session = Depends(get_db),
):
    # Asaas reads these bodies directly, so they keep the flat {"error": message} shape.
    if not _webhook_token_valid(request):
        return JSONResponse(status_code=401, content={"error": "Invalid webhook token"})

    try:
        process_webhook(db, payload.model_dump(mode="json", exclude_none=True))
    except DuplicateEvent:
        return JSONResponse(status_code=200, content={"message": "Event already processed"})
    except InvalidWebhookPayload as exc:
        return JSONResponse(status_code=400, content={"error": exc.message})
    except Exception as exc:
        return JSONResponse(status_code=500, content={"error": str(exc) or "Webhook processing failed"})

    return WebhookAckOut()
