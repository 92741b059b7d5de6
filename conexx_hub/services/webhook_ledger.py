import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from conexx_hub.core.errors import DuplicateEvent, InvalidWebhookPayload
from conexx_hub.models.webhook_event import WebhookEvent
from conexx_hub.services.reconciler import reconcile_event

logger = logging.getLogger("conexx_hub.billing")

PROVIDER_ASAAS = "asaas"
MAX_ERROR_MESSAGE_CHARS = 2000

EventHandler = Callable[[Session, str, dict[str, Any]], Any]


@dataclass(frozen=True)
class WebhookOutcome:
    provider: str
    event_id: str
    event_type: str
    result: Any = None


def event_data(payload: dict[str, Any]) -> dict[str, Any]:
    # Asaas nests the object under "payment" or "subscription"; "data" is the generic envelope.
    for key in ("data", "payment", "subscription"):
        value = payload.get(key)
        if isinstance(value, dict):
            return value
    return {}


def idempotency_key(payload: dict[str, Any]) -> str:
    explicit_id = str(payload.get("id") or "").strip()
    if explicit_id:
        return explicit_id
    event_type = str(payload.get("event") or "").strip()
    data_id = str(event_data(payload).get("id") or "").strip()
    if not event_type or not data_id:
        raise InvalidWebhookPayload("Webhook payload has no event id")
    return f"{event_type}:{data_id}"


def _find_event(db: Session, *, provider: str, event_id: str) -> WebhookEvent | None:
    return db.execute(
        select(WebhookEvent).where(
            WebhookEvent.provider == provider,
            WebhookEvent.event_id == event_id,
        )
    ).scalar_one_or_none()


def _claim_event(
    db: Session,
    *,
    provider: str,
    event_id: str,
    event_type: str,
    payload: dict[str, Any],
) -> str:
    """Records the event as received and returns the row id.

    Raises DuplicateEvent when the event is already received or processed.
    A row left in ``error`` by a failed attempt is claimed again for the retry.
    """
    existing = _find_event(db, provider=provider, event_id=event_id)

    if existing is not None:
        claimed = db.execute(
            update(WebhookEvent)
            .where(WebhookEvent.id == existing.id, WebhookEvent.status == "error")
            .values(status="received", error_message=None, payload_json=payload)
        ).rowcount
        db.commit()
        if not claimed:
            raise DuplicateEvent("Event already processed")
        return existing.id

    entry = WebhookEvent(
        provider=provider,
        event_id=event_id,
        event_type=event_type,
        payload_json=payload,
        status="received",
    )
    db.add(entry)
    try:
        db.commit()
    except IntegrityError as exc:
        # Concurrent delivery of the same event won the insert.
        db.rollback()
        raise DuplicateEvent("Event already processed") from exc
    return entry.id


def _mark_error(db: Session, *, entry_id: str, message: str) -> None:
    db.execute(
        update(WebhookEvent)
        .where(WebhookEvent.id == entry_id)
        .values(status="error", error_message=message[:MAX_ERROR_MESSAGE_CHARS])
    )
    db.commit()


def process_webhook(
    db: Session,
    payload: dict[str, Any],
    *,
    provider: str = PROVIDER_ASAAS,
    handler: EventHandler = reconcile_event,
) -> WebhookOutcome:
    event_type = str(payload.get("event") or "").strip()
    if not event_type:
        raise InvalidWebhookPayload("Webhook payload has no event type")
    event_id = idempotency_key(payload)

    try:
        entry_id = _claim_event(
            db,
            provider=provider,
            event_id=event_id,
            event_type=event_type,
            payload=payload,
        )
    except DuplicateEvent:
        logger.info(
            json.dumps(
                {
                    "event": "webhook_duplicate",
                    "provider": provider,
                    "event_id": event_id,
                    "event_type": event_type,
                }
            )
        )
        raise

    try:
        result = handler(db, event_type, event_data(payload))
        db.execute(
            update(WebhookEvent)
            .where(WebhookEvent.id == entry_id)
            .values(status="processed", processed_at=datetime.now(timezone.utc), error_message=None)
        )
        db.commit()
    except Exception as exc:
        db.rollback()
        _mark_error(db, entry_id=entry_id, message=str(exc) or exc.__class__.__name__)
        logger.error(
            json.dumps(
                {
                    "event": "webhook_failed",
                    "provider": provider,
                    "event_id": event_id,
                    "event_type": event_type,
                    "error": str(exc),
                }
            )
        )
        raise

    logger.info(
        json.dumps(
            {
                "event": "webhook_processed",
                "provider": provider,
                "event_id": event_id,
                "event_type": event_type,
            }
        )
    )
    return WebhookOutcome(provider=provider, event_id=event_id, event_type=event_type, result=result)
