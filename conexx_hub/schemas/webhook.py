from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class AsaasWebhookIn(BaseModel):
    event: str
    id: Optional[str] = None
    data: Optional[dict[str, Any]] = None
    payment: Optional[dict[str, Any]] = None
    subscription: Optional[dict[str, Any]] = None

    model_config = ConfigDict(
        extra="allow",
        json_schema_extra={
            "example": {
                "id": "evt_05b708f961d739ea7eba7e4db318f621",
                "event": "PAYMENT_CONFIRMED",
                "payment": {
                    "id": "pay_080225913252",
                    "value": 129.9,
                    "status": "CONFIRMED",
                    "externalReference": "usr123",
                    "paymentDate": "2024-01-10",
                },
            }
        },
    )


class WebhookAckOut(BaseModel):
    success: bool = True
