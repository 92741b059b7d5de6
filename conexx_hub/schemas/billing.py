from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class CustomerOut(BaseModel):
    asaas_customer_id: str


class SubscriptionCreateIn(BaseModel):
    plan_id: str
    billing_cycle: str = "quarterly"

    @field_validator("plan_id")
    @classmethod
    def validate_plan_id(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("plan_id is required")
        return cleaned

    @field_validator("billing_cycle")
    @classmethod
    def normalize_billing_cycle(cls, value: str) -> str:
        return value.strip().lower()

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "plan_id": "pln123",
                "billing_cycle": "quarterly",
            }
        }
    )


class SubscriptionOut(BaseModel):
    id: str
    plan_id: str
    asaas_subscription_id: str
    status: str
    value: Decimal
    cycle: str
    next_due_date: Optional[date] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SubscriptionCreateOut(BaseModel):
    subscription: SubscriptionOut
    payment_url: Optional[str] = None
    reused: bool = False


class PlanOut(BaseModel):
    id: str
    name: str
    price_monthly: Decimal
    price_quarterly: Decimal
    price_semiannual: Decimal
    price_yearly: Decimal

    model_config = ConfigDict(from_attributes=True)


class PaymentOut(BaseModel):
    id: str
    asaas_payment_id: str
    subscription_id: Optional[str] = None
    status: str
    value: Decimal
    due_date: Optional[date] = None
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SubscriptionStatusOut(BaseModel):
    subscription: Optional[SubscriptionOut] = None
    plan: Optional[PlanOut] = None
    payments: list[PaymentOut]
