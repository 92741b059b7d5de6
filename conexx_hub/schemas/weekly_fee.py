from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


class WeeklyFeeOut(BaseModel):
    id: str
    tenant_id: str
    week_start: date
    week_end: date
    revenue_week: Decimal
    percent_applied: Decimal
    amount_due: Decimal
    status: str
    asaas_payment_id: Optional[str] = None
    asaas_invoice_url: Optional[str] = None
    billing_type: Optional[str] = None
    due_date: Optional[date] = None
    payment_date: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WeeklyFeeListOut(BaseModel):
    items: list[WeeklyFeeOut]
    total: int


class WeeklyFeeRangeIn(BaseModel):
    start_date: date
    end_date: date
    tenant_id: Optional[str] = None

    @field_validator("tenant_id")
    @classmethod
    def normalize_tenant_id(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @model_validator(mode="after")
    def validate_range(self) -> "WeeklyFeeRangeIn":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "start_date": "2024-01-01",
                "end_date": "2024-01-08",
                "tenant_id": None,
            }
        }
    )


class FeeLineOut(BaseModel):
    tenant_id: str
    tenant_name: str
    week_start: date
    week_end: date
    revenue_week: Decimal
    percent_applied: Decimal
    amount_due: Decimal
    action: str
    existing_fee_id: Optional[str] = None
    existing_status: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class WeeklyFeePreviewOut(BaseModel):
    lines: list[FeeLineOut]
    total_amount_due: Decimal


class WeeklyFeeCalculateOut(BaseModel):
    created: int
    updated: int
    skipped: int
    fees: list[WeeklyFeeOut]


class WeeklyFeeChargeIn(BaseModel):
    method: str

    @field_validator("method")
    @classmethod
    def normalize_method(cls, value: str) -> str:
        return value.strip().upper()

    model_config = ConfigDict(json_schema_extra={"example": {"method": "PIX"}})


class WeeklyFeeChargeOut(BaseModel):
    fee: WeeklyFeeOut
    payment_url: Optional[str] = None


class WeeklyFeeMarkPaidIn(BaseModel):
    # Checked by the service so a missing value fails before any state change.
    admin_password: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={"example": {"admin_password": "password123"}})
