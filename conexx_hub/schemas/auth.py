from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, field_validator


class LoginIn(BaseModel):
    email: EmailStr
    password: str

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("password is required")
        return value

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "admin@conexxhub.com.br",
                "password": "password123",
            }
        }
    )


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserProfileOut(BaseModel):
    id: str
    email: EmailStr
    name: Optional[str] = None
    role: str
    tenant_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "abc123",
                "email": "owner@loja.com.br",
                "name": "Maria Souza",
                "role": "client_admin",
                "tenant_id": "tnt123",
                "created_at": "2026-02-01T12:00:00Z",
            }
        },
    )
