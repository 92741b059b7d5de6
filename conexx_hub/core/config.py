import json
from typing import List, Union
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ASAAS_PRODUCTION_URL = "https://www.asaas.com/api/v3"
ASAAS_SANDBOX_URL = "https://sandbox.asaas.com/api/v3"


class Settings(BaseSettings):
    app_name: str = "Conexx Hub Backend"
    env: str = "dev"
    secret_key: str
    access_token_expire_minutes: int = 60
    auth_rate_limit_max_attempts: int = Field(default=5, ge=1)
    auth_rate_limit_window_seconds: int = Field(default=300, ge=1)
    auth_rate_limit_lock_seconds: int = Field(default=900, ge=1)

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # PAYMENTS (ASAAS)
    payment_provider_default: str = "stub"
    asaas_api_key: str | None = None
    asaas_environment: str = "sandbox"
    asaas_api_url: str | None = None
    asaas_timeout_seconds: float = Field(default=20.0, gt=0, le=120)
    asaas_webhook_token: str | None = None

    # BILLING
    weekly_fee_due_days: int = Field(default=2, ge=0, le=60)
    api_timeout_hint_ms: int = Field(default=300000, ge=1000, le=1_800_000)

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:5173"])
    cors_origin_regex: str | None = None

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            if not v.strip():
                return []
            if v.startswith("["):
                parsed = json.loads(v)
                if not isinstance(parsed, list):
                    raise ValueError("CORS_ORIGINS JSON value must be a list")
                return [str(i).strip() for i in parsed if str(i).strip()]
            return [i.strip() for i in v.split(",") if i.strip()]
        if isinstance(v, list):
            return [str(i).strip() for i in v if str(i).strip()]
        raise ValueError(v)

    @field_validator(
        "asaas_api_key",
        "asaas_api_url",
        "asaas_webhook_token",
        mode="before",
    )
    @classmethod
    def normalize_optional_strings(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @field_validator("asaas_environment", "payment_provider_default")
    @classmethod
    def normalize_lowercase(cls, value: str) -> str:
        return (value or "").strip().lower()

    @property
    def asaas_base_url(self) -> str:
        if self.asaas_api_url:
            return self.asaas_api_url.rstrip("/")
        if self.asaas_environment == "production":
            return ASAAS_PRODUCTION_URL
        return ASAAS_SANDBOX_URL

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        if self.asaas_environment not in {"sandbox", "production"}:
            raise ValueError("ASAAS_ENVIRONMENT must be 'sandbox' or 'production'")

        env_value = self.env.lower().strip()
        if env_value not in {"prod", "production"}:
            return self

        weak_secrets = {
            "",
            "change_me",
            "dev-secret-key-change-before-prod",
        }
        if self.secret_key.strip() in weak_secrets or len(self.secret_key.strip()) < 32:
            raise ValueError("SECRET_KEY must be a strong random value in production")

        if "*" in self.cors_origins:
            raise ValueError("CORS_ORIGINS cannot contain '*' in production")
        if self.cors_origin_regex:
            raise ValueError("CORS_ORIGIN_REGEX cannot be set in production")

        if self.payment_provider_default == "asaas" and not self.asaas_api_key:
            raise ValueError("ASAAS_API_KEY is required when PAYMENT_PROVIDER_DEFAULT=asaas")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
    )


settings = Settings()
