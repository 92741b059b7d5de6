import json
import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Protocol

import httpx

from conexx_hub.core.config import settings
from conexx_hub.core.errors import ProviderError

logger = logging.getLogger("conexx_hub.billing")


@dataclass(frozen=True)
class CustomerData:
    name: str
    email: str
    document: str | None = None
    external_reference: str | None = None


@dataclass(frozen=True)
class ChargeRequest:
    customer_id: str
    billing_type: str
    value: Decimal
    due_date: date
    description: str
    external_reference: str | None = None


@dataclass(frozen=True)
class ChargeResult:
    provider: str
    payment_id: str
    invoice_url: str | None
    due_date: date | None
    status: str | None = None


@dataclass(frozen=True)
class SubscriptionRequest:
    customer_id: str
    billing_type: str
    value: Decimal
    next_due_date: date
    cycle: str
    description: str
    external_reference: str | None = None


@dataclass(frozen=True)
class SubscriptionResult:
    provider: str
    subscription_id: str
    next_due_date: date | None
    status: str | None = None


class PaymentProvider(Protocol):
    name: str

    def find_customer_by_email(self, email: str) -> str | None:
        ...

    def create_customer(self, customer: CustomerData) -> str:
        ...

    def create_charge(self, request: ChargeRequest) -> ChargeResult:
        ...

    def delete_charge(self, payment_id: str) -> None:
        ...

    def create_subscription(self, request: SubscriptionRequest) -> SubscriptionResult:
        ...

    def cancel_subscription(self, subscription_id: str) -> None:
        ...

    def first_invoice_url(self, subscription_id: str) -> str | None:
        ...


def _parse_date(value: Any) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _only_digits(value: str | None) -> str | None:
    if not value:
        return None
    digits = "".join(ch for ch in value if ch.isdigit())
    return digits or None


class StubPaymentProvider:
    name = "stub"

    def find_customer_by_email(self, email: str) -> str | None:
        return None

    def create_customer(self, customer: CustomerData) -> str:
        return f"cus_stub_{uuid.uuid4().hex[:12]}"

    def create_charge(self, request: ChargeRequest) -> ChargeResult:
        payment_id = f"pay_stub_{uuid.uuid4().hex[:16]}"
        return ChargeResult(
            provider=self.name,
            payment_id=payment_id,
            invoice_url=f"https://sandbox.asaas.com/i/{payment_id}",
            due_date=request.due_date,
            status="PENDING",
        )

    def delete_charge(self, payment_id: str) -> None:
        return None

    def create_subscription(self, request: SubscriptionRequest) -> SubscriptionResult:
        return SubscriptionResult(
            provider=self.name,
            subscription_id=f"sub_stub_{uuid.uuid4().hex[:16]}",
            next_due_date=request.next_due_date,
            status="ACTIVE",
        )

    def cancel_subscription(self, subscription_id: str) -> None:
        return None

    def first_invoice_url(self, subscription_id: str) -> str | None:
        return None


class AsaasPaymentProvider:
    """Asaas REST v3 client.

    Authenticates with the ``access_token`` header. Non-2xx answers raise
    ``ProviderError`` carrying the first error description Asaas returns.
    """

    name = "asaas"

    def __init__(self, *, api_key: str, base_url: str, timeout: float = 20.0):
        if not api_key:
            raise ProviderError("Asaas API key is not configured", provider=self.name)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client: httpx.Client | None = None

    @classmethod
    def from_settings(cls) -> "AsaasPaymentProvider":
        return cls(
            api_key=settings.asaas_api_key or "",
            base_url=settings.asaas_base_url,
            timeout=settings.asaas_timeout_seconds,
        )

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                headers={
                    "access_token": self.api_key,
                    "Content-Type": "application/json",
                    "User-Agent": "conexx-hub",
                },
                timeout=self.timeout,
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _request(
        self,
        method: str,
        path: str,
        *,
        allow_not_found: bool = False,
        **kwargs: Any,
    ) -> dict[str, Any] | None:
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.RequestError as exc:
            logger.error(
                json.dumps(
                    {
                        "event": "asaas_request_failed",
                        "method": method,
                        "path": path,
                        "error": str(exc),
                    }
                )
            )
            raise ProviderError(f"Asaas request failed: {exc}", provider=self.name) from exc

        if allow_not_found and response.status_code == 404:
            return None

        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text}

        if response.is_success:
            return body if isinstance(body, dict) else {"data": body}

        message = "Asaas request rejected"
        errors = body.get("errors") if isinstance(body, dict) else None
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            message = errors[0].get("description") or message
        logger.error(
            json.dumps(
                {
                    "event": "asaas_error_response",
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "message": message,
                }
            )
        )
        raise ProviderError(
            message,
            provider=self.name,
            provider_status=response.status_code,
            details=body,
        )

    def find_customer_by_email(self, email: str) -> str | None:
        body = self._request("GET", "/customers", params={"email": email})
        rows = (body or {}).get("data") or []
        if not rows:
            return None
        return str(rows[0]["id"])

    def create_customer(self, customer: CustomerData) -> str:
        payload: dict[str, Any] = {
            "name": customer.name,
            "email": customer.email,
        }
        document = _only_digits(customer.document)
        if document:
            payload["cpfCnpj"] = document
        if customer.external_reference:
            payload["externalReference"] = customer.external_reference
        body = self._request("POST", "/customers", json=payload)
        return str(body["id"])

    def create_charge(self, request: ChargeRequest) -> ChargeResult:
        payload: dict[str, Any] = {
            "customer": request.customer_id,
            "billingType": request.billing_type,
            "value": float(request.value),
            "dueDate": request.due_date.isoformat(),
            "description": request.description,
        }
        if request.external_reference:
            payload["externalReference"] = request.external_reference
        body = self._request("POST", "/payments", json=payload)
        return ChargeResult(
            provider=self.name,
            payment_id=str(body["id"]),
            invoice_url=body.get("invoiceUrl") or body.get("bankSlipUrl"),
            due_date=_parse_date(body.get("dueDate")) or request.due_date,
            status=body.get("status"),
        )

    def delete_charge(self, payment_id: str) -> None:
        self._request("DELETE", f"/payments/{payment_id}", allow_not_found=True)

    def create_subscription(self, request: SubscriptionRequest) -> SubscriptionResult:
        payload: dict[str, Any] = {
            "customer": request.customer_id,
            "billingType": request.billing_type,
            "value": float(request.value),
            "nextDueDate": request.next_due_date.isoformat(),
            "cycle": request.cycle,
            "description": request.description,
        }
        if request.external_reference:
            payload["externalReference"] = request.external_reference
        body = self._request("POST", "/subscriptions", json=payload)
        return SubscriptionResult(
            provider=self.name,
            subscription_id=str(body["id"]),
            next_due_date=_parse_date(body.get("nextDueDate")) or request.next_due_date,
            status=body.get("status"),
        )

    def cancel_subscription(self, subscription_id: str) -> None:
        self._request("DELETE", f"/subscriptions/{subscription_id}", allow_not_found=True)

    def first_invoice_url(self, subscription_id: str) -> str | None:
        body = self._request("GET", "/payments", params={"subscription": subscription_id, "limit": 1})
        rows = (body or {}).get("data") or []
        if not rows:
            return None
        return rows[0].get("invoiceUrl")


_PROVIDER_FACTORIES = {
    "stub": StubPaymentProvider,
    "asaas": AsaasPaymentProvider.from_settings,
}
_PAYMENT_PROVIDERS: dict[str, PaymentProvider] = {}


def get_payment_provider(name: str) -> PaymentProvider:
    normalized = (name or "").strip().lower()
    provider = _PAYMENT_PROVIDERS.get(normalized)
    if provider:
        return provider
    factory = _PROVIDER_FACTORIES.get(normalized)
    if not factory:
        available = ", ".join(sorted(_PROVIDER_FACTORIES.keys()))
        raise ValueError(f"Unknown payment provider '{name}'. Available: {available}")
    provider = factory()
    _PAYMENT_PROVIDERS[normalized] = provider
    return provider


def get_default_payment_provider() -> PaymentProvider:
    """FastAPI dependency; tests override it with a fake provider."""
    return get_payment_provider(settings.payment_provider_default)
