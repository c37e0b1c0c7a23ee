"""
Square Payment Gateway Adapter
---
Customers, card charges, cards on file and recurring-subscription cancellation
over the Square Connect v2 REST API.

Everything returned from here is plain Python: money is normalised to integer
minor units at this boundary and gateway failures of any kind (HTTP error,
decline, timeout, undecodable body) surface as GatewayError.

See: https://developer.squareup.com/reference/square
"""
from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from config.settings import settings

logger = logging.getLogger(__name__)

SQUARE_BASE_URL_PROD = "https://connect.squareup.com"
SQUARE_BASE_URL_SANDBOX = "https://connect.squareupsandbox.com"


class GatewayError(Exception):
    """Any failure talking to the payment gateway."""

    def __init__(self, message: str, status_code: Optional[int] = None, errors: Optional[list] = None):
        self.status_code = status_code
        self.errors = errors or []
        super().__init__(message)

    @property
    def error_codes(self) -> list[str]:
        return [e.get("code", "") for e in self.errors if isinstance(e, dict)]


@dataclass(frozen=True)
class CustomerProfile:
    reference_id: str
    email: str
    given_name: str = "Customer"
    family_name: str = ""


@dataclass(frozen=True)
class ChargeResult:
    charge_id: str
    status: str  # COMPLETED | APPROVED | PENDING | CANCELED | FAILED
    amount_minor_units: int
    currency: str

    @property
    def completed(self) -> bool:
        return self.status == "COMPLETED"


@dataclass(frozen=True)
class StoredCard:
    id: str
    last4: str
    brand: str
    exp_month: Optional[int]
    exp_year: Optional[int]
    enabled: bool
    cardholder_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "last4": self.last4,
            "brand": self.brand,
            "exp_month": self.exp_month,
            "exp_year": self.exp_year,
            "enabled": self.enabled,
            "cardholder_name": self.cardholder_name,
        }


def to_minor_units(value: Any) -> int:
    """Normalise a gateway amount (int, str, bigint-as-string) to an int.

    Non-integral amounts are a gateway contract violation, not something to round.
    """
    if isinstance(value, bool) or value is None:
        raise GatewayError(f"Invalid amount from gateway: {value!r}")
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise GatewayError(f"Invalid amount from gateway: {value!r}") from exc
    if amount != amount.to_integral_value():
        raise GatewayError(f"Non-integral amount from gateway: {value!r}")
    return int(amount)


class PaymentGateway(ABC):
    """What the subscription services need from a payment processor."""

    @abstractmethod
    async def create_customer(self, profile: CustomerProfile) -> str:
        """Create a gateway customer, return its id."""

    @abstractmethod
    async def charge(
        self,
        amount_minor_units: int,
        currency: str,
        payment_method_id: str,
        customer_id: str,
        idempotency_key: str,
    ) -> ChargeResult:
        ...

    @abstractmethod
    async def list_stored_cards(self, customer_id: str) -> list[StoredCard]:
        ...

    @abstractmethod
    async def create_stored_card(
        self, customer_id: str, source_id: str, cardholder_name: Optional[str] = None
    ) -> StoredCard:
        ...

    @abstractmethod
    async def disable_stored_card(self, card_id: str) -> StoredCard:
        ...

    @abstractmethod
    async def cancel_recurring(self, subscription_id: str) -> None:
        """Cancel a gateway-side recurring plan immediately."""

    @abstractmethod
    async def schedule_cancel(self, subscription_id: str, version: Optional[int], cancel_on: date) -> None:
        """Stop a gateway-side recurring plan from renewing after `cancel_on`."""


class SquareGateway(PaymentGateway):
    """PaymentGateway backed by Square's REST API."""

    def __init__(
        self,
        access_token: str,
        location_id: str = "",
        environment: str = "sandbox",
        api_version: str = "2024-10-17",
        timeout: float = 15,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.access_token = access_token
        self.location_id = location_id
        self.base_url = SQUARE_BASE_URL_PROD if environment == "production" else SQUARE_BASE_URL_SANDBOX
        self.api_version = api_version
        self.timeout = timeout
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.access_token)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Square-Version": self.api_version,
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self.configured:
            raise GatewayError("Square is not configured (SQUARE_ACCESS_TOKEN missing)")

        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                resp = await self._client.request(method, url, headers=self._headers(), **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as exc:
            raise GatewayError(f"Square request timed out: {method} {path}") from exc
        except httpx.HTTPError as exc:
            raise GatewayError(f"Square request failed: {method} {path}: {exc}") from exc

        try:
            body = resp.json() if resp.content else {}
        except ValueError as exc:
            raise GatewayError(f"Square returned non-JSON body ({resp.status_code})", resp.status_code) from exc

        if resp.status_code >= 400:
            errors = body.get("errors", []) if isinstance(body, dict) else []
            logger.warning(f"Square {method} {path} failed: status={resp.status_code} errors={errors}")
            raise GatewayError(
                f"Square {method} {path} returned {resp.status_code}",
                status_code=resp.status_code,
                errors=errors,
            )
        return body

    # ── Customers ────────────────────────────────────────────────────────────

    async def create_customer(self, profile: CustomerProfile) -> str:
        body = await self._request("POST", "/v2/customers", json={
            "idempotency_key": str(uuid.uuid4()),
            "given_name": profile.given_name or "Customer",
            "family_name": profile.family_name,
            "email_address": profile.email,
            "reference_id": profile.reference_id,
        })
        customer = body.get("customer") or {}
        if not customer.get("id"):
            raise GatewayError("Square create customer returned no id")
        return customer["id"]

    # ── Payments ─────────────────────────────────────────────────────────────

    async def charge(
        self,
        amount_minor_units: int,
        currency: str,
        payment_method_id: str,
        customer_id: str,
        idempotency_key: str,
    ) -> ChargeResult:
        payload: dict[str, Any] = {
            "source_id": payment_method_id,
            "idempotency_key": idempotency_key,
            "amount_money": {"amount": amount_minor_units, "currency": currency},
            "customer_id": customer_id,
            "autocomplete": True,
        }
        if self.location_id:
            payload["location_id"] = self.location_id

        body = await self._request("POST", "/v2/payments", json=payload)
        payment = body.get("payment") or {}
        money = payment.get("amount_money") or {}
        if not payment.get("id"):
            raise GatewayError("Square payment response missing id")
        return ChargeResult(
            charge_id=payment["id"],
            status=str(payment.get("status", "")).upper(),
            amount_minor_units=to_minor_units(money.get("amount")),
            currency=money.get("currency", currency),
        )

    # ── Cards on file ────────────────────────────────────────────────────────

    @staticmethod
    def _card_from_api(card: dict) -> StoredCard:
        return StoredCard(
            id=card["id"],
            last4=card.get("last_4", ""),
            brand=card.get("card_brand", ""),
            exp_month=card.get("exp_month"),
            exp_year=card.get("exp_year"),
            enabled=bool(card.get("enabled", True)),
            cardholder_name=card.get("cardholder_name"),
        )

    async def list_stored_cards(self, customer_id: str) -> list[StoredCard]:
        body = await self._request("GET", "/v2/cards", params={"customer_id": customer_id})
        return [self._card_from_api(c) for c in body.get("cards", [])]

    async def create_stored_card(
        self, customer_id: str, source_id: str, cardholder_name: Optional[str] = None
    ) -> StoredCard:
        card: dict[str, Any] = {"customer_id": customer_id}
        if cardholder_name:
            card["cardholder_name"] = cardholder_name
        body = await self._request("POST", "/v2/cards", json={
            "idempotency_key": str(uuid.uuid4()),
            "source_id": source_id,
            "card": card,
        })
        if not body.get("card"):
            raise GatewayError("Square create card returned no card")
        return self._card_from_api(body["card"])

    async def disable_stored_card(self, card_id: str) -> StoredCard:
        body = await self._request("POST", f"/v2/cards/{card_id}/disable")
        if not body.get("card"):
            raise GatewayError("Square disable card returned no card")
        return self._card_from_api(body["card"])

    # ── Recurring subscriptions ──────────────────────────────────────────────

    async def cancel_recurring(self, subscription_id: str) -> None:
        await self._request("POST", f"/v2/subscriptions/{subscription_id}/cancel")

    async def schedule_cancel(self, subscription_id: str, version: Optional[int], cancel_on: date) -> None:
        subscription: dict[str, Any] = {"canceled_date": cancel_on.isoformat()}
        if version is not None:
            subscription["version"] = version
        await self._request("PUT", f"/v2/subscriptions/{subscription_id}", json={
            "subscription": subscription,
        })


_gateway: Optional[PaymentGateway] = None


def get_gateway() -> PaymentGateway:
    """FastAPI dependency — process-wide Square adapter."""
    global _gateway
    if _gateway is None:
        _gateway = SquareGateway(
            access_token=settings.SQUARE_ACCESS_TOKEN,
            location_id=settings.SQUARE_LOCATION_ID,
            environment=settings.SQUARE_ENVIRONMENT,
            api_version=settings.SQUARE_API_VERSION,
            timeout=settings.SQUARE_TIMEOUT_SECONDS,
        )
    return _gateway
