"""Tests for the Square gateway adapter against a mocked Square API."""
from __future__ import annotations

import json
from datetime import date

import httpx
import pytest

from src.services.payment_gateway import (
    CustomerProfile,
    GatewayError,
    SquareGateway,
    to_minor_units,
)


def _gateway(handler, **kwargs) -> SquareGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SquareGateway("sq-token", location_id="LOC1", client=client, **kwargs)


# ── Amounts ──────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("raw,expected", [(999, 999), ("9999", 9999), ("12345678901234567890", 12345678901234567890)])
def test_to_minor_units(raw, expected):
    assert to_minor_units(raw) == expected


@pytest.mark.parametrize("raw", [None, True, "9.99", "abc"])
def test_to_minor_units_rejects(raw):
    with pytest.raises(GatewayError):
        to_minor_units(raw)


# ── Requests ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_charge_sends_square_payment():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"payment": {
            "id": "pay_123", "status": "COMPLETED",
            "amount_money": {"amount": "999", "currency": "USD"},
        }})

    gw = _gateway(handler)
    result = await gw.charge(999, "USD", "cnon:card", "cust_1", "key-1")

    assert seen["url"] == "https://connect.squareupsandbox.com/v2/payments"
    assert seen["headers"]["authorization"] == "Bearer sq-token"
    assert seen["headers"]["square-version"] == "2024-10-17"
    assert seen["body"] == {
        "source_id": "cnon:card",
        "idempotency_key": "key-1",
        "amount_money": {"amount": 999, "currency": "USD"},
        "customer_id": "cust_1",
        "autocomplete": True,
        "location_id": "LOC1",
    }
    assert result.charge_id == "pay_123"
    assert result.amount_minor_units == 999
    assert result.completed


@pytest.mark.asyncio
async def test_production_base_url():
    def handler(request):
        assert request.url.host == "connect.squareup.com"
        return httpx.Response(200, json={"customer": {"id": "C1"}})

    gw = _gateway(handler, environment="production")
    assert await gw.create_customer(CustomerProfile(reference_id="u1", email="a@b.c")) == "C1"


@pytest.mark.asyncio
async def test_declined_payment_raises_with_codes():
    def handler(request):
        return httpx.Response(402, json={"errors": [{"code": "CARD_DECLINED", "category": "PAYMENT_METHOD_ERROR"}]})

    with pytest.raises(GatewayError) as exc:
        await _gateway(handler).charge(999, "USD", "cnon:bad", "cust_1", "k")
    assert exc.value.status_code == 402
    assert exc.value.error_codes == ["CARD_DECLINED"]


@pytest.mark.asyncio
async def test_timeout_raises_gateway_error():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(GatewayError, match="timed out"):
        await _gateway(handler).charge(999, "USD", "cnon:x", "cust_1", "k")


@pytest.mark.asyncio
async def test_non_json_body_raises_gateway_error():
    def handler(request):
        return httpx.Response(502, text="<html>bad gateway</html>")

    with pytest.raises(GatewayError):
        await _gateway(handler).list_stored_cards("cust_1")


@pytest.mark.asyncio
async def test_unconfigured_gateway():
    gw = SquareGateway("")
    with pytest.raises(GatewayError, match="not configured"):
        await gw.cancel_recurring("sq_sub_1")


@pytest.mark.asyncio
async def test_cards_round_trip():
    def handler(request):
        if request.method == "GET":
            assert request.url.params["customer_id"] == "cust_1"
            return httpx.Response(200, json={"cards": [
                {"id": "ccof_1", "last_4": "4242", "card_brand": "VISA", "exp_month": 1, "exp_year": 2031, "enabled": True},
            ]})
        if request.url.path.endswith("/disable"):
            return httpx.Response(200, json={"card": {"id": "ccof_1", "last_4": "4242", "enabled": False}})
        body = json.loads(request.content)
        assert body["source_id"] == "cnon:new"
        assert body["card"] == {"customer_id": "cust_1", "cardholder_name": "Ada Lovelace"}
        return httpx.Response(200, json={"card": {"id": "ccof_2", "last_4": "1111", "card_brand": "MASTERCARD"}})

    gw = _gateway(handler)
    cards = await gw.list_stored_cards("cust_1")
    assert cards[0].last4 == "4242"
    created = await gw.create_stored_card("cust_1", "cnon:new", "Ada Lovelace")
    assert created.brand == "MASTERCARD"
    disabled = await gw.disable_stored_card("ccof_1")
    assert disabled.enabled is False


@pytest.mark.asyncio
async def test_schedule_cancel_sends_version_and_date():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"subscription": {"id": "sq_sub_1"}})

    await _gateway(handler).schedule_cancel("sq_sub_1", 7, date(2026, 11, 30))
    assert seen["method"] == "PUT"
    assert seen["path"] == "/v2/subscriptions/sq_sub_1"
    assert seen["body"] == {"subscription": {"canceled_date": "2026-11-30", "version": 7}}
