"""
Square Webhook Processing
---
Reconciles subscription records with lifecycle events pushed by Square.

Delivery is at-least-once and unordered, so:
- every delivery is stored in webhook_events under its event id, in the same
  transaction as its effect; a replayed id is reported as a duplicate and
  changes nothing
- subscription events carry Square's object version; one older than the
  version already applied is recorded as stale and skipped
- failures while applying a recognised event are rolled back and recorded
  with outcome "error" for manual reconciliation, and Square still gets a 200

Handles:
- subscription.updated → status + billing window
- subscription.canceled → status only; access runs to the existing period end
- invoice.payment_made / invoice.payment_failed → audit
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.db.engine import get_session
from src.db.subscription_tables import SubscriptionRow, WebhookEventRow
from src.db.user_tables import UserRow
from src.models.entitlement import (
    SubscriptionStatus,
    as_utc,
    entitlement_from_record,
    sync_user_cache,
    utcnow,
)
from src.services.plans import add_months, cadence_for_plan_type, Cadence

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/subscriptions", tags=["subscriptions"])

SIGNATURE_HEADER = "x-square-hmacsha256-signature"


class WebhookOutcome(str, Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    UNTRACKED = "untracked"
    STALE = "stale"
    ERROR = "error"
    DUPLICATE = "duplicate"  # never stored; the original delivery is


# Square subscription status → our status
GATEWAY_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE.value,
    "pending": SubscriptionStatus.PENDING.value,
    "canceled": SubscriptionStatus.CANCELLED.value,
    "deactivated": SubscriptionStatus.INACTIVE.value,
    "paused": SubscriptionStatus.INACTIVE.value,
}

_KNOWN_STATUSES = {s.value for s in SubscriptionStatus}


def map_gateway_status(status: Optional[str]) -> str:
    lowered = (status or "").lower()
    if lowered in GATEWAY_STATUS_MAP:
        return GATEWAY_STATUS_MAP[lowered]
    if lowered in _KNOWN_STATUSES:
        return lowered
    return SubscriptionStatus.INACTIVE.value


def derive_event_id(event_type: str, data: Any) -> str:
    """Stable id for deliveries that arrive without one."""
    canonical = json.dumps({"type": event_type, "data": data}, sort_keys=True, default=str)
    return "derived:" + hashlib.sha256(canonical.encode()).hexdigest()


# ── Signature ─────────────────────────────────────────────────────────────────

def verify_square_signature(body: bytes, signature: Optional[str], key: str, notification_url: str) -> None:
    """Square signs notification_url + raw body with HMAC-SHA256, base64-encoded."""
    if not key:
        raise HTTPException(503, "Square webhook signature key not configured")
    if not signature:
        raise HTTPException(400, "Missing webhook signature")

    expected = base64.b64encode(
        hmac.new(key.encode("utf-8"), notification_url.encode("utf-8") + body, hashlib.sha256).digest()
    ).decode()
    if not hmac.compare_digest(expected, signature):
        raise HTTPException(400, "Invalid signature")


# ── Event payload helpers ─────────────────────────────────────────────────────

def _object(data: dict, kind: str) -> dict:
    obj = (data.get("object") or {}).get(kind)
    return obj if isinstance(obj, dict) else {}


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    d = date.fromisoformat(value[:10])
    return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)


def _is_stale(sub: SubscriptionRow, obj: dict) -> bool:
    version = obj.get("version")
    if not isinstance(version, int) or isinstance(version, bool):
        return False
    return sub.gateway_version is not None and version < sub.gateway_version


def _remember_version(sub: SubscriptionRow, obj: dict) -> None:
    version = obj.get("version")
    if isinstance(version, int) and not isinstance(version, bool):
        sub.gateway_version = version


def _close_unpaid_period(sub: SubscriptionRow, previous_status: str, now: datetime) -> None:
    """A past-due plan cancelled at Square gets no access back for the unpaid period."""
    if previous_status != SubscriptionStatus.PAST_DUE.value:
        return
    period_end = as_utc(sub.current_period_end)
    if period_end is None or period_end > now:
        sub.current_period_end = now


async def _find_by_gateway_id(session: AsyncSession, gateway_id: Optional[str]) -> Optional[SubscriptionRow]:
    if not gateway_id:
        return None
    result = await session.execute(
        select(SubscriptionRow).where(SubscriptionRow.square_subscription_id == gateway_id)
    )
    return result.scalar_one_or_none()


# ── Handlers ──────────────────────────────────────────────────────────────────

HandlerResult = tuple[WebhookOutcome, Optional[SubscriptionRow]]


async def _handle_subscription_updated(session: AsyncSession, data: dict, now: datetime) -> HandlerResult:
    """Status change, renewal, or scheduled cancellation."""
    obj = _object(data, "subscription")
    gateway_id = obj.get("id") or data.get("id")
    sub = await _find_by_gateway_id(session, gateway_id)
    if not sub:
        logger.warning(f"Subscription update for unknown square sub: {gateway_id}")
        return WebhookOutcome.UNTRACKED, None
    if _is_stale(sub, obj):
        logger.warning(
            f"Stale subscription update ignored: square_sub={gateway_id} "
            f"version={obj.get('version')} applied={sub.gateway_version}"
        )
        return WebhookOutcome.STALE, sub

    previous_status = sub.status
    sub.status = map_gateway_status(obj.get("status"))

    # charged_through_date is the last day already paid for
    charged_through = _parse_date(obj.get("charged_through_date"))
    cadence = cadence_for_plan_type(sub.plan_type)
    if charged_through and cadence:
        months = 1 if cadence == Cadence.MONTHLY else 12
        sub.current_period_end = charged_through
        sub.current_period_start = add_months(charged_through, -months)

    sub.cancel_at_period_end = bool(obj.get("canceled_date")) and sub.status == SubscriptionStatus.ACTIVE.value
    if sub.status == SubscriptionStatus.CANCELLED.value:
        sub.cancelled_at = sub.cancelled_at or now
        _close_unpaid_period(sub, previous_status, now)
    _remember_version(sub, obj)
    sub.updated_at = now

    user = await session.get(UserRow, sub.user_id)
    if user:
        sync_user_cache(user, entitlement_from_record(sub))

    logger.info(f"Subscription updated from Square: user={sub.user_id} status={sub.status}")
    return WebhookOutcome.APPLIED, sub


async def _handle_subscription_canceled(session: AsyncSession, data: dict, now: datetime) -> HandlerResult:
    """Cancelled at Square. Access runs to the end of the paid period."""
    obj = _object(data, "subscription")
    gateway_id = obj.get("id") or data.get("id")
    sub = await _find_by_gateway_id(session, gateway_id)
    if not sub:
        logger.warning(f"Cancellation for unknown square sub: {gateway_id}")
        return WebhookOutcome.UNTRACKED, None
    if _is_stale(sub, obj):
        logger.warning(f"Stale cancellation ignored: square_sub={gateway_id} version={obj.get('version')}")
        return WebhookOutcome.STALE, sub

    previous_status = sub.status
    sub.status = SubscriptionStatus.CANCELLED.value
    sub.cancelled_at = sub.cancelled_at or now
    sub.cancel_at_period_end = False
    _close_unpaid_period(sub, previous_status, now)
    _remember_version(sub, obj)
    sub.updated_at = now

    user = await session.get(UserRow, sub.user_id)
    if user:
        sync_user_cache(user, entitlement_from_record(sub))

    logger.info(f"Subscription cancelled by Square: user={sub.user_id}")
    return WebhookOutcome.APPLIED, sub


async def _handle_invoice_payment_made(session: AsyncSession, data: dict, now: datetime) -> HandlerResult:
    invoice = _object(data, "invoice")
    sub = await _find_by_gateway_id(session, invoice.get("subscription_id"))
    if not sub:
        return WebhookOutcome.UNTRACKED, None
    sub.last_payment_at = now
    sub.updated_at = now
    return WebhookOutcome.APPLIED, sub


async def _handle_invoice_payment_failed(session: AsyncSession, data: dict, now: datetime) -> HandlerResult:
    invoice = _object(data, "invoice")
    sub = await _find_by_gateway_id(session, invoice.get("subscription_id"))
    logger.warning(
        f"Invoice payment failed: invoice={invoice.get('id')} "
        f"square_sub={invoice.get('subscription_id')} user={sub.user_id if sub else None}"
    )
    if not sub:
        return WebhookOutcome.UNTRACKED, None
    return WebhookOutcome.APPLIED, sub


_HANDLERS: dict[str, Callable[[AsyncSession, dict, datetime], Awaitable[HandlerResult]]] = {
    "subscription.updated": _handle_subscription_updated,
    "subscription.canceled": _handle_subscription_canceled,
    "invoice.payment_made": _handle_invoice_payment_made,
    "invoice.payment_failed": _handle_invoice_payment_failed,
}


# ── Processing ────────────────────────────────────────────────────────────────

async def _already_processed(session: AsyncSession, event_id: str) -> bool:
    result = await session.execute(
        select(WebhookEventRow.id).where(WebhookEventRow.event_id == event_id)
    )
    return result.first() is not None


async def process_webhook_event(
    session: AsyncSession,
    event_type: str,
    event_data: Optional[dict],
    event_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> WebhookOutcome:
    """Apply one delivery exactly once. Only raises if it cannot be recorded."""
    data = event_data if isinstance(event_data, dict) else {}
    event_id = event_id or derive_event_id(event_type, data)
    now = now or utcnow()

    if await _already_processed(session, event_id):
        logger.info(f"Duplicate webhook delivery ignored: {event_type} {event_id}")
        return WebhookOutcome.DUPLICATE

    handler = _HANDLERS.get(event_type)
    try:
        if handler is None:
            logger.debug(f"Unhandled Square event: {event_type}")
            outcome, sub = WebhookOutcome.IGNORED, None
        else:
            outcome, sub = await handler(session, data, now)

        session.add(WebhookEventRow(
            event_id=event_id,
            event_type=event_type,
            subscription_id=sub.id if sub else None,
            outcome=outcome.value,
            data=data,
            processed_at=now,
        ))
        await session.commit()
        return outcome
    except IntegrityError:
        await session.rollback()
        if await _already_processed(session, event_id):
            logger.info(f"Concurrent duplicate webhook delivery: {event_type} {event_id}")
            return WebhookOutcome.DUPLICATE
        logger.exception(f"Webhook {event_type} {event_id} failed on integrity error")
        await _record_failure(session, event_id, event_type, data, "integrity error", now)
        return WebhookOutcome.ERROR
    except Exception as exc:
        await session.rollback()
        logger.exception(f"Webhook {event_type} {event_id} failed")
        await _record_failure(session, event_id, event_type, data, f"{type(exc).__name__}: {exc}", now)
        return WebhookOutcome.ERROR


async def _record_failure(
    session: AsyncSession, event_id: str, event_type: str, data: dict, error: str, now: datetime,
) -> None:
    """Persist the failed delivery; if even that fails, let it raise so Square retries."""
    session.add(WebhookEventRow(
        event_id=event_id,
        event_type=event_type,
        outcome=WebhookOutcome.ERROR.value,
        error=error[:2000],
        data=data,
        processed_at=now,
    ))
    await session.commit()


@router.post("/webhook")
async def square_webhook(
    request: Request,
    signature: Optional[str] = Header(None, alias=SIGNATURE_HEADER),
    session: AsyncSession = Depends(get_session),
):
    """Square webhook endpoint. 200 once the delivery is recorded."""
    body = await request.body()
    verify_square_signature(
        body, signature, settings.SQUARE_WEBHOOK_SIGNATURE_KEY, settings.SQUARE_WEBHOOK_URL,
    )

    try:
        event = json.loads(body)
    except ValueError:
        raise HTTPException(400, "Invalid JSON body")
    if not isinstance(event, dict):
        raise HTTPException(400, "Invalid event")

    event_type = event.get("type", "")
    outcome = await process_webhook_event(
        session, event_type, event.get("data"), event.get("event_id"),
    )
    logger.info(f"Square webhook: {event_type} → {outcome.value}")
    return {"status": "ok", "outcome": outcome.value}
