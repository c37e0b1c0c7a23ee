"""
Stitchery Subscription Service
---
Subscription lifecycle on top of Square card charges: plan purchase, trial
start, plan change requests and cancellation. The subscriptions table is the
source of truth for entitlements; the User row carries a cache of it that is
rewritten in the same transaction.

Endpoints:
- GET  /api/v1/subscriptions/plans — Plan catalog
- GET  /api/v1/subscriptions/my-subscription — Current user's subscription
- POST /api/v1/subscriptions/subscribe — Charge and activate a plan
- PUT  /api/v1/subscriptions/update — Request a plan change at next renewal
- POST /api/v1/subscriptions/cancel — Cancel now or at period end
- POST /api/v1/subscriptions/start-trial — One-time free trial
- GET  /api/v1/subscriptions/premium-content — Premium-only sample
- POST /api/v1/subscriptions/payment — One-off charge, grants nothing
- GET  /api/v1/subscriptions/analytics — Admin plan/revenue stats
- GET  /api/v1/subscriptions/{id} — One of the caller's own records
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel
from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.auth import require_user
from src.db.engine import get_session
from src.db.subscription_tables import SubscriptionRow
from src.db.user_tables import UserRow
from src.models.entitlement import (
    SubscriptionStatus,
    UserStatus,
    as_utc,
    entitlement_from_record,
    holds_live_paid_plan,
    sync_user_cache,
    utcnow,
)
from src.services.access import AccessInfo, require_premium_access, subscription_summary
from src.services.errors import (
    DuplicateSubscription,
    GatewayUnavailable,
    InvalidInput,
    PaymentFailed,
    SubscriptionNotFound,
    UserNotFound,
)
from src.services.payment_gateway import CustomerProfile, GatewayError, PaymentGateway, get_gateway
from src.services.plans import list_plans, period_end, resolve_plan
from src.services.trials import start_trial

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/subscriptions", tags=["subscriptions"])


# ── Helpers ───────────────────────────────────────────────────────────────────

async def get_subscription(session: AsyncSession, user_id: str) -> Optional[SubscriptionRow]:
    result = await session.execute(
        select(SubscriptionRow).where(SubscriptionRow.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def _get_user(session: AsyncSession, user_id: str) -> UserRow:
    user = await session.get(UserRow, user_id)
    if user is None:
        raise UserNotFound()
    return user


async def ensure_customer(session: AsyncSession, gateway: PaymentGateway, user: UserRow) -> str:
    """Reuse the stored Square customer id, or create and store one.

    Raises GatewayError; callers decide what that means for them.
    """
    if user.square_customer_id:
        return user.square_customer_id

    customer_id = await gateway.create_customer(CustomerProfile(
        reference_id=user.id,
        email=user.email,
        given_name=user.first_name or "Customer",
        family_name=user.last_name or "",
    ))
    user.square_customer_id = customer_id
    await session.commit()
    logger.info(f"Square customer created: user={user.id} customer={customer_id}")
    return customer_id


def make_idempotency_key(user_id: str, plan_id: str, amount_minor_units: int, client_key: Optional[str] = None) -> str:
    """Per-attempt charge key.

    A client-supplied key is bound to user, plan and amount, so retrying the
    same purchase is safe but a different amount never reuses it.
    """
    if not client_key:
        return str(uuid.uuid4())
    raw = f"{user_id}:{plan_id}:{amount_minor_units}:{client_key}"
    return hashlib.sha256(raw.encode()).hexdigest()[:40]  # Square caps keys at 45 chars


def _is_paid_subscription(sub: Optional[SubscriptionRow], now: Optional[datetime] = None) -> bool:
    return holds_live_paid_plan(sub, now)


# ── Lifecycle ─────────────────────────────────────────────────────────────────

async def create_subscription(
    session: AsyncSession,
    gateway: PaymentGateway,
    user_id: str,
    plan_id: str,
    payment_method_id: str,
    idempotency_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Charge the plan price, then activate the plan.

    Nothing entitlement-related is written unless the charge completed.
    Returns {"subscription": summary, "payment": receipt}.
    """
    if not plan_id or not payment_method_id:
        raise InvalidInput("Plan ID and payment method ID are required")
    plan = resolve_plan(plan_id)
    now = now or utcnow()

    user = await _get_user(session, user_id)
    if _is_paid_subscription(await get_subscription(session, user_id), now):
        raise DuplicateSubscription()

    try:
        customer_id = await ensure_customer(session, gateway, user)
    except GatewayError as exc:
        logger.error(f"Square customer lookup failed: user={user_id} error={exc}")
        raise PaymentFailed()

    key = make_idempotency_key(user_id, plan.plan_id, plan.amount_minor_units, idempotency_key)
    try:
        charge = await gateway.charge(
            plan.amount_minor_units, plan.currency, payment_method_id, customer_id, key,
        )
    except GatewayError as exc:
        logger.warning(
            f"Charge failed: user={user_id} customer={customer_id} amount={plan.amount_minor_units} "
            f"{plan.currency} idempotency_key={key} codes={exc.error_codes} error={exc}"
        )
        raise PaymentFailed()

    if not charge.completed:
        logger.warning(
            f"Charge not completed: user={user_id} customer={customer_id} charge={charge.charge_id} "
            f"status={charge.status} amount={plan.amount_minor_units} idempotency_key={key}"
        )
        raise PaymentFailed(f"Payment failed with status: {charge.status}")
    if charge.amount_minor_units != plan.amount_minor_units:
        logger.warning(
            f"Charged amount differs from plan price: charge={charge.charge_id} "
            f"charged={charge.amount_minor_units} plan={plan.amount_minor_units}"
        )

    try:
        sub = await get_subscription(session, user_id)
        if _is_paid_subscription(sub, now):
            raise DuplicateSubscription()
        if sub is None:
            sub = SubscriptionRow(user_id=user_id)
            session.add(sub)

        sub.plan_type = plan.plan_type.value
        sub.pending_plan_type = None
        sub.status = SubscriptionStatus.ACTIVE.value
        sub.current_period_start = now
        sub.current_period_end = period_end(now, plan.cadence)
        sub.cancel_at_period_end = False
        sub.cancelled_at = None
        sub.is_trial_active = False
        sub.square_customer_id = customer_id
        sub.square_payment_id = charge.charge_id
        sub.payment_method_id = payment_method_id
        sub.amount_minor_units = plan.amount_minor_units
        sub.currency = plan.currency
        sub.last_payment_at = now
        sub.updated_at = now

        sync_user_cache(user, entitlement_from_record(sub))
        await session.commit()
    except (IntegrityError, DuplicateSubscription):
        await session.rollback()
        logger.error(
            f"Charge captured but subscription already exists, refund needed: "
            f"user={user_id} charge={charge.charge_id} amount={charge.amount_minor_units}"
        )
        raise DuplicateSubscription()
    except Exception:
        await session.rollback()
        logger.exception(f"Charge captured but activation failed, refund needed: user={user_id} charge={charge.charge_id}")
        raise

    logger.info(
        f"Subscription activated: user={user_id} plan={sub.plan_type} charge={charge.charge_id} "
        f"until={sub.current_period_end.isoformat()}"
    )
    return {
        "subscription": subscription_summary(sub, now),
        "payment": {
            "charge_id": charge.charge_id,
            "status": charge.status,
            "amount_minor_units": charge.amount_minor_units,
            "currency": charge.currency,
        },
    }


async def cancel_subscription(
    session: AsyncSession,
    gateway: PaymentGateway,
    user_id: str,
    cancel_at_period_end: bool = True,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Cancel at period end (access runs out on its own) or immediately."""
    sub = await get_subscription(session, user_id)
    if sub is None:
        raise SubscriptionNotFound()
    now = now or utcnow()

    if sub.square_subscription_id:
        try:
            if cancel_at_period_end:
                cancel_on = (as_utc(sub.current_period_end) or now).date()
                await gateway.schedule_cancel(sub.square_subscription_id, sub.gateway_version, cancel_on)
            else:
                await gateway.cancel_recurring(sub.square_subscription_id)
        except GatewayError as exc:
            logger.error(f"Square cancel failed: user={user_id} square_sub={sub.square_subscription_id} error={exc}")
            raise GatewayUnavailable()

    try:
        if cancel_at_period_end:
            sub.cancel_at_period_end = True
        else:
            user = await _get_user(session, user_id)
            sub.status = SubscriptionStatus.CANCELLED.value
            sub.current_period_end = now
            sub.cancelled_at = now
            sub.cancel_at_period_end = False
            sub.is_trial_active = False
            sync_user_cache(user, entitlement_from_record(sub))
        sub.updated_at = now
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Subscription cancelled: user={user_id} at_period_end={cancel_at_period_end}")
    return subscription_summary(sub, now)


async def request_plan_change(
    session: AsyncSession, user_id: str, plan_id: str, now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Record a plan switch for the next renewal.

    The current plan, period and access are left alone: switching plans
    without charging for the new one is not allowed.
    """
    plan = resolve_plan(plan_id)
    sub = await get_subscription(session, user_id)
    if sub is None:
        raise SubscriptionNotFound()
    now = now or utcnow()
    if not _is_paid_subscription(sub, now):
        raise InvalidInput("No active paid subscription to change")

    target = plan.plan_type.value
    sub.pending_plan_type = None if target == sub.plan_type else target
    sub.updated_at = now
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Plan change requested: user={user_id} current={sub.plan_type} pending={sub.pending_plan_type}")
    return subscription_summary(sub, now)


async def process_payment(
    session: AsyncSession,
    gateway: PaymentGateway,
    user_id: str,
    amount_minor_units: Any,
    payment_method_id: Optional[str],
    currency: str = "USD",
    description: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> dict[str, Any]:
    """One-off charge against the user's Square customer.

    Grants nothing: the subscription record and the User cache are left alone.
    """
    if isinstance(amount_minor_units, bool) or not isinstance(amount_minor_units, int) or amount_minor_units <= 0:
        raise InvalidInput("amount must be a positive integer in minor units")
    if not payment_method_id:
        raise InvalidInput("Payment method ID is required")
    currency = (currency or "USD").upper()

    user = await _get_user(session, user_id)
    try:
        customer_id = await ensure_customer(session, gateway, user)
    except GatewayError as exc:
        logger.error(f"Square customer lookup failed: user={user_id} error={exc}")
        raise PaymentFailed()

    key = make_idempotency_key(user_id, "one-off", amount_minor_units, idempotency_key)
    try:
        charge = await gateway.charge(amount_minor_units, currency, payment_method_id, customer_id, key)
    except GatewayError as exc:
        logger.warning(
            f"One-off charge failed: user={user_id} amount={amount_minor_units} {currency} "
            f"idempotency_key={key} codes={exc.error_codes} error={exc}"
        )
        raise PaymentFailed()
    if not charge.completed:
        logger.warning(f"One-off charge not completed: user={user_id} charge={charge.charge_id} status={charge.status}")
        raise PaymentFailed(f"Payment failed with status: {charge.status}")

    logger.info(
        f"One-off payment: user={user_id} charge={charge.charge_id} "
        f"amount={charge.amount_minor_units} {charge.currency} description={description!r}"
    )
    return {
        "charge_id": charge.charge_id,
        "status": charge.status,
        "amount_minor_units": charge.amount_minor_units,
        "currency": charge.currency,
        "description": description,
    }


async def get_owned_subscription(session: AsyncSession, user_id: str, subscription_id: str) -> SubscriptionRow:
    """The record with this id, if it belongs to the user. Otherwise SubscriptionNotFound."""
    result = await session.execute(
        select(SubscriptionRow).where(
            SubscriptionRow.id == subscription_id,
            SubscriptionRow.user_id == user_id,
        )
    )
    sub = result.scalar_one_or_none()
    if sub is None:
        raise SubscriptionNotFound("Subscription not found or access denied")
    return sub


async def get_subscription_summary(
    session: AsyncSession, user_id: str, now: Optional[datetime] = None,
) -> dict[str, Any]:
    return subscription_summary(await get_subscription(session, user_id), now)


async def subscription_analytics(session: AsyncSession) -> dict[str, Any]:
    rows = await session.execute(
        select(
            SubscriptionRow.plan_type,
            func.count(SubscriptionRow.id),
            func.coalesce(func.sum(SubscriptionRow.amount_minor_units), 0),
            func.sum(case((SubscriptionRow.status == SubscriptionStatus.ACTIVE.value, 1), else_=0)),
        ).group_by(SubscriptionRow.plan_type)
    )
    plans = [
        {
            "plan_type": plan_type,
            "count": count,
            "total_revenue_minor_units": int(revenue or 0),
            "active_subscriptions": int(active or 0),
        }
        for plan_type, count, revenue, active in rows.all()
    ]

    total_users = (await session.execute(select(func.count(UserRow.id)))).scalar_one()
    premium_statuses = [UserStatus.PREMIUM_MONTHLY.value, UserStatus.PREMIUM_YEARLY.value, UserStatus.TRIAL.value]
    premium_users = (await session.execute(
        select(func.count(UserRow.id)).where(UserRow.subscription_status.in_(premium_statuses))
    )).scalar_one()

    return {
        "plan_analytics": plans,
        "total_users": total_users,
        "premium_users": premium_users,
        "conversion_rate": round(premium_users / total_users * 100, 2) if total_users else 0,
    }


# ── Routes ────────────────────────────────────────────────────────────────────

class SubscribeRequest(BaseModel):
    plan_id: str
    payment_method_id: str
    idempotency_key: Optional[str] = None


class UpdatePlanRequest(BaseModel):
    plan_id: str


class CancelRequest(BaseModel):
    cancel_at_period_end: bool = True


class StartTrialRequest(BaseModel):
    trial_days: Any = None  # validated by validate_trial_days


class PaymentRequest(BaseModel):
    amount: Any = None  # minor units, validated by process_payment
    currency: str = "USD"
    payment_method_id: Optional[str] = None
    description: Optional[str] = None
    idempotency_key: Optional[str] = None


def _verify_admin(x_admin_key: str = Header(None)) -> None:
    """Timing-safe admin key check."""
    expected = settings.ADMIN_API_KEY
    if not expected:
        raise HTTPException(503, "Admin endpoints disabled")
    if not x_admin_key or not hmac.compare_digest(x_admin_key, expected):
        raise HTTPException(403, "Invalid admin key")


@router.get("/plans")
async def get_plans():
    plans = list_plans()
    return {
        "plans": [
            {
                "id": p.plan_id,
                "name": p.name,
                "price": {"amount": p.amount_minor_units, "currency": p.currency},
                "plan_type": p.plan_type.value,
                "billing_period": p.cadence.value,
                "features": p.features,
                "is_recommended": p.is_recommended,
                "savings": p.savings,
                "display_price": p.display_price,
            }
            for p in plans
        ],
        "count": len(plans),
    }


@router.get("/my-subscription")
async def my_subscription(
    user: UserRow = Depends(require_user),
    session: AsyncSession = Depends(get_session),
):
    return await get_subscription_summary(session, user.id)


@router.post("/subscribe", status_code=201)
async def subscribe(
    req: SubscribeRequest,
    user: UserRow = Depends(require_user),
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
):
    return await create_subscription(
        session, gateway, user.id, req.plan_id, req.payment_method_id, req.idempotency_key,
    )


@router.put("/update")
async def update_plan(
    req: UpdatePlanRequest,
    user: UserRow = Depends(require_user),
    session: AsyncSession = Depends(get_session),
):
    return await request_plan_change(session, user.id, req.plan_id)


@router.post("/cancel")
async def cancel(
    req: CancelRequest,
    user: UserRow = Depends(require_user),
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
):
    summary = await cancel_subscription(session, gateway, user.id, req.cancel_at_period_end)
    return {
        "subscription": summary,
        "message": (
            "Subscription will be cancelled at the end of the current period"
            if req.cancel_at_period_end else "Subscription cancelled immediately"
        ),
    }


@router.post("/start-trial")
async def start_free_trial(
    req: StartTrialRequest,
    user: UserRow = Depends(require_user),
    session: AsyncSession = Depends(get_session),
):
    user, sub = await start_trial(session, user.id, req.trial_days)
    return {
        "user": {
            "subscription_status": user.subscription_status,
            "premium_access_until": as_utc(user.premium_access_until).isoformat(),
            "trial_used": user.trial_used,
        },
        "subscription": subscription_summary(sub),
    }


@router.get("/premium-content")
async def premium_content(access: AccessInfo = Depends(require_premium_access)):
    return {
        "message": "Welcome to premium content!",
        "access": access.to_dict(),
        "premium_features": [
            "High quality images",
            "Video tutorials",
            "Detailed instructions",
            "Pattern downloads",
            "Exclusive content",
        ],
    }


@router.post("/payment")
async def payment(
    req: PaymentRequest,
    user: UserRow = Depends(require_user),
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
):
    receipt = await process_payment(
        session, gateway, user.id, req.amount, req.payment_method_id,
        req.currency, req.description, req.idempotency_key,
    )
    return {"payment": receipt}


@router.get("/analytics", dependencies=[Depends(_verify_admin)])
async def analytics(session: AsyncSession = Depends(get_session)):
    return await subscription_analytics(session)


# Catch-all path; keep below the fixed GET routes
@router.get("/{subscription_id}")
async def subscription_by_id(
    subscription_id: str,
    user: UserRow = Depends(require_user),
    session: AsyncSession = Depends(get_session),
):
    sub = await get_owned_subscription(session, user.id, subscription_id)
    return {"id": sub.id, **subscription_summary(sub)}
