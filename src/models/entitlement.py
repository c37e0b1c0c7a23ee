"""Entitlement states — what a user's subscription record means for access.

A SubscriptionRow stores plan/status/trial columns that only make sense in a
few combinations. entitlement_from_record() collapses them into one of five
explicit states, and everything that decides premium access (the record-level
check, the User cache, the access gate) goes through those states.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union


class PlanType(str, Enum):
    FREE = "free"
    PREMIUM_MONTHLY = "premium_monthly"
    PREMIUM_YEARLY = "premium_yearly"


PAID_PLANS = {PlanType.PREMIUM_MONTHLY.value, PlanType.PREMIUM_YEARLY.value}


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"
    PAST_DUE = "past_due"
    PENDING = "pending"


class UserStatus(str, Enum):
    """Values of UserRow.subscription_status."""
    FREE = "free"
    TRIAL = "trial"
    PREMIUM_MONTHLY = "premium_monthly"
    PREMIUM_YEARLY = "premium_yearly"
    CANCELLED = "cancelled"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; they were written as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ── States ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Free:
    pass


@dataclass(frozen=True)
class Trialing:
    ends_at: datetime


@dataclass(frozen=True)
class ActivePaid:
    plan_type: str
    period_end: Optional[datetime]  # None = open-ended
    cancel_at_period_end: bool = False


@dataclass(frozen=True)
class Cancelled:
    since: Optional[datetime]
    access_until: Optional[datetime]  # end of the already-paid window


@dataclass(frozen=True)
class PastDue:
    plan_type: str
    period_end: Optional[datetime]


Entitlement = Union[Free, Trialing, ActivePaid, Cancelled, PastDue]


def entitlement_from_record(sub) -> Entitlement:
    """Derive the entitlement state of a SubscriptionRow (None → Free)."""
    if sub is None:
        return Free()

    trial_end = as_utc(sub.trial_end)
    period_end = as_utc(sub.current_period_end)
    paid = sub.plan_type in PAID_PLANS

    if sub.status == SubscriptionStatus.CANCELLED.value:
        return Cancelled(
            since=as_utc(sub.cancelled_at),
            access_until=period_end if paid else None,
        )
    if sub.status == SubscriptionStatus.PAST_DUE.value and paid:
        return PastDue(plan_type=sub.plan_type, period_end=period_end)
    if sub.status == SubscriptionStatus.ACTIVE.value:
        if paid:
            return ActivePaid(
                plan_type=sub.plan_type,
                period_end=period_end,
                cancel_at_period_end=bool(sub.cancel_at_period_end),
            )
        if sub.is_trial_active and trial_end is not None:
            return Trialing(ends_at=trial_end)
    return Free()


def has_premium_access(entitlement: Entitlement, now: Optional[datetime] = None) -> bool:
    now = as_utc(now) or utcnow()
    if isinstance(entitlement, Trialing):
        return entitlement.ends_at > now
    if isinstance(entitlement, ActivePaid):
        return entitlement.period_end is None or entitlement.period_end > now
    if isinstance(entitlement, Cancelled):
        return entitlement.access_until is not None and entitlement.access_until > now
    return False


def user_cache_for(entitlement: Entitlement) -> tuple[str, Optional[datetime]]:
    """(subscription_status, premium_access_until) the User row must hold."""
    if isinstance(entitlement, Trialing):
        return UserStatus.TRIAL.value, entitlement.ends_at
    if isinstance(entitlement, ActivePaid):
        return entitlement.plan_type, entitlement.period_end
    if isinstance(entitlement, Cancelled):
        return UserStatus.CANCELLED.value, entitlement.access_until
    # Past-due access is suspended until the gateway reports a successful renewal
    return UserStatus.FREE.value, None


def access_from_user_cache(
    subscription_status: Optional[str],
    premium_access_until: Optional[datetime],
    now: Optional[datetime] = None,
) -> bool:
    """Same decision as has_premium_access(), from the User cache columns."""
    now = as_utc(now) or utcnow()
    until = as_utc(premium_access_until)
    if subscription_status in PAID_PLANS:
        return until is None or until > now
    if subscription_status in (UserStatus.TRIAL.value, UserStatus.CANCELLED.value):
        return until is not None and until > now
    return False


def sync_user_cache(user, entitlement: Entitlement) -> None:
    """Rewrite the User cache columns from the entitlement state."""
    status, until = user_cache_for(entitlement)
    user.subscription_status = status
    user.premium_access_until = until


def holds_live_paid_plan(sub, now: Optional[datetime] = None) -> bool:
    """True while a paid record still blocks a new purchase or a trial.

    An active or pending paid plan stops blocking once its period has ended;
    nothing renews it here, so an expired record is as good as none.
    """
    if sub is None or sub.plan_type not in PAID_PLANS:
        return False
    if sub.status not in (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PENDING.value):
        return False
    period_end = as_utc(sub.current_period_end)
    return period_end is None or period_end > (as_utc(now) or utcnow())
