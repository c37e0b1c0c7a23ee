"""
Stitchery Plan Catalog
---
Premium plans, plan-id lookup, and billing period arithmetic.

Periods use calendar months: Jan 31 + 1 month is the last day of February,
Feb 29 + 1 year is Feb 28.
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from config.settings import settings
from src.models.entitlement import PlanType
from src.services.errors import InvalidPlan


class Cadence(str, Enum):
    MONTHLY = "MONTHLY"
    ANNUAL = "ANNUAL"


@dataclass(frozen=True)
class PlanDescriptor:
    plan_id: str
    name: str
    amount_minor_units: int
    plan_type: PlanType
    cadence: Cadence
    currency: str = "USD"
    features: list[str] = field(default_factory=list)
    display_price: str = ""
    savings: Optional[str] = None
    is_recommended: bool = False


MONTHLY_FEATURES = [
    "Access to all premium stitches",
    "High-quality images and videos",
    "Detailed step-by-step instructions",
    "Pattern downloads",
    "Expert tips and techniques",
    "Progress tracking",
    "Unlimited access to premium content",
]

YEARLY_FEATURES = MONTHLY_FEATURES + [
    "2 months free (save 17%)",
    "Priority customer support",
    "Early access to new patterns",
    "Exclusive yearly subscriber content",
]

# Catalog ids from earlier releases, still sent by old app builds
LEGACY_PLAN_TYPES = {
    "monthly": PlanType.PREMIUM_MONTHLY,
    "yearly": PlanType.PREMIUM_YEARLY,
    "5CUHOPULR6IYPKFLX3WU2SQW": PlanType.PREMIUM_MONTHLY,
    "SUVI7YS7X52XMLH6JSDKPZUC": PlanType.PREMIUM_YEARLY,
    "BKWHGZNOZJ3NAYFHKK3GXWRK": PlanType.PREMIUM_MONTHLY,
    "CQF77RXHW5LF6T7ISZ7VWVZ3": PlanType.PREMIUM_YEARLY,
}

CADENCE_BY_PLAN_TYPE = {
    PlanType.PREMIUM_MONTHLY.value: Cadence.MONTHLY,
    PlanType.PREMIUM_YEARLY.value: Cadence.ANNUAL,
}


def list_plans() -> list[PlanDescriptor]:
    return [
        PlanDescriptor(
            plan_id=settings.SQUARE_MONTHLY_PLAN_ID,
            name="Premium Monthly",
            amount_minor_units=999,
            plan_type=PlanType.PREMIUM_MONTHLY,
            cadence=Cadence.MONTHLY,
            features=MONTHLY_FEATURES,
            display_price="$9.99/month",
        ),
        PlanDescriptor(
            plan_id=settings.SQUARE_YEARLY_PLAN_ID,
            name="Premium Yearly",
            amount_minor_units=9999,
            plan_type=PlanType.PREMIUM_YEARLY,
            cadence=Cadence.ANNUAL,
            features=YEARLY_FEATURES,
            display_price="$99.99/year",
            savings="Save 17% with annual billing",
            is_recommended=True,
        ),
    ]


def resolve_plan(plan_id: str) -> PlanDescriptor:
    """Map a client plan id (current or legacy) to its descriptor."""
    plans = list_plans()
    for plan in plans:
        if plan.plan_id == plan_id:
            return plan
    legacy = LEGACY_PLAN_TYPES.get(plan_id)
    if legacy is not None:
        for plan in plans:
            if plan.plan_type == legacy:
                return plan
    raise InvalidPlan(
        f"Invalid plan ID: {plan_id}. Available plans: "
        + ", ".join(p.plan_id for p in plans)
    )


def get_plan_type_from_id(plan_id: str) -> str:
    """Pure lookup; unknown ids are free."""
    try:
        return resolve_plan(plan_id).plan_type.value
    except InvalidPlan:
        return PlanType.FREE.value


def add_months(start: datetime, months: int) -> datetime:
    """Same day-of-month `months` later, clamped to the month's last day."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def period_end(start: datetime, cadence: Cadence) -> datetime:
    if cadence == Cadence.MONTHLY:
        return add_months(start, 1)
    if cadence == Cadence.ANNUAL:
        return add_months(start, 12)
    raise ValueError(f"Unknown cadence: {cadence}")


def cadence_for_plan_type(plan_type: str) -> Optional[Cadence]:
    return CADENCE_BY_PLAN_TYPE.get(plan_type)
